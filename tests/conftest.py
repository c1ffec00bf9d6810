"""
공통 테스트 픽스처
"""

import subprocess
import pytest

from ts_gke_bootstrap import logger as logger_module
from ts_gke_bootstrap.config import Config, ENV_OVERRIDES


@pytest.fixture(autouse=True)
def isolated_logger(tmp_path, monkeypatch):
    """테스트마다 임시 디렉토리에 로거 초기화, 환경 변수 제거"""
    for env_name in ENV_OVERRIDES:
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.chdir(tmp_path)
    logger_module.init_logger(str(tmp_path / "logs"), "DEBUG", False)
    yield
    logger_module._logger = None


@pytest.fixture
def config(tmp_path):
    cfg = Config(use_env=False)
    cfg.gcp.project_id = "demo-project"
    cfg.gcp.project_number = "123456789012"
    cfg.cluster.name = "demo-cluster"
    cfg.cluster.location = "europe-west1"
    cfg.agent.log_dir = str(tmp_path / "logs")
    cfg.agent.poll_interval = 0
    return cfg


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeRunner:
    """subprocess.run 대체 - 명령 접두어별 응답 지정"""

    def __init__(self):
        self.calls = []
        self.responses = []

    def on(self, *prefix, returncode=0, stdout="", stderr="", raises=None, times=None):
        """times 를 지정하면 그 횟수만큼 사용된 뒤 이전 응답으로 돌아감"""
        self.responses.append({
            "prefix": list(prefix),
            "result": completed(returncode, stdout, stderr),
            "raises": raises,
            "times": times,
        })
        return self

    def __call__(self, cmd, **kwargs):
        self.calls.append((list(cmd), kwargs))
        # 나중에 등록한 응답이 우선
        for response in reversed(self.responses):
            prefix = response["prefix"]
            if list(cmd[:len(prefix)]) != prefix:
                continue
            if response["times"] is not None:
                response["times"] -= 1
                if response["times"] <= 0:
                    self.responses.remove(response)
            if response["raises"] is not None:
                raise response["raises"]
            return response["result"]
        return completed()

    def commands(self):
        return [cmd for cmd, _ in self.calls]

    def find(self, *prefix):
        return [(cmd, kwargs) for cmd, kwargs in self.calls if cmd[:len(prefix)] == list(prefix)]


@pytest.fixture
def runner(monkeypatch):
    fake = FakeRunner()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake
