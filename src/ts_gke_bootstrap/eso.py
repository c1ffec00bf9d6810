"""
External Secrets 적용 모듈
SecretStore / ExternalSecret 적용, Ready 조건 대기 및 롤백
"""

import json
import time
import base64
import subprocess
from typing import Tuple, Optional, Dict, List
from rich.console import Console
from .logger import get_logger
from .manifests import parse_bundle

console = Console()

ESO_CRDS = [
    "secretstores.external-secrets.io",
    "externalsecrets.external-secrets.io",
]


def is_ready(obj: Optional[Dict]) -> bool:
    """status.conditions 의 Ready 조건이 True 인지 확인"""
    if not obj:
        return False
    conditions = obj.get("status", {}).get("conditions", []) or []
    ready = next((c for c in conditions if c.get("type") == "Ready"), None)
    return bool(ready) and ready.get("status") == "True"


def ready_message(obj: Optional[Dict]) -> str:
    """Ready 조건의 reason/message 요약"""
    if not obj:
        return "리소스 없음"
    conditions = obj.get("status", {}).get("conditions", []) or []
    ready = next((c for c in conditions if c.get("type") == "Ready"), None)
    if not ready:
        return "Ready 조건 없음"
    return f"{ready.get('reason', '')}: {ready.get('message', '')}".strip(": ")


class ExternalSecretsManager:
    """kubectl 기반 ESO 리소스 관리 클래스"""

    def __init__(self, config: Dict, debug: bool = False):
        self.config = config
        self.debug = debug
        self.logger = get_logger()
        self.namespace = config.get("tailscale", {}).get("namespace", "tailscale")
        agent = config.get("agent", {})
        self.ready_timeout = agent.get("ready_timeout", 60)
        self.poll_interval = agent.get("poll_interval", 5)
        self.created_resources: List[Tuple[str, str, str]] = []

    def _run(self, cmd: List[str], input_data: Optional[str] = None,
             timeout: int = 60) -> subprocess.CompletedProcess:
        self.logger.debug(f"Executing: {' '.join(cmd)}")
        return subprocess.run(
            cmd,
            input=input_data,
            capture_output=True,
            text=True,
            timeout=timeout
        )

    def planned_commands(self, manifest_path: str = "manifests.yaml") -> List[Tuple[str, List[str]]]:
        return [
            ("ESO CRD 대기", self.wait_crds_command()),
            ("SecretStore / ExternalSecret 적용", ["kubectl", "apply", "-f", manifest_path]),
            ("ExternalSecret Ready 대기", self.wait_ready_command(
                "externalsecret", self.config.get("secrets", {}).get("external_secret_name", "operator-oauth"))),
        ]

    def wait_crds_command(self) -> List[str]:
        return [
            "kubectl", "wait", "--for=condition=Established",
            *[f"crd/{crd}" for crd in ESO_CRDS],
            f"--timeout={self.ready_timeout}s",
        ]

    def wait_ready_command(self, kind: str, name: str) -> List[str]:
        return [
            "kubectl", "wait", f"{kind}/{name}",
            "--namespace", self.namespace,
            "--for=condition=Ready",
            f"--timeout={self.ready_timeout}s",
        ]

    def wait_for_crds(self) -> Tuple[bool, str]:
        """ESO CRD 등록 완료 대기"""
        self.logger.info("Waiting for ESO CRDs to be established...")
        try:
            result = self._run(self.wait_crds_command(), timeout=self.ready_timeout + 10)
        except subprocess.TimeoutExpired:
            self.logger.error("Timed out waiting for ESO CRDs")
            return False, "CRD 대기 타임아웃"

        if result.returncode != 0:
            self.logger.error(f"ESO CRDs not established: {result.stderr}")
            return False, result.stderr.strip()

        console.print("[green]✓ ESO CRD 준비 완료[/green]")
        return True, "CRD 준비 완료"

    def get_resource(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict]:
        """리소스를 JSON 으로 조회 (없으면 None)"""
        result = self._run([
            "kubectl", "get", kind, name,
            "--namespace", namespace or self.namespace,
            "-o", "json",
        ])
        if result.returncode != 0:
            self.logger.debug(f"{kind}/{name} not found: {result.stderr.strip()}")
            return None

        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            self.logger.error(f"Failed to parse {kind}/{name}: {e}")
            return None

    def apply(self, bundle: str) -> Tuple[bool, str]:
        """렌더링된 매니페스트 번들 적용 (kubectl apply 는 idempotent)"""
        console.print("\n[bold cyan]SecretStore / ExternalSecret 적용...[/bold cyan]\n")
        self.logger.info("Applying External Secrets manifests...")

        docs = parse_bundle(bundle)
        existing = {}
        for doc in docs:
            kind = doc["kind"]
            name = doc["metadata"]["name"]
            namespace = doc["metadata"].get("namespace", "")
            if kind == "Namespace":
                existing[(kind, name, namespace)] = self._namespace_exists(name)
            else:
                existing[(kind, name, namespace)] = self.get_resource(kind, name, namespace) is not None

        try:
            result = self._run(["kubectl", "apply", "-f", "-"], input_data=bundle)
        except subprocess.TimeoutExpired:
            self.logger.error("kubectl apply timed out")
            return False, "적용 타임아웃"

        if result.returncode != 0:
            console.print(f"[red]✗ 적용 실패: {result.stderr}[/red]")
            self.logger.error(f"kubectl apply failed: {result.stderr}")
            return False, result.stderr.strip()

        for key, existed in existing.items():
            if not existed:
                self.created_resources.append(key)

        console.print(result.stdout.strip())
        self.logger.info(f"Applied: {result.stdout.strip()}")
        return True, "적용 완료"

    def _namespace_exists(self, name: str) -> bool:
        result = self._run(["kubectl", "get", "namespace", name, "-o", "name"])
        return result.returncode == 0

    def wait_until_ready(self, kind: str, name: str, timeout: Optional[int] = None) -> Tuple[bool, str]:
        """리소스가 Ready 조건에 도달할 때까지 폴링

        Args:
            kind: 리소스 종류 (SecretStore, ExternalSecret)
            name: 리소스 이름
            timeout: 최대 대기 시간 (초), 기본값은 agent.ready_timeout

        Returns:
            Tuple[bool, str]: (성공 여부, 마지막 상태 메시지)
        """
        timeout = timeout or self.ready_timeout
        deadline = time.monotonic() + timeout
        self.logger.info(f"Waiting up to {timeout}s for {kind}/{name} to become Ready...")

        message = "리소스 없음"
        with console.status(f"[bold green]{kind}/{name} Ready 대기 중...[/bold green]"):
            while True:
                obj = self.get_resource(kind, name)
                if is_ready(obj):
                    console.print(f"[green]✓ {kind}/{name} Ready[/green]")
                    self.logger.info(f"{kind}/{name} is Ready")
                    return True, "Ready"

                message = ready_message(obj)
                self.logger.debug(f"{kind}/{name} not ready yet: {message}")

                if time.monotonic() >= deadline:
                    break
                time.sleep(self.poll_interval)

        console.print(f"[red]✗ {kind}/{name} 가 {timeout}초 내에 Ready 상태가 되지 않았습니다: {message}[/red]")
        self.logger.error(f"{kind}/{name} not Ready within {timeout}s: {message}")
        return False, message

    def secret_has_keys(self, name: str, keys: List[str]) -> Tuple[bool, List[str]]:
        """동기화된 시크릿에 필요한 키가 모두 있는지 확인 (값은 읽지 않음)

        Returns:
            Tuple[bool, List[str]]: (모두 존재 여부, 누락된 키 목록)
        """
        obj = self.get_resource("secret", name)
        if obj is None:
            return False, list(keys)

        data = obj.get("data", {}) or {}
        missing = []
        for key in keys:
            value = data.get(key)
            if not value or not base64.b64decode(value):
                missing.append(key)
        return not missing, missing

    def delete(self, kind: str, name: str, namespace: str = "") -> Tuple[bool, str]:
        cmd = ["kubectl", "delete", kind, name, "--ignore-not-found"]
        if namespace:
            cmd.extend(["--namespace", namespace])

        result = self._run(cmd, timeout=120)
        if result.returncode != 0:
            self.logger.error(f"Failed to delete {kind}/{name}: {result.stderr}")
            return False, result.stderr.strip()

        self.logger.info(f"Deleted {kind}/{name}")
        return True, "삭제 완료"

    def rollback(self) -> bool:
        """이번 실행에서 새로 만든 리소스만 역순으로 삭제"""
        self.logger.info("Rolling back External Secrets resources...")
        console.print("\n[yellow]External Secrets 리소스 롤백 중...[/yellow]")

        ok = True
        for kind, name, namespace in reversed(self.created_resources):
            try:
                success, _ = self.delete(kind, name, namespace)
            except (OSError, subprocess.SubprocessError) as e:
                self.logger.error(f"Failed to delete {kind}/{name}: {e}")
                success = False
            ok = ok and success

        self.created_resources.clear()
        return ok
