"""
런북 자동 생성기 테스트
"""

import os

import pytest
import yaml

from ts_gke_bootstrap.doc_generator import DocGenerator, build_plan, format_command

SAMPLE_LOG = """\
2026-01-05 10:00:00 - ts_gke_bootstrap - INFO - === Bootstrap started ===
2026-01-05 10:00:01 - ts_gke_bootstrap - INFO - Step 의존성 확인: success - 완료
2026-01-05 10:00:09 - ts_gke_bootstrap - WARNING - ✗ secretmanager.googleapis.com:443 is closed
2026-01-05 10:01:30 - ts_gke_bootstrap - ERROR - Step WIF IAM 바인딩: failed - PERMISSION_DENIED on secret
not a log line
"""


def test_build_plan_order(config):
    titles = [step["title"] for step in build_plan(config)]

    assert titles == [
        "GCP API 활성화",
        "GKE 클러스터 생성",
        "클러스터 자격 증명 가져오기",
        "시크릿 생성: tailscale-oauth-client-id",
        "시크릿 생성: tailscale-oauth-client-secret",
        "IAM 바인딩: tailscale-oauth-client-id",
        "IAM 바인딩: tailscale-oauth-client-secret",
        "Helm 저장소 추가/갱신",
        "Helm 저장소 추가/갱신",
        "Helm 저장소 추가/갱신",
        "External Secrets Operator 설치",
        "ESO CRD 대기",
        "SecretStore / ExternalSecret 적용",
        "ExternalSecret Ready 대기",
        "Tailscale Operator 설치",
    ]


def test_build_plan_skips_cluster_creation(config):
    config.cluster.create = False
    config.gcp.enable_apis = False
    titles = [step["title"] for step in build_plan(config)]

    assert titles[0] == "클러스터 자격 증명 가져오기"
    assert "GKE 클러스터 생성" not in titles


def test_format_command_pipes_secret_from_env(config):
    step = next(s for s in build_plan(config) if s["title"] == "시크릿 생성: tailscale-oauth-client-id")
    line = format_command(step)

    assert line.startswith("printf '%s' \"$OAUTH_CLIENT_ID\" | gcloud secrets create tailscale-oauth-client-id")
    assert "|| printf '%s' \"$OAUTH_CLIENT_ID\" | gcloud secrets versions add tailscale-oauth-client-id" in line


def test_format_command_expands_project_number(config):
    config.gcp.project_number = ""
    step = next(s for s in build_plan(config) if s["title"].startswith("IAM 바인딩"))
    line = format_command(step)

    assert '"principal://iam.googleapis.com/projects/${PROJECT_NUMBER}/' in line
    assert "'principal://" not in line


def test_format_command_with_project_number(config):
    step = next(s for s in build_plan(config) if s["title"].startswith("IAM 바인딩"))
    line = format_command(step)

    assert "principal://iam.googleapis.com/projects/123456789012/locations/global/" \
           "workloadIdentityPools/demo-project.svc.id.goog/subject/ns/external-secrets/sa/external-secrets" in line


def test_generate_all(config, tmp_path):
    config.tailscale.oauth_client_id = "client-id-value"
    config.tailscale.oauth_client_secret = "client-secret-value"
    generator = DocGenerator(config, str(tmp_path / "docs"))

    files = generator.generate_all()

    assert set(files) == {"manual", "manifests", "script", "troubleshooting"}
    for path in files.values():
        assert path.exists()

    runbook = files["manual"].read_text(encoding="utf-8")
    assert "demo-cluster (europe-west1)" in runbook
    assert "kind: ExternalSecret" in runbook

    docs = list(yaml.safe_load_all(files["manifests"].read_text(encoding="utf-8")))
    assert [doc["kind"] for doc in docs] == ["Namespace", "SecretStore", "ExternalSecret"]

    script = files["script"].read_text(encoding="utf-8")
    assert script.startswith("#!/usr/bin/env bash")
    assert "set -euo pipefail" in script
    assert "PROJECT_NUMBER=" not in script
    assert os.access(files["script"], os.X_OK)

    for path in files.values():
        content = path.read_text(encoding="utf-8")
        assert "client-id-value" not in content
        assert "client-secret-value" not in content


def test_script_resolves_missing_project_number(config, tmp_path):
    config.gcp.project_number = ""
    script = DocGenerator(config, str(tmp_path / "docs")).generate_script().read_text(encoding="utf-8")

    assert "gcloud projects describe demo-project --format='value(projectNumber)'" in script


def test_parse_log_and_troubleshooting(config, tmp_path):
    log_file = tmp_path / "bootstrap.log"
    log_file.write_text(SAMPLE_LOG, encoding="utf-8")
    generator = DocGenerator(config, str(tmp_path / "docs"), str(log_file))

    generator.parse_log()

    assert [step["action"] for step in generator.execution_steps] == [
        "의존성 확인: success - 완료",
        "WIF IAM 바인딩: failed - PERMISSION_DENIED on secret",
    ]
    assert len(generator.errors) == 1
    assert len(generator.warnings) == 1

    guide = generator.generate_troubleshooting().read_text(encoding="utf-8")
    assert "IAM 권한 부족 또는 전파 지연" in guide
    assert "2026-01-05 10:01:30" in guide


def test_parse_log_missing_file(config, tmp_path):
    generator = DocGenerator(config, str(tmp_path / "docs"), str(tmp_path / "missing.log"))
    with pytest.raises(FileNotFoundError):
        generator.parse_log()


@pytest.mark.parametrize("message,cause", [
    ("Step ExternalSecret Ready: failed - SecretSyncedError: could not get secret", "ExternalSecret 동기화 실패"),
    ("no matches for kind \"SecretStore\"", "ESO CRD 미설치"),
    ("something unrelated", None),
])
def test_diagnose(message, cause):
    diagnosis = DocGenerator.diagnose(message)
    if cause is None:
        assert diagnosis is None
    else:
        assert diagnosis["cause"] == cause


def test_build_plan_binds_store_service_account(config):
    config.secrets.store_service_account = "tailscale-eso"
    steps = [s for s in build_plan(config) if s["title"].startswith("IAM 바인딩")]

    assert len(steps) == 2
    for step in steps:
        member = step["command"][step["command"].index("--member") + 1]
        assert member == config.store_principal("123456789012")
        assert member.endswith("/subject/ns/tailscale/sa/tailscale-eso")
