"""
Secret Manager 모듈 테스트
"""

import json

from ts_gke_bootstrap.secret_manager import ACCESSOR_ROLE, SecretManagerClient

MEMBER = "principal://iam.googleapis.com/projects/1/locations/global/workloadIdentityPools/p.svc.id.goog/subject/ns/external-secrets/sa/external-secrets"


def _client(config, client_id="id-value", client_secret="secret-value"):
    config.tailscale.oauth_client_id = client_id
    config.tailscale.oauth_client_secret = client_secret
    return SecretManagerClient(config.to_dict())


def test_create_new_secrets_via_stdin(config, runner):
    runner.on("gcloud", "secrets", "describe", returncode=1)
    client = _client(config)

    success, _ = client.store_oauth_credentials()

    assert success
    creates = runner.find("gcloud", "secrets", "create")
    assert [cmd[3] for cmd, _ in creates] == ["tailscale-oauth-client-id", "tailscale-oauth-client-secret"]
    assert [kwargs["input"] for _, kwargs in creates] == ["id-value", "secret-value"]
    # 시크릿 값은 명령행 인자에 포함되지 않음
    for cmd, _ in runner.calls:
        assert "secret-value" not in cmd
    assert client.created_secrets == ["tailscale-oauth-client-id", "tailscale-oauth-client-secret"]


def test_existing_secret_gets_new_version(config, runner):
    client = _client(config)

    success, _ = client.store_oauth_credentials()

    assert success
    assert len(runner.find("gcloud", "secrets", "versions", "add")) == 2
    assert not runner.find("gcloud", "secrets", "create")
    assert client.created_secrets == []


def test_missing_credentials_with_existing_secrets(config, runner):
    client = _client(config, "", "")

    success, msg = client.store_oauth_credentials()

    assert success
    assert msg == "기존 시크릿 사용"


def test_missing_credentials_and_secrets(config, runner):
    runner.on("gcloud", "secrets", "describe", returncode=1)
    client = _client(config, "", "")

    success, msg = client.store_oauth_credentials()

    assert not success
    assert "OAUTH_CLIENT_ID" in msg


def test_grant_accessor_binds_each_secret(config, runner):
    runner.on("gcloud", "secrets", "get-iam-policy", stdout=json.dumps({"etag": "x"}))
    client = _client(config)

    success, _ = client.grant_accessor(MEMBER)

    assert success
    bindings = runner.find("gcloud", "secrets", "add-iam-policy-binding")
    assert len(bindings) == 2
    cmd = bindings[0][0]
    assert cmd[cmd.index("--role") + 1] == ACCESSOR_ROLE
    assert cmd[cmd.index("--member") + 1] == MEMBER


def test_grant_accessor_skips_existing_binding(config, runner):
    policy = {"bindings": [{"role": ACCESSOR_ROLE, "members": [MEMBER]}]}
    runner.on("gcloud", "secrets", "get-iam-policy", stdout=json.dumps(policy))
    client = _client(config)

    success, _ = client.grant_accessor(MEMBER)

    assert success
    assert not runner.find("gcloud", "secrets", "add-iam-policy-binding")
    assert client.added_bindings == []


def test_grant_accessor_failure(config, runner):
    runner.on("gcloud", "secrets", "get-iam-policy", returncode=1)
    runner.on("gcloud", "secrets", "add-iam-policy-binding", returncode=1, stderr="PERMISSION_DENIED")
    client = _client(config)

    success, msg = client.grant_accessor(MEMBER)

    assert not success
    assert "PERMISSION_DENIED" in msg


def test_rollback_deletes_created_and_unbinds_existing(config, runner):
    client = _client(config)
    client.created_secrets = ["tailscale-oauth-client-id"]
    client.added_bindings = [
        ("tailscale-oauth-client-id", MEMBER),
        ("tailscale-oauth-client-secret", MEMBER),
    ]

    assert client.rollback()

    removed = runner.find("gcloud", "secrets", "remove-iam-policy-binding")
    assert [cmd[3] for cmd, _ in removed] == ["tailscale-oauth-client-secret"]
    deleted = runner.find("gcloud", "secrets", "delete")
    assert [cmd[3] for cmd, _ in deleted] == ["tailscale-oauth-client-id"]
    assert client.created_secrets == []
