"""
매니페스트 렌더링 모듈 테스트
"""

import pytest
import yaml

from ts_gke_bootstrap.manifests import (
    ESO_API_VERSION,
    ManifestError,
    parse_bundle,
    render_bundle,
    render_external_secret,
    render_secret_store,
    validate_manifest,
    write_bundle,
)


def test_secret_store_targets_project(config):
    doc = yaml.safe_load(render_secret_store(config))

    assert doc["apiVersion"] == ESO_API_VERSION
    assert doc["kind"] == "SecretStore"
    assert doc["metadata"] == {
        "name": "gcp-secret-store",
        "namespace": "tailscale",
        "labels": {"app.kubernetes.io/managed-by": "ts-gke-bootstrap"},
    }
    assert doc["spec"]["provider"]["gcpsm"] == {"projectID": "demo-project"}


def test_secret_store_workload_identity_auth(config):
    config.secrets.store_service_account = "tailscale-eso"
    doc = yaml.safe_load(render_secret_store(config))

    auth = doc["spec"]["provider"]["gcpsm"]["auth"]["workloadIdentity"]
    assert auth["clusterName"] == "demo-cluster"
    assert auth["clusterLocation"] == "europe-west1"
    assert auth["clusterProjectID"] == "demo-project"
    assert auth["serviceAccountRef"] == {"name": "tailscale-eso"}


def test_external_secret_maps_oauth_keys(config):
    doc = yaml.safe_load(render_external_secret(config))

    spec = doc["spec"]
    assert doc["kind"] == "ExternalSecret"
    assert spec["refreshInterval"] == "1h"
    assert spec["secretStoreRef"] == {"kind": "SecretStore", "name": "gcp-secret-store"}
    assert spec["target"]["name"] == "operator-oauth"
    assert spec["data"] == [
        {"secretKey": "client_id", "remoteRef": {"key": "tailscale-oauth-client-id"}},
        {"secretKey": "client_secret", "remoteRef": {"key": "tailscale-oauth-client-secret"}},
    ]


def test_values_are_quoted(config):
    # YAML 에서 숫자/불리언으로 해석될 수 있는 값도 문자열로 유지
    config.gcp.project_id = "123456"
    config.secrets.client_id_key = "yes"
    store = yaml.safe_load(render_secret_store(config))
    external = yaml.safe_load(render_external_secret(config))

    assert store["spec"]["provider"]["gcpsm"]["projectID"] == "123456"
    assert external["spec"]["data"][0]["remoteRef"]["key"] == "yes"


def test_bundle_order(config):
    docs = parse_bundle(render_bundle(config))
    assert [doc["kind"] for doc in docs] == ["Namespace", "SecretStore", "ExternalSecret"]
    assert docs[0]["metadata"]["name"] == "tailscale"


def test_bundle_rejects_missing_project(config):
    config.gcp.project_id = ""
    with pytest.raises(ManifestError, match="projectID"):
        render_bundle(config)


def _external_secret(config):
    return yaml.safe_load(render_external_secret(config))


def test_validate_wrong_api_version(config):
    doc = _external_secret(config)
    doc["apiVersion"] = "external-secrets.io/v1beta1"
    with pytest.raises(ManifestError, match="apiVersion"):
        validate_manifest(doc)


def test_validate_empty_data(config):
    doc = _external_secret(config)
    doc["spec"]["data"] = []
    with pytest.raises(ManifestError, match="spec.data"):
        validate_manifest(doc)


def test_validate_duplicate_secret_key(config):
    doc = _external_secret(config)
    doc["spec"]["data"][1]["secretKey"] = "client_id"
    with pytest.raises(ManifestError, match="중복"):
        validate_manifest(doc)


def test_validate_bad_refresh_interval(config):
    doc = _external_secret(config)
    doc["spec"]["refreshInterval"] = "soon"
    with pytest.raises(ManifestError, match="refreshInterval"):
        validate_manifest(doc)


def test_validate_unknown_kind():
    with pytest.raises(ManifestError, match="kind"):
        validate_manifest({"apiVersion": ESO_API_VERSION, "kind": "ClusterSecretStore"})


def test_parse_bundle_invalid_yaml():
    with pytest.raises(ManifestError, match="YAML"):
        parse_bundle("kind: [unterminated")


def test_write_bundle(config, tmp_path):
    path = tmp_path / "out" / "manifests.yaml"
    write_bundle(config, str(path))

    assert len(parse_bundle(path.read_text())) == 3


def test_bundle_creates_store_service_account(config):
    config.secrets.store_service_account = "tailscale-eso"
    docs = parse_bundle(render_bundle(config))

    assert [doc["kind"] for doc in docs] == ["Namespace", "ServiceAccount", "SecretStore", "ExternalSecret"]
    account, store = docs[1], docs[2]
    assert account["metadata"]["namespace"] == store["metadata"]["namespace"]
    ref = store["spec"]["provider"]["gcpsm"]["auth"]["workloadIdentity"]["serviceAccountRef"]["name"]
    assert ref == account["metadata"]["name"]


def test_validate_service_account_requires_namespace():
    with pytest.raises(ManifestError, match="ServiceAccount"):
        validate_manifest({"apiVersion": "v1", "kind": "ServiceAccount", "metadata": {"name": "sa"}})
