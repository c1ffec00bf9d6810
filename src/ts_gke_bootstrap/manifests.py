"""
매니페스트 렌더링 모듈
SecretStore / ExternalSecret YAML 템플릿 치환 및 스키마 검증
"""

import os
import yaml
from typing import Dict, List, Any
from jinja2 import Template

from .config import Config, DURATION_RE

ESO_API_VERSION = "external-secrets.io/v1"
ESO_KINDS = ("SecretStore", "ExternalSecret")

MANAGED_BY_LABEL = "ts-gke-bootstrap"


NAMESPACE_TEMPLATE = """apiVersion: v1
kind: Namespace
metadata:
  name: {{ namespace | tojson }}
  labels:
    app.kubernetes.io/managed-by: {{ managed_by | tojson }}
"""

SERVICE_ACCOUNT_TEMPLATE = """apiVersion: v1
kind: ServiceAccount
metadata:
  name: {{ name | tojson }}
  namespace: {{ namespace | tojson }}
  labels:
    app.kubernetes.io/managed-by: {{ managed_by | tojson }}
"""

SECRET_STORE_TEMPLATE = """apiVersion: {{ api_version }}
kind: SecretStore
metadata:
  name: {{ name | tojson }}
  namespace: {{ namespace | tojson }}
  labels:
    app.kubernetes.io/managed-by: {{ managed_by | tojson }}
spec:
  provider:
    gcpsm:
      projectID: {{ project_id | tojson }}
{%- if service_account %}
      auth:
        workloadIdentity:
          clusterLocation: {{ cluster_location | tojson }}
          clusterName: {{ cluster_name | tojson }}
          clusterProjectID: {{ project_id | tojson }}
          serviceAccountRef:
            name: {{ service_account | tojson }}
{%- endif %}
"""

EXTERNAL_SECRET_TEMPLATE = """apiVersion: {{ api_version }}
kind: ExternalSecret
metadata:
  name: {{ name | tojson }}
  namespace: {{ namespace | tojson }}
  labels:
    app.kubernetes.io/managed-by: {{ managed_by | tojson }}
spec:
  refreshInterval: {{ refresh_interval | tojson }}
  secretStoreRef:
    kind: SecretStore
    name: {{ store_name | tojson }}
  target:
    name: {{ target_secret | tojson }}
    creationPolicy: Owner
  data:
{%- for item in data %}
    - secretKey: {{ item.secret_key | tojson }}
      remoteRef:
        key: {{ item.remote_key | tojson }}
{%- endfor %}
"""


class ManifestError(ValueError):
    """매니페스트 검증 실패"""


def secret_key_mapping(config: Config) -> List[Dict[str, str]]:
    """원격 Secret Manager 키 -> operator-oauth 시크릿 키 매핑"""
    return [
        {"secret_key": "client_id", "remote_key": config.secrets.client_id_key},
        {"secret_key": "client_secret", "remote_key": config.secrets.client_secret_key},
    ]


def render_namespace(namespace: str) -> str:
    return Template(NAMESPACE_TEMPLATE).render(
        namespace=namespace,
        managed_by=MANAGED_BY_LABEL,
    )


def render_service_account(config: Config) -> str:
    """SecretStore 전용 KSA 렌더링 (store_service_account 설정 시)"""
    return Template(SERVICE_ACCOUNT_TEMPLATE).render(
        name=config.secrets.store_service_account,
        namespace=config.tailscale.namespace,
        managed_by=MANAGED_BY_LABEL,
    )


def render_secret_store(config: Config) -> str:
    """Google Secret Manager 백엔드를 가리키는 SecretStore 렌더링"""
    return Template(SECRET_STORE_TEMPLATE).render(
        api_version=ESO_API_VERSION,
        name=config.secrets.store_name,
        namespace=config.tailscale.namespace,
        managed_by=MANAGED_BY_LABEL,
        project_id=config.gcp.project_id,
        service_account=config.secrets.store_service_account,
        cluster_location=config.cluster.location,
        cluster_name=config.cluster.name,
    )


def render_external_secret(config: Config) -> str:
    """Tailscale OAuth 키를 operator-oauth 시크릿으로 동기화하는 ExternalSecret 렌더링"""
    return Template(EXTERNAL_SECRET_TEMPLATE).render(
        api_version=ESO_API_VERSION,
        name=config.secrets.external_secret_name,
        namespace=config.tailscale.namespace,
        managed_by=MANAGED_BY_LABEL,
        refresh_interval=config.secrets.refresh_interval,
        store_name=config.secrets.store_name,
        target_secret=config.secrets.target_secret,
        data=secret_key_mapping(config),
    )


def validate_manifest(doc: Dict[str, Any]) -> Dict[str, Any]:
    """ESO CRD 스키마에 맞는지 검증

    Args:
        doc: 파싱된 YAML 문서

    Returns:
        Dict: 검증된 문서 (그대로 반환)

    Raises:
        ManifestError: 필수 필드 누락 또는 형식 오류
    """
    if not isinstance(doc, dict):
        raise ManifestError("매니페스트가 YAML 매핑이 아닙니다")

    kind = doc.get("kind")
    if kind == "Namespace":
        if not doc.get("metadata", {}).get("name"):
            raise ManifestError("Namespace: metadata.name 누락")
        return doc

    if kind == "ServiceAccount":
        metadata = doc.get("metadata") or {}
        if not metadata.get("name") or not metadata.get("namespace"):
            raise ManifestError("ServiceAccount: metadata.name / metadata.namespace 누락")
        return doc

    if kind not in ESO_KINDS:
        raise ManifestError(f"지원하지 않는 kind: {kind}")

    if doc.get("apiVersion") != ESO_API_VERSION:
        raise ManifestError(f"{kind}: apiVersion 은 {ESO_API_VERSION} 이어야 합니다 (현재: {doc.get('apiVersion')})")

    metadata = doc.get("metadata") or {}
    for key in ("name", "namespace"):
        if not metadata.get(key):
            raise ManifestError(f"{kind}: metadata.{key} 누락")

    spec = doc.get("spec")
    if not isinstance(spec, dict):
        raise ManifestError(f"{kind}: spec 누락")

    if kind == "SecretStore":
        gcpsm = (spec.get("provider") or {}).get("gcpsm")
        if not isinstance(gcpsm, dict) or not gcpsm.get("projectID"):
            raise ManifestError("SecretStore: spec.provider.gcpsm.projectID 누락")
        return doc

    refresh = spec.get("refreshInterval")
    if refresh is not None and not DURATION_RE.match(str(refresh)):
        raise ManifestError(f"ExternalSecret: refreshInterval 형식 오류: {refresh}")

    store_ref = spec.get("secretStoreRef") or {}
    if not store_ref.get("name"):
        raise ManifestError("ExternalSecret: spec.secretStoreRef.name 누락")

    if not (spec.get("target") or {}).get("name"):
        raise ManifestError("ExternalSecret: spec.target.name 누락")

    data = spec.get("data")
    if not isinstance(data, list) or not data:
        raise ManifestError("ExternalSecret: spec.data 가 비어 있습니다")

    seen = set()
    for item in data:
        secret_key = (item or {}).get("secretKey")
        remote_key = ((item or {}).get("remoteRef") or {}).get("key")
        if not secret_key or not remote_key:
            raise ManifestError("ExternalSecret: data 항목에 secretKey / remoteRef.key 필요")
        if secret_key in seen:
            raise ManifestError(f"ExternalSecret: 중복된 secretKey: {secret_key}")
        seen.add(secret_key)

    return doc


def parse_bundle(text: str) -> List[Dict[str, Any]]:
    """다중 문서 YAML 파싱 및 검증"""
    try:
        docs = [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as e:
        raise ManifestError(f"YAML 파싱 실패: {e}") from e

    return [validate_manifest(doc) for doc in docs]


def render_bundle(config: Config) -> str:
    """적용 순서대로 Namespace, (ServiceAccount), SecretStore, ExternalSecret 을 묶은 다중 문서 YAML"""
    documents = [render_namespace(config.tailscale.namespace)]
    if config.secrets.store_service_account:
        documents.append(render_service_account(config))
    documents.extend([
        render_secret_store(config),
        render_external_secret(config),
    ])
    bundle = "---\n".join(doc if doc.endswith("\n") else doc + "\n" for doc in documents)

    parse_bundle(bundle)
    return bundle


def write_bundle(config: Config, path: str) -> str:
    """렌더링된 번들을 파일로 저장"""
    bundle = render_bundle(config)

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        f.write(bundle)

    return path
