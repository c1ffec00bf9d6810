"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리, 환경 변수 오버라이드 및 기본값 제공
"""

import os
import re
import yaml
import json
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict


@dataclass
class GCPConfig:
    """GCP 프로젝트 설정"""
    project_id: str = ""
    project_number: str = ""  # 비워두면 gcloud로 조회
    enable_apis: bool = True
    apis: list = field(default_factory=lambda: [
        "container.googleapis.com",
        "secretmanager.googleapis.com",
        "iam.googleapis.com",
    ])


@dataclass
class ClusterConfig:
    """GKE 클러스터 설정"""
    name: str = "tailscale-gke"
    location: str = "us-central1"
    autopilot: bool = True
    create: bool = True
    num_nodes: int = 1
    machine_type: str = "e2-standard-2"
    release_channel: str = "regular"


@dataclass
class SecretsConfig:
    """External Secrets Operator / Secret Manager 설정"""
    eso_namespace: str = "external-secrets"
    service_account: str = "external-secrets"
    store_name: str = "gcp-secret-store"
    external_secret_name: str = "operator-oauth"
    target_secret: str = "operator-oauth"
    refresh_interval: str = "1h"
    client_id_key: str = "tailscale-oauth-client-id"
    client_secret_key: str = "tailscale-oauth-client-secret"
    store_service_account: str = ""  # 비워두면 컨트롤러 ID 사용


@dataclass
class TailscaleConfig:
    """Tailscale Operator 설정"""
    namespace: str = "tailscale"
    oauth_client_id: str = ""
    oauth_client_secret: str = ""
    hostname: str = "tailscale-operator"
    api_server_proxy: bool = False
    tags: list = field(default_factory=lambda: ["tag:k8s-operator"])


@dataclass
class HelmConfig:
    """Helm 차트 설정"""
    eso_repo_name: str = "external-secrets"
    eso_repo_url: str = "https://charts.external-secrets.io"
    eso_chart: str = "external-secrets/external-secrets"
    eso_release: str = "external-secrets"
    eso_version: str = ""
    tailscale_repo_name: str = "tailscale"
    tailscale_repo_url: str = "https://pkgs.tailscale.com/helmcharts"
    tailscale_chart: str = "tailscale/tailscale-operator"
    tailscale_release: str = "tailscale-operator"
    tailscale_version: str = ""
    timeout: str = "5m"


@dataclass
class AgentConfig:
    """에이전트 설정"""
    log_dir: str = "/var/log/ts-gke-bootstrap"
    log_level: str = "INFO"
    ready_timeout: int = 60
    poll_interval: int = 5
    rollback_on_failure: bool = True
    idempotent: bool = True


# 환경 변수 -> (섹션, 키)
ENV_OVERRIDES = {
    "PROJECT_ID": ("gcp", "project_id"),
    "CLUSTER_NAME": ("cluster", "name"),
    "CLUSTER_LOCATION": ("cluster", "location"),
    "NAMESPACE": ("secrets", "eso_namespace"),
    "KSA_NAME": ("secrets", "service_account"),
    "OAUTH_CLIENT_ID": ("tailscale", "oauth_client_id"),
    "OAUTH_CLIENT_SECRET": ("tailscale", "oauth_client_secret"),
}

SECTIONS = ("gcp", "cluster", "secrets", "tailscale", "helm", "agent")

# Tailscale 차트는 OAuth 값 없이 설치되면 이 이름의 시크릿을 마운트함
OPERATOR_OAUTH_SECRET = "operator-oauth"

DURATION_RE = re.compile(r'^(\d+(\.\d+)?(ns|us|µs|ms|s|m|h))+$')
DNS_LABEL_RE = re.compile(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$')


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/ts-gke-bootstrap/config.yaml",
        "~/.ts-gke-bootstrap/config.yaml",
        "./config/config.yaml",
        "./config.yaml",
    ]

    def __init__(self, config_path: Optional[str] = None, use_env: bool = True):
        self.config_path = config_path
        self.gcp = GCPConfig()
        self.cluster = ClusterConfig()
        self.secrets = SecretsConfig()
        self.tailscale = TailscaleConfig()
        self.helm = HelmConfig()
        self.agent = AgentConfig()
        self.load_errors: List[str] = []

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

        if use_env:
            self._update_from_env(os.environ)

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        return cls(path)

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트 (알 수 없는 키는 무시, 형식 오류는 load_errors 에 기록)"""
        if not isinstance(data, dict):
            self.load_errors.append(f"설정 파일의 최상위 값은 매핑이어야 합니다: {type(data).__name__}")
            return

        for section_name in SECTIONS:
            values = data.get(section_name)
            if not values:
                continue
            if not isinstance(values, dict):
                self.load_errors.append(f"{section_name} 섹션은 매핑이어야 합니다: '{values}'")
                continue
            section = getattr(self, section_name)
            for key, value in values.items():
                if hasattr(section, key):
                    setattr(section, key, value)

    def _update_from_env(self, environ):
        """환경 변수로 설정 덮어쓰기"""
        for env_name, (section_name, key) in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value:
                setattr(getattr(self, section_name), key, value)

    @property
    def workload_pool(self) -> str:
        """GKE Workload Identity 풀 이름"""
        return f"{self.gcp.project_id}.svc.id.goog"

    def _principal(self, project_number: str, namespace: str, service_account: str) -> str:
        return (
            f"principal://iam.googleapis.com/projects/{project_number}"
            f"/locations/global/workloadIdentityPools/{self.workload_pool}"
            f"/subject/ns/{namespace}/sa/{service_account}"
        )

    def wif_principal(self, project_number: str) -> str:
        """ESO 서비스 어카운트에 대응하는 WIF principal"""
        return self._principal(project_number, self.secrets.eso_namespace, self.secrets.service_account)

    def store_principal(self, project_number: str) -> str:
        """SecretStore 가 Secret Manager 에 접근할 때 사용하는 WIF principal

        store_service_account 가 설정되면 SecretStore 네임스페이스의 해당 KSA,
        아니면 ESO 컨트롤러 KSA 입니다.
        """
        if not self.secrets.store_service_account:
            return self.wif_principal(project_number)
        return self._principal(project_number, self.tailscale.namespace, self.secrets.store_service_account)

    def validate(self) -> List[str]:
        """설정 검증 - 문제 목록 반환 (빈 리스트면 유효)"""
        problems = list(self.load_errors)

        if not self.gcp.project_id:
            problems.append("gcp.project_id 가 설정되지 않았습니다 (PROJECT_ID)")
        if not self.cluster.name:
            problems.append("cluster.name 이 설정되지 않았습니다 (CLUSTER_NAME)")
        if not self.cluster.location:
            problems.append("cluster.location 이 설정되지 않았습니다 (CLUSTER_LOCATION)")

        for label, value in (
            ("secrets.eso_namespace", self.secrets.eso_namespace),
            ("secrets.service_account", self.secrets.service_account),
            ("secrets.store_name", self.secrets.store_name),
            ("secrets.external_secret_name", self.secrets.external_secret_name),
            ("secrets.target_secret", self.secrets.target_secret),
            ("tailscale.namespace", self.tailscale.namespace),
        ):
            if not value or not DNS_LABEL_RE.match(str(value)):
                problems.append(f"{label} 값이 올바른 Kubernetes 이름이 아닙니다: '{value}'")

        store_sa = self.secrets.store_service_account
        if store_sa and not DNS_LABEL_RE.match(str(store_sa)):
            problems.append(f"secrets.store_service_account 값이 올바른 Kubernetes 이름이 아닙니다: '{store_sa}'")

        if self.secrets.target_secret != OPERATOR_OAUTH_SECRET:
            problems.append(
                f"secrets.target_secret 은 '{OPERATOR_OAUTH_SECRET}' 이어야 합니다 "
                f"(Tailscale Operator 가 마운트하는 시크릿): '{self.secrets.target_secret}'"
            )

        if not DURATION_RE.match(str(self.secrets.refresh_interval)):
            problems.append(f"secrets.refresh_interval 형식 오류: '{self.secrets.refresh_interval}'")

        if bool(self.tailscale.oauth_client_id) != bool(self.tailscale.oauth_client_secret):
            problems.append("OAuth client id 와 secret 은 함께 설정해야 합니다")

        timeout = self.agent.ready_timeout
        if isinstance(timeout, bool) or not isinstance(timeout, int):
            problems.append(f"agent.ready_timeout 은 정수여야 합니다: '{timeout}'")
        elif timeout <= 0:
            problems.append("agent.ready_timeout 은 0보다 커야 합니다")

        interval = self.agent.poll_interval
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval < 0:
            problems.append(f"agent.poll_interval 은 0 이상의 숫자여야 합니다: '{interval}'")

        return problems

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {
            'gcp': asdict(self.gcp),
            'cluster': asdict(self.cluster),
            'secrets': asdict(self.secrets),
            'tailscale': asdict(self.tailscale),
            'helm': asdict(self.helm),
            'agent': asdict(self.agent),
        }

    def save(self, path: Optional[str] = None, include_credentials: bool = False):
        """설정 파일 저장 (기본적으로 OAuth 자격 증명은 제외)"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = self.to_dict()
        if not include_credentials:
            data['tailscale']['oauth_client_id'] = ""
            data['tailscale']['oauth_client_secret'] = ""

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# TS GKE Bootstrap Configuration File
# 환경 변수(PROJECT_ID, CLUSTER_NAME, CLUSTER_LOCATION, NAMESPACE, KSA_NAME,
# OAUTH_CLIENT_ID, OAUTH_CLIENT_SECRET)가 설정되어 있으면 아래 값보다 우선합니다.

# GCP 프로젝트
gcp:
  project_id: "my-gcp-project"
  project_number: ""  # 비워두면 gcloud projects describe 로 조회
  enable_apis: true

# GKE 클러스터
cluster:
  name: "tailscale-gke"
  location: "us-central1"
  autopilot: true  # false면 Standard 클러스터 (workload pool 활성화)
  create: true     # false면 기존 클러스터 사용
  num_nodes: 1
  machine_type: "e2-standard-2"
  release_channel: "regular"

# External Secrets Operator / Secret Manager
secrets:
  eso_namespace: "external-secrets"
  service_account: "external-secrets"
  store_name: "gcp-secret-store"
  external_secret_name: "operator-oauth"
  target_secret: "operator-oauth"
  refresh_interval: "1h"
  client_id_key: "tailscale-oauth-client-id"
  client_secret_key: "tailscale-oauth-client-secret"
  store_service_account: ""  # 비워두면 ESO 컨트롤러 ID 사용, 설정하면 tailscale 네임스페이스에 KSA 생성

# Tailscale Operator
tailscale:
  namespace: "tailscale"
  # OAuth 자격 증명은 파일 대신 OAUTH_CLIENT_ID / OAUTH_CLIENT_SECRET 환경 변수 사용 권장
  oauth_client_id: ""
  oauth_client_secret: ""
  hostname: "tailscale-operator"
  api_server_proxy: false
  tags:
    - "tag:k8s-operator"

# Helm 차트
helm:
  eso_version: ""        # 비워두면 최신 버전
  tailscale_version: ""  # 비워두면 최신 버전
  timeout: "5m"

# 에이전트
agent:
  log_dir: "/var/log/ts-gke-bootstrap"
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
  ready_timeout: 60
  poll_interval: 5
  rollback_on_failure: true
  idempotent: true
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
