#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
TS GKE Bootstrap - 런북 자동 생성기

설정과 (선택적으로) 실행 로그를 기반으로 다음을 자동 생성합니다:
- 실행 런북 (Markdown)
- 재실행 스크립트 (Shell)
- 적용 매니페스트 (YAML)
- 트러블슈팅 가이드
"""

import re
import shlex
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Optional
from jinja2 import Template

from .config import Config
from .logger import get_logger
from .gke import GKEManager
from .secret_manager import SecretManagerClient
from .helm import HelmManager
from .eso import ExternalSecretsManager
from .manifests import render_bundle

MANIFEST_FILE = "manifests.yaml"

LOG_LINE_RE = re.compile(
    r'(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) - ([\w.]+) - (\w+) - (.+)'
)

# 로그 메시지 패턴 -> (원인, 해결 방법)
KNOWN_ISSUES = [
    (
        re.compile(r'PERMISSION_DENIED|permission denied|403', re.IGNORECASE),
        "IAM 권한 부족 또는 전파 지연",
        "IAM 바인딩 후 전파까지 수 분이 걸릴 수 있습니다. 잠시 후 `ts-gke-bootstrap up` 을 다시 실행하세요.",
    ),
    (
        re.compile(r'no matches for kind|CRD', re.IGNORECASE),
        "ESO CRD 미설치",
        "`helm status external-secrets -n <namespace>` 로 ESO 설치 상태를 확인하세요.",
    ),
    (
        re.compile(r'SecretSyncedError|not Ready within', re.IGNORECASE),
        "ExternalSecret 동기화 실패",
        "`kubectl describe externalsecret <name> -n <namespace>` 로 이벤트를 확인하고 "
        "Secret Manager 키 이름과 IAM 바인딩을 점검하세요.",
    ),
    (
        re.compile(r'operator-oauth', re.IGNORECASE),
        "operator-oauth 시크릿 없음",
        "Tailscale Operator 는 operator-oauth 시크릿이 있어야 시작됩니다. ExternalSecret 상태를 먼저 확인하세요.",
    ),
    (
        re.compile(r'NotFound|not found', re.IGNORECASE),
        "리소스 없음",
        "프로젝트 ID, 클러스터 이름/위치, 네임스페이스 설정을 확인하세요.",
    ),
]


def build_plan(config: Config) -> List[Dict]:
    """설정으로부터 전체 실행 단계 목록 생성

    Returns:
        List[Dict]: title, command, stdin_env(선택) 를 가진 단계 목록
    """
    data = config.to_dict()
    project_number = config.gcp.project_number or "${PROJECT_NUMBER}"
    member = config.store_principal(project_number)

    gke = GKEManager(data)
    secret_manager = SecretManagerClient(data)
    helm = HelmManager(data)
    eso = ExternalSecretsManager(data)

    stdin_envs = {
        config.secrets.client_id_key: "OAUTH_CLIENT_ID",
        config.secrets.client_secret_key: "OAUTH_CLIENT_SECRET",
    }

    plan = [{"title": title, "command": cmd} for title, cmd in gke.planned_commands()]

    for name in secret_manager.secret_names:
        plan.append({
            "title": f"시크릿 생성: {name}",
            "command": secret_manager.create_secret_command(name),
            "fallback": secret_manager.add_version_command(name),
            "stdin_env": stdin_envs[name],
        })
    for name in secret_manager.secret_names:
        plan.append({
            "title": f"IAM 바인딩: {name}",
            "command": secret_manager.binding_command(name, member),
        })

    plan.extend({"title": title, "command": cmd} for title, cmd in helm.planned_eso_commands())
    plan.extend({"title": title, "command": cmd} for title, cmd in eso.planned_commands(MANIFEST_FILE))
    plan.extend({"title": title, "command": cmd} for title, cmd in helm.planned_tailscale_commands())

    return plan


def format_command(step: Dict) -> str:
    """쉘에서 실행 가능한 한 줄 명령으로 변환"""
    command = _unquote_project_number(shlex.join(step["command"]))
    env = step.get("stdin_env")
    if not env:
        return command

    line = f'printf \'%s\' "${env}" | {command}'
    fallback = step.get("fallback")
    if fallback:
        line += f' \\\n  || printf \'%s\' "${env}" | {shlex.join(fallback)}'
    return line


def _unquote_project_number(command: str) -> str:
    # shlex 는 ${PROJECT_NUMBER} 를 작은따옴표로 감싸므로 확장되도록 큰따옴표로 교체
    return re.sub(r"'([^']*\$\{PROJECT_NUMBER\}[^']*)'", r'"\1"', command)


class DocGenerator:
    """설정/실행 로그 기반 문서 생성기"""

    def __init__(self, config: Config, output_dir: str = "./docs/generated",
                 log_file: Optional[str] = None):
        """
        Args:
            config: 설정 객체
            output_dir: 출력 디렉토리
            log_file: 분석할 실행 로그 파일 (선택)
        """
        self.config = config
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = Path(log_file) if log_file else None
        self.logger = get_logger()

        self.plan = build_plan(config)
        self.execution_steps = []
        self.errors = []
        self.warnings = []

    def parse_log(self):
        """로그 파일을 파싱하여 실행 단계, 오류, 경고 추출"""
        if self.log_file is None:
            return

        self.logger.info(f"Parsing log file: {self.log_file}")

        if not self.log_file.exists():
            raise FileNotFoundError(f"로그 파일을 찾을 수 없습니다: {self.log_file}")

        with open(self.log_file, "r", encoding="utf-8") as f:
            for line in f:
                self._parse_line(line)

        self.logger.info(
            f"{len(self.execution_steps)} steps, {len(self.errors)} errors, {len(self.warnings)} warnings"
        )

    def _parse_line(self, line: str):
        match = LOG_LINE_RE.match(line)
        if not match:
            return

        timestamp, _name, level, message = match.groups()

        if message.startswith("Step "):
            self.execution_steps.append({
                "timestamp": timestamp,
                "action": message[len("Step "):],
                "level": level
            })

        if level in ("ERROR", "CRITICAL"):
            self.errors.append({"timestamp": timestamp, "message": message})
        elif level == "WARNING":
            self.warnings.append({"timestamp": timestamp, "message": message})

    @staticmethod
    def diagnose(message: str) -> Optional[Dict]:
        """오류 메시지에 해당하는 알려진 원인/해결 방법 반환"""
        for pattern, cause, fix in KNOWN_ISSUES:
            if pattern.search(message):
                return {"cause": cause, "fix": fix}
        return None

    def generate_manual(self) -> Path:
        """실행 런북 생성

        Returns:
            Path: 생성된 런북 파일 경로
        """
        self.logger.info("Generating runbook...")

        manual_template = """# GKE + External Secrets + Tailscale Operator 런북
## 자동 생성

**생성 시간**: {{ generation_time }}
**프로젝트**: {{ config.gcp.project_id }}
**클러스터**: {{ config.cluster.name }} ({{ config.cluster.location }})

---

## 구성 요약

| 항목 | 값 |
|------|-----|
| ESO 네임스페이스 | {{ config.secrets.eso_namespace }} |
| ESO 서비스 어카운트 | {{ config.secrets.service_account }} |
| Tailscale 네임스페이스 | {{ config.tailscale.namespace }} |
| SecretStore | {{ config.secrets.store_name }} |
| ExternalSecret | {{ config.secrets.external_secret_name }} → {{ config.secrets.target_secret }} |
| 동기화 주기 | {{ config.secrets.refresh_interval }} |
| WIF principal | `{{ principal }}` |

---

## 실행 단계

{% for step in plan %}
### {{ loop.index }}. {{ step.title }}

```bash
{{ step.line }}
```

{% endfor %}

---

## 적용 매니페스트

```yaml
{{ manifests }}```

---

## 확인

- ExternalSecret 이 {{ config.agent.ready_timeout }}초 안에 Ready 상태가 되어야 합니다:
  `kubectl get externalsecret {{ config.secrets.external_secret_name }} -n {{ config.tailscale.namespace }}`
- Tailscale Operator 파드가 실행 중이어야 합니다:
  `kubectl get pods -n {{ config.tailscale.namespace }}`
- 전체 점검: `ts-gke-bootstrap health`

{% if steps %}
---

## 최근 실행 기록

{% for step in steps %}
- [{{ step.timestamp }}] {{ step.action }}
{% endfor %}
{% endif %}
"""

        content = Template(manual_template).render(
            generation_time=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            config=self.config,
            principal=self.config.store_principal(self.config.gcp.project_number or "${PROJECT_NUMBER}"),
            plan=[dict(step, line=format_command(step)) for step in self.plan],
            manifests=render_bundle(self.config),
            steps=self.execution_steps,
        )

        output_file = self.output_dir / "RUNBOOK.md"
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(content)

        self.logger.info(f"Runbook generated: {output_file}")
        return output_file

    def generate_manifests(self) -> Path:
        """재실행 스크립트가 참조하는 매니페스트 파일 생성"""
        output_file = self.output_dir / MANIFEST_FILE
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(render_bundle(self.config))
        return output_file

    def generate_script(self) -> Path:
        """재실행 스크립트 생성

        Returns:
            Path: 생성된 스크립트 파일 경로
        """
        self.logger.info("Generating replay script...")

        script_template = """#!/usr/bin/env bash
# TS GKE Bootstrap - 재실행 스크립트
# 자동 생성: {{ generation_time }}
#
# 필요한 환경 변수: OAUTH_CLIENT_ID, OAUTH_CLIENT_SECRET

set -euo pipefail

cd "$(dirname "$0")"

: "${OAUTH_CLIENT_ID:?OAUTH_CLIENT_ID 환경 변수가 필요합니다}"
: "${OAUTH_CLIENT_SECRET:?OAUTH_CLIENT_SECRET 환경 변수가 필요합니다}"
{% if needs_project_number %}
PROJECT_NUMBER="${PROJECT_NUMBER:-$(gcloud projects describe {{ project_id }} --format='value(projectNumber)')}"
{% endif %}
{% for step in plan %}
echo "==> {{ loop.index }}. {{ step.title }}"
{{ step.line }}
{% endfor %}
echo "완료. 상태 확인: kubectl get pods -n {{ namespace }}"
"""

        content = Template(script_template).render(
            generation_time=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            needs_project_number=not self.config.gcp.project_number,
            project_id=shlex.quote(self.config.gcp.project_id),
            plan=[dict(step, line=format_command(step)) for step in self.plan],
            namespace=self.config.tailscale.namespace,
        )

        output_file = self.output_dir / "bootstrap.sh"
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(content)

        output_file.chmod(0o755)

        self.logger.info(f"Replay script generated: {output_file}")
        return output_file

    def generate_troubleshooting(self) -> Path:
        """트러블슈팅 가이드 생성

        Returns:
            Path: 생성된 가이드 파일 경로
        """
        self.logger.info("Generating troubleshooting guide...")

        guide_template = """# 트러블슈팅 가이드

**생성 시간**: {{ generation_time }}

{% if errors %}
## 실행 중 발생한 오류

{% for error in errors %}
### {{ loop.index }}. {{ error.message }}

- **시간**: {{ error.timestamp }}
{% if error.diagnosis %}
- **추정 원인**: {{ error.diagnosis.cause }}
- **해결 방법**: {{ error.diagnosis.fix }}
{% endif %}

{% endfor %}
{% endif %}

{% if warnings %}
## 경고 사항

{% for warning in warnings %}
- [{{ warning.timestamp }}] {{ warning.message }}
{% endfor %}
{% endif %}

## 알려진 문제

{% for issue in known_issues %}
### {{ issue.cause }}

{{ issue.fix }}

{% endfor %}

## 유용한 명령어

```bash
kubectl get secretstore,externalsecret -n {{ namespace }}
kubectl describe externalsecret {{ external_secret }} -n {{ namespace }}
kubectl logs -n {{ eso_namespace }} -l app.kubernetes.io/name=external-secrets
kubectl logs -n {{ namespace }} deploy/operator
ts-gke-bootstrap health
```
"""

        errors = [dict(error, diagnosis=self.diagnose(error["message"])) for error in self.errors]

        content = Template(guide_template).render(
            generation_time=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            errors=errors,
            warnings=self.warnings,
            known_issues=[{"cause": cause, "fix": fix} for _, cause, fix in KNOWN_ISSUES],
            namespace=self.config.tailscale.namespace,
            eso_namespace=self.config.secrets.eso_namespace,
            external_secret=self.config.secrets.external_secret_name,
        )

        output_file = self.output_dir / "TROUBLESHOOTING.md"
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(content)

        self.logger.info(f"Troubleshooting guide generated: {output_file}")
        return output_file

    def generate_all(self) -> Dict[str, Path]:
        """모든 문서 생성

        Returns:
            Dict[str, Path]: 생성된 파일 경로들
        """
        self.parse_log()

        return {
            "manual": self.generate_manual(),
            "manifests": self.generate_manifests(),
            "script": self.generate_script(),
            "troubleshooting": self.generate_troubleshooting(),
        }
