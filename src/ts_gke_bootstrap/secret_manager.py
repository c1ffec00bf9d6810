"""
Google Secret Manager 모듈
Tailscale OAuth 자격 증명 저장 및 Workload Identity IAM 바인딩
"""

import json
import subprocess
from typing import Tuple, Optional, Dict, List
from rich.console import Console
from .logger import get_logger

console = Console()

ACCESSOR_ROLE = "roles/secretmanager.secretAccessor"


class SecretManagerClient:
    """gcloud 기반 Secret Manager 관리 클래스

    시크릿 값은 항상 stdin 으로 전달하며 명령행 인자나 로그에 남기지 않습니다.
    """

    def __init__(self, config: Dict, debug: bool = False):
        self.config = config
        self.debug = debug
        self.logger = get_logger()
        self.project_id = config.get("gcp", {}).get("project_id", "")
        secrets = config.get("secrets", {})
        self.client_id_key = secrets.get("client_id_key", "tailscale-oauth-client-id")
        self.client_secret_key = secrets.get("client_secret_key", "tailscale-oauth-client-secret")
        tailscale = config.get("tailscale", {})
        self.oauth_client_id = tailscale.get("oauth_client_id", "")
        self.oauth_client_secret = tailscale.get("oauth_client_secret", "")
        self.created_secrets: List[str] = []
        self.added_bindings: List[Tuple[str, str]] = []

    @property
    def secret_names(self) -> List[str]:
        return [self.client_id_key, self.client_secret_key]

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

    def create_secret_command(self, name: str) -> List[str]:
        return [
            "gcloud", "secrets", "create", name,
            "--project", self.project_id,
            "--replication-policy", "automatic",
            "--data-file", "-",
        ]

    def add_version_command(self, name: str) -> List[str]:
        return [
            "gcloud", "secrets", "versions", "add", name,
            "--project", self.project_id,
            "--data-file", "-",
        ]

    def binding_command(self, name: str, member: str, remove: bool = False) -> List[str]:
        action = "remove-iam-policy-binding" if remove else "add-iam-policy-binding"
        return [
            "gcloud", "secrets", action, name,
            "--project", self.project_id,
            "--role", ACCESSOR_ROLE,
            "--member", member,
        ]

    def secret_exists(self, name: str) -> bool:
        """시크릿 존재 여부 확인"""
        result = self._run([
            "gcloud", "secrets", "describe", name,
            "--project", self.project_id,
            "--format", "value(name)",
        ])
        exists = result.returncode == 0
        self.logger.debug(f"Secret {name} exists: {exists}")
        return exists

    def upsert_secret(self, name: str, value: str) -> Tuple[bool, str]:
        """시크릿 생성 또는 새 버전 추가"""
        if not value:
            return False, f"{name}: 빈 값은 저장할 수 없습니다"

        try:
            if self.secret_exists(name):
                self.logger.info(f"Adding new version to secret {name}")
                result = self._run(self.add_version_command(name), input_data=value)
                action = "버전 추가"
            else:
                self.logger.info(f"Creating secret {name}")
                result = self._run(self.create_secret_command(name), input_data=value)
                action = "생성"
                if result.returncode == 0:
                    self.created_secrets.append(name)
        except subprocess.TimeoutExpired:
            self.logger.error(f"Timed out writing secret {name}")
            return False, f"{name}: 타임아웃"

        if result.returncode != 0:
            self.logger.error(f"Failed to write secret {name}: {result.stderr}")
            return False, f"{name}: {result.stderr.strip()}"

        console.print(f"  [green]✓[/green] {name}: {action}")
        return True, action

    def store_oauth_credentials(self) -> Tuple[bool, str]:
        """Tailscale OAuth client id/secret 을 Secret Manager 에 저장

        자격 증명이 주어지지 않은 경우 두 시크릿이 이미 존재하면 성공으로 처리합니다.
        """
        console.print("\n[bold cyan]Secret Manager 에 OAuth 자격 증명 저장...[/bold cyan]\n")
        self.logger.info("Storing Tailscale OAuth credentials in Secret Manager...")

        if not self.oauth_client_id or not self.oauth_client_secret:
            missing = [name for name in self.secret_names if not self.secret_exists(name)]
            if missing:
                error_msg = (
                    f"OAuth 자격 증명이 없고 Secret Manager 에도 없습니다: {', '.join(missing)} "
                    "(OAUTH_CLIENT_ID / OAUTH_CLIENT_SECRET 설정 필요)"
                )
                self.logger.error(error_msg)
                return False, error_msg

            console.print("[green]✓ 기존 시크릿을 사용합니다.[/green]")
            self.logger.info("No credentials supplied, using existing secrets")
            return True, "기존 시크릿 사용"

        for name, value in (
            (self.client_id_key, self.oauth_client_id),
            (self.client_secret_key, self.oauth_client_secret),
        ):
            success, msg = self.upsert_secret(name, value)
            if not success:
                return False, msg

        self.logger.info("OAuth credentials stored")
        return True, "저장 완료"

    def has_binding(self, name: str, member: str) -> bool:
        """시크릿 IAM 정책에 바인딩이 이미 있는지 확인"""
        result = self._run([
            "gcloud", "secrets", "get-iam-policy", name,
            "--project", self.project_id,
            "--format", "json",
        ])
        if result.returncode != 0 or not result.stdout.strip():
            return False

        try:
            policy = json.loads(result.stdout)
        except json.JSONDecodeError:
            self.logger.warning(f"Unparseable IAM policy for {name}")
            return False

        for binding in policy.get("bindings", []):
            if binding.get("role") == ACCESSOR_ROLE and member in binding.get("members", []):
                return True
        return False

    def grant_accessor(self, member: str) -> Tuple[bool, str]:
        """각 시크릿에 secretAccessor 역할 부여 (idempotent)"""
        console.print("\n[bold cyan]Workload Identity IAM 바인딩...[/bold cyan]\n")
        self.logger.info(f"Granting {ACCESSOR_ROLE} to {member}")

        for name in self.secret_names:
            if self.has_binding(name, member):
                console.print(f"  [green]✓[/green] {name}: 이미 바인딩됨")
                self.logger.info(f"Binding on {name} already present (idempotent)")
                continue

            try:
                result = self._run(self.binding_command(name, member))
            except subprocess.TimeoutExpired:
                self.logger.error(f"Timed out binding IAM policy on {name}")
                return False, f"{name}: IAM 바인딩 타임아웃"

            if result.returncode != 0:
                self.logger.error(f"IAM binding failed on {name}: {result.stderr}")
                return False, f"{name}: {result.stderr.strip()}"

            self.added_bindings.append((name, member))
            console.print(f"  [green]✓[/green] {name} ← {ACCESSOR_ROLE}")

        console.print(
            "[yellow]참고: IAM 변경 사항이 전파되기까지 수 분이 걸릴 수 있습니다.[/yellow]"
        )
        return True, "바인딩 완료"

    def delete_secret(self, name: str) -> Tuple[bool, str]:
        result = self._run([
            "gcloud", "secrets", "delete", name,
            "--project", self.project_id,
            "--quiet",
        ])
        if result.returncode != 0:
            self.logger.error(f"Failed to delete secret {name}: {result.stderr}")
            return False, result.stderr.strip()
        self.logger.info(f"Secret {name} deleted")
        return True, "삭제 완료"

    def rollback(self) -> bool:
        """이번 실행에서 추가한 바인딩과 생성한 시크릿 제거"""
        self.logger.info("Rolling back Secret Manager changes...")
        console.print("\n[yellow]Secret Manager 롤백 중...[/yellow]")

        ok = True
        try:
            for name, member in reversed(self.added_bindings):
                if name in self.created_secrets:
                    continue  # 시크릿 삭제 시 바인딩도 함께 제거됨
                result = self._run(self.binding_command(name, member, remove=True))
                if result.returncode != 0:
                    self.logger.warning(f"Failed to remove binding on {name}: {result.stderr}")
                    ok = False

            for name in reversed(self.created_secrets):
                success, _ = self.delete_secret(name)
                ok = ok and success
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.error(f"Secret Manager rollback failed: {e}")
            ok = False

        self.added_bindings.clear()
        self.created_secrets.clear()

        if ok:
            console.print("[green]✓ Secret Manager 롤백 완료[/green]")
        else:
            console.print("[red]✗ Secret Manager 롤백 중 일부 실패[/red]")
        return ok
