"""
Helm 차트 설치 모듈
External Secrets Operator 및 Tailscale Operator 설치/제거
"""

import subprocess
from typing import Tuple, Optional, Dict, List
from rich.console import Console
from .logger import get_logger

console = Console()


class HelmManager:
    """Helm 릴리스 관리 클래스"""

    def __init__(self, config: Dict, debug: bool = False):
        self.config = config
        self.debug = debug
        self.logger = get_logger()
        self.helm = config.get("helm", {})
        self.secrets = config.get("secrets", {})
        self.tailscale = config.get("tailscale", {})
        self.eso_namespace = self.secrets.get("eso_namespace", "external-secrets")
        self.ts_namespace = self.tailscale.get("namespace", "tailscale")
        self.timeout = self.helm.get("timeout", "5m")
        self.installed_releases: List[Tuple[str, str]] = []

    def _run(self, cmd: List[str], timeout: Optional[int] = 600) -> subprocess.CompletedProcess:
        self.logger.debug(f"Executing: {' '.join(cmd)}")
        return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)

    def repo_commands(self) -> List[List[str]]:
        return [
            ["helm", "repo", "add", self.helm["eso_repo_name"], self.helm["eso_repo_url"], "--force-update"],
            ["helm", "repo", "add", self.helm["tailscale_repo_name"], self.helm["tailscale_repo_url"], "--force-update"],
            ["helm", "repo", "update"],
        ]

    def eso_install_command(self) -> List[str]:
        cmd = [
            "helm", "upgrade", "--install", self.helm["eso_release"], self.helm["eso_chart"],
            "--namespace", self.eso_namespace,
            "--create-namespace",
            "--set", "installCRDs=true",
            "--set", f"serviceAccount.name={self.secrets.get('service_account', 'external-secrets')}",
            "--wait",
            "--timeout", self.timeout,
        ]
        if self.helm.get("eso_version"):
            cmd.extend(["--version", str(self.helm["eso_version"])])
        return cmd

    def tailscale_install_command(self) -> List[str]:
        # OAuth 값을 넘기지 않으면 차트는 ESO 가 만든 operator-oauth 시크릿을 마운트함
        cmd = [
            "helm", "upgrade", "--install", self.helm["tailscale_release"], self.helm["tailscale_chart"],
            "--namespace", self.ts_namespace,
            "--create-namespace",
            "--wait",
            "--timeout", self.timeout,
        ]
        if self.tailscale.get("hostname"):
            cmd.extend(["--set-string", f"operatorConfig.hostname={self.tailscale['hostname']}"])
        tags = self.tailscale.get("tags") or []
        if tags:
            # helm --set 리스트 문법: {a,b}
            cmd.extend(["--set-string", "operatorConfig.defaultTags={" + ",".join(tags) + "}"])
        if self.tailscale.get("api_server_proxy"):
            cmd.extend(["--set-string", "apiServerProxyConfig.mode=true"])
        if self.helm.get("tailscale_version"):
            cmd.extend(["--version", str(self.helm["tailscale_version"])])
        return cmd

    def uninstall_command(self, release: str, namespace: str) -> List[str]:
        return ["helm", "uninstall", release, "--namespace", namespace, "--wait"]

    def planned_eso_commands(self) -> List[Tuple[str, List[str]]]:
        commands = [("Helm 저장소 추가/갱신", cmd) for cmd in self.repo_commands()]
        commands.append(("External Secrets Operator 설치", self.eso_install_command()))
        return commands

    def planned_tailscale_commands(self) -> List[Tuple[str, List[str]]]:
        return [("Tailscale Operator 설치", self.tailscale_install_command())]

    def add_repos(self) -> Tuple[bool, str]:
        """차트 저장소 등록 및 인덱스 갱신"""
        self.logger.info("Adding Helm repositories...")
        for cmd in self.repo_commands():
            try:
                result = self._run(cmd, timeout=120)
            except subprocess.TimeoutExpired:
                self.logger.error(f"Timed out: {' '.join(cmd)}")
                return False, "Helm 저장소 타임아웃"

            if result.returncode != 0:
                self.logger.error(f"Helm repo command failed: {result.stderr}")
                return False, result.stderr.strip()

        console.print("[green]✓ Helm 저장소 준비 완료[/green]")
        return True, "저장소 준비 완료"

    def release_exists(self, release: str, namespace: str) -> bool:
        """릴리스 설치 여부 확인"""
        result = self._run(["helm", "status", release, "--namespace", namespace], timeout=60)
        exists = result.returncode == 0
        self.logger.debug(f"Release {namespace}/{release} exists: {exists}")
        return exists

    def _install(self, label: str, release: str, namespace: str, cmd: List[str]) -> Tuple[bool, str]:
        console.print(f"\n[bold cyan]{label} 설치 중...[/bold cyan]\n")
        self.logger.info(f"Installing release {namespace}/{release}...")

        try:
            existed = self.release_exists(release, namespace)
            result = self._run(cmd, timeout=None)
        except FileNotFoundError:
            self.logger.error("helm binary not found")
            return False, "helm 이 설치되지 않음"

        if result.returncode != 0:
            console.print(f"[bold red]✗ {label} 설치 실패[/bold red]")
            console.print(result.stderr)
            self.logger.error(f"Helm install of {release} failed: {result.stderr}")
            return False, result.stderr.strip()

        if not existed:
            self.installed_releases.append((release, namespace))

        action = "업그레이드" if existed else "설치"
        console.print(f"[green]✓ {label} {action} 완료[/green]")
        self.logger.info(f"Release {namespace}/{release} {'upgraded' if existed else 'installed'}")
        return True, f"{action} 완료"

    def install_eso(self) -> Tuple[bool, str]:
        """External Secrets Operator 설치 (upgrade --install 로 idempotent)"""
        return self._install(
            "External Secrets Operator",
            self.helm["eso_release"],
            self.eso_namespace,
            self.eso_install_command(),
        )

    def install_tailscale_operator(self) -> Tuple[bool, str]:
        """Tailscale Operator 설치 (upgrade --install 로 idempotent)"""
        return self._install(
            "Tailscale Operator",
            self.helm["tailscale_release"],
            self.ts_namespace,
            self.tailscale_install_command(),
        )

    def uninstall(self, release: str, namespace: str) -> Tuple[bool, str]:
        """릴리스 제거 (없는 릴리스는 성공으로 처리)"""
        if not self.release_exists(release, namespace):
            return True, "설치되지 않음"

        self.logger.info(f"Uninstalling release {namespace}/{release}...")
        result = self._run(self.uninstall_command(release, namespace))
        if result.returncode != 0:
            self.logger.error(f"Helm uninstall of {release} failed: {result.stderr}")
            return False, result.stderr.strip()

        console.print(f"[green]✓ {release} 제거 완료[/green]")
        return True, "제거 완료"

    def rollback(self, release: Optional[str] = None) -> bool:
        """이번 실행에서 새로 설치한 릴리스만 역순으로 제거

        Args:
            release: 지정하면 해당 릴리스만 제거하고 나머지는 유지
        """
        targets = [
            (name, namespace) for name, namespace in self.installed_releases
            if release is None or name == release
        ]
        if not targets:
            return True

        self.logger.info(f"Rolling back Helm releases: {', '.join(name for name, _ in targets)}")
        console.print("\n[yellow]Helm 릴리스 롤백 중...[/yellow]")

        ok = True
        for name, namespace in reversed(targets):
            try:
                success, _ = self.uninstall(name, namespace)
            except (OSError, subprocess.SubprocessError) as e:
                self.logger.error(f"Failed to uninstall {name}: {e}")
                success = False
            ok = ok and success
            self.installed_releases.remove((name, namespace))

        return ok
