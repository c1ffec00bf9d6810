"""
GKE 클러스터 관리 모듈
클러스터 생성, 자격 증명 설정, API 활성화
idempotent 및 롤백 지원
"""

import shutil
import subprocess
from typing import Tuple, Optional, Dict, List
from rich.console import Console
from .logger import get_logger

console = Console()

REQUIRED_TOOLS = ["gcloud", "kubectl", "helm"]


class GKEManager:
    """GKE 클러스터 관리 클래스"""

    def __init__(self, config: Dict, debug: bool = False):
        self.config = config
        self.debug = debug
        self.logger = get_logger()
        gcp = config.get("gcp", {})
        cluster = config.get("cluster", {})
        self.project_id = gcp.get("project_id", "")
        self.project_number = gcp.get("project_number", "")
        self.enable_apis_flag = gcp.get("enable_apis", True)
        self.apis = gcp.get("apis", [])
        self.cluster_name = cluster.get("name", "")
        self.location = cluster.get("location", "")
        self.autopilot = cluster.get("autopilot", True)
        self.create = cluster.get("create", True)
        self.num_nodes = cluster.get("num_nodes", 1)
        self.machine_type = cluster.get("machine_type", "")
        self.release_channel = cluster.get("release_channel", "")
        self.idempotent = config.get("agent", {}).get("idempotent", True)
        self.original_state = None

    def _run(self, cmd: List[str], timeout: Optional[int] = 60) -> subprocess.CompletedProcess:
        self.logger.debug(f"Executing: {' '.join(cmd)}")
        return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)

    def save_state(self):
        """현재 상태 저장 (롤백용)"""
        try:
            self.original_state = {"cluster_exists": self.cluster_exists()}
            self.logger.debug(f"Saved GKE state: {self.original_state}")
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.error(f"Failed to save GKE state: {e}")

    def rollback(self) -> bool:
        """이번 실행에서 생성한 클러스터만 삭제"""
        self.logger.info("Rolling back GKE configuration...")
        console.print("\n[yellow]GKE 설정 롤백 중...[/yellow]")

        if not self.original_state:
            self.logger.warning("No saved state to rollback")
            return True

        if self.original_state.get("cluster_exists", True):
            self.logger.info("Cluster existed before this run, keeping it")
            console.print("[green]✓ 기존 클러스터 유지[/green]")
            return True

        success, msg = self.delete_cluster()
        if success:
            console.print("[green]✓ GKE 롤백 완료[/green]")
        else:
            console.print(f"[red]✗ GKE 롤백 실패: {msg}[/red]")
        return success

    def check_dependencies(self) -> Tuple[bool, list]:
        """필수 CLI 도구 확인"""
        console.print("\n[cyan]필수 CLI 도구 확인 중...[/cyan]\n")
        self.logger.info("Checking CLI dependencies...")

        missing = []
        for tool in REQUIRED_TOOLS:
            if shutil.which(tool):
                console.print(f"  [green]✓[/green] {tool}")
                self.logger.debug(f"{tool}: found")
            else:
                console.print(f"  [red]✗[/red] {tool}: 설치되지 않음")
                self.logger.warning(f"{tool}: not installed")
                missing.append(tool)

        if missing:
            console.print(f"\n[red]다음 도구가 설치되지 않았습니다: {', '.join(missing)}[/red]")
            self.logger.error(f"Missing dependencies: {', '.join(missing)}")
            return False, missing

        console.print("\n[green]✓ 모든 필수 도구가 설치되어 있습니다.[/green]")
        self.logger.info("All dependencies are installed")
        return True, []

    def enable_apis_command(self) -> List[str]:
        return ["gcloud", "services", "enable", *self.apis, "--project", self.project_id]

    def create_cluster_command(self) -> List[str]:
        if self.autopilot:
            # Autopilot 클러스터는 Workload Identity 가 항상 활성화됨
            cmd = [
                "gcloud", "container", "clusters", "create-auto", self.cluster_name,
                "--location", self.location,
                "--project", self.project_id,
            ]
        else:
            cmd = [
                "gcloud", "container", "clusters", "create", self.cluster_name,
                "--location", self.location,
                "--project", self.project_id,
                f"--workload-pool={self.project_id}.svc.id.goog",
                "--num-nodes", str(self.num_nodes),
                "--machine-type", self.machine_type,
            ]
        if self.release_channel:
            cmd.extend(["--release-channel", self.release_channel])
        return cmd

    def get_credentials_command(self) -> List[str]:
        return [
            "gcloud", "container", "clusters", "get-credentials", self.cluster_name,
            "--location", self.location,
            "--project", self.project_id,
        ]

    def delete_cluster_command(self) -> List[str]:
        return [
            "gcloud", "container", "clusters", "delete", self.cluster_name,
            "--location", self.location,
            "--project", self.project_id,
            "--quiet",
        ]

    def planned_commands(self) -> List[Tuple[str, List[str]]]:
        """실행 예정 명령어 목록 (dry-run / 문서 생성용)"""
        commands = []
        if self.enable_apis_flag and self.apis:
            commands.append(("GCP API 활성화", self.enable_apis_command()))
        if self.create:
            commands.append(("GKE 클러스터 생성", self.create_cluster_command()))
        commands.append(("클러스터 자격 증명 가져오기", self.get_credentials_command()))
        return commands

    def enable_apis(self) -> Tuple[bool, str]:
        """필요한 GCP API 활성화 (이미 활성화된 API 는 no-op)"""
        if not self.enable_apis_flag or not self.apis:
            return True, "건너뜀"

        console.print(f"[cyan]GCP API 활성화 중: {', '.join(self.apis)}[/cyan]")
        self.logger.info(f"Enabling APIs: {self.apis}")

        try:
            result = self._run(self.enable_apis_command(), timeout=300)
        except subprocess.TimeoutExpired:
            self.logger.error("Enabling APIs timed out")
            return False, "API 활성화 타임아웃"

        if result.returncode != 0:
            self.logger.error(f"Failed to enable APIs: {result.stderr}")
            return False, result.stderr.strip()

        console.print("[green]✓ API 활성화 완료[/green]")
        return True, "활성화 완료"

    def cluster_exists(self) -> bool:
        """클러스터 존재 여부 확인"""
        result = self._run([
            "gcloud", "container", "clusters", "describe", self.cluster_name,
            "--location", self.location,
            "--project", self.project_id,
            "--format", "value(name)",
        ])
        exists = result.returncode == 0 and result.stdout.strip() == self.cluster_name
        self.logger.debug(f"Cluster {self.cluster_name} exists: {exists}")
        return exists

    def create_cluster(self) -> Tuple[bool, str]:
        """GKE 클러스터 생성 (idempotent)"""
        console.print("\n[bold cyan]GKE 클러스터 준비...[/bold cyan]\n")
        self.logger.info(f"Preparing cluster {self.cluster_name} in {self.location}...")

        self.save_state()

        if self.idempotent and self.original_state and self.original_state.get("cluster_exists"):
            console.print(f"[green]✓ 클러스터가 이미 존재합니다: {self.cluster_name}[/green]")
            self.logger.info("Cluster already exists (idempotent)")
            return True, "이미 존재함"

        if not self.create:
            error_msg = f"클러스터가 존재하지 않습니다: {self.cluster_name} (cluster.create=false)"
            self.logger.error(error_msg)
            return False, error_msg

        cmd = self.create_cluster_command()
        console.print(f"[cyan]클러스터 생성 중 (수 분 소요)...[/cyan]")
        self.logger.info(f"Executing: {' '.join(cmd)}")

        try:
            result = self._run(cmd, timeout=1800)
        except subprocess.TimeoutExpired:
            error_msg = "클러스터 생성 타임아웃 (30분)"
            self.logger.error(error_msg)
            return False, error_msg

        if result.returncode != 0:
            console.print("[bold red]✗ 클러스터 생성 실패[/bold red]")
            console.print(result.stderr)
            self.logger.error(f"Cluster creation failed: {result.stderr}")
            return False, result.stderr.strip()

        console.print(f"[bold green]✓ 클러스터 생성 완료: {self.cluster_name}[/bold green]")
        self.logger.info("Cluster created")
        return True, "생성 완료"

    def get_credentials(self) -> Tuple[bool, str]:
        """kubeconfig 에 클러스터 자격 증명 등록"""
        self.logger.info("Fetching cluster credentials...")

        try:
            result = self._run(self.get_credentials_command(), timeout=120)
        except subprocess.TimeoutExpired:
            self.logger.error("get-credentials timed out")
            return False, "자격 증명 타임아웃"

        if result.returncode != 0:
            self.logger.error(f"get-credentials failed: {result.stderr}")
            return False, result.stderr.strip()

        console.print("[green]✓ kubeconfig 설정 완료[/green]")
        self.logger.info("Cluster credentials configured")
        return True, "설정 완료"

    def get_project_number(self) -> Optional[str]:
        """WIF principal 에 필요한 프로젝트 번호 조회"""
        if self.project_number:
            return str(self.project_number)

        result = self._run([
            "gcloud", "projects", "describe", self.project_id,
            "--format", "value(projectNumber)",
        ])
        if result.returncode != 0 or not result.stdout.strip():
            self.logger.error(f"Failed to resolve project number: {result.stderr}")
            return None

        self.project_number = result.stdout.strip()
        self.logger.debug(f"Project number: {self.project_number}")
        return self.project_number

    def delete_cluster(self) -> Tuple[bool, str]:
        """클러스터 삭제"""
        console.print(f"[yellow]클러스터 삭제 중: {self.cluster_name}[/yellow]")
        self.logger.info(f"Deleting cluster {self.cluster_name}...")

        try:
            result = self._run(self.delete_cluster_command(), timeout=1800)
        except subprocess.TimeoutExpired:
            self.logger.error("Cluster deletion timed out")
            return False, "클러스터 삭제 타임아웃"

        if result.returncode != 0:
            self.logger.error(f"Cluster deletion failed: {result.stderr}")
            return False, result.stderr.strip()

        self.logger.info("Cluster deleted")
        return True, "삭제 완료"
