"""
CLI 메인 인터페이스
Click 및 Rich 기반 사용자 친화적 CLI
"""

import sys
import subprocess
import click
from typing import Dict, List, Optional
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.syntax import Syntax
from rich.prompt import Confirm
from . import __version__
from .config import Config
from .logger import init_logger, get_logger
from .network import NetworkChecker
from .gke import GKEManager
from .secret_manager import SecretManagerClient
from .helm import HelmManager
from .eso import ExternalSecretsManager
from .manifests import ManifestError, render_bundle, write_bundle
from .monitor import HealthChecker, ClusterMonitor, generate_health_summary
from .doc_generator import DocGenerator, build_plan, format_command

console = Console()


def mask(value: str) -> str:
    """자격 증명 마스킹"""
    if not value:
        return "[red]미설정[/red]"
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}****{value[-2:]}"


class BootstrapOrchestrator:
    """GKE / Secret Manager / ESO / Tailscale Operator 설치 오케스트레이터"""

    def __init__(self, config: Config, debug: bool = False, skip_preflight: bool = False):
        self.config = config
        self.debug = debug
        self.skip_preflight = skip_preflight
        self.logger = get_logger()
        self.network_checker = NetworkChecker(debug)
        self.gke_manager: Optional[GKEManager] = None
        self.secret_manager: Optional[SecretManagerClient] = None
        self.helm_manager: Optional[HelmManager] = None
        self.eso_manager: Optional[ExternalSecretsManager] = None
        self.execution_log: List[Dict] = []

    def log_step(self, step: str, status: str, message: str = ""):
        """실행 단계 기록 (doc_generator 가 'Step ' 접두어로 파싱)"""
        self.execution_log.append({
            "step": step,
            "status": status,
            "message": message
        })
        if status == "success":
            self.logger.info(f"Step {step}: {status} - {message}")
        else:
            self.logger.error(f"Step {step}: {status} - {message}")

    def show_summary(self):
        """실행 결과 요약 표시"""
        console.print("\n" + "=" * 60)
        console.print("[bold]실행 결과 요약[/bold]")
        console.print("=" * 60 + "\n")

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("단계", style="cyan", width=30)
        table.add_column("상태", width=10)
        table.add_column("메시지", width=30)

        for log in self.execution_log:
            status_icon = "✓" if log["status"] == "success" else "✗"
            status_color = "green" if log["status"] == "success" else "red"
            table.add_row(
                log["step"],
                f"[{status_color}]{status_icon}[/{status_color}]",
                log["message"][:30] if log["message"] else ""
            )

        console.print(table)

        log_files = self.logger.get_log_files()
        console.print("\n[bold]로그 파일:[/bold]")
        console.print(f"  Main: {log_files['main_log']}")
        console.print(f"  Error: {log_files['error_log']}")

    def rollback_all(self):
        """생성 역순으로 전체 롤백"""
        console.print("\n[bold yellow]오류 발생! 롤백을 시작합니다...[/bold yellow]\n")
        self.logger.error("Error occurred, starting rollback...")

        # ESO 리소스는 ESO 릴리스(CRD)가 제거되기 전에 삭제해야 함
        if self.helm_manager:
            self.helm_manager.rollback(self.config.helm.tailscale_release)

        if self.eso_manager:
            self.eso_manager.rollback()

        if self.helm_manager:
            self.helm_manager.rollback()

        if self.secret_manager:
            self.secret_manager.rollback()

        if self.gke_manager:
            self.gke_manager.rollback()

        console.print("\n[yellow]롤백 완료[/yellow]")
        self.logger.info("Rollback completed")

    def _fail(self, step: str, message: str) -> bool:
        self.log_step(step, "failed", message)
        if self.config.agent.rollback_on_failure:
            self.rollback_all()
        self.show_summary()
        return False

    def _step(self, step: str, result) -> bool:
        success, message = result
        if not success:
            return self._fail(step, message)
        self.log_step(step, "success", message)
        return True

    def run(self) -> bool:
        """메인 실행 로직"""
        try:
            console.print(Panel.fit(
                "[bold cyan]TS GKE Bootstrap[/bold cyan]\n"
                "GKE 클러스터에 External Secrets Operator 와 Tailscale Operator 를 설치합니다.",
                border_style="cyan"
            ))

            self.logger.info("=== Bootstrap started ===")
            data = self.config.to_dict()

            # 1. 의존성 확인
            self.gke_manager = GKEManager(data, self.debug)
            deps_ok, missing = self.gke_manager.check_dependencies()
            if not deps_ok:
                return self._fail("의존성 확인", f"누락: {', '.join(missing)}")
            self.log_step("의존성 확인", "success", "완료")

            # 2. 네트워크 사전 점검
            if self.skip_preflight:
                self.log_step("네트워크 사전 점검", "success", "건너뜀")
            else:
                result = self.network_checker.preflight([
                    self.config.helm.eso_repo_url,
                    self.config.helm.tailscale_repo_url,
                ])
                if not result["overall"]:
                    return self._fail("네트워크 사전 점검", "외부 엔드포인트 접근 불가")
                self.log_step("네트워크 사전 점검", "success", "통과")

            # 3. GKE
            if not self._step("GCP API 활성화", self.gke_manager.enable_apis()):
                return False
            if not self._step("GKE 클러스터", self.gke_manager.create_cluster()):
                return False
            if not self._step("클러스터 자격 증명", self.gke_manager.get_credentials()):
                return False

            project_number = self.gke_manager.get_project_number()
            if not project_number:
                return self._fail("프로젝트 번호 조회", "gcloud projects describe 실패")
            member = self.config.store_principal(project_number)
            self.log_step("프로젝트 번호 조회", "success", project_number)

            # 4. Secret Manager + IAM
            self.secret_manager = SecretManagerClient(data, self.debug)
            if not self._step("OAuth 시크릿 저장", self.secret_manager.store_oauth_credentials()):
                return False
            if not self._step("WIF IAM 바인딩", self.secret_manager.grant_accessor(member)):
                return False

            # 5. External Secrets Operator
            self.helm_manager = HelmManager(data, self.debug)
            if not self._step("Helm 저장소", self.helm_manager.add_repos()):
                return False
            if not self._step("ESO 설치", self.helm_manager.install_eso()):
                return False

            self.eso_manager = ExternalSecretsManager(data, self.debug)
            if not self._step("ESO CRD 대기", self.eso_manager.wait_for_crds()):
                return False

            # 6. SecretStore / ExternalSecret
            bundle = render_bundle(self.config)
            if not self._step("매니페스트 적용", self.eso_manager.apply(bundle)):
                return False
            if not self._step("SecretStore Ready", self.eso_manager.wait_until_ready(
                    "SecretStore", self.config.secrets.store_name)):
                return False
            if not self._step("ExternalSecret Ready", self.eso_manager.wait_until_ready(
                    "ExternalSecret", self.config.secrets.external_secret_name)):
                return False

            # 7. Tailscale Operator
            if not self._step("Tailscale Operator 설치", self.helm_manager.install_tailscale_operator()):
                return False

            operator = HealthChecker(data).check_tailscale_operator()
            if not operator["healthy"]:
                return self._fail("Tailscale Operator 확인", operator["message"])
            self.log_step("Tailscale Operator 확인", "success", operator["message"])

            self.logger.info("=== Bootstrap completed successfully ===")
            self.show_summary()

            console.print("\n" + "=" * 60)
            console.print("[bold green]✓ Tailscale Operator 설치 완료![/bold green]")
            console.print("=" * 60)

            return True

        except ManifestError as e:
            console.print(f"\n[red]매니페스트 오류: {e}[/red]")
            return self._fail("매니페스트 렌더링", str(e))

        except KeyboardInterrupt:
            console.print("\n[yellow]사용자에 의해 중단되었습니다.[/yellow]")
            self.logger.warning("Execution interrupted by user")
            if self.config.agent.rollback_on_failure:
                self.rollback_all()
            return False

        except Exception as e:
            console.print(f"\n[red]예상치 못한 오류 발생: {str(e)}[/red]")
            self.logger.exception("Unexpected error occurred")
            if self.config.agent.rollback_on_failure:
                self.rollback_all()
            return False

    def teardown(self, delete_secrets: bool = False, delete_cluster: bool = False) -> bool:
        """설치 역순으로 제거"""
        self.logger.info("=== Teardown started ===")
        data = self.config.to_dict()
        ok = True

        helm_manager = HelmManager(data, self.debug)
        eso_manager = ExternalSecretsManager(data, self.debug)
        namespace = self.config.tailscale.namespace

        steps = [
            ("Tailscale Operator 제거", lambda: helm_manager.uninstall(
                self.config.helm.tailscale_release, namespace)),
            ("ExternalSecret 삭제", lambda: eso_manager.delete(
                "externalsecret", self.config.secrets.external_secret_name, namespace)),
            ("SecretStore 삭제", lambda: eso_manager.delete(
                "secretstore", self.config.secrets.store_name, namespace)),
            ("ESO 제거", lambda: helm_manager.uninstall(
                self.config.helm.eso_release, self.config.secrets.eso_namespace)),
        ]

        if delete_secrets:
            secret_manager = SecretManagerClient(data, self.debug)
            for name in secret_manager.secret_names:
                steps.append((f"시크릿 삭제: {name}", lambda name=name: secret_manager.delete_secret(name)))

        if delete_cluster:
            gke_manager = GKEManager(data, self.debug)
            steps.append(("GKE 클러스터 삭제", gke_manager.delete_cluster))

        for step, action in steps:
            try:
                success, message = action()
            except FileNotFoundError as e:
                success, message = False, f"명령을 찾을 수 없음: {e.filename or e}"
            except subprocess.TimeoutExpired as e:
                success, message = False, f"시간 초과: {' '.join(e.cmd) if isinstance(e.cmd, list) else e.cmd}"
            except (OSError, subprocess.SubprocessError) as e:
                success, message = False, str(e)
            self.log_step(step, "success" if success else "failed", message)
            ok = ok and success

        self.show_summary()
        self.logger.info("=== Teardown finished ===")
        return ok


def oauth_values(cfg: Config) -> List[str]:
    """로그에서 가려야 할 OAuth 자격 증명 값"""
    return [v for v in (cfg.tailscale.oauth_client_id, cfg.tailscale.oauth_client_secret) if v]


def load_config(config_path: Optional[str], strict: bool = True) -> Config:
    """설정 로드, 검증 및 로거 초기화"""
    cfg = Config(config_path)
    problems = cfg.validate() if strict else []
    if problems:
        console.print("[red]✗ 설정 오류:[/red]")
        for problem in problems:
            console.print(f"  [red]•[/red] {problem}")
        sys.exit(1)
    init_logger(cfg.agent.log_dir, cfg.agent.log_level, False, oauth_values(cfg))
    return cfg


@click.group()
@click.version_option(version=__version__)
def cli():
    """TS GKE Bootstrap

    GKE 클러스터에 External Secrets Operator 와 Tailscale Operator 를
    Workload Identity Federation 으로 연결합니다.
    """
    pass


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    cfg = Config(use_env=False)
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print("[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  ts-gke-bootstrap up --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config):
    """설정 파일 유효성 검사"""
    cfg = load_config(config)
    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("프로젝트", cfg.gcp.project_id)
    table.add_row("클러스터", f"{cfg.cluster.name} ({cfg.cluster.location})")
    table.add_row("클러스터 유형", "Autopilot" if cfg.cluster.autopilot else "Standard")
    table.add_row("ESO 네임스페이스/SA", f"{cfg.secrets.eso_namespace}/{cfg.secrets.service_account}")
    table.add_row("Tailscale 네임스페이스", cfg.tailscale.namespace)
    table.add_row("OAuth Client ID", mask(cfg.tailscale.oauth_client_id))
    table.add_row("OAuth Client Secret", mask(cfg.tailscale.oauth_client_secret))
    table.add_row("롤백 활성화", "예" if cfg.agent.rollback_on_failure else "아니오")

    console.print(table)


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--output', '-o', type=click.Path(), default=None, help='저장할 파일 경로 (기본값: 표준 출력)')
def render(config, output):
    """SecretStore / ExternalSecret 매니페스트 렌더링"""
    cfg = load_config(config)
    try:
        if output:
            write_bundle(cfg, output)
            console.print(f"[green]✓ 매니페스트 저장: {output}[/green]")
        else:
            click.echo(render_bundle(cfg), nl=False)
    except ManifestError as e:
        console.print(f"[red]✗ 매니페스트 오류: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def plan(config):
    """실행될 명령어 미리보기 (dry-run)"""
    cfg = load_config(config)

    for index, step in enumerate(build_plan(cfg), start=1):
        console.print(f"\n[bold cyan]{index}. {step['title']}[/bold cyan]")
        console.print(Syntax(format_command(step), "bash", word_wrap=True))

    console.print("\n[bold cyan]적용될 매니페스트[/bold cyan]")
    console.print(Syntax(render_bundle(cfg), "yaml"))


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--debug', is_flag=True, help='디버그 모드')
@click.option('--skip-preflight', is_flag=True, help='네트워크 사전 점검 건너뛰기')
def up(config, debug, skip_preflight):
    """클러스터, 시크릿, 오퍼레이터 전체 설치"""
    cfg = load_config(config)

    init_logger(cfg.agent.log_dir, cfg.agent.log_level, debug, oauth_values(cfg))
    logger = get_logger()
    logger.info(f"Starting up command (debug={debug}, skip_preflight={skip_preflight})")

    orchestrator = BootstrapOrchestrator(cfg, debug, skip_preflight)
    success = orchestrator.run()

    sys.exit(0 if success else 1)


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--delete-secrets', is_flag=True, help='Secret Manager 시크릿도 삭제')
@click.option('--delete-cluster', is_flag=True, help='GKE 클러스터도 삭제')
@click.option('--yes', '-y', is_flag=True, help='확인 없이 진행')
def down(config, delete_secrets, delete_cluster, yes):
    """설치된 리소스 제거"""
    cfg = load_config(config)

    if not yes and not Confirm.ask(
            f"[yellow]{cfg.cluster.name} 의 오퍼레이터를 제거하시겠습니까?[/yellow]", default=False):
        console.print("[cyan]취소되었습니다.[/cyan]")
        return

    orchestrator = BootstrapOrchestrator(cfg)
    success = orchestrator.teardown(delete_secrets=delete_secrets, delete_cluster=delete_cluster)
    sys.exit(0 if success else 1)


@cli.command()
@click.option("-c", "--config", "config_path", type=click.Path(exists=True),
              help="설정 파일 경로")
@click.option("--save-report", is_flag=True, help="리포트를 파일로 저장")
def health(config_path, save_report):
    """설치 상태 헬스체크 수행"""
    console.print("[bold cyan]TS GKE Bootstrap - 헬스체크[/bold cyan]\n")

    cfg = load_config(config_path, strict=False)
    checker = HealthChecker(cfg.to_dict())

    with console.status("[bold green]헬스체크 수행 중...[/bold green]"):
        results = checker.check_all()

    status_color = "green" if results["overall_status"] == "healthy" else "red"
    console.print(f"\n[bold {status_color}]전체 상태: {results['overall_status'].upper()}[/bold {status_color}]\n")

    table = Table(title="헬스체크 상세 결과")
    table.add_column("항목", style="cyan")
    table.add_column("상태", style="magenta")
    table.add_column("메시지", style="white")

    for check_name, check_result in results["checks"].items():
        status_icon = "✅" if check_result.get("healthy") else "❌"
        table.add_row(
            check_name.upper(),
            f"{status_icon} {check_result.get('status', 'unknown')}",
            check_result.get("message", "")
        )

    console.print(table)

    if save_report:
        report_file = checker.save_health_report(results)
        console.print(f"\n[green]✅ 리포트 저장: {report_file}[/green]")

    sys.exit(0 if results["overall_status"] == "healthy" else 1)


@cli.command()
@click.option("-c", "--config", "config_path", type=click.Path(exists=True),
              help="설정 파일 경로")
@click.option("--interval", type=int, default=60,
              help="모니터링 간격 (초, 기본값: 60)")
@click.option("--duration", type=int, default=None,
              help="모니터링 지속 시간 (초, 기본값: 무한)")
def monitor(config_path, interval, duration):
    """설치 상태를 지속적으로 모니터링"""
    console.print("[bold cyan]TS GKE Bootstrap - 모니터링 시작[/bold cyan]\n")

    cfg = load_config(config_path, strict=False)
    monitor_obj = ClusterMonitor(cfg.to_dict(), interval=interval)

    console.print(f"[green]모니터링 간격: {interval}초[/green]")
    if duration:
        console.print(f"[green]모니터링 지속 시간: {duration}초[/green]")
    else:
        console.print("[green]모니터링 지속 시간: 무한 (Ctrl+C로 중지)[/green]")

    count = monitor_obj.start_monitoring(duration=duration)
    console.print(f"[green]모니터링 종료 ({count}회 체크)[/green]")


@cli.command()
@click.option("--log-dir", type=click.Path(exists=True),
              default="/var/log/ts-gke-bootstrap",
              help="로그 디렉토리 경로")
def health_summary(log_dir):
    """헬스체크 요약 보기"""
    console.print("[bold cyan]TS GKE Bootstrap - 헬스체크 요약[/bold cyan]\n")

    summary = generate_health_summary(log_dir)

    if summary.get("status") == "no_reports":
        console.print("[yellow]헬스 리포트가 없습니다.[/yellow]")
        return

    if summary.get("status") == "error":
        console.print(f"[red]오류: {summary.get('message')}[/red]")
        return

    table = Table(title="헬스체크 요약")
    table.add_column("항목", style="cyan")
    table.add_column("값", style="white")

    table.add_row("최근 체크 시간", summary["latest_check"])
    table.add_row("최근 상태", summary["latest_status"])
    table.add_row("총 체크 횟수", str(summary["total_checks"]))
    table.add_row("정상 체크", str(summary["healthy_checks"]))
    table.add_row("비정상 체크", str(summary["unhealthy_checks"]))
    table.add_row("정상률", f"{summary['health_rate']}%")

    console.print(table)

    if summary.get("warning"):
        console.print(f"\n[yellow]⚠️  {summary['warning']}[/yellow]")


@cli.command()
@click.option("-c", "--config", "config_path", type=click.Path(exists=True),
              help="설정 파일 경로")
@click.option("-l", "--log-file", "log_file", type=click.Path(exists=True),
              default=None, help="분석할 실행 로그 파일 (선택)")
@click.option("-o", "--output-dir", "output_dir",
              default="./docs/generated",
              help="출력 디렉토리 (기본값: ./docs/generated)")
def generate_docs(config_path, log_file, output_dir):
    """설정 및 실행 로그 기반으로 런북 자동 생성"""
    console.print("[bold cyan]TS GKE Bootstrap - 런북 자동 생성[/bold cyan]\n")

    cfg = load_config(config_path)

    try:
        generator = DocGenerator(cfg, output_dir, log_file)

        with console.status("[bold green]문서 생성 중...[/bold green]"):
            generated_files = generator.generate_all()

    except (FileNotFoundError, ManifestError) as e:
        console.print(f"[red]❌ 문서 생성 실패: {e}[/red]")
        sys.exit(1)

    console.print("\n[bold green]✅ 문서 생성 완료![/bold green]\n")

    table = Table(title="생성된 파일")
    table.add_column("유형", style="cyan")
    table.add_column("파일 경로", style="white")

    for doc_type, file_path in generated_files.items():
        table.add_row(doc_type.upper(), str(file_path))

    console.print(table)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
