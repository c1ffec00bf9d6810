#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
TS GKE Bootstrap - 헬스체크 및 모니터링 모듈

이 모듈은 다음 기능을 제공합니다:
- 클러스터 API 접근 확인
- External Secrets Operator 컨트롤러 상태 확인
- SecretStore / ExternalSecret Ready 조건 확인
- operator-oauth 시크릿 키 확인
- Tailscale Operator 파드 확인
- 리포트 저장 및 요약
"""

import time
import json
import subprocess
from datetime import datetime
from typing import Dict, List, Optional
from pathlib import Path

from .logger import get_logger
from .eso import ExternalSecretsManager, is_ready, ready_message

OAUTH_SECRET_KEYS = ["client_id", "client_secret"]


class HealthChecker:
    """설치 결과 검증 (인수 조건) 을 수행하는 클래스"""

    def __init__(self, config: Dict, log_dir: Optional[str] = None):
        """
        Args:
            config: 설정 딕셔너리 (Config.to_dict())
            log_dir: 리포트 저장 디렉토리, 기본값은 agent.log_dir
        """
        self.config = config
        self.log_dir = Path(log_dir or config.get("agent", {}).get("log_dir", "/var/log/ts-gke-bootstrap"))
        self.logger = get_logger()
        self.eso = ExternalSecretsManager(config)
        secrets = config.get("secrets", {})
        self.eso_namespace = secrets.get("eso_namespace", "external-secrets")
        self.store_name = secrets.get("store_name", "gcp-secret-store")
        self.external_secret_name = secrets.get("external_secret_name", "operator-oauth")
        self.target_secret = secrets.get("target_secret", "operator-oauth")
        self.ts_namespace = config.get("tailscale", {}).get("namespace", "tailscale")

    def check_all(self) -> Dict:
        """모든 헬스체크 수행

        Returns:
            Dict: 헬스체크 결과
        """
        self.logger.info("Running health checks...")

        results = {
            "timestamp": datetime.now().isoformat(),
            "checks": {
                "cluster": self.check_cluster_access(),
                "eso_controller": self.check_eso_controller(),
                "secret_store": self.check_secret_store(),
                "external_secret": self.check_external_secret(),
                "oauth_secret": self.check_oauth_secret(),
                "tailscale_operator": self.check_tailscale_operator(),
            },
            "overall_status": "healthy"
        }

        failed_checks = [k for k, v in results["checks"].items() if not v.get("healthy", False)]
        if failed_checks:
            results["overall_status"] = "unhealthy"
            results["failed_checks"] = failed_checks

        self.logger.info(f"Health check finished: {results['overall_status']}")
        return results

    def _kubectl_json(self, args: List[str]) -> Dict:
        result = subprocess.run(
            ["kubectl", *args, "-o", "json"],
            capture_output=True,
            text=True,
            timeout=15
        )
        if result.returncode != 0:
            raise RuntimeError(result.stderr.strip() or "kubectl 실행 실패")
        return json.loads(result.stdout)

    def check_cluster_access(self) -> Dict:
        """클러스터 API 서버 접근 확인"""
        try:
            result = subprocess.run(
                ["kubectl", "get", "--raw", "/readyz"],
                capture_output=True,
                text=True,
                timeout=15
            )
            is_healthy = result.returncode == 0 and result.stdout.strip() == "ok"
            return {
                "healthy": is_healthy,
                "status": "reachable" if is_healthy else "unreachable",
                "message": "API 서버 정상" if is_healthy else f"API 서버 접근 불가: {result.stderr.strip()}"
            }
        except FileNotFoundError:
            return {"healthy": False, "status": "kubectl_not_found", "message": "kubectl이 설치되지 않음"}
        except subprocess.TimeoutExpired:
            return {"healthy": False, "status": "timeout", "message": "API 서버 응답 시간 초과"}

    def _running_pods(self, namespace: str, name_filter: Optional[str] = None) -> List[str]:
        pods = self._kubectl_json(["get", "pods", "--namespace", namespace])
        running = []
        for pod in pods.get("items", []):
            name = pod["metadata"]["name"]
            if name_filter and name_filter not in name:
                continue
            if pod.get("status", {}).get("phase") == "Running":
                running.append(name)
        return running

    def check_eso_controller(self) -> Dict:
        """ESO 컨트롤러 파드 실행 확인"""
        try:
            running = self._running_pods(self.eso_namespace)
            is_healthy = len(running) > 0
            return {
                "healthy": is_healthy,
                "status": "running" if is_healthy else "not_running",
                "pods": running,
                "message": f"{len(running)}개 파드 실행 중" if is_healthy else "ESO 파드가 실행 중이 아님"
            }
        except FileNotFoundError:
            return {"healthy": False, "status": "kubectl_not_found", "message": "kubectl이 설치되지 않음"}
        except (RuntimeError, subprocess.TimeoutExpired, json.JSONDecodeError) as e:
            self.logger.error(f"ESO controller check failed: {e}")
            return {"healthy": False, "status": "error", "message": str(e)}

    def _check_ready(self, kind: str, name: str) -> Dict:
        try:
            obj = self.eso.get_resource(kind, name)
        except FileNotFoundError:
            return {"healthy": False, "status": "kubectl_not_found", "message": "kubectl이 설치되지 않음"}
        except subprocess.TimeoutExpired:
            return {"healthy": False, "status": "timeout", "message": f"{kind} 조회 시간 초과"}

        if obj is None:
            return {"healthy": False, "status": "not_found", "message": f"{kind}/{name} 없음"}

        ready = is_ready(obj)
        return {
            "healthy": ready,
            "status": "Ready" if ready else "NotReady",
            "message": "Ready" if ready else ready_message(obj)
        }

    def check_secret_store(self) -> Dict:
        """SecretStore Ready 조건 확인"""
        return self._check_ready("SecretStore", self.store_name)

    def check_external_secret(self) -> Dict:
        """ExternalSecret Ready 조건 확인"""
        return self._check_ready("ExternalSecret", self.external_secret_name)

    def check_oauth_secret(self) -> Dict:
        """동기화된 operator-oauth 시크릿의 키 확인"""
        try:
            ok, missing = self.eso.secret_has_keys(self.target_secret, OAUTH_SECRET_KEYS)
        except FileNotFoundError:
            return {"healthy": False, "status": "kubectl_not_found", "message": "kubectl이 설치되지 않음"}
        except subprocess.TimeoutExpired:
            return {"healthy": False, "status": "timeout", "message": "시크릿 조회 시간 초과"}

        return {
            "healthy": ok,
            "status": "synced" if ok else "missing_keys",
            "message": "client_id / client_secret 동기화됨" if ok else f"누락된 키: {', '.join(missing)}"
        }

    def check_tailscale_operator(self) -> Dict:
        """Tailscale Operator 파드 실행 확인"""
        try:
            running = self._running_pods(self.ts_namespace, name_filter="operator")
            is_healthy = len(running) > 0
            return {
                "healthy": is_healthy,
                "status": "running" if is_healthy else "not_running",
                "pods": running,
                "message": f"operator 파드 실행 중: {running[0]}" if is_healthy else "operator 파드 없음"
            }
        except FileNotFoundError:
            return {"healthy": False, "status": "kubectl_not_found", "message": "kubectl이 설치되지 않음"}
        except (RuntimeError, subprocess.TimeoutExpired, json.JSONDecodeError) as e:
            self.logger.error(f"Tailscale operator check failed: {e}")
            return {"healthy": False, "status": "error", "message": str(e)}

    def save_health_report(self, results: Dict) -> Path:
        """헬스체크 결과를 파일로 저장

        Args:
            results: 헬스체크 결과

        Returns:
            Path: 저장된 파일 경로
        """
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        report_file = self.log_dir / f"health_report_{timestamp}.json"

        with open(report_file, "w", encoding="utf-8") as f:
            json.dump(results, f, indent=2, ensure_ascii=False)

        self.logger.info(f"Health report saved: {report_file}")
        return report_file


class ClusterMonitor:
    """설치 상태를 지속적으로 모니터링하는 클래스"""

    def __init__(self, config: Dict, interval: int = 60):
        """
        Args:
            config: 설정 딕셔너리
            interval: 모니터링 간격 (초)
        """
        self.config = config
        self.interval = interval
        self.health_checker = HealthChecker(config)
        self.logger = get_logger()
        self.running = False

    def start_monitoring(self, duration: Optional[int] = None) -> int:
        """모니터링 시작

        Args:
            duration: 모니터링 지속 시간 (초). None이면 무한 실행

        Returns:
            int: 수행한 체크 횟수
        """
        self.logger.info(f"Monitoring started (interval: {self.interval}s)")
        self.running = True

        start_time = time.time()
        check_count = 0

        try:
            while self.running:
                check_count += 1
                self.logger.info(f"Health check #{check_count}")

                results = self.health_checker.check_all()
                self.health_checker.save_health_report(results)

                if results["overall_status"] == "unhealthy":
                    self.logger.warning(
                        f"Unhealthy state, failed checks: {results.get('failed_checks', [])}"
                    )

                if duration and (time.time() - start_time) >= duration:
                    self.logger.info(f"Monitoring finished ({check_count} checks)")
                    break

                time.sleep(self.interval)

        except KeyboardInterrupt:
            self.logger.info("Monitoring interrupted by user")
        finally:
            self.running = False

        return check_count

    def stop_monitoring(self):
        self.logger.info("Monitoring stop requested")
        self.running = False


def generate_health_summary(log_dir: str = "/var/log/ts-gke-bootstrap") -> Dict:
    """최근 헬스 리포트들의 요약 생성

    Args:
        log_dir: 로그 디렉토리 경로

    Returns:
        Dict: 요약 정보
    """
    log_path = Path(log_dir)
    report_files = sorted(log_path.glob("health_report_*.json"), reverse=True)

    if not report_files:
        return {
            "status": "no_reports",
            "message": "헬스 리포트가 없습니다."
        }

    logger = get_logger()

    # 최근 10개 리포트 분석
    recent_reports = []
    for report_file in report_files[:10]:
        try:
            with open(report_file, "r", encoding="utf-8") as f:
                recent_reports.append(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read report {report_file}: {e}")
            continue

    if not recent_reports:
        return {
            "status": "error",
            "message": "유효한 헬스 리포트가 없습니다."
        }

    total_checks = len(recent_reports)
    healthy_checks = sum(1 for r in recent_reports if r.get("overall_status") == "healthy")
    unhealthy_checks = total_checks - healthy_checks

    latest = recent_reports[0]

    summary = {
        "latest_check": latest["timestamp"],
        "latest_status": latest["overall_status"],
        "total_checks": total_checks,
        "healthy_checks": healthy_checks,
        "unhealthy_checks": unhealthy_checks,
        "health_rate": round(healthy_checks / total_checks * 100, 2),
        "latest_details": latest["checks"],
    }

    if unhealthy_checks > 0:
        summary["warning"] = f"최근 {total_checks}번의 체크 중 {unhealthy_checks}번 비정상 감지"

    return summary
