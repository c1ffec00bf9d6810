"""
네트워크 사전 점검 모듈
DNS, 포트, HTTP 체크 및 외부 엔드포인트 도달성 확인
"""

import socket
import requests
from typing import Tuple, Dict, List, Optional
from rich.console import Console
from .logger import get_logger

console = Console()

GOOGLE_API_HOST = "secretmanager.googleapis.com"


class NetworkChecker:
    """네트워크 연결성 확인 클래스"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.logger = get_logger()

    def check_port(self, host: str, port: int, timeout: int = 5) -> Tuple[bool, str]:
        """포트 연결 테스트"""
        if not 0 < port < 65536:
            return False, f"✗ 잘못된 포트 번호: {port}"

        try:
            self.logger.debug(f"Checking port {host}:{port}...")
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.settimeout(timeout)
                result = sock.connect_ex((host, port))

            if result == 0:
                self.logger.debug(f"✓ {host}:{port} is open")
                return True, f"✓ {host}:{port} 연결 성공"
            else:
                self.logger.warning(f"✗ {host}:{port} is closed")
                return False, f"✗ {host}:{port} 연결 실패"

        except socket.gaierror:
            self.logger.error(f"✗ Cannot resolve {host}")
            return False, f"✗ {host} 호스트를 찾을 수 없습니다"
        except OSError as e:
            self.logger.error(f"Port check error: {str(e)}")
            return False, f"✗ 포트 테스트 오류: {str(e)}"

    def check_dns(self, domain: str = GOOGLE_API_HOST) -> Tuple[bool, str]:
        """DNS 조회 테스트"""
        try:
            self.logger.debug(f"Checking DNS for {domain}...")
            socket.gethostbyname(domain)
            self.logger.debug("✓ DNS resolution successful")
            return True, f"✓ DNS 조회 성공 ({domain})"
        except socket.gaierror:
            self.logger.warning(f"✗ DNS resolution failed for {domain}")
            return False, f"✗ DNS 조회 실패 ({domain})"

    def check_http(self, url: str, timeout: int = 5) -> Tuple[bool, str]:
        """HTTP/HTTPS 연결 테스트"""
        try:
            self.logger.debug(f"Checking HTTP connection to {url}...")
            response = requests.get(url, timeout=timeout)
            if response.status_code < 500:
                self.logger.debug(f"✓ HTTP reachable (status: {response.status_code})")
                return True, f"✓ HTTP 연결 성공 ({url})"
            else:
                self.logger.warning(f"✗ HTTP error: {response.status_code}")
                return False, f"✗ HTTP 오류: {response.status_code}"
        except requests.exceptions.SSLError:
            self.logger.error(f"✗ SSL certificate error: {url}")
            return False, "✗ SSL 인증서 오류"
        except requests.exceptions.ConnectionError:
            self.logger.error(f"✗ Connection failed: {url}")
            return False, "✗ 연결 실패"
        except requests.exceptions.Timeout:
            self.logger.error(f"✗ Connection timeout: {url}")
            return False, "✗ 타임아웃"
        except requests.exceptions.RequestException as e:
            self.logger.error(f"HTTP check error: {str(e)}")
            return False, f"✗ HTTP 테스트 오류: {str(e)}"

    def preflight(self, chart_repos: Optional[List[str]] = None) -> Dict:
        """설치 전 외부 엔드포인트 도달성 점검

        Args:
            chart_repos: Helm 차트 저장소 URL 목록

        Returns:
            Dict: 개별 결과와 overall 플래그
        """
        console.print("\n[bold cyan]=== 네트워크 사전 점검 ===[/bold cyan]\n")
        self.logger.info("Running network preflight checks...")

        results = {}

        success, msg = self.check_dns(GOOGLE_API_HOST)
        results["dns"] = success
        console.print(f"  {msg}")

        success, msg = self.check_port(GOOGLE_API_HOST, 443)
        results["google_api"] = success
        console.print(f"  {msg}")

        for url in chart_repos or []:
            # index.yaml 은 모든 Helm 저장소가 제공
            success, msg = self.check_http(url.rstrip("/") + "/index.yaml")
            results[url] = success
            console.print(f"  {msg}")

        results["overall"] = all(results.values())

        if results["overall"]:
            console.print("\n[green]✓ 네트워크 사전 점검 통과[/green]")
            self.logger.info("Network preflight passed")
        else:
            console.print("\n[red]✗ 네트워크 사전 점검 실패[/red]")
            self.logger.error(f"Network preflight failed: {results}")

        return results
