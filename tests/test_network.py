"""
네트워크 사전 점검 모듈 테스트
"""

import requests

from ts_gke_bootstrap import network as network_module
from ts_gke_bootstrap.network import NetworkChecker


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code


def test_check_port_invalid():
    """잘못된 포트 테스트"""
    success, _ = NetworkChecker().check_port("127.0.0.1", 99999, timeout=1)
    assert success is False


def test_check_http_success(monkeypatch):
    monkeypatch.setattr(network_module.requests, "get", lambda url, timeout: _Response(200))
    success, msg = NetworkChecker().check_http("https://charts.example.com/index.yaml")
    assert success
    assert "HTTP" in msg


def test_check_http_connection_error(monkeypatch):
    def raise_error(url, timeout):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(network_module.requests, "get", raise_error)
    success, msg = NetworkChecker().check_http("https://charts.example.com/index.yaml")
    assert not success
    assert "연결 실패" in msg


def test_preflight_requests_chart_indexes(monkeypatch):
    checker = NetworkChecker()
    requested = []
    monkeypatch.setattr(checker, "check_dns", lambda domain: (True, "dns ok"))
    monkeypatch.setattr(checker, "check_port", lambda host, port: (True, "port ok"))

    def fake_get(url, timeout):
        requested.append(url)
        return _Response(404 if "tailscale" in url else 200)

    monkeypatch.setattr(network_module.requests, "get", fake_get)

    results = checker.preflight(["https://charts.external-secrets.io", "https://pkgs.tailscale.com/helmcharts/"])

    assert requested == [
        "https://charts.external-secrets.io/index.yaml",
        "https://pkgs.tailscale.com/helmcharts/index.yaml",
    ]
    assert results["overall"] is True


def test_preflight_fails_on_dns(monkeypatch):
    checker = NetworkChecker()
    monkeypatch.setattr(checker, "check_dns", lambda domain: (False, "dns fail"))
    monkeypatch.setattr(checker, "check_port", lambda host, port: (True, "port ok"))

    assert checker.preflight([])["overall"] is False
