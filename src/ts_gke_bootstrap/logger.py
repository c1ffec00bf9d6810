"""
로깅 시스템
실행별 로그 파일, 오류 로그, Rich 콘솔 출력 및 OAuth 자격 증명 마스킹
"""

import logging
import os
from datetime import datetime
from typing import Iterable, List, Optional
from rich.logging import RichHandler
from rich.console import Console

console = Console()

DEFAULT_LOG_DIR = "/var/log/ts-gke-bootstrap"
LOGGER_NAME = "ts_gke_bootstrap"
REDACTED = "[REDACTED]"

# doc_generator.LOG_LINE_RE 가 이 형식을 파싱함
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class RedactionFilter(logging.Filter):
    """등록된 자격 증명 값을 로그 레코드에서 가리는 필터"""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets: List[str] = []
        self.add(secrets)

    def add(self, secrets: Iterable[str]):
        for secret in secrets:
            if secret and secret not in self.secrets:
                self.secrets.append(str(secret))
        # 긴 값부터 치환
        self.secrets.sort(key=len, reverse=True)

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if self.secrets:
            record.msg = self.redact(record.getMessage())
            record.args = None
        return True


class AgentLogger:
    """실행 로거

    실행마다 bootstrap_<시각>.log 와 error_<시각>.log 를 만들고,
    콘솔에는 RichHandler 로 출력합니다. 모든 출력 전에 RedactionFilter 가 적용됩니다.
    """

    def __init__(self, log_dir: str = DEFAULT_LOG_DIR, log_level: str = "INFO",
                 debug: bool = False, secrets: Iterable[str] = ()):
        self.log_dir = log_dir
        self.debug_mode = debug
        self.log_level = logging.DEBUG if debug else getattr(logging, str(log_level).upper(), logging.INFO)

        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = os.path.join(log_dir, f"bootstrap_{timestamp}.log")
        self.error_file = os.path.join(log_dir, f"error_{timestamp}.log")

        self.redaction = RedactionFilter(secrets)

        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(self.log_level)
        self._reset()
        self.logger.addFilter(self.redaction)
        for handler in self._build_handlers():
            self.logger.addHandler(handler)

    def _reset(self):
        # 재초기화 시 이전 실행의 핸들러/필터 정리
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()
        for existing in list(self.logger.filters):
            self.logger.removeFilter(existing)

    def _build_handlers(self) -> List[logging.Handler]:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        main_handler = logging.FileHandler(self.log_file, encoding='utf-8')
        main_handler.setLevel(self.log_level)
        main_handler.setFormatter(formatter)

        error_handler = logging.FileHandler(self.error_file, encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)

        console_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=False,
            show_path=self.debug_mode
        )
        console_handler.setLevel(self.log_level)

        return [main_handler, error_handler, console_handler]

    def add_secrets(self, *secrets: str):
        """마스킹할 값 추가 (예: 실행 중 입력받은 자격 증명)"""
        self.redaction.add(secrets)

    def redact(self, text: str) -> str:
        return self.redaction.redact(text)

    def debug(self, message: str):
        self.logger.debug(message)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def critical(self, message: str):
        self.logger.critical(message)

    def exception(self, message: str):
        """예외 로그 (트레이스백 포함)"""
        self.logger.exception(message)

    def get_log_files(self) -> dict:
        return {
            "main_log": self.log_file,
            "error_log": self.error_file,
            "log_dir": self.log_dir
        }


_logger: Optional[AgentLogger] = None


def get_logger(log_dir: str = DEFAULT_LOG_DIR,
               log_level: str = "INFO",
               debug: bool = False) -> AgentLogger:
    """로거 인스턴스 가져오기 (없으면 생성)"""
    global _logger
    if _logger is None:
        _logger = AgentLogger(log_dir, log_level, debug)
    return _logger


def init_logger(log_dir: str, log_level: str, debug: bool,
                secrets: Iterable[str] = ()) -> AgentLogger:
    """로거 (재)초기화

    Args:
        secrets: 로그에서 가릴 값 (OAuth client id / secret)
    """
    global _logger
    _logger = AgentLogger(log_dir, log_level, debug, secrets)
    return _logger
