"""
sync_indexer 로깅 (Rich console + 실행 단위 plain-text file)

  - Console: RichHandler. 패키지 로거에 1회만 붙는다.
  - File:    file_logging() 블록 동안만 붙는 FileHandler. markup 은 제거해서 기록.
             run_sync 를 한 프로세스에서 여러 번 돌려도 핸들러/파일이 쌓이지 않는다.

사용법:
    logger = get_logger("orchestrator")     # sync_indexer.orchestrator

    with file_logging(config.log_dir / "sync_20260209_153045.log"):
        logger.info("[bold green]posts 완료[/bold green]")
    # Console: 초록색 볼드
    # File:    "2026-02-09 15:30:45  sync_indexer.orchestrator  posts 완료"
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from rich.errors import MarkupError
from rich.logging import RichHandler
from rich.text import Text

PKG = "sync_indexer"
FILE_FORMAT = "%(asctime)s  %(name)s  %(message)s"


class _PlainFormatter(logging.Formatter):
    """파일용 Formatter. "[bold]posts[/bold] 완료" → "posts 완료" """

    def format(self, record: logging.LogRecord) -> str:
        msg = record.msg
        try:
            record.msg = Text.from_markup(str(msg)).plain
        except MarkupError:
            # "[posts] 1/3" 처럼 markup 이 아닌 대괄호는 원문 그대로
            record.msg = msg
        try:
            return super().format(record)
        finally:
            record.msg = msg


def _file_handler(log_file: Path, level: int) -> logging.FileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(_PlainFormatter(FILE_FORMAT))
    handler.setLevel(level)
    return handler


def setup_logging(
    log_file: Path | None = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """
    패키지 로거에 콘솔 핸들러 설정 (중복 추가 없음).

    log_file 을 주면 프로세스 끝까지 유지되는 파일 핸들러도 붙인다.
    동기화 1회 단위로 파일을 나누려면 file_logging() 을 쓴다.
    """
    logger = logging.getLogger(PKG)
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        console = RichHandler(
            rich_tracebacks=True,
            show_path=False,
            markup=True,
            log_time_format="[%H:%M:%S]",
        )
        console.setLevel(level)
        logger.addHandler(console)

    if log_file:
        logger.addHandler(_file_handler(log_file, level))
    return logger


@contextmanager
def file_logging(
    log_file: Path | None,
    level: int = logging.INFO,
) -> Generator[logging.Logger, None, None]:
    """
    블록 동안만 log_file 에 기록. 블록을 나가면 (예외 포함) 핸들러를 떼고 닫는다.
    log_file=None 이면 콘솔만.
    """
    logger = setup_logging(level=level)
    if log_file is None:
        yield logger
        return

    handler = _file_handler(log_file, level)
    logger.addHandler(handler)
    try:
        yield logger
    finally:
        logger.removeHandler(handler)
        handler.close()


def get_logger(name: str) -> logging.Logger:
    """get_logger("indexer") → sync_indexer.indexer (핸들러는 패키지 로거에서 상속)"""
    return logging.getLogger(f"{PKG}.{name}")
