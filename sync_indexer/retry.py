"""재시도 설정 + 실패 레코드 로깅"""

import json
import time
from pathlib import Path
from typing import Any

from .log import get_logger

logger = get_logger("retry")


class RetryConfig:
    """
    배치 전송 재시도 설정.

    total_attempts=1 이면 재시도 없음. 대기 시간은 initial_backoff 부터
    exponential 이면 ×2 씩 늘어나고 max_backoff 에서 멈춘다.
    """

    def __init__(
        self,
        total_attempts: int = 1,
        initial_backoff: float = 0.0,
        exponential: bool = True,
        max_backoff: float = 60.0,
    ):
        self.total_attempts = max(1, int(total_attempts))
        self.initial_backoff = initial_backoff
        self.exponential = exponential
        self.max_backoff = max_backoff

    @classmethod
    def from_config(cls, config) -> "RetryConfig":
        return cls(
            total_attempts=config.total_attempts,
            initial_backoff=config.retry_backoff,
            exponential=config.retry_exponential,
            max_backoff=config.retry_max_backoff,
        )

    def backoff(self, attempt: int) -> float:
        """attempt 번째 시도 실패 후 대기 시간 (초)"""
        if self.initial_backoff <= 0:
            return 0.0
        if not self.exponential:
            return self.initial_backoff
        return min(self.initial_backoff * (2 ** (attempt - 1)), self.max_backoff)


class FailureLogger:
    """최종 실패한 레코드를 JSONL 파일에 기록 (수동 재처리용)

    파일 형식 (1줄 = 1 실패 배치):
        {"indexable": "posts", "tenant_id": 2, "ids": [...], "error_type": "...",
         "errors": [...], "attempts": 3, "timestamp": "..."}
    """

    def __init__(self, log_path: Path, enabled: bool = True):
        self.log_path = log_path
        self.enabled = enabled
        self._count = 0
        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log_failure(
        self,
        indexable: str,
        tenant_id: int | None,
        ids: list[Any],
        error_type: str,
        errors: list[str],
        attempts: int,
    ):
        if not self.enabled:
            return

        record = {
            "indexable": indexable,
            "tenant_id": tenant_id,
            "ids": ids,
            "error_type": error_type,
            "errors": errors,
            "attempts": attempts,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
        }
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        self._count += 1

        logger.warning(
            f"[red]실패 기록[/red] {indexable} tenant={tenant_id} "
            f"{len(ids)}건 ({error_type}, {attempts}회 시도)"
        )

    @property
    def count(self) -> int:
        return self._count
