"""진행 메시지 + 출력 싱크

오케스트레이터는 status(info/success/warning/error)와 텍스트만 만든다.
어디에 어떻게 보여줄지는 싱크가 결정:

  LoggingProgressSink - 패키지 로거 (RichHandler 콘솔 + 파일)
  RichProgressSink    - 위 + work item 별 Rich Progress bar (CLI)
  MemoryProgressSink  - 메시지를 리스트에 보관 (웹 폴링 / 테스트)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from rich import get_console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .log import get_logger

logger = get_logger("progress")

STATUS_INFO = "info"
STATUS_SUCCESS = "success"
STATUS_WARNING = "warning"
STATUS_ERROR = "error"

_LEVELS = {
    STATUS_INFO: logging.INFO,
    STATUS_SUCCESS: logging.INFO,
    STATUS_WARNING: logging.WARNING,
    STATUS_ERROR: logging.ERROR,
}

_STYLES = {
    STATUS_SUCCESS: "green",
    STATUS_WARNING: "yellow",
    STATUS_ERROR: "bold red",
}


@dataclass
class ProgressMessage:
    message: str
    index_meta: dict[str, Any] | None
    totals: dict[str, Any] = field(default_factory=dict)
    status: str = STATUS_INFO
    context: str = ""


class ProgressSink(Protocol):
    def emit(self, message: ProgressMessage) -> None: ...


class LoggingProgressSink:
    """status 에 맞는 로그 레벨/색상으로 패키지 로거에 기록"""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def emit(self, message: ProgressMessage) -> None:
        level = _LEVELS.get(message.status, logging.INFO)
        text = escape(message.message)
        style = _STYLES.get(message.status)
        if style:
            text = f"[{style}]{text}[/{style}]"
        self._log.log(level, text)


class MemoryProgressSink:
    """메시지 보관. 웹 드라이버는 스텝마다 drain() 해서 응답에 싣는다."""

    def __init__(self):
        self.messages: list[ProgressMessage] = []

    def emit(self, message: ProgressMessage) -> None:
        self.messages.append(message)

    def drain(self) -> list[ProgressMessage]:
        messages, self.messages = self.messages, []
        return messages

    @property
    def texts(self) -> list[str]:
        return [m.message for m in self.messages]


class RichProgressSink(LoggingProgressSink):
    """
    로그 + work item 별 Progress bar.

    with 블록 안에서 사용:
        with RichProgressSink() as sink:
            await orchestrator.run_to_completion()
    """

    def __init__(self, log: logging.Logger | None = None):
        super().__init__(log)
        self.progress = Progress(
            SpinnerColumn(),
            "[progress.description]{task.description}",
            BarColumn(bar_width=30),
            MofNCompleteColumn(),
            TextColumn("•"),
            TextColumn("[red]failed={task.fields[failed]}[/]"),
            TimeElapsedColumn(),
            console=get_console(),
            transient=False,
        )
        self._tasks: dict[tuple[str, Any], TaskID] = {}

    def __enter__(self) -> RichProgressSink:
        self.progress.start()
        return self

    def __exit__(self, *exc):
        self.progress.stop()
        return False

    def emit(self, message: ProgressMessage) -> None:
        super().emit(message)
        if message.context != "index_next_batch" or not message.index_meta:
            return
        item = message.index_meta.get("current_item")
        if not item:
            return

        key = (item["indexable"], item.get("tenant_id"))
        found = message.index_meta.get("found_items", 0)
        done = min(item["synced"] + item["skipped"] + item["failed"], found)
        if key not in self._tasks:
            label = item["indexable"]
            if item.get("tenant_id") is not None:
                label += f" #{item['tenant_id']}"
            self._tasks[key] = self.progress.add_task(label, total=found, failed=0)
        self.progress.update(
            self._tasks[key], total=found, completed=done, failed=item["failed"]
        )
