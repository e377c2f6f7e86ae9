"""동기화 드라이버 - Rich 로깅 + Progress Bar + 요약 테이블

콘솔: RichHandler (색상, 포맷)  +  Rich Progress (work item 별 프로그레스 바)
파일: FileHandler (plain text + timestamp, log_dir 지정 시)

run 모드:
    체크포인트가 있으면 재개, 없으면 잡 생성 → 끝까지 실행 → 요약
step 모드:
    호출 1회 = 스텝 1회 (잡이 없으면 잡 생성이 첫 스텝)
    웹 요청/스케줄러 틱마다 짧게 끊어서 실행할 때 사용
"""

import asyncio
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .checkpoint import JsonFileCheckpointStore
from .config import Config, INDEX_META_KEY, LAST_INDEX_KEY
from .hooks import SyncHooks
from .indexables import ContentKind, build_indexables
from .indexer import build_es_client
from .log import file_logging, get_logger
from .models import Tenant
from .orchestrator import SyncOrchestrator, SyncState
from .progress import MemoryProgressSink, ProgressMessage, ProgressSink, RichProgressSink
from .retry import FailureLogger

console = Console()
logger = get_logger("pipeline")


def _log_file(config: Config, prefix: str) -> Path | None:
    """log_dir 지정 시 실행마다 새 파일 (sync_20260209_153045.log)"""
    if not config.log_dir:
        return None
    return config.log_dir / f"{prefix}_{time.strftime('%Y%m%d_%H%M%S')}.log"


def _failure_logger(config: Config) -> FailureLogger | None:
    """failure_log_path 우선, 없으면 log_dir/failures.jsonl, 둘 다 없으면 비활성"""
    if not config.log_failures:
        return None
    path = config.failure_log_path
    if path is None and config.log_dir:
        path = config.log_dir / "failures.jsonl"
    if path is None:
        return None
    return FailureLogger(path)


def _summary_table(title: str, rows: list[tuple[str, str]]) -> Table:
    table = Table(title=title, show_header=False, border_style="dim")
    table.add_column("항목", style="bold")
    table.add_column("값", justify="right", style="cyan")
    for label, value in rows:
        table.add_row(label, value)
    return table


def build_summary_rows(totals: dict[str, Any]) -> list[tuple[str, str]]:
    """요약 테이블 행 생성. 실패/에러가 있으면 추가 행 포함."""
    total_time = totals.get("total_time", 0.0) or 0.0
    synced = totals.get("synced", 0)
    rows = [
        ("전체", f"{totals.get('total', 0):,}"),
        ("동기화", f"{synced:,}"),
        ("건너뜀", f"{totals.get('skipped', 0):,}"),
        ("소요 시간", f"{total_time:.1f}초"),
    ]
    if total_time > 0:
        rows.append(("처리량", f"{synced / total_time:,.0f} docs/sec"))
    if totals.get("failed"):
        rows.append(("실패", f"[red]{totals['failed']:,}건[/]"))
    errors = totals.get("errors") or []
    if errors:
        rows.append(("에러 메시지", f"{len(errors):,}건"))
    return rows


def build_orchestrator(
    config: Config,
    indexables,
    *,
    tenants: list[Tenant] | None = None,
    progress: ProgressSink | None = None,
    hooks: SyncHooks | None = None,
    caches=None,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        config,
        indexables,
        JsonFileCheckpointStore(config.checkpoint_path),
        tenants=tenants,
        progress=progress,
        hooks=hooks,
        caches=caches,
        failure_logger=_failure_logger(config),
    )


# ============================================================
# 실행 코루틴 - ES 클라이언트 수명은 이벤트 루프 1개와 같다
# ============================================================
async def _run_full(
    config: Config,
    kinds: list[ContentKind],
    tenants: list[Tenant] | None,
    progress: ProgressSink,
    hooks: SyncHooks | None,
) -> dict[str, Any]:
    es = build_es_client(config)
    try:
        orchestrator = build_orchestrator(
            config, build_indexables(kinds, es, config),
            tenants=tenants, progress=progress, hooks=hooks,
        )
        return await orchestrator.run_to_completion()
    finally:
        await es.close()


async def _run_step(
    config: Config,
    kinds: list[ContentKind],
    tenants: list[Tenant] | None,
    progress: ProgressSink,
    hooks: SyncHooks | None,
) -> SyncState:
    es = build_es_client(config)
    try:
        orchestrator = build_orchestrator(
            config, build_indexables(kinds, es, config),
            tenants=tenants, progress=progress, hooks=hooks,
        )
        if orchestrator.job is None:
            await orchestrator.start(resume=True)
            return orchestrator.state
        return await orchestrator.process_next_step()
    finally:
        await es.close()


# ============================================================
# Public API - 동기 래퍼
# ============================================================
def run_sync(
    config: Config,
    kinds: list[ContentKind],
    tenants: list[Tenant] | None = None,
    hooks: SyncHooks | None = None,
) -> dict[str, Any]:
    """끝까지 실행 (체크포인트가 있으면 재개) 후 요약 출력. 최종 totals 반환."""
    log_file = _log_file(config, "sync")
    with file_logging(log_file):
        if log_file:
            logger.info(f"Log → {log_file}")
        mode = "멀티 테넌트" if tenants is not None else "단일 사이트"
        reset = " + 매핑 재생성" if config.put_mapping else ""
        console.print(
            Panel.fit(f"[bold]동기화[/] - {mode}{reset}", border_style="green")
        )
        logger.info(
            f"per_page={config.effective_per_page()}, attempts={config.total_attempts}, "
            f"nobulk={config.nobulk}, advanced_pagination={config.advanced_pagination}"
        )

        with RichProgressSink() as sink:
            totals = asyncio.run(_run_full(config, kinds, tenants, sink, hooks))

        rows = build_summary_rows(totals)
        console.print(_summary_table("결과 요약", rows))
        for label, value in rows:
            logger.info(f"{label}: {value}")
    return totals


def run_step(
    config: Config,
    kinds: list[ContentKind],
    tenants: list[Tenant] | None = None,
    hooks: SyncHooks | None = None,
) -> tuple[SyncState, list[ProgressMessage]]:
    """스텝 1회 실행. (실행 후 상태, 이번 스텝의 진행 메시지) 반환."""
    sink = MemoryProgressSink()
    state = asyncio.run(_run_step(config, kinds, tenants, sink, hooks))
    return state, sink.drain()


def sync_status(config: Config) -> dict[str, Any]:
    """체크포인트 조회 - 진행 중인 잡과 마지막 완료 totals"""
    store = JsonFileCheckpointStore(config.checkpoint_path)
    return {
        "index_meta": store.get(INDEX_META_KEY),
        "last_index": store.get(LAST_INDEX_KEY),
    }


def cancel_sync(config: Config) -> bool:
    """진행 중인 잡 폐기. 폐기할 잡이 없으면 False."""
    store = JsonFileCheckpointStore(config.checkpoint_path)
    if store.get(INDEX_META_KEY) is None:
        return False
    orchestrator = SyncOrchestrator(config, {}, store, progress=MemoryProgressSink())
    orchestrator.cancel()
    logger.info("동기화 잡 폐기됨")
    return True
