"""
sync_indexer - 재개 가능한 체크포인트 기반 Elasticsearch 벌크 동기화

끝까지 실행 (CLI):
    from sync_indexer import Config, ContentKind, run_sync
    run_sync(Config(put_mapping=True), [ContentKind("posts", "data/posts.parquet")])

스텝 실행 (웹 폴링 / 스케줄러):
    from sync_indexer import run_step
    state, messages = run_step(config, kinds)

오케스트레이터 직접 사용 (async):
    orchestrator = SyncOrchestrator(config, {"posts": indexable}, MemoryCheckpointStore())
    totals = await orchestrator.run_to_completion()
"""

from .checkpoint import CheckpointStore, JsonFileCheckpointStore, MemoryCheckpointStore
from .config import Config, DEFAULT_PER_PAGE, DEFAULT_SCHEMA
from .context import Cache, StepContext
from .errors import (
    CheckpointError,
    NoSyncJobError,
    SyncError,
    SyncInProgressError,
    UnknownIndexableError,
)
from .hooks import SyncHooks
from .indexables import ContentKind, ESIndexable, Indexable, build_indexables
from .indexer import ESIndexer, build_es_client
from .log import file_logging, get_logger, setup_logging
from .models import QueryArgs, QueryResult, SyncJob, Tenant, Totals, WorkItem
from .orchestrator import SyncOrchestrator, SyncState
from .pipeline import cancel_sync, run_step, run_sync, sync_status
from .progress import (
    LoggingProgressSink,
    MemoryProgressSink,
    ProgressMessage,
    ProgressSink,
    RichProgressSink,
)
from .retry import FailureLogger, RetryConfig
from .sources import ListSource, ParquetSource

__all__ = [
    "Config", "DEFAULT_PER_PAGE", "DEFAULT_SCHEMA",
    "SyncOrchestrator", "SyncState", "SyncHooks",
    "SyncJob", "WorkItem", "Totals", "QueryArgs", "QueryResult", "Tenant",
    "CheckpointStore", "MemoryCheckpointStore", "JsonFileCheckpointStore",
    "Indexable", "ESIndexable", "ContentKind", "build_indexables",
    "ESIndexer", "build_es_client",
    "ListSource", "ParquetSource",
    "ProgressMessage", "ProgressSink", "LoggingProgressSink",
    "RichProgressSink", "MemoryProgressSink",
    "Cache", "StepContext",
    "RetryConfig", "FailureLogger",
    "SyncError", "CheckpointError", "SyncInProgressError",
    "NoSyncJobError", "UnknownIndexableError",
    "run_sync", "run_step", "sync_status", "cancel_sync",
    "setup_logging", "file_logging", "get_logger",
]
