"""재개 가능한 체크포인트 기반 벌크 인덱싱 오케스트레이터

상태:
    IDLE → BUILDING → HAS_WORK → DRAINING_ALIASES → COMPLETE

한 스텝 = 아래 중 하나:
  - work item 1개의 배치 1개 (스택에서 꺼내기 / 매핑 리셋 / 조회 / 전송 / 집계)
  - 멀티 테넌트 alias 1개 생성
  - 완료 처리 (totals 기록 + 체크포인트 삭제)

잡 상태는 진행 메시지마다, 그리고 스텝 끝마다 체크포인트 저장소에 통째로 기록된다.
프로세스가 죽어도 마지막 스텝 이후부터 재개 가능.

드라이버:
    # 블로킹 - 한 번에 끝까지
    totals = await orchestrator.run_to_completion()

    # 스텝 - 요청/틱마다 1스텝 (웹 폴링, 스케줄러)
    await orchestrator.start()
    while orchestrator.state is not SyncState.COMPLETE:
        await orchestrator.process_next_step()
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from .checkpoint import CheckpointStore
from .config import (
    Config,
    FEATURE_AUTO_ACTIVATED_KEY,
    INDEX_META_KEY,
    LAST_INDEX_KEY,
    LAST_SYNC_KEY,
    NEED_UPGRADE_KEY,
)
from .context import Cache, StepContext
from .errors import CheckpointError, NoSyncJobError, SyncInProgressError, UnknownIndexableError
from .hooks import SyncHooks
from .indexables import Indexable, object_id
from .log import get_logger
from .models import QueryArgs, QueryResult, SyncJob, Tenant, WorkItem
from .progress import (
    STATUS_ERROR,
    STATUS_INFO,
    STATUS_SUCCESS,
    STATUS_WARNING,
    LoggingProgressSink,
    ProgressMessage,
    ProgressSink,
)
from .retry import FailureLogger, RetryConfig

logger = get_logger("orchestrator")

DISPLAY_TIME_FORMAT = "%a, %B %d, %Y %H:%M"


class SyncState(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    HAS_WORK = "has_work"
    DRAINING_ALIASES = "draining_aliases"
    COMPLETE = "complete"


@dataclass
class _Delivery:
    """재시도 루프 결과 (마지막 시도 기준)"""

    error: Exception | None = None
    failed: list[dict] = field(default_factory=list)


def _now_display() -> str:
    return datetime.now().astimezone().strftime(DISPLAY_TIME_FORMAT)


def _error_messages(error: Exception) -> list[str]:
    messages = getattr(error, "messages", None)
    if isinstance(messages, (list, tuple)) and messages:
        return [str(m) for m in messages]
    return [str(error) or type(error).__name__]


def _item_error(item: Mapping) -> dict | None:
    # 벌크 응답 항목: {"index": {...}} / {"create": {...}} / {"update": {...}}
    op = next(iter(item.values()), None) if item else None
    if isinstance(op, Mapping):
        return op.get("error") or None
    return None


class SyncOrchestrator:
    def __init__(
        self,
        config: Config,
        indexables: Mapping[str, Indexable],
        store: CheckpointStore,
        *,
        tenants: list[Tenant] | None = None,
        progress: ProgressSink | None = None,
        hooks: SyncHooks | None = None,
        caches: list[Cache] | None = None,
        failure_logger: FailureLogger | None = None,
    ):
        self.config = config
        self.indexables = dict(indexables)
        self.store = store
        self.tenants = list(tenants) if tenants is not None else None
        self.progress = progress or LoggingProgressSink()
        self.hooks = hooks or SyncHooks()
        self.retry = RetryConfig.from_config(config)
        self.failure_logger = failure_logger
        self.step_context = StepContext(caches=list(caches or []))

        self._current_query: QueryResult | None = None
        self._building = False
        self._completed = False
        self.job: SyncJob | None = self._load_job()

    # ================================================================
    # 상태 조회
    # ================================================================

    @property
    def is_network(self) -> bool:
        return self.tenants is not None

    @property
    def state(self) -> SyncState:
        if self._building:
            return SyncState.BUILDING
        if self.job is None:
            return SyncState.COMPLETE if self._completed else SyncState.IDLE
        if self.has_items_to_process():
            return SyncState.HAS_WORK
        return SyncState.DRAINING_ALIASES

    def has_items_to_process(self) -> bool:
        return self.job is not None and (
            self.job.current_item is not None or len(self.job.sync_stack) > 0
        )

    def has_alias_to_create(self) -> bool:
        return self.job is not None and len(self.job.network_alias) > 0

    def get_job(self) -> SyncJob | None:
        return self.job

    def get_indexable(self, slug: str) -> Indexable:
        try:
            return self.indexables[slug]
        except KeyError:
            raise UnknownIndexableError(slug) from None

    def is_full_reindexing(self, indexable_slug: str, tenant_id: int | None = None) -> bool:
        """
        (content kind, tenant) 가 인덱스를 지우고 다시 채우는 중인지.

        스택 → 현재 item 순으로 훑으며, 같은 kind 인데 put_mapping 이 꺼진 항목을
        만나면 거기서 멈춘다 (앞선 일반 동기화가 뒤의 전체 재인덱싱을 가림).
        """
        if self.job is None:
            return False

        items = list(self.job.sync_stack)
        if self.job.current_item is not None:
            items.append(self.job.current_item)

        is_full_reindexing = False
        for item in items:
            if item.indexable != indexable_slug:
                continue
            if not item.put_mapping:
                break
            if item.tenant_id == tenant_id:
                is_full_reindexing = True
        return is_full_reindexing

    # ================================================================
    # 드라이버 진입점
    # ================================================================

    async def start(self, resume: bool = True) -> SyncJob:
        """
        잡 시작. 체크포인트가 이미 있으면 resume=True 일 때 이어받고,
        resume=False 면 SyncInProgressError.
        """
        self.job = self._load_job()
        if self.job is not None:
            if not resume:
                raise SyncInProgressError(
                    f"이미 진행 중인 동기화가 있습니다 (method={self.job.method}, "
                    f"started={self.job.start_date_time})"
                )
            logger.info(
                f"체크포인트에서 재개: 남은 item {len(self.job.sync_stack)}개, "
                f"offset={self.job.offset}"
            )
            return self.job

        await self.build_job()
        return self.job

    async def process_next_step(self) -> SyncState:
        """이산 작업 1개를 실행하고 결과 상태를 반환."""
        if self.job is None:
            raise NoSyncJobError("진행 중인 동기화 잡이 없습니다")

        if self.has_items_to_process():
            await self._process_sync_item()
        elif self.has_alias_to_create():
            await self._create_network_alias()
        else:
            await self._full_index_complete()
        return self.state

    async def run_to_completion(self) -> dict[str, Any]:
        """체크포인트가 있으면 이어서, 없으면 새로 만들어 끝까지 실행. 최종 totals 반환."""
        if self.job is None:
            await self.start(resume=True)

        while self.has_items_to_process():
            await self._process_sync_item()

        while self.has_alias_to_create():
            await self._create_network_alias()

        return await self._full_index_complete()

    def cancel(self):
        """체크포인트 폐기. 이미 인덱싱된 문서는 그대로 남는다."""
        self.job = None
        self._output("Sync cancelled", STATUS_WARNING)

    # ================================================================
    # 잡 생성
    # ================================================================

    async def build_job(self) -> SyncJob:
        self._building = True
        self._completed = False
        try:
            self.store.set(LAST_SYNC_KEY, int(time.time()))
            self.store.delete(NEED_UPGRADE_KEY)
            self.store.delete(FEATURE_AUTO_ACTIVATED_KEY)

            config = self.config
            job = SyncJob(
                method=config.method or "cli",
                put_mapping=bool(config.put_mapping),
                offset=max(0, int(config.offset or 0)),
                start=True,
                start_time=time.time(),
                start_date_time=_now_display(),
            )
            self.job = job

            global_kinds = self._filter_indexables(global_=True)
            scoped_kinds = self._filter_indexables(global_=False)

            if self.is_network:
                for tenant in self._network_tenants():
                    if not tenant.indexable:
                        continue
                    for slug in scoped_kinds:
                        item = WorkItem(
                            indexable=slug,
                            tenant_id=tenant.id,
                            url=tenant.url.rstrip("/") or None,
                            put_mapping=job.put_mapping,
                        )
                        item.found_items = await self._count_found(item)
                        job.sync_stack.append(item)
                        if slug not in job.network_alias:
                            job.network_alias.append(slug)
            else:
                for slug in scoped_kinds:
                    item = WorkItem(indexable=slug, put_mapping=job.put_mapping)
                    item.found_items = await self._count_found(item)
                    job.sync_stack.append(item)

            for slug in global_kinds:
                item = WorkItem(indexable=slug, put_mapping=job.put_mapping)
                item.found_items = await self._count_found(item)
                job.sync_stack.append(item)

            self.hooks.notify(self.hooks.on_start, job)
            self.job = self.hooks.transform_job(job)
            self._save()

            logger.info(
                f"동기화 잡 생성: item {len(self.job.sync_stack)}개, "
                f"alias {len(self.job.network_alias)}개 (method={self.job.method})"
            )
            return self.job
        finally:
            self._building = False

    def _filter_indexables(self, global_: bool) -> list[str]:
        wanted = self.config.indexables
        return [
            slug
            for slug, indexable in self.indexables.items()
            if bool(indexable.global_) == global_ and (not wanted or slug in wanted)
        ]

    def _network_tenants(self) -> list[Tenant]:
        tenants = self.tenants or []
        limit = self.config.network_wide
        if limit and limit > 0:
            return tenants[:limit]
        return tenants

    async def _count_found(self, item: WorkItem) -> int:
        """건수만 확인하는 조회. 실패해도 잡 생성은 계속 (0건 처리)."""
        indexable = self.get_indexable(item.indexable)
        args = replace(self._build_query_args(item), per_page=1, offset=0)
        try:
            result = await indexable.query(args, item.tenant_id)
        except Exception as e:
            logger.warning(
                f"{item.indexable} (tenant={item.tenant_id}) 건수 확인 실패, 0건으로 처리: {e}"
            )
            return 0
        return int(result.total_objects or 0)

    # ================================================================
    # work item 처리
    # ================================================================

    async def _process_sync_item(self):
        job = self.job
        if job.current_item is None:
            item = job.sync_stack.pop(0)
            item.begin()
            job.current_item = item
            self._output_success(self._indexing_message(item))

        item = job.current_item
        indexable = self.get_indexable(item.indexable)

        if item.put_mapping and not item.mapping_reset_done:
            await self._put_mapping(item, indexable)

        context = self.step_context.begin()
        try:
            await self._index_objects(item, indexable, context)
        finally:
            self._reset_footprint(context)

        if self.job is not None:
            self._save()

        if self.config.step_delay:
            await asyncio.sleep(self.config.step_delay)

    def _indexing_message(self, item: WorkItem) -> str:
        indexable = self.get_indexable(item.indexable)
        plural = indexable.labels["plural"].lower()
        if item.tenant_id is not None and self.is_network:
            return f"Indexing {plural} on tenant {item.tenant_id}..."
        if indexable.global_:
            return f"Indexing {plural} (globally)..."
        return f"Indexing {plural}..."

    async def _put_mapping(self, item: WorkItem, indexable: Indexable):
        """인덱스 삭제 + 매핑 재생성. 실패해도 인덱싱은 계속."""
        item.mapping_reset_done = True

        if self.hooks.should_skip_index_reset(self.job):
            self._save()
            return

        try:
            await indexable.delete_index(item.tenant_id)
            result = await indexable.put_mapping(item.tenant_id)
        except Exception as e:
            logger.warning(f"{item.indexable} 매핑 리셋 실패: {e}")
            result = False

        self.hooks.notify(self.hooks.on_put_mapping, self.job, indexable, result)

        if result:
            self._output_success("Mapping sent")
        else:
            self._output_error("Mapping failed")

    async def _index_objects(self, item: WorkItem, indexable: Indexable, context: StepContext):
        job = self.job

        try:
            self._current_query = await self._get_objects_to_index(item, indexable, context)
        except Exception as e:
            # 소스 조회 실패 → item 을 닫고 다음으로 (남은 레코드는 집계되지 않음)
            message = f"Query failed for {indexable.labels['plural'].lower()}: {e}"
            logger.exception(message)
            item.errors.append(message)
            self._output(message, STATUS_ERROR)
            self._index_cleanup(item, indexable)
            return

        job.found_items = int(self._current_query.total_objects or 0)
        item.found_items = job.found_items
        item.total = job.found_items

        if job.found_items and job.offset < job.found_items and self._current_query.objects:
            await self._index_next_batch(item, indexable, self._current_query)
            if job.offset >= job.found_items:
                self._index_cleanup(item, indexable)
        else:
            self._index_cleanup(item, indexable)

    async def _get_objects_to_index(
        self, item: WorkItem, indexable: Indexable, context: StepContext
    ) -> QueryResult:
        job = self.job
        self.hooks.notify(
            self.hooks.on_pre_batch, job, "start" if job.start else None, indexable
        )
        context.count_action("pre_sync_index")
        job.start = False

        args = self._build_query_args(item)
        context.record_query(args)
        return await indexable.query(args, item.tenant_id)

    def _build_query_args(self, item: WorkItem) -> QueryArgs:
        config = self.config
        args = QueryArgs(
            per_page=config.effective_per_page(),
            offset=self.job.offset if self.job else 0,
            include=list(config.include) if config.include else None,
            content_types=list(config.content_types) if config.content_types else None,
            lower_limit_object_id=config.lower_limit_object_id,
            upper_limit_object_id=config.upper_limit_object_id,
            advanced_pagination=config.advanced_pagination,
        )
        if config.advanced_pagination and item.last_processed_id is not None:
            args.last_processed_object_id = item.last_processed_id
        args = self.hooks.transform_args(args)
        args.per_page = max(1, int(args.per_page))
        return args

    async def _index_next_batch(self, item: WorkItem, indexable: Indexable, query: QueryResult):
        job = self.job

        queued: list[Any] = []
        skipped = 0
        for obj in query.objects:
            if self.hooks.should_skip(obj, indexable):
                skipped += 1
            else:
                queued.append(object_id(obj))

        item.skipped += skipped
        job.offset = job.offset + len(query.objects)
        # advanced pagination 재개 기준: 마지막 queued ID 가 아니라 페이지 마지막 ID.
        # 페이지 끝의 skip 레코드는 다음 조회에서 다시 오지 않는다.
        item.last_processed_id = object_id(query.objects[-1])

        if queued:
            delivery = await self._deliver(item, indexable, queued)
            self._account(item, indexable, queued, delivery)

        self._output(
            f"Processed {job.offset}/{job.found_items}. "
            f"Last Object ID: {item.last_processed_id}",
            STATUS_INFO,
            "index_next_batch",
        )

    async def _deliver(self, item: WorkItem, indexable: Indexable, queued: list[Any]) -> _Delivery:
        """total_attempts 회까지 전송. 전송 오류도 항목 실패도 없으면 즉시 종료."""
        total_attempts = self.retry.total_attempts
        delivery = _Delivery()

        for attempt in range(1, total_attempts + 1):
            item.attempts += 1
            self.hooks.notify(self.hooks.on_new_attempt, attempt, total_attempts)
            delivery = _Delivery()

            try:
                if self.config.nobulk:
                    for queued_id in queued:
                        result = await indexable.index(queued_id, item.tenant_id, blocking=True)
                        self.hooks.notify(self.hooks.on_object_indexed, queued_id, indexable, result)
                        error = result.get("error") if isinstance(result, Mapping) else None
                        if error:
                            if not isinstance(error, Mapping):
                                error = {"reason": str(error)}
                            delivery.failed.append({"index": {"_id": queued_id, "error": dict(error)}})
                else:
                    result = await indexable.bulk_index(queued, item.tenant_id)
                    self.hooks.notify(self.hooks.on_batch_indexed, indexable, queued, result)
                    if isinstance(result, Mapping) and result.get("errors") is True:
                        delivery.failed = [i for i in result.get("items", []) if _item_error(i)]
            except Exception as e:
                delivery.error = e

            if delivery.error is None and not delivery.failed:
                break

            if attempt < total_attempts:
                backoff = self.retry.backoff(attempt)
                reason = delivery.error or f"{len(delivery.failed)}건 실패"
                logger.warning(
                    f"{item.indexable} 배치 실패 (시도 {attempt}/{total_attempts}), "
                    f"{backoff:.1f}초 후 재시도: {reason}"
                )
                if backoff:
                    await asyncio.sleep(backoff)

        return delivery

    def _account(self, item: WorkItem, indexable: Indexable, queued: list[Any], delivery: _Delivery):
        if delivery.error is not None:
            messages = _error_messages(delivery.error)
            item.failed += len(queued)
            item.errors.extend(messages)
            self._log_failure(item, queued, type(delivery.error).__name__, messages)
            self._output("\n".join(messages), STATUS_WARNING)
        elif delivery.failed:
            failed_count = min(len(delivery.failed), len(queued))
            lines = self._format_index_errors(delivery.failed, indexable)
            item.synced += len(queued) - failed_count
            item.failed += failed_count
            item.errors.extend(lines)
            failed_ids = [next(iter(f.values())).get("_id") for f in delivery.failed]
            self._log_failure(item, failed_ids, "item_errors", lines)
            self._output("\n".join(lines), STATUS_WARNING)
        else:
            item.synced += len(queued)

    def _format_index_errors(self, failed: list[dict], indexable: Indexable) -> list[str]:
        singular = indexable.labels["singular"]
        lines = []
        for entry in failed:
            op = next(iter(entry.values()))
            error = op.get("error") or {}
            lines.append(
                f"{op.get('_id')} ({singular}): "
                f"[{error.get('type', 'unknown')}] {error.get('reason', '')}"
            )
        return lines

    def _log_failure(self, item: WorkItem, ids: list[Any], error_type: str, errors: list[str]):
        if self.failure_logger is None:
            return
        self.failure_logger.log_failure(
            item.indexable, item.tenant_id, ids, error_type, errors, item.attempts
        )

    def _index_cleanup(self, item: WorkItem, indexable: Indexable):
        """work item 완료: totals 합산, offset 초기화, 요약 메시지"""
        job = self.job
        plural = indexable.labels["plural"].lower()
        on_tenant = (
            f" on tenant {item.tenant_id}"
            if item.tenant_id is not None and self.is_network
            else ""
        )

        item.total = item.accounted
        job.totals.add(item)

        if item.failed:
            self._output(
                f"Number of {plural} index errors{on_tenant}: {item.failed}", STATUS_WARNING
            )

        job.offset = 0
        job.current_item = None
        if isinstance(indexable, Cache):
            indexable.reset()

        self._output_success(f"Number of {plural} indexed{on_tenant}: {item.synced}")
        self.hooks.notify(self.hooks.on_item_complete, job, item)

    def _reset_footprint(self, context: StepContext):
        """스텝 사이 메모리 정리 - 조회 결과/쿼리 기록/캐시"""
        self._current_query = None
        context.reset()

    # ================================================================
    # alias / 완료
    # ================================================================

    async def _create_network_alias(self):
        job = self.job
        indexable = self.get_indexable(job.network_alias.pop(0))
        indexes = [
            indexable.get_index_name(tenant.id)
            for tenant in self._network_tenants()
            if tenant.indexable
        ]

        try:
            result = await indexable.create_network_alias(indexes)
        except Exception as e:
            logger.warning(f"{indexable.slug} alias 생성 실패: {e}")
            result = False

        plural = indexable.labels["plural"].lower()
        if result:
            self._output_success(f"Network alias created for {plural} ...")
        else:
            self._output_error(f"Network alias creation failed for {plural} ...")

    async def _full_index_complete(self) -> dict[str, Any]:
        job = self.job
        totals = job.totals.to_dict()

        self.job = None
        self._completed = True

        totals["end_date_time"] = _now_display()
        totals["end_time_gmt"] = int(time.time())
        totals["total_time"] = time.time() - job.start_time
        self.store.set(LAST_INDEX_KEY, totals)
        self.store.set(f"last_{job.method}_index", totals)

        self.hooks.notify(self.hooks.on_complete, totals)
        self._output_success("Sync complete")
        return totals

    # ================================================================
    # 체크포인트 / 출력
    # ================================================================

    def _load_job(self) -> SyncJob | None:
        data = self.store.get(INDEX_META_KEY)
        return SyncJob.from_dict(data) if data else None

    def _save(self):
        try:
            if self.job is not None:
                self.store.set(INDEX_META_KEY, self.job.to_dict())
            else:
                self.store.delete(INDEX_META_KEY)
        except CheckpointError:
            raise
        except Exception as e:
            raise CheckpointError(f"체크포인트 저장 실패: {e}") from e

    def _output(self, message_text: str, status: str = STATUS_INFO, context: str = ""):
        """체크포인트 저장 후 진행 메시지 발행"""
        self._save()
        if self.job is not None:
            index_meta = self.job.to_dict()
            totals = index_meta["totals"]
        else:
            index_meta = None
            totals = self.store.get(LAST_INDEX_KEY) or {}

        message = ProgressMessage(
            message=message_text,
            index_meta=index_meta,
            totals=totals,
            status=status,
            context=context,
        )
        try:
            self.progress.emit(message)
        except Exception:
            logger.exception("progress sink 실패")

    def _output_success(self, message: str, context: str = ""):
        self._output(message, STATUS_SUCCESS, context)

    def _output_error(self, message: str, context: str = ""):
        self._output(message, STATUS_ERROR, context)
