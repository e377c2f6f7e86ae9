"""확장 지점 - 잡 생성 시 주입되는 콜백/전략

전략 (결과가 동작을 바꿈, 예외는 로깅 후 기본값):
    skip_object(record, indexable) -> bool      True면 해당 레코드 건너뜀
    query_args(args: QueryArgs) -> QueryArgs   조회 조건 변형
    skip_index_reset(job) -> bool               True면 매핑 리셋 생략
    job_transforms(job) -> SyncJob              빌드 직후 잡 변형

관찰자 (반환값 무시, 예외는 로깅 후 계속):
    on_start(job)
    on_pre_batch(job, "start" | None, indexable)
    on_new_attempt(attempt, total_attempts)
    on_batch_indexed(indexable, ids, response)
    on_object_indexed(object_id, indexable, result)
    on_put_mapping(job, indexable, result)
    on_item_complete(job, item)
    on_complete(totals: dict)

모든 콜백은 job.method 로 실행 채널(cli/web/cron)을 구분할 수 있다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from .log import get_logger

logger = get_logger("hooks")

SkipPredicate = Callable[[Any, Any], bool]
ArgsTransform = Callable[[Any], Any]


@dataclass
class SyncHooks:
    skip_object: list[SkipPredicate] = field(default_factory=list)
    query_args: list[ArgsTransform] = field(default_factory=list)
    skip_index_reset: list[Callable[[Any], bool]] = field(default_factory=list)
    job_transforms: list[Callable[[Any], Any]] = field(default_factory=list)

    on_start: list[Callable[..., Any]] = field(default_factory=list)
    on_pre_batch: list[Callable[..., Any]] = field(default_factory=list)
    on_new_attempt: list[Callable[..., Any]] = field(default_factory=list)
    on_batch_indexed: list[Callable[..., Any]] = field(default_factory=list)
    on_object_indexed: list[Callable[..., Any]] = field(default_factory=list)
    on_put_mapping: list[Callable[..., Any]] = field(default_factory=list)
    on_item_complete: list[Callable[..., Any]] = field(default_factory=list)
    on_complete: list[Callable[..., Any]] = field(default_factory=list)

    # 전략 실패 시: skip/reset 판정은 False, 변형은 입력을 그대로 사용

    def should_skip(self, record: Any, indexable: Any) -> bool:
        return any(
            self._call(predicate, False, record, indexable) for predicate in self.skip_object
        )

    def transform_args(self, args: Any) -> Any:
        for transform in self.query_args:
            args = self._call(transform, args, args)
        return args

    def transform_job(self, job: Any) -> Any:
        for transform in self.job_transforms:
            job = self._call(transform, job, job)
        return job

    def should_skip_index_reset(self, job: Any) -> bool:
        return any(self._call(check, False, job) for check in self.skip_index_reset)

    def _call(self, strategy: Callable[..., Any], fallback: Any, *args: Any) -> Any:
        try:
            return strategy(*args)
        except Exception:
            logger.exception(f"strategy {getattr(strategy, '__name__', strategy)!r} 실패")
            return fallback

    def notify(self, listeners: list[Callable[..., Any]], *args: Any):
        """관찰자 호출. 관찰자 실패는 동기화를 멈추지 않는다."""
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception(f"hook {getattr(listener, '__name__', listener)!r} 실패")
