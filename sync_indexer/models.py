"""동기화 잡 데이터 모델 - 체크포인트로 직렬화되는 상태

SyncJob (잡 1개, 체크포인트 1개)
  ├─ sync_stack:    아직 시작하지 않은 WorkItem 큐
  ├─ current_item:  진행 중인 WorkItem (없으면 None)
  ├─ network_alias: 멀티 테넌트 alias 생성 대기 content kind
  └─ totals:        완료된 WorkItem 카운터 합계

to_dict()/from_dict()는 JSON 호환 dict만 주고받는다 (체크포인트 저장소가 통째로 읽고 씀).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any


@dataclass
class Totals:
    total: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    total_time: float = 0.0
    errors: list[str] = field(default_factory=list)

    def add(self, item: WorkItem):
        """완료된 WorkItem 카운터를 합산"""
        self.total += item.total
        self.synced += item.synced
        self.skipped += item.skipped
        self.failed += item.failed
        self.errors.extend(item.errors)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Totals:
        return cls(**_known(cls, data))


@dataclass
class WorkItem:
    """(tenant, content kind) 한 쌍의 전체 인덱싱 작업"""

    indexable: str
    tenant_id: int | None = None
    url: str | None = None
    put_mapping: bool = False
    found_items: int = 0

    # 시작 후 카운터
    started: bool = False
    total: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    last_processed_id: int | str | None = None
    attempts: int = 0
    mapping_reset_done: bool = False

    def begin(self):
        """스택에서 꺼낼 때 카운터 초기화"""
        self.started = True
        self.total = 0
        self.synced = 0
        self.skipped = 0
        self.failed = 0
        self.errors = []
        self.attempts = 0

    @property
    def accounted(self) -> int:
        return self.synced + self.skipped + self.failed

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkItem:
        return cls(**_known(cls, data))


@dataclass
class SyncJob:
    method: str = "cli"
    put_mapping: bool = False
    offset: int = 0
    start: bool = True
    sync_stack: list[WorkItem] = field(default_factory=list)
    current_item: WorkItem | None = None
    network_alias: list[str] = field(default_factory=list)
    totals: Totals = field(default_factory=Totals)
    start_time: float = 0.0
    start_date_time: str | None = None
    found_items: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "put_mapping": self.put_mapping,
            "offset": self.offset,
            "start": self.start,
            "sync_stack": [item.to_dict() for item in self.sync_stack],
            "current_item": self.current_item.to_dict() if self.current_item else None,
            "network_alias": list(self.network_alias),
            "totals": self.totals.to_dict(),
            "start_time": self.start_time,
            "start_date_time": self.start_date_time,
            "found_items": self.found_items,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncJob:
        data = dict(data)
        data["sync_stack"] = [WorkItem.from_dict(i) for i in data.get("sync_stack", [])]
        current = data.get("current_item")
        data["current_item"] = WorkItem.from_dict(current) if current else None
        data["totals"] = Totals.from_dict(data.get("totals") or {})
        data["network_alias"] = list(data.get("network_alias", []))
        return cls(**_known(cls, data))


@dataclass
class QueryArgs:
    """소스 어댑터에 전달되는 한 페이지 조회 조건 (저장되지 않음)"""

    per_page: int
    offset: int = 0
    include: list[int] | None = None
    content_types: list[str] | None = None
    lower_limit_object_id: int | None = None
    upper_limit_object_id: int | None = None
    last_processed_object_id: int | str | None = None
    advanced_pagination: bool = False


@dataclass
class QueryResult:
    objects: list[Any]
    total_objects: int


@dataclass
class Tenant:
    """멀티 테넌트 배포의 하위 사이트"""

    id: int
    url: str = ""
    indexable: bool = True


def _known(cls, data: dict[str, Any]) -> dict[str, Any]:
    # 이전 버전 체크포인트의 알 수 없는 키는 무시
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}
