"""Indexable - content kind 별 소스 조회 + 적재 + 인덱스 조작 묶음

오케스트레이터는 slug → Indexable 매핑을 주입받아 사용한다.
테넌트 범위 작업은 모두 tenant_id 를 명시적으로 받는다 (None = 단일 사이트 / 글로벌).

Indexable 계약:
    slug, labels {"singular", "plural"}, global_
    await query(args, tenant_id) -> QueryResult
    await bulk_index(ids, tenant_id) -> {"errors": bool, "items": [...]}
    await index(object_id, tenant_id, blocking=True) -> dict ("error" 키 = 항목 실패)
    await delete_index(tenant_id) -> bool
    await put_mapping(tenant_id) -> bool
    get_index_name(tenant_id) -> str
    await create_network_alias(indexes) -> bool
전송 자체 실패(연결 끊김 등)는 예외로 올린다.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

from elasticsearch import ApiError, AsyncElasticsearch

from .config import Config
from .indexer import ESIndexer
from .log import get_logger
from .models import QueryArgs, QueryResult
from .sources import ListSource, ParquetSource

logger = get_logger("indexables")


def object_id(obj: Any) -> Any:
    """레코드 ID (dict["id"] 또는 .id)"""
    if isinstance(obj, Mapping):
        return obj["id"]
    return obj.id


class Indexable(Protocol):
    slug: str
    labels: dict[str, str]
    global_: bool

    async def query(self, args: QueryArgs, tenant_id: int | None) -> QueryResult: ...

    async def bulk_index(self, ids: list[Any], tenant_id: int | None) -> dict: ...

    async def index(self, object_id: Any, tenant_id: int | None, blocking: bool = True) -> dict: ...

    async def delete_index(self, tenant_id: int | None) -> bool: ...

    async def put_mapping(self, tenant_id: int | None) -> bool: ...

    def get_index_name(self, tenant_id: int | None) -> str: ...

    async def create_network_alias(self, indexes: list[str]) -> bool: ...


def _default_transform(record: dict[str, Any]) -> dict[str, Any]:
    return dict(record)


class ESIndexable:
    """
    소스(ListSource 계열) + Elasticsearch 인덱스.

    인덱스 이름: {prefix}-{slug} (글로벌/단일 사이트), {prefix}-{slug}-{tenant_id}
    네트워크 alias: {prefix}-{slug}-all

    transform(record) -> document 는 외부에서 주입 (기본: 레코드 그대로).
    """

    def __init__(
        self,
        slug: str,
        es: AsyncElasticsearch,
        source_for: Callable[[int | None], ListSource],
        *,
        singular: str | None = None,
        plural: str | None = None,
        global_: bool = False,
        schema: dict | None = None,
        transform: Callable[[dict[str, Any]], dict[str, Any]] | None = None,
        index_prefix: str = "sync",
    ):
        self.slug = slug
        self.es = es
        self.labels = {"singular": singular or slug, "plural": plural or slug}
        self.global_ = global_
        self.schema = schema
        self.transform = transform or _default_transform
        self.index_prefix = index_prefix
        self._source_for = source_for
        self._sources: dict[int | None, ListSource] = {}

    def source(self, tenant_id: int | None) -> ListSource:
        """테넌트 소스. 메모리에는 마지막으로 조회한 테넌트 1개만 유지."""
        if tenant_id not in self._sources:
            self._sources.clear()
            self._sources[tenant_id] = self._source_for(tenant_id)
        return self._sources[tenant_id]

    def reset(self):
        """로드된 소스 해제 (work item 완료 시 오케스트레이터가 호출)"""
        self._sources.clear()

    def get_index_name(self, tenant_id: int | None) -> str:
        if self.global_ or tenant_id is None:
            return f"{self.index_prefix}-{self.slug}"
        return f"{self.index_prefix}-{self.slug}-{tenant_id}"

    @property
    def alias_name(self) -> str:
        return f"{self.index_prefix}-{self.slug}-all"

    def _indexer(self, tenant_id: int | None) -> ESIndexer:
        return ESIndexer(self.es, self.get_index_name(tenant_id))

    async def query(self, args: QueryArgs, tenant_id: int | None) -> QueryResult:
        return self.source(tenant_id).query(args)

    async def bulk_index(self, ids: list[Any], tenant_id: int | None) -> dict:
        records = self.source(tenant_id).get_many(ids)
        docs = [(object_id(r), self.transform(r)) for r in records]
        return await self._indexer(tenant_id).bulk_index(docs)

    async def index(self, object_id: Any, tenant_id: int | None, blocking: bool = True) -> dict:
        record = self.source(tenant_id).get(object_id)
        if record is None:
            return {
                "_id": object_id,
                "error": {"type": "not_found", "reason": "record no longer exists in source"},
            }
        try:
            response = await self._indexer(tenant_id).index(
                object_id, self.transform(record), refresh=blocking
            )
        except ApiError as e:
            error = e.body.get("error", {}) if isinstance(e.body, dict) else {}
            if not isinstance(error, dict):
                error = {"reason": str(error)}
            return {
                "_id": object_id,
                "error": {
                    "type": error.get("type", type(e).__name__),
                    "reason": error.get("reason", str(e)),
                },
            }
        return {"_id": object_id, "result": response.get("result")}

    async def delete_index(self, tenant_id: int | None) -> bool:
        return await self._indexer(tenant_id).delete_index()

    async def put_mapping(self, tenant_id: int | None) -> bool:
        try:
            await self._indexer(tenant_id).create_index(self.schema)
        except ApiError as e:
            logger.warning(f"매핑 생성 실패 {self.get_index_name(tenant_id)}: {e}")
            return False
        return True

    async def create_network_alias(self, indexes: list[str]) -> bool:
        if not indexes:
            return False
        try:
            await ESIndexer(self.es, self.alias_name).put_alias(indexes, self.alias_name)
        except ApiError as e:
            logger.warning(f"alias 생성 실패 {self.alias_name}: {e}")
            return False
        return True


# ============================================================
# 선언형 content kind → ESIndexable
# ============================================================
@dataclass
class ContentKind:
    """
    CLI/설정에서 선언하는 content kind.

    path 에 "{tenant}" 가 있으면 테넌트별 파일로 치환:
        ContentKind("posts", "data/{tenant}/posts.parquet")
        ContentKind("users", "data/users.parquet", global_=True)
    """

    slug: str
    path: str
    global_: bool = False
    singular: str | None = None
    plural: str | None = None
    id_column: str = "id"
    schema: dict | None = None

    def path_for(self, tenant_id: int | None) -> Path:
        tenant = "" if tenant_id is None else str(tenant_id)
        return Path(self.path.replace("{tenant}", tenant))


def build_indexables(
    kinds: list[ContentKind],
    es: AsyncElasticsearch,
    config: Config,
    transforms: Mapping[str, Callable[[dict[str, Any]], dict[str, Any]]] | None = None,
) -> dict[str, ESIndexable]:
    """ContentKind 목록 → slug: ESIndexable (Parquet 소스는 처음 조회할 때 로드)"""
    transforms = transforms or {}
    indexables: dict[str, ESIndexable] = {}
    for kind in kinds:
        indexables[kind.slug] = ESIndexable(
            kind.slug,
            es,
            lambda tenant_id, kind=kind: ParquetSource(
                kind.path_for(tenant_id), id_column=kind.id_column
            ),
            singular=kind.singular,
            plural=kind.plural,
            global_=kind.global_,
            schema=kind.schema,
            transform=transforms.get(kind.slug),
            index_prefix=config.index_prefix,
        )
    return indexables
