"""Elasticsearch 인덱스 관리 + 벌크/단건 인덱싱"""

from __future__ import annotations

from typing import Any

from elasticsearch import AsyncElasticsearch, NotFoundError
from elasticsearch.helpers import async_bulk

from .config import Config, DEFAULT_SCHEMA


def build_es_client(config: Config) -> AsyncElasticsearch:
    """Config 기반으로 AsyncElasticsearch 클라이언트를 생성.

    - 단일 노드 (HTTP): es_url 사용 - fingerprint 불필요
    - 클러스터 (HTTPS): es_nodes 사용 - fingerprint 필수

    Examples:
        config = Config(es_url="http://localhost:9200")

        config = Config(
            es_nodes=["https://es01:9200", "https://es02:9200"],
            es_fingerprint="B1:2A:...:CF",
            es_username="elastic",
            es_password="changeme",
        )
    """
    hosts = config.es_nodes or [config.es_url]
    is_cluster = config.es_nodes is not None

    if is_cluster:
        if not config.es_fingerprint:
            raise ValueError(
                "--es_fingerprint 필수: 클러스터 연결에는 "
                "TLS 인증서 fingerprint가 필요합니다."
            )
        if not config.es_api_key and not (config.es_username and config.es_password):
            raise ValueError(
                "인증 정보 필수: --es_api_key 또는 "
                "--es_username + --es_password를 지정하세요."
            )

    kwargs: dict = {"hosts": hosts}

    # 인증: API Key 우선, 없으면 Basic Auth
    if config.es_api_key:
        kwargs["api_key"] = config.es_api_key
    elif config.es_username and config.es_password:
        kwargs["basic_auth"] = (config.es_username, config.es_password)

    if config.es_fingerprint:
        kwargs["ssl_assert_fingerprint"] = config.es_fingerprint
        kwargs["verify_certs"] = False  # fingerprint가 CA 체인 검증을 대체

    return AsyncElasticsearch(**kwargs)


class ESIndexer:
    """
    인덱스 1개에 대한 Elasticsearch 조작.

    클라이언트는 여러 ESIndexer가 공유한다 (테넌트/content kind 별 인덱스).
      - 매핑 리셋: delete_index → create_index
      - 적재:     bulk_index (배치) / index (단건)
      - 멀티 테넌트: put_alias
    """

    def __init__(self, es: AsyncElasticsearch, index_name: str):
        self.es = es
        self.index_name = index_name

    # ================================================================
    # 인덱스 관리
    # ================================================================

    async def delete_index(self) -> bool:
        """인덱스 삭제. 없으면 False."""
        try:
            await self.es.indices.delete(index=self.index_name)
            return True
        except NotFoundError:
            return False

    async def create_index(self, schema: dict | None = None):
        """인덱스 생성 (이미 존재하면 삭제 후 재생성)."""
        if await self.es.indices.exists(index=self.index_name):
            await self.es.indices.delete(index=self.index_name)

        schema = schema or DEFAULT_SCHEMA
        await self.es.indices.create(
            index=self.index_name,
            settings=schema.get("settings", {}),
            mappings=schema.get("mappings", {}),
        )

    async def put_alias(self, indexes: list[str], alias: str):
        """여러 인덱스를 하나의 alias로 묶음 (기존 alias 대상은 유지)."""
        await self.es.indices.update_aliases(
            actions=[{"add": {"index": index, "alias": alias}} for index in indexes]
        )

    # ================================================================
    # 적재
    # ================================================================

    async def bulk_index(self, docs: list[tuple[Any, dict]]) -> dict:
        """
        (id, document) 리스트를 벌크 upsert.

        Returns:
            {"errors": bool, "items": [실패 항목, ...]}
            항목 형식: {"index": {"_id": ..., "error": {"type": ..., "reason": ...}}}

        연결/전송 자체가 실패하면 예외가 그대로 올라간다.
        """
        actions = [
            {"_index": self.index_name, "_id": str(doc_id), "_source": document}
            for doc_id, document in docs
        ]
        if not actions:
            return {"errors": False, "items": []}

        _, errors = await async_bulk(
            self.es,
            actions,
            chunk_size=len(actions),
            raise_on_error=False,
            raise_on_exception=True,
        )
        return {"errors": bool(errors), "items": list(errors)}

    async def index(self, doc_id: Any, document: dict, refresh: bool = False):
        """단일 문서 upsert."""
        return await self.es.index(
            index=self.index_name,
            id=str(doc_id),
            document=document,
            refresh="true" if refresh else "false",
        )

    # ================================================================
    # 상태 확인
    # ================================================================

    async def count(self) -> int:
        result = await self.es.count(index=self.index_name)
        return result["count"]
