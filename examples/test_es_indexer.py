#!/usr/bin/env python3
"""
ES 계층 예시 - Mock AsyncElasticsearch 로 인덱스 조작 / 적재 코드 경로 검증

테스트 항목:
  1. Config 기본값 + effective_per_page
  2. build_es_client - 단일 노드 / 클러스터 / 인증
  3. ESIndexer - delete/create/alias/bulk/index/count
  4. ESIndexable - 인덱스 이름, 벌크, 단건 실패, 매핑, alias, 테넌트 소스 해제
  5. ListSource / ParquetSource - 필터 + Parquet 로드
  6. ContentKind / build_indexables
"""

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pyarrow as pa
import pyarrow.parquet as pq
from elasticsearch import BadRequestError, NotFoundError

from sync_indexer import (
    Config,
    ContentKind,
    DEFAULT_PER_PAGE,
    DEFAULT_SCHEMA,
    ESIndexable,
    ESIndexer,
    ListSource,
    MemoryCheckpointStore,
    MemoryProgressSink,
    ParquetSource,
    QueryArgs,
    SyncOrchestrator,
    SyncState,
    Tenant,
    build_es_client,
    build_indexables,
)


def _mock_es():
    es = MagicMock()
    es.indices = MagicMock()
    es.indices.exists = AsyncMock(return_value=False)
    es.indices.create = AsyncMock()
    es.indices.delete = AsyncMock()
    es.indices.update_aliases = AsyncMock()
    es.index = AsyncMock(return_value={"result": "created"})
    es.count = AsyncMock(return_value={"count": 42})
    return es


def test_config():
    """Config: 기본값 + 페이지 크기 규칙"""
    print("=" * 60)
    print("[1] Config - 기본값 + effective_per_page")
    print("=" * 60)

    c = Config()
    assert c.per_page == DEFAULT_PER_PAGE == 350
    assert c.method == "cli"
    assert c.total_attempts == 1
    assert c.put_mapping is False
    assert c.checkpoint_path == Path(".sync_state.json")
    assert c.effective_per_page() == 350
    print(f"  기본: per_page={c.per_page}, attempts={c.total_attempts}")

    assert Config(nobulk=True).effective_per_page() == 1
    assert Config(include=[1, 2, 3]).effective_per_page() == 3
    assert Config(nobulk=True, include=[1, 2]).effective_per_page() == 2
    assert Config(per_page=0).effective_per_page() == 1
    print(f"  nobulk=1, include=len(include), 최소 1  OK")

    assert "mappings" in DEFAULT_SCHEMA and "settings" in DEFAULT_SCHEMA
    print("  PASS\n")


def test_build_es_client():
    """build_es_client: 단일 노드 / 클러스터 / 인증 검증"""
    print("=" * 60)
    print("[2] build_es_client - 연결 설정")
    print("=" * 60)

    with patch("sync_indexer.indexer.AsyncElasticsearch") as MockES:
        build_es_client(Config(es_url="http://localhost:9200"))
        call_kwargs = MockES.call_args.kwargs
        assert call_kwargs["hosts"] == ["http://localhost:9200"]
        assert "ssl_assert_fingerprint" not in call_kwargs
        print(f"  단일 노드: hosts={call_kwargs['hosts']}  OK")

        MockES.reset_mock()
        build_es_client(Config(
            es_nodes=["https://es01:9200", "https://es02:9200"],
            es_fingerprint="AA:BB:CC",
            es_username="elastic",
            es_password="secret",
        ))
        call_kwargs = MockES.call_args.kwargs
        assert call_kwargs["hosts"] == ["https://es01:9200", "https://es02:9200"]
        assert call_kwargs["ssl_assert_fingerprint"] == "AA:BB:CC"
        assert call_kwargs["basic_auth"] == ("elastic", "secret")
        assert call_kwargs["verify_certs"] is False
        print(f"  클러스터: fingerprint + basic_auth  OK")

        MockES.reset_mock()
        build_es_client(Config(
            es_nodes=["https://es01:9200"],
            es_fingerprint="AA:BB:CC",
            es_api_key="my-api-key",
            es_username="elastic",
            es_password="secret",
        ))
        call_kwargs = MockES.call_args.kwargs
        assert call_kwargs["api_key"] == "my-api-key"
        assert "basic_auth" not in call_kwargs
        print(f"  API Key 우선  OK")

        try:
            build_es_client(Config(es_nodes=["https://es01:9200"]))
            assert False, "Should have raised"
        except ValueError as e:
            assert "fingerprint" in str(e).lower()
            print(f"  fingerprint 누락 에러: OK")

        try:
            build_es_client(Config(es_nodes=["https://es01:9200"], es_fingerprint="AA:BB:CC"))
            assert False, "Should have raised"
        except ValueError as e:
            assert "인증" in str(e)
            print(f"  인증 누락 에러: OK")

    print("  PASS\n")


def test_es_indexer():
    """ESIndexer: 인덱스 조작 + 적재"""
    print("=" * 60)
    print("[3] ESIndexer - 인덱스 조작 / 적재")
    print("=" * 60)

    es = _mock_es()
    indexer = ESIndexer(es, "sync-posts")

    # create_index (신규)
    asyncio.run(indexer.create_index())
    kwargs = es.indices.create.call_args.kwargs
    assert kwargs["index"] == "sync-posts"
    assert kwargs["mappings"] == DEFAULT_SCHEMA["mappings"]
    es.indices.delete.assert_not_called()
    print(f"  create_index: 기본 스키마  OK")

    # create_index (기존 존재 → 삭제 후 재생성, 사용자 스키마)
    es.indices.exists = AsyncMock(return_value=True)
    schema = {"settings": {"number_of_shards": 2}, "mappings": {"properties": {"title": {"type": "text"}}}}
    asyncio.run(indexer.create_index(schema))
    es.indices.delete.assert_called_with(index="sync-posts")
    assert es.indices.create.call_args.kwargs["settings"] == {"number_of_shards": 2}
    print(f"  create_index (기존 삭제): delete + create  OK")

    # delete_index: 없으면 False
    assert asyncio.run(indexer.delete_index()) is True
    es.indices.delete = AsyncMock(
        side_effect=NotFoundError(message="no such index", meta=MagicMock(status=404), body={})
    )
    assert asyncio.run(indexer.delete_index()) is False
    print(f"  delete_index: 있음 True / 없음 False  OK")

    # put_alias
    asyncio.run(indexer.put_alias(["sync-posts-1", "sync-posts-2"], "sync-posts-all"))
    actions = es.indices.update_aliases.call_args.kwargs["actions"]
    assert actions == [
        {"add": {"index": "sync-posts-1", "alias": "sync-posts-all"}},
        {"add": {"index": "sync-posts-2", "alias": "sync-posts-all"}},
    ]
    print(f"  put_alias: {len(actions)}개 인덱스  OK")

    # bulk_index: 항목 실패 그대로 반환
    failed = {"index": {"_id": "2", "status": 400, "error": {"type": "x", "reason": "y"}}}
    with patch("sync_indexer.indexer.async_bulk", new=AsyncMock(return_value=(1, [failed]))) as mock_bulk:
        result = asyncio.run(indexer.bulk_index([(1, {"title": "a"}), (2, {"title": "b"})]))
        assert result == {"errors": True, "items": [failed]}
        sent = mock_bulk.call_args.args[1]
        assert sent[0] == {"_index": "sync-posts", "_id": "1", "_source": {"title": "a"}}
        assert mock_bulk.call_args.kwargs["raise_on_error"] is False
        print(f"  bulk_index: 항목 실패 1건 반환  OK")

        mock_bulk.reset_mock()
        assert asyncio.run(indexer.bulk_index([])) == {"errors": False, "items": []}
        mock_bulk.assert_not_called()
        print(f"  bulk_index([]): 전송 없음  OK")

    # 전송 실패는 예외로
    with patch("sync_indexer.indexer.async_bulk", new=AsyncMock(side_effect=ConnectionError("down"))):
        try:
            asyncio.run(indexer.bulk_index([(1, {})]))
            assert False, "Should have raised"
        except ConnectionError:
            print(f"  bulk_index 전송 실패 → 예외  OK")

    asyncio.run(indexer.index(7, {"title": "t"}, refresh=True))
    es.index.assert_called_with(
        index="sync-posts", id="7", document={"title": "t"}, refresh="true"
    )
    assert asyncio.run(indexer.count()) == 42
    print(f"  index / count  OK")

    print("  PASS\n")


def test_es_indexable():
    """ESIndexable: 소스 + 인덱스 묶음"""
    print("=" * 60)
    print("[4] ESIndexable")
    print("=" * 60)

    es = _mock_es()
    records = {
        None: ListSource([{"id": 1, "title": "a"}, {"id": 2, "title": "b"}]),
        5: ListSource([{"id": 9, "title": "z"}]),
    }
    posts = ESIndexable(
        "posts", es, lambda tenant_id: records[tenant_id],
        singular="Post", plural="Posts",
        transform=lambda r: {"title": r["title"].upper()},
    )
    assert posts.get_index_name(None) == "sync-posts"
    assert posts.get_index_name(5) == "sync-posts-5"
    assert posts.alias_name == "sync-posts-all"
    users = ESIndexable("users", es, lambda t: records[None], global_=True, index_prefix="app")
    assert users.get_index_name(5) == "app-users"
    print(f"  인덱스 이름: sync-posts / sync-posts-5 / app-users  OK")

    result = asyncio.run(posts.query(QueryArgs(per_page=10), 5))
    assert [r["id"] for r in result.objects] == [9]

    with patch("sync_indexer.indexer.async_bulk", new=AsyncMock(return_value=(2, []))) as mock_bulk:
        result = asyncio.run(posts.bulk_index([1, 2], None))
        assert result == {"errors": False, "items": []}
        sent = mock_bulk.call_args.args[1]
        assert [a["_source"] for a in sent] == [{"title": "A"}, {"title": "B"}]
        print(f"  bulk_index: transform 적용  OK")

    result = asyncio.run(posts.index(99, None))
    assert result["error"]["type"] == "not_found"
    es.index = AsyncMock(side_effect=BadRequestError(
        message="bad",
        meta=MagicMock(status=400),
        body={"error": {"type": "mapper_parsing_exception", "reason": "failed to parse"}},
    ))
    result = asyncio.run(posts.index(1, None))
    assert result == {
        "_id": 1,
        "error": {"type": "mapper_parsing_exception", "reason": "failed to parse"},
    }
    print(f"  index 실패 → error dict  OK")

    assert asyncio.run(posts.put_mapping(5)) is True
    assert es.indices.create.call_args.kwargs["index"] == "sync-posts-5"
    es.indices.create = AsyncMock(side_effect=BadRequestError(
        message="bad", meta=MagicMock(status=400), body={}
    ))
    assert asyncio.run(posts.put_mapping(5)) is False
    print(f"  put_mapping: 성공 True / ApiError False  OK")

    assert asyncio.run(posts.create_network_alias([])) is False
    assert asyncio.run(posts.create_network_alias(["sync-posts-1"])) is True
    es.indices.update_aliases.assert_called_once()
    print(f"  create_network_alias  OK")

    print("  PASS\n")


def test_tenant_source_retention():
    """테넌트 소스는 1개만 메모리에 유지, work item 완료 시 해제"""
    print("=" * 60)
    print("[4-1] ESIndexable - 테넌트 소스 보관")
    print("=" * 60)

    loads = []

    def source_for(tenant_id):
        loads.append(tenant_id)
        return ListSource([{"id": tenant_id * 10 + i, "title": "t"} for i in range(3)])

    posts = ESIndexable("posts", _mock_es(), source_for)
    asyncio.run(posts.query(QueryArgs(per_page=1), 1))
    asyncio.run(posts.query(QueryArgs(per_page=1), 1))
    asyncio.run(posts.query(QueryArgs(per_page=1), 2))
    assert loads == [1, 2]
    assert list(posts._sources) == [2]
    posts.reset()
    assert posts._sources == {}
    print(f"  같은 테넌트 재사용, 다른 테넌트 조회 시 교체, reset 해제  OK")

    loads.clear()
    tenants = [Tenant(i) for i in range(1, 6)]
    orch = SyncOrchestrator(
        Config(per_page=2, step_delay=0),
        {"posts": posts},
        MemoryCheckpointStore(),
        tenants=tenants,
        progress=MemoryProgressSink(),
    )
    with patch("sync_indexer.indexer.async_bulk", new=AsyncMock(return_value=(2, []))):
        asyncio.run(orch.start())
        retained = []
        while orch.state is not SyncState.COMPLETE:
            asyncio.run(orch.process_next_step())
            assert len(posts._sources) <= 1
            retained.append(list(posts._sources))

    # 건수 확인 5회 + 테넌트당 item 1개 (2스텝 동안 같은 소스 재사용)
    assert loads == [1, 2, 3, 4, 5, 1, 2, 3, 4, 5]
    assert retained[:2] == [[1], []]
    assert posts._sources == {}
    assert orch.get_job() is None
    print(f"  5 테넌트 동기화: 로드 {len(loads)}회, 최대 보관 1개, 종료 후 0개  OK")

    print("  PASS\n")


def test_sources():
    """ListSource 필터 + ParquetSource 로드"""
    print("=" * 60)
    print("[5] ListSource / ParquetSource")
    print("=" * 60)

    source = ListSource([
        {"id": 3, "type": "page"},
        {"id": 1, "type": "post"},
        {"id": 2, "type": "post"},
        {"id": 4, "type": "post"},
    ])
    result = source.query(QueryArgs(per_page=2, offset=1))
    assert [r["id"] for r in result.objects] == [2, 3]
    assert result.total_objects == 4

    result = source.query(QueryArgs(per_page=10, content_types=["post"], lower_limit_object_id=2))
    assert [r["id"] for r in result.objects] == [2, 4]
    assert result.total_objects == 2

    result = source.query(QueryArgs(per_page=10, upper_limit_object_id=2, include=[2, 3]))
    assert [r["id"] for r in result.objects] == [2]
    assert source.get_many([4, 99, 1]) == [{"id": 4, "type": "post"}, {"id": 1, "type": "post"}]
    print(f"  필터 / offset / get_many  OK")

    with tempfile.TemporaryDirectory() as tmpdir:
        folder = Path(tmpdir) / "posts"
        folder.mkdir()
        pq.write_table(
            pa.table({"post_id": [2, 1], "title": ["b", "a"]}), folder / "part-0.parquet"
        )
        pq.write_table(
            pa.table({"post_id": [3], "title": ["c"]}), folder / "part-1.parquet"
        )

        src = ParquetSource(folder, id_column="post_id")
        assert len(src) == 3
        assert len(src.parquet_files) == 2
        assert src.get(1) == {"title": "a", "id": 1}
        result = src.query(QueryArgs(per_page=2))
        assert [r["id"] for r in result.objects] == [1, 2]
        print(f"  ParquetSource 폴더: {len(src)}행, id_column 치환  OK")

        try:
            ParquetSource(folder / "part-0.parquet", id_column="missing")
            assert False, "Should have raised"
        except ValueError as e:
            assert "missing" in str(e)
            print(f"  없는 컬럼 → ValueError  OK")

        try:
            ParquetSource(Path(tmpdir) / "nope.parquet")
            assert False, "Should have raised"
        except FileNotFoundError:
            print(f"  없는 경로 → FileNotFoundError  OK")

    print("  PASS\n")


def test_build_indexables():
    """ContentKind → ESIndexable, {tenant} 치환"""
    print("=" * 60)
    print("[6] ContentKind / build_indexables")
    print("=" * 60)

    kind = ContentKind("posts", "data/{tenant}/posts.parquet")
    assert kind.path_for(3) == Path("data/3/posts.parquet")
    assert ContentKind("users", "data/users.parquet", global_=True).path_for(None) == Path("data/users.parquet")

    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "7" / "posts.parquet"
        path.parent.mkdir()
        pq.write_table(pa.table({"id": [1, 2, 3]}), path)

        kinds = [
            ContentKind("posts", f"{tmpdir}/{{tenant}}/posts.parquet", singular="Post", plural="Posts"),
            ContentKind("users", f"{tmpdir}/users.parquet", global_=True),
        ]
        indexables = build_indexables(kinds, _mock_es(), Config(index_prefix="site"))
        assert list(indexables) == ["posts", "users"]
        assert indexables["users"].global_ is True
        assert indexables["posts"].labels == {"singular": "Post", "plural": "Posts"}
        assert indexables["posts"].get_index_name(7) == "site-posts-7"

        result = asyncio.run(indexables["posts"].query(QueryArgs(per_page=10), 7))
        assert result.total_objects == 3
        print(f"  tenant 7 소스 지연 로드: {result.total_objects}행  OK")

    print("  PASS\n")


if __name__ == "__main__":
    test_config()
    test_build_es_client()
    test_es_indexer()
    test_es_indexable()
    test_tenant_source_retention()
    test_sources()
    test_build_indexables()
    print("=" * 60)
    print("ALL TESTS PASSED")
    print("=" * 60)
