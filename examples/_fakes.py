"""테스트용 외부 협력자 대역 (Indexable / Cache / 저장소)"""

from sync_indexer import ListSource, MemoryCheckpointStore, QueryResult


def make_records(ids, kind="post"):
    return [{"id": i, "title": f"{kind} {i}", "type": kind} for i in ids]


class FakeIndexable:
    """
    메모리 소스 + 호출 기록.

    bulk_results / index_results: 호출마다 하나씩 꺼내 사용
      (Exception 이면 raise, dict 면 반환). 다 쓰면 성공 응답.
    """

    def __init__(
        self,
        slug,
        records=(),
        *,
        tenant_records=None,
        global_=False,
        singular=None,
        plural=None,
        bulk_results=(),
        index_results=(),
        fail_query=False,
        put_mapping_result=True,
    ):
        self.slug = slug
        self.labels = {"singular": singular or slug.rstrip("s"), "plural": plural or slug}
        self.global_ = global_
        self._records = list(records)
        self._tenant_records = tenant_records or {}
        self._sources = {}
        self.bulk_results = list(bulk_results)
        self.index_results = list(index_results)
        self.fail_query = fail_query
        self.put_mapping_result = put_mapping_result

        self.queries = []
        self.bulk_calls = []
        self.index_calls = []
        self.deleted = []
        self.mapped = []
        self.aliases = []

    def source(self, tenant_id):
        if tenant_id not in self._sources:
            self._sources[tenant_id] = ListSource(
                self._tenant_records.get(tenant_id, self._records)
            )
        return self._sources[tenant_id]

    async def query(self, args, tenant_id) -> QueryResult:
        if self.fail_query:
            raise RuntimeError("db gone")
        self.queries.append((args, tenant_id))
        return self.source(tenant_id).query(args)

    async def bulk_index(self, ids, tenant_id):
        self.bulk_calls.append(list(ids))
        if self.bulk_results:
            result = self.bulk_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return {"errors": False, "items": []}

    async def index(self, object_id, tenant_id, blocking=True):
        self.index_calls.append(object_id)
        if self.index_results:
            result = self.index_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return {"_id": object_id, "result": "created"}

    async def delete_index(self, tenant_id):
        self.deleted.append(tenant_id)
        return True

    async def put_mapping(self, tenant_id):
        self.mapped.append(tenant_id)
        return self.put_mapping_result

    def get_index_name(self, tenant_id):
        if tenant_id is None:
            return self.slug
        return f"{self.slug}-{tenant_id}"

    async def create_network_alias(self, indexes):
        self.aliases.append(list(indexes))
        return True


class FakeCache:
    def __init__(self):
        self.resets = 0

    def reset(self):
        self.resets += 1


class FlakyStore(MemoryCheckpointStore):
    """fail=True 인 동안 set() 이 OSError"""

    def __init__(self):
        super().__init__()
        self.fail = False

    def set(self, key, value):
        if self.fail:
            raise OSError("disk full")
        super().set(key, value)
