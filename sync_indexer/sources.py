"""소스 레코드 어댑터 - 페이지 단위 조회

ListSource:    메모리 상의 레코드 리스트 (dict, "id" 키 필수)
ParquetSource: Parquet 파일/폴더를 읽어 ListSource 로 제공

조회 규칙 (QueryArgs):
  - include / content_types / lower·upper_limit_object_id 로 필터 (경계 포함)
  - 필터 결과는 id 오름차순
  - total_objects 는 필터 결과 전체 건수 (offset / last_processed 와 무관)
  - advanced_pagination + last_processed_object_id 이면 offset 대신 id > last 부터
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import pyarrow.parquet as pq

from .log import get_logger
from .models import QueryArgs, QueryResult

logger = get_logger("sources")


class ListSource:
    def __init__(self, records: Iterable[dict[str, Any]], type_field: str = "type"):
        self._records = sorted(records, key=lambda r: r["id"])
        self._by_id = {r["id"]: r for r in self._records}
        self.type_field = type_field

    def __len__(self) -> int:
        return len(self._records)

    def _filtered(self, args: QueryArgs) -> list[dict[str, Any]]:
        records = self._records
        if args.include:
            wanted = set(args.include)
            records = [r for r in records if r["id"] in wanted]
        if args.content_types:
            types = set(args.content_types)
            records = [r for r in records if r.get(self.type_field) in types]
        if args.lower_limit_object_id is not None:
            records = [r for r in records if r["id"] >= args.lower_limit_object_id]
        if args.upper_limit_object_id is not None:
            records = [r for r in records if r["id"] <= args.upper_limit_object_id]
        return records

    def query(self, args: QueryArgs) -> QueryResult:
        records = self._filtered(args)
        per_page = max(1, args.per_page)

        if args.advanced_pagination and args.last_processed_object_id is not None:
            last = args.last_processed_object_id
            page = [r for r in records if r["id"] > last][:per_page]
        else:
            page = records[args.offset : args.offset + per_page]

        return QueryResult(objects=page, total_objects=len(records))

    def get(self, object_id: Any) -> dict[str, Any] | None:
        return self._by_id.get(object_id)

    def get_many(self, ids: Iterable[Any]) -> list[dict[str, Any]]:
        return [self._by_id[i] for i in ids if i in self._by_id]


class ParquetSource(ListSource):
    """
    Parquet 파일 또는 폴더(모든 .parquet, 알파벳 순)를 레코드로 로드.

    사용 예:
        source = ParquetSource("data/posts.parquet", id_column="post_id")
        source.query(QueryArgs(per_page=350))
    """

    def __init__(
        self,
        parquet_path: Path,
        id_column: str = "id",
        chunk_size: int = 10000,
        type_field: str = "type",
    ):
        self.parquet_path = Path(parquet_path)

        if not self.parquet_path.exists():
            raise FileNotFoundError(f"경로가 없습니다: {self.parquet_path}")

        if self.parquet_path.is_file():
            self.parquet_files = [self.parquet_path]
        elif self.parquet_path.is_dir():
            self.parquet_files = sorted(self.parquet_path.glob("*.parquet"))
            if not self.parquet_files:
                raise FileNotFoundError(
                    f"폴더에 .parquet 파일이 없습니다: {self.parquet_path}"
                )
        else:
            raise ValueError(f"유효하지 않은 경로: {self.parquet_path}")

        records: list[dict[str, Any]] = []
        for parquet_file_path in self.parquet_files:
            parquet_file = pq.ParquetFile(parquet_file_path)
            columns = parquet_file.schema_arrow.names
            if id_column not in columns:
                raise ValueError(
                    f"컬럼 '{id_column}'이 파일 '{parquet_file_path.name}'에 없습니다. "
                    f"사용 가능한 컬럼: {', '.join(columns)}"
                )
            for batch in parquet_file.iter_batches(batch_size=chunk_size):
                for row in batch.to_pylist():
                    if id_column != "id":
                        row["id"] = row.pop(id_column)
                    records.append(row)

        super().__init__(records, type_field=type_field)
        logger.info(
            f"Parquet 로드: [cyan]{self.parquet_path.name}[/cyan] "
            f"({len(self.parquet_files)}개 파일, {len(records):,}행)"
        )
