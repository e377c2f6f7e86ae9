#!/usr/bin/env python3
# sync_to_es.py
"""
소스 레코드 → Elasticsearch 동기화 (CLI 엔트리포인트)

사전 조건:
  Elasticsearch:  docker compose up -d

실행:
  # 단일 사이트, 인덱스 재생성 후 전체 동기화
  python sync_to_es.py --kind posts=data/posts.parquet --kind terms=data/terms.parquet --setup

  # 멀티 테넌트 ({tenant} 치환) + 글로벌 content kind
  python sync_to_es.py --tenants 1 2 3 \\
      --kind posts=data/{tenant}/posts.parquet \\
      --kind users=data/users.parquet,global

  # 스텝 모드 (호출 1회 = 1스텝, 중단 후 같은 명령으로 재개)
  python sync_to_es.py --mode step --kind posts=data/posts.parquet

  # 상태 확인 / 폐기
  python sync_to_es.py --mode status
  python sync_to_es.py --mode cancel
"""

import argparse
import json
from pathlib import Path

from rich.console import Console

from sync_indexer import (
    Config,
    ContentKind,
    DEFAULT_PER_PAGE,
    Tenant,
    cancel_sync,
    run_step,
    run_sync,
    setup_logging,
    sync_status,
)

console = Console()


def parse_kind(value: str, schema: dict | None = None) -> ContentKind:
    """'slug=path[,global]' → ContentKind"""
    if "=" not in value:
        raise argparse.ArgumentTypeError(f"slug=path 형식이 아닙니다: {value}")
    slug, rest = value.split("=", 1)
    path, _, flag = rest.partition(",")
    if flag not in ("", "global"):
        raise argparse.ArgumentTypeError(f"알 수 없는 옵션: {flag}")
    return ContentKind(slug=slug.strip(), path=path.strip(), global_=flag == "global", schema=schema)


def main():
    parser = argparse.ArgumentParser(
        description="소스 레코드 → Elasticsearch (재개 가능한 체크포인트 동기화)"
    )
    parser.add_argument(
        "--mode", choices=["run", "step", "status", "cancel"], default="run",
        help="run=끝까지, step=1스텝, status=체크포인트 조회, cancel=잡 폐기",
    )

    # ── 대상 ──
    target = parser.add_argument_group("대상")
    target.add_argument(
        "--kind", action="append", default=[],
        help="content kind: slug=path[,global] (반복 가능, path에 {tenant} 사용 가능)",
    )
    target.add_argument("--tenants", nargs="+", type=int, default=None, help="테넌트 ID 목록 (멀티 테넌트)")
    target.add_argument("--network_wide", type=int, default=0, help="앞에서 N개 테넌트만 (0=전체)")
    target.add_argument("--indexables", nargs="+", default=None, help="동기화할 content kind만")
    target.add_argument("--include", default=None, help="레코드 ID 목록 (콤마 구분)")
    target.add_argument("--content_types", default=None, help="하위 타입 필터 (콤마 구분)")
    target.add_argument("--schema", type=Path, default=None, help="매핑 JSON 파일 (미지정 시 기본 스키마)")

    # ── 동기화 동작 ──
    sync = parser.add_argument_group("동기화")
    sync.add_argument("--setup", action="store_true", help="인덱스 삭제 후 매핑 재생성")
    sync.add_argument("--method", default="cli")
    sync.add_argument("--offset", type=int, default=0)
    sync.add_argument("--per_page", type=int, default=DEFAULT_PER_PAGE)
    sync.add_argument("--nobulk", action="store_true", help="단건 index 호출 (per_page=1)")
    sync.add_argument("--lower_limit_object_id", type=int, default=None)
    sync.add_argument("--upper_limit_object_id", type=int, default=None)
    sync.add_argument("--advanced_pagination", action="store_true", help="offset 대신 마지막 ID 기준 페이지네이션")
    sync.add_argument("--checkpoint", type=Path, default=Path(".sync_state.json"))
    sync.add_argument("--log_dir", type=Path, default=None)

    # ── 재시도 / 실패 처리 ──
    retry = parser.add_argument_group("재시도 / 실패 처리")
    retry.add_argument("--total_attempts", type=int, default=1, help="배치당 전송 시도 횟수 (default: 1)")
    retry.add_argument("--retry_backoff", type=float, default=0.0, help="첫 재시도 대기 (초, 이후 ×2)")
    retry.add_argument("--failure_log", type=Path, default=None, help="실패 레코드 JSONL 경로")

    # ── ES 연결 ──
    cluster = parser.add_argument_group("ES 연결")
    cluster.add_argument("--es_url", default="http://localhost:9200")
    cluster.add_argument("--es_nodes", nargs="+", default=None, help="클러스터 노드 URL 목록 (설정 시 --es_url 무시)")
    cluster.add_argument("--es_fingerprint", default=None, help="TLS 인증서 SHA-256 fingerprint (--es_nodes 사용 시 필수)")
    cluster.add_argument("--es_username", default=None)
    cluster.add_argument("--es_password", default=None)
    cluster.add_argument("--es_api_key", default=None)
    cluster.add_argument("--index_prefix", default="sync")

    args = parser.parse_args()

    schema = None
    if args.schema:
        schema = json.loads(args.schema.read_text(encoding="utf-8"))

    kinds = [parse_kind(value, schema) for value in args.kind]
    tenants = [Tenant(id=t) for t in args.tenants] if args.tenants else None

    config = Config(
        method=args.method,
        put_mapping=args.setup,
        offset=args.offset,
        indexables=args.indexables,
        network_wide=args.network_wide,
        include=[int(i) for i in args.include.split(",") if i.strip()] if args.include else None,
        content_types=[t.strip() for t in args.content_types.split(",")] if args.content_types else None,
        per_page=args.per_page,
        nobulk=args.nobulk,
        lower_limit_object_id=args.lower_limit_object_id,
        upper_limit_object_id=args.upper_limit_object_id,
        advanced_pagination=args.advanced_pagination,
        total_attempts=args.total_attempts,
        retry_backoff=args.retry_backoff,
        failure_log_path=args.failure_log,
        es_url=args.es_url,
        es_nodes=args.es_nodes,
        es_fingerprint=args.es_fingerprint,
        es_username=args.es_username,
        es_password=args.es_password,
        es_api_key=args.es_api_key,
        index_prefix=args.index_prefix,
        checkpoint_path=args.checkpoint,
        log_dir=args.log_dir,
    )
    setup_logging()

    if args.mode == "status":
        console.print_json(data=sync_status(config))
        return
    if args.mode == "cancel":
        cancelled = cancel_sync(config)
        console.print("취소됨" if cancelled else "진행 중인 동기화가 없습니다")
        return

    if not kinds:
        parser.error("--kind 를 하나 이상 지정하세요")

    if args.mode == "run":
        run_sync(config, kinds, tenants)
        return

    state, messages = run_step(config, kinds, tenants)
    for message in messages:
        console.print(f"[{message.status}] {message.message}", markup=False)
    console.print(f"state: {state.value}")


if __name__ == "__main__":
    main()
