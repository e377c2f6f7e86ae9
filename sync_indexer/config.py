"""동기화 설정"""

from dataclasses import dataclass, field
from pathlib import Path

# ── 체크포인트 저장소 키 ──
INDEX_META_KEY = "sync_job"                  # 진행 중인 잡
LAST_INDEX_KEY = "last_index"                # 마지막 완료 잡의 totals
LAST_SYNC_KEY = "last_sync"                  # 마지막 동기화 시작 시각 (epoch)
NEED_UPGRADE_KEY = "need_upgrade_sync"
FEATURE_AUTO_ACTIVATED_KEY = "feature_auto_activated_sync"

DEFAULT_PER_PAGE = 350

# ── 외부 매핑이 없을 때 사용되는 기본 스키마 ──
DEFAULT_SCHEMA = {
    "settings": {
        "number_of_shards": 1,
        "number_of_replicas": 0,
    },
    "mappings": {
        "dynamic": True,
        "properties": {
            "id": {"type": "long"},
        },
    },
}


@dataclass
class Config:
    # 실행 채널 태그 (cli, web, cron ...) - 훅에 그대로 전달됨
    method: str = "cli"

    # 인덱스 재생성 여부 (True면 work item마다 delete + put_mapping)
    put_mapping: bool = False
    offset: int = 0  # 첫 work item의 시작 offset

    # 대상 선택
    indexables: list[str] | None = None     # content kind 화이트리스트 (None=전체)
    network_wide: int = 0                   # 멀티 테넌트: 0=전체, N=앞에서 N개
    include: list[int] | None = None        # 특정 레코드 ID만 (per_page=len(include))
    content_types: list[str] | None = None  # 소스 하위 타입 필터

    # 페이지네이션
    per_page: int = DEFAULT_PER_PAGE
    nobulk: bool = False                    # True → per_page=1, 단건 index 호출
    lower_limit_object_id: int | None = None
    upper_limit_object_id: int | None = None
    advanced_pagination: bool = False       # offset 대신 last_processed_id 기준

    # 재시도
    total_attempts: int = 1                 # 배치당 전송 시도 횟수 (1=재시도 없음)
    retry_backoff: float = 0.0              # 첫 재시도 대기 (초), 0이면 즉시
    retry_exponential: bool = True
    retry_max_backoff: float = 60.0

    step_delay: float = 0.0005              # 스텝 사이 대기 (초)

    # Elasticsearch 연결
    es_url: str = "http://localhost:9200"
    es_nodes: list[str] | None = None       # 클러스터 노드 목록 (설정 시 es_url 무시)
    es_fingerprint: str | None = None       # TLS 인증서 SHA-256 fingerprint (클러스터 시 필수)
    es_username: str | None = None
    es_password: str | None = None
    es_api_key: str | None = None           # API Key (basic_auth 대신 사용 가능)
    index_prefix: str = "sync"

    # 상태 / 로그
    checkpoint_path: Path = field(default_factory=lambda: Path(".sync_state.json"))
    log_dir: Path | None = None             # None → 콘솔만
    log_failures: bool = True
    failure_log_path: Path | None = None    # None → log_dir/failures.jsonl (log_dir 없으면 비활성)

    def effective_per_page(self) -> int:
        """nobulk / include 를 반영한 페이지 크기 (최소 1)"""
        per_page = self.per_page
        if self.nobulk:
            per_page = 1
        if self.include:
            per_page = len(self.include)
        return max(1, int(per_page))
