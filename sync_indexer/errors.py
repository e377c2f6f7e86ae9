"""동기화 예외 계층"""


class SyncError(Exception):
    """sync_indexer 예외 베이스"""


class CheckpointError(SyncError):
    """체크포인트 저장소 읽기/쓰기 실패.

    스텝 중 드라이버까지 전파되는 유일한 예외. 같은 스텝을 다시 호출하면 복구됨.
    """


class SyncInProgressError(SyncError):
    """이미 진행 중인 잡이 있는데 resume 없이 새 잡을 시작하려 할 때"""


class NoSyncJobError(SyncError):
    """잡이 없는 상태에서 스텝 실행을 요청했을 때"""


class UnknownIndexableError(SyncError, KeyError):
    """등록되지 않은 content kind slug"""
