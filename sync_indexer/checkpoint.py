"""체크포인트 저장소 - 잡 상태를 키-값으로 통째로 읽고 쓰기

MemoryCheckpointStore:   프로세스 내 dict (테스트 / 단발 실행)
JsonFileCheckpointStore: JSON 파일 1개, 임시 파일 + os.replace 로 원자적 교체

부분 업데이트는 없음: set()은 항상 값 전체를 덮어쓴다.
"""

from __future__ import annotations

import contextlib
import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from .errors import CheckpointError
from .log import get_logger

logger = get_logger("checkpoint")


class CheckpointStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryCheckpointStore:
    """dict 기반 저장소. 저장/조회 시 deepcopy 하여 호출자 객체와 분리."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileCheckpointStore:
    """
    JSON 파일 하나에 모든 키를 저장.

    쓰기마다 같은 디렉토리의 임시 파일에 기록 후 os.replace → 중간에 죽어도
    이전 상태 또는 새 상태 중 하나만 남는다.

    사용 예:
        store = JsonFileCheckpointStore(Path(".sync_state.json"))
        store.set("sync_job", job.to_dict())
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            raise CheckpointError(f"체크포인트 읽기 실패 ({self.path}): {e}") from e

    def _write(self, data: dict[str, Any]):
        tmp = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            if tmp is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp)
            raise CheckpointError(f"체크포인트 쓰기 실패 ({self.path}): {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)
        logger.debug(f"checkpoint set: {key}")

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)
            logger.debug(f"checkpoint delete: {key}")
