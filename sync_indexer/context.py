"""스텝 컨텍스트 - 스텝 사이에 비워지는 일시 상태

수천 스텝을 한 프로세스에서 돌릴 때 쿼리 기록/캐시/액션 카운터가 계속 쌓이지
않도록, 오케스트레이터가 스텝마다 이 객체를 넘기고 끝나면 reset() 한다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Cache(Protocol):
    """외부 캐시가 구현해야 하는 최소 인터페이스"""

    def reset(self) -> None: ...


@dataclass
class StepContext:
    caches: list[Cache] = field(default_factory=list)
    queries: list[Any] = field(default_factory=list)
    actions: dict[str, int] = field(default_factory=dict)
    _saved_actions: dict[str, int] = field(default_factory=dict, repr=False)

    def begin(self) -> StepContext:
        """스텝 시작 시점의 액션 카운터 스냅샷"""
        self._saved_actions = dict(self.actions)
        return self

    def record_query(self, args: Any):
        self.queries.append(args)

    def count_action(self, name: str):
        self.actions[name] = self.actions.get(name, 0) + 1

    def reset(self):
        self.queries.clear()
        self.actions = dict(self._saved_actions)
        for cache in self.caches:
            cache.reset()
