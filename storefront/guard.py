from contextlib import AsyncExitStack, asynccontextmanager
from typing import FrozenSet, Hashable, Iterable, Set

from .errors import OperationInProgress


class InFlightGuard:
    """At most one pending mutation per entity key; a second attempt is rejected, not queued."""

    def __init__(self):
        self._pending: Set[Hashable] = set()

    def is_busy(self, key: Hashable) -> bool:
        return key in self._pending

    @property
    def pending(self) -> FrozenSet[Hashable]:
        return frozenset(self._pending)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        if key in self._pending:
            raise OperationInProgress(key)
        self._pending.add(key)
        try:
            yield
        finally:
            self._pending.discard(key)

    @asynccontextmanager
    async def hold_all(self, keys: Iterable[Hashable]):
        """Hold every key or none of them."""
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self.hold(key))
            yield
