"""Per-owner engine cache and owner-scoped thread identifiers."""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, AsyncIterator, Callable, Dict, List, Optional

from .clients import ModelCapability
from .engine import TurnEngine
from .guard import TopicGuard
from .tools import ToolCatalog

if TYPE_CHECKING:
    from ..storage import ExpenseDatabase

logger = logging.getLogger(__name__)

DEFAULT_THREAD = "default"


@dataclass
class _ThreadSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def scope_thread_id(owner_id: int, thread_id: Optional[str] = None) -> str:
    """Derive the stored thread identifier for ``(owner_id, thread_id)``.

    Owner ids are integers, so the prefix up to the second ``-`` always
    identifies exactly one owner whatever the raw thread name contains.
    """

    if isinstance(owner_id, bool) or not isinstance(owner_id, int):
        raise TypeError(f"owner_id must be an int, got {type(owner_id).__name__}")
    return f"user-{owner_id}-{thread_id or DEFAULT_THREAD}"


@dataclass
class SessionRegistry:
    """Lazily build and cache one :class:`TurnEngine` per owner.

    The model client is shared by every engine; each engine gets its own
    :class:`ToolCatalog` bound to its owner. The registry also hands out one
    :class:`asyncio.Lock` per scoped thread so turns on a thread run one at
    a time.
    """

    db: "ExpenseDatabase"
    llm_client: ModelCapability
    history_limit: int = 50
    max_steps: int = 25
    process_all_tool_calls: bool = False
    guard: TopicGuard = field(default_factory=TopicGuard)
    today: Callable[[], date] = date.today

    def __post_init__(self) -> None:
        self._engines: Dict[int, TurnEngine] = {}
        self._thread_locks: Dict[str, _ThreadSlot] = {}
        self._mutex = threading.Lock()

    def resolve(self, owner_id: int) -> TurnEngine:
        with self._mutex:
            engine = self._engines.get(owner_id)
            if engine is None:
                engine = TurnEngine(
                    owner_id=owner_id,
                    catalog=ToolCatalog(db=self.db, owner_id=owner_id, today=self.today),
                    llm_client=self.llm_client,
                    db=self.db,
                    guard=self.guard,
                    history_limit=self.history_limit,
                    max_steps=self.max_steps,
                    process_all_tool_calls=self.process_all_tool_calls,
                )
                self._engines[owner_id] = engine
                logger.debug("Created turn engine for owner %s", owner_id)
            return engine

    def evict(self, owner_id: int) -> bool:
        with self._mutex:
            return self._engines.pop(owner_id, None) is not None

    def clear(self) -> None:
        """Drop every cached engine.

        Thread locks are left alone: idle ones are already gone and a held
        one must outlive its turn.
        """

        with self._mutex:
            self._engines.clear()

    def __contains__(self, owner_id: object) -> bool:
        return owner_id in self._engines

    def __len__(self) -> int:
        return len(self._engines)

    @asynccontextmanager
    async def thread_lock(self, scoped_thread_id: str) -> AsyncIterator[None]:
        """Hold the thread's lock for the duration of the block.

        Locks are reference counted and dropped once the last holder or
        waiter leaves, so only threads with a turn in flight keep an entry.
        """

        with self._mutex:
            slot = self._thread_locks.get(scoped_thread_id)
            if slot is None:
                slot = _ThreadSlot()
                self._thread_locks[scoped_thread_id] = slot
            slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            with self._mutex:
                slot.users -= 1
                if slot.users == 0 and self._thread_locks.get(scoped_thread_id) is slot:
                    del self._thread_locks[scoped_thread_id]

    @property
    def active_threads(self) -> List[str]:
        with self._mutex:
            return list(self._thread_locks)


__all__ = ["DEFAULT_THREAD", "SessionRegistry", "scope_thread_id"]
