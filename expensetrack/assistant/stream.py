"""Relay a turn's events to a live client connection."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Protocol

from .prompts import TURN_ERROR_TEXT
from .registry import SessionRegistry, scope_thread_id
from .schemas import EVENT_ERROR, StreamEvent

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """A client connection that accepts stream events until it goes away."""

    @property
    def connected(self) -> bool:
        ...

    async def send(self, event: StreamEvent) -> None:
        ...

    async def close(self) -> None:
        ...


class QueueEventSink:
    """Buffer events in an :class:`asyncio.Queue` for a response generator to drain."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Optional[StreamEvent]]" = asyncio.Queue()
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def disconnect(self) -> None:
        self._connected = False

    async def send(self, event: StreamEvent) -> None:
        if not self._connected:
            raise ConnectionError("client disconnected")
        await self._queue.put(event)

    async def close(self) -> None:
        await self._queue.put(None)

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


@dataclass
class TurnOutcome:
    thread_id: str
    events: List[StreamEvent] = field(default_factory=list)
    delivered: int = 0
    disconnected: bool = False

    @property
    def failed(self) -> bool:
        return any(event.type == EVENT_ERROR for event in self.events)


@dataclass
class StreamAdapter:
    """Run one turn to completion while forwarding its events as they happen.

    A client that disconnects stops receiving events but the turn still runs
    to the end, so its side effects and history are kept. The user's message
    is persisted once the turn is over, whatever its outcome, stamped with
    the time its turn started so it sorts before the assistant's reply.
    """

    registry: SessionRegistry

    async def run_turn(
        self,
        owner_id: int,
        query: str,
        sink: EventSink,
        thread_id: Optional[str] = None,
    ) -> TurnOutcome:
        scoped = scope_thread_id(owner_id, thread_id)
        outcome = TurnOutcome(thread_id=scoped)

        async with self.registry.thread_lock(scoped):
            received_at = datetime.now(timezone.utc).isoformat()
            try:
                engine = self.registry.resolve(owner_id)
                async for event in engine.run(scoped, query):
                    outcome.events.append(event)
                    await self._relay(sink, event, outcome)
            except Exception:
                logger.exception("Chat stream error for owner %s on %s", owner_id, scoped)
                event = StreamEvent.error(TURN_ERROR_TEXT)
                outcome.events.append(event)
                await self._relay(sink, event, outcome)
            finally:
                await self._persist_user_message(owner_id, scoped, query, received_at)
                await sink.close()
        return outcome

    async def _relay(self, sink: EventSink, event: StreamEvent, outcome: TurnOutcome) -> None:
        if outcome.disconnected or not sink.connected:
            outcome.disconnected = True
            return
        try:
            await sink.send(event)
        except Exception:
            # Any send failure means the client is gone; the turn still runs to the end.
            logger.info("Client left %s; finishing the turn without relaying", outcome.thread_id, exc_info=True)
            outcome.disconnected = True
            return
        outcome.delivered += 1

    async def _persist_user_message(
        self, owner_id: int, scoped: str, query: str, received_at: str
    ) -> None:
        try:
            await asyncio.to_thread(
                self.registry.db.append_message,
                owner_id=owner_id,
                thread_id=scoped,
                role="user",
                content=query,
                created_at=received_at,
            )
        except Exception:
            logger.exception("Failed to persist user message on %s", scoped)


__all__ = ["EventSink", "QueueEventSink", "StreamAdapter", "TurnOutcome"]
