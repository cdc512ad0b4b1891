"""Turn orchestration: model calls, tool execution and routing between them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Callable, List, Sequence

from ..errors import TurnLimitError
from .clients import ModelCapability
from .guard import Topic, TopicGuard
from .prompts import OFF_TOPIC_REPLY, TURN_ERROR_TEXT, build_system_prompt
from .schemas import ChartResult, ChatMessage, JsonResult, ModelReply, StreamEvent, ToolCall, ToolResult
from .tools import ToolCatalog

if TYPE_CHECKING:
    from ..storage import ExpenseDatabase

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOL = "executing_tool"
    TERMINAL = "terminal"


@dataclass
class _Turn:
    """Mutable bookkeeping for one turn; never outlives :meth:`TurnEngine.run`."""

    thread_id: str
    messages: List[ChatMessage]
    state: TurnState = TurnState.AWAITING_MODEL
    steps: int = 0
    pending: List[ToolCall] = field(default_factory=list)
    persisted: List[str] = field(default_factory=list)


@dataclass
class TurnEngine:
    """Run conversational turns for one owner.

    The engine keeps no per-thread state between turns: history is read from
    the store at the start of every turn and the assistant's side is
    appended once the turn reaches its terminal state. Callers must not run
    two turns for the same thread concurrently.
    """

    owner_id: int
    catalog: ToolCatalog
    llm_client: ModelCapability
    db: "ExpenseDatabase"
    guard: TopicGuard = field(default_factory=TopicGuard)
    history_limit: int = 50
    max_steps: int = 25
    process_all_tool_calls: bool = False
    system_prompt: Callable[[], str] = build_system_prompt

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def run(self, thread_id: str, user_message: str) -> AsyncIterator[StreamEvent]:
        """Drive one turn and yield its stream events in execution order.

        Failures are reported as a single ``error`` event; nothing produced
        by the failed turn is written to history.
        """

        try:
            turn = await self._start(thread_id, user_message)
            if self.guard.classify(user_message) is Topic.OFF_TOPIC:
                logger.info("Off-topic message on %s answered without a model call", thread_id)
                turn.persisted.append(OFF_TOPIC_REPLY)
                turn.state = TurnState.TERMINAL
                yield StreamEvent.ai(OFF_TOPIC_REPLY)

            while turn.state is not TurnState.TERMINAL:
                turn.steps += 1
                if turn.steps > self.max_steps:
                    raise TurnLimitError(f"Turn exceeded {self.max_steps} steps on {thread_id}")
                if turn.state is TurnState.AWAITING_MODEL:
                    async for event in self._call_model(turn):
                        yield event
                else:
                    async for event in self._run_tools(turn):
                        yield event

            await self._persist(turn)
        except Exception:
            logger.exception("Turn failed for owner %s on %s", self.owner_id, thread_id)
            yield StreamEvent.error(TURN_ERROR_TEXT)

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------
    async def _start(self, thread_id: str, user_message: str) -> _Turn:
        entries = await asyncio.to_thread(
            self.db.read_messages, self.owner_id, thread_id, self.history_limit
        )
        messages = [ChatMessage.from_entry(entry) for entry in entries]
        messages.append(ChatMessage(role="user", content=user_message))
        return _Turn(thread_id=thread_id, messages=messages)

    async def _call_model(self, turn: _Turn) -> AsyncIterator[StreamEvent]:
        reply: ModelReply = await self.llm_client.invoke(
            self.system_prompt(), turn.messages, self.catalog.specs()
        )
        if reply.text:
            turn.persisted.append(reply.text)
            yield StreamEvent.ai(reply.text)

        if not reply.wants_tools:
            turn.messages.append(ChatMessage(role="assistant", content=reply.text))
            turn.state = TurnState.TERMINAL
            return

        selected = self._select_calls(reply.tool_calls)
        turn.messages.append(ChatMessage(role="assistant", content=reply.text, tool_calls=selected))
        turn.pending = selected
        for call in selected:
            yield StreamEvent.tool_call_start(call)
        turn.state = TurnState.EXECUTING_TOOL

    async def _run_tools(self, turn: _Turn) -> AsyncIterator[StreamEvent]:
        calls, turn.pending = turn.pending, []
        charts: List[ChartResult] = []
        for call in calls:
            result: ToolResult = await asyncio.to_thread(self.catalog.execute, call)
            yield StreamEvent.tool(result)
            if isinstance(result, ChartResult):
                charts.append(result)
            elif isinstance(result, JsonResult):
                turn.messages.append(
                    ChatMessage(
                        role="tool",
                        content=result.to_content(),
                        tool_call_id=call.id,
                        name=call.name,
                    )
                )
            else:
                raise TypeError(f"Unhandled tool result kind '{result.kind}' from {call.name}")

        if charts:
            turn.persisted.extend(chart.describe() for chart in charts)
            turn.state = TurnState.TERMINAL
        else:
            turn.state = TurnState.AWAITING_MODEL

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _select_calls(self, calls: Sequence[ToolCall]) -> List[ToolCall]:
        if self.process_all_tool_calls or len(calls) == 1:
            return list(calls)
        dropped = [call.name for call in calls[1:]]
        logger.warning("Model requested %s tool calls; acting on the first, dropping %s", len(calls), dropped)
        return [calls[0]]

    async def _persist(self, turn: _Turn) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        for content in turn.persisted:
            await asyncio.to_thread(
                self.db.append_message,
                owner_id=self.owner_id,
                thread_id=turn.thread_id,
                role="assistant",
                content=content,
                created_at=timestamp,
            )


__all__ = ["TurnEngine", "TurnState"]
