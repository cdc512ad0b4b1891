"""Typed data structures used by the expense assistant."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional


def _default_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Expense:
    """A single expense record owned by one user."""

    id: int
    owner_id: int
    title: str
    amount: float
    category: str
    date: str
    notes: Optional[str] = None

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "amount": self.amount,
            "category": self.category,
            "date": self.date,
            "notes": self.notes,
            "ownerId": self.owner_id,
        }


@dataclass
class HistoryEntry:
    """A persisted chat message addressed by its scoped thread identifier."""

    id: int
    thread_id: str
    role: str
    content: str
    created_at: str = field(default_factory=_default_timestamp)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at,
        }


MutableArgs = Dict[str, Any]


@dataclass
class ToolCall:
    """A model-requested invocation of a named tool."""

    id: str
    name: str
    arguments: MutableArgs = field(default_factory=dict)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }


@dataclass
class ChatMessage:
    """One message of the conversation as sent to the model."""

    role: str
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: HistoryEntry) -> "ChatMessage":
        return cls(role=entry.role, content=entry.content)

    def to_payload(self) -> Mapping[str, Any]:
        payload: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [call.to_payload() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.name is not None and self.role == "tool":
            payload["name"] = self.name
        return payload


@dataclass
class ModelReply:
    """Result of one model invocation: plain text, tool calls, or both."""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


# ----------------------------------------------------------------------
# Tool results
# ----------------------------------------------------------------------
@dataclass
class ToolResult:
    """Base class for tool results; ``kind`` is the discriminator."""

    name: str
    kind: str = field(init=False, default="json")

    def to_payload(self) -> Mapping[str, Any]:
        raise NotImplementedError

    def to_content(self) -> str:
        return dumps_payload(self.to_payload(), indent=None)


@dataclass
class JsonResult(ToolResult):
    """An ordinary result that is routed back to the model."""

    payload: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Mapping[str, Any]:
        return dict(self.payload)


@dataclass
class ChartResult(ToolResult):
    """Chart-ready buckets rendered by the client and never shown to the model."""

    label_key: str = "date"
    data: List[Mapping[str, Any]] = field(default_factory=list)
    kind: str = field(init=False, default="chart")

    def to_payload(self) -> Mapping[str, Any]:
        return {"type": "chart", "data": [dict(item) for item in self.data], "labelKey": self.label_key}

    def describe(self) -> str:
        groups = len(self.data)
        noun = "group" if groups == 1 else "groups"
        return f"Displayed a chart of spending by {self.label_key} ({groups} {noun})."


# ----------------------------------------------------------------------
# Stream events
# ----------------------------------------------------------------------
EVENT_AI = "ai"
EVENT_TOOL_CALL_START = "toolCall:start"
EVENT_TOOL = "tool"
EVENT_ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """One event of a turn as relayed to the client."""

    type: str
    payload: Mapping[str, Any]

    @classmethod
    def ai(cls, text: str) -> "StreamEvent":
        return cls(EVENT_AI, {"text": text})

    @classmethod
    def tool_call_start(cls, call: ToolCall) -> "StreamEvent":
        return cls(EVENT_TOOL_CALL_START, {"name": call.name, "args": dict(call.arguments)})

    @classmethod
    def tool(cls, result: ToolResult) -> "StreamEvent":
        return cls(EVENT_TOOL, {"name": result.name, "result": result.to_payload()})

    @classmethod
    def error(cls, text: str) -> "StreamEvent":
        return cls(EVENT_ERROR, {"text": text})

    @property
    def is_chart(self) -> bool:
        return self.type == EVENT_TOOL and self.payload.get("result", {}).get("type") == "chart"

    def to_payload(self) -> Mapping[str, Any]:
        return {"type": self.type, "payload": dict(self.payload)}

    def to_sse(self) -> str:
        """Render the event as a server-sent-events frame."""

        data = dumps_payload(self.to_payload(), indent=None)
        return f"event: {self.type}\ndata: {data}\n\n"


def dumps_payload(data: Mapping[str, Any], *, indent: Optional[int] = 2) -> str:
    """Render ``data`` as JSON, keeping non-ASCII text such as the rupee sign."""

    return json.dumps(data, ensure_ascii=False, indent=indent)


__all__ = [
    "ChartResult",
    "ChatMessage",
    "EVENT_AI",
    "EVENT_ERROR",
    "EVENT_TOOL",
    "EVENT_TOOL_CALL_START",
    "Expense",
    "HistoryEntry",
    "JsonResult",
    "ModelReply",
    "StreamEvent",
    "ToolCall",
    "ToolResult",
    "dumps_payload",
]
