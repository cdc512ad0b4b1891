"""Conversational expense assistant.

This subpackage turns one user message into a stream of events. It wires
together

* a keyword topic guard that answers obviously off-topic messages itself,
* an OpenAI-compatible model client selected once per process,
* owner-scoped tools that add, list, chart and delete expenses, and
* a turn engine, an engine registry and a stream adapter that relays the
  events of each turn to a live client.
"""

from .clients import LLMClient, ModelCapability, create_llm_client
from .engine import TurnEngine, TurnState
from .guard import Topic, TopicGuard
from .prompts import OFF_TOPIC_REPLY, build_system_prompt
from .registry import SessionRegistry, scope_thread_id
from .schemas import (
    ChartResult,
    ChatMessage,
    JsonResult,
    ModelReply,
    StreamEvent,
    ToolCall,
    ToolResult,
)
from .stream import EventSink, QueueEventSink, StreamAdapter, TurnOutcome
from .tools import ToolCatalog

__all__ = [
    "ChartResult",
    "ChatMessage",
    "EventSink",
    "JsonResult",
    "LLMClient",
    "ModelCapability",
    "ModelReply",
    "OFF_TOPIC_REPLY",
    "QueueEventSink",
    "SessionRegistry",
    "StreamAdapter",
    "StreamEvent",
    "ToolCall",
    "ToolCatalog",
    "ToolResult",
    "Topic",
    "TopicGuard",
    "TurnEngine",
    "TurnOutcome",
    "TurnState",
    "build_system_prompt",
    "create_llm_client",
    "scope_thread_id",
]
