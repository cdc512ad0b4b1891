"""Runtime helpers for deploying the expense assistant."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, TextIO

from .assistant.clients import ModelCapability, create_llm_client
from .assistant.registry import SessionRegistry
from .assistant.schemas import StreamEvent, dumps_payload
from .assistant.stream import StreamAdapter, TurnOutcome
from .auth import DEFAULT_TTL_SECONDS, issue_access_token
from .config import Settings
from .errors import ConfigError
from .storage import ExpenseDatabase

logger = logging.getLogger(__name__)


@dataclass
class AssistantRuntime:
    """Wire the store, the shared model client, the registry and the adapter.

    Built once at startup and owned by the serving layer; tests build their
    own with a fake ``llm_client`` and an in-memory database.
    """

    settings: Settings
    llm_client: Optional[ModelCapability] = None
    database: Optional[ExpenseDatabase] = None

    def __post_init__(self) -> None:
        if self.database is None:
            db_path = self.settings.database_path
            if db_path != ":memory:":
                Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
                db_path = str(Path(db_path).expanduser())
            self.database = ExpenseDatabase(db_path)

        if self.llm_client is None:
            self.llm_client = create_llm_client(
                self.settings.llm_provider,
                model=self.settings.llm_model,
                api_key=self.settings.llm_api_key,
                temperature=self.settings.llm_temperature,
                timeout=self.settings.llm_timeout,
                max_retries=self.settings.llm_max_retries,
            )

        self.registry = SessionRegistry(
            db=self.database,
            llm_client=self.llm_client,
            history_limit=self.settings.history_limit,
            max_steps=self.settings.max_turn_steps,
            process_all_tool_calls=self.settings.process_all_tool_calls,
        )
        self.adapter = StreamAdapter(registry=self.registry)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def provider_info(self) -> Mapping[str, str]:
        info = getattr(self.llm_client, "info", None)
        if callable(info):
            return info()
        return {"provider": self.settings.llm_provider, "model": self.settings.llm_model or ""}

    async def chat(
        self,
        owner_id: int,
        query: str,
        *,
        thread_id: Optional[str] = None,
        out: Optional[TextIO] = None,
    ) -> TurnOutcome:
        return await self.adapter.run_turn(owner_id, query, _PrintSink(out or sys.stdout), thread_id)

    def reset(self) -> None:
        """Drop cached engines, e.g. after a provider change."""

        self.registry.clear()

    def close(self) -> None:
        self.database.close()


class _PrintSink:
    """Write each event as one JSON line."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    async def send(self, event: StreamEvent) -> None:
        self._stream.write(dumps_payload(event.to_payload(), indent=None) + "\n")
        self._stream.flush()

    async def close(self) -> None:
        self._connected = False


def _iter_messages(stream: Iterable[str]) -> Iterable[str]:
    for raw_line in stream:
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        yield line


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="expensetrack", description="Run the expense tracking assistant")
    parser.add_argument("--db", help="SQLite file for expenses and chat history")
    parser.add_argument(
        "--provider",
        choices=["openai", "gemini", "groq"],
        help="LLM provider type (defaults to LLM_PROVIDER)",
    )
    parser.add_argument("--model", help="Model name exposed by the provider")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging to trace prompt/response payloads.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Serve the HTTP API")
    serve.add_argument("--host", help="Interface to bind")
    serve.add_argument("--port", type=int, help="Port to bind")

    chat = commands.add_parser("chat", help="Run turns from a file or standard input, one message per line")
    chat.add_argument("--owner", type=int, required=True, help="Owner id the turns run as")
    chat.add_argument("--thread", help="Raw thread name (defaults to 'default')")
    chat.add_argument(
        "--input",
        type=Path,
        help="Optional path to a text file. Defaults to reading from standard input.",
    )

    token = commands.add_parser("token", help="Print an access token for an owner")
    token.add_argument("--owner", type=int, required=True)
    token.add_argument("--ttl", type=int, default=DEFAULT_TTL_SECONDS, help="Lifetime in seconds")
    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    env = dict(os.environ)
    if args.provider:
        env["LLM_PROVIDER"] = args.provider
    try:
        settings = Settings.from_env(env, require_api_key=args.command != "token").override(
            database_path=args.db,
            llm_model=args.model,
            host=getattr(args, "host", None),
            port=getattr(args, "port", None),
        )
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    if args.command == "token":
        try:
            token = issue_access_token(args.owner, settings.access_token_secret, ttl=args.ttl)
        except ValueError as exc:
            logger.error("Cannot issue token: %s", exc)
            return 2
        print(token)
        return 0

    runtime = AssistantRuntime(settings=settings)

    if args.command == "serve":
        import uvicorn

        from .server import create_app

        uvicorn.run(create_app(runtime), host=settings.host, port=settings.port)
        return 0

    async def _run_stream(stream: Iterable[str]) -> int:
        failures = 0
        for message in _iter_messages(stream):
            outcome = await runtime.chat(args.owner, message, thread_id=args.thread)
            failures += int(outcome.failed)
        return failures

    try:
        if args.input:
            with args.input.open("r", encoding="utf-8") as fh:
                failures = asyncio.run(_run_stream(fh))
        else:
            failures = asyncio.run(_run_stream(sys.stdin))
    finally:
        runtime.close()

    return 1 if failures else 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
