"""HTTP surface: streamed chat turns, chat history and expense records."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .assistant.registry import scope_thread_id
from .assistant.schemas import Expense
from .assistant.stream import QueueEventSink
from .assistant.tools import AddExpenseArgs, Amount, Category, ExpenseId, IsoDate
from .auth import verify_access_token
from .errors import AuthError
from .runtime import AssistantRuntime

logger = logging.getLogger(__name__)


class ChatQuery(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    threadId: Optional[str] = Field(default=None, max_length=100)

    @field_validator("query", mode="before")
    @classmethod
    def strip_query(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


def _runtime(request: Request) -> AssistantRuntime:
    return request.app.state.runtime


def current_owner(request: Request, runtime: AssistantRuntime = Depends(_runtime)) -> int:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        return verify_access_token(token, runtime.settings.access_token_secret)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


router = APIRouter(prefix="/api")


@router.get("/health")
async def health(runtime: AssistantRuntime = Depends(_runtime)) -> Dict[str, Any]:
    return {"status": "ok", **runtime.provider_info()}


@router.post("/chat")
async def stream_chat(
    body: ChatQuery,
    request: Request,
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> StreamingResponse:
    """Run one turn and stream its events as server-sent events.

    The turn runs in a background task so it finishes, and its history is
    written, even if the client goes away mid-stream.
    """

    sink = QueueEventSink()
    task = asyncio.create_task(runtime.adapter.run_turn(owner_id, body.query, sink, body.threadId))
    tasks: Set[asyncio.Task] = request.app.state.turn_tasks
    tasks.add(task)
    task.add_done_callback(tasks.discard)

    async def generate():
        try:
            async for event in sink:
                if await request.is_disconnected():
                    logger.info("Client disconnected from owner %s chat stream", owner_id)
                    break
                yield event.to_sse()
        finally:
            sink.disconnect()

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/chat/history")
async def get_chat_history(
    threadId: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=50, ge=1, le=500),
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> Dict[str, Any]:
    entries = await asyncio.to_thread(
        runtime.database.read_messages, owner_id, scope_thread_id(owner_id, threadId), limit
    )
    return {"success": True, "data": [entry.to_payload() for entry in entries]}


@router.delete("/chat/history")
async def delete_chat_history(
    threadId: Optional[str] = Query(default=None, max_length=100),
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> Dict[str, Any]:
    scoped = scope_thread_id(owner_id, threadId) if threadId else None
    count = await asyncio.to_thread(runtime.database.delete_messages, owner_id, scoped)
    return {"success": True, "message": f"{count} message(s) deleted"}


# ----------------------------------------------------------------------
# Expense records
# ----------------------------------------------------------------------
class ExpenseCreate(AddExpenseArgs):
    model_config = ConfigDict(str_strip_whitespace=True)


class ExpenseUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Amount] = None
    category: Optional[Category] = None
    date: Optional[IsoDate] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


class BulkDelete(BaseModel):
    ids: List[ExpenseId] = Field(min_length=1)


def _expense_or_404(expense: Optional[Expense]) -> Expense:
    if expense is None:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


expenses_router = APIRouter(prefix="/api/expenses")


@expenses_router.get("")
async def list_expenses(
    date_from: Optional[IsoDate] = Query(default=None, alias="from"),
    date_to: Optional[IsoDate] = Query(default=None, alias="to"),
    category: Optional[Category] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> Dict[str, Any]:
    expenses, total = await asyncio.to_thread(
        runtime.database.list_expenses_page,
        owner_id,
        date_from=date_from,
        date_to=date_to,
        category=category.value if category else None,
        search=search,
        page=page,
        limit=limit,
    )
    return {
        "success": True,
        "data": [expense.to_payload() for expense in expenses],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit),
        },
    }


@expenses_router.get("/stats")
async def expense_stats(
    date_from: Optional[IsoDate] = Query(default=None, alias="from"),
    date_to: Optional[IsoDate] = Query(default=None, alias="to"),
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> Dict[str, Any]:
    stats = await asyncio.to_thread(
        runtime.database.expense_stats, owner_id, date_from=date_from, date_to=date_to
    )
    return {"success": True, "data": stats}


@expenses_router.post("", status_code=201)
async def create_expense(
    body: ExpenseCreate,
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> Dict[str, Any]:
    expense = await asyncio.to_thread(
        runtime.database.create_expense,
        owner_id=owner_id,
        title=body.title,
        amount=body.amount,
        category=body.category.value if body.category else None,
        date=body.date or runtime.registry.today().isoformat(),
        notes=body.notes,
    )
    return {"success": True, "message": "Expense created", "data": expense.to_payload()}


@expenses_router.delete("")
async def bulk_delete_expenses(
    body: BulkDelete,
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> Dict[str, Any]:
    count = await asyncio.to_thread(runtime.database.delete_expenses, owner_id, body.ids)
    return {"success": True, "message": f"{count} expense(s) deleted", "data": {"count": count}}


@expenses_router.get("/{expense_id}")
async def get_expense(
    expense_id: int,
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> Dict[str, Any]:
    expense = await asyncio.to_thread(runtime.database.find_expense_by_id, owner_id, expense_id)
    return {"success": True, "data": _expense_or_404(expense).to_payload()}


@expenses_router.patch("/{expense_id}")
async def update_expense(
    expense_id: int,
    body: ExpenseUpdate,
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> Dict[str, Any]:
    changes = body.model_dump(mode="json", exclude_none=True)
    expense = await asyncio.to_thread(runtime.database.update_expense, owner_id, expense_id, **changes)
    return {"success": True, "message": "Expense updated", "data": _expense_or_404(expense).to_payload()}


@expenses_router.delete("/{expense_id}")
async def delete_expense(
    expense_id: int,
    owner_id: int = Depends(current_owner),
    runtime: AssistantRuntime = Depends(_runtime),
) -> Dict[str, Any]:
    deleted = await asyncio.to_thread(runtime.database.delete_expense, owner_id, expense_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"success": True, "message": "Expense deleted"}


def create_app(runtime: AssistantRuntime) -> FastAPI:
    app = FastAPI(title="Expense Assistant", version="0.1.0")
    app.state.runtime = runtime
    app.state.turn_tasks = set()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(runtime.settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.include_router(router)
    app.include_router(expenses_router)
    return app


__all__ = ["BulkDelete", "ChatQuery", "ExpenseCreate", "ExpenseUpdate", "create_app", "current_owner"]
