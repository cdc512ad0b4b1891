"""Persistent storage for expenses and owner-scoped chat history."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .assistant.schemas import Expense, HistoryEntry

DEFAULT_CATEGORY = "OTHER"
_UPDATABLE_COLUMNS = {"title", "amount", "category", "date", "notes"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ExpenseDatabase:
    """Small SQLite wrapper that stores expense records and chat messages.

    Every query is filtered by ``owner_id``; callers never see another
    owner's rows even when they guess an identifier.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self.connection = sqlite3.connect(db_path, check_same_thread=False)
        self.connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._create_schema()

    def _create_schema(self) -> None:
        with self._lock:
            cur = self.connection.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS expenses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    amount REAL NOT NULL,
                    category TEXT NOT NULL,
                    date TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_expenses_owner_date
                ON expenses(owner_id, date)
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id INTEGER NOT NULL,
                    thread_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_chat_messages_thread
                ON chat_messages(owner_id, thread_id, created_at)
                """
            )
            self.connection.commit()

    def close(self) -> None:
        with self._lock:
            self.connection.close()

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------
    @staticmethod
    def _expense_from_row(row: sqlite3.Row) -> Expense:
        return Expense(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            amount=row["amount"],
            category=row["category"],
            date=row["date"],
            notes=row["notes"],
        )

    def create_expense(
        self,
        *,
        owner_id: int,
        title: str,
        amount: float,
        date: str,
        category: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Expense:
        with self._lock:
            cur = self.connection.execute(
                """
                INSERT INTO expenses(owner_id, title, amount, category, date, notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (owner_id, title, float(amount), category or DEFAULT_CATEGORY, date, notes, _now()),
            )
            self.connection.commit()
            expense_id = cur.lastrowid
        return Expense(
            id=expense_id,
            owner_id=owner_id,
            title=title,
            amount=float(amount),
            category=category or DEFAULT_CATEGORY,
            date=date,
            notes=notes,
        )

    def find_expenses(
        self,
        owner_id: int,
        *,
        date_from: str,
        date_to: str,
        category: Optional[str] = None,
        descending: bool = True,
    ) -> List[Expense]:
        """Return the owner's expenses dated within ``[date_from, date_to]``."""

        query = "SELECT * FROM expenses WHERE owner_id = ? AND date >= ? AND date <= ?"
        params: list = [owner_id, date_from, date_to]
        if category:
            query += " AND category = ?"
            params.append(category)
        direction = "DESC" if descending else "ASC"
        query += f" ORDER BY date {direction}, id {direction}"
        with self._lock:
            rows = self.connection.execute(query, params).fetchall()
        return [self._expense_from_row(row) for row in rows]

    def find_expense_by_id(self, owner_id: int, expense_id: int) -> Optional[Expense]:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM expenses WHERE id = ? AND owner_id = ?",
                (expense_id, owner_id),
            ).fetchone()
        return self._expense_from_row(row) if row else None

    def delete_expense(self, owner_id: int, expense_id: int) -> bool:
        with self._lock:
            cur = self.connection.execute(
                "DELETE FROM expenses WHERE id = ? AND owner_id = ?",
                (expense_id, owner_id),
            )
            self.connection.commit()
            return cur.rowcount > 0

    def delete_expenses(self, owner_id: int, expense_ids: Iterable[int]) -> int:
        """Delete the listed ids that belong to ``owner_id``; others are skipped."""

        ids = list(dict.fromkeys(expense_ids))
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._lock:
            cur = self.connection.execute(
                f"DELETE FROM expenses WHERE owner_id = ? AND id IN ({placeholders})",
                [owner_id, *ids],
            )
            self.connection.commit()
            return cur.rowcount

    def update_expense(self, owner_id: int, expense_id: int, **changes: Any) -> Optional[Expense]:
        """Apply ``changes`` to one of the owner's expenses and return the updated row."""

        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update expense columns: {', '.join(sorted(unknown))}")
        if changes:
            assignments = ", ".join(f"{column} = ?" for column in changes)
            with self._lock:
                self.connection.execute(
                    f"UPDATE expenses SET {assignments} WHERE id = ? AND owner_id = ?",
                    [*changes.values(), expense_id, owner_id],
                )
                self.connection.commit()
        return self.find_expense_by_id(owner_id, expense_id)

    @staticmethod
    def _filters(
        owner_id: int,
        date_from: Optional[str],
        date_to: Optional[str],
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Tuple[str, List[Any]]:
        clauses = ["owner_id = ?"]
        params: List[Any] = [owner_id]
        if date_from:
            clauses.append("date >= ?")
            params.append(date_from)
        if date_to:
            clauses.append("date <= ?")
            params.append(date_to)
        if category:
            clauses.append("category = ?")
            params.append(category)
        if search:
            clauses.append("instr(lower(title), lower(?)) > 0")
            params.append(search)
        return " AND ".join(clauses), params

    def list_expenses_page(
        self,
        owner_id: int,
        *,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Expense], int]:
        """Return one page of matching expenses, newest first, and the total match count."""

        where, params = self._filters(owner_id, date_from, date_to, category, search)
        with self._lock:
            total = self.connection.execute(
                f"SELECT COUNT(*) FROM expenses WHERE {where}", params
            ).fetchone()[0]
            rows = self.connection.execute(
                f"SELECT * FROM expenses WHERE {where} ORDER BY date DESC, id DESC LIMIT ? OFFSET ?",
                [*params, limit, (page - 1) * limit],
            ).fetchall()
        return [self._expense_from_row(row) for row in rows], total

    def expense_stats(
        self,
        owner_id: int,
        *,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        where, params = self._filters(owner_id, date_from, date_to)
        with self._lock:
            totals = self.connection.execute(
                f"""
                SELECT COUNT(*) AS count, SUM(amount) AS total, AVG(amount) AS average,
                       MAX(amount) AS max, MIN(amount) AS min
                FROM expenses WHERE {where}
                """,
                params,
            ).fetchone()
            groups = self.connection.execute(
                f"""
                SELECT category, SUM(amount) AS amount, COUNT(*) AS count
                FROM expenses WHERE {where}
                GROUP BY category
                ORDER BY SUM(amount) DESC, category
                """,
                params,
            ).fetchall()
        return {
            "total": totals["total"] or 0,
            "count": totals["count"],
            "average": totals["average"] or 0,
            "max": totals["max"] or 0,
            "min": totals["min"] or 0,
            "byCategory": [
                {"category": row["category"], "amount": row["amount"], "count": row["count"]}
                for row in groups
            ],
        }

    # ------------------------------------------------------------------
    # Chat history
    # ------------------------------------------------------------------
    @staticmethod
    def _entry_from_row(row: sqlite3.Row) -> HistoryEntry:
        return HistoryEntry(
            id=row["id"],
            thread_id=row["thread_id"],
            role=row["role"],
            content=row["content"],
            created_at=row["created_at"],
        )

    def append_message(
        self,
        *,
        owner_id: int,
        thread_id: str,
        role: str,
        content: str,
        created_at: Optional[str] = None,
    ) -> HistoryEntry:
        if role not in {"user", "assistant"}:
            raise ValueError(f"Unsupported history role '{role}'")
        timestamp = created_at or _now()
        with self._lock:
            cur = self.connection.execute(
                """
                INSERT INTO chat_messages(owner_id, thread_id, role, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (owner_id, thread_id, role, content, timestamp),
            )
            self.connection.commit()
            message_id = cur.lastrowid
        return HistoryEntry(
            id=message_id,
            thread_id=thread_id,
            role=role,
            content=content,
            created_at=timestamp,
        )

    def read_messages(self, owner_id: int, thread_id: str, limit: int = 50) -> List[HistoryEntry]:
        """Return the latest ``limit`` messages of a thread, oldest first."""

        with self._lock:
            rows = self.connection.execute(
                """
                SELECT * FROM chat_messages
                WHERE owner_id = ? AND thread_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (owner_id, thread_id, limit),
            ).fetchall()
        return [self._entry_from_row(row) for row in reversed(rows)]

    def delete_messages(self, owner_id: int, thread_id: Optional[str] = None) -> int:
        query = "DELETE FROM chat_messages WHERE owner_id = ?"
        params: list = [owner_id]
        if thread_id is not None:
            query += " AND thread_id = ?"
            params.append(thread_id)
        with self._lock:
            cur = self.connection.execute(query, params)
            self.connection.commit()
            return cur.rowcount


__all__ = ["DEFAULT_CATEGORY", "ExpenseDatabase"]
