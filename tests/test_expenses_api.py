from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from expensetrack.auth import issue_access_token
from expensetrack.config import Settings
from expensetrack.runtime import AssistantRuntime
from expensetrack.server import create_app
from expensetrack.storage import ExpenseDatabase

from .conftest import TODAY
from .fakes import FakeLLMClient

SETTINGS = Settings(database_path=":memory:")


@pytest.fixture
def runtime():
    runtime = AssistantRuntime(settings=SETTINGS, llm_client=FakeLLMClient(), database=ExpenseDatabase(":memory:"))
    runtime.registry.today = lambda: TODAY
    yield runtime
    runtime.close()


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


def _auth(owner_id: int = 7) -> dict:
    return {"Authorization": f"Bearer {issue_access_token(owner_id, SETTINGS.access_token_secret)}"}


def _seed(db, owner_id: int, rows) -> None:
    for title, amount, category, day in rows:
        db.create_expense(owner_id=owner_id, title=title, amount=amount, category=category, date=day)


def test_expense_routes_require_a_token(client) -> None:
    assert client.get("/api/expenses").status_code == 401
    assert client.get("/api/expenses/stats").status_code == 401
    assert client.post("/api/expenses", json={"title": "tea", "amount": 20}).status_code == 401
    assert client.get("/api/expenses/1").status_code == 401


def test_create_defaults_and_get(client) -> None:
    response = client.post("/api/expenses", json={"title": "  groceries ", "amount": 500}, headers=_auth())

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Expense created"
    created = body["data"]
    assert created["title"] == "groceries"
    assert created["category"] == "OTHER"
    assert created["date"] == TODAY.isoformat()
    assert created["ownerId"] == 7

    fetched = client.get(f"/api/expenses/{created['id']}", headers=_auth()).json()
    assert fetched == {"success": True, "data": created}
    assert client.get(f"/api/expenses/{created['id']}", headers=_auth(8)).status_code == 404


@pytest.mark.parametrize(
    "body",
    [
        {"title": "tea", "amount": "20"},
        {"title": "tea", "amount": 0},
        {"title": "tea", "amount": 10_000_001},
        {"title": "tea", "amount": 20, "date": "2026-02-30"},
        {"title": "tea", "amount": 20, "category": "PETS"},
        {"title": "   ", "amount": 20},
    ],
)
def test_create_rejects_invalid_bodies(client, runtime, body) -> None:
    assert client.post("/api/expenses", json=body, headers=_auth()).status_code == 422
    assert runtime.database.list_expenses_page(7)[1] == 0


def test_list_filters_and_paginates(client, runtime) -> None:
    _seed(
        runtime.database,
        7,
        [
            ("Coffee beans", 400.0, "SHOPPING", "2026-03-01"),
            ("coffee", 120.0, "DINING", "2026-03-02"),
            ("taxi", 250.0, "TRANSPORT", "2026-03-03"),
            ("old coffee", 90.0, "DINING", "2026-02-10"),
        ],
    )
    _seed(runtime.database, 8, [("coffee", 1.0, "DINING", "2026-03-02")])

    page = client.get("/api/expenses", params={"limit": 2, "page": 2}, headers=_auth()).json()
    assert [item["title"] for item in page["data"]] == ["Coffee beans", "old coffee"]
    assert page["pagination"] == {"total": 4, "page": 2, "limit": 2, "totalPages": 2}

    search = client.get(
        "/api/expenses", params={"search": "COFFEE", "from": "2026-03-01", "to": "2026-03-31"}, headers=_auth()
    ).json()
    assert [item["title"] for item in search["data"]] == ["coffee", "Coffee beans"]

    dining = client.get("/api/expenses", params={"category": "DINING"}, headers=_auth()).json()
    assert [item["title"] for item in dining["data"]] == ["coffee", "old coffee"]

    assert client.get("/api/expenses", params={"limit": 101}, headers=_auth()).status_code == 422
    assert client.get("/api/expenses", params={"from": "2026-02-30"}, headers=_auth()).status_code == 422


def test_stats_aggregate_by_category(client, runtime) -> None:
    _seed(
        runtime.database,
        7,
        [
            ("rent", 1000.0, "UTILITIES", "2026-03-01"),
            ("lunch", 200.0, "DINING", "2026-03-02"),
            ("dinner", 300.0, "DINING", "2026-03-03"),
            ("january", 50.0, "OTHER", "2026-01-05"),
        ],
    )

    stats = client.get("/api/expenses/stats", params={"from": "2026-03-01"}, headers=_auth()).json()["data"]

    assert stats["total"] == 1500.0
    assert stats["count"] == 3
    assert stats["average"] == 500.0
    assert (stats["max"], stats["min"]) == (1000.0, 200.0)
    assert stats["byCategory"] == [
        {"category": "UTILITIES", "amount": 1000.0, "count": 1},
        {"category": "DINING", "amount": 500.0, "count": 2},
    ]

    empty = client.get("/api/expenses/stats", headers=_auth(8)).json()["data"]
    assert empty == {"total": 0, "count": 0, "average": 0, "max": 0, "min": 0, "byCategory": []}


def test_patch_updates_only_given_fields(client, runtime) -> None:
    _seed(runtime.database, 7, [("tea", 20.0, "DINING", "2026-03-01")])
    [expense] = runtime.database.find_expenses(7, date_from="2026-03-01", date_to="2026-03-01")

    response = client.patch(f"/api/expenses/{expense.id}", json={"amount": 25, "category": "shopping"}, headers=_auth())

    assert response.status_code == 200
    data = response.json()["data"]
    assert (data["title"], data["amount"], data["category"], data["date"]) == ("tea", 25.0, "SHOPPING", "2026-03-01")

    assert client.patch(f"/api/expenses/{expense.id}", json={"amount": "30"}, headers=_auth()).status_code == 422
    assert client.patch(f"/api/expenses/{expense.id}", json={"title": "x"}, headers=_auth(8)).status_code == 404
    assert runtime.database.find_expense_by_id(7, expense.id).title == "tea"


def test_delete_one_and_bulk(client, runtime) -> None:
    _seed(runtime.database, 7, [("a", 1.0, "OTHER", "2026-03-01"), ("b", 2.0, "OTHER", "2026-03-02")])
    _seed(runtime.database, 8, [("c", 3.0, "OTHER", "2026-03-03")])
    ids = {
        row.title: row.id
        for owner in (7, 8)
        for row in runtime.database.find_expenses(owner, date_from="2026-01-01", date_to="2026-12-31")
    }

    assert client.delete(f"/api/expenses/{ids['a']}", headers=_auth()).json() == {
        "success": True,
        "message": "Expense deleted",
    }
    assert client.delete(f"/api/expenses/{ids['a']}", headers=_auth()).status_code == 404

    bulk = client.request("DELETE", "/api/expenses", json={"ids": [ids["a"], ids["b"], ids["c"]]}, headers=_auth())
    assert bulk.json() == {"success": True, "message": "1 expense(s) deleted", "data": {"count": 1}}
    assert runtime.database.find_expense_by_id(8, ids["c"]) is not None

    assert client.request("DELETE", "/api/expenses", json={"ids": []}, headers=_auth()).status_code == 422
    assert client.request("DELETE", "/api/expenses", json={"ids": ["1"]}, headers=_auth()).status_code == 422
