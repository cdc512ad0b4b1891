from __future__ import annotations

from typing import List

from expensetrack.assistant.engine import TurnEngine
from expensetrack.assistant.prompts import OFF_TOPIC_REPLY, TURN_ERROR_TEXT
from expensetrack.assistant.tools import ToolCatalog
from expensetrack.errors import UpstreamError

from .fakes import FakeLLMClient, collect, event_types, text_reply, tool_reply

THREAD = "user-7-default"
MARCH = {"from": "2026-03-01", "to": "2026-03-31"}


def _make_engine(db, today, replies, **kwargs) -> tuple[TurnEngine, FakeLLMClient]:
    llm = FakeLLMClient(replies)
    engine = TurnEngine(
        owner_id=7,
        catalog=ToolCatalog(db=db, owner_id=7, today=today),
        llm_client=llm,
        db=db,
        system_prompt=lambda: "system",
        **kwargs,
    )
    return engine, llm


def _history(db) -> List[tuple]:
    return [(entry.role, entry.content) for entry in db.read_messages(7, THREAD)]


def test_add_expense_turn_routes_result_back_to_model(db, today) -> None:
    engine, llm = _make_engine(
        db,
        today,
        [
            tool_reply(("add_expense", {"title": "groceries", "amount": 500, "category": "shopping"})),
            text_reply("Added ₹500 for groceries."),
        ],
    )

    events = collect(engine.run(THREAD, "I spent 500 on groceries"))

    assert event_types(events) == ["toolCall:start", "tool", "ai"]
    assert events[0].payload == {
        "name": "add_expense",
        "args": {"title": "groceries", "amount": 500, "category": "shopping"},
    }
    assert events[1].payload["result"]["status"] == "success"
    assert events[2].payload == {"text": "Added ₹500 for groceries."}

    assert len(llm.calls) == 2
    assert llm.calls[0]["system"] == "system"
    assert len(llm.calls[0]["tools"]) == 4
    second = llm.calls[1]["messages"]
    assert [message.role for message in second] == ["user", "assistant", "tool"]
    assert second[1].tool_calls[0].id == "call_0"
    assert second[2].tool_call_id == "call_0"

    stored = db.find_expenses(7, date_from="2026-03-15", date_to="2026-03-15")
    assert [(row.title, row.category) for row in stored] == [("groceries", "SHOPPING")]
    assert _history(db) == [("assistant", "Added ₹500 for groceries.")]


def test_chart_result_ends_the_turn_without_model_follow_up(db, today) -> None:
    db.create_expense(owner_id=7, title="dinner", amount=800, category="DINING", date="2026-03-04")
    engine, llm = _make_engine(
        db,
        today,
        [tool_reply(("generate_expense_chart", dict(MARCH, groupBy="category")))],
    )

    events = collect(engine.run(THREAD, "chart my spending by category"))

    assert event_types(events) == ["toolCall:start", "tool"]
    assert events[-1].is_chart
    assert events[-1].payload["result"]["data"] == [{"category": "DINING", "amount": 800.0}]
    assert len(llm.calls) == 1
    assert _history(db) == [("assistant", "Displayed a chart of spending by category (1 group).")]


def test_off_topic_message_short_circuits(db, today) -> None:
    engine, llm = _make_engine(db, today, [])

    events = collect(engine.run(THREAD, "write me a poem about the ocean"))

    assert event_types(events) == ["ai"]
    assert events[0].payload["text"] == OFF_TOPIC_REPLY
    assert llm.calls == []
    assert _history(db) == [("assistant", OFF_TOPIC_REPLY)]


def test_only_first_tool_call_is_acted_on_by_default(db, today) -> None:
    engine, llm = _make_engine(
        db,
        today,
        [
            tool_reply(
                ("add_expense", {"title": "tea", "amount": 20}),
                ("add_expense", {"title": "cake", "amount": 90}),
            ),
            text_reply("Added tea."),
        ],
    )

    events = collect(engine.run(THREAD, "add expense tea 20 and cake 90"))

    assert event_types(events) == ["toolCall:start", "tool", "ai"]
    titles = [row.title for row in db.find_expenses(7, date_from="2026-01-01", date_to="2026-12-31")]
    assert titles == ["tea"]
    assert len(llm.calls[1]["messages"][1].tool_calls) == 1


def test_process_all_tool_calls_runs_every_call(db, today) -> None:
    engine, llm = _make_engine(
        db,
        today,
        [
            tool_reply(
                ("add_expense", {"title": "tea", "amount": 20}),
                ("add_expense", {"title": "cake", "amount": 90}),
            ),
            text_reply("Added both."),
        ],
        process_all_tool_calls=True,
    )

    events = collect(engine.run(THREAD, "add expense tea 20 and cake 90"))

    assert event_types(events) == ["toolCall:start", "toolCall:start", "tool", "tool", "ai"]
    titles = sorted(row.title for row in db.find_expenses(7, date_from="2026-01-01", date_to="2026-12-31"))
    assert titles == ["cake", "tea"]
    tool_messages = [message for message in llm.calls[1]["messages"] if message.role == "tool"]
    assert [message.tool_call_id for message in tool_messages] == ["call_0", "call_1"]


def test_model_failure_yields_single_error_and_persists_nothing(db, today) -> None:
    engine, _ = _make_engine(db, today, [UpstreamError("provider down")])

    events = collect(engine.run(THREAD, "how much did I spend this week?"))

    assert event_types(events) == ["error"]
    assert events[0].payload == {"text": TURN_ERROR_TEXT}
    assert _history(db) == []


def test_invalid_tool_arguments_fail_the_turn(db, today) -> None:
    engine, _ = _make_engine(db, today, [tool_reply(("add_expense", {"title": "refund", "amount": -50}))])

    events = collect(engine.run(THREAD, "add expense refund -50"))

    assert event_types(events) == ["toolCall:start", "error"]
    assert db.find_expenses(7, date_from="0000-01-01", date_to="9999-12-31") == []
    assert _history(db) == []


def test_step_limit_stops_a_looping_model(db, today) -> None:
    looping = [tool_reply(("get_expenses", MARCH)) for _ in range(5)]
    engine, llm = _make_engine(db, today, looping, max_steps=3)

    events = collect(engine.run(THREAD, "show my expenses"))

    assert event_types(events)[-1] == "error"
    assert event_types(events).count("error") == 1
    assert len(llm.calls) == 2
    assert _history(db) == []


def test_prior_history_is_sent_to_the_model(db, today) -> None:
    db.append_message(owner_id=7, thread_id=THREAD, role="user", content="hi", created_at="2026-03-14T10:00:00+00:00")
    db.append_message(
        owner_id=7, thread_id=THREAD, role="assistant", content="Hello!", created_at="2026-03-14T10:00:01+00:00"
    )
    db.append_message(owner_id=7, thread_id="user-7-other", role="user", content="elsewhere")
    engine, llm = _make_engine(db, today, [text_reply("You have no expenses yet.")])

    collect(engine.run(THREAD, "what is my total?"))

    sent = llm.calls[0]["messages"]
    assert [(message.role, message.content) for message in sent] == [
        ("user", "hi"),
        ("assistant", "Hello!"),
        ("user", "what is my total?"),
    ]


def test_text_alongside_tool_calls_is_emitted_first(db, today) -> None:
    engine, _ = _make_engine(
        db,
        today,
        [
            tool_reply(("get_expenses", MARCH), text="Let me check."),
            text_reply("You have no expenses in March."),
        ],
    )

    events = collect(engine.run(THREAD, "show my march expenses"))

    assert event_types(events) == ["ai", "toolCall:start", "tool", "ai"]
    assert events[2].payload["result"] == {"message": "No expenses found for this period.", "data": []}
    assert _history(db) == [
        ("assistant", "Let me check."),
        ("assistant", "You have no expenses in March."),
    ]


def test_rejected_add_leaves_later_reports_working(db, today) -> None:
    engine, _ = _make_engine(
        db,
        today,
        [
            tool_reply(("add_expense", {"title": "rent", "amount": 9000, "date": "2026-02-30"})),
            tool_reply(("add_expense", {"title": "rent", "amount": float("inf")})),
            tool_reply(("generate_expense_chart", {"from": "2026-02-01", "to": "2026-03-31", "groupBy": "month"})),
        ],
    )

    assert event_types(collect(engine.run(THREAD, "add expense rent on feb 30"))) == ["toolCall:start", "error"]
    assert event_types(collect(engine.run(THREAD, "add expense rent infinity"))) == ["toolCall:start", "error"]
    assert db.find_expenses(7, date_from="0000-01-01", date_to="9999-12-31") == []

    chart = collect(engine.run(THREAD, "chart my spending by month"))

    assert event_types(chart) == ["toolCall:start", "tool"]
    assert chart[-1].payload["result"]["data"] == []
