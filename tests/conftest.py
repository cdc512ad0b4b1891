from __future__ import annotations

from datetime import date

import pytest

from expensetrack.storage import ExpenseDatabase

TODAY = date(2026, 3, 15)


@pytest.fixture
def db():
    database = ExpenseDatabase(":memory:")
    yield database
    database.close()


@pytest.fixture
def today():
    return lambda: TODAY
