"""Owner-scoped tools the model can call to read and write expenses."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date as date_cls
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Any, Callable, ClassVar, Dict, List, Literal, Mapping, Optional, Type

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, ValidationError, field_validator

from ..errors import ToolArgumentsError
from .prompts import (
    ADD_EXPENSE_DESCRIPTION,
    CHART_DESCRIPTION,
    DELETE_EXPENSE_DESCRIPTION,
    GET_EXPENSES_DESCRIPTION,
)
from .schemas import ChartResult, JsonResult, ToolCall, ToolResult

if TYPE_CHECKING:
    from ..storage import ExpenseDatabase

logger = logging.getLogger(__name__)

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
MAX_AMOUNT = 10_000_000


class Category(str, Enum):
    DINING = "DINING"
    SHOPPING = "SHOPPING"
    TRANSPORT = "TRANSPORT"
    ENTERTAINMENT = "ENTERTAINMENT"
    UTILITIES = "UTILITIES"
    HEALTH = "HEALTH"
    EDUCATION = "EDUCATION"
    OTHER = "OTHER"


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


def round_money(value: float) -> float:
    """Round half-up to 2 decimal places."""

    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def format_inr(amount: float) -> str:
    """Format ``amount`` with Indian digit grouping, e.g. ``₹1,50,000``."""

    rounded = round_money(abs(amount))
    whole, _, fraction = f"{rounded:.2f}".partition(".")
    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])
    sign = "-" if amount < 0 else ""
    text = f"₹{sign}{whole}"
    return text if fraction == "00" else f"{text}.{fraction}"


def week_key(day: date_cls) -> str:
    """Bucket key ``YYYY-Www`` where weeks start on Sunday and week 1 holds Jan 1."""

    start_of_year = date_cls(day.year, 1, 1)
    day_index = (day - start_of_year).days
    start_dow = (start_of_year.weekday() + 1) % 7
    week = math.ceil((day_index + start_dow + 1) / 7)
    return f"{day.year}-W{week:02d}"


# ----------------------------------------------------------------------
# Argument schemas
# ----------------------------------------------------------------------
def _check_calendar_date(value: str) -> str:
    date_cls.fromisoformat(value)
    return value


# Calendar dates only: "2026-02-30" matches the pattern but is rejected.
IsoDate = Annotated[str, StringConstraints(pattern=DATE_PATTERN), AfterValidator(_check_calendar_date)]

# Strict so "500" from a model is an argument error rather than a number.
Amount = Annotated[float, Field(gt=0, le=MAX_AMOUNT, strict=True, allow_inf_nan=False)]

ExpenseId = Annotated[int, Field(gt=0, strict=True)]


class AddExpenseArgs(BaseModel):
    title: str = Field(min_length=1, max_length=200, description="Short description of the expense")
    amount: Amount = Field(description="Amount spent in INR")
    category: Optional[Category] = Field(
        default=None, description="Expense category; pick the most fitting one"
    )
    date: Optional[IsoDate] = Field(
        default=None,
        description="Date in YYYY-MM-DD. Defaults to today if not provided.",
    )
    notes: Optional[str] = Field(default=None, max_length=1000, description="Any extra notes")

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> Any:
        return _upper(value)


class GetExpensesArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_from: IsoDate = Field(alias="from", description="Start date in YYYY-MM-DD format")
    date_to: IsoDate = Field(alias="to", description="End date in YYYY-MM-DD format")
    category: Optional[Category] = Field(default=None, description="Optional category filter")

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> Any:
        return _upper(value)


class ChartArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_from: IsoDate = Field(alias="from", description="Start date in YYYY-MM-DD format")
    date_to: IsoDate = Field(alias="to", description="End date in YYYY-MM-DD format")
    group_by: Literal["date", "week", "month", "category"] = Field(
        alias="groupBy", description="How to group the data"
    )


class DeleteExpenseArgs(BaseModel):
    id: ExpenseId = Field(description="The expense ID to delete")


# ----------------------------------------------------------------------
# Tools
# ----------------------------------------------------------------------
@dataclass
class AddExpenseTool:
    """Create one expense for the bound owner."""

    db: "ExpenseDatabase"
    owner_id: int
    today: Callable[[], date_cls] = date_cls.today

    name = "add_expense"
    description = ADD_EXPENSE_DESCRIPTION
    args_model: ClassVar[Type[BaseModel]] = AddExpenseArgs

    def __call__(self, args: AddExpenseArgs) -> ToolResult:
        expense = self.db.create_expense(
            owner_id=self.owner_id,
            title=args.title,
            amount=args.amount,
            category=(args.category or Category.OTHER).value,
            date=args.date or self.today().isoformat(),
            notes=args.notes,
        )
        return JsonResult(
            name=self.name,
            payload={
                "status": "success",
                "message": f'Added "{expense.title}" ({format_inr(expense.amount)}) to your expenses.',
                "id": expense.id,
            },
        )


@dataclass
class GetExpensesTool:
    """List the owner's expenses in a date range, newest first."""

    db: "ExpenseDatabase"
    owner_id: int

    name = "get_expenses"
    description = GET_EXPENSES_DESCRIPTION
    args_model: ClassVar[Type[BaseModel]] = GetExpensesArgs

    def __call__(self, args: GetExpensesArgs) -> ToolResult:
        rows = self.db.find_expenses(
            self.owner_id,
            date_from=args.date_from,
            date_to=args.date_to,
            category=args.category.value if args.category else None,
        )
        if not rows:
            return JsonResult(
                name=self.name,
                payload={"message": "No expenses found for this period.", "data": []},
            )
        total = sum(row.amount for row in rows)
        return JsonResult(
            name=self.name,
            payload={
                "data": [row.to_payload() for row in rows],
                "summary": {"count": len(rows), "total": round_money(total)},
            },
        )


@dataclass
class ExpenseChartTool:
    """Sum the owner's spending into chart buckets."""

    db: "ExpenseDatabase"
    owner_id: int

    name = "generate_expense_chart"
    description = CHART_DESCRIPTION
    args_model: ClassVar[Type[BaseModel]] = ChartArgs

    def __call__(self, args: ChartArgs) -> ToolResult:
        rows = self.db.find_expenses(
            self.owner_id,
            date_from=args.date_from,
            date_to=args.date_to,
            descending=False,
        )
        grouped: Dict[str, float] = {}
        for row in rows:
            key = self._bucket(row.date, row.category, args.group_by)
            grouped[key] = grouped.get(key, 0.0) + row.amount

        data = [
            {args.group_by: key, "amount": round_money(total)}
            for key, total in sorted(grouped.items())
        ]
        return ChartResult(name=self.name, label_key=args.group_by, data=data)

    @staticmethod
    def _bucket(raw_date: str, category: str, group_by: str) -> str:
        if group_by == "category":
            return category
        if group_by == "date":
            return raw_date
        day = date_cls.fromisoformat(raw_date)
        if group_by == "month":
            return f"{day.year}-{day.month:02d}"
        return week_key(day)


@dataclass
class DeleteExpenseTool:
    """Delete one of the owner's expenses; a missing id is reported, not raised."""

    db: "ExpenseDatabase"
    owner_id: int

    name = "delete_expense"
    description = DELETE_EXPENSE_DESCRIPTION
    args_model: ClassVar[Type[BaseModel]] = DeleteExpenseArgs

    def __call__(self, args: DeleteExpenseArgs) -> ToolResult:
        expense = self.db.find_expense_by_id(self.owner_id, args.id)
        if expense is None or not self.db.delete_expense(self.owner_id, args.id):
            return JsonResult(
                name=self.name,
                payload={"status": "not_found", "message": f"Expense #{args.id} not found."},
            )
        return JsonResult(
            name=self.name,
            payload={
                "status": "success",
                "message": f'Deleted "{expense.title}" ({format_inr(expense.amount)}).',
            },
        )


@dataclass
class ToolCatalog:
    """The fixed set of tools bound to one conversation owner."""

    db: "ExpenseDatabase"
    owner_id: int
    today: Callable[[], date_cls] = date_cls.today
    tools: Dict[str, Any] = field(init=False)

    def __post_init__(self) -> None:
        entries = [
            AddExpenseTool(db=self.db, owner_id=self.owner_id, today=self.today),
            GetExpensesTool(db=self.db, owner_id=self.owner_id),
            ExpenseChartTool(db=self.db, owner_id=self.owner_id),
            DeleteExpenseTool(db=self.db, owner_id=self.owner_id),
        ]
        self.tools = {tool.name: tool for tool in entries}

    @property
    def names(self) -> List[str]:
        return list(self.tools)

    def specs(self) -> List[Mapping[str, Any]]:
        """Describe every tool in the OpenAI function-calling format."""

        specs: List[Mapping[str, Any]] = []
        for tool in self.tools.values():
            parameters = tool.args_model.model_json_schema(by_alias=True)
            parameters.pop("title", None)
            specs.append(
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": parameters,
                    },
                }
            )
        return specs

    def validate(self, call: ToolCall) -> BaseModel:
        tool = self.tools.get(call.name)
        if tool is None:
            raise ToolArgumentsError(call.name, "unknown tool")
        try:
            return tool.args_model.model_validate(call.arguments)
        except ValidationError as exc:
            raise ToolArgumentsError(call.name, str(exc)) from exc

    def execute(self, call: ToolCall) -> ToolResult:
        """Validate ``call`` against its schema and run it for the bound owner."""

        args = self.validate(call)
        logger.debug("Executing %s for owner %s with %s", call.name, self.owner_id, args)
        return self.tools[call.name](args)


__all__ = [
    "AddExpenseArgs",
    "AddExpenseTool",
    "Category",
    "ChartArgs",
    "DeleteExpenseArgs",
    "DeleteExpenseTool",
    "ExpenseChartTool",
    "GetExpensesArgs",
    "GetExpensesTool",
    "ToolCatalog",
    "format_inr",
    "round_money",
    "week_key",
]
