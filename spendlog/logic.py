import logging
import math
import re
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Optional, Union

from dateutil.relativedelta import relativedelta, weekdays

from spendlog.errors import ValidationFailed
from spendlog.models import (
    MAX_AMOUNT, MAX_DESCRIPTION_LENGTH, CUSTOM_CATEGORY_EMOJI,
    Budget, BudgetState, BudgetStatus, Category, DayHistory, Expense, PeriodTotals
)

logger = logging.getLogger(__name__)

DayLike = Union[date, datetime]

SUNDAY = 6
WARNING_THRESHOLD = 75
DANGER_THRESHOLD = 90


# ===== VALIDATION =====
def sanitize_description(text: Optional[str]) -> str:
    return re.sub(r"[<>]", "", text or "").strip()


def slugify(label: str) -> str:
    return re.sub(r"\s+", "_", label.strip().lower())


def make_expense(
        amount: float,
        category: str,
        description: str,
        on: Optional[DayLike] = None,
) -> Expense:
    return Expense(
        date=on or date.today(),
        description=sanitize_description(description),
        category=(category or "").strip(),
        amount=amount,
    )


def make_category(label: str, emoji: str = CUSTOM_CATEGORY_EMOJI) -> Category:
    label = (label or "").strip()
    if not label:
        raise ValidationFailed("Category name must not be empty")
    return Category(id=slugify(label), label=label, emoji=emoji)


def validate_amount(value, name: str = "Amount", allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ValidationFailed(f"{name} must be a number")
    lower_ok = value >= 0 if allow_zero else value > 0
    if not lower_ok or value > MAX_AMOUNT:
        lower = "0" if allow_zero else "more than 0"
        raise ValidationFailed(f"{name} must be {lower} and at most {MAX_AMOUNT:,}")


def validate_expense(expense: Expense, now: DayLike) -> None:
    validate_amount(expense.amount)

    description = sanitize_description(expense.description)
    if not description:
        raise ValidationFailed("Description must not be empty")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationFailed(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")

    if not (expense.category or "").strip():
        raise ValidationFailed("Please select a category")

    if not isinstance(expense.date, date):
        raise ValidationFailed("Date must be a calendar date")
    if to_day(expense.date) > to_day(now):
        raise ValidationFailed("Date must not be in the future")


def validate_budget(budget: Budget) -> None:
    validate_amount(budget.total, name="Budget", allow_zero=True)


# ===== AGGREGATION =====
def to_day(value: DayLike) -> date:
    """Drop the time of day so comparisons happen on calendar days."""
    if isinstance(value, datetime):
        return value.date()
    return value


def week_start_for(day: DayLike, week_start: int = SUNDAY) -> date:
    """Most recent ``week_start`` weekday on or before ``day``."""
    return to_day(day) + relativedelta(weekday=weekdays[week_start](-1))


def month_start_for(day: DayLike) -> date:
    return to_day(day) + relativedelta(day=1)


def sum_in_range(expenses: Iterable[Expense], start: DayLike, end: DayLike) -> float:
    start, end = to_day(start), to_day(end)
    return sum((e.amount for e in expenses if start <= to_day(e.date) <= end), 0.0)


def totals_for_today(expenses: Iterable[Expense], now: DayLike, week_start: int = SUNDAY) -> PeriodTotals:
    expenses = list(expenses)
    today = to_day(now)
    return PeriodTotals(
        day=sum_in_range(expenses, today, today),
        week=sum_in_range(expenses, week_start_for(today, week_start), today),
        month=sum_in_range(expenses, month_start_for(today), today),
    )


def category_breakdown(expenses: Iterable[Expense], start: DayLike, end: DayLike) -> Dict[str, float]:
    """Sum per category label, ordered from the largest total down."""
    start, end = to_day(start), to_day(end)
    totals: Dict[str, float] = defaultdict(float)
    for e in expenses:
        if start <= to_day(e.date) <= end:
            totals[e.category] += e.amount

    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))


# ===== BUDGET =====
def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def status_for(percent: float) -> BudgetStatus:
    if percent >= DANGER_THRESHOLD:
        return "danger"
    if percent >= WARNING_THRESHOLD:
        return "warning"
    return "normal"


def evaluate(budget_total: float, spent: float) -> BudgetState:
    raw_percent = spent * 100 / budget_total if budget_total > 0 else 0.0
    # percent is for display; status uses the unclamped value so overspending stays in danger
    percent = min(max(_round_half_up(raw_percent), 0), 100)
    return BudgetState(
        remaining=max(0.0, budget_total - spent),
        percent=percent,
        raw_percent=raw_percent,
        status=status_for(raw_percent),
    )


def budget_summary(expenses: Iterable[Expense], budget: Budget, now: DayLike) -> tuple[float, BudgetState]:
    today = to_day(now)
    spent = sum_in_range(expenses, month_start_for(today), today)
    return spent, evaluate(budget.total, spent)


class BudgetWatch:
    """Remembers the last budget status so the danger alert fires once per crossing."""

    def __init__(self, status: BudgetStatus = "normal"):
        self.status = status

    def update(self, state: BudgetState) -> bool:
        crossed = state.status == "danger" and self.status != "danger"
        if crossed:
            logger.info("Budget entered danger at %.1f%%", state.raw_percent)
        self.status = state.status
        return crossed


# ===== HISTORY =====
def day_history(expenses: Iterable[Expense], day: DayLike) -> DayHistory:
    day = to_day(day)
    history = DayHistory(day=day)
    for index, e in enumerate(expenses):
        if to_day(e.date) == day:
            history.entries.append((index, e))
            history.total += e.amount
    return history


def step_day(current: date, direction: int, today: DayLike) -> date:
    target = current + timedelta(days=direction)
    if target > to_day(today):
        return current
    return target


def select_day(requested: DayLike, current: date, today: DayLike) -> date:
    requested = to_day(requested)
    if requested > to_day(today):
        return current
    return requested
