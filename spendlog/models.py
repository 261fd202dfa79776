from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Literal


BudgetStatus = Literal["normal", "warning", "danger"]

MAX_AMOUNT = 1_000_000
MAX_DESCRIPTION_LENGTH = 100
CUSTOM_CATEGORY_EMOJI = "📌"


@dataclass
class Expense:
    date: date
    description: str
    category: str
    amount: float


@dataclass
class Category:
    id: str
    label: str
    emoji: str = CUSTOM_CATEGORY_EMOJI


@dataclass
class Budget:
    total: float = 0.0
    per_category: Dict[str, float] = field(default_factory=dict)


@dataclass
class PeriodTotals:
    day: float = 0.0
    week: float = 0.0
    month: float = 0.0


@dataclass
class BudgetState:
    remaining: float
    percent: int
    raw_percent: float
    status: BudgetStatus


@dataclass
class DayHistory:
    day: date
    entries: List[tuple[int, Expense]] = field(default_factory=list)
    total: float = 0.0


DEFAULT_CATEGORIES: List[Category] = [
    Category("food", "Food", "🍽️"),
    Category("transport", "Transport", "🚗"),
    Category("utilities", "Utilities", "🏠"),
    Category("entertainment", "Entertainment", "🎮"),
    Category("health", "Health", "⚕️"),
    Category("education", "Education", "📚"),
    Category("clothing", "Clothing", "👕"),
    Category("other", "Other", "📦"),
]


def default_categories() -> List[Category]:
    return [Category(c.id, c.label, c.emoji) for c in DEFAULT_CATEGORIES]
