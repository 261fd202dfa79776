import copy
import json
import logging
import math
import os
from dataclasses import asdict, is_dataclass, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse

from spendlog.config import DATA_DIR, QUOTA_BYTES
from spendlog.errors import (
    DuplicateCategory, IndexOutOfRange, StorageReadCorrupt, StorageWriteFailed
)
from spendlog.logic import sanitize_description, validate_budget, validate_expense
from spendlog.models import Budget, Category, Expense, default_categories

logger = logging.getLogger(__name__)

EXPENSES_KEY = "expenses"
BUDGET_KEY = "budget"
CATEGORIES_KEY = "categories"


class EnhancedJSONEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()
        if is_dataclass(obj) and not isinstance(obj, type):
            return asdict(obj)
        return super().default(obj)


class Store:
    """JSON blobs keyed by name, one ``<key>.json`` file each."""

    def __init__(self, directory: Optional[Path] = None, quota_bytes: Optional[int] = QUOTA_BYTES):
        self.directory = Path(directory or DATA_DIR)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def keys(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(f.stem for f in self.directory.glob("*.json"))

    def usage(self, exclude: Optional[str] = None) -> int:
        return sum(self._path(k).stat().st_size for k in self.keys() if k != exclude)

    def load(self, key: str) -> Any:
        path = self._path(key)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            raise StorageReadCorrupt(f"Could not read '{key}': {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        if not self._path(key).exists():
            return copy.deepcopy(default)
        try:
            return self.load(key)
        except StorageReadCorrupt as e:
            logger.warning("%s; falling back to default", e)
            return copy.deepcopy(default)

    def set(self, key: str, value: Any) -> None:
        try:
            json_str = json.dumps(value, cls=EnhancedJSONEncoder, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as e:
            raise StorageWriteFailed(f"Could not serialize '{key}': {e}") from e

        encoded = json_str.encode("utf-8")
        if self.quota_bytes is not None:
            try:
                used = self.usage(exclude=key)
            except OSError as e:
                raise StorageWriteFailed(f"Could not measure storage usage: {e}") from e
            if used + len(encoded) > self.quota_bytes:
                raise StorageWriteFailed(
                    f"Storage quota exceeded writing '{key}' "
                    f"({used + len(encoded)} of {self.quota_bytes} bytes)"
                )

        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(encoded)
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageWriteFailed(f"Could not write '{key}': {e}") from e
        logger.debug("Wrote %d bytes to '%s'", len(encoded), key)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# ===== RECORD ENCODING =====
def _parse_day(text: str) -> date:
    parsed = isoparse(text)
    # date-only strings stay dates, anything carrying a time keeps it
    if len(text) <= 10:
        return parsed.date()
    return parsed


def _parse_amount(value) -> float:
    if isinstance(value, bool):
        raise ValueError(f"amount is not a number: {value!r}")
    amount = float(value)
    if not math.isfinite(amount):
        raise ValueError(f"amount is not a number: {value!r}")
    return amount


def encode_expense(expense: Expense) -> Dict[str, Any]:
    return {
        "date": expense.date.isoformat(),
        "description": expense.description,
        "category": expense.category,
        "amount": expense.amount,
    }


def decode_expense(data: Dict[str, Any]) -> Expense:
    return Expense(
        date=_parse_day(data["date"]),
        description=str(data.get("description", "")),
        category=str(data["category"]),
        amount=_parse_amount(data["amount"]),
    )


def encode_budget(budget: Budget) -> Dict[str, Any]:
    return {"total": budget.total, "per_category": dict(budget.per_category)}


def decode_budget(data: Dict[str, Any]) -> Budget:
    per_category = data.get("per_category") or {}
    if not isinstance(per_category, dict):
        per_category = {}
    return Budget(
        total=_parse_amount(data.get("total", 0)),
        per_category={str(k): _parse_amount(v) for k, v in per_category.items()},
    )


def encode_category(category: Category) -> Dict[str, Any]:
    return {"id": category.id, "label": category.label, "emoji": category.emoji}


def decode_category(data: Dict[str, Any]) -> Category:
    return Category(id=str(data["id"]), label=str(data["label"]), emoji=str(data.get("emoji", "")))


class Repository:
    """Typed access to the expense list, the budget and the category list."""

    def __init__(self, store: Store):
        self.store = store

    # ===== EXPENSES =====
    def list_expenses(self) -> List[Expense]:
        raw = self.store.get(EXPENSES_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Stored expenses are not a list; ignoring them")
            return []

        expenses = []
        for i, item in enumerate(raw):
            try:
                expenses.append(decode_expense(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping invalid expense at position %d: %s", i, e)
        return expenses

    def _save_expenses(self, expenses: List[Expense]) -> None:
        self.store.set(EXPENSES_KEY, [encode_expense(e) for e in expenses])

    def append_expense(self, expense: Expense, now: Optional[datetime] = None) -> None:
        validate_expense(expense, now or datetime.now())
        expense = replace(
            expense,
            description=sanitize_description(expense.description),
            category=expense.category.strip(),
        )
        expenses = self.list_expenses()
        expenses.append(expense)
        self._save_expenses(expenses)
        logger.info("Added expense of %.2f in '%s'", expense.amount, expense.category)

    def remove_expense_at(self, index: int) -> Expense:
        expenses = self.list_expenses()
        if not 0 <= index < len(expenses):
            raise IndexOutOfRange(index, len(expenses))
        removed = expenses.pop(index)
        self._save_expenses(expenses)
        logger.info("Removed expense %d", index)
        return removed

    # ===== BUDGET =====
    def get_budget(self) -> Budget:
        raw = self.store.get(BUDGET_KEY, None)
        if raw is None:
            return Budget()
        try:
            return decode_budget(raw)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Invalid stored budget, using zero budget: %s", e)
            return Budget()

    def set_budget(self, budget: Budget) -> None:
        validate_budget(budget)
        self.store.set(BUDGET_KEY, encode_budget(budget))
        logger.info("Budget set to %.2f", budget.total)

    # ===== CATEGORIES =====
    def list_categories(self) -> List[Category]:
        raw = self.store.get(CATEGORIES_KEY, None)
        if raw is None:
            return default_categories()
        if not isinstance(raw, list):
            logger.warning("Stored categories are not a list; using defaults")
            return default_categories()

        categories = []
        for i, item in enumerate(raw):
            try:
                categories.append(decode_category(item))
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning("Skipping invalid category at position %d: %s", i, e)
        return categories

    def add_category(self, category: Category) -> None:
        categories = self.list_categories()
        if any(c.id == category.id for c in categories):
            raise DuplicateCategory(category.id)
        categories.append(category)
        self.store.set(CATEGORIES_KEY, [encode_category(c) for c in categories])
        logger.info("Added category '%s'", category.id)

    def find_category(self, key: str) -> Optional[Category]:
        """Look a category up by id or by label, ignoring case."""
        key = key.strip().lower()
        for c in self.list_categories():
            if c.id.lower() == key or c.label.lower() == key:
                return c
        return None

    # ===== DATA MANAGEMENT =====
    def reset(self) -> None:
        # categories are replaced first so a failed write leaves everything in place
        self.store.set(CATEGORIES_KEY, [encode_category(c) for c in default_categories()])
        try:
            self.store.remove(EXPENSES_KEY)
            self.store.remove(BUDGET_KEY)
        except OSError as e:
            raise StorageWriteFailed(f"Could not clear stored data: {e}") from e
        logger.info("All data cleared")

    def snapshot(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "expenses": [encode_expense(e) for e in self.list_expenses()],
            "budget": encode_budget(self.get_budget()),
            "categories": [encode_category(c) for c in self.list_categories()],
            "exported_at": (now or datetime.now()).isoformat(),
        }
