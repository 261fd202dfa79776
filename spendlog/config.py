"""Configuration for spendlog.

Paths, display settings and limits, each overridable through an
environment variable.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

DATA_DIR = Path(os.getenv("SPENDLOG_DATA_DIR", _PROJECT_ROOT / "data")).resolve()
EXPORT_DIR = Path(os.getenv("SPENDLOG_EXPORT_DIR", _PROJECT_ROOT / "exports")).resolve()

CURRENCY_SYMBOL = os.getenv("SPENDLOG_CURRENCY", "Bs")

# Python weekday numbering: Monday is 0, Sunday is 6.
WEEK_START = int(os.getenv("SPENDLOG_WEEK_START", "6"))

LOG_LEVEL = os.getenv("SPENDLOG_LOG_LEVEL", "WARNING").upper()


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    return int(value)


# Upper bound on the total size of all stored blobs, None for unlimited.
QUOTA_BYTES = _optional_int(os.getenv("SPENDLOG_QUOTA_BYTES"))


def ensure_directories() -> None:
    """Create the data and export directories if they don't exist."""
    for directory in [DATA_DIR, EXPORT_DIR]:
        directory.mkdir(parents=True, exist_ok=True)


def format_currency(amount: float, symbol: str = CURRENCY_SYMBOL) -> str:
    return f"{symbol} {float(amount):.2f}"
