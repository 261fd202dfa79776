"""JSON snapshots and PDF monthly reports."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from spendlog.config import EXPORT_DIR, format_currency
from spendlog.logic import budget_summary, category_breakdown, month_start_for, to_day
from spendlog.models import Budget, Expense
from spendlog.storage import EnhancedJSONEncoder, Repository

logger = logging.getLogger(__name__)

REPORT_TITLE = "Spendlog - Monthly Report"
PRIMARY_COLOR = colors.Color(93 / 255, 41 / 255, 255 / 255)
ALTERNATE_ROW_COLOR = colors.Color(245 / 255, 245 / 255, 255 / 255)


@dataclass
class CategoryRow:
    label: str
    amount: float
    share: int


@dataclass
class MonthlyReport:
    generated_at: datetime
    budget_total: float
    month_spent: float
    remaining: float
    percent_used: int
    categories: List[CategoryRow] = field(default_factory=list)
    items: List[Expense] = field(default_factory=list)


def default_export_name(now: datetime, suffix: str) -> str:
    return f"spendlog_{now.date().isoformat()}.{suffix}"


def export_json(repository: Repository, path: Optional[Path] = None, now: Optional[datetime] = None) -> Path:
    now = now or datetime.now()
    target = Path(path or EXPORT_DIR / default_export_name(now, "json"))
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as handle:
        json.dump(repository.snapshot(now), handle, cls=EnhancedJSONEncoder, ensure_ascii=False, indent=2)
    logger.info("Exported JSON snapshot to %s", target)
    return target


def build_monthly_report(expenses: List[Expense], budget: Budget, now: datetime) -> MonthlyReport:
    today = to_day(now)
    first = month_start_for(today)
    spent, state = budget_summary(expenses, budget, today)

    rows = []
    for label, amount in category_breakdown(expenses, first, today).items():
        share = round(amount / spent * 100) if spent > 0 else 0
        rows.append(CategoryRow(label, amount, share))

    items = [e for e in expenses if first <= to_day(e.date) <= today]
    items.sort(key=lambda e: to_day(e.date), reverse=True)

    return MonthlyReport(
        generated_at=now,
        budget_total=budget.total,
        month_spent=spent,
        remaining=state.remaining,
        percent_used=state.percent,
        categories=rows,
        items=items,
    )


def _grid_table(head: List[str], body: List[List[str]]) -> Table:
    if not body:
        body = [["No records"] + [""] * (len(head) - 1)]
    table = Table([head] + body, repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), PRIMARY_COLOR),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, ALTERNATE_ROW_COLOR]),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]))
    return table


def _page_footer(total_pages: int):
    def draw(canvas, doc):
        canvas.saveState()
        canvas.setFont("Helvetica", 8)
        width, _ = doc.pagesize
        canvas.drawRightString(width - 20, 10, f"Page {doc.page} of {total_pages}")
        canvas.restoreState()
    return draw


def _build_story(report: MonthlyReport) -> list:
    styles = getSampleStyleSheet()
    story = [
        Paragraph(REPORT_TITLE, styles["Title"]),
        Paragraph(f"Report date: {report.generated_at.strftime('%B %d, %Y')}", styles["Normal"]),
        Spacer(1, 12),
        Paragraph("Budget Summary", styles["Heading2"]),
        _grid_table(["Item", "Amount"], [
            ["Total Budget", format_currency(report.budget_total)],
            ["Month Spending", format_currency(report.month_spent)],
            ["Remaining", format_currency(report.remaining)],
            ["Percent Used", f"{report.percent_used}%"],
        ]),
        Spacer(1, 12),
        Paragraph("Spending by Category", styles["Heading2"]),
        _grid_table(["Category", "Amount", "Share"], [
            [row.label, format_currency(row.amount), f"{row.share}%"] for row in report.categories
        ]),
        Spacer(1, 12),
        Paragraph("Expenses This Month", styles["Heading2"]),
        _grid_table(["Date", "Description", "Category", "Amount"], [
            [to_day(e.date).isoformat(), e.description, e.category, format_currency(e.amount)]
            for e in report.items
        ]),
    ]
    return story


def export_pdf(report: MonthlyReport, path: Optional[Path] = None) -> Path:
    target = Path(path or EXPORT_DIR / default_export_name(report.generated_at, "pdf"))
    target.parent.mkdir(parents=True, exist_ok=True)

    # first pass counts pages so the footer can print "Page i of n"
    counter = SimpleDocTemplate(str(target), pagesize=A4)
    counter.build(_build_story(report))
    total_pages = counter.page

    doc = SimpleDocTemplate(str(target), pagesize=A4, title=REPORT_TITLE)
    footer = _page_footer(total_pages)
    doc.build(_build_story(report), onFirstPage=footer, onLaterPages=footer)
    logger.info("Exported PDF report (%d pages) to %s", total_pages, target)
    return target
