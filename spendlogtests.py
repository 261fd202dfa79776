import io
import json
import math
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import date, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

from spendlog.cli import DANGER_MESSAGE, SpendlogCLI
from spendlog.config import format_currency
from spendlog.errors import (
    DuplicateCategory, IndexOutOfRange, StorageReadCorrupt, StorageWriteFailed, ValidationFailed
)
from spendlog.export import (
    build_monthly_report, default_export_name, export_json, export_pdf
)
from spendlog.logic import (
    BudgetWatch, budget_summary, category_breakdown, day_history, evaluate,
    make_category, make_expense, month_start_for, sanitize_description, select_day,
    step_day, sum_in_range, totals_for_today, week_start_for
)
from spendlog.models import Budget, Category, Expense, DEFAULT_CATEGORIES
from spendlog.storage import Repository, Store

# Wednesday; the week started on Sunday 2025-06-15
NOW = datetime(2025, 6, 18, 15, 30)
TODAY = NOW.date()


def expense(day, amount, category="Food", description="Lunch"):
    return Expense(date=day, description=description, category=category, amount=amount)


class StoreTestCase(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.data_dir = Path(tmp.name)
        self.store = Store(self.data_dir, quota_bytes=None)
        self.repo = Repository(self.store)


class TestAggregator(unittest.TestCase):
    def setUp(self):
        self.expenses = [
            expense(date(2025, 5, 31), 10.0),
            expense(date(2025, 6, 1), 20.0, "Transport"),
            expense(date(2025, 6, 14), 5.0),
            expense(date(2025, 6, 15), 7.0, "Health"),
            expense(date(2025, 6, 17), 3.0),
            expense(datetime(2025, 6, 18, 9, 0), 4.5),
            expense(datetime(2025, 6, 18, 23, 59), 1.5, "Transport"),
        ]

    def test_empty_list_sums_to_zero(self):
        """No expenses means every total is zero"""
        self.assertEqual(sum_in_range([], date(2025, 1, 1), TODAY), 0.0)
        totals = totals_for_today([], NOW)
        self.assertEqual((totals.day, totals.week, totals.month), (0.0, 0.0, 0.0))
        self.assertEqual(category_breakdown([], date(2025, 1, 1), TODAY), {})

    def test_full_span_equals_sum_of_amounts(self):
        days = [e.date if not isinstance(e.date, datetime) else e.date.date() for e in self.expenses]
        total = sum_in_range(self.expenses, min(days), max(days))
        self.assertEqual(total, sum(e.amount for e in self.expenses))

    def test_single_day_ignores_time_of_day(self):
        self.assertEqual(sum_in_range(self.expenses, TODAY, TODAY), 6.0)
        self.assertEqual(sum_in_range(self.expenses, NOW, NOW), 6.0)
        self.assertEqual(sum_in_range(self.expenses, date(2025, 6, 16), date(2025, 6, 16)), 0.0)

    def test_range_is_inclusive(self):
        self.assertEqual(sum_in_range(self.expenses, date(2025, 6, 1), date(2025, 6, 15)), 32.0)

    def test_totals_for_today(self):
        totals = totals_for_today(self.expenses, NOW)
        self.assertEqual(totals.day, 6.0)
        self.assertEqual(totals.week, 16.0)   # Sunday 15th through today
        self.assertEqual(totals.month, 41.0)  # excludes May 31st

    def test_totals_with_monday_week_start(self):
        totals = totals_for_today(self.expenses, NOW, week_start=0)
        self.assertEqual(totals.week, 9.0)

    def test_week_and_month_start(self):
        self.assertEqual(week_start_for(TODAY), date(2025, 6, 15))
        self.assertEqual(week_start_for(date(2025, 6, 15)), date(2025, 6, 15))
        self.assertEqual(week_start_for(date(2025, 6, 14)), date(2025, 6, 8))
        self.assertEqual(week_start_for(TODAY, week_start=0), date(2025, 6, 16))
        self.assertEqual(month_start_for(NOW), date(2025, 6, 1))

    def test_category_breakdown_descending(self):
        breakdown = category_breakdown(self.expenses, date(2025, 6, 1), TODAY)
        self.assertEqual(list(breakdown), ["Transport", "Food", "Health"])
        self.assertEqual(breakdown["Transport"], 21.5)
        self.assertEqual(breakdown["Food"], 12.5)
        self.assertEqual(breakdown["Health"], 7.0)


class TestBudgetEvaluator(unittest.TestCase):
    def test_zero_budget_has_no_percentage(self):
        for spent in (0.0, 50.0, 2_000_000.0):
            state = evaluate(0, spent)
            self.assertEqual(state.percent, 0)
            self.assertEqual(state.status, "normal")
            self.assertEqual(state.remaining, 0.0)

    def test_status_thresholds(self):
        self.assertEqual(evaluate(100, 90).status, "danger")
        self.assertEqual(evaluate(100, 75).status, "warning")
        self.assertEqual(evaluate(100, 74).status, "normal")

    def test_overspend_is_clamped_but_still_danger(self):
        state = evaluate(100, 150)
        self.assertEqual(state.remaining, 0)
        self.assertEqual(state.percent, 100)
        self.assertEqual(state.raw_percent, 150)
        self.assertEqual(state.status, "danger")

    def test_remaining_and_rounding(self):
        state = evaluate(200, 89)
        self.assertEqual(state.remaining, 111)
        self.assertEqual(state.percent, 45)  # 44.5 rounds up

    def test_status_uses_unrounded_percentage(self):
        state = evaluate(1000, 895)
        self.assertEqual(state.percent, 90)
        self.assertEqual(state.status, "warning")

    def test_budget_summary_uses_month_to_date(self):
        expenses = [expense(date(2025, 5, 30), 500.0), expense(date(2025, 6, 2), 80.0)]
        spent, state = budget_summary(expenses, Budget(total=100.0), NOW)
        self.assertEqual(spent, 80.0)
        self.assertEqual(state.status, "warning")

    def test_budget_watch_fires_once_per_crossing(self):
        watch = BudgetWatch()
        self.assertFalse(watch.update(evaluate(100, 50)))
        self.assertTrue(watch.update(evaluate(100, 95)))
        self.assertFalse(watch.update(evaluate(100, 99)))
        self.assertFalse(watch.update(evaluate(100, 80)))
        self.assertTrue(watch.update(evaluate(100, 91)))


class TestValidation(StoreTestCase):
    def test_sanitize_and_make_expense(self):
        self.assertEqual(sanitize_description("  <b>Coffee</b> "), "bCoffee/b")
        e = make_expense(12.5, " Food ", "  Lunch ", on=TODAY)
        self.assertEqual(e, Expense(TODAY, "Lunch", "Food", 12.5))

    def test_make_category_slug(self):
        c = make_category("  Pet   Care ")
        self.assertEqual(c.id, "pet_care")
        self.assertEqual(c.label, "Pet   Care")
        self.assertEqual(c.emoji, "📌")
        with self.assertRaises(ValidationFailed):
            make_category("   ")

    def test_rejected_expenses_leave_list_unchanged(self):
        self.repo.append_expense(expense(TODAY, 10.0), now=NOW)
        bad = [
            expense(TODAY, 0),
            expense(TODAY, -5.0),
            expense(TODAY, 1_000_001),
            expense(TODAY, "abc"),
            expense(TODAY, math.nan),
            expense(TODAY, True),
            expense(TODAY, 5.0, description=" <> "),
            expense(TODAY, 5.0, description="x" * 101),
            expense(TODAY, 5.0, category=""),
            expense(TODAY + timedelta(days=1), 5.0),
        ]
        for e in bad:
            with self.subTest(expense=e):
                with self.assertRaises(ValidationFailed):
                    self.repo.append_expense(e, now=NOW)
        self.assertEqual(len(self.repo.list_expenses()), 1)

    def test_boundary_values_accepted(self):
        self.repo.append_expense(expense(TODAY, 1_000_000, description="x" * 100), now=NOW)
        self.repo.append_expense(expense(datetime(2025, 6, 18, 23, 0), 0.01), now=NOW)
        self.assertEqual(len(self.repo.list_expenses()), 2)

    def test_stored_description_is_sanitized(self):
        """Descriptions are stored the way they were validated"""
        self.repo.append_expense(expense(TODAY, 1.0, description="x" * 100 + "<<>>"), now=NOW)
        self.repo.append_expense(expense(TODAY, 2.0, " Food ", "  <script> "), now=NOW)
        stored = self.repo.list_expenses()
        self.assertEqual(stored[0].description, "x" * 100)
        self.assertEqual(stored[1].description, "script")
        self.assertEqual(stored[1].category, "Food")

    def test_budget_range(self):
        for total in (-1, 1_000_001, "10"):
            with self.subTest(total=total):
                with self.assertRaises(ValidationFailed):
                    self.repo.set_budget(Budget(total=total))
        self.repo.set_budget(Budget(total=0))
        self.assertEqual(self.repo.get_budget().total, 0)


class TestRepository(StoreTestCase):
    def test_defaults_when_empty(self):
        self.assertEqual(self.repo.list_expenses(), [])
        self.assertEqual(self.repo.get_budget(), Budget(total=0.0, per_category={}))
        categories = self.repo.list_categories()
        self.assertEqual([c.id for c in categories], [c.id for c in DEFAULT_CATEGORIES])

    def test_insertion_order_is_kept(self):
        self.repo.append_expense(expense(date(2025, 6, 18), 1.0), now=NOW)
        self.repo.append_expense(expense(date(2025, 6, 1), 2.0), now=NOW)
        self.repo.append_expense(expense(date(2025, 6, 10), 3.0), now=NOW)
        self.assertEqual([e.amount for e in self.repo.list_expenses()], [1.0, 2.0, 3.0])

    def test_remove_expense_keeps_relative_order(self):
        for amount in (1.0, 2.0, 3.0):
            self.repo.append_expense(expense(TODAY, amount), now=NOW)

        removed = self.repo.remove_expense_at(2)
        self.assertEqual(removed.amount, 3.0)
        self.assertEqual([e.amount for e in self.repo.list_expenses()], [1.0, 2.0])

        self.repo.append_expense(expense(TODAY, 3.0), now=NOW)
        self.repo.remove_expense_at(1)
        self.assertEqual([e.amount for e in self.repo.list_expenses()], [1.0, 3.0])

    def test_remove_invalid_index(self):
        self.repo.append_expense(expense(TODAY, 1.0), now=NOW)
        for index in (1, 5, -1):
            with self.subTest(index=index):
                with self.assertRaises(IndexOutOfRange):
                    self.repo.remove_expense_at(index)
        with self.assertRaises(IndexError):
            self.repo.remove_expense_at(3)
        self.assertEqual(len(self.repo.list_expenses()), 1)

    def test_duplicate_category(self):
        self.repo.add_category(Category("x", "X"))
        size = len(self.repo.list_categories())
        with self.assertRaises(DuplicateCategory):
            self.repo.add_category(Category("x", "Another X"))
        self.assertEqual(len(self.repo.list_categories()), size)
        self.assertEqual(size, len(DEFAULT_CATEGORIES) + 1)

    def test_duplicate_default_category(self):
        with self.assertRaises(DuplicateCategory) as ctx:
            self.repo.add_category(make_category("Food"))
        self.assertEqual(ctx.exception.category_id, "food")

    def test_find_category(self):
        self.repo.add_category(make_category("Pet Care"))
        self.assertEqual(self.repo.find_category("pet_care").label, "Pet Care")
        self.assertEqual(self.repo.find_category("pet care").id, "pet_care")
        self.assertEqual(self.repo.find_category("FOOD").id, "food")
        self.assertIsNone(self.repo.find_category("nope"))

    def test_budget_replaced_wholesale(self):
        self.repo.set_budget(Budget(total=500.0, per_category={"food": 100.0}))
        self.repo.set_budget(Budget(total=300.0))
        self.assertEqual(self.repo.get_budget(), Budget(total=300.0, per_category={}))

    def test_dates_round_trip_with_and_without_time(self):
        self.repo.append_expense(expense(date(2025, 6, 17), 1.0), now=NOW)
        self.repo.append_expense(expense(datetime(2025, 6, 18, 14, 30), 2.0), now=NOW)
        stored = self.repo.list_expenses()
        self.assertEqual(stored[0].date, date(2025, 6, 17))
        self.assertNotIsInstance(stored[0].date, datetime)
        self.assertEqual(stored[1].date, datetime(2025, 6, 18, 14, 30))

    def test_corrupt_blob_falls_back_to_default(self):
        (self.data_dir / "expenses.json").write_text("{not json", encoding="utf-8")
        (self.data_dir / "budget.json").write_text("[1, 2", encoding="utf-8")
        with self.assertLogs("spendlog.storage", level="WARNING"):
            self.assertEqual(self.repo.list_expenses(), [])
        with self.assertLogs("spendlog.storage", level="WARNING"):
            self.assertEqual(self.repo.get_budget().total, 0.0)
        with self.assertRaises(StorageReadCorrupt):
            self.store.load("expenses")

    def test_invalid_stored_amount_is_skipped(self):
        records = [
            {"date": "2025-06-18", "description": "Ok", "category": "Food", "amount": 4.0},
            {"date": "2025-06-18", "description": "Bad", "category": "Food", "amount": "abc"},
            {"date": "2025-06-18", "description": "Missing", "category": "Food"},
        ]
        (self.data_dir / "expenses.json").write_text(json.dumps(records), encoding="utf-8")
        with self.assertLogs("spendlog.storage", level="WARNING") as logs:
            stored = self.repo.list_expenses()
        self.assertEqual([e.description for e in stored], ["Ok"])
        self.assertEqual(len(logs.records), 2)

    def test_quota_exceeded_keeps_previous_state(self):
        repo = Repository(Store(self.data_dir, quota_bytes=150))
        repo.append_expense(expense(TODAY, 12.5), now=NOW)
        with self.assertRaises(StorageWriteFailed):
            repo.append_expense(expense(TODAY, 8.0), now=NOW)
        self.assertEqual([e.amount for e in repo.list_expenses()], [12.5])

    def test_unserializable_value_fails_write(self):
        with self.assertRaises(StorageWriteFailed):
            self.store.set("misc", {"value": object()})
        self.assertNotIn("misc", self.store.keys())

    def test_reset_restores_defaults(self):
        self.repo.append_expense(expense(TODAY, 1.0), now=NOW)
        self.repo.set_budget(Budget(total=100.0))
        self.repo.add_category(make_category("Pets"))

        self.repo.reset()

        self.assertEqual(self.repo.list_expenses(), [])
        self.assertEqual(self.repo.get_budget().total, 0.0)
        self.assertEqual(len(self.repo.list_categories()), len(DEFAULT_CATEGORIES))
        self.assertEqual(self.store.keys(), ["categories"])

    def test_failed_reset_keeps_data(self):
        repo = Repository(Store(self.data_dir, quota_bytes=300))
        repo.append_expense(expense(TODAY, 12.5), now=NOW)
        repo.set_budget(Budget(total=50.0))

        with self.assertRaises(StorageWriteFailed):
            repo.reset()

        self.assertEqual([e.amount for e in repo.list_expenses()], [12.5])
        self.assertEqual(repo.get_budget().total, 50.0)


class TestHistory(StoreTestCase):
    def test_day_history_uses_repository_indices(self):
        self.repo.append_expense(expense(date(2025, 6, 17), 1.0, description="A"), now=NOW)
        self.repo.append_expense(expense(date(2025, 6, 18), 2.0, description="B"), now=NOW)
        self.repo.append_expense(expense(datetime(2025, 6, 17, 20, 0), 3.0, description="C"), now=NOW)

        history = day_history(self.repo.list_expenses(), date(2025, 6, 17))
        self.assertEqual([i for i, _ in history.entries], [0, 2])
        self.assertEqual(history.total, 4.0)

        index, _ = history.entries[1]
        self.repo.remove_expense_at(index)
        self.assertEqual([e.description for e in self.repo.list_expenses()], ["A", "B"])

    def test_empty_day(self):
        history = day_history([], TODAY)
        self.assertEqual(history.entries, [])
        self.assertEqual(history.total, 0.0)

    def test_navigation_stops_at_today(self):
        self.assertEqual(step_day(TODAY, -1, NOW), date(2025, 6, 17))
        self.assertEqual(step_day(TODAY, 1, NOW), TODAY)
        self.assertEqual(step_day(date(2025, 6, 17), 1, NOW), TODAY)
        self.assertEqual(select_day(date(2025, 6, 19), date(2025, 6, 10), NOW), date(2025, 6, 10))
        self.assertEqual(select_day(date(2025, 1, 2), date(2025, 6, 10), NOW), date(2025, 1, 2))


class TestExport(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.out_dir = self.data_dir / "exports"
        self.repo.append_expense(expense(date(2025, 5, 20), 99.0, description="Old"), now=NOW)
        self.repo.append_expense(expense(date(2025, 6, 2), 30.0, "Food", "Groceries"), now=NOW)
        self.repo.append_expense(expense(date(2025, 6, 16), 50.0, "Transport", "Taxi"), now=NOW)
        self.repo.append_expense(expense(date(2025, 6, 10), 20.0, "Food", "Dinner"), now=NOW)
        self.repo.set_budget(Budget(total=200.0))

    def test_default_export_name(self):
        self.assertEqual(default_export_name(NOW, "pdf"), "spendlog_2025-06-18.pdf")

    def test_json_snapshot(self):
        path = export_json(self.repo, self.out_dir / "snapshot.json", NOW)
        data = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(set(data), {"expenses", "budget", "categories", "exported_at"})
        self.assertEqual(data["exported_at"], NOW.isoformat())
        self.assertEqual(len(data["expenses"]), 4)
        self.assertEqual(data["expenses"][1]["amount"], 30.0)
        self.assertEqual(data["budget"]["total"], 200.0)
        self.assertEqual(len(data["categories"]), len(DEFAULT_CATEGORIES))

    def test_monthly_report(self):
        report = build_monthly_report(self.repo.list_expenses(), self.repo.get_budget(), NOW)
        self.assertEqual(report.month_spent, 100.0)
        self.assertEqual(report.remaining, 100.0)
        self.assertEqual(report.percent_used, 50)
        self.assertEqual([(r.label, r.amount, r.share) for r in report.categories],
                         [("Food", 50.0, 50), ("Transport", 50.0, 50)])
        self.assertEqual([e.description for e in report.items], ["Taxi", "Dinner", "Groceries"])

    def test_pdf_export(self):
        report = build_monthly_report(self.repo.list_expenses(), self.repo.get_budget(), NOW)
        path = export_pdf(report, self.out_dir / "report.pdf")
        self.assertTrue(path.read_bytes().startswith(b"%PDF"))

    def test_pdf_export_without_expenses(self):
        report = build_monthly_report([], Budget(), NOW)
        path = export_pdf(report, self.out_dir / "empty.pdf")
        self.assertTrue(path.exists())


class TestCLI(StoreTestCase):
    def setUp(self):
        super().setUp()
        self.cli = SpendlogCLI(self.repo, clock=lambda: NOW)

    def run_cmd(self, line):
        with redirect_stdout(io.StringIO()) as out:
            self.cli.onecmd(line)
        return out.getvalue()

    def test_add_expense(self):
        output = self.run_cmd("add 12.50 food --desc Lunch with <team>")
        self.assertIn("✓ Added", output)
        stored = self.repo.list_expenses()
        self.assertEqual(stored, [Expense(TODAY, "Lunch with team", "Food", 12.5)])

    def test_add_expense_with_date(self):
        self.run_cmd("add 5 transport 2025-06-01 --desc Bus")
        self.assertEqual(self.repo.list_expenses()[0].date, date(2025, 6, 1))

    def test_add_rejections(self):
        self.assertIn("Invalid input", self.run_cmd("add 5 spaceships --desc Rocket"))
        self.assertIn("Invalid input", self.run_cmd("add 0 food --desc Nothing"))
        self.assertIn("Invalid input", self.run_cmd("add 5 food 2025-06-19 --desc Tomorrow"))
        self.assertIn("Invalid input", self.run_cmd("add 5 food"))
        self.assertEqual(self.repo.list_expenses(), [])

    def test_danger_alert_only_on_crossing(self):
        self.run_cmd("budget 100")
        self.assertIn(DANGER_MESSAGE, self.run_cmd("add 95 food --desc Feast"))
        self.assertNotIn(DANGER_MESSAGE, self.run_cmd("add 1 food --desc Snack"))
        self.assertNotIn(DANGER_MESSAGE, self.run_cmd("totals"))

    def test_totals_output(self):
        self.run_cmd("add 10 food --desc Lunch")
        output = self.run_cmd("totals")
        self.assertIn(f"Today:      {format_currency(10)}", output)
        self.assertIn("Current period: June 2025", output)

    def test_history_navigation_and_delete(self):
        self.run_cmd("add 3 food 2025-06-17 --desc Yesterday")
        self.run_cmd("add 4 food --desc Today")

        self.assertIn("[1] Today", self.run_cmd("history"))
        self.assertIn("Cannot show future dates", self.run_cmd("history 2025-06-20"))
        output = self.run_cmd("history prev")
        self.assertEqual(self.cli.history_date, date(2025, 6, 17))
        self.assertIn("[0] Yesterday", output)
        self.run_cmd("history next")
        self.run_cmd("history next")
        self.assertEqual(self.cli.history_date, TODAY)

        with patch("builtins.input", return_value="y"):
            self.run_cmd("delete 1")
            self.assertEqual([e.description for e in self.repo.list_expenses()], ["Yesterday"])
            self.assertIn("Error", self.run_cmd("delete 7"))

    def test_delete_requires_confirmation(self):
        self.run_cmd("add 4 food --desc Lunch")
        with patch("builtins.input", return_value="n"):
            self.assertIn("Cancelled", self.run_cmd("delete 0"))
        self.assertEqual(len(self.repo.list_expenses()), 1)

    def test_delete_rejects_malformed_index(self):
        self.run_cmd("add 4 food --desc Lunch")
        with patch("builtins.input", return_value="y") as confirm:
            for line in ("delete", "delete --1", "delete ²", "delete one"):
                with self.subTest(line=line):
                    self.assertIn("Usage: delete <index>", self.run_cmd(line))
        confirm.assert_not_called()
        self.assertEqual(len(self.repo.list_expenses()), 1)

    def test_add_with_multi_word_category(self):
        self.run_cmd("category add Pet Care")
        self.assertIn("✓ Added", self.run_cmd("add 5 Pet Care --desc Food bowl"))
        self.assertIn("✓ Added", self.run_cmd("add 6 pet care 2025-06-01 --desc Vet"))
        stored = self.repo.list_expenses()
        self.assertEqual([e.category for e in stored], ["Pet Care", "Pet Care"])
        self.assertEqual(stored[1].date, date(2025, 6, 1))

    def test_add_storage_failure_is_reported(self):
        cli = SpendlogCLI(Repository(Store(self.data_dir, quota_bytes=150)), clock=lambda: NOW)
        with redirect_stdout(io.StringIO()) as out:
            cli.onecmd("add 12.5 food --desc Lunch")
            cli.onecmd("add 8 food --desc Lunch")
        self.assertIn("Error adding expense", out.getvalue())
        self.assertIn("quota exceeded", out.getvalue())
        self.assertEqual([e.amount for e in self.repo.list_expenses()], [12.5])

    def test_categories(self):
        self.assertIn("✓ Added category: Pet Care", self.run_cmd("category add Pet Care"))
        self.assertIn("already exists", self.run_cmd("category add pet care"))
        self.assertIn("📌 Pet Care (pet_care)", self.run_cmd("category list"))

    def test_export_commands(self):
        self.run_cmd("add 10 food --desc Lunch")
        json_path = self.data_dir / "out.json"
        pdf_path = self.data_dir / "out.pdf"
        self.assertIn("✓ Exported", self.run_cmd(f"export json {json_path}"))
        self.assertIn("✓ Exported", self.run_cmd(f"export pdf {pdf_path}"))
        self.assertTrue(json_path.exists())
        self.assertTrue(pdf_path.exists())

    def test_clear_requires_confirmation(self):
        self.run_cmd("add 10 food --desc Lunch")
        with patch("builtins.input", return_value="n"):
            self.assertIn("Cancelled", self.run_cmd("clear"))
        self.assertEqual(len(self.repo.list_expenses()), 1)
        with patch("builtins.input", return_value="y"):
            self.run_cmd("clear")
        self.assertEqual(self.repo.list_expenses(), [])


if __name__ == "__main__":
    unittest.main()
