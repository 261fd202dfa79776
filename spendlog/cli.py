import cmd
import logging
from datetime import date, datetime
from typing import Callable, Optional

from spendlog import config
from spendlog.errors import SpendlogError, StorageWriteFailed, ValidationFailed
from spendlog.export import build_monthly_report, export_json, export_pdf
from spendlog.logic import (
    BudgetWatch,
    budget_summary,
    day_history,
    make_category,
    make_expense,
    select_day,
    step_day,
    to_day,
    totals_for_today,
)
from spendlog.models import Budget
from spendlog.storage import Repository

logger = logging.getLogger(__name__)

DANGER_MESSAGE = "⚠ Warning! You have used 90% of your monthly budget"


class SpendlogCLI(cmd.Cmd):
    prompt = "(spendlog) "

    def __init__(self, repository: Repository, clock: Callable[[], datetime] = datetime.now):
        super().__init__()
        self.intro = "Welcome to Spendlog. Type 'help' for commands."
        self.repository = repository
        self.clock = clock
        self.watch = BudgetWatch()
        self.history_date: date = to_day(clock())

    def preloop(self):
        self._refresh()

    # ===== EXPENSES =====
    def do_add(self, arg):
        """Log an expense: add <amount> <category id or name> [YYYY-MM-DD] --desc <description>"""
        try:
            args = self._parse_add_args(arg, to_day(self.clock()))
            category = self.repository.find_category(args['category'])
            if category is None:
                raise ValidationFailed(f"Unknown category: {args['category']}")

            expense = make_expense(
                amount=args['amount'],
                category=category.label,
                description=args['desc'],
                on=args['date'],
            )
            self.repository.append_expense(expense, now=self.clock())
            print(f"✓ Added {config.format_currency(expense.amount)} to {category.emoji} {category.label}")
            if to_day(expense.date) == self.history_date:
                self._render_history()
            self._refresh()
        except ValueError as e:
            print(f"Invalid input: {e}")
        except SpendlogError as e:
            print(f"Error adding expense: {e}")

    def do_delete(self, arg):
        """Delete an expense by the index shown in history: delete <index>"""
        args = arg.split()
        try:
            index = int(args[0])
        except (IndexError, ValueError):
            print("Usage: delete <index>")
            return

        answer = input(f"Delete expense {index}? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            print("Cancelled")
            return

        try:
            removed = self.repository.remove_expense_at(index)
            print(f"✓ Deleted '{removed.description}' ({config.format_currency(removed.amount)})")
            self._render_history()
            self._refresh()
        except SpendlogError as e:
            print(f"Error: {e}")

    # ===== TOTALS & BUDGET =====
    def do_totals(self, arg):
        """Show today's, this week's and this month's spending"""
        totals = totals_for_today(self.repository.list_expenses(), self.clock(), config.WEEK_START)
        print(f"\n{' Totals ':-^40}")
        print(f"  Today:      {config.format_currency(totals.day)}")
        print(f"  This week:  {config.format_currency(totals.week)}")
        print(f"  This month: {config.format_currency(totals.month)}")
        self._render_budget()

    def do_budget(self, arg):
        """Show the monthly budget, or replace it: budget [amount]"""
        arg = arg.strip()
        if not arg:
            self._render_budget()
            return

        try:
            self.repository.set_budget(Budget(total=float(arg)))
            print(f"✓ Budget saved: {config.format_currency(float(arg))}")
            self._refresh()
        except ValueError as e:
            print(f"Invalid input: {e}")
        except StorageWriteFailed as e:
            print(f"Error saving budget: {e}")

    # ===== HISTORY =====
    def do_history(self, arg):
        """
        Browse expenses one day at a time:
        history [prev|next|today|YYYY-MM-DD]
        """
        arg = arg.strip().lower()
        today = self.clock()
        if arg == "prev":
            self.history_date = step_day(self.history_date, -1, today)
        elif arg == "next":
            self.history_date = step_day(self.history_date, 1, today)
        elif arg == "today":
            self.history_date = to_day(today)
        elif arg:
            try:
                requested = date.fromisoformat(arg)
            except ValueError:
                print("Date must be in YYYY-MM-DD format")
                return
            self.history_date = select_day(requested, self.history_date, today)
            if self.history_date != requested:
                print("Cannot show future dates")
        self._render_history()

    # ===== CATEGORIES =====
    def do_category(self, arg):
        """Manage categories: category <list|add> [name]"""
        args = arg.split(maxsplit=1)
        if not args or args[0] == "list":
            print("\nCategories:")
            for c in self.repository.list_categories():
                print(f"  {c.emoji} {c.label} ({c.id})")
            return

        if args[0] == "add" and len(args) > 1:
            try:
                category = make_category(args[1])
                self.repository.add_category(category)
                print(f"✓ Added category: {category.label}")
            except SpendlogError as e:
                print(f"Error: {e}")
        else:
            print("Usage: category <list|add> [name]")

    # ===== DATA MANAGEMENT =====
    def do_export(self, arg):
        """Export data: export <json|pdf> [path]"""
        args = arg.split(maxsplit=1)
        if not args or args[0] not in ("json", "pdf"):
            print("Usage: export <json|pdf> [path]")
            return

        path = args[1] if len(args) > 1 else None
        now = self.clock()
        try:
            if args[0] == "json":
                target = export_json(self.repository, path, now)
            else:
                report = build_monthly_report(self.repository.list_expenses(), self.repository.get_budget(), now)
                target = export_pdf(report, path)
            print(f"✓ Exported to {target}")
        except (OSError, SpendlogError) as e:
            logger.exception("Export failed")
            print(f"Error exporting {args[0]}: {e}")

    def do_clear(self, arg):
        """Delete all expenses, the budget and custom categories"""
        answer = input("This deletes all data. Continue? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            print("Cancelled")
            return
        try:
            self.repository.reset()
            self.watch = BudgetWatch()
            print("✓ All data deleted")
        except StorageWriteFailed as e:
            print(f"Error: {e}")

    def do_exit(self, arg):
        """Exit the program"""
        print("Goodbye!")
        return True

    do_EOF = do_exit

    # ===== RENDERING =====
    def _refresh(self):
        expenses = self.repository.list_expenses()
        _, state = budget_summary(expenses, self.repository.get_budget(), self.clock())
        if self.watch.update(state):
            print(DANGER_MESSAGE)

    def _render_budget(self):
        budget = self.repository.get_budget()
        now = self.clock()
        spent, state = budget_summary(self.repository.list_expenses(), budget, now)
        print(f"\nCurrent period: {now.strftime('%B %Y')}")
        print(f"  Budget:    {config.format_currency(budget.total)}")
        print(f"  Spent:     {config.format_currency(spent)}")
        print(f"  Remaining: {config.format_currency(state.remaining)}")
        if budget.total > 0:
            print(f"  Used:      {state.percent}% [{state.status}]")

    def _render_history(self):
        history = day_history(self.repository.list_expenses(), self.history_date)
        print(f"\n{history.day.strftime('%A, %B %d, %Y')}")
        if not history.entries:
            print("  No expenses recorded for this day")
        for index, e in history.entries:
            print(f"  [{index}] {e.description:<30} {e.category:<15} {config.format_currency(e.amount):>14}")
        print(f"  Total: {config.format_currency(history.total)}")

    # ===== HELPERS =====
    @staticmethod
    def _parse_add_args(arg: str, today: date) -> dict:
        """Parse add command arguments"""
        head, _, desc = arg.partition('--desc')
        args = head.split()
        if len(args) < 2:
            raise ValueError("Missing required arguments (amount and category)")

        result = {
            'amount': float(args[0]),
            'date': today,
            'desc': desc.strip(),
        }

        # an optional trailing date; everything between amount and date names the category
        words = args[1:]
        if len(words) > 1:
            try:
                result['date'] = date.fromisoformat(words[-1])
                words = words[:-1]
            except ValueError:
                pass
        result['category'] = " ".join(words)

        return result


def run(repository: Repository, clock: Optional[Callable[[], datetime]] = None) -> None:
    SpendlogCLI(repository, clock or datetime.now).cmdloop()
