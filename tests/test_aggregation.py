from datetime import datetime
from decimal import Decimal

from ledger.aggregation import (
    budget_status, current_spending, fill_missing_spending, sort_for_display,
)
from ledger.categories import ExpenseCategory, IncomeCategory
from ledger.domain import Budget, BudgetPeriod, Notifications, Transaction, TransactionType


def make_budget(id="b1", category=ExpenseCategory.FOOD_AND_DINING, amount="500", spent=None, **kw):
    return Budget(
        id=id, category=category, amount=Decimal(amount), period=BudgetPeriod.MONTHLY,
        start_date=datetime(2025, 1, 1), end_date=datetime(2025, 1, 31, 23, 59, 59),
        current_spending=None if spent is None else Decimal(spent), **kw,
    )


def make_expense(id, amount, day, budget_id="b1", month=1):
    return Transaction(
        id=id, amount=Decimal(amount), type=TransactionType.EXPENSE,
        category=ExpenseCategory.FOOD_AND_DINING, description=id,
        date=datetime(2025, month, day), linked_budget_id=budget_id,
    )


def test_sum_counts_only_linked_expenses_inside_window():
    budget = make_budget()
    stray_income = Transaction(
        id="i1", amount=Decimal(1000), type=TransactionType.INCOME, category=IncomeCategory.SALARY,
        description="pay", date=datetime(2025, 1, 10), linked_budget_id="b1",
    )
    trans = (
        make_expense("t1", "45.99", 5),
        make_expense("t2", "470", 20),
        make_expense("t3", "99", 3, month=2),          # outside window
        make_expense("t4", "10", 6, budget_id="b2"),   # other budget
        make_expense("t5", "12", 7, budget_id=None),   # unlinked
        stray_income,
    )
    assert current_spending(budget, trans) == Decimal("515.99")


def test_recompute_is_idempotent():
    budget = make_budget()
    trans = (make_expense("t1", "45.99", 5), make_expense("t2", "470", 20))
    assert current_spending(budget, trans) == current_spending(budget, trans)


def test_window_edges_are_inclusive():
    budget = make_budget()
    trans = (
        Transaction(
            id="edge", amount=Decimal(5), type=TransactionType.EXPENSE,
            category=ExpenseCategory.FOOD_AND_DINING, description="edge",
            date=budget.end_date, linked_budget_id="b1",
        ),
        make_expense("start", "7", 1),
    )
    assert current_spending(budget, trans) == Decimal(12)


def test_status_for_single_expense():
    status = budget_status(make_budget(), (make_expense("t1", "45.99", 5),))
    assert status.spent == Decimal("45.99")
    assert status.remaining_amount == Decimal("454.01")
    assert not status.over_budget


def test_over_budget_percentage_is_not_capped():
    status = budget_status(make_budget(spent="515.99"))
    assert round(float(status.utilization_percentage), 1) == 103.2
    assert status.over_budget
    assert status.remaining_amount == Decimal("-15.99")
    assert status.display_percentage() == Decimal(100)


def test_near_limit_and_threshold():
    status = budget_status(make_budget(spent="400"))
    assert status.near_limit
    assert status.threshold_reached
    quiet = budget_status(make_budget(spent="400", notifications=Notifications(enabled=False)))
    assert not quiet.threshold_reached


def test_server_value_wins_over_local_sum():
    status = budget_status(make_budget(spent="999"), (make_expense("t1", "1", 5),))
    assert status.spent == Decimal("999")


def test_fill_missing_spending_only_fills_gaps():
    budgets = (make_budget("b1"), make_budget("b2", ExpenseCategory.TRANSPORT, spent="42"))
    trans = (make_expense("t1", "45.99", 5),)
    filled = fill_missing_spending(budgets, trans)
    assert filled[0].current_spending == Decimal("45.99")
    assert filled[1].current_spending == Decimal("42")


def test_display_order_over_budget_first_then_utilization():
    statuses = [
        budget_status(make_budget("a", ExpenseCategory.SHOPPING, amount="100", spent="50")),
        budget_status(make_budget("b", ExpenseCategory.TRANSPORT, amount="100", spent="120")),
        budget_status(make_budget("c", ExpenseCategory.UTILITIES, amount="100", spent="90")),
        budget_status(make_budget("d", ExpenseCategory.EDUCATION, amount="100", spent="105")),
    ]
    ordered = [s.budget.id for s in sort_for_display(statuses)]
    assert ordered == ["b", "d", "c", "a"]


def test_display_order_ties_break_on_category():
    statuses = [
        budget_status(make_budget("x", ExpenseCategory.TRANSPORT, amount="100", spent="50")),
        budget_status(make_budget("y", ExpenseCategory.EDUCATION, amount="100", spent="50")),
    ]
    assert [s.budget.id for s in sort_for_display(statuses)] == ["y", "x"]
    assert [s.budget.id for s in sort_for_display(reversed(statuses))] == ["y", "x"]
