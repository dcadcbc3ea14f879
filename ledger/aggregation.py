from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, List, Tuple

from ledger.domain import Budget, Transaction

NEAR_LIMIT_PERCENT = Decimal(75)
FULL_PERCENT = Decimal(100)


@dataclass(frozen=True)
class BudgetStatus:
    budget: Budget
    spent: Decimal
    remaining_amount: Decimal
    utilization_percentage: Decimal  # not capped; over 100 means over budget

    @property
    def over_budget(self) -> bool:
        return self.utilization_percentage > FULL_PERCENT

    @property
    def near_limit(self) -> bool:
        return NEAR_LIMIT_PERCENT < self.utilization_percentage <= FULL_PERCENT

    @property
    def threshold_reached(self) -> bool:
        notifications = self.budget.notifications
        return notifications.enabled and self.utilization_percentage >= notifications.threshold

    def display_percentage(self, cap: Decimal = FULL_PERCENT) -> Decimal:
        return min(self.utilization_percentage, cap)


def contributes_to(budget: Budget, t: Transaction) -> bool:
    return (
        t.is_expense
        and budget.id is not None
        and t.linked_budget_id == budget.id
        and budget.covers(t.date)
    )


def current_spending(budget: Budget, transactions: Iterable[Transaction]) -> Decimal:
    """Sum of linked expenses dated inside the budget window, always from scratch."""
    return sum((t.amount for t in transactions if contributes_to(budget, t)), Decimal(0))


def with_current_spending(budget: Budget, transactions: Iterable[Transaction]) -> Budget:
    return replace(budget, current_spending=current_spending(budget, transactions))


def fill_missing_spending(
    budgets: Iterable[Budget], transactions: Iterable[Transaction]
) -> Tuple[Budget, ...]:
    """Compute spending only where the server did not supply it."""
    trans = tuple(transactions)
    return tuple(
        b if b.current_spending is not None else with_current_spending(b, trans)
        for b in budgets
    )


def budget_status(budget: Budget, transactions: Iterable[Transaction] = ()) -> BudgetStatus:
    spent = budget.current_spending
    if spent is None:
        spent = current_spending(budget, transactions)
    if budget.amount > 0:
        utilization = spent / budget.amount * 100
    else:
        utilization = Decimal(0)
    return BudgetStatus(
        budget=budget,
        spent=spent,
        remaining_amount=budget.amount - spent,
        utilization_percentage=utilization,
    )


def budget_statuses(
    budgets: Iterable[Budget], transactions: Iterable[Transaction] = ()
) -> List[BudgetStatus]:
    trans = tuple(transactions)
    return [budget_status(b, trans) for b in budgets]


def sort_for_display(statuses: Iterable[BudgetStatus]) -> List[BudgetStatus]:
    """Over-budget first, then by utilization descending, then by category."""
    return sorted(
        statuses,
        key=lambda s: (not s.over_budget, -s.utilization_percentage, s.budget.category.value),
    )
