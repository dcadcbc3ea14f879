from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Optional

from ledger.categories import ExpenseCategory
from ledger.domain import Budget, Transaction, TransactionType
from ledger.functional import Maybe, maybe_first


class LinkState(str, Enum):
    LINKED = "linked"
    UNLINKED = "unlinked"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class LinkDecision:
    state: LinkState
    budget_id: Optional[str] = None
    category: Optional[ExpenseCategory] = None

    @property
    def budget_missing(self) -> bool:
        return self.state is LinkState.UNLINKED


NOT_APPLICABLE = LinkDecision(LinkState.NOT_APPLICABLE)


def active_budgets_by_category(budgets: Iterable[Budget], now: datetime) -> Dict[ExpenseCategory, Budget]:
    """Rebuilt wholesale from the latest budget list, never patched."""
    active: Dict[ExpenseCategory, Budget] = {}
    for b in budgets:
        if b.is_active(now) and b.category not in active:
            active[b.category] = b
    return active


def find_active_budget(
    budgets: Iterable[Budget], category, at: datetime, now: datetime
) -> Maybe[Budget]:
    return maybe_first(
        budgets,
        lambda b: b.category == category and b.is_active(now) and b.covers(at),
    )


def decide_link(
    tx_type: TransactionType, category, at: datetime, budgets: Iterable[Budget], now: datetime
) -> LinkDecision:
    if tx_type is not TransactionType.EXPENSE:
        return NOT_APPLICABLE
    return (
        find_active_budget(budgets, category, at, now)
        .map(lambda b: LinkDecision(LinkState.LINKED, b.id, category))
        .get_or_else(LinkDecision(LinkState.UNLINKED, None, category))
    )


def decide_relink(
    existing: Transaction, new_category, budgets: Iterable[Budget], now: datetime
) -> LinkDecision:
    """Link decision for an edit; only a category change drops the old link."""
    if not existing.is_expense:
        return NOT_APPLICABLE
    if new_category is None or new_category == existing.category:
        if existing.linked_budget_id:
            return LinkDecision(LinkState.LINKED, existing.linked_budget_id, existing.category)
        return LinkDecision(LinkState.UNLINKED, None, existing.category)
    # date is immutable, so the original date decides the window
    return decide_link(existing.type, new_category, existing.date, budgets, now)
