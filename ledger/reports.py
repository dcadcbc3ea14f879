import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from ledger.aggregation import BudgetStatus
from ledger.currency import CurrencyFormatter
from ledger.domain import Transaction, TransactionType
from ledger.filters import by_date_range
from ledger.lazy import iter_transactions

OTHER_CATEGORIES = "Other categories"


@dataclass(frozen=True)
class PeriodSummary:
    income: Decimal
    expense: Decimal

    @property
    def net_savings(self) -> Decimal:
        return self.income - self.expense


def income_expense_summary(trans: Iterable[Transaction], start: datetime, end: datetime) -> PeriodSummary:
    income, expense = Decimal(0), Decimal(0)
    for t in iter_transactions(trans, by_date_range(start, end)):
        if t.type is TransactionType.INCOME:
            income += t.amount
        else:
            expense += t.amount
    return PeriodSummary(income=income, expense=expense)


def _expense_totals(trans: Iterable[Transaction]) -> List[Tuple[str, Decimal]]:
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    for t in trans:
        if t.is_expense:
            totals[t.category.value] += t.amount
    return sorted(totals.items(), key=lambda item: (-item[1], item[0]))


def top_categories(trans: Iterable[Transaction], k: int) -> Iterator[Tuple[str, Decimal]]:
    for name, total in _expense_totals(trans)[: max(0, k)]:
        yield name, total


def spending_by_category(trans: Iterable[Transaction], max_categories: int = 6) -> List[Tuple[str, Decimal]]:
    """Expense totals per category, the tail folded into one "Other categories" slice."""
    ordered = _expense_totals(trans)
    if len(ordered) <= max_categories:
        return ordered
    head = ordered[: max_categories - 1]
    rest = sum((total for _, total in ordered[max_categories - 1:]), Decimal(0))
    if rest > 0:
        head.append((OTHER_CATEGORIES, rest))
    return head


async def monthly_totals(trans: Sequence[Transaction], months: Sequence[str]) -> Dict[str, PeriodSummary]:
    """Income and expense per month for the given YYYY-MM keys, computed concurrently."""
    async def month_total(month: str) -> Tuple[str, PeriodSummary]:
        income, expense = Decimal(0), Decimal(0)
        for t in trans:
            if t.date.strftime("%Y-%m") != month:
                continue
            if t.type is TransactionType.INCOME:
                income += t.amount
            else:
                expense += t.amount
        await asyncio.sleep(0)
        return month, PeriodSummary(income=income, expense=expense)

    results = await asyncio.gather(*(month_total(m) for m in months))
    return dict(results)


def last_months(now: datetime, count: int = 6) -> List[str]:
    year, month = now.year, now.month
    keys = []
    for _ in range(count):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def status_marker(status: BudgetStatus) -> str:
    if status.over_budget:
        return "❌"
    if status.utilization_percentage >= 80:
        return "⚠️"
    return "✅"


def budget_report(statuses: Iterable[BudgetStatus], formatter: CurrencyFormatter) -> List[str]:
    lines = []
    for s in statuses:
        lines.append(
            f"{s.budget.category.value}:\n"
            f"  - Allocated: {formatter.format_amount(s.budget.amount)}\n"
            f"  - Spent: {formatter.format_amount(s.spent)}\n"
            f"  - Utilization: {s.utilization_percentage:.1f}% {status_marker(s)}"
        )
    return lines
