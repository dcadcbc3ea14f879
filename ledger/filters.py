from calendar import monthrange
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple

from ledger.codec import encode_moment
from ledger.domain import Transaction, TransactionType

Predicate = Callable[[Transaction], bool]

DATE_RANGE_PRESETS = ("All", "Today", "This Week", "This Month", "Custom")
ALL_TIME_START = datetime(2000, 1, 1)


def by_category(category) -> Predicate:
    def _filter(t: Transaction) -> bool:
        return t.category == category

    return _filter


def by_type(tx_type: TransactionType) -> Predicate:
    def _filter(t: Transaction) -> bool:
        return t.type is tx_type

    return _filter


def by_date_range(start: Optional[datetime], end: Optional[datetime]) -> Predicate:
    def _filter(t: Transaction) -> bool:
        return (start is None or start <= t.date) and (end is None or t.date <= end)

    return _filter


def by_amount_range(low: Optional[Decimal], high: Optional[Decimal]) -> Predicate:
    def _filter(t: Transaction) -> bool:
        return (low is None or low <= t.amount) and (high is None or t.amount <= high)

    return _filter


def by_search(text: str) -> Predicate:
    needle = text.strip().lower()

    def _filter(t: Transaction) -> bool:
        return needle in t.description.lower()

    return _filter


@dataclass(frozen=True)
class TransactionFilters:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    category: Any = None
    type: Optional[TransactionType] = None
    search: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None

    def predicates(self) -> Tuple[Predicate, ...]:
        preds = [by_date_range(self.start_date, self.end_date)]
        if self.category is not None:
            preds.append(by_category(self.category))
        if self.type is not None:
            preds.append(by_type(self.type))
        if self.search:
            preds.append(by_search(self.search))
        if self.min_amount is not None or self.max_amount is not None:
            preds.append(by_amount_range(self.min_amount, self.max_amount))
        return tuple(preds)

    def matches(self, t: Transaction) -> bool:
        return all(p(t) for p in self.predicates())

    def to_params(self) -> Dict[str, Any]:
        """Query parameters for the server; search is applied client-side."""
        params: Dict[str, Any] = {}
        if self.start_date:
            params["startDate"] = encode_moment(self.start_date)
        if self.end_date:
            params["endDate"] = encode_moment(self.end_date)
        if self.type is not None:
            params["type"] = self.type.value
        if self.category is not None:
            params["category"] = getattr(self.category, "value", self.category)
        if self.min_amount is not None:
            params["minAmount"] = str(self.min_amount)
        if self.max_amount is not None:
            params["maxAmount"] = str(self.max_amount)
        return params


def date_range_for(
    preset: str,
    now: datetime,
    custom: Optional[Tuple[datetime, datetime]] = None,
) -> Tuple[datetime, datetime]:
    """Window for a named period. Weeks run Sunday to Saturday."""
    today = now.date()
    month_end = datetime.combine(today.replace(day=monthrange(today.year, today.month)[1]), time.max)

    if preset == "Today":
        return datetime.combine(today, time.min), datetime.combine(today, time.max)
    if preset == "This Week":
        sunday = today - timedelta(days=(today.weekday() + 1) % 7)
        return datetime.combine(sunday, time.min), datetime.combine(sunday + timedelta(days=6), time.max)
    if preset == "This Month":
        return datetime.combine(today.replace(day=1), time.min), month_end
    if preset == "Custom":
        if custom is None:
            raise ValueError("Custom range needs explicit start and end dates")
        return custom
    # "All" and anything unrecognised
    return ALL_TIME_START, month_end
