import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

from ledger.categories import ExpenseCategory, IncomeCategory, parse_category
from ledger.domain import Budget, BudgetPeriod, Notifications, Transaction, TransactionType
from ledger.errors import DecodeError
from ledger.validation import parse_amount, parse_moment

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FALLBACK_CATEGORY = {
    TransactionType.EXPENSE: ExpenseCategory.OTHER,
    TransactionType.INCOME: IncomeCategory.OTHER_INCOME,
}


def encode_moment(moment: datetime) -> str:
    return moment.isoformat()


def encode_amount(amount: Decimal) -> float:
    return float(amount)


def _resource_id(data: Mapping[str, Any]) -> Optional[str]:
    value = data.get("_id", data.get("id"))
    return None if value is None else str(value)


def _category(tx_type: TransactionType, raw):
    try:
        return parse_category(tx_type, raw)
    except ValueError:
        logger.warning("Unknown %s category %r from server, using fallback", tx_type.value, raw)
        return _FALLBACK_CATEGORY[tx_type]


def decode_transaction(data: Mapping[str, Any]) -> Transaction:
    """Raises DecodeError for records without a usable type or date."""
    try:
        tx_type = TransactionType(data.get("type"))
    except ValueError:
        raise DecodeError("transaction", _resource_id(data), f"unknown type {data.get('type')!r}")
    moment = parse_moment(data.get("date"))
    if moment is None:
        raise DecodeError("transaction", _resource_id(data), f"bad date {data.get('date')!r}")

    linked = data.get("linkedBudget", data.get("linkedBudgetId"))
    if isinstance(linked, Mapping):
        linked = _resource_id(linked)
    return Transaction(
        id=_resource_id(data),
        amount=parse_amount(data.get("amount")) or Decimal(0),
        type=tx_type,
        category=_category(tx_type, data.get("category")),
        description=data.get("description") or "",
        date=moment,
        payment_method=data.get("paymentMethod") or None,
        # the invariant holds even if the server sends a stray link
        linked_budget_id=(str(linked) if linked else None) if tx_type is TransactionType.EXPENSE else None,
        is_recurring=bool(data.get("isRecurring", False)),
    )


def encode_transaction(t: Transaction) -> Dict[str, Any]:
    body = {
        "amount": encode_amount(t.amount),
        "type": t.type.value,
        "category": t.category.value,
        "description": t.description,
        "date": encode_moment(t.date),
        "paymentMethod": t.payment_method,
        "linkedBudget": t.linked_budget_id,
        "isRecurring": t.is_recurring,
    }
    if t.id is not None:
        body["_id"] = t.id
    return body


def encode_transaction_changes(before: Transaction, after: Transaction) -> Dict[str, Any]:
    """PATCH body holding only the fields that differ."""
    old, new = encode_transaction(before), encode_transaction(after)
    return {k: v for k, v in new.items() if old.get(k) != v}


def decode_budget(data: Mapping[str, Any]) -> Budget:
    """Raises DecodeError for budgets outside the expense vocabulary or without a window.

    Older clients stored pseudo budgets such as "Available Funds" next to the
    real ones.
    """
    budget_id = _resource_id(data)
    try:
        category = ExpenseCategory(data.get("category"))
        period = BudgetPeriod(data.get("period") or "monthly")
    except ValueError as e:
        raise DecodeError("budget", budget_id, str(e))
    start = parse_moment(data.get("startDate"))
    end = parse_moment(data.get("endDate"), end_of_day=True)
    if start is None or end is None:
        raise DecodeError("budget", budget_id, "missing start or end date")

    notifications = data.get("notifications") or {}
    spending = data.get("currentSpending")
    return Budget(
        id=budget_id,
        category=category,
        amount=parse_amount(data.get("amount")) or Decimal(0),
        period=period,
        start_date=start,
        end_date=end,
        notifications=Notifications(
            enabled=bool(notifications.get("enabled", True)),
            threshold=int(notifications.get("threshold", 80)),
        ),
        current_spending=None if spending is None else parse_amount(spending),
    )


def _decode_all(decode: Callable[[Mapping[str, Any]], T], items: Iterable[Mapping[str, Any]]) -> List[T]:
    decoded = []
    for item in items:
        try:
            decoded.append(decode(item))
        except DecodeError as e:
            logger.warning("Skipping server record: %s", e)
    return decoded


def decode_transactions(items: Iterable[Mapping[str, Any]]) -> List[Transaction]:
    return _decode_all(decode_transaction, items)


def decode_budgets(items: Iterable[Mapping[str, Any]]) -> List[Budget]:
    return _decode_all(decode_budget, items)


def encode_budget(b: Budget) -> Dict[str, Any]:
    body = {
        "category": b.category.value,
        "amount": encode_amount(b.amount),
        "period": b.period.value,
        "startDate": encode_moment(b.start_date),
        "endDate": encode_moment(b.end_date),
        "notifications": {
            "enabled": b.notifications.enabled,
            "threshold": b.notifications.threshold,
        },
    }
    if b.id is not None:
        body["_id"] = b.id
    if b.current_spending is not None:
        body["currentSpending"] = encode_amount(b.current_spending)
    return body


def encode_budget_changes(before: Budget, after: Budget) -> Dict[str, Any]:
    old, new = encode_budget(before), encode_budget(after)
    new.pop("currentSpending", None)
    return {k: v for k, v in new.items() if old.get(k) != v}
