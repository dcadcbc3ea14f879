from dataclasses import replace
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from ledger.categories import ExpenseCategory, parse_category
from ledger.domain import (
    PAYMENT_METHODS, Budget, BudgetPeriod, Notifications, Transaction, TransactionType,
)
from ledger.errors import ValidationError
from ledger.functional import Either, Left, Right

TRANSACTION_MUTABLE_FIELDS = frozenset(
    {"amount", "category", "description", "payment_method", "is_recurring"}
)
TRANSACTION_IMMUTABLE_FIELDS = frozenset({"type", "date"})
BUDGET_MUTABLE_FIELDS = frozenset({"amount", "start_date", "end_date", "notifications"})


def parse_amount(raw: Any) -> Optional[Decimal]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def parse_moment(raw: Any, end_of_day: bool = False) -> Optional[datetime]:
    """Parse a datetime, a date or an ISO-8601 string into a naive datetime.

    A bare date becomes midnight, or the last microsecond of the day when
    it closes a range.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return _naive(raw)
    if isinstance(raw, date):
        return datetime.combine(raw, time.max if end_of_day else time.min)
    text = str(raw).strip()
    if not text:
        return None
    try:
        if len(text) == 10:
            return parse_moment(date.fromisoformat(text), end_of_day)
        return _naive(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return None


def _naive(moment: datetime) -> datetime:
    # naive datetimes are treated as UTC throughout
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _check_amount(raw, errors: Dict[str, str]) -> Optional[Decimal]:
    if raw is None or str(raw).strip() == "":
        errors["amount"] = "Amount is required"
        return None
    amount = parse_amount(raw)
    if amount is None:
        errors["amount"] = "Amount must be a number"
    elif amount <= 0:
        errors["amount"] = "Amount must be greater than 0"
    return amount


def _check_category(tx_type, raw, errors: Dict[str, str]):
    if raw is None or str(getattr(raw, "value", raw)).strip() == "":
        errors["category"] = "Please select a category"
        return None
    try:
        return parse_category(tx_type, raw)
    except ValueError:
        errors["category"] = f"{getattr(raw, 'value', raw)} is not a valid {tx_type.value} category"
        return None


def _check_description(raw, errors: Dict[str, str]) -> str:
    text = "" if raw is None else str(raw).strip()
    if not text:
        errors["description"] = "Description is required"
    return text


def _check_payment_method(raw, errors: Dict[str, str]) -> Optional[str]:
    if raw in (None, ""):
        return None
    if raw not in PAYMENT_METHODS:
        errors["payment_method"] = f"Unknown payment method {raw}"
    return raw


def validate_new_transaction(data: Mapping[str, Any], now: datetime) -> Either[ValidationError, Transaction]:
    """Validate user input for a new transaction and build an unsaved draft."""
    errors: Dict[str, str] = {}

    try:
        tx_type = TransactionType(getattr(data.get("type"), "value", data.get("type")))
    except ValueError:
        return Left(ValidationError("type", "Type must be income or expense"))

    amount = _check_amount(data.get("amount"), errors)
    category = _check_category(tx_type, data.get("category"), errors)
    description = _check_description(data.get("description"), errors)
    payment_method = _check_payment_method(data.get("payment_method"), errors)

    moment = now if data.get("date") is None else parse_moment(data.get("date"))
    if moment is None:
        errors["date"] = "Date is not a valid timestamp"
    elif moment > now:
        errors["date"] = "Transaction date cannot be in the future"

    linked = data.get("linked_budget_id")
    if linked and tx_type is TransactionType.INCOME:
        errors["linked_budget_id"] = "Income transactions cannot be linked to a budget"

    if errors:
        return Left(ValidationError.from_errors(errors))

    return Right(Transaction(
        id=None,
        amount=amount,
        type=tx_type,
        category=category,
        description=description,
        date=moment,
        payment_method=payment_method,
        linked_budget_id=linked or None,
        is_recurring=bool(data.get("is_recurring", False)),
    ))


def validate_transaction_changes(
    existing: Transaction, changes: Mapping[str, Any]
) -> Either[ValidationError, Transaction]:
    """Apply an edit to an existing transaction; type and date stay fixed."""
    frozen = TRANSACTION_IMMUTABLE_FIELDS.intersection(changes)
    if frozen:
        field = sorted(frozen)[0]
        return Left(ValidationError(field, f"{field} cannot be changed after creation"))
    unknown = set(changes) - TRANSACTION_MUTABLE_FIELDS
    if unknown:
        field = sorted(unknown)[0]
        return Left(ValidationError(field, f"{field} is not an editable field"))

    errors: Dict[str, str] = {}
    updates: Dict[str, Any] = {}
    if "amount" in changes:
        updates["amount"] = _check_amount(changes["amount"], errors)
    if "category" in changes:
        updates["category"] = _check_category(existing.type, changes["category"], errors)
    if "description" in changes:
        updates["description"] = _check_description(changes["description"], errors)
    if "payment_method" in changes:
        updates["payment_method"] = _check_payment_method(changes["payment_method"], errors)
    if "is_recurring" in changes:
        updates["is_recurring"] = bool(changes["is_recurring"])

    if errors:
        return Left(ValidationError.from_errors(errors))
    return Right(replace(existing, **updates))


def _check_notifications(raw, errors: Dict[str, str]) -> Notifications:
    if raw is None:
        return Notifications()
    if isinstance(raw, Notifications):
        enabled, threshold = raw.enabled, raw.threshold
    else:
        enabled, threshold = bool(raw.get("enabled", True)), raw.get("threshold", 80)
    try:
        threshold = int(threshold)
    except (TypeError, ValueError):
        threshold = 0
    if not 0 < threshold <= 100:
        errors["notifications"] = "Threshold must be a percentage between 1 and 100"
    return Notifications(enabled=enabled, threshold=threshold)


def _day_start(end: datetime) -> datetime:
    if end.time() == time.max:
        return datetime.combine(end.date(), time.min)
    return end


def _check_window(start: Optional[datetime], end: Optional[datetime], errors: Dict[str, str]) -> None:
    """The window must open strictly before the day it closes on.

    A date-only end was already widened to the last microsecond of its day,
    so the comparison uses the start of that day.
    """
    if start is None:
        errors["start_date"] = "Start date is required"
    if end is None:
        errors["end_date"] = "End date is required"
    if start is not None and end is not None and start >= _day_start(end):
        errors["end_date"] = "Start date must be before end date"


def validate_new_budget(data: Mapping[str, Any]) -> Either[ValidationError, Budget]:
    errors: Dict[str, str] = {}

    category = _check_category(TransactionType.EXPENSE, data.get("category"), errors)
    amount = _check_amount(data.get("amount"), errors)

    try:
        period = BudgetPeriod(getattr(data.get("period"), "value", data.get("period") or "monthly"))
    except ValueError:
        errors["period"] = "Period must be weekly, monthly or yearly"
        period = None

    start = parse_moment(data.get("start_date"))
    end = parse_moment(data.get("end_date"), end_of_day=True)
    _check_window(start, end, errors)
    notifications = _check_notifications(data.get("notifications"), errors)

    if errors:
        return Left(ValidationError.from_errors(errors))

    return Right(Budget(
        id=None,
        category=ExpenseCategory(category),
        amount=amount,
        period=period,
        start_date=start,
        end_date=end,
        notifications=notifications,
    ))


def validate_budget_changes(existing: Budget, changes: Mapping[str, Any]) -> Either[ValidationError, Budget]:
    unknown = set(changes) - BUDGET_MUTABLE_FIELDS
    if unknown:
        field = sorted(unknown)[0]
        return Left(ValidationError(field, f"{field} is not an editable field"))

    errors: Dict[str, str] = {}
    updates: Dict[str, Any] = {}
    if "amount" in changes:
        updates["amount"] = _check_amount(changes["amount"], errors)
    if "notifications" in changes:
        updates["notifications"] = _check_notifications(changes["notifications"], errors)

    start = parse_moment(changes["start_date"]) if "start_date" in changes else existing.start_date
    end = parse_moment(changes["end_date"], end_of_day=True) if "end_date" in changes else existing.end_date
    _check_window(start, end, errors)
    updates["start_date"] = start
    updates["end_date"] = end

    if errors:
        return Left(ValidationError.from_errors(errors))
    # spending is derived from the old window and must be recomputed
    return Right(replace(existing, current_spending=None, **updates))
