from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from ledger.categories import ExpenseCategory, IncomeCategory

Category = Union[ExpenseCategory, IncomeCategory]


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class BudgetPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


PAYMENT_METHODS = (
    "Cash",
    "Credit Card",
    "Debit Card",
    "Bank Transfer",
    "E-wallet",
    "Other",
)


@dataclass(frozen=True)
class Transaction:
    id: Optional[str]             # None until the server assigns one
    amount: Decimal
    type: TransactionType
    category: Category
    description: str
    date: datetime
    payment_method: Optional[str] = None
    linked_budget_id: Optional[str] = None
    is_recurring: bool = False

    @property
    def is_expense(self) -> bool:
        return self.type is TransactionType.EXPENSE


@dataclass(frozen=True)
class Notifications:
    enabled: bool = True
    threshold: int = 80  # percent


@dataclass(frozen=True)
class Budget:
    id: Optional[str]
    category: ExpenseCategory
    amount: Decimal
    period: BudgetPeriod
    start_date: datetime
    end_date: datetime
    notifications: Notifications = field(default_factory=Notifications)
    # derived; None means "not known yet", never zero-by-default
    current_spending: Optional[Decimal] = None

    def covers(self, moment: datetime) -> bool:
        return self.start_date <= moment <= self.end_date

    def is_active(self, now: datetime) -> bool:
        return self.covers(now)
