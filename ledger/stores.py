import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar, Union

from ledger.aggregation import fill_missing_spending
from ledger.api import LedgerApi
from ledger.categories import ExpenseCategory
from ledger.codec import (
    decode_budget, decode_budgets, decode_transaction, decode_transactions,
    encode_budget, encode_budget_changes, encode_transaction, encode_transaction_changes,
)
from ledger.domain import Budget, BudgetPeriod, Transaction, utcnow
from ledger.errors import DuplicateCategoryError, LedgerError, NotFoundError
from ledger.filters import TransactionFilters
from ledger.functional import Either, Left, Right
from ledger.lazy import TransactionPages
from ledger.linking import active_budgets_by_category
from ledger.validation import (
    validate_budget_changes, validate_new_budget, validate_new_transaction, validate_transaction_changes,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]


async def attempt(operation: str, call: Callable[[], Awaitable[T]]) -> Either[LedgerError, T]:
    """Run a remote call, turning ledger failures into Left values."""
    try:
        return Right(await call())
    except LedgerError as e:
        logger.warning("%s failed: %s", operation, e)
        return Left(e)


def _rejected(operation: str, result: Either) -> Either:
    logger.info("%s rejected: %s", operation, result.get_error())
    return result


# passed as linked_budget_id to leave a transaction's link alone
KEEP_LINK = object()


class TransactionStore:
    """CRUD for income/expense records over the remote API."""

    def __init__(self, api: LedgerApi, clock: Clock = utcnow):
        self.api = api
        self.clock = clock

    async def create(self, data: Mapping[str, Any]) -> Either[LedgerError, Transaction]:
        validated = validate_new_transaction(data, self.clock())
        if validated.is_left():
            return _rejected("create transaction", validated)
        draft = validated.get_or_else(None)

        async def call():
            return decode_transaction(await self.api.create_transaction(encode_transaction(draft)))

        return await attempt("create transaction", call)

    async def get(self, transaction_id: str) -> Either[LedgerError, Transaction]:
        async def call():
            return decode_transaction(await self.api.get_transaction(transaction_id))

        return await attempt(f"get transaction {transaction_id}", call)

    async def update(
        self, transaction_id: str, data: Mapping[str, Any], linked_budget_id: Any = KEEP_LINK
    ) -> Either[LedgerError, Transaction]:
        """Edit amount, category, description and friends; type and date are fixed.

        The budget link is not user data. The repository works it out with
        the linking policy and hands it over as ``linked_budget_id``.
        """
        current = await self.get(transaction_id)
        if current.is_left():
            return current
        existing = current.get_or_else(None)

        validated = validate_transaction_changes(existing, data)
        if validated.is_left():
            return _rejected("update transaction", validated)
        if linked_budget_id is not KEEP_LINK:
            validated = validated.map(lambda t: replace(t, linked_budget_id=linked_budget_id))
        changes = encode_transaction_changes(existing, validated.get_or_else(None))
        if not changes:
            return current

        async def call():
            return decode_transaction(await self.api.update_transaction(transaction_id, changes))

        return await attempt(f"update transaction {transaction_id}", call)

    async def delete(self, transaction_id: str) -> Either[LedgerError, str]:
        async def call():
            await self.api.delete_transaction(transaction_id)
            return transaction_id

        return await attempt(f"delete transaction {transaction_id}", call)

    def _page_fetcher(self, filters: TransactionFilters):
        params = filters.to_params()

        async def fetch(page: Optional[int]) -> Tuple[List[Transaction], Optional[int]]:
            items, next_page = await self.api.list_transactions(params, page)
            return decode_transactions(items), next_page

        return fetch

    async def list(
        self, filters: Optional[TransactionFilters] = None
    ) -> Either[LedgerError, Union[List[Transaction], TransactionPages]]:
        """Finite list when the source does not paginate, otherwise lazy pages."""
        filters = filters or TransactionFilters()
        fetch = self._page_fetcher(filters)
        first = await attempt("list transactions", lambda: fetch(None))
        if first.is_left():
            return first
        items, next_page = first.get_or_else(None)
        if next_page is None:
            return Right([t for t in items if filters.matches(t)])
        return Right(TransactionPages(fetch, filters.matches))

    async def fetch_all(self, filters: Optional[TransactionFilters] = None) -> List[Transaction]:
        """Every matching transaction across all pages. Raises LedgerError."""
        filters = filters or TransactionFilters()
        return await TransactionPages(self._page_fetcher(filters), filters.matches).collect()


class BudgetStore:
    """CRUD for budget allocations; every budget handed out carries its spending."""

    def __init__(self, api: LedgerApi, transactions: TransactionStore, clock: Clock = utcnow):
        self.api = api
        self.transactions = transactions
        self.clock = clock

    async def _with_spending(self, budgets: List[Budget]) -> Tuple[Budget, ...]:
        # server values win; the aggregator only fills gaps
        if all(b.current_spending is not None for b in budgets):
            return tuple(budgets)
        return fill_missing_spending(budgets, await self.transactions.fetch_all())

    async def _active_elsewhere(
        self, exclude: Optional[str] = None
    ) -> Either[LedgerError, Dict[ExpenseCategory, Budget]]:
        async def call():
            budgets = decode_budgets(await self.api.list_budgets({}))
            return active_budgets_by_category((b for b in budgets if b.id != exclude), self.clock())

        return await attempt("list budgets", call)

    async def _check_unique(
        self, budget: Budget, exclude: Optional[str] = None, only_if_active: bool = False
    ) -> Either[LedgerError, Budget]:
        """A category holds at most one active budget."""
        if only_if_active and not budget.is_active(self.clock()):
            return Right(budget)
        active = await self._active_elsewhere(exclude)
        if active.is_left():
            return active
        if budget.category in active.get_or_else({}):
            return Left(DuplicateCategoryError(budget.category))
        return Right(budget)

    async def list(self, period: Optional[BudgetPeriod] = None) -> Either[LedgerError, Tuple[Budget, ...]]:
        params = {"period": period.value} if period else {}

        async def call():
            budgets = decode_budgets(await self.api.list_budgets(params))
            return await self._with_spending(budgets)

        return await attempt("list budgets", call)

    async def get(self, budget_id: str) -> Either[LedgerError, Budget]:
        async def call():
            budget = decode_budget(await self.api.get_budget(budget_id))
            return (await self._with_spending([budget]))[0]

        return await attempt(f"get budget {budget_id}", call)

    async def create(self, data: Mapping[str, Any]) -> Either[LedgerError, Budget]:
        validated = validate_new_budget(data)
        if validated.is_left():
            return _rejected("create budget", validated)
        draft = validated.get_or_else(None)

        unique = await self._check_unique(draft)
        if unique.is_left():
            return _rejected("create budget", unique)

        async def call():
            budget = decode_budget(await self.api.create_budget(encode_budget(draft)))
            return (await self._with_spending([budget]))[0]

        return await attempt("create budget", call)

    async def update(self, budget_id: str, data: Mapping[str, Any]) -> Either[LedgerError, Budget]:
        """Change amount, window or notifications. A new window means new spending."""
        current = await attempt(f"get budget {budget_id}", lambda: self.api.get_budget(budget_id))
        if current.is_left():
            return current
        existing = decode_budget(current.get_or_else(None))

        validated = validate_budget_changes(existing, data)
        if validated.is_left():
            return _rejected("update budget", validated)
        # a moved window can make the budget active next to another one
        unique = await self._check_unique(validated.get_or_else(None), exclude=budget_id, only_if_active=True)
        if unique.is_left():
            return _rejected("update budget", unique)
        changes = encode_budget_changes(existing, unique.get_or_else(None))

        async def call():
            if changes:
                budget = decode_budget(await self.api.update_budget(budget_id, changes))
            else:
                budget = existing
            return (await self._with_spending([budget]))[0]

        return await attempt(f"update budget {budget_id}", call)

    async def delete(self, budget_id: str) -> Either[LedgerError, Tuple[Transaction, ...]]:
        """Remove a budget and unlink, never delete, the transactions pointing at it."""
        missing: Optional[NotFoundError] = None
        try:
            await self.api.delete_budget(budget_id)
        except NotFoundError as e:
            # still clear any links left pointing at it
            missing = e
        except LedgerError as e:
            logger.warning("delete budget %s failed: %s", budget_id, e)
            return Left(e)

        async def unlink():
            linked = [t for t in await self.transactions.fetch_all() if t.linked_budget_id == budget_id]
            return tuple([
                decode_transaction(await self.api.update_transaction(t.id, {"linkedBudget": None}))
                for t in linked
            ])

        unlinked = await attempt(f"unlink transactions from budget {budget_id}", unlink)
        if unlinked.is_right() and unlinked.get_or_else(()):
            logger.info("Unlinked %d transactions from budget %s", len(unlinked.get_or_else(())), budget_id)
        if missing is not None:
            return Left(missing)
        return unlinked

    async def refresh_spending(self) -> Either[LedgerError, None]:
        return await attempt("refresh budget spending", self.api.refresh_spending)
