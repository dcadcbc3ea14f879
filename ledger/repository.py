import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from ledger.aggregation import BudgetStatus, budget_statuses, sort_for_display
from ledger.api import LedgerApi
from ledger.categories import ExpenseCategory, parse_category
from ledger.domain import Budget, Transaction, utcnow
from ledger.errors import LedgerError, NotFoundError
from ledger.events import (
    BUDGET_ADDED, BUDGET_ALERT, BUDGET_DELETED, BUDGET_MISSING, BUDGET_UPDATED, BUDGETS_REFRESHED,
    TRANSACTION_ADDED, TRANSACTION_DELETED, TRANSACTION_UPDATED, EventBus, register_default_handlers,
)
from ledger.functional import Either, Left, Right
from ledger.linking import LinkDecision, active_budgets_by_category, decide_link, decide_relink
from ledger.stores import KEEP_LINK, BudgetStore, Clock, TransactionStore
from ledger.validation import validate_new_transaction

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 30.0


class LedgerRepository:
    """Owns the in-memory transactions and budgets a frontend renders.

    Mutations run strictly in order: the write, then the server spending
    refresh, then the budget re-fetch. Every budget refresh takes a version
    ticket and a response older than the last applied one is dropped, so
    polling and manual refreshes can overlap safely. Frontends subscribe to
    ``bus`` instead of touching the collections.
    """

    def __init__(
        self,
        api: LedgerApi,
        bus: Optional[EventBus] = None,
        clock: Clock = utcnow,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
    ):
        self.clock = clock
        self.transaction_store = TransactionStore(api, clock)
        self.budget_store = BudgetStore(api, self.transaction_store, clock)
        self.bus = bus if bus is not None else register_default_handlers(EventBus())
        self.refresh_interval = refresh_interval

        self.transactions: Tuple[Transaction, ...] = ()
        self.budgets: Tuple[Budget, ...] = ()
        self.active_by_category: Dict[ExpenseCategory, Budget] = {}

        self._issued_version = 0
        self._applied_version = 0
        self._alerted: Set[str] = set()
        self._poll_task: Optional[asyncio.Task] = None
        self._stop_polling: Optional[asyncio.Event] = None

    @property
    def version(self) -> int:
        return self._applied_version

    # -- refresh -----------------------------------------------------------

    async def load(self) -> Either[LedgerError, Tuple[Budget, ...]]:
        loaded = await self.refresh_transactions()
        if loaded.is_left():
            return loaded
        return await self.refresh_budgets()

    async def refresh_transactions(self) -> Either[LedgerError, Tuple[Transaction, ...]]:
        try:
            fetched = await self.transaction_store.fetch_all()
        except LedgerError as e:
            logger.warning("Transaction refresh failed, keeping %d cached: %s", len(self.transactions), e)
            return Left(e)
        self.transactions = tuple(fetched)
        return Right(self.transactions)

    async def refresh_budgets(self, recompute_on_server: bool = False) -> Either[LedgerError, Tuple[Budget, ...]]:
        """Re-fetch budgets; a failure leaves the previous budgets in place."""
        self._issued_version += 1
        ticket = self._issued_version

        if recompute_on_server:
            refreshed = await self.budget_store.refresh_spending()
            if refreshed.is_left():
                return refreshed

        result = await self.budget_store.list()
        if result.is_left():
            logger.warning("Budget refresh %d failed, keeping version %d", ticket, self._applied_version)
            return result
        if ticket < self._applied_version:
            logger.info("Discarding budget refresh %d, version %d already applied", ticket, self._applied_version)
            return Right(self.budgets)

        self._apply_budgets(result.get_or_else(()), ticket)
        return Right(self.budgets)

    def _apply_budgets(self, budgets: Tuple[Budget, ...], version: int) -> None:
        self._applied_version = version
        self.budgets = tuple(budgets)
        self.active_by_category = active_budgets_by_category(self.budgets, self.clock())
        self.bus.publish(BUDGETS_REFRESHED, {"budgets": self.budgets, "version": version})

        crossed = set()
        for status in self.budget_statuses():
            if not status.threshold_reached:
                continue
            crossed.add(status.budget.id)
            if status.budget.id not in self._alerted:
                self.bus.publish(BUDGET_ALERT, {"status": status})
        self._alerted = crossed

    def budget_statuses(self) -> List[BudgetStatus]:
        return sort_for_display(budget_statuses(self.budgets, self.transactions))

    async def _ensure_budgets(self) -> None:
        if self._applied_version == 0:
            await self.refresh_budgets()

    # -- transactions ------------------------------------------------------

    def _cached_transaction(self, transaction_id: str) -> Optional[Transaction]:
        for t in self.transactions:
            if t.id == transaction_id:
                return t
        return None

    def _signal_link(self, decision: LinkDecision, transaction: Transaction) -> None:
        if decision.budget_missing:
            self.bus.publish(BUDGET_MISSING, {"category": decision.category, "transaction": transaction})

    async def add_transaction(self, data: Mapping[str, Any]) -> Either[LedgerError, Transaction]:
        """Create a transaction, linking expenses to the active budget for their category.

        A missing budget is advisory: the transaction is saved unlinked and
        BUDGET_MISSING is published so the UI can offer to create one.
        """
        await self._ensure_budgets()
        now = self.clock()
        validated = validate_new_transaction(data, now)
        if validated.is_left():
            return validated
        draft = validated.get_or_else(None)

        decision = decide_link(draft.type, draft.category, draft.date, self.budgets, now)
        payload = dict(data, date=draft.date, linked_budget_id=decision.budget_id)

        created = await self.transaction_store.create(payload)
        if created.is_left():
            return created
        transaction = created.get_or_else(None)

        self.transactions = (transaction,) + self.transactions
        self.bus.publish(TRANSACTION_ADDED, {"transaction": transaction, "link": decision})
        self._signal_link(decision, transaction)

        if transaction.is_expense:
            await self.refresh_budgets(recompute_on_server=True)
        return created

    async def edit_transaction(self, transaction_id: str, changes: Mapping[str, Any]) -> Either[LedgerError, Transaction]:
        await self._ensure_budgets()
        existing = self._cached_transaction(transaction_id)
        if existing is None:
            fetched = await self.transaction_store.get(transaction_id)
            if fetched.is_left():
                return fetched
            existing = fetched.get_or_else(None)

        decision = None
        if "category" in changes and existing.is_expense:
            try:
                new_category = parse_category(existing.type, changes["category"])
            except ValueError:
                new_category = None  # validation reports it
            if new_category is not None:
                decision = decide_relink(existing, new_category, self.budgets, self.clock())

        link = KEEP_LINK if decision is None else decision.budget_id
        updated = await self.transaction_store.update(transaction_id, changes, linked_budget_id=link)
        if updated.is_left():
            return updated
        transaction = updated.get_or_else(None)

        self.transactions = tuple(transaction if t.id == transaction_id else t for t in self.transactions)
        self.bus.publish(TRANSACTION_UPDATED, {"transaction": transaction, "previous": existing, "link": decision})
        if decision is not None and new_category != existing.category:
            self._signal_link(decision, transaction)

        if transaction.is_expense:
            await self.refresh_budgets(recompute_on_server=True)
        return updated

    async def remove_transaction(self, transaction_id: str) -> Either[LedgerError, str]:
        """Delete a transaction. NotFoundError comes back as a non-fatal Left."""
        existing = self._cached_transaction(transaction_id)
        result = await self.transaction_store.delete(transaction_id)
        if result.is_left() and not isinstance(result.get_error(), NotFoundError):
            return result

        self.transactions = tuple(t for t in self.transactions if t.id != transaction_id)
        self.bus.publish(TRANSACTION_DELETED, {"id": transaction_id, "transaction": existing})
        if existing is None or existing.linked_budget_id:
            await self.refresh_budgets(recompute_on_server=True)
        return result

    # -- budgets -----------------------------------------------------------

    async def add_budget(self, data: Mapping[str, Any]) -> Either[LedgerError, Budget]:
        created = await self.budget_store.create(data)
        if created.is_left():
            return created
        await self.refresh_budgets()
        self.bus.publish(BUDGET_ADDED, {"budget": created.get_or_else(None)})
        return created

    async def edit_budget(self, budget_id: str, changes: Mapping[str, Any]) -> Either[LedgerError, Budget]:
        updated = await self.budget_store.update(budget_id, changes)
        if updated.is_left():
            return updated
        # the window may now hold a different set of transactions
        await self.refresh_budgets(recompute_on_server=True)
        self.bus.publish(BUDGET_UPDATED, {"budget": updated.get_or_else(None)})
        return updated

    async def remove_budget(self, budget_id: str) -> Either[LedgerError, Tuple[Transaction, ...]]:
        """Delete a budget; its transactions stay, unlinked.

        The caches are re-read even on failure: the delete may have gone
        through before unlinking broke off.
        """
        result = await self.budget_store.delete(budget_id)

        await self.refresh_transactions()
        await self.refresh_budgets()
        if all(b.id != budget_id for b in self.budgets):
            self.bus.publish(BUDGET_DELETED, {"id": budget_id, "unlinked": result.get_or_else(())})
        return result

    # -- polling -----------------------------------------------------------

    def start_polling(self, interval: Optional[float] = None) -> asyncio.Task:
        if self._poll_task is not None and not self._poll_task.done():
            return self._poll_task
        self._stop_polling = asyncio.Event()
        self._poll_task = asyncio.create_task(self._poll(interval or self.refresh_interval))
        return self._poll_task

    async def _poll(self, interval: float) -> None:
        while not self._stop_polling.is_set():
            try:
                await asyncio.wait_for(self._stop_polling.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self.refresh_budgets()

    async def stop_polling(self) -> None:
        """Stop issuing refreshes; one already in flight runs to completion."""
        if self._stop_polling is not None:
            self._stop_polling.set()
        if self._poll_task is not None:
            await self._poll_task
            self._poll_task = None
