import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from ledger.categories import ExpenseCategory
from ledger.errors import AuthExpiredError, DuplicateCategoryError, NetworkError, NotFoundError
from ledger.events import BUDGET_ALERT, BUDGET_MISSING, BUDGETS_REFRESHED, TRANSACTION_ADDED, EventBus
from ledger.linking import LinkState
from ledger.memory import InMemoryApi
from ledger.repository import LedgerRepository

NOW = datetime(2025, 1, 25, 12, 0)

FOOD_BUDGET = {
    "_id": "b1", "category": "Food & Dining", "amount": 500, "period": "monthly",
    "startDate": "2025-01-01", "endDate": "2025-01-31",
    "notifications": {"enabled": True, "threshold": 80},
}


def expense(amount, day, category="Food & Dining", description="Meal"):
    return {
        "type": "expense", "amount": amount, "category": category,
        "description": description, "date": f"2025-01-{day:02d}",
    }


class GatedApi(InMemoryApi):
    """Budget listings can be held back after the server has answered."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gates = []

    async def list_budgets(self, params):
        result = await super().list_budgets(params)
        if self.gates:
            entered, release = self.gates.pop(0)
            entered.set()
            await release.wait()
        return result


class FlakyApi(InMemoryApi):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.offline = False
        self.expired = False

    async def list_budgets(self, params):
        if self.offline:
            raise NetworkError("connection reset")
        return await super().list_budgets(params)

    async def create_transaction(self, body):
        if self.expired:
            raise AuthExpiredError("Token expired")
        return await super().create_transaction(body)


async def loaded_repo(api=None, bus=None):
    api = api if api is not None else InMemoryApi(budgets=[FOOD_BUDGET])
    repo = LedgerRepository(api, bus=bus, clock=lambda: NOW, refresh_interval=0.01)
    await repo.load()
    api.calls.clear()
    return repo, api


def food(repo):
    return next(s for s in repo.budget_statuses() if s.budget.id == "b1")


@pytest.mark.asyncio
async def test_scenario_single_expense_links_and_counts():
    repo, api = await loaded_repo()
    result = await repo.add_transaction(expense("45.99", 5, description="Lunch"))

    transaction = result.get_or_else(None)
    assert transaction.linked_budget_id == "b1"
    assert repo.budgets[0].current_spending == Decimal("45.99")
    assert food(repo).remaining_amount == Decimal("454.01")
    assert api.calls == ["create_transaction", "refresh_spending", "list_budgets"]


@pytest.mark.asyncio
async def test_scenario_second_expense_goes_over_budget():
    repo, _ = await loaded_repo()
    await repo.add_transaction(expense("45.99", 5))
    await repo.add_transaction(expense(470, 20))

    status = food(repo)
    assert status.spent == Decimal("515.99")
    assert round(float(status.utilization_percentage), 1) == 103.2
    assert status.over_budget


@pytest.mark.asyncio
async def test_scenario_category_edit_unlinks_and_drops_spending():
    bus = EventBus()
    missing = []
    bus.subscribe(BUDGET_MISSING, lambda e, p: missing.append(p["category"]))
    repo, api = await loaded_repo(bus=bus)
    lunch = (await repo.add_transaction(expense("45.99", 5))).get_or_else(None)
    await repo.add_transaction(expense(470, 20))
    api.calls.clear()

    edited = (await repo.edit_transaction(lunch.id, {"category": "Transport"})).get_or_else(None)

    assert edited.category is ExpenseCategory.TRANSPORT
    assert edited.linked_budget_id is None
    assert food(repo).spent == Decimal(470)
    assert missing == [ExpenseCategory.TRANSPORT]
    assert api.calls == ["get_transaction", "update_transaction", "refresh_spending", "list_budgets"]


@pytest.mark.asyncio
async def test_scenario_duplicate_budget_rejected():
    repo, api = await loaded_repo()
    result = await repo.add_budget({
        "category": "Food & Dining", "amount": 700,
        "start_date": "2025-01-15", "end_date": "2025-02-15",
    })
    assert isinstance(result.get_error(), DuplicateCategoryError)
    assert len(repo.budgets) == 1
    assert "create_budget" not in api.calls


@pytest.mark.asyncio
async def test_scenario_budget_delete_keeps_transactions_unlinked():
    repo, _ = await loaded_repo()
    await repo.add_transaction(expense(470, 20, description="Groceries"))

    await repo.remove_budget("b1")

    assert repo.budgets == ()
    assert repo.active_by_category == {}
    (groceries,) = repo.transactions
    assert groceries.description == "Groceries"
    assert groceries.linked_budget_id is None


@pytest.mark.asyncio
async def test_income_skips_linking_and_budget_refresh():
    bus = EventBus()
    added = []
    bus.subscribe(TRANSACTION_ADDED, lambda e, p: added.append(p["link"].state))
    repo, api = await loaded_repo(bus=bus)
    result = await repo.add_transaction({
        "type": "income", "amount": 30000, "category": "Salary",
        "description": "January salary", "date": "2025-01-15",
    })
    assert result.get_or_else(None).linked_budget_id is None
    assert added == [LinkState.NOT_APPLICABLE]
    assert api.calls == ["create_transaction"]


@pytest.mark.asyncio
async def test_expense_without_budget_saved_unlinked():
    repo, _ = await loaded_repo()
    result = await repo.add_transaction(expense(1200, 10, category="Shopping"))
    assert result.is_right()
    assert result.get_or_else(None).linked_budget_id is None
    assert food(repo).spent == Decimal(0)


@pytest.mark.asyncio
async def test_invalid_input_is_rejected_before_network():
    repo, api = await loaded_repo()
    result = await repo.add_transaction(expense(-5, 30))
    assert set(result.get_error().errors) == {"amount", "date"}
    assert api.calls == []


@pytest.mark.asyncio
async def test_first_add_loads_budgets_before_linking():
    api = InMemoryApi(budgets=[FOOD_BUDGET])
    repo = LedgerRepository(api, clock=lambda: NOW)
    result = await repo.add_transaction(expense("45.99", 5))
    assert result.get_or_else(None).linked_budget_id == "b1"
    assert api.calls[0] == "list_budgets"


@pytest.mark.asyncio
async def test_budget_window_edit_recomputes():
    repo, api = await loaded_repo()
    await repo.add_transaction(expense("45.99", 5))
    await repo.add_transaction(expense(470, 20))
    api.calls.clear()

    await repo.edit_budget("b1", {"end_date": "2025-01-15"})

    assert food(repo).spent == Decimal("45.99")
    assert api.calls[-2:] == ["refresh_spending", "list_budgets"]


@pytest.mark.asyncio
async def test_stale_refresh_is_discarded():
    api = GatedApi(budgets=[FOOD_BUDGET])
    repo, _ = await loaded_repo(api)
    entered, release = asyncio.Event(), asyncio.Event()
    api.gates.append((entered, release))

    slow = asyncio.create_task(repo.refresh_budgets())
    await entered.wait()
    await api.update_budget("b1", {"amount": 800})
    await repo.refresh_budgets()
    applied = repo.version

    release.set()
    await slow

    assert repo.version == applied
    assert repo.budgets[0].amount == Decimal(800)


@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_budgets():
    api = FlakyApi(budgets=[FOOD_BUDGET])
    repo, _ = await loaded_repo(api)
    before, version = repo.budgets, repo.version

    api.offline = True
    result = await repo.refresh_budgets()

    assert isinstance(result.get_error(), NetworkError)
    assert repo.budgets == before
    assert repo.version == version


@pytest.mark.asyncio
async def test_expired_credentials_surface_as_left():
    api = FlakyApi(budgets=[FOOD_BUDGET])
    repo, _ = await loaded_repo(api)
    api.expired = True
    result = await repo.add_transaction(expense("45.99", 5))
    assert isinstance(result.get_error(), AuthExpiredError)
    assert repo.transactions == ()


@pytest.mark.asyncio
async def test_removing_vanished_transaction_is_not_fatal():
    repo, api = await loaded_repo()
    lunch = (await repo.add_transaction(expense("45.99", 5))).get_or_else(None)
    await api.delete_transaction(lunch.id)

    result = await repo.remove_transaction(lunch.id)

    assert isinstance(result.get_error(), NotFoundError)
    assert repo.transactions == ()
    assert food(repo).spent == Decimal(0)


@pytest.mark.asyncio
async def test_budget_alert_fires_once_per_crossing():
    bus = EventBus()
    alerts = []
    bus.subscribe(BUDGET_ALERT, lambda e, p: alerts.append(p["status"].spent))
    repo, _ = await loaded_repo(bus=bus)

    await repo.add_transaction(expense(300, 5))
    await repo.add_transaction(expense(150, 6))
    await repo.add_transaction(expense(10, 7))

    assert alerts == [Decimal(450)]


@pytest.mark.asyncio
async def test_polling_refreshes_until_stopped():
    bus = EventBus()
    versions = []
    bus.subscribe(BUDGETS_REFRESHED, lambda e, p: versions.append(p["version"]))
    repo, api = await loaded_repo(bus=bus)

    repo.start_polling(0.01)
    await asyncio.sleep(0.08)
    await repo.stop_polling()
    polled = api.calls.count("list_budgets")
    await asyncio.sleep(0.03)

    assert polled >= 2
    assert api.calls.count("list_budgets") == polled
    assert versions == sorted(versions)


class UnlinkFailsApi(InMemoryApi):
    async def update_transaction(self, transaction_id, body):
        raise NetworkError("connection reset")


@pytest.mark.asyncio
async def test_load_and_polling_survive_pseudo_budgets():
    funds = {
        "_id": "funds", "category": "Available Funds", "amount": -30000, "period": "monthly",
        "startDate": "2025-01-01", "endDate": "2025-01-31",
    }
    api = InMemoryApi(budgets=[FOOD_BUDGET, funds])
    repo = LedgerRepository(api, clock=lambda: NOW)

    result = await repo.load()
    assert [b.id for b in result.get_or_else(None)] == ["b1"]

    repo.start_polling(0.01)
    await asyncio.sleep(0.03)
    await repo.stop_polling()
    assert [b.id for b in repo.budgets] == ["b1"]


@pytest.mark.asyncio
async def test_window_edit_into_active_category_rejected():
    expired = dict(FOOD_BUDGET, _id="b0", startDate="2024-12-01", endDate="2024-12-31")
    repo, _ = await loaded_repo(InMemoryApi(budgets=[expired, FOOD_BUDGET]))

    result = await repo.edit_budget("b0", {"end_date": "2025-02-28"})

    assert isinstance(result.get_error(), DuplicateCategoryError)
    active = [b.id for b in repo.budgets if b.category is ExpenseCategory.FOOD_AND_DINING and b.is_active(NOW)]
    assert active == ["b1"]


@pytest.mark.asyncio
async def test_caller_cannot_point_expense_at_another_budget():
    repo, api = await loaded_repo()
    taxi = (await repo.add_transaction(expense(20, 6, category="Transport"))).get_or_else(None)
    api.calls.clear()

    result = await repo.edit_transaction(taxi.id, {"linked_budget_id": "b1"})

    assert result.get_error().field == "linked_budget_id"
    assert "update_transaction" not in api.calls
    assert food(repo).spent == Decimal(0)


@pytest.mark.asyncio
async def test_budget_delete_refreshes_even_when_unlinking_fails():
    api = UnlinkFailsApi([{
        "_id": "t1", "amount": 470, "type": "expense", "category": "Food & Dining",
        "description": "Groceries", "date": "2025-01-20T12:00:00", "linkedBudget": "b1",
    }], [FOOD_BUDGET])
    repo, _ = await loaded_repo(api)

    result = await repo.remove_budget("b1")

    assert isinstance(result.get_error(), NetworkError)
    assert repo.budgets == ()
    assert repo.active_by_category == {}
