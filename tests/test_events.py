from datetime import datetime
from decimal import Decimal

from ledger.aggregation import budget_status
from ledger.categories import ExpenseCategory
from ledger.domain import Budget, BudgetPeriod
from ledger.events import (
    BUDGET_ALERT, BUDGET_MISSING, TRANSACTION_ADDED, Event, EventBus,
    budget_alert_handler, budget_missing_handler, register_default_handlers,
)


def make_status(spent):
    budget = Budget(
        id="b1", category=ExpenseCategory.FOOD_AND_DINING, amount=Decimal(500),
        period=BudgetPeriod.MONTHLY, start_date=datetime(2025, 1, 1),
        end_date=datetime(2025, 1, 31, 23, 59), current_spending=Decimal(spent),
    )
    return budget_status(budget)


def test_event_creation():
    event = Event(name=TRANSACTION_ADDED, ts=datetime.now().isoformat(), payload={"id": "t1"})
    assert event.name == TRANSACTION_ADDED
    assert event.payload["id"] == "t1"


def test_event_bus_subscribe_and_publish():
    bus = EventBus()
    seen = []

    def handler(event: Event, payload: dict) -> dict:
        seen.append(payload)
        return {"processed": True}

    bus.subscribe(TRANSACTION_ADDED, handler)
    results = bus.publish(TRANSACTION_ADDED, {"id": "t1"})

    assert results == [{"processed": True}]
    assert seen == [{"id": "t1"}]


def test_multiple_subscribers_run_in_order():
    bus = EventBus()
    bus.subscribe(TRANSACTION_ADDED, lambda e, p: 1)
    bus.subscribe(TRANSACTION_ADDED, lambda e, p: 2)
    assert bus.publish(TRANSACTION_ADDED, {}) == [1, 2]


def test_publish_without_subscribers():
    assert EventBus().publish(BUDGET_ALERT, {}) == []


def test_event_bus_unsubscribe():
    bus = EventBus()
    calls = []

    def handler(event, payload):
        calls.append(payload)

    bus.subscribe(TRANSACTION_ADDED, handler)
    bus.unsubscribe(TRANSACTION_ADDED, handler)
    bus.unsubscribe(TRANSACTION_ADDED, handler)
    bus.publish(TRANSACTION_ADDED, {"id": "t1"})
    assert calls == []


def test_budget_alert_handler_over_budget():
    status = make_status("515.99")
    event = Event(name=BUDGET_ALERT, ts=datetime.now().isoformat(), payload={"status": status})
    result = budget_alert_handler(event, event.payload)
    assert "Budget exceeded for Food & Dining" in result["alert"]
    assert result["spent"] == Decimal("515.99")
    assert result["limit"] == Decimal(500)


def test_budget_alert_handler_near_threshold():
    result = budget_alert_handler(None, {"status": make_status("400")})
    assert result["alert"] == "Budget for Food & Dining at 80.0% of 500"


def test_budget_missing_handler_prompts_for_budget():
    result = budget_missing_handler(None, {"category": ExpenseCategory.SHOPPING})
    assert result == {"prompt": "No budget exists for Shopping. Create one?", "category": "Shopping"}


def test_default_handlers_are_registered():
    bus = register_default_handlers(EventBus())
    results = bus.publish(BUDGET_MISSING, {"category": ExpenseCategory.TRANSPORT})
    assert results[0]["category"] == "Transport"
