import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple

__all__ = [
    'Event', 'EventBus',
    'TRANSACTION_ADDED', 'TRANSACTION_UPDATED', 'TRANSACTION_DELETED',
    'BUDGET_ADDED', 'BUDGET_UPDATED', 'BUDGET_DELETED', 'BUDGETS_REFRESHED',
    'BUDGET_MISSING', 'BUDGET_ALERT',
    'budget_alert_handler', 'budget_missing_handler', 'register_default_handlers',
]

logger = logging.getLogger(__name__)


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


Handler = Callable[[Event, dict], Any]


class EventBus:
    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def publish(self, name: str, payload: dict) -> List[Any]:
        handlers = list(self._subscribers.get(name, ()))
        if not handlers:
            return []

        event = Event(name=name, ts=datetime.now().isoformat(), payload=payload)
        return [handler(event, payload) for handler in handlers]

    def unsubscribe(self, name: str, handler: Handler) -> None:
        if handler in self._subscribers.get(name, ()):
            self._subscribers[name].remove(handler)


TRANSACTION_ADDED = "TRANSACTION_ADDED"
TRANSACTION_UPDATED = "TRANSACTION_UPDATED"
TRANSACTION_DELETED = "TRANSACTION_DELETED"
BUDGET_ADDED = "BUDGET_ADDED"
BUDGET_UPDATED = "BUDGET_UPDATED"
BUDGET_DELETED = "BUDGET_DELETED"
BUDGETS_REFRESHED = "BUDGETS_REFRESHED"
BUDGET_MISSING = "BUDGET_MISSING"
BUDGET_ALERT = "BUDGET_ALERT"


def budget_alert_handler(event: Event, payload: dict) -> dict:
    status = payload["status"]
    category = status.budget.category.value
    if status.over_budget:
        alert = f"Budget exceeded for {category}: {status.spent} / {status.budget.amount}"
    else:
        alert = f"Budget for {category} at {status.utilization_percentage:.1f}% of {status.budget.amount}"
    logger.warning(alert)
    return {"alert": alert, "category": category, "spent": status.spent, "limit": status.budget.amount}


def budget_missing_handler(event: Event, payload: dict) -> dict:
    category = payload["category"].value
    logger.info("No active budget for %s; transaction saved unlinked", category)
    return {"prompt": f"No budget exists for {category}. Create one?", "category": category}


def register_default_handlers(bus: EventBus) -> EventBus:
    bus.subscribe(BUDGET_ALERT, budget_alert_handler)
    bus.subscribe(BUDGET_MISSING, budget_missing_handler)
    return bus
