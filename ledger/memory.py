import copy
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from ledger.aggregation import current_spending
from ledger.api import Page
from ledger.codec import decode_budget, decode_transactions, encode_amount
from ledger.errors import DecodeError, NotFoundError
from ledger.validation import parse_moment

logger = logging.getLogger(__name__)


class InMemoryApi:
    """In-process stand-in for the REST API with the same contract.

    Backs the dashboard demo and the tests. With server_spending off, budgets
    come back without currentSpending so the client-side fallback kicks in.
    """

    def __init__(
        self,
        transactions: Iterable[Mapping[str, Any]] = (),
        budgets: Iterable[Mapping[str, Any]] = (),
        page_size: Optional[int] = None,
        server_spending: bool = True,
    ):
        self.page_size = page_size
        self.server_spending = server_spending
        self.calls: List[str] = []
        self._transactions: Dict[str, Dict[str, Any]] = {}
        self._budgets: Dict[str, Dict[str, Any]] = {}
        for t in transactions:
            self._store(self._transactions, t)
        for b in budgets:
            self._store(self._budgets, b)

    @staticmethod
    def _store(table: Dict[str, Dict[str, Any]], body: Mapping[str, Any]) -> Dict[str, Any]:
        record = copy.deepcopy(dict(body))
        record.pop("currentSpending", None)
        record["_id"] = str(record.get("_id") or record.get("id") or uuid4().hex)
        record.pop("id", None)
        table[record["_id"]] = record
        return record

    @staticmethod
    def _get(table: Dict[str, Dict[str, Any]], resource_id: str) -> Dict[str, Any]:
        if resource_id not in table:
            raise NotFoundError(resource_id)
        return table[resource_id]

    def _matches(self, record: Mapping[str, Any], params: Mapping[str, Any]) -> bool:
        if params.get("type") and record.get("type") != params["type"]:
            return False
        if params.get("category") and record.get("category") != params["category"]:
            return False
        moment = parse_moment(record.get("date"))
        start = parse_moment(params.get("startDate"))
        end = parse_moment(params.get("endDate"), end_of_day=True)
        if moment is None:
            return start is None and end is None
        if start and moment < start:
            return False
        if end and moment > end:
            return False
        return True

    async def list_transactions(self, params: Mapping[str, Any], page: Optional[int] = None) -> Page:
        self.calls.append("list_transactions")
        rows = [copy.deepcopy(r) for r in self._transactions.values() if self._matches(r, params)]
        rows.sort(key=lambda r: parse_moment(r.get("date")) or datetime.min, reverse=True)
        if not self.page_size:
            return rows, None
        page = page or 1
        start = (page - 1) * self.page_size
        chunk = rows[start:start + self.page_size]
        has_more = start + self.page_size < len(rows)
        return chunk, page + 1 if has_more else None

    async def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        self.calls.append("get_transaction")
        return copy.deepcopy(self._get(self._transactions, transaction_id))

    async def create_transaction(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append("create_transaction")
        body = dict(body)
        body.pop("_id", None)
        return copy.deepcopy(self._store(self._transactions, body))

    async def update_transaction(self, transaction_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append("update_transaction")
        record = self._get(self._transactions, transaction_id)
        record.update({k: v for k, v in body.items() if k != "_id"})
        return copy.deepcopy(record)

    async def delete_transaction(self, transaction_id: str) -> None:
        self.calls.append("delete_transaction")
        self._get(self._transactions, transaction_id)
        del self._transactions[transaction_id]

    def _with_spending(self, record: Dict[str, Any]) -> Dict[str, Any]:
        out = copy.deepcopy(record)
        if not self.server_spending:
            return out
        try:
            budget = decode_budget(record)
        except DecodeError:
            out["currentSpending"] = 0
            return out
        trans = decode_transactions(self._transactions.values())
        out["currentSpending"] = encode_amount(current_spending(budget, trans))
        return out

    async def list_budgets(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        self.calls.append("list_budgets")
        period = params.get("period")
        return [
            self._with_spending(b) for b in self._budgets.values()
            if not period or b.get("period") == period
        ]

    async def get_budget(self, budget_id: str) -> Dict[str, Any]:
        self.calls.append("get_budget")
        return self._with_spending(self._get(self._budgets, budget_id))

    async def create_budget(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append("create_budget")
        body = dict(body)
        body.pop("_id", None)
        return self._with_spending(self._store(self._budgets, body))

    async def update_budget(self, budget_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append("update_budget")
        record = self._get(self._budgets, budget_id)
        record.update({k: v for k, v in body.items() if k not in ("_id", "currentSpending")})
        return self._with_spending(record)

    async def delete_budget(self, budget_id: str) -> None:
        self.calls.append("delete_budget")
        self._get(self._budgets, budget_id)
        del self._budgets[budget_id]

    async def refresh_spending(self) -> None:
        self.calls.append("refresh_spending")


def load_seed(path: str, **kwargs) -> InMemoryApi:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    api = InMemoryApi(data.get("transactions", []), data.get("budgets", []), **kwargs)
    logger.info(
        "Loaded seed %s: %d transactions, %d budgets",
        path, len(data.get("transactions", [])), len(data.get("budgets", [])),
    )
    return api
