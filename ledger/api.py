import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

import aiohttp

from ledger.errors import (
    AuthExpiredError, DuplicateCategoryError, LedgerError, NetworkError, NotFoundError, ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0

# (items on this page, next page number or None)
Page = Tuple[List[Dict[str, Any]], Optional[int]]


class LedgerApi(Protocol):
    """Remote resource API the stores talk to. Bodies are wire-format dicts."""

    async def list_transactions(self, params: Mapping[str, Any], page: Optional[int] = None) -> Page: ...

    async def get_transaction(self, transaction_id: str) -> Dict[str, Any]: ...

    async def create_transaction(self, body: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def update_transaction(self, transaction_id: str, body: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def delete_transaction(self, transaction_id: str) -> None: ...

    async def list_budgets(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]: ...

    async def get_budget(self, budget_id: str) -> Dict[str, Any]: ...

    async def create_budget(self, body: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def update_budget(self, budget_id: str, body: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def delete_budget(self, budget_id: str) -> None: ...

    async def refresh_spending(self) -> None: ...


def _unwrap(payload: Any, key: Optional[str] = None) -> Any:
    """Strip the {"data": ...} envelope and an optional inner resource key."""
    data = payload.get("data", payload) if isinstance(payload, dict) else payload
    if key and isinstance(data, dict) and key in data:
        return data[key]
    return data


def _parse_body(text: str) -> Any:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        # error pages from proxies are not JSON
        return {"message": text[:200]}


def _error_message(payload: Any, default: str) -> str:
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or default)
    return default


class HttpApi:
    """aiohttp client for the ledger REST API.

    token_provider returns the current bearer credential (or None). A 401
    surfaces as AuthExpiredError; nothing is retried here.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], Optional[str]] = lambda: None,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.page_size = page_size
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpApi":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        resource_id: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        query = {k: str(v) for k, v in (params or {}).items() if v is not None}
        logger.debug("API request: %s %s", method, url)
        try:
            async with self._get_session().request(
                method, url, params=query, json=body, headers=self._headers(), timeout=self.timeout
            ) as response:
                payload = _parse_body(await response.text())
                logger.debug("API response [%s]: %s %s", response.status, method, url)
                if response.status >= 400:
                    raise self._map_status(response.status, payload, resource_id or path)
                return payload
        except LedgerError:
            raise
        except asyncio.TimeoutError as e:
            logger.error("API timeout: %s %s", method, url)
            raise NetworkError(e) from e
        except aiohttp.ClientError as e:
            logger.error("API transport failure: %s %s: %s", method, url, e)
            raise NetworkError(e) from e

    @staticmethod
    def _map_status(status: int, payload: Any, resource: str) -> LedgerError:
        message = _error_message(payload, f"HTTP {status}")
        if status == 401:
            return AuthExpiredError(message)
        if status == 404:
            return NotFoundError(resource)
        if status == 409:
            category = payload.get("category") if isinstance(payload, dict) else None
            return DuplicateCategoryError(category or message)
        if status in (400, 422):
            field = payload.get("field", "request") if isinstance(payload, dict) else "request"
            return ValidationError(field, message)
        return NetworkError(message)

    async def list_transactions(self, params: Mapping[str, Any], page: Optional[int] = None) -> Page:
        query = dict(params)
        if self.page_size:
            query.update(page=page or 1, limit=self.page_size)
        payload = await self._request("GET", "/transactions", params=query)
        data = _unwrap(payload)
        items = data.get("transactions", []) if isinstance(data, dict) else list(data or [])
        pagination = data.get("pagination") if isinstance(data, dict) else None
        next_page = None
        if self.page_size and pagination:
            current, pages = int(pagination.get("page", 1)), int(pagination.get("pages", 1))
            next_page = current + 1 if current < pages else None
        return items, next_page

    async def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        payload = await self._request("GET", f"/transactions/{transaction_id}", transaction_id)
        return _unwrap(payload, "transaction")

    async def create_transaction(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        payload = await self._request("POST", "/transactions", body=body)
        return _unwrap(payload, "transaction")

    async def update_transaction(self, transaction_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        payload = await self._request("PATCH", f"/transactions/{transaction_id}", transaction_id, body=body)
        return _unwrap(payload, "transaction")

    async def delete_transaction(self, transaction_id: str) -> None:
        await self._request("DELETE", f"/transactions/{transaction_id}", transaction_id)

    async def list_budgets(self, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        query = dict(params)
        query.setdefault("includeSpending", "true")
        payload = await self._request("GET", "/budgets", params=query)
        return list(_unwrap(payload) or [])

    async def get_budget(self, budget_id: str) -> Dict[str, Any]:
        payload = await self._request("GET", f"/budgets/{budget_id}", budget_id, params={"includeSpending": "true"})
        return _unwrap(payload)

    async def create_budget(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        payload = await self._request("POST", "/budgets", body=body)
        return _unwrap(payload)

    async def update_budget(self, budget_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        payload = await self._request("PATCH", f"/budgets/{budget_id}", budget_id, body=body)
        return _unwrap(payload)

    async def delete_budget(self, budget_id: str) -> None:
        await self._request("DELETE", f"/budgets/{budget_id}", budget_id)

    async def refresh_spending(self) -> None:
        await self._request("POST", "/budgets/refresh-spending")
