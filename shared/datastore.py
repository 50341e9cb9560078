"""Client for the managed backend's REST interface (per-collection CRUD)."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import httpx

from shared.utils import DataStoreError, InvalidCollectionError, NotFoundException

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    CATEGORIES = "categories"
    PRODUCTS = "products"
    PROFILES = "profiles"
    ORDERS = "orders"
    ORDER_ITEMS = "order_items"


def is_valid_collection(name: str) -> bool:
    return name in {c.value for c in Collection}


def require_collection(name: str) -> Collection:
    """Resolve a table name against the allow-list or fail fast."""
    if isinstance(name, Collection):
        return name
    if not is_valid_collection(name):
        raise InvalidCollectionError(name)
    return Collection(name)


def quote_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def search_term(value: Optional[str]) -> Optional[str]:
    """Trim a free-text search; an empty term means no search."""
    if value is None:
        return None
    return value.strip() or None


@dataclass
class Filter:
    """Row filter: exact matches plus an optional case-insensitive search.

    A search over several columns is combined with logical OR.
    """

    search: Optional[str] = None
    columns: Sequence[str] = ()
    equals: Dict[str, Any] = field(default_factory=dict)

    def to_params(self) -> Dict[str, str]:
        params = {col: f"eq.{value}" for col, value in self.equals.items()}
        if self.search and self.columns:
            pattern = f"*{self.search}*"
            if len(self.columns) == 1:
                params[self.columns[0]] = f"ilike.{pattern}"
            else:
                # Inside or=(...) commas and parentheses are delimiters
                quoted = quote_value(pattern)
                clauses = ",".join(f"{col}.ilike.{quoted}" for col in self.columns)
                params["or"] = f"({clauses})"
        return params


class DataStore:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self._client = client

    def _headers(self, prefer: Optional[str] = None) -> dict:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _url(self, collection: Collection) -> str:
        return f"{self.base_url}/rest/v1/{Collection(collection).value}"

    async def _request(self, method: str, collection: Collection, **kwargs) -> httpx.Response:
        name = Collection(collection).value
        try:
            if self._client is not None:
                response = await self._client.request(method, self._url(collection), **kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(method, self._url(collection), **kwargs)
        except httpx.RequestError as e:
            logger.error("Data store unreachable", extra={"collection": name})
            raise DataStoreError(f"Data store unavailable: {e}")

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                f"Data store rejected {method} request: {message}",
                extra={"collection": name, "status_code": response.status_code},
            )
            raise DataStoreError(message)
        return response

    async def select(
        self,
        collection: Collection,
        filter: Optional[Filter] = None,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[dict]:
        params = {"select": columns}
        if filter:
            params.update(filter.to_params())
        if order:
            params["order"] = order
        if limit:
            params["limit"] = str(limit)
        response = await self._request("GET", collection, params=params, headers=self._headers())
        return response.json() or []

    async def get(self, collection: Collection, record_id: str) -> dict:
        rows = await self.select(collection, Filter(equals={"id": record_id}), limit=1)
        if not rows:
            raise NotFoundException(f"Record {record_id} not found in {Collection(collection).value}")
        return rows[0]

    async def insert(self, collection: Collection, record: dict) -> dict:
        rows = await self.insert_many(collection, [record])
        if not rows:
            raise DataStoreError("Failed to retrieve record after creation")
        return rows[0]

    async def insert_many(self, collection: Collection, records: List[dict]) -> List[dict]:
        response = await self._request(
            "POST",
            collection,
            json=records,
            headers=self._headers(prefer="return=representation"),
        )
        return response.json() or []

    async def update(self, collection: Collection, record_id: str, patch: dict) -> None:
        await self._request(
            "PATCH",
            collection,
            params={"id": f"eq.{record_id}"},
            json=patch,
            headers=self._headers(prefer="return=minimal"),
        )

    async def delete(self, collection: Collection, record_id: str) -> None:
        await self._request(
            "DELETE",
            collection,
            params={"id": f"eq.{record_id}"},
            headers=self._headers(),
        )

    async def count(self, collection: Collection, filter: Optional[Filter] = None) -> int:
        params = {"select": "id"}
        if filter:
            params.update(filter.to_params())
        response = await self._request(
            "HEAD",
            collection,
            params=params,
            headers=self._headers(prefer="count=exact"),
        )
        # Content-Range: 0-24/25 or */0
        content_range = response.headers.get("content-range", "*/0")
        total = content_range.rsplit("/", 1)[-1]
        return int(total) if total.isdigit() else 0


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or str(body)
    return str(body)
