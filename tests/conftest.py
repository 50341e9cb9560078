import asyncio
import itertools
from typing import Dict, List, Optional

import pytest

from shared.auth import AuthContext, Session
from shared.datastore import Collection, Filter
from shared.security_config import limiter
from shared.utils import DataStoreError, NotFoundException

from services.storefront.cart import CartStorage
from services.storefront.models import PaymentInitiation

limiter.enabled = False


def run(coro):
    return asyncio.run(coro)


class FakeDataStore:
    """In-memory stand-in for the backend REST client."""

    def __init__(self, tables: Optional[Dict[str, List[dict]]] = None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.calls = []
        self.fail_on = set()
        self._ids = itertools.count(1)

    def _check(self, method, collection):
        name = Collection(collection).value
        self.calls.append((method, name))
        if (method, name) in self.fail_on:
            raise DataStoreError(f"{method} on {name} rejected")
        return self.tables.setdefault(name, [])

    @staticmethod
    def _matches(row: dict, filter: Optional[Filter]) -> bool:
        if filter is None:
            return True
        for col, value in filter.equals.items():
            if str(row.get(col)) != str(value):
                return False
        if filter.search and filter.columns:
            term = filter.search.lower()
            return any(term in str(row.get(col) or "").lower() for col in filter.columns)
        return True

    async def select(self, collection, filter=None, columns="*", order=None, limit=None):
        rows = [dict(r) for r in self._check("select", collection) if self._matches(r, filter)]
        return rows[:limit] if limit else rows

    async def get(self, collection, record_id):
        rows = await self.select(collection, Filter(equals={"id": record_id}), limit=1)
        if not rows:
            raise NotFoundException(f"Record {record_id} not found")
        return rows[0]

    async def insert(self, collection, record):
        rows = await self.insert_many(collection, [record])
        return rows[0]

    async def insert_many(self, collection, records):
        table = self._check("insert", collection)
        created = []
        for record in records:
            row = dict(record)
            row.setdefault("id", f"{Collection(collection).value}-{next(self._ids)}")
            table.append(row)
            created.append(dict(row))
        return created

    async def update(self, collection, record_id, patch):
        for row in self._check("update", collection):
            if row.get("id") == record_id:
                row.update(patch)

    async def delete(self, collection, record_id):
        table = self._check("delete", collection)
        table[:] = [row for row in table if row.get("id") != record_id]

    async def count(self, collection, filter=None):
        return len([r for r in self._check("count", collection) if self._matches(r, filter)])


class MemoryCartStorage(CartStorage):
    def __init__(self, items: Optional[Dict[tuple, str]] = None):
        self.items = dict(items or {})
        self.writes = 0

    async def get_item(self, client_id, key):
        return self.items.get((client_id, key))

    async def set_item(self, client_id, key, value):
        self.writes += 1
        self.items[(client_id, key)] = value


class FakePaymentClient:
    def __init__(self, response: Optional[PaymentInitiation] = None, error: Optional[Exception] = None):
        self.response = response or PaymentInitiation(
            success=True, payment_id="pay-123", qris_url="https://example.test/qris.svg"
        )
        self.error = error
        self.calls = []

    async def create_payment(self, items, user_id, access_token=None):
        self.calls.append({"items": list(items), "user_id": user_id})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def store():
    return FakeDataStore({
        "categories": [
            {"id": "cat-1", "name": "Daily Vouchers", "slug": "daily"},
            {"id": "cat-2", "name": "Weekly Vouchers", "slug": "weekly"},
        ],
        "products": [
            {
                "id": "prod-a", "name": "Voucher 1 Day", "price": 100000, "discount": 0,
                "duration": "1 Day", "category_id": "cat-1", "is_popular": True,
                "description": "One day access", "image": None,
                "created_at": "2024-01-01T00:00:00Z",
            },
            {
                "id": "prod-b", "name": "Voucher 7 Days", "price": 200000, "discount": 15,
                "duration": "7 Days", "category_id": "cat-2", "is_popular": False,
                "description": "One week access", "image": None,
                "created_at": "2024-01-01T00:00:00Z",
            },
        ],
        "profiles": [
            {"id": "user-1", "first_name": "Budi", "last_name": "Santoso", "role": "customer"},
            {"id": "admin-1", "first_name": "Sari", "last_name": "Wijaya", "role": "admin"},
        ],
    })


@pytest.fixture
def cart_storage():
    return MemoryCartStorage()


@pytest.fixture
def customer():
    return AuthContext(
        session=Session(user_id="user-1", access_token="token-user", email="budi@example.com"),
        profile={"id": "user-1", "role": "customer"},
    )


@pytest.fixture
def admin():
    return AuthContext(
        session=Session(user_id="admin-1", access_token="token-admin", email="sari@example.com"),
        profile={"id": "admin-1", "role": "admin"},
    )


@pytest.fixture
def anonymous():
    return AuthContext(session=None)
