"""Cart engine: line items, discount-aware totals, durable snapshot, order placement."""

import logging
from typing import List, Optional

from pydantic import ValidationError

from shared.auth import AuthContext
from shared.datastore import Collection, DataStore
from shared.utils import CartError, UnauthorizedException, settings

from services.storefront.models import CartLine, CartSnapshot

logger = logging.getLogger(__name__)


class CartStorage:
    """Key/value storage holding one JSON snapshot per client and key."""

    async def get_item(self, client_id: str, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set_item(self, client_id: str, key: str, value: str) -> None:
        raise NotImplementedError


class MongoCartStorage(CartStorage):
    def __init__(self, collection):
        self.collection = collection

    async def get_item(self, client_id: str, key: str) -> Optional[str]:
        doc = await self.collection.find_one({"_id": client_id}, {key: 1})
        if not doc:
            return None
        return doc.get(key)

    async def set_item(self, client_id: str, key: str, value: str) -> None:
        await self.collection.update_one({"_id": client_id}, {"$set": {key: value}}, upsert=True)


class CartEngine:
    def __init__(self, storage: CartStorage, client_id: str, key: str = settings.CART_STORAGE_KEY):
        self.storage = storage
        self.client_id = client_id
        self.key = key
        self.lines: List[CartLine] = []

    async def hydrate(self) -> List[CartLine]:
        """Load the stored snapshot; malformed content yields an empty cart."""
        raw = await self.storage.get_item(self.client_id, self.key)
        if not raw:
            self.lines = []
            return self.lines
        try:
            self.lines = CartSnapshot.validate_json(raw)
        except ValidationError as e:
            logger.warning(
                f"Error parsing cart data: {e.error_count()} error(s), resetting cart",
                extra={"client_id": self.client_id},
            )
            self.lines = []
        return self.lines

    async def update_cart(self, lines: List[CartLine]) -> None:
        # Snapshot is rewritten in full on every mutation
        self.lines = list(lines)
        raw = CartSnapshot.dump_json(self.lines).decode("utf-8")
        await self.storage.set_item(self.client_id, self.key, raw)

    def find(self, product_id: str) -> Optional[CartLine]:
        return next((line for line in self.lines if line.id == product_id), None)

    async def add_line(self, line: CartLine) -> None:
        if self.find(line.id) is None:
            await self.update_cart(self.lines + [line])
            return
        await self.update_cart([
            item.model_copy(update={"quantity": item.quantity + line.quantity}) if item.id == line.id else item
            for item in self.lines
        ])

    async def set_quantity(self, product_id: str, quantity: int) -> None:
        if quantity < 1:
            return
        await self.update_cart([
            item.model_copy(update={"quantity": quantity}) if item.id == product_id else item
            for item in self.lines
        ])

    async def remove_line(self, product_id: str) -> None:
        await self.update_cart([item for item in self.lines if item.id != product_id])

    async def clear(self) -> None:
        await self.update_cart([])

    def compute_total(self) -> int:
        return sum(line.subtotal for line in self.lines)

    async def place_order(self, payment_id: str, context: AuthContext, store: DataStore) -> str:
        """Record the order and its items, then empty the cart.

        The cart is only cleared once both writes succeeded; any store error
        propagates and leaves the cart as it was.
        """
        if not context.is_authenticated:
            raise UnauthorizedException("User not authenticated")
        if not self.lines:
            raise CartError("Cart is empty")

        try:
            order = await store.insert(Collection.ORDERS, {
                "user_id": context.user_id,
                "total": self.compute_total(),
                "payment_id": payment_id,
                "status": "processing",
            })
            order_id = order["id"]
            await store.insert_many(Collection.ORDER_ITEMS, [
                {
                    "order_id": order_id,
                    "product_id": line.id,
                    "quantity": line.quantity,
                    "price": line.effective_price,
                }
                for line in self.lines
            ])
        except Exception:
            logger.error(
                "Error creating order",
                extra={"payment_id": payment_id, "user_id": context.user_id, "client_id": self.client_id},
                exc_info=True,
            )
            raise

        await self.clear()
        logger.info(
            "Order placed",
            extra={"order_id": order_id, "payment_id": payment_id, "user_id": context.user_id},
        )
        return order_id
