"""Simulated QRIS payment session: FORM -> QRIS_PENDING -> confirmed."""

import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from shared.utils import PaymentError, SubmissionInProgressError

from services.storefront.models import CartLine, PaymentInitiation, PaymentStep

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[str], Awaitable[object]]


class PaymentClient:
    """Calls the hosted payment initiation function."""

    def __init__(self, url: str, api_key: str = "", client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.api_key = api_key
        self._client = client

    async def create_payment(self, items: List[CartLine], user_id: str, access_token: Optional[str] = None) -> PaymentInitiation:
        payload = {"items": [item.model_dump() for item in items], "userId": user_id}
        headers = {}
        if self.api_key:
            headers["apikey"] = self.api_key
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.RequestError as e:
            raise PaymentError(f"Payment error: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        if response.is_error:
            reason = body.get("error") or body.get("message") or f"HTTP {response.status_code}"
            raise PaymentError(f"Payment error: {reason}")

        try:
            return PaymentInitiation.model_validate(body)
        except ValidationError:
            logger.error("Malformed payment response", extra={"status_code": response.status_code})
            raise PaymentError("Payment error: malformed response from payment service")


class PaymentSession:
    def __init__(self, client: PaymentClient, on_success: Optional[SuccessCallback] = None):
        self.client = client
        self.on_success = on_success
        self.step = PaymentStep.FORM
        self.payment_id = ""
        self.qris_image = ""
        self.error: Optional[str] = None
        self.processing = False

    def _begin(self) -> None:
        if self.processing:
            raise SubmissionInProgressError("Payment is already being processed")
        self.error = None
        self.processing = True

    async def submit_form(self, items: List[CartLine], user_id: str, access_token: Optional[str] = None) -> bool:
        """Request a QRIS code for the cart; only items and user id are sent."""
        self._begin()
        try:
            result = await self.client.create_payment(items, user_id, access_token)
            if not result.success:
                raise PaymentError(result.message or "Failed to process payment")
            if not result.payment_id:
                raise PaymentError("Payment error: no payment id returned")
            self.payment_id = result.payment_id
            self.qris_image = result.qris_url or ""
            self.step = PaymentStep.QRIS_PENDING
            logger.info("QRIS payment code generated", extra={"payment_id": self.payment_id, "user_id": user_id})
            return True
        except PaymentError as e:
            self.error = e.detail
            logger.error(f"Payment error: {e.detail}", extra={"user_id": user_id})
            return False
        finally:
            self.processing = False

    async def confirm_payment(self, on_success: Optional[SuccessCallback] = None) -> str:
        """Treat the pending payment as paid and hand its id to the success callback.

        There is no verification round-trip with a payment provider: the
        scan is asserted by the customer.
        """
        if self.step != PaymentStep.QRIS_PENDING or not self.payment_id:
            self.error = "No pending payment to confirm"
            raise PaymentError(self.error)

        self._begin()
        try:
            payment_id = self.payment_id
            callback = on_success or self.on_success
            if callback is not None:
                await callback(payment_id)
            logger.info("Payment confirmed", extra={"payment_id": payment_id})
            return payment_id
        finally:
            self.processing = False

    def cancel_to_form(self) -> None:
        self.step = PaymentStep.FORM
        self.payment_id = ""
        self.qris_image = ""


class PaymentSessionRegistry:
    """In-memory payment sessions keyed by client id.

    Sessions idle for longer than ``ttl`` seconds are dropped, and the
    registry never holds more than ``max_sessions``; the least recently
    used idle sessions go first.
    """

    def __init__(self, ttl: float = 1800, max_sessions: int = 10000, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: "OrderedDict[str, Tuple[PaymentSession, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def _touch(self, client_id: str, session: PaymentSession) -> None:
        self._sessions[client_id] = (session, self._clock())
        self._sessions.move_to_end(client_id)

    def _prune(self) -> None:
        now = self._clock()
        for client_id, (session, touched) in list(self._sessions.items()):
            if now - touched > self.ttl and not session.processing:
                del self._sessions[client_id]
        for client_id, (session, _) in list(self._sessions.items()):
            if len(self._sessions) < self.max_sessions:
                break
            if not session.processing:
                del self._sessions[client_id]

    def get(self, client_id: str) -> Optional[PaymentSession]:
        entry = self._sessions.get(client_id)
        if entry is None:
            return None
        session, touched = entry
        if self._clock() - touched > self.ttl and not session.processing:
            del self._sessions[client_id]
            return None
        self._touch(client_id, session)
        return session

    def get_or_create(self, client_id: str, factory: Callable[[], PaymentSession]) -> PaymentSession:
        session = self.get(client_id)
        if session is None:
            self._prune()
            session = factory()
        self._touch(client_id, session)
        return session

    def discard(self, client_id: str) -> None:
        self._sessions.pop(client_id, None)
