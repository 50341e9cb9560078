"""Session lookup against the managed auth service and the per-session auth context."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from shared.datastore import Collection, DataStore, Filter
from shared.utils import AppException, UnauthorizedException, verify_token

logger = logging.getLogger(__name__)


@dataclass
class Session:
    user_id: str
    access_token: str
    email: Optional[str] = None


@dataclass
class AuthContext:
    """Authenticated user plus profile, built once and passed explicitly."""

    session: Optional[Session]
    profile: Optional[dict] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None

    @property
    def role(self) -> Optional[str]:
        return (self.profile or {}).get("role")

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role == "admin"

    def teardown(self) -> None:
        self.session = None
        self.profile = None


class AuthClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        jwt_secret: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.jwt_secret = jwt_secret
        self._client = client

    async def _request(self, method: str, path: str, token: str) -> httpx.Response:
        headers = {"apikey": self.api_key, "Authorization": f"Bearer {token}"}
        url = f"{self.base_url}/auth/v1{path}"
        if self._client is not None:
            return await self._client.request(method, url, headers=headers)
        async with httpx.AsyncClient() as client:
            return await client.request(method, url, headers=headers)

    async def get_current_session(self, token: Optional[str]) -> Optional[Session]:
        """Return the session behind an access token, or None when unauthenticated."""
        if not token:
            return None

        if self.jwt_secret:
            try:
                payload = verify_token(token, self.jwt_secret)
            except UnauthorizedException:
                return None
            return Session(user_id=payload["sub"], access_token=token, email=payload.get("email"))

        try:
            response = await self._request("GET", "/user", token)
        except httpx.RequestError:
            raise AppException(503, "Auth service unavailable")
        if response.status_code != 200:
            return None
        user = response.json()
        return Session(user_id=user["id"], access_token=token, email=user.get("email"))

    async def load_context(self, token: Optional[str], store_factory) -> AuthContext:
        session = await self.get_current_session(token)
        if session is None:
            return AuthContext(session=None)

        store: DataStore = store_factory(session.access_token)
        rows = await store.select(Collection.PROFILES, Filter(equals={"id": session.user_id}), limit=1)
        return AuthContext(session=session, profile=rows[0] if rows else None)

    async def sign_out(self, context: AuthContext) -> None:
        token = context.access_token
        if token:
            try:
                await self._request("POST", "/logout", token)
            except httpx.RequestError:
                logger.warning("Auth service unreachable during sign-out", extra={"user_id": context.user_id})
        context.teardown()
