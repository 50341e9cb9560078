"""FastAPI wiring shared by the services: app setup and request dependencies."""

from typing import Callable, Optional

import httpx
from fastapi import Depends, FastAPI, Header, Request

from shared.auth import AuthClient, AuthContext
from shared.datastore import DataStore
from shared.logging_config import RequestLoggingMiddleware
from shared.security_config import SecurityHeadersMiddleware, setup_cors, setup_rate_limiting
from shared.utils import ForbiddenException, UnauthorizedException, bearer_token, settings

StoreFactory = Callable[[Optional[str]], DataStore]


def setup_service(app: FastAPI, service_name: str) -> None:
    setup_rate_limiting(app)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, service_name=service_name)
    setup_cors(app)

    app.state.http_client = None
    app.state.auth_client = AuthClient(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY, settings.SUPABASE_JWT_SECRET)

    @app.on_event("startup")
    async def startup_http_client():
        app.state.http_client = httpx.AsyncClient()
        app.state.auth_client = AuthClient(
            settings.SUPABASE_URL,
            settings.SUPABASE_ANON_KEY,
            settings.SUPABASE_JWT_SECRET,
            client=app.state.http_client,
        )

    @app.on_event("shutdown")
    async def shutdown_http_client():
        if app.state.http_client is not None:
            await app.state.http_client.aclose()


# --- Dependencies ---
def get_auth_client(request: Request) -> AuthClient:
    return request.app.state.auth_client


def get_store_factory(request: Request) -> StoreFactory:
    client = request.app.state.http_client

    def factory(access_token: Optional[str] = None) -> DataStore:
        return DataStore(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY, access_token, client=client)

    return factory


async def get_auth_context(
    authorization: Optional[str] = Header(None),
    auth_client: AuthClient = Depends(get_auth_client),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> AuthContext:
    return await auth_client.load_context(bearer_token(authorization), store_factory)


async def require_user(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not context.is_authenticated:
        raise UnauthorizedException("You need to be logged in")
    return context


async def require_admin(context: AuthContext = Depends(require_user)) -> AuthContext:
    if not context.is_admin:
        raise ForbiddenException("Admin access required")
    return context


def get_datastore(
    context: AuthContext = Depends(get_auth_context),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> DataStore:
    return store_factory(context.access_token)
