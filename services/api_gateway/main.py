from fastapi import FastAPI, Request, Response
from datetime import datetime
from typing import Optional, Tuple
import asyncio
import json
import time
import httpx

from shared.logging_config import setup_logging, RequestLoggingMiddleware, REQUEST_ID_HEADER
from shared.security_config import setup_rate_limiting, setup_cors, SecurityHeadersMiddleware, limiter
from shared.utils import settings, bearer_token, verify_token, UnauthorizedException

# Setup Logging
logger = setup_logging("api-gateway")

app = FastAPI(title="API Gateway")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="api-gateway")
setup_cors(app)

# Public prefix -> (upstream base url, upstream path prefix)
ROUTES = [
    ("/api/categories", settings.STOREFRONT_SERVICE_URL, "/categories"),
    ("/api/products", settings.STOREFRONT_SERVICE_URL, "/products"),
    ("/api/cart", settings.STOREFRONT_SERVICE_URL, "/cart"),
    ("/api/checkout", settings.STOREFRONT_SERVICE_URL, "/checkout"),
    ("/api/auth", settings.STOREFRONT_SERVICE_URL, "/auth"),
    ("/api/admin", settings.ADMIN_SERVICE_URL, "/admin"),
    ("/api/payments", settings.PAYMENTS_SERVICE_URL, ""),
]

SERVICES = {
    "storefront-service": settings.STOREFRONT_SERVICE_URL,
    "admin-service": settings.ADMIN_SERVICE_URL,
    "payments-service": settings.PAYMENTS_SERVICE_URL,
}

def resolve_upstream(path: str) -> Optional[Tuple[str, str]]:
    """Map a public path onto (service url, upstream path)."""
    for prefix, service_url, upstream_prefix in ROUTES:
        if path == prefix or path.startswith(prefix + "/"):
            rest = path[len(prefix):]
            return service_url, f"{upstream_prefix}{rest}" or "/"
    return None

def caller_identity(request: Request) -> Optional[dict]:
    # Downstream services re-check the token; this only tags the call for logs
    token = bearer_token(request.headers.get("Authorization"))
    if not token or not settings.SUPABASE_JWT_SECRET:
        return None
    try:
        return verify_token(token)
    except UnauthorizedException:
        return None

def http_client(**kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(**kwargs)

# --- Proxy Logic ---

async def forward_request(service_url: str, request: Request, path: str):
    client = http_client()
    try:
        headers = dict(request.headers)
        headers.pop("host", None)
        headers.pop("content-length", None)
        headers.pop("x-user-id", None)

        # Starlette lower-cases header names
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            headers[REQUEST_ID_HEADER.lower()] = request_id

        user = caller_identity(request)
        if user:
            headers["x-user-id"] = user["sub"]

        content = await request.body()

        url = f"{service_url}{path}"
        if request.url.query:
            url += f"?{request.url.query}"

        start_time = time.time()
        logger.info("Calling Downstream Service", extra={
            "path": path,
            "method": request.method,
            "request_id": request_id
        })

        resp = await client.request(
            method=request.method,
            url=url,
            headers=headers,
            content=content,
            timeout=10.0
        )

        duration = (time.time() - start_time) * 1000
        logger.info("Downstream Call Completed", extra={
            "path": path,
            "status_code": resp.status_code,
            "duration_ms": round(duration, 2),
            "request_id": request_id
        })

        response_headers = dict(resp.headers)
        response_headers.pop("content-length", None)
        response_headers.pop("content-encoding", None)
        return Response(
            content=resp.content,
            status_code=resp.status_code,
            headers=response_headers
        )
    except httpx.RequestError:
        return Response(content="Service Unavailable", status_code=503)
    finally:
        await client.aclose()

# --- Routes ---

@app.get("/health")
async def health_check():
    async def check_service(url, name):
        start = time.time()
        status_val = "unhealthy"
        details = None
        try:
            async with http_client() as client:
                res = await client.get(f"{url}/health", timeout=2.0)
                if res.status_code == 200:
                    status_val = "healthy"
                    details = res.json()
                else:
                    details = {"error": f"Status {res.status_code}"}
        except httpx.RequestError as e:
            status_val = "unreachable"
            details = {"error": str(e)}

        return {
            "service": name,
            "status": status_val,
            "latency": f"{time.time() - start:.4f}s",
            "details": details
        }

    results = await asyncio.gather(*(check_service(url, name) for name, url in SERVICES.items()))

    overall_status = "healthy"
    for r in results:
        if r["status"] != "healthy":
            overall_status = "unhealthy"
            break

    response_data = {
        "service": "api-gateway",
        "status": overall_status,
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
        "services": results
    }

    if overall_status == "unhealthy":
         return Response(
             content=json.dumps(response_data),
             status_code=503,
             media_type="application/json"
         )

    return response_data

@app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
@limiter.limit("100/minute")
async def proxy(request: Request, path: str):
    target = resolve_upstream(request.url.path)
    if target is None:
        return Response(content="Not Found", status_code=404)
    service_url, upstream_path = target
    return await forward_request(service_url, request, upstream_path)
