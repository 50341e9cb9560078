from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from datetime import datetime
from pydantic import ValidationError
import uuid

from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, setup_cors, SecurityHeadersMiddleware, limiter
from shared.utils import settings, HealthResponse

from services.payments.schemas import PaymentRequest, PaymentResponse
from services.storefront.models import CartSnapshot

# Setup Logging
logger = setup_logging("payments-service")

app = FastAPI(title="Payments Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="payments-service")
setup_cors(app)

# --- Endpoints ---

@app.post("/create-payment")
@limiter.limit("10/minute")
async def create_payment(payment_request: PaymentRequest, request: Request):
    """Simulated QRIS payment: no provider is contacted and nothing is stored."""
    items = payment_request.items
    if not items or not isinstance(items, list):
        return JSONResponse(status_code=400, content={"error": "Invalid items provided"})

    try:
        lines = CartSnapshot.validate_python(items)
        total = sum(line.subtotal for line in lines)
        payment_id = str(uuid.uuid4())
        response = PaymentResponse(
            payment_id=payment_id,
            total=total,
            qris_url=settings.QRIS_IMAGE_URL,
            message="QRIS code generated successfully",
            timestamp=datetime.utcnow(),
        )
    except ValidationError:
        logger.error("Error processing payment", exc_info=True, extra={"user_id": payment_request.user_id})
        return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})

    logger.info("Payment created", extra={"payment_id": payment_id, "user_id": payment_request.user_id})
    return JSONResponse(content=response.model_dump(mode="json", by_alias=True))

@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(
        service="payments-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0"
    )
