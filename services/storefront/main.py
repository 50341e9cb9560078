from fastapi import FastAPI, Depends, HTTPException, status, Query, Header, Request
from datetime import datetime
from typing import Optional, List

from shared.auth import AuthClient, AuthContext
from shared.datastore import Collection, DataStore, Filter, search_term
from shared.dependencies import (
    setup_service, get_auth_client, get_auth_context, get_datastore, require_user
)
from shared.logging_config import setup_logging
from shared.security_config import limiter
from shared.utils import (
    get_db_client, settings, SuccessResponse, HealthResponse,
    NotFoundException, UnauthorizedException, PaymentError, CartError
)

from services.storefront.cart import CartEngine, CartStorage, MongoCartStorage
from services.storefront.models import CartLine
from services.storefront.payment import PaymentClient, PaymentSession, PaymentSessionRegistry
from services.storefront.schemas import (
    CartItemAdd, CartItemUpdate, CartResponse, PaymentFormSubmit,
    PaymentSessionResponse, OrderPlacedResponse
)

# Setup Logging
logger = setup_logging("storefront-service")

app = FastAPI(title="Storefront Service")
setup_service(app, "storefront-service")

app.state.cart_storage = None
app.state.payment_client = PaymentClient(settings.PAYMENT_FUNCTION_URL, settings.SUPABASE_ANON_KEY)
app.state.payment_sessions = PaymentSessionRegistry()

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.CART_DB_NAME]
    app.state.cart_storage = MongoCartStorage(app.mongodb.carts)

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Dependencies ---
def get_cart_storage() -> CartStorage:
    return app.state.cart_storage

def get_payment_client() -> PaymentClient:
    return app.state.payment_client

def get_payment_sessions() -> PaymentSessionRegistry:
    return app.state.payment_sessions

def get_client_id(x_client_id: str = Header(...)) -> str:
    return x_client_id

async def get_cart(
    client_id: str = Depends(get_client_id),
    storage: CartStorage = Depends(get_cart_storage),
) -> CartEngine:
    cart = CartEngine(storage, client_id, settings.CART_STORAGE_KEY)
    await cart.hydrate()
    return cart

def cart_response(cart: CartEngine) -> CartResponse:
    return CartResponse.from_lines(cart.lines, cart.compute_total())

def session_response(session: Optional[PaymentSession]) -> PaymentSessionResponse:
    if session is None:
        return PaymentSessionResponse(step="form")
    return PaymentSessionResponse(
        step=session.step,
        payment_id=session.payment_id,
        qris_image=session.qris_image,
        error=session.error,
        processing=session.processing,
    )

def require_checkout_session(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not context.is_authenticated:
        raise UnauthorizedException(
            "You need to be logged in to checkout.",
            headers={"Location": "/login"},
        )
    return context

# --- Endpoints ---

# Catalog
@app.get("/categories", response_model=SuccessResponse[List[dict]])
@limiter.limit("60/minute")
async def list_categories(request: Request, store: DataStore = Depends(get_datastore)):
    categories = await store.select(Collection.CATEGORIES, order="name.asc")
    return SuccessResponse(data=categories)

@app.get("/products", response_model=SuccessResponse[List[dict]])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    category_id: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=100),
    store: DataStore = Depends(get_datastore)
):
    query = Filter()
    if category_id:
        query.equals["category_id"] = category_id
    term = search_term(search)
    if term:
        query.search = term
        query.columns = ("name",)
    products = await store.select(Collection.PRODUCTS, query)
    return SuccessResponse(data=products)

@app.get("/products/{product_id}", response_model=SuccessResponse[dict])
@limiter.limit("60/minute")
async def get_product(product_id: str, request: Request, store: DataStore = Depends(get_datastore)):
    product = await store.get(Collection.PRODUCTS, product_id)
    return SuccessResponse(data=product)

# Cart
@app.get("/cart", response_model=SuccessResponse[CartResponse])
async def view_cart(cart: CartEngine = Depends(get_cart)):
    return SuccessResponse(data=cart_response(cart))

@app.post("/cart/items", response_model=SuccessResponse[CartResponse])
async def add_to_cart(
    item: CartItemAdd,
    cart: CartEngine = Depends(get_cart),
    store: DataStore = Depends(get_datastore)
):
    product = await store.get(Collection.PRODUCTS, item.product_id)
    line = CartLine(
        id=str(product["id"]),
        name=product["name"],
        price=int(product["price"]),
        discount=int(product.get("discount") or 0),
        quantity=item.quantity,
        duration=product.get("duration") or "",
    )
    await cart.add_line(line)
    return SuccessResponse(
        data=cart_response(cart),
        message=f"Added {item.quantity} {line.name} voucher(s) to cart"
    )

@app.put("/cart/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def update_cart_item(product_id: str, update: CartItemUpdate, cart: CartEngine = Depends(get_cart)):
    if cart.find(product_id) is None:
        raise NotFoundException("Item not found in cart")
    await cart.set_quantity(product_id, update.quantity)
    return SuccessResponse(data=cart_response(cart))

@app.delete("/cart/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def remove_cart_item(product_id: str, cart: CartEngine = Depends(get_cart)):
    await cart.remove_line(product_id)
    return SuccessResponse(data=cart_response(cart))

# Checkout
@app.post("/checkout", response_model=SuccessResponse[CartResponse])
async def begin_checkout(
    cart: CartEngine = Depends(get_cart),
    context: AuthContext = Depends(require_checkout_session)
):
    if not cart.lines:
        raise CartError()
    return SuccessResponse(data=cart_response(cart))

@app.get("/checkout/payment", response_model=SuccessResponse[PaymentSessionResponse])
async def get_payment_session(
    client_id: str = Depends(get_client_id),
    sessions: PaymentSessionRegistry = Depends(get_payment_sessions)
):
    return SuccessResponse(data=session_response(sessions.get(client_id)))

@app.post("/checkout/payment", response_model=SuccessResponse[PaymentSessionResponse])
@limiter.limit("10/minute")
async def submit_payment_form(
    request: Request,
    form: PaymentFormSubmit,
    cart: CartEngine = Depends(get_cart),
    context: AuthContext = Depends(require_checkout_session),
    client: PaymentClient = Depends(get_payment_client),
    sessions: PaymentSessionRegistry = Depends(get_payment_sessions)
):
    if not cart.lines:
        raise CartError()

    session = sessions.get_or_create(cart.client_id, lambda: PaymentSession(client))
    ok = await session.submit_form(cart.lines, context.user_id, context.access_token)
    if not ok:
        raise PaymentError(session.error)
    return SuccessResponse(data=session_response(session), message="QRIS payment code generated")

@app.post("/checkout/payment/cancel", response_model=SuccessResponse[PaymentSessionResponse])
async def cancel_payment(
    client_id: str = Depends(get_client_id),
    sessions: PaymentSessionRegistry = Depends(get_payment_sessions)
):
    session = sessions.get(client_id)
    if session is not None:
        session.cancel_to_form()
        sessions.discard(client_id)
    return SuccessResponse(data=session_response(session))

@app.post("/checkout/payment/confirm", response_model=SuccessResponse[OrderPlacedResponse])
async def confirm_payment(
    cart: CartEngine = Depends(get_cart),
    context: AuthContext = Depends(require_checkout_session),
    store: DataStore = Depends(get_datastore),
    sessions: PaymentSessionRegistry = Depends(get_payment_sessions)
):
    session = sessions.get(cart.client_id)
    if session is None:
        raise PaymentError("No pending payment to confirm")

    placed = {}

    async def place_order(payment_id: str):
        placed["order_id"] = await cart.place_order(payment_id, context, store)

    payment_id = await session.confirm_payment(place_order)
    sessions.discard(cart.client_id)
    return SuccessResponse(
        data=OrderPlacedResponse(order_id=placed["order_id"], payment_id=payment_id),
        message="Order placed successfully!"
    )

# Auth
@app.post("/auth/logout", response_model=SuccessResponse[dict])
async def logout(
    context: AuthContext = Depends(require_user),
    auth_client: AuthClient = Depends(get_auth_client)
):
    user_id = context.user_id
    await auth_client.sign_out(context)
    logger.info("User signed out", extra={"user_id": user_id})
    return SuccessResponse(message="Logged out successfully")

@app.get("/health", response_model=HealthResponse)
async def health_check():
    db_status = "unhealthy"
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service="storefront-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status
    )
