from fastapi import FastAPI, Depends, Query, Request, Body
from datetime import datetime
from typing import Optional, List, Any, Dict

from shared.auth import AuthContext
from shared.datastore import Collection, DataStore, Filter, require_collection, search_term
from shared.dependencies import setup_service, get_datastore, require_admin
from shared.logging_config import setup_logging
from shared.security_config import limiter
from shared.utils import SuccessResponse, HealthResponse

from services.admin.forms import CrudForm, SubmissionRegistry
from services.admin.schemas import (
    TableInfo, RecordList, FormResponse, FormFieldResponse,
    OrderStatusUpdate, RoleUpdate, DashboardResponse
)

# Setup Logging
logger = setup_logging("admin-service")

app = FastAPI(title="Admin Service")
setup_service(app, "admin-service")
app.state.submissions = SubmissionRegistry()

AVAILABLE_TABLES = [
    TableInfo(id=Collection.PRODUCTS.value, name="Products"),
    TableInfo(id=Collection.CATEGORIES.value, name="Categories"),
    TableInfo(id=Collection.PROFILES.value, name="User Profiles"),
    TableInfo(id=Collection.ORDERS.value, name="Orders"),
]

SEARCH_COLUMNS = {
    Collection.PRODUCTS: ("name",),
    Collection.CATEGORIES: ("name",),
    Collection.PROFILES: ("first_name", "last_name"),
}

HIDDEN_COLUMNS = ("created_at", "updated_at")

ORDERS_WITH_CUSTOMER = "*,profiles(first_name,last_name)"

# --- Helper ---
def get_submissions(request: Request) -> SubmissionRegistry:
    return request.app.state.submissions

def search_filter(collection: Collection, search: Optional[str]) -> Optional[Filter]:
    columns = SEARCH_COLUMNS.get(collection)
    term = search_term(search)
    if not term or not columns:
        return None
    return Filter(search=term, columns=columns)

def column_names(items: List[dict]) -> List[str]:
    if not items:
        return []
    return [key for key in items[0].keys() if key not in HIDDEN_COLUMNS]

# --- Endpoints ---

@app.get("/admin/dashboard", response_model=SuccessResponse[DashboardResponse])
async def dashboard(
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore)
):
    recent = await store.select(
        Collection.ORDERS, columns=ORDERS_WITH_CUSTOMER, order="created_at.desc", limit=5
    )
    return SuccessResponse(data=DashboardResponse(
        products=await store.count(Collection.PRODUCTS),
        categories=await store.count(Collection.CATEGORIES),
        orders=await store.count(Collection.ORDERS),
        customers=await store.count(Collection.PROFILES, Filter(equals={"role": "customer"})),
        recent_orders=recent,
    ))

# Orders
@app.get("/admin/orders", response_model=SuccessResponse[List[dict]])
async def list_orders(
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore)
):
    orders = await store.select(Collection.ORDERS, columns=ORDERS_WITH_CUSTOMER, order="created_at.desc")
    return SuccessResponse(data=orders)

@app.get("/admin/orders/{order_id}/items", response_model=SuccessResponse[List[dict]])
async def list_order_items(
    order_id: str,
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore)
):
    items = await store.select(
        Collection.ORDER_ITEMS,
        Filter(equals={"order_id": order_id}),
        columns="*,products(name)",
    )
    return SuccessResponse(data=items)

@app.put("/admin/orders/{order_id}/status", response_model=SuccessResponse[dict])
async def update_order_status(
    order_id: str,
    status_update: OrderStatusUpdate,
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore)
):
    await store.update(Collection.ORDERS, order_id, {"status": status_update.status})
    logger.info("Order status updated", extra={"order_id": order_id, "user_id": admin.user_id})
    return SuccessResponse(
        data={"id": order_id, "status": status_update.status},
        message="The order status has been successfully updated."
    )

# Customers
@app.get("/admin/customers", response_model=SuccessResponse[List[dict]])
async def list_customers(
    search: Optional[str] = Query(None, max_length=100),
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore)
):
    customers = await store.select(
        Collection.PROFILES, search_filter(Collection.PROFILES, search), order="created_at.desc"
    )
    return SuccessResponse(data=customers)

@app.put("/admin/customers/{user_id}/role", response_model=SuccessResponse[dict])
async def update_customer_role(
    user_id: str,
    role_update: RoleUpdate,
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore)
):
    await store.update(Collection.PROFILES, user_id, {"role": role_update.role})
    return SuccessResponse(
        data={"id": user_id, "role": role_update.role},
        message=f'User role has been set to "{role_update.role}".'
    )

# Generic table manager
@app.get("/admin/tables", response_model=SuccessResponse[List[TableInfo]])
async def list_tables(admin: AuthContext = Depends(require_admin)):
    return SuccessResponse(data=AVAILABLE_TABLES)

@app.get("/admin/tables/{table}", response_model=SuccessResponse[RecordList])
@limiter.limit("60/minute")
async def list_records(
    table: str,
    request: Request,
    search: Optional[str] = Query(None, max_length=100),
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore)
):
    collection = require_collection(table)
    items = await store.select(collection, search_filter(collection, search))
    return SuccessResponse(data=RecordList(table=collection.value, columns=column_names(items), items=items))

@app.get("/admin/tables/{table}/form", response_model=SuccessResponse[FormResponse])
async def get_form(
    table: str,
    record_id: Optional[str] = None,
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore)
):
    collection = require_collection(table)
    record = await store.get(collection, record_id) if record_id else None
    form = CrudForm(collection.value, initial_data=record, is_editing=record is not None)
    fields = await form.render(store)
    return SuccessResponse(data=FormResponse(
        table=collection.value,
        is_editing=form.is_editing,
        record_id=record_id,
        fields=[FormFieldResponse.from_field(f) for f in fields],
    ))

@app.post("/admin/tables/{table}", response_model=SuccessResponse[dict])
@limiter.limit("60/minute")
async def create_record(
    table: str,
    request: Request,
    values: Dict[str, Any] = Body(...),
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore),
    submissions: SubmissionRegistry = Depends(get_submissions)
):
    form = CrudForm(table, submissions=submissions, owner=admin.user_id)
    record = await form.submit(values, store)
    return SuccessResponse(data=record, message="Record created successfully")

@app.put("/admin/tables/{table}/{record_id}", response_model=SuccessResponse[dict])
@limiter.limit("60/minute")
async def update_record(
    table: str,
    record_id: str,
    request: Request,
    values: Dict[str, Any] = Body(...),
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore),
    submissions: SubmissionRegistry = Depends(get_submissions)
):
    collection = require_collection(table)
    existing = await store.get(collection, record_id)
    form = CrudForm(
        collection.value, initial_data=existing, is_editing=True,
        submissions=submissions, owner=admin.user_id,
    )
    record = await form.submit(values, store)
    return SuccessResponse(data=record, message="Record updated successfully")

@app.delete("/admin/tables/{table}/{record_id}", response_model=SuccessResponse[dict])
async def delete_record(
    table: str,
    record_id: str,
    admin: AuthContext = Depends(require_admin),
    store: DataStore = Depends(get_datastore),
    submissions: SubmissionRegistry = Depends(get_submissions)
):
    collection = require_collection(table)
    with submissions.claim((collection.value, record_id)):
        await store.delete(collection, record_id)
    logger.info("Record deleted", extra={"collection": collection.value, "record_id": record_id})
    return SuccessResponse(data={"id": record_id}, message="Item successfully deleted")

@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(
        service="admin-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0"
    )
