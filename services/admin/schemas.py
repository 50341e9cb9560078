from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Any, Dict
from shared.security_config import sanitize_input
from services.admin.fields import ROLES, Control, FieldType, FormField

ORDER_STATUSES = ("pending", "processing", "completed", "cancelled")
STATUS_PATTERN = "^(" + "|".join(ORDER_STATUSES) + ")$"
ROLE_PATTERN = "^(" + "|".join(ROLES) + ")$"

class TableInfo(BaseModel):
    id: str
    name: str

class RecordList(BaseModel):
    table: str
    columns: List[str]
    items: List[Dict[str, Any]]

class OptionResponse(BaseModel):
    value: str
    label: str

class FormFieldResponse(BaseModel):
    name: str
    label: str
    type: FieldType
    required: bool
    control: Control
    placeholder: str
    value: Any = None
    options: List[OptionResponse] = []

    @classmethod
    def from_field(cls, field: FormField) -> "FormFieldResponse":
        return cls(
            name=field.name,
            label=field.label,
            type=field.type,
            required=field.required,
            control=field.control,
            placeholder=field.placeholder,
            value=field.value,
            options=[OptionResponse(value=o.value, label=o.label) for o in field.options],
        )

class FormResponse(BaseModel):
    table: str
    is_editing: bool
    record_id: Optional[str] = None
    fields: List[FormFieldResponse]

class OrderStatusUpdate(BaseModel):
    status: str = Field(..., pattern=STATUS_PATTERN)

    @field_validator('status')
    def sanitize_status(cls, v):
        return sanitize_input(v)

class RoleUpdate(BaseModel):
    role: str = Field(..., pattern=ROLE_PATTERN)

    @field_validator('role')
    def sanitize_role(cls, v):
        return sanitize_input(v)

class DashboardResponse(BaseModel):
    products: int
    categories: int
    orders: int
    customers: int
    recent_orders: List[Dict[str, Any]]
