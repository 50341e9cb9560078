from pydantic import BaseModel, Field
from typing import Optional, Any
from datetime import datetime

class PaymentRequest(BaseModel):
    items: Any = None
    user_id: Optional[str] = Field(None, alias="userId")

    class Config:
        populate_by_name = True

class PaymentResponse(BaseModel):
    success: bool = True
    payment_id: str = Field(..., alias="paymentId")
    total: int
    qris_url: str = Field(..., alias="qrisUrl")
    message: str
    timestamp: datetime

    class Config:
        populate_by_name = True
