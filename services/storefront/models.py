from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, TypeAdapter

class CartLine(BaseModel):
    id: str  # voucher product id
    name: str
    price: int = Field(..., ge=0)  # IDR, no subunits
    discount: int = Field(0, ge=0, le=100)
    quantity: int = Field(1, ge=1)
    duration: str = ""

    @property
    def effective_price(self) -> int:
        return effective_unit_price(self.price, self.discount)

    @property
    def subtotal(self) -> int:
        return self.effective_price * self.quantity

CartSnapshot = TypeAdapter(List[CartLine])

def effective_unit_price(price: int, discount: Optional[int]) -> int:
    """Price after the percent discount, rounded half-up to a whole rupiah."""
    if not discount or discount <= 0:
        return price
    discounted = Decimal(price) * (Decimal(100) - Decimal(discount)) / Decimal(100)
    return int(discounted.quantize(Decimal(1), rounding=ROUND_HALF_UP))

class PaymentStep(str, Enum):
    FORM = "form"
    QRIS_PENDING = "qris"

class PaymentInitiation(BaseModel):
    """Response of the payment initiation function."""
    success: bool
    payment_id: Optional[str] = Field(None, alias="paymentId")
    qris_url: Optional[str] = Field(None, alias="qrisUrl")
    total: Optional[float] = None
    message: Optional[str] = None

    class Config:
        populate_by_name = True
