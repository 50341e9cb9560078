from pydantic import BaseModel, Field
from typing import Optional, List
from services.storefront.models import CartLine, PaymentStep

class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)

class CartItemUpdate(BaseModel):
    # Values below 1 are accepted and ignored by the cart
    quantity: int

class CartItemResponse(BaseModel):
    id: str
    name: str
    price: int
    discount: int
    quantity: int
    duration: str
    unit_price: int
    subtotal: int

    @classmethod
    def from_line(cls, line: CartLine) -> "CartItemResponse":
        return cls(
            **line.model_dump(),
            unit_price=line.effective_price,
            subtotal=line.subtotal,
        )

class CartResponse(BaseModel):
    items: List[CartItemResponse]
    total: int

    @classmethod
    def from_lines(cls, lines: List[CartLine], total: int) -> "CartResponse":
        return cls(items=[CartItemResponse.from_line(line) for line in lines], total=total)

class PaymentFormSubmit(BaseModel):
    # Collected by the checkout form; never forwarded to the payment function
    card_name: Optional[str] = None
    card_number: Optional[str] = None
    expiry: Optional[str] = None
    cvc: Optional[str] = None

class PaymentSessionResponse(BaseModel):
    step: PaymentStep
    payment_id: str = ""
    qris_image: str = ""
    error: Optional[str] = None
    processing: bool = False

class OrderPlacedResponse(BaseModel):
    order_id: str
    payment_id: str

