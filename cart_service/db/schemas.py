# cart_service/db/schemas.py
from datetime import datetime
from typing import Annotated, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator


def _as_id(value):
    # Product ids are strings; older clients send numbers
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


ProductId = Annotated[str, BeforeValidator(_as_id)]


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# Body of POST /cart and PATCH /cart
class CartLineRequest(CamelModel):
    product_id: ProductId = Field(alias="productId", min_length=1)
    quantity: int = 1


class CartDeleteRequest(CamelModel):
    product_id: Optional[ProductId] = Field(default=None, alias="productId")


class CartLineResponse(CamelModel):
    product_id: str = Field(alias="productId")
    quantity: int
    reserved_at: datetime = Field(alias="reservedAt")
    name: Optional[str] = None
    price: Optional[float] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    subtotal: Optional[float] = None


class CartResponse(CamelModel):
    lines: List[CartLineResponse] = []
    count: int = 0  # Total units, not distinct products
    total: float = 0.0


# A line of the guest cart kept by the client
class EphemeralCartLineSchema(CamelModel):
    id: ProductId
    quantity: int
    name: str = ""
    price: float = 0.0
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    size: Optional[str] = None
    added_at: Optional[int] = Field(default=None, alias="addedAt")


class MergeRequest(CamelModel):
    lines: List[EphemeralCartLineSchema] = []
    # Tells two guest carts with identical lines apart when addedAt is missing
    snapshot_id: Optional[str] = Field(default=None, alias="snapshotId")

    @model_validator(mode="after")
    def _identifiable_lines(self):
        if self.snapshot_id is None and any(line.added_at is None for line in self.lines):
            raise ValueError("Guest cart lines need addedAt, or the request a snapshotId")
        return self


class MergeRejectionResponse(CamelModel):
    product_id: str = Field(alias="productId")
    attempted: Union[int, float, str, None] = None
    available: int
    reason: str


class MergeResponse(CamelModel):
    lines: List[CartLineResponse] = []
    admitted: List[CartLineResponse] = []
    rejected: List[MergeRejectionResponse] = []
    duplicates: List[EphemeralCartLineSchema] = []
    mirror: List[EphemeralCartLineSchema] = []  # Always empty once merged


class StockResponse(CamelModel):
    product_id: str = Field(alias="productId")
    stock: int
    reserved: int
    available: int


class ExpectedItem(CamelModel):
    product_id: ProductId = Field(alias="productId", min_length=1)
    quantity: int


class PaymentVerifyRequest(CamelModel):
    gateway_order_id: Optional[str] = Field(default=None, alias="gatewayOrderId")
    gateway_payment_id: Optional[str] = Field(default=None, alias="gatewayPaymentId")
    signature: Optional[str] = None
    expected_items: List[ExpectedItem] = Field(default=[], alias="expectedItems")
    expected_total: float = Field(default=0.0, alias="expectedTotal")


class PaymentVerifyResponse(CamelModel):
    success: bool = True
    order_id: int = Field(alias="orderId")
    payment_id: str = Field(alias="paymentId")
    replayed: bool = False
