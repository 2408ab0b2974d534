# module commerce.orders.models
"""
Types du domaine commandes: énumérations d'états et corps de requêtes.
Les lignes en base restent des dict (comme renvoyés par PostgREST);
seuls les payloads entrants sont typés avec pydantic.
"""
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELED = "canceled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class DispatchStatus(str, Enum):
    NOT_STARTED = "not_started"
    PREPARING = "preparing"
    DISPATCHED = "dispatched"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"


class PaymentMode(str, Enum):
    CARD = "card"
    COD = "cod"
    UPI = "upi"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class ReturnStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OrderItemIn(_CamelModel):
    product_id: str = Field(alias="productId")
    vendor_id: str = Field(alias="vendorId")
    listing_id: str = Field(alias="listingId")
    quantity: int
    price: Decimal


class PlaceOrderRequest(_CamelModel):
    items: List[OrderItemIn] = Field(default_factory=list)
    total_amount: Decimal = Field(alias="totalAmount")
    shipping_address_id: str = Field(alias="shippingAddressId")
    payment_mode: str = Field(alias="paymentMode")


class UpdateStatusRequest(_CamelModel):
    status: str


class UpdateDispatchRequest(_CamelModel):
    dispatch_status: str = Field(alias="dispatchStatus")


class ReturnRequestIn(_CamelModel):
    reason: str = Field(min_length=1, max_length=1000)


class ReviewReturnRequest(_CamelModel):
    approve: bool


class AddressIn(_CamelModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=4)
    country: str = "US"
    state: str = ""
    city: str = Field(min_length=1)
    pin_code: str = Field(alias="pinCode", min_length=1)
    address_line1: str = Field(alias="addressLine1", min_length=1)
    address_line2: Optional[str] = Field(default=None, alias="addressLine2")
    address_type: str = Field(default="home", alias="addressType")
    is_default: bool = Field(default=False, alias="isDefault")


class AddressUpdate(_CamelModel):
    """Édition partielle: seuls les champs envoyés sont modifiés."""
    name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = Field(default=None, min_length=4)
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = Field(default=None, min_length=1)
    pin_code: Optional[str] = Field(default=None, alias="pinCode", min_length=1)
    address_line1: Optional[str] = Field(default=None, alias="addressLine1", min_length=1)
    address_line2: Optional[str] = Field(default=None, alias="addressLine2")
    address_type: Optional[str] = Field(default=None, alias="addressType")
    is_default: Optional[bool] = Field(default=None, alias="isDefault")


class CancelResult(BaseModel):
    """Résultat d'une annulation: refus explicite (success=False) sans exception."""
    success: bool
    message: str
    order: Optional[dict] = None
