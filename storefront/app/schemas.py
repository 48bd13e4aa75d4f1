from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime


# --- Pricing ---
class FinalPriceResponse(BaseModel):
    product_id: int
    quantity: int
    include_discounts: bool
    price: Decimal
    discount_amount: Decimal = Decimal("0")
    applied_discount_id: Optional[int] = None
    formatted: str


class LowestPriceResponse(BaseModel):
    product_id: int
    lowest_price: Optional[Decimal] = None
    display_from_message: bool = False
    # Grouped products: the associated product that has the lowest price
    lowest_price_product_id: Optional[int] = None
    formatted: Optional[str] = None


class BasePriceInfoResponse(BaseModel):
    product_id: int
    info: str


class CartLineTotals(BaseModel):
    cart_item_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    sub_total: Decimal
    discount_amount: Decimal
    applied_discount_id: Optional[int] = None
    weight: Decimal


class CartTotalsResponse(BaseModel):
    customer_id: int
    items: List[CartLineTotals]
    sub_total: Decimal
    discount_total: Decimal
    total_weight: Decimal


# --- Shipping ---
class ShippingMethodCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=400)
    description: Optional[str] = None
    display_order: int = 0
    fixed_rate: Decimal = Field(default=Decimal("0"), ge=0)
    limited_to_stores: bool = False
    store_ids: Optional[List[int]] = None


class ShippingMethodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    display_order: int
    fixed_rate: Decimal


class CartWeightResponse(BaseModel):
    customer_id: int
    total_weight: Decimal
    free_shipping: bool


class ShippingAddressBody(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    country_id: Optional[int] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    address1: Optional[str] = None


class ShippingOptionsRequest(BaseModel):
    shipping_address: Optional[ShippingAddressBody] = None
    computation_method_system_name: str = ""
    store_id: int = 0


class ShippingOptionResponse(BaseModel):
    name: str
    description: Optional[str] = None
    rate: Decimal
    shipping_method_id: Optional[int] = None
    shipping_rate_computation_method_system_name: Optional[str] = None


class ShippingOptionsResponse(BaseModel):
    success: bool
    shipping_options: List[ShippingOptionResponse]
    errors: List[str]


# --- Catalog ---
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=400)
    description: Optional[str] = None
    parent_category_id: Optional[int] = None
    display_order: int = 0
    published: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=400)
    description: Optional[str] = None
    parent_category_id: Optional[int] = None
    display_order: Optional[int] = None
    published: Optional[bool] = None


class CategoryMove(BaseModel):
    target_id: int
    position: str = Field(..., pattern="^(over|before|after)$")


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    parent_category_id: Optional[int] = None
    display_order: int
    published: bool
    has_discounts_applied: bool


class CategoryPathResponse(BaseModel):
    category_id: int
    path: str


class CategoryTreeNode(BaseModel):
    id: int
    name: str
    display_order: int
    published: bool
    children: List["CategoryTreeNode"] = []


# --- Reports ---
class BestsellerLine(BaseModel):
    product_id: int
    total_amount: Decimal
    total_quantity: int


class BestsellersResponse(BaseModel):
    sorting: str
    from_utc: Optional[datetime] = None
    to_utc: Optional[datetime] = None
    lines: List[BestsellerLine]
