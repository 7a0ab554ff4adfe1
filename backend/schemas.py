"""
Request payload schemas

Each Pydantic model validates one JSON body. Fields are snake_case in Python
and camelCase on the wire (e.g. `order_items` <-> `orderItems`).
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from models import to_naive_utc


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Users / auth ----------

class SignupPayload(ApiModel):
    type: Literal["BUYER", "SELLER"] = "BUYER"
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginPayload(ApiModel):
    email: EmailStr
    password: str


class RefreshPayload(ApiModel):
    refresh_token: Optional[str] = None


class UpdateUserPayload(ApiModel):
    current_password: str
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    image: Optional[str] = None
    new_password: Optional[str] = Field(None, min_length=1)


# ---------- Stores ----------

class StorePayload(ApiModel):
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None


class StoreUpdatePayload(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, min_length=1)
    phone_number: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None


# ---------- Products ----------

class StockPayload(ApiModel):
    size: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)


class DiscountWindowPayload(ApiModel):
    """Discount times arrive naive or offset-aware and are stored as naive UTC."""

    discount_start_time: Optional[datetime] = None
    discount_end_time: Optional[datetime] = None

    @field_validator("discount_start_time", "discount_end_time", mode="after")
    @classmethod
    def to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def check_discount_window(self):
        start, end = self.discount_start_time, self.discount_end_time
        if start and end and start > end:
            raise ValueError("discountStartTime must not be after discountEndTime")
        return self


class ProductCreatePayload(DiscountWindowPayload):
    name: str = Field(..., min_length=1)
    price: int = Field(..., ge=0)
    content: Optional[str] = None
    image: Optional[str] = None
    discount_rate: int = Field(0, ge=0, le=100)
    category_name: str = Field(..., min_length=1)
    stocks: List[StockPayload] = Field(default_factory=list)


class ProductUpdatePayload(DiscountWindowPayload):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[int] = Field(None, ge=0)
    content: Optional[str] = None
    image: Optional[str] = None
    discount_rate: Optional[int] = Field(None, ge=0, le=100)
    category_name: Optional[str] = Field(None, min_length=1)
    stocks: Optional[List[StockPayload]] = None


# ---------- Cart ----------

class CartItemPayload(ApiModel):
    product_id: int
    size: str = Field(..., min_length=1)
    quantity: int = Field(1, gt=0)


class CartQuantityPayload(ApiModel):
    quantity: int = Field(..., gt=0)


# ---------- Orders ----------

class OrderItemPayload(ApiModel):
    product_id: int
    size: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class OrderCreatePayload(ApiModel):
    name: str = Field(..., min_length=1, description="Recipient name")
    phone: str = Field(..., min_length=1, description="Recipient phone")
    address: str = Field(..., min_length=1, description="Delivery address")
    order_items: List[OrderItemPayload] = Field(..., min_length=1)
    use_point: int = Field(0, ge=0)


class OrderUpdatePayload(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, min_length=1)


# ---------- Reviews ----------

class ReviewCreatePayload(ApiModel):
    rating: int = Field(..., ge=1, le=5)
    content: str = Field(..., min_length=1)
    order_item_id: int


class ReviewUpdatePayload(ApiModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    content: Optional[str] = Field(None, min_length=1)


# ---------- Inquiries ----------

class InquiryPayload(ApiModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    is_secret: bool = False


class InquiryUpdatePayload(ApiModel):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = Field(None, min_length=1)
    is_secret: Optional[bool] = None


class ReplyPayload(ApiModel):
    content: str = Field(..., min_length=1)
