from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from uuid import UUID
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum

class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class CamelModel(BaseModel):
    # camelCase on the wire, snake_case accepted too; numeric ids become strings
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        coerce_numbers_to_str=True,
    )


class Product(CamelModel):
    id: str
    name: str
    price: Decimal


class OrderItemCreate(CamelModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)


class OrderCreate(CamelModel):
    items: List[OrderItemCreate] = Field(min_length=1)


class OrderPagination(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    status: Optional[OrderStatus] = None


class FindOneOrder(CamelModel):
    id: str


class StatusUpdate(CamelModel):
    status: OrderStatus


class ChangeOrderStatus(StatusUpdate):
    id: str


class OrderItemResponse(CamelModel):
    product_id: str
    quantity: int
    price: Decimal
    # Joined from the product service on read, never stored
    name: Optional[str] = None


class OrderSummary(CamelModel):
    id: UUID
    total_amount: Decimal
    total_items: int
    status: OrderStatus
    created_at: datetime
    updated_at: datetime


class OrderResponse(OrderSummary):
    items: List[OrderItemResponse]


class PageMeta(CamelModel):
    total: int
    page: int
    last_page: int


class PaginatedOrders(CamelModel):
    data: List[OrderSummary]
    meta: PageMeta
