import logging
import math
import uuid
from decimal import Decimal
from typing import Dict, Iterable, List, Protocol

from sqlalchemy.exc import SQLAlchemyError

from order_service.core.errors import (
    OrderNotFoundError,
    PersistenceError,
    ProductServiceError,
    ProductValidationError,
)
from order_service.core.models import (
    ChangeOrderStatus,
    OrderCreate,
    OrderPagination,
    OrderResponse,
    OrderStatus,
    OrderSummary,
    PageMeta,
    PaginatedOrders,
    Product,
)
from order_service.data.models import Order
from order_service.data.store import OrderStore

logger = logging.getLogger(__name__)

class ProductCatalog(Protocol):
    async def validate_products(self, product_ids: List[str]) -> List[Product]:
        ...


class OrderService:
    """Order lifecycle: creation, listing, lookup and status changes.

    Store failures surface as ``PersistenceError``; product lookups that fail
    for any reason surface as ``ProductValidationError``.
    """

    def __init__(self, store: OrderStore, products: ProductCatalog, max_page_limit: int = 100):
        self.store = store
        self.products = products
        self.max_page_limit = max_page_limit

    async def create(self, order_in: OrderCreate) -> OrderResponse:
        products = await self._resolve_products(item.product_id for item in order_in.items)

        total_amount = sum(
            (products[item.product_id].price * item.quantity for item in order_in.items),
            Decimal("0"),
        )
        total_items = sum(item.quantity for item in order_in.items)

        try:
            order = await self.store.create(
                total_amount=total_amount,
                total_items=total_items,
                items=[
                    {
                        "product_id": item.product_id,
                        "quantity": item.quantity,
                        # Snapshot, later price changes don't touch this order
                        "price": products[item.product_id].price,
                    }
                    for item in order_in.items
                ],
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist order: {e}")
            raise PersistenceError(f"Could not create order: {e}") from e

        logger.info(f"Created order {order.id} ({total_items} items, total {total_amount})")
        return self._enrich(order, products)

    async def find_all(self, pagination: OrderPagination) -> PaginatedOrders:
        limit = min(pagination.limit, self.max_page_limit)
        offset = (pagination.page - 1) * limit
        try:
            total = await self.store.count(pagination.status)
            orders = await self.store.find_many(offset, limit, pagination.status)
        except SQLAlchemyError as e:
            logger.error(f"Failed to list orders: {e}")
            raise PersistenceError(f"Could not list orders: {e}") from e

        return PaginatedOrders(
            data=[OrderSummary.model_validate(order) for order in orders],
            meta=PageMeta(
                total=total,
                page=pagination.page,
                last_page=math.ceil(total / limit),
            ),
        )

    async def find_one(self, order_id: str) -> OrderResponse:
        order = await self._load(order_id)
        products = await self._resolve_products(item.product_id for item in order.items)
        return self._enrich(order, products)

    async def change_status(self, change: ChangeOrderStatus) -> OrderResponse:
        order = await self.find_one(change.id)
        if order.status == change.status:
            return order

        try:
            updated = await self.store.update_status(order.id, change.status)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update status of order {order.id}: {e}")
            raise PersistenceError(f"Could not update order {order.id}: {e}") from e
        if updated is None:
            raise OrderNotFoundError(change.id)

        logger.info(f"Order {order.id} status {order.status.value} -> {updated.status}")
        return order.model_copy(
            update={
                "status": OrderStatus(updated.status),
                "updated_at": updated.updated_at,
            }
        )

    async def _load(self, order_id: str) -> Order:
        try:
            key = uuid.UUID(str(order_id))
        except ValueError:
            raise OrderNotFoundError(order_id)

        try:
            order = await self.store.find_by_id(key)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load order {order_id}: {e}")
            raise PersistenceError(f"Could not load order {order_id}: {e}") from e
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _resolve_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        distinct_ids = list(dict.fromkeys(product_ids))
        if not distinct_ids:
            return {}

        try:
            products = await self.products.validate_products(distinct_ids)
        except ProductServiceError as e:
            logger.warning(f"Product validation failed for {distinct_ids}: {e}")
            raise ProductValidationError(str(e)) from e

        by_id = {product.id: product for product in products}
        missing = [product_id for product_id in distinct_ids if product_id not in by_id]
        if missing:
            raise ProductValidationError(f"Products not found: {', '.join(missing)}")
        return by_id

    def _enrich(self, order: Order, products: Dict[str, Product]) -> OrderResponse:
        response = OrderResponse.model_validate(order)
        response.items = [
            item.model_copy(update={"name": products[item.product_id].name})
            for item in response.items
        ]
        return response
