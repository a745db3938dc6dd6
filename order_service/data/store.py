import logging
import uuid
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select
from sqlalchemy.orm import raiseload

from order_service.core.models import OrderStatus
from order_service.data.models import Order, OrderItem

logger = logging.getLogger(__name__)

class OrderStore:
    """Relational persistence for orders and their line items.

    Each call opens its own session; SQLAlchemy errors propagate to the caller.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        total_amount: Decimal,
        total_items: int,
        items: List[dict],
    ) -> Order:
        order = Order(
            total_amount=total_amount,
            total_items=total_items,
            status=OrderStatus.PENDING.value,
            items=[
                OrderItem(
                    position=position,
                    product_id=item["product_id"],
                    quantity=item["quantity"],
                    price=item["price"],
                )
                for position, item in enumerate(items)
            ],
        )
        # Order and items commit or roll back together
        async with self.session_factory() as session:
            async with session.begin():
                session.add(order)
        logger.debug(f"Inserted order {order.id} with {len(items)} items")
        return order

    async def count(self, status: Optional[OrderStatus] = None) -> int:
        stmt = select(func.count()).select_from(Order)
        if status is not None:
            stmt = stmt.where(Order.status == status.value)
        async with self.session_factory() as session:
            return await session.scalar(stmt)

    async def find_many(
        self,
        offset: int,
        limit: int,
        status: Optional[OrderStatus] = None,
    ) -> List[Order]:
        stmt = (
            select(Order)
            .options(raiseload(Order.items))
            .order_by(Order.created_at.desc(), Order.id)
            .offset(offset)
            .limit(limit)
        )
        if status is not None:
            stmt = stmt.where(Order.status == status.value)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        async with self.session_factory() as session:
            return await session.get(Order, order_id)

    async def update_status(self, order_id: uuid.UUID, status: OrderStatus) -> Optional[Order]:
        async with self.session_factory() as session:
            async with session.begin():
                order = await session.get(Order, order_id)
                if order is None:
                    return None
                order.status = status.value
        return order
