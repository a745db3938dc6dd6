from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from typing import Optional

from order_service.core.models import (
    ChangeOrderStatus,
    OrderCreate,
    OrderPagination,
    OrderResponse,
    OrderStatus,
    PaginatedOrders,
    StatusUpdate,
)
from order_service.limits.redis_client import RedisRateLimiter
from order_service.service.orders import OrderService

router = APIRouter(prefix="/api/orders", tags=["orders"])

def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service

def get_rate_limiter(request: Request) -> RedisRateLimiter:
    return request.app.state.rate_limiter

@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: Request,
    order_in: OrderCreate,
    service: OrderService = Depends(get_order_service),
    rate_limiter: RedisRateLimiter = Depends(get_rate_limiter),
):
    client_ip = request.client.host if request.client else "unknown"
    allowed = await rate_limiter.check_rate_limit(client_ip)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests"
        )

    return await service.create(order_in)

@router.get("/", response_model=PaginatedOrders)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    service: OrderService = Depends(get_order_service),
):
    return await service.find_all(
        OrderPagination(page=page, limit=limit, status=status_filter)
    )

@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    service: OrderService = Depends(get_order_service),
):
    return await service.find_one(order_id)

@router.patch("/{order_id}/status", response_model=OrderResponse)
async def change_order_status(
    order_id: str,
    update: StatusUpdate,
    service: OrderService = Depends(get_order_service),
):
    return await service.change_status(
        ChangeOrderStatus(id=order_id, status=update.status)
    )
