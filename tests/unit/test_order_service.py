import asyncio
import uuid
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from sqlalchemy.exc import OperationalError

from order_service.core.errors import (
    ErrorKind,
    OrderNotFoundError,
    PersistenceError,
    ProductValidationError,
)
from order_service.core.models import (
    ChangeOrderStatus,
    OrderCreate,
    OrderPagination,
    OrderStatus,
)
from order_service.service.orders import OrderService


def make_order(*items):
    return OrderCreate(
        items=[{"productId": product_id, "quantity": quantity} for product_id, quantity in items]
    )


@pytest.mark.asyncio
async def test_create_order_computes_totals_from_validated_prices(service, catalog):
    order = await service.create(make_order(("p1", 2), ("p2", 1)))

    assert order.total_amount == Decimal("25")
    assert order.total_items == 3
    assert order.status == OrderStatus.PENDING
    assert catalog.calls == [["p1", "p2"]]

    assert [(item.product_id, item.quantity, item.price, item.name) for item in order.items] == [
        ("p1", 2, Decimal("10"), "Mechanical keyboard"),
        ("p2", 1, Decimal("5"), "Mouse pad"),
    ]


@pytest.mark.asyncio
async def test_create_order_resolves_each_product_once(service, catalog):
    order = await service.create(make_order(("p3", 1), ("p3", 2), ("p1", 1)))

    assert catalog.calls == [["p3", "p1"]]
    assert order.total_amount == Decimal("47.50")
    assert order.total_items == 4
    assert len(order.items) == 3


@pytest.mark.asyncio
async def test_create_order_with_unknown_product_persists_nothing(service, store):
    with pytest.raises(ProductValidationError) as exc_info:
        await service.create(make_order(("p1", 1), ("missing", 1)))

    assert exc_info.value.kind == ErrorKind.VALIDATION_FAILED
    assert exc_info.value.status_code == 400
    assert "missing" in exc_info.value.message
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_create_order_when_product_service_unreachable(service, store, catalog):
    catalog.available = False

    with pytest.raises(ProductValidationError):
        await service.create(make_order(("p1", 1)))

    assert await store.count() == 0


@pytest.mark.asyncio
async def test_create_order_wraps_store_failures(service, store, monkeypatch):
    monkeypatch.setattr(
        store,
        "create",
        AsyncMock(side_effect=OperationalError("INSERT INTO orders", {}, Exception("disk I/O error"))),
    )

    with pytest.raises(PersistenceError) as exc_info:
        await service.create(make_order(("p1", 1)))

    assert exc_info.value.kind == ErrorKind.PERSISTENCE_ERROR
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_find_one_returns_items_with_current_names(service, catalog):
    created = await service.create(make_order(("p1", 2)))

    catalog.products["p1"] = catalog.products["p1"].model_copy(
        update={"name": "Keyboard v2", "price": Decimal("99")}
    )
    found = await service.find_one(str(created.id))

    assert found.id == created.id
    assert found.items[0].name == "Keyboard v2"
    # Price and totals are the snapshot taken at creation
    assert found.items[0].price == Decimal("10")
    assert found.total_amount == Decimal("20")
    assert len(catalog.calls) == 2


@pytest.mark.asyncio
async def test_find_one_missing_order(service):
    with pytest.raises(OrderNotFoundError) as exc_info:
        await service.find_one(str(uuid.uuid4()))

    assert exc_info.value.kind == ErrorKind.NOT_FOUND
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_find_one_malformed_id_is_not_found(service):
    with pytest.raises(OrderNotFoundError):
        await service.find_one("not-a-uuid")


@pytest.mark.asyncio
async def test_find_all_paginates_filtered_orders(service, store):
    for _ in range(25):
        order = await store.create(Decimal("5"), 1, [{"product_id": "p2", "quantity": 1, "price": Decimal("5")}])
        await store.update_status(order.id, OrderStatus.PAID)
    for _ in range(3):
        await store.create(Decimal("10"), 1, [{"product_id": "p1", "quantity": 1, "price": Decimal("10")}])

    first = await service.find_all(OrderPagination(page=1, limit=10, status=OrderStatus.PAID))
    assert len(first.data) == 10
    assert first.meta.total == 25
    assert first.meta.page == 1
    assert first.meta.last_page == 3
    assert all(order.status == OrderStatus.PAID for order in first.data)

    last = await service.find_all(OrderPagination(page=3, limit=10, status=OrderStatus.PAID))
    assert len(last.data) == 5

    everything = await service.find_all(OrderPagination(page=1, limit=10))
    assert everything.meta.total == 28


@pytest.mark.asyncio
async def test_find_all_caps_limit(store, catalog):
    service = OrderService(store, catalog, max_page_limit=5)
    for _ in range(7):
        await store.create(Decimal("10"), 1, [{"product_id": "p1", "quantity": 1, "price": Decimal("10")}])

    page = await service.find_all(OrderPagination(page=1, limit=500))

    assert len(page.data) == 5
    assert page.meta.total == 7
    assert page.meta.last_page == 2


@pytest.mark.asyncio
async def test_find_all_without_orders(service):
    page = await service.find_all(OrderPagination(page=1, limit=10, status=OrderStatus.CANCELLED))

    assert page.data == []
    assert page.meta.total == 0
    assert page.meta.last_page == 0


@pytest.mark.asyncio
async def test_change_status_updates_and_enriches(service):
    created = await service.create(make_order(("p1", 1), ("p2", 3)))

    changed = await service.change_status(ChangeOrderStatus(id=str(created.id), status=OrderStatus.PAID))

    assert changed.status == OrderStatus.PAID
    assert [item.name for item in changed.items] == ["Mechanical keyboard", "Mouse pad"]
    assert changed.total_amount == Decimal("25")

    reloaded = await service.find_one(str(created.id))
    assert reloaded.status == OrderStatus.PAID


@pytest.mark.asyncio
async def test_change_status_to_current_status_does_not_write(service, store, monkeypatch):
    created = await service.create(make_order(("p1", 1)))
    before = await service.find_one(str(created.id))

    update_status = AsyncMock(wraps=store.update_status)
    monkeypatch.setattr(store, "update_status", update_status)

    result = await service.change_status(ChangeOrderStatus(id=str(created.id), status=OrderStatus.PENDING))

    update_status.assert_not_called()
    assert result == before
    assert result.updated_at == before.updated_at


@pytest.mark.asyncio
async def test_change_status_missing_order(service, store, monkeypatch):
    update_status = AsyncMock(wraps=store.update_status)
    monkeypatch.setattr(store, "update_status", update_status)

    with pytest.raises(OrderNotFoundError):
        await service.change_status(ChangeOrderStatus(id=str(uuid.uuid4()), status=OrderStatus.DELIVERED))

    update_status.assert_not_called()


def as_utc_naive(value):
    # SQLite hands timestamps back without tzinfo; all stored values are UTC
    return value.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_change_status_bumps_updated_at(service):
    created = await service.create(make_order(("p1", 1)))
    before = await service.find_one(str(created.id))
    await asyncio.sleep(0.01)

    changed = await service.change_status(ChangeOrderStatus(id=str(created.id), status=OrderStatus.CANCELLED))

    assert as_utc_naive(changed.updated_at) > as_utc_naive(before.updated_at)
    assert as_utc_naive(changed.updated_at) > as_utc_naive(created.updated_at)
    assert changed.created_at == before.created_at

    reloaded = await service.find_one(str(created.id))
    assert as_utc_naive(reloaded.updated_at) == as_utc_naive(changed.updated_at)


@pytest.mark.asyncio
async def test_create_order_with_numeric_product_ids(service, catalog):
    catalog.products["1"] = catalog.products["p1"].model_copy(update={"id": "1"})
    catalog.products["2"] = catalog.products["p2"].model_copy(update={"id": "2"})

    order = await service.create(
        OrderCreate.model_validate({"items": [{"productId": 1, "quantity": 2}, {"productId": 2, "quantity": 1}]})
    )

    assert catalog.calls[-1] == ["1", "2"]
    assert [item.product_id for item in order.items] == ["1", "2"]
    assert order.total_amount == Decimal("25")
