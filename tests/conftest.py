import pytest
from decimal import Decimal
from typing import AsyncGenerator, List

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from order_service.core.errors import ProductServiceError
from order_service.core.models import Product
from order_service.data.database import create_session_factory, init_models
from order_service.data.store import OrderStore
from order_service.service.orders import OrderService


class FakeProductCatalog:
    """In-memory stand-in for the product service RPC client."""

    def __init__(self, products: List[Product]):
        self.products = {product.id: product for product in products}
        self.calls: List[List[str]] = []
        self.available = True

    async def validate_products(self, product_ids: List[str]) -> List[Product]:
        self.calls.append(list(product_ids))
        if not self.available:
            raise ProductServiceError("Product service unavailable: connection refused")
        missing = [product_id for product_id in product_ids if product_id not in self.products]
        if missing:
            raise ProductServiceError(f"Products not found: {', '.join(missing)}")
        return [self.products[product_id] for product_id in product_ids]


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine: AsyncEngine) -> OrderStore:
    return OrderStore(create_session_factory(engine))


@pytest.fixture
def catalog() -> FakeProductCatalog:
    return FakeProductCatalog(
        [
            Product(id="p1", name="Mechanical keyboard", price=Decimal("10")),
            Product(id="p2", name="Mouse pad", price=Decimal("5")),
            Product(id="p3", name="USB hub", price=Decimal("12.50")),
        ]
    )


@pytest.fixture
def service(store: OrderStore, catalog: FakeProductCatalog) -> OrderService:
    return OrderService(store, catalog, max_page_limit=100)
