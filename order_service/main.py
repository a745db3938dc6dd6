from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from order_service.api.routes import router
from order_service.core.config import Settings, get_settings
from order_service.core.errors import OrderServiceError
from order_service.data.database import create_engine, create_session_factory, init_models
from order_service.data.store import OrderStore
from order_service.limits.redis_client import RedisRateLimiter
from order_service.messaging.product_client import ProductRpcClient
from order_service.messaging.rpc_server import OrderRpcServer
from order_service.service.orders import OrderService
import logging

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings

    # Startup
    logger.info("Starting up...")

    engine = create_engine(settings)
    await init_models(engine)

    products = ProductRpcClient(
        settings.RABBITMQ_URL,
        settings.PRODUCTS_RPC_QUEUE,
        timeout=settings.PRODUCT_RPC_TIMEOUT_SECONDS,
    )
    service = OrderService(
        OrderStore(create_session_factory(engine)),
        products,
        max_page_limit=settings.MAX_PAGE_LIMIT,
    )
    rate_limiter = RedisRateLimiter(
        settings.REDIS_URL,
        limit=settings.API_RATE_LIMIT_REQUESTS,
        window=settings.API_RATE_LIMIT_WINDOW_SECONDS,
        enabled=settings.API_RATE_LIMIT_ENABLED,
    )
    rpc_server = OrderRpcServer(service, settings.RABBITMQ_URL, settings.ORDERS_RPC_QUEUE)

    app.state.order_service = service
    app.state.rate_limiter = rate_limiter

    if settings.RPC_ENABLED:
        try:
            await products.connect()
        except Exception:
            logger.warning("Product service client not connected, will retry on first call.")
        await rpc_server.connect()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await rpc_server.close()
    await products.close()
    await rate_limiter.close()
    await engine.dispose()

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    app = FastAPI(title="Order Service", lifespan=lifespan)
    app.state.settings = settings

    @app.exception_handler(OrderServiceError)
    async def order_service_exception_handler(request: Request, exc: OrderServiceError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc.kind.value} {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Global exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"message": str(exc)},
        )

    app.include_router(router)

    @app.get("/")
    async def root():
        return {"message": "Order Service is running"}

    return app

app = create_app()

def run():
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT, log_level=settings.LOG_LEVEL.lower())

if __name__ == "__main__":
    run()
