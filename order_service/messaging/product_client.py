import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import aio_pika
from aio_pika.abc import AbstractIncomingMessage
from pydantic import ValidationError

from order_service.core.errors import ProductServiceError
from order_service.core.models import Product

logger = logging.getLogger(__name__)

class ProductRpcClient:
    """Request/reply client for the product service's RPC queue.

    Replies arrive on an exclusive callback queue and are matched to the
    waiting call by ``correlation_id``.
    """

    def __init__(self, url: str, queue_name: str, timeout: float = 10.0):
        self.url = url
        self.queue_name = queue_name
        self.timeout = timeout
        self.connection = None
        self.channel = None
        self.callback_queue = None
        self.futures: Dict[str, asyncio.Future] = {}

    async def connect(self):
        if not self.connection:
            try:
                self.connection = await aio_pika.connect_robust(self.url)
                self.channel = await self.connection.channel()
                self.callback_queue = await self.channel.declare_queue(exclusive=True)
                await self.callback_queue.consume(self.on_response, no_ack=True)
                logger.info(f"Connected to RabbitMQ for product RPC on '{self.queue_name}'.")
            except Exception as e:
                logger.error(f"Failed to connect to RabbitMQ product client: {e}")
                self.connection = None
                raise

    async def close(self):
        if self.connection:
            await self.connection.close()
            self.connection = None
        for future in self.futures.values():
            if not future.done():
                future.cancel()
        self.futures.clear()

    async def on_response(self, message: AbstractIncomingMessage):
        future = self.futures.pop(message.correlation_id, None)
        if future is None:
            logger.warning(f"Dropping reply with unknown correlation id {message.correlation_id}")
            return
        if not future.done():
            future.set_result(message.body)

    async def call(self, cmd: str, data: Any) -> Any:
        try:
            if not self.connection:
                await self.connect()
        except Exception as e:
            raise ProductServiceError(f"Product service unavailable: {e}") from e

        correlation_id = str(uuid.uuid4())
        future = asyncio.get_running_loop().create_future()
        self.futures[correlation_id] = future

        message = aio_pika.Message(
            body=json.dumps({"cmd": cmd, "data": data}).encode(),
            content_type="application/json",
            correlation_id=correlation_id,
            reply_to=self.callback_queue.name,
        )
        try:
            await self.channel.default_exchange.publish(message, routing_key=self.queue_name)
            body = await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProductServiceError(
                f"Product service did not answer '{cmd}' within {self.timeout}s"
            ) from e
        except aio_pika.exceptions.AMQPError as e:
            raise ProductServiceError(f"Product service unavailable: {e}") from e
        finally:
            self.futures.pop(correlation_id, None)

        try:
            reply = json.loads(body)
            error: Optional[dict] = reply.get("error")
            if error is not None:
                message = error.get("message") if isinstance(error, dict) else error
                raise ProductServiceError(str(message or error))
            return reply.get("data")
        except (ValueError, AttributeError) as e:
            raise ProductServiceError(f"Malformed reply from product service: {e}") from e

    async def validate_products(self, product_ids: List[str]) -> List[Product]:
        raw = await self.call("validate_products", product_ids)
        if not isinstance(raw, list):
            raise ProductServiceError(f"Malformed product data: expected a list, got {type(raw).__name__}")
        try:
            return [Product.model_validate(item) for item in raw]
        except ValidationError as e:
            raise ProductServiceError(f"Malformed product data: {e}") from e
