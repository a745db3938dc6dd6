import json
import logging
from typing import Any, Awaitable, Callable, Dict

import aio_pika
from aio_pika.abc import AbstractIncomingMessage
from pydantic import BaseModel, ValidationError

from order_service.core.errors import InvalidRequestError, OrderServiceError
from order_service.core.models import (
    ChangeOrderStatus,
    FindOneOrder,
    OrderCreate,
    OrderPagination,
)
from order_service.service.orders import OrderService

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[BaseModel]]

class OrderRpcServer:
    """Serves order commands over a RabbitMQ request/reply queue.

    Requests look like ``{"cmd": "find_one_order", "data": {...}}``. Replies
    are ``{"data": ...}`` on success or ``{"error": {"status", "message",
    "kind"}}`` on failure, published to ``reply_to`` with the request's
    ``correlation_id``.
    """

    def __init__(self, service: OrderService, url: str, queue_name: str):
        self.service = service
        self.url = url
        self.queue_name = queue_name
        self.connection = None
        self.channel = None
        self.handlers: Dict[str, Handler] = {
            "create_order": self.create_order,
            "find_all_orders": self.find_all_orders,
            "find_one_order": self.find_one_order,
            "change_order_status": self.change_order_status,
        }

    async def connect(self):
        try:
            self.connection = await aio_pika.connect_robust(self.url)
            self.channel = await self.connection.channel()
            await self.channel.set_qos(prefetch_count=10)
            queue = await self.channel.declare_queue(self.queue_name, durable=True)
            await queue.consume(self.process_message)
            logger.info(f"Listening for order commands on '{self.queue_name}'...")
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ RPC server: {e}")
            self.connection = None

    async def close(self):
        if self.connection:
            await self.connection.close()
            self.connection = None

    async def process_message(self, message: AbstractIncomingMessage):
        async with message.process(requeue=False):
            try:
                request = json.loads(message.body)
                cmd, data = request.get("cmd"), request.get("data")
            except (ValueError, AttributeError):
                response = {"error": InvalidRequestError("Request body is not a JSON command").to_payload()}
            else:
                response = await self.dispatch(cmd, data)

            if not message.reply_to:
                logger.warning(f"Command without reply_to, dropping response (correlation id {message.correlation_id})")
                return

            await self.channel.default_exchange.publish(
                aio_pika.Message(
                    body=json.dumps(response, default=str).encode(),
                    content_type="application/json",
                    correlation_id=message.correlation_id,
                ),
                routing_key=message.reply_to,
            )

    async def dispatch(self, cmd: Any, data: Any) -> dict:
        handler = self.handlers.get(cmd) if isinstance(cmd, str) else None
        if handler is None:
            return {"error": InvalidRequestError(f"Unknown command: {cmd}").to_payload()}

        try:
            result = await handler(data)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'data'}: {err['msg']}"
                for err in e.errors()
            )
            return {"error": InvalidRequestError(f"Invalid payload for {cmd}: {details}").to_payload()}
        except OrderServiceError as e:
            logger.warning(f"Command {cmd} failed: {e.kind.value} {e.message}")
            return {"error": e.to_payload()}
        except Exception as e:
            logger.exception(f"Unhandled error while processing {cmd}")
            return {"error": OrderServiceError(str(e)).to_payload()}

        return {"data": result.model_dump(mode="json", by_alias=True)}

    async def create_order(self, data: Any):
        return await self.service.create(OrderCreate.model_validate(data))

    async def find_all_orders(self, data: Any):
        return await self.service.find_all(OrderPagination.model_validate(data or {}))

    async def find_one_order(self, data: Any):
        # Bare id is accepted as well as {"id": ...}
        if isinstance(data, str):
            data = {"id": data}
        query = FindOneOrder.model_validate(data)
        return await self.service.find_one(query.id)

    async def change_order_status(self, data: Any):
        return await self.service.change_status(ChangeOrderStatus.model_validate(data))
