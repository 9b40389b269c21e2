"""
Order Service — イベント定義と発行

注文が commit された後に OrderPlaced を Redis Pub/Sub の
order_events チャネルへ発行する（他サービスへの通知）。
"""

import json
import logging
from datetime import datetime
from decimal import Decimal

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

from .models import Order

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


class OrderPlacedItem(BaseModel):
    product_id: str
    quantity: int
    price: Decimal


class OrderPlaced(BaseModel):
    """注文が確定した（在庫引き当て済み）"""
    order_id: str
    user_id: str
    total_price: Decimal
    status: str
    items: list[OrderPlacedItem]
    timestamp: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderPlaced":
        return cls(
            order_id=order.id,
            user_id=order.user_id,
            total_price=order.total_price,
            status=order.status,
            items=[
                OrderPlacedItem(product_id=i.product_id, quantity=i.quantity, price=i.price)
                for i in order.items
            ],
            timestamp=order.created_at,
        )


async def publish_order_placed(redis: aioredis.Redis | None, order: Order) -> None:
    """
    OrderPlaced を発行する。

    注文はすでに commit 済みなので、発行に失敗しても注文は失敗させない。
    Redis Pub/Sub は fire-and-forget。
    """
    if redis is None:
        return
    event = OrderPlaced.from_order(order)
    try:
        await redis.publish(ORDER_EVENTS_CHANNEL, json.dumps({
            "event_type": "OrderPlaced",
            "data": event.model_dump(),
        }, default=str))
    except RedisError:
        logger.exception("Failed to publish OrderPlaced for order %s", order.id)
