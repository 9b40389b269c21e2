"""
Order Service — コマンドハンドラ (CQRS の Write 側)

HTTP 層から呼ばれる注文作成の境界。

1. 認証済みの購入者かを確認（Unauthorized / Forbidden）
2. 明細リストの形式を検証（ValidationFailed、エンジンは呼ばない）
3. 在庫引き当てエンジンを新しい作業単位で実行（commit 前のタイムアウトは Unavailable）
4. commit 後に OrderPlaced を Redis Pub/Sub で発行

失敗した注文の修復やリトライはしない。
"""

import logging

import redis.asyncio as aioredis
from pydantic import TypeAdapter, ValidationError

from . import config
from .errors import Forbidden, OrderError, Unauthorized, ValidationFailed
from .events import publish_order_placed
from .models import Buyer, Order, OrderLine
from .repositories import UnitOfWorkFactory
from .reservation import place_order

logger = logging.getLogger(__name__)

BUYER_ROLE = "User"

_lines_adapter = TypeAdapter(list[OrderLine])


def require_buyer(buyer: Buyer | None) -> Buyer:
    if buyer is None or not buyer.id:
        raise Unauthorized()
    return buyer


def parse_items(raw_items) -> list[OrderLine]:
    """生の明細リストを検証して OrderLine のリストに変換する。"""
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationFailed(["Items must be a non-empty array"])
    try:
        return _lines_adapter.validate_python(raw_items)
    except ValidationError as exc:
        raise ValidationFailed([_describe(err) for err in exc.errors()]) from None


def _describe(err: dict) -> str:
    loc = err["loc"]
    index = loc[0]
    field = loc[1] if len(loc) > 1 else None
    if field == "productId":
        return f"items[{index}].productId must be a valid UUID"
    if field == "quantity":
        return f"items[{index}].quantity must be a positive integer"
    return f"items[{index}] must be an object with productId and quantity"


async def create_order(
    uow_factory: UnitOfWorkFactory,
    buyer: Buyer | None,
    raw_items,
    redis: aioredis.Redis | None = None,
    timeout: float | None = None,
) -> Order:
    """
    注文作成コマンド

    成功すれば明細つきの Order を返し、失敗すれば OrderError を送出する。
    """
    buyer = require_buyer(buyer)
    if buyer.role != BUYER_ROLE:
        raise Forbidden()
    lines = parse_items(raw_items)

    if timeout is None:
        timeout = config.ORDER_TX_TIMEOUT_SECONDS

    try:
        order = await place_order(uow_factory(), buyer.id, lines, timeout=timeout)
    except OrderError as exc:
        logger.info("Order placement for %s rejected (%s): %s", buyer.id, exc.kind, exc.message)
        raise

    await publish_order_placed(redis, order)
    return order
