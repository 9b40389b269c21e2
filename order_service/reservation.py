"""
Order Service — 在庫引き当てエンジン

注文確定の中核。以下を 1 つのトランザクションで実行する:

    1. 要求された商品 ID（重複除去）をトランザクション内で取得
    2. 存在しない商品があれば ProductNotFound（欠けている ID をすべて列挙）
    3. 商品ごとの合計要求数と在庫を比較し、不足なら InsufficientStock
    4. トランザクション内で観測した現在価格で合計金額を計算
    5. 条件付き減算 → 注文作成 → 明細作成
    6. commit（途中の失敗はすべてロールバック。期限は手順 5 までに掛ける）
    7. 明細と商品情報つきの注文を返す

手順 3 の判定は早期に分かりやすいエラーを返すためのもの。
在庫の正しさを保証するのは手順 5 の条件付き減算で、0 行更新なら
並行する注文に先を越されたので InsufficientStock として中断する。
リトライはしない（呼び出し側の判断）。
"""

import asyncio
import logging
from collections import Counter
from decimal import Decimal
from uuid import UUID

from .errors import InsufficientStock, ProductNotFound, Unavailable, ValidationFailed
from .models import Order, OrderLine, OrderStatus
from .repositories import UnitOfWork

logger = logging.getLogger(__name__)


def _check_lines(lines: list[OrderLine]) -> None:
    """呼び出し側で検証済みでも、売り越し防止の最後の砦として再検証する。"""
    if not lines:
        raise ValidationFailed(["Items must be a non-empty array"])
    errors = []
    for index, line in enumerate(lines):
        if not isinstance(line.product_id, UUID):
            errors.append(f"items[{index}].productId must be a valid UUID")
        quantity = line.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            errors.append(f"items[{index}].quantity must be a positive integer")
    if errors:
        raise ValidationFailed(errors)


async def place_order(
    uow: UnitOfWork, buyer_id: str, lines: list[OrderLine], timeout: float | None = None
) -> Order:
    """
    注文を確定して明細つきの Order を返す。

    timeout は手順 1〜5 にだけ掛かる。期限切れは commit 前なので
    ロールバックして Unavailable（再試行して安全）。commit 自体には
    期限を掛けない（結果が不明な commit を Unavailable にしない）。
    """
    _check_lines(lines)

    requested_ids = [str(line.product_id) for line in lines]
    # 重複行は同じ在庫プールから合算して引き当てる
    demand = Counter()
    for product_id, line in zip(requested_ids, lines):
        demand[product_id] += line.quantity

    async with uow:
        try:
            order = await asyncio.wait_for(
                _reserve(uow, buyer_id, lines, requested_ids, demand), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Order placement for %s timed out after %ss", buyer_id, timeout)
            raise Unavailable() from None

        # ── Step 6: commit ──────────────────────────
        await uow.commit()

    logger.info(
        "Order %s placed by %s: %d item(s), total=%s",
        order.id,
        buyer_id,
        len(order.items),
        order.total_price,
    )
    return order


async def _reserve(
    uow: UnitOfWork,
    buyer_id: str,
    lines: list[OrderLine],
    requested_ids: list[str],
    demand: Counter,
) -> Order:
    # ── Step 1: トランザクション内で商品を取得 ─────
    products = {p.id: p for p in await uow.products.fetch_by_ids(list(demand))}

    # ── Step 2: 存在確認 ────────────────────────
    missing = [product_id for product_id in demand if product_id not in products]
    if missing:
        raise ProductNotFound(missing)

    # ── Step 3: 在庫確認（早期判定） ─────────────
    for product_id, quantity in demand.items():
        product = products[product_id]
        if product.stock < quantity:
            raise InsufficientStock(product.id, product.name, product.stock, quantity)

    # ── Step 4: 合計金額 ────────────────────────
    total_price = Decimal("0")
    for product_id, line in zip(requested_ids, lines):
        total_price += products[product_id].price * line.quantity

    # ── Step 5: 条件付き減算（ID 昇順でロック順序を固定） ──
    for product_id in sorted(demand):
        quantity = demand[product_id]
        if not await uow.products.conditional_decrement(product_id, quantity):
            raise await _lost_race(uow, products[product_id].name, product_id, quantity)

    order_id = await uow.orders.create(buyer_id, total_price, OrderStatus.PENDING)
    for product_id, line in zip(requested_ids, lines):
        await uow.order_items.create(
            order_id, product_id, line.quantity, products[product_id].price
        )

    return await uow.orders.fetch_with_items(order_id)


async def _lost_race(uow: UnitOfWork, name: str, product_id: str, quantity: int) -> InsufficientStock:
    """条件付き減算が 0 行だった場合、現在の在庫を読み直してエラーを組み立てる。"""
    current = await uow.products.fetch_by_ids([product_id])
    available = current[0].stock if current else 0
    logger.info(
        "Conditional decrement rejected for %s (requested=%d, available=%d)",
        product_id,
        quantity,
        available,
    )
    return InsufficientStock(product_id, name, available, quantity)
