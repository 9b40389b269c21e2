"""
Order Service — クエリハンドラ (CQRS の Read 側)

購入者自身の注文一覧を新しい順に返す。明細は展開しない。
"""

from .commands import require_buyer
from .models import Buyer, OrderSummary
from .repositories import UnitOfWorkFactory


async def list_orders(uow_factory: UnitOfWorkFactory, buyer: Buyer | None) -> list[OrderSummary]:
    buyer = require_buyer(buyer)
    async with uow_factory() as uow:
        return await uow.orders.list_for_buyer(buyer.id)
