"""
Order Service — リポジトリ契約

エンティティごとに 1 つのリポジトリ（Products / Orders / OrderItems）。
すべて UnitOfWork が開いた同一トランザクションの中で動作する。

    async with uow_factory() as uow:
        products = await uow.products.fetch_by_ids(ids)
        ...
        await uow.commit()

commit せずにブロックを抜けた場合（例外を含む）はロールバックされる。
"""

from decimal import Decimal
from typing import Callable, Protocol

from .models import Order, OrderSummary, Product


class ProductRepository(Protocol):
    async def fetch_by_ids(self, ids: list[str]) -> list[Product]:
        """トランザクション内で現在の商品行を取得する。"""
        ...

    async def conditional_decrement(self, product_id: str, amount: int) -> bool:
        """
        stock >= amount の場合のみ stock -= amount を適用する。
        判定と書き込みはストア自身が 1 操作で行う。適用されなければ False。
        """
        ...


class OrderRepository(Protocol):
    async def create(self, user_id: str, total_price: Decimal, status: str) -> str: ...

    async def fetch_with_items(self, order_id: str) -> Order | None: ...

    async def list_for_buyer(self, user_id: str) -> list[OrderSummary]:
        """購入者の注文を新しい順に返す。"""
        ...


class OrderItemRepository(Protocol):
    async def create(
        self, order_id: str, product_id: str, quantity: int, price: Decimal
    ) -> str: ...


class UnitOfWork(Protocol):
    products: ProductRepository
    orders: OrderRepository
    order_items: OrderItemRepository

    async def __aenter__(self) -> "UnitOfWork": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


UnitOfWorkFactory = Callable[[], UnitOfWork]
