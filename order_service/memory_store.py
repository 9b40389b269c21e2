"""
Order Service — インメモリストア

UnitOfWork のインメモリ実装（テスト・ローカル実行用）。

- 在庫の条件付き減算は判定と書き込みの間に await を挟まないので
  イベントループ上でアトミック。ロールバック時は減算分を戻す。
- 注文・明細は commit されるまで他の作業単位からは見えない。
- 各リポジトリ呼び出しは I/O と同様にイベントループへ制御を返すため、
  同時実行された注文は実際に交互に進む。
"""

import asyncio
import itertools
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from .models import Order, OrderItem, OrderSummary, Product, ProductSummary


class InMemoryStore:
    def __init__(self) -> None:
        self.products: dict[str, Product] = {}
        self.orders: dict[str, Order] = {}
        self._order_seq: dict[str, int] = {}
        self._seq = itertools.count()

    def add_product(self, name: str, price, stock: int, **fields) -> Product:
        now = datetime.now(timezone.utc)
        product = Product(
            id=fields.pop("id", None) or str(uuid4()),
            name=name,
            price=Decimal(str(price)),
            stock=stock,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.products[product.id] = product
        return product

    def stock_of(self, product_id: str) -> int:
        return self.products[product_id].stock

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)

    def _summary(self, product_id: str) -> ProductSummary | None:
        product = self.products.get(product_id)
        if product is None:
            return None
        return ProductSummary(
            id=product.id,
            name=product.name,
            description=product.description,
            category=product.category,
        )


class InMemoryProductRepository:
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self.uow = uow

    async def fetch_by_ids(self, ids: list[str]) -> list[Product]:
        await asyncio.sleep(0)
        products = self.uow.store.products
        return [products[i].model_copy() for i in ids if i in products]

    async def conditional_decrement(self, product_id: str, amount: int) -> bool:
        await asyncio.sleep(0)
        products = self.uow.store.products
        product = products.get(product_id)
        if product is None or product.stock < amount:
            return False
        products[product_id] = product.model_copy(
            update={"stock": product.stock - amount, "updated_at": datetime.now(timezone.utc)}
        )
        self.uow.decrements.append((product_id, amount))
        return True


class InMemoryOrderRepository:
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self.uow = uow

    async def create(self, user_id: str, total_price: Decimal, status: str) -> str:
        await asyncio.sleep(0)
        order = Order(
            id=str(uuid4()),
            user_id=user_id,
            total_price=total_price,
            status=status,
            created_at=datetime.now(timezone.utc),
        )
        self.uow.pending_orders[order.id] = order
        return order.id

    async def fetch_with_items(self, order_id: str) -> Order | None:
        await asyncio.sleep(0)
        order = self.uow.pending_orders.get(order_id) or self.uow.store.orders.get(order_id)
        if order is None:
            return None
        items = [
            item.model_copy(update={"product": self.uow.store._summary(item.product_id)})
            for item in order.items
        ]
        return order.model_copy(update={"items": items})

    async def list_for_buyer(self, user_id: str) -> list[OrderSummary]:
        await asyncio.sleep(0)
        store = self.uow.store
        mine = [o for o in store.orders.values() if o.user_id == user_id]
        mine.sort(key=lambda o: (o.created_at, store._order_seq[o.id]), reverse=True)
        return [
            OrderSummary(
                id=o.id,
                status=o.status,
                total_price=o.total_price,
                created_at=o.created_at,
            )
            for o in mine
        ]


class InMemoryOrderItemRepository:
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self.uow = uow

    async def create(
        self, order_id: str, product_id: str, quantity: int, price: Decimal
    ) -> str:
        await asyncio.sleep(0)
        order = self.uow.pending_orders[order_id]
        item = OrderItem(
            id=str(uuid4()),
            order_id=order_id,
            product_id=product_id,
            quantity=quantity,
            price=price,
        )
        order.items.append(item)
        return item.id


class InMemoryUnitOfWork:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self.decrements: list[tuple[str, int]] = []
        self.pending_orders: dict[str, Order] = {}
        self.products = InMemoryProductRepository(self)
        self.orders = InMemoryOrderRepository(self)
        self.order_items = InMemoryOrderItemRepository(self)
        self._committed = False

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self._committed:
            await self.rollback()

    async def commit(self) -> None:
        for order in self.pending_orders.values():
            self.store.orders[order.id] = order
            self.store._order_seq[order.id] = next(self.store._seq)
        self.pending_orders = {}
        self.decrements = []
        self._committed = True

    async def rollback(self) -> None:
        # 上書きせず加算で戻す（他の作業単位による減算は残る）
        products = self.store.products
        for product_id, amount in reversed(self.decrements):
            product = products[product_id]
            products[product_id] = product.model_copy(update={"stock": product.stock + amount})
        self.decrements = []
        self.pending_orders = {}
