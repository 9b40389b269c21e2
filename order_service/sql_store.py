"""
Order Service — SQLAlchemy ストア

UnitOfWork の SQL 実装。1 つの AsyncSession（= 1 トランザクション）を
Products / Orders / OrderItems の各リポジトリで共有する。

在庫の減算は条件付き UPDATE で行う:

    UPDATE products SET stock = stock - :q
    WHERE id = :id AND stock >= :q

判定と書き込みを DB 自身が 1 文で評価するため、同時実行される
トランザクションが両方とも在庫をマイナスにすることはない。
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select, text, update
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from .errors import Internal, Unavailable
from .models import Order, OrderItem, OrderSummary, Product, ProductSummary
from .schema import order_items, orders, products

logger = logging.getLogger(__name__)

# serialization_failure / deadlock_detected / lock_not_available / query_canceled
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03", "57014"}


class SqlProductRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def fetch_by_ids(self, ids: list[str]) -> list[Product]:
        result = await self.session.execute(
            select(products).where(products.c.id.in_(ids))
        )
        return [Product(**row._mapping) for row in result.fetchall()]

    async def conditional_decrement(self, product_id: str, amount: int) -> bool:
        result = await self.session.execute(
            update(products)
            .where(products.c.id == product_id, products.c.stock >= amount)
            .values(
                stock=products.c.stock - amount,
                updated_at=datetime.now(timezone.utc),
            )
        )
        return result.rowcount == 1


class SqlOrderRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, user_id: str, total_price: Decimal, status: str) -> str:
        order_id = str(uuid4())
        await self.session.execute(
            orders.insert().values(
                id=order_id,
                user_id=user_id,
                total_price=total_price,
                status=status,
                created_at=datetime.now(timezone.utc),
            )
        )
        return order_id

    async def fetch_with_items(self, order_id: str) -> Order | None:
        result = await self.session.execute(
            select(orders).where(orders.c.id == order_id)
        )
        row = result.fetchone()
        if not row:
            return None

        item_rows = await self.session.execute(
            select(
                order_items.c.id,
                order_items.c.order_id,
                order_items.c.product_id,
                order_items.c.quantity,
                order_items.c.price,
                products.c.name.label("product_name"),
                products.c.description.label("product_description"),
                products.c.category.label("product_category"),
            )
            .join(products, products.c.id == order_items.c.product_id)
            .where(order_items.c.order_id == order_id)
            .order_by(order_items.c.position)
        )
        items = [
            OrderItem(
                id=r.id,
                order_id=r.order_id,
                product_id=r.product_id,
                quantity=r.quantity,
                price=r.price,
                product=ProductSummary(
                    id=r.product_id,
                    name=r.product_name,
                    description=r.product_description or "",
                    category=r.product_category,
                ),
            )
            for r in item_rows.fetchall()
        ]
        return Order(
            id=row.id,
            user_id=row.user_id,
            total_price=row.total_price,
            status=row.status,
            created_at=row.created_at,
            items=items,
        )

    async def list_for_buyer(self, user_id: str) -> list[OrderSummary]:
        result = await self.session.execute(
            select(orders.c.id, orders.c.status, orders.c.total_price, orders.c.created_at)
            .where(orders.c.user_id == user_id)
            .order_by(orders.c.created_at.desc())
        )
        return [
            OrderSummary(
                id=row.id,
                status=row.status,
                total_price=row.total_price,
                created_at=row.created_at,
            )
            for row in result.fetchall()
        ]


class SqlOrderItemRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._positions: dict[str, int] = {}

    async def create(
        self, order_id: str, product_id: str, quantity: int, price: Decimal
    ) -> str:
        item_id = str(uuid4())
        position = self._positions.get(order_id, 0)
        self._positions[order_id] = position + 1
        await self.session.execute(
            order_items.insert().values(
                id=item_id,
                order_id=order_id,
                product_id=product_id,
                quantity=quantity,
                price=price,
                position=position,
            )
        )
        return item_id


class SqlUnitOfWork:
    """
    1 トランザクション分の作業単位。

    commit() されずに抜けた場合はロールバックする。
    ドライバ由来の例外はここで Unavailable / Internal に変換し、
    SQL やドライバの詳細をクライアントに漏らさない。
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        dialect_name: str = "",
        lock_timeout: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.dialect_name = dialect_name
        self.lock_timeout = lock_timeout
        self._committed = False

    async def __aenter__(self) -> "SqlUnitOfWork":
        self.session = self.session_factory()
        self.products = SqlProductRepository(self.session)
        self.orders = SqlOrderRepository(self.session)
        self.order_items = SqlOrderItemRepository(self.session)
        self._committed = False
        if self.dialect_name == "postgresql" and self.lock_timeout:
            # SET LOCAL はバインド変数を受け付けない
            millis = int(self.lock_timeout * 1000)
            await self.session.execute(text(f"SET LOCAL lock_timeout = '{millis}ms'"))
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if not self._committed:
                await self.session.rollback()
        finally:
            await self.session.close()
        if isinstance(exc, SQLAlchemyError):
            raise translate_store_error(exc) from exc

    async def commit(self) -> None:
        await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        await self.session.rollback()


def translate_store_error(exc: SQLAlchemyError) -> Unavailable | Internal:
    """ストア例外をリトライ可能（Unavailable）かそれ以外（Internal）に分類する。"""
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if code in TRANSIENT_SQLSTATES:
            logger.warning("Transient store failure (sqlstate=%s)", code)
            return Unavailable()
    if isinstance(exc, OperationalError):
        logger.warning("Operational store failure: %s", exc.__class__.__name__)
        return Unavailable()
    logger.error("Unexpected store failure", exc_info=exc)
    return Internal()


def make_uow_factory(
    engine: AsyncEngine,
    lock_timeout: float | None = None,
):
    session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    def factory() -> SqlUnitOfWork:
        return SqlUnitOfWork(session_factory, engine.dialect.name, lock_timeout)

    return factory
