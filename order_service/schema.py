"""
Order Service — テーブル定義

products はカタログ管理サービスと共有するテーブル。
このサービスが書き込むのは stock の条件付き減算のみ。
orders / order_items はこのサービスが作成する（追記のみ）。
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncEngine

metadata = MetaData()

PRICE = Numeric(12, 2)

products = Table(
    "products",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=False, default=""),
    Column("price", PRICE, nullable=False),
    Column("stock", Integer, nullable=False, default=0),
    Column("category", String(255)),
    Column("user_id", String(255)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", String(36), primary_key=True),
    # ゲートウェイが渡す X-User-Id をそのまま保存する（UUID とは限らない）
    Column("user_id", String(255), nullable=False, index=True),
    Column("total_price", PRICE, nullable=False),
    Column("status", String(32), nullable=False, default="pending"),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "order_id",
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("product_id", String(36), ForeignKey("products.id"), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("price", PRICE, nullable=False),
    # 同一注文内の明細順を保持する
    Column("position", Integer, nullable=False),
    CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
)


async def create_all(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def drop_all(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
