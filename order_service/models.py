"""
Order Service — ドメインモデル

Product / Order / OrderItem のレコード型と、注文リクエストの明細行。
価格は Decimal で扱い、注文時点の単価を OrderItem に固定する。
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus:
    PENDING = "pending"


class Product(BaseModel):
    id: str
    name: str
    description: str = ""
    price: Decimal = Field(ge=0)
    stock: int = Field(ge=0)
    category: str | None = None
    user_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProductSummary(BaseModel):
    """注文明細の表示用に添える商品情報"""

    id: str
    name: str
    description: str = ""
    category: str | None = None


class OrderItem(BaseModel):
    id: str
    order_id: str
    product_id: str
    quantity: int
    price: Decimal
    product: ProductSummary | None = None


class Order(BaseModel):
    id: str
    user_id: str
    total_price: Decimal
    status: str
    created_at: datetime
    items: list[OrderItem] = []


class OrderSummary(BaseModel):
    """一覧用。明細は展開しない。"""

    id: str
    status: str
    total_price: Decimal
    created_at: datetime


class OrderLine(BaseModel):
    """注文リクエストの明細行 {productId, quantity}"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: UUID = Field(alias="productId")
    quantity: int = Field(strict=True, gt=0)


class Buyer(BaseModel):
    """認証ゲートウェイで検証済みの購入者"""

    id: str
    role: str = "User"
