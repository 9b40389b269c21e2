"""
Order Service — FastAPI エントリーポイント

CQRS パターンに従い、Command (POST) と Query (GET) のエンドポイントを分離。
認証はゲートウェイ側で行い、検証済みの購入者を X-User-Id / X-User-Role
ヘッダで受け取る。

レスポンスは共通のエンベロープ形式:
    {"success": bool, "message": str, "errors": [str] | null, "object": ... | null}
"""

import json
import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import create_async_engine

from . import commands, config, queries, schema
from .errors import Internal, OrderError, ValidationFailed
from .models import Buyer
from .sql_store import make_uow_factory

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

engine = create_async_engine(config.DATABASE_URL, echo=False)
sql_uow_factory = make_uow_factory(engine, lock_timeout=config.ORDER_TX_TIMEOUT_SECONDS)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    await schema.create_all(engine)
    redis_pool = aioredis.from_url(config.REDIS_URL, decode_responses=True)
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


# ── Dependencies ─────────────────────────────────


def get_uow_factory():
    return sql_uow_factory


def get_redis() -> aioredis.Redis | None:
    return redis_pool


def get_buyer(
    x_user_id: str | None = Header(default=None),
    x_user_role: str = Header(default="User"),
) -> Buyer | None:
    if not x_user_id:
        return None
    return Buyer(id=x_user_id, role=x_user_role)


# ── Response Envelope ────────────────────────────


def envelope(status_code: int, success: bool, message: str, obj=None, errors=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {"success": success, "message": message, "errors": errors, "object": obj}
        ),
    )


@app.exception_handler(OrderError)
async def handle_order_error(request: Request, exc: OrderError):
    return envelope(exc.status_code, False, exc.message, errors=exc.errors)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = Internal()
    return envelope(error.status_code, False, error.message)


# ── Command Endpoints (Write 側) ─────────────────


@app.post("/commands/orders")
async def cmd_create_order(
    request: Request,
    buyer: Buyer | None = Depends(get_buyer),
    uow_factory=Depends(get_uow_factory),
    redis: aioredis.Redis | None = Depends(get_redis),
):
    """注文作成コマンド"""
    buyer = commands.require_buyer(buyer)
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationFailed(["Request body must be valid JSON"]) from None
    raw_items = body.get("items") if isinstance(body, dict) else None

    order = await commands.create_order(uow_factory, buyer, raw_items, redis)
    return envelope(201, True, "Order placed successfully", order)


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/queries/orders")
async def query_list_orders(
    buyer: Buyer | None = Depends(get_buyer),
    uow_factory=Depends(get_uow_factory),
):
    """購入者自身の注文一覧"""
    orders = await queries.list_orders(uow_factory, buyer)
    return envelope(200, True, "Orders retrieved", orders)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
