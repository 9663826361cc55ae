"""
Storefront — FastAPI エントリーポイント

Command (POST) と Query (GET) のエンドポイントを分離する。
認証はゲートウェイ側で済んでいる前提で、X-User-Id / X-User-Role ヘッダーを信頼する。
"""

import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import errors, payment, queries
from .commands import CustomerInfo, OrderWorkflow, Requester
from .db import init_schema

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
UPI_MERCHANT_ID = os.environ.get("UPI_MERCHANT_ID", payment.DEFAULT_MERCHANT_ID)
UPI_MERCHANT_NAME = os.environ.get("UPI_MERCHANT_NAME", payment.DEFAULT_MERCHANT_NAME)
CURRENCY = os.environ.get("CURRENCY", payment.DEFAULT_CURRENCY)
CREATE_SCHEMA = os.environ.get("CREATE_SCHEMA", "1") == "1"

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    if CREATE_SCHEMA:
        await init_schema(engine)
        logger.info("Database schema ready")
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Storefront Order Service", lifespan=lifespan)


@app.exception_handler(errors.ShopError)
async def shop_error_handler(request: Request, exc: errors.ShopError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ── Dependencies ─────────────────────────────────


def get_session_factory() -> sessionmaker:
    return async_session


def get_redis() -> aioredis.Redis | None:
    return redis_pool


def get_workflow(
    session_factory: sessionmaker = Depends(get_session_factory),
    redis: aioredis.Redis | None = Depends(get_redis),
) -> OrderWorkflow:
    return OrderWorkflow(
        session_factory,
        redis,
        merchant_id=UPI_MERCHANT_ID,
        merchant_name=UPI_MERCHANT_NAME,
        currency=CURRENCY,
    )


def get_requester(
    x_user_id: int | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Requester:
    if x_user_id is None:
        return Requester()
    return Requester(user_id=x_user_id, role=x_user_role or "user")


def require_user(requester: Requester = Depends(get_requester)) -> Requester:
    if requester.user_id is None:
        raise errors.Forbidden("Authentication required")
    return requester


def require_admin(requester: Requester = Depends(require_user)) -> Requester:
    if not requester.is_admin:
        raise errors.Forbidden("Admin access required")
    return requester


# ── Request Models ───────────────────────────────


class PlaceOrderRequest(CustomerInfo):
    # 明細の検証は parse_cart に任せる
    items: list[dict]
    payment_method: str = "upi"


class UpdateStatusRequest(BaseModel):
    status: str


# ── Command Endpoints (Write 側) ─────────────────


@app.post("/commands/orders", status_code=201)
async def cmd_place_order(
    req: PlaceOrderRequest,
    requester: Requester = Depends(get_requester),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """注文作成コマンド（ヘッダーがなければゲスト注文）"""
    order = await workflow.submit(
        req.items,
        CustomerInfo(**req.model_dump(exclude={"items", "payment_method"})),
        req.payment_method,
        user_id=requester.user_id,
    )
    return {"message": "Order created successfully", "order": order.to_dict()}


@app.post("/commands/orders/{order_id}/cancel")
async def cmd_cancel_order(
    order_id: int,
    requester: Requester = Depends(require_user),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """注文キャンセルコマンド（在庫を戻す）"""
    order = await workflow.cancel(order_id, requester)
    return {"message": "Order cancelled successfully", "order": order.to_dict()}


@app.post("/commands/orders/{order_id}/process")
async def cmd_process_order(
    order_id: int,
    requester: Requester = Depends(require_admin),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    order = await workflow.process(order_id, requester)
    return {"message": "Order is now being processed", "order": order.to_dict()}


@app.post("/commands/orders/{order_id}/status")
async def cmd_update_status(
    order_id: int,
    req: UpdateStatusRequest,
    requester: Requester = Depends(require_admin),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    order = await workflow.update_status(order_id, req.status, requester)
    return {"message": "Order status updated successfully", "order": order.to_dict()}


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/queries/orders")
async def query_list_orders(
    status: str | None = None,
    user_id: int | None = None,
    page: int = 1,
    limit: int = 10,
    requester: Requester = Depends(require_user),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """注文一覧（管理者は全件、それ以外は自分の注文のみ）"""
    if page < 1 or not 1 <= limit <= 100:
        raise errors.ValidationError("Invalid pagination parameters")
    if not requester.is_admin:
        user_id = requester.user_id
    async with session_factory() as session:
        return await queries.list_orders(session, user_id, status, page, limit)


@app.get("/queries/orders/stats")
async def query_order_stats(
    requester: Requester = Depends(require_admin),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        return await queries.order_stats(session)


@app.get("/queries/orders/{order_id}")
async def query_get_order(
    order_id: int,
    requester: Requester = Depends(require_user),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        order = await queries.get_order(session, order_id)
    if not order:
        raise errors.NotFound("Order not found")
    if not (requester.is_admin or order.owned_by(requester.user_id)):
        raise errors.Forbidden("Access denied")
    return order.to_dict()


@app.get("/queries/products")
async def query_list_products(
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        return await queries.list_products(session)


@app.get("/queries/products/{product_id}")
async def query_get_product(
    product_id: int,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        product = await queries.get_product(session, product_id)
    if not product:
        raise errors.NotFound("Product not found")
    return product


@app.get("/health")
async def health():
    return {"status": "ok", "service": "storefront"}
