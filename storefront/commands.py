"""
Storefront — コマンドハンドラ (Write 側)

注文ワークフロー:
  ┌──────────────────────────────────────────────────────────┐
  │  submit                                                  │
  │  1. カートと顧客情報を検証 (ValidationError)               │
  │  2. 全明細の在庫・価格を確認（ここまで変更なし）           │
  │  3. 合計金額を整数で計算                                  │
  │  4. 注文・明細の INSERT と在庫引き当てを 1 トランザクションで │
  │  5. UPI なら支払いリンクを付与（同じトランザクション内）    │
  │                                                          │
  │  cancel                                                  │
  │  在庫の戻しとステータス変更を 1 トランザクションで          │
  └──────────────────────────────────────────────────────────┘

イベントの発行はコミット後に行う。
"""

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

import redis.asyncio as aioredis
from pydantic import BaseModel, ConfigDict
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import errors, payment, queries
from .aggregate import OrderAggregate, OrderStatus, ensure_transition, parse_status
from .db import transaction
from .events import OrderCancelled, OrderCreated, OrderLinePlaced, OrderStatusChanged
from .inventory import InventoryLedger

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("upi", "cod", "online")
EVENT_CHANNEL = "order_events"


class CartLine(BaseModel):
    model_config = ConfigDict(strict=True)

    product_id: int
    quantity: int


class CustomerInfo(BaseModel):
    customer_name: str
    customer_phone: str
    customer_email: str | None = None
    shipping_address: str
    notes: str | None = None


class Requester(BaseModel):
    user_id: int | None = None
    role: str = "guest"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def parse_cart(cart: Sequence[CartLine | Mapping]) -> list[CartLine]:
    if not cart:
        raise errors.ValidationError("Order must contain at least one item")

    lines = []
    for index, item in enumerate(cart):
        if isinstance(item, BaseModel):
            item = item.model_dump()
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if not _is_positive_int(product_id):
            raise errors.ValidationError("Valid product ID is required", index=index)
        if not _is_positive_int(quantity):
            raise errors.ValidationError("Quantity must be at least 1", index=index)
        lines.append(CartLine(product_id=product_id, quantity=quantity))
    return lines


def validate_customer(customer: CustomerInfo, payment_method: str) -> None:
    if len(customer.customer_name.strip()) < 2:
        raise errors.ValidationError("Customer name is required")
    if not customer.customer_phone.strip():
        raise errors.ValidationError("Valid phone number is required")
    if customer.customer_email and "@" not in customer.customer_email:
        raise errors.ValidationError("Valid email is required")
    if len(customer.shipping_address.strip()) < 10:
        raise errors.ValidationError(
            "Shipping address must be at least 10 characters"
        )
    if payment_method not in PAYMENT_METHODS:
        raise errors.ValidationError(
            "Invalid payment method", allowed=list(PAYMENT_METHODS)
        )


class OrderWorkflow:
    """注文の作成・キャンセル・ステータス変更"""

    def __init__(
        self,
        session_factory: sessionmaker,
        redis: aioredis.Redis | None = None,
        ledger: InventoryLedger | None = None,
        merchant_id: str = payment.DEFAULT_MERCHANT_ID,
        merchant_name: str = payment.DEFAULT_MERCHANT_NAME,
        currency: str = payment.DEFAULT_CURRENCY,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.ledger = ledger or InventoryLedger()
        self.merchant_id = merchant_id
        self.merchant_name = merchant_name
        self.currency = currency

    # ── 注文作成 ─────────────────────────────────────

    async def submit(
        self,
        cart: Sequence[CartLine | Mapping],
        customer: CustomerInfo,
        payment_method: str = "upi",
        user_id: int | None = None,
    ) -> OrderAggregate:
        """
        注文作成コマンド

        ゲスト注文とログイン済み注文の違いは user_id の有無だけ。
        """
        lines = parse_cart(cart)
        validate_customer(customer, payment_method)

        async with transaction(self.session_factory) as session:
            prices = await self._price_cart(session, lines)
            total_amount = sum(line.quantity * prices[line.product_id] for line in lines)

            result = await session.execute(
                text("""
                    INSERT INTO orders
                        (user_id, customer_name, customer_phone, customer_email,
                         shipping_address, notes, total_amount, status,
                         payment_method, created_at, updated_at)
                    VALUES
                        (:user_id, :customer_name, :customer_phone, :customer_email,
                         :shipping_address, :notes, :total_amount, 'pending',
                         :payment_method, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                    RETURNING id
                """),
                {
                    "user_id": user_id,
                    "customer_name": customer.customer_name.strip(),
                    "customer_phone": customer.customer_phone.strip(),
                    "customer_email": customer.customer_email or None,
                    "shipping_address": customer.shipping_address.strip(),
                    "notes": customer.notes or None,
                    "total_amount": total_amount,
                    "payment_method": payment_method,
                },
            )
            order_id = result.scalar_one()

            await session.execute(
                text("""
                    INSERT INTO order_items
                        (order_id, product_id, quantity, unit_price, created_at)
                    VALUES
                        (:order_id, :product_id, :quantity, :unit_price, CURRENT_TIMESTAMP)
                """),
                [
                    {
                        "order_id": order_id,
                        "product_id": line.product_id,
                        "quantity": line.quantity,
                        "unit_price": prices[line.product_id],
                    }
                    for line in lines
                ],
            )

            # 行ロックの取得順を商品 ID 順にそろえる
            for line in sorted(lines, key=lambda l: l.product_id):
                await self.ledger.reserve(session, line.product_id, line.quantity)

            if payment_method == "upi":
                await session.execute(
                    text("UPDATE orders SET payment_link = :link WHERE id = :id"),
                    {
                        "link": payment.generate_upi_link(
                            total_amount,
                            order_id,
                            self.merchant_id,
                            self.merchant_name,
                            self.currency,
                        ),
                        "id": order_id,
                    },
                )

            order = await queries.get_order(session, order_id)

        logger.info(
            "Order %s created: total=%s lines=%s user=%s",
            order.id,
            order.total_amount,
            len(order.lines),
            user_id,
        )
        await self._publish(
            "OrderCreated",
            OrderCreated(
                order_id=order.id,
                user_id=order.user_id,
                customer_name=order.customer_name,
                total_amount=order.total_amount,
                payment_method=order.payment_method,
                lines=[
                    OrderLinePlaced(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                    )
                    for line in order.lines
                ],
                timestamp=datetime.now(timezone.utc),
            ),
        )
        return order

    async def _price_cart(
        self,
        session: AsyncSession,
        lines: list[CartLine],
    ) -> dict[int, int]:
        """
        全明細の在庫と価格を確認する。1 件でも駄目なら何も変更せずに失敗する。

        同じ商品が複数行ある場合は合計数量で在庫と比較する。
        """
        requested: dict[int, int] = {}
        for line in lines:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        prices = {}
        for product_id, quantity in requested.items():
            try:
                availability = await self.ledger.check_availability(
                    session, product_id, quantity
                )
            except errors.NotFound:
                logger.warning("Rejected order: product %s unavailable", product_id)
                raise errors.ProductUnavailable(product_id) from None
            if not availability.available:
                logger.warning(
                    "Rejected order: product %s stock=%s requested=%s",
                    product_id,
                    availability.stock,
                    quantity,
                )
                raise errors.InsufficientStock(
                    availability.product_name, availability.stock, quantity
                )
            prices[product_id] = availability.unit_price
        return prices

    # ── キャンセル（補償） ───────────────────────────

    async def cancel(self, order_id: int, requester: Requester) -> OrderAggregate:
        """
        注文キャンセルコマンド

        明細ごとに在庫を戻し、ステータスを cancelled にする。
        両方が同じトランザクションでコミットされる。
        """
        async with transaction(self.session_factory) as session:
            order = await self._load(session, order_id)
            if not (requester.is_admin or order.owned_by(requester.user_id)):
                raise errors.Forbidden("Access denied")
            cancelled = await self._cancel_in(session, order)

        await self._publish_cancelled(order, cancelled)
        return cancelled

    async def _cancel_in(
        self,
        session: AsyncSession,
        order: OrderAggregate,
    ) -> OrderAggregate:
        ensure_transition(order.status, OrderStatus.CANCELLED)

        for line in sorted(order.lines, key=lambda l: l.product_id):
            await self.ledger.restore(session, line.product_id, line.quantity)

        await self._set_status(session, order, OrderStatus.CANCELLED)
        logger.info("Order %s cancelled from %s", order.id, order.status.value)
        return await queries.get_order(session, order.id)

    async def _publish_cancelled(
        self,
        before: OrderAggregate,
        after: OrderAggregate,
    ) -> None:
        await self._publish(
            "OrderCancelled",
            OrderCancelled(
                order_id=after.id,
                previous_status=before.status.value,
                restored=[
                    OrderLinePlaced(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                    )
                    for line in before.lines
                ],
                timestamp=datetime.now(timezone.utc),
            ),
        )

    # ── 管理者操作 ───────────────────────────────────

    async def process(self, order_id: int, requester: Requester) -> OrderAggregate:
        """pending → processing のみ許可"""
        if not requester.is_admin:
            raise errors.Forbidden("Admin access required")

        async with transaction(self.session_factory) as session:
            order = await self._load(session, order_id)
            ensure_transition(order.status, OrderStatus.PROCESSING)
            await self._set_status(session, order, OrderStatus.PROCESSING)
            updated = await queries.get_order(session, order_id)

        await self._publish_status_changed(order, updated)
        return updated

    async def update_status(
        self,
        order_id: int,
        status: str,
        requester: Requester,
    ) -> OrderAggregate:
        """
        ステータスの直接設定

        遷移表に従う。cancelled への変更はキャンセルと同じく在庫を戻す。
        """
        if not requester.is_admin:
            raise errors.Forbidden("Admin access required")
        target = parse_status(status)

        async with transaction(self.session_factory) as session:
            order = await self._load(session, order_id)
            if target is OrderStatus.CANCELLED:
                updated = await self._cancel_in(session, order)
            else:
                ensure_transition(order.status, target)
                await self._set_status(session, order, target)
                updated = await queries.get_order(session, order_id)

        if target is OrderStatus.CANCELLED:
            await self._publish_cancelled(order, updated)
        else:
            await self._publish_status_changed(order, updated)
        return updated

    # ── 共通処理 ─────────────────────────────────────

    async def _load(self, session: AsyncSession, order_id: int) -> OrderAggregate:
        order = await queries.get_order(session, order_id)
        if not order:
            raise errors.NotFound("Order not found")
        return order

    async def _set_status(
        self,
        session: AsyncSession,
        order: OrderAggregate,
        target: OrderStatus,
    ) -> None:
        # 読み取り時点のステータスを条件にするので、同時更新された場合は 0 行になる
        result = await session.execute(
            text("""
                UPDATE orders
                SET status = :target, updated_at = CURRENT_TIMESTAMP
                WHERE id = :id AND status = :current
            """),
            {"target": target.value, "id": order.id, "current": order.status.value},
        )
        if result.rowcount != 1:
            raise errors.InvalidTransition(
                order.status.value,
                target.value,
                "Order was modified concurrently",
            )

    async def _publish_status_changed(
        self,
        before: OrderAggregate,
        after: OrderAggregate,
    ) -> None:
        logger.info(
            "Order %s status %s -> %s",
            after.id,
            before.status.value,
            after.status.value,
        )
        await self._publish(
            "OrderStatusChanged",
            OrderStatusChanged(
                order_id=after.id,
                previous_status=before.status.value,
                status=after.status.value,
                timestamp=datetime.now(timezone.utc),
            ),
        )

    async def _publish(self, event_type: str, event: BaseModel) -> None:
        """Redis Pub/Sub でイベントを発行する（コミット済みの結果は覆さない）。"""
        if self.redis is None:
            return
        try:
            await self.redis.publish(
                EVENT_CHANNEL,
                json.dumps(
                    {"event_type": event_type, "data": event.model_dump(mode="json")},
                    default=str,
                ),
            )
        except RedisError:
            logger.exception("Failed to publish %s", event_type)
