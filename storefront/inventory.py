"""
Storefront — 在庫台帳 (Inventory Ledger)

商品の在庫数を持つ唯一の場所。
在庫の変更は reserve / restore のどちらかを通してのみ行う。

どのメソッドも呼び出し側のセッション（トランザクション）の中で動く。
コミットもロールバックもここでは行わない。
"""

import logging

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from . import errors

logger = logging.getLogger(__name__)


class Availability(BaseModel):
    product_id: int
    product_name: str
    unit_price: int
    stock: int
    requested: int

    @property
    def available(self) -> bool:
        return self.stock >= self.requested


class InventoryLedger:
    async def check_availability(
        self,
        session: AsyncSession,
        product_id: int,
        quantity: int,
    ) -> Availability:
        """
        在庫確認（副作用なし）

        商品が存在しない、または active でなければ NotFound。
        """
        result = await session.execute(
            text("""
                SELECT id, name, price, current_stock
                FROM products
                WHERE id = :id AND status = 'active'
            """),
            {"id": product_id},
        )
        row = result.fetchone()
        if not row:
            raise errors.NotFound(f"Product with ID {product_id} not found or inactive")

        return Availability(
            product_id=row.id,
            product_name=row.name,
            unit_price=row.price,
            stock=row.current_stock,
            requested=quantity,
        )

    async def reserve(
        self,
        session: AsyncSession,
        product_id: int,
        quantity: int,
    ) -> None:
        """
        在庫引き当て

        条件付き UPDATE 1 文で減算するので、同じ商品への同時リクエストが
        あっても在庫がマイナスになることはない。
        """
        result = await session.execute(
            text("""
                UPDATE products
                SET current_stock = current_stock - :qty, updated_at = CURRENT_TIMESTAMP
                WHERE id = :id AND current_stock >= :qty
            """),
            {"qty": quantity, "id": product_id},
        )
        if result.rowcount == 1:
            return

        # 競合で在庫が減っていた
        current = await session.execute(
            text("SELECT name, current_stock FROM products WHERE id = :id"),
            {"id": product_id},
        )
        row = current.fetchone()
        if not row:
            raise errors.NotFound(f"Product with ID {product_id} not found")
        logger.warning(
            "Reservation lost race for product %s: available=%s requested=%s",
            product_id,
            row.current_stock,
            quantity,
        )
        raise errors.InsufficientStock(row.name, row.current_stock, quantity)

    async def restore(
        self,
        session: AsyncSession,
        product_id: int,
        quantity: int,
    ) -> None:
        """
        在庫の戻し（キャンセル時の補償）

        1 注文につき 1 回だけ呼ぶこと。二重呼び出しの防止は呼び出し側の責任。
        """
        result = await session.execute(
            text("""
                UPDATE products
                SET current_stock = current_stock + :qty, updated_at = CURRENT_TIMESTAMP
                WHERE id = :id
            """),
            {"qty": quantity, "id": product_id},
        )
        if result.rowcount != 1:
            raise errors.NotFound(f"Product with ID {product_id} not found")
