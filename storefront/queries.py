"""
Storefront — クエリハンドラ (Read 側)

注文と商品の読み取り。状態は変更しない。
"""

import math

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import OrderAggregate, OrderLine, OrderStatus
from .db import iso


def _order_from_row(row, lines: list[OrderLine]) -> OrderAggregate:
    return OrderAggregate(
        id=row.id,
        user_id=row.user_id,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        customer_email=row.customer_email,
        shipping_address=row.shipping_address,
        notes=row.notes,
        total_amount=row.total_amount,
        status=OrderStatus(row.status),
        payment_method=row.payment_method,
        payment_link=row.payment_link,
        created_at=iso(row.created_at),
        updated_at=iso(row.updated_at),
        lines=lines,
    )


async def get_order_lines(session: AsyncSession, order_id: int) -> list[OrderLine]:
    result = await session.execute(
        text("""
            SELECT oi.product_id, oi.quantity, oi.unit_price, p.name AS product_name
            FROM order_items oi
            LEFT JOIN products p ON oi.product_id = p.id
            WHERE oi.order_id = :order_id
            ORDER BY oi.id
        """),
        {"order_id": order_id},
    )
    return [
        OrderLine(
            product_id=row.product_id,
            product_name=row.product_name,
            quantity=row.quantity,
            unit_price=row.unit_price,
        )
        for row in result.fetchall()
    ]


async def get_order(session: AsyncSession, order_id: int) -> OrderAggregate | None:
    """注文を明細付きで取得する。"""
    result = await session.execute(
        text("SELECT * FROM orders WHERE id = :id"),
        {"id": order_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return _order_from_row(row, await get_order_lines(session, order_id))


async def list_orders(
    session: AsyncSession,
    user_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """
    注文一覧（新しい順）とページ情報を返す。

    user_id を指定するとその利用者の注文だけに絞る。
    """
    conditions = []
    params: dict = {}
    if user_id is not None:
        conditions.append("user_id = :user_id")
        params["user_id"] = user_id
    if status:
        conditions.append("status = :status")
        params["status"] = status
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    result = await session.execute(
        text(f"""
            SELECT * FROM orders
            {where}
            ORDER BY created_at DESC, id DESC
            LIMIT :limit OFFSET :offset
        """),
        {**params, "limit": limit, "offset": (page - 1) * limit},
    )
    orders = [
        _order_from_row(row, await get_order_lines(session, row.id)).to_dict()
        for row in result.fetchall()
    ]

    count = await session.execute(
        text(f"SELECT COUNT(*) FROM orders {where}"),
        params,
    )
    total = count.scalar_one()

    return {
        "orders": orders,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
        },
    }


async def order_stats(session: AsyncSession) -> dict:
    """ステータス別件数と売上（キャンセル分を除く）。"""
    result = await session.execute(
        text("SELECT status, COUNT(*) AS n FROM orders GROUP BY status"),
    )
    by_status = {s.value: 0 for s in OrderStatus}
    for row in result.fetchall():
        by_status[row.status] = row.n

    revenue = await session.execute(
        text("""
            SELECT COALESCE(SUM(total_amount), 0)
            FROM orders
            WHERE status != 'cancelled'
        """),
    )
    return {
        "total_orders": sum(by_status.values()),
        "by_status": by_status,
        "total_revenue": revenue.scalar_one(),
    }


def _product_from_row(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "price": row.price,
        "current_stock": row.current_stock,
        "status": row.status,
        "updated_at": iso(row.updated_at),
    }


async def get_product(session: AsyncSession, product_id: int) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM products WHERE id = :id"),
        {"id": product_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return _product_from_row(row)


async def list_products(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("SELECT * FROM products WHERE status = 'active' ORDER BY name"),
    )
    return [_product_from_row(row) for row in result.fetchall()]
