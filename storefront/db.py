"""
Storefront — データストア

テーブル定義とトランザクションスコープ。

クエリ自体は各モジュールで text() の生 SQL として書く。
ここではスキーマ作成と「1 リクエスト = 1 トランザクション」の境界だけを扱う。
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from . import errors

logger = logging.getLogger(__name__)

metadata = MetaData()

# 金額はすべて最小通貨単位 (paise / cents) の整数で持つ
products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(200), nullable=False),
    Column("price", BigInteger, nullable=False),
    Column("current_stock", Integer, nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
    CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
    CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, nullable=True, index=True),
    Column("customer_name", String(200), nullable=False),
    Column("customer_phone", String(40), nullable=False),
    Column("customer_email", String(200), nullable=True),
    Column("shipping_address", Text, nullable=False),
    Column("notes", Text, nullable=True),
    Column("total_amount", BigInteger, nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("payment_method", String(20), nullable=False),
    Column("payment_link", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, index=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", BigInteger, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
)


async def init_schema(engine: AsyncEngine) -> None:
    """存在しないテーブルを作成する。"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


@asynccontextmanager
async def transaction(session_factory: sessionmaker) -> AsyncIterator[AsyncSession]:
    """
    トランザクションスコープ

    ブロックを正常に抜けたらコミット、例外ならロールバック。
    ドメインエラーはロールバック後そのまま送出し、
    SQLAlchemy のエラーは StorageFailure に変換する。
    """
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except SQLAlchemyError as e:
        logger.exception("Transaction rolled back")
        raise errors.StorageFailure("Storage failure, nothing was saved") from e


def iso(value) -> str | None:
    """タイムスタンプを ISO 文字列にする（SQLite は文字列のまま返す）。"""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.isoformat()
