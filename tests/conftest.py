import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CREATE_SCHEMA", "0")

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from storefront.commands import CustomerInfo, OrderWorkflow, Requester
from storefront.db import init_schema


class RecordingRedis:
    """publish() だけを記録する Redis の代用品"""

    def __init__(self):
        self.messages: list[tuple[str, dict]] = []

    async def publish(self, channel, message):
        self.messages.append((channel, json.loads(message)))
        return 1

    def event_types(self) -> list[str]:
        return [m["event_type"] for _, m in self.messages]


class ShopDB:
    """テスト用の直接 SQL ヘルパー"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def add_product(self, product_id, price, stock, status="active", name=None):
        async with self.session_factory() as session:
            await session.execute(
                text("""
                    INSERT INTO products (id, name, price, current_stock, status)
                    VALUES (:id, :name, :price, :stock, :status)
                """),
                {
                    "id": product_id,
                    "name": name or f"Product {product_id}",
                    "price": price,
                    "stock": stock,
                    "status": status,
                },
            )
            await session.commit()
        return product_id

    async def scalar(self, sql, **params):
        async with self.session_factory() as session:
            result = await session.execute(text(sql), params)
            return result.scalar_one()

    async def execute(self, sql, **params):
        async with self.session_factory() as session:
            await session.execute(text(sql), params)
            await session.commit()

    async def stock(self, product_id):
        return await self.scalar(
            "SELECT current_stock FROM products WHERE id = :id", id=product_id
        )

    async def order_count(self):
        return await self.scalar("SELECT COUNT(*) FROM orders")

    async def line_count(self):
        return await self.scalar("SELECT COUNT(*) FROM order_items")

    async def set_order_status(self, order_id, status):
        await self.execute(
            "UPDATE orders SET status = :status WHERE id = :id", status=status, id=order_id
        )


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def shop(session_factory):
    return ShopDB(session_factory)


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
def workflow(session_factory, redis):
    return OrderWorkflow(session_factory, redis)


@pytest.fixture
def customer():
    return CustomerInfo(
        customer_name="Asha Rao",
        customer_phone="+919800000000",
        customer_email="asha@example.com",
        shipping_address="12 MG Road, Bengaluru 560001",
    )


@pytest.fixture
def admin():
    return Requester(user_id=1, role="admin")


@pytest.fixture
def owner():
    return Requester(user_id=7, role="user")


@pytest.fixture
def stranger():
    return Requester(user_id=99, role="user")
