"""
Storefront — イベント定義

コミット後に Redis Pub/Sub (order_events) へ流すイベント。
イベントは過去形で命名し、不変として扱う。
"""

from datetime import datetime

from pydantic import BaseModel


class OrderLinePlaced(BaseModel):
    product_id: int
    quantity: int
    unit_price: int


class OrderCreated(BaseModel):
    """注文が作成された"""
    order_id: int
    user_id: int | None
    customer_name: str
    total_amount: int
    payment_method: str
    lines: list[OrderLinePlaced]
    timestamp: datetime


class OrderCancelled(BaseModel):
    """注文がキャンセルされ、在庫が戻された"""
    order_id: int
    previous_status: str
    restored: list[OrderLinePlaced]
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """管理者操作でステータスが進んだ"""
    order_id: int
    previous_status: str
    status: str
    timestamp: datetime
