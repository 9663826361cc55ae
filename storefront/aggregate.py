"""
Storefront — 注文集約 (Order Aggregate)

注文のステータス遷移ルールと、DB の行から組み立てた注文の表現。

状態遷移:
    pending → processing → shipped → delivered  (前進のみ)
    pending / processing → cancelled
    cancelled, delivered は終端状態
"""

from enum import Enum

from pydantic import BaseModel

from . import errors


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# 各状態から遷移できる先。管理者による直接設定もこの表に従う。
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        }
    ),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED}
    ),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL = frozenset({OrderStatus.CANCELLED, OrderStatus.DELIVERED})


def parse_status(value: str) -> OrderStatus:
    """既知の 5 状態以外は ValidationError。"""
    try:
        return OrderStatus(value)
    except ValueError:
        raise errors.ValidationError(
            f"Invalid status: {value!r}",
            allowed=[s.value for s in OrderStatus],
        ) from None


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    if can_transition(current, target):
        return
    if target is OrderStatus.CANCELLED:
        if current is OrderStatus.CANCELLED:
            message = "Order is already cancelled"
        else:
            message = f"Cannot cancel {current.value} order"
    elif target is OrderStatus.PROCESSING and current is not OrderStatus.PENDING:
        message = f"Cannot process order with status: {current.value}"
    else:
        message = None
    raise errors.InvalidTransition(current.value, target.value, message)


class OrderLine(BaseModel):
    """注文明細。unit_price は注文時点の価格のスナップショット。"""

    product_id: int
    product_name: str | None = None
    quantity: int
    unit_price: int

    @property
    def line_total(self) -> int:
        return self.quantity * self.unit_price


class OrderAggregate(BaseModel):
    id: int
    user_id: int | None
    customer_name: str
    customer_phone: str
    customer_email: str | None = None
    shipping_address: str
    notes: str | None = None
    total_amount: int
    status: OrderStatus
    payment_method: str
    payment_link: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    lines: list[OrderLine] = []

    @property
    def lines_total(self) -> int:
        return sum(line.line_total for line in self.lines)

    def owned_by(self, user_id: int | None) -> bool:
        return self.user_id is not None and self.user_id == user_id

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["items"] = data.pop("lines")
        return data
