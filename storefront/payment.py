"""
Storefront — 支払いリンク生成

UPI の支払いリクエスト URI を組み立てる純粋関数。
同じ入力からは必ず同じ文字列ができる。
"""

from decimal import Decimal
from urllib.parse import quote, urlencode

DEFAULT_MERCHANT_ID = "merchant@paytm"
DEFAULT_MERCHANT_NAME = "Usasya"
DEFAULT_CURRENCY = "INR"


def format_amount(amount: int) -> str:
    """最小通貨単位の整数を小数 2 桁の文字列にする (50000 → "500.00")。"""
    return str((Decimal(amount) / 100).quantize(Decimal("0.01")))


def order_reference(order_id: int) -> str:
    return f"Order {order_id}"


def generate_upi_link(
    amount: int,
    order_id: int,
    merchant_id: str = DEFAULT_MERCHANT_ID,
    merchant_name: str = DEFAULT_MERCHANT_NAME,
    currency: str = DEFAULT_CURRENCY,
) -> str:
    """amount は最小通貨単位。UPI の am には主単位の小数 2 桁で入れる (500 → am=5.00)。"""
    query = urlencode(
        [
            ("pa", merchant_id),
            ("pn", merchant_name),
            ("tn", order_reference(order_id)),
            ("am", format_amount(amount)),
            ("cu", currency),
        ],
        quote_via=quote,
        safe="@",
    )
    return f"upi://pay?{query}"
