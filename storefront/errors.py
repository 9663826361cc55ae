"""
Storefront — エラー定義

ワークフローが返す失敗はすべてここの型で表現する。
HTTP 層は status_code と to_dict() だけを見てレスポンスに変換する。
"""


class ShopError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str, **fields) -> None:
        super().__init__(message)
        self.message = message
        self.fields = fields

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self.fields}


class ValidationError(ShopError):
    """入力が不正（呼び出し側の誤り、変更は一切行われていない）"""

    status_code = 400
    code = "validation_error"


class ProductUnavailable(ShopError):
    status_code = 404
    code = "product_unavailable"

    def __init__(self, product_id: int) -> None:
        super().__init__(
            f"Product with ID {product_id} not found or inactive",
            product_id=product_id,
        )
        self.product_id = product_id


class InsufficientStock(ShopError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_name: str, available: int, requested: int) -> None:
        super().__init__(
            f'Insufficient stock for product "{product_name}". '
            f"Available: {available}, Requested: {requested}",
            product_name=product_name,
            available=available,
            requested=requested,
        )
        self.product_name = product_name
        self.available = available
        self.requested = requested


class NotFound(ShopError):
    status_code = 404
    code = "not_found"


class Forbidden(ShopError):
    status_code = 403
    code = "forbidden"


class InvalidTransition(ShopError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Cannot move order from {current} to {target}",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class StorageFailure(ShopError):
    """コミット失敗など。トランザクションはロールバック済みなので丸ごと再試行してよい。"""

    status_code = 503
    code = "storage_failure"
