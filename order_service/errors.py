"""
Order Service — エラー定義

すべての失敗は OrderError のサブクラスとして送出する。
kind はタグとして HTTP 層のステータスコード変換に使う。
HTTP オブジェクトはここでは扱わない。
"""


class OrderError(Exception):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationFailed(OrderError):
    """入力の形式が不正（呼び出し側の責任、副作用なし）"""

    kind = "validation_failed"
    status_code = 400

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Validation failed", errors)


class Unauthorized(OrderError):
    kind = "unauthorized"
    status_code = 401

    def __init__(self) -> None:
        super().__init__("Unauthorized: User information is missing")


class Forbidden(OrderError):
    kind = "forbidden"
    status_code = 403

    def __init__(self) -> None:
        super().__init__("Forbidden: Users only")


class ProductNotFound(OrderError):
    """参照された商品が存在しない。欠けている ID をすべて列挙する。"""

    kind = "product_not_found"
    status_code = 404

    def __init__(self, missing_ids: list[str]) -> None:
        self.missing_ids = missing_ids
        super().__init__(f"Product(s) not found: {', '.join(missing_ids)}")


class InsufficientStock(OrderError):
    """在庫不足。商品・在庫数・要求数を含める。"""

    kind = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: str, name: str, available: int, requested: int) -> None:
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for Product {name} ({product_id}). "
            f"Available: {available}, Requested: {requested}"
        )


class Unavailable(OrderError):
    """ロック競合・タイムアウトなど一時的な失敗。最初からリトライしてよい。"""

    kind = "unavailable"
    status_code = 503

    def __init__(self, message: str = "Order store is temporarily unavailable, please retry") -> None:
        super().__init__(message)


class Internal(OrderError):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "Internal error while placing order") -> None:
        super().__init__(message)

