"""
Cart Service — エラー定義

トランザクション内では例外として送出し、ロールバックさせる。
コーディネーターの境界で構造化された失敗結果 (dict) に変換される。
"""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    INSUFFICIENT_QUANTITY = "InsufficientQuantity"
    INVALID_QUANTITY = "InvalidQuantity"
    INTERNAL = "Internal"


class CartError(Exception):
    """カート操作の失敗。kind が呼び出し元に返るエラー種別。"""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NotFound(CartError):
    """在庫アイテムまたはカート明細が存在しない（リトライ不可）"""

    kind = ErrorKind.NOT_FOUND


class InsufficientQuantity(CartError):
    """在庫不足（リトライ不可、業務上の状態）"""

    kind = ErrorKind.INSUFFICIENT_QUANTITY

    def __init__(self, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient quantity: requested={requested}, available={available}"
        )
        self.available = available
        self.requested = requested


class InvalidQuantity(CartError):
    kind = ErrorKind.INVALID_QUANTITY


class LockTimeout(CartError):
    """行ロック待ちがタイムアウトした（リトライ可）"""

    kind = ErrorKind.INTERNAL
