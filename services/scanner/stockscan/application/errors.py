from typing import Any, Optional

MSG_NOT_FOUND = "Produk tidak ditemukan"
MSG_AUDIT_FAILED = "Gagal mencatat pergerakan"
MSG_INVALID_PAYLOAD = "Payload tidak valid"
MSG_SERVER_ERROR = "Server error"


class ScanError(Exception):
    """Failure reported back to the scanning device as ``success: false``."""

    status_code = 500
    message = MSG_SERVER_ERROR

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_response(self) -> dict[str, Any]:
        return {"success": False, "message": self.message}


class ProductNotFound(ScanError):
    status_code = 404
    message = MSG_NOT_FOUND

    def __init__(self, barcode: str):
        super().__init__()
        self.barcode = barcode

    def to_response(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, "barcode": self.barcode}


class AuditWriteFailure(ScanError):
    status_code = 500
    message = MSG_AUDIT_FAILED


class StockWriteFailure(Exception):
    """Quantity update failed after the movement was recorded.

    Never reaches the device; the movement log stays authoritative.
    """

    def __init__(self, product_id: int, cause: Exception):
        super().__init__(f"Stock update failed for product {product_id}: {cause}")
        self.product_id = product_id
        self.cause = cause
