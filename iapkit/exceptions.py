"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class IAPError(Exception):
    """Base exception for all in-app purchase errors."""

    pass


class TransportError(IAPError):
    """Raised when the verification round-trip fails at the network level."""

    def __init__(self, url: str, cause: Exception) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"Transport error calling {url}: {cause}")


class DecodeError(IAPError):
    """Raised when a verification response is not a JSON object."""

    def __init__(self, message: str, body: bytes = b"") -> None:
        self.message = message
        self.body = body
        super().__init__(f"Could not decode verification response: {message}")


class PlatformRequestError(IAPError):
    """Raised when a platform request (receipt refresh, product lookup) fails."""

    def __init__(self, request_kind: str, cause: Exception | None = None) -> None:
        self.request_kind = request_kind
        self.cause = cause
        super().__init__(f"Platform {request_kind} request failed: {cause}")


class TransactionFailedError(IAPError):
    """Raised when the platform reports a purchase as failed."""

    def __init__(self, transaction_id: str, cause: Exception | None = None) -> None:
        self.transaction_id = transaction_id
        self.cause = cause
        super().__init__(f"Transaction {transaction_id} failed: {cause}")


class PaymentsNotAllowedError(IAPError):
    """Raised when the device is not allowed to make payments."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Payments are disabled, cannot buy {product_id}")
