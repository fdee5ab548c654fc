"""
StoreKit domain models - Immutable dataclasses for queue events and platform requests.

NO DICTIONARIES - All data uses strongly typed models.

Transactions are owned by the platform payment queue. IAPKit only observes
their state and acknowledges them; it never creates or mutates them.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import uuid4


class TransactionState(str, Enum):
    """Platform-assigned payment transaction state."""

    PURCHASING = "purchasing"  # Being added to the server queue
    PURCHASED = "purchased"  # User has been charged, must be finished
    FAILED = "failed"  # Cancelled or failed before being added to the queue
    RESTORED = "restored"  # Restored from the user's purchase history
    DEFERRED = "deferred"  # Pending external action (e.g. Ask to Buy)


@dataclass(frozen=True)
class PaymentTransaction:
    """A single purchase attempt as reported by the payment queue."""

    transaction_id: str
    product_id: str
    state: TransactionState
    error: Exception | None = None  # Platform error, only set for FAILED

    def __post_init__(self) -> None:
        """Validate transaction fields."""
        if not self.transaction_id:
            raise ValueError("transaction_id cannot be empty")
        if not self.product_id:
            raise ValueError("product_id cannot be empty")


@dataclass(frozen=True)
class Product:
    """Purchasable product metadata returned by the product catalog service."""

    product_id: str
    title: str
    description: str
    price: Decimal
    price_locale: str  # e.g. "en_US@currency=USD"

    def __post_init__(self) -> None:
        """Validate product configuration."""
        if not self.product_id:
            raise ValueError("Product ID required")
        if self.price < 0:
            raise ValueError(f"Price cannot be negative: {self.price}")


@dataclass(frozen=True)
class Payment:
    """Payment submitted to the queue for a product."""

    product_id: str
    quantity: int = 1

    def __post_init__(self) -> None:
        """Validate payment fields."""
        if self.quantity <= 0:
            raise ValueError(f"Quantity must be positive: {self.quantity}")


ProductsCompletion = Callable[[list[Product]], None]
RefreshCompletion = Callable[[bool, Exception | None], None]


def _new_request_id() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class ProductRequest:
    """Product metadata lookup carrying its own completion."""

    product_ids: frozenset[str]
    completion: ProductsCompletion | None = field(default=None, compare=False)
    request_id: str = field(default_factory=_new_request_id)

    kind = "products"

    def __post_init__(self) -> None:
        """Validate request fields."""
        if not self.product_ids:
            raise ValueError("At least one product ID is required")


@dataclass(frozen=True)
class ReceiptRefreshRequest:
    """Receipt refresh carrying its own completion."""

    completion: RefreshCompletion | None = field(default=None, compare=False)
    request_id: str = field(default_factory=_new_request_id)

    kind = "receipt_refresh"


# Closed set of platform request kinds
PlatformRequest = ProductRequest | ReceiptRefreshRequest
