"""
Receipt domain models - Immutable dataclasses for receipt verification.

NO DICTIONARIES - All data uses strongly typed models, except the decoded
verification payload whose structure is owned by the remote service.
"""

import base64
import json
from dataclasses import dataclass, field
from enum import Enum

from iapkit.config import Environment


class ReceiptStatus(int, Enum):
    """Status code returned by the verifyReceipt service."""

    UNKNOWN = -2  # Status present but not a recognised integer
    NONE = -1  # No status field returned

    VALID = 0

    # The App Store could not read the JSON object you provided.
    JSON_NOT_READABLE = 21000

    # The data in the receipt-data property was malformed or missing.
    MALFORMED_OR_MISSING_DATA = 21002

    # The receipt could not be authenticated.
    RECEIPT_NOT_AUTHENTICATED = 21003

    # The shared secret does not match the shared secret on file for the account.
    SECRET_NOT_MATCHING = 21004

    # The receipt server is not currently available.
    SERVER_UNAVAILABLE = 21005

    # Valid receipt but the subscription has expired; payload is still returned.
    SUBSCRIPTION_EXPIRED = 21006

    # Test environment receipt sent to the production environment.
    SANDBOX_RECEIPT = 21007

    # Production environment receipt sent to the test environment.
    PRODUCTION_RECEIPT = 21008

    @property
    def is_valid(self) -> bool:
        """Only status 0 is a valid receipt."""
        return self is ReceiptStatus.VALID

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> "ReceiptStatus":
        """Read the status field of a decoded response."""
        if "status" not in payload:
            return cls.NONE

        raw = payload["status"]
        # bool is an int subclass but never a status code
        if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
            return cls.UNKNOWN
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Receipt:
    """Opaque signed receipt blob issued by the platform."""

    data: bytes

    def __post_init__(self) -> None:
        """Validate receipt data."""
        if not self.data:
            raise ValueError("Receipt data cannot be empty")

    def encoded(self) -> str:
        """Base64 encoding used on the wire."""
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class VerificationRequest:
    """Body sent to the verifyReceipt endpoint."""

    receipt_data: str  # base64
    password: str | None = None  # Shared secret, subscriptions only

    def to_json(self) -> bytes:
        """Serialize with the wire field names."""
        body: dict[str, str] = {"receipt-data": self.receipt_data}
        if self.password is not None:
            body["password"] = self.password
        return json.dumps(body).encode("utf-8")


@dataclass(frozen=True)
class VerificationResult:
    """Decoded verifyReceipt response."""

    payload: dict[str, object]
    environment: Environment
    status: ReceiptStatus = field(init=False)

    def __post_init__(self) -> None:
        """Derive status from the payload."""
        object.__setattr__(self, "status", ReceiptStatus.from_payload(self.payload))

    @property
    def is_valid(self) -> bool:
        """Check if the remote service accepted the receipt."""
        return self.status.is_valid
