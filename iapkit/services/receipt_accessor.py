"""
Receipt Accessor - Reads the local receipt blob written by the platform.
"""

from pathlib import Path

from structlog import get_logger

from iapkit.models.receipt import Receipt

logger = get_logger(__name__)


class ReceiptAccessor:
    """Reads the receipt from a fixed location. No caching."""

    def __init__(self, receipt_path: Path) -> None:
        self.receipt_path = receipt_path

    def current_receipt(self) -> Receipt | None:
        """
        Read the current receipt.

        Re-reads on every call since a refresh may have replaced the file.

        Returns:
            The receipt, or None when the file is missing, unreadable or empty
        """
        try:
            data = self.receipt_path.read_bytes()
        except OSError as exc:
            logger.debug("receipt_unavailable", path=str(self.receipt_path), error=str(exc))
            return None

        if not data:
            logger.debug("receipt_empty", path=str(self.receipt_path))
            return None

        return Receipt(data=data)
