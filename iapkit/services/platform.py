"""
Platform Protocols - Seams for the platform-owned collaborators.

The payment queue and the request bridge are implemented by the host
platform (or by fakes in tests). IAPKit never owns their lifecycle.
"""

from typing import Protocol

from iapkit.models.storekit import Payment, PaymentTransaction, PlatformRequest


class PaymentQueue(Protocol):
    """
    Platform payment queue.

    Emits transaction state events and accepts finish acknowledgements.
    """

    def finish_transaction(self, transaction: PaymentTransaction) -> None:
        """
        Remove a transaction from the queue.

        Must be called at most once per transaction.
        """
        ...

    def add_payment(self, payment: Payment) -> None:
        """Submit a payment; the platform owns authorization."""
        ...

    def can_make_payments(self) -> bool:
        """Check whether this device is allowed to make payments."""
        ...


class PlatformRequestBridge(Protocol):
    """
    Starts platform requests (product lookups, receipt refreshes).

    The bridge reports results back through RequestDispatcher's
    did_receive_products / did_finish / did_fail callbacks.
    """

    def start(self, request: PlatformRequest) -> None:
        """Start a platform request; no timeout is imposed here."""
        ...
