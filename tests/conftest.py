"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes for the platform collaborators:
- Payment queue recording finish calls
- Request bridge answering platform requests with scripted outcomes
- Receipt file on disk
- Verification endpoint stubbed with httpx.MockTransport
- Reconciliation engine wired from the above
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from iapkit.config import Environment, FinalizePolicy
from iapkit.models.storekit import (
    PaymentTransaction,
    PlatformRequest,
    Product,
    ProductRequest,
    TransactionState,
)
from iapkit.services.receipt_accessor import ReceiptAccessor
from iapkit.services.receipt_refresher import ReceiptRefresher
from iapkit.services.reconciliation import ReconciliationEngine
from iapkit.services.request_dispatcher import RequestDispatcher
from iapkit.services.verification_client import VerificationClient

RECEIPT_BYTES = b"MIIT-fake-pkcs7-receipt"

# ============================================================================
# Platform Fakes
# ============================================================================


class ScriptedBridge:
    """
    Platform request bridge that answers every request immediately.

    refresh_outcomes is consumed in order; True finishes the refresh, an
    exception fails it. Product requests receive `products`.
    """

    def __init__(self) -> None:
        self.dispatcher: RequestDispatcher | None = None
        self.started: list[PlatformRequest] = []
        self.refresh_outcomes: list[bool | Exception] = []
        self.products: list[Product] = []
        self.auto_respond = True
        self.on_refresh: Callable[[], None] | None = None

    def start(self, request: PlatformRequest) -> None:
        self.started.append(request)
        if not self.auto_respond or self.dispatcher is None:
            return

        if isinstance(request, ProductRequest):
            self.dispatcher.did_receive_products(request, list(self.products))
            self.dispatcher.did_finish(request)
            return

        outcome = self.refresh_outcomes.pop(0) if self.refresh_outcomes else True
        if outcome is True:
            if self.on_refresh is not None:
                self.on_refresh()
            self.dispatcher.did_finish(request)
        else:
            self.dispatcher.did_fail(request, outcome)  # type: ignore[arg-type]


@pytest.fixture
def events() -> list[tuple[Any, ...]]:
    """Shared ordered log of finish calls and completion deliveries."""
    return []


@pytest.fixture
def payment_queue(events: list[tuple[Any, ...]]) -> MagicMock:
    """Payment queue that records finish calls."""
    queue = MagicMock()
    queue.finish_transaction = MagicMock(
        side_effect=lambda transaction: events.append(("finish", transaction.transaction_id))
    )
    queue.add_payment = MagicMock()
    queue.can_make_payments = MagicMock(return_value=True)
    return queue


@pytest.fixture
def bridge() -> ScriptedBridge:
    return ScriptedBridge()


@pytest.fixture
def dispatcher(bridge: ScriptedBridge) -> RequestDispatcher:
    dispatcher = RequestDispatcher(bridge)
    bridge.dispatcher = dispatcher
    return dispatcher


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Replacement for asyncio.sleep in retry backoff."""
    return AsyncMock()


@pytest.fixture
def refresher(dispatcher: RequestDispatcher, no_sleep: AsyncMock) -> ReceiptRefresher:
    return ReceiptRefresher(dispatcher, max_attempts=3, backoff_seconds=0.5, sleep=no_sleep)


# ============================================================================
# Receipt Fixtures
# ============================================================================


@pytest.fixture
def receipt_path(tmp_path: Path) -> Path:
    """Location of the receipt; the file does not exist until written."""
    return tmp_path / "StoreKit" / "receipt"


@pytest.fixture
def write_receipt(receipt_path: Path) -> Callable[[bytes], None]:
    def _write(data: bytes = RECEIPT_BYTES) -> None:
        receipt_path.parent.mkdir(parents=True, exist_ok=True)
        receipt_path.write_bytes(data)

    return _write


# ============================================================================
# Verification Endpoint Fixtures
# ============================================================================


class VerifyEndpoint:
    """Records verifyReceipt calls and answers them with a handler."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda request: (
            httpx.Response(200, json={"status": 0, "receipt": {"bundle_id": "com.example.app"}})
        )

    def respond_with(self, body: Any, status_code: int = 200) -> None:
        self.handler = lambda request: httpx.Response(status_code, json=body)

    def respond_raw(self, content: bytes, status_code: int = 200) -> None:
        self.handler = lambda request: httpx.Response(status_code, content=content)

    def fail_with(self, exc: Exception) -> None:
        def _raise(request: httpx.Request) -> httpx.Response:
            raise exc

        self.handler = _raise

    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    def transport(self) -> httpx.MockTransport:
        def _handle(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.handler(request)

        return httpx.MockTransport(_handle)


@pytest.fixture
def verify_endpoint() -> VerifyEndpoint:
    return VerifyEndpoint()


@pytest.fixture
def verification_client(verify_endpoint: VerifyEndpoint) -> VerificationClient:
    return VerificationClient(
        environment=Environment.SANDBOX,
        timeout=5.0,
        transport=verify_endpoint.transport(),
    )


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def deliveries() -> list[tuple[Any, Any]]:
    """Completion deliveries as (payload, error)."""
    return []


@pytest.fixture
def completion(
    events: list[tuple[Any, ...]],
    deliveries: list[tuple[Any, Any]],
) -> Callable[[Any, Any], None]:
    def _completion(payload: Any, error: Any) -> None:
        deliveries.append((payload, error))
        events.append(("callback", payload, error))

    return _completion


@pytest.fixture
def engine_factory(
    payment_queue: MagicMock,
    receipt_path: Path,
    verification_client: VerificationClient,
    refresher: ReceiptRefresher,
    completion: Callable[[Any, Any], None],
):
    """Factory for engines with a customized policy."""

    def _create(
        shared_secret: str | None = None,
        finalize_policy: FinalizePolicy = FinalizePolicy.ANY_RESPONSE,
        report_refresh_failures: bool = False,
    ) -> ReconciliationEngine:
        return ReconciliationEngine(
            queue=payment_queue,
            receipt_accessor=ReceiptAccessor(receipt_path),
            verification_client=verification_client,
            receipt_refresher=refresher,
            shared_secret=shared_secret,
            finalize_policy=finalize_policy,
            report_refresh_failures=report_refresh_failures,
            completion=completion,
        )

    return _create


@pytest.fixture
def engine(engine_factory) -> ReconciliationEngine:
    return engine_factory()


def make_transaction(
    transaction_id: str = "1000000001",
    state: TransactionState = TransactionState.PURCHASED,
    product_id: str = "com.example.app.coins_100",
    error: Exception | None = None,
) -> PaymentTransaction:
    """Factory function to create queue transactions."""
    return PaymentTransaction(
        transaction_id=transaction_id,
        product_id=product_id,
        state=state,
        error=error,
    )


@pytest.fixture
def transaction_factory() -> Callable[..., PaymentTransaction]:
    return make_transaction
