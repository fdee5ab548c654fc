"""
Transaction Reconciliation Engine.

Consumes payment queue events, verifies receipts for purchased
transactions and finishes each transaction at most once.

State handling:
- purchasing, restored, deferred: no action, the platform keeps the transaction
- purchased: read receipt -> verify (or refresh when no receipt) -> finish
- failed: report the platform error, then finish unconditionally
"""

import asyncio
from collections.abc import Callable, Sequence

from structlog import get_logger

from iapkit.config import FinalizePolicy, Settings
from iapkit.exceptions import DecodeError, TransactionFailedError, TransportError
from iapkit.models.receipt import Receipt, VerificationResult
from iapkit.models.storekit import PaymentTransaction, TransactionState
from iapkit.observability.logging import log_context
from iapkit.observability.metrics import metrics
from iapkit.services.platform import PaymentQueue
from iapkit.services.receipt_accessor import ReceiptAccessor
from iapkit.services.receipt_refresher import ReceiptRefresher
from iapkit.services.request_dispatcher import RequestDispatcher
from iapkit.services.verification_client import VerificationClient

logger = get_logger(__name__)

# (payload, error) - exactly one is set per call
VerifyCompletion = Callable[[dict[str, object] | None, Exception | None], None]


class ReconciliationEngine:
    """
    Per-transaction purchase state machine.

    One engine is one verification policy (environment, shared secret,
    finalize policy). Reassigning `completion` while verifications are in
    flight changes where their results are delivered.
    """

    def __init__(
        self,
        queue: PaymentQueue,
        receipt_accessor: ReceiptAccessor,
        verification_client: VerificationClient,
        receipt_refresher: ReceiptRefresher,
        shared_secret: str | None = None,
        finalize_policy: FinalizePolicy = FinalizePolicy.ANY_RESPONSE,
        report_refresh_failures: bool = False,
        completion: VerifyCompletion | None = None,
    ) -> None:
        self.queue = queue
        self.receipt_accessor = receipt_accessor
        self.verification_client = verification_client
        self.receipt_refresher = receipt_refresher
        self.shared_secret = shared_secret
        self.finalize_policy = finalize_policy
        self.report_refresh_failures = report_refresh_failures
        self.completion = completion

        self._finalized: set[str] = set()
        self._in_flight: set[str] = set()

        logger.info(
            "reconciliation_engine_initialized",
            environment=verification_client.environment.value,
            finalize_policy=finalize_policy.value,
            has_shared_secret=shared_secret is not None,
        )

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        queue: PaymentQueue,
        dispatcher: RequestDispatcher,
        completion: VerifyCompletion | None = None,
    ) -> "ReconciliationEngine":
        """Build an engine and its collaborators from settings."""
        return cls(
            queue=queue,
            receipt_accessor=ReceiptAccessor(config.receipt_path),
            verification_client=VerificationClient(
                environment=config.environment,
                timeout=config.verify_timeout_seconds,
            ),
            receipt_refresher=ReceiptRefresher(
                dispatcher,
                max_attempts=config.refresh_max_attempts,
                backoff_seconds=config.refresh_backoff_seconds,
            ),
            shared_secret=config.shared_secret,
            finalize_policy=config.finalize_policy,
            report_refresh_failures=config.report_refresh_failures,
            completion=completion,
        )

    @property
    def finalized_ids(self) -> frozenset[str]:
        """Transaction IDs this engine has finished."""
        return frozenset(self._finalized)

    async def on_transactions_updated(self, transactions: Sequence[PaymentTransaction]) -> None:
        """
        Handle one batch of transaction state changes.

        Transactions are dispatched in batch order: the receipt read and the
        verification or refresh start for a purchased transaction happen
        before the next transaction is looked at. Only the waits run
        concurrently, so verifications may finish in any order.
        """
        tasks: list[asyncio.Task[None]] = []

        for transaction in transactions:
            metrics.record_transaction_event(transaction.state.value)

            if transaction.transaction_id in self._finalized:
                logger.info(
                    "transaction_already_finalized",
                    transaction_id=transaction.transaction_id,
                    state=transaction.state.value,
                )
                continue

            match transaction.state:
                case TransactionState.PURCHASED:
                    if transaction.transaction_id in self._in_flight:
                        logger.info(
                            "transaction_verification_in_flight",
                            transaction_id=transaction.transaction_id,
                        )
                        continue
                    task = self._start_purchased(transaction)
                    if task is not None:
                        tasks.append(task)
                case TransactionState.FAILED:
                    self._handle_failed(transaction)
                case (
                    TransactionState.PURCHASING
                    | TransactionState.RESTORED
                    | TransactionState.DEFERRED
                ):
                    logger.debug(
                        "transaction_pending",
                        transaction_id=transaction.transaction_id,
                        state=transaction.state.value,
                    )

        if not tasks:
            return

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "transaction_reconciliation_crashed",
                    error=str(result),
                    error_type=type(result).__name__,
                    exc_info=result,
                )

    def on_transactions_removed(self, transactions: Sequence[PaymentTransaction]) -> None:
        """The platform removed finished transactions from the queue."""
        for transaction in transactions:
            self._in_flight.discard(transaction.transaction_id)
            logger.info(
                "transaction_removed_from_queue",
                transaction_id=transaction.transaction_id,
                finalized_here=transaction.transaction_id in self._finalized,
            )

    def _start_purchased(self, transaction: PaymentTransaction) -> asyncio.Task[None] | None:
        """Read the receipt and start verification or refresh; return the wait."""
        with log_context(
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
        ):
            self._in_flight.add(transaction.transaction_id)
            try:
                receipt = self.receipt_accessor.current_receipt()
                if receipt is None:
                    logger.info("receipt_missing_refreshing")
                    first_attempt = self.receipt_refresher.start_refresh()
                    waiting = self._await_refresh(transaction, first_attempt)
                else:
                    waiting = self._verify(transaction, receipt)
            except Exception:
                self._in_flight.discard(transaction.transaction_id)
                logger.exception("transaction_reconciliation_start_failed")
                return None

            # The task copies the bound log context
            return asyncio.create_task(waiting)

    async def _verify(self, transaction: PaymentTransaction, receipt: Receipt) -> None:
        try:
            try:
                result = await self.verification_client.verify(receipt, self.shared_secret)
            except (TransportError, DecodeError) as exc:
                # Left on the queue; the platform redelivers it later
                logger.warning(
                    "transaction_left_pending",
                    reason=type(exc).__name__,
                    error=str(exc),
                )
                self._notify(None, exc)
                return

            if self._should_finalize(result):
                self._finish(transaction, reason="verified")
            else:
                logger.warning(
                    "receipt_rejected_transaction_left_pending",
                    status=result.status.value,
                    status_name=result.status.name,
                )
            self._notify(result.payload, None)
        finally:
            self._in_flight.discard(transaction.transaction_id)

    async def _await_refresh(
        self,
        transaction: PaymentTransaction,
        first_attempt: asyncio.Future[None],
    ) -> None:
        try:
            state = await self.receipt_refresher.refresh_with_retry(
                transaction.transaction_id,
                first_attempt=first_attempt,
            )
        finally:
            self._in_flight.discard(transaction.transaction_id)

        if state.succeeded:
            # Verification resumes on the next queue event for this transaction
            logger.info("receipt_refreshed_awaiting_next_event", attempts=state.attempts)
            return

        logger.error(
            "receipt_refresh_exhausted",
            attempts=state.attempts,
            error=str(state.last_error),
        )
        if self.report_refresh_failures and state.last_error is not None:
            self._notify(None, state.last_error)

    def _handle_failed(self, transaction: PaymentTransaction) -> None:
        error = TransactionFailedError(transaction.transaction_id, transaction.error)
        logger.info(
            "transaction_failed",
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
            error=str(transaction.error),
        )
        self._notify(None, error)
        self._finish(transaction, reason="failed")

    def _should_finalize(self, result: VerificationResult) -> bool:
        if self.finalize_policy is FinalizePolicy.ONLY_STATUS_ZERO:
            return result.is_valid
        return True

    def _finish(self, transaction: PaymentTransaction, reason: str) -> None:
        if transaction.transaction_id in self._finalized:
            logger.warning(
                "duplicate_finish_suppressed",
                transaction_id=transaction.transaction_id,
            )
            return

        self._finalized.add(transaction.transaction_id)
        self.queue.finish_transaction(transaction)
        metrics.record_finalized(reason)
        logger.info(
            "transaction_finished",
            transaction_id=transaction.transaction_id,
            reason=reason,
        )

    def _notify(self, payload: dict[str, object] | None, error: Exception | None) -> None:
        completion = self.completion
        if completion is None:
            logger.debug("no_completion_registered", has_error=error is not None)
            return
        try:
            completion(payload, error)
        except Exception:
            # A broken callback must not keep transactions on the queue
            logger.exception(
                "completion_callback_failed",
                has_payload=payload is not None,
                has_error=error is not None,
            )
