"""
Receipt Refresher - Asks the platform to fetch or replace the local receipt.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from structlog import get_logger

from iapkit.exceptions import PlatformRequestError
from iapkit.models.storekit import ReceiptRefreshRequest, RefreshCompletion
from iapkit.services.request_dispatcher import RequestDispatcher

logger = get_logger(__name__)


@dataclass
class RefreshAttempts:
    """Bounded retry state for one transaction's receipt refresh."""

    transaction_id: str
    attempts: int = 0
    succeeded: bool = False
    last_error: PlatformRequestError | None = None


class ReceiptRefresher:
    """
    Issues receipt refresh requests through the dispatcher.

    No timeout is imposed; a refresh stays in flight until the platform
    reports completion or failure.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1: {max_attempts}")
        self.dispatcher = dispatcher
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def refresh(self, completion: RefreshCompletion | None = None) -> ReceiptRefreshRequest:
        """Start one refresh; completion receives (success, error)."""
        request = ReceiptRefreshRequest(completion=completion)
        self.dispatcher.start(request)
        return request

    def start_refresh(self) -> asyncio.Future[None]:
        """
        Start one refresh now and return a future for the platform's answer.

        The future fails with PlatformRequestError if the platform reports
        failure. Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()

        def _resolve(success: bool, error: Exception | None) -> None:
            if future.done():
                return
            if success:
                future.set_result(None)
            elif isinstance(error, PlatformRequestError):
                future.set_exception(error)
            else:
                future.set_exception(PlatformRequestError(ReceiptRefreshRequest.kind, error))

        # Platform callbacks may arrive on another thread
        self.refresh(lambda success, error: loop.call_soon_threadsafe(_resolve, success, error))
        return future

    async def refresh_async(self) -> None:
        """
        Refresh the receipt once and wait for the platform's answer.

        Raises:
            PlatformRequestError: If the platform reports failure
        """
        await self.start_refresh()

    async def refresh_with_retry(
        self,
        transaction_id: str,
        first_attempt: asyncio.Future[None] | None = None,
    ) -> RefreshAttempts:
        """
        Refresh the receipt, retrying with exponential backoff.

        Args:
            transaction_id: Transaction waiting on the receipt
            first_attempt: Already started refresh to count as attempt one

        Returns:
            Attempt state; succeeded is False once the budget is exhausted
        """
        state = RefreshAttempts(transaction_id=transaction_id)
        delay = self.backoff_seconds
        pending = first_attempt

        while state.attempts < self.max_attempts:
            state.attempts += 1
            attempt = pending if pending is not None else self.start_refresh()
            pending = None
            try:
                await attempt
            except PlatformRequestError as exc:
                state.last_error = exc
                logger.warning(
                    "receipt_refresh_attempt_failed",
                    transaction_id=transaction_id,
                    attempt=state.attempts,
                    max_attempts=self.max_attempts,
                    error=str(exc),
                )
                if state.attempts < self.max_attempts:
                    await self._sleep(delay)
                    delay *= 2
                continue

            state.succeeded = True
            logger.info(
                "receipt_refreshed",
                transaction_id=transaction_id,
                attempt=state.attempts,
            )
            return state

        return state
