"""
Receipt Verification Client - verifyReceipt round-trip.

NO DICTIONARIES - Request and result use strongly typed models.

Performs a single POST per call with no internal retry. The status code in
the response is NOT interpreted here: some non-zero statuses (e.g. 21006)
still carry a usable payload, so the caller decides.
"""

import json
import time

import httpx
from structlog import get_logger

from iapkit.config import Environment
from iapkit.exceptions import DecodeError, TransportError
from iapkit.models.receipt import Receipt, VerificationRequest, VerificationResult
from iapkit.observability.metrics import metrics

logger = get_logger(__name__)


class VerificationClient:
    """
    verifyReceipt client bound to one environment.

    The environment is fixed at construction; it is never inferred per call.
    """

    def __init__(
        self,
        environment: Environment,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize verification client.

        Args:
            environment: Sandbox or production endpoint selector
            timeout: Transport timeout in seconds
            transport: Optional httpx transport (used to stub the endpoint)
        """
        self.environment = environment
        self.timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        """Endpoint selected by the environment."""
        return self.environment.verify_url

    async def verify(
        self,
        receipt: Receipt,
        shared_secret: str | None = None,
    ) -> VerificationResult:
        """
        Verify a receipt with the remote service.

        Args:
            receipt: Local receipt blob
            shared_secret: App shared secret, for subscription receipts

        Returns:
            Decoded verification result (any status)

        Raises:
            TransportError: If the request could not be completed
            DecodeError: If the response body is not a JSON object
        """
        request = VerificationRequest(receipt_data=receipt.encoded(), password=shared_secret)
        started = time.perf_counter()

        logger.info(
            "verifying_receipt",
            environment=self.environment.value,
            has_shared_secret=shared_secret is not None,
        )

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    self.url,
                    content=request.to_json(),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as exc:
            self._record("transport_error", started)
            logger.warning(
                "receipt_verification_transport_error",
                environment=self.environment.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise TransportError(self.url, exc) from exc

        try:
            payload = json.loads(response.content)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            self._record("decode_error", started)
            logger.warning(
                "receipt_verification_invalid_json",
                http_status=response.status_code,
                error=str(exc),
            )
            raise DecodeError(str(exc), body=response.content) from exc

        if not isinstance(payload, dict):
            self._record("decode_error", started)
            logger.warning(
                "receipt_verification_not_an_object",
                http_status=response.status_code,
                payload_type=type(payload).__name__,
            )
            raise DecodeError(
                f"expected a JSON object, got {type(payload).__name__}",
                body=response.content,
            )

        result = VerificationResult(payload=payload, environment=self.environment)
        self._record(result.status.name.lower(), started)

        logger.info(
            "receipt_verification_completed",
            environment=self.environment.value,
            status=result.status.value,
            status_name=result.status.name,
            is_valid=result.is_valid,
        )

        return result

    def _record(self, outcome: str, started: float) -> None:
        metrics.record_verification(
            environment=self.environment.value,
            outcome=outcome,
            duration=time.perf_counter() - started,
        )
