"""
Platform Request Dispatcher - Routes platform completions to their requests.

Each request carries its own one-shot completion, so concurrent requests of
the same kind never cross-deliver results.
"""

from structlog import get_logger

from iapkit.exceptions import PlatformRequestError
from iapkit.models.storekit import (
    PlatformRequest,
    Product,
    ProductRequest,
    ReceiptRefreshRequest,
)
from iapkit.observability.metrics import metrics
from iapkit.services.platform import PlatformRequestBridge

logger = get_logger(__name__)


class RequestDispatcher:
    """
    Starts platform requests and delivers their terminal callback.

    The bridge calls did_receive_products, did_finish and did_fail. A request
    is in flight from start() until its first terminal signal; later signals
    for the same request are dropped.
    """

    def __init__(self, bridge: PlatformRequestBridge) -> None:
        self.bridge = bridge
        self._in_flight: dict[str, PlatformRequest] = {}

    @property
    def in_flight(self) -> int:
        """Number of requests awaiting a terminal signal."""
        return len(self._in_flight)

    def start(self, request: PlatformRequest) -> None:
        """Register and start a platform request."""
        self._in_flight[request.request_id] = request
        logger.info(
            "platform_request_started",
            request_id=request.request_id,
            request_kind=request.kind,
        )
        try:
            self.bridge.start(request)
        except Exception:
            self._in_flight.pop(request.request_id, None)
            raise

    def did_receive_products(self, request: ProductRequest, products: list[Product]) -> None:
        """Product metadata arrived for a product request."""
        if not self._claim(request):
            return

        metrics.record_platform_request(request.kind, "success")
        logger.info(
            "products_received",
            request_id=request.request_id,
            requested=len(request.product_ids),
            received=len(products),
        )
        if request.completion is not None:
            request.completion(products)

    def did_finish(self, request: PlatformRequest) -> None:
        """The platform reports a request as finished."""
        match request:
            case ReceiptRefreshRequest():
                if not self._claim(request):
                    return
                metrics.record_platform_request(request.kind, "success")
                logger.info("receipt_refresh_finished", request_id=request.request_id)
                if request.completion is not None:
                    request.completion(True, None)
            case ProductRequest():
                # Normally already delivered by did_receive_products
                if request.request_id not in self._in_flight:
                    return
                self._claim(request)
                logger.warning(
                    "product_request_finished_without_products",
                    request_id=request.request_id,
                )
                if request.completion is not None:
                    request.completion([])

    def did_fail(self, request: PlatformRequest, error: Exception) -> None:
        """The platform reports a request as failed."""
        if not self._claim(request):
            return

        metrics.record_platform_request(request.kind, "failure")
        logger.warning(
            "platform_request_failed",
            request_id=request.request_id,
            request_kind=request.kind,
            error=str(error),
        )

        match request:
            case ReceiptRefreshRequest(completion=completion):
                if completion is not None:
                    completion(False, PlatformRequestError(request.kind, error))
            case ProductRequest(completion=completion):
                if completion is not None:
                    completion([])

    def _claim(self, request: PlatformRequest) -> bool:
        """Take a request out of flight; False if it already completed."""
        if self._in_flight.pop(request.request_id, None) is None:
            logger.warning(
                "platform_request_duplicate_completion",
                request_id=request.request_id,
                request_kind=request.kind,
            )
            return False
        return True
