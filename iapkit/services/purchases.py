"""
Purchase Service - Submits payments for catalog products.
"""

from collections.abc import Iterable

from structlog import get_logger

from iapkit.exceptions import PaymentsNotAllowedError
from iapkit.models.storekit import Payment, Product, ProductRequest
from iapkit.services.platform import PaymentQueue
from iapkit.services.product_catalog import ProductCatalogClient

logger = get_logger(__name__)


class PurchaseService:
    """Adds payments to the queue; authorization stays with the platform."""

    def __init__(self, queue: PaymentQueue, catalog: ProductCatalogClient) -> None:
        self.queue = queue
        self.catalog = catalog

    def add_payment(self, product: Product, quantity: int = 1) -> Payment:
        """
        Submit a payment for one product.

        Raises:
            PaymentsNotAllowedError: If the device cannot make payments
        """
        if not self.queue.can_make_payments():
            raise PaymentsNotAllowedError(product.product_id)

        payment = Payment(product_id=product.product_id, quantity=quantity)
        self.queue.add_payment(payment)
        logger.info("payment_added", product_id=product.product_id, quantity=quantity)
        return payment

    def buy(self, product_ids: Iterable[str]) -> ProductRequest:
        """Look up the products and add a payment for each one returned."""

        def _on_products(products: list[Product]) -> None:
            for product in products:
                try:
                    self.add_payment(product)
                except PaymentsNotAllowedError as exc:
                    logger.warning("payment_not_added", product_id=exc.product_id, error=str(exc))

        return self.catalog.fetch_products(product_ids, _on_products)
