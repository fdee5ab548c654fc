"""
Product Catalog Client - Looks up purchasable product metadata.
"""

import asyncio
from collections.abc import Iterable

from structlog import get_logger

from iapkit.models.storekit import Product, ProductRequest, ProductsCompletion
from iapkit.services.request_dispatcher import RequestDispatcher

logger = get_logger(__name__)


class ProductCatalogClient:
    """Requests product metadata for a set of identifiers."""

    def __init__(self, dispatcher: RequestDispatcher) -> None:
        self.dispatcher = dispatcher

    def fetch_products(
        self,
        product_ids: Iterable[str],
        completion: ProductsCompletion | None = None,
    ) -> ProductRequest:
        """
        Start a product lookup.

        Args:
            product_ids: Product identifiers from the store configuration
            completion: Receives the products the platform knows about

        Returns:
            The in-flight request
        """
        request = ProductRequest(product_ids=frozenset(product_ids), completion=completion)
        logger.info("fetching_products", product_ids=sorted(request.product_ids))
        self.dispatcher.start(request)
        return request

    async def fetch_products_async(self, product_ids: Iterable[str]) -> list[Product]:
        """Fetch products and wait for the platform's answer."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[list[Product]] = loop.create_future()

        def _resolve(products: list[Product]) -> None:
            if not future.done():
                future.set_result(products)

        self.fetch_products(
            product_ids,
            lambda products: loop.call_soon_threadsafe(_resolve, products),
        )
        return await future
