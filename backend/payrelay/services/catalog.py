"""
Catalog lookup primitive

Shared by the Admission Gate (price checks), the Purchase Classifier (display
names) and the Order Recorder (title/price/vendor). Every call reads the live
catalog; prices change, so nothing is cached.
"""
from __future__ import annotations

import logging
from typing import Protocol

from payrelay.integrations.processor import ProcessorError
from payrelay.models.purchase import CatalogProduct

logger = logging.getLogger(__name__)


class CatalogUnavailable(Exception):
    """The catalog itself could not be read."""


class ProductSource(Protocol):
    async def get_product(self, product_id: str) -> CatalogProduct | None: ...


class Catalog:
    def __init__(self, source: ProductSource) -> None:
        self._source = source

    async def lookup(self, product_id: str) -> CatalogProduct | None:
        """
        Return the product, or None when the catalog does not list it.

        Raises:
            CatalogUnavailable: the lookup failed
        """
        try:
            return await self._source.get_product(product_id)
        except ProcessorError as e:
            logger.warning("Catalog lookup for %s failed: %s", product_id, e)
            raise CatalogUnavailable(product_id) from e
