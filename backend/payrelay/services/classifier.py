"""
Purchase Classifier

Resolves the display name and purchase category of a confirmed charge.

Resolution order:
1. an explicit category tag supplied at purchase time (normalized, exact)
2. for upsells, the first keyword rule whose keyword occurs in the product
   name (case-insensitive), else "generic-upsell"
3. otherwise "main-purchase"

The keyword path is a heuristic. A failed catalog lookup falls back to a
placeholder name and never aborts the pipeline.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from payrelay.enums import GENERIC_UPSELL, MAIN_PURCHASE
from payrelay.models.purchase import Classification
from payrelay.services.catalog import Catalog, CatalogUnavailable

logger = logging.getLogger(__name__)

PLACEHOLDER_PRODUCT_NAME = "Unknown product"

_SEPARATORS = re.compile(r"[\s_]+")


@dataclass(frozen=True)
class CategoryRule:
    keyword: str
    category: str


def build_rules(pairs: Iterable[tuple[str, str]]) -> tuple[CategoryRule, ...]:
    return tuple(CategoryRule(keyword=k.lower(), category=c) for k, c in pairs)


def normalize_category(tag: str) -> str:
    """'  Coaching_Buyer ' -> 'coaching-buyer'"""
    return _SEPARATORS.sub("-", tag.strip().lower())


class PurchaseClassifier:
    def __init__(self, catalog: Catalog, rules: Iterable[CategoryRule]) -> None:
        self.catalog = catalog
        self.rules = tuple(rules)

    async def resolve_name(self, product_id: str) -> str:
        """
        Display name for a product.

        Args:
            product_id: catalog product id

        Returns:
            the catalog name, or the placeholder when the product is unknown
            or the catalog cannot be read
        """
        try:
            product = await self.catalog.lookup(product_id)
        except CatalogUnavailable:
            return PLACEHOLDER_PRODUCT_NAME
        if product is None:
            logger.info("Product %s not in catalog, using placeholder name", product_id)
            return PLACEHOLDER_PRODUCT_NAME
        return product.name

    def infer_category(self, product_name: str) -> tuple[str, str | None]:
        """
        Apply the keyword rules in order to an upsell's product name.

        Returns:
            (category, matched keyword); ("generic-upsell", None) when no
            rule matches
        """
        name = product_name.lower()
        for rule in self.rules:
            if rule.keyword in name:
                return rule.category, rule.keyword
        return GENERIC_UPSELL, None

    async def classify(
        self,
        product_id: str,
        *,
        is_upsell: bool,
        category_tag: str | None = None,
    ) -> Classification:
        """
        Classify one confirmed charge.

        Args:
            product_id: catalog product id
            is_upsell: whether the charge was an upsell
            category_tag: category supplied at purchase time, if any

        Returns:
            Classification with the display name and purchase category
        """
        product_name = await self.resolve_name(product_id)

        if category_tag and category_tag.strip():
            return Classification(
                product_name=product_name,
                purchase_category=normalize_category(category_tag),
                explicit=True,
            )
        if is_upsell:
            category, keyword = self.infer_category(product_name)
            return Classification(
                product_name=product_name, purchase_category=category, matched_rule=keyword
            )
        return Classification(product_name=product_name, purchase_category=MAIN_PURCHASE)
