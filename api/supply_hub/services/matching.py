# supply_hub/services/matching.py
"""
Resolving invoice product names to catalog products.

The reconciliation service only depends on the ``ProductMatcher`` protocol,
so a stricter resolver (tokenized, edit distance, supplier SKU) can be
swapped in without touching the import transaction.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from supply_hub.db_models import Product


@dataclass(frozen=True)
class MatchedProduct:
    product_id: int
    name: str


class ProductMatcher(Protocol):
    async def resolve(self, name: str) -> Optional[MatchedProduct]:
        ...


class CatalogNameMatcher:
    """
    Exact name first, then the first product (lowest id) whose name
    contains the invoice text, ignoring case.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._catalog: Optional[List[MatchedProduct]] = None

    async def _load(self) -> List[MatchedProduct]:
        if self._catalog is None:
            rows = (await self.db.execute(select(Product.id, Product.name).order_by(Product.id))).all()
            self._catalog = [MatchedProduct(product_id=pid, name=name) for pid, name in rows]
        return self._catalog

    async def resolve(self, name: str) -> Optional[MatchedProduct]:
        needle = (name or "").strip()
        if not needle:
            return None
        catalog = await self._load()

        for p in catalog:
            if p.name == needle:
                return p

        folded = needle.casefold()
        for p in catalog:
            if folded in p.name.casefold():
                return p
        return None
