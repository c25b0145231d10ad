# supply_hub/services/catalog.py
"""
Products and suppliers: the reference data orders, batches and invoices point at.

Product stock is never edited here; it only moves through StockLedger.
"""
from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from supply_hub.database import transaction
from supply_hub.db_models import Product, Supplier, ReceivingBatch, SupplierInvoice, WarehouseType
from supply_hub.exceptions import ValidationError, NotFoundError, DuplicateError, ReferencedError
from supply_hub.services.stock import product_to_dict
from supply_hub.utils import clip_text

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ("name", "unit", "warehouse_type", "price", "is_available", "notes")
SUPPLIER_FIELDS = ("name", "contact", "notes")


def supplier_to_dict(s: Supplier) -> Dict[str, Any]:
    return {
        "id": s.id,
        "name": s.name,
        "contact": s.contact,
        "notes": s.notes,
        "createdAt": s.created_at.isoformat() if s.created_at else None,
    }


class CatalogService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Products
    # =========================================================================

    async def list_products(
        self,
        q: Optional[str] = None,
        available: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        if limit < 1 or limit > 500:
            raise ValidationError("limit must be between 1 and 500")
        if offset < 0:
            raise ValidationError("offset must be >= 0")
        filters = []
        if q:
            filters.append(Product.name.contains(q))
        if available is not None:
            filters.append(Product.is_available.is_(available))

        total = (await self.db.execute(select(func.count(Product.id)).where(*filters))).scalar_one()
        rows = (await self.db.execute(
            select(Product).where(*filters).order_by(Product.id.desc()).limit(limit).offset(offset)
        )).scalars().all()
        return {"total": total, "items": [product_to_dict(p) for p in rows]}

    async def _product_name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Product.id).where(Product.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Product.id != exclude_id)
        return (await self.db.execute(stmt)).first() is not None

    @staticmethod
    def _clean_product_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
        out = {k: v for k, v in fields.items() if k in PRODUCT_FIELDS}
        for key in ("name", "unit"):
            if key in out:
                if out[key] is None or not str(out[key]).strip():
                    raise ValidationError(f"{key} must be a non-empty string")
                out[key] = str(out[key]).strip()
        if "warehouse_type" in out:
            try:
                out["warehouse_type"] = WarehouseType(out["warehouse_type"])
            except ValueError:
                raise ValidationError(f"Unknown warehouseType: {out['warehouse_type']}")
        if "price" in out:
            if out["price"] is None or Decimal(out["price"]) < 0:
                raise ValidationError("price must be a non-negative number")
        if "is_available" in out and out["is_available"] is None:
            raise ValidationError("isAvailable must be boolean")
        if "notes" in out:
            out["notes"] = clip_text(out["notes"])
        return out

    async def create_product(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        values = self._clean_product_fields(fields)
        if "name" not in values or "unit" not in values:
            raise ValidationError("name and unit are required")
        try:
            async with transaction(self.db):
                if await self._product_name_taken(values["name"]):
                    raise DuplicateError(f"Product name already exists: {values['name']}")
                product = Product(stock=Decimal("0"), **values)
                self.db.add(product)
                await self.db.flush()
        except IntegrityError as e:
            raise DuplicateError(f"Product name already exists: {values['name']}") from e
        logger.info(f"Product #{product.id} '{product.name}' created")
        return product_to_dict(product)

    async def update_product(self, product_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        values = self._clean_product_fields(fields)
        if not values:
            raise ValidationError("No valid fields provided")
        try:
            async with transaction(self.db):
                product = await self.db.get(Product, product_id, with_for_update=True)
                if product is None:
                    raise NotFoundError.for_entity("Product", product_id)
                if "name" in values and await self._product_name_taken(values["name"], product_id):
                    raise DuplicateError(f"Product name already exists: {values['name']}")
                for key, value in values.items():
                    setattr(product, key, value)
        except IntegrityError as e:
            raise DuplicateError("Product name already exists") from e
        return product_to_dict(product)

    # =========================================================================
    # Suppliers
    # =========================================================================

    async def list_suppliers(self) -> List[Dict[str, Any]]:
        rows = (await self.db.execute(select(Supplier).order_by(Supplier.name.asc()))).scalars().all()
        return [supplier_to_dict(s) for s in rows]

    @staticmethod
    def _clean_supplier_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
        out = {k: v for k, v in fields.items() if k in SUPPLIER_FIELDS}
        if "name" in out:
            name = (out["name"] or "").strip()
            if not name:
                raise ValidationError("name cannot be empty")
            out["name"] = name
        if "contact" in out:
            out["contact"] = None if out["contact"] is None else str(out["contact"]).strip()[:255]
        if "notes" in out:
            out["notes"] = clip_text(out["notes"])
        return out

    async def _supplier_name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Supplier.id).where(Supplier.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Supplier.id != exclude_id)
        return (await self.db.execute(stmt)).first() is not None

    async def create_supplier(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        values = self._clean_supplier_fields(fields)
        if "name" not in values:
            raise ValidationError("name is required")
        try:
            async with transaction(self.db):
                if await self._supplier_name_taken(values["name"]):
                    raise DuplicateError("Supplier name already exists")
                supplier = Supplier(**values)
                self.db.add(supplier)
                await self.db.flush()
        except IntegrityError as e:
            raise DuplicateError("Supplier name already exists") from e
        return {"item": supplier_to_dict(supplier)}

    async def update_supplier(self, supplier_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        values = self._clean_supplier_fields(fields)
        if not values:
            raise ValidationError("No fields to update")
        try:
            async with transaction(self.db):
                supplier = await self.db.get(Supplier, supplier_id, with_for_update=True)
                if supplier is None:
                    raise NotFoundError.for_entity("Supplier", supplier_id)
                if "name" in values and await self._supplier_name_taken(values["name"], supplier_id):
                    raise DuplicateError("Supplier name already exists")
                for key, value in values.items():
                    setattr(supplier, key, value)
        except IntegrityError as e:
            raise DuplicateError("Supplier name already exists") from e
        return {"item": supplier_to_dict(supplier)}

    async def delete_supplier(self, supplier_id: int) -> None:
        async with transaction(self.db):
            supplier = await self.db.get(Supplier, supplier_id, with_for_update=True)
            if supplier is None:
                raise NotFoundError.for_entity("Supplier", supplier_id)
            for model in (ReceivingBatch, SupplierInvoice):
                ref = (await self.db.execute(
                    select(model.id).where(model.supplier_id == supplier_id).limit(1)
                )).first()
                if ref is not None:
                    raise ReferencedError(
                        "Cannot delete supplier with existing receiving batches or invoices",
                        details={"supplierId": supplier_id},
                    )
            await self.db.execute(delete(Supplier).where(Supplier.id == supplier_id))
        logger.info(f"Supplier #{supplier_id} deleted")
