# supply_hub/services/__init__.py
"""
Business logic services for Supply Hub.
"""
from supply_hub.services.catalog import CatalogService
from supply_hub.services.change_log import ChangeLogService, describe_change
from supply_hub.services.matching import ProductMatcher, CatalogNameMatcher
from supply_hub.services.orders import OrderService, LineRequest
from supply_hub.services.quantities import classify_unit, quantity_error, validate_quantity
from supply_hub.services.receiving import ReceivingService, BatchLine
from supply_hub.services.reconciliation import ReconciliationService, InvoiceRow
from supply_hub.services.stock import StockLedger, InventoryService

__all__ = [
    "CatalogService",
    "ChangeLogService",
    "describe_change",
    "ProductMatcher",
    "CatalogNameMatcher",
    "OrderService",
    "LineRequest",
    "classify_unit",
    "quantity_error",
    "validate_quantity",
    "ReceivingService",
    "BatchLine",
    "ReconciliationService",
    "InvoiceRow",
    "StockLedger",
    "InventoryService",
]
