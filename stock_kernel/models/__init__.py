"""ORM models for the stock kernel.

Importing this package registers every table on ``Base.metadata``.
"""

from stock_kernel.models.delivery import (
    InventoryDelivery,
    InventoryDeliveryBatch,
    InventoryDeliveryItem,
)
from stock_kernel.models.sales_invoice import SalesInvoice, SalesInvoiceItem
from stock_kernel.models.stock_batch import InventoryStock, StockBatch
from stock_kernel.models.stock_movement import StockMovement

__all__ = [
    "InventoryDelivery",
    "InventoryDeliveryBatch",
    "InventoryDeliveryItem",
    "InventoryStock",
    "SalesInvoice",
    "SalesInvoiceItem",
    "StockBatch",
    "StockMovement",
]
