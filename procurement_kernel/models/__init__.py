"""Persistence models for the procurement kernel."""

from procurement_kernel.models.cost_comparison import CostComparison, Quote
from procurement_kernel.models.delivery import DeliveryChallan, DeliveryItem
from procurement_kernel.models.inventory import (
    InventoryImage,
    InventoryItem,
    StockMovement,
    inventory_item_vendors,
)
from procurement_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from procurement_kernel.models.request import Request, RequestNote
from procurement_kernel.models.site import Site
from procurement_kernel.models.vendor import Vendor


def import_all_models() -> tuple[type, ...]:
    """Return every mapped class; importing this package registers them."""
    return (
        Vendor,
        Site,
        Request,
        RequestNote,
        CostComparison,
        Quote,
        PurchaseOrder,
        PurchaseOrderLine,
        DeliveryChallan,
        DeliveryItem,
        InventoryItem,
        InventoryImage,
        StockMovement,
    )


__all__ = [
    "Vendor",
    "Site",
    "Request",
    "RequestNote",
    "CostComparison",
    "Quote",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "DeliveryChallan",
    "DeliveryItem",
    "InventoryItem",
    "InventoryImage",
    "StockMovement",
    "inventory_item_vendors",
    "import_all_models",
]
