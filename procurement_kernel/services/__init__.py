"""Services for the procurement kernel (write side)."""

from procurement_kernel.services.cost_comparison_service import CostComparisonService
from procurement_kernel.services.delivery_service import DeliveryService
from procurement_kernel.services.inventory_ledger import InventoryLedger
from procurement_kernel.services.lifecycle_controller import RequestLifecycleController
from procurement_kernel.services.purchase_order_service import PurchaseOrderService
from procurement_kernel.services.request_service import RequestService
from procurement_kernel.services.sequence_service import SequenceService
from procurement_kernel.services.site_service import SiteService
from procurement_kernel.services.vendor_service import VendorService

__all__ = [
    "CostComparisonService",
    "DeliveryService",
    "InventoryLedger",
    "PurchaseOrderService",
    "RequestLifecycleController",
    "RequestService",
    "SequenceService",
    "SiteService",
    "VendorService",
]
