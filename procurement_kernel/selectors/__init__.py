"""Selectors for the procurement kernel (read side)."""

from procurement_kernel.selectors.cost_comparison_selector import CostComparisonSelector
from procurement_kernel.selectors.dashboard_selector import DashboardSelector
from procurement_kernel.selectors.delivery_selector import DeliverySelector
from procurement_kernel.selectors.inventory_selector import InventorySelector
from procurement_kernel.selectors.purchase_order_selector import PurchaseOrderSelector
from procurement_kernel.selectors.request_selector import RequestSelector

__all__ = [
    "CostComparisonSelector",
    "DashboardSelector",
    "DeliverySelector",
    "InventorySelector",
    "PurchaseOrderSelector",
    "RequestSelector",
]
