"""
Module: procurement_kernel.selectors.dashboard_selector
Responsibility: The overview figures shown on the procurement dashboard:
    request counts per status, open challans, catalog size, low-stock
    count and the busiest sites.
Architecture position: Kernel > Selectors.  Composes the delivery and
    inventory selectors.
"""

from decimal import Decimal

from sqlalchemy import func, select

from procurement_kernel.domain.dtos import RequestStatus
from procurement_kernel.domain.read_models import DashboardOverview, SiteActivity
from procurement_kernel.models.request import Request
from procurement_kernel.models.site import Site
from procurement_kernel.selectors.base import BaseSelector
from procurement_kernel.selectors.delivery_selector import DeliverySelector
from procurement_kernel.selectors.inventory_selector import InventorySelector


class DashboardSelector(BaseSelector[Request]):
    """Aggregate counts across the lifecycle."""

    def overview(self, low_stock_threshold: Decimal | int, top_sites: int = 5) -> DashboardOverview:
        counts = dict(
            self.session.execute(
                select(Request.status, func.count(Request.id)).group_by(Request.status)
            ).all()
        )
        by_status = {status.value: counts.get(status.value, 0) for status in RequestStatus}

        inventory = InventorySelector(self.session)
        return DashboardOverview(
            total_requests=sum(by_status.values()),
            requests_by_status=by_status,
            open_deliveries=DeliverySelector(self.session).open_count(),
            inventory_items=inventory.item_count(),
            low_stock_items=len(inventory.low_stock(low_stock_threshold)),
            top_sites=self._top_sites(top_sites),
        )

    def _top_sites(self, limit: int) -> tuple[SiteActivity, ...]:
        request_count = func.count(Request.id)
        rows = self.session.execute(
            select(Site.id, Site.name, request_count)
            .join(Request, Request.site_id == Site.id)
            .group_by(Site.id, Site.name)
            .order_by(request_count.desc(), Site.name)
            .limit(limit)
        ).all()
        return tuple(
            SiteActivity(site_id=site_id, site_name=name, request_count=count)
            for site_id, name, count in rows
        )
