"""
Service layer for Vendor operations.

Manages the supplier registry that quotes and purchase orders reference.
Vendors are deactivated, never deleted, so historical comparisons and
orders keep resolving.

Returns VendorInfo DTOs instead of ORM entities.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from procurement_kernel.domain.authority import Actor, require_role
from procurement_kernel.domain.dtos import VendorInfo
from procurement_kernel.domain.validation import (
    require_email,
    require_gst_number,
    require_text,
)
from procurement_kernel.exceptions import VendorNotFoundError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.vendor import Vendor
from procurement_kernel.services.base import BaseService

logger = get_logger("services.vendor")


class VendorService(BaseService[Vendor]):
    """
    Service for managing vendors.

    Every field is required; email and GST number are validated on create
    and on every update that touches them.  All public methods return
    VendorInfo DTOs, not ORM Vendor entities.
    """

    def _get_by_id(self, vendor_id: UUID) -> Vendor:
        """Get vendor by ID, raising if not found."""
        vendor = self.session.get(Vendor, vendor_id)
        if vendor is None:
            raise VendorNotFoundError(str(vendor_id))
        return vendor

    def get_by_id(self, vendor_id: UUID) -> VendorInfo:
        """
        Get vendor by ID.

        Raises:
            VendorNotFoundError: If vendor doesn't exist.
        """
        return self._get_by_id(vendor_id).to_dto()

    def list_vendors(self, active_only: bool = True) -> list[VendorInfo]:
        """List vendors ordered by company name."""
        stmt = select(Vendor)
        if active_only:
            stmt = stmt.where(Vendor.is_active.is_(True))
        stmt = stmt.order_by(Vendor.company_name)
        return [v.to_dto() for v in self.session.execute(stmt).scalars().all()]

    def create_vendor(
        self,
        company_name: str,
        contact_name: str,
        email: str,
        phone: str,
        gst_number: str,
        address: str,
        actor: Actor,
    ) -> VendorInfo:
        """
        Register a new vendor.

        Args:
            company_name: Registered business name.
            contact_name: Person to contact for quotes.
            email: Contact email address.
            phone: Contact phone number.
            gst_number: 15-character GSTIN, upper-cased before validation.
            address: Billing address printed on purchase orders.
            actor: Purchase officer or manager.

        Returns:
            Created VendorInfo DTO.

        Raises:
            ForbiddenError: Actor is a site engineer.
            ValidationError: Missing field, bad email or GST number.
        """
        require_role(actor, "vendor.manage")
        vendor = Vendor(
            company_name=require_text(company_name, "company_name"),
            contact_name=require_text(contact_name, "contact_name"),
            email=require_email(email),
            phone=require_text(phone, "phone"),
            gst_number=require_gst_number(gst_number),
            address=require_text(address, "address"),
            is_active=True,
            created_by_id=actor.actor_id,
            created_at=self._now(),
        )
        self.session.add(vendor)
        self.session.flush()

        logger.info(
            "vendor_created",
            extra={"vendor_id": str(vendor.id), "company_name": vendor.company_name},
        )
        return vendor.to_dto()

    def update_vendor(
        self,
        vendor_id: UUID,
        actor: Actor,
        company_name: str | None = None,
        contact_name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        gst_number: str | None = None,
        address: str | None = None,
    ) -> VendorInfo:
        """
        Update vendor details.  Only the arguments given are changed.

        Returns:
            Updated VendorInfo DTO.
        """
        require_role(actor, "vendor.manage")
        vendor = self._get_by_id(vendor_id)

        if company_name is not None:
            vendor.company_name = require_text(company_name, "company_name")
        if contact_name is not None:
            vendor.contact_name = require_text(contact_name, "contact_name")
        if email is not None:
            vendor.email = require_email(email)
        if phone is not None:
            vendor.phone = require_text(phone, "phone")
        if gst_number is not None:
            vendor.gst_number = require_gst_number(gst_number)
        if address is not None:
            vendor.address = require_text(address, "address")

        self._stamp_update(vendor, actor)
        self.session.flush()
        return vendor.to_dto()

    def deactivate_vendor(self, vendor_id: UUID, actor: Actor) -> VendorInfo:
        """
        Deactivate a vendor.

        Deactivated vendors cannot receive new quotes or purchase orders
        but remain available for historical reference.
        """
        require_role(actor, "vendor.manage")
        vendor = self._get_by_id(vendor_id)
        vendor.is_active = False
        self._stamp_update(vendor, actor)
        self.session.flush()

        logger.info("vendor_deactivated", extra={"vendor_id": str(vendor.id)})
        return vendor.to_dto()
