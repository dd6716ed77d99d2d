"""
Service layer for Site operations.

Manages construction sites, central stores and other delivery locations.
Site names are unique regardless of case.  Coordinates come from the
location collaborator through the facade and are stored as given.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from procurement_kernel.domain.authority import Actor, require_role
from procurement_kernel.domain.dtos import SiteInfo, SiteType
from procurement_kernel.domain.validation import (
    optional_text,
    require_decimal,
    require_enum,
    require_text,
)
from procurement_kernel.exceptions import SiteNotFoundError, ValidationError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.site import Site
from procurement_kernel.services.base import BaseService

logger = get_logger("services.site")


class SiteService(BaseService[Site]):
    """
    Service for managing sites.

    All public methods return SiteInfo DTOs.
    """

    def _get_by_id(self, site_id: UUID) -> Site:
        site = self.session.get(Site, site_id)
        if site is None:
            raise SiteNotFoundError(str(site_id))
        return site

    def get_by_id(self, site_id: UUID) -> SiteInfo:
        return self._get_by_id(site_id).to_dto()

    def list_sites(self, active_only: bool = True) -> list[SiteInfo]:
        stmt = select(Site)
        if active_only:
            stmt = stmt.where(Site.is_active.is_(True))
        stmt = stmt.order_by(Site.name)
        return [s.to_dto() for s in self.session.execute(stmt).scalars().all()]

    def create_site(
        self,
        name: str,
        actor: Actor,
        site_type: SiteType | str = SiteType.SITE,
        code: str | None = None,
        address: str | None = None,
        description: str | None = None,
        latitude: Decimal | None = None,
        longitude: Decimal | None = None,
    ) -> SiteInfo:
        """
        Create a new site.

        Args:
            name: Display name, unique ignoring case.
            actor: Manager or purchase officer.
            site_type: site, inventory or other.
            latitude / longitude: Captured coordinates, if any.

        Raises:
            ValidationError: Blank or duplicate name, unknown site type,
                out-of-range coordinates.
        """
        require_role(actor, "site.manage")
        name = require_text(name, "name")
        site_type = require_enum(SiteType, site_type, "site_type")
        self._require_unique_name(name)

        site = Site(
            name=name,
            site_type=site_type.value,
            code=optional_text(code),
            address=optional_text(address),
            description=optional_text(description),
            latitude=_coordinate(latitude, "latitude", Decimal("90")),
            longitude=_coordinate(longitude, "longitude", Decimal("180")),
            is_active=True,
            created_by_id=actor.actor_id,
            created_at=self._now(),
        )
        self.session.add(site)
        self.session.flush()

        logger.info(
            "site_created",
            extra={
                "site_id": str(site.id),
                "site_name": site.name,
                "site_type": site.site_type,
                "has_location": site.latitude is not None,
            },
        )
        return site.to_dto()

    def update_site(
        self,
        site_id: UUID,
        actor: Actor,
        name: str | None = None,
        site_type: SiteType | str | None = None,
        code: str | None = None,
        address: str | None = None,
        description: str | None = None,
        latitude: Decimal | None = None,
        longitude: Decimal | None = None,
    ) -> SiteInfo:
        """Update site details.  Only the arguments given are changed."""
        require_role(actor, "site.manage")
        site = self._get_by_id(site_id)

        if name is not None:
            name = require_text(name, "name")
            self._require_unique_name(name, exclude_id=site.id)
            site.name = name
        if site_type is not None:
            site.site_type = require_enum(SiteType, site_type, "site_type").value
        if code is not None:
            site.code = optional_text(code)
        if address is not None:
            site.address = optional_text(address)
        if description is not None:
            site.description = optional_text(description)
        if latitude is not None:
            site.latitude = _coordinate(latitude, "latitude", Decimal("90"))
        if longitude is not None:
            site.longitude = _coordinate(longitude, "longitude", Decimal("180"))

        self._stamp_update(site, actor)
        self.session.flush()
        return site.to_dto()

    def set_site_active(self, site_id: UUID, is_active: bool, actor: Actor) -> SiteInfo:
        """Activate or deactivate a site.  Inactive sites accept no new requests."""
        require_role(actor, "site.manage")
        site = self._get_by_id(site_id)
        site.is_active = bool(is_active)
        self._stamp_update(site, actor)
        self.session.flush()

        logger.info(
            "site_activation_changed",
            extra={"site_id": str(site.id), "is_active": site.is_active},
        )
        return site.to_dto()

    def _require_unique_name(self, name: str, exclude_id: UUID | None = None) -> None:
        stmt = select(Site.id).where(func.lower(Site.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Site.id != exclude_id)
        if self.session.execute(stmt).first() is not None:
            raise ValidationError("name", f"a site named '{name}' already exists")


def _coordinate(value, field: str, bound: Decimal) -> Decimal | None:
    if value is None:
        return None
    result = require_decimal(value, field)
    if abs(result) > bound:
        raise ValidationError(field, f"must be between -{bound} and {bound}, got {result}")
    return result
