"""
ProcurementService -- the public facade over the procurement kernel.

Responsibility
--------------
Single entry point for every lifecycle operation: requests, cost
comparisons, purchase orders, deliveries, inventory and the vendor/site
registries.  Owns the transaction boundary, retries optimistic-lock
conflicts, binds the logging context, and sequences external
collaborators (file storage, PDF rendering, location capture) around the
committed core record.

Architecture position
---------------------
**Services layer** -- above ``procurement_kernel`` and
``procurement_config``.  Kernel services only flush; this class commits.

Invariants enforced
-------------------
* Each public write commits on success and rolls back on a failed result
  or an exception.
* A stale write (OptimisticLockError) rolls back and re-runs the whole
  operation, up to ``config.max_retries`` attempts.
* Collaborators run outside the database transaction: uploads before it,
  deletes / location / rendering after the commit.  No row lock is held
  while a collaborator runs.
* A collaborator failure after commit is a warning on a partial success,
  never a rollback of the committed record.

Failure modes
-------------
* ProcurementError from the kernel -> failed OperationResult, rolled back.
* Lock conflicts beyond ``max_retries`` -> failed OperationResult with
  code OPTIMISTIC_LOCK_CONFLICT.
* Unexpected exception -> rolled back, logged, re-raised.

Audit relevance
---------------
``operation_committed`` / ``operation_failed`` / ``operation_retry`` and
``collaborator_failure`` are logged for every call with the bound actor
and operation name.

Usage::

    service = ProcurementService(session, config=get_active_config(),
                                 storage=s3_storage, renderer=pdf_renderer)
    result = service.create_delivery(items, meta, actor, po_id=po.id)
    if not result.is_success:
        show_error(result.error_code, result.error_message)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from procurement_config import ProcurementConfig
from procurement_kernel.db.immutability import register_immutability_listeners
from procurement_kernel.domain.authority import Actor, require_role
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.commands import (
    DeliveryItemInput,
    DeliveryMeta,
    EvidenceUpload,
    FileUpload,
    PurchaseOrderItemInput,
    QuoteInput,
    RequestItemInput,
)
from procurement_kernel.domain.dtos import DecisionOutcome, RequestStatus, SiteType, StockReason
from procurement_kernel.exceptions import (
    ExternalCollaboratorError,
    OptimisticLockError,
    ProcurementError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.selectors import (
    DashboardSelector,
    InventorySelector,
    PurchaseOrderSelector,
    RequestSelector,
)
from procurement_kernel.services import (
    CostComparisonService,
    DeliveryService,
    InventoryLedger,
    PurchaseOrderService,
    RequestLifecycleController,
    RequestService,
    SiteService,
    VendorService,
)
from procurement_services.collaborators import (
    FileStorage,
    LocationProvider,
    Precision,
    PurchaseOrderRenderer,
    StoredFile,
)
from procurement_services.results import CollaboratorWarning, OperationResult

logger = get_logger("services.procurement")


@dataclass(frozen=True)
class _Kernel:
    """The kernel services for one attempt, sharing a session and clock."""

    controller: RequestLifecycleController
    requests: RequestService
    comparisons: CostComparisonService
    orders: PurchaseOrderService
    deliveries: DeliveryService
    inventory: InventoryLedger
    vendors: VendorService
    sites: SiteService


class ProcurementService:
    """
    Orchestrates the procurement lifecycle through the kernel services.

    Contract
    --------
    * Every write method returns an ``OperationResult``; callers inspect
      ``result.is_success`` and ``result.warnings``.
    * Read helpers return DTOs / read models directly.

    Guarantees
    ----------
    * The session is committed only for a successful kernel call.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT create sessions; the caller supplies one per facade.
    * Does NOT authenticate; ``Actor`` comes from the identity provider.
    """

    def __init__(
        self,
        session: Session,
        config: ProcurementConfig | None = None,
        clock: Clock | None = None,
        storage: FileStorage | None = None,
        renderer: PurchaseOrderRenderer | None = None,
        location: LocationProvider | None = None,
    ):
        self._session = session
        self._config = config or ProcurementConfig.with_defaults()
        self._clock = clock or SystemClock()
        self._storage = storage
        self._renderer = renderer
        self._location = location
        register_immutability_listeners()

    # =========================================================================
    # Transaction boundary
    # =========================================================================

    def _kernel(self) -> _Kernel:
        session, clock, config = self._session, self._clock, self._config
        controller = RequestLifecycleController(session, clock)
        inventory = InventoryLedger(
            session, clock, allow_negative_stock=config.allow_negative_stock
        )
        return _Kernel(
            controller=controller,
            requests=RequestService(session, clock, number_width=config.request_number_width),
            comparisons=CostComparisonService(
                session, clock, controller,
                auto_resubmit_on_reject=config.auto_resubmit_on_reject,
            ),
            orders=PurchaseOrderService(
                session, clock, controller,
                default_sgst_percent=config.default_sgst_percent,
                default_cgst_percent=config.default_cgst_percent,
                default_validity_days=config.default_po_validity_days,
                number_prefix=config.po_number_prefix,
            ),
            deliveries=DeliveryService(
                session, clock, controller, inventory,
                number_prefix=config.delivery_number_prefix,
                auto_close_on_full_delivery=config.auto_close_on_full_delivery,
            ),
            inventory=inventory,
            vendors=VendorService(session, clock),
            sites=SiteService(session, clock),
        )

    def _execute(
        self,
        operation: str,
        actor: Actor,
        work: Callable[[_Kernel], Any],
    ) -> OperationResult:
        """
        Run ``work`` in a transaction, retrying lock conflicts.

        ``work`` must be re-runnable: it receives fresh kernel services on
        every attempt and must read all state through them.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.actor_id),
            actor_role=actor.role.value,
            operation=operation,
        ):
            attempt = 0
            while True:
                attempt += 1
                try:
                    value = work(self._kernel())
                    self._session.commit()
                except (OptimisticLockError, StaleDataError) as exc:
                    self._session.rollback()
                    conflict = exc if isinstance(exc, OptimisticLockError) else (
                        OptimisticLockError("unknown", operation)
                    )
                    if attempt >= self._config.max_retries:
                        logger.warning(
                            "operation_retries_exhausted",
                            extra={"attempts": attempt, "entity_type": conflict.entity_type},
                        )
                        return OperationResult.failed(conflict, attempts=attempt)
                    logger.info(
                        "operation_retry",
                        extra={"attempt": attempt, "entity_type": conflict.entity_type},
                    )
                    continue
                except ProcurementError as exc:
                    self._session.rollback()
                    logger.info(
                        "operation_failed",
                        extra={"error_code": exc.code, "error_message": str(exc)},
                    )
                    return OperationResult.failed(exc, attempts=attempt)
                except Exception:
                    self._session.rollback()
                    logger.exception("operation_crashed")
                    raise

                logger.info("operation_committed", extra={"attempts": attempt})
                return OperationResult.succeeded(value, attempts=attempt)

    def _collaborator_warning(
        self,
        collaborator: str,
        operation: str,
        error: ExternalCollaboratorError,
    ) -> CollaboratorWarning:
        logger.warning(
            "collaborator_failure",
            extra={
                "collaborator": collaborator,
                "collaborator_operation": operation,
                "reason": error.reason,
            },
        )
        return CollaboratorWarning(
            collaborator=collaborator, operation=operation, message=str(error)
        )

    def _delete_stored(self, key: str) -> CollaboratorWarning | None:
        if self._storage is None:
            return None
        try:
            self._storage.delete(key)
        except ExternalCollaboratorError as exc:
            return self._collaborator_warning("file_storage", "delete", exc)
        return None

    def _upload(
        self, upload: FileUpload, folder: str
    ) -> tuple[StoredFile | None, CollaboratorWarning | None]:
        if self._storage is None:
            error = ExternalCollaboratorError("file_storage", "upload", "no storage configured")
            return None, self._collaborator_warning("file_storage", "upload", error)
        try:
            return self._storage.upload(upload, folder), None
        except ExternalCollaboratorError as exc:
            return None, self._collaborator_warning("file_storage", "upload", exc)

    def _preflight(self, operation: str, actor: Actor, permission: str) -> OperationResult | None:
        """Role check for operations that touch a collaborator before the transaction."""
        try:
            require_role(actor, permission)
        except ProcurementError as exc:
            with LogContext.bind(actor_id=str(actor.actor_id), operation=operation):
                logger.info("operation_failed", extra={"error_code": exc.code})
            return OperationResult.failed(exc)
        return None

    # =========================================================================
    # Requests
    # =========================================================================

    def create_request(self, site_id: UUID, item: RequestItemInput, actor: Actor) -> OperationResult:
        return self._execute(
            "create_request", actor,
            lambda k: k.requests.create_request(site_id, item, actor),
        )

    def create_requests(
        self, site_id: UUID, items: Sequence[RequestItemInput], actor: Actor
    ) -> OperationResult:
        return self._execute(
            "create_requests", actor,
            lambda k: k.requests.create_requests(site_id, items, actor),
        )

    def add_note(self, request_id: UUID, content: str, actor: Actor) -> OperationResult:
        return self._execute(
            "add_note", actor, lambda k: k.requests.add_note(request_id, content, actor)
        )

    def advance(
        self,
        request_id: UUID,
        target_status: RequestStatus | str,
        actor: Actor,
        note: str | None = None,
    ) -> OperationResult:
        return self._execute(
            "advance", actor,
            lambda k: k.controller.advance(request_id, target_status, actor, note=note),
        )

    def resubmit(self, request_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "resubmit", actor, lambda k: k.controller.resubmit(request_id, actor)
        )

    # =========================================================================
    # Cost comparisons
    # =========================================================================

    def create_comparison(
        self, request_id: UUID, quotes: Sequence[QuoteInput], actor: Actor
    ) -> OperationResult:
        return self._execute(
            "create_comparison", actor,
            lambda k: k.comparisons.create(request_id, quotes, actor),
        )

    def decide_comparison(
        self,
        comparison_id: UUID,
        outcome: DecisionOutcome | str,
        actor: Actor,
        note: str | None = None,
        selected_vendor_id: UUID | None = None,
    ) -> OperationResult:
        return self._execute(
            "decide_comparison", actor,
            lambda k: k.comparisons.decide(
                comparison_id, outcome, actor,
                note=note, selected_vendor_id=selected_vendor_id,
            ),
        )

    # =========================================================================
    # Purchase orders
    # =========================================================================

    def issue_from_comparison(
        self,
        comparison_id: UUID,
        actor: Actor,
        valid_till: date | None = None,
        hsn_code: str | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        return self._execute(
            "issue_from_comparison", actor,
            lambda k: k.orders.issue_from_comparison(
                comparison_id, actor, valid_till=valid_till, hsn_code=hsn_code, notes=notes
            ),
        )

    def issue_direct_po(
        self,
        vendor_id: UUID,
        site_id: UUID,
        items: Sequence[PurchaseOrderItemInput],
        valid_till: date,
        actor: Actor,
        notes: str | None = None,
    ) -> OperationResult:
        return self._execute(
            "issue_direct_po", actor,
            lambda k: k.orders.issue_direct(
                vendor_id, site_id, items, valid_till, actor, notes=notes
            ),
        )

    def cancel_purchase_order(self, po_id: UUID, actor: Actor, reason: str) -> OperationResult:
        return self._execute(
            "cancel_purchase_order", actor,
            lambda k: k.orders.cancel_purchase_order(po_id, actor, reason),
        )

    def render_purchase_order(self, po_id: UUID, actor: Actor) -> OperationResult:
        """
        Render the order through the PDF collaborator.

        Read-only: nothing is committed.  A renderer failure is a failed
        result with code EXTERNAL_COLLABORATOR_FAILURE.
        """
        with LogContext.bind(
            actor_id=str(actor.actor_id), actor_role=actor.role.value,
            operation="render_purchase_order",
        ):
            try:
                require_role(actor, "purchase_order.render")
                document = PurchaseOrderSelector(self._session).document(po_id)
                if self._renderer is None:
                    raise ExternalCollaboratorError(
                        "po_renderer", "render", "no renderer configured"
                    )
                try:
                    content = self._renderer.render(document)
                except ExternalCollaboratorError as exc:
                    self._collaborator_warning("po_renderer", "render", exc)
                    raise
            except ProcurementError as exc:
                logger.info("operation_failed", extra={"error_code": exc.code})
                return OperationResult.failed(exc)
            return OperationResult.succeeded(content)

    # =========================================================================
    # Deliveries
    # =========================================================================

    def create_delivery(
        self,
        items: Sequence[DeliveryItemInput],
        meta: DeliveryMeta,
        actor: Actor,
        po_id: UUID | None = None,
        evidence: Sequence[EvidenceUpload] = (),
    ) -> OperationResult:
        """
        Create a challan, then upload and attach any evidence photos.

        The challan commits first.  A failed upload or attach leaves it in
        place and comes back as a warning on a partial success.
        """
        result = self._execute(
            "create_delivery", actor,
            lambda k: k.deliveries.create_delivery(items, meta, actor, po_id=po_id),
        )
        if not result.is_success:
            return result

        delivery = result.value
        warnings = []
        for photo in evidence:
            attached = self.attach_delivery_evidence(delivery.id, photo, actor)
            if attached.is_success:
                delivery = attached.value
                warnings.extend(attached.warnings)
            elif attached.warnings:
                warnings.extend(attached.warnings)
            else:
                warnings.append(
                    CollaboratorWarning(
                        collaborator="file_storage",
                        operation="attach",
                        message=attached.error_message or "attach failed",
                        code=attached.error_code or "EXTERNAL_COLLABORATOR_FAILURE",
                    )
                )
        return OperationResult.succeeded(
            delivery, warnings=tuple(warnings), attempts=result.attempts
        )

    def mark_item_delivered(self, delivery_id: UUID, item_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "mark_item_delivered", actor,
            lambda k: k.deliveries.mark_item_delivered(delivery_id, item_id, actor),
        )

    def cancel_delivery(
        self, delivery_id: UUID, actor: Actor, reason: str | None = None
    ) -> OperationResult:
        return self._execute(
            "cancel_delivery", actor,
            lambda k: k.deliveries.cancel_delivery(delivery_id, actor, reason=reason),
        )

    def attach_delivery_evidence(
        self, delivery_id: UUID, evidence: EvidenceUpload, actor: Actor
    ) -> OperationResult:
        """
        Upload a photo, then record it on the challan.

        The replaced photo, if any, is deleted from storage after commit.
        If the upload fails nothing is recorded and the result is failed
        with the upload warning attached.
        """
        denied = self._preflight("attach_delivery_evidence", actor, "delivery.attach_evidence")
        if denied is not None:
            return denied

        stored, warning = self._upload(evidence.upload, f"deliveries/{delivery_id}")
        if stored is None:
            return OperationResult.failed(
                ExternalCollaboratorError("file_storage", "upload", warning.message)
            ).with_warnings(warning)

        result = self._execute(
            "attach_delivery_evidence", actor,
            lambda k: k.deliveries.attach_evidence(
                delivery_id, evidence.kind, stored.as_ref(), actor
            ),
        )
        if not result.is_success:
            orphan = self._delete_stored(stored.key)
            return result.with_warnings(orphan) if orphan else result

        delivery, replaced = result.value
        warnings = []
        if replaced is not None:
            failed_delete = self._delete_stored(replaced.key)
            if failed_delete is not None:
                warnings.append(failed_delete)
        return OperationResult.succeeded(
            delivery, warnings=tuple(warnings), attempts=result.attempts
        )

    # =========================================================================
    # Inventory
    # =========================================================================

    def create_inventory_item(
        self,
        item_name: str,
        unit: str,
        actor: Actor,
        hsn_code: str | None = None,
        description: str | None = None,
        initial_stock: Decimal | int | str = 0,
        vendor_ids: Sequence[UUID] = (),
    ) -> OperationResult:
        return self._execute(
            "create_inventory_item", actor,
            lambda k: k.inventory.create_item(
                item_name, unit, actor,
                hsn_code=hsn_code, description=description,
                initial_stock=initial_stock, vendor_ids=tuple(vendor_ids),
            ),
        )

    def update_inventory_item(self, item_id: UUID, actor: Actor, **changes) -> OperationResult:
        return self._execute(
            "update_inventory_item", actor,
            lambda k: k.inventory.update_item(item_id, actor, **changes),
        )

    def deactivate_inventory_item(self, item_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "deactivate_inventory_item", actor,
            lambda k: k.inventory.deactivate_item(item_id, actor),
        )

    def adjust_stock(
        self,
        item_id: UUID,
        delta: Decimal | int | str,
        reason: StockReason | str,
        actor: Actor,
        reference_id: UUID | None = None,
        memo: str | None = None,
    ) -> OperationResult:
        return self._execute(
            "adjust_stock", actor,
            lambda k: k.inventory.adjust_stock(
                item_id, delta, reason, actor, reference_id=reference_id, memo=memo
            ),
        )

    def link_vendor(self, item_id: UUID, vendor_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "link_vendor", actor, lambda k: k.inventory.link_vendor(item_id, vendor_id, actor)
        )

    def unlink_vendor(self, item_id: UUID, vendor_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "unlink_vendor", actor,
            lambda k: k.inventory.unlink_vendor(item_id, vendor_id, actor),
        )

    def add_inventory_image(self, item_id: UUID, upload: FileUpload, actor: Actor) -> OperationResult:
        """Upload an image, then append it to the item."""
        denied = self._preflight("add_inventory_image", actor, "inventory.attach_image")
        if denied is not None:
            return denied

        stored, warning = self._upload(upload, f"inventory/{item_id}")
        if stored is None:
            return OperationResult.failed(
                ExternalCollaboratorError("file_storage", "upload", warning.message)
            ).with_warnings(warning)

        result = self._execute(
            "add_inventory_image", actor,
            lambda k: k.inventory.attach_image(item_id, stored.url, stored.key, actor),
        )
        if not result.is_success:
            orphan = self._delete_stored(stored.key)
            return result.with_warnings(orphan) if orphan else result
        return result

    def remove_inventory_image(self, item_id: UUID, key: str, actor: Actor) -> OperationResult:
        """Detach an image, then delete it from storage after commit."""
        result = self._execute(
            "remove_inventory_image", actor,
            lambda k: k.inventory.remove_image(item_id, key, actor),
        )
        if not result.is_success:
            return result

        item, removed = result.value
        warnings = []
        if removed:
            failed_delete = self._delete_stored(key)
            if failed_delete is not None:
                warnings.append(failed_delete)
        return OperationResult.succeeded(item, warnings=tuple(warnings), attempts=result.attempts)

    # =========================================================================
    # Registries
    # =========================================================================

    def create_vendor(self, actor: Actor, **fields) -> OperationResult:
        return self._execute(
            "create_vendor", actor, lambda k: k.vendors.create_vendor(actor=actor, **fields)
        )

    def update_vendor(self, vendor_id: UUID, actor: Actor, **changes) -> OperationResult:
        return self._execute(
            "update_vendor", actor,
            lambda k: k.vendors.update_vendor(vendor_id, actor, **changes),
        )

    def deactivate_vendor(self, vendor_id: UUID, actor: Actor) -> OperationResult:
        return self._execute(
            "deactivate_vendor", actor, lambda k: k.vendors.deactivate_vendor(vendor_id, actor)
        )

    def create_site(
        self,
        name: str,
        actor: Actor,
        site_type: SiteType | str = SiteType.SITE,
        capture_location: bool = False,
        **fields,
    ) -> OperationResult:
        """
        Create a site; with ``capture_location``, record the device
        position afterwards.

        Location is asked for at HIGH precision first, then LOW.  When
        both fail the site stays without coordinates and the result is a
        partial success.
        """
        result = self._execute(
            "create_site", actor,
            lambda k: k.sites.create_site(name, actor, site_type=site_type, **fields),
        )
        if not result.is_success or not capture_location:
            return result

        site = result.value
        coordinates, warning = self._acquire_location()
        if coordinates is None:
            return result.with_warnings(warning)

        located = self._execute(
            "record_site_location", actor,
            lambda k: k.sites.update_site(
                site.id, actor,
                latitude=coordinates.latitude, longitude=coordinates.longitude,
            ),
        )
        if not located.is_success:
            return result.with_warnings(
                CollaboratorWarning(
                    collaborator="location",
                    operation="record",
                    message=located.error_message or "could not record location",
                    code=located.error_code or "EXTERNAL_COLLABORATOR_FAILURE",
                )
            )
        return OperationResult.succeeded(located.value, attempts=result.attempts)

    def _acquire_location(self):
        if self._location is None:
            error = ExternalCollaboratorError("location", "acquire", "no location provider")
            return None, self._collaborator_warning("location", "acquire", error)

        last_error = None
        for precision in (Precision.HIGH, Precision.LOW):
            try:
                return self._location.acquire_location(precision), None
            except ExternalCollaboratorError as exc:
                last_error = exc
                logger.info(
                    "location_attempt_failed",
                    extra={"precision": precision.value, "reason": exc.reason},
                )
        return None, self._collaborator_warning("location", "acquire", last_error)

    def update_site(self, site_id: UUID, actor: Actor, **changes) -> OperationResult:
        return self._execute(
            "update_site", actor, lambda k: k.sites.update_site(site_id, actor, **changes)
        )

    def set_site_active(self, site_id: UUID, is_active: bool, actor: Actor) -> OperationResult:
        return self._execute(
            "set_site_active", actor,
            lambda k: k.sites.set_site_active(site_id, is_active, actor),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def request_view(self, request_id: UUID):
        return RequestSelector(self._session).view(request_id)

    def request_timeline(self, request_id: UUID):
        return RequestSelector(self._session).timeline(request_id)

    def low_stock_items(self):
        return InventorySelector(self._session).low_stock(self._config.low_stock_threshold)

    def dashboard(self):
        return DashboardSelector(self._session).overview(self._config.low_stock_threshold)
