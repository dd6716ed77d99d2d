"""
RequestService -- raising material requests and annotating their timeline.

Responsibility:
    Creates requests (one item, or several items sharing one request
    number) from site engineers, and appends free-text notes from any
    role.  Status is never written here; new requests start in the
    workflow's initial state and every later change goes through
    RequestLifecycleController.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - quantity > 0, item name and unit present, site exists and is active.
    - Request numbers are allocated from the locked counter and
      zero-padded to the configured width.

Failure modes:
    - ForbiddenError: caller is not a site engineer (create).
    - ValidationError: missing/invalid field, inactive site.
    - SiteNotFoundError / RequestNotFoundError.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from procurement_kernel.domain.authority import Actor, require_role
from procurement_kernel.domain.clock import Clock
from procurement_kernel.domain.commands import RequestItemInput
from procurement_kernel.domain.dtos import NoteKind, RequestInfo, RequestNoteInfo
from procurement_kernel.domain.request_workflow import REQUEST_WORKFLOW
from procurement_kernel.domain.validation import optional_text, require_positive, require_text
from procurement_kernel.exceptions import (
    RequestNotFoundError,
    SiteNotFoundError,
    ValidationError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.request import Request, RequestNote
from procurement_kernel.models.site import Site
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.request")


class RequestService(BaseService[Request]):
    """
    Creates material requests and timeline notes.

    Contract:
        ``create_requests`` validates every item before writing any of them.

    Non-goals:
        - Does NOT change request status.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        number_width: int = 3,
    ):
        super().__init__(session, clock)
        self._number_width = number_width
        self._sequences = SequenceService(session)

    def create_request(
        self,
        site_id: UUID,
        item: RequestItemInput,
        actor: Actor,
    ) -> RequestInfo:
        """Raise a single-item material request."""
        return self.create_requests(site_id, [item], actor)[0]

    def create_requests(
        self,
        site_id: UUID,
        items: Sequence[RequestItemInput],
        actor: Actor,
    ) -> list[RequestInfo]:
        """
        Raise several material lines under one request number.

        Returns:
            One RequestInfo per item, in input order.
        """
        require_role(actor, "request.create")

        if not items:
            raise ValidationError("items", "at least one item is required")
        normalized = [
            self._validate_item(item, f"items[{index}]." if len(items) > 1 else "")
            for index, item in enumerate(items)
        ]

        site = self.session.get(Site, site_id)
        if site is None:
            raise SiteNotFoundError(str(site_id))
        if not site.is_active:
            raise ValidationError("site_id", f"site '{site.name}' is inactive")

        number = self._next_request_number()
        requests = []
        for fields in normalized:
            request = Request(
                request_number=number,
                site_id=site.id,
                status=REQUEST_WORKFLOW.initial_state,
                created_by_id=actor.actor_id,
                created_at=self._now(),
                **fields,
            )
            self.session.add(request)
            requests.append(request)
        self.session.flush()

        logger.info(
            "requests_created",
            extra={
                "request_number": number,
                "site_id": str(site.id),
                "item_count": len(requests),
                "urgent": any(r.is_urgent for r in requests),
            },
        )
        return [request.to_dto() for request in requests]

    def add_note(self, request_id: UUID, content: str, actor: Actor) -> RequestNoteInfo:
        """Append a free-text note to a request's timeline."""
        require_role(actor, "request.add_note")
        text = require_text(content, "content")

        request = self.session.get(Request, request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))

        note = RequestNote(
            request_id=request.id,
            kind=NoteKind.NOTE.value,
            sequence=self._sequences.next_value(SequenceService.REQUEST_NOTE),
            actor_role=actor.role.value,
            content=text,
            created_by_id=actor.actor_id,
            created_at=self._now(),
        )
        self.session.add(note)
        self.session.flush()

        logger.info(
            "request_note_added",
            extra={"request_id": str(request.id), "note_sequence": note.sequence},
        )
        return note.to_dto()

    def _validate_item(self, item: RequestItemInput, prefix: str) -> dict:
        return {
            "item_name": require_text(item.item_name, f"{prefix}item_name"),
            "quantity": require_positive(item.quantity, f"{prefix}quantity"),
            "unit": require_text(item.unit, f"{prefix}unit"),
            "required_by": item.required_by,
            "is_urgent": bool(item.is_urgent),
            "description": optional_text(item.description),
            "specs_brand": optional_text(item.specs_brand),
            "notes": optional_text(item.notes),
        }

    def _next_request_number(self) -> str:
        value = self._sequences.next_value(SequenceService.MATERIAL_REQUEST)
        return str(value).zfill(self._number_width)
