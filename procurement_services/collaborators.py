"""
External collaborator interfaces.

Responsibility:
    Abstract boundaries for everything the lifecycle needs but does not
    implement: binary file storage, purchase order PDF rendering and
    device location capture.  Deployments supply concrete classes; tests
    supply in-memory fakes.

Architecture position:
    Services layer.  Only ProcurementService calls these, and only after
    the core record has committed, so no row lock is held while a
    collaborator runs.

Failure modes:
    Implementations signal failure by raising ExternalCollaboratorError.
    The facade turns that into a CollaboratorWarning; any other exception
    type is treated as a programming error and propagates.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from procurement_kernel.domain.commands import FileUpload
from procurement_kernel.domain.dtos import FileRef
from procurement_kernel.domain.read_models import PurchaseOrderDocument


@dataclass(frozen=True)
class StoredFile:
    """Where storage put an uploaded file."""

    url: str
    key: str

    def as_ref(self) -> FileRef:
        return FileRef(url=self.url, key=self.key)


class Precision(str, Enum):
    """Requested accuracy of a location fix."""

    HIGH = "high"
    LOW = "low"


@dataclass(frozen=True)
class Coordinates:
    latitude: Decimal
    longitude: Decimal
    accuracy_meters: Decimal | None = None


class FileStorage(ABC):
    """Binary object storage (photos, documents)."""

    @abstractmethod
    def upload(self, upload: FileUpload, folder: str) -> StoredFile:
        """Store the file under ``folder`` and return its url and key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a stored file.  Deleting a missing key is not an error."""


class PurchaseOrderRenderer(ABC):
    """Turns a resolved purchase order into a printable document."""

    @abstractmethod
    def render(self, document: PurchaseOrderDocument) -> bytes:
        """Return the rendered document (typically PDF bytes)."""


class LocationProvider(ABC):
    """Device location capture."""

    @abstractmethod
    def acquire_location(self, precision: Precision) -> Coordinates:
        """Return the current position at the requested precision."""
