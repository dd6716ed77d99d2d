"""
procurement_services -- the orchestration layer above the kernel.

ProcurementService owns transactions, retries and the external
collaborators; callers receive OperationResult values.
"""

from procurement_services.collaborators import (
    Coordinates,
    FileStorage,
    LocationProvider,
    Precision,
    PurchaseOrderRenderer,
    StoredFile,
)
from procurement_services.procurement_service import ProcurementService
from procurement_services.results import (
    CollaboratorWarning,
    OperationResult,
    OperationStatus,
)

__all__ = [
    "CollaboratorWarning",
    "Coordinates",
    "FileStorage",
    "LocationProvider",
    "OperationResult",
    "OperationStatus",
    "Precision",
    "ProcurementService",
    "PurchaseOrderRenderer",
    "StoredFile",
]
