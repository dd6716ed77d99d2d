"""
Operation results returned by the ProcurementService facade.

Kernel services raise; the facade catches ProcurementError and returns a
failed OperationResult carrying the error's code, message and structured
fields.  A committed operation whose follow-up collaborator call failed is
a partial success, never a failure: the core record exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from procurement_kernel.exceptions import ProcurementError


class OperationStatus(str, Enum):
    """Outcome of a facade operation."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


@dataclass(frozen=True)
class CollaboratorWarning:
    """A collaborator call that failed after the core record committed."""

    collaborator: str
    operation: str
    message: str
    code: str = "EXTERNAL_COLLABORATOR_FAILURE"


@dataclass(frozen=True)
class OperationResult:
    """Discriminated result of one facade call."""

    status: OperationStatus
    value: Any = None
    error_code: str | None = None
    error_message: str | None = None
    error_details: dict[str, Any] = field(default_factory=dict)
    warnings: tuple[CollaboratorWarning, ...] = ()
    attempts: int = 1

    @property
    def is_success(self) -> bool:
        """True for success and partial success."""
        return self.status in (OperationStatus.SUCCESS, OperationStatus.PARTIAL_SUCCESS)

    @classmethod
    def succeeded(
        cls,
        value: Any,
        warnings: tuple[CollaboratorWarning, ...] = (),
        attempts: int = 1,
    ) -> OperationResult:
        status = OperationStatus.PARTIAL_SUCCESS if warnings else OperationStatus.SUCCESS
        return cls(status=status, value=value, warnings=tuple(warnings), attempts=attempts)

    @classmethod
    def failed(cls, error: ProcurementError, attempts: int = 1) -> OperationResult:
        return cls(
            status=OperationStatus.FAILED,
            error_code=error.code,
            error_message=str(error),
            error_details=error_details(error),
            attempts=attempts,
        )

    def with_warnings(self, *warnings: CollaboratorWarning) -> OperationResult:
        """Same result with extra warnings; success becomes partial success."""
        if not warnings:
            return self
        combined = self.warnings + tuple(warnings)
        status = self.status
        if status is OperationStatus.SUCCESS:
            status = OperationStatus.PARTIAL_SUCCESS
        return OperationResult(
            status=status,
            value=self.value,
            error_code=self.error_code,
            error_message=self.error_message,
            error_details=self.error_details,
            warnings=combined,
            attempts=self.attempts,
        )


def error_details(error: ProcurementError) -> dict[str, Any]:
    """The structured attributes an exception was raised with."""
    return {key: value for key, value in vars(error).items() if not key.startswith("_")}
