from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar


@dataclass(frozen=True)
class LeadPipelineError(ValueError):
    code: str
    message: str
    details: dict = field(default_factory=dict)

    status_code: ClassVar[int] = 400

    def __str__(self) -> str:
        return self.message


class ValidationFailed(LeadPipelineError):
    """Rejected before any write was attempted."""

    status_code: ClassVar[int] = 422


class NotFound(LeadPipelineError):
    status_code: ClassVar[int] = 404


class Conflict(LeadPipelineError):
    status_code: ClassVar[int] = 409
