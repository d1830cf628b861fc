"""Side effect of a lead status change: qualifying leads spawn an application.

The status write and the application insert are two separate commits.
If the second one fails the status change stands, and the caller gets a
:class:`SpawnOutcome` flagged as a partial failure rather than an error,
so the user can be told the status did change. :func:`retry_spawn` lets
the caller finish the second step later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.application import Application
from app.models.lead import Lead
from app.schemas.leads import LeadDTO, LeadStatus
from app.services import applications, lead_status, leads
from app.services.errors import ValidationFailed

logger = logging.getLogger(__name__)


@dataclass
class SpawnOutcome:
    """Result of a status change and its spawn step.

    ``lead`` is a snapshot taken while the committed status write is still
    loaded, so it stays readable after a failed spawn rolls the session back.
    """

    lead: LeadDTO
    application: Application | None = None
    spawn_attempted: bool = False
    error: str | None = None

    @property
    def partial_failure(self) -> bool:
        return self.spawn_attempted and self.application is None

    @property
    def message(self) -> str:
        if self.partial_failure:
            return "Lead status updated, but application creation failed"
        if self.application is not None:
            return "Lead status updated and application created successfully"
        return "Lead status updated successfully"


async def _spawn(db: AsyncSession, lead: Lead) -> SpawnOutcome:
    lead_id = lead.id
    outcome = SpawnOutcome(lead=LeadDTO.model_validate(lead), spawn_attempted=True)
    try:
        outcome.application = await applications.spawn_from_lead(db, lead)
    except SQLAlchemyError as exc:
        # The rollback expires every loaded instance; only captured values are safe to read.
        await db.rollback()
        logger.exception("Application spawn failed for lead_id=%s", lead_id)
        outcome.error = str(getattr(exc, "orig", None) or exc)
    return outcome


async def on_status_update(
    db: AsyncSession,
    lead_id: int,
    new_status: LeadStatus | str,
) -> SpawnOutcome:
    """Set the lead's status; spawn an application when it is the qualifying one.

    Fires on every qualifying transition, including re-entering the status.
    Errors from the status write itself propagate unchanged.
    """
    lead = await leads.update_status(db, lead_id, new_status)
    if not lead_status.is_qualifying(lead.status):
        return SpawnOutcome(lead=LeadDTO.model_validate(lead))
    return await _spawn(db, lead)


async def retry_spawn(db: AsyncSession, lead_id: int) -> SpawnOutcome:
    """Run the spawn step alone for a lead that is still in the qualifying status."""
    lead = await leads.get_lead_or_404(db, lead_id)
    if not lead_status.is_qualifying(lead.status):
        raise ValidationFailed(
            code="lead_not_qualifying",
            message=f"Lead status must be '{lead_status.QUALIFYING_STATUS.value}' to create an application",
            details={"lead_id": lead_id, "status": lead.status},
        )
    return await _spawn(db, lead)
