"""Lead working-status taxonomy and the final-status derivation rule.

Every write path that touches ``Lead.status`` (manual edit, CSV import,
status transitions) computes ``final_status`` through
:func:`derive_final_status`. The close-status set is defined here and
nowhere else.
"""

from __future__ import annotations

from app.schemas.leads import FinalStatus, LeadStatus

CLOSE_STATUSES: frozenset[LeadStatus] = frozenset(
    {
        LeadStatus.CASH_SALARY,
        LeadStatus.SELF_EMPLOYED,
        LeadStatus.NI,
        LeadStatus.RING_MORE_THAN_3_DAYS,
        LeadStatus.SALARY_LOW,
        LeadStatus.CIBIL_ISSUE,
    }
)

# Setting a lead to this status spawns a loan application.
QUALIFYING_STATUS = LeadStatus.BANKING_RECEIVED


def coerce_status(status: LeadStatus | str | None) -> LeadStatus | None:
    """Return the taxonomy member for ``status``, or ``None`` if it is unset or unknown."""
    if status is None or isinstance(status, LeadStatus):
        return status
    try:
        return LeadStatus(status)
    except ValueError:
        return None


def derive_final_status(status: LeadStatus | str | None) -> FinalStatus:
    if coerce_status(status) in CLOSE_STATUSES:
        return FinalStatus.CLOSE
    return FinalStatus.OPEN


def status_fields(status: LeadStatus | str | None) -> dict[str, str | None]:
    """The column pair written together on every status change."""
    member = coerce_status(status)
    return {
        "status": member.value if member is not None else None,
        "final_status": derive_final_status(member).value,
    }


def is_qualifying(status: LeadStatus | str | None) -> bool:
    return coerce_status(status) is QUALIFYING_STATUS

