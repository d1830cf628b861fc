"""Application pipeline stages and the transition planner.

The planner is pure: it turns (current stage, target stage, amount) into
the column changes to write, or ``None`` for a no-op. The API and the
kanban board both go through it, so the Disbursed guard is enforced the
same way before an optimistic update and before the database write.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from app.schemas.applications import ApplicationStage
from app.services.errors import ValidationFailed


def coerce_stage(value: ApplicationStage | str) -> ApplicationStage:
    if isinstance(value, ApplicationStage):
        return value
    try:
        return ApplicationStage(value)
    except ValueError as exc:
        raise ValidationFailed(
            code="invalid_stage",
            message=f"Unknown application stage: {value}",
            details={"stage": str(value), "allowed": [stage.value for stage in ApplicationStage]},
        ) from exc


def requires_disbursed_amount(target: ApplicationStage | str) -> bool:
    return coerce_stage(target) is ApplicationStage.DISBURSED


def parse_disbursed_amount(value: Any) -> Decimal:
    """Validate a captured disbursed amount: present, numeric, positive."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationFailed(
            code="disbursed_amount_required",
            message="Please enter a disbursed amount",
            details={},
        )
    amount: Decimal | None = None
    if not isinstance(value, bool):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            amount = None
    if amount is None or not amount.is_finite() or amount <= 0:
        raise ValidationFailed(
            code="invalid_disbursed_amount",
            message="Please enter a valid amount",
            details={"disbursed_amount": str(value)},
        )
    return amount


def plan_transition(
    current: ApplicationStage | str,
    target: ApplicationStage | str,
    *,
    disbursed_amount: Any = None,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Return the fields to write for ``current -> target``, or ``None`` for a no-op.

    Any stage may move to any other. Entering Disbursed needs a positive
    ``disbursed_amount`` and stamps ``disbursed_date``; leaving it keeps the
    captured disbursement fields.
    """
    current_stage = coerce_stage(current)
    target_stage = coerce_stage(target)
    if current_stage is target_stage:
        return None
    if target_stage is ApplicationStage.DISBURSED:
        return {
            "stage": target_stage.value,
            "disbursed_amount": parse_disbursed_amount(disbursed_amount),
            "disbursed_date": now or datetime.now(timezone.utc),
        }
    return {"stage": target_stage.value}


def apply_transition(target: Any, changes: dict[str, Any]) -> None:
    """Copy planned changes onto a model or a mutable record."""
    for field_name, value in changes.items():
        setattr(target, field_name, value)
