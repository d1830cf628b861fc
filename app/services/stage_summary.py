from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from app.schemas.applications import STAGE_LABELS, STAGE_ORDER, ApplicationStage
from app.services.pipeline import coerce_stage

ZERO = Decimal("0")


@dataclass(frozen=True)
class StageTotals:
    stage: ApplicationStage
    label: str
    count: int
    total_amount: Decimal


def _as_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def stage_amount(application: Any) -> Decimal:
    """Disbursed cards count what was paid out; every other stage counts the loan amount."""
    if coerce_stage(application.stage) is ApplicationStage.DISBURSED:
        return _as_decimal(getattr(application, "disbursed_amount", None))
    return _as_decimal(getattr(application, "loan_amount", None))


def group_by_stage(applications: Iterable[Any]) -> dict[ApplicationStage, list[Any]]:
    groups: dict[ApplicationStage, list[Any]] = {stage: [] for stage in STAGE_ORDER}
    for application in applications:
        groups[coerce_stage(application.stage)].append(application)
    return groups


def count(applications: Iterable[Any], stage: ApplicationStage | str) -> int:
    wanted = coerce_stage(stage)
    return sum(1 for application in applications if coerce_stage(application.stage) is wanted)


def total_amount(applications: Iterable[Any], stage: ApplicationStage | str) -> Decimal:
    wanted = coerce_stage(stage)
    return sum(
        (stage_amount(application) for application in applications if coerce_stage(application.stage) is wanted),
        ZERO,
    )


def summarize(applications: Iterable[Any]) -> list[StageTotals]:
    """Per-stage count and amount, in board column order, recomputed on every call."""
    groups = group_by_stage(applications)
    return [
        StageTotals(
            stage=stage,
            label=STAGE_LABELS[stage],
            count=len(members),
            total_amount=sum((stage_amount(member) for member in members), ZERO),
        )
        for stage, members in groups.items()
    ]
