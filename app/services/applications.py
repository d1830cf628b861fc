from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.application import Application
from app.models.lead import Lead
from app.schemas.applications import ApplicationFilters, ApplicationStage, ApplicationUpdate
from app.services import pipeline
from app.services.audit import model_snapshot, record_audit_event
from app.services.errors import NotFound

logger = logging.getLogger(__name__)

_TRANSITION_COLUMNS = ("stage", "disbursed_amount", "disbursed_date")


def application_filter_conditions(filters: ApplicationFilters | None) -> list[Any]:
    if filters is None:
        return []
    conditions: list[Any] = []
    if filters.agent_id is not None:
        conditions.append(Application.agent_id == filters.agent_id)
    if filters.stage is not None:
        conditions.append(Application.stage == pipeline.coerce_stage(filters.stage).value)
    if filters.search:
        term = filters.search.strip()
        if term:
            conditions.append(
                or_(
                    Lead.name.icontains(term, autoescape=True),
                    Lead.mobile_no.icontains(term, autoescape=True),
                )
            )
    return conditions


async def list_applications(
    db: AsyncSession,
    filters: ApplicationFilters | None = None,
) -> list[Application]:
    """Applications with their lead summary loaded, newest first."""
    stmt = (
        select(Application)
        .join(Lead, Lead.id == Application.lead_id)
        .options(selectinload(Application.lead))
        .where(*application_filter_conditions(filters))
        .order_by(Application.created_at.desc(), Application.id)
    )
    return list((await db.execute(stmt)).scalars().all())


async def get_application(db: AsyncSession, application_id: UUID) -> Application | None:
    stmt = (
        select(Application)
        .options(selectinload(Application.lead))
        .where(Application.id == application_id)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_application_or_404(db: AsyncSession, application_id: UUID) -> Application:
    application = await get_application(db, application_id)
    if application is None:
        raise NotFound(
            code="application_not_found",
            message="Application not found",
            details={"application_id": str(application_id)},
        )
    return application


async def spawn_from_lead(db: AsyncSession, lead: Lead) -> Application:
    """Create an UnderReview application from the lead's current amount and agent."""
    await db.refresh(lead)
    application = Application(
        lead_id=lead.id,
        agent_id=lead.agent_id,
        stage=ApplicationStage.UNDER_REVIEW.value,
        loan_amount=lead.amount if lead.amount is not None else Decimal("0"),
    )
    db.add(application)
    await db.commit()
    await db.refresh(application)
    record_audit_event(
        action="application.spawned",
        resource_type="application",
        resource_id=application.id,
        new_value=model_snapshot(application, include=("lead_id", "agent_id", "stage", "loan_amount")),
    )
    return application


async def update_application_fields(
    db: AsyncSession,
    application: Application,
    payload: ApplicationUpdate,
) -> Application:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return application
    old = model_snapshot(application, include=changes.keys())
    for field_name, value in changes.items():
        setattr(application, field_name, value)
    db.add(application)
    await db.commit()
    await db.refresh(application)
    record_audit_event(
        action="application.updated",
        resource_type="application",
        resource_id=application.id,
        old_value=old,
        new_value=model_snapshot(application, include=changes.keys()),
    )
    return application


async def transition_stage(
    db: AsyncSession,
    application: Application,
    target: ApplicationStage | str,
    *,
    disbursed_amount: Any = None,
) -> tuple[Application, bool]:
    """Move ``application`` to ``target``. Returns ``(application, changed)``.

    A transition to the current stage writes nothing.
    """
    changes = pipeline.plan_transition(
        application.stage,
        target,
        disbursed_amount=disbursed_amount,
    )
    if changes is None:
        return application, False

    application_id = application.id
    old = model_snapshot(application, include=_TRANSITION_COLUMNS)
    pipeline.apply_transition(application, changes)
    db.add(application)
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Stage transition failed for application_id=%s", application_id)
        raise
    await db.refresh(application)
    record_audit_event(
        action="application.stage_changed",
        resource_type="application",
        resource_id=application.id,
        old_value=old,
        new_value=model_snapshot(application, include=_TRANSITION_COLUMNS),
    )
    return application, True
