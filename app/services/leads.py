from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.application import Application
from app.models.lead import Lead
from app.models.lead_note import LeadNote
from app.models.profile import Profile
from app.schemas.leads import FinalStatus, LeadCreate, LeadFilters, LeadStatus, LeadUpdate
from app.schemas.session import ProfileRole
from app.services import lead_status
from app.services.audit import model_snapshot, record_audit_event
from app.services.errors import Conflict, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

_STATUS_COLUMNS = ("status", "final_status")

# Open leads first, newest first within each group.
_WORKLIST_ORDER = (
    case((Lead.final_status == FinalStatus.CLOSE.value, 1), else_=0),
    Lead.created_at.desc(),
    Lead.id.desc(),
)
_CREATED_ORDER = (Lead.created_at.desc(), Lead.id.desc())


def _day_start(value) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def lead_filter_conditions(filters: LeadFilters | None) -> list[Any]:
    """Translate read filters into AND-combined SQL conditions."""
    if filters is None:
        return []
    conditions: list[Any] = []
    if filters.search:
        term = filters.search.strip()
        if term:
            conditions.append(
                or_(
                    Lead.name.icontains(term, autoescape=True),
                    Lead.mobile_no.icontains(term, autoescape=True),
                    Lead.app_no.icontains(term, autoescape=True),
                )
            )
    if filters.status is not None:
        conditions.append(Lead.status == filters.status)
    if filters.final_status is not None:
        conditions.append(Lead.final_status == filters.final_status)
    if filters.agent_id is not None:
        conditions.append(Lead.agent_id == filters.agent_id)
    if filters.created_from is not None:
        conditions.append(Lead.created_at >= _day_start(filters.created_from))
    if filters.created_to is not None:
        # Inclusive upper bound: everything before the start of the next day.
        conditions.append(Lead.created_at < _day_start(filters.created_to + timedelta(days=1)))
    return conditions


async def list_leads(
    db: AsyncSession,
    filters: LeadFilters | None = None,
    *,
    offset: int = 0,
    limit: int = 50,
    worklist: bool = False,
) -> tuple[list[Lead], int]:
    conditions = lead_filter_conditions(filters)
    count_stmt = select(func.count()).select_from(Lead).where(*conditions)
    total = (await db.execute(count_stmt)).scalar_one_or_none() or 0
    stmt = (
        select(Lead)
        .where(*conditions)
        .order_by(*(_WORKLIST_ORDER if worklist else _CREATED_ORDER))
        .offset(offset)
        .limit(limit)
    )
    items = (await db.execute(stmt)).scalars().all()
    return list(items), int(total)


async def get_lead(db: AsyncSession, lead_id: int) -> Lead | None:
    return await db.get(Lead, lead_id)


async def get_lead_or_404(db: AsyncSession, lead_id: int) -> Lead:
    lead = await get_lead(db, lead_id)
    if lead is None:
        raise NotFound(code="lead_not_found", message="Lead not found", details={"lead_id": lead_id})
    return lead


async def require_agent(db: AsyncSession, agent_id: UUID) -> Profile:
    agent = await db.get(Profile, agent_id)
    if agent is None or not agent.is_active:
        raise ValidationFailed(
            code="agent_not_found",
            message="Agent not found or inactive",
            details={"agent_id": str(agent_id)},
        )
    if agent.role != ProfileRole.AGENT.value:
        raise ValidationFailed(
            code="not_an_agent",
            message="Leads can only be assigned to agents",
            details={"agent_id": str(agent_id), "role": agent.role},
        )
    return agent


async def find_existing_keys(
    db: AsyncSession,
    *,
    app_nos: Iterable[str] = (),
    mobile_nos: Iterable[str] = (),
    exclude_lead_id: int | None = None,
) -> tuple[set[str], set[str]]:
    """Return the subset of ``app_nos``/``mobile_nos`` already held by stored leads."""
    app_nos = set(app_nos)
    mobile_nos = set(mobile_nos)
    if not app_nos and not mobile_nos:
        return set(), set()
    clauses = []
    if app_nos:
        clauses.append(Lead.app_no.in_(app_nos))
    if mobile_nos:
        clauses.append(Lead.mobile_no.in_(mobile_nos))
    stmt = select(Lead.app_no, Lead.mobile_no).where(or_(*clauses))
    if exclude_lead_id is not None:
        stmt = stmt.where(Lead.id != exclude_lead_id)
    rows = (await db.execute(stmt)).all()
    taken_app_nos = {row[0] for row in rows if row[0] in app_nos}
    taken_mobiles = {row[1] for row in rows if row[1] in mobile_nos}
    return taken_app_nos, taken_mobiles


def build_lead(
    *,
    app_no: str,
    mobile_no: str,
    agent_id: UUID,
    name: str | None = None,
    amount=None,
    status: LeadStatus | str | None = None,
) -> Lead:
    now = datetime.now(timezone.utc)
    return Lead(
        app_no=app_no,
        name=name,
        mobile_no=mobile_no,
        amount=amount,
        agent_id=agent_id,
        created_at=now,
        uploaded_at=now,
        updated_at=now,
        **lead_status.status_fields(status),
    )


async def insert_leads(db: AsyncSession, new_leads: list[Lead]) -> list[Lead]:
    """The single insert path shared by the manual form and CSV import."""
    for lead in new_leads:
        db.add(lead)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("Lead insert rejected by constraint: %s", exc.orig)
        raise Conflict(
            code="duplicate_lead",
            message="A lead with this app_no or mobile_no already exists",
            details={},
        ) from exc
    for lead in new_leads:
        record_audit_event(
            action="lead.created",
            resource_type="lead",
            resource_id=lead.id,
            new_value=model_snapshot(lead, include=("app_no", "agent_id", "status", "final_status")),
        )
    return new_leads


async def create_lead(db: AsyncSession, payload: LeadCreate) -> Lead:
    await require_agent(db, payload.agent_id)
    taken_app_nos, taken_mobiles = await find_existing_keys(
        db, app_nos=[payload.app_no], mobile_nos=[payload.mobile_no]
    )
    if taken_app_nos or taken_mobiles:
        raise Conflict(
            code="duplicate_lead",
            message="A lead with this app_no or mobile_no already exists",
            details={"app_no": sorted(taken_app_nos), "mobile_no": sorted(taken_mobiles)},
        )
    lead = build_lead(
        app_no=payload.app_no,
        name=payload.name,
        mobile_no=payload.mobile_no,
        amount=payload.amount,
        agent_id=payload.agent_id,
    )
    (lead,) = await insert_leads(db, [lead])
    return lead


async def update_lead(db: AsyncSession, lead: Lead, payload: LeadUpdate) -> Lead:
    """Apply free-form edits; status columns are never touched here."""
    changes = payload.model_dump(exclude_unset=True)
    if "mobile_no" in changes and changes["mobile_no"] is None:
        raise ValidationFailed(code="mobile_no_required", message="mobile_no is required", details={})
    if not changes:
        return lead
    if changes.get("mobile_no") and changes["mobile_no"] != lead.mobile_no:
        _, taken = await find_existing_keys(
            db, mobile_nos=[changes["mobile_no"]], exclude_lead_id=lead.id
        )
        if taken:
            raise Conflict(
                code="duplicate_mobile_no",
                message="Another lead already uses this mobile number",
                details={"mobile_no": changes["mobile_no"]},
            )
    old = model_snapshot(lead, include=changes.keys())
    for field_name, value in changes.items():
        setattr(lead, field_name, value)
    lead.updated_at = datetime.now(timezone.utc)
    db.add(lead)
    await db.commit()
    await db.refresh(lead)
    record_audit_event(
        action="lead.updated",
        resource_type="lead",
        resource_id=lead.id,
        old_value=old,
        new_value=model_snapshot(lead, include=changes.keys()),
    )
    return lead


async def assign_agent(db: AsyncSession, lead: Lead, agent_id: UUID) -> Lead:
    await require_agent(db, agent_id)
    if lead.agent_id == agent_id:
        return lead
    old_agent = lead.agent_id
    lead.agent_id = agent_id
    lead.updated_at = datetime.now(timezone.utc)
    db.add(lead)
    await db.commit()
    await db.refresh(lead)
    record_audit_event(
        action="lead.assigned",
        resource_type="lead",
        resource_id=lead.id,
        old_value={"agent_id": old_agent},
        new_value={"agent_id": agent_id},
    )
    return lead


async def update_status(
    db: AsyncSession,
    lead_id: int,
    new_status: LeadStatus | str,
) -> Lead:
    """Write ``status`` and its derived ``final_status`` in one UPDATE."""
    member = lead_status.coerce_status(new_status)
    if member is None:
        raise ValidationFailed(
            code="invalid_status",
            message="Unknown lead status",
            details={"status": str(new_status), "allowed": [s.value for s in LeadStatus]},
        )
    lead = await get_lead_or_404(db, lead_id)
    old = model_snapshot(lead, include=_STATUS_COLUMNS)
    fields = lead_status.status_fields(member)
    lead.status = fields["status"]
    lead.final_status = fields["final_status"]
    lead.updated_at = datetime.now(timezone.utc)
    db.add(lead)
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Status update failed for lead_id=%s", lead_id)
        raise
    await db.refresh(lead)
    record_audit_event(
        action="lead.status_updated",
        resource_type="lead",
        resource_id=lead_id,
        old_value=old,
        new_value=model_snapshot(lead, include=_STATUS_COLUMNS),
    )
    return lead


async def bulk_delete(db: AsyncSession, lead_ids: Iterable[int]) -> dict[str, Any]:
    """Delete leads with their notes and applications, all or nothing.

    Unknown ids abort the whole request before anything is deleted.
    """
    wanted = sorted(set(lead_ids))
    if not wanted:
        raise ValidationFailed(code="no_leads_selected", message="Select at least one lead", details={})

    found = set((await db.execute(select(Lead.id).where(Lead.id.in_(wanted)))).scalars().all())
    missing = [lead_id for lead_id in wanted if lead_id not in found]
    if missing:
        raise NotFound(
            code="lead_not_found",
            message="Some leads no longer exist; nothing was deleted",
            details={"missing_ids": missing},
        )

    try:
        notes_result = await db.execute(delete(LeadNote).where(LeadNote.lead_id.in_(wanted)))
        apps_result = await db.execute(delete(Application).where(Application.lead_id.in_(wanted)))
        await db.execute(delete(Lead).where(Lead.id.in_(wanted)))
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Bulk delete rolled back for %d leads", len(wanted))
        raise

    summary = {
        "deleted_ids": wanted,
        "deleted_notes": notes_result.rowcount or 0,
        "deleted_applications": apps_result.rowcount or 0,
    }
    record_audit_event(
        action="lead.bulk_deleted",
        resource_type="lead",
        resource_id=",".join(str(lead_id) for lead_id in wanted),
        old_value={"lead_ids": wanted},
        new_value=summary,
    )
    return summary
