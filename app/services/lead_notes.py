from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.lead import Lead
from app.models.lead_note import LeadNote
from app.schemas.leads import LeadNoteCreate


async def list_notes(db: AsyncSession, lead_id: int) -> list[LeadNote]:
    stmt = (
        select(LeadNote)
        .where(LeadNote.lead_id == lead_id)
        .order_by(LeadNote.created_at.desc(), LeadNote.id)
    )
    return list((await db.execute(stmt)).scalars().all())


async def add_note(db: AsyncSession, lead: Lead, author_id: UUID, payload: LeadNoteCreate) -> LeadNote:
    note = LeadNote(lead_id=lead.id, author_id=author_id, note=payload.note)
    db.add(note)
    await db.commit()
    await db.refresh(note)
    return note
