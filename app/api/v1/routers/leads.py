from datetime import date
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import build_envelope
from app.core.settings import settings
from app.db.session import get_db
from app.models.lead import Lead
from app.schemas.applications import ApplicationDTO
from app.schemas.leads import (
    FinalStatus,
    LeadAssignRequest,
    LeadBulkDeleteRequest,
    LeadBulkDeleteResponse,
    LeadCreate,
    LeadDTO,
    LeadFilters,
    LeadImportRequest,
    LeadImportResponse,
    LeadListResponse,
    LeadNoteCreate,
    LeadNoteDTO,
    LeadStatus,
    LeadStatusChangeResponse,
    LeadStatusUpdate,
    LeadUpdate,
)
from app.services import application_spawn, lead_import, lead_notes, leads
from app.services.errors import ValidationFailed

router = APIRouter(prefix="/leads", tags=["leads"])


async def _get_accessible_lead(db: AsyncSession, session: deps.SessionContext, lead_id: int) -> Lead:
    lead = await leads.get_lead_or_404(db, lead_id)
    deps.ensure_access(session, lead.agent_id, "Lead")
    return lead


def _status_change_payload(outcome: application_spawn.SpawnOutcome) -> dict:
    return LeadStatusChangeResponse(
        lead=outcome.lead,
        application=ApplicationDTO.model_validate(outcome.application) if outcome.application else None,
        application_spawned=outcome.application is not None,
    ).model_dump(mode="json")


def _status_change_response(outcome: application_spawn.SpawnOutcome) -> JSONResponse:
    payload = _status_change_payload(outcome)
    if outcome.partial_failure:
        return JSONResponse(
            status_code=status.HTTP_207_MULTI_STATUS,
            content=jsonable_encoder(
                build_envelope(
                    "partial_failure",
                    outcome.message,
                    payload,
                    {"error": outcome.error, "status_updated": True, "application_created": False},
                )
            ),
        )
    return JSONResponse(status_code=status.HTTP_200_OK, content=build_envelope("ok", outcome.message, payload))


@router.get("", response_model=LeadListResponse)
async def list_leads(
    search: str | None = Query(default=None, max_length=100),
    status_filter: LeadStatus | None = Query(default=None, alias="status"),
    final_status: FinalStatus | None = Query(default=None),
    agent_id: UUID | None = Query(default=None),
    created_from: date | None = Query(default=None),
    created_to: date | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
    order: Literal["created", "worklist"] = Query(default="created"),
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> LeadListResponse:
    try:
        filters = LeadFilters(
            search=search,
            status=status_filter,
            final_status=final_status,
            agent_id=session.scoped_agent_id(agent_id),
            created_from=created_from,
            created_to=created_to,
        )
    except ValidationError as exc:
        raise ValidationFailed(
            code="invalid_filters",
            message=str(exc.errors()[0].get("msg", "Invalid filters")).removeprefix("Value error, "),
            details={},
        ) from exc
    page_size = min(limit or settings.default_page_size, settings.max_page_size)
    items, total = await leads.list_leads(
        db, filters, offset=offset, limit=page_size, worklist=order == "worklist"
    )
    return LeadListResponse(
        items=[LeadDTO.model_validate(item) for item in items],
        total=total,
        offset=offset,
        limit=page_size,
    )


@router.post("", response_model=LeadDTO, status_code=status.HTTP_201_CREATED)
async def create_lead(
    payload: LeadCreate,
    session: deps.SessionContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db),
) -> LeadDTO:
    lead = await leads.create_lead(db, payload)
    return LeadDTO.model_validate(lead)


@router.post("/bulk-delete", response_model=LeadBulkDeleteResponse)
async def bulk_delete_leads(
    payload: LeadBulkDeleteRequest,
    session: deps.SessionContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db),
) -> LeadBulkDeleteResponse:
    summary = await leads.bulk_delete(db, payload.lead_ids)
    return LeadBulkDeleteResponse(**summary)


@router.post("/import", response_model=LeadImportResponse)
async def import_leads(
    payload: LeadImportRequest,
    session: deps.SessionContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db),
) -> LeadImportResponse:
    rows = payload.rows if payload.rows is not None else lead_import.parse_csv_rows(payload.csv_text or "")
    if not rows:
        raise ValidationFailed(code="empty_import", message="No valid data found in upload", details={})
    inserted, rejected = await lead_import.import_rows(db, rows, payload.agent_id)
    return LeadImportResponse(inserted=inserted, rejected=rejected)


@router.get("/{lead_id}", response_model=LeadDTO)
async def get_lead(
    lead_id: int,
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> LeadDTO:
    return LeadDTO.model_validate(await _get_accessible_lead(db, session, lead_id))


@router.patch("/{lead_id}", response_model=LeadDTO)
async def update_lead(
    lead_id: int,
    payload: LeadUpdate,
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> LeadDTO:
    lead = await _get_accessible_lead(db, session, lead_id)
    lead = await leads.update_lead(db, lead, payload)
    return LeadDTO.model_validate(lead)


@router.post("/{lead_id}/assign", response_model=LeadDTO)
async def assign_lead(
    lead_id: int,
    payload: LeadAssignRequest,
    session: deps.SessionContext = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db),
) -> LeadDTO:
    lead = await leads.get_lead_or_404(db, lead_id)
    lead = await leads.assign_agent(db, lead, payload.agent_id)
    return LeadDTO.model_validate(lead)


@router.post("/{lead_id}/status", summary="Set lead status; qualifying status spawns an application")
async def update_lead_status(
    lead_id: int,
    payload: LeadStatusUpdate,
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    await _get_accessible_lead(db, session, lead_id)
    outcome = await application_spawn.on_status_update(db, lead_id, payload.status)
    return _status_change_response(outcome)


@router.post("/{lead_id}/applications", status_code=status.HTTP_201_CREATED, summary="Retry application creation")
async def retry_application_spawn(
    lead_id: int,
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await _get_accessible_lead(db, session, lead_id)
    outcome = await application_spawn.retry_spawn(db, lead_id)
    if outcome.application is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "application_create_failed", "message": "Failed to create application"},
        )
    return _status_change_payload(outcome)


@router.get("/{lead_id}/notes", response_model=list[LeadNoteDTO])
async def list_lead_notes(
    lead_id: int,
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> list[LeadNoteDTO]:
    await _get_accessible_lead(db, session, lead_id)
    notes = await lead_notes.list_notes(db, lead_id)
    return [LeadNoteDTO.model_validate(note) for note in notes]


@router.post("/{lead_id}/notes", response_model=LeadNoteDTO, status_code=status.HTTP_201_CREATED)
async def add_lead_note(
    lead_id: int,
    payload: LeadNoteCreate,
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> LeadNoteDTO:
    lead = await _get_accessible_lead(db, session, lead_id)
    note = await lead_notes.add_note(db, lead, session.profile_id, payload)
    return LeadNoteDTO.model_validate(note)
