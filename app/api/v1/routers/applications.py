from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.application import Application
from app.schemas.applications import (
    ApplicationDTO,
    ApplicationFilters,
    ApplicationStage,
    ApplicationUpdate,
    BoardSummaryResponse,
    StageSummaryDTO,
    StageTransitionRequest,
    StageTransitionResponse,
)
from app.services import applications, stage_summary

router = APIRouter(prefix="/applications", tags=["applications"])


async def _get_accessible_application(
    db: AsyncSession, session: deps.SessionContext, application_id: UUID
) -> Application:
    application = await applications.get_application_or_404(db, application_id)
    deps.ensure_access(session, application.agent_id, "Application")
    return application


@router.get("", response_model=list[ApplicationDTO])
async def list_applications(
    agent_id: UUID | None = Query(default=None),
    stage: ApplicationStage | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> list[ApplicationDTO]:
    filters = ApplicationFilters(agent_id=session.scoped_agent_id(agent_id), stage=stage, search=search)
    rows = await applications.list_applications(db, filters)
    return [ApplicationDTO.model_validate(row) for row in rows]


@router.get("/summary", response_model=BoardSummaryResponse)
async def applications_summary(
    agent_id: UUID | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> BoardSummaryResponse:
    filters = ApplicationFilters(agent_id=session.scoped_agent_id(agent_id), search=search)
    rows = await applications.list_applications(db, filters)
    return BoardSummaryResponse(
        stages=[
            StageSummaryDTO(stage=item.stage, label=item.label, count=item.count, total_amount=item.total_amount)
            for item in stage_summary.summarize(rows)
        ]
    )


@router.get("/{application_id}", response_model=ApplicationDTO)
async def get_application(
    application_id: UUID,
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> ApplicationDTO:
    return ApplicationDTO.model_validate(await _get_accessible_application(db, session, application_id))


@router.patch("/{application_id}", response_model=ApplicationDTO)
async def update_application(
    application_id: UUID,
    payload: ApplicationUpdate,
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> ApplicationDTO:
    application = await _get_accessible_application(db, session, application_id)
    application = await applications.update_application_fields(db, application, payload)
    return ApplicationDTO.model_validate(application)


@router.post("/{application_id}/stage", response_model=StageTransitionResponse)
async def move_application_stage(
    application_id: UUID,
    payload: StageTransitionRequest,
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> StageTransitionResponse:
    application = await _get_accessible_application(db, session, application_id)
    application, changed = await applications.transition_stage(
        db,
        application,
        payload.stage,
        disbursed_amount=payload.disbursed_amount,
    )
    return StageTransitionResponse(changed=changed, application=ApplicationDTO.model_validate(application))
