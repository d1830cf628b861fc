from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.profile import Profile
from app.schemas.session import ProfileDTO

router = APIRouter(prefix="/session", tags=["session"])


@router.get("", response_model=ProfileDTO)
async def get_session(
    session: deps.SessionContext = Depends(deps.get_session_context),
    db: AsyncSession = Depends(get_db),
) -> ProfileDTO:
    """The signed-in profile; the client reads ``role`` to pick its view."""
    profile = await db.get(Profile, session.profile_id)
    return ProfileDTO.model_validate(profile)
