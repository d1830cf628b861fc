from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import set_actor_id
from app.core.security import TokenError, decode_access_token
from app.db.session import get_db
from app.models.profile import Profile
from app.schemas.session import ProfileRole

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(slots=True)
class SessionContext:
    """Who is acting on this request. Built once per request and passed down."""

    profile_id: UUID
    role: ProfileRole
    email: str
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ProfileRole.ADMIN

    def scoped_agent_id(self, requested: UUID | None = None) -> UUID | None:
        """Agents are pinned to their own rows; admins may filter freely."""
        if self.is_admin:
            return requested
        return self.profile_id

    def can_access(self, agent_id: UUID | None) -> bool:
        return self.is_admin or agent_id == self.profile_id


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_session_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> SessionContext:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
    except TokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    try:
        profile_id = UUID(str(payload["sub"]))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject") from exc

    profile = await db.get(Profile, profile_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Profile not found")
    if not profile.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive profile")

    set_actor_id(str(profile.id))
    return SessionContext(
        profile_id=profile.id,
        role=ProfileRole(profile.role),
        email=profile.email,
        name=profile.name,
    )


async def require_admin(session: SessionContext = Depends(get_session_context)) -> SessionContext:
    if not session.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return session


def ensure_access(session: SessionContext, agent_id: UUID | None, resource: str) -> None:
    """Hide rows owned by other agents behind a 404, the way row-level policies do."""
    if not session.can_access(agent_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource} not found")
