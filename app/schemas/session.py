from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ProfileRole(str, Enum):
    ADMIN = "admin"
    AGENT = "agent"


class ProfileDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str | None = None
    role: ProfileRole
    is_active: bool = True
