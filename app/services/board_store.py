"""Remote store used by the kanban board.

The board never talks to the database; it reads and writes through the
HTTP API like any other client, with an explicit :class:`BoardSession`
instead of ambient auth state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

import httpx

from app.core.settings import settings
from app.schemas.applications import ApplicationDTO, ApplicationStage
from app.schemas.session import ProfileRole

logger = logging.getLogger(__name__)


class BoardStoreError(RuntimeError):
    """A read or write against the store failed (network, auth, constraint, not found)."""

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


@dataclass(frozen=True)
class BoardSession:
    access_token: str
    profile_id: UUID
    role: ProfileRole
    base_url: str = field(default_factory=lambda: settings.board_api_base_url)

    @property
    def scoped_agent_id(self) -> UUID | None:
        """Agents only ever see their own applications."""
        return self.profile_id if self.role == ProfileRole.AGENT else None


class ApplicationStore(Protocol):
    async def fetch_applications(self, *, agent_id: UUID | None = None) -> list[ApplicationDTO]: ...

    async def move_application(
        self,
        application_id: UUID,
        stage: ApplicationStage,
        *,
        disbursed_amount: Decimal | None = None,
    ) -> None: ...

    async def aclose(self) -> None: ...


class HttpApplicationStore:
    def __init__(self, session: BoardSession, *, client: httpx.AsyncClient | None = None) -> None:
        self._session = session
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=session.base_url,
            timeout=settings.board_request_timeout_seconds,
        )

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._session.access_token}"}

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Board store %s %s failed: %s", method, url, exc)
            raise BoardStoreError(f"Request failed: {exc}") from exc
        try:
            envelope = response.json()
        except ValueError:
            envelope = None
        if response.is_error:
            message = response.reason_phrase or "Request failed"
            code = None
            if isinstance(envelope, dict):
                message = envelope.get("message") or message
                code = envelope.get("code")
            raise BoardStoreError(message, status_code=response.status_code, code=code)
        if isinstance(envelope, dict) and "data" in envelope:
            return envelope["data"]
        return envelope

    async def fetch_applications(self, *, agent_id: UUID | None = None) -> list[ApplicationDTO]:
        params = {"agent_id": str(agent_id)} if agent_id is not None else None
        data = await self._request("GET", "/applications", params=params)
        return [ApplicationDTO.model_validate(item) for item in data or []]

    async def move_application(
        self,
        application_id: UUID,
        stage: ApplicationStage,
        *,
        disbursed_amount: Decimal | None = None,
    ) -> None:
        body: dict[str, Any] = {"stage": ApplicationStage(stage).value}
        if disbursed_amount is not None:
            body["disbursed_amount"] = str(disbursed_amount)
        await self._request("POST", f"/applications/{application_id}/stage", json=body)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
