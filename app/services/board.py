"""Kanban board controller for the application pipeline.

Turns drag gestures into stage transitions:

* the drop target is resolved to a stage by :func:`resolve_drop_target`;
* moves into Disbursed stop at an amount-capture step and touch nothing
  until the user confirms;
* every other move is applied to the local list first, then committed;
* a failed commit throws the local list away and reloads it from the store.

Commits are serialized per application: while a card's move is in flight,
further drags of that card are refused. While an amount capture is open,
every other drop is refused until it is confirmed or cancelled.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from app.schemas.applications import ApplicationDTO, ApplicationStage
from app.services import pipeline, stage_summary
from app.services.board_store import ApplicationStore, BoardStoreError
from app.services.errors import ValidationFailed

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    SUCCESS = "success"
    VALIDATION = "validation"
    FAILURE = "failure"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    message: str


class NotificationLog:
    """Default notifier: keeps every notification in order."""

    def __init__(self) -> None:
        self.items: list[Notification] = []

    def __call__(self, notification: Notification) -> None:
        self.items.append(notification)

    def kinds(self) -> list[NotificationKind]:
        return [item.kind for item in self.items]


@dataclass(frozen=True)
class DropTarget:
    """What the pointer was over when the drag ended.

    ``id`` is a column id or a card id; ``container_id`` is set when the
    target is a card inside a sortable group and names that group.
    """

    id: str
    container_id: str | None = None


class DragOutcome(str, Enum):
    DISCARDED = "discarded"
    NO_OP = "no_op"
    BUSY = "busy"
    AWAITING_AMOUNT = "awaiting_amount"
    INVALID_AMOUNT = "invalid_amount"
    CANCELLED = "cancelled"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class PendingDisbursement:
    application_id: UUID
    prefill: str


DEFAULT_CONTAINERS: Mapping[str, ApplicationStage] = {stage.value: stage for stage in ApplicationStage}


def _stage_or_none(value: Any) -> ApplicationStage | None:
    try:
        return ApplicationStage(value)
    except ValueError:
        return None


def resolve_drop_target(
    target: DropTarget | None,
    applications: list[ApplicationDTO],
    containers: Mapping[str, ApplicationStage] = DEFAULT_CONTAINERS,
) -> ApplicationStage | None:
    """Resolve a drop target to exactly one stage, or ``None`` to discard the gesture.

    Priority: a column id, then the sortable group owning a card, then the
    stage of the card dropped onto.
    """
    if target is None:
        return None
    column = _stage_or_none(target.id)
    if column is not None:
        return column
    if target.container_id is not None and target.container_id in containers:
        return containers[target.container_id]
    for application in applications:
        if str(application.id) == str(target.id):
            return pipeline.coerce_stage(application.stage)
    return None


def _as_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class PipelineBoard:
    def __init__(
        self,
        store: ApplicationStore,
        *,
        notify: Callable[[Notification], None] | None = None,
        agent_id: UUID | None = None,
        containers: Mapping[str, ApplicationStage] = DEFAULT_CONTAINERS,
    ) -> None:
        self._store = store
        self._notify = notify if notify is not None else NotificationLog()
        self._agent_id = agent_id
        self._containers = containers
        self._in_flight: set[UUID] = set()
        self._generation = 0
        self.applications: list[ApplicationDTO] = []
        self.loading = False
        self.stale = False
        self.active_id: UUID | None = None
        self.pending_disbursement: PendingDisbursement | None = None
        self.search = ""
        self.stage_filter: ApplicationStage | None = None

    # -- reads -------------------------------------------------------------

    async def load(self) -> bool:
        """Replace the local list with a fresh read. Returns ``False`` on failure."""
        self.loading = True
        self._generation += 1
        try:
            self.applications = await self._store.fetch_applications(agent_id=self._agent_id)
            self.stale = False
            return True
        except BoardStoreError as exc:
            logger.warning("Board reload failed: %s", exc.message)
            self._emit(NotificationKind.FAILURE, "Failed to fetch applications")
            return False
        finally:
            self.loading = False

    def find(self, application_id: UUID | str) -> ApplicationDTO | None:
        wanted = str(application_id)
        for application in self.applications:
            if str(application.id) == wanted:
                return application
        return None

    @property
    def active_application(self) -> ApplicationDTO | None:
        """The card being dragged, for the drag overlay."""
        return self.find(self.active_id) if self.active_id is not None else None

    def is_in_flight(self, application_id: UUID | str) -> bool:
        return _as_uuid(application_id) in self._in_flight

    def visible_applications(self) -> list[ApplicationDTO]:
        term = self.search.strip().lower()
        visible = []
        for application in self.applications:
            if self.stage_filter is not None and pipeline.coerce_stage(application.stage) is not self.stage_filter:
                continue
            if term:
                lead = application.lead
                haystack = " ".join(filter(None, [lead and lead.name, lead and lead.mobile_no])).lower()
                if term not in haystack:
                    continue
            visible.append(application)
        return visible

    def columns(self) -> dict[ApplicationStage, list[ApplicationDTO]]:
        return stage_summary.group_by_stage(self.visible_applications())

    def summary(self) -> list[stage_summary.StageTotals]:
        return stage_summary.summarize(self.visible_applications())

    # -- gestures ----------------------------------------------------------

    def drag_start(self, application_id: UUID | str) -> None:
        self.active_id = _as_uuid(application_id)

    async def drag_end(self, application_id: UUID | str, over: DropTarget | None) -> DragOutcome:
        self.active_id = None
        application = self.find(application_id)
        if application is None:
            return DragOutcome.DISCARDED
        target = resolve_drop_target(over, self.applications, self._containers)
        if target is None:
            return DragOutcome.DISCARDED
        if pipeline.coerce_stage(application.stage) is target:
            return DragOutcome.NO_OP
        if application.id in self._in_flight:
            logger.info("Ignoring drag of application_id=%s while its move is in flight", application.id)
            return DragOutcome.BUSY
        if self.pending_disbursement is not None:
            logger.info(
                "Ignoring drag of application_id=%s while amount capture for application_id=%s is open",
                application.id,
                self.pending_disbursement.application_id,
            )
            return DragOutcome.BUSY
        if pipeline.requires_disbursed_amount(target):
            prefill = application.disbursed_amount or application.loan_amount
            self.pending_disbursement = PendingDisbursement(
                application_id=application.id,
                prefill=str(prefill) if prefill else "",
            )
            return DragOutcome.AWAITING_AMOUNT
        return await self._commit(application, target)

    async def confirm_disbursement(self, amount: Any) -> DragOutcome:
        pending = self.pending_disbursement
        if pending is None:
            return DragOutcome.DISCARDED
        try:
            disbursed_amount = pipeline.parse_disbursed_amount(amount)
        except ValidationFailed as exc:
            # The capture step stays open for another try.
            self._emit(NotificationKind.VALIDATION, exc.message)
            return DragOutcome.INVALID_AMOUNT
        application = self.find(pending.application_id)
        if application is not None and application.id in self._in_flight:
            return DragOutcome.BUSY
        self.pending_disbursement = None
        if application is None:
            self._emit(NotificationKind.FAILURE, "Application no longer exists")
            await self._reset_from_store()
            return DragOutcome.ROLLED_BACK
        return await self._commit(application, ApplicationStage.DISBURSED, disbursed_amount)

    def cancel_disbursement(self) -> DragOutcome:
        self.pending_disbursement = None
        return DragOutcome.CANCELLED

    # -- commit path -------------------------------------------------------

    async def _commit(
        self,
        application: ApplicationDTO,
        target: ApplicationStage,
        disbursed_amount: Decimal | None = None,
    ) -> DragOutcome:
        changes = pipeline.plan_transition(application.stage, target, disbursed_amount=disbursed_amount)
        if changes is None:
            return DragOutcome.NO_OP

        generation = self._generation
        self._in_flight.add(application.id)
        self._replace(application.model_copy(update={**changes, "stage": target}))
        logger.info("Optimistic move application_id=%s %s -> %s", application.id, application.stage, target.value)
        try:
            await self._store.move_application(application.id, target, disbursed_amount=disbursed_amount)
        except BoardStoreError as exc:
            logger.warning("Move of application_id=%s failed, reloading board: %s", application.id, exc.message)
            self._emit(NotificationKind.FAILURE, "Failed to update application stage")
            await self._reset_from_store()
            return DragOutcome.ROLLED_BACK
        finally:
            self._in_flight.discard(application.id)

        logger.info("Committed move application_id=%s -> %s", application.id, target.value)
        if target is ApplicationStage.DISBURSED:
            self._emit(NotificationKind.SUCCESS, "Application disbursed successfully")
        else:
            self._emit(NotificationKind.SUCCESS, "Application stage updated successfully")
        if generation != self._generation:
            # A reload landed mid-flight and may predate this write.
            await self.load()
        return DragOutcome.COMMITTED

    async def _reset_from_store(self) -> None:
        self.applications = []
        if not await self.load():
            self.stale = True

    def _replace(self, updated: ApplicationDTO) -> None:
        self.applications = [
            updated if application.id == updated.id else application for application in self.applications
        ]

    def _emit(self, kind: NotificationKind, message: str) -> None:
        self._notify(Notification(kind=kind, message=message))

    async def close(self) -> None:
        """Tear down the session: drop cached state and release the store."""
        self.applications = []
        self.pending_disbursement = None
        self.active_id = None
        await self._store.aclose()
