from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import DetachedInstanceError

from app.models.application import Application
from app.models.lead import Lead
from app.services import application_spawn
from app.services.errors import ValidationFailed
from conftest import FakeAsyncSession, make_lead


def _store_down() -> OperationalError:
    return OperationalError("INSERT INTO applications", {}, Exception("connection reset"))


@pytest.mark.asyncio
async def test_qualifying_status_spawns_under_review_application() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="salary low", amount=Decimal("320000"))
    db.on_get(Lead, lead.id, lead)

    outcome = await application_spawn.on_status_update(db, lead.id, "banking received")

    assert outcome.partial_failure is False
    application = outcome.application
    assert isinstance(application, Application)
    assert application.lead_id == lead.id
    assert application.agent_id == lead.agent_id
    assert application.stage == "UnderReview"
    assert application.loan_amount == Decimal("320000")
    assert outcome.message == "Lead status updated and application created successfully"
    assert db.commits == 2


@pytest.mark.asyncio
async def test_missing_lead_amount_spawns_zero_loan_amount() -> None:
    db = FakeAsyncSession()
    lead = make_lead(amount=None)
    db.on_get(Lead, lead.id, lead)

    outcome = await application_spawn.on_status_update(db, lead.id, "banking received")

    assert outcome.application.loan_amount == Decimal("0")


@pytest.mark.asyncio
async def test_other_statuses_never_spawn() -> None:
    db = FakeAsyncSession()
    lead = make_lead()
    db.on_get(Lead, lead.id, lead)

    outcome = await application_spawn.on_status_update(db, lead.id, "cibil issue")

    assert outcome.application is None
    assert outcome.spawn_attempted is False
    assert outcome.partial_failure is False
    assert outcome.message == "Lead status updated successfully"
    assert not any(isinstance(obj, Application) for obj in db.added)


@pytest.mark.asyncio
async def test_reentering_qualifying_status_spawns_again() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="banking received")
    db.on_get(Lead, lead.id, lead)

    first = await application_spawn.on_status_update(db, lead.id, "banking received")
    second = await application_spawn.on_status_update(db, lead.id, "banking received")

    assert first.application is not None and second.application is not None
    assert first.application.id != second.application.id


@pytest.mark.asyncio
async def test_spawn_failure_keeps_status_and_reports_partial_failure() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="NI")
    db.on_get(Lead, lead.id, lead)
    db.fail_commits = [None, _store_down()]

    outcome = await application_spawn.on_status_update(db, lead.id, "banking received")

    assert outcome.partial_failure is True
    assert outcome.application is None
    assert "connection reset" in outcome.error
    assert outcome.message == "Lead status updated, but application creation failed"
    assert (outcome.lead.status, outcome.lead.final_status) == ("banking received", "open")
    assert db.rollbacks == 1


@pytest.mark.asyncio
async def test_spawn_failure_outcome_survives_expired_session_state() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="NI", amount=Decimal("120000"))
    lead_id = lead.id
    db.on_get(Lead, lead_id, lead)
    db.fail_commits = [None, _store_down()]

    outcome = await application_spawn.on_status_update(db, lead_id, "banking received")

    with pytest.raises(DetachedInstanceError):
        lead.status
    assert outcome.partial_failure is True
    assert outcome.lead.id == lead_id
    assert outcome.lead.amount == Decimal("120000")


@pytest.mark.asyncio
async def test_retry_spawn_failure_is_reported_not_raised() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="banking received")
    db.on_get(Lead, lead.id, lead)
    db.fail_commits = [_store_down()]

    outcome = await application_spawn.retry_spawn(db, lead.id)

    assert outcome.partial_failure is True
    assert outcome.lead.status == "banking received"
    assert db.rollbacks == 1


@pytest.mark.asyncio
async def test_status_write_failure_propagates_without_spawning() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="NI")
    db.on_get(Lead, lead.id, lead)
    db.fail_commits = [_store_down()]

    with pytest.raises(OperationalError):
        await application_spawn.on_status_update(db, lead.id, "banking received")
    assert not any(isinstance(obj, Application) for obj in db.added)


@pytest.mark.asyncio
async def test_retry_spawn_finishes_the_second_step() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="banking received")
    db.on_get(Lead, lead.id, lead)

    outcome = await application_spawn.retry_spawn(db, lead.id)

    assert outcome.application is not None
    assert outcome.partial_failure is False


@pytest.mark.asyncio
async def test_retry_spawn_refuses_non_qualifying_lead() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="salary low")
    db.on_get(Lead, lead.id, lead)

    with pytest.raises(ValidationFailed) as excinfo:
        await application_spawn.retry_spawn(db, lead.id)
    assert excinfo.value.code == "lead_not_qualifying"
