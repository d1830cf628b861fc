from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.models.application import Application
from app.models.lead import Lead
from app.models.lead_note import LeadNote
from app.models.profile import Profile
from app.schemas.leads import LeadCreate, LeadFilters, LeadUpdate
from app.schemas.session import ProfileRole
from app.services import leads
from app.services.errors import Conflict, NotFound, ValidationFailed
from conftest import (
    FakeAsyncSession,
    FakeResult,
    dml_handler,
    entity_handler,
    make_lead,
    make_profile,
    sequence_handler,
)


@pytest.mark.asyncio
async def test_update_status_writes_status_and_final_status_together() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status=None)
    db.on_get(Lead, lead.id, lead)

    updated = await leads.update_status(db, lead.id, "cibil issue")

    assert updated.status == "cibil issue"
    assert updated.final_status == "close"
    assert db.commits == 1


@pytest.mark.asyncio
async def test_update_status_reopens_lead_on_banking_received() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="NI")
    assert lead.final_status == "close"
    db.on_get(Lead, lead.id, lead)

    updated = await leads.update_status(db, lead.id, "banking received")

    assert (updated.status, updated.final_status) == ("banking received", "open")


@pytest.mark.asyncio
async def test_update_status_rejects_unknown_status_without_writing() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="NI")
    db.on_get(Lead, lead.id, lead)

    with pytest.raises(ValidationFailed) as excinfo:
        await leads.update_status(db, lead.id, "on hold")

    assert excinfo.value.code == "invalid_status"
    assert db.commits == 0
    assert lead.status == "NI"


@pytest.mark.asyncio
async def test_update_status_missing_lead() -> None:
    db = FakeAsyncSession()
    with pytest.raises(NotFound):
        await leads.update_status(db, 404, "NI")


@pytest.mark.asyncio
async def test_update_status_store_failure_rolls_back_and_propagates() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status=None)
    db.on_get(Lead, lead.id, lead)
    db.fail_commits = [OperationalError("UPDATE leads", {}, Exception("connection reset"))]

    with pytest.raises(OperationalError):
        await leads.update_status(db, lead.id, "salary low")

    assert db.rollbacks == 1
    assert db.commits == 0


@pytest.mark.asyncio
async def test_bulk_delete_removes_notes_applications_and_leads() -> None:
    db = FakeAsyncSession()
    db.on_execute(entity_handler(Lead, FakeResult(items=[1, 2])))
    db.on_execute(dml_handler(LeadNote, FakeResult(rowcount=3)))
    db.on_execute(dml_handler(Application, FakeResult(rowcount=1)))
    db.on_execute(dml_handler(Lead, FakeResult(rowcount=2)))

    summary = await leads.bulk_delete(db, [2, 1, 2])

    assert summary == {"deleted_ids": [1, 2], "deleted_notes": 3, "deleted_applications": 1}
    deleted_tables = [stmt.table.name for stmt in db.executed if getattr(stmt, "is_delete", False)]
    assert deleted_tables == ["lead_notes", "applications", "leads"]
    assert db.commits == 1


@pytest.mark.asyncio
async def test_bulk_delete_with_missing_ids_deletes_nothing() -> None:
    db = FakeAsyncSession()
    db.on_execute(entity_handler(Lead, FakeResult(items=[1])))

    with pytest.raises(NotFound) as excinfo:
        await leads.bulk_delete(db, [1, 7])

    assert excinfo.value.details == {"missing_ids": [7]}
    assert not any(getattr(stmt, "is_delete", False) for stmt in db.executed)
    assert db.commits == 0


@pytest.mark.asyncio
async def test_bulk_delete_requires_a_selection() -> None:
    with pytest.raises(ValidationFailed):
        await leads.bulk_delete(FakeAsyncSession(), [])


@pytest.mark.asyncio
async def test_create_lead_checks_agent_and_duplicates() -> None:
    db = FakeAsyncSession()
    agent = make_profile(role=ProfileRole.AGENT)
    db.on_get(Profile, agent.id, agent)
    db.on_execute(entity_handler(Lead, FakeResult(rows=[("APP-1", "9999999999")])))

    payload = LeadCreate(app_no="APP-1", mobile_no="9876543210", agent_id=agent.id)
    with pytest.raises(Conflict) as excinfo:
        await leads.create_lead(db, payload)

    assert excinfo.value.details["app_no"] == ["APP-1"]
    assert excinfo.value.details["mobile_no"] == []
    assert db.added == []


@pytest.mark.asyncio
async def test_create_lead_starts_open_with_no_status() -> None:
    db = FakeAsyncSession()
    agent = make_profile(role=ProfileRole.AGENT)
    db.on_get(Profile, agent.id, agent)

    lead = await leads.create_lead(
        db,
        LeadCreate(app_no="APP-9", name="Asha", mobile_no="9876543210", amount="75000", agent_id=agent.id),
    )

    assert lead.status is None
    assert lead.final_status == "open"
    assert lead.amount == Decimal("75000")
    assert db.added == [lead]
    assert db.commits == 1


@pytest.mark.asyncio
async def test_create_lead_rejects_admin_as_assignee() -> None:
    db = FakeAsyncSession()
    admin = make_profile(role=ProfileRole.ADMIN)
    db.on_get(Profile, admin.id, admin)

    with pytest.raises(ValidationFailed) as excinfo:
        await leads.create_lead(db, LeadCreate(app_no="A", mobile_no="9876543210", agent_id=admin.id))
    assert excinfo.value.code == "not_an_agent"


@pytest.mark.asyncio
async def test_insert_race_on_unique_key_becomes_conflict() -> None:
    db = FakeAsyncSession()
    db.fail_commits = [IntegrityError("INSERT INTO leads", {}, Exception("duplicate key"))]

    with pytest.raises(Conflict):
        await leads.insert_leads(db, [leads.build_lead(app_no="A", mobile_no="9876543210", agent_id=uuid4())])
    assert db.rollbacks == 1


@pytest.mark.asyncio
async def test_update_lead_never_touches_status() -> None:
    db = FakeAsyncSession()
    lead = make_lead(status="NI")

    updated = await leads.update_lead(db, lead, LeadUpdate(name="New Name", amount="90000"))

    assert updated.name == "New Name"
    assert updated.amount == Decimal("90000")
    assert (updated.status, updated.final_status) == ("NI", "close")


@pytest.mark.asyncio
async def test_update_lead_rejects_mobile_used_elsewhere() -> None:
    db = FakeAsyncSession()
    lead = make_lead()
    db.on_execute(entity_handler(Lead, FakeResult(rows=[("APP-OTHER", "9000000001")])))

    with pytest.raises(Conflict):
        await leads.update_lead(db, lead, LeadUpdate(mobile_no="9000000001"))
    assert db.commits == 0


def test_update_payload_refuses_status_field() -> None:
    with pytest.raises(ValueError):
        LeadUpdate(status="NI")


@pytest.mark.asyncio
async def test_list_leads_returns_page_and_total() -> None:
    db = FakeAsyncSession()
    rows = [make_lead(), make_lead()]
    db.on_execute(sequence_handler([FakeResult(scalar=12), FakeResult(items=rows)]))

    items, total = await leads.list_leads(db, LeadFilters(search="ravi"), offset=0, limit=2)

    assert items == rows
    assert total == 12
    assert "ORDER BY leads.created_at DESC, leads.id DESC" in str(db.executed[1])


@pytest.mark.asyncio
async def test_worklist_order_is_applied_before_paging() -> None:
    db = FakeAsyncSession()
    db.on_execute(sequence_handler([FakeResult(scalar=80), FakeResult(items=[])]))

    await leads.list_leads(db, None, offset=50, limit=50, worklist=True)

    sql = str(db.executed[1])
    assert "ORDER BY CASE WHEN" in sql
    assert "leads.final_status" in sql.split("ORDER BY")[1]
    assert "END, leads.created_at DESC, leads.id DESC" in sql
    assert sql.index("ORDER BY") < sql.index("LIMIT") < sql.index("OFFSET")


def test_filter_conditions_are_and_combined_per_field() -> None:
    filters = LeadFilters(
        search="98",
        status="NI",
        final_status="close",
        agent_id=uuid4(),
        created_from=date(2026, 1, 1),
        created_to=date(2026, 1, 31),
    )
    assert len(leads.lead_filter_conditions(filters)) == 6
    assert leads.lead_filter_conditions(LeadFilters(search="   ")) == []
    assert leads.lead_filter_conditions(None) == []


def test_filter_date_range_must_be_ordered() -> None:
    with pytest.raises(ValueError):
        LeadFilters(created_from=date(2026, 2, 1), created_to=date(2026, 1, 1))


@pytest.mark.parametrize("amount", ["39999", "1500001"])
def test_lead_amount_bounds(amount: str) -> None:
    with pytest.raises(ValueError):
        LeadCreate(app_no="A", mobile_no="9876543210", amount=amount, agent_id=uuid4())


@pytest.mark.parametrize("mobile", ["98765", "98765432100", "98765abcde", "９８７６５４３２１０"])
def test_mobile_must_be_ten_ascii_digits(mobile: str) -> None:
    with pytest.raises(ValueError):
        LeadCreate(app_no="A", mobile_no=mobile, agent_id=uuid4())
