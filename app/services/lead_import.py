"""Bulk lead import.

Rows are validated one by one; invalid or duplicate rows are reported
back and the rest go through :func:`app.services.leads.insert_leads`, the
same path the manual form uses.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from typing import Any, Iterable
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.schemas.leads import LeadImportRejection, LeadImportRow
from app.services import leads
from app.services.errors import ValidationFailed

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("app_no", "mobile_no")
KNOWN_COLUMNS = ("app_no", "name", "mobile_no", "amount")

_AMOUNT_NOISE = re.compile(r"[^0-9.\-]")


def parse_csv_rows(csv_text: str) -> list[dict[str, Any]]:
    reader = csv.DictReader(io.StringIO(csv_text.strip()))
    headers = [header.strip().lower() for header in (reader.fieldnames or [])]
    missing = [column for column in REQUIRED_COLUMNS if column not in headers]
    if missing:
        raise ValidationFailed(
            code="missing_columns",
            message=f"Missing required columns: {', '.join(missing)}",
            details={"missing": missing},
        )
    reader.fieldnames = headers
    return [
        dict(row)
        for row in reader
        if any(isinstance(value, str) and value.strip() for value in row.values())
    ]


def _clean_row(raw: dict[str, Any]) -> dict[str, Any]:
    row = {key: raw.get(key) for key in KNOWN_COLUMNS}
    for key, value in row.items():
        if isinstance(value, str):
            row[key] = value.strip()
    amount = row.get("amount")
    if isinstance(amount, str) and amount:
        # "₹1,20,000" -> "120000"
        row["amount"] = _AMOUNT_NOISE.sub("", amount) or None
    return row


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    loc = ".".join(str(part) for part in error.get("loc", ()))
    message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
    return f"{loc}: {message}" if loc else message


async def import_rows(
    db: AsyncSession,
    raw_rows: Iterable[dict[str, Any]],
    agent_id: UUID,
) -> tuple[int, list[LeadImportRejection]]:
    await leads.require_agent(db, agent_id)

    rejected: list[LeadImportRejection] = []
    accepted: list[tuple[int, LeadImportRow]] = []
    for row_number, raw in enumerate(raw_rows, start=1):
        cleaned = _clean_row(raw)
        try:
            accepted.append((row_number, LeadImportRow.model_validate(cleaned)))
        except ValidationError as exc:
            rejected.append(
                LeadImportRejection(
                    row_number=row_number,
                    app_no=cleaned.get("app_no") or None,
                    reason=_first_error(exc),
                )
            )

    taken_app_nos, taken_mobiles = await leads.find_existing_keys(
        db,
        app_nos=[row.app_no for _, row in accepted],
        mobile_nos=[row.mobile_no for _, row in accepted],
    )
    new_leads = []
    for row_number, row in accepted:
        if row.app_no in taken_app_nos:
            reason = "duplicate app_no"
        elif row.mobile_no in taken_mobiles:
            reason = "duplicate mobile_no"
        else:
            reason = None
        if reason:
            rejected.append(LeadImportRejection(row_number=row_number, app_no=row.app_no, reason=reason))
            continue
        # Later rows in the same file collide with earlier accepted ones.
        taken_app_nos.add(row.app_no)
        taken_mobiles.add(row.mobile_no)
        new_leads.append(
            leads.build_lead(
                app_no=row.app_no,
                name=row.name,
                mobile_no=row.mobile_no,
                amount=row.amount,
                agent_id=agent_id,
            )
        )

    if new_leads:
        await leads.insert_leads(db, new_leads)
    rejected.sort(key=lambda rejection: rejection.row_number)
    logger.info("Lead import: inserted=%d rejected=%d", len(new_leads), len(rejected))
    return len(new_leads), rejected
