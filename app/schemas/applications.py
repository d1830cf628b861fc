from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ApplicationStage(str, Enum):
    UNDER_REVIEW = "UnderReview"
    APPROVED = "Approved"
    REJECT = "Reject"
    DISBURSED = "Disbursed"


STAGE_LABELS: dict[ApplicationStage, str] = {
    ApplicationStage.UNDER_REVIEW: "Under Review",
    ApplicationStage.APPROVED: "Approved",
    ApplicationStage.REJECT: "Rejected",
    ApplicationStage.DISBURSED: "Disbursed",
}

# Board column order.
STAGE_ORDER: tuple[ApplicationStage, ...] = tuple(STAGE_LABELS)


class LeadSummaryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str | None = None
    mobile_no: str | None = None


class ApplicationDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    lead_id: int
    agent_id: UUID | None = None
    stage: ApplicationStage
    loan_amount: Decimal = Decimal("0")
    interest_rate: Decimal | None = None
    tenure_months: int | None = None
    monthly_emi: Decimal | None = None
    disbursed_amount: Decimal | None = None
    disbursed_date: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    lead: LeadSummaryDTO | None = None


class ApplicationUpdate(BaseModel):
    """Field edits that leave the stage alone."""

    model_config = ConfigDict(extra="forbid")

    loan_amount: Decimal | None = Field(default=None, ge=0)
    interest_rate: Decimal | None = Field(default=None, ge=0)
    tenure_months: int | None = Field(default=None, ge=1)
    monthly_emi: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class StageTransitionRequest(BaseModel):
    stage: ApplicationStage
    disbursed_amount: Decimal | None = None


class StageTransitionResponse(BaseModel):
    changed: bool
    application: ApplicationDTO


class ApplicationFilters(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    agent_id: UUID | None = None
    stage: ApplicationStage | None = None
    search: str | None = None


class StageSummaryDTO(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    stage: ApplicationStage
    label: str
    count: int
    total_amount: Decimal


class BoardSummaryResponse(BaseModel):
    stages: list[StageSummaryDTO]
