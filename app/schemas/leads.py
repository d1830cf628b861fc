from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from app.schemas.applications import ApplicationDTO

LEAD_AMOUNT_MIN = Decimal("40000")
LEAD_AMOUNT_MAX = Decimal("1500000")
LEAD_NOTE_MAX_LENGTH = 500


class LeadStatus(str, Enum):
    CASH_SALARY = "cash salary"
    SELF_EMPLOYED = "self employed"
    NI = "NI"
    RING_MORE_THAN_3_DAYS = "ring more than 3 days"
    SALARY_LOW = "salary low"
    CIBIL_ISSUE = "cibil issue"
    BANKING_RECEIVED = "banking received"


class FinalStatus(str, Enum):
    OPEN = "open"
    CLOSE = "close"


def _check_amount(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    if value < LEAD_AMOUNT_MIN or value > LEAD_AMOUNT_MAX:
        raise ValueError("amount must be between ₹40,000 and ₹15,00,000")
    return value


def _check_mobile(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if len(value) != 10 or not (value.isascii() and value.isdigit()):
        raise ValueError("mobile_no must be exactly 10 digits")
    return value


LeadAmount = Annotated[Decimal | None, AfterValidator(_check_amount)]
MobileNo = Annotated[str, AfterValidator(_check_mobile)]


class LeadCreate(BaseModel):
    app_no: str = Field(min_length=1, max_length=64)
    name: str | None = Field(default=None, max_length=255)
    mobile_no: MobileNo
    amount: LeadAmount = None
    agent_id: UUID


class LeadUpdate(BaseModel):
    """Free-form edits. Status changes only through ``LeadStatusUpdate``."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, max_length=255)
    mobile_no: MobileNo | None = None
    amount: LeadAmount = None


class LeadStatusUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: LeadStatus


class LeadAssignRequest(BaseModel):
    agent_id: UUID


class LeadBulkDeleteRequest(BaseModel):
    lead_ids: set[int] = Field(min_length=1)


class LeadBulkDeleteResponse(BaseModel):
    deleted_ids: list[int]
    deleted_notes: int
    deleted_applications: int


class LeadFilters(BaseModel):
    """AND-combined read filters; every field is optional."""

    model_config = ConfigDict(use_enum_values=True)

    search: str | None = None
    status: LeadStatus | None = None
    final_status: FinalStatus | None = None
    agent_id: UUID | None = None
    created_from: date | None = None
    created_to: date | None = None

    @model_validator(mode="after")
    def _date_range(self) -> "LeadFilters":
        if self.created_from and self.created_to and self.created_from > self.created_to:
            raise ValueError("created_from must be on or before created_to")
        return self


class LeadDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: int
    app_no: str
    name: str | None = None
    mobile_no: str
    amount: Decimal | None = None
    status: str | None = None
    final_status: str
    agent_id: UUID | None = None
    created_at: datetime | None = None
    uploaded_at: datetime | None = None
    updated_at: datetime | None = None


class LeadListResponse(BaseModel):
    items: list[LeadDTO]
    total: int
    offset: int
    limit: int


class LeadNoteCreate(BaseModel):
    note: str = Field(min_length=1, max_length=LEAD_NOTE_MAX_LENGTH)

    @field_validator("note")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("note must not be blank")
        return value


class LeadNoteDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: int
    author_id: UUID | None = None
    note: str
    created_at: datetime | None = None


class LeadImportRow(BaseModel):
    app_no: str = Field(min_length=1, max_length=64)
    name: str | None = Field(default=None, max_length=255)
    mobile_no: MobileNo
    amount: LeadAmount = None

    @field_validator("name", "amount", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class LeadImportRequest(BaseModel):
    agent_id: UUID
    rows: list[dict] | None = None
    csv_text: str | None = None

    @model_validator(mode="after")
    def _one_source(self) -> "LeadImportRequest":
        if (self.rows is None) == (self.csv_text is None):
            raise ValueError("provide exactly one of rows or csv_text")
        return self


class LeadImportRejection(BaseModel):
    row_number: int
    app_no: str | None = None
    reason: str


class LeadImportResponse(BaseModel):
    inserted: int
    rejected: list[LeadImportRejection]


class LeadStatusChangeResponse(BaseModel):
    lead: LeadDTO
    application: ApplicationDTO | None = None
    application_spawned: bool = False
