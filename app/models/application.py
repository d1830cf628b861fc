import uuid

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.schemas.applications import ApplicationStage

_STAGE_VALUES = ", ".join(f"'{stage.value}'" for stage in ApplicationStage)


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        CheckConstraint(f"stage IN ({_STAGE_VALUES})", name="ck_applications_stage"),
        CheckConstraint("loan_amount >= 0", name="ck_applications_loan_amount_nonneg"),
        CheckConstraint(
            "stage <> 'Disbursed' OR (disbursed_amount IS NOT NULL AND disbursed_amount > 0)",
            name="ck_applications_disbursed_amount",
        ),
        Index("ix_applications_agent_stage", "agent_id", "stage"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id = Column(
        BigInteger,
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    agent_id = Column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )
    stage = Column(String(20), nullable=False, default=ApplicationStage.UNDER_REVIEW.value)
    loan_amount = Column(Numeric(14, 2), nullable=False, default=0)
    interest_rate = Column(Numeric(6, 3), nullable=True)
    tenure_months = Column(Integer, nullable=True)
    monthly_emi = Column(Numeric(14, 2), nullable=True)
    disbursed_amount = Column(Numeric(14, 2), nullable=True)
    disbursed_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    lead = relationship("Lead", back_populates="applications", lazy="selectin")
