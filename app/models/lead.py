from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.schemas.leads import FinalStatus, LeadStatus

_STATUS_VALUES = ", ".join(f"'{status.value}'" for status in LeadStatus)


class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = (
        CheckConstraint(f"status IS NULL OR status IN ({_STATUS_VALUES})", name="ck_leads_status"),
        CheckConstraint("final_status IN ('open', 'close')", name="ck_leads_final_status"),
        CheckConstraint(
            "amount IS NULL OR (amount >= 40000 AND amount <= 1500000)",
            name="ck_leads_amount_range",
        ),
        CheckConstraint("mobile_no ~ '^[0-9]{10}$'", name="ck_leads_mobile_no"),
        Index("ix_leads_agent_created", "agent_id", "created_at"),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    app_no = Column(String(64), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    mobile_no = Column(String(10), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=True)
    status = Column(String(40), nullable=True, index=True)
    final_status = Column(String(10), nullable=False, default=FinalStatus.OPEN.value, index=True)
    agent_id = Column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    uploaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    notes = relationship(
        "LeadNote",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    applications = relationship(
        "Application",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
