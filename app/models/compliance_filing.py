"""
DigiComply - Filing Signal & Holiday Models

Inputs written by collaborating subsystems and read by the state engine:

- ComplianceFiling: a (rule, period) was filed, waived or given an extension
- PublicHoliday: per-jurisdiction non-working days used for due-date rolling
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


NATIONAL_JURISDICTION = "NATIONAL"


class FilingStatus(str, Enum):
    """Kind of filing signal."""
    COMPLETED = "COMPLETED"      # Requirement fulfilled for the period
    WAIVED = "WAIVED"            # Exempted (all periods when period_key is null)
    EXTENDED = "EXTENDED"        # Due date extended by the authority


class ComplianceFiling(BaseModel):
    """
    Filing completion signal for one requirement.

    Period keys follow the engine's period naming: ``2026-09`` (monthly),
    ``FY2026-Q2`` (quarterly), ``FY2026-H1``, ``FY2026``, ``ONCE`` and
    ``EVENT:2026-03-02`` (event-based).
    """

    __tablename__ = "compliance_filings"
    __table_args__ = (
        Index("ix_compliance_filings_entity_rule", "entity_id", "rule_code"),
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    rule_code: Mapped[str] = mapped_column(String(100), nullable=False)
    period_key: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[FilingStatus] = mapped_column(SQLEnum(FilingStatus), nullable=False)

    filed_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    extended_due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recorded_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ComplianceFiling(rule={self.rule_code}, period={self.period_key}, status={self.status})>"


class PublicHoliday(BaseModel):
    """Non-working day for a jurisdiction (state code or NATIONAL)."""

    __tablename__ = "public_holidays"
    __table_args__ = (
        UniqueConstraint("jurisdiction", "holiday_date", name="uq_public_holidays_jurisdiction_date"),
    )

    jurisdiction: Mapped[str] = mapped_column(
        String(100),
        default=NATIONAL_JURISDICTION,
        nullable=False,
    )
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
