"""
DigiComply - Business Entity Model

Registered business whose regulatory obligations are tracked.
Owned by the entity-management subsystem; the state engine only reads it.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import Boolean, Date, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import JSONType
from app.models.base import BaseModel


class BusinessEntity(BaseModel):
    """
    Business Entity model - represents a single registered business.

    GST/PF/ESI registration flags are tri-state: ``None`` means the
    registration status has not been captured yet.
    """

    __tablename__ = "business_entities"

    # Business Info
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Constitution of the business (pvt_ltd, llp, opc, ...)",
    )
    gstin: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)

    # Location / jurisdiction
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Size
    annual_turnover: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=True,
    )
    employee_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Registrations
    is_gst_registered: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    is_pf_registered: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    is_esi_registered: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    # Dates
    incorporation_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    event_dates: Mapped[Optional[Dict[str, str]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Latest occurrence of trigger events, e.g. {'director_change': '2026-03-02'}",
    )

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<BusinessEntity(id={self.id}, name={self.name}, type={self.entity_type})>"
