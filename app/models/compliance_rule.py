"""
DigiComply - Compliance Rule Model

Effective-dated regulatory obligation definitions.

Rules form an immutable version chain: publishing a change inserts a new row
that points at its predecessor through ``replaces_rule_id`` and closes the
predecessor's effective window. Rows are never edited in place, so past
evaluations keep resolving against the version effective on their date.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import JSONType
from app.models.base import BaseModel


class ComplianceDomain(str, Enum):
    """Regulatory domain a rule belongs to."""
    CORPORATE = "CORPORATE"
    TAX_GST = "TAX_GST"
    TAX_INCOME = "TAX_INCOME"
    LABOUR = "LABOUR"
    FEMA = "FEMA"
    LICENSES = "LICENSES"
    STATUTORY = "STATUTORY"


class RuleFrequency(str, Enum):
    """How often a rule creates a new requirement."""
    ONE_TIME = "ONE_TIME"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALF_YEARLY = "HALF_YEARLY"
    ANNUAL = "ANNUAL"
    EVENT_BASED = "EVENT_BASED"


class ComplianceRule(BaseModel):
    """
    One version of a compliance rule.

    Nested structures (due date formula, penalty spec) are stored as JSON and
    validated into typed definitions when the catalog is loaded.
    """

    __tablename__ = "compliance_rules"
    __table_args__ = (
        UniqueConstraint("rule_code", "version", name="uq_compliance_rules_code_version"),
        CheckConstraint(
            "criticality_score >= 1 AND criticality_score <= 10",
            name="criticality_range",
        ),
    )

    # Identity & versioning
    rule_code: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    replaces_rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("compliance_rules.id", ondelete="RESTRICT"),
        nullable=True,
    )

    # Description
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    domain: Mapped[ComplianceDomain] = mapped_column(
        SQLEnum(ComplianceDomain),
        nullable=False,
        index=True,
    )

    # Applicability criteria
    applicable_entity_types: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)
    turnover_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    turnover_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    employee_count_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    requires_gst: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    requires_pf: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    requires_esi: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    state_specific: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    applicable_states: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)

    # Timing
    frequency: Mapped[RuleFrequency] = mapped_column(SQLEnum(RuleFrequency), nullable=False)
    due_date_formula: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    grace_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Penalty
    penalty_spec: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Risk weighting
    criticality_score: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    amber_threshold_days: Mapped[int] = mapped_column(Integer, default=7, nullable=False)
    red_threshold_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Composite obligations
    depends_on_rules: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_until: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return f"<ComplianceRule(code={self.rule_code}, version={self.version})>"
