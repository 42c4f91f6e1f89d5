"""
DigiComply - Compliance State Models

Persistent output of the compliance state engine:

- ComplianceState: current state per entity, replaced as a whole row
- ComplianceStateHistory: append-only snapshots on material change
- ComplianceAlert: actionable alerts raised/expired by the engine
- StateCalculationLog: append-only audit row per calculation attempt
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import JSONType
from app.models.base import AppendOnlyModel, BaseModel


class OverallState(str, Enum):
    """Traffic-light compliance state of an entity or domain."""
    GREEN = "GREEN"
    AMBER = "AMBER"
    RED = "RED"


class RequirementStatusCode(str, Enum):
    """
    Status of one (rule, period) requirement.

    Lifecycle per period: NOT_YET_DUE -> UPCOMING -> AMBER -> RED,
    terminating in COMPLIANT or WAIVED. NOT_YET_DUE is the implicit
    status of a period that has not been evaluated yet.
    """
    NOT_YET_DUE = "NOT_YET_DUE"
    UPCOMING = "UPCOMING"
    AMBER = "AMBER"
    RED = "RED"
    COMPLIANT = "COMPLIANT"
    WAIVED = "WAIVED"


class AlertType(str, Enum):
    """Kinds of alerts raised by the engine."""
    UPCOMING = "UPCOMING"
    OVERDUE = "OVERDUE"
    PENALTY_RISK = "PENALTY_RISK"
    STATE_CHANGE = "STATE_CHANGE"


class AlertSeverity(str, Enum):
    """Alert severity."""
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class CalculationTrigger(str, Enum):
    """What caused a recalculation."""
    SCHEDULED = "SCHEDULED"
    PROFILE_CHANGE = "PROFILE_CHANGE"
    RULE_PUBLISH = "RULE_PUBLISH"
    FILING_RECORDED = "FILING_RECORDED"
    MANUAL = "MANUAL"


class ComplianceState(BaseModel):
    """
    Current compliance state of one entity.

    ``version`` is the optimistic-concurrency counter: every successful
    write increments it and writers must present the version they read.
    """

    __tablename__ = "compliance_states"

    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # Aggregate state
    overall_state: Mapped[OverallState] = mapped_column(SQLEnum(OverallState), nullable=False)
    overall_risk_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    total_penalty_exposure: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
        nullable=False,
    )
    total_overdue_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_upcoming_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Next action
    next_critical_deadline: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    next_critical_action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    days_until_next_deadline: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Breakdown
    domain_states: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    requirement_states: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False)

    # Calculation metadata
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    calculation_version: Mapped[str] = mapped_column(String(20), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    data_completeness_score: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("100"),
        nullable=False,
    )
    is_degraded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<ComplianceState(entity_id={self.entity_id}, state={self.overall_state}, v={self.version})>"


class ComplianceStateHistory(AppendOnlyModel):
    """
    Immutable snapshot written when an entity's state changes materially.
    """

    __tablename__ = "compliance_state_history"
    __table_args__ = (
        Index("ix_compliance_state_history_entity_recorded", "entity_id", "recorded_at"),
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    state: Mapped[OverallState] = mapped_column(SQLEnum(OverallState), nullable=False)
    previous_state: Mapped[Optional[OverallState]] = mapped_column(SQLEnum(OverallState), nullable=True)
    risk_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    previous_risk_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    penalty_exposure: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    overdue_items: Mapped[int] = mapped_column(Integer, nullable=False)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    snapshot_data: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ComplianceAlert(BaseModel):
    """
    Alert scoped to (entity, rule, alert type).

    Created and expired by the engine; acknowledged by a human through the API.
    Entity-level alerts (STATE_CHANGE) have no rule code.
    """

    __tablename__ = "compliance_alerts"
    __table_args__ = (
        Index("ix_compliance_alerts_scope", "entity_id", "rule_code", "alert_type", "is_active"),
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("business_entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    rule_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    period_key: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    alert_type: Mapped[AlertType] = mapped_column(SQLEnum(AlertType), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(SQLEnum(AlertSeverity), nullable=False)

    # Content
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    action_required: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    penalty_estimate: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ComplianceAlert(entity_id={self.entity_id}, rule={self.rule_code}, type={self.alert_type})>"


class StateCalculationLog(AppendOnlyModel):
    """
    Audit row for every calculation attempt, successful or not.

    No foreign key to the entity: the log must survive even when the
    attempt failed because the entity does not exist.
    """

    __tablename__ = "state_calculation_logs"
    __table_args__ = (
        Index("ix_state_calculation_logs_entity_calculated", "entity_id", "calculated_at"),
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    trigger: Mapped[CalculationTrigger] = mapped_column(SQLEnum(CalculationTrigger), nullable=False)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    calculation_version: Mapped[str] = mapped_column(String(20), nullable=False)

    # Outcome
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    calculation_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    rules_applied: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    previous_state: Mapped[Optional[OverallState]] = mapped_column(SQLEnum(OverallState), nullable=True)
    new_state: Mapped[Optional[OverallState]] = mapped_column(SQLEnum(OverallState), nullable=True)
    state_changed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    history_written: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_degraded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Diagnostics
    errors_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    warnings_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[List[str]] = mapped_column(JSONType, nullable=False)
    warnings: Mapped[List[str]] = mapped_column(JSONType, nullable=False)

    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
