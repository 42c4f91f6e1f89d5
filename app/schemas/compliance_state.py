"""
DigiComply - Compliance State Schemas

Value objects flowing through the state engine: the entity profile and
filing signals it consumes, and the per-requirement / per-domain / entity
results it produces.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.compliance_filing import FilingStatus
from app.models.compliance_rule import ComplianceDomain, RuleFrequency
from app.models.compliance_state import OverallState, RequirementStatusCode
from app.schemas.compliance_rule import normalize_entity_type


# =============================================================================
# INPUTS
# =============================================================================

class EntityProfile(BaseModel):
    """Snapshot of the entity attributes rules are matched against."""

    model_config = ConfigDict(frozen=True)

    entity_id: uuid.UUID
    name: str = ""
    entity_type: str
    turnover: Optional[Decimal] = None
    employee_count: Optional[int] = None
    state: Optional[str] = None
    has_gst: Optional[bool] = None
    has_pf: Optional[bool] = None
    has_esi: Optional[bool] = None
    incorporation_date: Optional[date] = None
    event_dates: Dict[str, date] = Field(default_factory=dict)

    @field_validator("entity_type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return normalize_entity_type(value)

    @field_validator("state")
    @classmethod
    def _normalize_state(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().upper() if value and value.strip() else None


class FilingSignal(BaseModel):
    """One external filing signal for a (rule, period)."""

    model_config = ConfigDict(frozen=True)

    rule_code: str
    period_key: Optional[str] = None
    status: FilingStatus
    filed_on: Optional[date] = None
    extended_due_date: Optional[date] = None


class FilingSignals(BaseModel):
    """All filing signals of one entity, indexed for period lookups."""

    model_config = ConfigDict(frozen=True)

    signals: Tuple[FilingSignal, ...] = ()

    def _for(self, rule_code: str, period_key: str, status: FilingStatus) -> Optional[FilingSignal]:
        found = None
        for signal in self.signals:
            if signal.rule_code == rule_code and signal.period_key == period_key and signal.status == status:
                found = signal
        return found

    def is_waived(self, rule_code: str, period_key: str) -> bool:
        """A waiver without a period key covers every period."""
        return any(
            s.rule_code == rule_code
            and s.status == FilingStatus.WAIVED
            and s.period_key in (None, period_key)
            for s in self.signals
        )

    def completion(self, rule_code: str, period_key: str) -> Optional[FilingSignal]:
        return self._for(rule_code, period_key, FilingStatus.COMPLETED)

    def extension(self, rule_code: str, period_key: str) -> Optional[FilingSignal]:
        return self._for(rule_code, period_key, FilingStatus.EXTENDED)


# =============================================================================
# RESULTS
# =============================================================================

class PenaltyBreakdown(BaseModel):
    """Penalty estimate for one requirement, with audit detail lines."""
    penalty_type: str
    overdue_days: int
    principal: Decimal = Decimal("0")
    penalty: Decimal = Decimal("0")
    interest: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    lines: List[Dict[str, Any]] = Field(default_factory=list)


class RequirementStatus(BaseModel):
    """Evaluated status of one (rule, period) requirement."""
    rule_code: str
    rule_id: uuid.UUID
    rule_version: int
    name: str
    domain: ComplianceDomain
    frequency: RuleFrequency
    period_key: str
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    status: RequirementStatusCode
    due_date: Optional[date] = None
    breach_date: Optional[date] = None
    days_until_due: Optional[int] = None
    overdue_days: int = 0
    is_breached: bool = False
    is_extended: bool = False
    filed_on: Optional[date] = None
    criticality_score: int
    penalty_exposure: Decimal = Decimal("0")
    penalty_breakdown: Optional[PenaltyBreakdown] = None
    priority: str = "low"
    action_required: Optional[str] = None


class DomainState(BaseModel):
    """Roll-up of the requirements of one compliance domain."""
    domain: ComplianceDomain
    state: OverallState
    risk_score: Decimal
    active_requirements: int
    overdue_requirements: int
    upcoming_requirements: int
    total_penalty_exposure: Decimal
    next_deadline: Optional[date] = None
    rule_codes: List[str] = Field(default_factory=list)


class EntityComplianceResult(BaseModel):
    """Full output of one state calculation for an entity."""
    entity_id: uuid.UUID
    as_of_date: date
    overall_state: OverallState
    overall_risk_score: Decimal
    total_penalty_exposure: Decimal
    total_overdue_items: int
    total_upcoming_items: int
    next_critical_deadline: Optional[date] = None
    next_critical_action: Optional[str] = None
    days_until_next_deadline: Optional[int] = None
    domains: List[DomainState] = Field(default_factory=list)
    requirements: List[RequirementStatus] = Field(default_factory=list)
    rules_applied: int = 0
    data_completeness_score: Decimal = Decimal("100")
    is_degraded: bool = False
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    failed_rule_codes: List[str] = Field(default_factory=list)
