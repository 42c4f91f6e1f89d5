"""
DigiComply - Compliance Rule Schemas

Typed, validated rule definitions. ``ComplianceRule`` rows keep their nested
parts (due date formula, penalty spec) as JSON; the catalog converts every
row into a frozen ``RuleDefinition`` once at load time so evaluation never
interprets raw blobs.
"""

import re
import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.compliance_rule import ComplianceDomain, ComplianceRule, RuleFrequency


# =============================================================================
# ENTITY TYPE NORMALISATION
# =============================================================================

_ENTITY_TYPE_ALIASES = {
    "privatelimited": "pvt_ltd",
    "privateltd": "pvt_ltd",
    "pvtlimited": "pvt_ltd",
    "pvtltd": "pvt_ltd",
    "pvtltdcompany": "pvt_ltd",
    "privatelimitedcompany": "pvt_ltd",
    "publiclimited": "public_limited",
    "publicltd": "public_limited",
    "publiclimitedcompany": "public_limited",
    "opc": "opc",
    "onepersoncompany": "opc",
    "llp": "llp",
    "limitedliabilitypartnership": "llp",
    "proprietorship": "sole_prop",
    "soleproprietorship": "sole_prop",
    "soleprop": "sole_prop",
    "partnership": "partnership",
}


def normalize_entity_type(entity_type: Optional[str]) -> str:
    """Map free-form constitution names ("Private Limited") to canonical codes ("pvt_ltd")."""
    if not entity_type:
        return ""
    compact = re.sub(r"[^a-z]", "", entity_type.lower())
    return _ENTITY_TYPE_ALIASES.get(compact, entity_type.strip().lower())


# =============================================================================
# ENUMS
# =============================================================================

class BaseDateType(str, Enum):
    """Anchor date a due date formula offsets from."""
    PERIOD_START = "PERIOD_START"
    PERIOD_END = "PERIOD_END"
    INCORPORATION_DATE = "INCORPORATION_DATE"
    EVENT_DATE = "EVENT_DATE"
    FIXED_DATE = "FIXED_DATE"


class DateAdjustment(str, Enum):
    """Rolling applied when a raw due date is not a working day."""
    NONE = "NONE"
    NEXT_WORKING_DAY = "NEXT_WORKING_DAY"


# =============================================================================
# APPLICABILITY
# =============================================================================

class ApplicabilityCriteria(BaseModel):
    """Conditions an entity must meet for a rule to apply. Unset means unconstrained."""

    model_config = ConfigDict(frozen=True)

    entity_types: Tuple[str, ...] = ()
    turnover_min: Optional[Decimal] = Field(None, ge=0)
    turnover_max: Optional[Decimal] = Field(None, ge=0)
    employee_count_min: Optional[int] = Field(None, ge=0)
    requires_gst: Optional[bool] = None
    requires_pf: Optional[bool] = None
    requires_esi: Optional[bool] = None
    state_specific: bool = False
    states: Tuple[str, ...] = ()

    @field_validator("entity_types")
    @classmethod
    def _normalize_types(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(normalize_entity_type(v) for v in value if v)

    @field_validator("states")
    @classmethod
    def _normalize_states(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(v.strip().upper() for v in value if v and v.strip())

    @model_validator(mode="after")
    def _check_bounds(self) -> "ApplicabilityCriteria":
        if (
            self.turnover_min is not None
            and self.turnover_max is not None
            and self.turnover_min > self.turnover_max
        ):
            raise ValueError("turnover_min must not exceed turnover_max")
        if self.state_specific and not self.states:
            raise ValueError("state-specific rule must list applicable states")
        return self


# =============================================================================
# DUE DATE FORMULA
# =============================================================================

class DueDateFormula(BaseModel):
    """
    ``raw_due = base + offset_months + offset_days``, then rolled per ``adjustment``.

    Example: GSTR-3B for a month is due on the 20th of the following month:
    ``{"base": "PERIOD_END", "offset_days": 20}``.
    """

    model_config = ConfigDict(frozen=True)

    base: BaseDateType = BaseDateType.PERIOD_END
    offset_months: int = 0
    offset_days: int = 0
    adjustment: DateAdjustment = DateAdjustment.NONE
    fiscal_year_start_month: int = Field(4, ge=1, le=12)
    trigger_event: Optional[str] = None
    fixed_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_anchor(self) -> "DueDateFormula":
        if self.base == BaseDateType.EVENT_DATE and not self.trigger_event:
            raise ValueError("EVENT_DATE formula requires trigger_event")
        if self.base == BaseDateType.FIXED_DATE and self.fixed_date is None:
            raise ValueError("FIXED_DATE formula requires fixed_date")
        return self


# =============================================================================
# PENALTY SPECS (tagged union on "type")
# =============================================================================

class _PenaltyCaps(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_penalty: Optional[Decimal] = Field(None, ge=0)
    max_penalty: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def _check_caps(self):
        if (
            self.min_penalty is not None
            and self.max_penalty is not None
            and self.min_penalty > self.max_penalty
        ):
            raise ValueError("min_penalty must not exceed max_penalty")
        return self


class PerDayPenalty(_PenaltyCaps):
    """Late fee accruing per day of delay."""
    type: Literal["per_day"] = "per_day"
    daily_amount: Decimal = Field(..., ge=0)


class InterestPenalty(_PenaltyCaps):
    """Monthly interest on an outstanding amount (rate in percent per month)."""
    type: Literal["percentage_per_month"] = "percentage_per_month"
    base_amount: Decimal = Field(..., ge=0)
    rate: Decimal = Field(..., ge=0)
    compounding_allowed: bool = False


class FixedAmountPenalty(_PenaltyCaps):
    """Flat amount once breached."""
    type: Literal["fixed_amount"] = "fixed_amount"
    amount: Decimal = Field(..., ge=0)


class PenaltySlab(BaseModel):
    """Amount charged while overdue days fall within [days_from, days_to]."""

    model_config = ConfigDict(frozen=True)

    days_from: int = Field(..., ge=0)
    days_to: Optional[int] = Field(None, ge=0)
    amount: Decimal = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_range(self) -> "PenaltySlab":
        if self.days_to is not None and self.days_to < self.days_from:
            raise ValueError("slab days_to must not be before days_from")
        return self


class SlabPenalty(_PenaltyCaps):
    """Stepped amounts by overdue-day ranges."""
    type: Literal["slab_based"] = "slab_based"
    slabs: Tuple[PenaltySlab, ...] = Field(..., min_length=1)

    @field_validator("slabs")
    @classmethod
    def _check_ordering(cls, slabs: Tuple[PenaltySlab, ...]) -> Tuple[PenaltySlab, ...]:
        ordered = tuple(sorted(slabs, key=lambda s: s.days_from))
        for previous, current in zip(ordered, ordered[1:]):
            if previous.days_to is None or previous.days_to >= current.days_from:
                raise ValueError("penalty slabs must not overlap")
        return ordered


class FormulaPenalty(_PenaltyCaps):
    """Arithmetic expression over overdueDays, baseAmount and rate."""
    type: Literal["formula"] = "formula"
    expression: str = Field(..., min_length=1, max_length=500)
    base_amount: Decimal = Decimal("0")
    rate: Decimal = Decimal("0")


PenaltySpec = Annotated[
    Union[PerDayPenalty, InterestPenalty, FixedAmountPenalty, SlabPenalty, FormulaPenalty],
    Field(discriminator="type"),
]


# =============================================================================
# RULE DEFINITION
# =============================================================================

class RuleDefinition(BaseModel):
    """One validated, immutable version of a compliance rule."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    rule_code: str = Field(..., min_length=1, max_length=100)
    version: int = Field(1, ge=1)
    replaces_rule_id: Optional[uuid.UUID] = None
    name: str
    domain: ComplianceDomain
    frequency: RuleFrequency
    criteria: ApplicabilityCriteria = ApplicabilityCriteria()
    due_date: DueDateFormula
    grace_days: int = Field(0, ge=0)
    penalty: Optional[PenaltySpec] = None
    criticality_score: int = Field(..., ge=1, le=10)
    amber_threshold_days: int = Field(7, ge=0)
    red_threshold_days: int = Field(0, ge=0)
    depends_on_rules: Tuple[str, ...] = ()
    effective_from: date
    effective_until: Optional[date] = None

    @model_validator(mode="after")
    def _check_consistency(self) -> "RuleDefinition":
        if self.effective_until is not None and self.effective_until < self.effective_from:
            raise ValueError("effective_until must not be before effective_from")
        if self.frequency == RuleFrequency.EVENT_BASED and self.due_date.base != BaseDateType.EVENT_DATE:
            raise ValueError("EVENT_BASED rules must use an EVENT_DATE due date formula")
        if self.frequency != RuleFrequency.EVENT_BASED and self.due_date.base == BaseDateType.EVENT_DATE:
            raise ValueError("EVENT_DATE due dates are only valid for EVENT_BASED rules")
        if self.rule_code in self.depends_on_rules:
            raise ValueError("rule cannot depend on itself")
        return self

    def is_effective_on(self, on: date) -> bool:
        """Check the effective window (inclusive on both ends)."""
        if on < self.effective_from:
            return False
        return self.effective_until is None or on <= self.effective_until

    @classmethod
    def from_model(cls, rule: ComplianceRule) -> "RuleDefinition":
        """Validate a ``ComplianceRule`` row. Raises pydantic ``ValidationError``."""
        return cls.model_validate({
            "id": rule.id,
            "rule_code": rule.rule_code,
            "version": rule.version,
            "replaces_rule_id": rule.replaces_rule_id,
            "name": rule.name,
            "domain": rule.domain,
            "frequency": rule.frequency,
            "criteria": {
                "entity_types": rule.applicable_entity_types or [],
                "turnover_min": rule.turnover_min,
                "turnover_max": rule.turnover_max,
                "employee_count_min": rule.employee_count_min,
                "requires_gst": rule.requires_gst,
                "requires_pf": rule.requires_pf,
                "requires_esi": rule.requires_esi,
                "state_specific": rule.state_specific,
                "states": rule.applicable_states or [],
            },
            "due_date": rule.due_date_formula,
            "grace_days": rule.grace_days,
            "penalty": rule.penalty_spec,
            "criticality_score": rule.criticality_score,
            "amber_threshold_days": rule.amber_threshold_days,
            "red_threshold_days": rule.red_threshold_days,
            "depends_on_rules": rule.depends_on_rules or [],
            "effective_from": rule.effective_from,
            "effective_until": rule.effective_until,
        })


# =============================================================================
# RULE VERSION DRAFT
# =============================================================================

class RuleVersionDraft(BaseModel):
    """Authoring input for a new rule version (code and version number are assigned on publish)."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    domain: ComplianceDomain
    frequency: RuleFrequency
    criteria: ApplicabilityCriteria = ApplicabilityCriteria()
    due_date: DueDateFormula
    grace_days: int = Field(0, ge=0)
    penalty: Optional[PenaltySpec] = None
    criticality_score: int = Field(..., ge=1, le=10)
    amber_threshold_days: int = Field(7, ge=0)
    red_threshold_days: int = Field(0, ge=0)
    depends_on_rules: List[str] = []
    effective_from: date
