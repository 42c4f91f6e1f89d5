"""
DigiComply - Schemas Package

Pydantic schemas for rule definitions and engine inputs/results.
"""

from app.schemas.compliance_rule import (
    ApplicabilityCriteria,
    BaseDateType,
    DateAdjustment,
    DueDateFormula,
    FixedAmountPenalty,
    FormulaPenalty,
    InterestPenalty,
    PenaltySlab,
    PenaltySpec,
    PerDayPenalty,
    RuleDefinition,
    RuleVersionDraft,
    SlabPenalty,
    normalize_entity_type,
)
from app.schemas.compliance_state import (
    DomainState,
    EntityComplianceResult,
    EntityProfile,
    FilingSignal,
    FilingSignals,
    PenaltyBreakdown,
    RequirementStatus,
)

__all__ = [
    # Rule definitions
    "ApplicabilityCriteria",
    "BaseDateType",
    "DateAdjustment",
    "DueDateFormula",
    "FixedAmountPenalty",
    "FormulaPenalty",
    "InterestPenalty",
    "PenaltySlab",
    "PenaltySpec",
    "PerDayPenalty",
    "RuleDefinition",
    "RuleVersionDraft",
    "SlabPenalty",
    "normalize_entity_type",
    # Engine inputs/results
    "DomainState",
    "EntityComplianceResult",
    "EntityProfile",
    "FilingSignal",
    "FilingSignals",
    "PenaltyBreakdown",
    "RequirementStatus",
]
