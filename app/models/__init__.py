"""
DigiComply - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, AppendOnlyModel, TimestampMixin, CreatedAtMixin
from app.models.entity import BusinessEntity
from app.models.compliance_rule import ComplianceDomain, ComplianceRule, RuleFrequency
from app.models.compliance_filing import (
    NATIONAL_JURISDICTION,
    ComplianceFiling,
    FilingStatus,
    PublicHoliday,
)
from app.models.compliance_state import (
    AlertSeverity,
    AlertType,
    CalculationTrigger,
    ComplianceAlert,
    ComplianceState,
    ComplianceStateHistory,
    OverallState,
    RequirementStatusCode,
    StateCalculationLog,
)

__all__ = [
    # Base
    "BaseModel",
    "AppendOnlyModel",
    "TimestampMixin",
    "CreatedAtMixin",
    # Entity
    "BusinessEntity",
    # Rule catalog
    "ComplianceDomain",
    "ComplianceRule",
    "RuleFrequency",
    # Filing signals & calendar
    "NATIONAL_JURISDICTION",
    "ComplianceFiling",
    "FilingStatus",
    "PublicHoliday",
    # State engine
    "AlertSeverity",
    "AlertType",
    "CalculationTrigger",
    "ComplianceAlert",
    "ComplianceState",
    "ComplianceStateHistory",
    "OverallState",
    "RequirementStatusCode",
    "StateCalculationLog",
]
