"""
DigiComply - Compliance State Engine Package

Computes per-entity compliance state (GREEN/AMBER/RED), risk score,
penalty exposure and alerts from effective-dated compliance rules.

Modules:
- rule_catalog: effective rule snapshots and version publishing
- applicability: rule-to-entity matching and dependency resolution
- due_dates: periods, holiday calendar and due/breach dates
- penalty / formula: penalty estimation and the formula interpreter
- risk_aggregator: requirement statuses and state roll-ups
- state_store: optimistic state persistence, history and calculation logs
- alert_emitter: alert raise/dedupe/expiry
- providers: database-backed engine inputs
- engine: single-entity recalculation and batch runner
"""

from app.services.compliance_engine.applicability import ApplicabilityMatcher
from app.services.compliance_engine.due_dates import DueDateCalculator, HolidayCalendar, Period
from app.services.compliance_engine.engine import (
    BatchResult,
    ComplianceBatchRunner,
    ComplianceStateEngine,
)
from app.services.compliance_engine.penalty import PenaltyCalculator
from app.services.compliance_engine.risk_aggregator import RiskAggregator
from app.services.compliance_engine.rule_catalog import CatalogSnapshot, RuleCatalog


__all__ = [
    "ApplicabilityMatcher",
    "BatchResult",
    "CatalogSnapshot",
    "ComplianceBatchRunner",
    "ComplianceStateEngine",
    "DueDateCalculator",
    "HolidayCalendar",
    "PenaltyCalculator",
    "Period",
    "RiskAggregator",
    "RuleCatalog",
]
