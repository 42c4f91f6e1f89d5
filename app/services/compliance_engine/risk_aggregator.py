"""
DigiComply - Risk Aggregator

Turns due dates and filing signals into per-requirement statuses and rolls
them up into domain and entity states.

Status of one requirement:
    COMPLIANT  filed for the period
    WAIVED     exempted (excluded from every aggregate)
    UPCOMING   days until due > amber threshold
    AMBER      0 <= days until due <= amber threshold, past due but within
               grace, or breached by no more than the red threshold
    RED        breached by more than the red threshold

Risk score = 100 x sum(criticality x weight) / sum(criticality) over
non-waived requirements. State is worst-case-wins: any RED makes the scope
RED, any AMBER (or a score at the amber threshold) makes it AMBER.
"""

from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from app.config import settings
from app.models.compliance_rule import ComplianceDomain
from app.models.compliance_state import OverallState, RequirementStatusCode
from app.schemas.compliance_rule import RuleDefinition
from app.schemas.compliance_state import (
    DomainState,
    EntityComplianceResult,
    PenaltyBreakdown,
    RequirementStatus,
)
from app.services.compliance_engine.due_dates import OutstandingRequirement


STATUS_WEIGHTS: Dict[RequirementStatusCode, Decimal] = {
    RequirementStatusCode.COMPLIANT: Decimal("0"),
    RequirementStatusCode.WAIVED: Decimal("0"),
    RequirementStatusCode.NOT_YET_DUE: Decimal("0"),
    RequirementStatusCode.UPCOMING: Decimal("0.2"),
    RequirementStatusCode.AMBER: Decimal("0.6"),
    RequirementStatusCode.RED: Decimal("1.0"),
}

SETTLED_STATUSES = frozenset({RequirementStatusCode.COMPLIANT, RequirementStatusCode.WAIVED})

# Critical rules entering AMBER are escalated to critical priority
CRITICAL_RULE_SCORE = 8
HIGH_PRIORITY_DAYS = 3


def _score(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class RiskAggregator:
    """Derives requirement statuses and entity/domain roll-ups."""

    def __init__(self, amber_state_threshold: Optional[float] = None):
        threshold = settings.amber_state_risk_threshold if amber_state_threshold is None else amber_state_threshold
        self.amber_state_threshold = Decimal(str(threshold))

    # ===========================================
    # REQUIREMENT LEVEL
    # ===========================================

    def classify(self, rule: RuleDefinition, outstanding: OutstandingRequirement, as_of: date) -> RequirementStatusCode:
        """Status of the outstanding requirement of ``rule`` on ``as_of``."""
        if outstanding.waived:
            return RequirementStatusCode.WAIVED
        if outstanding.is_completed:
            return RequirementStatusCode.COMPLIANT

        due = outstanding.due
        if as_of > due.breach_date:
            overdue_days = (as_of - due.breach_date).days
            if overdue_days <= rule.red_threshold_days:
                return RequirementStatusCode.AMBER
            return RequirementStatusCode.RED

        days_until_due = (due.due_date - as_of).days
        if days_until_due > rule.amber_threshold_days:
            return RequirementStatusCode.UPCOMING
        return RequirementStatusCode.AMBER

    def build_requirement(
        self,
        rule: RuleDefinition,
        outstanding: OutstandingRequirement,
        penalty: PenaltyBreakdown,
        as_of: date,
    ) -> RequirementStatus:
        status = self.classify(rule, outstanding, as_of)
        due = outstanding.due
        settled = status in SETTLED_STATUSES
        overdue_days = 0 if settled else max(0, (as_of - due.breach_date).days)

        requirement = RequirementStatus(
            rule_code=rule.rule_code,
            rule_id=rule.id,
            rule_version=rule.version,
            name=rule.name,
            domain=rule.domain,
            frequency=rule.frequency,
            period_key=due.period.key,
            period_start=due.period.start,
            period_end=due.period.end,
            status=status,
            due_date=due.due_date,
            breach_date=due.breach_date,
            days_until_due=(due.due_date - as_of).days,
            overdue_days=overdue_days,
            is_breached=overdue_days > 0,
            is_extended=due.is_extended,
            filed_on=outstanding.completion.filed_on if outstanding.completion else None,
            criticality_score=rule.criticality_score,
            penalty_exposure=Decimal("0") if settled else penalty.total,
            penalty_breakdown=None if settled else penalty,
        )
        return requirement.model_copy(update={
            "priority": self.priority(requirement),
            "action_required": self.action_text(requirement),
        })

    def priority(self, requirement: RequirementStatus) -> str:
        if requirement.status == RequirementStatusCode.RED:
            return "critical"
        if requirement.status == RequirementStatusCode.AMBER:
            if requirement.criticality_score >= CRITICAL_RULE_SCORE:
                return "critical"
            if requirement.days_until_due is not None and requirement.days_until_due <= HIGH_PRIORITY_DAYS:
                return "high"
            return "medium"
        return "low"

    def action_text(self, requirement: RequirementStatus) -> Optional[str]:
        label = f"{requirement.name} ({requirement.period_key})"
        if requirement.status == RequirementStatusCode.RED:
            return f"File {label} immediately - overdue by {requirement.overdue_days} days"
        if requirement.status == RequirementStatusCode.AMBER:
            if requirement.is_breached:
                return f"File {label} now - breached on {requirement.breach_date.isoformat()}"
            if requirement.days_until_due is not None and requirement.days_until_due < 0:
                return f"File {label} before grace ends on {requirement.breach_date.isoformat()}"
            return f"File {label} by {requirement.due_date.isoformat()}"
        if requirement.status == RequirementStatusCode.UPCOMING:
            return f"Prepare {label} due {requirement.due_date.isoformat()}"
        return None

    # ===========================================
    # ROLL-UPS
    # ===========================================

    def risk_score(self, requirements: Iterable[RequirementStatus]) -> Decimal:
        total_weight = Decimal("0")
        weighted = Decimal("0")
        for requirement in requirements:
            if requirement.status == RequirementStatusCode.WAIVED:
                continue
            total_weight += requirement.criticality_score
            weighted += requirement.criticality_score * STATUS_WEIGHTS[requirement.status]
        if total_weight == 0:
            return Decimal("0.00")
        return _score(Decimal("100") * weighted / total_weight)

    def state(self, requirements: List[RequirementStatus], risk_score: Decimal) -> OverallState:
        statuses = {r.status for r in requirements if r.status != RequirementStatusCode.WAIVED}
        if RequirementStatusCode.RED in statuses:
            return OverallState.RED
        if RequirementStatusCode.AMBER in statuses or risk_score >= self.amber_state_threshold:
            return OverallState.AMBER
        return OverallState.GREEN

    def next_critical(self, requirements: Iterable[RequirementStatus]) -> Optional[RequirementStatus]:
        """Earliest due open requirement; ties go to higher criticality, then rule code."""
        open_items = [
            r for r in requirements
            if r.status not in SETTLED_STATUSES and r.due_date is not None
        ]
        if not open_items:
            return None
        return min(open_items, key=lambda r: (r.due_date, -r.criticality_score, r.rule_code))

    def aggregate_domain(self, domain: ComplianceDomain, requirements: List[RequirementStatus]) -> DomainState:
        risk = self.risk_score(requirements)
        nearest = self.next_critical(requirements)
        active = [r for r in requirements if r.status not in SETTLED_STATUSES]
        return DomainState(
            domain=domain,
            state=self.state(requirements, risk),
            risk_score=risk,
            active_requirements=len(active),
            overdue_requirements=sum(1 for r in active if r.is_breached),
            upcoming_requirements=sum(1 for r in active if not r.is_breached),
            total_penalty_exposure=sum((r.penalty_exposure for r in active), Decimal("0")),
            next_deadline=nearest.due_date if nearest else None,
            rule_codes=[r.rule_code for r in requirements],
        )

    def aggregate(
        self,
        entity_id,
        as_of: date,
        requirements: List[RequirementStatus],
    ) -> EntityComplianceResult:
        """Entity-level roll-up. Requirements are expected sorted by rule code."""
        risk = self.risk_score(requirements)
        active = [r for r in requirements if r.status not in SETTLED_STATUSES]
        nearest = self.next_critical(requirements)

        by_domain: Dict[ComplianceDomain, List[RequirementStatus]] = defaultdict(list)
        for requirement in requirements:
            by_domain[requirement.domain].append(requirement)

        return EntityComplianceResult(
            entity_id=entity_id,
            as_of_date=as_of,
            overall_state=self.state(requirements, risk),
            overall_risk_score=risk,
            total_penalty_exposure=sum((r.penalty_exposure for r in active), Decimal("0")),
            total_overdue_items=sum(1 for r in active if r.is_breached),
            total_upcoming_items=sum(1 for r in active if not r.is_breached),
            next_critical_deadline=nearest.due_date if nearest else None,
            next_critical_action=nearest.action_required if nearest else None,
            days_until_next_deadline=(nearest.due_date - as_of).days if nearest else None,
            domains=[
                self.aggregate_domain(domain, by_domain[domain])
                for domain in sorted(by_domain, key=lambda d: d.value)
            ],
            requirements=requirements,
            rules_applied=len(requirements),
        )
