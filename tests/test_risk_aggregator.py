"""
DigiComply - Risk Aggregator Tests

Unit tests for requirement classification and state roll-ups.
"""

import uuid
import pytest
from datetime import date, timedelta
from decimal import Decimal

from app.models.compliance_filing import FilingStatus
from app.models.compliance_rule import ComplianceDomain, RuleFrequency
from app.models.compliance_state import OverallState, RequirementStatusCode
from app.schemas.compliance_rule import RuleDefinition
from app.schemas.compliance_state import FilingSignal, PenaltyBreakdown, RequirementStatus
from app.services.compliance_engine.due_dates import DueDate, OutstandingRequirement, Period
from app.services.compliance_engine.risk_aggregator import RiskAggregator


DUE = date(2026, 10, 20)
PERIOD = Period(key="2026-09", start=date(2026, 9, 1), end=date(2026, 9, 30))
NO_PENALTY = PenaltyBreakdown(penalty_type="none", overdue_days=0)


def make_rule(**overrides) -> RuleDefinition:
    values = dict(
        id=uuid.uuid4(),
        rule_code="GSTR3B",
        name="GSTR-3B Monthly Return",
        domain=ComplianceDomain.TAX_GST,
        frequency=RuleFrequency.MONTHLY,
        due_date={"base": "PERIOD_END", "offset_days": 20},
        criticality_score=8,
        amber_threshold_days=5,
        red_threshold_days=0,
        effective_from=date(2026, 9, 1),
    )
    values.update(overrides)
    return RuleDefinition.model_validate(values)


def outstanding(grace_days: int = 0, **kwargs) -> OutstandingRequirement:
    due = DueDate(
        period=PERIOD,
        raw_due_date=DUE,
        due_date=DUE,
        breach_date=DUE + timedelta(days=grace_days),
    )
    return OutstandingRequirement(due=due, **kwargs)


def requirement(rule_code: str, status: RequirementStatusCode, criticality: int = 5,
                due_date: date = DUE, domain: ComplianceDomain = ComplianceDomain.TAX_GST) -> RequirementStatus:
    return RequirementStatus(
        rule_code=rule_code,
        rule_id=uuid.uuid4(),
        rule_version=1,
        name=rule_code,
        domain=domain,
        frequency=RuleFrequency.MONTHLY,
        period_key="2026-09",
        status=status,
        due_date=due_date,
        criticality_score=criticality,
    )


@pytest.fixture
def aggregator() -> RiskAggregator:
    return RiskAggregator(amber_state_threshold=30)


class TestClassify:
    """Requirement status from dates and filing signals."""

    def test_upcoming_outside_amber_window(self, aggregator):
        status = aggregator.classify(make_rule(), outstanding(), date(2026, 10, 10))
        assert status == RequirementStatusCode.UPCOMING

    def test_amber_inside_window(self, aggregator):
        assert aggregator.classify(make_rule(), outstanding(), date(2026, 10, 15)) == RequirementStatusCode.AMBER
        assert aggregator.classify(make_rule(), outstanding(), DUE) == RequirementStatusCode.AMBER

    def test_red_after_breach(self, aggregator):
        status = aggregator.classify(make_rule(), outstanding(), date(2026, 10, 21))
        assert status == RequirementStatusCode.RED

    def test_grace_period_stays_amber(self, aggregator):
        status = aggregator.classify(make_rule(), outstanding(grace_days=5), date(2026, 10, 23))
        assert status == RequirementStatusCode.AMBER

    def test_red_threshold_tolerance(self, aggregator):
        rule = make_rule(red_threshold_days=3)
        assert aggregator.classify(rule, outstanding(), date(2026, 10, 23)) == RequirementStatusCode.AMBER
        assert aggregator.classify(rule, outstanding(), date(2026, 10, 24)) == RequirementStatusCode.RED

    def test_completed_and_waived(self, aggregator):
        completion = FilingSignal(rule_code="GSTR3B", period_key="2026-09", status=FilingStatus.COMPLETED)
        assert aggregator.classify(make_rule(), outstanding(completion=completion), date(2026, 11, 30)) \
            == RequirementStatusCode.COMPLIANT
        assert aggregator.classify(make_rule(), outstanding(waived=True), date(2026, 11, 30)) \
            == RequirementStatusCode.WAIVED


class TestBuildRequirement:

    def test_overdue_requirement(self, aggregator):
        penalty = PenaltyBreakdown(penalty_type="per_day", overdue_days=10, penalty=Decimal("500"), total=Decimal("500"))
        result = aggregator.build_requirement(make_rule(), outstanding(), penalty, date(2026, 10, 30))
        assert result.status == RequirementStatusCode.RED
        assert result.overdue_days == 10
        assert result.is_breached
        assert result.days_until_due == -10
        assert result.penalty_exposure == Decimal("500")
        assert result.priority == "critical"
        assert "overdue by 10 days" in result.action_required

    def test_settled_requirement_carries_no_exposure(self, aggregator):
        completion = FilingSignal(
            rule_code="GSTR3B", period_key="2026-09",
            status=FilingStatus.COMPLETED, filed_on=date(2026, 10, 25),
        )
        penalty = PenaltyBreakdown(penalty_type="per_day", overdue_days=10, total=Decimal("500"))
        result = aggregator.build_requirement(make_rule(), outstanding(completion=completion), penalty, date(2026, 10, 30))
        assert result.status == RequirementStatusCode.COMPLIANT
        assert result.penalty_exposure == Decimal("0")
        assert result.filed_on == date(2026, 10, 25)
        assert result.action_required is None

    def test_amber_priority(self, aggregator):
        rule = make_rule(criticality_score=4, amber_threshold_days=10)
        far = aggregator.build_requirement(rule, outstanding(), NO_PENALTY, date(2026, 10, 12))
        near = aggregator.build_requirement(rule, outstanding(), NO_PENALTY, date(2026, 10, 18))
        assert far.priority == "medium"
        assert near.priority == "high"


class TestRollUps:
    """Risk score and worst-case-wins state."""

    def test_risk_score_weights_by_criticality(self, aggregator):
        requirements = [
            requirement("A", RequirementStatusCode.RED, criticality=8),
            requirement("B", RequirementStatusCode.COMPLIANT, criticality=2),
        ]
        # 100 x (8 x 1.0) / 10
        assert aggregator.risk_score(requirements) == Decimal("80.00")

    def test_waived_excluded_from_score(self, aggregator):
        requirements = [
            requirement("A", RequirementStatusCode.WAIVED, criticality=10),
            requirement("B", RequirementStatusCode.UPCOMING, criticality=5),
        ]
        assert aggregator.risk_score(requirements) == Decimal("20.00")

    def test_no_requirements_scores_zero(self, aggregator):
        assert aggregator.risk_score([]) == Decimal("0.00")
        assert aggregator.state([], Decimal("0")) == OverallState.GREEN

    def test_any_red_makes_state_red(self, aggregator):
        requirements = [requirement("A", RequirementStatusCode.RED, criticality=1)] + [
            requirement(f"OK{i}", RequirementStatusCode.COMPLIANT, criticality=10) for i in range(5)
        ]
        risk = aggregator.risk_score(requirements)
        assert risk < Decimal("30")
        assert aggregator.state(requirements, risk) == OverallState.RED

    def test_score_at_threshold_makes_state_amber(self, aggregator):
        requirements = [requirement("A", RequirementStatusCode.UPCOMING)]
        assert aggregator.state(requirements, Decimal("30")) == OverallState.AMBER
        assert aggregator.state(requirements, Decimal("29.99")) == OverallState.GREEN

    def test_next_critical_tie_breaks_on_criticality(self, aggregator):
        requirements = [
            requirement("A", RequirementStatusCode.AMBER, criticality=3),
            requirement("B", RequirementStatusCode.AMBER, criticality=9),
            requirement("C", RequirementStatusCode.COMPLIANT, criticality=10, due_date=date(2026, 10, 1)),
            requirement("D", RequirementStatusCode.UPCOMING, criticality=10, due_date=date(2026, 11, 20)),
        ]
        assert aggregator.next_critical(requirements).rule_code == "B"

    def test_aggregate_groups_domains(self, aggregator):
        requirements = [
            requirement("GSTR3B", RequirementStatusCode.RED, criticality=8),
            requirement("PF-ECR", RequirementStatusCode.UPCOMING, criticality=5, domain=ComplianceDomain.LABOUR),
        ]
        result = aggregator.aggregate(uuid.uuid4(), date(2026, 10, 30), requirements)

        assert result.overall_state == OverallState.RED
        assert result.rules_applied == 2
        states = {domain.domain: domain.state for domain in result.domains}
        assert states[ComplianceDomain.TAX_GST] == OverallState.RED
        assert states[ComplianceDomain.LABOUR] == OverallState.GREEN
