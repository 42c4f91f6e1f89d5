"""
DigiComply - Applicability Matcher Tests
"""

import uuid
import pytest
from datetime import date
from decimal import Decimal

from app.models.compliance_rule import ComplianceDomain, RuleFrequency
from app.schemas.compliance_rule import RuleDefinition, normalize_entity_type
from app.schemas.compliance_state import EntityProfile
from app.services.compliance_engine.applicability import ApplicabilityMatcher


def make_rule(rule_code: str = "GSTR3B", depends_on=(), **criteria) -> RuleDefinition:
    return RuleDefinition.model_validate(dict(
        id=uuid.uuid4(),
        rule_code=rule_code,
        name=rule_code,
        domain=ComplianceDomain.TAX_GST,
        frequency=RuleFrequency.MONTHLY,
        criteria=criteria,
        due_date={"base": "PERIOD_END", "offset_days": 20},
        criticality_score=5,
        depends_on_rules=depends_on,
        effective_from=date(2026, 4, 1),
    ))


def make_profile(**overrides) -> EntityProfile:
    values = dict(
        entity_id=uuid.uuid4(),
        entity_type="Private Limited",
        turnover=Decimal("5000000"),
        employee_count=25,
        state="ka",
        has_gst=True,
        has_pf=True,
        has_esi=False,
    )
    values.update(overrides)
    return EntityProfile(**values)


@pytest.fixture
def matcher() -> ApplicabilityMatcher:
    return ApplicabilityMatcher()


class TestEntityTypeNormalization:

    @pytest.mark.parametrize("raw,expected", [
        ("Private Limited", "pvt_ltd"),
        ("PVT LTD", "pvt_ltd"),
        ("pvt_ltd", "pvt_ltd"),
        ("One Person Company", "opc"),
        ("Limited Liability Partnership", "llp"),
        ("Sole Proprietorship", "sole_prop"),
        ("Trust", "trust"),
        (None, ""),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_entity_type(raw) == expected

    def test_profile_normalizes_type_and_state(self):
        profile = make_profile()
        assert profile.entity_type == "pvt_ltd"
        assert profile.state == "KA"


class TestApplies:
    """Single rule checks."""

    def test_unconstrained_rule_applies(self, matcher):
        assert matcher.applies(make_rule(), make_profile())

    def test_entity_type_mismatch(self, matcher):
        rule = make_rule(entity_types=["llp"])
        assert not matcher.applies(rule, make_profile())

    def test_turnover_bounds_are_inclusive(self, matcher):
        rule = make_rule(turnover_min="2000000", turnover_max="5000000")
        assert matcher.applies(rule, make_profile(turnover=Decimal("2000000")))
        assert matcher.applies(rule, make_profile(turnover=Decimal("5000000")))
        assert not matcher.applies(rule, make_profile(turnover=Decimal("1999999")))
        assert not matcher.applies(rule, make_profile(turnover=Decimal("5000001")))

    def test_employee_threshold(self, matcher):
        rule = make_rule(employee_count_min=20)
        assert matcher.applies(rule, make_profile(employee_count=20))
        assert not matcher.applies(rule, make_profile(employee_count=19))

    def test_registration_flags(self, matcher):
        assert matcher.applies(make_rule(requires_pf=True), make_profile())
        assert not matcher.applies(make_rule(requires_esi=True), make_profile())

    def test_state_specific_rule(self, matcher):
        rule = make_rule(state_specific=True, states=["ka", "MH"])
        assert matcher.applies(rule, make_profile(state="KA"))
        assert not matcher.applies(rule, make_profile(state="TN"))


class TestMatch:
    """Filtering a catalog snapshot."""

    def test_missing_turnover_skips_rule_with_error(self, matcher):
        rules = [make_rule("PF-ECR"), make_rule("GSTR3B", turnover_min="2000000")]
        applicable, incomplete = matcher.match(rules, make_profile(turnover=None))

        assert [r.rule_code for r in applicable] == ["PF-ECR"]
        assert len(incomplete) == 1
        assert incomplete[0].rule_code == "GSTR3B"
        assert incomplete[0].missing_field == "turnover"

    def test_missing_state_for_state_rule(self, matcher):
        rules = [make_rule("PT-KA", state_specific=True, states=["KA"])]
        applicable, incomplete = matcher.match(rules, make_profile(state=None))
        assert applicable == []
        assert incomplete[0].missing_field == "state"

    def test_result_sorted_by_rule_code(self, matcher):
        rules = [make_rule("TDS-24Q"), make_rule("GSTR1"), make_rule("PF-ECR")]
        applicable, _ = matcher.match(rules, make_profile())
        assert [r.rule_code for r in applicable] == ["GSTR1", "PF-ECR", "TDS-24Q"]


class TestResolveDependencies:
    """Composite rules wait on their prerequisites."""

    def test_unsatisfied_dependency_excludes_rule(self, matcher):
        gstr1 = make_rule("GSTR1")
        gstr3b = make_rule("GSTR3B", depends_on=["GSTR1"])
        kept, excluded = matcher.resolve_dependencies([gstr1, gstr3b], satisfied_codes=set())
        assert [r.rule_code for r in kept] == ["GSTR1"]
        assert [r.rule_code for r in excluded] == ["GSTR3B"]

    def test_satisfied_dependency_keeps_rule(self, matcher):
        gstr1 = make_rule("GSTR1")
        gstr3b = make_rule("GSTR3B", depends_on=["GSTR1"])
        kept, excluded = matcher.resolve_dependencies([gstr1, gstr3b], satisfied_codes={"GSTR1"})
        assert [r.rule_code for r in kept] == ["GSTR1", "GSTR3B"]
        assert excluded == []

    def test_non_applicable_dependency_does_not_block(self, matcher):
        gstr3b = make_rule("GSTR3B", depends_on=["GSTR1"])
        kept, excluded = matcher.resolve_dependencies([gstr3b], satisfied_codes=set())
        assert kept == [gstr3b]
        assert excluded == []

    def test_undetermined_dependency_blocks(self, matcher):
        gstr3b = make_rule("GSTR3B", depends_on=["GSTR1"])
        kept, excluded = matcher.resolve_dependencies([gstr3b], satisfied_codes=set(), undetermined_codes=["GSTR1"])
        assert kept == []
        assert excluded == [gstr3b]
