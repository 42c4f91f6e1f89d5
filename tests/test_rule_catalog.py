"""
DigiComply - Rule Catalog Tests

Tests for snapshot loading and rule version publishing.
"""

import pytest
from datetime import date

from app.models.compliance_rule import ComplianceDomain, RuleFrequency
from app.schemas.compliance_rule import PerDayPenalty, RuleVersionDraft
from app.services.compliance_engine.rule_catalog import RuleCatalog
from app.utils.error_handling import RuleValidationError


def make_draft(**overrides) -> RuleVersionDraft:
    values = dict(
        name="GSTR-3B Monthly Return",
        domain=ComplianceDomain.TAX_GST,
        frequency=RuleFrequency.MONTHLY,
        criteria={"entity_types": ["pvt_ltd"], "turnover_min": "2000000"},
        due_date={"base": "PERIOD_END", "offset_days": 20},
        penalty={"type": "per_day", "daily_amount": "100", "max_penalty": "10000"},
        criticality_score=8,
        amber_threshold_days=5,
        effective_from=date(2027, 4, 1),
    )
    values.update(overrides)
    return RuleVersionDraft.model_validate(values)


class TestLoadSnapshot:
    """Loading effective rules."""

    @pytest.mark.asyncio
    async def test_loads_effective_rules(self, db_session, create_rule):
        await create_rule()
        await create_rule(rule_code="PF-ECR", domain=ComplianceDomain.LABOUR)
        await create_rule(rule_code="FUTURE", effective_from=date(2027, 1, 1))
        await create_rule(rule_code="RETIRED", is_active=False)

        snapshot = await RuleCatalog(db_session).load_snapshot(date(2026, 10, 1))

        assert [rule.rule_code for rule in snapshot.rules] == ["GSTR3B", "PF-ECR"]
        assert snapshot.rejected == ()
        gst = snapshot.get("GSTR3B")
        assert gst.criteria.entity_types == ("pvt_ltd",)
        assert isinstance(gst.penalty, PerDayPenalty)

    @pytest.mark.asyncio
    async def test_malformed_rules_are_rejected(self, db_session, create_rule):
        await create_rule()
        await create_rule(
            rule_code="BAD-FORMULA",
            penalty_spec={"type": "formula", "expression": "overdueDays *"},
        )
        await create_rule(
            rule_code="BAD-EVENT",
            frequency=RuleFrequency.EVENT_BASED,
            due_date_formula={"base": "EVENT_DATE", "offset_days": 30},
        )

        snapshot = await RuleCatalog(db_session).load_snapshot(date(2026, 10, 1))

        assert [rule.rule_code for rule in snapshot.rules] == ["GSTR3B"]
        assert sorted(exc.rule_code for exc in snapshot.rejected) == ["BAD-EVENT", "BAD-FORMULA"]
        assert all(exc.errors for exc in snapshot.rejected)

    @pytest.mark.asyncio
    async def test_overlapping_versions_use_highest(self, db_session, create_rule):
        await create_rule(version=1)
        await create_rule(version=2, name="GSTR-3B (revised)")

        snapshot = await RuleCatalog(db_session).load_snapshot(date(2026, 10, 1))

        assert len(snapshot.rules) == 1
        assert snapshot.get("GSTR3B").version == 2
        assert len(snapshot.warnings) == 1

    @pytest.mark.asyncio
    async def test_effective_until_is_inclusive(self, db_session, create_rule):
        await create_rule(effective_until=date(2026, 10, 31))
        catalog = RuleCatalog(db_session)
        assert (await catalog.load_snapshot(date(2026, 10, 31))).get("GSTR3B") is not None
        assert (await catalog.load_snapshot(date(2026, 11, 1))).get("GSTR3B") is None


class TestPublishVersion:
    """Immutable version chain."""

    @pytest.mark.asyncio
    async def test_first_version(self, db_session):
        rule = await RuleCatalog(db_session).publish_version("TDS-24Q", make_draft(effective_from=date(2026, 4, 1)))
        assert rule.version == 1
        assert rule.replaces_rule_id is None
        assert rule.effective_until is None

    @pytest.mark.asyncio
    async def test_new_version_closes_head(self, db_session, create_rule):
        original = await create_rule()
        catalog = RuleCatalog(db_session)

        published = await catalog.publish_version("GSTR3B", make_draft())

        assert published.version == 2
        assert published.replaces_rule_id == original.id

        versions = await catalog.get_versions("GSTR3B")
        assert [v.version for v in versions] == [1, 2]
        assert versions[0].effective_until == date(2027, 3, 31)

        # Past dates keep resolving against the old version
        before = await catalog.load_snapshot(date(2026, 12, 1))
        after = await catalog.load_snapshot(date(2027, 5, 1))
        assert before.get("GSTR3B").version == 1
        assert after.get("GSTR3B").version == 2
        assert after.warnings == ()

    @pytest.mark.asyncio
    async def test_version_must_start_after_head(self, db_session, create_rule):
        await create_rule()
        with pytest.raises(RuleValidationError):
            await RuleCatalog(db_session).publish_version("GSTR3B", make_draft(effective_from=date(2026, 9, 1)))

    @pytest.mark.asyncio
    async def test_unparseable_formula_rejected(self, db_session, create_rule):
        await create_rule()
        catalog = RuleCatalog(db_session)
        draft = make_draft(penalty={"type": "formula", "expression": "(overdueDays * 10"})

        with pytest.raises(RuleValidationError):
            await catalog.publish_version("GSTR3B", draft)

        versions = await catalog.get_versions("GSTR3B")
        assert len(versions) == 1
        assert versions[0].effective_until is None
