"""
DigiComply - Due Date Calculator Tests

Unit tests for periods, working-day rolling, grace and extensions.
"""

import uuid
import pytest
from datetime import date

from pydantic import ValidationError

from app.models.compliance_filing import FilingStatus
from app.models.compliance_rule import ComplianceDomain, RuleFrequency
from app.schemas.compliance_rule import RuleDefinition
from app.schemas.compliance_state import EntityProfile, FilingSignal, FilingSignals
from app.services.compliance_engine.due_dates import (
    DueDateCalculator,
    HolidayCalendar,
    Period,
    period_containing,
)
from app.utils.error_handling import CalculationError, DataIncompleteError


def make_rule(**overrides) -> RuleDefinition:
    values = dict(
        id=uuid.uuid4(),
        rule_code="GSTR3B",
        name="GSTR-3B Monthly Return",
        domain=ComplianceDomain.TAX_GST,
        frequency=RuleFrequency.MONTHLY,
        due_date={"base": "PERIOD_END", "offset_days": 20},
        criticality_score=8,
        effective_from=date(2026, 9, 1),
    )
    values.update(overrides)
    return RuleDefinition.model_validate(values)


def make_profile(**overrides) -> EntityProfile:
    values = dict(
        entity_id=uuid.uuid4(),
        entity_type="pvt_ltd",
        state="KA",
        incorporation_date=date(2020, 4, 1),
    )
    values.update(overrides)
    return EntityProfile(**values)


@pytest.fixture
def calculator() -> DueDateCalculator:
    return DueDateCalculator(HolidayCalendar(), period_lookback=3)


class TestPeriods:
    """Period keys and boundaries."""

    def test_monthly(self):
        period = period_containing(RuleFrequency.MONTHLY, date(2026, 2, 14))
        assert period == Period(key="2026-02", start=date(2026, 2, 1), end=date(2026, 2, 28))

    def test_quarterly_uses_fiscal_year(self):
        period = period_containing(RuleFrequency.QUARTERLY, date(2026, 10, 5))
        assert period.key == "FY2026-Q3"
        assert period.start == date(2026, 10, 1)
        assert period.end == date(2026, 12, 31)

    def test_quarter_four_spans_calendar_year(self):
        period = period_containing(RuleFrequency.QUARTERLY, date(2027, 2, 1))
        assert period.key == "FY2026-Q4"
        assert period.start == date(2027, 1, 1)
        assert period.end == date(2027, 3, 31)

    def test_annual_and_half_yearly(self):
        annual = period_containing(RuleFrequency.ANNUAL, date(2026, 3, 31))
        assert annual.key == "FY2025"
        assert annual.end == date(2026, 3, 31)
        half = period_containing(RuleFrequency.HALF_YEARLY, date(2026, 11, 1))
        assert half.key == "FY2026-H2"

    def test_calendar_fiscal_year(self):
        period = period_containing(RuleFrequency.ANNUAL, date(2026, 6, 1), fiscal_start_month=1)
        assert period.key == "FY2026"
        assert period.start == date(2026, 1, 1)


class TestDueDates:
    """Raw due date, rolling, grace and extensions."""

    def test_period_end_plus_offset(self, calculator):
        rule = make_rule()
        period = period_containing(RuleFrequency.MONTHLY, date(2026, 9, 10))
        due = calculator.due_date_for(rule, make_profile(), period)
        assert due.raw_due_date == date(2026, 10, 20)
        assert due.due_date == date(2026, 10, 20)
        assert due.breach_date == date(2026, 10, 20)

    def test_grace_days_move_breach_date(self, calculator):
        rule = make_rule(grace_days=5)
        period = period_containing(RuleFrequency.MONTHLY, date(2026, 9, 10))
        due = calculator.due_date_for(rule, make_profile(), period)
        assert due.breach_date == date(2026, 10, 25)

    def test_offset_months(self, calculator):
        rule = make_rule(
            frequency=RuleFrequency.ANNUAL,
            due_date={"base": "PERIOD_END", "offset_months": 6},
        )
        period = period_containing(RuleFrequency.ANNUAL, date(2025, 10, 1))
        due = calculator.due_date_for(rule, make_profile(), period)
        assert due.due_date == date(2026, 9, 30)

    def test_rolls_over_weekend_and_holiday(self):
        # 2026-10-24 is a Saturday; Monday 26th is a state holiday in KA
        calendar = HolidayCalendar(holidays={"KA": [date(2026, 10, 26)]})
        calculator = DueDateCalculator(calendar)
        rule = make_rule(due_date={
            "base": "PERIOD_END", "offset_days": 24, "adjustment": "NEXT_WORKING_DAY",
        })
        period = period_containing(RuleFrequency.MONTHLY, date(2026, 9, 10))

        due = calculator.due_date_for(rule, make_profile(state="KA"), period)
        assert due.raw_due_date == date(2026, 10, 24)
        assert due.due_date == date(2026, 10, 27)

        other_state = calculator.due_date_for(rule, make_profile(state="MH"), period)
        assert other_state.due_date == date(2026, 10, 26)

    def test_national_holiday_applies_everywhere(self):
        calendar = HolidayCalendar(holidays={"NATIONAL": [date(2026, 10, 2)]})
        assert not calendar.is_working_day(date(2026, 10, 2), "MH")
        assert calendar.next_working_day(date(2026, 10, 2), "MH") == date(2026, 10, 5)

    def test_extension_replaces_due_date(self, calculator):
        rule = make_rule(grace_days=2)
        period = period_containing(RuleFrequency.MONTHLY, date(2026, 9, 10))
        signals = FilingSignals(signals=(
            FilingSignal(
                rule_code="GSTR3B",
                period_key="2026-09",
                status=FilingStatus.EXTENDED,
                extended_due_date=date(2026, 11, 5),
            ),
        ))
        due = calculator.due_date_for(rule, make_profile(), period, signals)
        assert due.is_extended
        assert due.due_date == date(2026, 11, 5)
        assert due.breach_date == date(2026, 11, 7)

    def test_incorporation_base_needs_incorporation_date(self, calculator):
        rule = make_rule(
            frequency=RuleFrequency.ONE_TIME,
            due_date={"base": "INCORPORATION_DATE", "offset_days": 30},
        )
        profile = make_profile(incorporation_date=None)
        with pytest.raises(DataIncompleteError) as exc_info:
            calculator.outstanding_requirement(rule, profile, FilingSignals(), date(2026, 10, 1))
        assert exc_info.value.missing_field == "incorporation_date"

    @pytest.mark.parametrize("formula", [
        {"base": "PERIOD_END", "offset_months": 120000},
        {"base": "PERIOD_END", "offset_days": 10000000000},
        {"base": "PERIOD_END", "offset_days": 3000000},
    ])
    def test_offsets_out_of_date_range(self, calculator, formula):
        rule = make_rule(due_date=formula)
        period = period_containing(RuleFrequency.MONTHLY, date(2026, 9, 10))
        with pytest.raises(CalculationError) as exc_info:
            calculator.due_date_for(rule, make_profile(), period)
        assert exc_info.value.rule_code == "GSTR3B"

    def test_event_date_base_needs_event_based_rule(self):
        with pytest.raises(ValidationError):
            make_rule(due_date={"base": "EVENT_DATE", "trigger_event": "director_change", "offset_days": 30})


class TestOutstandingRequirement:
    """Which period the entity has to act on."""

    def test_oldest_unfiled_period_wins(self, calculator):
        rule = make_rule(effective_from=date(2026, 7, 1))
        outstanding = calculator.outstanding_requirement(rule, make_profile(), FilingSignals(), date(2026, 10, 17))
        assert outstanding.due.period.key == "2026-07"

    def test_filed_periods_are_skipped(self, calculator):
        rule = make_rule(effective_from=date(2026, 7, 1))
        signals = FilingSignals(signals=(
            FilingSignal(rule_code="GSTR3B", period_key="2026-07", status=FilingStatus.COMPLETED),
            FilingSignal(rule_code="GSTR3B", period_key="2026-08", status=FilingStatus.COMPLETED),
        ))
        outstanding = calculator.outstanding_requirement(rule, make_profile(), signals, date(2026, 10, 17))
        assert outstanding.due.period.key == "2026-09"
        assert not outstanding.is_completed

    def test_all_filed_reports_latest_as_completed(self, calculator):
        rule = make_rule(effective_from=date(2026, 10, 1))
        signals = FilingSignals(signals=(
            FilingSignal(
                rule_code="GSTR3B", period_key="2026-10",
                status=FilingStatus.COMPLETED, filed_on=date(2026, 10, 15),
            ),
        ))
        outstanding = calculator.outstanding_requirement(rule, make_profile(), signals, date(2026, 10, 17))
        assert outstanding.due.period.key == "2026-10"
        assert outstanding.is_completed

    def test_periods_before_incorporation_are_skipped(self, calculator):
        rule = make_rule(effective_from=date(2020, 1, 1))
        profile = make_profile(incorporation_date=date(2026, 9, 15))
        periods = calculator.candidate_periods(rule, profile, date(2026, 10, 17))
        assert [p.key for p in periods] == ["2026-09", "2026-10"]

    def test_event_based_without_trigger_has_no_requirement(self, calculator):
        rule = make_rule(
            rule_code="DIR12",
            frequency=RuleFrequency.EVENT_BASED,
            due_date={"base": "EVENT_DATE", "trigger_event": "director_change", "offset_days": 30},
        )
        assert calculator.outstanding_requirement(rule, make_profile(), FilingSignals(), date(2026, 10, 17)) is None

    def test_event_based_with_trigger(self, calculator):
        rule = make_rule(
            rule_code="DIR12",
            frequency=RuleFrequency.EVENT_BASED,
            due_date={"base": "EVENT_DATE", "trigger_event": "director_change", "offset_days": 30},
        )
        profile = make_profile(event_dates={"director_change": date(2026, 9, 20)})
        outstanding = calculator.outstanding_requirement(rule, profile, FilingSignals(), date(2026, 10, 17))
        assert outstanding.due.period.key == "EVENT:2026-09-20"
        assert outstanding.due.due_date == date(2026, 10, 20)

    def test_repeated_calls_are_identical(self, calculator):
        rule = make_rule()
        profile = make_profile()
        first = calculator.outstanding_requirement(rule, profile, FilingSignals(), date(2026, 10, 30))
        second = calculator.outstanding_requirement(rule, profile, FilingSignals(), date(2026, 10, 30))
        assert first == second
