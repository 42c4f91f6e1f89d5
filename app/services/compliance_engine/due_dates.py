"""
DigiComply - Due Date Calculator

Derives compliance periods from a rule's frequency and computes their due and
breach dates:

    raw_due     = base_date + offset_months + offset_days
    due_date    = raw_due rolled to the next working day (if configured),
                  or the extended due date when the authority granted one
    breach_date = due_date + grace_days

Everything here is a pure function of (rule version, entity profile, period,
filing signals, calendar), so repeated calls yield identical dates.

Period keys:
    MONTHLY      2026-09
    QUARTERLY    FY2026-Q2   (fiscal year labelled by its starting calendar year)
    HALF_YEARLY  FY2026-H1
    ANNUAL       FY2026
    ONE_TIME     ONCE
    EVENT_BASED  EVENT:2026-03-02
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from app.config import settings
from app.models.compliance_filing import NATIONAL_JURISDICTION
from app.models.compliance_rule import RuleFrequency
from app.schemas.compliance_rule import BaseDateType, DateAdjustment, RuleDefinition
from app.schemas.compliance_state import EntityProfile, FilingSignal, FilingSignals
from app.utils.error_handling import CalculationError, DataIncompleteError


logger = logging.getLogger(__name__)

# Upper bound on consecutive non-working days when rolling a due date
MAX_ROLL_DAYS = 60

_PERIOD_MONTHS = {
    RuleFrequency.MONTHLY: 1,
    RuleFrequency.QUARTERLY: 3,
    RuleFrequency.HALF_YEARLY: 6,
    RuleFrequency.ANNUAL: 12,
}


# =============================================================================
# HOLIDAY CALENDAR
# =============================================================================

class HolidayCalendar:
    """
    Weekend definition plus per-jurisdiction holiday dates.

    Holidays listed under ``NATIONAL`` apply to every jurisdiction.
    """

    def __init__(
        self,
        holidays: Optional[Dict[str, Iterable[date]]] = None,
        weekend_days: Iterable[int] = (5, 6),
    ):
        self.weekend_days: FrozenSet[int] = frozenset(weekend_days)
        self._holidays: Dict[str, FrozenSet[date]] = {
            jurisdiction.strip().upper(): frozenset(days)
            for jurisdiction, days in (holidays or {}).items()
        }

    def is_holiday(self, day: date, jurisdiction: Optional[str] = None) -> bool:
        if day in self._holidays.get(NATIONAL_JURISDICTION, frozenset()):
            return True
        if jurisdiction:
            return day in self._holidays.get(jurisdiction.strip().upper(), frozenset())
        return False

    def is_working_day(self, day: date, jurisdiction: Optional[str] = None) -> bool:
        return day.weekday() not in self.weekend_days and not self.is_holiday(day, jurisdiction)

    def next_working_day(self, day: date, jurisdiction: Optional[str] = None) -> date:
        """Return ``day`` itself when it is a working day, else the next one."""
        candidate = day
        for _ in range(MAX_ROLL_DAYS):
            if self.is_working_day(candidate, jurisdiction):
                return candidate
            candidate += timedelta(days=1)
        logger.warning(f"No working day within {MAX_ROLL_DAYS} days of {day} for {jurisdiction}")
        return day


# =============================================================================
# PERIODS
# =============================================================================

@dataclass(frozen=True)
class Period:
    """One compliance period of a rule."""
    key: str
    start: date
    end: date


def _fiscal_year_start(on: date, fiscal_start_month: int) -> date:
    year = on.year if on.month >= fiscal_start_month else on.year - 1
    return date(year, fiscal_start_month, 1)


def period_containing(frequency: RuleFrequency, on: date, fiscal_start_month: int = 4) -> Period:
    """Recurring period (MONTHLY/QUARTERLY/HALF_YEARLY/ANNUAL) that contains ``on``."""
    if frequency == RuleFrequency.MONTHLY:
        start = date(on.year, on.month, 1)
        end = start + relativedelta(months=1) - timedelta(days=1)
        return Period(key=f"{start.year}-{start.month:02d}", start=start, end=end)

    if frequency not in _PERIOD_MONTHS:
        raise ValueError(f"{frequency} is not a recurring frequency")

    length = _PERIOD_MONTHS[frequency]
    fy_start = _fiscal_year_start(on, fiscal_start_month)
    elapsed = (on.year - fy_start.year) * 12 + on.month - fy_start.month
    index = elapsed // length
    start = fy_start + relativedelta(months=index * length)
    end = start + relativedelta(months=length) - timedelta(days=1)

    if frequency == RuleFrequency.QUARTERLY:
        key = f"FY{fy_start.year}-Q{index + 1}"
    elif frequency == RuleFrequency.HALF_YEARLY:
        key = f"FY{fy_start.year}-H{index + 1}"
    else:
        key = f"FY{fy_start.year}"
    return Period(key=key, start=start, end=end)


def previous_period(frequency: RuleFrequency, period: Period, fiscal_start_month: int = 4) -> Period:
    return period_containing(frequency, period.start - timedelta(days=1), fiscal_start_month)


# =============================================================================
# DUE DATES
# =============================================================================

@dataclass(frozen=True)
class DueDate:
    """Due and breach dates of one (rule, period)."""
    period: Period
    raw_due_date: date
    due_date: date
    breach_date: date
    is_extended: bool = False


@dataclass(frozen=True)
class OutstandingRequirement:
    """The period of a rule the entity currently has to act on, with its filing state."""
    due: DueDate
    completion: Optional[FilingSignal] = None
    waived: bool = False

    @property
    def is_completed(self) -> bool:
        return self.completion is not None


class DueDateCalculator:
    """
    Computes due dates for rules against one entity.

    The holiday calendar is injected so evaluation never touches storage.
    """

    def __init__(self, calendar: HolidayCalendar, period_lookback: Optional[int] = None):
        self.calendar = calendar
        self.period_lookback = settings.period_lookback if period_lookback is None else period_lookback

    def candidate_periods(self, rule: RuleDefinition, profile: EntityProfile, as_of: date) -> List[Period]:
        """
        Periods of ``rule`` relevant on ``as_of``, oldest first.

        Recurring rules return the current period plus up to ``period_lookback``
        earlier ones, skipping periods that ended before the rule took effect
        or before the entity was incorporated. EVENT_BASED rules without a
        recorded trigger date have no period.
        """
        formula = rule.due_date

        if rule.frequency == RuleFrequency.EVENT_BASED:
            trigger_date = profile.event_dates.get(formula.trigger_event)
            if trigger_date is None or trigger_date > as_of:
                return []
            return [Period(key=f"EVENT:{trigger_date.isoformat()}", start=trigger_date, end=trigger_date)]

        if rule.frequency == RuleFrequency.ONE_TIME:
            anchor = profile.incorporation_date or rule.effective_from
            return [Period(key="ONCE", start=anchor, end=anchor)]

        fiscal_start = formula.fiscal_year_start_month
        period = period_containing(rule.frequency, as_of, fiscal_start)
        periods = [period]
        for _ in range(self.period_lookback):
            period = previous_period(rule.frequency, period, fiscal_start)
            periods.append(period)

        floor = rule.effective_from
        if profile.incorporation_date and profile.incorporation_date > floor:
            floor = profile.incorporation_date
        relevant = [p for p in periods if p.end >= floor]

        # Current period always stays in scope so a requirement exists
        if not relevant:
            relevant = [periods[0]]
        return list(reversed(relevant))

    def base_date(self, rule: RuleDefinition, profile: EntityProfile, period: Period) -> date:
        formula = rule.due_date
        if formula.base == BaseDateType.PERIOD_START:
            return period.start
        if formula.base == BaseDateType.PERIOD_END:
            return period.end
        if formula.base == BaseDateType.INCORPORATION_DATE:
            if profile.incorporation_date is None:
                raise DataIncompleteError(rule.rule_code, "incorporation_date")
            return profile.incorporation_date
        if formula.base == BaseDateType.EVENT_DATE:
            return period.start
        return formula.fixed_date

    def due_date_for(
        self,
        rule: RuleDefinition,
        profile: EntityProfile,
        period: Period,
        signals: Optional[FilingSignals] = None,
    ) -> DueDate:
        """
        Compute due and breach dates for one period.

        Raises:
            DataIncompleteError: the base date needs an entity field that is not set
            CalculationError: the offsets or grace period run past the supported date range
        """
        formula = rule.due_date
        base = self.base_date(rule, profile, period)
        try:
            raw_due = base + relativedelta(months=formula.offset_months) + timedelta(days=formula.offset_days)
        except (OverflowError, ValueError) as e:
            raise CalculationError(
                f"Due date offset from {base} is out of range", rule_code=rule.rule_code, original_error=e,
            ) from e

        due = raw_due
        if formula.adjustment == DateAdjustment.NEXT_WORKING_DAY:
            due = self.calendar.next_working_day(raw_due, profile.state)

        extension = signals.extension(rule.rule_code, period.key) if signals else None
        is_extended = bool(extension and extension.extended_due_date)
        if is_extended:
            due = extension.extended_due_date

        try:
            breach = due + timedelta(days=rule.grace_days)
        except OverflowError as e:
            raise CalculationError(
                f"Grace period after {due} is out of range", rule_code=rule.rule_code, original_error=e,
            ) from e

        return DueDate(
            period=period,
            raw_due_date=raw_due,
            due_date=due,
            breach_date=breach,
            is_extended=is_extended,
        )

    def outstanding_requirement(
        self,
        rule: RuleDefinition,
        profile: EntityProfile,
        signals: FilingSignals,
        as_of: date,
    ) -> Optional[OutstandingRequirement]:
        """
        Pick the period the entity has to act on.

        The oldest period that is neither completed nor waived wins. When all
        are settled, the latest period is reported with its completion or
        waiver. Returns None when the rule has no period yet (event not
        triggered).
        """
        periods = self.candidate_periods(rule, profile, as_of)
        if not periods:
            return None

        for period in periods:
            if signals.is_waived(rule.rule_code, period.key):
                continue
            if signals.completion(rule.rule_code, period.key):
                continue
            return OutstandingRequirement(due=self.due_date_for(rule, profile, period, signals))

        latest = periods[-1]
        return OutstandingRequirement(
            due=self.due_date_for(rule, profile, latest, signals),
            completion=signals.completion(rule.rule_code, latest.key),
            waived=signals.is_waived(rule.rule_code, latest.key),
        )
