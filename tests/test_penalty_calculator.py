"""
DigiComply - Penalty Calculator Tests

Unit tests for penalty estimation across penalty types.
"""

import pytest
from decimal import Decimal

from app.schemas.compliance_rule import (
    FixedAmountPenalty,
    FormulaPenalty,
    InterestPenalty,
    PenaltySlab,
    PerDayPenalty,
    SlabPenalty,
)
from app.services.compliance_engine.penalty import PenaltyCalculator, months_started
from app.utils.error_handling import CalculationError


@pytest.fixture
def calculator() -> PenaltyCalculator:
    return PenaltyCalculator()


class TestPerDayPenalty:
    """Late fee per day of delay."""

    def test_ten_days_at_fifty(self, calculator):
        spec = PerDayPenalty(daily_amount=Decimal("50"), max_penalty=Decimal("5000"))
        breakdown = calculator.calculate(spec, overdue_days=10)
        assert breakdown.total == Decimal("500.00")
        assert breakdown.penalty_type == "per_day"
        assert len(breakdown.lines) == 1

    def test_capped_at_maximum(self, calculator):
        spec = PerDayPenalty(daily_amount=Decimal("50"), max_penalty=Decimal("5000"))
        breakdown = calculator.calculate(spec, overdue_days=365)
        assert breakdown.total == Decimal("5000.00")
        assert breakdown.penalty == Decimal("18250.00")
        assert "Capped" in breakdown.lines[-1]["description"]

    def test_raised_to_minimum(self, calculator):
        spec = PerDayPenalty(daily_amount=Decimal("10"), min_penalty=Decimal("200"))
        assert calculator.calculate(spec, overdue_days=3).total == Decimal("200.00")

    def test_not_overdue_is_zero_even_with_minimum(self, calculator):
        spec = PerDayPenalty(daily_amount=Decimal("10"), min_penalty=Decimal("200"))
        breakdown = calculator.calculate(spec, overdue_days=0)
        assert breakdown.total == Decimal("0.00")
        assert breakdown.lines == []


class TestInterestPenalty:
    """Monthly interest on an outstanding amount."""

    def test_months_started(self):
        assert months_started(0) == 0
        assert months_started(1) == 1
        assert months_started(30) == 1
        assert months_started(31) == 2

    def test_simple_interest(self, calculator):
        spec = InterestPenalty(base_amount=Decimal("100000"), rate=Decimal("1.5"))
        breakdown = calculator.calculate(spec, overdue_days=45)
        # 2 started months x 1.5% x 100,000
        assert breakdown.total == Decimal("3000.00")
        assert breakdown.interest == Decimal("3000.00")
        assert breakdown.principal == Decimal("100000.00")

    def test_compounding_interest(self, calculator):
        spec = InterestPenalty(base_amount=Decimal("10000"), rate=Decimal("10"), compounding_allowed=True)
        breakdown = calculator.calculate(spec, overdue_days=60)
        # 10000 -> 11000 -> 12100
        assert breakdown.total == Decimal("2100.00")
        assert len(breakdown.lines) == 2


class TestFixedAndSlabPenalty:
    """Flat and stepped amounts."""

    def test_fixed_amount_once_breached(self, calculator):
        spec = FixedAmountPenalty(amount=Decimal("10000"))
        assert calculator.calculate(spec, overdue_days=1).total == Decimal("10000.00")
        assert calculator.calculate(spec, overdue_days=0).total == Decimal("0.00")

    def test_slab_lookup(self, calculator):
        spec = SlabPenalty(slabs=(
            PenaltySlab(days_from=1, days_to=15, amount=Decimal("1000")),
            PenaltySlab(days_from=16, days_to=30, amount=Decimal("2500")),
            PenaltySlab(days_from=31, amount=Decimal("5000")),
        ))
        assert calculator.calculate(spec, overdue_days=0).total == Decimal("0.00")
        assert calculator.calculate(spec, overdue_days=10).total == Decimal("1000.00")
        assert calculator.calculate(spec, overdue_days=16).total == Decimal("2500.00")
        assert calculator.calculate(spec, overdue_days=400).total == Decimal("5000.00")

    def test_slabs_are_sorted_on_load(self):
        spec = SlabPenalty(slabs=(
            PenaltySlab(days_from=31, amount=Decimal("5000")),
            PenaltySlab(days_from=1, days_to=30, amount=Decimal("1000")),
        ))
        assert [slab.days_from for slab in spec.slabs] == [1, 31]

    def test_overlapping_slabs_rejected(self):
        with pytest.raises(ValueError):
            SlabPenalty(slabs=(
                PenaltySlab(days_from=1, days_to=20, amount=Decimal("1000")),
                PenaltySlab(days_from=15, amount=Decimal("5000")),
            ))


class TestFormulaPenalty:
    """Penalties computed by expression."""

    def test_formula_result(self, calculator):
        spec = FormulaPenalty(
            expression="baseAmount * rate / 100 + overdueDays * 100",
            base_amount=Decimal("50000"),
            rate=Decimal("2"),
        )
        assert calculator.calculate(spec, overdue_days=5).total == Decimal("1500.00")

    def test_negative_result_floored_at_zero(self, calculator):
        spec = FormulaPenalty(expression="overdueDays - 100")
        assert calculator.calculate(spec, overdue_days=5).total == Decimal("0.00")

    def test_formula_failure_raises_calculation_error(self, calculator):
        spec = FormulaPenalty(expression="baseAmount / rate")
        with pytest.raises(CalculationError) as exc_info:
            calculator.calculate(spec, overdue_days=5, rule_code="PT-RETURN")
        assert exc_info.value.rule_code == "PT-RETURN"

    def test_no_spec_means_no_penalty(self, calculator):
        breakdown = calculator.calculate(None, overdue_days=30)
        assert breakdown.total == Decimal("0")
        assert breakdown.penalty_type == "none"


class TestPenaltyGrowth:
    """Per-day and slab penalties only grow with delay and stay under the cap."""

    def sweep(self, calculator, spec, days: int):
        return [calculator.calculate(spec, overdue_days=d).total for d in range(days + 1)]

    def test_per_day_non_decreasing_and_capped(self, calculator):
        spec = PerDayPenalty(daily_amount=Decimal("50"), max_penalty=Decimal("5000"))
        totals = self.sweep(calculator, spec, 200)

        assert all(later >= earlier for earlier, later in zip(totals, totals[1:]))
        assert max(totals) == Decimal("5000.00")
        assert all(total <= spec.max_penalty for total in totals)

    def test_slab_non_decreasing_through_gaps(self, calculator):
        spec = SlabPenalty(
            slabs=(
                PenaltySlab(days_from=1, days_to=10, amount=Decimal("500")),
                PenaltySlab(days_from=20, days_to=30, amount=Decimal("1500")),
                PenaltySlab(days_from=45, amount=Decimal("4000")),
            ),
            max_penalty=Decimal("3000"),
        )
        totals = self.sweep(calculator, spec, 120)

        assert all(later >= earlier for earlier, later in zip(totals, totals[1:]))
        assert all(total <= spec.max_penalty for total in totals)
        # Gap days keep the previous slab; days past the last slab keep the cap
        assert totals[15] == Decimal("500.00")
        assert totals[40] == Decimal("1500.00")
        assert totals[120] == Decimal("3000.00")


class TestOutOfRangeAmounts:
    """Amounts beyond what the ledger can hold fail the rule, not the process."""

    def test_large_uncapped_part_is_quantized(self, calculator):
        spec = FormulaPenalty(expression="overdueDays * 10000000000000000000000000000", max_penalty=Decimal("5000"))
        breakdown = calculator.calculate(spec, overdue_days=10)
        assert breakdown.total == Decimal("5000.00")
        assert breakdown.penalty == Decimal("100000000000000000000000000000.00")

    def test_unrepresentable_amount_raises_calculation_error(self, calculator):
        spec = FormulaPenalty(expression="overdueDays * 1e70", max_penalty=Decimal("5000"))
        with pytest.raises(CalculationError) as exc_info:
            calculator.calculate(spec, overdue_days=10, rule_code="ROC-HUGE")
        assert exc_info.value.rule_code == "ROC-HUGE"

    def test_uncapped_total_above_storable_limit(self, calculator):
        spec = PerDayPenalty(daily_amount=Decimal("1000000000000"))
        with pytest.raises(CalculationError):
            calculator.calculate(spec, overdue_days=100, rule_code="GST-LATE")
