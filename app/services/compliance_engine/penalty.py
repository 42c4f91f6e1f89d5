"""
DigiComply - Penalty Calculator

Estimates late fees and interest for an overdue requirement from its rule's
penalty spec.

Supported penalty types:
- per_day: daily_amount x overdue days
- percentage_per_month: interest on base_amount per started month of delay
  (30-day months), simple or compounding
- fixed_amount: flat amount once breached
- slab_based: amount of the slab the overdue days fall into
- formula: restricted arithmetic expression (see formula.py)

Every result is clamped to the configured [min_penalty, max_penalty] when the
requirement is overdue, and comes with a breakdown for audit display.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import List, Optional

from app.schemas.compliance_rule import (
    FixedAmountPenalty,
    FormulaPenalty,
    InterestPenalty,
    PenaltySpec,
    PerDayPenalty,
    SlabPenalty,
)
from app.schemas.compliance_state import PenaltyBreakdown
from app.services.compliance_engine.formula import evaluate_formula
from app.utils.error_handling import CalculationError


logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
# Digits available while quantizing; uncapped parts of a breakdown can exceed the default 28
MONEY_PRECISION = 60
# Largest total a Numeric(15, 2) exposure column can hold
MAX_TOTAL = Decimal("9999999999999.99")
DAYS_PER_PENALTY_MONTH = 30


def _money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def months_started(overdue_days: int) -> int:
    """Number of (30-day) months a delay has run into; a partial month counts in full."""
    if overdue_days <= 0:
        return 0
    return (overdue_days + DAYS_PER_PENALTY_MONTH - 1) // DAYS_PER_PENALTY_MONTH


class PenaltyCalculator:
    """
    Pure penalty estimation.

    Example:
        calc = PenaltyCalculator()
        breakdown = calc.calculate(
            PerDayPenalty(daily_amount=Decimal("50"), max_penalty=Decimal("5000")),
            overdue_days=10,
        )
        # breakdown.total == Decimal("500.00")
    """

    def calculate(
        self,
        spec: Optional[PenaltySpec],
        overdue_days: int,
        rule_code: Optional[str] = None,
    ) -> PenaltyBreakdown:
        """
        Calculate the penalty for ``overdue_days`` days past the breach date.

        Raises:
            CalculationError: formula evaluation failed, or the amounts are too large to represent
        """
        overdue_days = max(0, overdue_days)
        if spec is None:
            return PenaltyBreakdown(penalty_type="none", overdue_days=overdue_days)

        try:
            with localcontext() as ctx:
                ctx.prec = MONEY_PRECISION
                return self._clamp(spec, self._breakdown(spec, overdue_days, rule_code), rule_code)
        except ArithmeticError as exc:
            raise CalculationError(
                f"Penalty for {overdue_days} overdue days is out of range: {exc!r}",
                rule_code=rule_code,
                original_error=exc,
            ) from exc

    def _breakdown(self, spec: PenaltySpec, overdue_days: int, rule_code: Optional[str]) -> PenaltyBreakdown:
        if isinstance(spec, PerDayPenalty):
            breakdown = self._per_day(spec, overdue_days)
        elif isinstance(spec, InterestPenalty):
            breakdown = self._interest(spec, overdue_days)
        elif isinstance(spec, FixedAmountPenalty):
            breakdown = self._fixed(spec, overdue_days)
        elif isinstance(spec, SlabPenalty):
            breakdown = self._slab(spec, overdue_days)
        elif isinstance(spec, FormulaPenalty):
            breakdown = self._formula(spec, overdue_days, rule_code)
        else:
            raise CalculationError(f"Unsupported penalty type {type(spec).__name__}", rule_code=rule_code)
        return breakdown

    # ===========================================
    # PENALTY TYPES
    # ===========================================

    def _per_day(self, spec: PerDayPenalty, overdue_days: int) -> PenaltyBreakdown:
        amount = spec.daily_amount * overdue_days
        return PenaltyBreakdown(
            penalty_type=spec.type,
            overdue_days=overdue_days,
            penalty=amount,
            total=amount,
            lines=[{
                "description": f"Late fee {spec.daily_amount}/day x {overdue_days} days",
                "amount": str(_money(amount)),
            }] if overdue_days else [],
        )

    def _interest(self, spec: InterestPenalty, overdue_days: int) -> PenaltyBreakdown:
        months = months_started(overdue_days)
        monthly_rate = spec.rate / Decimal("100")

        lines: List[dict] = []
        if spec.compounding_allowed:
            balance = spec.base_amount
            for month in range(1, months + 1):
                accrued = balance * monthly_rate
                balance += accrued
                lines.append({
                    "description": f"Month {month}: {spec.rate}% on {_money(balance - accrued)}",
                    "amount": str(_money(accrued)),
                })
            interest = balance - spec.base_amount
        else:
            interest = spec.base_amount * monthly_rate * months
            if months:
                lines.append({
                    "description": f"Interest {spec.rate}%/month on {spec.base_amount} x {months} months",
                    "amount": str(_money(interest)),
                })

        return PenaltyBreakdown(
            penalty_type=spec.type,
            overdue_days=overdue_days,
            principal=spec.base_amount,
            interest=interest,
            total=interest,
            lines=lines,
        )

    def _fixed(self, spec: FixedAmountPenalty, overdue_days: int) -> PenaltyBreakdown:
        amount = spec.amount if overdue_days > 0 else Decimal("0")
        return PenaltyBreakdown(
            penalty_type=spec.type,
            overdue_days=overdue_days,
            penalty=amount,
            total=amount,
            lines=[{"description": "Fixed late filing penalty", "amount": str(_money(amount))}] if amount else [],
        )

    def _slab(self, spec: SlabPenalty, overdue_days: int) -> PenaltyBreakdown:
        # Last slab starting at or before the overdue days; covers gaps and days past the final slab
        matched = None
        if overdue_days > 0:
            for slab in spec.slabs:
                if slab.days_from <= overdue_days:
                    matched = slab

        amount = matched.amount if matched else Decimal("0")
        lines = []
        if matched:
            upper = matched.days_to if matched.days_to is not None else "+"
            lines.append({
                "description": f"Slab {matched.days_from}-{upper} days",
                "amount": str(_money(amount)),
            })
        return PenaltyBreakdown(
            penalty_type=spec.type,
            overdue_days=overdue_days,
            penalty=amount,
            total=amount,
            lines=lines,
        )

    def _formula(self, spec: FormulaPenalty, overdue_days: int, rule_code: Optional[str]) -> PenaltyBreakdown:
        amount = evaluate_formula(
            spec.expression,
            {"overdueDays": overdue_days, "baseAmount": spec.base_amount, "rate": spec.rate},
            rule_code=rule_code,
        )
        if overdue_days == 0 or amount < 0:
            amount = Decimal("0")
        return PenaltyBreakdown(
            penalty_type=spec.type,
            overdue_days=overdue_days,
            principal=spec.base_amount,
            penalty=amount,
            total=amount,
            lines=[{"description": f"Formula: {spec.expression}", "amount": str(_money(amount))}] if amount else [],
        )

    # ===========================================
    # CAPS
    # ===========================================

    def _clamp(self, spec: PenaltySpec, breakdown: PenaltyBreakdown, rule_code: Optional[str] = None) -> PenaltyBreakdown:
        total = breakdown.total
        if breakdown.overdue_days > 0:
            if spec.max_penalty is not None and total > spec.max_penalty:
                breakdown.lines.append({"description": f"Capped at maximum {spec.max_penalty}", "amount": str(_money(spec.max_penalty))})
                total = spec.max_penalty
            if spec.min_penalty is not None and total < spec.min_penalty:
                breakdown.lines.append({"description": f"Raised to minimum {spec.min_penalty}", "amount": str(_money(spec.min_penalty))})
                total = spec.min_penalty
        else:
            total = Decimal("0")
        if total > MAX_TOTAL:
            raise CalculationError(
                f"Penalty total {total} exceeds the largest storable amount {MAX_TOTAL}", rule_code=rule_code,
            )

        # Penalty and interest keep their uncapped parts; only the total is clamped
        return breakdown.model_copy(update={
            "principal": _money(breakdown.principal),
            "penalty": _money(breakdown.penalty),
            "interest": _money(breakdown.interest),
            "total": _money(total),
        })
