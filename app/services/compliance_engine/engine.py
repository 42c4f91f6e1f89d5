"""
DigiComply - Compliance State Engine

Orchestrates one recalculation per entity:

    Entity profile + rule catalog snapshot
        -> applicability matcher
        -> due dates and penalties per matched rule
        -> risk aggregator
        -> state store (optimistic replace + history)
        -> alert emitter
        -> calculation log (own transaction, success or failure)

Each recalculation runs in its own session and transaction under a timeout.
Per-rule problems (missing entity data, formula errors) never abort the
calculation; they lower the completeness score or flag the result degraded.
Only ConcurrencyConflict / PersistenceError (and timeouts) propagate.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.models.compliance_state import CalculationTrigger, ComplianceState, OverallState
from app.schemas.compliance_rule import RuleDefinition
from app.schemas.compliance_state import (
    EntityComplianceResult,
    EntityProfile,
    FilingSignals,
    RequirementStatus,
)
from app.services.compliance_engine.alert_emitter import AlertEmitter
from app.services.compliance_engine.applicability import ApplicabilityMatcher
from app.services.compliance_engine.due_dates import DueDateCalculator, HolidayCalendar
from app.services.compliance_engine.penalty import PenaltyCalculator
from app.services.compliance_engine.providers import (
    EntityProfileProvider,
    FilingSignalProvider,
    HolidayCalendarProvider,
)
from app.services.compliance_engine.risk_aggregator import SETTLED_STATUSES, RiskAggregator
from app.services.compliance_engine.rule_catalog import CatalogSnapshot, RuleCatalog
from app.services.compliance_engine.state_store import PreviousState, StateStore, write_calculation_log
from app.utils.error_handling import (
    AppException,
    CalculationError,
    CalculationTimeoutError,
    ConcurrencyConflict,
    DataIncompleteError,
    PersistenceError,
)


logger = logging.getLogger(__name__)


@dataclass
class _RunContext:
    """Collects what a run got to, for the calculation log."""
    previous: Optional[PreviousState] = None
    result: Optional[EntityComplianceResult] = None
    state_changed: bool = False
    history_written: bool = False


def completeness_score(evaluated: int, incomplete: int) -> Decimal:
    """100 x evaluated / (evaluated + incomplete); 100 when nothing was considered."""
    considered = evaluated + incomplete
    if considered == 0:
        return Decimal("100.00")
    return (Decimal("100") * evaluated / considered).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class ComplianceStateEngine:
    """
    Recalculates the compliance state of entities.

    Usage:
        engine = ComplianceStateEngine(async_session_factory)
        state = await engine.recalculate(entity_id, date.today(), CalculationTrigger.MANUAL)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        profile_provider: Optional[EntityProfileProvider] = None,
        filing_provider: Optional[FilingSignalProvider] = None,
        calendar_provider: Optional[HolidayCalendarProvider] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.profile_provider = profile_provider or EntityProfileProvider()
        self.filing_provider = filing_provider or FilingSignalProvider()
        self.calendar_provider = calendar_provider or HolidayCalendarProvider()
        self.timeout_seconds = settings.calculation_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.matcher = ApplicabilityMatcher()
        self.penalty_calculator = PenaltyCalculator()
        self.aggregator = RiskAggregator()

    # ===========================================
    # PURE EVALUATION
    # ===========================================

    def evaluate(
        self,
        profile: EntityProfile,
        snapshot: CatalogSnapshot,
        signals: FilingSignals,
        calendar: HolidayCalendar,
        as_of: date,
    ) -> EntityComplianceResult:
        """Evaluate every rule of ``snapshot`` against one entity. No I/O."""
        errors: List[str] = []
        warnings: List[str] = list(snapshot.warnings)
        warnings.extend(f"Rule {exc.rule_code} rejected: {exc.message}" for exc in snapshot.rejected)

        applicable, incomplete = self.matcher.match(snapshot.rules, profile)
        calculator = DueDateCalculator(calendar)

        evaluated: Dict[str, RequirementStatus] = {}
        in_scope: List[RuleDefinition] = []
        failed_codes: List[str] = []

        for rule in applicable:
            try:
                outstanding = calculator.outstanding_requirement(rule, profile, signals, as_of)
                if outstanding is None:
                    # Trigger event has not happened; nothing is owed yet
                    continue
                overdue_days = max(0, (as_of - outstanding.due.breach_date).days)
                penalty = self.penalty_calculator.calculate(rule.penalty, overdue_days, rule.rule_code)
                requirement = self.aggregator.build_requirement(rule, outstanding, penalty, as_of)
            except DataIncompleteError as exc:
                logger.warning(f"Skipping rule {rule.rule_code} for entity {profile.entity_id}: {exc.message}")
                incomplete.append(exc)
                continue
            except CalculationError as exc:
                logger.error(f"Rule {rule.rule_code} failed for entity {profile.entity_id}: {exc.message}")
                errors.append(f"{rule.rule_code}: {exc.message}")
                failed_codes.append(rule.rule_code)
                in_scope.append(rule)
                continue

            evaluated[rule.rule_code] = requirement
            in_scope.append(rule)

        warnings.extend(exc.message for exc in incomplete)

        evaluated_count = len(evaluated)
        satisfied = [code for code, r in evaluated.items() if r.status in SETTLED_STATUSES]
        undetermined = [exc.rule_code for exc in incomplete]
        kept, excluded = self.matcher.resolve_dependencies(in_scope, satisfied, undetermined)
        for rule in excluded:
            evaluated.pop(rule.rule_code, None)
            warnings.append(f"Rule {rule.rule_code} deferred until {', '.join(rule.depends_on_rules)} is satisfied")

        requirements = [evaluated[rule.rule_code] for rule in kept if rule.rule_code in evaluated]
        result = self.aggregator.aggregate(profile.entity_id, as_of, requirements)

        return result.model_copy(update={
            "data_completeness_score": completeness_score(evaluated_count, len(incomplete)),
            "is_degraded": bool(errors),
            "errors": errors,
            "warnings": warnings,
            "failed_rule_codes": failed_codes,
        })

    # ===========================================
    # RECALCULATION
    # ===========================================

    async def recalculate(
        self,
        entity_id: uuid.UUID,
        as_of_date: Optional[date] = None,
        trigger: CalculationTrigger = CalculationTrigger.MANUAL,
        snapshot: Optional[CatalogSnapshot] = None,
    ) -> ComplianceState:
        """
        Recalculate and persist the state of one entity.

        Args:
            entity_id: Entity to recalculate
            as_of_date: Evaluation date (today when omitted)
            trigger: What caused the recalculation
            snapshot: Pinned catalog snapshot; loaded for ``as_of_date`` when omitted

        Raises:
            EntityNotFoundException: unknown or inactive entity
            ConcurrencyConflict: the state row moved underneath; retry with a fresh read
            PersistenceError: storage failure, previous state untouched
            CalculationTimeoutError: the calculation exceeded its time budget
        """
        as_of = as_of_date or date.today()
        context = _RunContext()
        started = time.perf_counter()

        try:
            state = await asyncio.wait_for(
                self._run(entity_id, as_of, snapshot, context),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            error = CalculationTimeoutError(entity_id, self.timeout_seconds)
            await self._log_failure(entity_id, trigger, as_of, started, context, error)
            raise error from exc
        except AppException as exc:
            await self._log_failure(entity_id, trigger, as_of, started, context, exc)
            raise
        except SQLAlchemyError as exc:
            error = PersistenceError(f"Compliance state calculation failed for entity {entity_id}", exc)
            await self._log_failure(entity_id, trigger, as_of, started, context, error)
            raise error from exc
        except Exception as exc:
            error = CalculationError(f"Unexpected failure recalculating entity {entity_id}: {exc}", original_error=exc)
            await self._log_failure(entity_id, trigger, as_of, started, context, error)
            raise

        result = context.result
        await write_calculation_log(
            self.session_factory,
            entity_id=entity_id,
            trigger=trigger,
            as_of_date=as_of,
            success=True,
            calculation_time_ms=self._elapsed_ms(started),
            rules_applied=result.rules_applied,
            previous_state=context.previous.overall_state if context.previous else None,
            new_state=result.overall_state,
            state_changed=context.state_changed,
            history_written=context.history_written,
            is_degraded=result.is_degraded,
            errors=result.errors,
            warnings=result.warnings,
        )
        logger.info(
            f"Recalculated entity {entity_id} as of {as_of} ({trigger.value}): "
            f"{result.overall_state.value} risk={result.overall_risk_score} "
            f"rules={result.rules_applied}"
        )
        return state

    async def _run(
        self,
        entity_id: uuid.UUID,
        as_of: date,
        snapshot: Optional[CatalogSnapshot],
        context: _RunContext,
    ) -> ComplianceState:
        async with self.session_factory() as db:
            store = StateStore(db)
            current = await store.get_current(entity_id)
            previous = PreviousState.from_model(current) if current else None
            context.previous = previous

            profile = await self.profile_provider.get_profile(db, entity_id)
            if snapshot is None:
                snapshot = await RuleCatalog(db).load_snapshot(as_of)
            signals = await self.filing_provider.get_signals(db, entity_id)
            calendar = await self.calendar_provider.get_calendar(db)

            result = self.evaluate(profile, snapshot, signals, calendar, as_of)
            context.result = result

            outcome = await store.save(result, previous)
            await AlertEmitter(db).emit(previous, result, retain_rule_codes=result.failed_rule_codes)

            try:
                await db.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to commit compliance state for entity {entity_id}", exc) from exc

            context.state_changed = outcome.state_changed
            context.history_written = outcome.history_written
            return outcome.state

    async def _log_failure(
        self,
        entity_id: uuid.UUID,
        trigger: CalculationTrigger,
        as_of: date,
        started: float,
        context: _RunContext,
        error: AppException,
    ) -> None:
        logger.error(f"Recalculation of entity {entity_id} failed: {error.message}")
        result = context.result
        await write_calculation_log(
            self.session_factory,
            entity_id=entity_id,
            trigger=trigger,
            as_of_date=as_of,
            success=False,
            calculation_time_ms=self._elapsed_ms(started),
            rules_applied=result.rules_applied if result else 0,
            previous_state=context.previous.overall_state if context.previous else None,
            new_state=None,
            is_degraded=result.is_degraded if result else False,
            errors=[f"{error.code.value}: {error.message}"] + (result.errors if result else []),
            warnings=result.warnings if result else [],
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)


# =============================================================================
# BATCH
# =============================================================================

@dataclass
class BatchResult:
    """Summary of one batch recalculation."""
    as_of_date: date
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    retries: int = 0
    states: Dict[str, OverallState] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "as_of_date": self.as_of_date.isoformat(),
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retries": self.retries,
            "states": {entity_id: state.value for entity_id, state in self.states.items()},
            "failures": self.failures,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class ComplianceBatchRunner:
    """
    Recalculates many entities concurrently.

    One catalog snapshot is pinned for the whole batch. Entities run under a
    bounded worker pool; ConcurrencyConflict is retried with exponential
    backoff and any other failure is recorded without stopping the batch.
    """

    def __init__(
        self,
        engine: ComplianceStateEngine,
        pool_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.engine = engine
        self.pool_size = pool_size or settings.recalc_worker_pool_size
        self.max_retries = settings.recalc_max_retries if max_retries is None else max_retries
        self.retry_base_delay = settings.recalc_retry_base_delay if retry_base_delay is None else retry_base_delay

    async def run(
        self,
        entity_ids: Optional[Sequence[uuid.UUID]] = None,
        as_of_date: Optional[date] = None,
        trigger: CalculationTrigger = CalculationTrigger.SCHEDULED,
    ) -> BatchResult:
        """Recalculate ``entity_ids`` (all active entities when omitted)."""
        as_of = as_of_date or date.today()
        batch = BatchResult(as_of_date=as_of)

        async with self.engine.session_factory() as db:
            snapshot = await RuleCatalog(db).load_snapshot(as_of)
            if entity_ids is None:
                entity_ids = await self.engine.profile_provider.list_active_entity_ids(db)

        batch.total = len(entity_ids)
        semaphore = asyncio.Semaphore(self.pool_size)

        async def worker(entity_id: uuid.UUID) -> None:
            async with semaphore:
                try:
                    state = await self._recalculate_with_retry(entity_id, as_of, trigger, snapshot, batch)
                except AppException as exc:
                    batch.failed += 1
                    batch.failures[str(entity_id)] = f"{exc.code.value}: {exc.message}"
                    return
                except Exception as exc:
                    logger.exception(f"Unexpected failure recalculating entity {entity_id}")
                    batch.failed += 1
                    batch.failures[str(entity_id)] = f"INTERNAL_ERROR: {exc}"
                    return
                batch.succeeded += 1
                batch.states[str(entity_id)] = state.overall_state

        await asyncio.gather(*(worker(entity_id) for entity_id in entity_ids))

        batch.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Batch recalculation as of {as_of}: {batch.succeeded}/{batch.total} succeeded, "
            f"{batch.failed} failed, {batch.retries} retries"
        )
        return batch

    async def _recalculate_with_retry(
        self,
        entity_id: uuid.UUID,
        as_of: date,
        trigger: CalculationTrigger,
        snapshot: CatalogSnapshot,
        batch: BatchResult,
    ) -> ComplianceState:
        attempt = 0
        while True:
            try:
                return await self.engine.recalculate(entity_id, as_of, trigger, snapshot=snapshot)
            except ConcurrencyConflict:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_base_delay * (2 ** attempt)
                attempt += 1
                batch.retries += 1
                logger.warning(f"Conflict on entity {entity_id}; retry {attempt} in {delay:.2f}s")
                await asyncio.sleep(delay)
