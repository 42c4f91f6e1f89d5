"""
DigiComply - Compliance State Store

Persists engine results:

- compliance_states: one row per entity, replaced as a whole under an
  optimistic version check
- compliance_state_history: snapshot appended on material change
- state_calculation_logs: one row per attempt, written in its own
  transaction so failures are recorded even when the state write rolled back
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.compliance_state import (
    CalculationTrigger,
    ComplianceState,
    ComplianceStateHistory,
    OverallState,
    StateCalculationLog,
)
from app.schemas.compliance_state import EntityComplianceResult
from app.utils.error_handling import ConcurrencyConflict, PersistenceError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreviousState:
    """What the store held before a calculation, detached from the session."""
    overall_state: OverallState
    risk_score: Decimal
    penalty_exposure: Decimal
    version: int
    requirements: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_model(cls, state: ComplianceState) -> "PreviousState":
        return cls(
            overall_state=state.overall_state,
            risk_score=Decimal(str(state.overall_risk_score)),
            penalty_exposure=Decimal(str(state.total_penalty_exposure)),
            version=state.version,
            requirements={
                item["rule_code"]: item
                for item in (state.requirement_states or [])
                if item.get("rule_code")
            },
        )


@dataclass(frozen=True)
class SaveOutcome:
    state: ComplianceState
    state_changed: bool
    history_written: bool


class StateStore:
    """Reads and replaces the current compliance state of an entity."""

    def __init__(
        self,
        db: AsyncSession,
        noise_threshold: Optional[float] = None,
        calculation_version: Optional[str] = None,
    ):
        self.db = db
        threshold = settings.history_noise_threshold if noise_threshold is None else noise_threshold
        self.noise_threshold = Decimal(str(threshold))
        self.calculation_version = calculation_version or settings.calculation_version

    async def get_current(self, entity_id: uuid.UUID) -> Optional[ComplianceState]:
        result = await self.db.execute(
            select(ComplianceState)
            .where(ComplianceState.entity_id == entity_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def is_material_change(self, previous: Optional[PreviousState], result: EntityComplianceResult) -> bool:
        """A first calculation, a state transition or a risk move beyond the noise threshold."""
        if previous is None:
            return True
        if previous.overall_state != result.overall_state:
            return True
        return abs(result.overall_risk_score - previous.risk_score) > self.noise_threshold

    def _row_values(self, result: EntityComplianceResult, calculated_at: datetime) -> Dict[str, Any]:
        return {
            "overall_state": result.overall_state,
            "overall_risk_score": result.overall_risk_score,
            "total_penalty_exposure": result.total_penalty_exposure,
            "total_overdue_items": result.total_overdue_items,
            "total_upcoming_items": result.total_upcoming_items,
            "next_critical_deadline": result.next_critical_deadline,
            "next_critical_action": result.next_critical_action,
            "days_until_next_deadline": result.days_until_next_deadline,
            "domain_states": [d.model_dump(mode="json") for d in result.domains],
            "requirement_states": [r.model_dump(mode="json") for r in result.requirements],
            "as_of_date": result.as_of_date,
            "calculated_at": calculated_at,
            "calculation_version": self.calculation_version,
            "data_completeness_score": result.data_completeness_score,
            "is_degraded": result.is_degraded,
        }

    async def save(
        self,
        result: EntityComplianceResult,
        previous: Optional[PreviousState],
    ) -> SaveOutcome:
        """
        Replace the entity's state row and append history on material change.

        Does not commit; the caller owns the transaction.

        Raises:
            ConcurrencyConflict: the row was written by someone else since it was read
            PersistenceError: any other storage failure
        """
        entity_id = result.entity_id
        calculated_at = datetime.now(timezone.utc)
        values = self._row_values(result, calculated_at)

        try:
            if previous is None:
                self.db.add(ComplianceState(entity_id=entity_id, version=1, **values))
                await self.db.flush()
            else:
                updated = await self.db.execute(
                    update(ComplianceState)
                    .where(
                        ComplianceState.entity_id == entity_id,
                        ComplianceState.version == previous.version,
                    )
                    .values(version=previous.version + 1, **values)
                    .execution_options(synchronize_session=False)
                )
                if updated.rowcount != 1:
                    raise ConcurrencyConflict(entity_id, previous.version)
        except IntegrityError as exc:
            # Another calculation inserted the first row concurrently
            raise ConcurrencyConflict(entity_id, None) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to write compliance state for entity {entity_id}", exc) from exc

        history_written = False
        if self.is_material_change(previous, result):
            self.db.add(ComplianceStateHistory(
                entity_id=entity_id,
                state=result.overall_state,
                previous_state=previous.overall_state if previous else None,
                risk_score=result.overall_risk_score,
                previous_risk_score=previous.risk_score if previous else None,
                penalty_exposure=result.total_penalty_exposure,
                overdue_items=result.total_overdue_items,
                as_of_date=result.as_of_date,
                snapshot_data=result.model_dump(mode="json", exclude={"errors", "warnings"}),
                recorded_at=calculated_at,
            ))
            history_written = True

        try:
            await self.db.flush()
            state = await self.get_current(entity_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to write compliance history for entity {entity_id}", exc) from exc

        return SaveOutcome(
            state=state,
            state_changed=previous is None or previous.overall_state != result.overall_state,
            history_written=history_written,
        )


async def write_calculation_log(
    session_factory: async_sessionmaker,
    entity_id: uuid.UUID,
    trigger: CalculationTrigger,
    as_of_date: date,
    success: bool,
    calculation_time_ms: int,
    rules_applied: int = 0,
    previous_state: Optional[OverallState] = None,
    new_state: Optional[OverallState] = None,
    state_changed: bool = False,
    history_written: bool = False,
    is_degraded: bool = False,
    errors: Optional[List[str]] = None,
    warnings: Optional[List[str]] = None,
) -> None:
    """
    Append a calculation log row in a dedicated transaction.

    Failures here are logged, never raised: the log must not turn a
    successful calculation into a failed one.
    """
    errors = errors or []
    warnings = warnings or []
    try:
        async with session_factory() as db:
            db.add(StateCalculationLog(
                entity_id=entity_id,
                trigger=trigger,
                as_of_date=as_of_date,
                calculation_version=settings.calculation_version,
                success=success,
                calculation_time_ms=calculation_time_ms,
                rules_applied=rules_applied,
                previous_state=previous_state,
                new_state=new_state,
                state_changed=state_changed,
                history_written=history_written,
                is_degraded=is_degraded,
                errors_count=len(errors),
                warnings_count=len(warnings),
                errors=errors,
                warnings=warnings,
                calculated_at=datetime.now(timezone.utc),
            ))
            await db.commit()
    except SQLAlchemyError as exc:
        logger.error(f"Failed to write calculation log for entity {entity_id}: {exc}", exc_info=True)
