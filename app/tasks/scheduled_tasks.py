"""
DigiComply - Background Tasks

Recalculation job definitions. They run either under Celery (see
celery_tasks) or directly through TaskRunner during development.
"""

import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.models.compliance_state import CalculationTrigger, ComplianceState
from app.models.entity import BusinessEntity
from app.services.compliance_engine import ComplianceBatchRunner, ComplianceStateEngine

logger = logging.getLogger(__name__)


# ===========================================
# SCHEDULED TASK: DAILY RECALCULATION
# ===========================================

async def recalculate_all_entities(
    session_factory: async_sessionmaker,
    as_of_date: Optional[date] = None,
    entity_ids: Optional[List[uuid.UUID]] = None,
) -> Dict[str, Any]:
    """
    Recalculate every active entity.
    Should run daily so time-driven transitions are picked up.
    """
    runner = ComplianceBatchRunner(ComplianceStateEngine(session_factory))
    result = await runner.run(
        entity_ids=entity_ids,
        as_of_date=as_of_date,
        trigger=CalculationTrigger.SCHEDULED,
    )
    return result.to_dict()


# ===========================================
# ON-DEMAND TASK: SINGLE ENTITY
# ===========================================

async def recalculate_entity(
    session_factory: async_sessionmaker,
    entity_id: uuid.UUID,
    as_of_date: Optional[date] = None,
    trigger: CalculationTrigger = CalculationTrigger.MANUAL,
) -> Dict[str, Any]:
    """Recalculate one entity and return a compact result."""
    state = await ComplianceStateEngine(session_factory).recalculate(
        entity_id, as_of_date=as_of_date, trigger=trigger,
    )
    return {
        "entity_id": str(state.entity_id),
        "overall_state": state.overall_state.value,
        "overall_risk_score": float(state.overall_risk_score),
        "version": state.version,
        "as_of_date": state.as_of_date.isoformat(),
    }


# ===========================================
# CATCH-UP TASK: STALE STATES
# ===========================================

async def find_stale_entities(session_factory: async_sessionmaker, as_of_date: date) -> List[uuid.UUID]:
    """Active entities with no state, or a state calculated for an earlier date."""
    async with session_factory() as db:
        result = await db.execute(
            select(BusinessEntity.id)
            .outerjoin(ComplianceState, ComplianceState.entity_id == BusinessEntity.id)
            .where(BusinessEntity.is_active.is_(True))
            .where(or_(
                ComplianceState.id.is_(None),
                ComplianceState.as_of_date < as_of_date,
            ))
            .order_by(BusinessEntity.id)
        )
        return list(result.scalars().all())


async def recalculate_stale_entities(
    session_factory: async_sessionmaker,
    as_of_date: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Recalculate only entities whose state is missing or out of date.
    Used after downtime when the daily run was missed.
    """
    as_of = as_of_date or date.today()
    stale = await find_stale_entities(session_factory, as_of)
    if not stale:
        logger.info(f"No stale compliance states as of {as_of}")
        return {"as_of_date": as_of.isoformat(), "total": 0, "succeeded": 0, "failed": 0}
    logger.info(f"Found {len(stale)} stale compliance states as of {as_of}")
    return await recalculate_all_entities(session_factory, as_of, entity_ids=stale)


# ===========================================
# TASK RUNNER (Development)
# ===========================================

class TaskRunner:
    """
    Simple task runner for development.
    In production, Celery beat drives the same jobs.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def run_task(self, task_func, *args, **kwargs):
        """Run a single job against the configured session factory."""
        try:
            result = await task_func(self.session_factory, *args, **kwargs)
            logger.info(f"Task {task_func.__name__} completed: {result}")
            return result
        except Exception as e:
            logger.error(f"Task {task_func.__name__} failed: {e}")
            raise

    async def run_scheduled_tasks(self, as_of_date: Optional[date] = None) -> Dict[str, Any]:
        """Run every scheduled job once, isolating failures per job."""
        results = {}

        tasks = [
            ("recalculate_stale_entities", recalculate_stale_entities),
        ]

        for name, task_func in tasks:
            try:
                result = await self.run_task(task_func, as_of_date)
                results[name] = {"status": "success", "result": result}
            except Exception as e:
                results[name] = {"status": "error", "error": str(e)}

        return results
