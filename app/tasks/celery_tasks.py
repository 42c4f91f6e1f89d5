"""
DigiComply - Celery Tasks

Background tasks for compliance state recalculation.
"""

import asyncio
import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from celery import shared_task

from app.config import settings
from app.database import async_session_factory
from app.models.compliance_state import CalculationTrigger
from app.tasks.scheduled_tasks import (
    recalculate_all_entities,
    recalculate_entity,
    recalculate_stale_entities,
)
from app.utils.error_handling import ConcurrencyConflict, PersistenceError

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


# ===========================================
# SINGLE ENTITY
# ===========================================

@shared_task(
    name='app.tasks.celery_tasks.recalculate_entity_task',
    autoretry_for=(ConcurrencyConflict, PersistenceError),
    retry_backoff=True,
    retry_backoff_max=60,
    retry_jitter=True,
    max_retries=settings.recalc_max_retries,
)
def recalculate_entity_task(
    entity_id: str,
    as_of_date: Optional[str] = None,
    trigger: str = CalculationTrigger.MANUAL.value,
) -> Dict[str, Any]:
    """
    Recalculate one entity.

    Args:
        entity_id: Entity UUID as a string
        as_of_date: ISO date; today when omitted
        trigger: CalculationTrigger value recorded in the calculation log
    """
    return run_async(recalculate_entity(
        async_session_factory,
        uuid.UUID(entity_id),
        as_of_date=_parse_date(as_of_date),
        trigger=CalculationTrigger(trigger),
    ))


# ===========================================
# BATCH
# ===========================================

@shared_task(name='app.tasks.celery_tasks.recalculate_all_entities_task')
def recalculate_all_entities_task(
    as_of_date: Optional[str] = None,
    entity_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Recalculate every active entity with one pinned rule snapshot.

    Runs daily from the beat schedule. Per-entity failures are reported in
    the result and never fail the task.
    """
    result = run_async(recalculate_all_entities(
        async_session_factory,
        as_of_date=_parse_date(as_of_date),
        entity_ids=[uuid.UUID(e) for e in entity_ids] if entity_ids else None,
    ))
    logger.info(f"Daily recalculation complete: {result['succeeded']}/{result['total']} succeeded")
    return result


@shared_task(name='app.tasks.celery_tasks.recalculate_stale_entities_task')
def recalculate_stale_entities_task(as_of_date: Optional[str] = None) -> Dict[str, Any]:
    """Recalculate entities whose state is missing or older than the given date."""
    return run_async(recalculate_stale_entities(
        async_session_factory,
        as_of_date=_parse_date(as_of_date),
    ))
