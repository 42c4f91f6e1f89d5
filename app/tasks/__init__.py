"""
DigiComply - Background Tasks Package

Compliance recalculation jobs and their Celery wrappers.
"""

from app.tasks.scheduled_tasks import (
    find_stale_entities,
    recalculate_all_entities,
    recalculate_entity,
    recalculate_stale_entities,
    TaskRunner,
)

__all__ = [
    "find_stale_entities",
    "recalculate_all_entities",
    "recalculate_entity",
    "recalculate_stale_entities",
    "TaskRunner",
]
