"""
DigiComply - Engine Input Providers

Read the engine's inputs from collaborator-owned tables:

- EntityProfileProvider: business_entities -> EntityProfile
- FilingSignalProvider: compliance_filings -> FilingSignals
- HolidayCalendarProvider: public_holidays + weekend setting -> HolidayCalendar

Each provider can be swapped for another source by passing a different
implementation to the engine.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.compliance_filing import ComplianceFiling, PublicHoliday
from app.models.entity import BusinessEntity
from app.schemas.compliance_state import EntityProfile, FilingSignal, FilingSignals
from app.services.compliance_engine.due_dates import HolidayCalendar
from app.utils.error_handling import EntityNotFoundException


logger = logging.getLogger(__name__)


def _parse_event_dates(raw: Optional[Dict[str, str]], entity_id: uuid.UUID) -> Dict[str, date]:
    event_dates: Dict[str, date] = {}
    for event, value in (raw or {}).items():
        if not value:
            continue
        try:
            event_dates[event] = date.fromisoformat(str(value)[:10])
        except ValueError:
            logger.warning(f"Ignoring unparseable {event} date '{value}' on entity {entity_id}")
    return event_dates


class EntityProfileProvider:
    """Builds entity profiles from business_entities."""

    async def get_profile(self, db: AsyncSession, entity_id: uuid.UUID) -> EntityProfile:
        result = await db.execute(
            select(BusinessEntity).where(BusinessEntity.id == entity_id)
        )
        entity = result.scalar_one_or_none()
        if entity is None or not entity.is_active:
            raise EntityNotFoundException(entity_id)

        return EntityProfile(
            entity_id=entity.id,
            name=entity.name,
            entity_type=entity.entity_type,
            turnover=entity.annual_turnover,
            employee_count=entity.employee_count,
            state=entity.state,
            has_gst=entity.is_gst_registered,
            has_pf=entity.is_pf_registered,
            has_esi=entity.is_esi_registered,
            incorporation_date=entity.incorporation_date,
            event_dates=_parse_event_dates(entity.event_dates, entity.id),
        )

    async def list_active_entity_ids(self, db: AsyncSession) -> List[uuid.UUID]:
        result = await db.execute(
            select(BusinessEntity.id)
            .where(BusinessEntity.is_active.is_(True))
            .order_by(BusinessEntity.id)
        )
        return list(result.scalars().all())


class FilingSignalProvider:
    """Reads filing completion, waiver and extension signals."""

    async def get_signals(self, db: AsyncSession, entity_id: uuid.UUID) -> FilingSignals:
        result = await db.execute(
            select(ComplianceFiling)
            .where(ComplianceFiling.entity_id == entity_id)
            .order_by(ComplianceFiling.created_at)
        )
        return FilingSignals(signals=tuple(
            FilingSignal(
                rule_code=filing.rule_code,
                period_key=filing.period_key,
                status=filing.status,
                filed_on=filing.filed_on,
                extended_due_date=filing.extended_due_date,
            )
            for filing in result.scalars().all()
        ))


class HolidayCalendarProvider:
    """Builds the holiday calendar from public_holidays and the weekend setting."""

    def __init__(self, weekend_days: Optional[List[int]] = None):
        self.weekend_days = settings.weekend_days_list if weekend_days is None else weekend_days

    async def get_calendar(self, db: AsyncSession) -> HolidayCalendar:
        result = await db.execute(select(PublicHoliday.jurisdiction, PublicHoliday.holiday_date))

        holidays: Dict[str, List[date]] = defaultdict(list)
        for jurisdiction, holiday_date in result.all():
            holidays[jurisdiction].append(holiday_date)

        return HolidayCalendar(holidays=holidays, weekend_days=self.weekend_days)
