"""
DigiComply - Compliance State Service

Read side of the compliance state engine plus the collaborator operations
around it: alert acknowledgement and filing signals.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.compliance_filing import ComplianceFiling, FilingStatus
from app.models.compliance_state import (
    AlertSeverity,
    ComplianceAlert,
    ComplianceState,
    ComplianceStateHistory,
    StateCalculationLog,
)
from app.models.entity import BusinessEntity
from app.utils.error_handling import (
    AlertNotFoundException,
    EntityNotFoundException,
    ValidationException,
)


def score_grade(score: float) -> str:
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


def score_status(score: float) -> str:
    if score >= 85:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 50:
        return "fair"
    return "poor"


def compliance_score(risk_score: Decimal) -> float:
    """Compliance score is the inverse of risk, clamped to [0, 100]."""
    return max(0.0, min(100.0, 100.0 - float(risk_score)))


class ComplianceStateService:
    """Service for reading compliance state and recording collaborator signals."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def ensure_entity(self, entity_id: uuid.UUID) -> BusinessEntity:
        result = await self.db.execute(
            select(BusinessEntity).where(BusinessEntity.id == entity_id)
        )
        entity = result.scalar_one_or_none()
        if entity is None:
            raise EntityNotFoundException(entity_id)
        return entity

    async def get_state(self, entity_id: uuid.UUID) -> Optional[ComplianceState]:
        result = await self.db.execute(
            select(ComplianceState).where(ComplianceState.entity_id == entity_id)
        )
        return result.scalar_one_or_none()

    async def get_history(self, entity_id: uuid.UUID, limit: int = 30) -> List[ComplianceStateHistory]:
        """History snapshots, newest first."""
        result = await self.db.execute(
            select(ComplianceStateHistory)
            .where(ComplianceStateHistory.entity_id == entity_id)
            .order_by(desc(ComplianceStateHistory.recorded_at))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_active_alerts(self, entity_id: uuid.UUID) -> List[ComplianceAlert]:
        result = await self.db.execute(
            select(ComplianceAlert)
            .where(
                ComplianceAlert.entity_id == entity_id,
                ComplianceAlert.is_active.is_(True),
            )
            .order_by(desc(ComplianceAlert.triggered_at))
        )
        return list(result.scalars().all())

    async def get_alerts_by_severity(self, entity_id: uuid.UUID) -> Dict[str, List[ComplianceAlert]]:
        grouped: Dict[str, List[ComplianceAlert]] = {severity.value: [] for severity in AlertSeverity}
        for alert in await self.get_active_alerts(entity_id):
            grouped[alert.severity.value].append(alert)
        return grouped

    async def acknowledge_alert(self, alert_id: uuid.UUID, acknowledged_by: str) -> ComplianceAlert:
        """Mark an alert acknowledged. The alert stays active until the engine expires it."""
        result = await self.db.execute(
            select(ComplianceAlert).where(ComplianceAlert.id == alert_id)
        )
        alert = result.scalar_one_or_none()
        if alert is None:
            raise AlertNotFoundException(alert_id)

        if not alert.is_acknowledged:
            alert.is_acknowledged = True
            alert.acknowledged_at = datetime.now(timezone.utc)
            alert.acknowledged_by = acknowledged_by
            await self.db.commit()
            await self.db.refresh(alert)
        return alert

    async def get_calculation_logs(self, entity_id: uuid.UUID, limit: int = 20) -> List[StateCalculationLog]:
        result = await self.db.execute(
            select(StateCalculationLog)
            .where(StateCalculationLog.entity_id == entity_id)
            .order_by(desc(StateCalculationLog.calculated_at))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def last_calculation_failed(self, entity_id: uuid.UUID) -> bool:
        logs = await self.get_calculation_logs(entity_id, limit=1)
        return bool(logs) and not logs[0].success

    async def record_filing(
        self,
        entity_id: uuid.UUID,
        rule_code: str,
        status: FilingStatus,
        period_key: Optional[str] = None,
        filed_on: Optional[date] = None,
        extended_due_date: Optional[date] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        recorded_by: Optional[str] = None,
    ) -> ComplianceFiling:
        """Record a completion, waiver or extension signal for a requirement."""
        await self.ensure_entity(entity_id)

        if status == FilingStatus.EXTENDED and extended_due_date is None:
            raise ValidationException("Extension requires extended_due_date", field="extended_due_date")
        if status != FilingStatus.WAIVED and not period_key:
            raise ValidationException("period_key is required for completions and extensions", field="period_key")

        filing = ComplianceFiling(
            entity_id=entity_id,
            rule_code=rule_code,
            period_key=period_key,
            status=status,
            filed_on=filed_on or (date.today() if status == FilingStatus.COMPLETED else None),
            extended_due_date=extended_due_date,
            reference=reference,
            notes=notes,
            recorded_by=recorded_by,
            recorded_at=datetime.now(timezone.utc),
        )
        self.db.add(filing)
        await self.db.commit()
        await self.db.refresh(filing)
        return filing

    async def build_summary(self, state: ComplianceState) -> Dict[str, Any]:
        """Dashboard summary with degraded/stale indicators."""
        last_failed = await self.last_calculation_failed(state.entity_id)
        return {
            "entity_id": state.entity_id,
            "overall_state": state.overall_state.value,
            "overall_risk_score": float(state.overall_risk_score),
            "next_critical_action": state.next_critical_action,
            "next_critical_deadline": state.next_critical_deadline,
            "days_until_next_deadline": state.days_until_next_deadline,
            "total_penalty_exposure": float(state.total_penalty_exposure),
            "total_overdue_items": state.total_overdue_items,
            "total_upcoming_items": state.total_upcoming_items,
            "domains": [
                {
                    "domain": d.get("domain"),
                    "state": d.get("state"),
                    "risk_score": float(d.get("risk_score") or 0),
                    "overdue_requirements": d.get("overdue_requirements", 0),
                }
                for d in (state.domain_states or [])
            ],
            "data_completeness_score": float(state.data_completeness_score),
            "is_degraded": (
                state.is_degraded
                or Decimal(str(state.data_completeness_score)) < Decimal("100")
                or last_failed
            ),
            "is_stale": state.as_of_date < date.today() or last_failed,
            "calculated_at": state.calculated_at,
        }

    async def build_score(self, state: ComplianceState) -> Dict[str, Any]:
        score = compliance_score(state.overall_risk_score)
        history = await self.get_history(state.entity_id, limit=12)
        return {
            "entity_id": state.entity_id,
            "score": round(score, 2),
            "grade": score_grade(score),
            "status": score_status(score),
            "overall_state": state.overall_state.value,
            "domains": [
                {
                    "domain": d.get("domain"),
                    "score": round(compliance_score(Decimal(str(d.get("risk_score") or 0))), 2),
                    "status": score_status(compliance_score(Decimal(str(d.get("risk_score") or 0)))),
                }
                for d in (state.domain_states or [])
            ],
            "timeline": [
                {
                    "recorded_at": h.recorded_at,
                    "score": round(compliance_score(h.risk_score), 2),
                }
                for h in reversed(history)
            ],
        }
