"""
DigiComply - Compliance State Router

API endpoints for entity compliance state, history, alerts and filing
signals. Recalculation runs through the compliance state engine; reads
come from the persisted state tables.
"""

import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_async_session, get_session_factory
from app.models.compliance_filing import FilingStatus
from app.models.compliance_state import CalculationTrigger
from app.services.compliance_engine import ComplianceBatchRunner, ComplianceStateEngine
from app.services.compliance_state_service import ComplianceStateService


router = APIRouter(prefix="/compliance-state", tags=["Compliance State"])


# ===========================================
# REQUEST/RESPONSE SCHEMAS
# ===========================================

class RecalculateRequest(BaseModel):
    """Request schema for an on-demand recalculation."""
    as_of_date: Optional[date] = None
    trigger: CalculationTrigger = CalculationTrigger.MANUAL


class RecalculateAllRequest(BaseModel):
    """Request schema for a batch recalculation."""
    as_of_date: Optional[date] = None
    entity_ids: Optional[List[uuid.UUID]] = None


class AcknowledgeAlertRequest(BaseModel):
    """Request schema for acknowledging an alert."""
    acknowledged_by: str = Field(..., min_length=1, max_length=255)


class RecordFilingRequest(BaseModel):
    """Request schema for a filing completion, waiver or extension signal."""
    rule_code: str = Field(..., min_length=1, max_length=100)
    status: FilingStatus = FilingStatus.COMPLETED
    period_key: Optional[str] = Field(None, max_length=50)
    filed_on: Optional[date] = None
    extended_due_date: Optional[date] = None
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    recorded_by: Optional[str] = Field(None, max_length=255)
    recalculate: bool = True


class ComplianceStateResponse(BaseModel):
    """Response schema for the current compliance state."""
    entity_id: uuid.UUID
    overall_state: str
    overall_risk_score: float
    total_penalty_exposure: float
    total_overdue_items: int
    total_upcoming_items: int
    next_critical_deadline: Optional[date]
    next_critical_action: Optional[str]
    days_until_next_deadline: Optional[int]
    domains: List[Dict[str, Any]]
    requirements: List[Dict[str, Any]]
    as_of_date: date
    calculated_at: str
    calculation_version: str
    version: int
    data_completeness_score: float
    is_degraded: bool


class AlertResponse(BaseModel):
    """Response schema for a compliance alert."""
    id: uuid.UUID
    entity_id: uuid.UUID
    rule_code: Optional[str]
    period_key: Optional[str]
    alert_type: str
    severity: str
    title: str
    message: str
    action_required: Optional[str]
    penalty_estimate: Optional[float]
    is_active: bool
    is_acknowledged: bool
    acknowledged_at: Optional[str]
    acknowledged_by: Optional[str]
    triggered_at: str
    expires_at: Optional[str]


# ===========================================
# API ENDPOINTS
# ===========================================

@router.post("/recalculate-all")
async def recalculate_all(
    request: RecalculateAllRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Recalculate every active entity (or the listed ones) with one pinned rule snapshot."""
    runner = ComplianceBatchRunner(ComplianceStateEngine(session_factory))
    result = await runner.run(
        entity_ids=request.entity_ids,
        as_of_date=request.as_of_date,
        trigger=CalculationTrigger.MANUAL,
    )
    return result.to_dict()


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: uuid.UUID,
    request: AcknowledgeAlertRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """Acknowledge an alert. It stays active until the engine expires it."""
    service = ComplianceStateService(db)
    alert = await service.acknowledge_alert(alert_id, request.acknowledged_by)
    return _format_alert(alert)


@router.get("/{entity_id}", response_model=ComplianceStateResponse)
async def get_compliance_state(
    entity_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Get the current compliance state, calculating it on first access."""
    service = ComplianceStateService(db)
    state = await service.get_state(entity_id)
    if state is None:
        await service.ensure_entity(entity_id)
        state = await ComplianceStateEngine(session_factory).recalculate(
            entity_id, trigger=CalculationTrigger.MANUAL,
        )
    return _format_state(state)


@router.post("/{entity_id}/recalculate", response_model=ComplianceStateResponse)
async def recalculate_entity(
    entity_id: uuid.UUID,
    request: Optional[RecalculateRequest] = None,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Recalculate one entity now. Returns 409 when another calculation won the race."""
    request = request or RecalculateRequest()
    state = await ComplianceStateEngine(session_factory).recalculate(
        entity_id,
        as_of_date=request.as_of_date,
        trigger=request.trigger,
    )
    return _format_state(state)


@router.get("/{entity_id}/history")
async def get_state_history(
    entity_id: uuid.UUID,
    limit: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_async_session),
):
    """History snapshots, newest first."""
    service = ComplianceStateService(db)
    await service.ensure_entity(entity_id)
    history = await service.get_history(entity_id, limit=limit)
    return {
        "entity_id": entity_id,
        "history": [
            {
                "id": h.id,
                "state": h.state.value,
                "previous_state": h.previous_state.value if h.previous_state else None,
                "risk_score": float(h.risk_score),
                "previous_risk_score": float(h.previous_risk_score) if h.previous_risk_score is not None else None,
                "penalty_exposure": float(h.penalty_exposure),
                "overdue_items": h.overdue_items,
                "as_of_date": h.as_of_date,
                "recorded_at": h.recorded_at.isoformat(),
            }
            for h in history
        ],
        "total": len(history),
    }


@router.get("/{entity_id}/alerts")
async def get_active_alerts(
    entity_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    """Active alerts grouped by severity."""
    service = ComplianceStateService(db)
    await service.ensure_entity(entity_id)
    grouped = await service.get_alerts_by_severity(entity_id)
    return {
        "entity_id": entity_id,
        "alerts": {
            severity: [_format_alert(a) for a in alerts]
            for severity, alerts in grouped.items()
        },
        "total": sum(len(alerts) for alerts in grouped.values()),
    }


@router.get("/{entity_id}/summary")
async def get_state_summary(
    entity_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Dashboard summary, with degraded and stale indicators."""
    service = ComplianceStateService(db)
    state = await service.get_state(entity_id)
    if state is None:
        await service.ensure_entity(entity_id)
        state = await ComplianceStateEngine(session_factory).recalculate(entity_id)
    return await service.build_summary(state)


@router.get("/{entity_id}/score")
async def get_compliance_score(
    entity_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Compliance score (100 - risk score) with grade and per-domain scores."""
    service = ComplianceStateService(db)
    state = await service.get_state(entity_id)
    if state is None:
        await service.ensure_entity(entity_id)
        state = await ComplianceStateEngine(session_factory).recalculate(entity_id)
    return await service.build_score(state)


@router.get("/{entity_id}/calculation-logs")
async def get_calculation_logs(
    entity_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_async_session),
):
    """Recent calculation attempts, newest first."""
    service = ComplianceStateService(db)
    logs = await service.get_calculation_logs(entity_id, limit=limit)
    return {
        "entity_id": entity_id,
        "logs": [
            {
                "id": log.id,
                "trigger": log.trigger.value,
                "as_of_date": log.as_of_date,
                "success": log.success,
                "calculation_time_ms": log.calculation_time_ms,
                "rules_applied": log.rules_applied,
                "previous_state": log.previous_state.value if log.previous_state else None,
                "new_state": log.new_state.value if log.new_state else None,
                "state_changed": log.state_changed,
                "history_written": log.history_written,
                "is_degraded": log.is_degraded,
                "errors": log.errors,
                "warnings": log.warnings,
                "calculated_at": log.calculated_at.isoformat(),
            }
            for log in logs
        ],
        "total": len(logs),
    }


@router.post("/{entity_id}/filings", status_code=status.HTTP_201_CREATED)
async def record_filing(
    entity_id: uuid.UUID,
    request: RecordFilingRequest,
    db: AsyncSession = Depends(get_async_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Record a filing signal and, by default, recalculate the entity."""
    service = ComplianceStateService(db)
    filing = await service.record_filing(
        entity_id=entity_id,
        rule_code=request.rule_code,
        status=request.status,
        period_key=request.period_key,
        filed_on=request.filed_on,
        extended_due_date=request.extended_due_date,
        reference=request.reference,
        notes=request.notes,
        recorded_by=request.recorded_by,
    )

    state = None
    if request.recalculate:
        state = await ComplianceStateEngine(session_factory).recalculate(
            entity_id, trigger=CalculationTrigger.FILING_RECORDED,
        )

    return {
        "filing": {
            "id": filing.id,
            "rule_code": filing.rule_code,
            "period_key": filing.period_key,
            "status": filing.status.value,
            "filed_on": filing.filed_on,
            "extended_due_date": filing.extended_due_date,
        },
        "state": _format_state(state) if state else None,
    }


# ===========================================
# HELPERS
# ===========================================

def _format_state(state) -> dict:
    """Format compliance state for response."""
    return {
        "entity_id": state.entity_id,
        "overall_state": state.overall_state.value,
        "overall_risk_score": float(state.overall_risk_score),
        "total_penalty_exposure": float(state.total_penalty_exposure),
        "total_overdue_items": state.total_overdue_items,
        "total_upcoming_items": state.total_upcoming_items,
        "next_critical_deadline": state.next_critical_deadline,
        "next_critical_action": state.next_critical_action,
        "days_until_next_deadline": state.days_until_next_deadline,
        "domains": state.domain_states or [],
        "requirements": state.requirement_states or [],
        "as_of_date": state.as_of_date,
        "calculated_at": state.calculated_at.isoformat(),
        "calculation_version": state.calculation_version,
        "version": state.version,
        "data_completeness_score": float(state.data_completeness_score),
        "is_degraded": state.is_degraded,
    }


def _format_alert(alert) -> dict:
    """Format alert for response."""
    return {
        "id": alert.id,
        "entity_id": alert.entity_id,
        "rule_code": alert.rule_code,
        "period_key": alert.period_key,
        "alert_type": alert.alert_type.value,
        "severity": alert.severity.value,
        "title": alert.title,
        "message": alert.message,
        "action_required": alert.action_required,
        "penalty_estimate": float(alert.penalty_estimate) if alert.penalty_estimate is not None else None,
        "is_active": alert.is_active,
        "is_acknowledged": alert.is_acknowledged,
        "acknowledged_at": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
        "acknowledged_by": alert.acknowledged_by,
        "triggered_at": alert.triggered_at.isoformat(),
        "expires_at": alert.expires_at.isoformat() if alert.expires_at else None,
    }
