"""
DigiComply - Alert Emitter

Diffs the previous and new requirement statuses of an entity and raises,
refreshes or expires alerts.

Raised on transitions:
- UPCOMING      requirement enters AMBER before its breach date
- OVERDUE       requirement crosses its breach date
- PENALTY_RISK  estimated penalty has moved by at least the materiality
                threshold since it was last alerted on (the active
                PENALTY_RISK alert, else the OVERDUE alert)
- STATE_CHANGE  overall entity state changes (no previous state counts as GREEN)

An active, unacknowledged alert for the same (entity, rule, type) is
refreshed in place instead of duplicated.

Expired automatically:
- all alerts of a rule once its requirement is COMPLIANT/WAIVED, moves to a
  new period, or stops applying
- UPCOMING alerts once the requirement is breached
- the STATE_CHANGE alert once the entity is GREEN again
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Collection, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.compliance_state import (
    AlertSeverity,
    AlertType,
    ComplianceAlert,
    OverallState,
    RequirementStatusCode,
)
from app.schemas.compliance_state import EntityComplianceResult, RequirementStatus
from app.services.compliance_engine.risk_aggregator import SETTLED_STATUSES
from app.services.compliance_engine.state_store import PreviousState


logger = logging.getLogger(__name__)

AlertKey = Tuple[Optional[str], AlertType]

_STATE_SEVERITY = {
    OverallState.RED: AlertSeverity.CRITICAL,
    OverallState.AMBER: AlertSeverity.WARNING,
    OverallState.GREEN: AlertSeverity.INFO,
}


@dataclass
class AlertOutcome:
    created: List[ComplianceAlert] = field(default_factory=list)
    refreshed: List[ComplianceAlert] = field(default_factory=list)
    expired: List[ComplianceAlert] = field(default_factory=list)


@dataclass(frozen=True)
class _PreviousRequirement:
    period_key: Optional[str]
    status: RequirementStatusCode
    is_breached: bool


def _previous_requirement(raw: Optional[dict], period_key: str) -> _PreviousRequirement:
    """Previous status of the same period; a new period restarts at NOT_YET_DUE."""
    if not raw or raw.get("period_key") != period_key:
        return _PreviousRequirement(period_key, RequirementStatusCode.NOT_YET_DUE, False)
    return _PreviousRequirement(
        period_key=raw.get("period_key"),
        status=RequirementStatusCode(raw.get("status", RequirementStatusCode.NOT_YET_DUE.value)),
        is_breached=bool(raw.get("is_breached")),
    )


class AlertEmitter:
    """Creates, refreshes and expires compliance alerts for one entity."""

    def __init__(self, db: AsyncSession, materiality_threshold: Optional[float] = None):
        self.db = db
        threshold = settings.penalty_materiality_threshold if materiality_threshold is None else materiality_threshold
        self.materiality_threshold = Decimal(str(threshold))

    async def get_active_alerts(self, entity_id: uuid.UUID) -> List[ComplianceAlert]:
        result = await self.db.execute(
            select(ComplianceAlert)
            .where(
                ComplianceAlert.entity_id == entity_id,
                ComplianceAlert.is_active.is_(True),
            )
            .order_by(ComplianceAlert.triggered_at)
        )
        return list(result.scalars().all())

    async def emit(
        self,
        previous: Optional[PreviousState],
        result: EntityComplianceResult,
        retain_rule_codes: Collection[str] = (),
    ) -> AlertOutcome:
        """
        Apply the alert diff for one calculation. Does not commit.

        ``retain_rule_codes`` lists rules that failed to evaluate this run;
        their alerts are left as they are.
        """
        now = datetime.now(timezone.utc)
        outcome = AlertOutcome()

        active: Dict[AlertKey, List[ComplianceAlert]] = {}
        for alert in await self.get_active_alerts(result.entity_id):
            active.setdefault((alert.rule_code, alert.alert_type), []).append(alert)

        previous_requirements = previous.requirements if previous else {}
        evaluated_codes = set()

        for requirement in result.requirements:
            code = requirement.rule_code
            evaluated_codes.add(code)
            prior = _previous_requirement(previous_requirements.get(code), requirement.period_key)

            # Alerts raised for an earlier period no longer apply
            for alert_type in AlertType:
                for alert in list(active.get((code, alert_type), [])):
                    if alert.period_key != requirement.period_key:
                        self._expire(alert, now, active, outcome)

            if requirement.status in SETTLED_STATUSES:
                self._expire_rule(code, now, active, outcome)
                continue

            if requirement.is_breached:
                for alert in list(active.get((code, AlertType.UPCOMING), [])):
                    self._expire(alert, now, active, outcome)

            if (
                requirement.status == RequirementStatusCode.AMBER
                and not requirement.is_breached
                and prior.status != RequirementStatusCode.AMBER
            ):
                self._raise(result.entity_id, AlertType.UPCOMING, requirement, now, active, outcome)

            if requirement.is_breached and not prior.is_breached:
                self._raise(result.entity_id, AlertType.OVERDUE, requirement, now, active, outcome)

            delta = requirement.penalty_exposure - self._last_alerted_exposure(code, active)
            if requirement.penalty_exposure > 0 and abs(delta) >= self.materiality_threshold:
                self._raise(result.entity_id, AlertType.PENALTY_RISK, requirement, now, active, outcome)

        # Rules that dropped out of scope
        for (code, _), alerts in list(active.items()):
            if code is None or code in evaluated_codes or code in retain_rule_codes:
                continue
            for alert in list(alerts):
                self._expire(alert, now, active, outcome)

        previous_overall = previous.overall_state if previous else OverallState.GREEN
        if result.overall_state != previous_overall:
            self._raise_state_change(result, previous_overall, now, active, outcome)
        if result.overall_state == OverallState.GREEN:
            for alert in list(active.get((None, AlertType.STATE_CHANGE), [])):
                self._expire(alert, now, active, outcome)

        await self.db.flush()

        if outcome.created or outcome.expired:
            logger.info(
                f"Alerts for entity {result.entity_id}: {len(outcome.created)} created, "
                f"{len(outcome.refreshed)} refreshed, {len(outcome.expired)} expired"
            )
        return outcome

    # ===========================================
    # HELPERS
    # ===========================================

    def _expire(self, alert: ComplianceAlert, now: datetime, active: Dict[AlertKey, List[ComplianceAlert]], outcome: AlertOutcome) -> None:
        alert.is_active = False
        alert.expired_at = now
        bucket = active.get((alert.rule_code, alert.alert_type), [])
        if alert in bucket:
            bucket.remove(alert)
        outcome.expired.append(alert)

    def _last_alerted_exposure(self, rule_code: str, active: Dict[AlertKey, List[ComplianceAlert]]) -> Decimal:
        for alert_type in (AlertType.PENALTY_RISK, AlertType.OVERDUE):
            alerts = active.get((rule_code, alert_type))
            if alerts:
                return alerts[-1].penalty_estimate or Decimal("0")
        return Decimal("0")

    def _expire_rule(self, rule_code: str, now: datetime, active: Dict[AlertKey, List[ComplianceAlert]], outcome: AlertOutcome) -> None:
        for alert_type in AlertType:
            for alert in list(active.get((rule_code, alert_type), [])):
                self._expire(alert, now, active, outcome)

    def _content(self, alert_type: AlertType, requirement: RequirementStatus) -> Dict:
        label = f"{requirement.name} ({requirement.period_key})"
        if alert_type == AlertType.UPCOMING:
            severity = AlertSeverity.CRITICAL if requirement.priority == "critical" else AlertSeverity.WARNING
            return {
                "severity": severity,
                "title": f"{requirement.name} due {requirement.due_date.isoformat()}",
                "message": f"{label} is due in {requirement.days_until_due} days.",
                "expires_at": datetime.combine(requirement.breach_date, time.max, tzinfo=timezone.utc),
            }
        if alert_type == AlertType.OVERDUE:
            return {
                "severity": AlertSeverity.CRITICAL,
                "title": f"{requirement.name} overdue",
                "message": (
                    f"{label} was due on {requirement.due_date.isoformat()} and is overdue by "
                    f"{requirement.overdue_days} days. Estimated penalty: {requirement.penalty_exposure}."
                ),
                "expires_at": None,
            }
        return {
            "severity": AlertSeverity.WARNING,
            "title": f"Penalty exposure on {requirement.name}",
            "message": f"Estimated penalty for {label} is now {requirement.penalty_exposure}.",
            "expires_at": None,
        }

    def _raise(
        self,
        entity_id: uuid.UUID,
        alert_type: AlertType,
        requirement: RequirementStatus,
        now: datetime,
        active: Dict[AlertKey, List[ComplianceAlert]],
        outcome: AlertOutcome,
    ) -> None:
        content = self._content(alert_type, requirement)
        self._upsert(
            entity_id=entity_id,
            key=(requirement.rule_code, alert_type),
            period_key=requirement.period_key,
            action_required=requirement.action_required,
            penalty_estimate=requirement.penalty_exposure,
            now=now,
            active=active,
            outcome=outcome,
            **content,
        )

    def _raise_state_change(
        self,
        result: EntityComplianceResult,
        previous_overall: OverallState,
        now: datetime,
        active: Dict[AlertKey, List[ComplianceAlert]],
        outcome: AlertOutcome,
    ) -> None:
        self._upsert(
            entity_id=result.entity_id,
            key=(None, AlertType.STATE_CHANGE),
            period_key=None,
            severity=_STATE_SEVERITY[result.overall_state],
            title=f"Compliance state changed to {result.overall_state.value}",
            message=(
                f"Compliance state moved from {previous_overall.value} to {result.overall_state.value} "
                f"(risk score {result.overall_risk_score}, {result.total_overdue_items} overdue)."
            ),
            action_required=result.next_critical_action,
            penalty_estimate=result.total_penalty_exposure,
            expires_at=None,
            now=now,
            active=active,
            outcome=outcome,
        )

    def _upsert(
        self,
        entity_id: uuid.UUID,
        key: AlertKey,
        period_key: Optional[str],
        severity: AlertSeverity,
        title: str,
        message: str,
        action_required: Optional[str],
        penalty_estimate: Optional[Decimal],
        expires_at: Optional[datetime],
        now: datetime,
        active: Dict[AlertKey, List[ComplianceAlert]],
        outcome: AlertOutcome,
    ) -> None:
        rule_code, alert_type = key
        bucket = active.setdefault(key, [])

        for existing in list(bucket):
            if existing.is_acknowledged:
                self._expire(existing, now, active, outcome)
                continue
            existing.period_key = period_key
            existing.severity = severity
            existing.title = title
            existing.message = message
            existing.action_required = action_required
            existing.penalty_estimate = penalty_estimate
            existing.expires_at = expires_at
            outcome.refreshed.append(existing)
            return

        alert = ComplianceAlert(
            entity_id=entity_id,
            rule_code=rule_code,
            period_key=period_key,
            alert_type=alert_type,
            severity=severity,
            title=title,
            message=message,
            action_required=action_required,
            penalty_estimate=penalty_estimate,
            is_active=True,
            is_acknowledged=False,
            triggered_at=now,
            expires_at=expires_at,
        )
        self.db.add(alert)
        bucket.append(alert)
        outcome.created.append(alert)
