"""
DigiComply - Rule Catalog

Loads effective-dated compliance rules into immutable snapshots and
publishes new rule versions.

A calculation pins one snapshot for its whole run, so a rule published
concurrently never yields a half-old, half-new evaluation.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import desc, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.compliance_rule import ComplianceRule
from app.schemas.compliance_rule import FormulaPenalty, RuleDefinition, RuleVersionDraft
from app.services.compliance_engine.formula import FormulaSyntaxError, compile_formula
from app.utils.error_handling import RuleValidationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogSnapshot:
    """Validated rules effective on one date."""
    as_of_date: date
    rules: Tuple[RuleDefinition, ...]
    rejected: Tuple[RuleValidationError, ...] = ()
    warnings: Tuple[str, ...] = ()
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get(self, rule_code: str) -> Optional[RuleDefinition]:
        for rule in self.rules:
            if rule.rule_code == rule_code:
                return rule
        return None


def validate_rule(row: ComplianceRule) -> RuleDefinition:
    """
    Convert a stored rule row into a typed definition.

    Raises:
        RuleValidationError: the row is malformed or its formula does not parse
    """
    try:
        definition = RuleDefinition.from_model(row)
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in error['loc']) or 'rule'}: {error['msg']}"
            for error in exc.errors()
        ]
        raise RuleValidationError(row.rule_code, errors) from exc

    if isinstance(definition.penalty, FormulaPenalty):
        try:
            compile_formula(definition.penalty.expression)
        except FormulaSyntaxError as exc:
            raise RuleValidationError(row.rule_code, [str(exc)]) from exc

    return definition


class RuleCatalog:
    """Service for reading and versioning compliance rules."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_snapshot(self, as_of: date) -> CatalogSnapshot:
        """
        Load every active rule effective on ``as_of``.

        Malformed rows are excluded and reported in ``rejected``. When more
        than one version of a code is effective, the highest version wins.
        """
        result = await self.db.execute(
            select(ComplianceRule)
            .where(
                ComplianceRule.is_active.is_(True),
                ComplianceRule.effective_from <= as_of,
                or_(
                    ComplianceRule.effective_until.is_(None),
                    ComplianceRule.effective_until >= as_of,
                ),
            )
            .order_by(ComplianceRule.rule_code, ComplianceRule.version)
        )
        rows = list(result.scalars().all())

        by_code: Dict[str, RuleDefinition] = {}
        rejected: List[RuleValidationError] = []
        warnings: List[str] = []

        for row in rows:
            try:
                definition = validate_rule(row)
            except RuleValidationError as exc:
                logger.error(f"Rejected rule {row.rule_code} v{row.version}: {exc.message}")
                rejected.append(exc)
                continue

            existing = by_code.get(definition.rule_code)
            if existing is not None:
                message = (
                    f"Rule {definition.rule_code} has overlapping effective versions "
                    f"{existing.version} and {definition.version} on {as_of}; using the highest"
                )
                logger.warning(message)
                warnings.append(message)
                if existing.version > definition.version:
                    continue
            by_code[definition.rule_code] = definition

        snapshot = CatalogSnapshot(
            as_of_date=as_of,
            rules=tuple(by_code[code] for code in sorted(by_code)),
            rejected=tuple(rejected),
            warnings=tuple(warnings),
        )
        logger.info(
            f"Loaded rule catalog for {as_of}: {len(snapshot.rules)} rules, "
            f"{len(snapshot.rejected)} rejected"
        )
        return snapshot

    async def get_head(self, rule_code: str) -> Optional[ComplianceRule]:
        """Latest version of a rule code, effective or not."""
        result = await self.db.execute(
            select(ComplianceRule)
            .where(ComplianceRule.rule_code == rule_code)
            .order_by(desc(ComplianceRule.version))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_versions(self, rule_code: str) -> List[ComplianceRule]:
        """Version chain of a rule code, oldest first."""
        result = await self.db.execute(
            select(ComplianceRule)
            .where(ComplianceRule.rule_code == rule_code)
            .order_by(ComplianceRule.version)
        )
        return list(result.scalars().all())

    async def publish_version(self, rule_code: str, draft: RuleVersionDraft) -> ComplianceRule:
        """
        Publish a new version of ``rule_code``.

        The new row replaces the current head: it gets ``version + 1`` and a
        ``replaces_rule_id`` link, and the head's effective window is closed
        the day before the new version takes effect. Existing rows are
        otherwise left untouched.

        Raises:
            RuleValidationError: the draft is invalid or does not start after the head
        """
        head = await self.get_head(rule_code)

        if head is not None and draft.effective_from <= head.effective_from:
            raise RuleValidationError(
                rule_code,
                [f"effective_from must be after {head.effective_from} (version {head.version})"],
            )

        rule = ComplianceRule(
            id=uuid.uuid4(),
            rule_code=rule_code,
            version=head.version + 1 if head else 1,
            replaces_rule_id=head.id if head else None,
            name=draft.name,
            description=draft.description,
            domain=draft.domain,
            applicable_entity_types=list(draft.criteria.entity_types) or None,
            turnover_min=draft.criteria.turnover_min,
            turnover_max=draft.criteria.turnover_max,
            employee_count_min=draft.criteria.employee_count_min,
            requires_gst=draft.criteria.requires_gst,
            requires_pf=draft.criteria.requires_pf,
            requires_esi=draft.criteria.requires_esi,
            state_specific=draft.criteria.state_specific,
            applicable_states=list(draft.criteria.states) or None,
            frequency=draft.frequency,
            due_date_formula=draft.due_date.model_dump(mode="json"),
            grace_days=draft.grace_days,
            penalty_spec=draft.penalty.model_dump(mode="json") if draft.penalty else None,
            criticality_score=draft.criticality_score,
            amber_threshold_days=draft.amber_threshold_days,
            red_threshold_days=draft.red_threshold_days,
            depends_on_rules=list(draft.depends_on_rules) or None,
            is_active=True,
            effective_from=draft.effective_from,
            effective_until=None,
        )
        validate_rule(rule)

        if head is not None:
            closing = draft.effective_from - timedelta(days=1)
            if head.effective_until is None or head.effective_until > closing:
                head.effective_until = closing

        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(f"Published rule {rule_code} v{rule.version} effective {rule.effective_from}")
        return rule
