"""
DigiComply - Compliance Rules Router

API endpoints for the effective-dated rule catalog and rule versioning.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.models.compliance_rule import ComplianceRule
from app.schemas.compliance_rule import RuleDefinition, RuleVersionDraft
from app.services.compliance_engine import RuleCatalog
from app.utils.error_handling import RuleNotFoundException


router = APIRouter(prefix="/compliance-rules", tags=["Compliance Rules"])


@router.get("")
async def list_effective_rules(
    as_of_date: Optional[date] = Query(None, description="Defaults to today"),
    db: AsyncSession = Depends(get_async_session),
):
    """Rules effective on a date, plus rows rejected as malformed."""
    snapshot = await RuleCatalog(db).load_snapshot(as_of_date or date.today())
    return {
        "as_of_date": snapshot.as_of_date,
        "rules": [_format_definition(rule) for rule in snapshot.rules],
        "rejected": [exc.to_dict() for exc in snapshot.rejected],
        "warnings": list(snapshot.warnings),
        "total": len(snapshot.rules),
    }


@router.get("/{rule_code}/versions")
async def list_rule_versions(
    rule_code: str,
    db: AsyncSession = Depends(get_async_session),
):
    """Version chain of a rule code, oldest first."""
    versions = await RuleCatalog(db).get_versions(rule_code)
    if not versions:
        raise RuleNotFoundException(rule_code)
    return {
        "rule_code": rule_code,
        "versions": [_format_rule_row(row) for row in versions],
        "total": len(versions),
    }


@router.post("/{rule_code}/versions", status_code=status.HTTP_201_CREATED)
async def publish_rule_version(
    rule_code: str,
    draft: RuleVersionDraft,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Publish a new version of a rule.

    The previous head stays in place with its effective window closed the
    day before the new version starts.
    """
    row = await RuleCatalog(db).publish_version(rule_code, draft)
    return _format_rule_row(row)


# ===========================================
# HELPERS
# ===========================================

def _format_definition(rule: RuleDefinition) -> dict:
    return rule.model_dump(mode="json")


def _format_rule_row(row: ComplianceRule) -> dict:
    return {
        "id": row.id,
        "rule_code": row.rule_code,
        "version": row.version,
        "replaces_rule_id": row.replaces_rule_id,
        "name": row.name,
        "domain": row.domain.value,
        "frequency": row.frequency.value,
        "criticality_score": row.criticality_score,
        "is_active": row.is_active,
        "effective_from": row.effective_from,
        "effective_until": row.effective_until,
    }
