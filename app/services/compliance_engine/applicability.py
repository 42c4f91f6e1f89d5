"""
DigiComply - Applicability Matcher

Selects the rules that apply to one entity profile.
"""

import logging
from typing import Collection, List, Tuple

from app.schemas.compliance_rule import RuleDefinition
from app.schemas.compliance_state import EntityProfile
from app.utils.error_handling import DataIncompleteError


logger = logging.getLogger(__name__)


class ApplicabilityMatcher:
    """
    Matches rules against an entity profile.

    A rule applies iff every criterion it sets holds; unset criteria do not
    constrain. Results are sorted by rule code so repeated runs aggregate in
    the same order.
    """

    def applies(self, rule: RuleDefinition, profile: EntityProfile) -> bool:
        """
        Check one rule.

        Raises:
            DataIncompleteError: a criterion needs an entity field that is not set
        """
        criteria = rule.criteria

        if criteria.entity_types:
            if not profile.entity_type:
                raise DataIncompleteError(rule.rule_code, "entity_type")
            if profile.entity_type not in criteria.entity_types:
                return False

        if criteria.turnover_min is not None or criteria.turnover_max is not None:
            if profile.turnover is None:
                raise DataIncompleteError(rule.rule_code, "turnover")
            if criteria.turnover_min is not None and profile.turnover < criteria.turnover_min:
                return False
            if criteria.turnover_max is not None and profile.turnover > criteria.turnover_max:
                return False

        if criteria.employee_count_min is not None:
            if profile.employee_count is None:
                raise DataIncompleteError(rule.rule_code, "employee_count")
            if profile.employee_count < criteria.employee_count_min:
                return False

        for required, actual, field in (
            (criteria.requires_gst, profile.has_gst, "has_gst"),
            (criteria.requires_pf, profile.has_pf, "has_pf"),
            (criteria.requires_esi, profile.has_esi, "has_esi"),
        ):
            if required is None:
                continue
            if actual is None:
                raise DataIncompleteError(rule.rule_code, field)
            if actual != required:
                return False

        if criteria.state_specific:
            if not profile.state:
                raise DataIncompleteError(rule.rule_code, "state")
            if profile.state not in criteria.states:
                return False

        return True

    def match(
        self,
        rules: Collection[RuleDefinition],
        profile: EntityProfile,
    ) -> Tuple[List[RuleDefinition], List[DataIncompleteError]]:
        """
        Filter ``rules`` down to those applying to ``profile``.

        Returns:
            (applicable rules sorted by code, incomplete-data errors of skipped rules)
        """
        applicable: List[RuleDefinition] = []
        incomplete: List[DataIncompleteError] = []

        for rule in sorted(rules, key=lambda r: r.rule_code):
            try:
                if self.applies(rule, profile):
                    applicable.append(rule)
            except DataIncompleteError as exc:
                logger.warning(f"Skipping rule {rule.rule_code} for entity {profile.entity_id}: {exc.message}")
                incomplete.append(exc)

        return applicable, incomplete

    def resolve_dependencies(
        self,
        applicable: List[RuleDefinition],
        satisfied_codes: Collection[str],
        undetermined_codes: Collection[str] = (),
    ) -> Tuple[List[RuleDefinition], List[RuleDefinition]]:
        """
        Drop composite rules whose dependencies are still outstanding.

        A dependency blocks when it is applicable and not yet satisfied
        (COMPLIANT or WAIVED) for its current period, or when it could not be
        evaluated for lack of entity data (``undetermined_codes``). A
        dependency that does not apply to the entity never blocks.

        Returns:
            (kept rules, excluded rules), both in input order
        """
        blocking_codes = {rule.rule_code for rule in applicable} | set(undetermined_codes)
        satisfied = set(satisfied_codes)

        kept: List[RuleDefinition] = []
        excluded: List[RuleDefinition] = []
        for rule in applicable:
            blocking = [
                code for code in rule.depends_on_rules
                if code in blocking_codes and code not in satisfied
            ]
            if blocking:
                logger.debug(f"Rule {rule.rule_code} waits on {', '.join(blocking)}")
                excluded.append(rule)
            else:
                kept.append(rule)
        return kept, excluded
