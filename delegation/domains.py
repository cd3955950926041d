"""Domain based eligibility filtering for task assignment."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Union

from .models import Domain, Member, TaskCategory

logger = logging.getLogger(__name__)

DOMAIN_MAPPING: Dict[TaskCategory, FrozenSet[Domain]] = {
    TaskCategory.GOVERNANCE: frozenset({Domain.GOVERNANCE, Domain.STRATEGY, Domain.UNASSIGNED}),
    TaskCategory.TREASURY: frozenset(
        {Domain.ACCOUNTING, Domain.BUSINESS_DEVELOPMENT, Domain.STRATEGY, Domain.UNASSIGNED}
    ),
    TaskCategory.TECHNICAL: frozenset({Domain.TECHNICAL, Domain.CONTRACTS, Domain.UNASSIGNED}),
    TaskCategory.COMMUNITY: frozenset({Domain.BUSINESS_DEVELOPMENT, Domain.STRATEGY, Domain.UNASSIGNED}),
    TaskCategory.GRANTS: frozenset(
        {Domain.ACCOUNTING, Domain.BUSINESS_DEVELOPMENT, Domain.STRATEGY, Domain.UNASSIGNED}
    ),
    TaskCategory.OPERATIONS: frozenset({Domain.BUSINESS_DEVELOPMENT, Domain.STRATEGY, Domain.UNASSIGNED}),
}


def resolve_category(category: Union[str, TaskCategory, None]) -> Optional[TaskCategory]:
    if isinstance(category, TaskCategory):
        return category
    if not category:
        return None
    try:
        return TaskCategory(str(category).strip().lower())
    except ValueError:
        return None


class DomainEligibilityFilter:
    """Narrow a roster to the members whose domain suits a task category.

    Both failure modes are fail-open: an unknown category or a category with
    no matching members yields the whole roster, since domain tags are
    optional metadata and must never block assignment.
    """

    def __init__(self, mapping: Optional[Dict[TaskCategory, FrozenSet[Domain]]] = None) -> None:
        self._mapping = dict(mapping or DOMAIN_MAPPING)
        for category, domains in self._mapping.items():
            if not domains:
                raise ValueError(f"category {category.value} must map to at least one domain")

    def allowed_domains(self, category: Union[str, TaskCategory, None]) -> Optional[FrozenSet[Domain]]:
        resolved = resolve_category(category)
        if resolved is None:
            return None
        return self._mapping.get(resolved)

    def filter(self, roster: Sequence[Member], category: Union[str, TaskCategory, None]) -> List[Member]:
        members = list(roster)
        allowed = self.allowed_domains(category)
        if allowed is None:
            logger.warning("Unknown task category %r, using all %d members", category, len(members))
            return members

        eligible = [member for member in members if member.domain in allowed]
        if not eligible:
            logger.warning(
                "No members found for %s domains, using all %d members", _label(category), len(members)
            )
            return members

        logger.debug(
            "Filtered %d of %d members for %s",
            len(eligible),
            len(members),
            _label(category),
            extra={"context": {"domains": sorted(member.domain.value for member in eligible)}},
        )
        return eligible


def _label(category: Union[str, TaskCategory, None]) -> str:
    if isinstance(category, TaskCategory):
        return category.value
    return str(category)


__all__ = ["DOMAIN_MAPPING", "DomainEligibilityFilter", "resolve_category"]
