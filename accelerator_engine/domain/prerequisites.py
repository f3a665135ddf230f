"""Prerequisite resolution between accelerators.

Pure function over already-loaded session summaries. Fetching them is the
caller's job; a failed fetch is passed in as summaries=None and the resolver
fails closed.
"""
from collections.abc import Mapping
from dataclasses import dataclass, field

from accelerator_engine.domain.catalog import (
    ACCELERATORS,
    AcceleratorDefinition,
    get_accelerator,
    group_members,
)
from accelerator_engine.domain.progress import SessionSummary, compute_group_progress
from accelerator_engine.domain.steps import SessionStatus

FETCH_FAILED = "fetch_failed"


@dataclass
class AccessDecision:
    """Result of an access check."""

    allowed: bool
    reason: str = ""
    missing: list[int] = field(default_factory=list)
    group_progress: int | None = None


def can_access(
    accelerator: AcceleratorDefinition | int,
    summaries: Mapping[int, SessionSummary] | None,
    catalog: dict[int, AcceleratorDefinition] | None = None,
) -> AccessDecision:
    """Decide whether a user may open an accelerator.

    Args:
        accelerator: Definition or number of the accelerator being opened
        summaries: {accelerator_number: SessionSummary} for the user, or None if
            they could not be fetched
        catalog: Accelerator catalog (defaults to ACCELERATORS)

    Returns:
        AccessDecision. Never raises for missing data.

    Rules:
        - The first accelerator in a chain (no prerequisites) is always open
        - Every predecessor in `requires` must be completed
        - requires_group: mean group progress must reach the threshold
        - Unfetchable data denies access with reason "fetch_failed"
    """
    catalog = ACCELERATORS if catalog is None else catalog
    if isinstance(accelerator, int):
        accelerator = get_accelerator(accelerator, catalog)

    if not accelerator.prerequisites and accelerator.requires_group is None:
        return AccessDecision(True)

    if summaries is None:
        return AccessDecision(
            False,
            FETCH_FAILED,
            missing=list(accelerator.prerequisites),
        )

    missing = [
        number
        for number in accelerator.prerequisites
        if summaries.get(number) is None or summaries[number].status != SessionStatus.COMPLETED
    ]

    group_progress = None
    if accelerator.requires_group:
        group, threshold = accelerator.requires_group
        members = [n for n in group_members(group, catalog) if n != accelerator.number]
        group_progress = compute_group_progress(summaries, members)
        if group_progress < threshold:
            missing.extend(
                n
                for n in members
                if n not in missing
                and (summaries.get(n) is None or summaries[n].status != SessionStatus.COMPLETED)
            )

    if missing:
        reason = f"Complete accelerator(s) {', '.join(map(str, sorted(missing)))} first"
        return AccessDecision(False, reason, sorted(missing), group_progress)

    return AccessDecision(True, group_progress=group_progress)
