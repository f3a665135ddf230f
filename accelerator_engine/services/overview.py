"""AcceleratorOverviewService: per-user status, progress and access for every accelerator."""

import structlog

from accelerator_engine.domain.catalog import ACCELERATORS, AcceleratorDefinition, group_members
from accelerator_engine.domain.prerequisites import can_access
from accelerator_engine.domain.progress import (
    compute_accelerator_progress,
    compute_group_progress,
    count_completed,
)
from accelerator_engine.schemas.sessions import AcceleratorOverview, AcceleratorStatusView
from accelerator_engine.stores.base import SessionStore

logger = structlog.get_logger(__name__)


class AcceleratorOverviewService:
    """Read-only summary across accelerators."""

    def __init__(self, store: SessionStore, catalog: dict[int, AcceleratorDefinition] | None = None):
        self.store = store
        self.catalog = ACCELERATORS if catalog is None else catalog

    async def get_overview(self, user_id: str) -> AcceleratorOverview:
        """Build the overview from one fetch of the user's sessions.

        Raises:
            TransportError: If the store is unreachable
        """
        records = await self.store.list_for_user(user_id, sorted(self.catalog))
        summaries = {
            r.accelerator_number: r.summary(self.catalog[r.accelerator_number].total_steps)
            for r in records
            if r.accelerator_number in self.catalog
        }

        views = []
        for number in sorted(self.catalog):
            accelerator = self.catalog[number]
            summary = summaries.get(number)
            decision = can_access(accelerator, summaries, self.catalog)
            views.append(
                AcceleratorStatusView(
                    number=number,
                    key=accelerator.key,
                    title=accelerator.title,
                    group=accelerator.group,
                    status=summary.status if summary else None,
                    current_step=summary.current_step if summary else 0,
                    total_steps=accelerator.total_steps,
                    progress=compute_accelerator_progress(summary),
                    accessible=decision.allowed,
                    missing=decision.missing,
                )
            )

        groups = sorted({acc.group for acc in self.catalog.values()})
        group_progress = {g: compute_group_progress(summaries, group_members(g, self.catalog)) for g in groups}
        completed = {g: count_completed(summaries, group_members(g, self.catalog)) for g in groups}
        overall = round(sum(v.progress for v in views) / len(views)) if views else 0

        logger.debug("overview_built", user_id=user_id, sessions=len(records), overall=overall)
        return AcceleratorOverview(
            accelerators=views,
            groups=group_progress,
            completed_by_group=completed,
            overall=overall,
        )
