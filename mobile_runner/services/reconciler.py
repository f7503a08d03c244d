from __future__ import annotations

import logging

from ..clients.base import RemoteTestService
from ..errors import ConfigValidationError
from ..job_store import JobStore
from ..models import HistoryEntry
from .remote_runs import history_from_run

logger = logging.getLogger(__name__)


class Reconciler:
    """Merge the remote service's run list into local history, keyed by run reference."""

    def __init__(self, service: RemoteTestService, store: JobStore, project_ref: str | None) -> None:
        self.service = service
        self.store = store
        self.project_ref = project_ref

    def sync(self) -> dict:
        if not self.project_ref:
            raise ConfigValidationError("DEVICE_FARM_PROJECT_ARN not configured")
        runs = self.service.list_runs(self.project_ref)
        if not runs:
            return {"message": "No tests found in Device Farm", "merged": 0, "updated": 0, "added": 0, "skipped": 0, "totalRuns": 0}

        counts = {"updated": 0, "added": 0, "skipped": 0}

        def mutate(history: list[HistoryEntry]) -> list[HistoryEntry]:
            index = {e.runRef: i for i, e in enumerate(history) if e.isRemote and e.runRef}
            for run in runs:
                if not run.ref:
                    continue
                pos = index.get(run.ref)
                if pos is None:
                    history.insert(0, history_from_run(run))
                    index = {e.runRef: i for i, e in enumerate(history) if e.isRemote and e.runRef}
                    counts["added"] += 1
                    continue
                existing = history[pos]
                if existing.is_terminal:
                    counts["skipped"] += 1
                    continue
                history[pos] = history_from_run(run, existing)
                counts["updated"] += 1
            return history

        self.store.update_history(mutate, sort=True)
        merged = counts["updated"] + counts["added"]
        logger.info(f"[Sync] {len(runs)} runs: {counts['updated']} updated, {counts['added']} added, {counts['skipped']} already complete")
        return {
            "message": f"Synced {counts['updated']} and added {counts['added']} Device Farm tests",
            "merged": merged,
            **counts,
            "totalRuns": len(runs),
        }
