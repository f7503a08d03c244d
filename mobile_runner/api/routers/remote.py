from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from ...models import RemoteRunRequest
from ...services.reconciler import Reconciler
from ...services.remote_runs import RemoteRunOrchestrator
from ...services.reports import ReportResolver
from ..deps import orchestrator_dep, reconciler_dep, report_resolver_dep

router = APIRouter(prefix="/api/remote", tags=["remote"])
logger = logging.getLogger(__name__)


def _require_run_ref(run_ref: str | None) -> str:
    run_ref = (run_ref or "").strip()
    if not run_ref:
        raise HTTPException(status_code=400, detail="Missing runRef parameter")
    return run_ref


@router.post("/runs", status_code=202)
def start_remote_run(req: RemoteRunRequest, orchestrator: RemoteRunOrchestrator = Depends(orchestrator_dep)) -> dict:
    return orchestrator.schedule(req)


@router.get("/runs/status")
def get_remote_run_status(runRef: str | None = None, orchestrator: RemoteRunOrchestrator = Depends(orchestrator_dep)) -> dict:
    return orchestrator.status(_require_run_ref(runRef))


@router.post("/runs/refresh")
def refresh_remote_runs(orchestrator: RemoteRunOrchestrator = Depends(orchestrator_dep)) -> dict:
    return orchestrator.refresh_running()


@router.get("/sync")
def sync_history(reconciler: Reconciler = Depends(reconciler_dep)) -> dict:
    return reconciler.sync()


@router.get("/reports")
def resolve_report(runRef: str | None = None, resolver: ReportResolver = Depends(report_resolver_dep)) -> dict:
    run_ref = _require_run_ref(runRef)
    logger.info(f"[Report] Resolving report for {run_ref}")
    return resolver.resolve(run_ref)
