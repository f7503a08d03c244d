from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from starlette.responses import FileResponse

from ...config import Settings
from ...executor import LocalExecutionEngine, report_file
from ...job_store import JobStore
from ...models import TestConfig
from ..deps import local_engine_dep, settings_dep, store_dep

router = APIRouter(prefix="/api/local", tags=["local"])


@router.post("/jobs", status_code=202)
def start_local_job(config: TestConfig, engine: LocalExecutionEngine = Depends(local_engine_dep)) -> dict:
    job_id, command = engine.start(config)
    return {"jobId": job_id, "message": "Test started", "command": command}


@router.get("/jobs")
def list_local_jobs(store: JobStore = Depends(store_dep)) -> dict:
    return {"jobs": [job.model_dump(mode="json") for job in store.list_jobs()]}


@router.get("/jobs/{job_id}")
def get_local_job(job_id: str, store: JobStore = Depends(store_dep)) -> dict:
    job = store.get_job(job_id)
    if job is not None:
        return job.model_dump(mode="json")
    # Finished jobs have moved to history.
    entry = store.find_history(job_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Test not found: {job_id}")
    return entry.model_dump(mode="json")


@router.get("/reports/{job_id}")
def get_local_report(job_id: str, settings: Settings = Depends(settings_dep)) -> FileResponse:
    path = report_file(settings, job_id)
    if path is None:
        raise HTTPException(status_code=404, detail=f"Report not found: {job_id}")
    return FileResponse(path, media_type="text/html", headers={"Cache-Control": "public, max-age=3600"})
