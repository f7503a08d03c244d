"""Remote run pipeline: upload build, upload fresh test bundle, derive test spec, schedule."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable

from .. import tasks
from ..bundle import build_test_bundle
from ..clients.base import RemoteTestService
from ..config import Settings
from ..errors import ConfigValidationError, NotFoundError
from ..job_store import JobStore
from ..models import (
    HistoryEntry,
    Job,
    JobResult,
    JobStatus,
    RemoteRun,
    RemoteRunRequest,
    TestConfig,
    new_job_id,
    utcnow,
)
from ..testspec import write_dynamic_spec
from .upload_cache import CachePolicy, UploadCache

logger = logging.getLogger(__name__)

LOCAL_REF_PREFIX = "local:"
REMOTE_DEVICE = "AWS Device Farm"
TEST_PACKAGE_KIND = "APPIUM_NODE_TEST_PACKAGE"
TEST_SPEC_KIND = "APPIUM_NODE_TEST_SPEC"


def app_upload_kind(platform: str) -> str:
    return "IOS_APP" if platform == "ios" else "ANDROID_APP"


def remote_test_name(request: RemoteRunRequest) -> str:
    if request.testMode == "single" and request.testSuite:
        return request.testSuite.split("/")[-1].replace(".e2e.ts", "") or "Device Farm Test"
    return "Full Test Suite"


def history_from_run(run: RemoteRun, existing: HistoryEntry | None = None) -> HistoryEntry:
    """History entry for ``run``, keeping the display fields an earlier entry already set."""
    platform = (run.platform or "").lower()
    entry = HistoryEntry(
        id=run.ref.split("/")[-1] or run.ref,
        name=run.name or "Device Farm Test",
        status=run.status,
        result=run.result,
        createdAt=run.created or (existing.createdAt if existing else utcnow()),
        duration=run.duration if run.status == "COMPLETED" else None,
        device=REMOTE_DEVICE,
        build="app.apk",
        platform="android" if platform.startswith("android") else "ios" if platform else "",
        isRemote=True,
        runRef=run.ref,
    )
    if run.counters is not None:
        entry.counters = run.counters
    if existing is None:
        if "Test Run" in (run.name or ""):
            entry.name = "Device Farm Test"
        return entry
    preserved = {
        "id": existing.id,
        "name": existing.name or entry.name,
        "build": existing.build or entry.build,
        "device": existing.device or entry.device,
        "platform": existing.platform or entry.platform,
        "jobId": existing.jobId,
        "reportReference": existing.reportReference,
        "testMode": existing.testMode,
        "test": existing.test,
        "testCase": existing.testCase,
    }
    if run.counters is None:
        preserved["counters"] = existing.counters
    return entry.model_copy(update=preserved)


class RemoteRunOrchestrator:
    def __init__(
        self,
        settings: Settings,
        service: RemoteTestService,
        uploads: UploadCache,
        store: JobStore,
        spawn: Callable = tasks.spawn,
        bundle_builder: Callable[..., Path] = build_test_bundle,
    ) -> None:
        self.settings = settings
        self.service = service
        self.uploads = uploads
        self.store = store
        self.spawn = spawn
        self.bundle_builder = bundle_builder

    def _validated(self, request: RemoteRunRequest) -> RemoteRunRequest:
        updates = {
            "projectArn": request.projectArn or self.settings.projectArn,
            "devicePoolArn": request.devicePoolArn or self.settings.devicePoolArn,
        }
        request = request.model_copy(update=updates)
        missing = [f for f in ("projectArn", "devicePoolArn", "buildPath") if not getattr(request, f)]
        if missing:
            raise ConfigValidationError(f"Missing required parameters: {', '.join(missing)}")
        if request.testMode == "single" and not request.testSuite:
            raise ConfigValidationError("testMode 'single' requires 'testSuite'")
        self._project_file(request.buildPath, "buildPath")
        if request.testSpecPath:
            self._project_file(request.testSpecPath, "testSpecPath")
        return request

    def _project_file(self, relative: str, field: str) -> Path:
        """Resolve ``relative`` under the project root, refusing anything outside it."""
        root = self.settings.projectRoot.resolve()
        path = (root / relative).resolve()
        if path == root or not path.is_relative_to(root):
            raise ConfigValidationError(f"{field} must name a file inside the project: {relative}")
        return path

    def schedule(self, request: RemoteRunRequest) -> dict:
        """Accept a remote run and schedule it in the background; returns immediately."""
        request = self._validated(request)
        job_id = new_job_id("local")
        config = TestConfig(
            platform=request.platform,
            build=self._project_file(request.buildPath, "buildPath").name,
            device=REMOTE_DEVICE,
            testMode=request.testMode,
            test=request.testSuite,
            testCase=request.testCase,
        )
        self.store.create_job(
            Job(
                id=job_id,
                name=remote_test_name(request),
                status=JobStatus.RUNNING,
                config=config,
                command=f"schedule {request.testType} on {request.devicePoolArn}",
                startedAt=utcnow(),
            )
        )
        logger.info(f"[RemoteRun {job_id}] Accepted, scheduling in background")
        self.spawn(
            f"remote-{job_id}",
            self._process,
            job_id,
            request,
            on_error=lambda exc: self._record_failure(job_id, request, exc),
            on_done=lambda: self._ensure_terminal(job_id, request),
            pool=tasks.REMOTE_POOL,
        )
        return {
            "runRef": f"{LOCAL_REF_PREFIX}{job_id}",
            "status": "SCHEDULING",
            "jobId": job_id,
            "message": "Device Farm test is being scheduled in background...",
        }

    def _workdir(self, job_id: str) -> Path:
        return self.settings.stateDir / "remote-work" / job_id

    def _process(self, job_id: str, request: RemoteRunRequest) -> RemoteRun:
        root = self.settings.projectRoot
        workdir = self._workdir(job_id)
        workdir.mkdir(parents=True, exist_ok=True)
        try:
            logger.info(f"[RemoteRun {job_id}] Uploading app")
            app_ref = self.uploads.resolve(
                request.projectArn, self._project_file(request.buildPath, "buildPath"), app_upload_kind(request.platform), CachePolicy.CACHE_AWARE
            )

            logger.info(f"[RemoteRun {job_id}] Creating fresh test bundle")
            bundle = self.bundle_builder(root, workdir / "test-bundle.zip")
            package_ref = self.uploads.resolve(request.projectArn, bundle, TEST_PACKAGE_KIND, CachePolicy.ALWAYS_FRESH)

            spec_ref = None
            if request.testSpecPath:
                logger.info(f"[RemoteRun {job_id}] Creating dynamic test spec")
                spec = write_dynamic_spec(
                    self._project_file(request.testSpecPath, "testSpecPath"), workdir, request.testMode, request.testSuite, request.testCase
                )
                spec_ref = self.uploads.resolve(request.projectArn, spec, TEST_SPEC_KIND, CachePolicy.ALWAYS_FRESH)

            if request.testMode == "single" and request.testSuite:
                logger.info(f"[RemoteRun {job_id}] Running single test: {request.testSuite}{f' - {request.testCase}' if request.testCase else ''}")
            else:
                logger.info(f"[RemoteRun {job_id}] Running full test suite")
            run = self.service.schedule_run(
                request.projectArn,
                app_ref,
                request.devicePoolArn,
                package_ref,
                spec_ref,
                name=f"Test Run - {utcnow().isoformat()}",
                test_type=request.testType,
            )
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        logger.info(f"[RemoteRun {job_id}] Scheduled: {run.ref}")
        job = self.store.get_job(job_id)
        entry = HistoryEntry(
            id=run.ref.split("/")[-1] or job_id,
            name=remote_test_name(request),
            status="RUNNING",
            createdAt=utcnow(),
            device=REMOTE_DEVICE,
            build=Path(request.buildPath).name or "app.apk",
            platform=request.platform,
            isRemote=True,
            runRef=run.ref,
            jobId=job_id,
            testMode=request.testMode,
            test=request.testSuite,
            testCase=request.testCase,
        )
        if job is not None:
            entry.createdAt = job.startedAt or job.createdAt
        self.store.complete_job(job_id, entry)
        return run

    def _record_failure(self, job_id: str, request: RemoteRunRequest, exc: BaseException) -> None:
        job = self.store.get_job(job_id)
        if job is None:
            return
        started = job.startedAt or job.createdAt
        entry = HistoryEntry(
            id=job_id,
            name=job.name,
            status=JobStatus.COMPLETED.value,
            result=JobResult.FAILED.value,
            createdAt=started,
            duration=int((utcnow() - started).total_seconds()),
            device=REMOTE_DEVICE,
            build=job.config.build,
            platform=request.platform,
            isRemote=True,
            jobId=job_id,
            error=str(exc) or exc.__class__.__name__,
            testMode=request.testMode,
            test=request.testSuite,
            testCase=request.testCase,
        )
        self.store.complete_job(job_id, entry)
        logger.error(f"[RemoteRun {job_id}] Processing failed: {exc}")

    def _ensure_terminal(self, job_id: str, request: RemoteRunRequest) -> None:
        if self.store.get_job(job_id) is not None:
            self._record_failure(job_id, request, RuntimeError("Scheduling ended without a result"))

    def status(self, run_ref: str) -> dict:
        """Status for a run reference; ``local:`` references answer from the store."""
        if run_ref.startswith(LOCAL_REF_PREFIX):
            return self._scheduling_status(run_ref[len(LOCAL_REF_PREFIX):])
        run = self.service.get_run(run_ref)
        if run.status == "COMPLETED":
            self._merge_run(run)
        return {
            "runRef": run.ref or run_ref,
            "status": run.status,
            "result": run.result,
            "counters": run.counters.model_dump() if run.counters else None,
            "totalJobs": run.totalJobs,
            "completedJobs": run.completedJobs,
            "message": run.message,
            "started": run.started.isoformat() if run.started else None,
            "stopped": run.stopped.isoformat() if run.stopped else None,
        }

    def _scheduling_status(self, job_id: str) -> dict:
        job = self.store.get_job(job_id)
        if job is not None:
            return {"runRef": f"{LOCAL_REF_PREFIX}{job_id}", "status": "SCHEDULING", "jobId": job_id}
        entry = self.store.find_history(job_id)
        if entry is None:
            raise NotFoundError(f"Unknown run: {LOCAL_REF_PREFIX}{job_id}")
        if entry.runRef:
            return {"runRef": entry.runRef, "status": entry.status, "result": entry.result, "jobId": job_id}
        return {
            "runRef": f"{LOCAL_REF_PREFIX}{job_id}",
            "status": entry.status,
            "result": entry.result,
            "jobId": job_id,
            "error": entry.error,
        }

    def _merge_run(self, run: RemoteRun) -> bool:
        def mutate(history: list[HistoryEntry]) -> list[HistoryEntry]:
            for idx, entry in enumerate(history):
                if entry.runRef == run.ref:
                    merged = history_from_run(run, entry)
                    if merged.result is None and run.status == "COMPLETED":
                        merged.result = JobResult.PASSED.value
                    history[idx] = merged
                    break
            return history

        known = self.store.find_history(run.ref) is not None
        if known:
            self.store.update_history(mutate)
        return known

    def refresh_running(self) -> dict:
        """Poll every non-terminal remote history entry and merge what the service reports."""
        pending = [e for e in self.store.load_history() if e.isRemote and e.runRef and not e.is_terminal]
        updated = 0
        for entry in pending:
            try:
                run = self.service.get_run(entry.runRef)
            except Exception as exc:
                logger.error(f"[RemoteRun] Failed to refresh {entry.runRef}: {exc}")
                continue
            if self._merge_run(run):
                updated += 1
        return {"message": f"Updated {updated} Device Farm test(s)", "updated": updated}
