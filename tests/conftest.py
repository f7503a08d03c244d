from __future__ import annotations

from pathlib import Path

import pytest

from mobile_runner.config import Settings
from mobile_runner.errors import NotFoundError
from mobile_runner.job_store import JobStore
from mobile_runner.models import Artifact, RemoteRun, UploadRecord, UploadSlot, utcnow


class FakeRemoteService:
    """In-memory stand-in for Device Farm."""

    def __init__(self):
        self.uploads: dict[str, list[UploadRecord]] = {}
        self.created: list[tuple[str, str]] = []
        self.statuses: dict[str, list[str]] = {}
        self.upload_script: list[str] = []
        self.runs: dict[str, RemoteRun] = {}
        self.scheduled: list[dict] = []
        self.schedule_error: Exception | None = None
        self.artifacts: dict[str, list[Artifact]] = {}
        self.artifact_calls = 0
        self._seq = 0

    def create_upload(self, project_ref, name, kind):
        self._seq += 1
        ref = f"arn:aws:devicefarm:us-west-2:123:upload:proj/{kind.lower()}-{self._seq}"
        self.created.append((name, kind))
        self.uploads.setdefault(kind, []).append(
            UploadRecord(name=name, ref=ref, status="INITIALIZED", createdAt=utcnow())
        )
        self.statuses[ref] = list(self.upload_script)
        return UploadSlot(ref=ref, url=f"https://uploads.example.com/{self._seq}")

    def get_upload(self, ref):
        script = self.statuses.get(ref) or []
        status = script.pop(0) if script else "SUCCEEDED"
        for records in self.uploads.values():
            for idx, record in enumerate(records):
                if record.ref == ref:
                    records[idx] = record.model_copy(update={"status": status})
        return status

    def list_uploads(self, project_ref, kind):
        return list(self.uploads.get(kind, []))

    def schedule_run(self, project_ref, app_ref, pool_ref, test_package_ref, test_spec_ref, *, name, test_type):
        if self.schedule_error is not None:
            raise self.schedule_error
        self._seq += 1
        run = RemoteRun(
            ref=f"arn:aws:devicefarm:us-west-2:123:run:proj/run-{self._seq}",
            name=name,
            status="SCHEDULING",
            platform="ANDROID_APP",
            created=utcnow(),
        )
        self.scheduled.append(
            {"app": app_ref, "pool": pool_ref, "package": test_package_ref, "spec": test_spec_ref, "type": test_type}
        )
        self.runs[run.ref] = run
        return run

    def get_run(self, run_ref):
        try:
            return self.runs[run_ref]
        except KeyError:
            raise NotFoundError(f"Run not found: {run_ref}") from None

    def list_runs(self, project_ref):
        return list(self.runs.values())

    def list_artifacts(self, run_ref):
        self.artifact_calls += 1
        return list(self.artifacts.get(run_ref, []))


class FakeObjectStore:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict] = {}

    def url_for(self, key):
        return f"https://reports.example.com/{key}"

    def put_object(self, key, body, content_type, metadata=None):
        self.objects[key] = body
        self.metadata[key] = metadata or {}
        return self.url_for(key)

    def head_object(self, key):
        return key in self.objects


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    project = tmp_path / "project"
    state = tmp_path / "state"
    project.mkdir()
    state.mkdir()
    return Settings(projectRoot=project, stateDir=state)


@pytest.fixture
def store(settings: Settings) -> JobStore:
    return JobStore(settings.runningTestsPath, settings.historyPath, settings.reportCachePath)


@pytest.fixture
def remote_service() -> FakeRemoteService:
    return FakeRemoteService()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()
