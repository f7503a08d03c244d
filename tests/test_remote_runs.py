import httpx
import pytest

from mobile_runner import tasks
from mobile_runner.errors import ConfigValidationError, ExternalServiceError, NotFoundError
from mobile_runner.models import Counters, HistoryEntry, RemoteRun, RemoteRunRequest, utcnow
from mobile_runner.services.remote_runs import RemoteRunOrchestrator, history_from_run
from mobile_runner.services.upload_cache import UploadCache
from mobile_runner.testspec import inject_selection

PROJECT = "arn:aws:devicefarm:us-west-2:123:project:proj"
POOL = "arn:aws:devicefarm:us-west-2:123:devicepool:proj/pool"

BASE_SPEC = """version: 0.1
phases:
  install:
    commands:
      - npm ci
  test:
    commands:
      - npx wdio config/wdio.devicefarm.conf.ts
"""


@pytest.fixture
def project(settings):
    root = settings.projectRoot
    (root / "app.apk").write_bytes(b"apk")
    (root / "test" / "specs").mkdir(parents=True)
    (root / "test" / "specs" / "login.e2e.ts").write_text("it('logs in', () => {})", encoding="utf-8")
    (root / "config").mkdir()
    (root / "config" / "wdio.devicefarm.conf.ts").write_text("export const config = {}", encoding="utf-8")
    (root / "package.json").write_text("{}", encoding="utf-8")
    (root / "testspec.yml").write_text(BASE_SPEC, encoding="utf-8")
    return root


@pytest.fixture
def orchestrator(settings, store, remote_service):
    http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    uploads = UploadCache(remote_service, http=http, sleep=lambda _: None)
    return RemoteRunOrchestrator(settings, remote_service, uploads, store, spawn=tasks.run_inline)


def _request(**overrides):
    data = {
        "projectArn": PROJECT,
        "devicePoolArn": POOL,
        "platform": "android",
        "buildPath": "app.apk",
        "testSpecPath": "testspec.yml",
    }
    data.update(overrides)
    return RemoteRunRequest(**data)


def test_schedule_returns_local_reference_and_records_run(project, orchestrator, store, remote_service):
    response = orchestrator.schedule(_request(testMode="single", testSuite="test/specs/login.e2e.ts"))

    assert response["runRef"] == f"local:{response['jobId']}"
    assert response["status"] == "SCHEDULING"
    assert store.get_job(response["jobId"]) is None
    entry = store.find_history(response["jobId"])
    assert entry.status == "RUNNING"
    assert entry.isRemote
    assert entry.runRef.startswith("arn:aws:devicefarm")
    assert entry.name == "login"
    assert entry.testMode == "single"
    assert remote_service.scheduled[0]["spec"] is not None
    assert remote_service.scheduled[0]["type"] == "APPIUM_NODE"

    status = orchestrator.status(response["runRef"])
    assert status["runRef"] == entry.runRef


def test_each_run_uploads_a_fresh_test_package(project, orchestrator, remote_service):
    orchestrator.schedule(_request())
    orchestrator.schedule(_request())

    kinds = [kind for _, kind in remote_service.created]
    assert kinds.count("ANDROID_APP") == 1
    assert kinds.count("APPIUM_NODE_TEST_PACKAGE") == 2
    packages = [run["package"] for run in remote_service.scheduled]
    assert len(set(packages)) == 2
    assert not (orchestrator.settings.stateDir / "remote-work").exists() or not any(
        (orchestrator.settings.stateDir / "remote-work").iterdir()
    )


def test_scheduling_failure_records_failed_entry(project, orchestrator, store, remote_service):
    remote_service.schedule_error = ExternalServiceError("Device Farm schedule_run failed: quota")

    response = orchestrator.schedule(_request())

    assert store.list_jobs() == []
    entry = store.find_history(response["jobId"])
    assert entry.status == "COMPLETED"
    assert entry.result == "FAILED"
    assert "quota" in entry.error
    assert all(e.status != "RUNNING" for e in store.load_history())

    status = orchestrator.status(response["runRef"])
    assert status["result"] == "FAILED"
    assert "quota" in status["error"]


def test_missing_build_upload_fails_in_background(settings, orchestrator, store):
    response = orchestrator.schedule(_request(buildPath="missing.apk", testSpecPath=None))
    entry = store.find_history(response["jobId"])
    assert entry.result == "FAILED"
    assert "not found" in entry.error


def test_validation_errors(orchestrator):
    with pytest.raises(ConfigValidationError, match="buildPath"):
        orchestrator.schedule(_request(buildPath=None))
    with pytest.raises(ConfigValidationError, match="testSuite"):
        orchestrator.schedule(_request(testMode="single"))
    with pytest.raises(ConfigValidationError, match="projectArn"):
        orchestrator.schedule(_request(projectArn=None))


@pytest.mark.parametrize("build_path", ["/etc/passwd", "../outside.apk", ".", "/"])
def test_build_path_must_stay_inside_project(orchestrator, store, build_path):
    with pytest.raises(ConfigValidationError, match="buildPath"):
        orchestrator.schedule(_request(buildPath=build_path))
    assert store.load_history() == []


def test_test_spec_path_must_stay_inside_project(orchestrator):
    with pytest.raises(ConfigValidationError, match="testSpecPath"):
        orchestrator.schedule(_request(testSpecPath="../spec.yml"))


def test_unknown_local_reference(orchestrator):
    with pytest.raises(NotFoundError):
        orchestrator.status("local:nope")


def test_completed_status_merges_into_history(project, orchestrator, store, remote_service):
    response = orchestrator.schedule(_request())
    entry = store.find_history(response["jobId"])
    started = utcnow()
    remote_service.runs[entry.runRef] = RemoteRun(
        ref=entry.runRef,
        name="Test Run - x",
        status="COMPLETED",
        result="PASSED",
        platform="ANDROID_APP",
        counters=Counters(passed=4, total=4),
        started=started,
        stopped=started,
    )

    status = orchestrator.status(entry.runRef)

    assert status["status"] == "COMPLETED"
    merged = store.find_history(entry.runRef)
    assert merged.result == "PASSED"
    assert merged.counters.passed == 4
    assert merged.name == "Full Test Suite"
    assert merged.jobId == response["jobId"]


def test_refresh_running_updates_pending_entries(store, orchestrator, remote_service):
    ref = "arn:aws:devicefarm:us-west-2:123:run:proj/r1"
    store.upsert_history(HistoryEntry(id="r1", name="Smoke", status="RUNNING", isRemote=True, runRef=ref))
    store.upsert_history(HistoryEntry(id="gone", name="x", status="RUNNING", isRemote=True, runRef=ref + "-gone"))
    remote_service.runs[ref] = RemoteRun(ref=ref, status="COMPLETED", result="FAILED", counters=Counters(failed=1, total=1))

    result = orchestrator.refresh_running()

    assert result["updated"] == 1
    assert store.find_history(ref).result == "FAILED"
    assert store.find_history(ref).name == "Smoke"


def test_history_from_run_renames_generated_runs():
    run = RemoteRun(ref="arn:x:run:proj/abc", name="Test Run - 2024", status="RUNNING", platform="IOS_APP")
    entry = history_from_run(run)
    assert entry.id == "abc"
    assert entry.name == "Device Farm Test"
    assert entry.platform == "ios"


def test_inject_selection_after_test_commands():
    spec = inject_selection(BASE_SPEC, "single", "test/specs/login.e2e.ts", "logs in")
    test_phase = spec.split("  test:")[1]
    assert test_phase.index('export TEST_MODE="single"') < test_phase.index("npx wdio")
    assert 'SELECTED_TEST="test/specs/login.e2e.ts"' in test_phase
    assert 'SELECTED_TEST_CASE="logs in"' in test_phase
    assert "export" not in spec.split("  test:")[0]


def test_inject_selection_without_test_phase_is_unchanged():
    spec = "version: 0.1\nphases:\n  install:\n    commands:\n      - npm ci\n"
    assert inject_selection(spec, "full") == spec
