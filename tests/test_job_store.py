from datetime import timedelta

from mobile_runner import job_store
from mobile_runner.job_store import JobStore
from mobile_runner.models import HistoryEntry, Job, ReportDescriptor, TestConfig, utcnow


def _job(job_id="run-1"):
    return Job(id=job_id, name="Full Test Suite", config=TestConfig(platform="android", build="app.apk", device="Pixel 7"))


def test_missing_and_corrupt_files_load_as_empty(tmp_path):
    jobs = tmp_path / "running-tests.json"
    history = tmp_path / "test-history.json"
    history.write_text("{not json", encoding="utf-8")

    store = JobStore(jobs, history)

    assert store.load() == {}
    assert store.load_history() == []


def test_job_lifecycle_and_persistence(tmp_path):
    store = JobStore(tmp_path / "jobs.json", tmp_path / "history.json")
    store.create_job(_job())
    store.update_job("run-1", command="npx wdio config/wdio.android.conf.ts")

    reopened = JobStore(tmp_path / "jobs.json", tmp_path / "history.json")
    job = reopened.get_job("run-1")
    assert job is not None
    assert job.command.startswith("npx wdio")

    entry = HistoryEntry(id="run-1", name="Full Test Suite", status="COMPLETED", result="PASSED")
    reopened.complete_job("run-1", entry)
    assert reopened.get_job("run-1") is None
    assert reopened.find_history("run-1").result == "PASSED"
    assert JobStore(tmp_path / "jobs.json", tmp_path / "history.json").load() == {}


def test_history_is_capped_newest_first(tmp_path):
    store = JobStore(tmp_path / "jobs.json", tmp_path / "history.json")
    for i in range(51):
        store.upsert_history(HistoryEntry(id=f"run-{i}", name="t", status="COMPLETED"))

    history = store.load_history()
    assert len(history) == 50
    assert history[0].id == "run-50"
    assert all(e.id != "run-0" for e in history)


def test_remote_entries_dedup_on_run_ref(tmp_path):
    store = JobStore(tmp_path / "jobs.json", tmp_path / "history.json")
    ref = "arn:aws:devicefarm:us-west-2:123:run:proj/abc"
    store.upsert_history(HistoryEntry(id="abc", name="Login", status="RUNNING", isRemote=True, runRef=ref))
    store.upsert_history(HistoryEntry(id="other-id", name="Login", status="COMPLETED", isRemote=True, runRef=ref))

    history = store.load_history()
    assert len(history) == 1
    assert history[0].status == "COMPLETED"


def test_update_history_sorts_by_creation(tmp_path):
    store = JobStore(tmp_path / "jobs.json", tmp_path / "history.json")
    now = utcnow()
    store.save_history(
        [
            HistoryEntry(id="old", name="t", status="COMPLETED", createdAt=now - timedelta(hours=2)),
            HistoryEntry(id="new", name="t", status="COMPLETED", createdAt=now),
        ]
    )
    result = store.update_history(lambda h: list(reversed(h)), sort=True)
    assert [e.id for e in result] == ["new", "old"]


def test_cache_report_stamps_history(tmp_path):
    store = JobStore(tmp_path / "jobs.json", tmp_path / "history.json", tmp_path / "report-cache.json")
    ref = "arn:aws:devicefarm:us-west-2:123:run:proj/xyz"
    store.upsert_history(HistoryEntry(id="xyz", name="t", status="COMPLETED", isRemote=True, runRef=ref))
    store.cache_report(ReportDescriptor(source="single-file", url="https://r/x.html", cacheKey="allure/x.html", runRef=ref))

    reopened = JobStore(tmp_path / "jobs.json", tmp_path / "history.json", tmp_path / "report-cache.json")
    assert reopened.get_cached_report(ref).url == "https://r/x.html"
    assert reopened.find_history(ref).reportReference == "https://r/x.html"


def test_init_job_store_uses_settings(settings):
    store = job_store.init_job_store(settings)
    assert job_store.get_store() is store
    assert store.history_path == settings.historyPath
