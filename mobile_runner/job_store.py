"""Durable store for active jobs, run history and resolved report descriptors.

All three collections live in memory behind one lock and are written through
to JSON files on every mutation (temp file + rename). The in-memory table is
authoritative for this process; files are only read at load time, and a
missing or unreadable file is treated as empty.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from .models import HISTORY_LIMIT, HistoryEntry, Job, ReportDescriptor

logger = logging.getLogger(__name__)


def _read_json(path: Path, default: Any) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return default
    except (OSError, ValueError) as exc:
        logger.warning(f"[JobStore] Ignoring unreadable {path.name}: {exc}")
        return default


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _sort_key(entry: HistoryEntry) -> float:
    return entry.createdAt.timestamp()


class JobStore:
    def __init__(
        self,
        jobs_path: Path,
        history_path: Path,
        report_cache_path: Path | None = None,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self.jobs_path = Path(jobs_path)
        self.history_path = Path(history_path)
        self.report_cache_path = Path(report_cache_path) if report_cache_path else None
        self.history_limit = history_limit
        self._lock = threading.RLock()
        self._jobs: dict[str, Job] = self._read_jobs()
        self._history: list[HistoryEntry] = self._read_history()
        self._reports: dict[str, ReportDescriptor] = self._read_reports()

    # -- loading -----------------------------------------------------------

    def _read_jobs(self) -> dict[str, Job]:
        raw = _read_json(self.jobs_path, {})
        # Older files stored a list of jobs rather than a map.
        items = raw.values() if isinstance(raw, dict) else raw if isinstance(raw, list) else []
        jobs: dict[str, Job] = {}
        for item in items:
            try:
                job = Job.model_validate(item)
            except ValidationError as exc:
                logger.warning(f"[JobStore] Skipping malformed job record: {exc.errors()[:1]}")
                continue
            jobs[job.id] = job
        return jobs

    def _read_history(self) -> list[HistoryEntry]:
        raw = _read_json(self.history_path, [])
        if not isinstance(raw, list):
            return []
        entries: list[HistoryEntry] = []
        for item in raw:
            try:
                entries.append(HistoryEntry.model_validate(item))
            except ValidationError as exc:
                logger.warning(f"[JobStore] Skipping malformed history record: {exc.errors()[:1]}")
        return entries

    def _read_reports(self) -> dict[str, ReportDescriptor]:
        if self.report_cache_path is None:
            return {}
        raw = _read_json(self.report_cache_path, {})
        if not isinstance(raw, dict):
            return {}
        reports: dict[str, ReportDescriptor] = {}
        for key, item in raw.items():
            try:
                reports[key] = ReportDescriptor.model_validate(item)
            except ValidationError:
                continue
        return reports

    # -- flushing ----------------------------------------------------------

    def _flush_jobs(self) -> None:
        _write_json(self.jobs_path, {k: v.model_dump(mode="json") for k, v in self._jobs.items()})

    def _flush_history(self) -> None:
        _write_json(self.history_path, [e.model_dump(mode="json") for e in self._history])

    def _flush_reports(self) -> None:
        if self.report_cache_path is not None:
            _write_json(self.report_cache_path, {k: v.model_dump(mode="json") for k, v in self._reports.items()})

    # -- wholesale contract ------------------------------------------------

    def load(self) -> dict[str, Job]:
        with self._lock:
            return {k: v.model_copy(deep=True) for k, v in self._jobs.items()}

    def save(self, jobs: dict[str, Job]) -> None:
        with self._lock:
            self._jobs = dict(jobs)
            self._flush_jobs()

    def load_history(self) -> list[HistoryEntry]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._history]

    def save_history(self, history: Iterable[HistoryEntry]) -> None:
        with self._lock:
            self._history = self._capped(list(history))
            self._flush_history()

    def _capped(self, history: list[HistoryEntry]) -> list[HistoryEntry]:
        return history[: self.history_limit]

    # -- active jobs -------------------------------------------------------

    def create_job(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = job
            self._flush_jobs()
            return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def list_jobs(self) -> list[Job]:
        with self._lock:
            return [j.model_copy(deep=True) for j in self._jobs.values()]

    def update_job(self, job_id: str, **changes: Any) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            updated = job.model_copy(update=changes)
            self._jobs[job_id] = updated
            self._flush_jobs()
            return updated.model_copy(deep=True)

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            if self._jobs.pop(job_id, None) is None:
                return False
            self._flush_jobs()
            return True

    def complete_job(self, job_id: str, entry: HistoryEntry) -> HistoryEntry:
        """Move a job into history and drop it from the active set in one step."""
        with self._lock:
            stored = self._upsert_locked(entry)
            self._flush_history()
            if self._jobs.pop(job_id, None) is not None:
                self._flush_jobs()
            return stored

    # -- history -----------------------------------------------------------

    def _upsert_locked(self, entry: HistoryEntry) -> HistoryEntry:
        key = entry.dedup_key
        for idx, existing in enumerate(self._history):
            if existing.dedup_key == key:
                self._history[idx] = entry
                return entry
        self._history.insert(0, entry)
        self._history = self._capped(self._history)
        return entry

    def upsert_history(self, entry: HistoryEntry) -> HistoryEntry:
        with self._lock:
            stored = self._upsert_locked(entry)
            self._flush_history()
            return stored.model_copy(deep=True)

    def find_history(self, key: str) -> HistoryEntry | None:
        with self._lock:
            for entry in self._history:
                if entry.dedup_key == key or entry.id == key or entry.jobId == key:
                    return entry.model_copy(deep=True)
            return None

    def update_history(self, mutate: Callable[[list[HistoryEntry]], list[HistoryEntry]], *, sort: bool = False) -> list[HistoryEntry]:
        """Run ``mutate`` over a copy of history under the store lock and persist the result."""
        with self._lock:
            working = [e.model_copy(deep=True) for e in self._history]
            result = mutate(working)
            if sort:
                result.sort(key=_sort_key, reverse=True)
            self._history = self._capped(result)
            self._flush_history()
            return [e.model_copy(deep=True) for e in self._history]

    # -- report descriptors -----------------------------------------------

    def get_cached_report(self, run_ref: str) -> ReportDescriptor | None:
        with self._lock:
            return self._reports.get(run_ref)

    def cache_report(self, descriptor: ReportDescriptor) -> None:
        with self._lock:
            self._reports[descriptor.runRef] = descriptor
            self._flush_reports()
            for idx, entry in enumerate(self._history):
                if entry.runRef == descriptor.runRef and entry.reportReference != descriptor.url:
                    self._history[idx] = entry.model_copy(update={"reportReference": descriptor.url})
                    self._flush_history()
                    break


_default_store: JobStore | None = None
_default_lock = threading.Lock()


def init_job_store(settings=None) -> JobStore:
    """(Re)create the process-wide store from settings."""
    global _default_store
    from .config import get_settings

    settings = settings or get_settings()
    with _default_lock:
        _default_store = JobStore(
            settings.runningTestsPath,
            settings.historyPath,
            settings.reportCachePath,
            history_limit=settings.historyLimit,
        )
        return _default_store


def get_store() -> JobStore:
    with _default_lock:
        store = _default_store
    return store if store is not None else init_job_store()
