"""Locate a viewable report for a completed remote run.

Resolution walks an ordered list of strategies and stops at the first one
that returns a descriptor:

  1. descriptor already cached in the job store
  2. report already in object storage under the run's deterministic key
  3. ``report-info.txt`` artifact naming an externally hosted report
  4. single-file HTML report artifact, copied into object storage
  5. ``Customer Artifacts`` zip, extracted and searched for the report

Cacheable hits are stored under the run reference, so later calls for the
same run never touch the remote service again.
"""
from __future__ import annotations

import logging
import re
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Optional

import httpx

from ..clients.base import ObjectStore, RemoteTestService
from ..errors import ExternalServiceError
from ..job_store import JobStore
from ..models import Artifact, ReportDescriptor, run_id_from_ref, utcnow

logger = logging.getLogger(__name__)

REPORT_FILE = "allure-report-complete.html"
REPORT_INFO_FILE = "report-info.txt"
ARCHIVE_NAME = "Customer Artifacts"
_REPORT_URL_RE = re.compile(r"S3_REPORT_URL=(.+)")
_EXPECTED_ARCHIVE_PATHS = (
    Path("Host_Machine_Files") / "$DEVICEFARM_LOG_DIR" / REPORT_FILE,
    Path("Host_Machine_Files") / "DEVICEFARM_LOG_DIR" / REPORT_FILE,
)


def report_key(run_ref: str) -> str:
    return f"allure/device-farm-{run_id_from_ref(run_ref)}.html"


class ResolutionContext:
    """Per-call state; artifacts are listed at most once."""

    def __init__(self, run_ref: str, service: RemoteTestService) -> None:
        self.run_ref = run_ref
        self.key = report_key(run_ref)
        self._service = service
        self._artifacts: list[Artifact] | None = None

    @property
    def artifacts(self) -> list[Artifact]:
        if self._artifacts is None:
            self._artifacts = self._service.list_artifacts(self.run_ref)
            logger.info(f"[Report] {len(self._artifacts)} artifacts listed for {self.run_ref}")
        return self._artifacts

    @property
    def listed(self) -> bool:
        return self._artifacts is not None

    def find(self, predicate: Callable[[Artifact], bool]) -> Artifact | None:
        return next((a for a in self.artifacts if a.url and predicate(a)), None)


Strategy = Callable[[ResolutionContext], Optional[ReportDescriptor]]


def find_report_file(root: Path) -> Path | None:
    for rel in _EXPECTED_ARCHIVE_PATHS:
        candidate = root / rel
        if candidate.is_file():
            return candidate
    named = sorted(p for p in root.rglob(REPORT_FILE) if p.is_file())
    if named:
        return named[0]
    fallback = sorted(p for p in root.rglob("*.html") if p.is_file() and "allure" in str(p.relative_to(root)).lower())
    return fallback[0] if fallback else None


class ReportResolver:
    def __init__(
        self,
        service: RemoteTestService,
        objects: ObjectStore,
        store: JobStore,
        http: httpx.Client | None = None,
    ) -> None:
        self.service = service
        self.objects = objects
        self.store = store
        self.http = http or httpx.Client(timeout=120.0, follow_redirects=True)
        self.strategies: list[Strategy] = [
            self.from_descriptor_cache,
            self.from_object_store,
            self.from_report_info,
            self.from_single_file,
            self.from_archive,
        ]

    def resolve(self, run_ref: str) -> dict:
        ctx = ResolutionContext(run_ref, self.service)
        for strategy in self.strategies:
            descriptor = strategy(ctx)
            if descriptor is None:
                continue
            if descriptor.cacheable and descriptor.source != "cache":
                self.store.cache_report(descriptor)
            logger.info(f"[Report] {run_ref} resolved via {descriptor.source}: {descriptor.url}")
            return {
                "found": True,
                "url": descriptor.url,
                "source": descriptor.source,
                "cacheKey": descriptor.cacheKey,
                "runRef": run_ref,
            }
        return {
            "found": False,
            "runRef": run_ref,
            "message": "No Allure report found in artifacts" if ctx.artifacts else "No artifacts found for this run",
            "availableArtifacts": [{"name": a.name, "type": a.type, "extension": a.extension} for a in ctx.artifacts],
        }

    def _descriptor(self, ctx: ResolutionContext, source: str, url: str, cacheable: bool = True) -> ReportDescriptor:
        return ReportDescriptor(source=source, url=url, cacheKey=ctx.key, runRef=ctx.run_ref, cacheable=cacheable)

    def _store_report(self, ctx: ResolutionContext, body: bytes, source: str) -> str:
        return self.objects.put_object(
            ctx.key,
            body,
            "text/html",
            metadata={"run-arn": ctx.run_ref, "generated": utcnow().isoformat(), "source": source},
        )

    def _download(self, url: str) -> bytes:
        response = self.http.get(url)
        response.raise_for_status()
        return response.content

    # -- strategies ----------------------------------------------------------

    def from_descriptor_cache(self, ctx: ResolutionContext) -> ReportDescriptor | None:
        cached = self.store.get_cached_report(ctx.run_ref)
        if cached is None:
            return None
        return cached.model_copy(update={"source": "cache"})

    def from_object_store(self, ctx: ResolutionContext) -> ReportDescriptor | None:
        try:
            exists = self.objects.head_object(ctx.key)
        except ExternalServiceError as exc:
            logger.warning(f"[Report] Object store check failed for {ctx.key}: {exc}")
            return None
        return self._descriptor(ctx, "object-store", self.objects.url_for(ctx.key)) if exists else None

    def from_report_info(self, ctx: ResolutionContext) -> ReportDescriptor | None:
        artifact = ctx.find(lambda a: REPORT_INFO_FILE in a.name)
        if artifact is None:
            return None
        try:
            text = self._download(artifact.url).decode("utf-8", errors="replace")
        except httpx.HTTPError as exc:
            logger.error(f"[Report] Failed to fetch {REPORT_INFO_FILE}: {exc}")
            return None
        match = _REPORT_URL_RE.search(text)
        if not match or not match.group(1).strip():
            return None
        return self._descriptor(ctx, "report-info", match.group(1).strip())

    def from_single_file(self, ctx: ResolutionContext) -> ReportDescriptor | None:
        artifact = ctx.find(lambda a: REPORT_FILE in a.name)
        if artifact is None:
            return None
        try:
            url = self._store_report(ctx, self._download(artifact.url), "device-farm-artifact")
        except (httpx.HTTPError, ExternalServiceError) as exc:
            logger.error(f"[Report] Could not copy report into object storage, using artifact URL: {exc}")
            # Artifact URLs are pre-signed and expire, so this one is not cached.
            return self._descriptor(ctx, "remote-artifact", artifact.url, cacheable=False)
        return self._descriptor(ctx, "single-file", url)

    def from_archive(self, ctx: ResolutionContext) -> ReportDescriptor | None:
        artifact = ctx.find(lambda a: ARCHIVE_NAME in a.name and (a.extension or "").lower() == "zip")
        if artifact is None:
            return None
        try:
            with tempfile.TemporaryDirectory(prefix="device-farm-") as tmp:
                tmp_dir = Path(tmp)
                archive = tmp_dir / "artifacts.zip"
                archive.write_bytes(self._download(artifact.url))
                extract_dir = tmp_dir / "extracted"
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(extract_dir)
                report = find_report_file(extract_dir)
                if report is None:
                    logger.warning(f"[Report] {REPORT_FILE} not found in {ARCHIVE_NAME}")
                    return None
                logger.info(f"[Report] Found report in archive at {report.relative_to(extract_dir)}")
                url = self._store_report(ctx, report.read_bytes(), "device-farm-extraction")
        except (httpx.HTTPError, ExternalServiceError, zipfile.BadZipFile, OSError) as exc:
            logger.error(f"[Report] Archive extraction failed for {ctx.run_ref}: {exc}")
            return None
        return self._descriptor(ctx, "archive", url)
