"""Artifact uploads to the remote test service, deduplicated against its own upload listing."""
from __future__ import annotations

import hashlib
import logging
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable

import httpx

from ..clients.base import RemoteTestService
from ..errors import ExternalServiceError, UploadError
from ..models import UploadRecord

logger = logging.getLogger(__name__)

RECENT_UPLOAD_WINDOW = timedelta(hours=24)
PENDING_STATUSES = {"INITIALIZED", "PROCESSING"}


class CachePolicy(str, Enum):
    CACHE_AWARE = "cache-aware"
    ALWAYS_FRESH = "always-fresh"


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def find_cached_upload(
    uploads: list[UploadRecord],
    name: str,
    file_hash: str,
    now: datetime | None = None,
) -> UploadRecord | None:
    """Strong hit on name + stored hash, else a weak hit on name within the last 24 hours."""
    now = now or datetime.now(timezone.utc)
    succeeded = [u for u in uploads if u.name == name and u.status == "SUCCEEDED"]
    for upload in succeeded:
        if upload.hash and upload.hash == file_hash:
            return upload
    cutoff = now - RECENT_UPLOAD_WINDOW
    for upload in succeeded:
        # Device Farm does not echo custom metadata back, so accept a recent same-named upload.
        if upload.createdAt and _aware(upload.createdAt) > cutoff:
            return upload
    return None


class UploadCache:
    def __init__(
        self,
        service: RemoteTestService,
        http: httpx.Client | None = None,
        poll_interval: float = 2.0,
        max_attempts: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.service = service
        self.http = http or httpx.Client(timeout=300.0)
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.sleep = sleep

    def resolve(
        self,
        project_ref: str,
        file_path: Path | str,
        kind: str,
        policy: CachePolicy = CachePolicy.CACHE_AWARE,
    ) -> str:
        """Return a remote reference for ``file_path``, uploading only when no cached copy fits."""
        path = Path(file_path)
        if not path.is_file():
            raise UploadError(f"Upload source not found: {path}")
        logger.info(f"[Upload] Processing {path.name} ({kind}, {policy.value})")
        if policy is CachePolicy.CACHE_AWARE:
            cached = self._lookup(project_ref, path, kind)
            if cached is not None:
                logger.info(f"[Upload] Reusing existing upload {cached.ref} for {path.name}")
                return cached.ref
            logger.info(f"[Upload] No existing upload for {path.name}, creating a new one")
        return self.upload(project_ref, path, kind)

    def _lookup(self, project_ref: str, path: Path, kind: str) -> UploadRecord | None:
        file_hash = file_sha256(path)
        try:
            uploads = self.service.list_uploads(project_ref, kind)
        except ExternalServiceError as exc:
            logger.warning(f"[Upload] Could not list existing uploads, uploading fresh: {exc}")
            return None
        return find_cached_upload(uploads, path.name, file_hash)

    def upload(self, project_ref: str, path: Path, kind: str) -> str:
        slot = self.service.create_upload(project_ref, path.name, kind)
        size_mb = path.stat().st_size / 1024 / 1024
        logger.info(f"[Upload] Slot {slot.ref} created, transferring {size_mb:.2f} MB")
        try:
            with open(path, "rb") as fh:
                # presigned PUTs need an explicit length, not a chunked body
                response = self.http.put(
                    slot.url,
                    content=fh,
                    headers={"Content-Type": "application/octet-stream", "Content-Length": str(path.stat().st_size)},
                )
        except httpx.HTTPError as exc:
            raise UploadError(f"Failed to transfer {path.name}: {exc}") from exc
        if response.is_error:
            raise UploadError(f"Failed to transfer {path.name}: {response.status_code} {response.reason_phrase}")
        return self._wait_until_processed(slot.ref, path.name)

    def _wait_until_processed(self, ref: str, name: str) -> str:
        status = "INITIALIZED"
        attempts = 0
        while status in PENDING_STATUSES and attempts < self.max_attempts:
            self.sleep(self.poll_interval)
            attempts += 1
            status = self.service.get_upload(ref)
            logger.info(f"[Upload] Status check {attempts}/{self.max_attempts} for {name}: {status}")
        if status != "SUCCEEDED":
            waited = attempts * self.poll_interval
            raise UploadError(
                f"Upload {name} failed with status {status} after {attempts} attempts ({waited:.0f}s)",
                status=status,
                attempts=attempts,
            )
        logger.info(f"[Upload] {name} processed: {ref}")
        return ref
