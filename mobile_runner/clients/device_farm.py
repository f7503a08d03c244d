"""AWS Device Farm adapter for the ``RemoteTestService`` protocol."""
from __future__ import annotations

import json
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ExternalServiceError, NotFoundError
from ..models import Artifact, Counters, RemoteRun, UploadRecord, UploadSlot

logger = logging.getLogger(__name__)

# Device Farm only exists in us-west-2.
DEFAULT_REGION = "us-west-2"


def _upload_hash(raw_metadata: Any) -> str | None:
    if isinstance(raw_metadata, dict):
        return raw_metadata.get("hash")
    if isinstance(raw_metadata, str) and raw_metadata.strip().startswith("{"):
        try:
            return json.loads(raw_metadata).get("hash")
        except ValueError:
            return None
    return None


def _translate(operation: str, exc: Exception) -> Exception:
    if isinstance(exc, ClientError) and exc.response.get("Error", {}).get("Code") == "NotFoundException":
        return NotFoundError(f"Device Farm {operation}: {exc}")
    return ExternalServiceError(f"Device Farm {operation} failed: {exc}")


def _to_run(raw: dict[str, Any]) -> RemoteRun:
    counters = raw.get("counters")
    return RemoteRun(
        ref=raw.get("arn", ""),
        name=raw.get("name"),
        status=raw.get("status") or "UNKNOWN",
        result=raw.get("result"),
        platform=raw.get("platform"),
        counters=Counters(
            passed=counters.get("passed", 0),
            failed=counters.get("failed", 0),
            skipped=counters.get("skipped", 0),
            total=counters.get("total", 0),
        )
        if counters
        else None,
        created=raw.get("created"),
        started=raw.get("started"),
        stopped=raw.get("stopped"),
        message=raw.get("message"),
        totalJobs=raw.get("totalJobs"),
        completedJobs=raw.get("completedJobs"),
    )


class DeviceFarmService:
    def __init__(self, region: str = DEFAULT_REGION, client: Any = None) -> None:
        self.client = client or boto3.client("devicefarm", region_name=region)

    def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            return getattr(self.client, operation)(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise _translate(operation, exc) from exc

    def _paginate(self, operation: str, key: str, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        try:
            for page in self.client.get_paginator(operation).paginate(**kwargs):
                items.extend(page.get(key, []))
        except (ClientError, BotoCoreError) as exc:
            raise _translate(operation, exc) from exc
        return items

    def create_upload(self, project_ref: str, name: str, kind: str) -> UploadSlot:
        upload = self._call("create_upload", projectArn=project_ref, name=name, type=kind).get("upload") or {}
        if not upload.get("url") or not upload.get("arn"):
            raise ExternalServiceError(f"Device Farm did not return an upload slot for {name}")
        return UploadSlot(ref=upload["arn"], url=upload["url"])

    def get_upload(self, ref: str) -> str:
        upload = self._call("get_upload", arn=ref).get("upload") or {}
        return upload.get("status") or "FAILED"

    def list_uploads(self, project_ref: str, kind: str) -> list[UploadRecord]:
        return [
            UploadRecord(
                name=u.get("name", ""),
                hash=_upload_hash(u.get("metadata")),
                ref=u.get("arn", ""),
                status=u.get("status", ""),
                createdAt=u.get("created"),
            )
            for u in self._paginate("list_uploads", "uploads", arn=project_ref, type=kind)
        ]

    def schedule_run(
        self,
        project_ref: str,
        app_ref: str,
        pool_ref: str,
        test_package_ref: str,
        test_spec_ref: str | None,
        *,
        name: str,
        test_type: str,
    ) -> RemoteRun:
        test: dict[str, Any] = {"type": test_type, "testPackageArn": test_package_ref}
        if test_spec_ref:
            test["testSpecArn"] = test_spec_ref
        run = self._call(
            "schedule_run",
            projectArn=project_ref,
            appArn=app_ref,
            devicePoolArn=pool_ref,
            name=name,
            test=test,
        ).get("run") or {}
        if not run.get("arn"):
            raise ExternalServiceError("Device Farm did not return a run reference")
        return _to_run(run)

    def get_run(self, run_ref: str) -> RemoteRun:
        run = self._call("get_run", arn=run_ref).get("run")
        if not run:
            raise NotFoundError(f"Run not found: {run_ref}")
        return _to_run(run)

    def list_runs(self, project_ref: str) -> list[RemoteRun]:
        return [_to_run(r) for r in self._paginate("list_runs", "runs", arn=project_ref)]

    def list_artifacts(self, run_ref: str) -> list[Artifact]:
        return [
            Artifact(name=a.get("name", ""), type=a.get("type"), extension=a.get("extension"), url=a.get("url"))
            for a in self._paginate("list_artifacts", "artifacts", arn=run_ref, type="FILE")
        ]
