from __future__ import annotations

from typing import Protocol

from ..models import Artifact, RemoteRun, UploadRecord, UploadSlot


class RemoteTestService(Protocol):
    """Operations the runner needs from a remote device-testing service."""

    def create_upload(self, project_ref: str, name: str, kind: str) -> UploadSlot: ...

    def get_upload(self, ref: str) -> str: ...

    def list_uploads(self, project_ref: str, kind: str) -> list[UploadRecord]: ...

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
    ) -> RemoteRun: ...

    def get_run(self, run_ref: str) -> RemoteRun: ...

    def list_runs(self, project_ref: str) -> list[RemoteRun]: ...

    def list_artifacts(self, run_ref: str) -> list[Artifact]: ...


class ObjectStore(Protocol):
    def put_object(self, key: str, body: bytes, content_type: str, metadata: dict[str, str] | None = None) -> str: ...

    def head_object(self, key: str) -> bool: ...

    def url_for(self, key: str) -> str: ...
