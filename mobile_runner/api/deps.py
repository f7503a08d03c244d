"""Collaborator providers for the API routers; tests swap them via ``app.dependency_overrides``."""
from __future__ import annotations

from functools import lru_cache

import httpx
from fastapi import Depends

from ..clients.base import ObjectStore, RemoteTestService
from ..config import Settings, get_settings
from ..executor import LocalExecutionEngine
from ..job_store import JobStore, get_store
from ..services.reconciler import Reconciler
from ..services.remote_runs import RemoteRunOrchestrator
from ..services.reports import ReportResolver
from ..services.upload_cache import UploadCache


def settings_dep() -> Settings:
    return get_settings()


def store_dep() -> JobStore:
    return get_store()


@lru_cache(maxsize=1)
def _http_client() -> httpx.Client:
    return httpx.Client(timeout=get_settings().httpTimeout, follow_redirects=True)


def http_dep() -> httpx.Client:
    return _http_client()


@lru_cache(maxsize=1)
def _remote_service() -> RemoteTestService:
    from ..clients.device_farm import DeviceFarmService

    return DeviceFarmService(region=get_settings().awsRegion)


def remote_service_dep() -> RemoteTestService:
    return _remote_service()


@lru_cache(maxsize=1)
def _object_store() -> ObjectStore:
    from ..clients.object_store import S3ObjectStore

    settings = get_settings()
    return S3ObjectStore(settings.reportsBucket, settings.reportsRegion)


def object_store_dep() -> ObjectStore:
    return _object_store()


def local_engine_dep(
    settings: Settings = Depends(settings_dep),
    store: JobStore = Depends(store_dep),
) -> LocalExecutionEngine:
    return LocalExecutionEngine(settings, store)


def orchestrator_dep(
    settings: Settings = Depends(settings_dep),
    store: JobStore = Depends(store_dep),
    service: RemoteTestService = Depends(remote_service_dep),
    http: httpx.Client = Depends(http_dep),
) -> RemoteRunOrchestrator:
    uploads = UploadCache(
        service,
        http=http,
        poll_interval=settings.uploadPollInterval,
        max_attempts=settings.uploadPollAttempts,
    )
    return RemoteRunOrchestrator(settings, service, uploads, store)


def reconciler_dep(
    settings: Settings = Depends(settings_dep),
    store: JobStore = Depends(store_dep),
    service: RemoteTestService = Depends(remote_service_dep),
) -> Reconciler:
    return Reconciler(service, store, settings.projectArn)


def report_resolver_dep(
    store: JobStore = Depends(store_dep),
    service: RemoteTestService = Depends(remote_service_dep),
    objects: ObjectStore = Depends(object_store_dep),
    http: httpx.Client = Depends(http_dep),
) -> ReportResolver:
    return ReportResolver(service, objects, store, http=http)
