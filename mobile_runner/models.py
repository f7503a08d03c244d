from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


HISTORY_LIMIT = 50
TERMINAL_STATUSES = {"COMPLETED"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id(prefix: str = "run") -> str:
    """Time-derived id, unique across concurrent requests in the same millisecond."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def run_id_from_ref(run_ref: str) -> str:
    return run_ref.rstrip("/").split("/")[-1] or "unknown"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"


class JobResult(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"


class Counters(BaseModel):
    passed: int = 0
    failed: int = 0
    broken: int = 0
    skipped: int = 0
    total: int = 0


class TestConfig(BaseModel):
    model_config = ConfigDict(frozen=True)
    __test__ = False

    platform: Literal["ios", "android"]
    build: str = Field(..., min_length=1)
    device: str = Field(..., min_length=1)
    testMode: Literal["full", "single"] = "full"
    test: str | None = Field(None, description="Spec file, relative to the project root")
    testCase: str | None = Field(None, description="Test title pattern (single mode only)")
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _single_needs_file(self) -> "TestConfig":
        if self.testMode == "single" and not (self.test or "").strip():
            raise ValueError("testMode 'single' requires 'test'")
        return self

    @property
    def display_name(self) -> str:
        if self.testMode == "single" and self.test:
            return f"Single: {self.test.split('/')[-1]}"
        if self.tags:
            return f"Full Test Suite ({', '.join(self.tags)})"
        return "Full Test Suite"


class Job(BaseModel):
    id: str
    name: str
    status: JobStatus = JobStatus.PENDING
    result: JobResult | None = None
    config: TestConfig
    command: str = ""
    createdAt: datetime = Field(default_factory=utcnow)
    startedAt: datetime | None = None
    endedAt: datetime | None = None
    counters: Counters = Field(default_factory=Counters)
    executingTests: list[str] = Field(default_factory=list)
    currentlyRunningTest: str | None = None
    output: str = ""
    error: str = ""


class HistoryEntry(BaseModel):
    id: str
    name: str
    status: str
    result: str | None = None
    createdAt: datetime = Field(default_factory=utcnow)
    duration: int | None = None
    device: str = ""
    build: str = ""
    platform: str = ""
    counters: Counters = Field(default_factory=Counters)
    isRemote: bool = False
    runRef: str | None = None
    jobId: str | None = None
    reportReference: str | None = None
    error: str | None = None
    testMode: str | None = None
    test: str | None = None
    testCase: str | None = None

    @property
    def dedup_key(self) -> str:
        return self.runRef if self.isRemote and self.runRef else self.id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class UploadRecord(BaseModel):
    name: str
    hash: str | None = None
    ref: str
    status: str
    createdAt: datetime | None = None


class UploadSlot(BaseModel):
    ref: str
    url: str


class RemoteRun(BaseModel):
    ref: str
    name: str | None = None
    status: str = "UNKNOWN"
    result: str | None = None
    platform: str | None = None
    counters: Counters | None = None
    created: datetime | None = None
    started: datetime | None = None
    stopped: datetime | None = None
    message: str | None = None
    totalJobs: int | None = None
    completedJobs: int | None = None

    @property
    def duration(self) -> int | None:
        if self.started and self.stopped:
            return round((self.stopped - self.started).total_seconds())
        return None


class Artifact(BaseModel):
    name: str = ""
    type: str | None = None
    extension: str | None = None
    url: str | None = None


class ReportDescriptor(BaseModel):
    source: str
    url: str
    cacheKey: str
    runRef: str
    cacheable: bool = True


class RemoteRunRequest(BaseModel):
    projectArn: str | None = None
    devicePoolArn: str | None = None
    platform: Literal["ios", "android"] = "android"
    buildPath: str | None = None
    testSpecPath: str | None = None
    testType: str = "APPIUM_NODE"
    testMode: Literal["full", "single"] = "full"
    testSuite: str | None = Field(None, description="Selected spec file for single mode")
    testCase: str | None = None
