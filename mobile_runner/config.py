from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    return Path(raw).expanduser().resolve() if raw else default


class Settings(BaseModel):
    """Runtime settings, read from the environment by ``from_env``."""

    projectRoot: Path = Field(..., description="Test project root (holds test/, config/, package.json)")
    stateDir: Path = Field(..., description="Directory for running-tests.json, test-history.json and reports")
    frameworkCli: str = "npx wdio"
    reportCli: str = "npx allure"
    awsRegion: str = "us-west-2"
    projectArn: str | None = None
    devicePoolArn: str | None = None
    reportsBucket: str = "test-reports"
    reportsRegion: str = "eu-west-1"
    historyLimit: int = 50
    uploadPollInterval: float = 2.0
    uploadPollAttempts: int = 30
    httpTimeout: float = 60.0
    logLevel: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        cwd = Path(os.getcwd())
        return cls(
            projectRoot=_env_path("RUNNER_PROJECT_ROOT", cwd.parent),
            stateDir=_env_path("RUNNER_STATE_DIR", cwd),
            frameworkCli=os.getenv("RUNNER_FRAMEWORK_CLI", "npx wdio"),
            reportCli=os.getenv("RUNNER_REPORT_CLI", "npx allure"),
            awsRegion=os.getenv("AWS_REGION", "us-west-2"),
            projectArn=os.getenv("DEVICE_FARM_PROJECT_ARN") or None,
            devicePoolArn=os.getenv("DEVICE_FARM_POOL_ARN") or None,
            reportsBucket=os.getenv("REPORTS_BUCKET", "test-reports"),
            reportsRegion=os.getenv("REPORTS_REGION", "eu-west-1"),
            historyLimit=int(os.getenv("RUNNER_HISTORY_LIMIT", "50")),
            uploadPollInterval=float(os.getenv("RUNNER_UPLOAD_POLL_INTERVAL", "2")),
            uploadPollAttempts=int(os.getenv("RUNNER_UPLOAD_POLL_ATTEMPTS", "30")),
            httpTimeout=float(os.getenv("RUNNER_HTTP_TIMEOUT", "60")),
            logLevel=os.getenv("RUNNER_LOG_LEVEL", "INFO"),
        )

    @property
    def runningTestsPath(self) -> Path:
        return self.stateDir / "running-tests.json"

    @property
    def historyPath(self) -> Path:
        return self.stateDir / "test-history.json"

    @property
    def reportCachePath(self) -> Path:
        return self.stateDir / "report-cache.json"

    @property
    def reportsDir(self) -> Path:
        return self.stateDir / "allure-reports"

    @property
    def resultsDir(self) -> Path:
        return self.projectRoot / "allure-results"

    def job_results_dir(self, job_id: str) -> Path:
        """Results directory owned by a single local run."""
        return self.resultsDir / job_id


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
