"""Local execution engine: run one framework invocation per job on this machine."""
from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Callable

from . import output_parser, tasks
from .config import Settings
from .job_store import JobStore
from .models import HistoryEntry, Job, JobResult, JobStatus, TestConfig, new_job_id, utcnow

logger = logging.getLogger(__name__)

_TEST_TITLE_RE = re.compile(r"it(?:\.only)?\s*\(\s*['\"`]([^'\"`]+)['\"`]")
_TEST_FILE_SUFFIXES = (".e2e.ts", ".e2e.js")


def platform_config_file(platform: str) -> str:
    return f"config/wdio.{'ios' if platform == 'ios' else 'android'}.conf.ts"


def grep_pattern(config: TestConfig) -> str | None:
    tag_pattern = ".*".join(config.tags) if config.tags else ""
    if config.testMode == "single" and config.testCase:
        return f"{config.testCase}.*{tag_pattern}" if tag_pattern else config.testCase
    return tag_pattern or None


def build_command(config: TestConfig, framework_cli: str = "npx wdio") -> list[str]:
    """``<cli> <config-file> [--spec <path>] [--mochaOpts.grep <pattern>]`` for ``config``."""
    argv = [*shlex.split(framework_cli), platform_config_file(config.platform)]
    if config.testMode == "single" and config.test:
        spec = config.test[3:] if config.test.startswith("../") else config.test
        argv += ["--spec", spec]
    pattern = grep_pattern(config)
    if pattern:
        argv += ["--mochaOpts.grep", pattern]
    return argv


def _extract_titles(path: Path) -> list[str]:
    try:
        return _TEST_TITLE_RE.findall(path.read_text(encoding="utf-8", errors="replace"))
    except OSError as exc:
        logger.warning(f"[LocalRun] Could not read test file {path}: {exc}")
        return []


def discover_tests(config: TestConfig, project_root: Path) -> list[str]:
    """Titles the selection is expected to run; best effort, empty on any problem."""
    if config.testMode == "single" and config.test:
        titles = _extract_titles(project_root / config.test.removeprefix("../"))
        if config.testCase:
            needle = config.testCase.lower()
            return [t for t in titles if needle in t.lower()]
    else:
        test_dir = project_root / "test"
        files = sorted(p for p in test_dir.rglob("*") if p.is_file() and p.name.endswith(_TEST_FILE_SUFFIXES)) if test_dir.is_dir() else []
        titles = [t for f in files for t in _extract_titles(f)]
    if config.tags:
        tags = [tag.lower() for tag in config.tags]
        titles = [t for t in titles if any(tag in t.lower() for tag in tags)]
    return titles


class LocalExecutionEngine:
    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        spawn: Callable = tasks.spawn,
        run_process: Callable = subprocess.run,
    ) -> None:
        self.settings = settings
        self.store = store
        self.spawn = spawn
        self.run_process = run_process

    def start(self, config: TestConfig) -> tuple[str, str]:
        """Register a job, dispatch it in the background and return ``(job_id, command)``."""
        job_id = new_job_id("run")
        argv = build_command(config, self.settings.frameworkCli)
        command = shlex.join(argv)
        job = Job(
            id=job_id,
            name=config.display_name,
            config=config,
            command=command,
            executingTests=discover_tests(config, self.settings.projectRoot),
        )
        self.store.create_job(job)
        logger.info(f"[LocalRun {job_id}] Queued command: {command}")
        logger.info(f"[LocalRun {job_id}] Working directory: {self.settings.projectRoot}")
        self.spawn(
            f"local-{job_id}",
            self._execute,
            job_id,
            argv,
            on_error=lambda exc: self._finish(job_id, returncode=None, stdout="", stderr="", error=str(exc)),
            on_done=lambda: self._ensure_terminal(job_id),
            pool=tasks.LOCAL_POOL,
        )
        return job_id, command

    def _execute(self, job_id: str, argv: list[str]) -> None:
        results = self.settings.job_results_dir(job_id)
        shutil.rmtree(results, ignore_errors=True)
        results.mkdir(parents=True, exist_ok=True)
        env = os.environ.copy()
        env.setdefault("NODE_OPTIONS", "--max-old-space-size=4096")
        # wdio configs write Allure results wherever this points.
        env["ALLURE_RESULTS_DIR"] = str(results)
        self.store.update_job(job_id, status=JobStatus.RUNNING, startedAt=utcnow())
        result = self.run_process(
            argv,
            cwd=str(self.settings.projectRoot),
            env=env,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        stdout = result.stdout or ""
        stderr = result.stderr or ""
        logger.info(f"[LocalRun {job_id}] Exit code: {result.returncode}")
        self._finish(job_id, returncode=result.returncode, stdout=stdout, stderr=stderr)

    def _finish(self, job_id: str, *, returncode: int | None, stdout: str, stderr: str, error: str | None = None) -> None:
        job = self.store.get_job(job_id)
        if job is None:
            return
        combined = stdout + ("\n" + stderr if stderr else "")
        ended = utcnow()
        result = JobResult.PASSED if returncode == 0 and error is None else JobResult.FAILED
        counters = output_parser.parse(combined) if error is None else job.counters
        if error is None:
            report_ref = self._generate_report(job_id)
        else:
            report_ref = None
            shutil.rmtree(self.settings.job_results_dir(job_id), ignore_errors=True)
        job = job.model_copy(
            update={
                "status": JobStatus.COMPLETED,
                "result": result,
                "endedAt": ended,
                "counters": counters,
                "output": stdout,
                "error": error if error is not None else stderr,
                "currentlyRunningTest": output_parser.current_test(stdout),
            }
        )
        started = job.startedAt or job.createdAt
        failure_text = error
        if failure_text is None and result is JobResult.FAILED:
            failure_text = stderr.strip()[-2000:] or f"Process exited with code {returncode}"
        entry = HistoryEntry(
            id=job.id,
            name=job.name,
            status=JobStatus.COMPLETED.value,
            result=result.value,
            createdAt=started,
            duration=int((ended - started).total_seconds()),
            device=job.config.device,
            build=job.config.build,
            platform=job.config.platform,
            counters=counters,
            isRemote=False,
            reportReference=report_ref,
            error=failure_text,
            testMode=job.config.testMode,
            test=job.config.test,
            testCase=job.config.testCase,
        )
        self.store.complete_job(job_id, entry)
        logger.info(f"[LocalRun {job_id}] {result.value} {counters.model_dump()} saved to history")

    def _ensure_terminal(self, job_id: str) -> None:
        if self.store.get_job(job_id) is not None:
            logger.error(f"[LocalRun {job_id}] Task ended without recording a result")
            self._finish(job_id, returncode=None, stdout="", stderr="", error="Run ended without a result")

    def _generate_report(self, job_id: str) -> str | None:
        results = self.settings.job_results_dir(job_id)
        if not results.is_dir() or not any(results.iterdir()):
            logger.info(f"[LocalRun {job_id}] No report results to publish")
            shutil.rmtree(results, ignore_errors=True)
            return None
        report_dir = self.settings.reportsDir / job_id
        try:
            report_dir.parent.mkdir(parents=True, exist_ok=True)
            argv = [
                *shlex.split(self.settings.reportCli),
                "generate",
                str(results),
                "--clean",
                "--single-file",
                "-o",
                str(report_dir),
            ]
            proc = self.run_process(
                argv,
                cwd=str(self.settings.projectRoot),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
            if proc.returncode != 0:
                logger.warning(f"[LocalRun {job_id}] Report generation exited {proc.returncode}: {(proc.stderr or '').strip()[:500]}")
                return None
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning(f"[LocalRun {job_id}] No report generated: {exc}")
            return None
        finally:
            shutil.rmtree(results, ignore_errors=True)
        logger.info(f"[LocalRun {job_id}] Report generated at {report_dir}")
        return f"/api/local/reports/{job_id}"


def report_file(settings: Settings, job_id: str) -> Path | None:
    if not re.fullmatch(r"[A-Za-z0-9_.-]+", job_id):
        return None
    path = settings.reportsDir / job_id / "index.html"
    return path if path.is_file() else None
