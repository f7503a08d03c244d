"""Turn raw framework output into pass/fail/skip counters.

Strategies run in priority order and the first one that yields a non-zero
total wins, so a structured summary line is never overridden by the noisier
marker heuristics further down the list.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from .models import Counters

logger = logging.getLogger(__name__)

_SUMMARY_RE = re.compile(
    r"Tests:\s*(\d+)\s+passed(?:,\s*(\d+)\s+failed)?(?:,\s*(\d+)\s+skipped)?(?:,\s*(\d+)\s+total)?"
)
_PASSING_RE = re.compile(r"(\d+)\s+passing")
_FAILING_RE = re.compile(r"(\d+)\s+failing")
_PENDING_RE = re.compile(r"(\d+)\s+pending")
_SKIPPED_RE = re.compile(r"(\d+)\s+skipped")
_PASS_MARK_RE = re.compile("✓")
_FAIL_MARK_RE = re.compile("[✗✖]")
_SKIP_MARK_RE = re.compile(r"\s-\s")
_CURRENT_TEST_RE = re.compile(r"✓\s*(.*?)(?:\s*\(\d+ms\))?$")

Strategy = Callable[[str], Optional[Counters]]


def _int(value: str | None) -> int:
    return int(value) if value else 0


def parse_summary_line(text: str) -> Counters | None:
    match = _SUMMARY_RE.search(text)
    if not match:
        return None
    passed, failed, skipped, total = (_int(g) for g in match.groups())
    if match.group(4) is None:
        total = passed + failed + skipped
    return Counters(passed=passed, failed=failed, skipped=skipped, total=total)


def parse_mocha_vocabulary(text: str) -> Counters | None:
    passing = _PASSING_RE.search(text)
    failing = _FAILING_RE.search(text)
    pending = _PENDING_RE.search(text)
    skipped = _SKIPPED_RE.search(text)
    if not (passing or failing or pending or skipped):
        return None
    counters = Counters(
        passed=_int(passing.group(1)) if passing else 0,
        failed=_int(failing.group(1)) if failing else 0,
    )
    # "skipped" wins over "pending" when a reporter prints both.
    if skipped:
        counters.skipped = _int(skipped.group(1))
    elif pending:
        counters.skipped = _int(pending.group(1))
    counters.total = counters.passed + counters.failed + counters.skipped
    return counters


def count_markers(text: str) -> Counters | None:
    passed = len(_PASS_MARK_RE.findall(text))
    failed = len(_FAIL_MARK_RE.findall(text))
    skipped = len(_SKIP_MARK_RE.findall(text))
    if not (passed or failed or skipped):
        return None
    return Counters(passed=passed, failed=failed, skipped=skipped, total=passed + failed + skipped)


def assume_single_test(text: str) -> Counters:
    return Counters(total=1)


STRATEGIES: list[Strategy] = [parse_summary_line, parse_mocha_vocabulary, count_markers]


def parse(text: str | None) -> Counters:
    """Return counters for ``text``; never raises."""
    text = text or ""
    for strategy in STRATEGIES:
        try:
            counters = strategy(text)
        except Exception as exc:  # pragma: no cover
            logger.warning(f"[OutputParser] {strategy.__name__} failed: {exc}")
            continue
        if counters is not None and counters.total > 0:
            logger.debug(f"[OutputParser] {strategy.__name__}: {counters.model_dump()}")
            return counters
    logger.info("[OutputParser] No test counts found, assuming a single test")
    return assume_single_test(text)


def current_test(text: str | None) -> str | None:
    """Title of the first completed test in ``text``, skipping spec-file lines."""
    for line in (text or "").splitlines():
        if "✓" not in line:
            continue
        match = _CURRENT_TEST_RE.search(line)
        if match:
            title = match.group(1).strip()
            if title and "spec" not in title:
                return title
    return None
