"""Per-run test spec variants carrying the run's test selection as exports."""
from __future__ import annotations

from pathlib import Path

DYNAMIC_SPEC_NAME = "device-farm-testspec-dynamic.yml"
_TEST_PHASE = "  test:"
_COMMANDS = "commands:"


def selection_exports(test_mode: str, test: str | None = None, test_case: str | None = None) -> str:
    lines = [""]
    if test_mode == "single" and test:
        lines.append('      - export TEST_MODE="single"')
        lines.append(f'      - export SELECTED_TEST="{test}"')
        if test_case:
            lines.append(f'      - export SELECTED_TEST_CASE="{test_case}"')
    else:
        lines.append('      - export TEST_MODE="full"')
    lines += [
        '      - echo "=== Injected Test Parameters ==="',
        "      - echo TEST_MODE=$TEST_MODE",
        "      - echo SELECTED_TEST=$SELECTED_TEST",
        "      - echo SELECTED_TEST_CASE=$SELECTED_TEST_CASE",
    ]
    return "\n".join(lines)


def inject_selection(base_spec: str, test_mode: str, test: str | None = None, test_case: str | None = None) -> str:
    """Insert selection exports right after the ``commands:`` key of the test phase.

    A spec without a test phase is returned unchanged.
    """
    phase = base_spec.find(_TEST_PHASE)
    if phase == -1:
        return base_spec
    commands = base_spec.find(_COMMANDS, phase)
    if commands == -1:
        return base_spec
    insert_at = commands + len(_COMMANDS)
    return base_spec[:insert_at] + selection_exports(test_mode, test, test_case) + base_spec[insert_at:]


def write_dynamic_spec(base_path: Path, out_dir: Path, test_mode: str, test: str | None, test_case: str | None) -> Path:
    spec = inject_selection(base_path.read_text(encoding="utf-8"), test_mode, test, test_case)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / DYNAMIC_SPEC_NAME
    target.write_text(spec, encoding="utf-8")
    return target
