from __future__ import annotations

import logging
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)

BUNDLE_NAME = "test-bundle.zip"
BUNDLE_CONTENTS = ("test", "config", "package.json", "tsconfig.json")
_SKIP_DIRS = {"node_modules", ".git", "__pycache__"}


def build_test_bundle(project_root: Path, output: Path | None = None, contents: tuple[str, ...] = BUNDLE_CONTENTS) -> Path:
    """Zip the current test sources into a fresh bundle, replacing any previous one."""
    project_root = Path(project_root)
    output = Path(output) if output else project_root / BUNDLE_NAME
    output.unlink(missing_ok=True)
    names: list[str] = []
    with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for entry in contents:
            source = project_root / entry
            if source.is_file():
                zf.write(source, entry)
                names.append(entry)
            elif source.is_dir():
                for path in sorted(source.rglob("*")):
                    if path.is_file() and not _SKIP_DIRS.intersection(path.relative_to(project_root).parts):
                        arcname = path.relative_to(project_root).as_posix()
                        zf.write(path, arcname)
                        names.append(arcname)
            else:
                logger.warning(f"[Bundle] {entry} not found under {project_root}")
    if not any(n.startswith("config/") and "devicefarm" in n for n in names):
        logger.warning("[Bundle] Device Farm config not found in bundle")
    logger.info(f"[Bundle] Wrote {len(names)} files to {output}")
    return output
