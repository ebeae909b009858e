"""Engine configuration.

Defaults can be overridden from the `[tool.hotrun]` table of a project's
pyproject.toml:

    [tool.hotrun]
    watch_dirs = ["src"]
    poll_interval = 0.5
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import tomli

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Configuration for the hot-reload engine."""

    # Directories whose Python files are tracked and watched
    watch_dirs: list[str] = field(default_factory=lambda: ["."])

    # File patterns the watcher reports
    patterns: list[str] = field(default_factory=lambda: ["*.py"])

    # Path parts never tracked or watched
    ignore_patterns: list[str] = field(
        default_factory=lambda: [
            "__pycache__",
            "*.pyc",
            ".git",
            ".venv",
            "site-packages",
            "*.egg-info",
        ]
    )

    # Seconds between directory scans
    poll_interval: float = 0.5

    # Seconds to let a burst of saves settle before reconciling
    debounce_seconds: float = 0.2

    # Module-level hook that registers a reconciler automatically ("" disables)
    reconcile_hook: str = "__reconcile__"

    def resolved_watch_dirs(self, root: Path | None = None) -> list[Path]:
        base = root or Path.cwd()
        return [(base / d).resolve() for d in self.watch_dirs]

    @property
    def exclude_parts(self) -> list[str]:
        """Ignore patterns usable as literal path parts (no wildcards)."""
        return [p for p in self.ignore_patterns if "*" not in p]


def load_config(root: str | Path | None = None, overrides: dict[str, Any] | None = None) -> EngineConfig:
    """Load configuration from `root/pyproject.toml`.

    A missing file or table yields defaults. Unknown keys are ignored with a
    warning. `overrides` (e.g. from CLI flags) win over the file.
    """
    root = Path(root) if root else Path.cwd()
    values: dict[str, Any] = {}

    pyproject = root / "pyproject.toml"
    if pyproject.exists():
        try:
            data = tomli.loads(pyproject.read_text())
            values.update(data.get("tool", {}).get("hotrun", {}))
        except (OSError, tomli.TOMLDecodeError) as e:
            logger.warning(f"Failed to read {pyproject}: {e}")

    values.update({k: v for k, v in (overrides or {}).items() if v is not None})

    known = {f.name for f in fields(EngineConfig)}
    for key in sorted(set(values) - known):
        logger.warning(f"Unknown hotrun setting ignored: {key}")
    return EngineConfig(**{k: v for k, v in values.items() if k in known})
