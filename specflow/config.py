"""Configuration for SpecFlow.

Settings are read from the environment once per invocation. Format
constants describing the current document generation live here too so
that every module agrees on them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


CURRENT_SCHEMA_VERSION = "3.0"
SPECFLOW_VERSION = "3.0.0"
MANIFEST_SCHEMA_VERSION = "1.0"

REQUIRED_TEMPLATES = ("spec-template.md", "plan-template.md", "tasks-template.md")

HOME_ENV = "SPECFLOW_HOME"
PROJECT_ROOT_ENV = "SPECFLOW_PROJECT_ROOT"
LOG_LEVEL_ENV = "SPECFLOW_LOG_LEVEL"
LOG_FILE_ENV = "SPECFLOW_LOG_FILE"
TRUNK_BRANCHES_ENV = "SPECFLOW_TRUNK_BRANCHES"
GIT_TIMEOUT_ENV = "SPECFLOW_GIT_TIMEOUT"

DEFAULT_TRUNK_BRANCHES = ("main", "master")
DEFAULT_GIT_TIMEOUT = 5.0


@dataclass(frozen=True, slots=True)
class Settings:
    """Environment-driven settings for a single invocation."""

    home_dir: Path
    project_root: Optional[Path] = None
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    trunk_branches: Tuple[str, ...] = field(default=DEFAULT_TRUNK_BRANCHES)
    git_timeout: float = DEFAULT_GIT_TIMEOUT

    @property
    def system_templates_dir(self) -> Path:
        return self.home_dir / "templates"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``SPECFLOW_*`` environment variables."""
        home = os.getenv(HOME_ENV)
        home_dir = Path(home).expanduser() if home else Path.home() / ".specflow"

        root = os.getenv(PROJECT_ROOT_ENV)
        project_root = Path(root).expanduser().resolve() if root else None

        log_file = os.getenv(LOG_FILE_ENV)

        trunk = os.getenv(TRUNK_BRANCHES_ENV)
        if trunk:
            trunk_branches = tuple(b.strip() for b in trunk.split(",") if b.strip())
        else:
            trunk_branches = DEFAULT_TRUNK_BRANCHES

        timeout_raw = os.getenv(GIT_TIMEOUT_ENV)
        try:
            git_timeout = float(timeout_raw) if timeout_raw else DEFAULT_GIT_TIMEOUT
        except ValueError:
            git_timeout = DEFAULT_GIT_TIMEOUT

        return cls(
            home_dir=home_dir,
            project_root=project_root,
            log_level=os.getenv(LOG_LEVEL_ENV, "INFO").upper(),
            log_file=Path(log_file).expanduser() if log_file else None,
            trunk_branches=trunk_branches or DEFAULT_TRUNK_BRANCHES,
            git_timeout=git_timeout,
        )
