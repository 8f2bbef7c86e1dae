"""Artifact resolution for SpecFlow projects.

A project keeps operational state in ``.specflow/`` and repository
knowledge (memory, templates, phase files, history) in ``.specify/``.
Older generations kept the state document and manifest in ``.specify/``
as well; those locations are still resolved so they can be read as a
migration source.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Settings


SPECFLOW_DIR = ".specflow"
SPECIFY_DIR = ".specify"
STATE_FILENAME = "orchestration-state.json"
MANIFEST_FILENAME = "manifest.json"

FEATURE_DIR_PATTERN = re.compile(r"^\d{4}-")


@dataclass(frozen=True, slots=True)
class ResolvedPaths:
    """Every tracked artifact location for one project, fixed per invocation."""

    root: Path
    specflow_dir: Path
    specify_dir: Path
    state: Path
    manifest: Path
    legacy_state: Path
    legacy_manifest: Path
    roadmap: Path
    backlog: Path
    specs_dir: Path
    memory_dir: Path
    templates_dir: Path
    phases_dir: Path
    history: Path
    archive_dir: Path
    issues_dir: Path
    scripts_dir: Path
    legacy_specifications_dir: Path
    system_templates_dir: Path

    @property
    def layout(self) -> str:
        """``current`` when ``.specflow/`` exists, ``legacy`` for ``.specify/`` only, else ``none``."""
        if self.specflow_dir.is_dir():
            return "current"
        if self.specify_dir.is_dir():
            return "legacy"
        return "none"

    @property
    def state_source(self) -> Optional[Path]:
        """Where the state document should be read from, preferring the current location."""
        if self.state.exists():
            return self.state
        if self.legacy_state.exists():
            return self.legacy_state
        return None

    @property
    def manifest_source(self) -> Optional[Path]:
        if self.manifest.exists():
            return self.manifest
        if self.legacy_manifest.exists():
            return self.legacy_manifest
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {name: str(getattr(self, name)) for name in self.__slots__}


def resolve_root(start_dir: Path | str) -> Optional[Path]:
    """Walk upward from ``start_dir`` to the nearest directory that holds project markers."""
    current = Path(start_dir).expanduser().resolve()
    for candidate in (current, *current.parents):
        if (candidate / SPECFLOW_DIR).is_dir() or (candidate / SPECIFY_DIR).is_dir():
            return candidate
    return None


def resolve_paths(root: Path | str, settings: Optional[Settings] = None) -> ResolvedPaths:
    """Compute every artifact location under ``root``; nothing is created."""
    settings = settings or Settings.from_env()
    root = Path(root).expanduser().resolve()
    specflow_dir = root / SPECFLOW_DIR
    specify_dir = root / SPECIFY_DIR
    return ResolvedPaths(
        root=root,
        specflow_dir=specflow_dir,
        specify_dir=specify_dir,
        state=specflow_dir / STATE_FILENAME,
        manifest=specflow_dir / MANIFEST_FILENAME,
        legacy_state=specify_dir / STATE_FILENAME,
        legacy_manifest=specify_dir / MANIFEST_FILENAME,
        roadmap=root / "ROADMAP.md",
        backlog=root / "BACKLOG.md",
        specs_dir=root / "specs",
        memory_dir=specify_dir / "memory",
        templates_dir=specify_dir / "templates",
        phases_dir=specify_dir / "phases",
        history=specify_dir / "history" / "HISTORY.md",
        archive_dir=specify_dir / "archive",
        issues_dir=specify_dir / "issues",
        scripts_dir=specify_dir / "scripts" / "bash",
        legacy_specifications_dir=root / "specifications",
        system_templates_dir=settings.system_templates_dir,
    )


def list_feature_dirs(paths: ResolvedPaths) -> List[Path]:
    """Feature directories under ``specs/`` sorted by name."""
    if not paths.specs_dir.is_dir():
        return []
    return sorted(p for p in paths.specs_dir.iterdir() if p.is_dir())


def resolve_feature_dir(paths: ResolvedPaths, identifier: str) -> Optional[Path]:
    """Find a feature directory by full name, 4-digit phase number or name suffix."""
    identifier = identifier.strip()
    if not identifier:
        return None
    dirs = list_feature_dirs(paths)

    for directory in dirs:
        if directory.name == identifier:
            return directory
    if re.fullmatch(r"\d{4}", identifier):
        for directory in dirs:
            if directory.name.startswith(f"{identifier}-"):
                return directory
    for directory in dirs:
        if directory.name.endswith(f"-{identifier}"):
            return directory
    return None


def resolve_active_feature_dir(paths: ResolvedPaths, phase_number: Optional[str] = None, phase_name: Optional[str] = None) -> Optional[Path]:
    """Locate the feature directory for the active phase.

    Tries ``{number}-{name}`` exactly, then any directory starting with
    ``{number}-``. Only when there is no active phase number does it fall
    back to the lexicographically last ``NNNN-*`` directory.
    """
    dirs = list_feature_dirs(paths)
    if phase_number:
        if phase_name:
            exact = paths.specs_dir / f"{phase_number}-{phase_name}"
            if exact.is_dir():
                return exact
        for directory in dirs:
            if directory.name.startswith(f"{phase_number}-"):
                return directory
        return None

    numbered = [d for d in dirs if FEATURE_DIR_PATTERN.match(d.name)]
    return numbered[-1] if numbered else None
