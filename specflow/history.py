"""Phase history archive (``.specify/history/HISTORY.md``).

Completed phases are prepended below the file header so the newest
entry is always first. Each entry starts with ``## NNNN - Name``, which
is also how archived phases are recognized.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from pathlib import Path
from typing import Optional

from .fs_utils import atomic_write_text, read_markdown, read_text
from .models import RoadmapPhase
from .paths import ResolvedPaths
from .specflow_logging import observability_hooks


logger = logging.getLogger("specflow.history")

HISTORY_HEADER = (
    "# Completed Phases\n"
    "\n"
    "> Archive of completed development phases. Newest first.\n"
    "\n"
    "---\n"
    "\n"
)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def ensure_history_file(paths: ResolvedPaths) -> bool:
    """Create HISTORY.md with its header; returns False when it already existed."""
    if paths.history.exists():
        return False
    atomic_write_text(paths.history, HISTORY_HEADER)
    return True


def find_phase_file(paths: ResolvedPaths, number: str) -> Optional[Path]:
    if not paths.phases_dir.is_dir():
        return None
    for candidate in sorted(paths.phases_dir.glob(f"{number}-*.md")):
        return candidate
    return None


def _strip_frontmatter(content: str) -> str:
    if content.startswith("---"):
        end = content.find("---", 3)
        if end != -1:
            return content[end + 3:].strip()
    return content.strip()


def _format_entry(phase: RoadmapPhase, body: Optional[str], completed_on: str) -> str:
    header = f"## {phase.number} - {phase.name}\n\n**Completed**: {completed_on}\n\n"
    if body:
        return header + body + "\n\n---\n"
    return header + "Phase completed without detailed phase file.\n\n---\n"


def archive_phase(paths: ResolvedPaths, phase: RoadmapPhase) -> Path:
    """Prepend ``phase`` to the history file and remove its consumed phase file."""
    phase_file = find_phase_file(paths, phase.number)
    body = _strip_frontmatter(read_text(phase_file, "Phase file")) if phase_file else None
    entry = _format_entry(phase, body, date.today().isoformat())

    content = read_text(paths.history, "HISTORY.md") if paths.history.exists() else HISTORY_HEADER
    marker = content.find("---\n")
    insert_at = marker + 4 if marker != -1 else len(content)
    updated = content[:insert_at] + "\n" + entry + content[insert_at:]
    atomic_write_text(paths.history, updated)

    if phase_file is not None:
        phase_file.unlink()

    logger.info(f"Archived phase {phase.number} to {paths.history}")
    observability_hooks.log_workflow_event(
        "phase_archived",
        project=str(paths.root),
        phase_number=phase.number,
        phase_name=phase.name,
    )
    return paths.history


def is_phase_archived(paths: ResolvedPaths, number: str) -> bool:
    if not paths.history.exists():
        return False
    pattern = re.compile(rf"^## {re.escape(number)}\s*-", re.MULTILINE)
    return bool(pattern.search(read_markdown(paths.history)))
