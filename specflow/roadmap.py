"""ROADMAP.md parsing and status updates.

The roadmap is a hand-edited markdown file holding one phase table::

    | Phase | Name | Status | Verification Gate |
    |-------|------|--------|-------------------|
    | 0010  | core | ✅ Complete | Tests pass |

Rows that cannot be read are skipped rather than rejected; the only
hard failure is a roadmap with no phase table at all.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional

from .errors import InvalidFormatError, NotFoundError
from .fs_utils import atomic_write_text, read_markdown, read_text
from .models import PhaseStatus, RoadmapData, RoadmapPhase
from .paths import ResolvedPaths


logger = logging.getLogger("specflow.roadmap")

PROJECT_LINE = re.compile(r"^\*\*Project\*\*:\s*(.+)")
SCHEMA_LINE = re.compile(r"^\*\*Schema Version\*\*:\s*(.+)")
SEPARATOR_ROW = re.compile(r"^\|[-:\s|]+\|$")
PHASE_NUMBER = re.compile(r"(\d{4})")

# Checked in order; the first match wins.
_STATUS_MARKERS = (
    (PhaseStatus.COMPLETE, ("✅", "complete", "done")),
    (PhaseStatus.IN_PROGRESS, ("🔄", "in progress", "active")),
    (PhaseStatus.AWAITING_USER, ("⏳", "awaiting", "waiting")),
    (PhaseStatus.BLOCKED, ("🚫", "blocked")),
    (PhaseStatus.NOT_STARTED, ("⬜", "not started", "pending")),
)

STATUS_TEXT = {
    PhaseStatus.NOT_STARTED: "Not Started",
    PhaseStatus.IN_PROGRESS: "In Progress",
    PhaseStatus.COMPLETE: "Complete",
    PhaseStatus.AWAITING_USER: "Awaiting User",
    PhaseStatus.BLOCKED: "Blocked",
}


def parse_phase_status(cell: str) -> PhaseStatus:
    """Normalize a free-form status cell; unrecognized text means not started."""
    lower = cell.lower().replace("_", " ")
    for status, markers in _STATUS_MARKERS:
        if any(marker in lower for marker in markers):
            return status
    return PhaseStatus.NOT_STARTED


def _has_user_gate(text: str) -> bool:
    return "USER GATE" in text.upper()


def _split_row(row: str) -> List[str]:
    stripped = row.strip()
    if stripped.startswith("|"):
        stripped = stripped[1:]
    if stripped.endswith("|"):
        stripped = stripped[:-1]
    return [cell.strip() for cell in stripped.split("|")]


def _parse_row(row: str, line_number: int) -> Optional[RoadmapPhase]:
    cells = _split_row(row)
    if len(cells) < 3:
        return None

    match = PHASE_NUMBER.search(cells[0])
    if not match:
        return None

    status_cell = cells[2]
    gate_cell = cells[3] if len(cells) > 3 else ""
    return RoadmapPhase(
        number=match.group(1),
        name=cells[1],
        status=parse_phase_status(status_cell),
        has_user_gate=_has_user_gate(gate_cell) or _has_user_gate(status_cell),
        verification_gate=gate_cell or None,
        line=line_number,
    )


def parse_roadmap_content(content: str, file_path: Optional[Path] = None) -> RoadmapData:
    """Parse roadmap markdown into phases; never raises on unrecognized lines."""
    data = RoadmapData(file_path=file_path)
    in_table = False
    header_done = False

    for index, line in enumerate(content.splitlines()):
        line_number = index + 1

        project_match = PROJECT_LINE.match(line)
        if project_match:
            data.project_name = project_match.group(1).strip()
            continue

        schema_match = SCHEMA_LINE.match(line)
        if schema_match:
            data.schema_version = schema_match.group(1).strip()
            continue

        if "|" in line and "Phase" in line and "Status" in line:
            in_table = True
            header_done = False
            data.table_found = True
            continue

        if in_table and SEPARATOR_ROW.match(line.strip()):
            header_done = True
            continue

        if in_table and header_done and line.startswith("|"):
            phase = _parse_row(line, line_number)
            if phase:
                data.phases.append(phase)
            continue

        if in_table and header_done and line.strip():
            in_table = False
            header_done = False

    return data


def read_roadmap(paths: ResolvedPaths) -> RoadmapData:
    """Read ROADMAP.md, raising NotFound when absent and InvalidFormat without a phase table."""
    if not paths.roadmap.exists():
        raise NotFoundError("ROADMAP.md", paths.roadmap, suggestion="Create ROADMAP.md with a phase table")

    data = parse_roadmap_content(read_markdown(paths.roadmap), paths.roadmap)
    if not data.table_found:
        raise InvalidFormatError(
            "ROADMAP.md has no phase table",
            paths.roadmap,
            suggestion="Add a table with 'Phase' and 'Status' columns",
        )
    return data


def get_phase_by_number(roadmap: RoadmapData, number: str) -> Optional[RoadmapPhase]:
    for phase in roadmap.phases:
        if phase.number == number:
            return phase
    return None


def get_phases_by_status(roadmap: RoadmapData, status: PhaseStatus) -> List[RoadmapPhase]:
    return [p for p in roadmap.phases if p.status is status]


def has_pending_user_gate(phase: Optional[RoadmapPhase]) -> bool:
    """A gate is pending while its phase is still in progress or waiting on the user."""
    if phase is None:
        return False
    return phase.has_user_gate and phase.status in (PhaseStatus.IN_PROGRESS, PhaseStatus.AWAITING_USER)


def has_pending_user_gates(roadmap: RoadmapData) -> bool:
    return any(has_pending_user_gate(p) for p in roadmap.phases)


def update_phase_status(paths: ResolvedPaths, number: str, status: PhaseStatus) -> bool:
    """Rewrite the status cell of phase ``number``; returns whether a row changed."""
    if not paths.roadmap.exists():
        raise NotFoundError("ROADMAP.md", paths.roadmap)

    lines = read_text(paths.roadmap, "ROADMAP.md").split("\n")
    for index, line in enumerate(lines):
        if not line.startswith("|") or number not in line:
            continue
        cells = _split_row(line)
        if len(cells) >= 3 and number in cells[0]:
            cells[2] = STATUS_TEXT[status]
            lines[index] = "| " + " | ".join(cells) + " |"
            atomic_write_text(paths.roadmap, "\n".join(lines))
            logger.info(f"Roadmap phase {number} set to {status.value}")
            return True

    logger.warning(f"Phase {number} not found in {paths.roadmap}")
    return False
