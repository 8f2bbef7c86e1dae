"""tasks.md parsing, next-task selection and dependency cycle detection."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Set

from .errors import NotFoundError
from .fs_utils import read_markdown
from .models import Task, TaskSection, TaskStatus, TasksData


TASK_LINE = re.compile(r"^-\s*\[([xX ~\-bB])\]\s*(.+)$")
TASK_ID = re.compile(r"\bT\d{3}[a-z]?\b")
LEADING_TASK_ID = re.compile(r"^\s*T\d{3}[a-z]?\s*")
USER_STORY = re.compile(r"\[US(\d+)\]")
DEPENDENCY_CLAUSE = re.compile(r"(?:depends on|after|requires)\s+([T\d,\s]+)", re.IGNORECASE)
DEPENDENCY_ID = re.compile(r"T\d{3}[a-z]?")
BLOCKED_REASON = re.compile(r"[\[(]blocked:\s*([^\])]+)[\])]", re.IGNORECASE)
PHASE_SECTION = re.compile(r"^##\s+Phase\s+(\d+)[:\-]\s*(.+)", re.IGNORECASE)
SECTION = re.compile(r"^##\s+(.+)")
PURPOSE = re.compile(r"^\*\*Purpose\*\*:\s*(.+)")

_CHECKBOX_STATUS = {
    "x": TaskStatus.DONE,
    "X": TaskStatus.DONE,
    " ": TaskStatus.TODO,
    "b": TaskStatus.BLOCKED,
    "B": TaskStatus.BLOCKED,
    "~": TaskStatus.DEFERRED,
    "-": TaskStatus.DEFERRED,
}

CYCLE_ARROW = " → "


def _dependencies(description: str) -> List[str]:
    found: List[str] = []
    for clause in DEPENDENCY_CLAUSE.finditer(description):
        for task_id in DEPENDENCY_ID.findall(clause.group(1)):
            if task_id not in found:
                found.append(task_id)
    return found


def parse_task_line(line: str, line_number: int = 0) -> Optional[Task]:
    """Parse one checkbox line; lines without a ``T###`` identifier yield ``None``."""
    match = TASK_LINE.match(line)
    if not match:
        return None

    full_description = match.group(2).strip()
    id_match = TASK_ID.search(full_description)
    if not id_match:
        return None

    status = _CHECKBOX_STATUS[match.group(1)]
    description = LEADING_TASK_ID.sub("", full_description, count=1).strip()
    story = USER_STORY.search(description)

    blocked_reason = None
    if status is TaskStatus.BLOCKED:
        reason = BLOCKED_REASON.search(description)
        if reason:
            blocked_reason = reason.group(1).strip()

    return Task(
        id=id_match.group(0),
        description=description,
        status=status,
        dependencies=_dependencies(description),
        user_story=f"US{story.group(1)}" if story else None,
        is_parallel="[P]" in description,
        is_verification="[V]" in description,
        blocked_reason=blocked_reason,
        line=line_number,
    )


def parse_tasks_content(content: str, file_path: Optional[Path] = None) -> TasksData:
    data = TasksData(file_path=file_path)
    section: Optional[TaskSection] = None

    for index, line in enumerate(content.splitlines()):
        line_number = index + 1

        if data.title is None and line.startswith("# "):
            data.title = line[2:].strip()
            continue

        phase_header = PHASE_SECTION.match(line)
        header = phase_header or SECTION.match(line)
        if header:
            if phase_header:
                section = TaskSection(name=phase_header.group(2).strip(), phase_number=int(phase_header.group(1)))
            else:
                section = TaskSection(name=header.group(1).strip())
            data.sections.append(section)
            continue

        if section is not None:
            purpose = PURPOSE.match(line)
            if purpose:
                section.purpose = purpose.group(1).strip()
                continue

        task = parse_task_line(line, line_number)
        if task is None:
            continue
        if section is not None:
            task.section = section.name
            task.phase = section.phase_number
            section.tasks.append(task)
        data.tasks.append(task)

    return data


def read_tasks(feature_dir_or_file: Path) -> TasksData:
    """Read ``tasks.md`` from a feature directory (or an explicit markdown path)."""
    path = Path(feature_dir_or_file)
    if path.suffix != ".md":
        path = path / "tasks.md"
    if not path.exists():
        raise NotFoundError("tasks.md", path, suggestion="Run the design step to generate tasks")
    return parse_tasks_content(read_markdown(path), path)


def get_task_by_id(data: TasksData, task_id: str) -> Optional[Task]:
    for task in data.tasks:
        if task.id == task_id:
            return task
    return None


def find_next_task(data: TasksData) -> Optional[Task]:
    """First todo task whose dependencies are all done."""
    done = {t.id for t in data.tasks if t.status is TaskStatus.DONE}
    for task in data.tasks:
        if task.status is TaskStatus.TODO and all(dep in done for dep in task.dependencies):
            return task
    return None


def detect_circular_dependencies(tasks: List[Task]) -> List[List[str]]:
    """Return every dependency cycle reachable by depth-first search.

    Each cycle is the path from the revisited task back to itself, so the
    first and last identifiers are equal. Dependencies on unknown tasks are
    treated as leaves.
    """
    graph: Dict[str, List[str]] = {t.id: list(t.dependencies) for t in tasks}
    cycles: List[List[str]] = []
    visited: Set[str] = set()
    on_stack: Set[str] = set()

    def visit(task_id: str, path: List[str]) -> None:
        if task_id in on_stack:
            start = path.index(task_id)
            cycles.append(path[start:] + [task_id])
            return
        if task_id in visited:
            return

        visited.add(task_id)
        on_stack.add(task_id)
        for dependency in graph.get(task_id, []):
            visit(dependency, path + [task_id])
        on_stack.discard(task_id)

    for task in tasks:
        if task.id not in visited:
            visit(task.id, [])

    return cycles


def format_cycle(cycle: List[str]) -> str:
    return CYCLE_ARROW.join(cycle)
