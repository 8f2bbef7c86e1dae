"""MCP server exposing SpecFlow state, health and migration tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.resources import TextResource

from specflow.config import PROJECT_ROOT_ENV, Settings
from specflow.paths import resolve_root
from specflow.specflow_logging import setup_logging
from specflow.workflow import WorkflowManager

mcp = FastMCP("specflow")


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = resolve_root(Path.cwd())
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _manager(root: Optional[str]) -> WorkflowManager:
    return WorkflowManager(_resolve_root(root))


def _manager_optional(root: Optional[str]) -> Optional[WorkflowManager]:
    try:
        return _manager(root)
    except ValueError:
        return None


@mcp.tool()
def status(root: Optional[str] = None) -> Dict[str, Any]:
    """Report the active phase, step, task progress, health and the single next action.
    Call this first to decide what to do next."""

    return _manager(root).status()


@mcp.tool()
def check(fix: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Run the consistency check across state, roadmap, tasks and git branch.
    With fix=true, auto-fixable issues are repaired and the check is run again."""

    return _manager(root).check(fix=fix)


@mcp.tool()
def next_action(root: Optional[str] = None) -> Dict[str, Any]:
    """Return the next workflow action with the reason it was chosen."""

    return _manager(root).next_action()


@mcp.tool()
def detect_version(root: Optional[str] = None) -> Dict[str, Any]:
    """Identify the project's format generation and whether it needs an upgrade."""

    return _manager(root).detect_version()


@mcp.tool()
def migrate(force: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Upgrade the manifest and state document to the current generation.
    Documents that get overwritten are backed up with a .pre-upgrade suffix."""

    return _manager(root).migrate(force=force)


@mcp.tool()
def get_state(key: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Read the state document, or a single value by dot path (e.g. orchestration.step.current)."""

    return _manager(root).get_state(key)


@mcp.tool()
def set_state(keyvalue: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Set one state value with key=value; values are parsed as JSON and coerced to the field type."""

    return _manager(root).set_state(keyvalue)


@mcp.tool()
def roadmap(root: Optional[str] = None) -> Dict[str, Any]:
    """Return the phases parsed from ROADMAP.md."""

    return _manager(root).roadmap()


@mcp.tool()
def list_tasks(feature: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the tasks of a feature (defaults to the active phase's feature directory)."""

    return _manager(root).list_tasks(feature)


@mcp.tool()
def next_task(feature: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the first open task whose dependencies are all done."""

    return _manager(root).next_task(feature)


@mcp.tool()
def checklists(feature: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the feature's checklists and the next open item of each."""

    return _manager(root).checklists(feature)


STATUS_URI = "specflow://status"


def _status_text(text: str) -> TextResource:
    return TextResource(uri=STATUS_URI, name="status", text=text)


@mcp.resource(STATUS_URI)
def resource_status():
    """Resource view summarizing the project's workflow position."""

    manager = _manager_optional(None)
    if not manager:
        return _status_text(
            f"No project root detected. Launch tools with a 'root' argument or set {PROJECT_ROOT_ENV}."
        )

    report = manager.status()
    if "error" in report:
        return _status_text(f"Status unavailable: {report['error']}")

    phase = report.get("phase") or {}
    step = report.get("step") or {}
    progress = report["progress"]
    lines = ["SpecFlow Status"]
    lines.append("")
    if phase.get("number"):
        lines.append(f"Phase: {phase['number']} {phase.get('name') or ''} ({phase.get('status')})")
    else:
        lines.append("Phase: none active")
    if step.get("current"):
        lines.append(f"Step: {step['current']} ({step.get('status')})")
    lines.append(f"Tasks: {progress['completed']}/{progress['total']} ({progress['percentage']}%)")
    lines.append(f"Health: {report['health']['status']}")
    lines.append(f"Next: {report['next_action']['action']} - {report['next_action']['reason']}")
    for blocker in report.get("blockers", []):
        lines.append(f"  Blocker: {blocker}")

    return _status_text("\n".join(lines))


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_file)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
