"""Consistency (health) checker.

Runs an ordered battery of checks that cross-reference the state
document, the markdown artifacts and the current git branch. The state
checks come first and are fatal: without a readable state document
nothing else can be verified. Every later check is isolated so that a
failure inside one (git missing, unreadable directory) still produces a
partial report.

``apply_fixes`` performs the deterministic repair for each issue
flagged as auto-fixable.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import CURRENT_SCHEMA_VERSION, REQUIRED_TEMPLATES, SPECFLOW_VERSION, Settings
from .context import check_feature_artifacts, find_active_feature_dir
from .errors import NotFoundError
from .fs_utils import atomic_write_text, read_markdown, try_read_json
from .history import ensure_history_file
from .migrate import BACKUP_SUFFIX, migrate_manifest, migrate_state
from .models import (
    FixResult,
    HealthCheckResult,
    HealthIssue,
    HealthStatus,
    OrchestrationState,
    PhaseStatus,
    Severity,
    StepName,
    StepStatus,
    TaskStatus,
    classify_step,
)
from .paths import ResolvedPaths, list_feature_dirs, resolve_paths, resolve_root
from .roadmap import get_phase_by_number, get_phases_by_status, parse_roadmap_content
from .specflow_logging import log_autofix, log_error_with_context, log_health_check, log_performance
from .state import read_raw_state, read_state, write_state
from .tasks import detect_circular_dependencies, format_cycle, read_tasks


logger = logging.getLogger("specflow.health")

BranchReader = Callable[[Path], Optional[str]]

MAX_SCHEMA_ISSUES = 5

VALID_STEP_NAMES = tuple(s.value for s in StepName)
VALID_STEP_STATUSES = tuple(s.value for s in StepStatus)
VALID_PHASE_STATUSES = tuple(s.value for s in PhaseStatus)

SHORT_PREFIX = re.compile(r"^\d{3}-")
FULL_PREFIX = re.compile(r"^\d{4}-")
ANY_PREFIX = re.compile(r"^(\d{3,4})-")

BACKLOG_TEMPLATE = """# Project Backlog

> Items deferred from phases without a specific target phase assignment.
> Review periodically to schedule into upcoming phases.

**Created**: {today}
**Last Updated**: {today}

---

## Backlog Items

### P1 - High Priority

| Item | Source | Reason Deferred | Notes |
|------|--------|-----------------|-------|

### P2 - Medium Priority

| Item | Source | Reason Deferred | Notes |
|------|--------|-----------------|-------|

### P3 - Low Priority

| Item | Source | Reason Deferred | Notes |
|------|--------|-----------------|-------|
"""


def git_branch_reader(timeout: float) -> BranchReader:
    """Build a reader that asks git for the current branch; ``None`` when unavailable."""
    def read(root: Path) -> Optional[str]:
        try:
            completed = subprocess.run(
                ["git", "branch", "--show-current"],
                cwd=root,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"git branch lookup failed in {root}: {e}")
            return None
        if completed.returncode != 0:
            return None
        return completed.stdout.strip() or None
    return read


def compare_semver(a: str, b: str) -> int:
    """Negative when ``a < b``, zero when equal, positive when ``a > b``."""
    def parts(version: str) -> List[int]:
        numbers = []
        for piece in version.strip().lstrip("v").split(".")[:3]:
            match = re.match(r"\d+", piece)
            numbers.append(int(match.group(0)) if match else 0)
        return numbers + [0] * (3 - len(numbers))

    left, right = parts(a), parts(b)
    for x, y in zip(left, right):
        if x != y:
            return x - y
    return 0


def _issue(code: str, severity: Severity, message: str, fix: Optional[str] = None, auto_fixable: bool = False) -> HealthIssue:
    return HealthIssue(code=code, severity=severity, message=message, fix=fix, auto_fixable=auto_fixable)


def _summarize(names: List[str]) -> str:
    shown = ", ".join(names[:3])
    return shown + ("..." if len(names) > 3 else "")


def _step_index(state: OrchestrationState) -> int:
    index = state.step.index if state.step else None
    if isinstance(index, int):
        return index
    try:
        return int(str(index))
    except (TypeError, ValueError):
        return 0


def determine_status(issues: List[HealthIssue]) -> HealthStatus:
    if any(i.severity is Severity.ERROR for i in issues):
        return HealthStatus.ERROR
    if any(i.severity is Severity.WARNING for i in issues):
        return HealthStatus.WARNING
    return HealthStatus.READY


def determine_next_step(issues: List[HealthIssue], status: HealthStatus) -> Optional[str]:
    """Prefer the autofix pass whenever it can repair something at the blocking severity."""
    if status is HealthStatus.READY:
        return None
    blocking = Severity.ERROR if status is HealthStatus.ERROR else Severity.WARNING
    if any(i.severity is blocking and i.auto_fixable for i in issues):
        return "run_check_fix"
    return "fix_errors" if status is HealthStatus.ERROR else "review_warnings"


class HealthChecker:
    """Collect health issues for one project."""

    def __init__(self, paths: ResolvedPaths, settings: Optional[Settings] = None, branch_reader: Optional[BranchReader] = None):
        self.paths = paths
        self.settings = settings or Settings.from_env()
        self.branch_reader = branch_reader or git_branch_reader(self.settings.git_timeout)

    def run(self) -> HealthCheckResult:
        issues: List[HealthIssue] = []
        state = self._check_state(issues)

        if state is not None:
            checks = (
                ("schema_version", self._check_schema_version),
                ("step_fields", self._check_step_fields),
                ("legacy_locations", self._check_legacy_locations),
                ("auxiliary_documents", self._check_auxiliary_documents),
                ("templates", self._check_templates),
                ("manifest", self._check_manifest),
                ("feature_naming", self._check_feature_naming),
                ("roadmap", self._check_roadmap),
                ("branch", self._check_branch),
                ("feature_artifacts", self._check_feature_artifacts),
                ("step_blocked", self._check_step_blocked),
            )
            for name, check in checks:
                try:
                    issues.extend(check(state))
                except Exception as e:
                    log_error_with_context(e, {"operation": "health_check", "check": name, "root": str(self.paths.root)})
                    issues.append(_issue("CHECK_FAILED", Severity.INFO, f"The {name} check could not run: {e}"))

        status = determine_status(issues)
        result = HealthCheckResult(status=status, issues=issues, next_action=determine_next_step(issues, status))
        log_health_check(self.paths.root, status.value, len(issues), summary=result.summary)
        return result

    # ------------------------------------------------------------------
    # Fatal checks
    # ------------------------------------------------------------------

    def _check_state(self, issues: List[HealthIssue]) -> Optional[OrchestrationState]:
        if not self.paths.state.exists():
            if self.paths.legacy_state.exists():
                issues.append(_issue(
                    "NO_STATE",
                    Severity.ERROR,
                    "No state file in .specflow/ (a legacy state file exists in .specify/)",
                    "Run the health check with fix enabled to migrate the legacy state file",
                    auto_fixable=True,
                ))
            else:
                issues.append(_issue(
                    "NO_STATE",
                    Severity.ERROR,
                    "No state file found",
                    "Initialize the project to create .specflow/orchestration-state.json",
                ))
            return None

        raw = read_raw_state(self.paths.state)
        if raw.error is not None:
            issues.append(_issue(
                "STATE_INVALID",
                Severity.ERROR,
                f"State file is not valid JSON: {raw.error}",
                "Repair .specflow/orchestration-state.json by hand or restore it from a backup",
            ))
            return None

        if raw.violations:
            for violation in raw.violations[:MAX_SCHEMA_ISSUES]:
                issues.append(_issue(
                    "STATE_SCHEMA_ERROR",
                    Severity.ERROR,
                    str(violation),
                    "Run the health check with fix enabled to rebuild the state document",
                    auto_fixable=True,
                ))
            if len(raw.violations) > MAX_SCHEMA_ISSUES:
                issues.append(_issue(
                    "STATE_SCHEMA_ERROR",
                    Severity.ERROR,
                    f"... and {len(raw.violations) - MAX_SCHEMA_ISSUES} more validation errors",
                ))
            return None

        return OrchestrationState.from_dict(raw.data)

    # ------------------------------------------------------------------
    # State field checks
    # ------------------------------------------------------------------

    def _check_schema_version(self, state: OrchestrationState) -> List[HealthIssue]:
        if state.schema_version == CURRENT_SCHEMA_VERSION:
            return []
        return [_issue(
            "SCHEMA_VERSION_OUTDATED",
            Severity.ERROR,
            f'schema_version is "{state.schema_version}", expected "{CURRENT_SCHEMA_VERSION}"',
            "Run the health check with fix enabled to migrate the state document",
            auto_fixable=True,
        )]

    def _check_step_fields(self, state: OrchestrationState) -> List[HealthIssue]:
        issues = []
        step = state.step
        index = step.index if step else None
        current = step.current if step else None

        if index is not None and (not isinstance(index, int) or isinstance(index, bool)):
            issues.append(_issue(
                "STEP_INDEX_TYPE_ERROR",
                Severity.ERROR,
                f'step.index is {type(index).__name__} ("{index}"), must be an integer',
                "Run the health check with fix enabled to convert it",
                auto_fixable=True,
            ))

        if current is not None and current not in VALID_STEP_NAMES:
            issues.append(_issue(
                "STEP_CURRENT_INVALID",
                Severity.ERROR,
                f'step.current is "{current}", must be one of: {", ".join(VALID_STEP_NAMES)} (or null)',
                "Run the health check with fix enabled to reset it",
                auto_fixable=True,
            ))

        status = step.status if step else None
        if status is not None and status not in VALID_STEP_STATUSES:
            issues.append(_issue(
                "STEP_STATUS_INVALID",
                Severity.ERROR,
                f'step.status is "{status}", must be one of: {", ".join(VALID_STEP_STATUSES)}',
                "Run the health check with fix enabled to reset it",
                auto_fixable=True,
            ))

        phase_status = state.phase.status if state.phase else None
        if phase_status is not None and phase_status not in VALID_PHASE_STATUSES:
            issues.append(_issue(
                "PHASE_STATUS_INVALID",
                Severity.ERROR,
                f'phase.status is "{phase_status}", must be one of: {", ".join(VALID_PHASE_STATUSES)}',
                "Run the health check with fix enabled to reset it",
                auto_fixable=True,
            ))

        named = classify_step(current) if current in VALID_STEP_NAMES else None
        if named is not None and isinstance(index, int) and not isinstance(index, bool) and index != named.position:
            issues.append(_issue(
                "STEP_INDEX_MISMATCH",
                Severity.WARNING,
                f'step.index is {index} but step.current is "{current}" (expected index {named.position})',
                "Run the health check with fix enabled to correct the index",
                auto_fixable=True,
            ))
        return issues

    # ------------------------------------------------------------------
    # Layout checks
    # ------------------------------------------------------------------

    def _check_legacy_locations(self, state: OrchestrationState) -> List[HealthIssue]:
        issues = []
        if self.paths.legacy_state.exists():
            issues.append(_issue(
                "STATE_WRONG_LOCATION",
                Severity.WARNING,
                "State file found in .specify/ (should only be in .specflow/)",
                "Run the health check with fix enabled to move the duplicate aside",
                auto_fixable=True,
            ))
        if self.paths.legacy_manifest.exists():
            issues.append(_issue(
                "MANIFEST_WRONG_LOCATION",
                Severity.WARNING,
                "Manifest found in .specify/ (should only be in .specflow/)",
                "Run the health check with fix enabled to migrate and move the duplicate aside",
                auto_fixable=True,
            ))
        if self.paths.issues_dir.exists():
            issues.append(_issue(
                "DEPRECATED_ISSUES_DIR",
                Severity.WARNING,
                "Deprecated .specify/issues/ directory found (removed in v3.0)",
                "Move anything still needed into BACKLOG.md and delete .specify/issues/",
            ))
        return issues

    def _check_auxiliary_documents(self, state: OrchestrationState) -> List[HealthIssue]:
        issues = []
        if not self.paths.backlog.exists():
            issues.append(_issue(
                "NO_BACKLOG", Severity.INFO, "No BACKLOG.md found",
                "Run the health check with fix enabled to create a BACKLOG.md template", auto_fixable=True,
            ))
        if not self.paths.history.exists():
            issues.append(_issue(
                "NO_HISTORY", Severity.INFO, "No .specify/history/HISTORY.md found",
                "Run the health check with fix enabled to create HISTORY.md", auto_fixable=True,
            ))
        if not self.paths.roadmap.exists():
            issues.append(_issue(
                "NO_ROADMAP", Severity.WARNING, "No ROADMAP.md found",
                "Create ROADMAP.md with a phase table",
            ))
        if not self.paths.memory_dir.is_dir():
            issues.append(_issue(
                "NO_MEMORY", Severity.INFO, "No memory directory found",
                "Create .specify/memory/ with the project's memory documents",
            ))
        return issues

    def _check_templates(self, state: OrchestrationState) -> List[HealthIssue]:
        system_available = self.paths.system_templates_dir.is_dir()
        if not self.paths.templates_dir.is_dir():
            if system_available:
                return [_issue(
                    "NO_TEMPLATES", Severity.WARNING, "No templates directory found",
                    "Run the health check with fix enabled to copy templates from the SpecFlow home directory",
                    auto_fixable=True,
                )]
            return [_issue(
                "NO_TEMPLATES", Severity.WARNING, "No templates directory found (system templates also missing)",
                f"Install SpecFlow templates into {self.paths.system_templates_dir}",
            )]

        missing = [name for name in REQUIRED_TEMPLATES if not (self.paths.templates_dir / name).exists()]
        if not missing:
            return []
        return [_issue(
            "MISSING_TEMPLATES", Severity.WARNING, f"Missing templates: {', '.join(missing)}",
            "Run the health check with fix enabled to copy the missing templates" if system_available
            else f"Install SpecFlow templates into {self.paths.system_templates_dir}",
            auto_fixable=system_available,
        )]

    def _check_manifest(self, state: OrchestrationState) -> List[HealthIssue]:
        if not self.paths.manifest.exists():
            return []

        manifest = try_read_json(self.paths.manifest)
        problem = None
        if not isinstance(manifest, dict):
            problem = "Cannot read or parse .specflow/manifest.json"
        else:
            compatibility = manifest.get("compatibility")
            if compatibility is not None and not isinstance(compatibility, dict):
                problem = "Invalid manifest.json structure: compatibility must be an object"
            elif isinstance(compatibility, dict) and compatibility.get("min_cli") is not None \
                    and not isinstance(compatibility.get("min_cli"), str):
                problem = "Invalid manifest.json structure: compatibility.min_cli must be a string"
        if problem:
            return [_issue("MANIFEST_INVALID", Severity.WARNING, problem, "Regenerate the manifest by running the migration")]

        min_cli = (manifest.get("compatibility") or {}).get("min_cli")
        if min_cli and compare_semver(SPECFLOW_VERSION, min_cli) < 0:
            return [_issue(
                "CLI_VERSION_MISMATCH",
                Severity.ERROR,
                f"Project requires SpecFlow v{min_cli}+ but running v{SPECFLOW_VERSION}",
                "Upgrade SpecFlow",
            )]
        return []

    def _check_feature_naming(self, state: OrchestrationState) -> List[HealthIssue]:
        issues = []
        dirs = list_feature_dirs(self.paths)

        short = [d.name for d in dirs if SHORT_PREFIX.match(d.name) and not FULL_PREFIX.match(d.name)]
        if short:
            issues.append(_issue(
                "ABC_NAMING_FOUND",
                Severity.WARNING,
                f"Found {len(short)} phase folder(s) with old 3-digit naming: {_summarize(short)}",
                "Rename folders from 001-name to the 4-digit 0010-name format",
            ))

        completed = {
            str(item.get("phase_number"))
            for item in state.history
            if isinstance(item, dict) and item.get("type") == "phase_completed" and item.get("phase_number")
        }
        unarchived = []
        for directory in dirs:
            match = ANY_PREFIX.match(directory.name)
            if match and (match.group(1).zfill(4) in completed or match.group(1) in completed):
                unarchived.append(directory.name)
        if unarchived:
            issues.append(_issue(
                "COMPLETED_PHASE_NOT_ARCHIVED",
                Severity.WARNING,
                f"Found {len(unarchived)} completed phase(s) still in specs/: {_summarize(unarchived)}",
                "Move completed phases to .specify/archive/",
            ))
        return issues

    # ------------------------------------------------------------------
    # Cross-source checks
    # ------------------------------------------------------------------

    def _check_roadmap(self, state: OrchestrationState) -> List[HealthIssue]:
        if not self.paths.roadmap.exists():
            return []

        roadmap = parse_roadmap_content(read_markdown(self.paths.roadmap), self.paths.roadmap)
        if not roadmap.table_found:
            return [_issue(
                "ROADMAP_NO_TABLE", Severity.WARNING, "ROADMAP.md has no phase table",
                "Add a table with Phase, Name, Status and Gate columns",
            )]

        issues = []
        active = get_phases_by_status(roadmap, PhaseStatus.IN_PROGRESS)
        if len(active) > 1:
            issues.append(_issue(
                "MULTIPLE_ACTIVE_PHASES",
                Severity.WARNING,
                f"ROADMAP.md marks {len(active)} phases in progress: {', '.join(p.number for p in active)}",
                "Only one phase should be in progress at a time",
            ))

        number = state.phase.number if state.phase else None
        if not number:
            return issues

        phase = get_phase_by_number(roadmap, number)
        if phase is None:
            issues.append(_issue(
                "PHASE_NOT_IN_ROADMAP",
                Severity.WARNING,
                f"State references phase {number} but it's not in ROADMAP.md",
                "Add the phase to ROADMAP.md or update the state document",
            ))
        elif state.phase.status == PhaseStatus.IN_PROGRESS.value and phase.status is PhaseStatus.COMPLETE:
            issues.append(_issue(
                "STATE_ROADMAP_DRIFT",
                Severity.WARNING,
                "State shows phase in progress but ROADMAP shows complete",
                "Close the phase once it has been verified",
            ))
        return issues

    def _check_branch(self, state: OrchestrationState) -> List[HealthIssue]:
        expected = state.phase.branch if state.phase else None
        if not expected:
            return []
        current = self.branch_reader(self.paths.root)
        if not current or current == expected:
            return []
        if current in self.settings.trunk_branches:
            return [_issue(
                "ON_MAIN_BRANCH",
                Severity.INFO,
                f"On {current} but state expects {expected}",
                "If the phase was merged, start the next phase",
            )]
        return [_issue(
            "BRANCH_MISMATCH",
            Severity.WARNING,
            f'Current branch "{current}" doesn\'t match state "{expected}"',
            f'Run "git checkout {expected}" to switch branches',
        )]

    def _check_feature_artifacts(self, state: OrchestrationState) -> List[HealthIssue]:
        if not (state.phase and state.phase.number):
            return []
        feature_dir = find_active_feature_dir(self.paths, state)
        if feature_dir is None:
            return []

        issues = []
        artifacts = check_feature_artifacts(feature_dir)
        missing = artifacts.get_missing()
        if _step_index(state) > 0 and missing:
            issues.append(_issue(
                "MISSING_ARTIFACTS",
                Severity.WARNING,
                f"Missing design artifacts: {', '.join(missing)}",
                "Run the design step to generate the missing artifacts",
            ))

        if not artifacts.tasks:
            return issues

        try:
            tasks = read_tasks(feature_dir)
        except NotFoundError:
            return issues

        if not tasks.tasks:
            issues.append(_issue(
                "TASKS_FORMAT_ERROR",
                Severity.WARNING,
                "tasks.md exists but no tasks found (likely format issue)",
                "Expected format: '- [ ] T001 Description'. The task ID must be inline with the checkbox.",
            ))
            return issues

        cycles = detect_circular_dependencies(tasks.tasks)
        if cycles:
            extra = f" (and {len(cycles) - 1} more)" if len(cycles) > 1 else ""
            issues.append(_issue(
                "CIRCULAR_DEPENDENCIES",
                Severity.ERROR,
                f"Circular dependencies found: {format_cycle(cycles[0])}{extra}",
                "Remove one of the dependencies in each cycle",
            ))

        progress = tasks.progress
        if progress.all_done and state.step and state.step.current == StepName.IMPLEMENT.value:
            issues.append(_issue(
                "TASKS_COMPLETE_STEP_IMPLEMENT",
                Severity.INFO,
                "All tasks complete but step is still implement",
                "Run the health check with fix enabled to advance to verify",
                auto_fixable=True,
            ))
        return issues

    def _check_step_blocked(self, state: OrchestrationState) -> List[HealthIssue]:
        status = state.step.status if state.step else None
        if status not in (StepStatus.BLOCKED.value, StepStatus.FAILED.value):
            return []
        return [_issue(
            "STEP_BLOCKED",
            Severity.WARNING,
            f"Current step is {status}",
            "Review blockers and retry, or set orchestration.step.status=in_progress",
        )]


@log_performance("health_check")
def run_health_check(
    start: Path | str,
    settings: Optional[Settings] = None,
    branch_reader: Optional[BranchReader] = None,
) -> HealthCheckResult:
    """Resolve the project containing ``start`` and check it."""
    settings = settings or Settings.from_env()
    root = resolve_root(start)
    if root is None:
        issues = [_issue(
            "NO_PROJECT",
            Severity.ERROR,
            "Not in a SpecFlow project directory",
            "Navigate to a SpecFlow project or initialize one",
        )]
        return HealthCheckResult(status=HealthStatus.ERROR, issues=issues, next_action="fix_errors")
    return HealthChecker(resolve_paths(root, settings), settings, branch_reader).run()


# ----------------------------------------------------------------------
# Autofix
# ----------------------------------------------------------------------


def _move_aside(path: Path) -> Path:
    target = path.with_name(path.name + BACKUP_SUFFIX)
    os.replace(path, target)
    return target


def _update_state(paths: ResolvedPaths, mutate: Callable[[Dict[str, Any]], None]) -> None:
    document = read_state(paths).to_dict()
    mutate(document)
    write_state(paths, document)


def _fix_step_index_type(document: Dict[str, Any]) -> None:
    step = document["orchestration"]["step"]
    index = step.get("index")
    try:
        step["index"] = int(str(index).strip())
    except ValueError:
        named = classify_step(step.get("current"))
        step["index"] = named.position if named else 0


def _fix_step_current(document: Dict[str, Any]) -> None:
    step = document["orchestration"]["step"]
    index = step.get("index")
    if isinstance(index, int) and 0 <= index < len(VALID_STEP_NAMES):
        step["current"] = VALID_STEP_NAMES[index]
    else:
        step["current"] = StepName.DESIGN.value
        step["index"] = 0


def _fix_step_status(document: Dict[str, Any]) -> None:
    document["orchestration"]["step"]["status"] = StepStatus.NOT_STARTED.value


def _fix_step_index_mismatch(document: Dict[str, Any]) -> None:
    step = document["orchestration"]["step"]
    step["index"] = classify_step(step.get("current")).position


def _fix_tasks_complete(document: Dict[str, Any]) -> None:
    step = document["orchestration"]["step"]
    step["current"] = StepName.VERIFY.value
    step["index"] = StepName.VERIFY.position


class _Fixer:
    """Deterministic repairs keyed by issue code."""

    def __init__(self, paths: ResolvedPaths):
        self.paths = paths

    def run(self, code: str) -> str:
        handler = getattr(self, f"fix_{code.lower()}", None)
        if handler is None:
            raise KeyError(f"No automatic repair for {code}")
        return handler()

    def _migrate(self, force: bool = False) -> str:
        result = migrate_state(self.paths, force=force)
        if not result.success:
            raise RuntimeError(result.error or "state migration failed")
        return result.details

    def fix_no_state(self) -> str:
        return self._migrate()

    def fix_state_schema_error(self) -> str:
        return self._migrate(force=True)

    def fix_schema_version_outdated(self) -> str:
        return self._migrate()

    def fix_step_index_type_error(self) -> str:
        _update_state(self.paths, _fix_step_index_type)
        return "Converted step.index to an integer"

    def fix_step_current_invalid(self) -> str:
        _update_state(self.paths, _fix_step_current)
        return "Reset step.current to a valid step"

    def fix_step_status_invalid(self) -> str:
        _update_state(self.paths, _fix_step_status)
        return "Reset step.status to not_started"

    def fix_phase_status_invalid(self) -> str:
        roadmap_status = None
        state = read_state(self.paths)
        if self.paths.roadmap.exists() and state.phase and state.phase.number:
            roadmap = parse_roadmap_content(read_markdown(self.paths.roadmap))
            phase = get_phase_by_number(roadmap, state.phase.number)
            roadmap_status = phase.status.value if phase else None
        new_status = roadmap_status or PhaseStatus.NOT_STARTED.value

        def mutate(document: Dict[str, Any]) -> None:
            document["orchestration"]["phase"]["status"] = new_status

        _update_state(self.paths, mutate)
        return f"Set phase.status to {new_status}"

    def fix_step_index_mismatch(self) -> str:
        _update_state(self.paths, _fix_step_index_mismatch)
        return "Aligned step.index with step.current"

    def fix_state_wrong_location(self) -> str:
        target = _move_aside(self.paths.legacy_state)
        return f"Moved legacy state file to {target.name}"

    def fix_manifest_wrong_location(self) -> str:
        result = migrate_manifest(self.paths)
        if not result.success:
            raise RuntimeError(result.error or "manifest migration failed")
        target = _move_aside(self.paths.legacy_manifest)
        return f"Migrated manifest and moved legacy copy to {target.name}"

    def fix_no_backlog(self) -> str:
        atomic_write_text(self.paths.backlog, BACKLOG_TEMPLATE.format(today=date.today().isoformat()))
        return "Created BACKLOG.md"

    def fix_no_history(self) -> str:
        ensure_history_file(self.paths)
        return "Created .specify/history/HISTORY.md"

    def _copy_templates(self, only_missing: bool) -> str:
        source = self.paths.system_templates_dir
        target = self.paths.templates_dir
        target.mkdir(parents=True, exist_ok=True)
        copied = 0
        for template in sorted(source.iterdir()):
            if not template.is_file():
                continue
            destination = target / template.name
            if only_missing and destination.exists():
                continue
            shutil.copy2(template, destination)
            copied += 1
        return f"Copied {copied} templates to .specify/templates/"

    def fix_no_templates(self) -> str:
        return self._copy_templates(only_missing=False)

    def fix_missing_templates(self) -> str:
        return self._copy_templates(only_missing=True)

    def fix_tasks_complete_step_implement(self) -> str:
        _update_state(self.paths, _fix_tasks_complete)
        return "Updated step to verify"


def apply_fixes(paths: ResolvedPaths, result: HealthCheckResult) -> List[FixResult]:
    """Repair every auto-fixable issue once per code; a failing repair does not stop the rest."""
    fixer = _Fixer(paths)
    outcomes: List[FixResult] = []
    seen = set()
    for issue in result.issues:
        if not issue.auto_fixable or issue.code in seen:
            continue
        seen.add(issue.code)
        try:
            action = fixer.run(issue.code)
        except Exception as e:
            log_error_with_context(e, {"operation": "apply_fix", "code": issue.code, "root": str(paths.root)})
            log_autofix(issue.code, str(e), success=False)
            outcomes.append(FixResult(code=issue.code, action=f"Fix failed: {e}", success=False))
            continue
        logger.info(f"Applied fix for {issue.code}: {action}")
        log_autofix(issue.code, action, success=True)
        outcomes.append(FixResult(code=issue.code, action=action))
    return outcomes
