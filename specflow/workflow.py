"""Workflow facade for SpecFlow.

This module ties the resolver, parsers, state store, migration engine,
health checker and next-action engine together behind one object whose
methods return plain dictionaries, ready to hand to a tool server.
Failures never escape: they come back as error dictionaries carrying a
suggestion and the next step to try.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .config import Settings
from .context import find_active_feature_dir
from .detect import detect_version, get_migration_steps, get_version_description, needs_upgrade
from .errors import NotFoundError, SpecflowError
from .health import BranchReader, HealthChecker, apply_fixes
from .migrate import migrate_project
from .paths import ResolvedPaths, resolve_feature_dir, resolve_paths
from .roadmap import read_roadmap
from .specflow_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    observability_hooks,
)
from .state import get_state_value, parse_assignment, read_state, update_state_value
from .status import get_status
from .checklist import are_all_checklists_complete, find_next_checklist_item, read_feature_checklists
from .tasks import find_next_task, read_tasks


logger = logging.getLogger("specflow.workflow")


def _error(e: Exception, message: str, suggestion: str, next_step: str, tip: Optional[str] = None) -> Dict[str, Any]:
    if isinstance(e, SpecflowError) and e.suggestion:
        suggestion = e.suggestion
    result = {
        "error": f"{message}: {e}",
        "suggestion": suggestion,
        "next_suggested_step": next_step,
    }
    if isinstance(e, SpecflowError):
        result["error_code"] = e.code
    if tip:
        result["workflow_tip"] = tip
    return result


class WorkflowManager:
    """Read and repair the workflow of one SpecFlow project."""

    def __init__(
        self,
        root: Path | str,
        settings: Optional[Settings] = None,
        branch_reader: Optional[BranchReader] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.paths: ResolvedPaths = resolve_paths(root, self.settings)
        self.branch_reader = branch_reader

    # ------------------------------------------------------------------
    # Status and health
    # ------------------------------------------------------------------

    @log_performance("workflow_status")
    def status(self) -> Dict[str, Any]:
        """Phase, step, progress, health and the next action in one report."""
        try:
            report = get_status(self.paths, self.settings, self.branch_reader)
            result = report.to_dict()
            result["next_suggested_step"] = report.next_action.action.value
            result["workflow_tip"] = report.next_action.reason
            return result
        except Exception as e:
            logger.error(f"Failed to build status: {e}")
            log_error_with_context(e, {"operation": "status", "root": str(self.paths.root)})
            return _error(e, "Failed to build status", "Run check to diagnose the project", "check")

    def check(self, fix: bool = False) -> Dict[str, Any]:
        """Run the health check, optionally repairing auto-fixable issues and re-checking."""
        try:
            with log_operation("health_check", root=str(self.paths.root), fix=fix):
                checker = HealthChecker(self.paths, self.settings, self.branch_reader)
                result = checker.run()
                fixes = []
                if fix and any(i.auto_fixable for i in result.issues):
                    fixes = apply_fixes(self.paths, result)
                    result = checker.run()
                    observability_hooks.log_workflow_event(
                        "health_fixed",
                        project=str(self.paths.root),
                        applied=sum(1 for f in fixes if f.success),
                        failed=sum(1 for f in fixes if not f.success),
                    )

            response = result.to_dict()
            response["fixes"] = [f.to_dict() for f in fixes]
            response["next_suggested_step"] = result.next_action or "status"
            if result.next_action == "run_check_fix":
                response["workflow_tip"] = "Run check with fix=true to apply automatic repairs"
            return response
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            log_error_with_context(e, {"operation": "check", "fix": fix, "root": str(self.paths.root)})
            return _error(e, "Health check failed", "Check that the project directory is readable", "check")

    def next_action(self) -> Dict[str, Any]:
        try:
            report = get_status(self.paths, self.settings, self.branch_reader)
            return {
                **report.next_action.to_dict(),
                "health": report.health.status.value,
                "blockers": report.blockers,
                "next_suggested_step": report.next_action.action.value,
            }
        except Exception as e:
            log_error_with_context(e, {"operation": "next_action", "root": str(self.paths.root)})
            return _error(e, "Failed to determine next action", "Run check to diagnose the project", "check")

    # ------------------------------------------------------------------
    # Versions and migration
    # ------------------------------------------------------------------

    def detect_version(self) -> Dict[str, Any]:
        try:
            detection = detect_version(self.paths)
            upgrade = needs_upgrade(detection)
            return {
                **detection.to_dict(),
                "description": get_version_description(detection.version),
                "needs_upgrade": upgrade,
                "migration_steps": get_migration_steps(detection.version),
                "next_suggested_step": "migrate" if upgrade else "status",
            }
        except Exception as e:
            log_error_with_context(e, {"operation": "detect_version", "root": str(self.paths.root)})
            return _error(e, "Version detection failed", "Check that the project directory is readable", "check")

    @log_performance("workflow_migrate")
    def migrate(self, force: bool = False) -> Dict[str, Any]:
        """Bring the manifest and state document to the current generation."""
        try:
            outcome = migrate_project(self.paths, force=force)
            failed = [name for name in ("manifest", "state") if not outcome[name]["success"]]
            if failed:
                outcome["error"] = f"Migration failed for: {', '.join(failed)}"
                outcome["suggestion"] = "Inspect the .pre-upgrade backups and fix the source documents by hand"
                outcome["next_suggested_step"] = "check"
            else:
                outcome["next_suggested_step"] = "check"
                outcome["workflow_tip"] = "Run check to confirm the migrated project is consistent"
            observability_hooks.log_workflow_event(
                "project_migrated",
                project=str(self.paths.root),
                from_version=outcome["detection"]["version"],
                failed=failed,
            )
            return outcome
        except Exception as e:
            logger.error(f"Migration failed: {e}")
            log_error_with_context(e, {"operation": "migrate", "force": force, "root": str(self.paths.root)})
            return _error(e, "Migration failed", "Inspect the state and manifest files", "detect_version")

    # ------------------------------------------------------------------
    # State document
    # ------------------------------------------------------------------

    def get_state(self, key: Optional[str] = None) -> Dict[str, Any]:
        """Return the whole state document or the value at dot path ``key``."""
        try:
            state = read_state(self.paths)
            if not key:
                return {"state_path": str(self.paths.state), "state": state.to_dict()}
            return {"key": key, "value": get_state_value(state, key), "state_path": str(self.paths.state)}
        except Exception as e:
            log_error_with_context(e, {"operation": "get_state", "key": key, "root": str(self.paths.root)})
            return _error(e, "Failed to read state", "Run check to diagnose the state document", "check")

    def set_state(self, keyvalue: str) -> Dict[str, Any]:
        """Apply one ``key=value`` assignment to the state document."""
        try:
            key, value = parse_assignment(keyvalue)
            with log_operation("set_state", key=key):
                state = update_state_value(self.paths, key, value)
            observability_hooks.log_workflow_event("state_updated", project=str(self.paths.root), key=key)
            return {
                "key": key,
                "value": get_state_value(state, key),
                "state_path": str(self.paths.state),
                "last_updated": state.last_updated,
            }
        except Exception as e:
            logger.error(f"Failed to set state: {e}")
            log_error_with_context(e, {"operation": "set_state", "keyvalue": keyvalue, "root": str(self.paths.root)})
            return _error(
                e,
                "Failed to update state",
                "Use key=value, e.g. orchestration.step.current=implement",
                "get_state",
            )

    # ------------------------------------------------------------------
    # Markdown artifacts
    # ------------------------------------------------------------------

    def roadmap(self) -> Dict[str, Any]:
        try:
            data = read_roadmap(self.paths)
            result = data.to_dict()
            active = data.active_phase
            result["next_suggested_step"] = "status" if active else "start_phase"
            return result
        except Exception as e:
            return _error(e, "Failed to read roadmap", "Create ROADMAP.md with a phase table", "check")

    def _feature_dir(self, feature: Optional[str]) -> Path:
        if feature:
            directory = resolve_feature_dir(self.paths, feature)
            if directory is None:
                raise NotFoundError(f"Feature '{feature}'", self.paths.specs_dir)
            return directory

        try:
            state = read_state(self.paths)
        except NotFoundError:
            state = None
        directory = find_active_feature_dir(self.paths, state)
        if directory is None:
            raise NotFoundError("Active feature directory", self.paths.specs_dir)
        return directory

    def list_tasks(self, feature: Optional[str] = None) -> Dict[str, Any]:
        try:
            directory = self._feature_dir(feature)
            data = read_tasks(directory)
            return {"feature": directory.name, **data.to_dict()}
        except Exception as e:
            return _error(
                e,
                "Failed to list tasks",
                f"Generate tasks for feature '{feature or 'active'}' first",
                "run_design",
            )

    def next_task(self, feature: Optional[str] = None) -> Dict[str, Any]:
        try:
            directory = self._feature_dir(feature)
            data = read_tasks(directory)
            task = find_next_task(data)
            progress = data.progress
            return {
                "feature": directory.name,
                "task": task.to_dict() if task else None,
                "remaining": progress.total - progress.completed,
                "progress": progress.to_dict(),
                "next_suggested_step": "continue_implement" if task else "run_verify" if progress.all_done else "status",
            }
        except Exception as e:
            return _error(
                e,
                "Failed to get next task",
                f"Generate tasks for feature '{feature or 'active'}' first",
                "run_design",
            )

    def checklists(self, feature: Optional[str] = None) -> Dict[str, Any]:
        try:
            directory = self._feature_dir(feature)
            data = read_feature_checklists(directory)
            complete = are_all_checklists_complete(data)
            pending = []
            for checklist in data.checklists:
                item = find_next_checklist_item(checklist)
                if item is not None:
                    pending.append({"checklist": str(checklist.file_path), "item": item.to_dict()})
            return {
                "feature": directory.name,
                **data.to_dict(),
                "all_complete": complete,
                "next_items": pending,
                "next_suggested_step": "status" if complete else "run_verify",
            }
        except Exception as e:
            return _error(e, "Failed to read checklists", "Create checklists under the feature's checklists/ directory", "status")
