"""Project status report: position in the workflow plus the next action."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Settings
from .context import get_project_context
from .errors import SpecflowError
from .health import BranchReader, HealthChecker
from .history import is_phase_archived
from .models import (
    HealthCheckResult,
    HealthStatus,
    NextActionInput,
    OrchestrationState,
    PhaseStatus,
    Severity,
    StatusReport,
    StepStatus,
    TaskProgress,
    classify_step,
)
from .next_action import determine_next_action
from .paths import ResolvedPaths
from .roadmap import get_phase_by_number, has_pending_user_gate, read_roadmap
from .specflow_logging import log_performance
from .state import read_state
from .tasks import read_tasks


logger = logging.getLogger("specflow.status")


def _has_active_phase(state: Optional[OrchestrationState]) -> bool:
    phase = state.phase if state else None
    return bool(phase and phase.number and phase.status and phase.status != PhaseStatus.NOT_STARTED.value)


def _collect_blockers(state: Optional[OrchestrationState], health: HealthCheckResult) -> List[str]:
    blockers = []
    step_status = state.step.status if state and state.step else None
    if step_status == StepStatus.BLOCKED.value:
        blockers.append("Current step is blocked")
    elif step_status == StepStatus.FAILED.value:
        blockers.append("Current step failed")
    blockers.extend(i.message for i in health.issues if i.severity is Severity.ERROR)
    return blockers


def _phase_summary(state: Optional[OrchestrationState], has_user_gate: bool) -> Optional[Dict[str, Any]]:
    if state is None or state.phase is None:
        return None
    summary = state.phase.to_dict()
    summary["has_user_gate"] = has_user_gate
    return summary


@log_performance("get_status")
def get_status(
    paths: ResolvedPaths,
    settings: Optional[Settings] = None,
    branch_reader: Optional[BranchReader] = None,
) -> StatusReport:
    """Assemble phase, step, task progress, health and the next action.

    A missing or broken state document does not raise; the health
    report carries the error and the next action becomes ``fix_health``.
    """
    state: Optional[OrchestrationState] = None
    try:
        state = read_state(paths)
    except SpecflowError as e:
        logger.debug(f"State unavailable for status: {e}")

    phase_number = state.phase.number if state and state.phase else None

    roadmap_phase = None
    try:
        if phase_number:
            roadmap_phase = get_phase_by_number(read_roadmap(paths), phase_number)
    except SpecflowError as e:
        logger.debug(f"Roadmap unavailable for status: {e}")

    context: Dict[str, Any] = {"feature_dir": None, "has_spec": False, "has_plan": False, "has_tasks": False}
    progress = TaskProgress()
    has_design_artifacts = False
    if _has_active_phase(state):
        context = get_project_context(paths, state)
        has_design_artifacts = context["has_spec"] and context["has_plan"] and context["has_tasks"]
        if context["has_tasks"]:
            try:
                progress = read_tasks(Path(context["feature_dir"])).progress
            except SpecflowError as e:
                logger.debug(f"Tasks unavailable for status: {e}")

    health = HealthChecker(paths, settings, branch_reader).run()

    step = state.step if state else None
    facts = NextActionInput(
        health_status=health.status,
        phase_number=phase_number,
        phase_status=state.phase.status if state and state.phase else None,
        step=classify_step(step.current) if step else None,
        has_design_artifacts=has_design_artifacts,
        tasks_total=progress.total,
        tasks_completed=progress.completed,
        pending_user_gate=has_pending_user_gate(roadmap_phase),
        phase_archived=bool(phase_number) and is_phase_archived(paths, phase_number),
    )
    decision = determine_next_action(facts)
    if health.status is HealthStatus.ERROR:
        logger.info(f"Status for {paths.root}: health errors block progress")

    return StatusReport(
        phase=_phase_summary(state, roadmap_phase.has_user_gate if roadmap_phase else False),
        step=step.to_dict() if step else None,
        progress=progress.to_dict(),
        health=health,
        next_action=decision,
        blockers=_collect_blockers(state, health),
        context=context,
    )
