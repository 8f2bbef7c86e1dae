"""Decide the single next workflow action from a snapshot of project facts."""

from __future__ import annotations

from .models import HealthStatus, NextAction, NextActionDecision, NextActionInput, PhaseStatus, StepName


def determine_next_action(facts: NextActionInput) -> NextActionDecision:
    """Walk the decision table in order; the first matching rule wins.

    Pure function: everything it looks at is in ``facts``.
    """
    if facts.health_status is HealthStatus.ERROR:
        return NextActionDecision(NextAction.FIX_HEALTH, "Health check reported errors")

    if not facts.phase_number or facts.phase_status in (None, PhaseStatus.NOT_STARTED.value):
        return NextActionDecision(NextAction.START_PHASE, "No phase is active")

    if facts.phase_status == PhaseStatus.AWAITING_USER.value:
        return NextActionDecision(NextAction.AWAITING_USER_GATE, f"Phase {facts.phase_number} is waiting on a user gate")

    if facts.phase_status == PhaseStatus.COMPLETE.value:
        if facts.phase_archived:
            return NextActionDecision(NextAction.START_PHASE, f"Phase {facts.phase_number} is complete and archived")
        return NextActionDecision(NextAction.ARCHIVE_PHASE, f"Phase {facts.phase_number} is complete but not archived")

    step = facts.step or StepName.DESIGN

    if step is StepName.DESIGN:
        if facts.has_design_artifacts:
            return NextActionDecision(NextAction.RUN_ANALYZE, "Design artifacts are in place")
        return NextActionDecision(NextAction.RUN_DESIGN, "Design artifacts are missing")

    if step is StepName.ANALYZE:
        return NextActionDecision(NextAction.RUN_ANALYZE, "Analysis step in progress")

    if step is StepName.IMPLEMENT:
        if facts.tasks_total > 0 and facts.tasks_completed >= facts.tasks_total:
            return NextActionDecision(NextAction.RUN_VERIFY, f"All {facts.tasks_total} tasks complete")
        return NextActionDecision(
            NextAction.CONTINUE_IMPLEMENT,
            f"{facts.tasks_completed}/{facts.tasks_total} tasks complete",
        )

    if facts.pending_user_gate:
        return NextActionDecision(NextAction.AWAITING_USER_GATE, "Verification passed; a user gate must be signed off")
    return NextActionDecision(NextAction.READY_TO_MERGE, "Verification step reached with no pending gate")
