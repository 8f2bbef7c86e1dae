"""Feature directory context: which design artifacts exist for the active phase."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Optional

from .models import FeatureArtifacts, OrchestrationState, StepName
from .paths import ResolvedPaths, resolve_active_feature_dir


PHASE_PREFIX = re.compile(r"^(\d{4})-")

ARTIFACT_FILES = {
    "discovery": "discovery.md",
    "spec": "spec.md",
    "requirements": "requirements.md",
    "ui_design": "ui-design.md",
    "plan": "plan.md",
    "tasks": "tasks.md",
}


def check_feature_artifacts(feature_dir: Optional[Path]) -> FeatureArtifacts:
    if feature_dir is None:
        return FeatureArtifacts()
    flags = {name: (feature_dir / filename).exists() for name, filename in ARTIFACT_FILES.items()}
    return FeatureArtifacts(feature_dir=feature_dir, **flags)


def get_missing_artifacts(artifacts: FeatureArtifacts) -> list:
    """Design documents that must exist before analysis can start."""
    return artifacts.get_missing()


def infer_step_from_artifacts(artifacts: FeatureArtifacts) -> StepName:
    return StepName.ANALYZE if artifacts.has_design_artifacts else StepName.DESIGN


def find_active_feature_dir(paths: ResolvedPaths, state: Optional[OrchestrationState]) -> Optional[Path]:
    phase = state.phase if state else None
    number = phase.number if phase else None
    name = phase.name if phase else None
    return resolve_active_feature_dir(paths, number, name)


def get_project_context(paths: ResolvedPaths, state: Optional[OrchestrationState] = None) -> Dict[str, Any]:
    """Summarize the active feature directory and its artifacts."""
    feature_dir = find_active_feature_dir(paths, state)
    artifacts = check_feature_artifacts(feature_dir)
    phase_number = None
    if feature_dir is not None:
        match = PHASE_PREFIX.match(feature_dir.name)
        phase_number = match.group(1) if match else None

    return {
        "feature_dir": str(feature_dir) if feature_dir else None,
        "feature_name": feature_dir.name if feature_dir else None,
        "phase_number": phase_number,
        "has_spec": artifacts.spec,
        "has_plan": artifacts.plan,
        "has_tasks": artifacts.tasks,
        "artifacts": artifacts.to_dict(),
        "missing": artifacts.get_missing() if feature_dir else [],
    }
