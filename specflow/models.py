"""Data models for SpecFlow workflow state.

This module contains the records shared by every layer: the canonical
orchestration state document, the typed views re-derived from the
markdown artifacts (roadmap, tasks, checklists), health-check issues,
migration results and the status report handed to callers.

Closed vocabularies are ``str`` enums with explicit classification
functions. State documents themselves keep raw strings so that an
invalid value can still be loaded and reported by the health checker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


# ----------------------------------------------------------------------
# Vocabularies
# ----------------------------------------------------------------------


class PhaseStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    BLOCKED = "blocked"
    AWAITING_USER = "awaiting_user"


class StepName(str, Enum):
    DESIGN = "design"
    ANALYZE = "analyze"
    IMPLEMENT = "implement"
    VERIFY = "verify"

    @property
    def position(self) -> int:
        return STEP_ORDER.index(self)


STEP_ORDER = (StepName.DESIGN, StepName.ANALYZE, StepName.IMPLEMENT, StepName.VERIFY)


def classify_step(value: Optional[str]) -> Optional[StepName]:
    """Return the step named by ``value`` or ``None`` when it is not a known step."""
    if not isinstance(value, str):
        return None
    try:
        return StepName(value.strip().lower())
    except ValueError:
        return None


class StepStatus(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


class TaskStatus(str, Enum):
    TODO = "todo"
    DONE = "done"
    BLOCKED = "blocked"
    DEFERRED = "deferred"


class ChecklistItemStatus(str, Enum):
    TODO = "todo"
    DONE = "done"
    SKIPPED = "skipped"


class ChecklistType(str, Enum):
    IMPLEMENTATION = "implementation"
    VERIFICATION = "verification"
    DEFERRED = "deferred"
    OTHER = "other"

    @property
    def prefix(self) -> str:
        return _CHECKLIST_PREFIXES[self]


_CHECKLIST_PREFIXES = {
    ChecklistType.IMPLEMENTATION: "I",
    ChecklistType.VERIFICATION: "V",
    ChecklistType.DEFERRED: "D",
    ChecklistType.OTHER: "C",
}


def classify_checklist(filename: Union[str, Path]) -> ChecklistType:
    """Classify a checklist file by keywords in its name."""
    name = Path(filename).name.lower()
    if "verification" in name or "verify" in name:
        return ChecklistType.VERIFICATION
    if "implementation" in name or "implement" in name:
        return ChecklistType.IMPLEMENTATION
    if "deferred" in name or "defer" in name:
        return ChecklistType.DEFERRED
    return ChecklistType.OTHER


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class HealthStatus(str, Enum):
    READY = "ready"
    WARNING = "warning"
    ERROR = "error"


class RepoVersion(str, Enum):
    V1 = "v1.0"
    V2 = "v2.0"
    V3 = "v3.0"
    UNINITIALIZED = "uninitialized"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MigrationAction(str, Enum):
    CREATED = "created"
    MIGRATED = "migrated"
    SKIPPED = "skipped"
    ERROR = "error"


class NextAction(str, Enum):
    FIX_HEALTH = "fix_health"
    START_PHASE = "start_phase"
    AWAITING_USER_GATE = "awaiting_user_gate"
    ARCHIVE_PHASE = "archive_phase"
    RUN_DESIGN = "run_design"
    RUN_ANALYZE = "run_analyze"
    CONTINUE_IMPLEMENT = "continue_implement"
    RUN_VERIFY = "run_verify"
    READY_TO_MERGE = "ready_to_merge"


# ----------------------------------------------------------------------
# Canonical state document
# ----------------------------------------------------------------------


def _split(data: Optional[Dict[str, Any]], known: tuple) -> Dict[str, Any]:
    """Return the keys of ``data`` that are not in ``known``."""
    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if k not in known}


def _present(data: Optional[Dict[str, Any]], known: tuple) -> frozenset:
    """Return which of the ``known`` keys appear in ``data``."""
    if not isinstance(data, dict):
        return frozenset()
    return frozenset(k for k in known if k in data)


def _keep(values: Dict[str, Any], present: Optional[frozenset]) -> Dict[str, Any]:
    """Drop keys the source document never had unless they now hold a value.

    Records built in code (``present`` is ``None``) emit every key.
    """
    if present is None:
        return values
    return {k: v for k, v in values.items() if k in present or v not in (None, [], {})}


@dataclass(slots=True)
class Project:
    """Identity of the project that owns a state document."""

    id: str
    name: str
    path: str
    extra: Dict[str, Any] = field(default_factory=dict)

    FIELDS = ("id", "name", "path")

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "path": self.path, **self.extra}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        return cls(
            id=data["id"],
            name=data["name"],
            path=data["path"],
            extra=_split(data, cls.FIELDS),
        )


@dataclass(slots=True)
class PhaseState:
    """The active phase as recorded in the state document."""

    id: Optional[str] = None
    number: Optional[str] = None
    name: Optional[str] = None
    branch: Optional[str] = None
    status: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    present: Optional[frozenset] = field(default=None, repr=False, compare=False)

    FIELDS = ("id", "number", "name", "branch", "status")

    def to_dict(self) -> Dict[str, Any]:
        values = {
            "id": self.id,
            "number": self.number,
            "name": self.name,
            "branch": self.branch,
            "status": self.status,
        }
        return {**_keep(values, self.present), **self.extra}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhaseState":
        return cls(
            id=data.get("id"),
            number=data.get("number"),
            name=data.get("name"),
            branch=data.get("branch"),
            status=data.get("status"),
            extra=_split(data, cls.FIELDS),
            present=_present(data, cls.FIELDS),
        )


@dataclass(slots=True)
class StepState:
    """Position inside the phase's design/analyze/implement/verify cycle."""

    current: Optional[str] = None
    index: Optional[Union[int, str]] = None
    status: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    present: Optional[frozenset] = field(default=None, repr=False, compare=False)

    FIELDS = ("current", "index", "status")

    def to_dict(self) -> Dict[str, Any]:
        values = {
            "current": self.current,
            "index": self.index,
            "status": self.status,
        }
        return {**_keep(values, self.present), **self.extra}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepState":
        return cls(
            current=data.get("current"),
            index=data.get("index"),
            status=data.get("status"),
            extra=_split(data, cls.FIELDS),
            present=_present(data, cls.FIELDS),
        )

    @property
    def step(self) -> Optional[StepName]:
        return classify_step(self.current)


@dataclass(slots=True)
class ActionsState:
    available: List[Any] = field(default_factory=list)
    pending: List[Any] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)
    present: Optional[frozenset] = field(default=None, repr=False, compare=False)

    FIELDS = ("available", "pending", "history")

    def to_dict(self) -> Dict[str, Any]:
        values = {
            "available": list(self.available),
            "pending": list(self.pending),
            "history": list(self.history),
        }
        return {**_keep(values, self.present), **self.extra}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionsState":
        return cls(
            available=list(data.get("available") or []),
            pending=list(data.get("pending") or []),
            history=list(data.get("history") or []),
            extra=_split(data, cls.FIELDS),
            present=_present(data, cls.FIELDS),
        )


@dataclass(slots=True)
class HealthState:
    status: Optional[str] = None
    last_check: Optional[str] = None
    issues: List[Any] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)
    present: Optional[frozenset] = field(default=None, repr=False, compare=False)

    FIELDS = ("status", "last_check", "issues")

    def to_dict(self) -> Dict[str, Any]:
        values = {
            "status": self.status,
            "last_check": self.last_check,
            "issues": list(self.issues),
        }
        return {**_keep(values, self.present), **self.extra}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthState":
        return cls(
            status=data.get("status"),
            last_check=data.get("last_check"),
            issues=list(data.get("issues") or []),
            extra=_split(data, cls.FIELDS),
            present=_present(data, cls.FIELDS),
        )


@dataclass(slots=True)
class OrchestrationState:
    """The canonical, machine-written workflow state document.

    Unknown keys at the top level and inside ``orchestration`` are kept in
    ``extra`` / ``orchestration_extra`` so a read-modify-write cycle never
    drops fields written by other tools. Optional keys absent from the
    source document stay absent unless a value has been set since.
    """

    schema_version: str
    project: Project
    last_updated: Optional[str] = None
    phase: Optional[PhaseState] = None
    next_phase: Optional[Dict[str, Any]] = None
    step: Optional[StepState] = None
    implement: Optional[Dict[str, Any]] = None
    actions: Optional[ActionsState] = None
    health: Optional[HealthState] = None
    orchestration_extra: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)
    present: Optional[frozenset] = field(default=None, repr=False, compare=False)
    orchestration_present: Optional[frozenset] = field(default=None, repr=False, compare=False)

    TOP_FIELDS = ("schema_version", "project", "last_updated", "orchestration", "actions", "health")
    ORCHESTRATION_FIELDS = ("phase", "next_phase", "step", "implement")

    def to_dict(self) -> Dict[str, Any]:
        orchestration = _keep(
            {
                "phase": self.phase.to_dict() if self.phase else None,
                "next_phase": self.next_phase,
                "step": self.step.to_dict() if self.step else None,
                "implement": self.implement,
            },
            self.orchestration_present,
        )
        orchestration.update(self.orchestration_extra)

        data = _keep(
            {
                "schema_version": self.schema_version,
                "project": self.project.to_dict(),
                "last_updated": self.last_updated,
                "orchestration": orchestration,
                "actions": self.actions.to_dict() if self.actions is not None else None,
                "health": self.health.to_dict() if self.health is not None else None,
            },
            self.present,
        )
        # actions/health are only written when the document carries them
        for key in ("actions", "health"):
            if data.get(key) is None:
                data.pop(key, None)
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrchestrationState":
        raw_orchestration = data.get("orchestration")
        orchestration = raw_orchestration if isinstance(raw_orchestration, dict) else {}
        phase = orchestration.get("phase")
        step = orchestration.get("step")
        actions = data.get("actions")
        health = data.get("health")
        return cls(
            schema_version=data["schema_version"],
            project=Project.from_dict(data["project"]),
            last_updated=data.get("last_updated"),
            phase=PhaseState.from_dict(phase) if isinstance(phase, dict) else None,
            next_phase=orchestration.get("next_phase"),
            step=StepState.from_dict(step) if isinstance(step, dict) else None,
            implement=orchestration.get("implement"),
            actions=ActionsState.from_dict(actions) if isinstance(actions, dict) else None,
            health=HealthState.from_dict(health) if isinstance(health, dict) else None,
            orchestration_extra=_split(orchestration, cls.ORCHESTRATION_FIELDS),
            extra=_split(data, cls.TOP_FIELDS),
            present=_present(data, cls.TOP_FIELDS),
            orchestration_present=_present(orchestration, cls.ORCHESTRATION_FIELDS),
        )

    @property
    def history(self) -> List[Dict[str, Any]]:
        return self.actions.history if self.actions else []


@dataclass(slots=True)
class PhaseHistoryItem:
    """A completed phase recorded in ``actions.history``."""

    phase_number: str
    phase_name: str
    branch: str
    completed_at: str
    tasks_completed: int = 0
    tasks_total: int = 0
    type: str = "phase_completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "phase_number": self.phase_number,
            "phase_name": self.phase_name,
            "branch": self.branch,
            "completed_at": self.completed_at,
            "tasks_completed": self.tasks_completed,
            "tasks_total": self.tasks_total,
        }


# ----------------------------------------------------------------------
# Roadmap
# ----------------------------------------------------------------------


@dataclass(slots=True)
class RoadmapPhase:
    """One row of the roadmap's phase table."""

    number: str
    name: str
    status: PhaseStatus
    has_user_gate: bool = False
    verification_gate: Optional[str] = None
    line: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "status": self.status.value,
            "has_user_gate": self.has_user_gate,
            "verification_gate": self.verification_gate,
            "line": self.line,
        }


@dataclass(slots=True)
class RoadmapData:
    file_path: Optional[Path]
    phases: List[RoadmapPhase] = field(default_factory=list)
    project_name: Optional[str] = None
    schema_version: Optional[str] = None
    table_found: bool = False

    @property
    def active_phase(self) -> Optional[RoadmapPhase]:
        for phase in self.phases:
            if phase.status is PhaseStatus.IN_PROGRESS:
                return phase
        return None

    @property
    def next_phase(self) -> Optional[RoadmapPhase]:
        for phase in self.phases:
            if phase.status is PhaseStatus.NOT_STARTED:
                return phase
        return None

    @property
    def progress(self) -> Dict[str, Any]:
        total = len(self.phases)
        completed = sum(1 for p in self.phases if p.status is PhaseStatus.COMPLETE)
        return {
            "total": total,
            "completed": completed,
            "percentage": round(completed * 100 / total) if total else 0,
        }

    def to_dict(self) -> Dict[str, Any]:
        active = self.active_phase
        upcoming = self.next_phase
        return {
            "file_path": str(self.file_path) if self.file_path else None,
            "project_name": self.project_name,
            "schema_version": self.schema_version,
            "phases": [p.to_dict() for p in self.phases],
            "active_phase": active.to_dict() if active else None,
            "next_phase": upcoming.to_dict() if upcoming else None,
            "progress": self.progress,
        }


# ----------------------------------------------------------------------
# Tasks
# ----------------------------------------------------------------------


@dataclass(slots=True)
class Task:
    """A single identified checkbox line from tasks.md."""

    id: str
    description: str
    status: TaskStatus
    section: Optional[str] = None
    phase: Optional[int] = None
    dependencies: List[str] = field(default_factory=list)
    user_story: Optional[str] = None
    is_parallel: bool = False
    is_verification: bool = False
    blocked_reason: Optional[str] = None
    line: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "section": self.section,
            "phase": self.phase,
            "dependencies": list(self.dependencies),
            "user_story": self.user_story,
            "is_parallel": self.is_parallel,
            "is_verification": self.is_verification,
            "blocked_reason": self.blocked_reason,
            "line": self.line,
        }


@dataclass(slots=True)
class TaskSection:
    name: str
    phase_number: Optional[int] = None
    purpose: Optional[str] = None
    tasks: List[Task] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return all(t.status is TaskStatus.DONE for t in self.tasks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phase_number": self.phase_number,
            "purpose": self.purpose,
            "task_ids": [t.id for t in self.tasks],
            "completed": sum(1 for t in self.tasks if t.status is TaskStatus.DONE),
            "total": len(self.tasks),
        }


@dataclass(slots=True)
class TaskProgress:
    total: int = 0
    completed: int = 0
    blocked: int = 0
    deferred: int = 0

    @property
    def percentage(self) -> int:
        return round(self.completed * 100 / self.total) if self.total else 0

    @property
    def all_done(self) -> bool:
        return self.total > 0 and self.completed == self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "blocked": self.blocked,
            "deferred": self.deferred,
            "percentage": self.percentage,
        }


@dataclass(slots=True)
class TasksData:
    file_path: Optional[Path]
    title: Optional[str] = None
    sections: List[TaskSection] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)

    @property
    def progress(self) -> TaskProgress:
        return TaskProgress(
            total=len(self.tasks),
            completed=sum(1 for t in self.tasks if t.status is TaskStatus.DONE),
            blocked=sum(1 for t in self.tasks if t.status is TaskStatus.BLOCKED),
            deferred=sum(1 for t in self.tasks if t.status is TaskStatus.DEFERRED),
        )

    @property
    def current_section(self) -> Optional[str]:
        for section in self.sections:
            if section.tasks and not section.is_complete:
                return section.name
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": str(self.file_path) if self.file_path else None,
            "title": self.title,
            "sections": [s.to_dict() for s in self.sections],
            "tasks": [t.to_dict() for t in self.tasks],
            "progress": self.progress.to_dict(),
            "current_section": self.current_section,
        }


# ----------------------------------------------------------------------
# Checklists
# ----------------------------------------------------------------------


@dataclass(slots=True)
class ChecklistItem:
    id: str
    description: str
    status: ChecklistItemStatus
    section: Optional[str] = None
    line: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "section": self.section,
            "line": self.line,
        }


@dataclass(slots=True)
class ChecklistSection:
    name: str
    items: List[ChecklistItem] = field(default_factory=list)


@dataclass(slots=True)
class ChecklistData:
    file_path: Optional[Path]
    type: ChecklistType
    title: Optional[str] = None
    sections: List[ChecklistSection] = field(default_factory=list)
    items: List[ChecklistItem] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return all(i.status is not ChecklistItemStatus.TODO for i in self.items)

    @property
    def progress(self) -> Dict[str, int]:
        total = len(self.items)
        completed = sum(1 for i in self.items if i.status is ChecklistItemStatus.DONE)
        skipped = sum(1 for i in self.items if i.status is ChecklistItemStatus.SKIPPED)
        return {
            "total": total,
            "completed": completed,
            "skipped": skipped,
            "percentage": round(completed * 100 / total) if total else 0,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": str(self.file_path) if self.file_path else None,
            "type": self.type.value,
            "title": self.title,
            "sections": [s.name for s in self.sections],
            "items": [i.to_dict() for i in self.items],
            "progress": self.progress,
        }


@dataclass(slots=True)
class FeatureChecklists:
    feature_dir: Path
    checklists: List[ChecklistData] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_dir": str(self.feature_dir),
            "checklists": [c.to_dict() for c in self.checklists],
        }


# ----------------------------------------------------------------------
# Health, migration and status
# ----------------------------------------------------------------------


@dataclass(slots=True)
class HealthIssue:
    """A single finding from the consistency checker."""

    code: str
    severity: Severity
    message: str
    fix: Optional[str] = None
    auto_fixable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "message": self.message,
            "fix": self.fix,
            "auto_fixable": self.auto_fixable,
        }


@dataclass(slots=True)
class HealthCheckResult:
    status: HealthStatus
    issues: List[HealthIssue] = field(default_factory=list)
    next_action: Optional[str] = None

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "errors": sum(1 for i in self.issues if i.severity is Severity.ERROR),
            "warnings": sum(1 for i in self.issues if i.severity is Severity.WARNING),
            "info": sum(1 for i in self.issues if i.severity is Severity.INFO),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "issues": [i.to_dict() for i in self.issues],
            "summary": self.summary,
            "next_action": self.next_action,
        }


@dataclass(slots=True)
class FixResult:
    code: str
    action: str
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "action": self.action, "success": self.success}


@dataclass(slots=True)
class MigrationResult:
    success: bool
    action: MigrationAction
    details: str = ""
    error: Optional[str] = None
    history_extracted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "action": self.action.value,
            "details": self.details,
            "error": self.error,
            "history_extracted": self.history_extracted,
        }


@dataclass(slots=True)
class DetectionResult:
    version: RepoVersion
    confidence: Confidence
    indicators: List[str] = field(default_factory=list)
    manifest: Optional[Dict[str, Any]] = None
    state_schema_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version.value,
            "confidence": self.confidence.value,
            "indicators": list(self.indicators),
            "manifest": self.manifest,
            "state_schema_version": self.state_schema_version,
        }


@dataclass(slots=True)
class FeatureArtifacts:
    """Which design documents exist in a feature directory."""

    feature_dir: Optional[Path] = None
    discovery: bool = False
    spec: bool = False
    requirements: bool = False
    ui_design: bool = False
    plan: bool = False
    tasks: bool = False

    @property
    def has_design_artifacts(self) -> bool:
        return self.spec and self.plan and self.tasks

    def get_missing(self) -> List[str]:
        missing = []
        if not self.spec:
            missing.append("spec.md")
        if not self.plan:
            missing.append("plan.md")
        if not self.tasks:
            missing.append("tasks.md")
        return missing

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_dir": str(self.feature_dir) if self.feature_dir else None,
            "discovery": self.discovery,
            "spec": self.spec,
            "requirements": self.requirements,
            "ui_design": self.ui_design,
            "plan": self.plan,
            "tasks": self.tasks,
        }


@dataclass(slots=True)
class NextActionInput:
    """Everything the next-action decision table looks at."""

    health_status: HealthStatus = HealthStatus.READY
    phase_number: Optional[str] = None
    phase_status: Optional[str] = None
    step: Optional[StepName] = None
    has_design_artifacts: bool = False
    tasks_total: int = 0
    tasks_completed: int = 0
    pending_user_gate: bool = False
    phase_archived: bool = False


@dataclass(slots=True)
class NextActionDecision:
    action: NextAction
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"action": self.action.value, "reason": self.reason}


@dataclass(slots=True)
class StatusReport:
    phase: Optional[Dict[str, Any]]
    step: Optional[Dict[str, Any]]
    progress: Dict[str, Any]
    health: HealthCheckResult
    next_action: NextActionDecision
    blockers: List[str] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "step": self.step,
            "progress": self.progress,
            "health": self.health.to_dict(),
            "next_action": self.next_action.to_dict(),
            "blockers": list(self.blockers),
            "context": self.context,
        }
