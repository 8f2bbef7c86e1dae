"""Canonical state document storage.

The state document is the machine-written source of truth for workflow
progress. Reads distinguish three failure kinds (missing, unparsable,
structurally invalid); writes are atomic so a crash can never leave a
half-written document behind.

Values set through the dot-path API are coerced against a per-field
type table so that ``orchestration.phase.number=0010`` stays a string
while ``orchestration.step.index=2`` becomes an integer.
"""

from __future__ import annotations

import copy
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import CURRENT_SCHEMA_VERSION
from .errors import NotFoundError, SchemaViolation, SchemaViolationError, ValidationError
from .fs_utils import read_json_file, write_json
from .models import (
    ActionsState,
    HealthState,
    OrchestrationState,
    PhaseState,
    PhaseStatus,
    Project,
    StepName,
    StepState,
)
from .paths import ResolvedPaths
from .specflow_logging import log_performance, log_state_written


logger = logging.getLogger("specflow.state")

STRING = "string"
NUMBER = "number"
BOOLEAN = "boolean"
ARRAY = "array"
OBJECT = "object"

WILDCARD = "*"

# Field types of the state document. Nested dicts are objects; a "*" key
# matches any key of a map-like node.
STATE_SCHEMA: Dict[str, Any] = {
    "schema_version": STRING,
    "last_updated": STRING,
    "project": {
        "id": STRING,
        "name": STRING,
        "path": STRING,
        "description": STRING,
    },
    "orchestration": {
        "phase": {
            "id": STRING,
            "number": STRING,
            "name": STRING,
            "branch": STRING,
            "status": STRING,
            "hasUserGate": BOOLEAN,
            "userGateStatus": STRING,
            "goals": ARRAY,
        },
        "next_phase": {
            "number": STRING,
            "name": STRING,
            "description": STRING,
        },
        "step": {
            "current": STRING,
            "index": NUMBER,
            "status": STRING,
        },
        "analyze": {
            "iteration": NUMBER,
            "completedAt": NUMBER,
        },
        "implement": {
            "current_tasks": ARRAY,
            "current_section": STRING,
            "started_at": STRING,
        },
        "progress": {
            "tasks_completed": NUMBER,
            "tasks_total": NUMBER,
            "percentage": NUMBER,
        },
    },
    "actions": {
        "available": ARRAY,
        "pending": ARRAY,
        "history": ARRAY,
    },
    "health": {
        "status": STRING,
        "last_check": STRING,
        "issues": ARRAY,
    },
    "memory": {
        "archive_reviews": {
            WILDCARD: {
                "reviewed_at": STRING,
                "reviewed_by": STRING,
            },
        },
    },
    "migrations": ARRAY,
}

NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(slots=True)
class RawStateResult:
    """Diagnostic view of a state file that never raises."""

    path: Path
    exists: bool = False
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    violations: List[SchemaViolation] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.exists and self.error is None and not self.violations


# ----------------------------------------------------------------------
# Structural validation
# ----------------------------------------------------------------------


def _check_optional(violations: List[SchemaViolation], data: Dict[str, Any], key: str, path: str, types: tuple, label: str) -> None:
    value = data.get(key)
    if value is None:
        return
    if isinstance(value, bool) and bool not in types:
        violations.append(SchemaViolation(path, f"expected {label}, got boolean"))
    elif not isinstance(value, types):
        violations.append(SchemaViolation(path, f"expected {label}, got {type(value).__name__}"))


def _check_optional_object(violations: List[SchemaViolation], data: Dict[str, Any], key: str, path: str) -> Optional[Dict[str, Any]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        violations.append(SchemaViolation(path, f"expected object, got {type(value).__name__}"))
        return None
    return value


def validate_state_document(data: Any) -> List[SchemaViolation]:
    """Return every structural violation in ``data``; empty when valid.

    The check is deliberately loose: optional fields may be missing or
    null, and unknown keys are allowed anywhere.
    """
    violations: List[SchemaViolation] = []
    if not isinstance(data, dict):
        return [SchemaViolation("", "state document must be a JSON object")]

    if not isinstance(data.get("schema_version"), str):
        violations.append(SchemaViolation("schema_version", "required string"))

    project = data.get("project")
    if not isinstance(project, dict):
        violations.append(SchemaViolation("project", "required object"))
    else:
        for key in Project.FIELDS:
            if not isinstance(project.get(key), str):
                violations.append(SchemaViolation(f"project.{key}", "required string"))

    _check_optional(violations, data, "last_updated", "last_updated", (str,), "string")

    orchestration = _check_optional_object(violations, data, "orchestration", "orchestration")
    if orchestration is not None:
        phase = _check_optional_object(violations, orchestration, "phase", "orchestration.phase")
        if phase is not None:
            for key in PhaseState.FIELDS:
                _check_optional(violations, phase, key, f"orchestration.phase.{key}", (str,), "string")

        next_phase = _check_optional_object(violations, orchestration, "next_phase", "orchestration.next_phase")
        if next_phase is not None:
            for key in ("number", "name", "description"):
                _check_optional(violations, next_phase, key, f"orchestration.next_phase.{key}", (str,), "string")

        step = _check_optional_object(violations, orchestration, "step", "orchestration.step")
        if step is not None:
            _check_optional(violations, step, "current", "orchestration.step.current", (str,), "string")
            _check_optional(violations, step, "index", "orchestration.step.index", (int, str), "integer or string")
            _check_optional(violations, step, "status", "orchestration.step.status", (str,), "string")

        implement = _check_optional_object(violations, orchestration, "implement", "orchestration.implement")
        if implement is not None:
            _check_optional(violations, implement, "current_tasks", "orchestration.implement.current_tasks", (list,), "array")

    actions = _check_optional_object(violations, data, "actions", "actions")
    if actions is not None:
        for key in ActionsState.FIELDS:
            _check_optional(violations, actions, key, f"actions.{key}", (list,), "array")

    health = _check_optional_object(violations, data, "health", "health")
    if health is not None:
        _check_optional(violations, health, "status", "health.status", (str,), "string")
        _check_optional(violations, health, "last_check", "health.last_check", (str,), "string")
        _check_optional(violations, health, "issues", "health.issues", (list,), "array")

    return violations


# ----------------------------------------------------------------------
# Read / write
# ----------------------------------------------------------------------


def read_raw_state(path: Path) -> RawStateResult:
    """Load a state file for diagnosis: absent, unparsable and invalid are reported, not raised."""
    result = RawStateResult(path=path, exists=path.exists())
    if not result.exists:
        return result
    try:
        result.data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        result.error = str(e)
        return result
    result.violations = validate_state_document(result.data)
    return result


@log_performance("read_state")
def read_state(paths: ResolvedPaths) -> OrchestrationState:
    """Read the canonical state document.

    Raises NotFoundError, InvalidFormatError or SchemaViolationError
    depending on how the document fails.
    """
    data = read_json_file(paths.state, "State file")
    violations = validate_state_document(data)
    if violations:
        raise SchemaViolationError(violations, suggestion="Run the health check with fix enabled to repair state")
    return OrchestrationState.from_dict(data)


@log_performance("write_state")
def write_state(paths: ResolvedPaths, state: Union[OrchestrationState, Dict[str, Any]]) -> OrchestrationState:
    """Stamp ``last_updated`` and atomically persist the document; returns what was written."""
    if isinstance(state, dict):
        violations = validate_state_document(state)
        if violations:
            raise SchemaViolationError(violations)
        state = OrchestrationState.from_dict(copy.deepcopy(state))
    else:
        state = copy.deepcopy(state)

    state.last_updated = now_iso()
    write_json(paths.state, state.to_dict())

    logger.info(f"State written to {paths.state}")
    log_state_written(paths.state, schema_version=state.schema_version)
    return state


# ----------------------------------------------------------------------
# Dot-path access
# ----------------------------------------------------------------------


def _split_key(key: str) -> List[str]:
    parts = key.split(".")
    if not key or any(not part for part in parts):
        raise ValidationError(f"Invalid key path: '{key}'", "Use dot-separated keys such as orchestration.step.current")
    return parts


def get_state_value(document: Union[OrchestrationState, Dict[str, Any]], key: str) -> Any:
    """Return the value at dot path ``key`` or ``None`` when any segment is missing."""
    current: Any = document.to_dict() if isinstance(document, OrchestrationState) else document
    for part in _split_key(key):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def set_state_value(document: Union[OrchestrationState, Dict[str, Any]], key: str, value: Any) -> Dict[str, Any]:
    """Return a deep copy of ``document`` with ``key`` set to ``value``.

    Missing intermediate objects are created; a non-object intermediate is
    replaced by an object. The input is never mutated.
    """
    parts = _split_key(key)
    source = document.to_dict() if isinstance(document, OrchestrationState) else document
    result = copy.deepcopy(source)

    current = result
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = copy.deepcopy(value)
    return result


def parse_value(text: str) -> Any:
    """Interpret ``text`` as a JSON literal, falling back to the raw string."""
    try:
        return json.loads(text)
    except ValueError:
        return text


def resolve_schema_type(key: str) -> Optional[str]:
    """Return the declared type of dot path ``key``, or ``None`` for unknown paths."""
    node: Any = STATE_SCHEMA
    for part in key.split("."):
        if not isinstance(node, dict):
            return None
        if part in node:
            node = node[part]
        elif WILDCARD in node:
            node = node[WILDCARD]
        else:
            return None
    return OBJECT if isinstance(node, dict) else node


def coerce_value_for_schema(key: str, value: Any) -> Any:
    """Convert scalars to the declared field type; anything else passes through.

    Values typed at a prompt arrive as JSON-parsed text, so ``true`` or
    ``10`` aimed at a string field become ``"true"`` and ``"10"``.
    """
    expected = resolve_schema_type(key)
    if expected == STRING:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
    if expected == NUMBER and isinstance(value, str) and NUMERIC.match(value.strip()):
        text = value.strip()
        return float(text) if "." in text else int(text)
    if expected == BOOLEAN and isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return value


def parse_assignment(keyvalue: str) -> tuple:
    """Split ``key=value`` into the key and its parsed value."""
    key, sep, raw = keyvalue.partition("=")
    if not sep:
        raise ValidationError(
            "Invalid format. Expected key=value",
            "Use a form such as orchestration.step.current=implement",
        )
    key = key.strip()
    if not key:
        raise ValidationError("Key cannot be empty")
    return key, coerce_value_for_schema(key, parse_value(raw))


def update_state_value(paths: ResolvedPaths, key: str, value: Any) -> OrchestrationState:
    """Read, set ``key`` (after coercion), validate and write the state document."""
    state = read_state(paths)
    coerced = coerce_value_for_schema(key, value)
    updated = set_state_value(state, key, coerced)
    violations = validate_state_document(updated)
    if violations:
        raise SchemaViolationError(violations, suggestion=f"'{key}' cannot hold {json.dumps(coerced)}")
    logger.info(f"Setting {key} = {json.dumps(coerced)}")
    return write_state(paths, updated)


# ----------------------------------------------------------------------
# Construction
# ----------------------------------------------------------------------


def create_initial_state(project_name: str, project_path: Path | str) -> OrchestrationState:
    """A fresh current-generation document with no active phase."""
    timestamp = now_iso()
    return OrchestrationState(
        schema_version=CURRENT_SCHEMA_VERSION,
        project=Project(id=str(uuid.uuid4()), name=project_name, path=str(project_path)),
        last_updated=timestamp,
        phase=PhaseState(status=PhaseStatus.NOT_STARTED.value),
        next_phase=None,
        step=StepState(current=StepName.DESIGN.value, index=0, status="not_started"),
        implement=None,
        actions=ActionsState(),
        health=HealthState(status="initializing", last_check=timestamp, issues=[]),
    )


def ensure_state_exists(paths: ResolvedPaths, project_name: Optional[str] = None) -> OrchestrationState:
    """Read the state document, creating an initial one when none exists."""
    try:
        return read_state(paths)
    except NotFoundError:
        state = create_initial_state(project_name or paths.root.name, paths.root)
        logger.info(f"Creating initial state at {paths.state}")
        return write_state(paths, state)
