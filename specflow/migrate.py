"""Schema migration for manifests and state documents.

Migrations never raise: every outcome is reported as a MigrationResult.
A document that is about to be overwritten is copied aside first, and
running a migration a second time is a no-op.
"""

from __future__ import annotations

import copy
import json
import logging
import re
import uuid
from typing import Any, Dict, List, Optional

from .config import CURRENT_SCHEMA_VERSION, MANIFEST_SCHEMA_VERSION, SPECFLOW_VERSION
from .detect import detect_version, needs_upgrade
from .fs_utils import backup_file, read_markdown, write_json
from .models import MigrationAction, MigrationResult, PhaseHistoryItem, RepoVersion
from .paths import ResolvedPaths
from .specflow_logging import log_migration, log_operation
from .state import coerce_value_for_schema, now_iso


logger = logging.getLogger("specflow.migrate")

BACKUP_SUFFIX = ".pre-upgrade"

COMPLETION_TABLE_ROW = re.compile(r"^\|\s*(\d{4})\s*\|\s*([^|]+?)\s*\|\s*(✅|COMPLETE|Done)", re.IGNORECASE)
COMPLETION_HEADING = re.compile(
    r"^#+\s*(?:Phase\s+)?(\d{4})[\s:-]+([^-\n]+?)(?:\s*-\s*(?:✅|COMPLETE|Done)|\s*\(COMPLETE\))",
    re.IGNORECASE,
)
COMPLETION_LIST_ITEM = re.compile(r"^[-*]\s*\[x\]\s*(\d{4})\s+(.+)", re.IGNORECASE)


def _branch_for(number: str, name: str) -> str:
    slug = re.sub(r"\s+", "-", name.strip().lower())
    return f"{number}-{slug}"


def extract_history_from_roadmap(paths: ResolvedPaths) -> List[PhaseHistoryItem]:
    """Recover completed phases from any of the roadmap formats older projects used.

    The completion time is unknown, so the migration time is recorded.
    Each phase number appears once; results are sorted by phase number.
    """
    if not paths.roadmap.exists():
        return []

    completed_at = now_iso()
    found: Dict[str, PhaseHistoryItem] = {}
    for line in read_markdown(paths.roadmap).splitlines():
        match = (
            COMPLETION_TABLE_ROW.match(line)
            or COMPLETION_HEADING.match(line)
            or COMPLETION_LIST_ITEM.match(line)
        )
        if not match:
            continue
        number, name = match.group(1), match.group(2).strip()
        if number in found:
            continue
        found[number] = PhaseHistoryItem(
            phase_number=number,
            phase_name=name,
            branch=_branch_for(number, name),
            completed_at=completed_at,
        )

    return sorted(found.values(), key=lambda item: int(item.phase_number))


# ----------------------------------------------------------------------
# Manifest
# ----------------------------------------------------------------------


def create_v3_manifest(existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    now = now_iso()
    existing = existing or {}
    compatibility = existing.get("compatibility") if isinstance(existing.get("compatibility"), dict) else {}
    migrations = list(existing.get("migrations") or []) if isinstance(existing.get("migrations"), list) else []
    if existing:
        migrations.append({
            "from": existing.get("speckit_version") or existing.get("specflow_version") or "unknown",
            "to": SPECFLOW_VERSION,
            "date": now,
        })

    return {
        "manifest_schema": MANIFEST_SCHEMA_VERSION,
        "specflow_version": SPECFLOW_VERSION,
        "schema": {
            "state": CURRENT_SCHEMA_VERSION,
            "roadmap": CURRENT_SCHEMA_VERSION,
            "commands": CURRENT_SCHEMA_VERSION,
        },
        "compatibility": {
            "min_cli": SPECFLOW_VERSION,
            "created_with": SPECFLOW_VERSION,
            "created_at": compatibility.get("created_at") or now,
        },
        "migrations": migrations,
    }


def migrate_manifest(paths: ResolvedPaths) -> MigrationResult:
    """Write a current-generation manifest to ``.specflow/manifest.json``."""
    try:
        existing: Optional[Dict[str, Any]] = None
        if paths.manifest.exists():
            existing = json.loads(paths.manifest.read_text(encoding="utf-8"))
            if isinstance(existing, dict) and existing.get("specflow_version"):
                return MigrationResult(success=True, action=MigrationAction.SKIPPED, details="Manifest already at v3.0")
            backup_file(paths.manifest, BACKUP_SUFFIX)
        elif paths.legacy_manifest.exists():
            existing = json.loads(paths.legacy_manifest.read_text(encoding="utf-8"))

        if existing is not None and not isinstance(existing, dict):
            existing = {}

        write_json(paths.manifest, create_v3_manifest(existing))
    except (OSError, ValueError) as e:
        logger.error(f"Manifest migration failed: {e}")
        log_migration("manifest", "failed", error=str(e))
        return MigrationResult(success=False, action=MigrationAction.ERROR, error=str(e))

    if existing is not None:
        result = MigrationResult(
            success=True,
            action=MigrationAction.MIGRATED,
            details=f"Migrated from speckit {existing.get('speckit_version') or 'unknown'}",
        )
    else:
        result = MigrationResult(success=True, action=MigrationAction.CREATED, details="Created new v3.0 manifest")
    log_migration("manifest", result.action.value, details=result.details)
    return result


# ----------------------------------------------------------------------
# State
# ----------------------------------------------------------------------


def _coerced(section: Any, prefix: str) -> Optional[Dict[str, Any]]:
    if not isinstance(section, dict):
        return None
    return {k: coerce_value_for_schema(f"{prefix}.{k}", v) for k, v in section.items()}


def _history_key(item: Any) -> Optional[str]:
    if isinstance(item, dict) and item.get("phase_number") is not None:
        return str(item["phase_number"])
    return None


def create_v3_state(
    project_name: str,
    project_path: str,
    existing: Optional[Dict[str, Any]] = None,
    history: Optional[List[PhaseHistoryItem]] = None,
) -> Dict[str, Any]:
    """Build a current-generation state document, keeping whatever ``existing`` already records."""
    now = now_iso()
    existing = copy.deepcopy(existing) if isinstance(existing, dict) else {}
    project = existing.get("project") if isinstance(existing.get("project"), dict) else {}
    orchestration = existing.get("orchestration") if isinstance(existing.get("orchestration"), dict) else {}
    actions = existing.get("actions") if isinstance(existing.get("actions"), dict) else {}
    health = existing.get("health") if isinstance(existing.get("health"), dict) else {}

    merged_history = list(actions.get("history") or []) if isinstance(actions.get("history"), list) else []
    known = {_history_key(item) for item in merged_history}
    for item in history or []:
        if item.phase_number not in known:
            merged_history.append(item.to_dict())
            known.add(item.phase_number)

    migrations = list(existing.get("migrations") or []) if isinstance(existing.get("migrations"), list) else []
    if existing:
        migrations.append({
            "from": str(existing.get("schema_version") or "unknown"),
            "to": CURRENT_SCHEMA_VERSION,
            "date": now,
        })

    passthrough = {
        k: v for k, v in existing.items()
        if k not in ("schema_version", "project", "last_updated", "orchestration", "actions", "health", "migrations")
    }
    orchestration_extra = {
        k: v for k, v in orchestration.items()
        if k not in ("phase", "next_phase", "step", "implement")
    }

    document: Dict[str, Any] = {
        "schema_version": CURRENT_SCHEMA_VERSION,
        "project": {
            **project,
            "id": str(project.get("id") or uuid.uuid4()),
            "name": str(project.get("name") or project_name),
            "path": str(project.get("path") or project_path),
        },
        "last_updated": now,
        "orchestration": {
            "phase": _coerced(orchestration.get("phase"), "orchestration.phase") or {
                "id": None,
                "number": None,
                "name": None,
                "branch": None,
                "status": "not_started",
            },
            "next_phase": orchestration.get("next_phase") or None,
            "step": _coerced(orchestration.get("step"), "orchestration.step") or {
                "current": "design",
                "index": 0,
                "status": "not_started",
            },
            "implement": orchestration.get("implement") or None,
            **orchestration_extra,
        },
        "actions": {
            **actions,
            "available": list(actions.get("available") or []),
            "pending": list(actions.get("pending") or []),
            "history": merged_history,
        },
        "health": {
            **health,
            "status": health.get("status") or "ready",
            "last_check": health.get("last_check") or now,
            "issues": list(health.get("issues") or []),
        },
        **passthrough,
    }
    if migrations:
        document["migrations"] = migrations
    return document


def migrate_state(paths: ResolvedPaths, project_name: Optional[str] = None, *, force: bool = False) -> MigrationResult:
    """Upgrade (or create) ``.specflow/orchestration-state.json``.

    A current-generation document is left alone when it already records
    history or the roadmap offers nothing to recover, unless ``force``
    asks for the document to be rebuilt.
    """
    project_name = project_name or paths.root.name
    try:
        existing: Optional[Dict[str, Any]] = None
        source = None
        if paths.state.exists():
            source = paths.state
        elif paths.legacy_state.exists():
            source = paths.legacy_state

        if source is not None:
            loaded = json.loads(source.read_text(encoding="utf-8"))
            existing = loaded if isinstance(loaded, dict) else {}

        extracted = extract_history_from_roadmap(paths)

        if not force and source == paths.state and existing.get("schema_version") == CURRENT_SCHEMA_VERSION:
            actions = existing.get("actions") if isinstance(existing.get("actions"), dict) else {}
            history = actions.get("history") or []
            if history:
                return MigrationResult(
                    success=True, action=MigrationAction.SKIPPED, details="State already at v3.0 with history"
                )
            if not extracted:
                return MigrationResult(
                    success=True, action=MigrationAction.SKIPPED, details="State already at v3.0"
                )

        document = create_v3_state(project_name, str(paths.root), existing, extracted)
        with log_operation("migrate_state", path=str(paths.state), source=str(source) if source else None):
            if paths.state.exists():
                backup_file(paths.state, BACKUP_SUFFIX)
            write_json(paths.state, document)
    except (OSError, ValueError) as e:
        logger.error(f"State migration failed: {e}")
        log_migration("state", "failed", error=str(e))
        return MigrationResult(success=False, action=MigrationAction.ERROR, error=str(e))

    recovered = f" (extracted {len(extracted)} phases from ROADMAP)" if extracted else ""
    if existing is not None:
        result = MigrationResult(
            success=True,
            action=MigrationAction.MIGRATED,
            details=f"Migrated from schema {existing.get('schema_version') or 'unknown'}{recovered}",
            history_extracted=len(extracted),
        )
    else:
        result = MigrationResult(
            success=True,
            action=MigrationAction.CREATED,
            details=f"Created new v3.0 state{recovered}",
            history_extracted=len(extracted),
        )
    log_migration("state", result.action.value, details=result.details, history_extracted=len(extracted))
    return result


def migrate_project(paths: ResolvedPaths, project_name: Optional[str] = None, *, force: bool = False) -> Dict[str, Any]:
    """Detect the project's generation and bring manifest and state up to date."""
    detection = detect_version(paths)
    outcome: Dict[str, Any] = {
        "detection": detection.to_dict(),
        "needs_upgrade": needs_upgrade(detection),
    }
    if detection.version is RepoVersion.UNINITIALIZED:
        skipped = MigrationResult(success=True, action=MigrationAction.SKIPPED, details="Project is not initialized")
        outcome["manifest"] = skipped.to_dict()
        outcome["state"] = skipped.to_dict()
        return outcome

    with log_operation("migrate_project", root=str(paths.root), version=detection.version.value):
        outcome["manifest"] = migrate_manifest(paths).to_dict()
        outcome["state"] = migrate_state(paths, project_name, force=force).to_dict()
    return outcome
