"""Format-generation detection.

Each generation leaves recognizable traces (manifest keys, state schema
versions, directory layout). Indicators are collected for every
generation and the newest one with any evidence wins.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .config import CURRENT_SCHEMA_VERSION
from .fs_utils import try_read_json
from .models import Confidence, DetectionResult, RepoVersion
from .paths import ResolvedPaths


logger = logging.getLogger("specflow.detect")

VERSION_DESCRIPTIONS = {
    RepoVersion.V1: "SpecKit v1.0 (bash scripts, no state management)",
    RepoVersion.V2: "SpecKit v2.0 (speckit CLI, /speckit.* commands)",
    RepoVersion.V3: "SpecFlow v3.0 (specflow CLI, /flow.* commands)",
    RepoVersion.UNINITIALIZED: "Uninitialized (no SDD artifacts found)",
}

MIGRATION_STEPS = {
    RepoVersion.V1: [
        "Create manifest.json (v3.0)",
        "Create orchestration-state.json (v3.0)",
        "Recover completed phases from ROADMAP.md",
        "Create scaffolding directories",
        "Sync templates from the SpecFlow home directory",
    ],
    RepoVersion.V2: [
        "Upgrade manifest.json to v3.0",
        "Upgrade orchestration-state.json to v3.0",
        "Recover completed phases from ROADMAP.md",
        "Move state and manifest from .specify/ to .specflow/",
        "Sync templates from the SpecFlow home directory",
    ],
    RepoVersion.V3: ["Already at v3.0 - no migration needed"],
    RepoVersion.UNINITIALIZED: ["Initialize the project to create .specflow/ and a state document"],
}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _schema_state(manifest: Dict[str, Any]) -> Optional[str]:
    state = _as_dict(manifest.get("schema")).get("state")
    return state if isinstance(state, str) else None


def _has_any_artifacts(paths: ResolvedPaths) -> bool:
    return any(
        p.exists()
        for p in (
            paths.specflow_dir,
            paths.specify_dir,
            paths.specs_dir,
            paths.roadmap,
            paths.legacy_specifications_dir,
        )
    )


def _v3_indicators(paths: ResolvedPaths) -> List[str]:
    indicators = []
    manifest = _as_dict(try_read_json(paths.manifest))
    if manifest.get("specflow_version"):
        indicators.append(f"manifest has specflow_version: {manifest['specflow_version']}")
    if _schema_state(manifest) == CURRENT_SCHEMA_VERSION:
        indicators.append(f"manifest schema.state: {CURRENT_SCHEMA_VERSION}")
    state = _as_dict(try_read_json(paths.state))
    if state.get("schema_version") == CURRENT_SCHEMA_VERSION:
        indicators.append(f"state schema_version: {CURRENT_SCHEMA_VERSION}")
    if paths.specflow_dir.is_dir():
        indicators.append(".specflow/ directory exists")
    return indicators


def _v2_indicators(paths: ResolvedPaths) -> List[str]:
    indicators = []
    manifest = _as_dict(try_read_json(paths.legacy_manifest))
    if manifest.get("speckit_version"):
        indicators.append(f"manifest has speckit_version: {manifest['speckit_version']}")
    schema_state = _schema_state(manifest)
    if schema_state and schema_state.startswith("2."):
        indicators.append(f"manifest schema.state: {schema_state}")
    state = _as_dict(try_read_json(paths.legacy_state))
    version = state.get("schema_version")
    if isinstance(version, str) and version.startswith("2."):
        indicators.append(f"state schema_version: {version}")
    return indicators


def _v1_indicators(paths: ResolvedPaths) -> List[str]:
    indicators = []
    if paths.scripts_dir.is_dir():
        indicators.append(".specify/scripts/bash/ exists")
    if paths.legacy_specifications_dir.is_dir():
        indicators.append("specifications/ folder exists")
    return indicators


def detect_version(paths: ResolvedPaths) -> DetectionResult:
    """Classify the project's format generation, newest evidence first."""
    if not _has_any_artifacts(paths):
        return DetectionResult(
            version=RepoVersion.UNINITIALIZED,
            confidence=Confidence.HIGH,
            indicators=["No .specflow/, .specify/, specs/, or ROADMAP.md found"],
        )

    manifest_path = paths.manifest_source
    manifest = try_read_json(manifest_path) if manifest_path else None
    state_path = paths.state_source
    state = _as_dict(try_read_json(state_path)) if state_path else {}
    schema_version = state.get("schema_version")
    if not isinstance(schema_version, str):
        schema_version = None

    for version, collect in (
        (RepoVersion.V3, _v3_indicators),
        (RepoVersion.V2, _v2_indicators),
        (RepoVersion.V1, _v1_indicators),
    ):
        indicators = collect(paths)
        if indicators:
            result = DetectionResult(
                version=version,
                confidence=Confidence.HIGH if len(indicators) >= 2 else Confidence.MEDIUM,
                indicators=indicators,
                manifest=manifest if isinstance(manifest, dict) else None,
                state_schema_version=schema_version,
            )
            logger.debug(f"Detected {version.value} ({result.confidence.value}) at {paths.root}")
            return result

    return DetectionResult(
        version=RepoVersion.V1,
        confidence=Confidence.LOW,
        indicators=["Has artifacts but version unclear - assuming v1.0"],
        manifest=manifest if isinstance(manifest, dict) else None,
        state_schema_version=schema_version,
    )


def needs_upgrade(result: DetectionResult) -> bool:
    return result.version not in (RepoVersion.V3, RepoVersion.UNINITIALIZED)


def get_version_description(version: RepoVersion) -> str:
    return VERSION_DESCRIPTIONS[version]


def get_migration_steps(version: RepoVersion) -> List[str]:
    return list(MIGRATION_STEPS[version])
