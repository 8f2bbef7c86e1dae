"""Shared fixtures for SpecFlow tests.

``consistent_project`` builds a project where state, roadmap, tasks and
branch all agree, so a health check reports no errors or warnings.
Tests break one thing at a time on top of it.
"""

import json
from pathlib import Path

import pytest

from specflow.config import REQUIRED_TEMPLATES, Settings
from specflow.paths import resolve_paths


ACTIVE_BRANCH = "0020-feature"

ROADMAP = """# Demo Roadmap

**Project**: demo
**Schema Version**: 3.0

| Phase | Name | Status | Verification Gate |
|-------|------|--------|-------------------|
| 0010 | core | ✅ Complete | Tests pass |
| 0020 | feature | 🔄 In Progress | **USER GATE**: demo approved |
| 0030 | polish | ⬜ Not Started | Docs reviewed |
"""

TASKS = """# Tasks: feature

## Phase 1: Setup

**Purpose**: Project scaffolding

- [x] T001 Create package layout
- [ ] T002 [P] Add parser (depends on T001)

## Phase 2: Core

- [ ] T003 [US1] Wire parser into CLI (depends on T002)
"""


def make_state(root, **orchestration):
    """A valid current-generation state document for ``root``."""
    document = {
        "schema_version": "3.0",
        "project": {"id": "project-1", "name": "demo", "path": str(root)},
        "last_updated": "2026-01-01T00:00:00.000Z",
        "orchestration": {
            "phase": {
                "id": None,
                "number": "0020",
                "name": "feature",
                "branch": ACTIVE_BRANCH,
                "status": "in_progress",
            },
            "next_phase": None,
            "step": {"current": "implement", "index": 2, "status": "in_progress"},
            "implement": None,
        },
        "actions": {"available": [], "pending": [], "history": []},
        "health": {"status": "ready", "last_check": "2026-01-01T00:00:00.000Z", "issues": []},
    }
    for key, value in orchestration.items():
        if isinstance(value, dict) and isinstance(document["orchestration"].get(key), dict):
            document["orchestration"][key].update(value)
        else:
            document["orchestration"][key] = value
    return document


def write_json_file(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def settings(tmp_path):
    """Settings whose SpecFlow home has no system templates."""
    return Settings(home_dir=tmp_path / "specflow-home")


@pytest.fixture
def project_root(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def paths(project_root, settings):
    return resolve_paths(project_root, settings)


@pytest.fixture
def branch_reader():
    return lambda root: ACTIVE_BRANCH


@pytest.fixture
def system_templates(settings):
    """Populate the SpecFlow home with the required templates."""
    templates = settings.system_templates_dir
    templates.mkdir(parents=True)
    for name in REQUIRED_TEMPLATES:
        (templates / name).write_text(f"# {name}\n", encoding="utf-8")
    return templates


@pytest.fixture
def consistent_project(paths):
    """A project whose sources of truth all agree."""
    root = paths.root
    write_json_file(paths.state, make_state(root))
    write_json_file(paths.manifest, {
        "manifest_schema": "1.0",
        "specflow_version": "3.0.0",
        "schema": {"state": "3.0", "roadmap": "3.0", "commands": "3.0"},
        "compatibility": {"min_cli": "3.0.0", "created_with": "3.0.0", "created_at": "2026-01-01T00:00:00.000Z"},
        "migrations": [],
    })
    paths.roadmap.write_text(ROADMAP, encoding="utf-8")
    paths.backlog.write_text("# Project Backlog\n", encoding="utf-8")
    paths.history.parent.mkdir(parents=True)
    paths.history.write_text("# Completed Phases\n\n---\n", encoding="utf-8")
    paths.memory_dir.mkdir(parents=True)
    (paths.memory_dir / "constitution.md").write_text("# Constitution\n", encoding="utf-8")
    paths.templates_dir.mkdir(parents=True)
    for name in REQUIRED_TEMPLATES:
        (paths.templates_dir / name).write_text(f"# {name}\n", encoding="utf-8")

    feature = paths.specs_dir / ACTIVE_BRANCH
    feature.mkdir(parents=True)
    (feature / "spec.md").write_text("# Spec\n", encoding="utf-8")
    (feature / "plan.md").write_text("# Plan\n", encoding="utf-8")
    (feature / "tasks.md").write_text(TASKS, encoding="utf-8")
    return paths


@pytest.fixture
def state_factory():
    return make_state


@pytest.fixture
def json_writer():
    return write_json_file
