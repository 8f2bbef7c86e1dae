"""Unit tests for manifest and state migration."""

import json

from specflow.migrate import (
    create_v3_manifest,
    create_v3_state,
    extract_history_from_roadmap,
    migrate_manifest,
    migrate_project,
    migrate_state,
)
from specflow.models import MigrationAction, PhaseHistoryItem
from specflow.state import read_state, validate_state_document


LEGACY_ROADMAP = """# Roadmap

| Phase | Name | Status |
|-------|------|--------|
| 0010 | Core Engine | ✅ Complete |
| 0020 | API | 🔄 In Progress |

## 0030 - Reporting - COMPLETE

- [x] 0040 Cleanup work
- [x] 0010 Core Engine again
"""

V2_STATE = {
    "schema_version": "2.0",
    "project": {"id": "legacy-id", "name": "legacy", "path": "/old/path"},
    "orchestration": {
        "phase": {"number": 20, "name": "API", "status": "in_progress"},
        "step": {"current": "implement", "index": "2", "status": "in_progress"},
        "custom_flag": True,
    },
    "actions": {"history": [{"type": "phase_completed", "phase_number": "0010", "phase_name": "Core Engine"}]},
    "plugin_data": {"keep": "me"},
}


class TestExtractHistory:
    """Test cases for recovering completed phases from the roadmap."""

    def test_all_formats(self, paths):
        paths.roadmap.write_text(LEGACY_ROADMAP, encoding="utf-8")

        history = extract_history_from_roadmap(paths)

        assert [h.phase_number for h in history] == ["0010", "0030", "0040"]
        assert history[0].phase_name == "Core Engine"
        assert history[0].branch == "0010-core-engine"
        assert history[1].phase_name == "Reporting"
        assert all(h.completed_at for h in history)

    def test_no_roadmap(self, paths):
        assert extract_history_from_roadmap(paths) == []


class TestManifestMigration:
    """Test cases for manifest migration."""

    def test_create_fresh_manifest(self):
        manifest = create_v3_manifest()
        assert manifest["specflow_version"] == "3.0.0"
        assert manifest["schema"]["state"] == "3.0"
        assert manifest["migrations"] == []

    def test_preserves_created_at_and_migrations(self):
        existing = {
            "speckit_version": "2.1.0",
            "compatibility": {"created_at": "2024-05-01T00:00:00Z"},
            "migrations": [{"from": "1.0", "to": "2.0", "date": "2024-06-01"}],
        }
        manifest = create_v3_manifest(existing)

        assert manifest["compatibility"]["created_at"] == "2024-05-01T00:00:00Z"
        assert len(manifest["migrations"]) == 2
        assert manifest["migrations"][-1]["from"] == "2.1.0"
        assert manifest["migrations"][-1]["to"] == "3.0.0"

    def test_migrates_legacy_manifest(self, paths, json_writer):
        json_writer(paths.legacy_manifest, {"speckit_version": "2.1.0"})

        result = migrate_manifest(paths)

        assert result.success
        assert result.action is MigrationAction.MIGRATED
        manifest = json.loads(paths.manifest.read_text(encoding="utf-8"))
        assert manifest["specflow_version"] == "3.0.0"

    def test_skips_current_manifest(self, paths, json_writer):
        json_writer(paths.manifest, {"specflow_version": "3.0.0"})
        assert migrate_manifest(paths).action is MigrationAction.SKIPPED

    def test_backs_up_overwritten_manifest(self, paths, json_writer):
        json_writer(paths.manifest, {"speckit_version": "2.0.0"})

        migrate_manifest(paths)

        backup = paths.manifest.with_name("manifest.json.pre-upgrade")
        assert json.loads(backup.read_text(encoding="utf-8")) == {"speckit_version": "2.0.0"}

    def test_creates_manifest(self, paths):
        result = migrate_manifest(paths)
        assert result.action is MigrationAction.CREATED
        assert paths.manifest.exists()

    def test_invalid_manifest_is_reported(self, paths):
        paths.specflow_dir.mkdir()
        paths.manifest.write_text("{broken", encoding="utf-8")

        result = migrate_manifest(paths)

        assert not result.success
        assert result.action is MigrationAction.ERROR
        assert result.error


class TestStateMigration:
    """Test cases for state migration."""

    def test_create_v3_state_preserves_data(self):
        history = [PhaseHistoryItem("0010", "Core Engine", "0010-core-engine", "now"),
                   PhaseHistoryItem("0030", "Reporting", "0030-reporting", "now")]

        document = create_v3_state("demo", "/new", V2_STATE, history)

        assert document["schema_version"] == "3.0"
        assert document["project"]["id"] == "legacy-id"
        assert document["project"]["path"] == "/old/path"
        assert document["orchestration"]["phase"]["number"] == "20"
        assert document["orchestration"]["step"]["index"] == 2
        assert document["orchestration"]["custom_flag"] is True
        assert document["plugin_data"] == {"keep": "me"}
        assert [h["phase_number"] for h in document["actions"]["history"]] == ["0010", "0030"]
        assert document["migrations"][-1]["from"] == "2.0"
        assert validate_state_document(document) == []

    def test_create_v3_state_from_nothing(self):
        document = create_v3_state("demo", "/new")
        assert document["project"]["name"] == "demo"
        assert document["orchestration"]["step"] == {"current": "design", "index": 0, "status": "not_started"}
        assert "migrations" not in document

    def test_input_not_mutated(self):
        snapshot = json.dumps(V2_STATE, sort_keys=True)
        create_v3_state("demo", "/new", V2_STATE, [])
        assert json.dumps(V2_STATE, sort_keys=True) == snapshot

    def test_migrates_legacy_state(self, paths, json_writer):
        json_writer(paths.legacy_state, V2_STATE)
        paths.roadmap.write_text(LEGACY_ROADMAP, encoding="utf-8")

        result = migrate_state(paths)

        assert result.success
        assert result.action is MigrationAction.MIGRATED
        assert result.history_extracted == 3
        state = read_state(paths)
        assert state.schema_version == "3.0"
        assert [h["phase_number"] for h in state.history] == ["0010", "0030", "0040"]

    def test_second_run_is_noop(self, paths, json_writer):
        """Test that migrating twice leaves the document unchanged."""
        json_writer(paths.legacy_state, V2_STATE)
        paths.roadmap.write_text(LEGACY_ROADMAP, encoding="utf-8")
        migrate_state(paths)
        first = paths.state.read_text(encoding="utf-8")

        result = migrate_state(paths)

        assert result.action is MigrationAction.SKIPPED
        assert paths.state.read_text(encoding="utf-8") == first

    def test_current_state_without_history_to_recover(self, paths, json_writer, state_factory):
        json_writer(paths.state, state_factory(paths.root))
        assert migrate_state(paths).action is MigrationAction.SKIPPED

    def test_current_state_recovers_history(self, paths, json_writer, state_factory):
        """Test that an empty history is filled from the roadmap and the old file kept."""
        json_writer(paths.state, state_factory(paths.root))
        paths.roadmap.write_text(LEGACY_ROADMAP, encoding="utf-8")

        result = migrate_state(paths)

        assert result.action is MigrationAction.MIGRATED
        assert len(read_state(paths).history) == 3
        assert paths.state.with_name("orchestration-state.json.pre-upgrade").exists()

    def test_force_rebuilds(self, paths, json_writer, state_factory):
        json_writer(paths.state, state_factory(paths.root))
        assert migrate_state(paths, force=True).action is MigrationAction.MIGRATED

    def test_creates_state(self, paths):
        result = migrate_state(paths, "demo")
        assert result.action is MigrationAction.CREATED
        assert read_state(paths).project.name == "demo"

    def test_unreadable_state_is_reported(self, paths):
        paths.specflow_dir.mkdir()
        paths.state.write_text("{oops", encoding="utf-8")

        result = migrate_state(paths)

        assert not result.success
        assert result.action is MigrationAction.ERROR


class TestMigrateProject:
    """Test cases for whole-project migration."""

    def test_uninitialized_project_is_skipped(self, paths):
        outcome = migrate_project(paths)

        assert outcome["detection"]["version"] == "uninitialized"
        assert outcome["state"]["action"] == "skipped"
        assert not paths.state.exists()

    def test_second_generation_project(self, paths, json_writer):
        json_writer(paths.legacy_manifest, {"speckit_version": "2.1.0"})
        json_writer(paths.legacy_state, V2_STATE)

        outcome = migrate_project(paths)

        assert outcome["needs_upgrade"]
        assert outcome["manifest"]["action"] == "migrated"
        assert outcome["state"]["action"] == "migrated"
        assert paths.state.exists()
        assert paths.manifest.exists()
