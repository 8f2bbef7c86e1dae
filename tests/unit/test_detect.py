"""Unit tests for format-generation detection."""

from specflow.detect import detect_version, get_migration_steps, get_version_description, needs_upgrade
from specflow.models import Confidence, RepoVersion


class TestDetectVersion:
    """Test cases for detect_version."""

    def test_empty_directory(self, paths):
        result = detect_version(paths)

        assert result.version is RepoVersion.UNINITIALIZED
        assert result.confidence is Confidence.HIGH
        assert not needs_upgrade(result)

    def test_current_generation(self, consistent_project):
        result = detect_version(consistent_project)

        assert result.version is RepoVersion.V3
        assert result.confidence is Confidence.HIGH
        assert result.state_schema_version == "3.0"
        assert result.manifest["specflow_version"] == "3.0.0"
        assert not needs_upgrade(result)

    def test_bare_specflow_dir_is_medium_confidence(self, paths):
        paths.specflow_dir.mkdir()
        result = detect_version(paths)
        assert result.version is RepoVersion.V3
        assert result.confidence is Confidence.MEDIUM

    def test_second_generation(self, paths, json_writer):
        json_writer(paths.legacy_manifest, {"speckit_version": "2.1.0", "schema": {"state": "2.0"}})
        json_writer(paths.legacy_state, {"schema_version": "2.0", "project": {"id": "1", "name": "d", "path": "/d"}})

        result = detect_version(paths)

        assert result.version is RepoVersion.V2
        assert result.confidence is Confidence.HIGH
        assert len(result.indicators) == 3
        assert result.state_schema_version == "2.0"
        assert needs_upgrade(result)

    def test_first_generation(self, paths):
        paths.scripts_dir.mkdir(parents=True)
        result = detect_version(paths)
        assert result.version is RepoVersion.V1
        assert result.confidence is Confidence.MEDIUM
        assert needs_upgrade(result)

    def test_artifacts_without_indicators(self, paths):
        paths.roadmap.write_text("# Roadmap\n", encoding="utf-8")
        result = detect_version(paths)
        assert result.version is RepoVersion.V1
        assert result.confidence is Confidence.LOW

    def test_newest_evidence_wins(self, paths, json_writer):
        """Test that a half-migrated project reports the newer generation."""
        json_writer(paths.legacy_manifest, {"speckit_version": "2.0.0"})
        paths.specflow_dir.mkdir()

        assert detect_version(paths).version is RepoVersion.V3


class TestVersionHelpers:
    """Test cases for descriptions and migration steps."""

    def test_every_version_is_described(self):
        for version in RepoVersion:
            assert get_version_description(version)
            assert get_migration_steps(version)

    def test_migration_steps_are_copies(self):
        steps = get_migration_steps(RepoVersion.V2)
        steps.append("extra")
        assert "extra" not in get_migration_steps(RepoVersion.V2)
