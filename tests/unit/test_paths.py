"""Unit tests for SpecFlow artifact resolution."""

from pathlib import Path

import pytest

from specflow.config import Settings
from specflow.paths import (
    list_feature_dirs,
    resolve_active_feature_dir,
    resolve_feature_dir,
    resolve_paths,
    resolve_root,
)


class TestResolveRoot:
    """Test cases for locating the project root."""

    def test_finds_current_layout_from_nested_dir(self, tmp_path):
        """Test walking upward to a directory holding .specflow/."""
        (tmp_path / ".specflow").mkdir()
        nested = tmp_path / "src" / "pkg"
        nested.mkdir(parents=True)

        assert resolve_root(nested) == tmp_path.resolve()

    def test_finds_legacy_layout(self, tmp_path):
        """Test that .specify/ alone marks a project."""
        (tmp_path / ".specify").mkdir()

        assert resolve_root(tmp_path) == tmp_path.resolve()

    def test_returns_none_outside_project(self, tmp_path):
        """Test that no marker anywhere up the tree yields None."""
        start = tmp_path / "empty"
        start.mkdir()

        result = resolve_root(start)
        assert result is None or not str(result).startswith(str(tmp_path))


class TestResolvePaths:
    """Test cases for ResolvedPaths."""

    def test_locations(self, tmp_path):
        """Test the fixed artifact locations."""
        settings = Settings(home_dir=tmp_path / "home")
        paths = resolve_paths(tmp_path, settings)

        assert paths.state == tmp_path / ".specflow" / "orchestration-state.json"
        assert paths.manifest == tmp_path / ".specflow" / "manifest.json"
        assert paths.legacy_state == tmp_path / ".specify" / "orchestration-state.json"
        assert paths.history == tmp_path / ".specify" / "history" / "HISTORY.md"
        assert paths.roadmap == tmp_path / "ROADMAP.md"
        assert paths.backlog == tmp_path / "BACKLOG.md"
        assert paths.system_templates_dir == tmp_path / "home" / "templates"

    def test_paths_are_immutable(self, paths):
        """Test that resolved paths cannot be reassigned."""
        with pytest.raises(AttributeError):
            paths.state = Path("/elsewhere")

    def test_layout(self, paths):
        """Test layout detection for none, legacy and current."""
        assert paths.layout == "none"
        paths.specify_dir.mkdir()
        assert paths.layout == "legacy"
        paths.specflow_dir.mkdir()
        assert paths.layout == "current"

    def test_state_source_prefers_current(self, paths):
        """Test that the legacy state is only a fallback source."""
        assert paths.state_source is None

        paths.specify_dir.mkdir()
        paths.legacy_state.write_text("{}")
        assert paths.state_source == paths.legacy_state

        paths.specflow_dir.mkdir()
        paths.state.write_text("{}")
        assert paths.state_source == paths.state

    def test_to_dict(self, paths):
        """Test serializing every location."""
        data = paths.to_dict()
        assert data["root"] == str(paths.root)
        assert data["state"] == str(paths.state)


class TestFeatureDirectories:
    """Test cases for feature directory lookup."""

    @pytest.fixture
    def specs(self, paths):
        for name in ("0010-core", "0020-feature", "0030-polish", "notes"):
            (paths.specs_dir / name).mkdir(parents=True)
        return paths

    def test_list_feature_dirs_sorted(self, specs):
        names = [d.name for d in list_feature_dirs(specs)]
        assert names == ["0010-core", "0020-feature", "0030-polish", "notes"]

    def test_list_feature_dirs_without_specs(self, paths):
        assert list_feature_dirs(paths) == []

    def test_resolve_by_exact_name(self, specs):
        assert resolve_feature_dir(specs, "0020-feature").name == "0020-feature"

    def test_resolve_by_phase_number(self, specs):
        assert resolve_feature_dir(specs, "0030").name == "0030-polish"

    def test_resolve_by_name_suffix(self, specs):
        assert resolve_feature_dir(specs, "core").name == "0010-core"

    def test_resolve_unknown(self, specs):
        assert resolve_feature_dir(specs, "missing") is None
        assert resolve_feature_dir(specs, "  ") is None

    def test_active_dir_exact_match(self, specs):
        assert resolve_active_feature_dir(specs, "0020", "feature").name == "0020-feature"

    def test_active_dir_prefix_match(self, specs):
        """Test that a renamed phase still resolves by its number."""
        assert resolve_active_feature_dir(specs, "0020", "renamed").name == "0020-feature"

    def test_active_dir_unknown_number(self, specs):
        """Test that a phase number without a directory does not fall back."""
        assert resolve_active_feature_dir(specs, "0040", "later") is None

    def test_active_dir_without_phase(self, specs):
        """Test the fallback to the last numbered directory."""
        assert resolve_active_feature_dir(specs).name == "0030-polish"
