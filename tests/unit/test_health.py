"""Unit tests for the consistency (health) checker and its autofixes."""

import subprocess

import pytest

from specflow.health import (
    HealthChecker,
    apply_fixes,
    compare_semver,
    determine_next_step,
    determine_status,
    git_branch_reader,
    run_health_check,
)
from specflow.models import HealthIssue, HealthStatus, Severity
from specflow.state import read_state


def _codes(result):
    return [issue.code for issue in result.issues]


def _issue(result, code):
    return next(issue for issue in result.issues if issue.code == code)


@pytest.fixture
def check(settings, branch_reader):
    """Run the checker against a project with the fixed branch reader."""
    def run(paths, reader=None):
        return HealthChecker(paths, settings, reader or branch_reader).run()
    return run


class TestFatalStateChecks:
    """Test cases for the checks that stop the battery."""

    def test_no_state(self, paths, check):
        """Test that a missing state document yields exactly one error."""
        paths.specflow_dir.mkdir()

        result = check(paths)

        assert result.status is HealthStatus.ERROR
        assert _codes(result) == ["NO_STATE"]
        assert not result.issues[0].auto_fixable
        assert result.next_action == "fix_errors"

    def test_no_state_with_legacy_state(self, paths, check, json_writer, state_factory):
        json_writer(paths.legacy_state, state_factory(paths.root))

        result = check(paths)

        assert _codes(result) == ["NO_STATE"]
        assert result.issues[0].auto_fixable
        assert result.next_action == "run_check_fix"

        fixes = apply_fixes(paths, result)
        assert [f.success for f in fixes] == [True]
        assert paths.state.exists()

    def test_state_invalid_json(self, paths, check):
        paths.specflow_dir.mkdir()
        paths.state.write_text("{ nope", encoding="utf-8")

        result = check(paths)

        assert _codes(result) == ["STATE_INVALID"]
        assert not result.issues[0].auto_fixable

    def test_schema_errors_are_capped(self, paths, check, json_writer):
        json_writer(paths.state, {
            "schema_version": 1,
            "project": {},
            "last_updated": 5,
            "orchestration": {"phase": {"number": 1, "name": 2}},
        })

        result = check(paths)

        assert _codes(result) == ["STATE_SCHEMA_ERROR"] * 6
        assert result.issues[-1].message == "... and 2 more validation errors"
        assert not result.issues[-1].auto_fixable
        assert all(i.auto_fixable for i in result.issues[:5])

    def test_schema_errors_fixed_once(self, paths, check, json_writer):
        """Test that repeated issue codes trigger a single repair."""
        json_writer(paths.state, {"schema_version": 1, "project": {"name": "demo"}})

        result = check(paths)
        fixes = apply_fixes(paths, result)

        assert [f.code for f in fixes] == ["STATE_SCHEMA_ERROR"]
        assert fixes[0].success
        state = read_state(paths)
        assert state.schema_version == "3.0"
        assert state.project.name == "demo"


class TestConsistentProject:
    """Test cases for a project whose sources agree."""

    def test_ready(self, consistent_project, check):
        result = check(consistent_project)

        assert result.status is HealthStatus.READY
        assert result.issues == []
        assert result.next_action is None

    def test_to_dict(self, consistent_project, check):
        data = check(consistent_project).to_dict()
        assert data["status"] == "ready"
        assert data["summary"] == {"errors": 0, "warnings": 0, "info": 0}


class TestStateFieldChecks:
    """Test cases for field-level state problems and their repairs."""

    def test_schema_version_outdated(self, consistent_project, check, json_writer, state_factory):
        document = state_factory(consistent_project.root)
        document["schema_version"] = "2.0"
        json_writer(consistent_project.state, document)

        result = check(consistent_project)
        assert _codes(result) == ["SCHEMA_VERSION_OUTDATED"]

        apply_fixes(consistent_project, result)
        assert check(consistent_project).status is HealthStatus.READY

    def test_step_index_type(self, consistent_project, check, json_writer, state_factory):
        json_writer(consistent_project.state, state_factory(consistent_project.root, step={"index": "2"}))

        result = check(consistent_project)
        assert _codes(result) == ["STEP_INDEX_TYPE_ERROR"]
        assert _issue(result, "STEP_INDEX_TYPE_ERROR").severity is Severity.ERROR

        apply_fixes(consistent_project, result)
        assert read_state(consistent_project).step.index == 2

    def test_step_index_type_unparsable(self, consistent_project, check, json_writer, state_factory):
        json_writer(consistent_project.state, state_factory(consistent_project.root, step={"index": "two"}))

        apply_fixes(consistent_project, check(consistent_project))

        assert read_state(consistent_project).step.index == 2

    def test_step_current_invalid(self, consistent_project, check, json_writer, state_factory):
        json_writer(consistent_project.state, state_factory(consistent_project.root, step={"current": "coding"}))

        result = check(consistent_project)
        assert _codes(result) == ["STEP_CURRENT_INVALID"]

        apply_fixes(consistent_project, result)
        assert read_state(consistent_project).step.current == "implement"

    def test_step_status_invalid(self, consistent_project, check, json_writer, state_factory):
        json_writer(consistent_project.state, state_factory(consistent_project.root, step={"status": "weird"}))

        result = check(consistent_project)
        assert _codes(result) == ["STEP_STATUS_INVALID"]

        apply_fixes(consistent_project, result)
        assert read_state(consistent_project).step.status == "not_started"

    def test_phase_status_invalid_uses_roadmap(self, consistent_project, check, json_writer, state_factory):
        json_writer(consistent_project.state, state_factory(consistent_project.root, phase={"status": "paused"}))

        result = check(consistent_project)
        assert _codes(result) == ["PHASE_STATUS_INVALID"]

        apply_fixes(consistent_project, result)
        assert read_state(consistent_project).phase.status == "in_progress"

    def test_step_index_mismatch(self, consistent_project, check, json_writer, state_factory):
        json_writer(consistent_project.state, state_factory(consistent_project.root, step={"index": 1}))

        result = check(consistent_project)
        assert _codes(result) == ["STEP_INDEX_MISMATCH"]
        assert result.status is HealthStatus.WARNING
        assert result.next_action == "run_check_fix"

        apply_fixes(consistent_project, result)
        assert read_state(consistent_project).step.index == 2

    def test_step_blocked(self, consistent_project, check, json_writer, state_factory):
        json_writer(consistent_project.state, state_factory(consistent_project.root, step={"status": "blocked"}))

        result = check(consistent_project)

        assert _codes(result) == ["STEP_BLOCKED"]
        assert result.next_action == "review_warnings"


class TestLayoutChecks:
    """Test cases for misplaced, missing and deprecated files."""

    def test_state_wrong_location(self, consistent_project, check, json_writer, state_factory):
        json_writer(consistent_project.legacy_state, state_factory(consistent_project.root))

        result = check(consistent_project)
        assert _codes(result) == ["STATE_WRONG_LOCATION"]

        apply_fixes(consistent_project, result)
        assert not consistent_project.legacy_state.exists()
        assert consistent_project.legacy_state.with_name("orchestration-state.json.pre-upgrade").exists()

    def test_manifest_wrong_location(self, consistent_project, check, json_writer):
        json_writer(consistent_project.legacy_manifest, {"speckit_version": "2.0.0"})

        result = check(consistent_project)
        assert _codes(result) == ["MANIFEST_WRONG_LOCATION"]

        fixes = apply_fixes(consistent_project, result)
        assert fixes[0].success
        assert not consistent_project.legacy_manifest.exists()

    def test_deprecated_issues_dir(self, consistent_project, check):
        consistent_project.issues_dir.mkdir()
        assert _codes(check(consistent_project)) == ["DEPRECATED_ISSUES_DIR"]

    def test_missing_backlog_and_history(self, consistent_project, check):
        consistent_project.backlog.unlink()
        consistent_project.history.unlink()

        result = check(consistent_project)
        assert _codes(result) == ["NO_BACKLOG", "NO_HISTORY"]
        assert result.status is HealthStatus.READY

        fixes = apply_fixes(consistent_project, result)
        assert all(f.success for f in fixes)
        assert consistent_project.backlog.read_text(encoding="utf-8").startswith("# Project Backlog")
        assert consistent_project.history.exists()

    def test_missing_roadmap_and_memory(self, consistent_project, check):
        consistent_project.roadmap.unlink()
        for child in consistent_project.memory_dir.iterdir():
            child.unlink()
        consistent_project.memory_dir.rmdir()

        result = check(consistent_project)

        assert _codes(result) == ["NO_ROADMAP", "NO_MEMORY"]
        assert _issue(result, "NO_ROADMAP").severity is Severity.WARNING
        assert _issue(result, "NO_MEMORY").severity is Severity.INFO


class TestTemplateChecks:
    """Test cases for template presence."""

    def _remove_templates(self, paths):
        for child in paths.templates_dir.iterdir():
            child.unlink()
        paths.templates_dir.rmdir()

    def test_no_templates_without_system_copy(self, consistent_project, check):
        self._remove_templates(consistent_project)

        issue = _issue(check(consistent_project), "NO_TEMPLATES")

        assert not issue.auto_fixable

    def test_no_templates_fixed_from_system_copy(self, consistent_project, check, system_templates):
        self._remove_templates(consistent_project)

        result = check(consistent_project)
        assert _issue(result, "NO_TEMPLATES").auto_fixable

        apply_fixes(consistent_project, result)
        assert check(consistent_project).status is HealthStatus.READY

    def test_missing_templates(self, consistent_project, check, system_templates):
        (consistent_project.templates_dir / "plan-template.md").unlink()
        (consistent_project.templates_dir / "spec-template.md").write_text("customized", encoding="utf-8")

        result = check(consistent_project)
        issue = _issue(result, "MISSING_TEMPLATES")
        assert "plan-template.md" in issue.message

        apply_fixes(consistent_project, result)
        assert (consistent_project.templates_dir / "plan-template.md").exists()
        assert (consistent_project.templates_dir / "spec-template.md").read_text(encoding="utf-8") == "customized"

    def test_failing_fix_does_not_stop_others(self, consistent_project, check, system_templates, monkeypatch):
        (consistent_project.templates_dir / "plan-template.md").unlink()
        consistent_project.backlog.unlink()

        def broken_copy(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("specflow.health.shutil.copy2", broken_copy)
        fixes = {f.code: f for f in apply_fixes(consistent_project, check(consistent_project))}

        assert not fixes["MISSING_TEMPLATES"].success
        assert "disk full" in fixes["MISSING_TEMPLATES"].action
        assert fixes["NO_BACKLOG"].success
        assert consistent_project.backlog.exists()


class TestManifestChecks:
    """Test cases for manifest compatibility."""

    def test_cli_version_mismatch(self, consistent_project, check, json_writer):
        json_writer(consistent_project.manifest, {"specflow_version": "9.0.0", "compatibility": {"min_cli": "9.1.0"}})

        result = check(consistent_project)

        assert _codes(result) == ["CLI_VERSION_MISMATCH"]
        assert result.next_action == "fix_errors"

    def test_manifest_invalid(self, consistent_project, check):
        consistent_project.manifest.write_text("{broken", encoding="utf-8")
        assert _codes(check(consistent_project)) == ["MANIFEST_INVALID"]

    @pytest.mark.parametrize("a, b, expected", [
        ("3.0.0", "3.0.0", 0),
        ("3.0.0", "3.1.0", -1),
        ("3.10.0", "3.9.9", 1),
        ("v3.0", "3.0.0", 0),
        ("3.0.0-beta", "3.0.0", 0),
    ])
    def test_compare_semver(self, a, b, expected):
        result = compare_semver(a, b)
        assert (result > 0) - (result < 0) == expected


class TestFeatureChecks:
    """Test cases for feature directory naming and artifacts."""

    def test_three_digit_naming(self, consistent_project, check):
        for name in ("001-a", "002-b", "003-c", "004-d"):
            (consistent_project.specs_dir / name).mkdir()

        issue = _issue(check(consistent_project), "ABC_NAMING_FOUND")

        assert "4 phase folder(s)" in issue.message
        assert issue.message.endswith("001-a, 002-b, 003-c...")

    def test_completed_phase_not_archived(self, consistent_project, check, json_writer, state_factory):
        document = state_factory(consistent_project.root)
        document["actions"]["history"] = [{"type": "phase_completed", "phase_number": "0010", "phase_name": "core"}]
        json_writer(consistent_project.state, document)
        (consistent_project.specs_dir / "0010-core").mkdir()

        assert _codes(check(consistent_project)) == ["COMPLETED_PHASE_NOT_ARCHIVED"]

    def test_missing_artifacts(self, consistent_project, check):
        (consistent_project.specs_dir / "0020-feature" / "plan.md").unlink()

        issue = _issue(check(consistent_project), "MISSING_ARTIFACTS")

        assert "plan.md" in issue.message

    def test_missing_artifacts_ignored_during_design(self, consistent_project, check, json_writer, state_factory):
        json_writer(consistent_project.state, state_factory(consistent_project.root, step={"current": "design", "index": 0}))
        (consistent_project.specs_dir / "0020-feature" / "plan.md").unlink()

        assert "MISSING_ARTIFACTS" not in _codes(check(consistent_project))

    def test_tasks_format_error(self, consistent_project, check):
        (consistent_project.specs_dir / "0020-feature" / "tasks.md").write_text(
            "# Tasks\n\n- [ ] Something without an id\n", encoding="utf-8"
        )
        assert _codes(check(consistent_project)) == ["TASKS_FORMAT_ERROR"]

    def test_circular_dependencies(self, consistent_project, check):
        (consistent_project.specs_dir / "0020-feature" / "tasks.md").write_text(
            "- [ ] T001 A (depends on T003)\n- [ ] T002 B (depends on T001)\n- [ ] T003 C (depends on T002)\n",
            encoding="utf-8",
        )

        result = check(consistent_project)
        issue = _issue(result, "CIRCULAR_DEPENDENCIES")

        assert issue.severity is Severity.ERROR
        assert "T001 → T003 → T002 → T001" in issue.message
        assert result.next_action == "fix_errors"

    def test_tasks_complete_during_implement(self, consistent_project, check):
        (consistent_project.specs_dir / "0020-feature" / "tasks.md").write_text(
            "- [x] T001 A\n- [x] T002 B\n", encoding="utf-8"
        )

        result = check(consistent_project)
        assert _codes(result) == ["TASKS_COMPLETE_STEP_IMPLEMENT"]

        apply_fixes(consistent_project, result)
        step = read_state(consistent_project).step
        assert (step.current, step.index) == ("verify", 3)


class TestRoadmapChecks:
    """Test cases for roadmap agreement with state."""

    def _replace_in_roadmap(self, paths, old, new):
        content = paths.roadmap.read_text(encoding="utf-8")
        paths.roadmap.write_text(content.replace(old, new), encoding="utf-8")

    def test_roadmap_without_table(self, consistent_project, check):
        consistent_project.roadmap.write_text("# Roadmap\n\nTBD\n", encoding="utf-8")
        assert _codes(check(consistent_project)) == ["ROADMAP_NO_TABLE"]

    def test_multiple_active_phases(self, consistent_project, check):
        self._replace_in_roadmap(consistent_project, "⬜ Not Started", "🔄 In Progress")
        assert _codes(check(consistent_project)) == ["MULTIPLE_ACTIVE_PHASES"]

    def test_phase_not_in_roadmap(self, consistent_project, check):
        self._replace_in_roadmap(consistent_project, "| 0020 |", "| 0025 |")
        assert _codes(check(consistent_project)) == ["PHASE_NOT_IN_ROADMAP"]

    def test_state_roadmap_drift(self, consistent_project, check):
        self._replace_in_roadmap(consistent_project, "🔄 In Progress", "✅ Complete")
        assert _codes(check(consistent_project)) == ["STATE_ROADMAP_DRIFT"]


class TestBranchChecks:
    """Test cases for git branch agreement."""

    def test_on_trunk(self, consistent_project, check):
        result = check(consistent_project, reader=lambda root: "main")

        assert _codes(result) == ["ON_MAIN_BRANCH"]
        assert result.status is HealthStatus.READY

    def test_branch_mismatch(self, consistent_project, check):
        result = check(consistent_project, reader=lambda root: "feature/other")

        assert _codes(result) == ["BRANCH_MISMATCH"]
        assert "git checkout 0020-feature" in result.issues[0].fix

    def test_git_unavailable(self, consistent_project, check):
        assert check(consistent_project, reader=lambda root: None).issues == []

    @pytest.mark.parametrize("failure", [
        FileNotFoundError("git"),
        subprocess.TimeoutExpired(["git", "branch", "--show-current"], 5),
    ])
    def test_git_reader_without_git(self, consistent_project, check, monkeypatch, failure):
        def fail_run(*args, **kwargs):
            raise failure

        monkeypatch.setattr("specflow.health.subprocess.run", fail_run)
        reader = git_branch_reader(timeout=5)

        assert reader(consistent_project.root) is None
        assert check(consistent_project, reader=reader).issues == []

    def test_git_reader_outside_repository(self, consistent_project, monkeypatch):
        completed = subprocess.CompletedProcess(["git"], 128, stdout="", stderr="not a git repository")
        monkeypatch.setattr("specflow.health.subprocess.run", lambda *args, **kwargs: completed)

        assert git_branch_reader(timeout=5)(consistent_project.root) is None

    def test_git_reader_current_branch(self, consistent_project, monkeypatch):
        completed = subprocess.CompletedProcess(["git"], 0, stdout="0020-feature\n", stderr="")
        monkeypatch.setattr("specflow.health.subprocess.run", lambda *args, **kwargs: completed)

        assert git_branch_reader(timeout=5)(consistent_project.root) == "0020-feature"

    def test_failing_check_is_isolated(self, consistent_project, check):
        """Test that an exception inside one check becomes an info issue."""
        def explode(root):
            raise RuntimeError("git exploded")

        result = check(consistent_project, reader=explode)

        assert _codes(result) == ["CHECK_FAILED"]
        assert result.issues[0].severity is Severity.INFO
        assert "git exploded" in result.issues[0].message


class TestResultHelpers:
    """Test cases for status and next-step derivation."""

    def test_determine_status(self):
        info = HealthIssue("A", Severity.INFO, "a")
        warning = HealthIssue("B", Severity.WARNING, "b")
        error = HealthIssue("C", Severity.ERROR, "c")

        assert determine_status([]) is HealthStatus.READY
        assert determine_status([info]) is HealthStatus.READY
        assert determine_status([info, warning]) is HealthStatus.WARNING
        assert determine_status([warning, error]) is HealthStatus.ERROR

    def test_next_step_ignores_lower_severity_fixes(self):
        """Test that a fixable warning does not suggest autofix while errors are manual."""
        issues = [
            HealthIssue("C", Severity.ERROR, "c"),
            HealthIssue("B", Severity.WARNING, "b", auto_fixable=True),
        ]
        assert determine_next_step(issues, HealthStatus.ERROR) == "fix_errors"

    def test_run_health_check(self, consistent_project, settings, branch_reader):
        result = run_health_check(consistent_project.root / "specs", settings, branch_reader)
        assert result.status is HealthStatus.READY

    def test_run_health_check_outside_project(self, tmp_path, settings, monkeypatch):
        monkeypatch.setattr("specflow.health.resolve_root", lambda start: None)

        result = run_health_check(tmp_path, settings)

        assert _codes(result) == ["NO_PROJECT"]
        assert result.status is HealthStatus.ERROR
