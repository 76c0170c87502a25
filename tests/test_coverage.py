"""Tests for reports/coverage.py: resultset parsing, estimation and the SimpleCov workflow."""

import json

import pytest

from conftest import completed, write
from rails_audit.config import Config
from rails_audit.project import RailsProject
from rails_audit.reports.coverage import (
    RESULTSET_PATH,
    coverage_rating,
    estimate_coverage,
    parse_resultset,
    run_coverage,
)
from rails_audit.runner import CommandError

ROOT = "/srv/app"


def _resultset(files: dict, command: str = "RSpec") -> dict:
    return {command: {"coverage": files, "timestamp": 1700000000}}


# --------------------------------------------------------------------------- #
# parse_resultset
# --------------------------------------------------------------------------- #

class TestParseResultset:
    def test_modern_format(self):
        data = _resultset({f"{ROOT}/app/models/user.rb": {"lines": [1, None, 0, 3, None]}})
        result = parse_resultset(data, ROOT)
        assert result.lines_relevant == 3
        assert result.lines_covered == 2
        assert result.percent == 66.67
        assert result.files[0].path == "app/models/user.rb"

    def test_legacy_list_format(self):
        data = _resultset({f"{ROOT}/lib/tax.rb": [1, 1, 0, 0]})
        result = parse_resultset(data, ROOT)
        assert result.percent == 50.0
        assert result.rating == "poor"

    def test_commands_are_merged_line_by_line(self):
        data = {
            "RSpec": {"coverage": {f"{ROOT}/app/a.rb": {"lines": [0, 1, None]}}},
            "Cucumber": {"coverage": {f"{ROOT}/app/a.rb": {"lines": [2, 0, None]}}},
        }
        result = parse_resultset(data, ROOT)
        assert result.lines_relevant == 2
        assert result.lines_covered == 2
        assert result.percent == 100.0
        assert sorted(result.command_names) == ["Cucumber", "RSpec"]

    def test_line_relevant_if_any_run_reports_it(self):
        data = {
            "a": {"coverage": {f"{ROOT}/x.rb": {"lines": [None, None]}}},
            "b": {"coverage": {f"{ROOT}/x.rb": {"lines": [0, None]}}},
        }
        result = parse_resultset(data, ROOT)
        assert result.lines_relevant == 1
        assert result.lines_covered == 0

    def test_no_relevant_lines_is_full_coverage(self):
        result = parse_resultset(_resultset({f"{ROOT}/empty.rb": {"lines": [None]}}), ROOT)
        assert result.percent == 100.0

    def test_branch_coverage(self):
        branches = {
            "[:if, 0, 3, 4, 7, 7]": {"[:then, 1, 4, 6, 4, 10]": 2, "[:else, 2, 6, 6, 6, 10]": 0},
        }
        data = _resultset({f"{ROOT}/app/a.rb": {"lines": [1], "branches": branches}})
        result = parse_resultset(data, ROOT)
        assert result.branches_total == 2
        assert result.branches_covered == 1
        assert result.branch_percent == 50.0

    def test_no_branch_data_gives_none(self):
        result = parse_resultset(_resultset({f"{ROOT}/app/a.rb": {"lines": [1]}}), ROOT)
        assert result.branch_percent is None

    def test_files_sorted_least_covered_first(self):
        data = _resultset({
            f"{ROOT}/app/good.rb": {"lines": [1, 1]},
            f"{ROOT}/app/bad.rb": {"lines": [0, 0]},
            f"{ROOT}/app/half.rb": {"lines": [1, 0]},
        })
        result = parse_resultset(data, ROOT)
        assert [f.path for f in result.files] == ["app/bad.rb", "app/half.rb", "app/good.rb"]
        assert result.lowest_files(1)[0].lines_missed == 2

    def test_paths_outside_root_kept_absolute(self):
        result = parse_resultset(_resultset({"/gems/lib/x.rb": {"lines": [1]}}), ROOT)
        assert result.files[0].path == "/gems/lib/x.rb"

    def test_entry_without_coverage_is_skipped_with_warning(self):
        data = {"broken": {"timestamp": 1}, **_resultset({f"{ROOT}/a.rb": {"lines": [1]}})}
        with pytest.warns(UserWarning, match="broken"):
            result = parse_resultset(data, ROOT)
        assert result.command_names == ["RSpec"]
        assert result.lines_covered == 1


@pytest.mark.parametrize("percent, rating", [
    (100.0, "excellent"), (90.0, "excellent"), (89.99, "good"),
    (80.0, "good"), (60.0, "fair"), (59.9, "poor"), (0.0, "poor"),
])
def test_coverage_rating(percent, rating):
    assert coverage_rating(percent) == rating


# --------------------------------------------------------------------------- #
# estimate_coverage
# --------------------------------------------------------------------------- #

class TestEstimateCoverage:
    def test_counts_files_with_matching_specs(self, rails_app):
        estimate = estimate_coverage(RailsProject(rails_app))
        assert estimate.tested_files == ["app/models/user.rb"]
        assert estimate.untested_files == ["app/models/order.rb"]
        assert estimate.estimated_percent == 50.0
        assert estimate.estimated is True

    def test_minitest_and_request_specs_count(self, rails_app):
        write(rails_app, "app/controllers/orders_controller.rb", "class OrdersController\nend\n")
        write(rails_app, "spec/requests/orders_spec.rb", "")
        write(rails_app, "test/models/order_test.rb", "")
        estimate = estimate_coverage(RailsProject(rails_app))
        assert estimate.untested_files == []
        assert estimate.estimated_percent == 100.0

    def test_views_and_assets_ignored(self, rails_app):
        write(rails_app, "app/views/users/show.html.rb", "")
        write(rails_app, "app/assets/config/manifest.rb", "")
        estimate = estimate_coverage(RailsProject(rails_app))
        assert len(estimate.tested_files) + len(estimate.untested_files) == 2

    def test_no_app_files(self, tmp_path):
        assert estimate_coverage(RailsProject(tmp_path)).estimated_percent == 0.0


# --------------------------------------------------------------------------- #
# run_coverage
# --------------------------------------------------------------------------- #

def _fake_run(rails_app, calls, *, install_rc=0, write_resultset=True):
    """Simulate bundle install and a test run that writes a resultset."""
    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        if cmd[:2] == ["bundle", "install"]:
            return completed(install_rc, stderr="Could not find gem 'simplecov'")
        if write_resultset:
            path = rails_app / RESULTSET_PATH
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(_resultset({
                str(rails_app.resolve() / "app/models/user.rb"): {"lines": [1, 1, 0, None]},
            })))
        return completed(1)
    return fake_run


class TestRunCoverage:
    def test_success_restores_project(self, rails_app, monkeypatch):
        gemfile_before = (rails_app / "Gemfile").read_text()
        helper_before = (rails_app / "spec/spec_helper.rb").read_text()
        calls = []
        seen = {}

        def fake_run(cmd, **kwargs):
            if cmd[:2] == ["bundle", "exec"]:
                seen["gemfile"] = (rails_app / "Gemfile").read_text()
                seen["helper"] = (rails_app / "spec/spec_helper.rb").read_text()
                seen["env"] = kwargs.get("env", {})
            return _fake_run(rails_app, calls)(cmd, **kwargs)

        monkeypatch.setattr("rails_audit.runner.subprocess.run", fake_run)
        outcome = run_coverage(RailsProject(rails_app), Config())

        assert outcome.ok
        assert outcome.result.percent == 66.67
        assert calls == [["bundle", "install"], ["bundle", "exec", "rspec"]]
        assert 'gem "simplecov", require: false' in seen["gemfile"]
        assert seen["helper"].startswith('require "simplecov"\nSimpleCov.start "rails"')
        assert seen["env"]["RAILS_ENV"] == "test"
        # restored
        assert (rails_app / "Gemfile").read_text() == gemfile_before
        assert (rails_app / "spec/spec_helper.rb").read_text() == helper_before
        assert not (rails_app / "coverage").exists()
        assert not (rails_app / ".rails-audit-backup").exists()

    def test_existing_simplecov_not_injected(self, rails_app, monkeypatch):
        write(rails_app, "Gemfile", 'gem "rails"\ngem "rspec-rails"\ngem "simplecov"\n')
        write(rails_app, "spec/spec_helper.rb", 'require "simplecov"\nSimpleCov.start\n')
        gemfile_seen = []

        def fake_run(cmd, **kwargs):
            gemfile_seen.append((rails_app / "Gemfile").read_text())
            return _fake_run(rails_app, [])(cmd, **kwargs)

        monkeypatch.setattr("rails_audit.runner.subprocess.run", fake_run)
        outcome = run_coverage(RailsProject(rails_app), Config())
        assert outcome.ok
        assert all(text.count("simplecov") == 1 for text in gemfile_seen)

    def test_install_failure_reports_setup_failed(self, rails_app, monkeypatch):
        gemfile_before = (rails_app / "Gemfile").read_text()
        calls = []
        monkeypatch.setattr("rails_audit.runner.subprocess.run", _fake_run(rails_app, calls, install_rc=1))

        outcome = run_coverage(RailsProject(rails_app), Config())

        assert not outcome.ok
        assert outcome.reason.startswith("setup failed")
        assert "Could not find gem" in outcome.reason
        assert calls == [["bundle", "install"]]
        assert (rails_app / "Gemfile").read_text() == gemfile_before

    def test_missing_resultset_falls_back_to_estimate(self, rails_app, monkeypatch):
        monkeypatch.setattr(
            "rails_audit.runner.subprocess.run", _fake_run(rails_app, [], write_resultset=False)
        )
        outcome = run_coverage(RailsProject(rails_app), Config())
        assert not outcome.ok
        assert "not found" in outcome.reason
        assert outcome.estimate is not None
        assert outcome.estimate.estimated_percent == 50.0

    def test_not_a_rails_project(self, tmp_path):
        outcome = run_coverage(RailsProject(tmp_path), Config())
        assert not outcome.ok
        assert "Rails application" in outcome.reason

    def test_missing_helper_is_setup_failure(self, rails_app, monkeypatch):
        (rails_app / "spec/spec_helper.rb").unlink()
        monkeypatch.setattr("rails_audit.runner.subprocess.run", _fake_run(rails_app, []))
        outcome = run_coverage(RailsProject(rails_app), Config())
        assert not outcome.ok
        assert "Test helper not found" in outcome.reason
        assert not (rails_app / "spec/spec_helper.rb").exists()


def _with_git(rails_app, calls, *, dirty=True, pop_rc=0, seen=None):
    """Wrap _fake_run with answers for git status / stash push / stash pop."""
    tools = _fake_run(rails_app, [])

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        if cmd[:2] == ["git", "status"]:
            return completed(0, stdout=" M app/models/user.rb\n" if dirty else "")
        if cmd[:3] == ["git", "stash", "pop"]:
            if seen is not None:
                seen["gemfile_at_pop"] = (rails_app / "Gemfile").read_text()
            return completed(pop_rc, stderr="CONFLICT (content): Merge conflict in Gemfile")
        if cmd[:2] == ["git", "stash"]:
            return completed(0)
        return tools(cmd, **kwargs)
    return fake_run


class TestRunCoverageWithStash:
    def test_stash_wraps_the_run_and_pops_after_restore(self, rails_app, monkeypatch):
        gemfile_before = (rails_app / "Gemfile").read_text()
        calls, seen = [], {}
        monkeypatch.setattr("rails_audit.runner.subprocess.run", _with_git(rails_app, calls, seen=seen))

        outcome = run_coverage(RailsProject(rails_app), Config(), stash=True)

        assert outcome.ok
        assert [cmd[:3] for cmd in calls] == [
            ["git", "status", "--porcelain"],
            ["git", "stash", "push"],
            ["bundle", "install"],
            ["bundle", "exec", "rspec"],
            ["git", "stash", "pop"],
        ]
        assert seen["gemfile_at_pop"] == gemfile_before

    def test_clean_tree_is_not_stashed(self, rails_app, monkeypatch):
        calls = []
        monkeypatch.setattr("rails_audit.runner.subprocess.run", _with_git(rails_app, calls, dirty=False))

        outcome = run_coverage(RailsProject(rails_app), Config(), stash=True)

        assert outcome.ok
        assert not any(cmd[:2] == ["git", "stash"] for cmd in calls)

    def test_failed_pop_leaves_changes_in_stash(self, rails_app, monkeypatch):
        gemfile_before = (rails_app / "Gemfile").read_text()
        monkeypatch.setattr("rails_audit.runner.subprocess.run", _with_git(rails_app, [], pop_rc=1))

        with pytest.raises(CommandError, match="still in the stash"):
            run_coverage(RailsProject(rails_app), Config(), stash=True)
        assert (rails_app / "Gemfile").read_text() == gemfile_before

    def test_stash_not_used_by_default(self, rails_app, monkeypatch):
        calls = []
        monkeypatch.setattr("rails_audit.runner.subprocess.run", _with_git(rails_app, calls))
        run_coverage(RailsProject(rails_app), Config())
        assert not any(cmd[0] == "git" for cmd in calls)
