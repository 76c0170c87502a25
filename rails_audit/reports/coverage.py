"""SimpleCov coverage workflow.

Functions:
    parse_resultset(data, root)                 -> CoverageResult
    coverage_rating(percent)                    -> str
    estimate_coverage(project)                  -> CoverageEstimate
    run_coverage(project, config, ...)          -> Outcome

``run_coverage`` temporarily adds SimpleCov to the project, runs the test
suite, reads ``coverage/.resultset.json`` and restores every touched file.
"""

import os
import warnings
from pathlib import Path
from typing import Callable

from rails_audit.client import RubyGemsClient, gem_line
from rails_audit.config import Config
from rails_audit.models import CoverageEstimate, CoverageResult, FileCoverage, Outcome
from rails_audit.project import ProjectError, RailsProject
from rails_audit.reports import ResultFileError, load_result_file, quiet
from rails_audit.runner import Backup, CommandError, WorkflowError, git_stash, git_stash_pop, run

RESULTSET_PATH = Path("coverage") / ".resultset.json"

SIMPLECOV_SNIPPET = 'require "simplecov"\nSimpleCov.start "rails"\n\n'

#: Application directories with no unit-testable Ruby
_ESTIMATE_SKIP = ("assets/", "views/", "javascript/")

_RATINGS = ((90.0, "excellent"), (80.0, "good"), (60.0, "fair"))


# --------------------------------------------------------------------------- #
# Parsing
# --------------------------------------------------------------------------- #

def coverage_rating(percent: float) -> str:
    for floor, label in _RATINGS:
        if percent >= floor:
            return label
    return "poor"


def _percent(covered: int, total: int) -> float:
    if total == 0:
        return 100.0
    return round(covered / total * 100, 2)


def _merge_lines(current: list | None, lines: list) -> list:
    """Sum per-line hits of two runs; a line stays ``None`` only if both are."""
    if current is None:
        return [hits if isinstance(hits, int) else None for hits in lines]
    merged = []
    for index in range(max(len(current), len(lines))):
        a = current[index] if index < len(current) else None
        b = lines[index] if index < len(lines) else None
        b = b if isinstance(b, int) else None
        merged.append(None if a is None and b is None else (a or 0) + (b or 0))
    return merged


def parse_resultset(data: dict, root: Path | str) -> CoverageResult:
    """Turn a SimpleCov ``.resultset.json`` document into a CoverageResult.

    Accepts both the modern per-file form (``{"lines": [...], "branches":
    {...}}``) and the legacy form where each file maps to a bare list.
    Results recorded under several command names are merged.
    """
    root = Path(root).resolve()
    lines_by_file: dict[str, list] = {}
    branches_by_file: dict[str, dict[str, int]] = {}
    commands: list[str] = []

    for command, entry in data.items():
        coverage = entry.get("coverage") if isinstance(entry, dict) else None
        if not isinstance(coverage, dict):
            warnings.warn(f"Skipping resultset entry '{command}': no coverage data.", UserWarning, stacklevel=2)
            continue
        commands.append(command)

        for path, file_data in coverage.items():
            if isinstance(file_data, list):
                lines, branches = file_data, {}
            elif isinstance(file_data, dict):
                lines = file_data.get("lines") or []
                branches = file_data.get("branches") or {}
            else:
                warnings.warn(f"Skipping malformed coverage for '{path}'.", UserWarning, stacklevel=2)
                continue

            lines_by_file[path] = _merge_lines(lines_by_file.get(path), lines)
            leaves = branches_by_file.setdefault(path, {})
            for condition, targets in branches.items():
                if not isinstance(targets, dict):
                    continue
                for target, hits in targets.items():
                    key = f"{condition}|{target}"
                    leaves[key] = leaves.get(key, 0) + (hits if isinstance(hits, int) else 0)

    files: list[FileCoverage] = []
    for path, lines in lines_by_file.items():
        relevant = sum(1 for hits in lines if hits is not None)
        covered = sum(1 for hits in lines if hits)
        leaves = branches_by_file.get(path, {})
        files.append(FileCoverage(
            path=_relative(Path(path), root),
            lines_relevant=relevant,
            lines_covered=covered,
            percent=_percent(covered, relevant),
            branches_total=len(leaves),
            branches_covered=sum(1 for hits in leaves.values() if hits > 0),
        ))
    files.sort(key=lambda f: (f.percent, f.path))

    relevant = sum(f.lines_relevant for f in files)
    covered = sum(f.lines_covered for f in files)
    branches_total = sum(f.branches_total for f in files)
    branches_covered = sum(f.branches_covered for f in files)
    percent = _percent(covered, relevant)

    return CoverageResult(
        lines_relevant=relevant,
        lines_covered=covered,
        percent=percent,
        rating=coverage_rating(percent),
        files=files,
        branches_total=branches_total,
        branches_covered=branches_covered,
        branch_percent=_percent(branches_covered, branches_total) if branches_total else None,
        command_names=commands,
    )


def _relative(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


# --------------------------------------------------------------------------- #
# Estimation mode
# --------------------------------------------------------------------------- #

def _test_candidates(rel: str) -> list[str]:
    """Return test files that would cover ``app/<rel>``."""
    stem = rel[:-3]
    candidates = [f"spec/{stem}_spec.rb", f"test/{stem}_test.rb"]
    if stem.startswith("controllers/") and stem.endswith("_controller"):
        name = stem[len("controllers/"):-len("_controller")]
        candidates += [f"spec/requests/{name}_spec.rb", f"test/integration/{name}_test.rb"]
    return candidates


def estimate_coverage(project: RailsProject) -> CoverageEstimate:
    """Estimate coverage as the share of app/ files that have a matching test file."""
    app = project.root / "app"
    tested: list[str] = []
    untested: list[str] = []

    for path in project.ruby_files(["app"]):
        rel = path.relative_to(app).as_posix()
        if rel.startswith(_ESTIMATE_SKIP):
            continue
        if any((project.root / c).is_file() for c in _test_candidates(rel)):
            tested.append(f"app/{rel}")
        else:
            untested.append(f"app/{rel}")

    total = len(tested) + len(untested)
    percent = round(len(tested) / total * 100, 2) if total else 0.0
    return CoverageEstimate(estimated_percent=percent, tested_files=tested, untested_files=untested)


# --------------------------------------------------------------------------- #
# Workflow
# --------------------------------------------------------------------------- #

def _prepare(project: RailsProject, helper: Path, config: Config,
             client: RubyGemsClient | None, log: Callable[[str], None]) -> None:
    if not project.has_gem("simplecov"):
        line = gem_line("simplecov", client, require=False)
        log(f"Adding to Gemfile: {line}")
        project.add_gem(line, "test")

    if not helper.is_file():
        raise WorkflowError(f"Test helper not found: '{project.relative(helper)}'")
    text = helper.read_text(encoding="utf-8")
    if "SimpleCov.start" not in text:
        log(f"Starting SimpleCov from {project.relative(helper)}")
        helper.write_text(SIMPLECOV_SNIPPET + text, encoding="utf-8")

    log("Running bundle install")
    run(["bundle", "install"], cwd=project.root, timeout=config.timeouts.install)


def run_coverage(
    project: RailsProject,
    config: Config,
    *,
    client: RubyGemsClient | None = None,
    log: Callable[[str], None] = quiet,
    stash: bool = False,
) -> Outcome:
    """Measure line coverage with SimpleCov.

    The project is always restored afterwards. Setup failures yield a failed
    Outcome; a missing result file additionally carries an estimate.
    """
    try:
        project.require_rails()
        framework = project.detect_test_framework(config.tests.framework)
    except ProjectError as exc:
        return Outcome.failed("coverage", str(exc))

    helper = project.helper_file(framework)
    stashed = False
    try:
        if stash:
            stashed = git_stash(project.root)
            if stashed:
                log("Stashed local changes")
        with Backup(project.root, [project.gemfile, project.gemfile_lock, helper],
                    artifacts=["coverage"]):
            try:
                _prepare(project, helper, config, client, log)
            except (CommandError, WorkflowError) as exc:
                return Outcome.failed("coverage", f"setup failed: {exc}")

            cmd = project.test_command(framework, config.tests.command)
            log(f"Running tests: {' '.join(cmd)}")
            env = {**os.environ, "RAILS_ENV": "test"}
            try:
                result = run(cmd, cwd=project.root, timeout=config.timeouts.tests, env=env, check=False)
                if result.returncode != 0:
                    log(f"Test suite exited with status {result.returncode}; reading coverage anyway")
                data = load_result_file(project.root / RESULTSET_PATH, "SimpleCov")
            except (CommandError, ResultFileError) as exc:
                return Outcome.failed("coverage", str(exc), estimate=estimate_coverage(project))

            return Outcome(kind="coverage", ok=True, result=parse_resultset(data, project.root))
    except CommandError as exc:
        return Outcome.failed("coverage", f"git stash failed: {exc}")
    finally:
        if stashed:
            git_stash_pop(project.root)
