"""RubyCritic code-quality workflow.

Functions:
    rating_for_cost(cost)                       -> str
    score_grade(score)                          -> str
    parse_report(data)                          -> QualityResult
    run_rubycritic(project, config, ...)        -> Outcome
"""

from pathlib import Path
from typing import Callable

from rails_audit.client import RubyGemsClient, gem_line
from rails_audit.config import Config
from rails_audit.models import ModuleQuality, Outcome, QualityResult, Smell
from rails_audit.project import ProjectError, RailsProject
from rails_audit.reports import ResultFileError, load_result_file, quiet
from rails_audit.runner import Backup, CommandError, git_stash, git_stash_pop, run

OUTPUT_DIR = Path("tmp") / "rubycritic"
REPORT_FILE = "report.json"

RATINGS = ("A", "B", "C", "D", "F")

#: RubyCritic's cost ceilings per rating
_COST_THRESHOLDS = ((2.0, "A"), (4.0, "B"), (8.0, "C"), (16.0, "D"))

_GRADE_THRESHOLDS = ((90.0, "A"), (80.0, "B"), (70.0, "C"), (60.0, "D"))


# --------------------------------------------------------------------------- #
# Ratings
# --------------------------------------------------------------------------- #

def rating_for_cost(cost: float) -> str:
    for ceiling, rating in _COST_THRESHOLDS:
        if cost <= ceiling:
            return rating
    return "F"


def score_grade(score: float) -> str:
    for floor, grade in _GRADE_THRESHOLDS:
        if score >= floor:
            return grade
    return "F"


# --------------------------------------------------------------------------- #
# Parsing
# --------------------------------------------------------------------------- #

def _number(value, default=0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_smell(raw: dict) -> Smell:
    locations = raw.get("locations") or []
    first = locations[0] if locations and isinstance(locations[0], dict) else {}
    line = first.get("line")
    return Smell(
        type=str(raw.get("type") or "Unknown"),
        message=str(raw.get("message") or ""),
        context=str(raw.get("context") or ""),
        path=first.get("path"),
        line=int(line) if isinstance(line, (int, float)) else None,
    )


def _parse_module(raw: dict) -> ModuleQuality:
    cost = _number(raw.get("cost"))
    rating = str(raw.get("rating") or "").upper()
    if rating not in RATINGS:
        rating = rating_for_cost(cost)
    return ModuleQuality(
        name=str(raw.get("name") or raw.get("path") or "?"),
        path=str(raw.get("path") or ""),
        rating=rating,
        cost=round(cost, 2),
        complexity=round(_number(raw.get("complexity")), 2),
        duplication=round(_number(raw.get("duplication")), 2),
        churn=int(_number(raw.get("churn"))),
        methods_count=int(_number(raw.get("methods_count"))),
        smells=[_parse_smell(s) for s in raw.get("smells") or [] if isinstance(s, dict)],
    )


def parse_report(data: dict) -> QualityResult:
    """Summarise a RubyCritic ``report.json`` document.

    Modules are ordered worst first: rating F..A, then cost descending, then
    smell count descending.
    """
    raw_modules = data.get("analysed_modules")
    if not isinstance(raw_modules, list):
        raise ResultFileError("RubyCritic report has no 'analysed_modules' list.")

    modules = [_parse_module(m) for m in raw_modules if isinstance(m, dict)]
    modules.sort(key=lambda m: (-RATINGS.index(m.rating), -m.cost, -len(m.smells), m.path))

    ratings = {r: 0 for r in RATINGS}
    smells_by_type: dict[str, int] = {}
    for module in modules:
        ratings[module.rating] += 1
        for smell in module.smells:
            smells_by_type[smell.type] = smells_by_type.get(smell.type, 0) + 1

    if data.get("score") is not None:
        score = round(_number(data["score"]), 2)
    elif modules:
        score = round((ratings["A"] + ratings["B"]) / len(modules) * 100, 2)
    else:
        score = 100.0

    return QualityResult(
        score=score,
        grade=score_grade(score),
        ratings=ratings,
        smells_by_type=dict(sorted(smells_by_type.items(), key=lambda kv: (-kv[1], kv[0]))),
        modules=modules,
    )


# --------------------------------------------------------------------------- #
# Workflow
# --------------------------------------------------------------------------- #

def rubycritic_command(paths: list[str]) -> list[str]:
    return [
        "bundle", "exec", "rubycritic", *paths,
        "--format", "json", "--no-browser", "--path", OUTPUT_DIR.as_posix(),
    ]


def run_rubycritic(
    project: RailsProject,
    config: Config,
    *,
    client: RubyGemsClient | None = None,
    log: Callable[[str], None] = quiet,
    stash: bool = False,
) -> Outcome:
    """Score code quality with RubyCritic and restore the project afterwards."""
    try:
        project.require_rails()
    except ProjectError as exc:
        return Outcome.failed("rubycritic", str(exc))

    paths = [p for p in config.rubycritic.paths if (project.root / p).exists()]
    if not paths:
        return Outcome.failed(
            "rubycritic", f"none of the configured paths exist: {', '.join(config.rubycritic.paths)}"
        )

    stashed = False
    try:
        if stash:
            stashed = git_stash(project.root)
            if stashed:
                log("Stashed local changes")
        with Backup(project.root, [project.gemfile, project.gemfile_lock], artifacts=[OUTPUT_DIR]):
            try:
                if not project.has_gem("rubycritic"):
                    line = gem_line("rubycritic", client, require=False)
                    log(f"Adding to Gemfile: {line}")
                    project.add_gem(line, "development")
                log("Running bundle install")
                run(["bundle", "install"], cwd=project.root, timeout=config.timeouts.install)
            except CommandError as exc:
                return Outcome.failed("rubycritic", f"setup failed: {exc}")

            cmd = rubycritic_command(paths)
            log(f"Running {' '.join(cmd)}")
            try:
                run(cmd, cwd=project.root, timeout=config.timeouts.rubycritic)
                data = load_result_file(project.root / OUTPUT_DIR / REPORT_FILE, "RubyCritic")
                result = parse_report(data)
            except (CommandError, ResultFileError) as exc:
                return Outcome.failed("rubycritic", str(exc))

            return Outcome(kind="rubycritic", ok=True, result=result)
    except CommandError as exc:
        return Outcome.failed("rubycritic", f"git stash failed: {exc}")
    finally:
        if stashed:
            git_stash_pop(project.root)
