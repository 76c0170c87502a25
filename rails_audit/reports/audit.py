"""Audit report rendering.

Functions:
    render_report(template, context)                    -> str
    build_context(project, config, coverage, ...)       -> dict
    build_report(project, config, coverage, ...)        -> str
    write_report(path, text)                            -> Path

The template is the bundled ``report-template`` resource. Its
``{{PLACEHOLDER}}`` tokens are filled from the metric outcomes and the
findings report; a token with no value renders as ``_Not available._``.
"""

import re
from datetime import date
from pathlib import Path

from rails_audit import bundle
from rails_audit.config import Config
from rails_audit.models import Outcome
from rails_audit.project import RailsProject
from rails_audit.reports.findings import CATEGORIES, SEVERITIES

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Z][A-Z0-9_]*)\s*\}\}")
NOT_AVAILABLE = "_Not available._"
NOT_RUN = "_Not run._"

CRITICAL_LIMIT = 25


def render_report(template: str, context: dict[str, str | None]) -> str:
    def replace(match: re.Match) -> str:
        value = context.get(match.group(1))
        return str(value) if value not in (None, "") else NOT_AVAILABLE

    return PLACEHOLDER_RE.sub(replace, template)


# --------------------------------------------------------------------------- #
# Sections
# --------------------------------------------------------------------------- #

def coverage_section(outcome: Outcome | None, minimum: float) -> str:
    if outcome is None:
        return NOT_RUN
    if not outcome.ok:
        lines = [f"SimpleCov could not produce coverage data: {outcome.reason}"]
        if outcome.estimate is not None:
            est = outcome.estimate
            lines += [
                "",
                f"**Estimated coverage:** {est.estimated_percent}% of application files have a "
                f"matching test file ({len(est.tested_files)} tested, "
                f"{len(est.untested_files)} untested). This is an estimate, not a measurement.",
            ]
            if est.untested_files:
                lines += ["", "Files without tests:", ""]
                lines += [f"- `{path}`" for path in est.untested_files[:CRITICAL_LIMIT]]
        return "\n".join(lines)

    result = outcome.result
    status = "meets" if result.percent >= minimum else "is below"
    lines = [
        "| Metric | Value |",
        "|--------|-------|",
        f"| Line coverage | {result.percent}% ({result.lines_covered}/{result.lines_relevant} lines) |",
    ]
    if result.branch_percent is not None:
        lines.append(
            f"| Branch coverage | {result.branch_percent}% "
            f"({result.branches_covered}/{result.branches_total} branches) |"
        )
    lines += [
        f"| Rating | {result.rating} |",
        f"| Files | {len(result.files)} |",
        "",
        f"Coverage {status} the {minimum:g}% target.",
    ]
    lowest = result.lowest_files()
    if lowest:
        lines += ["", "Least covered files:", "", "| File | Coverage | Missed lines |", "|------|----------|--------------|"]
        lines += [f"| `{f.path}` | {f.percent}% | {f.lines_missed} |" for f in lowest]
    return "\n".join(lines)


def quality_section(outcome: Outcome | None) -> str:
    if outcome is None:
        return NOT_RUN
    if not outcome.ok:
        return f"RubyCritic could not produce a report: {outcome.reason}"

    result = outcome.result
    ratings = " / ".join(f"{k}: {v}" for k, v in result.ratings.items())
    lines = [
        f"**Score:** {result.score} (grade {result.grade})",
        "",
        f"**Ratings:** {ratings}",
        "",
        f"**Smells:** {result.total_smells}",
    ]
    if result.smells_by_type:
        lines += ["", "| Smell | Count |", "|-------|-------|"]
        lines += [f"| {name} | {count} |" for name, count in result.smells_by_type.items()]
    worst = [m for m in result.worst_modules() if m.rating in ("C", "D", "F")]
    if worst:
        lines += ["", "Lowest rated files:", "", "| File | Rating | Cost | Complexity | Smells |",
                  "|------|--------|------|------------|--------|"]
        lines += [
            f"| `{m.path}` | {m.rating} | {m.cost} | {m.complexity} | {len(m.smells)} |"
            for m in worst
        ]
    return "\n".join(lines)


def findings_summary(report: dict) -> str:
    summary = report["summary"]
    lines = ["| Severity | Count |", "|----------|-------|"]
    lines += [f"| {s.capitalize()} | {summary['by_severity'][s]} |" for s in SEVERITIES]
    lines += ["", f"{summary['total']} pattern hits across {report.get('files_scanned', 0)} files."]
    return "\n".join(lines)


def critical_findings(report: dict) -> str:
    urgent = [f for f in report["findings"] if f["severity"] in ("critical", "high")]
    if not urgent:
        return "No critical or high severity pattern hits."
    lines = [
        f"- **[{f['severity'].upper()}]** `{f['path']}:{f['line']}` {f['message']}"
        for f in urgent[:CRITICAL_LIMIT]
    ]
    if len(urgent) > CRITICAL_LIMIT:
        lines.append(f"- ...and {len(urgent) - CRITICAL_LIMIT} more.")
    return "\n".join(lines)


def findings_by_category(report: dict) -> str:
    sections: list[str] = []
    for category in CATEGORIES:
        hits = [f for f in report["findings"] if f["category"] == category]
        if not hits:
            continue
        title = category.replace("-", " ").title()
        lines = [f"### {title} ({len(hits)})", ""]
        lines += [f"- `{f['path']}:{f['line']}` ({f['rule']}) {f['message']}" for f in hits[:CRITICAL_LIMIT]]
        if len(hits) > CRITICAL_LIMIT:
            lines.append(f"- ...and {len(hits) - CRITICAL_LIMIT} more.")
        sections.append("\n".join(lines))
    return "\n\n".join(sections) if sections else "No pattern hits."


def recommendations(coverage: Outcome | None, quality: Outcome | None, report: dict,
                    minimum: float) -> str:
    items: list[str] = []

    if coverage is not None and coverage.ok and coverage.result.percent < minimum:
        items.append(
            f"Raise line coverage from {coverage.result.percent}% to at least {minimum:g}%, "
            "starting with the least covered files."
        )
    elif coverage is not None and not coverage.ok and coverage.estimate is not None:
        untested = len(coverage.estimate.untested_files)
        if untested:
            items.append(f"Add tests for the {untested} application files that have none.")

    if quality is not None and quality.ok:
        if quality.result.grade in ("D", "F"):
            items.append(
                f"RubyCritic grade {quality.result.grade}: schedule refactoring of the lowest rated files."
            )
        for module in quality.result.worst_modules(3):
            items.append(f"Refactor `{module.path}` (rating {module.rating}, cost {module.cost}).")

    urgent: dict[str, int] = {}
    for finding in report["findings"]:
        if finding["severity"] in ("critical", "high"):
            urgent[finding["category"]] = urgent.get(finding["category"], 0) + 1
    for category in CATEGORIES:
        if category in urgent:
            items.append(f"Review the {urgent[category]} critical/high {category} hits.")

    if not items:
        return "No automated recommendations; see the manual review notes."
    return "\n".join(f"{index}. {item}" for index, item in enumerate(items, 1))


def executive_summary(coverage: Outcome | None, quality: Outcome | None, report: dict) -> str:
    parts: list[str] = []
    if coverage is not None and coverage.ok:
        parts.append(f"line coverage is {coverage.result.percent}% ({coverage.result.rating})")
    elif coverage is not None and coverage.estimate is not None:
        parts.append(f"estimated coverage is {coverage.estimate.estimated_percent}%")
    if quality is not None and quality.ok:
        parts.append(f"RubyCritic scores the code {quality.result.score} (grade {quality.result.grade})")
    severity = report["summary"]["by_severity"]
    parts.append(
        f"the pattern scan flagged {severity['critical']} critical and {severity['high']} high severity hits"
    )
    text = "; ".join(parts)
    return text[0].upper() + text[1:] + "."


def methodology(coverage: Outcome | None, quality: Outcome | None) -> str:
    lines = ["- Manual review guided by the bundled reference guides."]
    lines.append("- Pattern-hint scan of every Ruby file.")
    if coverage is not None:
        lines.append("- Test coverage measured with SimpleCov." if coverage.ok
                     else "- SimpleCov run attempted; coverage estimated from test file mapping.")
    if quality is not None:
        lines.append("- Code quality scored with RubyCritic." if quality.ok
                     else "- RubyCritic run attempted but failed.")
    return "\n".join(lines)


# --------------------------------------------------------------------------- #
# Assembly
# --------------------------------------------------------------------------- #

def build_context(project: RailsProject, config: Config, coverage: Outcome | None,
                  quality: Outcome | None, report: dict, today: date | None = None) -> dict:
    minimum = config.coverage.minimum
    return {
        "PROJECT_NAME":         project.project_name(),
        "AUDIT_DATE":           (today or date.today()).isoformat(),
        "EXECUTIVE_SUMMARY":    executive_summary(coverage, quality, report),
        "COVERAGE_SECTION":     coverage_section(coverage, minimum),
        "QUALITY_SECTION":      quality_section(quality),
        "FINDINGS_SUMMARY":     findings_summary(report),
        "CRITICAL_FINDINGS":    critical_findings(report),
        "FINDINGS_BY_CATEGORY": findings_by_category(report),
        "RECOMMENDATIONS":      recommendations(coverage, quality, report, minimum),
        "METHODOLOGY":          methodology(coverage, quality),
    }


def build_report(project: RailsProject, config: Config, coverage: Outcome | None,
                 quality: Outcome | None, report: dict, today: date | None = None) -> str:
    template = bundle.read_resource("report-template")
    return render_report(template, build_context(project, config, coverage, quality, report, today))


def write_report(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path
