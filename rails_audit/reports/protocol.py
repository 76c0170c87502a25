"""Plain-text result blocks exchanged between the audit agent and its sub-agents.

A metric sub-agent prints exactly one block::

    COVERAGE_DATA:              RUBYCRITIC_DATA:
    total_percent: 87.5         score: 78.4
    ...                         ...

or a single failure line such as ``COVERAGE_FAILED: bundle install failed``.
A failed coverage run may be followed by an ``ESTIMATED_COVERAGE:`` block.
"""

import re

from rails_audit.models import Outcome

COVERAGE_DATA = "COVERAGE_DATA:"
COVERAGE_FAILED = "COVERAGE_FAILED:"
RUBYCRITIC_DATA = "RUBYCRITIC_DATA:"
RUBYCRITIC_FAILED = "RUBYCRITIC_FAILED:"
ESTIMATED_COVERAGE = "ESTIMATED_COVERAGE:"

_MARKERS = {
    COVERAGE_DATA:     ("coverage", "data"),
    COVERAGE_FAILED:   ("coverage", "failed"),
    RUBYCRITIC_DATA:   ("rubycritic", "data"),
    RUBYCRITIC_FAILED: ("rubycritic", "failed"),
}

_PAIRS_RE = re.compile(r"^(\w+=\S+)(\s+\w+=\S+)*$")

LIST_LIMIT = 10


# --------------------------------------------------------------------------- #
# Formatting
# --------------------------------------------------------------------------- #

def _one_line(text: str | None) -> str:
    return " ".join((text or "unknown error").split())


def format_coverage(outcome: Outcome) -> str:
    if not outcome.ok:
        lines = [f"{COVERAGE_FAILED} {_one_line(outcome.reason)}"]
        if outcome.estimate is not None:
            est = outcome.estimate
            lines += [
                "",
                ESTIMATED_COVERAGE,
                f"estimated_percent: {est.estimated_percent}",
                f"tested_files: {len(est.tested_files)}",
                f"untested_files: {len(est.untested_files)}",
                "untested:",
                *(f"- {path}" for path in est.untested_files[:LIST_LIMIT]),
            ]
        return "\n".join(lines) + "\n"

    result = outcome.result
    lines = [
        COVERAGE_DATA,
        f"total_percent: {result.percent}",
        f"lines_covered: {result.lines_covered}",
        f"lines_relevant: {result.lines_relevant}",
    ]
    if result.branch_percent is not None:
        lines.append(f"branch_percent: {result.branch_percent}")
    lines += [
        f"rating: {result.rating}",
        f"files_analyzed: {len(result.files)}",
        "lowest_files:",
        *(f"- {f.path}: {f.percent}" for f in result.lowest_files(LIST_LIMIT)),
    ]
    return "\n".join(lines) + "\n"


def format_rubycritic(outcome: Outcome) -> str:
    if not outcome.ok:
        return f"{RUBYCRITIC_FAILED} {_one_line(outcome.reason)}\n"

    result = outcome.result
    ratings = " ".join(f"{k}={v}" for k, v in result.ratings.items())
    lines = [
        RUBYCRITIC_DATA,
        f"score: {result.score}",
        f"grade: {result.grade}",
        f"modules_analyzed: {len(result.modules)}",
        f"ratings: {ratings}",
        f"total_smells: {result.total_smells}",
        "top_smells:",
        *(f"- {name}: {count}" for name, count in list(result.smells_by_type.items())[:LIST_LIMIT]),
        "worst_files:",
        *(
            f"- {m.path}: {m.rating} (cost {m.cost}, {len(m.smells)} smells)"
            for m in result.worst_modules(LIST_LIMIT)
        ),
    ]
    return "\n".join(lines) + "\n"


def format_outcome(outcome: Outcome) -> str:
    if outcome.kind == "coverage":
        return format_coverage(outcome)
    return format_rubycritic(outcome)


# --------------------------------------------------------------------------- #
# Parsing
# --------------------------------------------------------------------------- #

def _scalar(value: str):
    value = value.strip()
    if _PAIRS_RE.match(value):
        return {k: _scalar(v) for k, v in (pair.split("=", 1) for pair in value.split())}
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            pass
    return value


def _parse_body(lines: list[str]) -> dict:
    """Parse ``key: value`` lines; ``- item`` lines belong to the last empty key."""
    body: dict = {}
    list_key = None
    for line in lines:
        stripped = line.strip()
        if not stripped:
            break
        if stripped.startswith("- "):
            if list_key is None:
                continue
            item = stripped[2:]
            name, sep, value = item.rpartition(": ")
            body[list_key].append({"name": name, "value": _scalar(value)} if sep else item)
            continue
        key, _, value = stripped.partition(":")
        if value.strip():
            body[key.strip()] = _scalar(value)
            list_key = None
        else:
            list_key = key.strip()
            body[list_key] = []
    return body


def parse_protocol(text: str) -> dict:
    """Parse a result block printed by a metric sub-agent.

    Returns a dict with ``kind`` (coverage/rubycritic), ``status``
    (data/failed) and either the parsed fields or ``reason``.

    Raises:
        ValueError: if *text* holds no known marker.
    """
    lines = text.splitlines()
    for index, line in enumerate(lines):
        stripped = line.strip()
        for marker, (kind, status) in _MARKERS.items():
            if not stripped.startswith(marker):
                continue
            parsed: dict = {"kind": kind, "status": status}
            rest = lines[index + 1:]
            if status == "failed":
                parsed["reason"] = stripped[len(marker):].strip()
                for offset, follow in enumerate(rest):
                    if follow.strip() == ESTIMATED_COVERAGE:
                        parsed["estimate"] = _parse_body(rest[offset + 1:])
                        break
            else:
                parsed.update(_parse_body(rest))
            return parsed
    raise ValueError("No COVERAGE_* or RUBYCRITIC_* block found.")
