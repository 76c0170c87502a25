"""Pattern-hint scan of a Rails codebase.

Functions:
    scan_file(path, rel)              -> list[Finding]
    scan_project(project, config)     -> dict

Each rule encodes one "search for ..." instruction from the reference guides.
Matches are hints for the reviewer, not verdicts.
"""

import fnmatch
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from rails_audit.config import Config
from rails_audit.models import Finding
from rails_audit.project import RailsProject

SEVERITIES = ("critical", "high", "medium", "low")
CATEGORIES = ("security", "performance", "error-handling", "code-smell", "testing", "rails")

APP = ("app/**", "lib/**")
TESTS = ("spec/**", "test/**")
EVERYWHERE = ("*",)

FAT_MODEL_LINES = 200
FAT_CONTROLLER_LINES = 150
GOD_CLASS_METHODS = 20
LONG_METHOD_LINES = 15
MAX_CALLBACKS = 4


@dataclass(frozen=True)
class Rule:
    id: str
    category: str
    severity: str
    message: str
    reference: str
    pattern: re.Pattern | None = None
    paths: tuple[str, ...] = EVERYWHERE


def _rule(id_, category, severity, pattern, message, reference, paths=EVERYWHERE) -> Rule:
    return Rule(id_, category, severity, message, reference, re.compile(pattern), paths)


# ── Line rules ──────────────────────────────────────────────────────────────

LINE_RULES: tuple[Rule, ...] = (
    # security
    _rule("sql-interpolation", "security", "critical",
          r"""\b(where|find_by_sql|order|having|joins|select|pluck|group)\s*\(?\s*"[^"]*#\{""",
          "String interpolation inside a SQL fragment; use bound parameters.",
          "security-checklist", APP),
    _rule("mass-assignment", "security", "critical", r"\bparams\.permit!",
          "params.permit! allows every attribute; list permitted keys explicitly.",
          "security-checklist", APP),
    _rule("eval-params", "security", "critical", r"\b(eval|instance_eval|class_eval)\b.*\bparams\b",
          "Evaluating request parameters allows remote code execution.",
          "security-checklist", APP),
    _rule("send-params", "security", "high", r"\.(send|public_send)\s*\(?\s*params\b",
          "Dynamic dispatch on a request parameter; whitelist the method name.",
          "security-checklist", APP),
    _rule("constantize-params", "security", "high", r"params\[[^\]]+\]\.(safe_)?constantize\b",
          "Constantizing a request parameter lets callers instantiate arbitrary classes.",
          "security-checklist", APP),
    _rule("unsafe-html", "security", "high", r"\.html_safe\b|(?<![\w.])raw\s*\(",
          "Output marked as safe HTML bypasses escaping; check for XSS.",
          "security-checklist", ("app/**",)),
    _rule("csrf-disabled", "security", "high", r"skip_before_action\s+:verify_authenticity_token",
          "CSRF protection is disabled for this controller.",
          "security-checklist", ("app/**",)),
    _rule("open-redirect", "security", "high", r"\bredirect_to\s*\(?\s*params\b",
          "Redirect target taken from params; restrict to known paths.",
          "security-checklist", ("app/**",)),
    _rule("hardcoded-secret", "security", "high",
          r"""(?i)\b\w*(api_key|secret|password|token)\w*\s*(=|:|=>)\s*['"][^'"\s]{8,}['"]""",
          "Possible hard-coded credential; move it to Rails credentials or ENV.",
          "security-checklist", ("app/**", "lib/**", "config/**")),
    # error handling
    _rule("rescue-exception", "error-handling", "high", r"\brescue\s+Exception\b",
          "Rescuing Exception also traps signals and syntax errors; rescue StandardError subclasses.",
          "code-smells", APP),
    _rule("bare-rescue", "error-handling", "medium", r"^\s*rescue\s*(=>\s*\w+\s*)?$",
          "Bare rescue hides the failure type; rescue specific exceptions.",
          "code-smells", APP),
    _rule("rescue-nil", "error-handling", "medium", r"\srescue\s+nil\b",
          "Inline `rescue nil` silently swallows errors.",
          "code-smells", APP),
    # performance
    _rule("load-all-records", "performance", "medium",
          r"\.all\.(each|select|map|reject|detect|find_all|sum)\b",
          "Loads every record into memory; filter in SQL or use find_each.",
          "rails-antipatterns", APP),
    _rule("where-first", "performance", "low", r"\bwhere\([^)]*\)\.first\b",
          "Use find_by instead of where(...).first.",
          "rails-antipatterns", APP),
    _rule("count-vs-size", "performance", "low", r"\.count\b(?!\s*[({])",
          "count always runs a COUNT query; size reuses loaded records or a counter cache.",
          "rails-antipatterns", APP),
    # rails
    _rule("default-scope", "rails", "medium", r"^\s*default_scope\b",
          "default_scope leaks into every query and association.",
          "rails-antipatterns", ("app/models/**",)),
    _rule("skip-validations", "rails", "low", r"\b(update_attribute|update_columns?)\s*\(",
          "Skips validations and callbacks; prefer update.",
          "rails-antipatterns", APP),
    # testing
    _rule("sleep-in-tests", "testing", "medium", r"^\s*sleep\b",
          "sleep makes tests slow and flaky; wait on a condition or freeze time.",
          "testing-guidelines", TESTS),
    _rule("any-instance-stub", "testing", "low", r"\b(allow|expect)_any_instance_of\b",
          "any_instance_of stubs hide design problems; inject the collaborator.",
          "testing-guidelines", TESTS),
    _rule("focused-test", "testing", "medium", r"^\s*(fit|fdescribe|fcontext)\b|\bfocus:\s*true\b",
          "Focused example left in the suite skips every other test.",
          "testing-guidelines", TESTS),
)

# ── Structural rules ────────────────────────────────────────────────────────

FAT_MODEL = Rule("fat-model", "code-smell", "high",
                 f"Model exceeds {FAT_MODEL_LINES} lines of code; extract service objects or concerns.",
                 "poro-patterns", paths=("app/models/**",))
FAT_CONTROLLER = Rule("fat-controller", "code-smell", "medium",
                      f"Controller exceeds {FAT_CONTROLLER_LINES} lines of code; move logic into models or POROs.",
                      "poro-patterns", paths=("app/controllers/**",))
GOD_CLASS = Rule("god-class", "code-smell", "medium",
                 f"Class defines more than {GOD_CLASS_METHODS} public methods.",
                 "code-smells", paths=APP)
LONG_METHOD = Rule("long-method", "code-smell", "medium",
                   f"Method body exceeds {LONG_METHOD_LINES} lines.",
                   "code-smells", paths=APP)
CALLBACK_HEAVY = Rule("callback-heavy", "code-smell", "medium",
                      f"Model declares more than {MAX_CALLBACKS} callbacks; consider a service object.",
                      "rails-antipatterns", paths=("app/models/**",))

_CALLBACK_RE = re.compile(
    r"^\s*(before|after|around)_(validation|save|create|update|destroy|commit|"
    r"create_commit|update_commit|destroy_commit|initialize|find|touch)\b"
)
_DEF_RE = re.compile(r"^(\s*)def\s+([\w.?!=\[\]<>+\-*/%]+)")
_VISIBILITY_RE = re.compile(r"^\s*(private|protected)\s*$")
# `def x; end`, `def x() = 1` and `def x = 1` have no body to measure
_ONE_LINER_RE = re.compile(r"\bend\s*$|\)\s*=\s*\S|^\s*def\s+[\w?!]+\s+=\s*\S")


# --------------------------------------------------------------------------- #
# Scanning
# --------------------------------------------------------------------------- #

def _applies(rule: Rule, rel: str) -> bool:
    return any(fnmatch.fnmatch(rel, pattern) for pattern in rule.paths)


def _finding(rule: Rule, rel: str, line: int, snippet: str = "", message: str | None = None) -> Finding:
    return Finding(
        rule=rule.id,
        category=rule.category,
        severity=rule.severity,
        path=rel,
        line=line,
        message=message or rule.message,
        snippet=snippet.strip()[:160],
        reference=rule.reference,
    )


def _code_lines(lines: list[str]) -> int:
    return sum(1 for line in lines if line.strip() and not line.lstrip().startswith("#"))


def _method_spans(lines: list[str]):
    """Yield ``(name, start_index, body_length)`` for multi-line method definitions."""
    for index, line in enumerate(lines):
        match = _DEF_RE.match(line)
        if not match or _ONE_LINER_RE.search(line):
            continue
        closing = re.compile(re.escape(match.group(1)) + r"end\b")
        for end in range(index + 1, len(lines)):
            if closing.match(lines[end]):
                yield match.group(2), index, end - index - 1
                break


def _structural(lines: list[str], rel: str) -> list[Finding]:
    findings: list[Finding] = []
    code = _code_lines(lines)

    if _applies(FAT_MODEL, rel) and code > FAT_MODEL_LINES:
        findings.append(_finding(FAT_MODEL, rel, 1, message=f"{FAT_MODEL.message} ({code} lines)"))
    if _applies(FAT_CONTROLLER, rel) and code > FAT_CONTROLLER_LINES:
        findings.append(_finding(FAT_CONTROLLER, rel, 1, message=f"{FAT_CONTROLLER.message} ({code} lines)"))

    if _applies(CALLBACK_HEAVY, rel):
        callbacks = [i for i, line in enumerate(lines) if _CALLBACK_RE.match(line)]
        if len(callbacks) > MAX_CALLBACKS:
            findings.append(_finding(
                CALLBACK_HEAVY, rel, callbacks[0] + 1,
                message=f"{CALLBACK_HEAVY.message} ({len(callbacks)} callbacks)",
            ))

    if _applies(GOD_CLASS, rel):
        public = 0
        for line in lines:
            if _VISIBILITY_RE.match(line):
                break
            if _DEF_RE.match(line):
                public += 1
        if public > GOD_CLASS_METHODS:
            findings.append(_finding(GOD_CLASS, rel, 1, message=f"{GOD_CLASS.message} ({public} methods)"))

    if _applies(LONG_METHOD, rel):
        for name, start, length in _method_spans(lines):
            if length > LONG_METHOD_LINES:
                findings.append(_finding(
                    LONG_METHOD, rel, start + 1, lines[start],
                    message=f"Method '{name}' body is {length} lines (limit {LONG_METHOD_LINES}).",
                ))

    return findings


def scan_file(path: Path, rel: str) -> list[Finding]:
    """Apply every rule that covers *rel* to the Ruby file at *path*."""
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    rules = [r for r in LINE_RULES if _applies(r, rel)]
    findings: list[Finding] = []

    for number, line in enumerate(lines, 1):
        if line.lstrip().startswith("#"):
            continue
        for rule in rules:
            if rule.pattern.search(line):
                findings.append(_finding(rule, rel, number, line))

    findings.extend(_structural(lines, rel))
    return findings


def _build_summary(findings: list[Finding]) -> dict:
    by_severity = {s: 0 for s in SEVERITIES}
    by_category = {c: 0 for c in CATEGORIES}
    for finding in findings:
        by_severity[finding.severity] += 1
        by_category[finding.category] += 1
    return {
        "total":       len(findings),
        "by_severity": by_severity,
        "by_category": by_category,
    }


def scan_project(project: RailsProject, config: Config) -> dict:
    """Scan every Ruby file of *project* and return a findings report."""
    findings: list[Finding] = []
    files = project.ruby_files(exclude=config.scan_exclude)
    for path in files:
        findings.extend(scan_file(path, project.relative(path)))

    findings.sort(key=lambda f: (SEVERITIES.index(f.severity), f.path, f.line, f.rule))
    return {
        "report_type":   "findings",
        "project":       project.project_name(),
        "generated_at":  datetime.now(timezone.utc).isoformat(),
        "files_scanned": len(files),
        "summary":       _build_summary(findings),
        "findings":      [f.to_dict() for f in findings],
    }
