"""The rails-audit skill bundle: agent instructions and reference guides.

Usage:
    read_resource("security-checklist")      # Markdown text
    install_skill(Path("."))                 # {path: "created" | "updated" | "skipped"}
"""

import shutil
from pathlib import Path

SKILL_DIR = Path(__file__).parent / "skill"
INSTALL_PATH = Path(".claude") / "skills" / "rails-audit"

RESOURCES: dict[str, str] = {
    "skill":              "SKILL.md",
    "coverage-agent":     "agents/coverage-agent.md",
    "rubycritic-agent":   "agents/rubycritic-agent.md",
    "code-smells":        "references/code_smells.md",
    "testing-guidelines": "references/testing_guidelines.md",
    "security-checklist": "references/security_checklist.md",
    "poro-patterns":      "references/poro_patterns.md",
    "rails-antipatterns": "references/rails_antipatterns.md",
    "report-template":    "references/report_template.md",
}


class SkillError(Exception):
    """Raised for unknown resources or when an install would overwrite edits."""


def _title(text: str) -> str:
    for line in text.splitlines():
        if line.startswith("# "):
            return line[2:].strip()
    return ""


def read_resource(name: str) -> str:
    if name not in RESOURCES:
        raise SkillError(f"Unknown resource '{name}'. Available: {', '.join(RESOURCES)}")
    return (SKILL_DIR / RESOURCES[name]).read_text(encoding="utf-8")


def list_resources() -> list[dict]:
    return [
        {"name": name, "path": rel, "title": _title(read_resource(name))}
        for name, rel in RESOURCES.items()
    ]


def _write(path: Path, content: str, force: bool) -> str:
    """Write *content* to *path*; return created, updated or skipped."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        path.write_text(content, encoding="utf-8")
        return "created"

    if path.read_text(encoding="utf-8") == content:
        return "skipped"
    if not force:
        raise SkillError(f"'{path}' differs from the bundled version. Use --force to replace it.")

    # Keep the first replaced version only
    bak_path = path.with_suffix(path.suffix + ".bak")
    if not bak_path.exists():
        shutil.copy2(path, bak_path)
    path.write_text(content, encoding="utf-8")
    return "updated"


def install_skill(target: Path, force: bool = False) -> dict[str, str]:
    """Copy the bundle into ``<target>/.claude/skills/rails-audit/``."""
    destination = Path(target) / INSTALL_PATH
    if not force:
        conflicts = [
            rel for name, rel in RESOURCES.items()
            if (destination / rel).exists()
            and (destination / rel).read_text(encoding="utf-8") != read_resource(name)
        ]
        if conflicts:
            raise SkillError(
                f"{len(conflicts)} installed file(s) differ from the bundled version "
                f"({', '.join(conflicts)}). Use --force to replace them."
            )

    results: dict[str, str] = {}
    for name, rel in RESOURCES.items():
        path = destination / rel
        results[str(path)] = _write(path, read_resource(name), force)
    return results
