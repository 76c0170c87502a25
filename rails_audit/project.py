"""Inspection of the Rails project under audit.

Usage:
    project = RailsProject(".")
    project.require_rails()                       # raises ProjectError
    framework = project.detect_test_framework()   # "rspec" or "minitest"
    cmd = project.test_command(framework)         # ["bundle", "exec", "rspec"]
"""

import fnmatch
import re
import shlex
from pathlib import Path

_MODULE_RE = re.compile(r"^\s*module\s+([A-Z]\w*)")


class ProjectError(Exception):
    """Raised when the target directory is not a usable Rails project."""


class RailsProject:
    """A Rails application checked out at *root*."""

    def __init__(self, root: str | Path = ".") -> None:
        self.root = Path(root).resolve()

    @property
    def gemfile(self) -> Path:
        return self.root / "Gemfile"

    @property
    def gemfile_lock(self) -> Path:
        return self.root / "Gemfile.lock"

    def is_rails(self) -> bool:
        return self.gemfile.is_file() and (self.root / "config" / "application.rb").is_file()

    def require_rails(self) -> None:
        if not self.is_rails():
            raise ProjectError(
                f"'{self.root}' does not look like a Rails application "
                "(expected a Gemfile and config/application.rb)."
            )

    def project_name(self) -> str:
        """Return the application module name, falling back to the directory name."""
        app_file = self.root / "config" / "application.rb"
        if app_file.is_file():
            for line in app_file.read_text(encoding="utf-8", errors="replace").splitlines():
                match = _MODULE_RE.match(line)
                if match:
                    return match.group(1)
        return self.root.name

    # ------------------------------------------------------------------
    # Gems
    # ------------------------------------------------------------------

    def has_gem(self, name: str) -> bool:
        """Return True when *name* is declared in the Gemfile or locked in Gemfile.lock."""
        declared = re.compile(r"""^\s*gem\s+['"]""" + re.escape(name) + r"""['"]""")
        if self.gemfile.is_file():
            for line in self.gemfile.read_text(encoding="utf-8", errors="replace").splitlines():
                if declared.match(line):
                    return True
        if self.gemfile_lock.is_file():
            locked = f"    {name} ("
            for line in self.gemfile_lock.read_text(encoding="utf-8", errors="replace").splitlines():
                if line.startswith(locked):
                    return True
        return False

    def add_gem(self, line: str, group: str) -> None:
        """Insert the Gemfile *line* into the first ``group :<group>`` block.

        Groups listing several environments (``group :development, :test``)
        count. Without a matching block a new one is appended.
        """
        text = self.gemfile.read_text(encoding="utf-8")
        lines = text.splitlines()
        group_re = re.compile(r"^(\s*)group\s+.*:" + re.escape(group) + r"\b.*\bdo\s*$")
        for index, current in enumerate(lines):
            match = group_re.match(current)
            if match:
                lines.insert(index + 1, f"{match.group(1)}  {line}")
                break
        else:
            if lines and lines[-1].strip():
                lines.append("")
            lines.extend([f"group :{group} do", f"  {line}", "end"])
        self.gemfile.write_text("\n".join(lines) + "\n", encoding="utf-8")

    # ------------------------------------------------------------------
    # Tests
    # ------------------------------------------------------------------

    def detect_test_framework(self, preference: str = "auto") -> str:
        """Return ``"rspec"`` or ``"minitest"``.

        An explicit *preference* wins. Under ``auto`` a spec/ directory backed by
        an rspec gem is preferred, then a test/ directory, then a bare spec/.
        """
        if preference in ("rspec", "minitest"):
            return preference

        has_spec = (self.root / "spec").is_dir()
        has_test = (self.root / "test").is_dir()
        if has_spec and (self.has_gem("rspec-rails") or self.has_gem("rspec")):
            return "rspec"
        if has_test:
            return "minitest"
        if has_spec:
            return "rspec"
        raise ProjectError(f"No spec/ or test/ directory found in '{self.root}'.")

    @staticmethod
    def test_command(framework: str, override: list[str] | str | None = None) -> list[str]:
        if override:
            return shlex.split(override) if isinstance(override, str) else list(override)
        if framework == "rspec":
            return ["bundle", "exec", "rspec"]
        return ["bundle", "exec", "rails", "test"]

    def helper_file(self, framework: str) -> Path:
        """Return the helper loaded first by the test suite."""
        if framework == "rspec":
            spec_helper = self.root / "spec" / "spec_helper.rb"
            rails_helper = self.root / "spec" / "rails_helper.rb"
            if not spec_helper.exists() and rails_helper.exists():
                return rails_helper
            return spec_helper
        return self.root / "test" / "test_helper.rb"

    # ------------------------------------------------------------------
    # Source files
    # ------------------------------------------------------------------

    def relative(self, path: Path | str) -> str:
        path = Path(path)
        try:
            return path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def ruby_files(self, dirs: list[str] | None = None, exclude: list[str] | None = None) -> list[Path]:
        """Return sorted ``.rb`` files under *dirs* (default: the whole project)."""
        exclude = exclude or []
        bases = [self.root / d for d in dirs] if dirs else [self.root]
        found: set[Path] = set()
        for base in bases:
            if base.is_file() and base.suffix == ".rb":
                found.add(base)
            elif base.is_dir():
                found.update(p for p in base.rglob("*.rb") if p.is_file())
        return sorted(
            p for p in found
            if not any(fnmatch.fnmatch(self.relative(p), pattern) for pattern in exclude)
        )
