"""Configuration loading and validation.

Usage:
    config = load("rails-audit.yaml")       # defaults when the file is absent
    cmd = config.tests.command              # None unless overridden
    generate_template("rails-audit.yaml")   # writes example file to disk
"""

import os
import shlex
import warnings
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_CONFIG_PATH = "rails-audit.yaml"
DEFAULT_REPORT_PATH = "RAILS_AUDIT_REPORT.md"
DEFAULT_RUBYGEMS_URL = "https://rubygems.org"

FRAMEWORKS = ("auto", "rspec", "minitest")
SECTIONS = ("report", "tests", "coverage", "rubycritic", "rubygems", "timeouts", "scan")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigError(Exception):
    """Raised when the configuration is malformed or invalid."""


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass
class TestsConfig:
    framework: str = "auto"
    command: list[str] | None = None


@dataclass
class CoverageConfig:
    enabled: bool | None = True
    minimum: float = 80.0


@dataclass
class RubyCriticConfig:
    enabled: bool | None = True
    paths: list[str] = field(default_factory=lambda: ["app", "lib"])


@dataclass
class RubyGemsConfig:
    url: str = DEFAULT_RUBYGEMS_URL
    pin_versions: bool = True


@dataclass
class Timeouts:
    install: int = 600
    tests: int = 1800
    rubycritic: int = 900


@dataclass
class Config:
    report_path: str = DEFAULT_REPORT_PATH
    tests: TestsConfig = field(default_factory=TestsConfig)
    coverage: CoverageConfig = field(default_factory=CoverageConfig)
    rubycritic: RubyCriticConfig = field(default_factory=RubyCriticConfig)
    rubygems: RubyGemsConfig = field(default_factory=RubyGemsConfig)
    timeouts: Timeouts = field(default_factory=Timeouts)
    scan_exclude: list[str] = field(default_factory=lambda: [
        "vendor/**", "node_modules/**", "tmp/**", "db/schema.rb",
    ])

    def report_file(self, root: Path) -> Path:
        """Return the report path, resolved against the project *root*."""
        path = Path(self.report_path)
        return path if path.is_absolute() else root / path


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load(config_path: str = DEFAULT_CONFIG_PATH) -> Config:
    """Load and validate configuration from a YAML file.

    A missing file yields the defaults. Environment variables
    RAILS_AUDIT_REPORT and RUBYGEMS_URL override file values.

    Raises:
        ConfigError: if the file is malformed or holds invalid values.
    """
    path = Path(config_path)
    raw: dict = {}

    if path.exists():
        try:
            with path.open(encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse '{config_path}': {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError(f"'{config_path}' must be a YAML mapping at the top level.")

        unknown = sorted(str(key) for key in raw if key not in SECTIONS)
        if unknown:
            warnings.warn(
                f"Ignoring unknown key(s) in '{config_path}': {', '.join(unknown)}. "
                f"Known sections: {', '.join(SECTIONS)}.",
                UserWarning,
                stacklevel=2,
            )

    report    = _section(raw, "report")
    tests     = _section(raw, "tests")
    coverage  = _section(raw, "coverage")
    critic    = _section(raw, "rubycritic")
    rubygems  = _section(raw, "rubygems")
    timeouts  = _section(raw, "timeouts")
    scan      = _section(raw, "scan")

    defaults = Config()
    config = Config(
        report_path=str(os.environ.get("RAILS_AUDIT_REPORT")
                        or report.get("path", defaults.report_path)).strip(),
        tests=TestsConfig(
            framework=str(tests.get("framework", "auto")).strip().lower(),
            command=_command(tests.get("command")),
        ),
        coverage=CoverageConfig(
            enabled=coverage.get("enabled", True),
            minimum=coverage.get("minimum", 80.0),
        ),
        rubycritic=RubyCriticConfig(
            enabled=critic.get("enabled", True),
            paths=list(critic.get("paths") or defaults.rubycritic.paths),
        ),
        rubygems=RubyGemsConfig(
            url=str(os.environ.get("RUBYGEMS_URL")
                    or rubygems.get("url", DEFAULT_RUBYGEMS_URL)).strip(),
            pin_versions=bool(rubygems.get("pin_versions", True)),
        ),
        timeouts=Timeouts(
            install=timeouts.get("install", 600),
            tests=timeouts.get("tests", 1800),
            rubycritic=timeouts.get("rubycritic", 900),
        ),
        scan_exclude=list(defaults.scan_exclude if scan.get("exclude") is None else scan["exclude"]),
    )
    _validate(config)
    return config


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping.")
    return value


def _command(value) -> list[str] | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return shlex.split(value)
    return [str(part) for part in value]


def _validate(config: Config) -> None:
    """Raise ConfigError listing every invalid field."""
    errors: list[str] = []

    if not config.report_path:
        errors.append("  - 'report.path' is empty (or set the RAILS_AUDIT_REPORT environment variable)")
    if config.tests.framework not in FRAMEWORKS:
        errors.append(
            f"  - 'tests.framework' must be one of {', '.join(FRAMEWORKS)} "
            f"(got '{config.tests.framework}')"
        )
    for section in ("coverage", "rubycritic"):
        enabled = getattr(config, section).enabled
        if enabled is not None and not isinstance(enabled, bool):
            errors.append(f"  - '{section}.enabled' must be true, false or null")
    if not isinstance(config.coverage.minimum, (int, float)) or not 0 <= config.coverage.minimum <= 100:
        errors.append("  - 'coverage.minimum' must be a number between 0 and 100")
    if not config.rubycritic.paths:
        errors.append("  - 'rubycritic.paths' is empty; list at least one directory")
    if not config.rubygems.url:
        errors.append("  - 'rubygems.url' is empty (or set the RUBYGEMS_URL environment variable)")
    for name in ("install", "tests", "rubycritic"):
        value = getattr(config.timeouts, name)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            errors.append(f"  - 'timeouts.{name}' must be a positive number of seconds")

    if errors:
        raise ConfigError("Invalid configuration:\n" + "\n".join(errors))


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
report:
  path: "RAILS_AUDIT_REPORT.md"   # Fixed location of the generated audit report

tests:
  framework: auto                 # auto | rspec | minitest
  # command: "bin/rspec --tag ~slow"

coverage:
  enabled: true                   # null = ask before running
  minimum: 80                     # Target line coverage, in percent

rubycritic:
  enabled: true                   # null = ask before running
  paths: [app, lib]

rubygems:
  url: "https://rubygems.org"
  pin_versions: true              # Add injected gems with a ~> constraint

timeouts:                         # Seconds
  install: 600
  tests: 1800
  rubycritic: 900

scan:
  exclude: ["vendor/**", "node_modules/**", "tmp/**", "db/schema.rb"]
"""


def generate_template(output_path: str = DEFAULT_CONFIG_PATH) -> None:
    """Write a template rails-audit.yaml to *output_path*.

    Raises:
        ConfigError: if the file already exists.
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")
