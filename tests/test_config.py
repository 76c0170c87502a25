"""Tests for rails_audit/config.py"""

import textwrap
from pathlib import Path

import pytest

from rails_audit.config import (
    Config,
    ConfigError,
    generate_template,
    load,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def write_config(tmp_path: Path, content: str) -> Path:
    p = tmp_path / "rails-audit.yaml"
    p.write_text(textwrap.dedent(content), encoding="utf-8")
    return p


VALID_YAML = """\
    report:
      path: "docs/audit.md"
    tests:
      framework: minitest
      command: "bin/rails test --fail-fast"
    coverage:
      enabled: null
      minimum: 85
    rubycritic:
      enabled: false
      paths: [app]
    timeouts:
      tests: 60
    """


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("RAILS_AUDIT_REPORT", raising=False)
    monkeypatch.delenv("RUBYGEMS_URL", raising=False)


# ---------------------------------------------------------------------------
# load(): happy path
# ---------------------------------------------------------------------------

def test_load_valid_config(tmp_path):
    p = write_config(tmp_path, VALID_YAML)
    config = load(str(p))
    assert config.report_path == "docs/audit.md"
    assert config.tests.framework == "minitest"
    assert config.tests.command == ["bin/rails", "test", "--fail-fast"]
    assert config.coverage.enabled is None
    assert config.coverage.minimum == 85
    assert config.rubycritic.enabled is False
    assert config.rubycritic.paths == ["app"]
    assert config.timeouts.tests == 60
    assert config.timeouts.install == 600


def test_command_list_kept_as_is(tmp_path):
    p = write_config(tmp_path, """\
        tests:
          command: ["bin/rspec", "--tag", "~slow"]
        """)
    assert load(str(p)).tests.command == ["bin/rspec", "--tag", "~slow"]


# ---------------------------------------------------------------------------
# load(): missing or empty file
# ---------------------------------------------------------------------------

def test_load_missing_file_gives_defaults(tmp_path):
    config = load(str(tmp_path / "no-such-file.yaml"))
    assert config == Config()
    assert config.report_path == "RAILS_AUDIT_REPORT.md"
    assert config.rubycritic.paths == ["app", "lib"]


def test_load_empty_file_gives_defaults(tmp_path):
    p = write_config(tmp_path, "")
    assert load(str(p)) == Config()


def test_load_malformed_yaml(tmp_path):
    p = write_config(tmp_path, "report: [unclosed\n")
    with pytest.raises(ConfigError, match="Failed to parse"):
        load(str(p))


def test_load_non_mapping(tmp_path):
    p = write_config(tmp_path, "- a\n- b\n")
    with pytest.raises(ConfigError, match="mapping"):
        load(str(p))


# ---------------------------------------------------------------------------
# load(): invalid values
# ---------------------------------------------------------------------------

def test_load_unknown_framework(tmp_path):
    p = write_config(tmp_path, """\
        tests:
          framework: cucumber
        """)
    with pytest.raises(ConfigError, match="tests.framework"):
        load(str(p))


def test_load_minimum_out_of_range(tmp_path):
    p = write_config(tmp_path, """\
        coverage:
          minimum: 120
        """)
    with pytest.raises(ConfigError, match="coverage.minimum"):
        load(str(p))


def test_load_non_positive_timeout(tmp_path):
    p = write_config(tmp_path, """\
        timeouts:
          install: 0
        """)
    with pytest.raises(ConfigError, match="timeouts.install"):
        load(str(p))


def test_load_reports_every_error(tmp_path):
    p = write_config(tmp_path, """\
        tests:
          framework: cucumber
        coverage:
          enabled: "sometimes"
        """)
    with pytest.raises(ConfigError) as excinfo:
        load(str(p))
    message = str(excinfo.value)
    assert "tests.framework" in message
    assert "coverage.enabled" in message


def test_load_section_must_be_mapping(tmp_path):
    p = write_config(tmp_path, "coverage: yes\n")
    with pytest.raises(ConfigError, match="'coverage' must be a mapping"):
        load(str(p))


def test_load_warns_on_unknown_top_level_key(tmp_path):
    p = write_config(tmp_path, "report_path: docs/audit.md\n")
    with pytest.warns(UserWarning, match="report_path"):
        config = load(str(p))
    assert config.report_path == "RAILS_AUDIT_REPORT.md"


# ---------------------------------------------------------------------------
# load(): scan.exclude
# ---------------------------------------------------------------------------

def test_null_scan_exclude_keeps_defaults(tmp_path):
    p = write_config(tmp_path, """\
        scan:
          exclude: null
        """)
    assert load(str(p)).scan_exclude == Config().scan_exclude


def test_empty_scan_exclude_scans_everything(tmp_path):
    p = write_config(tmp_path, """\
        scan:
          exclude: []
        """)
    assert load(str(p)).scan_exclude == []


# ---------------------------------------------------------------------------
# load(): environment variable overrides
# ---------------------------------------------------------------------------

def test_env_report_path_overrides_config(tmp_path, monkeypatch):
    p = write_config(tmp_path, VALID_YAML)
    monkeypatch.setenv("RAILS_AUDIT_REPORT", "out/report.md")
    assert load(str(p)).report_path == "out/report.md"


def test_env_rubygems_url_overrides_config(tmp_path, monkeypatch):
    monkeypatch.setenv("RUBYGEMS_URL", "https://gems.internal.example.com")
    config = load(str(tmp_path / "absent.yaml"))
    assert config.rubygems.url == "https://gems.internal.example.com"


# ---------------------------------------------------------------------------
# report_file()
# ---------------------------------------------------------------------------

def test_report_file_relative_to_root(tmp_path):
    config = Config(report_path="docs/audit.md")
    assert config.report_file(tmp_path) == tmp_path / "docs" / "audit.md"


def test_report_file_absolute(tmp_path):
    target = tmp_path / "elsewhere.md"
    config = Config(report_path=str(target))
    assert config.report_file(Path("/project")) == target


# ---------------------------------------------------------------------------
# generate_template()
# ---------------------------------------------------------------------------

def test_generate_template_creates_loadable_file(tmp_path):
    out = tmp_path / "rails-audit.yaml"
    generate_template(str(out))
    assert out.exists()
    content = out.read_text()
    assert "coverage:" in content
    assert "rubycritic:" in content
    assert load(str(out)) == Config()


def test_generate_template_refuses_to_overwrite(tmp_path):
    out = tmp_path / "rails-audit.yaml"
    out.write_text("existing content")
    with pytest.raises(ConfigError, match="already exists"):
        generate_template(str(out))
