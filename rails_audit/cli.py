"""CLI entry point: command definitions using Click.

Commands:
    init            Generate a template config file
    skill           List, show or install the bundled skill files
    coverage        Measure test coverage with SimpleCov
    estimate        Estimate coverage from test file mapping
    rubycritic      Score code quality with RubyCritic
    scan            Pattern-hint scan of the Ruby sources
    parse-protocol  Convert a COVERAGE_*/RUBYCRITIC_* block to JSON
    audit           Run the full audit and write the Markdown report
"""

import json
import sys
from pathlib import Path
from typing import Any

import click

from rails_audit import __version__


# ---------------------------------------------------------------------------
# Helpers shared by all data commands
# ---------------------------------------------------------------------------

def _load_config(ctx: click.Context):
    """Load the config file. Exits on error."""
    from rails_audit.config import ConfigError, load

    try:
        return load(ctx.obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


def _make_project(ctx: click.Context):
    from rails_audit.project import RailsProject

    project = RailsProject(ctx.obj["root"])
    _verbose(ctx, f"Project root: {project.root}")
    return project


def _make_client(ctx: click.Context, config):
    """Return a RubyGemsClient when gem versions should be pinned, else None."""
    from rails_audit.client import RubyGemsClient

    if not config.rubygems.pin_versions:
        return None
    _verbose(ctx, f"Resolving gem versions from {config.rubygems.url}")
    return RubyGemsClient(url=config.rubygems.url)


def _verbose(ctx: click.Context, message: str) -> None:
    if ctx.obj["verbose"]:
        click.echo(f"[verbose] {message}", err=True)


def _logger(ctx: click.Context):
    return lambda message: _verbose(ctx, message)


def _emit(text: str, ctx: click.Context) -> None:
    """Write *text* to stdout or to the file specified by --output."""
    output_path: str | None = ctx.obj["output_path"]
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Report written to '{output_path}'", err=True)
    else:
        click.echo(text, nl=not text.endswith("\n"))


def _emit_json(data: Any, ctx: click.Context) -> None:
    indent = 2 if ctx.obj["pretty"] else None
    _emit(json.dumps(data, indent=indent, ensure_ascii=False), ctx)


def _handle_errors(func):
    """Decorator that catches library exceptions and exits cleanly."""
    import functools

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from rails_audit.bundle import SkillError
        from rails_audit.client import RubyGemsError
        from rails_audit.project import ProjectError
        from rails_audit.reports import ResultFileError
        from rails_audit.runner import CommandError

        try:
            return func(*args, **kwargs)
        except ProjectError as exc:
            click.echo(f"Project error: {exc}", err=True)
            sys.exit(1)
        except CommandError as exc:
            click.echo(f"Command error: {exc}", err=True)
            sys.exit(1)
        except ResultFileError as exc:
            click.echo(f"Result file error: {exc}", err=True)
            sys.exit(1)
        except SkillError as exc:
            click.echo(f"Skill error: {exc}", err=True)
            sys.exit(1)
        except RubyGemsError as exc:
            click.echo(f"RubyGems error: {exc}", err=True)
            sys.exit(1)

    return wrapper


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default="rails-audit.yaml", show_default=True,
              help="Path to the configuration file.")
@click.option("--root", default=".", show_default=True,
              help="Root directory of the Rails application.")
@click.option("--output", "output_path", default=None,
              help="Write output to a file instead of stdout.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable verbose logging.")
@click.version_option(__version__, prog_name="rails-audit")
@click.pass_context
def cli(ctx: click.Context, config_path: str, root: str, output_path: str | None,
        pretty: bool, verbose: bool) -> None:
    """Rails audit toolkit: metrics, pattern hints and the audit report."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["root"] = root
    ctx.obj["output_path"] = output_path
    ctx.obj["pretty"] = pretty
    ctx.obj["verbose"] = verbose


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="rails-audit.yaml", show_default=True,
              help="Path where the template config file will be written.")
def init_command(output_path: str) -> None:
    """Generate a template rails-audit.yaml file."""
    from rails_audit.config import ConfigError, generate_template
    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit it to choose the test framework, metrics and report path.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# skill
# ---------------------------------------------------------------------------

@cli.group("skill")
def skill_group() -> None:
    """Agent instructions and reference guides bundled with rails-audit."""


@skill_group.command("list")
def skill_list_command() -> None:
    """List the bundled resources."""
    from rails_audit.bundle import list_resources

    for resource in list_resources():
        click.echo(f"{resource['name']:<20} {resource['path']:<36} {resource['title']}")


@skill_group.command("show")
@click.argument("name")
@click.pass_context
@_handle_errors
def skill_show_command(ctx: click.Context, name: str) -> None:
    """Print the bundled resource NAME."""
    from rails_audit.bundle import read_resource

    _emit(read_resource(name), ctx)


@skill_group.command("install")
@click.option("--target", default=".", show_default=True,
              help="Directory that receives .claude/skills/rails-audit.")
@click.option("--force", is_flag=True, default=False,
              help="Replace installed files that differ (a .bak copy is kept).")
@_handle_errors
def skill_install_command(target: str, force: bool) -> None:
    """Install the skill into a project."""
    from rails_audit.bundle import install_skill

    for path, status in install_skill(Path(target), force=force).items():
        click.echo(f"{status:<8} {path}")


# ---------------------------------------------------------------------------
# coverage / estimate
# ---------------------------------------------------------------------------

@cli.command("coverage")
@click.option("--protocol", is_flag=True, default=False,
              help="Print a COVERAGE_DATA / COVERAGE_FAILED block instead of JSON.")
@click.option("--stash", is_flag=True, default=False,
              help="git stash local changes for the duration of the run.")
@click.pass_context
@_handle_errors
def coverage_command(ctx: click.Context, protocol: bool, stash: bool) -> None:
    """Measure line coverage with SimpleCov."""
    from rails_audit.reports.coverage import run_coverage
    from rails_audit.reports.protocol import format_coverage

    config = _load_config(ctx)
    project = _make_project(ctx)
    outcome = run_coverage(project, config, client=_make_client(ctx, config),
                           log=_logger(ctx), stash=stash)

    if protocol:
        _emit(format_coverage(outcome), ctx)
    else:
        _emit_json(outcome.to_dict(), ctx)


@cli.command("estimate")
@click.pass_context
@_handle_errors
def estimate_command(ctx: click.Context) -> None:
    """Estimate coverage from the app/ to spec/ or test/ file mapping."""
    from rails_audit.reports.coverage import estimate_coverage

    project = _make_project(ctx)
    project.require_rails()
    _emit_json(estimate_coverage(project).to_dict(), ctx)


# ---------------------------------------------------------------------------
# rubycritic
# ---------------------------------------------------------------------------

@cli.command("rubycritic")
@click.option("--protocol", is_flag=True, default=False,
              help="Print a RUBYCRITIC_DATA / RUBYCRITIC_FAILED block instead of JSON.")
@click.option("--stash", is_flag=True, default=False,
              help="git stash local changes for the duration of the run.")
@click.pass_context
@_handle_errors
def rubycritic_command(ctx: click.Context, protocol: bool, stash: bool) -> None:
    """Score code quality with RubyCritic."""
    from rails_audit.reports.protocol import format_rubycritic
    from rails_audit.reports.quality import run_rubycritic

    config = _load_config(ctx)
    project = _make_project(ctx)
    outcome = run_rubycritic(project, config, client=_make_client(ctx, config),
                             log=_logger(ctx), stash=stash)

    if protocol:
        _emit(format_rubycritic(outcome), ctx)
    else:
        _emit_json(outcome.to_dict(), ctx)


# ---------------------------------------------------------------------------
# scan
# ---------------------------------------------------------------------------

@cli.command("scan")
@click.pass_context
@_handle_errors
def scan_command(ctx: click.Context) -> None:
    """Pattern-hint scan of every Ruby file in the project."""
    from rails_audit.reports.findings import scan_project

    config = _load_config(ctx)
    project = _make_project(ctx)
    project.require_rails()
    report = scan_project(project, config)
    _verbose(ctx, f"Scanned {report['files_scanned']} files, {report['summary']['total']} hits")
    _emit_json(report, ctx)


# ---------------------------------------------------------------------------
# parse-protocol
# ---------------------------------------------------------------------------

@cli.command("parse-protocol")
@click.argument("source", type=click.File("r", encoding="utf-8"))
@click.pass_context
def parse_protocol_command(ctx: click.Context, source) -> None:
    """Convert a result block from SOURCE (a file, or - for stdin) to JSON."""
    from rails_audit.reports.protocol import parse_protocol

    try:
        parsed = parse_protocol(source.read())
    except ValueError as exc:
        click.echo(f"Protocol error: {exc}", err=True)
        sys.exit(1)
    _emit_json(parsed, ctx)


# ---------------------------------------------------------------------------
# audit
# ---------------------------------------------------------------------------

def _should_run(flag: bool | None, configured: bool | None, question: str, yes: bool) -> bool:
    if flag is not None:
        return flag
    if configured is not None:
        return configured
    return yes or click.confirm(question, default=True)


@cli.command("audit")
@click.option("--coverage/--no-coverage", "with_coverage", default=None,
              help="Measure coverage with SimpleCov (default: from config, else ask).")
@click.option("--rubycritic/--no-rubycritic", "with_rubycritic", default=None,
              help="Score quality with RubyCritic (default: from config, else ask).")
@click.option("--stash", is_flag=True, default=False,
              help="git stash local changes while metrics run.")
@click.option("--yes", "-y", is_flag=True, default=False,
              help="Run every metric the config leaves undecided without asking.")
@click.pass_context
@_handle_errors
def audit_command(ctx: click.Context, with_coverage: bool | None, with_rubycritic: bool | None,
                  stash: bool, yes: bool) -> None:
    """Run metrics and the pattern scan, then write the Markdown audit report."""
    from rails_audit.reports.audit import build_report, write_report
    from rails_audit.reports.coverage import run_coverage
    from rails_audit.reports.findings import scan_project
    from rails_audit.reports.quality import run_rubycritic

    config = _load_config(ctx)
    project = _make_project(ctx)
    project.require_rails()

    run_cov = _should_run(with_coverage, config.coverage.enabled,
                          "Measure test coverage with SimpleCov (runs the test suite)?", yes)
    run_critic = _should_run(with_rubycritic, config.rubycritic.enabled,
                             "Score code quality with RubyCritic?", yes)
    client = _make_client(ctx, config) if run_cov or run_critic else None
    log = _logger(ctx)

    coverage = None
    if run_cov:
        click.echo("Measuring coverage...", err=True)
        coverage = run_coverage(project, config, client=client, log=log, stash=stash)
        if not coverage.ok:
            click.echo(f"Coverage unavailable: {coverage.reason}", err=True)

    quality = None
    if run_critic:
        click.echo("Running RubyCritic...", err=True)
        quality = run_rubycritic(project, config, client=client, log=log, stash=stash)
        if not quality.ok:
            click.echo(f"RubyCritic unavailable: {quality.reason}", err=True)

    click.echo("Scanning for pattern hints...", err=True)
    findings = scan_project(project, config)

    text = build_report(project, config, coverage, quality, findings)
    if ctx.obj["output_path"]:
        path = write_report(Path(ctx.obj["output_path"]), text)
    else:
        path = write_report(config.report_file(project.root), text)
    click.echo(f"Audit report written to '{path}'")
