"""Metric workflows, the pattern-hint scan and audit report rendering."""

import json
from pathlib import Path


class ResultFileError(Exception):
    """Raised when a tool's JSON result file is missing or malformed."""


def load_result_file(path: Path, tool: str) -> dict:
    """Read the JSON result file written by *tool*."""
    if not path.is_file():
        raise ResultFileError(f"{tool} result file not found: '{path}'")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ResultFileError(f"Could not read {tool} result file '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ResultFileError(f"{tool} result file '{path}' must hold a JSON object.")
    return data


def quiet(message: str) -> None:
    """Default step logger: discard *message*."""
