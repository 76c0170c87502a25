"""Subprocess execution and workspace backup for metric workflows.

Usage:
    run(["bundle", "install"], cwd=root, timeout=600)      # raises CommandError
    with Backup(root, ["Gemfile", "Gemfile.lock"], artifacts=["coverage"]):
        ...                                               # restored on exit
"""

import shutil
import subprocess
from pathlib import Path

BACKUP_DIR = ".rails-audit-backup"


class CommandError(Exception):
    """Raised when an external command fails, times out or cannot be started."""

    def __init__(self, message: str, cmd: list[str], returncode: int | None = None,
                 stderr: str = "") -> None:
        super().__init__(message)
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr


class WorkflowError(Exception):
    """Raised when a metric workflow cannot prepare the project."""


def _tail(text: str | None, lines: int = 20) -> str:
    return "\n".join((text or "").strip().splitlines()[-lines:])


def run(cmd: list[str], cwd: Path, timeout: int, env: dict[str, str] | None = None,
        check: bool = True) -> subprocess.CompletedProcess:
    """Run *cmd* in *cwd* and return the completed process.

    Raises:
        CommandError: non-zero exit (when *check*), timeout, or missing executable.
    """
    display = " ".join(cmd)
    try:
        result = subprocess.run(
            cmd, cwd=str(cwd), capture_output=True, text=True, timeout=timeout, env=env,
        )
    except subprocess.TimeoutExpired as exc:
        raise CommandError(f"'{display}' timed out after {timeout}s", cmd) from exc
    except FileNotFoundError as exc:
        raise CommandError(f"'{cmd[0]}' is not installed or not on PATH", cmd) from exc

    if check and result.returncode != 0:
        stderr = _tail(result.stderr) or _tail(result.stdout)
        raise CommandError(
            f"'{display}' exited with status {result.returncode}: {stderr}",
            cmd, result.returncode, stderr,
        )
    return result


# ---------------------------------------------------------------------------
# Workspace backup
# ---------------------------------------------------------------------------

class Backup:
    """Snapshot of project files that a workflow is about to modify.

    On exit every file is restored to its original content, files that did
    not exist before are deleted, and so are *artifacts* (generated
    directories or files) that did not exist before.
    """

    def __init__(self, root: Path, files: list[str | Path], artifacts: list[str | Path] = ()) -> None:
        self.root = Path(root)
        self.files = [self._abs(f) for f in files]
        self.artifacts = [self._abs(a) for a in artifacts]
        self.backup_dir = self.root / BACKUP_DIR
        self._saved: dict[Path, Path] = {}
        self._created: list[Path] = []

    def _abs(self, path: str | Path) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.root / path

    def __enter__(self) -> "Backup":
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        for index, path in enumerate(self.files):
            if path.exists():
                copy = self.backup_dir / f"{index}-{path.name}"
                shutil.copy2(path, copy)
                self._saved[path] = copy
            else:
                self._created.append(path)
        self._created.extend(a for a in self.artifacts if not a.exists())
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.restore()

    def restore(self) -> None:
        for original, copy in self._saved.items():
            original.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(copy, original)
        for path in self._created:
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
        shutil.rmtree(self.backup_dir, ignore_errors=True)
        self._saved.clear()
        self._created.clear()


# ---------------------------------------------------------------------------
# git stash
# ---------------------------------------------------------------------------

def has_local_changes(root: Path) -> bool:
    """Return True when *root* is a git work tree with uncommitted changes."""
    try:
        result = run(["git", "status", "--porcelain"], cwd=root, timeout=60)
    except CommandError:
        return False
    return bool(result.stdout.strip())


def git_stash(root: Path) -> bool:
    """Stash local changes, including untracked files. Return True if a stash was made."""
    if not has_local_changes(root):
        return False
    run(["git", "stash", "push", "--include-untracked", "-m", "rails-audit"], cwd=root, timeout=120)
    return True


def git_stash_pop(root: Path) -> None:
    try:
        run(["git", "stash", "pop"], cwd=root, timeout=120)
    except CommandError as exc:
        raise CommandError(
            f"{exc}. Your changes are still in the stash: run `git stash pop` manually.",
            exc.cmd, exc.returncode, exc.stderr,
        ) from exc
