"""Minimal git helpers.

The helpers below read HEAD, list pending changes, produce diffs, and stage
and commit paths. Every command runs through the shared :class:`Shell` with
the repository root as its working directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

from .shell import Shell, ShellCommandError, ShellResult


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str, *, shell: Shell | None = None) -> None:
        self.root = Path(root)
        self._shell = shell or Shell()

    # ------------------------------------------------------------------ git IO
    def git(self, *args: str, check: bool = True) -> ShellResult:
        """Execute ``git`` with ``args`` relative to the repository root."""

        command = ["git", *args]
        try:
            result = self._shell.run(command, cwd=self.root, check=False)
        except ShellCommandError as error:
            raise GitError(str(error)) from error
        if check and result.exit_code != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result

    # -------------------------------------------------------------------- head
    def head(self) -> str:
        """Return the commit id of ``HEAD``.

        Raises :class:`GitError` outside a repository or before the first commit.
        """

        result = self.git("rev-parse", "HEAD")
        head = result.stdout.strip()
        if not head:
            raise GitError("git rev-parse HEAD returned no commit")
        return head

    # ------------------------------------------------------------- repo status
    def status_entries(self) -> List[tuple[str, Path]]:
        """Return raw porcelain status entries as ``(status, path)`` pairs."""

        result = self.git("status", "--porcelain")
        entries: List[tuple[str, Path]] = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            status_clean = status.strip() or status
            entries.append((status_clean, Path(raw_path.strip().strip('"'))))
        return entries

    def working_tree_changes(self) -> List[Path]:
        """Return the sorted set of paths with pending modifications."""

        paths = {path for _, path in self.status_entries()}
        return sorted(paths, key=lambda item: item.as_posix())

    def has_changes(self) -> bool:
        """Return ``True`` when there are working tree changes."""

        return bool(self.status_entries())

    # ----------------------------------------------------------- diff helpers
    def diff(self, *revisions: str) -> str:
        """Return the unified diff for ``revisions`` (defaults to the index)."""

        return self.git("diff", *revisions).stdout

    def commit_subject(self, revision: str = "HEAD") -> str:
        """Return the subject line of ``revision``."""

        return self.git("log", "-1", "--format=%s", revision).stdout.strip()

    def commit_files(self, revision: str = "HEAD") -> List[str]:
        """Return the paths touched by ``revision``, root commits included."""

        result = self.git("diff-tree", "--no-commit-id", "--name-only", "-r", "--root", revision)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    # ------------------------------------------------------------- committing
    def add(self, paths: Sequence[str] | None = None) -> None:
        """Stage ``paths``, or every change when no paths are given."""

        if paths:
            self.git("add", "--", *paths)
        else:
            self.git("add", ".")

    def commit(self, message: str) -> str | None:
        """Commit the index and return the new ``HEAD``.

        Returns ``None`` when there was nothing to commit.
        """

        commit = self.git("commit", "-m", message, check=False)
        if commit.exit_code != 0:
            output = commit.stderr.strip() or commit.stdout.strip() or ""
            if "nothing to commit" in output.lower() or "nothing added to commit" in output.lower():
                return None
            raise GitError(f"git commit failed: {output}")
        return self.head()


__all__ = ["GitError", "GitRepository"]
