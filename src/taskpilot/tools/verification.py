"""Verification commands run after the coding agent finishes.

Commands execute in order through the shared :class:`~taskpilot.tools.shell.Shell`
and stop at the first failure, so a broken build does not also report a wall
of downstream test failures.
"""

from __future__ import annotations

import logging
import textwrap
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

from .shell import Shell

__all__ = [
    "VerificationResult",
    "format_verification_error",
    "normalise_verification_commands",
    "run_verifications",
]

LOGGER = logging.getLogger(__name__)

DRY_RUN_OUTPUT = "DRY RUN - not executed"


@dataclass(slots=True)
class VerificationResult:
    """Outcome of a single verification command."""

    command: str
    success: bool
    output: str = ""
    error: Optional[str] = None
    exit_code: Optional[int] = None


def run_verifications(
    commands: Sequence[str],
    *,
    shell: Shell,
    cwd: Path | str,
    dry_run: bool = False,
) -> List[VerificationResult]:
    """Run ``commands`` in order and return results up to the first failure.

    In dry-run mode nothing executes and every command is reported as passed.
    """

    results: List[VerificationResult] = []
    if not commands:
        return results

    if dry_run:
        for command in commands:
            LOGGER.info("[dry-run] Would run verification: %s", command)
            results.append(VerificationResult(command=command, success=True, output=DRY_RUN_OUTPUT, exit_code=0))
        return results

    for command in commands:
        LOGGER.info("Running verification: %s", command)
        result = shell.run(command, cwd=cwd, check=False)
        if result.ok:
            results.append(
                VerificationResult(
                    command=command,
                    success=True,
                    output=result.stdout.strip(),
                    exit_code=result.exit_code,
                )
            )
            LOGGER.info("Verification passed: %s", command)
            continue

        error = result.stderr.strip() or result.stdout.strip() or f"Command exited with code {result.exit_code}"
        results.append(
            VerificationResult(
                command=command,
                success=False,
                output=result.stdout.strip(),
                error=error,
                exit_code=result.exit_code,
            )
        )
        LOGGER.error("Verification failed: %s", command)
        break

    return results


def format_verification_error(result: VerificationResult) -> str:
    """Render a failed verification as guidance for the next attempt."""

    error_output = (result.error or result.output or "").strip() or "(no output)"
    body = textwrap.dedent(
        """\
        ## Verification Failed: {command}

        The verification command failed after the implementation attempt.

        ### Error Output:
        ```
        {error}
        ```

        ### Common causes:
        - Syntax errors in the changed files
        - Failing or outdated tests
        - Missing dependencies or imports
        - Type errors or lint violations

        Fix the issues above and make sure `{command}` succeeds.
        """
    )
    return body.format(command=result.command, error=error_output)


def normalise_verification_commands(raw: Any) -> List[str]:
    """Expand configuration entries into shell command strings.

    Accepts a single string, a list of strings, or mappings with a
    ``command``/``cmd`` key whose value is a string or an argv list.
    """

    if not raw:
        return []
    if isinstance(raw, str):
        raw = [raw]

    commands: List[str] = []
    for entry in raw:
        if isinstance(entry, str):
            if entry.strip():
                commands.append(entry.strip())
            continue
        if isinstance(entry, Mapping):
            command = entry.get("command") or entry.get("cmd")
            if isinstance(command, str):
                if command.strip():
                    commands.append(command.strip())
            elif isinstance(command, Iterable):
                parts = [str(part) for part in command]
                if parts:
                    commands.append(" ".join(parts))
            continue
        raise ValueError(f"Unsupported verification entry: {entry!r}")
    return commands
