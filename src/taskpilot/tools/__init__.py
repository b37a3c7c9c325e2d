"""Shell, git and verification helpers used by the execution pipeline."""

from .git_state import CommitInfo, GitState, GitStateTracker, fallback_commit_message
from .shell import Shell, ShellCommandError, ShellResult
from .vcs import GitError, GitRepository
from .verification import (
    VerificationResult,
    format_verification_error,
    normalise_verification_commands,
    run_verifications,
)

__all__ = [
    "CommitInfo",
    "GitError",
    "GitRepository",
    "GitState",
    "GitStateTracker",
    "Shell",
    "ShellCommandError",
    "ShellResult",
    "VerificationResult",
    "fallback_commit_message",
    "format_verification_error",
    "normalise_verification_commands",
    "run_verifications",
]
