"""Track repository state around an agent run and commit what it leaves behind."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel

from ..models.llm_client import LLMClient, LLMClientError, parse_structured
from .shell import Shell
from .vcs import GitError, GitRepository

if TYPE_CHECKING:
    from ..memory.schema import Task

__all__ = ["CommitInfo", "GitState", "GitStateTracker", "fallback_commit_message"]

LOGGER = logging.getLogger(__name__)

DIFF_CHAR_LIMIT = 10_000
COMMIT_SUBJECT_LIMIT = 72

COMMIT_SYSTEM_PROMPT = "You are a helpful assistant that generates git commit messages."


@dataclass(slots=True)
class GitState:
    """Snapshot of HEAD and working-tree cleanliness."""

    before_head: str = ""
    after_head: str = ""
    has_uncommitted_changes: bool = False
    available: bool = True

    @classmethod
    def unavailable(cls) -> "GitState":
        return cls(available=False)


@dataclass(slots=True)
class CommitInfo:
    """Message and touched files of a commit made by or for the agent."""

    message: str
    files: List[str] = field(default_factory=list)


class _CommitMessage(BaseModel):
    message: str


def fallback_commit_message(task: "Task") -> str:
    title_lines = (task.title or "").strip().splitlines()
    title = title_lines[0].strip() if title_lines else ""
    message = f"feat: complete task {task.id} - {title}" if title else f"feat: complete task {task.id}"
    return message[:COMMIT_SUBJECT_LIMIT].rstrip()


class GitStateTracker:
    """Git observations and best-effort commits for one working directory.

    Every failure to talk to git degrades: state capture reports
    :meth:`GitState.unavailable`, commit detection answers ``False`` and
    commits are logged and skipped.
    """

    def __init__(
        self,
        repo_root: Path | str,
        *,
        shell: Shell | None = None,
        agent: LLMClient | None = None,
    ) -> None:
        self.repo_root = Path(repo_root)
        self.repo = GitRepository(self.repo_root, shell=shell)
        self.agent = agent

    # ------------------------------------------------------------------ state
    def capture_git_state(self) -> GitState:
        try:
            head = self.repo.head()
            dirty = self.repo.has_changes()
        except GitError as error:
            LOGGER.warning("Git state unavailable: %s", error)
            return GitState.unavailable()
        return GitState(before_head=head, after_head=head, has_uncommitted_changes=dirty)

    def has_new_commits_since(self, before_head: str) -> bool:
        if not before_head:
            return False
        try:
            return self.repo.head() != before_head
        except GitError:
            return False

    # ----------------------------------------------------------- commit info
    def extract_commit_info(self, task: "Task", state: GitState) -> CommitInfo:
        """Describe the changes between ``state.before_head`` and ``state.after_head``.

        A moved HEAD means the agent committed itself, so its commit is read
        back. A dirty tree on an unchanged HEAD gets a synthesized message and
        the porcelain file list.
        """

        try:
            if state.after_head and state.before_head != state.after_head:
                LOGGER.info("Agent created a commit, extracting its details")
                return self._commit_info_from_revision(state.after_head, task)

            if state.has_uncommitted_changes:
                LOGGER.info("Uncommitted changes detected, generating commit message")
                files = [path.as_posix() for path in self.repo.working_tree_changes()]
                diff = self.repo.diff("HEAD")
                return CommitInfo(message=self.synthesize_commit_message(task, diff), files=files)
        except GitError as error:
            LOGGER.warning("Failed to extract commit info: %s", error)

        return CommitInfo(message=fallback_commit_message(task), files=[])

    def _commit_info_from_revision(self, revision: str, task: "Task") -> CommitInfo:
        message = self.repo.commit_subject(revision)
        files = self.repo.commit_files(revision)
        return CommitInfo(message=message or fallback_commit_message(task), files=files)

    def synthesize_commit_message(self, task: "Task", diff: str) -> str:
        fallback = fallback_commit_message(task)
        if self.agent is None:
            return fallback

        prompt = (
            "Based on the following git diff, generate a concise git commit message.\n\n"
            f"Task: {task.title}\n\n"
            f"Git Diff:\n{diff[:DIFF_CHAR_LIMIT]}\n\n"
            "Please respond in JSON format:\n"
            '{\n  "message": "concise commit message following conventional commits format"\n}\n\n'
            "The commit message should:\n"
            "- Follow conventional commits format (feat:, fix:, refactor:, etc.)\n"
            "- Be a single line\n"
            "- Focus on what changed\n"
        )
        try:
            raw = self.agent.complete(prompt, system_prompt=COMMIT_SYSTEM_PROMPT)
            parsed = parse_structured(raw, _CommitMessage)
        except LLMClientError as error:
            LOGGER.warning("Commit message synthesis failed, using fallback: %s", error)
            return fallback

        lines = parsed.message.strip().splitlines()
        if not lines or not lines[0].strip():
            return fallback
        return lines[0].strip()

    # ------------------------------------------------------------ committing
    def auto_commit(self, info: CommitInfo) -> bool:
        """Stage ``info.files`` (or everything) and commit; never raises."""

        try:
            if info.files:
                LOGGER.info("Staging files: %s", ", ".join(info.files))
            else:
                LOGGER.info("Staging all changes")
            self.repo.add(info.files or None)
            LOGGER.info("Committing: %s", info.message)
            head = self.repo.commit(info.message)
        except GitError as error:
            LOGGER.warning("Auto-commit failed: %s", error)
            return False
        if head is None:
            LOGGER.info("Nothing to commit")
            return False
        LOGGER.info("Changes committed successfully")
        return True

    def commit_file(self, path: str, message: str) -> bool:
        return self.auto_commit(CommitInfo(message=message, files=[path]))

    # ------------------------------------------------------------------ review
    def collect_review_diff(self, before_head: str | None) -> str:
        """Return committed and uncommitted changes since ``before_head``."""

        sections: List[str] = []
        if before_head:
            try:
                committed = self.repo.diff(f"{before_head}..HEAD")
            except GitError as error:
                LOGGER.warning("Could not diff committed changes: %s", error)
                committed = ""
            if committed.strip():
                sections.append(f"# Committed changes during execution:\n{committed}")

        try:
            uncommitted = self.repo.diff("HEAD")
        except GitError as error:
            LOGGER.warning("Could not diff uncommitted changes: %s", error)
            uncommitted = ""
        if uncommitted.strip():
            sections.append(f"# Uncommitted changes:\n{uncommitted}")

        return "\n\n".join(sections)

    def current_head(self) -> Optional[str]:
        try:
            return self.repo.head()
        except GitError:
            return None
