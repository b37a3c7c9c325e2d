"""CLI commands for managing and executing Taskpilot tasks."""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import typer
import yaml

from .context_builder import ContextBuilder
from .execution import TaskExecutionConfig, TaskExecutionResult, parse_try_models
from .executors import ExecutorConfig, ExecutorError, normalize_tool
from .hooks import LoggingListener
from .memory.schema import Task, TaskStatus
from .memory.store import TaskNotFoundError, TaskStore
from .models import LLMClient, OfflineClient, ProviderEndpoint, ResponsesClient
from .orchestrator import Orchestrator
from .task_loop import LoopFilters, LoopResult, execute_task_loop
from .tools.verification import normalise_verification_commands

APP_HELP = "Taskpilot drives coding agents through plan, execute, verify and review."
DEFAULT_CONFIG_NAME = "taskpilot.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "repo_root": ".",
    },
    "paths": {
        "data": ".taskpilot",
        "db_path": ".taskpilot/tasks.sqlite",
        "logs": ".taskpilot/logs",
        "prd": None,
    },
    "models": {
        "default": "gpt-5-mini",
        "base_url": "https://api.openai.com/v1/responses",
        "timeout": 120,
        "max_attempts": 3,
        "retry_delay": 0.5,
        "providers": {},
    },
    "context": {
        "stack": "",
    },
    "execution": {
        "tool": "opencode",
        "model": None,
        "max_retries": 3,
        "try_models": [],
        "verification": [],
        "plan": False,
        "review": False,
        "auto_commit": False,
        "execute_subtasks": True,
        "include_completed": False,
        "include_prd": False,
        "max_subtask_depth": 16,
    },
}

app = typer.Typer(help=APP_HELP)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------- config helpers
def _copy_config_template() -> Dict[str, Any]:
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    return data


def _resolve_repo_root(config: Mapping[str, Any], config_path: Path) -> Path:
    project_cfg = config.get("project") or {}
    repo_root_path = Path(project_cfg.get("repo_root") or ".")
    if not repo_root_path.is_absolute():
        repo_root_path = (config_path.parent / repo_root_path).resolve()
    return repo_root_path


def _resolve_path(value: Any, base: Path, default: str) -> Path:
    candidate = Path(str(value).strip()) if isinstance(value, str) and value.strip() else Path(default)
    if not candidate.is_absolute():
        candidate = base / candidate
    return candidate


def _open_store(config: Mapping[str, Any], repo_root: Path) -> TaskStore:
    return TaskStore.from_config(config, base_dir=repo_root)


def build_provider_endpoints(models_cfg: Mapping[str, Any]) -> Dict[str, ProviderEndpoint]:
    """Read ``models.providers`` into endpoints keyed by provider name.

    Each entry needs a ``base_url``; ``api_key_env`` names the environment
    variable holding its key and ``model`` overrides the default model.
    """
    providers_cfg = models_cfg.get("providers") or {}
    if not isinstance(providers_cfg, Mapping):
        typer.echo("models.providers must be a mapping of provider name to endpoint settings.")
        raise typer.Exit(code=1)

    endpoints: Dict[str, ProviderEndpoint] = {}
    for name, entry in providers_cfg.items():
        base_url = entry.get("base_url") if isinstance(entry, Mapping) else None
        if not isinstance(base_url, str) or not base_url.strip():
            typer.echo(f"models.providers.{name} requires a base_url.")
            raise typer.Exit(code=1)
        key_env = entry.get("api_key_env")
        model = entry.get("model")
        endpoints[str(name).lower()] = ProviderEndpoint(
            name=str(name).lower(),
            base_url=base_url.strip(),
            api_key=os.getenv(str(key_env)) if key_env else None,
            model=str(model) if model else None,
        )
    return endpoints


def _build_client(config: Mapping[str, Any], *, use_remote: bool) -> LLMClient:
    """Select the Responses API client or the offline client."""
    if not use_remote:
        return OfflineClient()

    models_cfg = config.get("models") or {}
    client_kwargs: Dict[str, Any] = {"model": str(models_cfg.get("default") or "gpt-5-mini")}
    timeout_value = models_cfg.get("timeout")
    if isinstance(timeout_value, (int, float)) and timeout_value > 0:
        client_kwargs["timeout"] = float(timeout_value)
    max_attempts_value = models_cfg.get("max_attempts")
    if isinstance(max_attempts_value, int) and max_attempts_value > 0:
        client_kwargs["max_attempts"] = max_attempts_value
    retry_delay_value = models_cfg.get("retry_delay")
    if isinstance(retry_delay_value, (int, float)) and retry_delay_value >= 0:
        client_kwargs["retry_delay"] = float(retry_delay_value)
    base_url_value = models_cfg.get("base_url")
    if isinstance(base_url_value, str) and base_url_value.strip():
        client_kwargs["base_url"] = base_url_value.strip()
    providers = build_provider_endpoints(models_cfg)
    if providers:
        client_kwargs["providers"] = providers

    try:
        return ResponsesClient(**client_kwargs)
    except ValueError as error:
        typer.echo(
            f"{error} Set OPENAI_API_KEY or TASKPILOT_API_KEY, "
            "or re-run with --no-use-remote to skip model-backed review and commit messages."
        )
        raise typer.Exit(code=1) from error


def _optional_tool(value: Optional[str], option: str):
    if value is None or not str(value).strip():
        return None
    try:
        return normalize_tool(value)
    except ValueError as error:
        raise typer.BadParameter(str(error), param_hint=option) from error


def build_execution_config(config: Mapping[str, Any], **overrides: Any) -> TaskExecutionConfig:
    """Merge the ``execution`` section with CLI overrides into a config snapshot.

    Overrides set to ``None`` fall back to the file value. Unknown executor
    names raise :class:`ValueError`.
    """

    section = dict(config.get("execution") or {})
    for key, value in overrides.items():
        if value is not None:
            section[key] = value

    raw_try_models = section.get("try_models") or ()
    if isinstance(raw_try_models, str):
        try_models = parse_try_models(raw_try_models)
    else:
        try_models = parse_try_models(",".join(str(item) for item in raw_try_models))

    def tool_or_none(key: str):
        value = section.get(key)
        return normalize_tool(value) if value else None

    return TaskExecutionConfig(
        tool=normalize_tool(section.get("tool") or "opencode"),
        executor_config=ExecutorConfig(
            model=section.get("model") or None,
            session_id=section.get("session_id") or None,
            continue_last_session=bool(section.get("continue_session", False)),
        ),
        custom_message=section.get("message") or None,
        verification_commands=tuple(normalise_verification_commands(section.get("verification"))),
        enable_retry=bool(section.get("retry", False)),
        max_retries=int(section.get("max_retries", 3)),
        try_models=try_models,
        enable_plan_phase=bool(section.get("plan", False)),
        plan_model=section.get("plan_model") or None,
        plan_tool=tool_or_none("plan_tool"),
        review_plan=bool(section.get("review_plan", False)),
        enable_review_phase=bool(section.get("review", False)),
        review_model=section.get("review_model") or None,
        review_tool=tool_or_none("review_tool"),
        auto_commit=bool(section.get("auto_commit", False)),
        execute_subtasks=bool(section.get("execute_subtasks", True)),
        include_completed=bool(section.get("include_completed", False)),
        include_prd=bool(section.get("include_prd", False)),
        dry_run=bool(section.get("dry_run", False)),
        max_subtask_depth=int(section.get("max_subtask_depth", 16)),
        on_plan_review=section.get("on_plan_review"),
    )


def _prompt_plan_review(plan_file: str) -> Optional[str]:
    feedback = typer.prompt(
        f"Review {plan_file}. Enter feedback to refine it, or leave empty to approve",
        default="",
        show_default=False,
    )
    return feedback.strip() or None


def _build_orchestrator(
    config: Mapping[str, Any],
    config_path: Path,
    store: TaskStore,
    *,
    client: LLMClient,
) -> Orchestrator:
    repo_root = _resolve_repo_root(config, config_path)
    paths_cfg = config.get("paths") or {}
    logs_root = _resolve_path(paths_cfg.get("logs"), repo_root, ".taskpilot/logs")
    return Orchestrator(
        repository=store,
        repo_root=repo_root,
        agent=client,
        context_builder=ContextBuilder.from_config(config, repo_root=repo_root),
        listeners=[LoggingListener()],
        artifacts_root=logs_root,
    )


def _next_task_id(store: TaskStore, parent_id: Optional[str]) -> str:
    position = store.next_position(parent_id)
    counter = position + 1
    while True:
        candidate = f"{parent_id}.{counter}" if parent_id else str(counter)
        if store.get_task(candidate) is None:
            return candidate
        counter += 1


def _render_result(result: TaskExecutionResult, indent: str = "") -> None:
    status = "completed" if result.success else "failed"
    typer.echo(f"{indent}Task {result.task_id}: {status}")
    for attempt in result.attempts:
        label = "ok" if attempt.success else "failed"
        model = f" ({attempt.model})" if attempt.model else ""
        typer.echo(f"{indent}  attempt {attempt.attempt_number}: {label} via {attempt.executor}{model}")
        if attempt.commit_info is not None:
            typer.echo(f"{indent}    commit: {attempt.commit_info.message}")
        if attempt.review_feedback:
            typer.echo(f"{indent}    review: {attempt.review_feedback}")
    for child in result.subtask_results:
        _render_result(child, indent + "  ")
    if result.error and not result.success and not result.attempts:
        typer.echo(f"{indent}  error: {result.error}")


def _render_loop(result: LoopResult) -> None:
    typer.echo("Execution summary")
    typer.echo(f"  total: {result.total_tasks}")
    typer.echo(f"  completed: {result.completed_tasks}")
    typer.echo(f"  failed: {result.failed_tasks}")
    typer.echo(f"  duration: {result.duration:.2f}s")
    for entry in result.task_results:
        typer.echo(f"  - {entry.task_id} {entry.task_title}: {entry.final_status}")


# ---------------------------------------------------------------------- commands
ConfigOption = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the Taskpilot configuration file.",
)


@app.command()
def init(config: str = ConfigOption) -> None:
    """Write a default configuration file and create the task store."""
    config_path = Path(config)
    if config_path.exists():
        config_data = load_config(config_path)
        typer.echo(f"Using existing configuration at {config_path}.")
    else:
        config_data = _copy_config_template()
        _write_config(config_path, config_data)
        typer.echo(f"Wrote default configuration to {config_path}.")

    repo_root = _resolve_repo_root(config_data, config_path)
    with _open_store(config_data, repo_root) as store:
        typer.echo(f"Task store ready at {store.db_path}.")


@app.command()
def add(
    title: str = typer.Option(..., "--title", "-t", help="Short task title."),
    description: str = typer.Option("", "--description", "-d", help="One-paragraph summary."),
    content: str = typer.Option("", "--content", help="Detailed requirements."),
    parent: Optional[str] = typer.Option(None, "--parent", "-p", help="Parent task id."),
    tag: List[str] = typer.Option(None, "--tag", help="Tag to attach (repeatable)."),
    task_id: Optional[str] = typer.Option(None, "--id", help="Explicit task id."),
    config: str = ConfigOption,
) -> None:
    """Create a task, optionally nested under a parent."""
    config_path = Path(config)
    config_data = load_config(config_path)
    repo_root = _resolve_repo_root(config_data, config_path)
    with _open_store(config_data, repo_root) as store:
        if parent is not None and store.get_task(parent) is None:
            raise typer.BadParameter(f"Parent task not found: {parent}", param_hint="--parent")
        new_id = task_id or _next_task_id(store, parent)
        if store.get_task(new_id) is not None:
            raise typer.BadParameter(f"Task already exists: {new_id}", param_hint="--id")
        store.save_task(
            Task(
                id=new_id,
                title=title,
                description=description,
                content=content,
                parent_id=parent,
                tags=list(tag or []),
                position=store.next_position(parent),
            )
        )
    typer.echo(f"Created task {new_id}: {title}")


@app.command("list")
def list_tasks(
    status: Optional[TaskStatus] = typer.Option(None, "--status", "-s", help="Filter by status."),
    tag: Optional[str] = typer.Option(None, "--tag", help="Filter by tag."),
    config: str = ConfigOption,
) -> None:
    """List tasks with their status."""
    config_path = Path(config)
    config_data = load_config(config_path)
    repo_root = _resolve_repo_root(config_data, config_path)
    with _open_store(config_data, repo_root) as store:
        tasks = store.list_tasks(status=status, tag=tag)
    if not tasks:
        typer.echo("No tasks found.")
        return
    for task in tasks:
        indent = "  " * task.id.count(".") if task.parent_id else ""
        typer.echo(f"{indent}[{task.status.value}] {task.id} {task.title}")


@app.command()
def execute(
    task_id: str = typer.Option(..., "--id", help="Task id to execute."),
    tool: Optional[str] = typer.Option(None, "--tool", help="Executor: opencode, claude, gemini, codex, kilo."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model passed to the executor."),
    message: Optional[str] = typer.Option(None, "--message", help="Custom prompt replacing the generated one."),
    verify: List[str] = typer.Option(None, "--verify", help="Verification command (repeatable)."),
    retry: Optional[bool] = typer.Option(None, "--retry/--no-retry", help="Retry failed attempts."),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Maximum attempts when retrying."),
    try_models: Optional[str] = typer.Option(
        None,
        "--try-models",
        help='Escalation list, e.g. "gpt-4o-mini,claude:sonnet-4".',
    ),
    plan: Optional[bool] = typer.Option(None, "--plan/--no-plan", help="Run the planning phase first."),
    plan_model: Optional[str] = typer.Option(None, "--plan-model", help="Planning model, optionally executor:model."),
    plan_tool: Optional[str] = typer.Option(None, "--plan-tool", help="Executor used for planning."),
    review_plan: Optional[bool] = typer.Option(None, "--review-plan/--no-review-plan", help="Pause for plan review."),
    review: Optional[bool] = typer.Option(None, "--review/--no-review", help="Run the AI review phase."),
    review_model: Optional[str] = typer.Option(None, "--review-model", help="Review model, optionally executor:model."),
    review_tool: Optional[str] = typer.Option(None, "--review-tool", help="Executor whose provider reviews."),
    auto_commit: Optional[bool] = typer.Option(None, "--auto-commit/--no-auto-commit", help="Commit agent changes."),
    subtasks: Optional[bool] = typer.Option(None, "--subtasks/--no-subtasks", help="Execute subtasks recursively."),
    include_completed: Optional[bool] = typer.Option(None, "--include-completed/--skip-completed", help="Re-run completed subtasks."),
    include_prd: Optional[bool] = typer.Option(None, "--include-prd/--no-include-prd", help="Include the PRD in prompts."),
    continue_session: Optional[bool] = typer.Option(None, "--continue-session/--new-session", help="Resume the last agent session."),
    dry: bool = typer.Option(False, "--dry", help="Show what would run without spawning anything."),
    use_remote: bool = typer.Option(
        True,
        "--use-remote/--no-use-remote",
        help="Use the Responses API for review and commit messages (requires API key).",
    ),
    config: str = ConfigOption,
) -> None:
    """Execute a single task (and its subtasks)."""
    config_path = Path(config)
    config_data = load_config(config_path)
    execution_config = _execution_config_from_options(
        config_data,
        tool=tool,
        model=model,
        message=message,
        verification=list(verify) if verify else None,
        retry=retry,
        max_retries=max_retries,
        try_models=try_models,
        plan=plan,
        plan_model=plan_model,
        plan_tool=plan_tool,
        review_plan=review_plan,
        review=review,
        review_model=review_model,
        review_tool=review_tool,
        auto_commit=auto_commit,
        execute_subtasks=subtasks,
        include_completed=include_completed,
        include_prd=include_prd,
        continue_session=continue_session,
        dry_run=dry,
        on_plan_review=_prompt_plan_review,
    )

    needs_agent = execution_config.enable_review_phase or execution_config.auto_commit
    client = _build_client(config_data, use_remote=use_remote and needs_agent and not dry)
    repo_root = _resolve_repo_root(config_data, config_path)
    with _open_store(config_data, repo_root) as store:
        orchestrator = _build_orchestrator(config_data, config_path, store, client=client)
        try:
            result = orchestrator.execute_task(task_id, execution_config)
        except TaskNotFoundError as error:
            typer.echo(str(error))
            raise typer.Exit(code=1) from error
        except ExecutorError as error:
            typer.echo(f"Execution failed: {error}")
            raise typer.Exit(code=1) from error

    _render_result(result)
    if not result.success:
        raise typer.Exit(code=1)


@app.command("execute-loop")
def execute_loop(
    ids: List[str] = typer.Option(None, "--id", help="Task id to execute (repeatable)."),
    status: Optional[TaskStatus] = typer.Option(None, "--status", "-s", help="Select tasks by status."),
    tag: Optional[str] = typer.Option(None, "--tag", help="Select tasks by tag."),
    tool: Optional[str] = typer.Option(None, "--tool", help="Executor: opencode, claude, gemini, codex, kilo."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model passed to the executor."),
    verify: List[str] = typer.Option(None, "--verify", help="Verification command (repeatable)."),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Maximum attempts per task."),
    try_models: Optional[str] = typer.Option(None, "--try-models", help="Escalation list."),
    plan: Optional[bool] = typer.Option(None, "--plan/--no-plan", help="Run the planning phase first."),
    review: Optional[bool] = typer.Option(None, "--review/--no-review", help="Run the AI review phase."),
    review_model: Optional[str] = typer.Option(None, "--review-model", help="Review model."),
    auto_commit: Optional[bool] = typer.Option(None, "--auto-commit/--no-auto-commit", help="Commit agent changes."),
    include_completed: Optional[bool] = typer.Option(None, "--include-completed/--skip-completed", help="Re-run completed tasks."),
    include_prd: Optional[bool] = typer.Option(None, "--include-prd/--no-include-prd", help="Include the PRD in prompts."),
    dry: bool = typer.Option(False, "--dry", help="Show what would run without spawning anything."),
    use_remote: bool = typer.Option(
        True,
        "--use-remote/--no-use-remote",
        help="Use the Responses API for review and commit messages (requires API key).",
    ),
    config: str = ConfigOption,
) -> None:
    """Execute several tasks in order, stopping at the first failure."""
    config_path = Path(config)
    config_data = load_config(config_path)
    execution_config = _execution_config_from_options(
        config_data,
        tool=tool,
        model=model,
        verification=list(verify) if verify else None,
        max_retries=max_retries,
        try_models=try_models,
        plan=plan,
        review=review,
        review_model=review_model,
        auto_commit=auto_commit,
        include_completed=include_completed,
        include_prd=include_prd,
        dry_run=dry,
    )

    needs_agent = execution_config.enable_review_phase or execution_config.auto_commit
    client = _build_client(config_data, use_remote=use_remote and needs_agent and not dry)
    repo_root = _resolve_repo_root(config_data, config_path)
    with _open_store(config_data, repo_root) as store:
        orchestrator = _build_orchestrator(config_data, config_path, store, client=client)
        result = execute_task_loop(
            orchestrator,
            store,
            LoopFilters(task_ids=list(ids or []), status=status, tag=tag),
            execution_config,
        )

    _render_loop(result)
    if result.failed_tasks:
        raise typer.Exit(code=1)


def _execution_config_from_options(config: Mapping[str, Any], **overrides: Any) -> TaskExecutionConfig:
    for option, key in (("--tool", "tool"), ("--plan-tool", "plan_tool"), ("--review-tool", "review_tool")):
        _optional_tool(overrides.get(key), option)
    try:
        return build_execution_config(config, **overrides)
    except ValueError as error:
        raise typer.BadParameter(str(error)) from error


__all__ = ["app", "build_execution_config", "load_config"]
