"""CLI entry point for entrust.

Turns tracker tickets into pull requests: each ticket gets its own git
worktree, an AI agent implements it, tests run with automatic fix attempts,
and the result is pushed and opened as a PR. The agent session behind each
PR is remembered so review feedback can be handed back to the same
conversation later.
"""

from __future__ import annotations

import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click
from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from entrust.config import (
    ConfigError,
    Credentials,
    EntrustConfig,
    apply_overrides,
    build_tracker,
    load_config,
    resolve_credentials,
)
from entrust.git_manager import (
    GitManager,
    GitManagerError,
    branch_for_ticket,
    parse_pr_reference,
)
from entrust.logging import setup_logging
from entrust.orchestrator import (
    FollowUp,
    Pipeline,
    PipelineOptions,
    PipelineResult,
    PipelineState,
    ResultStatus,
    actionable_comments,
    build_feedback_prompt,
    extract_session_id,
)
from entrust.orchestrator.prompts import ticket_from_title
from entrust.scheduler import Scheduler, render_summary
from entrust.sessions import PRSession, SessionStore, SessionStoreError
from entrust.tracker import InvalidStatusError, TaskTracker, TrackerError
from entrust.workers import ClaudeCodeAgent, TestRunner
from entrust.workspace import WorkspaceProvisioner

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger("entrust.cli")


@dataclass
class Runtime:
    """Collaborators shared by every pipeline of one CLI invocation."""

    config: EntrustConfig
    tracker: TaskTracker
    git_manager: GitManager
    provisioner: WorkspaceProvisioner
    agent: ClaudeCodeAgent
    test_runner: TestRunner
    sessions: SessionStore

    def close(self) -> None:
        self.tracker.close()
        self.git_manager.close()


def build_runtime(config: EntrustConfig, credentials: Credentials) -> Runtime:
    """Create the shared tracker, git manager, provisioner, agent and test runner.

    Raises:
        ConfigError: If the current directory is not inside a git repository.
    """
    git_manager = GitManager(
        config.repo, token=credentials.github_token, use_gh_cli=config.use_gh_cli
    )
    try:
        repo_root = git_manager.repo_root()
    except GitManagerError as e:
        raise ConfigError(f"Run entrust from inside a clone of {config.repo}: {e}") from e

    return Runtime(
        config=config,
        tracker=build_tracker(config, credentials),
        git_manager=git_manager,
        provisioner=WorkspaceProvisioner(git_manager, repo_root, config.workspace_root),
        agent=ClaudeCodeAgent(command=config.agent_command),
        test_runner=TestRunner(
            test_command=config.test_command,
            timeout=config.test_timeout,
            xcode_scheme=config.xcode_scheme,
            xcode_destination=config.xcode_destination,
        ),
        sessions=SessionStore(config.sessions_file),
    )


def pipeline_options(
    config: EntrustConfig,
    skip_tests: bool,
    draft: bool,
    keep_workspace: bool,
    max_attempts: int | None = None,
) -> PipelineOptions:
    """Merge configuration defaults with command-line flags."""
    return PipelineOptions(
        base_branch=config.base_branch,
        skip_tests=skip_tests or not config.run_tests,
        draft=draft or config.draft,
        max_attempts=config.max_retry_attempts if max_attempts is None else max_attempts,
        keep_workspace=keep_workspace,
        max_agent_retries=config.max_agent_retries,
        agent_retry_delay=config.agent_retry_delay,
        agent_timeout=config.agent_timeout,
        additional_context=config.additional_context,
    )


def read_tickets(tickets: Iterable[str], ticket_file: Path | None) -> list[str]:
    """Collect ticket IDs from arguments and an optional file, without duplicates.

    The file holds one ticket per line; blank lines and ``#`` comments are
    ignored.
    """
    collected = [t.strip() for t in tickets if t.strip()]
    if ticket_file is not None:
        for line in ticket_file.read_text(encoding="utf-8").splitlines():
            line = line.split("#", 1)[0].strip()
            if line:
                collected.append(line)
    return list(dict.fromkeys(collected))


def remember_session(store: SessionStore, result: PipelineResult, skip_tests: bool) -> None:
    """Store the agent session behind a newly opened PR.

    Only successful runs that report a session handle are stored. A store
    failure is logged and does not affect the run's outcome.
    """
    if result.status != ResultStatus.SUCCEEDED:
        return
    if not (result.pr_url and result.session_id and result.branch):
        logger.debug("No session to remember for %s", result.ticket_id)
        return
    session = PRSession(
        session_id=result.session_id,
        ticket_id=result.ticket_id,
        branch=result.branch,
        skip_tests=skip_tests,
    )
    try:
        store.save(result.pr_url, session)
    except SessionStoreError as e:
        logger.warning("Could not save the session for %s: %s", result.pr_url, e)


def load_settings(ctx: click.Context, **overrides: str | None) -> EntrustConfig:
    """Load the configuration file selected on the command line."""
    return apply_overrides(load_config(ctx.obj.get("config_path")), **overrides)


def fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def repo_option(func):
    return click.option(
        "--repo", default=None, help="Override the GitHub repository (owner/repo)"
    )(func)


def base_branch_option(func):
    return click.option(
        "--base-branch", default=None, help="Override the branch PRs are opened against"
    )(func)


@click.group()
@click.version_option(package_name="entrust")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to config.yaml (default: $ENTRUST_CONFIG or ~/.entrust/config.yaml)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """entrust - turn tracker tickets into pull requests with an AI agent."""
    setup_logging(level="DEBUG" if verbose else None)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.argument("ticket")
@click.option("--skip-tests", is_flag=True, help="Do not run tests before committing")
@click.option("--draft", is_flag=True, help="Open the PR as a draft")
@click.option("--keep-worktree", is_flag=True, help="Leave the worktree on disk afterwards")
@click.option(
    "--max-attempts",
    type=click.IntRange(0, 10),
    default=None,
    help="Fix attempts after failing tests (default: from config)",
)
@repo_option
@base_branch_option
@click.option("--dry-run", is_flag=True, help="Show what would be done without doing it")
@click.pass_context
def run(
    ctx: click.Context,
    ticket: str,
    skip_tests: bool,
    draft: bool,
    keep_worktree: bool,
    max_attempts: int | None,
    repo: str | None,
    base_branch: str | None,
    dry_run: bool,
) -> None:
    """Implement a single TICKET and open a pull request."""
    try:
        config = load_settings(ctx, repo=repo, base_branch=base_branch)
        credentials = resolve_credentials(config)
    except ConfigError as e:
        fail(str(e))

    options = pipeline_options(config, skip_tests, draft, keep_worktree, max_attempts)
    if dry_run:
        click.echo("DRY RUN")
        click.echo(f"Ticket:      {ticket}")
        click.echo(f"Branch:      {branch_for_ticket(ticket)}")
        click.echo(f"Tracker:     {config.tracker}")
        click.echo(f"Repository:  {config.repo}")
        click.echo(f"Base branch: {options.base_branch}")
        click.echo(f"Tests:       {'skipped' if options.skip_tests else 'enabled'}")
        click.echo(f"Draft PR:    {'yes' if options.draft else 'no'}")
        click.echo("Configuration valid. Run without --dry-run to execute.")
        return

    try:
        runtime = build_runtime(config, credentials)
    except ConfigError as e:
        fail(str(e))

    try:
        pipeline = Pipeline(
            ticket,
            runtime.tracker,
            runtime.git_manager,
            runtime.provisioner,
            runtime.agent,
            runtime.test_runner,
            options,
        )
        result = pipeline.run()
        remember_session(runtime.sessions, result, options.skip_tests)
    finally:
        runtime.close()

    report_result(result)
    if not result.is_success:
        sys.exit(1)


def report_result(result: PipelineResult) -> None:
    """Print the outcome of a single pipeline."""
    if result.status == ResultStatus.SUCCEEDED:
        click.echo(f"Done! PR created: {result.pr_url}")
    elif result.status == ResultStatus.NO_CHANGES:
        click.echo(f"No changes were made for {result.ticket_id}. No PR created.")
    else:
        click.echo(f"{result.ticket_id} failed [{result.error}]: {result.message}", err=True)
    if result.workspace_path:
        click.echo(f"Worktree kept at {result.workspace_path}")


@main.command()
@click.argument("tickets", nargs=-1)
@click.option(
    "-f",
    "--file",
    "ticket_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File with one ticket ID per line",
)
@click.option(
    "-j",
    "--max-concurrent",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum tickets processed at once (default: from config)",
)
@click.option("--skip-tests", is_flag=True, help="Do not run tests before committing")
@click.option("--draft", is_flag=True, help="Open PRs as drafts")
@click.option("--keep-worktrees", is_flag=True, help="Leave worktrees on disk afterwards")
@repo_option
@base_branch_option
@click.option("--dry-run", is_flag=True, help="Print the plan without doing anything")
@click.pass_context
def parallel(
    ctx: click.Context,
    tickets: tuple[str, ...],
    ticket_file: Path | None,
    max_concurrent: int | None,
    skip_tests: bool,
    draft: bool,
    keep_worktrees: bool,
    repo: str | None,
    base_branch: str | None,
    dry_run: bool,
) -> None:
    """Implement several TICKETS concurrently, each in its own worktree."""
    ticket_ids = read_tickets(tickets, ticket_file)
    if not ticket_ids:
        fail("No tickets given. Pass ticket IDs or --file.")

    try:
        config = load_settings(ctx, repo=repo, base_branch=base_branch)
    except ConfigError as e:
        fail(str(e))

    concurrency = max_concurrent or config.max_concurrent
    options = pipeline_options(config, skip_tests, draft, keep_worktrees)

    if dry_run:
        click.echo(f"Would process {len(ticket_ids)} ticket(s), {concurrency} at a time:")
        for ticket_id in ticket_ids:
            click.echo(f"  - {ticket_id} -> {branch_for_ticket(ticket_id)}")
        click.echo(f"Repository: {config.repo}")
        click.echo(f"Base branch: {options.base_branch}")
        click.echo(f"Tests: {'skipped' if options.skip_tests else 'enabled'}")
        click.echo(f"Draft PRs: {'yes' if options.draft else 'no'}")
        return

    try:
        runtime = build_runtime(config, resolve_credentials(config))
    except ConfigError as e:
        fail(str(e))

    try:
        with (
            logging_redirect_tqdm(loggers=[logging.getLogger("entrust")]),
            tqdm(
                total=len(ticket_ids),
                desc="Tickets",
                unit="ticket",
                disable=len(ticket_ids) <= 1,
            ) as pbar,
        ):

            def on_progress(ticket_id: str, state: PipelineState) -> None:
                pbar.set_postfix_str(f"{ticket_id}: {state}")

            def make_pipeline(ticket_id: str) -> Pipeline:
                return Pipeline(
                    ticket_id,
                    runtime.tracker,
                    runtime.git_manager,
                    runtime.provisioner,
                    runtime.agent,
                    runtime.test_runner,
                    options,
                    progress_callback=on_progress,
                )

            def on_result(ticket_id: str, result: PipelineResult) -> None:
                remember_session(runtime.sessions, result, options.skip_tests)
                pbar.update(1)
                tqdm.write(f"{ticket_id}: {result.status}")

            scheduler = Scheduler(concurrency, make_pipeline, on_result=on_result)
            summary = scheduler.execute(ticket_ids)
    finally:
        runtime.close()

    click.echo("")
    click.echo(render_summary(summary))
    if not summary.all_succeeded:
        sys.exit(1)


@main.command()
@click.argument("ticket")
@click.argument("status", required=False)
@click.option("--list", "list_statuses", is_flag=True, help="List available statuses")
@click.option(
    "--tracker",
    "tracker_override",
    type=click.Choice(["jira", "linear"]),
    default=None,
    help="Override the configured task tracker",
)
@click.pass_context
def status(
    ctx: click.Context,
    ticket: str,
    status: str | None,
    list_statuses: bool,
    tracker_override: str | None,
) -> None:
    """Show or change the STATUS of TICKET."""
    try:
        config = load_settings(ctx)
        if tracker_override:
            config = config.model_copy(update={"tracker": tracker_override})
        tracker = build_tracker(config, resolve_credentials(config))
    except ConfigError as e:
        fail(str(e))

    try:
        if list_statuses or status is None:
            statuses = tracker.get_available_statuses(ticket)
            click.echo(f"Available statuses for {ticket}:")
            for item in statuses:
                click.echo(f"  - {item.name}")
                if item.description:
                    click.echo(f"    {item.description}")
            return

        click.echo(f"Changing status for {ticket} to '{status}'...")
        tracker.change_status(ticket, status)
        click.echo("Status changed successfully!")
    except InvalidStatusError as e:
        fail(f"Could not move to '{e.requested}'. Available: {', '.join(e.available)}")
    except TrackerError as e:
        fail(str(e))
    finally:
        tracker.close()


@main.command()
@click.option("--limit", type=click.IntRange(min=1), default=None, help="Show only the newest N")
@click.pass_context
def sessions(ctx: click.Context, limit: int | None) -> None:
    """List pull requests whose agent session can be continued."""
    try:
        config = load_settings(ctx)
        stored = SessionStore(config.sessions_file).all()
    except (ConfigError, SessionStoreError) as e:
        fail(str(e))

    if not stored:
        click.echo("No sessions stored yet")
        return

    entries = sorted(stored.items(), key=lambda item: item[1].created_at, reverse=True)
    click.echo(f"{len(entries)} PR session(s):")
    for index, (pr_url, session) in enumerate(entries[:limit], start=1):
        click.echo(f"{index}. {pr_url}")
        click.echo(
            f"   Ticket: {session.ticket_id}  Branch: {session.branch}  "
            f"Session: {session.session_id[:8]}...  "
            f"Created: {session.created_at:%Y-%m-%d %H:%M}"
        )
        if session.processed_comment_ids:
            click.echo(f"   Addressed comments: {len(session.processed_comment_ids)}")
    if limit is not None and len(entries) > limit:
        click.echo(f"... and {len(entries) - limit} more")


def find_session(runtime: Runtime, pr_url: str, number: int) -> PRSession:
    """Look up the session behind a PR.

    Falls back to the marker in the PR description, and stores what it finds
    there so later follow-ups can be recorded.

    Raises:
        click.ClickException: If no session is known for the PR.
    """
    session = runtime.sessions.get(pr_url)
    if session is not None:
        return session

    pr = runtime.git_manager.get_pull_request(number)
    session_id = extract_session_id(pr.body)
    if session_id is None:
        raise click.ClickException(
            f"No session found for {pr_url}. This PR may not have been created by entrust."
        )
    click.echo(f"Found session {session_id[:8]}... in the PR description")
    session = PRSession(
        session_id=session_id,
        ticket_id=ticket_from_title(pr.title) or f"PR-{number}",
        branch=pr.head_branch,
    )
    runtime.sessions.save(pr_url, session)
    return session


def run_follow_up(
    runtime: Runtime,
    pr_url: str,
    session: PRSession,
    prompt: str,
    skip_tests: bool,
    keep_worktree: bool,
) -> PipelineResult:
    """Resume a PR's session with ``prompt`` and record the newer session handle."""
    options = pipeline_options(
        runtime.config, skip_tests or session.skip_tests, False, keep_worktree
    )
    result = FollowUp(
        pr_url,
        session,
        prompt,
        runtime.git_manager,
        runtime.provisioner,
        runtime.agent,
        runtime.test_runner,
        options,
    ).run()
    if result.is_success and result.session_id:
        runtime.sessions.update(pr_url, session_id=result.session_id)
    return result


def report_follow_up(result: PipelineResult, branch: str) -> None:
    """Print the outcome of a follow-up."""
    if result.status == ResultStatus.SUCCEEDED:
        click.echo(f"Done! Changes pushed to {branch}")
        click.echo(f"   View PR: {result.pr_url}")
    elif result.status == ResultStatus.NO_CHANGES:
        click.echo("No changes were made. Nothing pushed.")
    else:
        click.echo(f"{result.ticket_id} failed [{result.error}]: {result.message}", err=True)
    if result.workspace_path:
        click.echo(f"Worktree kept at {result.workspace_path}")


def open_follow_up(
    ctx: click.Context, pr: str, repo: str | None
) -> tuple[Runtime, str, int]:
    """Load settings, resolve the PR reference and build the runtime."""
    try:
        config = load_settings(ctx, repo=repo)
        pr_url, number = parse_pr_reference(pr, config.repo)
        runtime = build_runtime(config, resolve_credentials(config))
    except (ConfigError, ValueError) as e:
        fail(str(e))
    return runtime, pr_url, number


@main.command()
@click.argument("pr")
@click.option(
    "--all", "include_processed", is_flag=True, help="Include comments addressed before"
)
@click.option("--skip-tests", is_flag=True, help="Do not run tests before pushing")
@click.option("--keep-worktree", is_flag=True, help="Leave the worktree on disk afterwards")
@repo_option
@click.pass_context
def feedback(
    ctx: click.Context,
    pr: str,
    include_processed: bool,
    skip_tests: bool,
    keep_worktree: bool,
    repo: str | None,
) -> None:
    """Address review feedback on PR by continuing its agent session.

    PR is a number or a GitHub URL. Comments count as feedback when they
    belong to a "Request changes" review, start with "entrust:" or mention
    "**entrust**".
    """
    runtime, pr_url, number = open_follow_up(ctx, pr, repo)
    try:
        session = find_session(runtime, pr_url, number)
        click.echo(f"PR {pr_url} (ticket {session.ticket_id}, branch {session.branch})")

        processed = () if include_processed else session.processed_comment_ids
        todo = actionable_comments(runtime.git_manager.get_review_comments(number), processed)
        if not todo:
            click.echo("No new actionable feedback found")
            return
        click.echo(f"Found {len(todo)} actionable comment(s)")

        result = run_follow_up(
            runtime, pr_url, session, build_feedback_prompt(todo), skip_tests, keep_worktree
        )
        if result.status == ResultStatus.SUCCEEDED:
            runtime.sessions.update(pr_url, processed_comment_ids=[c.id for c in todo])
    except (GitManagerError, SessionStoreError) as e:
        fail(str(e))
    finally:
        runtime.close()

    report_follow_up(result, session.branch)
    if not result.is_success:
        sys.exit(1)


@main.command("continue")
@click.argument("pr")
@click.argument("prompt")
@click.option("--skip-tests", is_flag=True, help="Do not run tests before pushing")
@click.option("--keep-worktree", is_flag=True, help="Leave the worktree on disk afterwards")
@repo_option
@click.pass_context
def continue_(
    ctx: click.Context,
    pr: str,
    prompt: str,
    skip_tests: bool,
    keep_worktree: bool,
    repo: str | None,
) -> None:
    """Continue the agent session behind PR with additional instructions."""
    runtime, pr_url, number = open_follow_up(ctx, pr, repo)
    try:
        session = find_session(runtime, pr_url, number)
        click.echo(f"Continuing session {session.session_id[:8]}... on {session.branch}")
        result = run_follow_up(runtime, pr_url, session, prompt, skip_tests, keep_worktree)
    except (GitManagerError, SessionStoreError) as e:
        fail(str(e))
    finally:
        runtime.close()

    report_follow_up(result, session.branch)
    if not result.is_success:
        sys.exit(1)


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Check configuration, credentials and required tools."""
    problems = 0

    def report(ok: bool, label: str, detail: str = "") -> None:
        nonlocal problems
        if not ok:
            problems += 1
        suffix = f" ({detail})" if detail else ""
        click.echo(f"[{'ok' if ok else 'FAIL'}] {label}{suffix}")

    try:
        config = load_settings(ctx)
    except ConfigError as e:
        report(False, "Configuration", str(e))
        sys.exit(1)
    report(True, "Configuration", f"{config.tracker}, {config.repo}")

    try:
        resolve_credentials(config)
    except ConfigError as e:
        report(False, "Credentials", str(e))
    else:
        report(True, "Credentials")

    try:
        root = GitManager(config.repo).repo_root()
    except GitManagerError as e:
        report(False, "Git repository", str(e))
    else:
        report(True, "Git repository", str(root))

    agent = ClaudeCodeAgent(command=config.agent_command)
    report(agent.is_available(), f"{agent.name} CLI", config.agent_command)

    if config.use_gh_cli:
        report(shutil.which("gh") is not None, "GitHub CLI", "gh")

    if problems:
        click.echo(f"\n{problems} problem(s) found", err=True)
        sys.exit(1)
    click.echo("\nAll checks passed")


if __name__ == "__main__":
    main()
