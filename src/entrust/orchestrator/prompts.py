"""Prompt and pull request text built from tickets and agent output."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from entrust.logging import tail_output

if TYPE_CHECKING:
    from collections.abc import Iterable

    from entrust.git_manager import ReviewComment
    from entrust.tracker import TaskIssue

MAX_FAILURE_OUTPUT = 8000

_NEXT_SECTION = re.compile(r"\*\*[A-Z][A-Z ]*:?\*\*")
_SESSION_MARKER = re.compile(r"<!--\s*entrust-session:\s*([A-Za-z0-9-]+)\s*-->")


def build_task_prompt(issue: TaskIssue, additional_context: str | None = None) -> str:
    """Build the initial implementation prompt for a ticket.

    The agent is asked to finish with a PR summary in CONTEXT / DESCRIPTION /
    CHANGES sections, which ``build_pr_body`` later extracts.
    """
    prompt_parts = [
        f"# Task: {issue.title}",
        "",
        "## Description",
        issue.description or "No description provided",
    ]

    if additional_context:
        prompt_parts.extend(["", "## Additional Context", additional_context.strip()])

    prompt_parts.extend(
        [
            "",
            "## Instructions",
            "Please implement this feature completely. Follow these guidelines:",
            "- Write clean, well-structured code",
            "- Include appropriate error handling",
            "- Add comments where logic isn't self-evident",
            "- Ensure the code compiles without errors",
            "",
            "## Pull Request Summary",
            "After completing the implementation, provide a summary for the pull request "
            "in the following format:",
            "",
            "**CONTEXT:**",
            "Explain the context and WHY this change is being made from a product "
            "perspective. What problem does this solve?",
            "",
            "**DESCRIPTION:**",
            "Describe HOW this task was accomplished: implementation approach, "
            "architecture decisions and integration points.",
            "",
            "**CHANGES:**",
            "List the specific changes made to the codebase (files added or modified, "
            "functionality added or changed).",
            "",
            "When you're done, confirm the implementation is complete and provide the PR summary.",
        ]
    )
    return "\n".join(prompt_parts)


def build_fix_prompt(test_output: str, attempt: int) -> str:
    """Build the follow-up prompt asking the agent to fix failing tests.

    Args:
        test_output: Output of the failing test run. Only its tail is kept.
        attempt: 1-based number of the fix attempt being requested.
    """
    prompt_parts = [
        "The tests failed with the following output:",
        "",
        "```",
        tail_output(test_output.strip(), MAX_FAILURE_OUTPUT),
        "```",
        "",
        "Please fix the code to make the tests pass. "
        "Review what you implemented and correct any issues.",
    ]
    if attempt > 1:
        prompt_parts.append(
            f"This is attempt {attempt}, please look more carefully at the error."
        )
    return "\n".join(prompt_parts)


def extract_section(text: str, name: str) -> str | None:
    """Extract a ``**NAME:**`` section from agent output.

    The section runs until the next bold upper-case header or the end of the
    text. Matching of ``name`` is case-insensitive; the colon is optional.

    Returns:
        The stripped section body, or None if the header is absent or the
        section is empty.
    """
    match = re.search(rf"\*\*{re.escape(name)}:?\*\*", text, flags=re.IGNORECASE)
    if match is None:
        return None
    remainder = text[match.end() :]
    next_match = _NEXT_SECTION.search(remainder)
    if next_match is not None:
        remainder = remainder[: next_match.start()]
    section = remainder.strip()
    return section or None


def build_pr_body(
    issue: TaskIssue,
    issue_url: str,
    agent_output: str,
    agent_name: str,
    session_id: str | None = None,
) -> str:
    """Build the PR description from the issue and the agent's summary.

    With a ``session_id`` the body ends in a hidden marker, so the session
    can still be found from the PR when the local session file is gone.
    """
    context = extract_section(agent_output, "CONTEXT") or f"Implements {issue.title}"
    description = extract_section(agent_output, "DESCRIPTION") or (
        issue.description or "No description provided"
    )
    changes = extract_section(agent_output, "CHANGES") or "See commit history for detailed changes"

    body = "\n".join(
        [
            f"Resolves [{issue.id}]({issue_url})",
            "",
            "## Context",
            context,
            "",
            "## Description",
            description,
            "",
            "## Changes in the codebase",
            changes,
            "",
            "---",
            f"Automated by entrust using {agent_name}",
        ]
    )
    if session_id:
        body += "\n\n" + session_marker(session_id)
    return body


def commit_message(ticket_id: str, title: str) -> str:
    """Commit message and PR title for a ticket."""
    return f"[{ticket_id}] {title}"


def ticket_from_title(title: str) -> str | None:
    """Recover the ticket ID from a title built by ``commit_message``."""
    match = re.match(r"\s*\[([^\]]+)\]", title)
    return match.group(1) if match else None


def session_marker(session_id: str) -> str:
    """Hidden PR body line recording the agent session."""
    return f"<!-- entrust-session: {session_id} -->"


def extract_session_id(pr_body: str) -> str | None:
    """Read the session recorded by ``session_marker`` from a PR body."""
    match = _SESSION_MARKER.search(pr_body or "")
    return match.group(1) if match else None


def is_actionable(comment: ReviewComment) -> bool:
    """Whether a review comment asks entrust for changes.

    Comments count when they belong to a "Request changes" review, start
    with ``entrust:`` or mention ``**entrust**`` / ``**entrust:**``.
    """
    if comment.changes_requested:
        return True
    body = comment.body.strip().lower()
    return body.startswith("entrust:") or "**entrust**" in body or "**entrust:**" in body


def actionable_comments(
    comments: Iterable[ReviewComment], processed_ids: Iterable[int] = ()
) -> list[ReviewComment]:
    """Actionable comments that were not handed to the agent before."""
    seen = set(processed_ids)
    return [c for c in comments if c.id not in seen and is_actionable(c)]


def build_feedback_prompt(comments: list[ReviewComment]) -> str:
    """Build the prompt asking the agent to address PR review feedback."""
    prompt_parts = [
        "The PR received code review feedback. Please address the following comments:",
        "",
    ]

    groups = [
        ("[From reviews requesting changes:]", [c for c in comments if c.changes_requested]),
        ("[From comments with entrust trigger:]", [c for c in comments if not c.changes_requested]),
    ]
    for heading, group in groups:
        if not group:
            continue
        prompt_parts.extend([heading, ""])
        for comment in group:
            if comment.path:
                location = f"File: {comment.path}"
                if comment.line is not None:
                    location += f", Line: {comment.line}"
                prompt_parts.append(location)
            prompt_parts.extend([f"@{comment.author}: {comment.body.strip()}", ""])

    prompt_parts.extend(
        [
            "---",
            "",
            "Please make the necessary changes to address this feedback. Follow the same "
            "coding standards you used in the original implementation.",
            "",
            "If any feedback is unclear or requires discussion, explain what clarification "
            "you need.",
        ]
    )
    return "\n".join(prompt_parts)


def feedback_commit_message(ticket_id: str) -> str:
    """Commit message for changes made in a follow-up session."""
    return f"[{ticket_id}] Address PR feedback"
