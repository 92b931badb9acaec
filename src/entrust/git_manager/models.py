"""Data models for Git Manager."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PullRequestParams:
    """Pull request creation parameters."""

    title: str
    body: str
    branch: str
    base_branch: str
    draft: bool = False


@dataclass(frozen=True)
class PullRequestResult:
    """Pull request data."""

    url: str
    number: int | None = None


def extract_pr_number(url: str) -> int | None:
    """Extract the PR number from a URL like https://github.com/o/r/pull/123."""
    last = url.rstrip("/").rsplit("/", 1)[-1]
    return int(last) if last.isdigit() else None


@dataclass(frozen=True)
class PullRequestInfo:
    """An existing pull request."""

    number: int
    url: str
    title: str
    body: str
    head_branch: str
    base_branch: str


@dataclass(frozen=True)
class ReviewComment:
    """A piece of PR feedback: an inline review comment, a review body or a
    conversation comment.

    Attributes:
        id: GitHub comment or review ID.
        author: Login of the commenter.
        body: Comment text.
        path: File the comment is attached to, for inline comments.
        line: Line the comment is attached to, for inline comments.
        changes_requested: Whether it belongs to a "Request changes" review.
    """

    id: int
    author: str
    body: str
    path: str | None = None
    line: int | None = None
    changes_requested: bool = False


def parse_pr_reference(reference: str, repo: str) -> tuple[str, int]:
    """Turn a PR number or URL into ``(url, number)``.

    Args:
        reference: "456" or "https://github.com/owner/repo/pull/456".
        repo: "owner/repo" used to build the URL from a bare number.

    Raises:
        ValueError: If ``reference`` is neither.
    """
    reference = reference.strip()
    if reference.startswith(("http://", "https://")):
        url = reference.rstrip("/")
        number = extract_pr_number(url)
        if number is None or "/pull/" not in url:
            raise ValueError(f"Not a pull request URL: {reference}")
        return url, number
    if reference.lstrip("#").isdigit():
        number = int(reference.lstrip("#"))
        return f"https://github.com/{repo}/pull/{number}", number
    raise ValueError(f"PR must be a number or a GitHub URL, got '{reference}'")
