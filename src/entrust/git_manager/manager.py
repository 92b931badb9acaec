"""GitManager - Handles git and GitHub operations for the pipeline."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Any

import httpx

from entrust.git_manager.exceptions import (
    CommitError,
    GitManagerError,
    MissingTokenError,
    PRError,
    PRFetchError,
    PushError,
    WorktreeError,
)
from entrust.git_manager.models import (
    PullRequestInfo,
    PullRequestParams,
    PullRequestResult,
    ReviewComment,
    extract_pr_number,
)

logger = logging.getLogger("entrust.git_manager")


class GitManager:
    """Manages git worktrees, commits and GitHub pull requests.

    Local operations shell out to ``git``. Pull requests go through the
    ``gh`` CLI or, when ``use_gh_cli`` is False, the GitHub REST API.
    Every method takes the directory it operates on, so one instance can be
    shared by all concurrently running pipelines. Worktree creation and
    removal touch the shared repository metadata and are serialized.
    """

    def __init__(
        self,
        repo: str,
        token: str | None = None,
        use_gh_cli: bool = True,
        base_url: str = "https://api.github.com",
    ) -> None:
        """Initialize Git Manager.

        Args:
            repo: GitHub repo in "owner/repo" format
            token: GitHub personal access token (required for the REST API)
            use_gh_cli: Create PRs with ``gh pr create`` instead of the REST API
            base_url: GitHub API base URL (for testing/enterprise)
        """
        self.repo = repo
        self.token = token
        self.use_gh_cli = use_gh_cli
        self.base_url = base_url.rstrip("/")
        self._client: httpx.Client | None = None
        # Guards worktree add and prune on the shared repository
        self._worktree_lock = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client for GitHub API."""
        if self._client is None:
            if not self.token:
                raise MissingTokenError("GitHub token required when not using the GitHub CLI")
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=30.0,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def _run_git(self, directory: str | Path, *args: str) -> str:
        """Run a git command against a directory.

        Args:
            directory: Repository or worktree directory
            *args: Git command arguments

        Returns:
            Command stdout

        Raises:
            subprocess.CalledProcessError: If command fails
        """
        result = subprocess.run(
            ["git", "-C", str(directory), *args],
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    def repo_root(self, directory: str | Path = ".") -> Path:
        """Return the top-level directory of the repository containing ``directory``."""
        try:
            return Path(self._run_git(directory, "rev-parse", "--show-toplevel"))
        except subprocess.CalledProcessError as e:
            raise GitManagerError(f"Not inside a git repository: {directory}") from e

    def fetch_latest(self, branch: str, directory: str | Path) -> None:
        """Fetch ``branch`` from origin.

        Raises:
            GitManagerError: If the fetch fails
        """
        logger.debug("Fetching origin/%s in %s", branch, directory)
        try:
            self._run_git(directory, "fetch", "origin", branch)
        except subprocess.CalledProcessError as e:
            raise GitManagerError(f"Failed to fetch origin/{branch}: {e.stderr}") from e

    def branch_exists(self, branch: str, directory: str | Path) -> bool:
        """Check whether a local branch exists."""
        try:
            self._run_git(directory, "show-ref", "--verify", "--quiet", f"refs/heads/{branch}")
        except subprocess.CalledProcessError:
            return False
        return True

    def create_worktree(
        self,
        path: str | Path,
        branch: str,
        base_branch: str,
        repo_root: str | Path,
    ) -> None:
        """Add a worktree at ``path`` with ``branch`` checked out.

        An existing local branch is checked out as is. Otherwise the latest
        ``origin/<base_branch>`` is fetched and the branch is created from it.

        Raises:
            WorktreeError: If fetching or adding the worktree fails
        """
        try:
            with self._worktree_lock:
                self._add_worktree(path, branch, base_branch, repo_root)
        except subprocess.CalledProcessError as e:
            logger.error("Failed to create worktree %s: %s", path, e.stderr)
            raise WorktreeError(
                f"Failed to create worktree '{path}' on branch '{branch}': {e.stderr}"
            ) from e
        except GitManagerError as e:
            raise WorktreeError(f"Failed to create worktree '{path}': {e}") from e
        logger.info("Created worktree %s on branch %s", path, branch)

    def _add_worktree(
        self, path: str | Path, branch: str, base_branch: str, repo_root: str | Path
    ) -> None:
        if self.branch_exists(branch, repo_root):
            logger.info("Reusing existing branch %s for worktree %s", branch, path)
            self._run_git(repo_root, "worktree", "add", str(path), branch)
        else:
            self.fetch_latest(base_branch, repo_root)
            self._run_git(
                repo_root, "worktree", "add", str(path), "-b", branch, f"origin/{base_branch}"
            )

    def remove_worktree(self, path: str | Path, repo_root: str | Path) -> None:
        """Delete a worktree directory and prune its metadata.

        Raises:
            WorktreeError: If the directory cannot be removed or pruning fails
        """
        path = Path(path)
        try:
            if path.exists():
                shutil.rmtree(path)
            with self._worktree_lock:
                self._run_git(repo_root, "worktree", "prune")
        except OSError as e:
            raise WorktreeError(f"Failed to remove worktree '{path}': {e}") from e
        except subprocess.CalledProcessError as e:
            raise WorktreeError(f"Failed to prune worktrees: {e.stderr}") from e
        logger.debug("Removed worktree %s", path)

    def status_short(self, directory: str | Path) -> str:
        """Return ``git status --short`` for a directory."""
        try:
            return self._run_git(directory, "status", "--short")
        except subprocess.CalledProcessError as e:
            raise GitManagerError(f"Failed to read status of {directory}: {e.stderr}") from e

    def commit_and_push(
        self,
        message: str,
        branch: str,
        directory: str | Path,
        base_branch: str | None = None,
    ) -> bool:
        """Stage everything, commit and push ``branch``.

        The agent may have committed on its own, so a clean tree with commits
        ahead of ``origin/<base_branch>`` still counts as changes.

        Returns:
            False if there was nothing to commit or push, True otherwise.

        Raises:
            CommitError: If staging or committing fails
            PushError: If the push fails
        """
        try:
            self._run_git(directory, "add", "--all")
            staged = self._run_git(directory, "diff", "--cached", "--name-only")
            if staged:
                logger.info("Committing %d file(s) on %s", len(staged.splitlines()), branch)
                self._run_git(directory, "commit", "-m", message)
            elif not self._has_commits_ahead(directory, base_branch):
                logger.info("Nothing to commit on %s", branch)
                return False
        except subprocess.CalledProcessError as e:
            logger.error("Failed to commit on %s: %s", branch, e.stderr)
            raise CommitError(f"Failed to commit on '{branch}': {e.stderr}") from e

        logger.info("Pushing branch %s to origin", branch)
        try:
            self._run_git(directory, "push", "-u", "origin", branch)
        except subprocess.CalledProcessError as e:
            logger.error("Failed to push branch %s: %s", branch, e.stderr)
            raise PushError(f"Failed to push branch '{branch}': {e.stderr}") from e
        logger.info("Pushed branch %s", branch)
        return True

    def _has_commits_ahead(self, directory: str | Path, base_branch: str | None) -> bool:
        if base_branch is None:
            return False
        count = self._run_git(directory, "rev-list", "--count", f"origin/{base_branch}..HEAD")
        return int(count or "0") > 0

    def create_pull_request(self, params: PullRequestParams) -> PullRequestResult:
        """Create a pull request.

        Raises:
            PRError: If PR creation fails
        """
        logger.info("Creating PR: %s (%s -> %s)", params.title, params.branch, params.base_branch)
        if self.use_gh_cli:
            pr = self._create_pr_with_gh(params)
        else:
            pr = self._create_pr_with_api(params)
        logger.info("Created PR %s", pr.url)
        return pr

    def _create_pr_with_gh(self, params: PullRequestParams) -> PullRequestResult:
        cmd = [
            "gh", "pr", "create",
            "--repo", self.repo,
            "--title", params.title,
            "--body", params.body,
            "--base", params.base_branch,
            "--head", params.branch,
        ]  # fmt: skip
        if params.draft:
            cmd.append("--draft")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except FileNotFoundError as e:
            raise PRError("GitHub CLI not found. Ensure 'gh' is installed and in PATH.") from e
        except subprocess.CalledProcessError as e:
            logger.error("gh pr create failed: %s", e.stderr)
            raise PRError(f"Failed to create PR: {e.stderr}") from e

        lines = result.stdout.strip().splitlines()
        if not lines:
            raise PRError("gh pr create returned no URL")
        url = lines[-1].strip()
        return PullRequestResult(url=url, number=extract_pr_number(url))

    def _create_pr_with_api(self, params: PullRequestParams) -> PullRequestResult:
        try:
            response = self.client.post(
                f"/repos/{self.repo}/pulls",
                json={
                    "title": params.title,
                    "body": params.body,
                    "head": params.branch,
                    "base": params.base_branch,
                    "draft": params.draft,
                },
            )
        except httpx.HTTPError as e:
            raise PRError(f"Failed to create PR: {e}") from e

        if response.status_code != 201:
            logger.error("Failed to create PR: %s", response.text)
            raise PRError(f"Failed to create PR: {response.status_code} - {response.text}")

        data = response.json()
        return PullRequestResult(url=data["html_url"], number=data.get("number"))

    def get_pull_request(self, number: int) -> PullRequestInfo:
        """Fetch title, body and branches of a pull request.

        Raises:
            PRFetchError: If the PR cannot be read
        """
        data = self._github_get(f"/repos/{self.repo}/pulls/{number}")
        try:
            return PullRequestInfo(
                number=int(data["number"]),
                url=data["html_url"],
                title=data.get("title") or "",
                body=data.get("body") or "",
                head_branch=data["head"]["ref"],
                base_branch=data["base"]["ref"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PRFetchError(f"Malformed pull request #{number}: {e!r}") from e

    def get_review_comments(self, number: int) -> list[ReviewComment]:
        """Collect the feedback left on a pull request.

        Includes inline review comments, the bodies of submitted reviews and
        conversation comments, oldest first within each kind. Only the first
        100 of each kind are read.

        Raises:
            PRFetchError: If any of the lists cannot be read
        """
        reviews = self._github_get(f"/repos/{self.repo}/pulls/{number}/reviews?per_page=100")
        inline = self._github_get(f"/repos/{self.repo}/pulls/{number}/comments?per_page=100")
        conversation = self._github_get(
            f"/repos/{self.repo}/issues/{number}/comments?per_page=100"
        )

        try:
            requesting_changes = {
                review["id"] for review in reviews if review.get("state") == "CHANGES_REQUESTED"
            }
            comments = [
                _review_comment(review, changes_requested=review["id"] in requesting_changes)
                for review in reviews
                if (review.get("body") or "").strip()
            ]
            comments.extend(
                _review_comment(
                    comment,
                    changes_requested=comment.get("pull_request_review_id") in requesting_changes,
                )
                for comment in inline
            )
            comments.extend(_review_comment(comment) for comment in conversation)
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise PRFetchError(f"Malformed comments on pull request #{number}: {e!r}") from e

        logger.debug("Read %d comment(s) on PR #%d", len(comments), number)
        return comments

    def _github_get(self, path: str) -> Any:
        """GET a GitHub REST path through ``gh api`` or the HTTP client."""
        if self.use_gh_cli:
            try:
                result = subprocess.run(
                    ["gh", "api", path.lstrip("/")],
                    capture_output=True,
                    text=True,
                    check=True,
                )
            except FileNotFoundError as e:
                raise PRFetchError(
                    "GitHub CLI not found. Ensure 'gh' is installed and in PATH."
                ) from e
            except subprocess.CalledProcessError as e:
                raise PRFetchError(f"GitHub request {path} failed: {e.stderr}") from e
            body = result.stdout
        else:
            try:
                response = self.client.get(path)
            except httpx.HTTPError as e:
                raise PRFetchError(f"GitHub request {path} failed: {e}") from e
            if response.status_code != 200:
                raise PRFetchError(
                    f"GitHub request {path} failed: {response.status_code} - {response.text}"
                )
            body = response.text

        try:
            return json.loads(body)
        except ValueError as e:
            raise PRFetchError(f"GitHub request {path} returned invalid JSON: {e}") from e


def _review_comment(data: dict[str, Any], changes_requested: bool = False) -> ReviewComment:
    line = data.get("line") or data.get("original_line")
    return ReviewComment(
        id=int(data["id"]),
        author=(data.get("user") or {}).get("login", "unknown"),
        body=data.get("body") or "",
        path=data.get("path"),
        line=int(line) if line is not None else None,
        changes_requested=changes_requested,
    )
