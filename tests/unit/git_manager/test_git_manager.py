"""Unit tests for GitManager."""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import httpx
import pytest

from entrust.git_manager import (
    CommitError,
    GitManager,
    GitManagerError,
    MissingTokenError,
    PRError,
    PRFetchError,
    PullRequestInfo,
    PullRequestParams,
    PullRequestResult,
    PushError,
    ReviewComment,
    WorktreeError,
    parse_pr_reference,
)

REPO_ROOT = Path("/tmp/repo")
WORKTREE = Path("/tmp/entrust-ios-1-abcd1234")


@pytest.fixture
def mock_client() -> MagicMock:
    """Create a mock HTTP client."""
    return MagicMock()


@pytest.fixture
def manager(mock_client: MagicMock) -> GitManager:
    """Create a GitManager using the REST API with a mocked client."""
    mgr = GitManager(repo="owner/repo", token="test-token", use_gh_cli=False)
    mgr._client = mock_client
    return mgr


@pytest.fixture
def gh_manager() -> GitManager:
    """Create a GitManager that opens PRs with the gh CLI."""
    return GitManager(repo="owner/repo")


def _git_error(stderr: str) -> subprocess.CalledProcessError:
    return subprocess.CalledProcessError(1, "git", stderr=stderr)


@pytest.fixture
def params() -> PullRequestParams:
    return PullRequestParams(
        title="[IOS-1] Add login",
        body="Body",
        branch="feature/ios-1",
        base_branch="main",
    )


@pytest.mark.unit
class TestCreateWorktree:
    """Tests for create_worktree."""

    def test_new_branch_from_fresh_base(self, manager: GitManager) -> None:
        """A missing branch is created from the freshly fetched base."""
        with (
            patch.object(manager, "branch_exists", return_value=False),
            patch.object(manager, "_run_git") as mock_git,
        ):
            manager.create_worktree(WORKTREE, "feature/ios-1", "develop", REPO_ROOT)

        assert mock_git.call_args_list == [
            call(REPO_ROOT, "fetch", "origin", "develop"),
            call(REPO_ROOT, "worktree", "add", str(WORKTREE), "-b", "feature/ios-1", "origin/develop"),
        ]

    def test_existing_branch_is_reused(self, manager: GitManager) -> None:
        """An existing local branch is checked out without fetching."""
        with (
            patch.object(manager, "branch_exists", return_value=True),
            patch.object(manager, "_run_git") as mock_git,
        ):
            manager.create_worktree(WORKTREE, "feature/ios-1", "main", REPO_ROOT)

        mock_git.assert_called_once_with(REPO_ROOT, "worktree", "add", str(WORKTREE), "feature/ios-1")

    def test_git_failure_raises_worktree_error(self, manager: GitManager) -> None:
        """WorktreeError names the path when git fails."""
        with (
            patch.object(manager, "branch_exists", return_value=True),
            patch.object(manager, "_run_git", side_effect=_git_error("already exists")),
        ):
            with pytest.raises(WorktreeError) as exc_info:
                manager.create_worktree(WORKTREE, "feature/ios-1", "main", REPO_ROOT)

        assert str(WORKTREE) in str(exc_info.value)

    def test_fetch_failure_raises_worktree_error(self, manager: GitManager) -> None:
        """A failing fetch of the base branch is reported as WorktreeError."""
        with (
            patch.object(manager, "branch_exists", return_value=False),
            patch.object(manager, "_run_git", side_effect=_git_error("no such ref")),
        ):
            with pytest.raises(WorktreeError):
                manager.create_worktree(WORKTREE, "feature/ios-1", "main", REPO_ROOT)


@pytest.mark.unit
class TestRemoveWorktree:
    """Tests for remove_worktree."""

    def test_removes_directory_and_prunes(self, manager: GitManager, tmp_path: Path) -> None:
        """Directory deleted, then worktree metadata pruned."""
        worktree = tmp_path / "wt"
        (worktree / "sub").mkdir(parents=True)
        with patch.object(manager, "_run_git") as mock_git:
            manager.remove_worktree(worktree, REPO_ROOT)

        assert not worktree.exists()
        mock_git.assert_called_once_with(REPO_ROOT, "worktree", "prune")

    def test_missing_directory_still_prunes(self, manager: GitManager, tmp_path: Path) -> None:
        """Removing an already deleted worktree only prunes."""
        with patch.object(manager, "_run_git") as mock_git:
            manager.remove_worktree(tmp_path / "gone", REPO_ROOT)

        mock_git.assert_called_once_with(REPO_ROOT, "worktree", "prune")

    def test_prune_failure_raises(self, manager: GitManager, tmp_path: Path) -> None:
        """WorktreeError raised when pruning fails."""
        with patch.object(manager, "_run_git", side_effect=_git_error("locked")):
            with pytest.raises(WorktreeError):
                manager.remove_worktree(tmp_path / "gone", REPO_ROOT)


@pytest.mark.unit
class TestCommitAndPush:
    """Tests for commit_and_push."""

    def test_commits_and_pushes_staged_changes(self, manager: GitManager) -> None:
        """Staged changes are committed with the message and pushed."""
        with patch.object(manager, "_run_git") as mock_git:
            mock_git.side_effect = lambda directory, *args: (
                "a.py\nb.py" if args[:2] == ("diff", "--cached") else ""
            )
            pushed = manager.commit_and_push("[IOS-1] Add login", "feature/ios-1", WORKTREE, "main")

        assert pushed is True
        mock_git.assert_any_call(WORKTREE, "add", "--all")
        mock_git.assert_any_call(WORKTREE, "commit", "-m", "[IOS-1] Add login")
        mock_git.assert_any_call(WORKTREE, "push", "-u", "origin", "feature/ios-1")

    def test_nothing_to_commit_returns_false(self, manager: GitManager) -> None:
        """Clean tree with no commits ahead of base: no commit, no push."""
        with patch.object(manager, "_run_git") as mock_git:
            mock_git.side_effect = lambda directory, *args: (
                "0" if args[0] == "rev-list" else ""
            )
            pushed = manager.commit_and_push("msg", "feature/ios-1", WORKTREE, "main")

        assert pushed is False
        commands = [c.args[1] for c in mock_git.call_args_list]
        assert "commit" not in commands
        assert "push" not in commands

    def test_agent_commits_still_pushed(self, manager: GitManager) -> None:
        """Clean tree but commits ahead of base: push without a new commit."""
        with patch.object(manager, "_run_git") as mock_git:
            mock_git.side_effect = lambda directory, *args: (
                "2" if args[0] == "rev-list" else ""
            )
            pushed = manager.commit_and_push("msg", "feature/ios-1", WORKTREE, "main")

        assert pushed is True
        mock_git.assert_any_call(WORKTREE, "rev-list", "--count", "origin/main..HEAD")
        mock_git.assert_any_call(WORKTREE, "push", "-u", "origin", "feature/ios-1")
        assert "commit" not in [c.args[1] for c in mock_git.call_args_list]

    def test_without_base_branch_clean_tree_is_no_changes(self, manager: GitManager) -> None:
        """Without a base branch only staged changes count."""
        with patch.object(manager, "_run_git", return_value="") as mock_git:
            assert manager.commit_and_push("msg", "feature/ios-1", WORKTREE) is False

        assert "rev-list" not in [c.args[1] for c in mock_git.call_args_list]

    def test_commit_failure_raises_commit_error(self, manager: GitManager) -> None:
        """CommitError raised when git commit fails."""

        def fake_git(directory, *args):
            if args[0] == "commit":
                raise _git_error("hook failed")
            return "a.py" if args[0] == "diff" else ""

        with patch.object(manager, "_run_git", side_effect=fake_git):
            with pytest.raises(CommitError):
                manager.commit_and_push("msg", "feature/ios-1", WORKTREE, "main")

    def test_push_failure_raises_push_error(self, manager: GitManager) -> None:
        """PushError names the branch when the push is rejected."""

        def fake_git(directory, *args):
            if args[0] == "push":
                raise _git_error("rejected")
            return "a.py" if args[0] == "diff" else ""

        with patch.object(manager, "_run_git", side_effect=fake_git):
            with pytest.raises(PushError) as exc_info:
                manager.commit_and_push("msg", "feature/ios-1", WORKTREE, "main")

        assert "feature/ios-1" in str(exc_info.value)

    def test_commit_and_push_errors_share_base(self) -> None:
        """Callers can catch every git failure through GitManagerError."""
        assert issubclass(CommitError, GitManagerError)
        assert issubclass(PushError, GitManagerError)


@pytest.mark.unit
class TestCreatePullRequestWithApi:
    """Tests for create_pull_request through the REST API."""

    def test_returns_url_and_number(
        self, manager: GitManager, mock_client: MagicMock, params: PullRequestParams
    ) -> None:
        """PR URL and number taken from the API response."""
        mock_response = MagicMock()
        mock_response.status_code = 201
        mock_response.json.return_value = {
            "html_url": "https://github.com/owner/repo/pull/7",
            "number": 7,
        }
        mock_client.post.return_value = mock_response

        pr = manager.create_pull_request(params)

        assert pr == PullRequestResult(url="https://github.com/owner/repo/pull/7", number=7)

    def test_sends_correct_payload(
        self, manager: GitManager, mock_client: MagicMock, params: PullRequestParams
    ) -> None:
        """Correct data sent to GitHub API."""
        mock_response = MagicMock()
        mock_response.status_code = 201
        mock_response.json.return_value = {"html_url": "https://github.com/o/r/pull/1"}
        mock_client.post.return_value = mock_response

        manager.create_pull_request(params)

        mock_client.post.assert_called_once_with(
            "/repos/owner/repo/pulls",
            json={
                "title": "[IOS-1] Add login",
                "body": "Body",
                "head": "feature/ios-1",
                "base": "main",
                "draft": False,
            },
        )

    def test_api_failure_raises_pr_error(
        self, manager: GitManager, mock_client: MagicMock, params: PullRequestParams
    ) -> None:
        """PRError carries the status code."""
        mock_response = MagicMock()
        mock_response.status_code = 422
        mock_response.text = "Validation failed"
        mock_client.post.return_value = mock_response

        with pytest.raises(PRError) as exc_info:
            manager.create_pull_request(params)

        assert "422" in str(exc_info.value)

    def test_transport_error_raises_pr_error(
        self, manager: GitManager, mock_client: MagicMock, params: PullRequestParams
    ) -> None:
        """httpx errors are wrapped in PRError."""
        mock_client.post.side_effect = httpx.ConnectError("boom")

        with pytest.raises(PRError):
            manager.create_pull_request(params)

    def test_missing_token_raises(self, params: PullRequestParams) -> None:
        """The REST API needs a token."""
        mgr = GitManager(repo="owner/repo", use_gh_cli=False)

        with pytest.raises(MissingTokenError):
            mgr.create_pull_request(params)


@pytest.mark.unit
class TestCreatePullRequestWithGh:
    """Tests for create_pull_request through the gh CLI."""

    def test_runs_gh_and_parses_url(self, gh_manager: GitManager, params: PullRequestParams) -> None:
        """The last stdout line of gh is the PR URL."""
        completed = subprocess.CompletedProcess(
            args=[], returncode=0, stdout="Creating pull request...\nhttps://github.com/owner/repo/pull/12\n"
        )
        with patch("entrust.git_manager.manager.subprocess.run", return_value=completed) as mock_run:
            pr = gh_manager.create_pull_request(params)

        assert pr.url == "https://github.com/owner/repo/pull/12"
        assert pr.number == 12
        cmd = mock_run.call_args.args[0]
        assert cmd[:3] == ["gh", "pr", "create"]
        assert cmd[cmd.index("--head") + 1] == "feature/ios-1"
        assert cmd[cmd.index("--base") + 1] == "main"
        assert "--draft" not in cmd

    def test_draft_flag(self, gh_manager: GitManager) -> None:
        """Draft PRs pass --draft."""
        draft = PullRequestParams(
            title="t", body="b", branch="feature/x", base_branch="main", draft=True
        )
        completed = subprocess.CompletedProcess(
            args=[], returncode=0, stdout="https://github.com/owner/repo/pull/3\n"
        )
        with patch("entrust.git_manager.manager.subprocess.run", return_value=completed) as mock_run:
            gh_manager.create_pull_request(draft)

        assert "--draft" in mock_run.call_args.args[0]

    def test_gh_missing_raises_pr_error(
        self, gh_manager: GitManager, params: PullRequestParams
    ) -> None:
        """PRError when gh is not installed."""
        with patch("entrust.git_manager.manager.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(PRError) as exc_info:
                gh_manager.create_pull_request(params)

        assert "gh" in str(exc_info.value)

    def test_gh_failure_raises_pr_error(
        self, gh_manager: GitManager, params: PullRequestParams
    ) -> None:
        """PRError carries gh's stderr."""
        error = subprocess.CalledProcessError(1, "gh", stderr="a pull request already exists")
        with patch("entrust.git_manager.manager.subprocess.run", side_effect=error):
            with pytest.raises(PRError) as exc_info:
                gh_manager.create_pull_request(params)

        assert "already exists" in str(exc_info.value)


@pytest.mark.unit
class TestRepoRoot:
    """Tests for repo_root."""

    def test_returns_toplevel(self, manager: GitManager) -> None:
        """repo_root wraps rev-parse --show-toplevel."""
        with patch.object(manager, "_run_git", return_value="/work/repo") as mock_git:
            assert manager.repo_root("/work/repo/sub") == Path("/work/repo")

        mock_git.assert_called_once_with("/work/repo/sub", "rev-parse", "--show-toplevel")

    def test_outside_repository_raises(self, manager: GitManager) -> None:
        """GitManagerError outside a repository."""
        with patch.object(manager, "_run_git", side_effect=_git_error("not a git repository")):
            with pytest.raises(GitManagerError):
                manager.repo_root("/")


PR_DATA = {
    "number": 7,
    "html_url": "https://github.com/owner/repo/pull/7",
    "title": "[IOS-1] Add dark mode",
    "body": "Implements IOS-1",
    "head": {"ref": "feature/ios-1"},
    "base": {"ref": "main"},
}


def _gh_output(data) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=json.dumps(data))


@pytest.mark.unit
class TestGetPullRequest:
    """Tests for get_pull_request."""

    def test_reads_with_gh(self, gh_manager: GitManager) -> None:
        with patch(
            "entrust.git_manager.manager.subprocess.run", return_value=_gh_output(PR_DATA)
        ) as mock_run:
            pr = gh_manager.get_pull_request(7)

        assert pr == PullRequestInfo(
            number=7,
            url="https://github.com/owner/repo/pull/7",
            title="[IOS-1] Add dark mode",
            body="Implements IOS-1",
            head_branch="feature/ios-1",
            base_branch="main",
        )
        assert mock_run.call_args.args[0] == ["gh", "api", "repos/owner/repo/pulls/7"]

    def test_reads_with_api(self, manager: GitManager, mock_client: MagicMock) -> None:
        mock_client.get.return_value = MagicMock(status_code=200, text=json.dumps(PR_DATA))

        pr = manager.get_pull_request(7)

        assert pr.head_branch == "feature/ios-1"
        mock_client.get.assert_called_once_with("/repos/owner/repo/pulls/7")

    def test_not_found(self, manager: GitManager, mock_client: MagicMock) -> None:
        mock_client.get.return_value = MagicMock(status_code=404, text='{"message": "Not Found"}')

        with pytest.raises(PRFetchError, match="404"):
            manager.get_pull_request(7)

    def test_malformed(self, manager: GitManager, mock_client: MagicMock) -> None:
        mock_client.get.return_value = MagicMock(status_code=200, text='{"number": 7}')

        with pytest.raises(PRFetchError, match="Malformed pull request #7"):
            manager.get_pull_request(7)

    def test_invalid_json(self, gh_manager: GitManager) -> None:
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="<html>")
        with patch("entrust.git_manager.manager.subprocess.run", return_value=completed):
            with pytest.raises(PRFetchError, match="invalid JSON"):
                gh_manager.get_pull_request(7)

    def test_gh_failure(self, gh_manager: GitManager) -> None:
        error = subprocess.CalledProcessError(1, "gh", stderr="HTTP 401: Bad credentials")
        with patch("entrust.git_manager.manager.subprocess.run", side_effect=error):
            with pytest.raises(PRFetchError, match="Bad credentials"):
                gh_manager.get_pull_request(7)


@pytest.mark.unit
class TestGetReviewComments:
    """Tests for get_review_comments."""

    REVIEWS = [
        {"id": 10, "state": "CHANGES_REQUESTED", "body": "Needs work", "user": {"login": "alice"}},
        {"id": 11, "state": "APPROVED", "body": "", "user": {"login": "bob"}},
        {"id": 12, "state": "COMMENTED", "body": "Nice", "user": {"login": "bob"}},
    ]
    INLINE = [
        {
            "id": 20,
            "pull_request_review_id": 10,
            "body": "Use the theme color",
            "path": "Sources/Theme.swift",
            "line": None,
            "original_line": 42,
            "user": {"login": "alice"},
        },
        {
            "id": 21,
            "pull_request_review_id": 12,
            "body": "nit",
            "path": "a.swift",
            "line": 3,
            "user": {"login": "bob"},
        },
    ]
    CONVERSATION = [{"id": 30, "body": "entrust: add a test", "user": None}]

    def _run(self, gh_manager: GitManager):
        outputs = [_gh_output(self.REVIEWS), _gh_output(self.INLINE), _gh_output(self.CONVERSATION)]
        with patch(
            "entrust.git_manager.manager.subprocess.run", side_effect=outputs
        ) as mock_run:
            comments = gh_manager.get_review_comments(7)
        return comments, mock_run

    def test_collects_every_kind(self, gh_manager: GitManager) -> None:
        comments, mock_run = self._run(gh_manager)

        assert [c.id for c in comments] == [10, 12, 20, 21, 30]
        assert [c.args[0][2] for c in mock_run.call_args_list] == [
            "repos/owner/repo/pulls/7/reviews?per_page=100",
            "repos/owner/repo/pulls/7/comments?per_page=100",
            "repos/owner/repo/issues/7/comments?per_page=100",
        ]

    def test_marks_changes_requested(self, gh_manager: GitManager) -> None:
        comments, _ = self._run(gh_manager)

        flagged = {c.id for c in comments if c.changes_requested}
        assert flagged == {10, 20}

    def test_comment_details(self, gh_manager: GitManager) -> None:
        comments, _ = self._run(gh_manager)
        by_id = {c.id: c for c in comments}

        assert by_id[20] == ReviewComment(
            id=20,
            author="alice",
            body="Use the theme color",
            path="Sources/Theme.swift",
            line=42,
            changes_requested=True,
        )
        assert by_id[30].author == "unknown"
        assert by_id[30].path is None

    def test_malformed(self, manager: GitManager, mock_client: MagicMock) -> None:
        mock_client.get.return_value = MagicMock(status_code=200, text='[{"body": "no id"}]')

        with pytest.raises(PRFetchError, match="Malformed comments"):
            manager.get_review_comments(7)


@pytest.mark.unit
class TestParsePrReference:
    """Tests for parse_pr_reference."""

    @pytest.mark.parametrize(
        ("reference", "expected"),
        [
            ("7", ("https://github.com/owner/repo/pull/7", 7)),
            ("#7", ("https://github.com/owner/repo/pull/7", 7)),
            ("https://github.com/acme/web/pull/12", ("https://github.com/acme/web/pull/12", 12)),
            ("https://github.com/acme/web/pull/12/", ("https://github.com/acme/web/pull/12", 12)),
        ],
    )
    def test_valid(self, reference: str, expected: tuple[str, int]) -> None:
        assert parse_pr_reference(reference, "owner/repo") == expected

    @pytest.mark.parametrize(
        "reference", ["feature/ios-1", "https://github.com/acme/web/issues/12", ""]
    )
    def test_invalid(self, reference: str) -> None:
        with pytest.raises(ValueError):
            parse_pr_reference(reference, "owner/repo")
