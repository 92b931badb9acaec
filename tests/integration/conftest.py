"""Fixtures for tests against real git repositories.

A bare repository stands in for GitHub's origin, so pushes and fetches work
without network access.
"""

import subprocess
from pathlib import Path

import pytest


def git(directory: Path, *args: str) -> str:
    """Run git in a directory and return its stdout."""
    result = subprocess.run(
        ["git", "-C", str(directory), *args],
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def run_git():
    """The git helper, for assertions against repositories."""
    return git


@pytest.fixture
def origin(tmp_path: Path) -> Path:
    """An empty bare repository acting as the remote."""
    path = tmp_path / "origin.git"
    subprocess.run(["git", "init", "--bare", str(path)], capture_output=True, check=True)
    return path


@pytest.fixture
def clone(tmp_path: Path, origin: Path) -> Path:
    """A clone of ``origin`` with one commit pushed to main."""
    path = tmp_path / "clone"
    subprocess.run(
        ["git", "clone", str(origin), str(path)], capture_output=True, check=True
    )
    git(path, "config", "user.email", "dev@example.com")
    git(path, "config", "user.name", "Entrust Tests")
    git(path, "config", "commit.gpgsign", "false")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    (path / "README.md").write_text("# app\n")
    git(path, "add", "README.md")
    git(path, "commit", "-m", "Initial commit")
    git(path, "push", "-u", "origin", "main")
    return path


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """Directory worktrees are created in."""
    return tmp_path / "worktrees"
