"""Configuration loading for entrust.

Settings live in a YAML file (``~/.entrust/config.yaml`` unless overridden),
credentials come from the environment.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from entrust.tracker import JIRATracker, LinearTracker, TaskTracker
from entrust.workers.testing import DEFAULT_XCODE_DESTINATION

logger = logging.getLogger("entrust.config")

DEFAULT_CONFIG_PATH = Path("~/.entrust/config.yaml")
CONFIG_ENV_VAR = "ENTRUST_CONFIG"

JIRA_TOKEN_ENV = "JIRA_API_TOKEN"
LINEAR_TOKEN_ENV = "LINEAR_API_KEY"
GITHUB_TOKEN_ENVS = ("GITHUB_TOKEN", "GH_TOKEN")


class ConfigError(Exception):
    """Raised when configuration or credentials are invalid or missing."""


class EntrustConfig(BaseModel):
    """Validated contents of the configuration file."""

    model_config = ConfigDict(extra="forbid")

    tracker: Literal["jira", "linear"]
    jira_url: str | None = None
    jira_email: str | None = None

    repo: str = Field(..., min_length=3, max_length=255, pattern=r"^[\w\-\.]+/[\w\-\.]+$")
    base_branch: str = Field(default="main", min_length=1, max_length=255)
    use_gh_cli: bool = True
    draft: bool = False

    run_tests: bool = True
    max_retry_attempts: int = Field(default=3, ge=0, le=10)
    max_concurrent: int = Field(default=3, ge=1, le=32)
    test_command: str | None = None
    test_timeout: float = Field(default=1800, gt=0)
    xcode_scheme: str | None = None
    xcode_destination: str = DEFAULT_XCODE_DESTINATION

    agent_command: str = "claude"
    agent_timeout: float = Field(default=3600, gt=0)
    max_agent_retries: int = Field(default=2, ge=0, le=10)
    agent_retry_delay: float = Field(default=30, ge=0)
    additional_context: str | None = None

    workspace_root: Path | None = None
    sessions_file: Path | None = None

    @model_validator(mode="after")
    def _check_jira_settings(self) -> EntrustConfig:
        if self.tracker == "jira" and not (self.jira_url and self.jira_email):
            raise ValueError("jira_url and jira_email are required when tracker is 'jira'")
        return self


@dataclass(frozen=True)
class Credentials:
    """Secrets needed at runtime, never stored in the config file."""

    tracker_token: str
    github_token: str | None = None


def config_path(explicit: str | Path | None = None) -> Path:
    """Resolve the configuration file location.

    Order: explicit path, then ``ENTRUST_CONFIG``, then ``~/.entrust/config.yaml``.
    """
    if explicit is not None:
        return Path(explicit).expanduser()
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def parse_config(data: Any, source: str = "<config>") -> EntrustConfig:
    """Validate raw configuration data.

    Raises:
        ConfigError: If the data is not a mapping or fails validation.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a YAML mapping, got {type(data).__name__}")

    try:
        return EntrustConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration in {source}: {problems}") from e


def apply_overrides(config: EntrustConfig, **overrides: Any) -> EntrustConfig:
    """Return ``config`` with command-line overrides applied and validated again.

    Overrides whose value is None are ignored.

    Raises:
        ConfigError: If an override is invalid.
    """
    changes = {key: value for key, value in overrides.items() if value is not None}
    if not changes:
        return config
    return parse_config({**config.model_dump(), **changes}, "command line options")


def load_config(path: str | Path | None = None) -> EntrustConfig:
    """Load and validate the configuration file.

    Args:
        path: Explicit config file. See ``config_path`` for the fallbacks.

    Returns:
        Parsed configuration.

    Raises:
        ConfigError: If the file doesn't exist or is invalid.
    """
    path = config_path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    config = parse_config(data, str(path))
    logger.debug("Loaded configuration from %s (tracker=%s, repo=%s)", path, config.tracker, config.repo)
    return config


def gh_auth_token() -> str | None:
    """Ask the GitHub CLI for its token, if it is installed and logged in."""
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            check=True,
            timeout=10,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
        return None
    return result.stdout.strip() or None


def resolve_credentials(
    config: EntrustConfig, env: Mapping[str, str] | None = None
) -> Credentials:
    """Read the tracker and GitHub credentials from the environment.

    Raises:
        ConfigError: If a required credential is missing.
    """
    if env is None:
        env = os.environ

    token_env = JIRA_TOKEN_ENV if config.tracker == "jira" else LINEAR_TOKEN_ENV
    tracker_token = env.get(token_env)
    if not tracker_token:
        raise ConfigError(f"{token_env} is not set (required for the {config.tracker} tracker)")

    github_token = next((env[name] for name in GITHUB_TOKEN_ENVS if env.get(name)), None)
    if github_token is None:
        github_token = gh_auth_token()
    if github_token is None and not config.use_gh_cli:
        raise ConfigError(
            "GitHub token not found: set GITHUB_TOKEN or log in with 'gh auth login'"
        )

    return Credentials(tracker_token=tracker_token, github_token=github_token)


def build_tracker(config: EntrustConfig, credentials: Credentials) -> TaskTracker:
    """Create the tracker adapter selected by configuration."""
    if config.tracker == "jira":
        if not (config.jira_url and config.jira_email):
            raise ConfigError("jira_url and jira_email are required for the jira tracker")
        return JIRATracker(config.jira_url, config.jira_email, credentials.tracker_token)
    return LinearTracker(credentials.tracker_token)
