"""Unit tests for configuration and credential loading."""

from pathlib import Path
from unittest.mock import patch

import pytest

from entrust.config import (
    ConfigError,
    Credentials,
    EntrustConfig,
    build_tracker,
    config_path,
    load_config,
    parse_config,
    resolve_credentials,
)
from entrust.tracker import JIRATracker, LinearTracker

JIRA_YAML = """\
tracker: jira
jira_url: https://acme.atlassian.net/
jira_email: dev@acme.io
repo: acme/ios-app
max_concurrent: 4
"""


@pytest.fixture
def linear_config() -> EntrustConfig:
    return parse_config({"tracker": "linear", "repo": "acme/web"})


@pytest.mark.unit
class TestParseConfig:
    """Tests for parse_config and the config model."""

    def test_defaults(self, linear_config: EntrustConfig) -> None:
        """Unset fields take their defaults."""
        assert linear_config.base_branch == "main"
        assert linear_config.max_retry_attempts == 3
        assert linear_config.max_concurrent == 3
        assert linear_config.run_tests is True
        assert linear_config.use_gh_cli is True
        assert linear_config.agent_command == "claude"
        assert linear_config.workspace_root is None

    def test_jira_requires_url_and_email(self) -> None:
        """A jira tracker without its URL is rejected."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config({"tracker": "jira", "repo": "acme/web"})

        assert "jira_url" in str(exc_info.value)

    @pytest.mark.parametrize(
        "data",
        [
            {"tracker": "trello", "repo": "acme/web"},
            {"tracker": "linear", "repo": "not-a-repo"},
            {"tracker": "linear", "repo": "acme/web", "max_concurrent": 0},
            {"tracker": "linear", "repo": "acme/web", "max_retry_attempts": 11},
            {"tracker": "linear", "repo": "acme/web", "unknown_key": True},
        ],
    )
    def test_invalid_values(self, data: dict) -> None:
        """Invalid values become a ConfigError naming the source."""
        with pytest.raises(ConfigError) as exc_info:
            parse_config(data, "config.yaml")

        assert "Invalid configuration in config.yaml" in str(exc_info.value)

    def test_non_mapping(self) -> None:
        """A YAML list or scalar is not a configuration."""
        with pytest.raises(ConfigError):
            parse_config(["tracker", "jira"])

    def test_zero_retry_attempts_allowed(self) -> None:
        """max_retry_attempts may be 0 (run tests once, never fix)."""
        config = parse_config({"tracker": "linear", "repo": "a/b", "max_retry_attempts": 0})

        assert config.max_retry_attempts == 0


@pytest.mark.unit
class TestLoadConfig:
    """Tests for load_config and config_path."""

    def test_loads_yaml(self, tmp_path: Path) -> None:
        """A valid file is parsed."""
        path = tmp_path / "config.yaml"
        path.write_text(JIRA_YAML)

        config = load_config(path)

        assert config.tracker == "jira"
        assert config.repo == "acme/ios-app"
        assert config.max_concurrent == 4

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file names the path."""
        with pytest.raises(ConfigError) as exc_info:
            load_config(tmp_path / "nope.yaml")

        assert "Configuration file not found" in str(exc_info.value)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Broken YAML is a ConfigError."""
        path = tmp_path / "config.yaml"
        path.write_text("tracker: [jira\n")

        with pytest.raises(ConfigError) as exc_info:
            load_config(path)

        assert "Invalid YAML" in str(exc_info.value)

    def test_empty_file(self, tmp_path: Path) -> None:
        """An empty file is not a mapping."""
        path = tmp_path / "config.yaml"
        path.write_text("")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_path_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """ENTRUST_CONFIG is used when no path is given."""
        monkeypatch.setenv("ENTRUST_CONFIG", str(tmp_path / "c.yaml"))

        assert config_path() == tmp_path / "c.yaml"

    def test_explicit_path_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """An explicit path beats the environment."""
        monkeypatch.setenv("ENTRUST_CONFIG", "/elsewhere.yaml")

        assert config_path(tmp_path / "x.yaml") == tmp_path / "x.yaml"

    def test_default_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Falls back to ~/.entrust/config.yaml."""
        monkeypatch.delenv("ENTRUST_CONFIG", raising=False)

        assert config_path() == Path("~/.entrust/config.yaml").expanduser()


@pytest.mark.unit
class TestResolveCredentials:
    """Tests for resolve_credentials."""

    def test_linear_token_and_github_env(self, linear_config: EntrustConfig) -> None:
        """Tokens come from the environment."""
        creds = resolve_credentials(
            linear_config, {"LINEAR_API_KEY": "lin", "GITHUB_TOKEN": "ghp"}
        )

        assert creds == Credentials(tracker_token="lin", github_token="ghp")

    def test_gh_token_env_fallback(self, linear_config: EntrustConfig) -> None:
        """GH_TOKEN is accepted too."""
        creds = resolve_credentials(linear_config, {"LINEAR_API_KEY": "lin", "GH_TOKEN": "gh"})

        assert creds.github_token == "gh"

    def test_missing_tracker_token(self, linear_config: EntrustConfig) -> None:
        """The missing variable is named."""
        with pytest.raises(ConfigError) as exc_info:
            resolve_credentials(linear_config, {})

        assert "LINEAR_API_KEY" in str(exc_info.value)

    def test_jira_token_variable(self) -> None:
        """jira uses JIRA_API_TOKEN."""
        config = parse_config(
            {"tracker": "jira", "repo": "a/b", "jira_url": "https://x", "jira_email": "e@x"}
        )

        with pytest.raises(ConfigError) as exc_info:
            resolve_credentials(config, {"LINEAR_API_KEY": "lin"})

        assert "JIRA_API_TOKEN" in str(exc_info.value)

    def test_gh_cli_token(self, linear_config: EntrustConfig) -> None:
        """Without env tokens the gh CLI token is used."""
        with patch("entrust.config.gh_auth_token", return_value="from-gh"):
            creds = resolve_credentials(linear_config, {"LINEAR_API_KEY": "lin"})

        assert creds.github_token == "from-gh"

    def test_no_github_token_with_gh_cli(self, linear_config: EntrustConfig) -> None:
        """No token is fine when PRs go through the gh CLI."""
        with patch("entrust.config.gh_auth_token", return_value=None):
            creds = resolve_credentials(linear_config, {"LINEAR_API_KEY": "lin"})

        assert creds.github_token is None

    def test_no_github_token_without_gh_cli(self) -> None:
        """The REST API path needs a token."""
        config = parse_config({"tracker": "linear", "repo": "a/b", "use_gh_cli": False})

        with patch("entrust.config.gh_auth_token", return_value=None):
            with pytest.raises(ConfigError) as exc_info:
                resolve_credentials(config, {"LINEAR_API_KEY": "lin"})

        assert "GitHub token not found" in str(exc_info.value)


@pytest.mark.unit
class TestBuildTracker:
    """Tests for build_tracker."""

    def test_linear(self, linear_config: EntrustConfig) -> None:
        tracker = build_tracker(linear_config, Credentials(tracker_token="lin"))

        assert isinstance(tracker, LinearTracker)

    def test_jira(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(JIRA_YAML)

        tracker = build_tracker(load_config(path), Credentials(tracker_token="tok"))

        assert isinstance(tracker, JIRATracker)
        assert tracker.base_url == "https://acme.atlassian.net"
