"""Test Runner - Detect the project type and run its test suite."""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from pathlib import Path

from entrust.workers.exceptions import ProjectTypeUnknownError
from entrust.workers.models import ProjectType, TestOutcome

logger = logging.getLogger("entrust.workers.testing")

DEFAULT_TEST_TIMEOUT = 1800.0
DEFAULT_XCODE_DESTINATION = "platform=iOS Simulator,name=iPhone 15"

GENERIC_FAILURE_MARKERS = ("FAILED", "error:")

SWIFT = ProjectType("swift", ("swift", "test"), GENERIC_FAILURE_MARKERS)
PYTHON = ProjectType("python", ("pytest",), ("FAILED", "ERROR "))
NODE = ProjectType("node", ("npm", "test"), ("npm ERR!",))
RUST = ProjectType("rust", ("cargo", "test"), ("FAILED", "error["))
GO = ProjectType("go", ("go", "test", "./..."), ("--- FAIL", "FAIL\t"))

PYTHON_MANIFESTS = ("pyproject.toml", "setup.py", "setup.cfg", "pytest.ini", "tox.ini")


class TestRunner:
    """Runs a project's tests in a directory and classifies the outcome.

    The runner reports, it does not retry. A run fails when the command
    exits non-zero or prints one of the project type's failure markers.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        test_command: str | None = None,
        timeout: float = DEFAULT_TEST_TIMEOUT,
        xcode_scheme: str | None = None,
        xcode_destination: str = DEFAULT_XCODE_DESTINATION,
    ) -> None:
        """Initialize the Test Runner.

        Args:
            test_command: Shell-style command that replaces detection.
            timeout: Seconds before a test run is killed and counted as failed.
            xcode_scheme: Scheme for Xcode projects; without it Xcode projects
                are not runnable.
            xcode_destination: ``-destination`` argument for xcodebuild.
        """
        self.test_command = test_command
        self.timeout = timeout
        self.xcode_scheme = xcode_scheme
        self.xcode_destination = xcode_destination

    def detect_project(self, directory: str | Path) -> ProjectType:
        """Work out how to run the tests in ``directory``.

        Raises:
            ProjectTypeUnknownError: If no known manifest is present.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise ProjectTypeUnknownError(f"Directory does not exist: {directory}")

        if self.test_command:
            return ProjectType(
                "custom", tuple(shlex.split(self.test_command)), GENERIC_FAILURE_MARKERS
            )

        if (directory / "Package.swift").exists():
            return SWIFT

        xcode = self._detect_xcode(directory)
        if xcode is not None:
            return xcode

        if any((directory / name).exists() for name in PYTHON_MANIFESTS):
            return PYTHON
        if (directory / "package.json").exists():
            return NODE
        if (directory / "Cargo.toml").exists():
            return RUST
        if (directory / "go.mod").exists():
            return GO

        contents = ", ".join(sorted(p.name for p in directory.iterdir())) or "(empty)"
        logger.warning("No recognizable project structure in %s: %s", directory, contents)
        raise ProjectTypeUnknownError(f"Unable to determine project type for {directory}")

    def _detect_xcode(self, directory: Path) -> ProjectType | None:
        workspaces = sorted(directory.glob("*.xcworkspace"))
        projects = sorted(directory.glob("*.xcodeproj"))
        if not workspaces and not projects:
            return None
        if not self.xcode_scheme:
            raise ProjectTypeUnknownError(
                f"Xcode project found in {directory} but no xcode_scheme is configured"
            )

        if workspaces:
            target = ("-workspace", workspaces[0].name)
        else:
            target = ("-project", projects[0].name)
        command = (
            "xcodebuild", "test", *target,
            "-scheme", self.xcode_scheme,
            "-destination", self.xcode_destination,
        )  # fmt: skip
        return ProjectType("xcode", command, ("** TEST FAILED **", "error:"))

    def run(self, directory: str | Path) -> TestOutcome:
        """Run the test suite in ``directory``.

        Returns:
            TestOutcome with the combined output and pass/fail verdict.

        Raises:
            ProjectTypeUnknownError: If the project type cannot be detected or
                its test tool is not installed.
        """
        project = self.detect_project(directory)
        logger.info("Running %s tests in %s: %s", project.name, directory, " ".join(project.command))

        start_time = time.monotonic()
        try:
            result = subprocess.run(
                list(project.command),
                cwd=directory,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ProjectTypeUnknownError(
                f"Test command '{project.command[0]}' not found for {project.name} project"
            ) from e
        except subprocess.TimeoutExpired as e:
            output = e.output if isinstance(e.output, str) else ""
            logger.warning("Tests timed out after %s seconds", self.timeout)
            return TestOutcome(
                passed=False,
                output=f"{output}\nTests timed out after {self.timeout:g} seconds",
                command=project.command,
                returncode=None,
                duration_seconds=time.monotonic() - start_time,
            )

        duration = time.monotonic() - start_time
        output = result.stdout or ""
        markers = [m for m in project.failure_markers if m in output]
        passed = result.returncode == 0 and not markers
        if result.returncode == 0 and markers:
            logger.info("Exit code 0 but failure markers found: %s", ", ".join(markers))
        logger.info(
            "Tests %s (exit code %d, %.0fs)", "passed" if passed else "failed", result.returncode, duration
        )
        return TestOutcome(
            passed=passed,
            output=output,
            command=project.command,
            returncode=result.returncode,
            duration_seconds=duration,
        )
