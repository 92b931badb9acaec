"""Agent sessions - Claude Code CLI integration."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from entrust.workers.exceptions import AgentExecutionError, SessionNotContinuableError
from entrust.workers.models import AgentContext, AgentResult

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger("entrust.workers.agent")

DEFAULT_AGENT_ARGS = ("--permission-mode", "acceptEdits")
RATE_LIMIT_RETRY_AFTER = 60.0

SYSTEM_PROMPT = """When you're done implementing the changes:
1. Verify all files compile without errors
2. Ensure all changes are saved
3. Confirm the implementation is complete"""

_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "overloaded", "429")
_MISSING_SESSION_MARKERS = ("no conversation found", "session not found")


class AIAgent(Protocol):
    """Operations the pipeline needs from an AI coding agent."""

    @property
    def name(self) -> str: ...

    def start(self, prompt: str, context: AgentContext) -> AgentResult: ...

    def continue_session(
        self, session_id: str, prompt: str, context: AgentContext
    ) -> AgentResult: ...

    def is_available(self) -> bool: ...


@dataclass
class StreamingResult:
    """Result from streaming subprocess execution."""

    returncode: int
    output: str
    timed_out: bool = False


class ClaudeCodeAgent:
    """Runs the Claude Code CLI headless in a working directory.

    New conversations are started with a generated ``--session-id`` so the
    session can later be resumed with ``--resume``. The agent never retries
    by itself: failures surface as AgentExecutionError and the caller
    decides.
    """

    name = "Claude Code"

    def __init__(
        self,
        command: str = "claude",
        extra_args: Sequence[str] = DEFAULT_AGENT_ARGS,
        system_prompt: str | None = SYSTEM_PROMPT,
    ) -> None:
        """Initialize the agent.

        Args:
            command: Claude Code executable.
            extra_args: Additional CLI arguments (e.g. permission mode).
            system_prompt: Text appended to Claude's system prompt.
        """
        self.command = command
        self.extra_args = tuple(extra_args)
        self.system_prompt = system_prompt

    def start(self, prompt: str, context: AgentContext) -> AgentResult:
        """Start a new conversation."""
        session_id = str(uuid.uuid4())
        logger.info(
            "Starting Claude Code session %s in %s", session_id[:8], context.working_directory
        )
        cmd = self._build_command(prompt, ["--session-id", session_id])
        return self._execute(cmd, context, session_id, resume=False)

    def continue_session(self, session_id: str, prompt: str, context: AgentContext) -> AgentResult:
        """Continue an existing conversation.

        Raises:
            SessionNotContinuableError: If Claude cannot resume the session.
            AgentExecutionError: On any other failure.
        """
        logger.info("Continuing Claude Code session %s", session_id[:8])
        cmd = self._build_command(prompt, ["--resume", session_id])
        return self._execute(cmd, context, session_id, resume=True)

    def is_available(self) -> bool:
        """Check if the Claude Code CLI is installed and responds."""
        if shutil.which(self.command) is None:
            return False
        try:
            result = subprocess.run(
                [self.command, "--version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def _build_command(self, prompt: str, session_args: list[str]) -> list[str]:
        cmd = [self.command, *session_args, "-p", prompt, *self.extra_args]
        if self.system_prompt:
            cmd.extend(["--append-system-prompt", self.system_prompt])
        return cmd

    def _execute(
        self,
        cmd: list[str],
        context: AgentContext,
        session_id: str,
        resume: bool,
    ) -> AgentResult:
        start_time = time.monotonic()
        try:
            result = self._run_streaming(cmd, context)
        except FileNotFoundError as e:
            logger.error("Claude Code CLI not found in PATH")
            raise AgentExecutionError(
                f"Claude Code CLI not found. Ensure '{self.command}' is installed and in PATH."
            ) from e
        except OSError as e:
            logger.error("Failed to execute Claude Code: %s", e)
            raise AgentExecutionError(f"Failed to execute Claude Code: {e}") from e

        duration = time.monotonic() - start_time

        if result.timed_out:
            logger.error("Claude Code timed out after %s seconds", context.timeout)
            raise AgentExecutionError(
                f"Claude Code timed out after {context.timeout:g} seconds",
                retryable=True,
                output=result.output,
            )

        if result.returncode != 0:
            lowered = result.output.lower()
            if resume and any(marker in lowered for marker in _MISSING_SESSION_MARKERS):
                raise SessionNotContinuableError(session_id, output=result.output)
            if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
                raise AgentExecutionError(
                    f"Claude Code was rate limited (exit code {result.returncode})",
                    retryable=True,
                    retry_after=RATE_LIMIT_RETRY_AFTER,
                    output=result.output,
                )
            raise AgentExecutionError(
                f"Claude Code exited with code {result.returncode}",
                output=result.output,
            )

        logger.info("Claude Code finished in %.0fs", duration)
        return AgentResult(output=result.output, session_id=session_id, duration_seconds=duration)

    def _run_streaming(self, cmd: list[str], context: AgentContext) -> StreamingResult:
        """Run the CLI, streaming output lines to the context's callback.

        A timer kills the process once ``context.timeout`` elapses.
        """
        env = {**os.environ, **context.environment}
        process = subprocess.Popen(
            cmd,
            cwd=context.working_directory,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,  # Merge stderr into stdout for unified streaming
            text=True,
            bufsize=1,  # Line buffered
        )

        timed_out = threading.Event()

        def _kill() -> None:
            timed_out.set()
            process.kill()

        timer = threading.Timer(context.timeout, _kill)
        timer.daemon = True
        timer.start()

        output_lines: list[str] = []
        try:
            if process.stdout:
                for raw_line in process.stdout:
                    stripped_line = raw_line.rstrip("\n")
                    output_lines.append(stripped_line)
                    if context.log_callback:
                        context.log_callback(stripped_line)
            process.wait()
        finally:
            timer.cancel()

        return StreamingResult(
            returncode=process.returncode or 0,
            output="\n".join(output_lines),
            timed_out=timed_out.is_set(),
        )
