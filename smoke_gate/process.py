"""Child process management for orchestrated smoke runs."""

import asyncio
import logging
import os
import shlex
import signal
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class ServerProcess:
    """Handle on a spawned server process.

    The child runs in its own session so the whole process group (for example
    a package runner and the server it launches) is signalled together.
    """

    process: asyncio.subprocess.Process
    grace: float = 10.0
    terminated: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    def _signal(self, signum: signal.Signals) -> None:
        os.killpg(self.process.pid, signum)

    async def terminate(self) -> None:
        """Terminate the server group; signals at most once.

        When the group leader already exited, descendants left in its group
        still receive SIGTERM.
        """
        if self.terminated:
            log.debug("Server process %d already signalled", self.pid)
            return
        self.terminated = True

        if self.process.returncode is not None:
            log.debug("Server process %d exited, signalling its group", self.pid)
            with suppress(ProcessLookupError, PermissionError):
                self._signal(signal.SIGTERM)
            return

        log.info("Terminating server process %d", self.pid)
        try:
            self._signal(signal.SIGTERM)
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(self.process.wait(), timeout=self.grace)
        except TimeoutError:
            log.warning(
                "Server process %d did not exit within %.1fs, killing",
                self.pid,
                self.grace,
            )
            with suppress(ProcessLookupError):
                self._signal(signal.SIGKILL)
            await self.process.wait()


class ProcessRunner(ABC):
    """Runs external tools and spawns the server under test."""

    @abstractmethod
    async def run(self, command: Sequence[str], env: Mapping[str, str]) -> int:
        """Run a command to completion and return its exit code."""

    @abstractmethod
    async def spawn(
        self, command: Sequence[str], env: Mapping[str, str]
    ) -> ServerProcess:
        """Start a long-running command without waiting for it."""


@dataclass(frozen=True, kw_only=True)
class SubprocessRunner(ProcessRunner):
    """Runner backed by asyncio subprocesses with inherited console I/O."""

    cwd: Path
    shutdown_grace: float = 10.0

    def _environment(self, env: Mapping[str, str]) -> dict[str, str]:
        return {**os.environ, **env}

    async def run(self, command: Sequence[str], env: Mapping[str, str]) -> int:
        log.info("Running: %s", shlex.join(command))
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=self.cwd,
            env=self._environment(env),
        )
        return await process.wait()

    async def spawn(
        self, command: Sequence[str], env: Mapping[str, str]
    ) -> ServerProcess:
        log.info("Starting server: %s", shlex.join(command))
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=self.cwd,
            env=self._environment(env),
            start_new_session=True,
        )
        log.info("Server process started (pid=%d)", process.pid)
        return ServerProcess(process=process, grace=self.shutdown_grace)
