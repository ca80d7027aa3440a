"""Orchestrator for a full local migrate, seed, build, start and verify cycle."""

import json
import logging
import shlex
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

import aiohttp

from smoke_gate.config import OrchestratorConfig
from smoke_gate.models.result import RunOutcome
from smoke_gate.process import ProcessRunner, ServerProcess
from smoke_gate.verifier import SmokeVerifier, check_ok, fetch_json, poll_until

log = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """Process exit codes reported to the calling pipeline."""

    PASSED = 0
    FAILED = 1
    MIGRATE_FAILED = 2
    SEED_FAILED = 3
    BUILD_FAILED = 4


STAGE_EXIT_CODES: Mapping[str, ExitCode] = {
    "migrate": ExitCode.MIGRATE_FAILED,
    "seed": ExitCode.SEED_FAILED,
    "build": ExitCode.BUILD_FAILED,
}


class StageError(Exception):
    """Raised when a fatal stage command cannot run or exits non-zero."""

    def __init__(
        self,
        stage: str,
        command: Sequence[str],
        *,
        returncode: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.stage = stage
        self.command = tuple(command)
        self.returncode = returncode
        detail = reason if reason is not None else f"exited with code {returncode}"
        super().__init__(f"{shlex.join(command)} failed: {detail}")


class ServerExitedError(Exception):
    """Raised when the server under test exits before becoming ready."""


@dataclass(frozen=True, kw_only=True)
class SmokeOrchestrator:
    """Sequences one local smoke run and owns the spawned server."""

    config: OrchestratorConfig
    runner: ProcessRunner

    async def run(self) -> RunOutcome:
        """Run every stage in order, stopping at the first fatal failure.

        The spawned server is terminated on every exit path, including
        exceptions raised while polling or verifying.

        Returns:
            Outcome carrying the failing stage and message on failure

        """
        try:
            await self._prepare()
            async with (
                self._server() as server,
                SmokeVerifier.from_config(self.config.verifier_config()) as verifier,
            ):
                return await self._verify(server, verifier)
        except StageError as e:
            log.error("Stage %s failed: %s", e.stage, e)
            return RunOutcome(
                status="failed",
                exit_code=STAGE_EXIT_CODES.get(e.stage, ExitCode.FAILED),
                stage=e.stage,
                message=str(e),
            )

    async def _prepare(self) -> None:
        env = self.config.stage_env()
        await self._run_stage("migrate", self.config.migrate_command, env)
        await self._run_stage("seed", self.config.seed_command, env)

        marker = self.config.build_marker_path
        if marker.exists():
            log.info("Build marker %s present, skipping build", marker)
        else:
            await self._run_stage(
                "build", self.config.build_command, self.config.build_env()
            )

    async def _run_stage(
        self, stage: str, command: Sequence[str], env: Mapping[str, str]
    ) -> None:
        log.info("Stage %s started", stage)
        try:
            returncode = await self.runner.run(command, env)
        except OSError as e:
            raise StageError(stage, command, reason=str(e)) from e
        if returncode != 0:
            raise StageError(stage, command, returncode=returncode)
        log.info("Stage %s completed", stage)

    @asynccontextmanager
    async def _server(self) -> AsyncGenerator[ServerProcess, None]:
        command = self.config.server_command()
        try:
            server = await self.runner.spawn(command, self.config.stage_env())
        except OSError as e:
            raise StageError("start", command, reason=str(e)) from e
        try:
            yield server
        finally:
            await server.terminate()

    async def _verify(
        self, server: ServerProcess, verifier: SmokeVerifier
    ) -> RunOutcome:
        url = verifier.url(verifier.config.ready_path)

        async def attempt() -> Mapping[str, Any]:
            if server.returncode is not None:
                raise ServerExitedError(
                    f"Server exited with code {server.returncode} before becoming ready"
                )
            return await check_ok(verifier.session, url)

        try:
            ready = await poll_until(
                attempt,
                timeout=self.config.readiness_timeout_ms / 1000,
                interval=self.config.readiness_interval_ms / 1000,
            )
        except ServerExitedError as e:
            log.error("%s", e)
            return RunOutcome(
                status="failed", exit_code=ExitCode.FAILED, stage="server", message=str(e)
            )

        if not ready.ok:
            log.error(
                "Server not ready within %dms: %s",
                self.config.readiness_timeout_ms,
                ready.error,
            )
            await self._log_diagnostics(verifier.session, url)
            return RunOutcome(
                status="failed",
                exit_code=ExitCode.FAILED,
                stage="readiness",
                message=f"not ready within {self.config.readiness_timeout_ms}ms "
                f"({ready.error})",
            )

        log.info("Server ready after %d attempt(s), running smoke checks", ready.attempts)
        summary = await verifier.verify()
        if summary.passed:
            return RunOutcome(status="passed", exit_code=ExitCode.PASSED, summary=summary)
        return RunOutcome(
            status="failed",
            exit_code=ExitCode.FAILED,
            stage="verify",
            message=", ".join(summary.failures),
            summary=summary,
        )

    async def _log_diagnostics(self, session: aiohttp.ClientSession, url: str) -> None:
        """Log one snapshot of the readiness report, discarding any fault."""
        try:
            status, data = await fetch_json(session, url)
        except Exception as e:
            log.debug("Readiness diagnostics unavailable: %s", e)
            return
        log.error(
            "Readiness diagnostics (status=%d):\n%s", status, json.dumps(data, indent=2)
        )
