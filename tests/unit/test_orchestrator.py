"""Tests for the smoke orchestrator."""

import logging
from pathlib import Path
from unittest.mock import Mock, call

import aiohttp
import pytest
from aioresponses import aioresponses as aioresponses_cls
from yarl import URL

from smoke_gate.config import OrchestratorConfig, VerifierConfig
from smoke_gate.orchestrator import ExitCode, SmokeOrchestrator, StageError
from smoke_gate.process import ProcessRunner, ServerProcess
from smoke_gate.testing import payloads

BASE = "http://127.0.0.1:3100"
HEALTH_URL = f"{BASE}/api/health"
READY_URL = f"{BASE}/api/ready"
HOME_URL = f"{BASE}/"


@pytest.fixture
def config(tmp_path: Path) -> OrchestratorConfig:
    """Create a fast-polling orchestrator configuration."""
    return OrchestratorConfig(
        port=3100,
        base=BASE,
        database_url="file:./smoke.db",
        project_dir=tmp_path,
        readiness_timeout_ms=100,
        readiness_interval_ms=10,
        verifier=VerifierConfig(timeout_ms=100, interval_ms=10),
    )


@pytest.fixture
def server_mock() -> Mock:
    """Create mock server handle that is still running."""
    server = Mock(spec=ServerProcess)
    server.returncode = None
    return server


@pytest.fixture
def runner_mock(server_mock: Mock) -> Mock:
    """Create mock runner whose commands succeed."""
    runner = Mock(spec=ProcessRunner)
    runner.run.return_value = 0
    runner.spawn.return_value = server_mock
    return runner


@pytest.fixture
def orchestrator(config: OrchestratorConfig, runner_mock: Mock) -> SmokeOrchestrator:
    """Create orchestrator with mock runner."""
    return SmokeOrchestrator(config=config, runner=runner_mock)


def mock_healthy_app(aioresponses: aioresponses_cls) -> None:
    """Register responses for a server that is ready straight away."""
    aioresponses.get(READY_URL, payload=payloads.ready(), repeat=True)
    aioresponses.get(HEALTH_URL, payload=payloads.health(), repeat=True)
    aioresponses.get(HOME_URL, body=payloads.home_page(), repeat=True)


class TestFatalStages:
    """Tests for migrate, seed and build stage failures."""

    async def test_migrate_failure_stops_run(
        self,
        orchestrator: SmokeOrchestrator,
        runner_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Nothing after migrate runs when it exits non-zero."""
        runner_mock.run.return_value = 1

        outcome = await orchestrator.run()

        assert outcome.status == "failed"
        assert outcome.stage == "migrate"
        assert outcome.exit_code == ExitCode.MIGRATE_FAILED
        assert "exited with code 1" in (outcome.message or "")
        assert runner_mock.run.call_count == 1
        runner_mock.spawn.assert_not_called()
        assert not aioresponses.requests

    async def test_seed_failure_stops_run(
        self,
        orchestrator: SmokeOrchestrator,
        runner_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Build, spawn and polling never run when seeding fails."""
        runner_mock.run.side_effect = [0, 2]

        outcome = await orchestrator.run()

        assert outcome.stage == "seed"
        assert outcome.exit_code == ExitCode.SEED_FAILED
        assert runner_mock.run.call_count == 2
        runner_mock.spawn.assert_not_called()
        assert not aioresponses.requests

    async def test_build_failure_stops_run(
        self,
        orchestrator: SmokeOrchestrator,
        runner_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Spawn never happens when the build fails."""
        runner_mock.run.side_effect = [0, 0, 1]

        outcome = await orchestrator.run()

        assert outcome.stage == "build"
        assert outcome.exit_code == ExitCode.BUILD_FAILED
        runner_mock.spawn.assert_not_called()
        assert not aioresponses.requests

    async def test_missing_tool_is_fatal(
        self,
        orchestrator: SmokeOrchestrator,
        runner_mock: Mock,
    ) -> None:
        """A command that cannot be started aborts like a non-zero exit."""
        runner_mock.run.side_effect = FileNotFoundError(2, "No such file", "npx")

        outcome = await orchestrator.run()

        assert outcome.stage == "migrate"
        assert outcome.exit_code == ExitCode.MIGRATE_FAILED
        runner_mock.spawn.assert_not_called()

    async def test_spawn_failure(
        self,
        orchestrator: SmokeOrchestrator,
        runner_mock: Mock,
    ) -> None:
        """A server that cannot be started fails the run."""
        runner_mock.spawn.side_effect = FileNotFoundError(2, "No such file", "npx")

        outcome = await orchestrator.run()

        assert outcome.stage == "start"
        assert outcome.exit_code == ExitCode.FAILED


class TestStageSequence:
    """Tests for stage ordering and environment."""

    async def test_runs_stages_in_order_with_environment(
        self,
        orchestrator: SmokeOrchestrator,
        config: OrchestratorConfig,
        runner_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Migrate, seed and build run in order before the server is spawned."""
        mock_healthy_app(aioresponses)

        await orchestrator.run()

        assert runner_mock.run.call_args_list == [
            call(config.migrate_command, config.stage_env()),
            call(config.seed_command, config.stage_env()),
            call(config.build_command, config.build_env()),
        ]
        runner_mock.spawn.assert_called_once_with(
            ["npx", "next", "start", "-p", "3100"], config.stage_env()
        )

    async def test_skips_build_when_marker_exists(
        self,
        orchestrator: SmokeOrchestrator,
        config: OrchestratorConfig,
        runner_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """An existing build marker skips the build stage."""
        config.build_marker_path.parent.mkdir(parents=True)
        config.build_marker_path.write_text("build-123")
        mock_healthy_app(aioresponses)

        outcome = await orchestrator.run()

        assert outcome.passed
        assert runner_mock.run.call_count == 2
        runner_mock.spawn.assert_called_once()


class TestServerLifecycle:
    """Tests for readiness polling, verification and teardown."""

    async def test_success_terminates_server_once(
        self,
        orchestrator: SmokeOrchestrator,
        server_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """A passing run returns the verifier summary and stops the server."""
        mock_healthy_app(aioresponses)

        outcome = await orchestrator.run()

        assert outcome.status == "passed"
        assert outcome.exit_code == ExitCode.PASSED
        assert outcome.summary is not None
        assert outcome.summary.status == "passed"
        server_mock.terminate.assert_awaited_once()

    async def test_readiness_timeout(
        self,
        orchestrator: SmokeOrchestrator,
        server_mock: Mock,
        aioresponses: aioresponses_cls,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Readiness timeout skips verification, dumps diagnostics and tears down."""
        aioresponses.get(
            READY_URL,
            status=503,
            payload=payloads.ready(ok=False),
            repeat=True,
        )

        with caplog.at_level(logging.ERROR):
            outcome = await orchestrator.run()

        assert outcome.status == "failed"
        assert outcome.stage == "readiness"
        assert outcome.exit_code == ExitCode.FAILED
        assert "status=503" in (outcome.message or "")
        assert outcome.summary is None
        assert ("GET", URL(HEALTH_URL)) not in aioresponses.requests
        assert "Readiness diagnostics (status=503)" in caplog.text
        assert '"pending": 2' in caplog.text
        server_mock.terminate.assert_awaited_once()

    async def test_diagnostics_fault_is_discarded(
        self,
        orchestrator: SmokeOrchestrator,
        server_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """A failing diagnostics fetch does not change the outcome."""
        aioresponses.get(
            READY_URL,
            exception=aiohttp.ClientConnectionError("Connection refused"),
            repeat=True,
        )

        outcome = await orchestrator.run()

        assert outcome.stage == "readiness"
        assert "Connection refused" in (outcome.message or "")
        server_mock.terminate.assert_awaited_once()

    async def test_verification_failure(
        self,
        orchestrator: SmokeOrchestrator,
        server_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """A failing smoke check becomes the outcome and the server is stopped."""
        aioresponses.get(READY_URL, payload=payloads.ready(), repeat=True)
        aioresponses.get(HEALTH_URL, payload=payloads.health(), repeat=True)
        aioresponses.get(HOME_URL, body="<html>maintenance</html>", repeat=True)

        outcome = await orchestrator.run()

        assert outcome.status == "failed"
        assert outcome.stage == "verify"
        assert outcome.exit_code == ExitCode.FAILED
        assert outcome.summary is not None
        assert list(outcome.summary.failures) == ["home"]
        server_mock.terminate.assert_awaited_once()

    async def test_server_exit_before_ready(
        self,
        orchestrator: SmokeOrchestrator,
        server_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """A server that exits early fails the run without waiting for the deadline."""
        server_mock.returncode = 1

        outcome = await orchestrator.run()

        assert outcome.stage == "server"
        assert "exited with code 1" in (outcome.message or "")
        assert not aioresponses.requests
        server_mock.terminate.assert_awaited_once()

    async def test_unexpected_fault_still_tears_down(
        self,
        orchestrator: SmokeOrchestrator,
        server_mock: Mock,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Unexpected errors propagate after the server is terminated."""
        aioresponses.get(READY_URL, exception=RuntimeError("boom"))

        with pytest.raises(RuntimeError, match="boom"):
            await orchestrator.run()

        server_mock.terminate.assert_awaited_once()


def test_stage_error_message() -> None:
    """Stage errors name the failing command and exit code."""
    error = StageError("seed", ["node", "prisma/seed.js"], returncode=3)

    assert str(error) == "node prisma/seed.js failed: exited with code 3"
    assert error.stage == "seed"
    assert error.returncode == 3
