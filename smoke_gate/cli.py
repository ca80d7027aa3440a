"""CLI entry points for the smoke verifier, local orchestrator and probe server."""

import argparse
import asyncio
import json
import logging
import os
import shlex
import sys
from collections.abc import Callable, Coroutine, Mapping, Sequence
from pathlib import Path
from typing import Any

from aiohttp import web

from smoke_gate.config import OrchestratorConfig, ProbeConfig, VerifierConfig
from smoke_gate.models.result import RunOutcome
from smoke_gate.models.summary import SmokeSummary
from smoke_gate.orchestrator import ExitCode, SmokeOrchestrator
from smoke_gate.probe import ConnectivityCheck, ReadinessProbe, SQLiteStore, create_app
from smoke_gate.process import SubprocessRunner
from smoke_gate.verifier import SmokeVerifier

STATUS_SYMBOLS = {
    "passed": "✅",
    "failed": "❌",
}


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def log_summary(log: logging.Logger, summary: SmokeSummary) -> None:
    """Log a formatted summary of a smoke verification run."""
    log.info("=" * 80)
    log.info("Smoke Summary:")
    log.info("=" * 80)
    log.info("%s %s: %s", STATUS_SYMBOLS[summary.status], summary.base, summary.status)
    for failure in summary.failures:
        log.info("  Failure: %s", failure)


def format_summary(summary: SmokeSummary) -> dict[str, Any]:
    """Format a smoke summary for JSON output."""
    return summary.model_dump(mode="json", by_alias=True)


def format_outcome(outcome: RunOutcome) -> dict[str, Any]:
    """Format an orchestrated run outcome for JSON output."""
    return {
        "status": outcome.status,
        "exitCode": int(outcome.exit_code),
        "stage": outcome.stage,
        "message": outcome.message,
        "summary": format_summary(outcome.summary) if outcome.summary else None,
    }


def emit(payload: Mapping[str, Any], *, passed: bool) -> None:
    """Print JSON to stdout when passed, stderr otherwise."""
    print(json.dumps(payload, indent=2), file=sys.stdout if passed else sys.stderr)


async def run_smoke(config: VerifierConfig) -> int:
    """Run the smoke verifier and return exit code."""
    log = logging.getLogger("smoke_gate")
    log.info("Running smoke checks against %s", config.base)

    async with SmokeVerifier.from_config(config) as verifier:
        summary = await verifier.verify()

    log_summary(log, summary)
    emit(format_summary(summary), passed=summary.passed)
    return 0 if summary.passed else 1


async def run_local(config: OrchestratorConfig) -> int:
    """Run a full local smoke cycle and return exit code."""
    log = logging.getLogger("smoke_gate")
    log.info(
        "Local smoke run: port=%d base=%s project_dir=%s",
        config.port,
        config.base,
        config.project_dir,
    )

    runner = SubprocessRunner(
        cwd=config.project_dir, shutdown_grace=config.shutdown_grace
    )
    outcome = await SmokeOrchestrator(config=config, runner=runner).run()

    if outcome.summary is not None:
        log_summary(log, outcome.summary)
    if outcome.passed:
        log.info("Local smoke: PASSED")
    else:
        log.error("Local smoke: FAILED at %s: %s", outcome.stage, outcome.message)

    emit(format_outcome(outcome), passed=outcome.passed)
    return int(outcome.exit_code)


def split_command(value: str) -> Sequence[str]:
    """Split a shell-style command string into arguments."""
    parts = shlex.split(value)
    if not parts:
        raise argparse.ArgumentTypeError("command must not be empty")
    return parts


def _add_verbose(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")


def _run_guarded(coro_factory: Callable[[], Coroutine[Any, Any, int]]) -> int:
    log = logging.getLogger("smoke_gate")
    try:
        return asyncio.run(coro_factory())
    except Exception:
        log.exception("Smoke run aborted by unexpected error")
        return int(ExitCode.FAILED)


def smoke_main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for the smoke verifier."""
    parser = argparse.ArgumentParser(
        description="Run post-deploy smoke checks against a running instance"
    )
    parser.add_argument("--base", help="Base URL (default: $SMOKE_BASE)")
    parser.add_argument(
        "--marker",
        action="append",
        default=[],
        help="Text the home page must contain (repeatable, any match passes)",
    )
    _add_verbose(parser)
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    try:
        config = VerifierConfig.from_env(
            os.environ, base=args.base, home_markers=args.marker
        )
    except ValueError as e:
        parser.error(f"invalid configuration: {e}")
    sys.exit(_run_guarded(lambda: run_smoke(config)))


def local_main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for the local migrate, seed, build, start and verify cycle."""
    parser = argparse.ArgumentParser(
        description="Migrate, seed, build, start and smoke-test the app locally"
    )
    parser.add_argument("--port", type=int, help="Server port (default: $PORT)")
    parser.add_argument(
        "--base",
        help="Base URL (default: $SMOKE_BASE, then $BASE_URL, then 127.0.0.1:PORT)",
    )
    parser.add_argument("--db", help="Database URL (default: $DATABASE_URL)")
    parser.add_argument("--secret", help="Session secret (default: $NEXTAUTH_SECRET)")
    parser.add_argument(
        "--project-dir", type=Path, help="Application directory (default: cwd)"
    )
    parser.add_argument("--migrate-cmd", type=split_command, help="Migrate command")
    parser.add_argument("--seed-cmd", type=split_command, help="Seed command")
    parser.add_argument("--build-cmd", type=split_command, help="Build command")
    parser.add_argument(
        "--start-cmd",
        type=split_command,
        help="Server start command; {port} is substituted",
    )
    parser.add_argument(
        "--ready-timeout-ms", type=int, help="Readiness deadline (default: 45000)"
    )
    _add_verbose(parser)
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    overrides = {
        key: value
        for key, value in {
            "project_dir": args.project_dir,
            "migrate_command": args.migrate_cmd,
            "seed_command": args.seed_cmd,
            "build_command": args.build_cmd,
            "start_command": args.start_cmd,
            "readiness_timeout_ms": args.ready_timeout_ms,
        }.items()
        if value is not None
    }
    try:
        config = OrchestratorConfig.from_env(
            os.environ,
            port=args.port,
            base=args.base,
            database_url=args.db,
            secret=args.secret,
            **overrides,
        )
    except ValueError as e:
        parser.error(f"invalid configuration: {e}")
    sys.exit(_run_guarded(lambda: run_local(config)))


def probe_main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point serving the readiness and liveness probes."""
    parser = argparse.ArgumentParser(description="Serve /api/health and /api/ready")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, help="Listen port (default: $PORT)")
    parser.add_argument("--db", help="Database URL (default: $DATABASE_URL)")
    parser.add_argument(
        "--migrations-dir",
        type=Path,
        default=Path("prisma") / "migrations",
        help="Directory of timestamp-prefixed migration folders",
    )
    parser.add_argument(
        "--seed-table", help="Table that must contain seeded rows (optional)"
    )
    _add_verbose(parser)
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    try:
        config = ProbeConfig.from_env(
            os.environ,
            port=args.port,
            database_url=args.db,
            host=args.host,
            migrations_dir=args.migrations_dir,
            seed_table=args.seed_table,
        )
    except ValueError as e:
        parser.error(f"invalid configuration: {e}")

    store = SQLiteStore.from_url(config.database_url)
    probe = ReadinessProbe.from_config(config, store=store, environ=os.environ)
    app = create_app(probe, ConnectivityCheck(store=store), commit=config.commit)
    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":  # pragma: no cover
    smoke_main()
