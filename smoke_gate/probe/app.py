"""HTTP surface of the readiness probe."""

import logging
from importlib.metadata import PackageNotFoundError, version
from typing import Any

from aiohttp import web

from smoke_gate.probe.checks import ConnectivityCheck
from smoke_gate.probe.probe import ReadinessProbe

log = logging.getLogger(__name__)

PROBE_KEY = web.AppKey("probe", ReadinessProbe)
LIVENESS_KEY = web.AppKey("liveness", ConnectivityCheck)
BUILD_KEY = web.AppKey("build", dict[str, Any])

NO_STORE = {"Cache-Control": "no-store"}


def package_version() -> str:
    try:
        return version("release-smoke-gate")
    except PackageNotFoundError:
        return "unknown"


async def handle_ready(request: web.Request) -> web.Response:
    """Report readiness; the status code always mirrors the ``ok`` flag."""
    report = await request.app[PROBE_KEY].evaluate()
    checks = report.checks_payload()

    if report.ok:
        body: dict[str, Any] = {
            "ok": True,
            "data": {"checks": checks, "timestamp": report.timestamp.isoformat()},
        }
    else:
        body = {
            "ok": False,
            "error": {
                "code": "INTERNAL",
                "message": "Service not ready",
                "details": {"checks": checks},
            },
        }
    return web.json_response(body, status=report.status_code, headers=NO_STORE)


async def handle_health(request: web.Request) -> web.Response:
    """Report liveness together with build metadata and store connectivity."""
    db = await request.app[LIVENESS_KEY].run()
    body = {
        "ok": db.ok,
        "build": request.app[BUILD_KEY],
        "services": {"db": db.model_dump(exclude_none=True)},
    }
    return web.json_response(body, status=200 if db.ok else 503, headers=NO_STORE)


def create_app(
    probe: ReadinessProbe,
    liveness: ConnectivityCheck,
    commit: str | None = None,
) -> web.Application:
    """Create the probe application serving ``/api/health`` and ``/api/ready``."""
    app = web.Application()
    app[PROBE_KEY] = probe
    app[LIVENESS_KEY] = liveness
    app[BUILD_KEY] = {"version": package_version(), "commit": commit}
    app.router.add_get("/api/health", handle_health)
    app.router.add_get("/api/ready", handle_ready)
    log.debug("Probe routes registered: /api/health, /api/ready")
    return app
