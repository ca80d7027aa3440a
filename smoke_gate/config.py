"""Configuration for the smoke verifier, orchestrator and readiness probe.

Each configuration is constructed once at start-up from command-line flags
with environment fallbacks, then passed explicitly to every stage.
"""

from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr

DEFAULT_BASE = "http://127.0.0.1:3000"
DEFAULT_PORT = 3000
DEFAULT_DATABASE_URL = "file:./dev-smoke.db"
DEFAULT_SECRET = "devsecret"
SESSION_SECRET_ENV = "NEXTAUTH_SECRET"
COMMIT_ENV_VARS = ("VERCEL_GIT_COMMIT_SHA", "GIT_COMMIT_SHA")


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    value = environ.get(key, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {value!r}") from None


def _first_set(environ: Mapping[str, str], *keys: str) -> str | None:
    for key in keys:
        if value := environ.get(key):
            return value
    return None


class VerifierConfig(BaseModel):
    """Configuration for the smoke verifier."""

    base: str = DEFAULT_BASE
    timeout_ms: int = Field(default=30_000, gt=0)
    interval_ms: int = Field(default=1_000, gt=0)
    request_timeout_ms: int = Field(default=8_000, gt=0)
    home_markers: Sequence[str] = Field(default=("Iris", "Wellness"), min_length=1)
    health_path: str = "/api/health"
    ready_path: str = "/api/ready"
    home_path: str = "/"

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str],
        *,
        base: str | None = None,
        home_markers: Sequence[str] = (),
    ) -> "VerifierConfig":
        """Build the configuration, letting explicit flags win over environment."""
        overrides: dict[str, object] = {}
        if home_markers:
            overrides["home_markers"] = tuple(home_markers)
        return cls(
            base=base or environ.get("SMOKE_BASE") or DEFAULT_BASE,
            timeout_ms=_env_int(environ, "SMOKE_TIMEOUT_MS", 30_000),
            interval_ms=_env_int(environ, "SMOKE_INTERVAL_MS", 1_000),
            request_timeout_ms=_env_int(environ, "SMOKE_REQUEST_TIMEOUT_MS", 8_000),
            **overrides,
        )


class OrchestratorConfig(BaseModel):
    """Configuration for a full local migrate, seed, build, start and verify cycle."""

    port: int = Field(default=DEFAULT_PORT, gt=0, lt=65536)
    base: str = DEFAULT_BASE
    database_url: str = DEFAULT_DATABASE_URL
    secret: SecretStr = SecretStr(DEFAULT_SECRET)
    project_dir: Path = Path(".")
    migrate_command: Sequence[str] = ("npx", "prisma", "migrate", "deploy")
    seed_command: Sequence[str] = ("node", "prisma/seed.js")
    build_command: Sequence[str] = ("npm", "run", "build")
    start_command: Sequence[str] = ("npx", "next", "start", "-p", "{port}")
    # Relative to project_dir; its presence means a build already exists
    build_marker: Path = Path(".next") / "BUILD_ID"
    readiness_timeout_ms: int = Field(default=45_000, gt=0)
    readiness_interval_ms: int = Field(default=1_000, gt=0)
    shutdown_grace: float = Field(default=10.0, ge=0)
    verifier: VerifierConfig = Field(default_factory=VerifierConfig)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str],
        *,
        port: int | None = None,
        base: str | None = None,
        database_url: str | None = None,
        secret: str | None = None,
        **kwargs: object,
    ) -> "OrchestratorConfig":
        """Build the configuration, letting explicit flags win over environment."""
        resolved_port = port or _env_int(environ, "PORT", DEFAULT_PORT)
        resolved_base = base or _first_set(environ, "SMOKE_BASE", "BASE_URL")
        resolved_base = resolved_base or f"http://127.0.0.1:{resolved_port}"
        return cls(
            port=resolved_port,
            base=resolved_base,
            database_url=database_url
            or environ.get("DATABASE_URL")
            or DEFAULT_DATABASE_URL,
            secret=SecretStr(
                secret or environ.get(SESSION_SECRET_ENV) or DEFAULT_SECRET
            ),
            verifier=VerifierConfig.from_env(environ, base=resolved_base),
            **kwargs,
        )

    @property
    def build_marker_path(self) -> Path:
        return self.project_dir / self.build_marker

    def verifier_config(self) -> VerifierConfig:
        """Verifier settings pointed at this run's base address."""
        return self.verifier.model_copy(update={"base": self.base})

    def stage_env(self) -> dict[str, str]:
        """Environment overlay for migrate, seed and server stages."""
        return {
            "DATABASE_URL": self.database_url,
            SESSION_SECRET_ENV: self.secret.get_secret_value(),
            "NEXTAUTH_URL": self.base,
            "PORT": str(self.port),
        }

    def build_env(self) -> dict[str, str]:
        """Environment overlay for the build stage."""
        return {**self.stage_env(), "NODE_ENV": "production"}

    def server_command(self) -> Sequence[str]:
        """Start command with the port substituted."""
        return [part.format(port=self.port) for part in self.start_command]


class ProbeConfig(BaseModel):
    """Configuration for the standalone readiness probe server."""

    host: str = "0.0.0.0"
    port: int = Field(default=DEFAULT_PORT, gt=0, lt=65536)
    database_url: str = DEFAULT_DATABASE_URL
    migrations_dir: Path = Path("prisma") / "migrations"
    required_settings: Sequence[str] = ("DATABASE_URL", SESSION_SECRET_ENV)
    seed_table: str | None = Field(default=None, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    commit: str | None = None

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str],
        *,
        port: int | None = None,
        database_url: str | None = None,
        **kwargs: object,
    ) -> "ProbeConfig":
        """Build the configuration, letting explicit flags win over environment."""
        return cls(
            port=port or _env_int(environ, "PORT", DEFAULT_PORT),
            database_url=database_url
            or environ.get("DATABASE_URL")
            or DEFAULT_DATABASE_URL,
            commit=_first_set(environ, *COMMIT_ENV_VARS),
            **kwargs,
        )
