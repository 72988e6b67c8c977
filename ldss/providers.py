"""
Provider bindings: how a project attaches to an external storage backend.

Each provider tag maps to a ``ProviderBinding`` that knows which config fields
it requires and how to probe the backend. Only the turso binding opens a real
connection. The planetscale/neon, supabase and custom bindings use
``SimulatedProbe``, a stub that waits a fixed delay and reports success until
real clients exist for those providers; pass a different probe to replace it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Set

from sqlalchemy import create_engine, text
from sqlalchemy.pool import NullPool

from ldss.errors import ValidationError

logger = logging.getLogger(__name__)

Probe = Callable[[dict], None]

DEFAULT_SIMULATED_DELAY_SECONDS = 0.1
TURSO_URL_SCHEMES = ("libsql", "https", "wss")


@dataclass
class ConnectionTestResult:
    success: bool
    message: str
    latency_ms: int

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "latency": self.latency_ms,
        }


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


class SimulatedProbe:
    """
    Stub probe for providers without a real client.

    Waits ``delay_seconds`` and returns. ``cancel()`` interrupts the waits in
    progress at that moment, which then fail; later calls are unaffected.
    """

    def __init__(self, delay_seconds: float = DEFAULT_SIMULATED_DELAY_SECONDS):
        self.delay_seconds = delay_seconds
        self._lock = threading.Lock()
        self._waiting: Set[threading.Event] = set()

    def cancel(self) -> None:
        with self._lock:
            for event in self._waiting:
                event.set()

    def __call__(self, config: dict) -> None:
        event = threading.Event()
        with self._lock:
            self._waiting.add(event)
        try:
            if event.wait(self.delay_seconds):
                raise RuntimeError("Connection test cancelled")
        finally:
            with self._lock:
                self._waiting.discard(event)


def libsql_engine_url(database_url: str) -> str:
    """
    Map a Turso database URL onto the ``sqlite+libsql`` SQLAlchemy dialect.

    Only Turso's own schemes are accepted. Local SQLite files and other
    SQLAlchemy URLs are rejected.
    """
    scheme, sep, rest = database_url.partition("://")
    if not sep or scheme.lower() not in TURSO_URL_SCHEMES or not rest:
        raise ValueError(f"Unsupported Turso database URL scheme: {scheme}")
    joiner = "&" if "?" in rest else "?"
    return f"sqlite+libsql://{rest}{joiner}secure=true"


def sql_liveness_probe(config: dict) -> None:
    """Open a connection to the Turso ``databaseUrl`` and run ``SELECT 1``."""
    url = libsql_engine_url(config["databaseUrl"])
    engine = create_engine(
        url, connect_args={"auth_token": config["authToken"]}, poolclass=NullPool
    )
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    finally:
        engine.dispose()


class ProviderBinding:
    """Base binding: field-presence validation plus a pluggable probe."""

    label: str = ""
    required_fields: Sequence[str] = ()

    def __init__(self, tag: str, probe: Optional[Probe] = None):
        self.tag = tag
        self.probe = probe

    def validate(self, config: dict) -> None:
        missing = [name for name in self.required_fields if not config.get(name)]
        if missing:
            raise ValidationError(
                f"{self.label or self.tag} requires {' and '.join(self.required_fields)}"
            )

    def test_connection(self, config: dict) -> ConnectionTestResult:
        start = time.perf_counter()
        try:
            self.validate(config)
            if self.probe is not None:
                self.probe(config)
        except Exception as exc:
            latency = _elapsed_ms(start)
            logger.warning("%s connection test failed: %s", self.tag, exc)
            return ConnectionTestResult(False, str(exc), latency)
        return ConnectionTestResult(
            True, f"{self.tag} connection successful", _elapsed_ms(start)
        )


class NoneBinding(ProviderBinding):
    """Local-only mode. Nothing to validate or probe."""

    def test_connection(self, config: dict) -> ConnectionTestResult:
        return ConnectionTestResult(True, "Local-only mode (no backend)", 0)


class SqlBinding(ProviderBinding):
    label = "Turso"
    required_fields = ("databaseUrl", "authToken")


class ServerlessSqlBinding(ProviderBinding):
    required_fields = ("connectionString",)


class BaasBinding(ProviderBinding):
    label = "Supabase"
    required_fields = ("url", "anonKey")


class CustomHttpBinding(ProviderBinding):
    label = "Custom backend"
    required_fields = ("baseUrl", "apiKey")


class ProviderRegistry:
    """Looks up the binding for a config's ``provider`` tag."""

    def __init__(self, bindings: Dict[str, ProviderBinding]):
        self.bindings = bindings

    @classmethod
    def default(
        cls,
        *,
        simulated_delay_seconds: float = DEFAULT_SIMULATED_DELAY_SECONDS,
        sql_probe: Probe = sql_liveness_probe,
    ) -> "ProviderRegistry":
        def stub() -> SimulatedProbe:
            return SimulatedProbe(simulated_delay_seconds)

        return cls(
            {
                "none": NoneBinding("none"),
                "turso": SqlBinding("turso", sql_probe),
                "planetscale": ServerlessSqlBinding("planetscale", stub()),
                "neon": ServerlessSqlBinding("neon", stub()),
                "supabase": BaasBinding("supabase", stub()),
                "custom": CustomHttpBinding("custom", stub()),
            }
        )

    def get(self, tag) -> ProviderBinding:
        binding = self.bindings.get(tag) if isinstance(tag, str) else None
        if binding is None:
            raise ValidationError(f"Unknown provider: {tag}")
        return binding

    def validate_config(self, config) -> None:
        if not isinstance(config, dict):
            raise ValidationError("Backend config must be an object")
        self.get(config.get("provider")).validate(config)

    def test_connection(self, config) -> ConnectionTestResult:
        try:
            if not isinstance(config, dict):
                raise ValidationError("Backend config must be an object")
            binding = self.get(config.get("provider"))
        except ValidationError as exc:
            return ConnectionTestResult(False, exc.message, 0)
        return binding.test_connection(config)
