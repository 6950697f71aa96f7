"""Environment-driven settings for the relay server."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

DEFAULT_PORT = 3000
DEFAULT_WS_MAX_SIZE = 1 << 20
LOG_LEVELS = ("critical", "error", "warning", "info", "debug")
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
PRESENCE_MODES = ("join", "list")


def _parse_int(name: str, value: str, minimum: int, maximum: Optional[int] = None) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc
    if parsed < minimum or (maximum is not None and parsed > maximum):
        raise ValueError(f"{name} out of range: {parsed}")
    return parsed


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    ws_path: str = "/ws"
    presence_mode: str = "join"
    static_dir: Optional[str] = "public"
    cors_origins: Tuple[str, ...] = field(default_factory=lambda: ("*",))
    log_level: str = "info"
    ws_max_size: int = DEFAULT_WS_MAX_SIZE
    uvloop: bool = False

    def __post_init__(self) -> None:
        if self.presence_mode not in PRESENCE_MODES:
            raise ValueError(f"presence_mode must be one of {PRESENCE_MODES}, got {self.presence_mode!r}")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")
        if not self.ws_path.startswith("/"):
            raise ValueError("ws_path must start with '/'")
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        port_raw = env.get("RENDEZVOUS_PORT") or env.get("PORT") or str(DEFAULT_PORT)
        origins = tuple(o.strip() for o in env.get("RENDEZVOUS_CORS_ORIGINS", "*").split(",") if o.strip())
        return cls(
            host=env.get("RENDEZVOUS_HOST", "0.0.0.0"),
            port=_parse_int("port", port_raw, 1, 65535),
            ws_path=env.get("RENDEZVOUS_WS_PATH", "/ws"),
            presence_mode=env.get("RENDEZVOUS_PRESENCE_MODE", "join").lower(),
            static_dir=env.get("RENDEZVOUS_STATIC_DIR", "public") or None,
            cors_origins=origins,
            log_level=env.get("RENDEZVOUS_LOG_LEVEL", "info").lower(),
            ws_max_size=_parse_int("ws_max_size", env.get("RENDEZVOUS_WS_MAX_SIZE", str(DEFAULT_WS_MAX_SIZE)), 1),
            uvloop=bool(env.get("UVLOOP")),
        )

    def override(self, **changes) -> "Settings":
        """Return a copy with every non-None keyword applied."""

        return replace(self, **{k: v for k, v in changes.items() if v is not None})


__all__ = ["LOG_FORMAT", "LOG_LEVELS", "PRESENCE_MODES", "Settings"]
