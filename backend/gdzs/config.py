from __future__ import annotations

import os

from dotenv import load_dotenv

from . import physics_config as PhysicsCfg

load_dotenv()


def parse_env_flag(name: str, default: bool) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    normalized = raw_value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_allowed_origins(raw_value: str) -> list[str]:
    return [origin.strip() for origin in raw_value.split(",") if origin.strip()]


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./gdzs.db").strip() or "sqlite:///./gdzs.db"

PERSISTENCE_ENABLED = parse_env_flag("PERSISTENCE_ENABLED", True)

# Fatal in tests and debug runs, logged and clamped in the field.
STRICT_INVARIANTS = parse_env_flag("GDZS_STRICT_INVARIANTS", False)

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO").strip() or "INFO").upper()

TICK_INTERVAL_SEC = PhysicsCfg.TICK_STEP_SEC

try:
    _communication_interval = int(
        os.getenv(
            "COMMUNICATION_INTERVAL_SEC",
            str(PhysicsCfg.COMMUNICATION_INTERVAL_DEFAULT_SEC),
        )
    )
except ValueError:
    _communication_interval = PhysicsCfg.COMMUNICATION_INTERVAL_DEFAULT_SEC
COMMUNICATION_INTERVAL_SEC = max(60, min(3600, _communication_interval))

ROSTER_PATH = os.getenv("ROSTER_PATH", "").strip()

ALLOWED_ORIGINS = _parse_allowed_origins(
    os.getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )
)
ALLOWED_ORIGIN_REGEX = os.getenv(
    "ALLOWED_ORIGIN_REGEX",
    r"^http://(?:localhost|127\.0\.0\.1|0\.0\.0\.0|(?:\d{1,3}\.){3}\d{1,3})(?::\d{1,5})?$",
)
