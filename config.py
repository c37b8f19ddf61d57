"""Settings for the RCON status bot, read from environment variables.

Quick setup:
1) Set RCON_IP, RCON_PORT and RCON_PASSWORD (required; the bot will not start without them)
2) (Optional) Set STATUS_WEBHOOK_URL to a Discord webhook, or leave blank to log status to the console
3) (Optional) Tweak POLL_INTERVAL_SECONDS and the RESTART_* knobs for your daily restart
"""

import logging
import math
import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("rconbot")


class ConfigError(Exception):
    """Required settings are missing or invalid; polling must not start."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


@dataclass(frozen=True)
class Settings:
    # Required: the RCON endpoint
    host: str
    port: int
    password: str

    # Optional: Discord webhook for the status embed. Blank logs status instead.
    webhook_url: str = ""
    server_title: str = "Isle Server"
    host_label: str = ""

    # How often to poll when not restarting (seconds)
    poll_interval: float = 180.0

    # Daily restart window (local time unless restart_timezone is set)
    restart_enabled: bool = True
    restart_hour: int = 7
    restart_minute: int = 59
    restart_timezone: str = ""
    restart_settle: float = 60.0    # wait before the first check after the window opens
    restart_recheck: float = 30.0   # then check this often until the server answers

    # Protocol timing
    response_deadline: float = 20.0
    reply_deadline: float = 5.0
    settle_delay: float = 0.5

    # Retry knobs for normal polls
    retry_attempts: int = 3
    retry_backoff: float = 5.0

    debug_log: bool = False

    @property
    def restart_tz(self):
        if not self.restart_timezone:
            return None
        return ZoneInfo(self.restart_timezone)


# === Parsing helpers (accept strings OR numbers) ===

def _to_int_or_none(v):
    if v is None:
        return None
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return None


def _get(env, name: str) -> str:
    return (env.get(name) or "").strip()


def _optional(env, name: str, default, cast=float, positive: bool = False):
    """Typed optional setting; malformed, non-finite or negative numbers fall back to default.

    With ``positive`` zero is rejected too (intervals, deadlines, counts).
    """
    raw = _get(env, name)
    if not raw:
        return default
    if cast is bool:
        return raw.lower() in ("true", "1", "yes", "on")
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        logger.warning("[WARN] %s=%r is not a valid %s; using default %r", name, raw, cast.__name__, default)
        return default
    if not math.isfinite(value) or value < 0 or (positive and value == 0):
        need = "greater than 0" if positive else "0 or more"
        logger.warning("[WARN] %s=%r must be a finite number %s; using default %r", name, raw, need, default)
        return default
    return value


def load_settings(env=None) -> Settings:
    """Build Settings from ``env`` (defaults to os.environ).

    Raises ConfigError listing every problem found.
    """
    if env is None:
        env = os.environ
    problems = []

    host = _get(env, "RCON_IP")
    if not host:
        problems.append("RCON_IP is not set")

    port = None
    raw_port = _get(env, "RCON_PORT")
    if not raw_port:
        problems.append("RCON_PORT is not set")
    else:
        port = _to_int_or_none(raw_port)
        if port is None or not (1 <= port <= 65535):
            problems.append(f"RCON_PORT must be a port number (1-65535), got {raw_port!r}")

    password = env.get("RCON_PASSWORD") or ""
    if not password:
        problems.append("RCON_PASSWORD is not set")

    restart_enabled = _optional(env, "RESTART_ENABLED", True, bool)
    restart_hour = _to_int_or_none(_get(env, "RESTART_HOUR") or 7)
    restart_minute = _to_int_or_none(_get(env, "RESTART_MINUTE") or 59)
    restart_timezone = _get(env, "RESTART_TIMEZONE")
    if restart_enabled:
        if restart_hour is None or restart_minute is None:
            problems.append("RESTART_HOUR/RESTART_MINUTE must be numbers")
        elif not (0 <= restart_hour <= 23) or not (0 <= restart_minute <= 59):
            problems.append("Restart time invalid: use hour 0-23 and minute 0-59")
        if restart_timezone:
            try:
                ZoneInfo(restart_timezone)
            except (ZoneInfoNotFoundError, ValueError):
                problems.append(f"RESTART_TIMEZONE {restart_timezone!r} is not a known time zone")

    retry_attempts = _optional(env, "RETRY_ATTEMPTS", 3, int, positive=True)

    if problems:
        raise ConfigError(problems)

    return Settings(
        host=host,
        port=port,
        password=password,
        webhook_url=_get(env, "STATUS_WEBHOOK_URL"),
        server_title=_get(env, "SERVER_TITLE") or "Isle Server",
        host_label=_get(env, "HOST_LABEL"),
        poll_interval=_optional(env, "POLL_INTERVAL_SECONDS", 180.0, positive=True),
        restart_enabled=restart_enabled,
        restart_hour=restart_hour if restart_hour is not None else 7,
        restart_minute=restart_minute if restart_minute is not None else 59,
        restart_timezone=restart_timezone,
        restart_settle=_optional(env, "RESTART_SETTLE_SECONDS", 60.0),
        restart_recheck=_optional(env, "RESTART_RECHECK_SECONDS", 30.0, positive=True),
        response_deadline=_optional(env, "RCON_RESPONSE_DEADLINE", 20.0, positive=True),
        reply_deadline=_optional(env, "RCON_REPLY_DEADLINE", 5.0, positive=True),
        settle_delay=_optional(env, "RCON_SETTLE_DELAY", 0.5),
        retry_attempts=retry_attempts,
        retry_backoff=_optional(env, "RETRY_BACKOFF_SECONDS", 5.0),
        debug_log=_optional(env, "DEBUG_LOG_ENABLED", False, bool),
    )
