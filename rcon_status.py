# ============================================================
# RCON-StatusBot
# Version: v1.0.0
#
# Polls a game server over RCON, tracks Online / Offline /
# Restarting (with a daily restart window) and keeps a Discord
# status embed up to date.
#
# Signals:
# - SIGINT / SIGTERM: stop after the current poll
# - SIGUSR1: run an update as soon as the poller is free
# ============================================================

import logging
import signal
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler

from config import ConfigError, load_settings
from notifier import make_notifier
from rcon_client import RconSession, poll_with_retry
from status_engine import RestartWindow, StatusEngine

VERSION = "1.0.0"

logger = logging.getLogger("rconbot")


def setup_logging(debug_log: bool = False):
    """Console always ON (INFO+); optional rotating file for DEBUG."""
    logger.setLevel(logging.DEBUG)  # master gate
    if logger.handlers:
        return
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(fmt)
    logger.addHandler(console)

    if debug_log:
        file_handler = RotatingFileHandler("debug.log", maxBytes=5 * 1024 * 1024, backupCount=3)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)


def build_engine(settings, notifier=None) -> StatusEngine:
    session = RconSession(
        settings.host,
        settings.port,
        settings.password,
        response_deadline=settings.response_deadline,
        reply_deadline=settings.reply_deadline,
        settle_delay=settings.settle_delay,
    )

    def poll():
        return poll_with_retry(session.attempt, settings.retry_attempts, settings.retry_backoff)

    tz = settings.restart_tz
    window = None
    if settings.restart_enabled:
        window = RestartWindow(settings.restart_hour, settings.restart_minute, tz)

    return StatusEngine(
        poll,
        notifier or make_notifier(settings),
        recheck=session.attempt,
        interval=settings.poll_interval,
        restart_window=window,
        restart_settle=settings.restart_settle,
        recheck_delay=settings.restart_recheck,
        now=(lambda: datetime.now(tz)) if tz is not None else datetime.now,
    )


def main() -> int:
    setup_logging()
    logger.info("[INIT] Starting RCON-StatusBot v%s", VERSION)

    try:
        settings = load_settings()
    except ConfigError as e:
        for problem in e.problems:
            logger.error("[ERROR] Config: %s", problem)
        logger.error("[ERROR] Refusing to start polling until the configuration is fixed.")
        return 2

    if settings.debug_log:
        logger.handlers.clear()
        setup_logging(debug_log=True)

    logger.info("[INIT] Target %s:%s, polling every %.0fs", settings.host, settings.port, settings.poll_interval)
    engine = build_engine(settings)

    def _graceful_exit(signum, frame):
        logger.info("[SHUTDOWN] Signal %s received. Stopping…", signum)
        engine.stop()

    def _manual_update(signum, frame):
        logger.info("[UPDATE] Manual update requested")
        engine.request_update()

    for _sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)):
        if _sig:
            signal.signal(_sig, _graceful_exit)
    if getattr(signal, "SIGUSR1", None):
        signal.signal(signal.SIGUSR1, _manual_update)

    engine.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
