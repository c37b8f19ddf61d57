"""Polling scheduler and Online/Offline/Restarting state machine."""

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo

from rcon_client import ConnectionFailure

logger = logging.getLogger("rconbot.engine")

POLL_INTERVAL = 180.0
RESTART_SETTLE = 60.0
RECHECK_DELAY = 30.0


class ServerState(enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    RESTARTING = "restarting"


@dataclass(frozen=True)
class RestartWindow:
    hour: int
    minute: int
    tz: tzinfo | None = field(default=None, compare=False)

    def __post_init__(self):
        if not (0 <= self.hour <= 23) or not (0 <= self.minute <= 59):
            raise ValueError(f"restart time {self.hour}:{self.minute} out of range (hour 0-23, minute 0-59)")

    def local(self, now: datetime) -> datetime:
        if self.tz is not None and now.tzinfo is not None:
            return now.astimezone(self.tz)
        return now

    def matches(self, now: datetime) -> bool:
        now = self.local(now)
        return now.hour == self.hour and now.minute == self.minute

    def seconds_until(self, now: datetime) -> float:
        """Seconds until the next start of the window minute (0 while inside it)."""
        now = self.local(now)
        if self.matches(now):
            return 0.0
        start = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if start <= now:
            start += timedelta(days=1)
        # compare in UTC so a DST change in between counts as elapsed time
        return (start.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()

    def __str__(self):
        return f"{self.hour:02d}:{self.minute:02d}"


class StatusEngine:
    """Owns the server state and the poll timers.

    ``poll`` is the retrying poll used on normal ticks; ``recheck`` is the
    single-attempt probe used while the server is restarting. Both return a
    poll outcome. Every poll runs under one in-flight lock, so a manual
    update never overlaps a scheduled one.
    """

    def __init__(self, poll, notifier, *, recheck=None,
                 interval: float = POLL_INTERVAL,
                 restart_window: RestartWindow | None = None,
                 restart_settle: float = RESTART_SETTLE,
                 recheck_delay: float = RECHECK_DELAY,
                 clock=time.monotonic, now=None):
        self._poll = poll
        self._recheck = recheck or poll
        self._notifier = notifier
        self.interval = interval
        self.restart_window = restart_window
        self.restart_settle = restart_settle
        self.recheck_delay = recheck_delay
        self._clock = clock
        self._now = now or datetime.now

        self._state = ServerState.OFFLINE
        self.last_roster = None
        self._in_flight = threading.Lock()
        self._wake = threading.Event()
        self._stopping = False
        self._update_requested = False
        self._window_fired_on: date | None = None

        # due times on self._clock; None means cancelled
        self._tick_due: float | None = None
        self._recheck_due: float | None = None

    # === Read-only views ===

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def tick_due(self):
        return self._tick_due

    @property
    def recheck_due(self):
        return self._recheck_due

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    # === Transitions ===

    def _publish(self, roster, recovered: bool = False):
        try:
            self._notifier.publish(self._state, roster, self._now(), recovered=recovered)
        except Exception as e:
            logger.warning("[WARN] Notifier failed for state %s: %s", self._state.value, e)

    def _set_state(self, new_state: ServerState):
        if new_state is not self._state:
            logger.info("[STATE] %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    def _enter_online(self, roster, recovered: bool = False):
        self._set_state(ServerState.ONLINE)
        self.last_roster = roster
        self._publish(roster, recovered)

    def _enter_offline(self, outcome):
        self._set_state(ServerState.OFFLINE)
        logger.info("[POLL] Server appears offline: %s", getattr(outcome, "reason", outcome))
        self._publish(None)

    def _enter_restarting(self, today: date):
        self._window_fired_on = today
        self._set_state(ServerState.RESTARTING)
        self._tick_due = None
        self._recheck_due = self._clock() + self.restart_settle
        logger.info("[RESTART] Restart window %s reached; first check in %.0fs", self.restart_window, self.restart_settle)
        self._publish(None)

    def _window_open(self, now: datetime) -> bool:
        if self.restart_window is None or self._state is ServerState.RESTARTING:
            return False
        if not self.restart_window.matches(now):
            return False
        # one firing per calendar day, even if a manual update lands in the same minute
        return self._window_fired_on != self.restart_window.local(now).date()

    # === Poll callbacks ===

    def _guarded(self, poll):
        try:
            return poll()
        except Exception as e:
            logger.error("[ERROR] Poll raised %s: %s", type(e).__name__, e)
            return ConnectionFailure(f"poll raised {type(e).__name__}: {e}")

    def tick(self) -> bool:
        """Normal scheduled tick. Returns False if a poll was already in flight."""
        if not self._in_flight.acquire(blocking=False):
            logger.info("[POLL] Poll already in flight; skipping tick")
            return False
        try:
            now = self._now()
            if self._window_open(now):
                self._enter_restarting(self.restart_window.local(now).date())
                return True
            if self._state is ServerState.RESTARTING:
                return True

            outcome = self._guarded(self._poll)
            if outcome.ok:
                self._enter_online(outcome.roster)
                logger.info("[POLL] Online with %d player(s)", len(outcome.roster))
            else:
                self._enter_offline(outcome)
            self._tick_due = self._clock() + self.interval
            return True
        finally:
            self._in_flight.release()

    def recheck(self) -> bool:
        """Fast re-check while restarting. Returns False if a poll was already in flight."""
        if not self._in_flight.acquire(blocking=False):
            logger.info("[RESTART] Poll already in flight; skipping re-check")
            return False
        try:
            if self._state is not ServerState.RESTARTING:
                self._recheck_due = None
                return True

            logger.info("[RESTART] Checking if server is back online...")
            outcome = self._guarded(self._recheck)
            if outcome.ok:
                self._recheck_due = None
                self._tick_due = self._clock() + self.interval
                logger.info("[RESTART] Server is back online after restart")
                self._enter_online(outcome.roster, recovered=True)
            else:
                self._recheck_due = self._clock() + self.recheck_delay
                logger.info("[RESTART] Still restarting (%s); next check in %.0fs",
                            getattr(outcome, "reason", outcome), self.recheck_delay)
            return True
        finally:
            self._in_flight.release()

    def update_now(self) -> bool:
        """Administrative update; runs a re-check instead while restarting."""
        if self._state is ServerState.RESTARTING:
            return self.recheck()
        return self.tick()

    # === Scheduling ===

    def start(self):
        """Schedule the first normal tick immediately."""
        self._tick_due = self._clock()

    def request_update(self):
        """Ask the run loop to perform an update as soon as it is free."""
        self._update_requested = True
        self._wake.set()

    def stop(self):
        self._stopping = True
        self._wake.set()

    def run_pending(self) -> float | None:
        """Run whatever is due and return seconds until the next timer."""
        if self._update_requested:
            self._update_requested = False
            self.update_now()

        now = self._now()
        if self._window_open(now):
            self.tick()
        if self._recheck_due is not None and self._clock() >= self._recheck_due:
            self.recheck()
        if self._tick_due is not None and self._clock() >= self._tick_due:
            self.tick()
        return self._next_delay()

    def _next_delay(self) -> float | None:
        t = self._clock()
        delays = [due - t for due in (self._tick_due, self._recheck_due) if due is not None]
        if self.restart_window is not None and self._state is not ServerState.RESTARTING:
            until_window = self.restart_window.seconds_until(self._now())
            # already fired today; wait for the minute to pass
            delays.append(until_window if until_window > 0 else 60.0)
        if not delays:
            return None
        return max(0.0, min(delays))

    def run_forever(self):
        logger.info("[INIT] Status engine started (interval %.0fs, restart window %s)",
                    self.interval, self.restart_window or "disabled")
        if self._tick_due is None and self._recheck_due is None:
            self.start()
        while not self._stopping:
            delay = self.run_pending()
            if self._stopping:
                break
            self._wake.wait(delay)
            self._wake.clear()
        logger.info("[SHUTDOWN] Status engine stopped in state %s", self._state.value)
