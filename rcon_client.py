"""RCON transport: one TCP session per poll attempt, plus bounded retry."""

import logging
import socket
import time
from dataclasses import dataclass

from rcon_codec import EMPTY_ROSTER, OP_GET_PLAYER_DATA, RconCodec, RosterSnapshot

logger = logging.getLogger("rconbot.client")

# === Defaults ===
RESPONSE_DEADLINE = 20.0   # whole attempt: connect + login + reply
REPLY_DEADLINE = 5.0       # after login; a stalled remote should fail fast
SETTLE_DELAY = 0.5         # remote drops commands sent right after login
RECV_SIZE = 4096


# === Poll outcomes ===

@dataclass(frozen=True)
class Success:
    roster: RosterSnapshot
    received_bytes: int = 0

    ok = True

    @property
    def retryable(self) -> bool:
        return False


@dataclass(frozen=True)
class ConnectionFailure:
    reason: str
    received_bytes: int = 0

    ok = False

    @property
    def retryable(self) -> bool:
        return self.received_bytes == 0


@dataclass(frozen=True)
class Timeout:
    reason: str = "timed out"
    received_bytes: int = 0

    ok = False

    @property
    def retryable(self) -> bool:
        return self.received_bytes == 0


class _RemoteClosed(ConnectionError):
    pass


class RconSession:
    """Connect, log in, request the roster, disconnect.

    ``attempt`` never raises for socket problems; every exit path is a
    poll outcome and the socket is closed before it returns.
    """

    def __init__(self, host: str, port: int, password: str, *,
                 response_deadline: float = RESPONSE_DEADLINE,
                 reply_deadline: float = REPLY_DEADLINE,
                 settle_delay: float = SETTLE_DELAY,
                 connect_timeout: float | None = None,
                 codec: RconCodec | None = None,
                 opcode: int = OP_GET_PLAYER_DATA,
                 clock=time.monotonic, sleep=time.sleep):
        self.host = host
        self.port = port
        self.password = password
        self.response_deadline = response_deadline
        self.reply_deadline = min(reply_deadline, response_deadline)
        self.settle_delay = settle_delay
        self.connect_timeout = connect_timeout
        self.codec = codec or RconCodec()
        self.opcode = opcode
        self._clock = clock
        self._sleep = sleep

    def __repr__(self):
        return f"RconSession({self.host}:{self.port})"

    def attempt(self):
        deadline = self._clock() + self.response_deadline
        connect_timeout = self.response_deadline
        if self.connect_timeout is not None:
            connect_timeout = min(self.connect_timeout, connect_timeout)

        try:
            sock = socket.create_connection((self.host, self.port), timeout=connect_timeout)
        except socket.timeout:
            return Timeout(f"connect to {self.host}:{self.port} timed out")
        except (OSError, ValueError) as e:
            # ValueError includes UnicodeError from IDNA-encoding a bad host name
            return ConnectionFailure(f"connect to {self.host}:{self.port} failed: {e}")

        buf = bytearray()
        with sock:
            logger.debug("[RCON] Connected to %s:%s, sending login", self.host, self.port)
            try:
                sock.sendall(self.codec.encode_login(self.password))
                accepted = self._read_until(sock, buf, 0, self.codec.is_login_accepted, deadline)
            except OSError as e:
                return ConnectionFailure(f"login failed: {e}", received_bytes=len(buf))
            if not accepted:
                return Timeout("login not accepted before deadline", received_bytes=len(buf))

            logger.debug("[RCON] Login accepted")
            login_len = len(buf)
            self._sleep(max(0.0, self.settle_delay))

            reply_deadline = min(deadline, self._clock() + self.reply_deadline)
            try:
                sock.sendall(self.codec.encode_command(self.opcode))
                complete = self._read_until(sock, buf, login_len, self.codec.is_response_complete, reply_deadline)
            except OSError as e:
                if len(buf) == login_len:
                    return ConnectionFailure(f"no reply after login: {e}", received_bytes=len(buf))
                logger.warning("[WARN] Reply from %s:%s cut short (%s); parsing partial data", self.host, self.port, e)
                reply = self.codec.decode(bytes(buf[login_len:]))
                return Success(self.codec.parse_roster(reply), received_bytes=len(buf))

        if not complete:
            logger.info("[RCON] No complete reply within %.1fs of login; treating as zero players", self.reply_deadline)
            return Success(EMPTY_ROSTER, received_bytes=len(buf))

        reply = self.codec.decode(bytes(buf[login_len:]))
        logger.debug("[RCON] Raw reply: %r", reply)
        return Success(self.codec.parse_roster(reply), received_bytes=len(buf))

    def _read_until(self, sock, buf: bytearray, start: int, done, deadline: float) -> bool:
        """Append to ``buf`` until ``done`` holds for the text after ``start``.

        Returns False when the deadline passes first.
        """
        while not done(self.codec.decode(bytes(buf[start:]))):
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            sock.settimeout(remaining)
            try:
                chunk = sock.recv(RECV_SIZE)
            except socket.timeout:
                return False
            if not chunk:
                raise _RemoteClosed("connection closed by remote")
            buf += chunk
        return True


# === Retry ===

def poll_with_retry(attempt, max_attempts: int = 3, backoff_delay: float = 5.0, sleep=time.sleep):
    """Run ``attempt`` until it yields a non-retryable outcome or attempts run out.

    Only failures that never received a byte are retried. The last outcome is
    returned as-is.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    outcome = None
    for n in range(1, max_attempts + 1):
        outcome = attempt()
        if not outcome.retryable:
            return outcome
        logger.info("[POLL] Attempt %d/%d failed: %s", n, max_attempts, outcome.reason)
        if n < max_attempts:
            sleep(max(0.0, backoff_delay))
    return outcome
