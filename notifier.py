"""Status notifiers: a Discord webhook embed, or plain log lines."""

import logging
import random
import time
from datetime import datetime, timezone

import requests
from requests.adapters import HTTPAdapter

from status_engine import ServerState

logger = logging.getLogger("rconbot.notifier")

EMBED_DESC_LIMIT = 4096
FIELD_VALUE_LIMIT = 1024
PLAYER_LIST_LIMIT = 10

STATE_STYLE = {
    ServerState.ONLINE: {"emoji": "🟢", "color": 0x00FF00, "text": "is Online!"},
    ServerState.OFFLINE: {"emoji": "🔴", "color": 0xFF0000, "text": "is Offline"},
    ServerState.RESTARTING: {"emoji": "🟠", "color": 0xFFA500, "text": "is Restarting"},
}

# === HTTP Session & helpers ===

SESSION = requests.Session()
SESSION.mount("https://", HTTPAdapter(pool_connections=2, pool_maxsize=4))
SESSION.headers.update({"User-Agent": "RCON-StatusBot/1.0"})


def _sleep_backoff(attempt: int, base: float = 0.75, cap: float = 5.0):
    delay = min(cap, base * (2 ** attempt)) + random.uniform(0, 0.25)
    time.sleep(delay)


def discord_request(method: str, url: str, *, json_payload=None, timeout: float = 15, max_retries: int = 3):
    """Request wrapper with 429 Retry-After + 5xx backoff. Returns (resp, errstr|None)."""
    for attempt in range(max_retries + 1):
        try:
            resp = SESSION.request(method, url, json=json_payload, timeout=timeout)
        except requests.RequestException as e:
            if attempt >= max_retries:
                return None, f"request exception: {e}"
            _sleep_backoff(attempt)
            continue

        if resp.status_code == 429:
            try:
                ra = resp.headers.get("Retry-After")
                if not ra:
                    ra = resp.json().get("retry_after")
                delay = float(ra) if ra else 1.0
            except (ValueError, AttributeError):
                delay = 1.0
            if attempt >= max_retries:
                return resp, f"429 Too Many Requests (gave up after {max_retries} retries)"
            time.sleep(delay + random.uniform(0, 0.25))
            continue

        # Transient 5xx
        if 500 <= resp.status_code < 600:
            if attempt >= max_retries:
                return resp, f"{resp.status_code} server error"
            _sleep_backoff(attempt)
            continue

        return resp, None
    return None, "exhausted retries"


def _errtext(resp, err) -> str:
    return err or f"{getattr(resp, 'status_code', '???')} - {getattr(resp, 'text', '')[:180]}"


# === Rendering ===

def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 1)] + "…"


def _san(n: str) -> str:
    # escape simple markdown and trim very long names
    for ch in ("`", "*", "_", "~", "|", ">"):
        n = n.replace(ch, f"\\{ch}")
    return n[:64]


def _iso(ts) -> str:
    if ts is None:
        ts = datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.astimezone()
    return ts.isoformat(timespec="seconds")


def build_embed(state: ServerState, roster, timestamp, *, title: str = "Isle Server", host_label: str = "",
                recovered: bool = False) -> dict:
    style = STATE_STYLE[state]
    embed = {
        "title": f"🖥️ {title} Status",
        "description": f"{style['emoji']} {title} {style['text']}",
        "color": style["color"],
        "timestamp": _iso(timestamp),
    }
    if recovered:
        embed["footer"] = {"text": "Server restart completed successfully"}
    if state is not ServerState.ONLINE or roster is None:
        return embed

    fields = []
    if host_label:
        fields.append({"name": "Host", "value": host_label, "inline": True})
    fields.append({"name": "Total Players", "value": str(len(roster)), "inline": True})

    names = roster.names
    if names:
        value = ", ".join(_san(n) for n in names[:PLAYER_LIST_LIMIT])
        if len(names) > PLAYER_LIST_LIMIT:
            value += f"\n+{len(names) - PLAYER_LIST_LIMIT} more"
        fields.append({"name": "Current Players", "value": _truncate(value, FIELD_VALUE_LIMIT), "inline": False})
    else:
        fields.append({"name": "Players", "value": "No players currently on the server.", "inline": False})
    embed["fields"] = fields
    return embed


# === Notifiers ===

class LogNotifier:
    """Used when no webhook is configured."""

    def publish(self, state: ServerState, roster, timestamp=None, recovered: bool = False):
        if recovered:
            logger.info("[STATUS] Server back online after restart")
        if roster is None:
            logger.info("[STATUS] %s", state.value)
        else:
            logger.info("[STATUS] %s, %d player(s): %s", state.value, len(roster), ", ".join(roster.names) or "-")


class WebhookNotifier:
    """Keeps one status message per webhook and edits it on every event."""

    def __init__(self, webhook_url: str, *, title: str = "Isle Server", host_label: str = ""):
        self.webhook_url = webhook_url.rstrip("/")
        self.title = title
        self.host_label = host_label
        self.message_id = None

    def publish(self, state: ServerState, roster, timestamp=None, recovered: bool = False) -> bool:
        embed = build_embed(state, roster, timestamp, title=self.title, host_label=self.host_label,
                            recovered=recovered)
        content = "Server Back Online" if recovered else "Server Status"
        payload = {
            "content": f"{STATE_STYLE[state]['emoji']} {content}",
            "embeds": [embed],
        }
        if self.message_id is not None:
            return self._edit(payload)
        return self._create(payload)

    def _create(self, payload: dict) -> bool:
        resp, err = discord_request("POST", self.webhook_url + "?wait=true", json_payload=payload, timeout=20)
        if resp is not None and resp.status_code in (200, 204):
            try:
                self.message_id = int(resp.json()["id"])
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("[WARN] Couldn't parse status message ID: %s", e)
            return True
        logger.error("[ERROR] Status post failed: %s", _errtext(resp, err))
        return False

    def _edit(self, payload: dict) -> bool:
        url = f"{self.webhook_url}/messages/{self.message_id}"
        resp, err = discord_request("PATCH", url, json_payload=payload, timeout=20)
        if resp is not None and resp.status_code in (200, 204):
            return True
        if resp is not None and resp.status_code == 404:
            logger.info("[INFO] Status message %s is gone; posting a new one", self.message_id)
            self.message_id = None
            return self._create(payload)
        logger.error("[ERROR] Failed to update status message %s: %s", self.message_id, _errtext(resp, err))
        return False


def make_notifier(settings):
    if not settings.webhook_url or "CHANGE_ME" in settings.webhook_url:
        logger.info("[INIT] No STATUS_WEBHOOK_URL set; status will be logged to the console")
        return LogNotifier()
    return WebhookNotifier(settings.webhook_url, title=settings.server_title, host_label=settings.host_label)
