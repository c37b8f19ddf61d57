from datetime import datetime, timezone

import pytest
import requests

import notifier
from notifier import LogNotifier, WebhookNotifier, build_embed, make_notifier
from rcon_codec import EMPTY_ROSTER, PlayerRecord, RosterSnapshot
from status_engine import ServerState

WEBHOOK = "https://discord.com/api/webhooks/1/token"
TS = datetime(2026, 10, 17, 8, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code, data=None, headers=None):
        self.status_code = status_code
        self._data = data or {}
        self.headers = headers or {}
        self.text = str(self._data)

    def json(self):
        return self._data


@pytest.fixture
def http(monkeypatch):
    """Queue of responses served to SESSION.request, with calls recorded."""
    calls = []
    queue = []

    def fake_request(method, url, json=None, timeout=None):
        calls.append((method, url, json))
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(notifier.SESSION, "request", fake_request)
    monkeypatch.setattr(notifier.time, "sleep", lambda s: None)
    return calls, queue


def roster_of(n):
    return RosterSnapshot(players=tuple(
        PlayerRecord(id=str(i), name=f"Dino{i}", player_class="Rex") for i in range(n)
    ))


def test_online_embed_lists_players():
    embed = build_embed(ServerState.ONLINE, roster_of(2), TS, title="Isle Server", host_label="TheDawnOfTime")

    assert embed["description"] == "🟢 Isle Server is Online!"
    assert embed["color"] == 0x00FF00
    fields = {f["name"]: f["value"] for f in embed["fields"]}
    assert fields["Host"] == "TheDawnOfTime"
    assert fields["Total Players"] == "2"
    assert fields["Current Players"] == "Dino0, Dino1"


def test_online_embed_caps_player_list():
    embed = build_embed(ServerState.ONLINE, roster_of(13), TS)

    fields = {f["name"]: f["value"] for f in embed["fields"]}
    assert fields["Current Players"].endswith("\n+3 more")
    assert "Dino10" not in fields["Current Players"]


def test_online_embed_with_no_players():
    embed = build_embed(ServerState.ONLINE, EMPTY_ROSTER, TS)

    fields = {f["name"]: f["value"] for f in embed["fields"]}
    assert fields["Players"] == "No players currently on the server."
    assert "Host" not in fields


@pytest.mark.parametrize("state,color,text", [
    (ServerState.OFFLINE, 0xFF0000, "🔴 Isle Server is Offline"),
    (ServerState.RESTARTING, 0xFFA500, "🟠 Isle Server is Restarting"),
])
def test_offline_and_restarting_embeds_have_no_fields(state, color, text):
    embed = build_embed(state, None, TS)

    assert embed["color"] == color
    assert embed["description"] == text
    assert "fields" not in embed


def test_first_publish_posts_then_edits(http):
    calls, queue = http
    queue.extend([FakeResponse(200, {"id": "42"}), FakeResponse(200, {"id": "42"})])
    webhook = WebhookNotifier(WEBHOOK)

    assert webhook.publish(ServerState.ONLINE, roster_of(1), TS)
    assert webhook.publish(ServerState.OFFLINE, None, TS)

    assert calls[0][0] == "POST"
    assert calls[0][1] == WEBHOOK + "?wait=true"
    assert calls[1][0] == "PATCH"
    assert calls[1][1] == WEBHOOK + "/messages/42"
    assert calls[1][2]["embeds"][0]["color"] == 0xFF0000


def test_deleted_message_is_recreated(http):
    calls, queue = http
    queue.extend([FakeResponse(404), FakeResponse(200, {"id": "43"})])
    webhook = WebhookNotifier(WEBHOOK)
    webhook.message_id = 42

    assert webhook.publish(ServerState.ONLINE, EMPTY_ROSTER, TS)

    assert [c[0] for c in calls] == ["PATCH", "POST"]
    assert webhook.message_id == 43


def test_rate_limit_and_server_errors_are_retried(http):
    calls, queue = http
    queue.extend([
        FakeResponse(429, headers={"Retry-After": "0.1"}),
        requests.ConnectionError("boom"),
        FakeResponse(502),
        FakeResponse(200, {"id": "7"}),
    ])
    webhook = WebhookNotifier(WEBHOOK)

    assert webhook.publish(ServerState.RESTARTING, None, TS)
    assert len(calls) == 4
    assert webhook.message_id == 7


def test_publish_failure_returns_false(http):
    calls, queue = http
    queue.extend([FakeResponse(400, {"message": "bad"})])

    assert WebhookNotifier(WEBHOOK).publish(ServerState.OFFLINE, None, TS) is False


def test_make_notifier_falls_back_to_logging():
    class S:
        webhook_url = ""
        server_title = "Isle Server"
        host_label = ""

    assert isinstance(make_notifier(S()), LogNotifier)
    S.webhook_url = WEBHOOK
    assert isinstance(make_notifier(S()), WebhookNotifier)


def test_log_notifier_logs_roster(caplog):
    caplog.set_level("INFO", logger="rconbot.notifier")

    LogNotifier().publish(ServerState.ONLINE, roster_of(2), TS)

    assert "Dino0, Dino1" in caplog.text


def test_recovery_publish_is_marked(http):
    calls, queue = http
    queue.extend([FakeResponse(200, {"id": "9"})])

    assert WebhookNotifier(WEBHOOK).publish(ServerState.ONLINE, roster_of(1), TS, recovered=True)

    payload = calls[0][2]
    assert payload["content"] == "🟢 Server Back Online"
    assert payload["embeds"][0]["footer"] == {"text": "Server restart completed successfully"}


def test_regular_online_embed_has_no_footer():
    assert "footer" not in build_embed(ServerState.ONLINE, roster_of(1), TS)
