"""Wire format for the RCON status query: packet encoding and roster parsing."""

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger("rconbot.codec")

# === Protocol constants ===
LOGIN_PACKET = 0x01
COMMAND_PACKET = 0x02
TERMINATOR = 0x00
OP_GET_PLAYER_DATA = 0x77

LOGIN_ACCEPTED_MARKER = "Accepted"
NO_PLAYERS_SENTINEL = "No Players Connected"
PLAYER_MARKERS = ("PlayerDataName", "Name:")

PLAYER_RE = re.compile(
    r"(?:PlayerDataName|Name):\s*([^,]+),\s*PlayerID:\s*(\d+),\s*Location:[^,]+,\s*Class:\s*([^,\s]+)"
)


@dataclass(frozen=True)
class PlayerRecord:
    id: str
    name: str
    player_class: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "class": self.player_class}


@dataclass(frozen=True)
class RosterSnapshot:
    """Players in order of first appearance, unique by id.

    ``no_players`` is set only when the server answered with the explicit
    empty-roster sentinel.
    """

    players: tuple = ()
    no_players: bool = False

    def __len__(self):
        return len(self.players)

    def __iter__(self):
        return iter(self.players)

    @property
    def ids(self) -> list:
        return [p.id for p in self.players]

    @property
    def names(self) -> list:
        return [p.name for p in self.players]


EMPTY_ROSTER = RosterSnapshot()


def _clean_name(raw: str) -> str:
    return raw.replace("'", "").replace('"', "").strip()


class RconCodec:
    """Text/binary hybrid codec (v1).

    Responses carry no length framing, so completeness is inferred from
    content markers.
    """

    version = 1

    def encode_login(self, password: str) -> bytes:
        return bytes([LOGIN_PACKET]) + password.encode("utf-8") + bytes([TERMINATOR])

    def encode_command(self, opcode: int = OP_GET_PLAYER_DATA) -> bytes:
        if not 0 <= opcode <= 0xFF:
            raise ValueError(f"opcode must fit in one byte, got {opcode!r}")
        return bytes([COMMAND_PACKET, opcode, TERMINATOR])

    def decode(self, data: bytes) -> str:
        return data.decode("utf-8", errors="replace")

    def is_login_accepted(self, text: str) -> bool:
        return LOGIN_ACCEPTED_MARKER in text

    def is_response_complete(self, text: str) -> bool:
        if NO_PLAYERS_SENTINEL in text:
            return True
        return any(marker in text for marker in PLAYER_MARKERS)

    def parse_roster(self, text: str) -> RosterSnapshot:
        if NO_PLAYERS_SENTINEL in text:
            return RosterSnapshot(no_players=True)

        seen = set()
        players = []
        for match in PLAYER_RE.finditer(text):
            raw_name, player_id, player_class = match.groups()
            name = _clean_name(raw_name)
            if not name or not player_id:
                continue
            # first occurrence wins
            if player_id in seen:
                continue
            seen.add(player_id)
            players.append(PlayerRecord(id=player_id, name=name, player_class=player_class))

        logger.debug("[PARSE] %d player(s): %s", len(players), ", ".join(f"{p.name} ({p.id})" for p in players))
        return RosterSnapshot(players=tuple(players))
