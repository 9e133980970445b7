"""In-memory room store for online matches.

The store is the only authority over room membership and colours. It
never looks at chess positions: both clients validate moves locally and
the store only decides who receives what.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from arena.models import Participant, Room

_log = logging.getLogger(__name__)

ROOM_CODE_DIGITS = 6
COLORS = ("white", "black")


class RoomError(Exception):
    """A request the store refuses; the message is shown to the requester."""

    message = "Room error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class RoomNotFound(RoomError):
    message = "Invalid Room Code"


class RoomFull(RoomError):
    message = "Room is full"


class AlreadyInRoom(RoomError):
    message = "You are already in a room"


class InvalidColor(RoomError):
    message = "Color must be 'white' or 'black'"


@dataclass(frozen=True)
class Delivery:
    """One outbound event addressed to one connection."""

    connection_id: str
    event: str
    data: object = field(default=None)


def opposite(color: str) -> str:
    return "black" if color == "white" else "white"


class RoomStore:
    """Room code -> Room, plus the reverse connection -> room index.

    Args:
        rng: Random source for room codes; SystemRandom by default.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.SystemRandom()
        self.rooms: dict[str, Room] = {}
        self._membership: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self.rooms)

    def __contains__(self, code: object) -> bool:
        return code in self.rooms

    def get(self, code: str) -> Room | None:
        return self.rooms.get(code)

    def room_of(self, connection_id: str) -> Room | None:
        code = self._membership.get(connection_id)
        return self.rooms.get(code) if code is not None else None

    def _new_code(self) -> str:
        low = 10 ** (ROOM_CODE_DIGITS - 1)
        while True:
            code = str(self._rng.randint(low, 10 * low - 1))
            if code not in self.rooms:
                return code

    def create(self, connection_id: str, color: str) -> Room:
        """Open a room for `connection_id` playing `color`.

        Raises:
            InvalidColor: If color is not 'white' or 'black'.
            AlreadyInRoom: If the connection already belongs to a room.
        """
        if color not in COLORS:
            raise InvalidColor()
        if connection_id in self._membership:
            raise AlreadyInRoom()

        code = self._new_code()
        room = Room(code=code, participants=[Participant(connection_id, color)])
        self.rooms[code] = room
        self._membership[connection_id] = code
        _log.info("Room %s created by %s as %s", code, connection_id, color)
        return room

    def join(self, code: str, connection_id: str) -> Room:
        """Seat `connection_id` in room `code` with the free colour.

        Raises:
            RoomNotFound: No live room has this code.
            RoomFull: The room already has two participants.
            AlreadyInRoom: The connection already belongs to a room.
        """
        room = self.rooms.get(code)
        if room is None:
            raise RoomNotFound()
        if len(room.participants) >= 2:
            raise RoomFull()
        if connection_id in self._membership:
            raise AlreadyInRoom()

        color = opposite(room.participants[0].color)
        room.participants.append(Participant(connection_id, color))
        self._membership[connection_id] = code
        _log.info("%s joined room %s as %s", connection_id, code, color)
        return room

    def relay_move(self, code: str, sender_id: str) -> str | None:
        """Recipient of a move sent by `sender_id` in room `code`.

        Returns:
            The other participant's connection id, or None if the sender is
            not seated in that room or is still waiting for an opponent.
        """
        room = self.rooms.get(code)
        if room is None or room.member(sender_id) is None:
            return None
        others = room.others(sender_id)
        return others[0].connection_id if others else None

    def teardown(self, connection_id: str) -> list[str]:
        """Close the room of a departing connection.

        Returns:
            Connection ids of the participants left behind.
        """
        code = self._membership.pop(connection_id, None)
        if code is None:
            return []
        room = self.rooms.pop(code, None)
        if room is None:
            return []

        remaining = [p.connection_id for p in room.others(connection_id)]
        for other in remaining:
            self._membership.pop(other, None)
        _log.info("Room %s closed after %s left", code, connection_id)
        return remaining


def start_game_payload(room: Room) -> dict:
    return {
        "roomCode": room.code,
        "players": [
            {"id": p.connection_id, "color": p.color} for p in room.participants
        ],
    }


def handle_event(
    store: RoomStore,
    connection_id: str,
    event: str,
    data: dict,
) -> list[Delivery]:
    """Apply one validated client event and list the resulting messages.

    Refused requests become an error_message to the requester only.
    """
    try:
        if event == "create_room":
            room = store.create(connection_id, data["color"])
            return [Delivery(connection_id, "room_created", {"roomCode": room.code})]

        if event == "join_room":
            room = store.join(data["roomCode"], connection_id)
            payload = start_game_payload(room)
            return [
                Delivery(p.connection_id, "start_game", payload)
                for p in room.participants
            ]

        if event == "move":
            recipient = store.relay_move(data["roomCode"], connection_id)
            if recipient is None:
                return []
            return [Delivery(recipient, "move", data["move"])]
    except RoomError as exc:
        return [Delivery(connection_id, "error_message", str(exc))]

    return [Delivery(connection_id, "error_message", f"Unknown event: {event}")]


def handle_disconnect(store: RoomStore, connection_id: str) -> list[Delivery]:
    return [
        Delivery(other, "opponent_disconnected")
        for other in store.teardown(connection_id)
    ]
