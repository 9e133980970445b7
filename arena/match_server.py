"""Websocket relay server for online matches.

Clients exchange JSON frames of the form {"event": ..., "data": ...} on
/ws. The server pairs them into rooms and relays moves; it never
validates chess legality.
"""

from __future__ import annotations

import argparse
import json
import logging
import uuid
from typing import Literal

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from arena import config
from arena.rooms import (
    Delivery,
    RoomStore,
    handle_disconnect,
    handle_event,
)

_log = logging.getLogger(__name__)


class CreateRoomRequest(BaseModel):
    color: Literal["white", "black"]


class JoinRoomRequest(BaseModel):
    room_code: str = Field(alias="roomCode")

    @field_validator("room_code")
    @classmethod
    def strip_code(cls, value: str) -> str:
        return value.strip()


class MovePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_square: str = Field(alias="from", min_length=2, max_length=2)
    to_square: str = Field(alias="to", min_length=2, max_length=2)
    promotion: str | None = None


class MoveRequest(BaseModel):
    room_code: str = Field(alias="roomCode")
    move: MovePayload


_REQUEST_MODELS: dict[str, type[BaseModel]] = {
    "create_room": CreateRoomRequest,
    "join_room": JoinRoomRequest,
    "move": MoveRequest,
}


def parse_frame(text: str) -> tuple[str, dict]:
    """Decode and validate an inbound text frame.

    Returns:
        (event, data) with data in wire (alias) form; the move object is
        passed through exactly as the client sent it.

    Raises:
        ValueError: If the frame is malformed or the event unknown.
    """
    try:
        frame = json.loads(text)
    except ValueError as exc:
        raise ValueError("Malformed message") from exc
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ValueError("Malformed message")
    event = frame["event"]
    model = _REQUEST_MODELS.get(event)
    if model is None:
        raise ValueError(f"Unknown event: {event}")

    data = frame.get("data") or {}
    try:
        parsed = model.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid {event} payload") from exc

    result = parsed.model_dump(by_alias=True)
    if event == "move":
        result["move"] = data["move"]
    return event, result


class ConnectionHub:
    """Open websockets keyed by connection id."""

    def __init__(self) -> None:
        self.sockets: dict[str, WebSocket] = {}

    def add(self, websocket: WebSocket) -> str:
        connection_id = uuid.uuid4().hex
        self.sockets[connection_id] = websocket
        return connection_id

    def remove(self, connection_id: str) -> None:
        self.sockets.pop(connection_id, None)

    async def deliver(self, deliveries: list[Delivery]) -> None:
        for delivery in deliveries:
            websocket = self.sockets.get(delivery.connection_id)
            if websocket is None:
                # Recipient gone: the message is lost
                continue
            try:
                await websocket.send_json({"event": delivery.event, "data": delivery.data})
            except (RuntimeError, WebSocketDisconnect):
                _log.debug("Send to closed socket %s skipped", delivery.connection_id)


def create_app(store: RoomStore | None = None) -> FastAPI:
    """Build the match server application around a room store."""
    app = FastAPI(title="Chess Arena", description="Online match relay")
    app.state.rooms = store if store is not None else RoomStore()
    app.state.hub = ConnectionHub()

    @app.get("/api/rooms/{code}")
    async def inspect_room(code: str) -> dict:
        room = app.state.rooms.get(code)
        if room is None:
            raise HTTPException(status_code=404, detail="Room not found")
        return {
            "roomCode": room.code,
            "state": room.state,
            "colors": [p.color for p in room.participants],
        }

    @app.websocket("/ws")
    async def match_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        rooms: RoomStore = app.state.rooms
        hub: ConnectionHub = app.state.hub
        connection_id = hub.add(websocket)
        _log.info("Connected: %s", connection_id)

        try:
            while True:
                text = await websocket.receive_text()
                try:
                    event, data = parse_frame(text)
                except ValueError as exc:
                    await hub.deliver([Delivery(connection_id, "error_message", str(exc))])
                    continue
                await hub.deliver(handle_event(rooms, connection_id, event, data))
        except WebSocketDisconnect:
            pass
        finally:
            hub.remove(connection_id)
            _log.info("Disconnected: %s", connection_id)
            await hub.deliver(handle_disconnect(rooms, connection_id))

    return app


app = create_app()


def main() -> None:
    """CLI entry point for the match server."""
    parser = argparse.ArgumentParser(description="Chess Arena match server")
    parser.add_argument("--host", default=config.HOST, help="Bind address")
    parser.add_argument("--port", type=int, default=config.PORT, help="Bind port")
    args = parser.parse_args()

    config.configure_logging()
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
