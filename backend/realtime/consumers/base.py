"""Shared plumbing for the driver and rider sockets."""

import logging
from typing import Dict, Any, Set

from channels.generic.websocket import AsyncJsonWebsocketConsumer

logger = logging.getLogger(__name__)


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Authenticated socket bound to the caller's personal ``user_<id>`` group.

    Server code reaches a socket through ``group_send``; the ``type`` of each
    event names the handler method below, which forwards it to the client.
    Subclasses hook ``on_connect`` and list their client messages in
    ``message_handlers`` (message type -> coroutine method name).
    """

    message_handlers: Dict[str, str] = {}

    async def connect(self):
        self.user = self.scope["user"]
        if self.user.is_anonymous:
            await self.close()
            return

        self.user_id = self.user.id
        self.role = getattr(self.user, "role", None)
        self.joined_groups: Set[str] = set()

        await self._join_group(f"user_{self.user_id}")
        await self.accept()
        await self.on_connect()

    async def on_connect(self):
        await self.send_success("connection_established", user_id=self.user_id, role=self.role)

    async def disconnect(self, close_code):
        for group in list(getattr(self, "joined_groups", ())):
            await self._leave_group(group)

    async def receive_json(self, data: Dict[str, Any]):
        msg_type = data.get("type")
        if not msg_type:
            await self.send_error("Message type is required")
            return

        try:
            await self.handle_message(msg_type, data)
        except Exception:
            logger.exception("Socket message %s from user %s failed", msg_type, self.user_id)
            await self.send_error(f"Error processing {msg_type}")

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        handler = self.message_handlers.get(msg_type)
        if handler is None:
            await self.send_error(f"Unknown message type: {msg_type}")
            return
        await getattr(self, handler)(data)

    async def _join_group(self, group_name: str):
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.joined_groups.add(group_name)

    async def _leave_group(self, group_name: str):
        await self.channel_layer.group_discard(group_name, self.channel_name)
        self.joined_groups.discard(group_name)

    async def send_error(self, message: str, code: str = None, **details):
        payload = {"type": "error", "message": message, **details}
        if code:
            payload["error"] = code
        await self.send_json(payload)

    async def send_success(self, event_type: str, **kwargs):
        await self.send_json({"type": event_type, **kwargs})

    async def _forward(self, event, fields, message=None):
        """Relay a layer event; ``fields`` maps client keys to event keys."""
        payload = {key: event.get(source) for key, source in fields.items()}
        if message is not None:
            payload["message"] = event.get("message", message)
        await self.send_success(event["type"], **payload)

    # Layer event handlers

    async def trip_offer(self, event):
        await self._forward(event, {
            "trip": "trip_data", "offer_id": "offer_id", "eta": "eta", "expires_in": "expires_in",
        })

    async def offer_expired(self, event):
        await self._forward(event, {"trip_id": "trip_id"}, message="Offer timed out")

    async def offer_cancelled(self, event):
        await self._forward(event, {"trip_id": "trip_id"}, message="")

    async def trip_accepted(self, event):
        await self._forward(event, {"trip_id": "trip_id", "trip": "trip_data"}, message="")

    async def trip_cancelled(self, event):
        await self._forward(event, {"trip_id": "trip_id"}, message="")

    async def trip_status_changed(self, event):
        await self._forward(
            event, {"trip_id": "trip_id", "status": "status", "trip": "trip_data"}, message="",
        )

    async def no_drivers_available(self, event):
        await self._forward(event, {"trip_id": "trip_id"}, message="No drivers available")
