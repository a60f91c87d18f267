from channels.db import database_sync_to_async

from .base import BaseConsumer


class RiderConsumer(BaseConsumer):
    """
    Offer outcomes arrive on the personal group joined at connect;
    ``track_trip`` also subscribes to ``trip_<id>`` status broadcasts.
    """

    message_handlers = {
        "track_trip": "_track_trip",
        "stop_tracking": "_stop_tracking",
    }

    async def on_connect(self):
        await self.send_success(
            "connection_established",
            user_id=self.user_id,
            role=self.role,
            message="Rider connected successfully",
        )

    async def _track_trip(self, data):
        trip_id = data.get("trip_id")
        if trip_id is None:
            await self.send_error("track_trip requires trip_id")
        elif not await self._can_follow(trip_id):
            await self.send_error("You are not authorized to track this trip")
        else:
            await self._join_group(f"trip_{trip_id}")
            await self.send_success("tracking_started", trip_id=trip_id)

    async def _stop_tracking(self, data):
        trip_id = data.get("trip_id")
        if trip_id is None:
            await self.send_error("stop_tracking requires trip_id")
            return
        await self._leave_group(f"trip_{trip_id}")
        await self.send_success("tracking_stopped", trip_id=trip_id)

    @database_sync_to_async
    def _can_follow(self, trip_id) -> bool:
        from services.exceptions import DispatchError
        from services.trip_management import get_trip_for_user

        try:
            get_trip_for_user(int(trip_id), self.user)
        except (DispatchError, ValueError):
            return False
        return True
