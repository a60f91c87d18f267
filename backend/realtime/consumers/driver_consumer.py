import logging
from typing import Any, Dict

from channels.db import database_sync_to_async

from .base import BaseConsumer
from services.exceptions import DispatchError

logger = logging.getLogger(__name__)


class DriverConsumer(BaseConsumer):
    """
    Driver socket. Offers are pushed to ``driver_<user_id>``; the driver
    streams GPS reports, toggles availability and answers offers here.
    """

    message_handlers = {
        "driver_location_update": "_on_location",
        "driver_status_update": "_on_status",
        "accept_offer": "_on_accept",
        "reject_offer": "_on_reject",
    }

    async def on_connect(self):
        if self.role != "driver":
            await self.send_error("This endpoint is for drivers only")
            await self.close()
            return

        self.driver_profile_id = await self._profile_id()
        if self.driver_profile_id is None:
            await self.send_error("Driver profile not found", code="driver_not_found")
            await self.close()
            return

        await self._join_group(f"driver_{self.user_id}")
        logger.info("Driver %s connected (profile %s)", self.user_id, self.driver_profile_id)
        await self.send_success(
            "connection_established",
            user_id=self.user_id,
            role=self.role,
            message="Driver connected successfully",
        )

    async def _on_location(self, data: Dict[str, Any]):
        if data.get("latitude") is None or data.get("longitude") is None:
            await self.send_error("driver_location_update requires latitude and longitude")
            return

        try:
            report = await self._report_location(data["latitude"], data["longitude"])
        except DispatchError as exc:
            await self.send_error(exc.message, code=exc.error_code)
            return

        await self.send_success(
            "location_ack",
            accepted=report.accepted,
            latitude=report.latitude,
            longitude=report.longitude,
            anomaly_count=report.anomaly_count,
            forced_offline=report.forced_offline,
        )

    async def _on_status(self, data: Dict[str, Any]):
        new_status = data.get("status")
        if new_status not in ("online", "offline"):
            await self.send_error("Invalid status. Must be: online or offline")
            return

        try:
            await self._set_status(new_status)
        except DispatchError as exc:
            await self.send_error(exc.message, code=exc.error_code)
        else:
            await self.send_success("status_updated", status=new_status)

    async def _on_accept(self, data: Dict[str, Any]):
        await self._answer_offer(data, self._accept_offer, "offer_accepted")

    async def _on_reject(self, data: Dict[str, Any]):
        await self._answer_offer(data, self._reject_offer, "offer_rejected")

    async def _answer_offer(self, data, action, ack_type):
        trip_id = data.get("trip_id")
        if trip_id is None:
            await self.send_error("trip_id is required")
            return

        try:
            await action(int(trip_id))
        except DispatchError as exc:
            await self.send_error(exc.message, code=exc.error_code, **exc.details)
        else:
            await self.send_success(ack_type, trip_id=trip_id)

    @database_sync_to_async
    def _profile_id(self):
        from drivers.models import DriverProfile
        return DriverProfile.objects.filter(user_id=self.user_id).values_list("id", flat=True).first()

    @database_sync_to_async
    def _report_location(self, lat, lng):
        from drivers.services import report_location
        return report_location(self.driver_profile_id, lat, lng)

    @database_sync_to_async
    def _set_status(self, new_status: str):
        from drivers.services import update_driver_status
        update_driver_status(self.driver_profile_id, new_status)

    @database_sync_to_async
    def _accept_offer(self, trip_id: int):
        from services.trip_management import accept_offer
        return accept_offer(trip_id, self.driver_profile_id)

    @database_sync_to_async
    def _reject_offer(self, trip_id: int):
        from services.matching import reject_offer
        return reject_offer(trip_id, self.driver_profile_id)
