from rest_framework import serializers as drf_serializers
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsDriver
from credits.serializers import CreditLedgerEntrySerializer
from drivers import services
from drivers.models import DriverProfile
from drivers.serializers import DriverProfileSerializer, DriverStatusSerializer, LocationUpdateSerializer
from services import credits as credit_ledger
from services.exceptions import DispatchError, DriverNotFoundError
from services.trip_management import get_current_driver_trip
from trips.serializers import TripSerializer


class HistoryPageSerializer(drf_serializers.Serializer):
    limit = drf_serializers.IntegerField(min_value=1, default=50)
    offset = drf_serializers.IntegerField(min_value=0, default=0)

    def validate_limit(self, value):
        return min(value, 200)


class DriverAPIView(APIView):
    """Driver-only endpoint; domain errors are rendered as their JSON body."""

    permission_classes = [IsAuthenticated, IsDriver]

    def get_profile(self) -> DriverProfile:
        try:
            return self.request.user.driver_profile
        except DriverProfile.DoesNotExist:
            raise DriverNotFoundError()

    def handle_exception(self, exc):
        if isinstance(exc, DispatchError):
            return Response(exc.to_dict(), status=exc.status_code)
        return super().handle_exception(exc)


class DriverProfileView(DriverAPIView):
    def get(self, request):
        serializer = DriverProfileSerializer(self.get_profile(), context={"request": request})
        return Response(serializer.data)


class DriverStatusView(DriverAPIView):
    def get(self, request):
        profile = self.get_profile()
        return Response({"status": profile.status, "anomaly_count": profile.anomaly_count})

    def put(self, request):
        profile = self.get_profile()
        serializer = DriverStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data["status"]

        services.update_driver_status(profile.pk, new_status)
        return Response({"message": f"Status updated to {new_status}", "status": new_status})


class DriverLocationUpdateView(DriverAPIView):
    """HTTP fallback for the location stream on the driver socket."""

    def get(self, request):
        profile = self.get_profile()
        lat, lng = profile.current_latitude, profile.current_longitude
        return Response({
            "latitude": float(lat) if lat is not None else None,
            "longitude": float(lng) if lng is not None else None,
            "last_updated": profile.last_location_update,
            "status": profile.status,
        })

    def post(self, request):
        profile = self.get_profile()
        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        report = services.report_location(
            profile.pk,
            serializer.validated_data["latitude"],
            serializer.validated_data["longitude"],
        )
        return Response({
            "message": "Location updated" if report.accepted else "Location flagged",
            "accepted": report.accepted,
            "latitude": report.latitude,
            "longitude": report.longitude,
            "deviation_m": report.deviation_m,
            "speed_kmh": report.speed_kmh,
            "anomaly_count": report.anomaly_count,
            "forced_offline": report.forced_offline,
        })


class DriverCreditsView(DriverAPIView):
    def get(self, request):
        return Response(credit_ledger.get_credit_status(self.get_profile()))


class DriverCreditHistoryView(DriverAPIView):
    def get(self, request):
        profile = self.get_profile()
        page = HistoryPageSerializer(data=request.query_params)
        if not page.is_valid():
            return Response(
                {"success": False, "error": "invalid_pagination", "message": "limit/offset must be integers",
                 "details": page.errors},
                status=400,
            )

        limit, offset = page.validated_data["limit"], page.validated_data["offset"]
        entries = credit_ledger.get_history(profile, limit=limit, offset=offset)
        data = CreditLedgerEntrySerializer(entries, many=True).data
        return Response({"count": len(data), "limit": limit, "offset": offset, "entries": data})


class DriverCurrentTripView(DriverAPIView):
    def get(self, request):
        trip = get_current_driver_trip(self.get_profile())
        if trip is None:
            return Response({"message": "No active trip"}, status=404)
        return Response(TripSerializer(trip).data)
