from rest_framework import serializers

from accounts.serializers import UserSerializer
from drivers.models import DriverProfile


class DriverProfileSerializer(serializers.ModelSerializer):
    """What a driver sees about themselves, credits and integrity counters included."""

    user = UserSerializer(read_only=True)
    has_active_credits = serializers.SerializerMethodField()

    class Meta:
        model = DriverProfile
        fields = (
            "id", "user", "vehicle_number", "vehicle_type", "status", "rating",
            "current_latitude", "current_longitude", "last_location_update",
            "credit_balance", "credit_expires_at", "monthly_package", "has_active_credits",
            "anomaly_count",
        )
        read_only_fields = fields

    def get_has_active_credits(self, obj):
        from services.credits import has_active_credits
        return has_active_credits(obj)


class DriverBasicSerializer(serializers.ModelSerializer):
    # Shown to the rider once a driver accepts
    username = serializers.CharField(source="user.username", read_only=True)
    phone_number = serializers.CharField(source="user.phone_number", read_only=True)

    class Meta:
        model = DriverProfile
        fields = (
            "id", "username", "phone_number", "vehicle_number", "vehicle_type", "rating",
            "current_latitude", "current_longitude",
        )


class DriverStatusSerializer(serializers.Serializer):
    # busy is owned by the trip lifecycle
    status = serializers.ChoiceField(choices=[DriverProfile.STATUS_ONLINE, DriverProfile.STATUS_OFFLINE])


class LocationUpdateSerializer(serializers.Serializer):
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()

