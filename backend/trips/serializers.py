from rest_framework import serializers

from accounts.serializers import UserSerializer
from drivers.serializers import DriverBasicSerializer
from .models import DispatchConfig, Trip, TripOffer


class TripSerializer(serializers.ModelSerializer):
    """Serializer for trips"""
    rider = UserSerializer(read_only=True)
    driver = DriverBasicSerializer(read_only=True)

    class Meta:
        model = Trip
        fields = ['id', 'rider', 'driver', 'pickup_latitude', 'pickup_longitude',
                  'drop_latitude', 'drop_longitude', 'fare', 'distance_km', 'duration_min',
                  'service_type', 'status', 'platform_commission', 'driver_earnings',
                  'payment_method', 'payment_status', 'scheduled_for', 'scheduled_dispatched_at',
                  'requested_at', 'accepted_at', 'arrived_at', 'started_at', 'completed_at',
                  'cancelled_at', 'cancellation_reason']
        read_only_fields = fields


class TripCreateSerializer(serializers.ModelSerializer):
    """Serializer for creating trip requests"""
    fare = serializers.IntegerField(min_value=1)
    pickup_latitude = serializers.FloatField(min_value=-90, max_value=90)
    pickup_longitude = serializers.FloatField(min_value=-180, max_value=180)
    drop_latitude = serializers.FloatField(min_value=-90, max_value=90)
    drop_longitude = serializers.FloatField(min_value=-180, max_value=180)

    class Meta:
        model = Trip
        fields = ['pickup_latitude', 'pickup_longitude', 'drop_latitude', 'drop_longitude',
                  'fare', 'distance_km', 'duration_min', 'service_type', 'payment_method',
                  'scheduled_for']


class TripStatusSerializer(serializers.Serializer):
    """Serializer for requested status transitions"""
    status = serializers.ChoiceField(choices=[
        Trip.STATUS_ARRIVED,
        Trip.STATUS_IN_PROGRESS,
        Trip.STATUS_COMPLETED,
        Trip.STATUS_CANCELLED,
        # Refused by the state machine, accepted here so the caller gets a clear 409
        Trip.STATUS_ACCEPTED,
    ])
    reason = serializers.CharField(required=False, allow_blank=True)


class TripOfferSerializer(serializers.ModelSerializer):
    driver = DriverBasicSerializer(read_only=True)

    class Meta:
        model = TripOffer
        fields = ['id', 'trip', 'driver', 'status', 'score', 'eta', 'distance_km',
                  'offered_at', 'sent_at', 'responded_at']
        read_only_fields = fields


class DispatchConfigSerializer(serializers.ModelSerializer):
    class Meta:
        model = DispatchConfig
        fields = ['weight_eta', 'weight_rating', 'weight_acceptance', 'service_match_bonus',
                  'offer_timeout', 'max_offers', 'search_radius_km', 'updated_at']
        read_only_fields = ['updated_at']
