from rest_framework import serializers

from credits.models import CreditLedgerEntry


class CreditLedgerEntrySerializer(serializers.ModelSerializer):
    actor = serializers.CharField(source="actor.username", read_only=True, default=None)

    class Meta:
        model = CreditLedgerEntry
        fields = [
            "id",
            "driver",
            "trip",
            "credits_delta",
            "balance_after",
            "action",
            "amount",
            "package_name",
            "notes",
            "actor",
            "created_at",
        ]
        read_only_fields = fields


class CreditAmountSerializer(serializers.Serializer):
    """Admin add/deduct/refund request body"""
    amount = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    package_name = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)
    duration_days = serializers.IntegerField(required=False, min_value=1, allow_null=True, default=None)
    trip_id = serializers.IntegerField(required=False, allow_null=True, default=None)
