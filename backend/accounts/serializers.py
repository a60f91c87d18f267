from rest_framework import serializers

from .models import User


class UserSerializer(serializers.ModelSerializer):
    """Public view of a rider or driver account; nothing here is writable."""

    display_name = serializers.SerializerMethodField()
    wallet_balance = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ("id", "username", "display_name", "role", "phone_number", "completed_trips", "wallet_balance")
        read_only_fields = fields

    def get_display_name(self, obj):
        return obj.get_full_name() or obj.username

    def get_wallet_balance(self, obj):
        # Only the account owner sees their balance
        request = self.context.get("request")
        if request is None or request.user.pk != obj.pk:
            return None
        wallet = getattr(obj, "wallet", None)
        return wallet.balance if wallet is not None else 0
