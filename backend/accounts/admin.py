from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from accounts.models import User
from drivers.models import DriverProfile


class DriverProfileInline(admin.StackedInline):
    model = DriverProfile
    can_delete = False
    extra = 0
    fields = ("vehicle_number", "vehicle_type", "status", "credit_balance", "credit_expires_at")
    # Credits only move through the ledger endpoints
    readonly_fields = ("credit_balance", "credit_expires_at")


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Riders, drivers and dispatch admins in one list."""

    inlines = (DriverProfileInline,)
    list_display = ("username", "role", "phone_number", "completed_trips", "wallet_balance", "is_active")
    list_filter = ("role", "is_active")
    list_select_related = ("wallet",)
    search_fields = ("username", "phone_number", "driver_profile__vehicle_number")
    ordering = ("-date_joined",)

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Dispatch", {"fields": ("role", "phone_number", "completed_trips")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Dispatch", {"fields": ("role", "phone_number")}),
    )

    @admin.display(description="Wallet")
    def wallet_balance(self, obj):
        wallet = getattr(obj, "wallet", None)
        return wallet.balance if wallet is not None else "-"

    def get_inlines(self, request, obj):
        if obj is None or obj.role != User.ROLE_DRIVER:
            return ()
        return super().get_inlines(request, obj)
