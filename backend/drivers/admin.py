from django.contrib import admin

from credits.models import CreditLedgerEntry
from drivers.models import DriverProfile


class RecentCreditEntryInline(admin.TabularInline):
    model = CreditLedgerEntry
    fk_name = "driver"
    fields = ("created_at", "action", "credits_delta", "balance_after", "trip", "notes")
    readonly_fields = fields
    ordering = ("-created_at",)
    extra = 0
    max_num = 0
    can_delete = False
    show_change_link = True


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    list_display = (
        "user", "vehicle_number", "vehicle_type", "status",
        "credit_balance", "credit_expires_at", "anomaly_count", "last_location_update",
    )
    list_filter = ("status", "vehicle_type", "monthly_package")
    list_select_related = ("user",)
    search_fields = ("user__username", "vehicle_number")
    inlines = (RecentCreditEntryInline,)
    actions = ("force_offline", "clear_anomalies")

    # Balance changes must go through the credit ledger
    readonly_fields = ("credit_balance", "last_location_update")

    @admin.action(description="Take selected drivers offline")
    def force_offline(self, request, queryset):
        # Drivers on a trip keep their busy status
        updated = queryset.exclude(status=DriverProfile.STATUS_BUSY).update(status=DriverProfile.STATUS_OFFLINE)
        self.message_user(request, f"{updated} driver(s) taken offline.")

    @admin.action(description="Reset GPS anomaly counter")
    def clear_anomalies(self, request, queryset):
        updated = queryset.update(anomaly_count=0)
        self.message_user(request, f"Anomaly counter reset for {updated} driver(s).")
