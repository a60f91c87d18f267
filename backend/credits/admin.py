from django.contrib import admin
from credits.models import CreditLedgerEntry


@admin.register(CreditLedgerEntry)
class CreditLedgerEntryAdmin(admin.ModelAdmin):
    """Read-only view of the driver credit ledger"""

    list_display = ["id", "driver", "action", "credits_delta", "balance_after", "trip", "actor", "created_at"]
    list_filter = ["action", "created_at"]
    search_fields = ["driver__user__username", "driver__vehicle_number", "notes"]
    date_hierarchy = "created_at"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
