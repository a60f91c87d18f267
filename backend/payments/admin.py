from django.contrib import admin
from payments.models import Wallet, WalletTransaction


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ["user", "balance", "updated_at"]
    search_fields = ["user__username"]
    readonly_fields = ["balance"]


@admin.register(WalletTransaction)
class WalletTransactionAdmin(admin.ModelAdmin):
    list_display = ["wallet", "type", "amount", "balance_after", "trip", "created_at"]
    list_filter = ["type"]
    search_fields = ["wallet__user__username", "description"]
