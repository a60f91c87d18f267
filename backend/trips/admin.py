"""Django admin for trips, offers and the dispatch configuration"""

from django.contrib import admin
from .models import DispatchConfig, Trip, TripOffer


@admin.register(Trip)
class TripAdmin(admin.ModelAdmin):
    """Trip admin"""
    list_display = ['id', 'rider', 'driver', 'status', 'fare', 'platform_commission',
                    'payment_status', 'requested_at', 'accepted_at', 'completed_at']
    list_filter = ['status', 'payment_status', 'service_type', 'requested_at']
    search_fields = ['rider__username', 'driver__user__username']
    readonly_fields = ['requested_at', 'accepted_at', 'arrived_at', 'started_at',
                       'completed_at', 'cancelled_at', 'platform_commission', 'driver_earnings']
    date_hierarchy = 'requested_at'


@admin.register(TripOffer)
class TripOfferAdmin(admin.ModelAdmin):
    list_display = ("trip", "driver", "score", "eta", "status", "sent_at", "responded_at")
    list_filter = ("status",)
    search_fields = ("trip__id", "driver__user__username")


@admin.register(DispatchConfig)
class DispatchConfigAdmin(admin.ModelAdmin):
    list_display = ("weight_eta", "weight_rating", "weight_acceptance", "service_match_bonus",
                    "offer_timeout", "max_offers", "search_radius_km", "updated_at")

    def has_add_permission(self, request):
        return not DispatchConfig.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False
