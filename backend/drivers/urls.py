from django.urls import path

from . import views

# Every route here requires an authenticated user with the driver role
urlpatterns = [
    path("profile/", views.DriverProfileView.as_view(), name="driver-profile"),
    path("status/", views.DriverStatusView.as_view(), name="driver-status"),
    path("location/", views.DriverLocationUpdateView.as_view(), name="driver-location"),
    path("current-trip/", views.DriverCurrentTripView.as_view(), name="driver-current-trip"),
    path("credits/", views.DriverCreditsView.as_view(), name="driver-credits"),
    path("credits/history/", views.DriverCreditHistoryView.as_view(), name="driver-credit-history"),
]
