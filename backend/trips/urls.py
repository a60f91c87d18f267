from django.urls import path
from . import views

app_name = 'trips'

urlpatterns = [
    # Rider APIs
    path('rider/request/', views.create_trip_request, name='create-trip'),
    path('rider/current/', views.get_current_trip, name='current-trip'),

    # Dispatch administration
    path('dispatch/config/', views.dispatch_config, name='dispatch-config'),
    path('dispatch/offers/', views.dispatch_offers, name='dispatch-offers'),

    # Trip actions
    path('<int:trip_id>/', views.trip_detail, name='trip-detail'),
    path('<int:trip_id>/accept/', views.accept_trip, name='accept-trip'),
    path('<int:trip_id>/reject/', views.reject_trip, name='reject-trip'),
    path('<int:trip_id>/status/', views.update_trip_status, name='trip-status'),
]
