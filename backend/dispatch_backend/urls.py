from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check),  # Health check endpoint

    # Driver APIs (status, location reports, credit status/history)
    path('api/driver/', include('drivers.urls')),

    # Trip endpoints (rider requests, offer responses, status transitions, dispatch admin)
    path('api/trips/', include('trips.urls')),

    # Admin credit management
    path('api/credits/', include('credits.urls')),
]
