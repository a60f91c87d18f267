from django.urls import re_path

from .consumers import DriverConsumer, RiderConsumer

# Both sockets authenticate with ?token=<access jwt> or an Authorization header
websocket_urlpatterns = [
    re_path(r"ws/driver/$", DriverConsumer.as_asgi(), name="driver-ws"),
    re_path(r"ws/rider/$", RiderConsumer.as_asgi(), name="rider-ws"),
]
