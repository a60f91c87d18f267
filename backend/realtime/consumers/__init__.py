from .base import BaseConsumer
from .driver_consumer import DriverConsumer
from .rider_consumer import RiderConsumer

__all__ = ["BaseConsumer", "DriverConsumer", "RiderConsumer"]
