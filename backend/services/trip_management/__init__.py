"""
Trip management service - Core trip lifecycle operations.

This module handles:
    - Creating trip requests and scheduled trips
    - Accepting offers with commission debit
    - Status transitions through the state machine
    - Completion settlement and cancellation refunds
    - Querying current trips
"""

from .state_machine import (
    ALLOWED_TRANSITIONS,
    assert_transition,
    can_transition,
    resolve_actor_relationship,
)
from .settlement import (
    CommissionSplit,
    SettlementResult,
    accept_offer,
    calculate_commission,
    complete_settlement,
)
from .trip_lifecycle import (
    TripResult,
    cancel_trip,
    create_trip,
    dispatch_due_scheduled_trips,
    get_current_driver_trip,
    get_current_rider_trip,
    get_trip_for_user,
    transition_trip,
)

__all__ = [
    # State machine
    "ALLOWED_TRANSITIONS",
    "assert_transition",
    "can_transition",
    "resolve_actor_relationship",
    # Settlement
    "CommissionSplit",
    "SettlementResult",
    "accept_offer",
    "calculate_commission",
    "complete_settlement",
    # Lifecycle operations
    "TripResult",
    "cancel_trip",
    "create_trip",
    "dispatch_due_scheduled_trips",
    "get_current_driver_trip",
    "get_current_rider_trip",
    "get_trip_for_user",
    "transition_trip",
]
