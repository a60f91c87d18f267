"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - matching: Candidate lookup, scoring and offer dispatch
    - routing: Travel estimates, snapping and the provider circuit breaker
    - credits: Driver credit ledger
    - payments: Rider and driver wallets
    - trip_management: Trip lifecycle, state machine and settlement
"""

# Expose commonly used functions at package level
from .exceptions import (
    DispatchError,
    InvalidCoordinatesError,
    InvalidAmountError,
    InsufficientCreditsError,
    InsufficientBalanceError,
    InvalidTransitionError,
    ForbiddenActionError,
    OfferExpiredError,
    OfferNotFoundError,
    TripAlreadyAcceptedError,
    TripNotFoundError,
    DriverNotFoundError,
    MatrixProviderError,
    CircuitOpenError,
)
from .matching import (
    dispatch,
    dispatch_next_offer,
    expire_offer_and_dispatch,
    reject_offer,
)
from .trip_management import (
    accept_offer,
    calculate_commission,
    complete_settlement,
    create_trip,
    transition_trip,
)

__all__ = [
    # Matching
    "dispatch",
    "dispatch_next_offer",
    "expire_offer_and_dispatch",
    "reject_offer",
    # Trip management
    "accept_offer",
    "calculate_commission",
    "complete_settlement",
    "create_trip",
    "transition_trip",
    # Exceptions
    "DispatchError",
    "InvalidCoordinatesError",
    "InvalidAmountError",
    "InsufficientCreditsError",
    "InsufficientBalanceError",
    "InvalidTransitionError",
    "ForbiddenActionError",
    "OfferExpiredError",
    "OfferNotFoundError",
    "TripAlreadyAcceptedError",
    "TripNotFoundError",
    "DriverNotFoundError",
    "MatrixProviderError",
    "CircuitOpenError",
]
