"""Custom exceptions for trip dispatch, credits and settlement."""


class DispatchError(Exception):
    """Base class for all dispatch domain errors."""
    error_code = "dispatch_error"
    status_code = 400

    def __init__(self, message=None, **details):
        self.message = message or self.__doc__.strip().splitlines()[0]
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        payload = {
            "success": False,
            "error": self.error_code,
            "message": self.message,
        }
        payload.update(self.details)
        return payload


# Validation

class InvalidCoordinatesError(DispatchError):
    """Latitude/longitude are missing or out of range."""
    error_code = "invalid_coordinates"


class InvalidAmountError(DispatchError):
    """Amount must be a positive integer."""
    error_code = "invalid_amount"


# Business rules

class InsufficientCreditsError(DispatchError):
    """Driver does not have enough credits to cover the commission."""
    error_code = "insufficient_credits"
    status_code = 409

    def __init__(self, required, available, fare=None):
        self.required = required
        self.available = available
        self.fare = fare
        super().__init__(
            f"Insufficient credits: {available} available, {required} required",
            required=required,
            available=available,
            fare=fare,
        )


class InsufficientBalanceError(DispatchError):
    """Rider balance does not cover the fare."""
    error_code = "insufficient_balance"
    status_code = 409

    def __init__(self, required, available):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance: {available} available, {required} required",
            required=required,
            available=available,
        )


class InvalidTransitionError(DispatchError):
    """Trip cannot move to the requested status."""
    error_code = "invalid_transition"
    status_code = 409

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot transition trip from {current} to {requested}",
            current=current,
            requested=requested,
        )


class ForbiddenActionError(DispatchError):
    """Caller is not a participant of this trip."""
    error_code = "forbidden"
    status_code = 403


class OfferExpiredError(DispatchError):
    """Trip offer is no longer pending."""
    error_code = "offer_expired"
    status_code = 410


class OfferNotFoundError(DispatchError):
    """No offer exists for this driver and trip."""
    error_code = "offer_not_found"
    status_code = 404


class TripAlreadyAcceptedError(DispatchError):
    """Trip has already been accepted by another driver."""
    error_code = "trip_already_accepted"
    status_code = 409


class TripNotFoundError(DispatchError):
    """Trip cannot be found."""
    error_code = "trip_not_found"
    status_code = 404


class DriverNotFoundError(DispatchError):
    """Driver profile cannot be found."""
    error_code = "driver_not_found"
    status_code = 404


class DriverBusyError(DispatchError):
    """Finish the current trip first."""
    error_code = "driver_busy"
    status_code = 409


# Transient infrastructure. Never escape the routing layer.

class MatrixProviderError(DispatchError):
    """Routing provider call failed."""
    error_code = "matrix_provider_error"
    status_code = 503


class CircuitOpenError(MatrixProviderError):
    """Routing provider circuit is open."""
    error_code = "circuit_open"
