"""
Domain errors raised by the ride engine.

Each error carries a stable ``code`` so callers can react to the kind of
failure (e.g. retry assignment with another driver on ``already_assigned``).
They are translated to HTTP responses in ``rideflow.main``.
"""


class RideflowError(Exception):
    code = "rideflow_error"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class UnresolvableLocation(RideflowError):
    """No coordinates could be obtained for an address."""
    code = "unresolvable_location"
    status_code = 422


class InvalidTransition(RideflowError):
    """Illegal status change for the ride's current status."""
    code = "invalid_transition"
    status_code = 409


class AlreadyAssigned(RideflowError):
    """Driver, ride or vehicle slot already claimed by another caller."""
    code = "already_assigned"
    status_code = 409


class DriverUnavailable(RideflowError):
    code = "driver_unavailable"
    status_code = 409


class DriverBusy(RideflowError):
    code = "driver_busy"
    status_code = 409


class VehicleUnavailable(RideflowError):
    code = "vehicle_unavailable"
    status_code = 409


class InvalidStatusChange(RideflowError):
    """Status an administrator may not set directly."""
    code = "invalid_status_change"
    status_code = 400


class RideNotFound(RideflowError):
    code = "ride_not_found"
    status_code = 404


class DriverNotFound(RideflowError):
    code = "driver_not_found"
    status_code = 404


class VehicleNotFound(RideflowError):
    code = "vehicle_not_found"
    status_code = 404


class NotRideParticipant(RideflowError):
    """Caller is neither the rider nor the assigned driver of the ride."""
    code = "not_ride_participant"
    status_code = 403
