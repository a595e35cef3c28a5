"""
Error taxonomy shared by the booking core and the HTTP layer.

Every error carries the HTTP status it maps to and a dict of details
that is merged into the JSON error body, so callers can reconcile UI
state (current vs attempted status, available vs requested units).
"""


class BookingError(Exception):
    """Base class for all domain errors."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, **self.details()}


class ValidationError(BookingError):
    """Malformed input: missing fields, dates in the wrong order."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def details(self) -> dict:
        return {"field": self.field} if self.field else {}


class NotFoundError(BookingError):
    status_code = 404

    def __init__(self, resource: str, identifier):
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.identifier = identifier

    def details(self) -> dict:
        return {"resource": self.resource, "identifier": str(self.identifier)}


class InvalidTransitionError(BookingError):
    def __init__(self, from_state, to_state):
        from_value = getattr(from_state, "value", from_state)
        to_value = getattr(to_state, "value", to_state)
        super().__init__(f"Invalid status transition from {from_value} to {to_value}")
        self.from_state = from_value
        self.to_state = to_value

    def details(self) -> dict:
        return {"from": self.from_state, "to": self.to_state}


class CapacityExceededError(BookingError):
    def __init__(self, available: int, requested: int, total: int):
        super().__init__(
            f"Only {available} of {total} vehicles available for the selected dates."
        )
        self.available = available
        self.requested = requested
        self.total = total

    def details(self) -> dict:
        return {
            "availableQuantity": self.available,
            "requestedQuantity": self.requested,
            "vehicleQuantity": self.total,
        }


class PaymentVerificationError(BookingError):
    def __init__(self, message: str = "Payment verification failed"):
        super().__init__(message)
