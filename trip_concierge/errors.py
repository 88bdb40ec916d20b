"""Error taxonomy for the trip concierge.

Boundary errors (``InvalidRequest``, ``OriginRejected``) surface as HTTP
error responses. Everything else is caught at the capability boundary and
reported through ``failureReason``.
"""


class TripConciergeError(Exception):
    """Base class for all trip concierge errors."""


class InvalidRequest(TripConciergeError):
    """The incoming trip request is missing fields or malformed."""


class OriginRejected(TripConciergeError):
    """The request origin is not in the configured allow-list."""

    def __init__(self, origin):
        self.origin = origin
        super().__init__(f"Origin not allowed: {origin}")


class SchemaViolation(TripConciergeError):
    """A structured output failed to match its declared shape."""

    def __init__(self, field: str, constraint: str):
        self.field = field
        self.constraint = constraint
        super().__init__(f"Schema violation at '{field}': {constraint}")


class CapabilityFailure(TripConciergeError):
    """A collaborator errored or returned no usable data."""


class ModelRefusal(TripConciergeError):
    """The model stopped without invoking the required capabilities."""
