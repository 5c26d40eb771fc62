class FlashRecordError(Exception):
    """Base class for all Flash Record exceptions."""


class NotFoundError(FlashRecordError, ValueError):
    """Raised when a record was required but no row matched the lookup."""


class ConnectionUnavailableError(FlashRecordError, LookupError):
    """Raised when a named connection has not been configured."""


class RelationMisconfigurationError(FlashRecordError, AttributeError):
    """Raised when a relation refers to a key or name that does not resolve."""
