"""Error types raised by the decile service."""


class ClimoError(Exception):
    """Base class for decile service errors."""


class InvalidDate(ClimoError, ValueError):
    """Local date or time components do not form a real calendar hour."""


class StoreUnavailable(ClimoError):
    """The climate store could not be reached or written."""


class EncodingMismatch(ClimoError):
    """A stored decile blob does not match the expected layout."""
