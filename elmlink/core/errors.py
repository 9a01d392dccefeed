"""Domain-specific errors for elmlink."""


class ElmlinkError(Exception):
    """Base error for elmlink."""


class PayloadValidationError(ElmlinkError):
    """Raised when a payload definition does not conform to schema or semantics."""


class PayloadLoadError(ElmlinkError):
    """Raised when loading payload definition sources fails."""


class PayloadNotFoundError(ElmlinkError):
    """Raised when a payload id is not present in the catalog."""


class PayloadRegistrationError(ElmlinkError):
    """Raised when a payload type cannot be registered in the PID cache."""


class CommandError(ElmlinkError):
    """Base command error."""


class CommandTimeoutError(CommandError):
    """Raised when waiting on a command result times out."""


class CommandStateError(CommandError):
    """Raised when a command result is resolved more than once."""


class SessionStateError(ElmlinkError):
    """Raised when the session is used in a state that does not allow it."""


class TransportError(ElmlinkError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the adapter connection cannot be opened."""


class TransportSendError(TransportError):
    """Raised when writing to the adapter fails."""


class TransportReceiveError(TransportError):
    """Raised when reading from the adapter fails."""


class TransportTimeoutError(TransportError):
    """Raised when the adapter does not answer in time."""
