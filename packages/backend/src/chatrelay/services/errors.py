"""Service-layer exceptions.

Routes translate these to HTTP status codes; see chatrelay.api.
Channel bus failures are deliberately NOT here: they belong to the
distribution path and never surface as a failed send.
"""


class ServiceError(Exception):
    """Base class for service-layer errors."""
    pass


class NotFound(ServiceError):
    pass


class NotAuthorized(ServiceError):
    """The user is not an active participant of the chat (or not the author)."""
    pass


class InvalidContent(ServiceError):
    """Message content empty or longer than max_content_length."""
    pass


class Conflict(ServiceError):
    pass


class PersistenceFailure(ServiceError):
    """The database unit of work failed and was rolled back.

    The driver's message is kept verbatim; the original exception is
    chained as __cause__.
    """
    pass
