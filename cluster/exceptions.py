"""Errors raised by cluster backends and the resource accessor."""


class ClusterError(Exception):
    """Base class for cluster API failures."""

    reason = "ClusterError"

    def __init__(self, message: str, kind: str = "", namespace: str = "", name: str = ""):
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class NotFoundError(ClusterError):
    """The referenced object does not exist."""

    reason = "NotFound"


class AlreadyExistsError(ClusterError):
    """An object with the same name already exists."""

    reason = "AlreadyExists"


class ConflictError(ClusterError):
    """The object was modified since it was read (stale resourceVersion)."""

    reason = "Conflict"


class ApiTimeoutError(ClusterError):
    """A cluster API call did not complete within the configured timeout."""

    reason = "ApiTimeout"


class ApiError(ClusterError):
    """Any other API failure; ``reason`` is the server's status reason (``Forbidden``, ``Invalid``)."""

    reason = "ApiError"

    def __init__(self, message: str, reason: str = "", status: int = 0, **ident):
        super().__init__(message, **ident)
        if reason:
            self.reason = reason
        self.status = status


class ApiUnavailableError(ClusterError):
    """The API server could not be reached."""

    reason = "ApiUnavailable"
