"""
Canary controller error taxonomy.

Cluster API failures live in ``cluster.exceptions``; these cover the
rollout domain. ``reason`` is the short CamelCase string recorded on
status conditions and events.
"""

from cluster.exceptions import NotFoundError


class CanaryError(Exception):
    """Base class for rollout errors."""

    reason = "CanaryError"


class InvalidSpecError(CanaryError):
    """The Canary spec violates its invariants; the user has to fix it."""

    reason = "InvalidSpec"


class TargetNotFoundError(CanaryError, NotFoundError):
    """The workload referenced by targetRef does not exist."""

    reason = "TargetNotFound"

    def __init__(self, message: str, kind: str = "", namespace: str = "", name: str = ""):
        NotFoundError.__init__(self, message, kind=kind, namespace=namespace, name=name)


class ProviderError(CanaryError):
    """A metric provider could not produce a value."""

    reason = "ProviderError"


class ProviderTimeoutError(ProviderError):
    """A metric query did not complete within its timeout."""

    reason = "ProviderTimeout"


class InvalidWeightError(CanaryError, ValueError):
    """A traffic weight outside ``[0, maxWeight]`` was requested."""

    reason = "InvalidWeight"


class RoutingError(CanaryError):
    """The mesh traffic object exists but has no primary/canary routes."""

    reason = "RoutingError"
