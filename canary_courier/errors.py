"""
Error types raised by the traffic shifting engine.

None of these are retried internally. Recovery is always a re-run of the
reconciler and shifter against current remote state.
"""

from typing import Optional


class CourierError(Exception):
    """Base class for every rollout failure"""


class ConfigurationConflict(CourierError):
    """Ambiguous or inconsistent routing configuration. The rollout never starts."""


class RemoteNotFound(CourierError):
    """A listener, target group, hosted zone or record set was expected but is missing"""

    def __init__(self, kind: str, identifier: str, message: Optional[str] = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind} not found: {identifier}")


class RemoteAPIError(CourierError):
    """A control-plane call failed"""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"calling {operation}: {cause}")


class MetricsDegraded(CourierError):
    """The watchdog observed a metric outside of its bounds"""

    def __init__(self, metric: str, value: float,
                 min_value: Optional[float] = None, max_value: Optional[float] = None):
        self.metric = metric
        self.value = value
        self.min_value = min_value
        self.max_value = max_value
        super().__init__(
            f"metric {metric} degraded: value={value}, min={min_value}, max={max_value}"
        )


class InvariantViolation(CourierError):
    """Internal state the shifter relies on is missing or malformed"""

    def __init__(self, message: str, status=None):
        self.status = status
        if status is not None:
            message = f"{message}: {status!r}"
        super().__init__(message)
