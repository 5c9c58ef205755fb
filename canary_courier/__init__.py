"""Canary traffic shifting for ALB listeners and weighted Route53 records"""

from .courier import reconcile_and_shift, shift_route53_record
from .errors import (
    ConfigurationConflict,
    CourierError,
    InvariantViolation,
    MetricsDegraded,
    RemoteAPIError,
    RemoteNotFound,
)

__version__ = '0.1.0'

__all__ = [
    'reconcile_and_shift',
    'shift_route53_record',
    'CourierError',
    'ConfigurationConflict',
    'RemoteNotFound',
    'RemoteAPIError',
    'MetricsDegraded',
    'InvariantViolation',
]
