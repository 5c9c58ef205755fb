"""
Data model shared by the reconciler, the shifters and the watchdog.

Everything here is rebuilt from live remote state on every rollout. The only
identity that survives between runs is the version identifier that target
group names and DNS set identifiers are derived from.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from .errors import ConfigurationConflict

TARGET_GROUP_NAME_MAX_LENGTH = 32

ALB_DEFAULT_STEP = 5
ALB_DEFAULT_INTERVAL = 0.0
DNS_DEFAULT_STEP = 50
DNS_DEFAULT_INTERVAL = 1.0

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|h|m|s)')
_DURATION_UNITS = {'ms': 0.001, 's': 1.0, 'm': 60.0, 'h': 3600.0}


def parse_duration(value: Union[str, int, float, None]) -> Optional[float]:
    """Parse "1s", "500ms", "1m30s" or a plain number of seconds"""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)

    if not isinstance(value, str):
        raise ConfigurationConflict(f"invalid duration {value!r}")

    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ConfigurationConflict(f"invalid duration {value!r}")

    return seconds


def target_group_name(node_group_name: str, node_port: int, version_id: str) -> str:
    """Derive the target group name for one backend version"""
    return f"{node_group_name}-{node_port}-{version_id}"


def weight_steps(step: int) -> Iterator[int]:
    """
    Desired-side weights for a stepped shift.

    Starts at 1 and advances by step while below 100, then pins 100 so the
    last write always converges regardless of how the steps line up.
    """
    if step <= 0:
        raise ConfigurationConflict(f"step must be positive, got {step}")

    p = 1
    while p < 100:
        yield p
        p += step
    yield 100


@dataclass
class AttachmentSpec:
    """Binds one logical backend (node group + port) to a listener"""

    node_group_name: str
    listener_arn: str
    node_port: int = 0
    protocol: str = 'HTTP'
    priority: int = 0
    hosts: List[str] = field(default_factory=list)
    path_patterns: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttachmentSpec':
        try:
            return cls(
                node_group_name=data['node_group_name'],
                listener_arn=data['listener_arn'],
                node_port=int(data.get('node_port') or 0),
                protocol=data.get('protocol') or 'HTTP',
                priority=int(data.get('priority') or 0),
                hosts=list(data.get('hosts') or []),
                path_patterns=list(data.get('path_patterns') or []),
            )
        except KeyError as e:
            raise ConfigurationConflict(f"alb attachment is missing required field {e}") from e
        except (TypeError, ValueError) as e:
            raise ConfigurationConflict(f"invalid alb attachment {data!r}: {e}") from e


@dataclass
class ListenerStatus:
    """Working state of one listener during a rollout, keyed by listener ARN"""

    listener: Optional[Dict[str, Any]] = None
    attachments: List[AttachmentSpec] = field(default_factory=list)
    current_tg: Optional[Dict[str, Any]] = None
    desired_tg: Optional[Dict[str, Any]] = None
    rule: Optional[Dict[str, Any]] = None

    rule_priority: int = 0
    hosts: List[str] = field(default_factory=list)
    path_patterns: List[str] = field(default_factory=list)

    @property
    def listener_arn(self) -> Optional[str]:
        if self.listener:
            return self.listener.get('ListenerArn')
        if self.attachments:
            return self.attachments[0].listener_arn
        return None


@dataclass
class DestinationRecordSet:
    """One weighted variant of a DNS record"""

    set_identifier: str
    weight: int


@dataclass
class CanaryOpts:
    """
    Shift parameters.

    advancement_step and advancement_interval fall back to the defaults of
    whichever engine consumes them when left unset. region and cluster_name
    are only used for lookups and metric query substitution.
    """

    advancement_interval: Optional[float] = None
    advancement_step: Optional[int] = None
    region: str = ''
    cluster_name: str = ''

    def step_or(self, default: int) -> int:
        if self.advancement_step and self.advancement_step > 0:
            return self.advancement_step
        return default

    def interval_or(self, default: float) -> float:
        if self.advancement_interval is None:
            return default
        return self.advancement_interval


@dataclass
class Metric:
    """An externally defined health query and the bounds it must stay within"""

    name: str
    provider: str
    query: str
    min: Optional[float] = None
    max: Optional[float] = None
    interval: float = 60.0
    frequency: Optional[float] = None
    address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Metric':
        provider = (data.get('provider') or 'cloudwatch').lower()
        if provider not in ('cloudwatch', 'datadog'):
            raise ConfigurationConflict(f"unsupported metrics provider {provider!r}")
        if not data.get('query'):
            raise ConfigurationConflict(f"metric {data.get('name')!r} has no query")

        try:
            return cls(
                name=data.get('name') or provider,
                provider=provider,
                query=data['query'],
                min=_optional_float(data.get('min')),
                max=_optional_float(data.get('max')),
                interval=parse_duration(data.get('interval')) or 60.0,
                frequency=parse_duration(data.get('frequency')),
                address=data.get('address'),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationConflict(f"invalid metric {data.get('name')!r}: {e}") from e

    @property
    def schedule(self) -> float:
        return self.frequency or self.interval

    def is_healthy(self, value: float) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


def _optional_float(value) -> Optional[float]:
    if value is None:
        return None
    return float(value)
