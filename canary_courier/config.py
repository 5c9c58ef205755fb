"""
Courier configuration.

The accepted keys are enumerated by ConfigKey. A configuration file is a YAML
mapping of those keys; command line flags override what the file sets.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .document import ClusterSpecDocument
from .errors import ConfigurationConflict
from .models import AttachmentSpec, CanaryOpts, Metric, parse_duration

logger = logging.getLogger(__name__)


class ConfigKey(str, Enum):
    REGION = 'region'
    PROFILE = 'profile'
    ENDPOINT_URL = 'endpoint_url'
    CLUSTER_NAME = 'cluster_name'
    VPC_ID = 'vpc_id'
    CLUSTER_SPEC = 'cluster_spec'
    ALB_ATTACHMENTS = 'alb_attachments'
    ZONE_ID = 'zone_id'
    RECORD_NAME = 'record_name'
    STEP_WEIGHT = 'step_weight'
    STEP_INTERVAL = 'step_interval'
    CURRENT_VERSION = 'current_version'
    DESIRED_VERSION = 'desired_version'
    METRICS = 'metrics'


class CourierConfig:
    """Everything the engine needs from the surrounding resource layer"""

    def __init__(self, region: str = '', profile: str = '', endpoint_url: str = '',
                 cluster_name: str = '', vpc_id: str = '',
                 alb_attachments: Optional[List[AttachmentSpec]] = None,
                 zone_id: str = '', record_name: str = '',
                 step_weight: Optional[int] = None, step_interval: Optional[float] = None,
                 current_version: str = '', desired_version: str = '',
                 metrics: Optional[List[Metric]] = None):
        self.region = region
        self.profile = profile
        self.endpoint_url = endpoint_url
        self.cluster_name = cluster_name
        self.vpc_id = vpc_id
        self.alb_attachments = alb_attachments or []
        self.zone_id = zone_id
        self.record_name = record_name
        self.step_weight = step_weight
        self.step_interval = step_interval
        self.current_version = current_version
        self.desired_version = desired_version
        self.metrics = metrics or []

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> 'CourierConfig':
        known = {k.value for k in ConfigKey}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationConflict(f"unknown configuration keys: {', '.join(unknown)}")

        def get(key: ConfigKey, default=None):
            value = data.get(key.value)
            return default if value is None else value

        vpc_id = str(get(ConfigKey.VPC_ID, ''))
        spec_path = get(ConfigKey.CLUSTER_SPEC)
        if spec_path and not vpc_id:
            path = Path(spec_path)
            if base_dir is not None and not path.is_absolute():
                path = base_dir / path
            vpc_id = load_cluster_spec(path).vpc.id

        step_weight = get(ConfigKey.STEP_WEIGHT)
        if step_weight is not None:
            try:
                step_weight = int(step_weight)
            except (TypeError, ValueError) as e:
                raise ConfigurationConflict(f"invalid {ConfigKey.STEP_WEIGHT.value} {step_weight!r}") from e

        return cls(
            region=str(get(ConfigKey.REGION, '')),
            profile=str(get(ConfigKey.PROFILE, '')),
            endpoint_url=str(get(ConfigKey.ENDPOINT_URL, '')),
            cluster_name=str(get(ConfigKey.CLUSTER_NAME, '')),
            vpc_id=vpc_id,
            alb_attachments=[AttachmentSpec.from_dict(a) for a in get(ConfigKey.ALB_ATTACHMENTS, [])],
            zone_id=str(get(ConfigKey.ZONE_ID, '')),
            record_name=str(get(ConfigKey.RECORD_NAME, '')),
            step_weight=step_weight,
            step_interval=parse_duration(get(ConfigKey.STEP_INTERVAL)),
            current_version=str(get(ConfigKey.CURRENT_VERSION, '')),
            desired_version=str(get(ConfigKey.DESIRED_VERSION, '')),
            metrics=[Metric.from_dict(m) for m in get(ConfigKey.METRICS, [])],
        )

    def canary_opts(self) -> CanaryOpts:
        return CanaryOpts(
            advancement_interval=self.step_interval,
            advancement_step=self.step_weight,
            region=self.region,
            cluster_name=self.cluster_name,
        )

    def override(self, **values) -> 'CourierConfig':
        """Apply non-empty overrides, typically parsed command line flags"""
        for key, value in values.items():
            if value is None or value == '':
                continue
            if key not in {k.value for k in ConfigKey}:
                raise ConfigurationConflict(f"unknown configuration key {key!r}")
            if key == ConfigKey.STEP_INTERVAL.value:
                value = parse_duration(value)
            setattr(self, key, value)
        return self


def load_cluster_spec(path: Path) -> ClusterSpecDocument:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return ClusterSpecDocument.from_yaml(f.read())
    except OSError as e:
        raise ConfigurationConflict(f"reading cluster spec {path}: {e}") from e


def load_config(path: str) -> CourierConfig:
    """Load a courier configuration file"""
    config_path = Path(path)
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationConflict(f"reading config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationConflict(f"parsing config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationConflict(f"config {path} must be a mapping")

    logger.info(f"Loaded configuration from {config_path}")
    return CourierConfig.from_dict(data, base_dir=config_path.parent)
