"""
Entry points: reconcile-and-shift for ALB listeners and weighted Route53 records.

Both run the shift beside a MetricsWatchdog under a RolloutSupervisor and
raise a CourierError when the rollout is abandoned.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .alb import ALBTrafficShifter, ListenerReconciler, ListenerStatuses
from .aws import new_client
from .config import CourierConfig
from .errors import ConfigurationConflict
from .metrics import MetricsWatchdog, build_backends
from .models import CanaryOpts, Metric
from .rollout import RolloutSupervisor
from .route53 import Route53RecordSetRouter

logger = logging.getLogger(__name__)


def _watchdog(metrics: List[Metric], backends: Optional[Dict[str, Any]], region: str, profile: str,
              opts: CanaryOpts) -> MetricsWatchdog:
    if backends is None:
        backends = build_backends(metrics, region, profile)
    variables = {'region': opts.region or region, 'cluster_name': opts.cluster_name}
    return MetricsWatchdog(metrics, backends, variables)


async def reconcile_and_shift(config: CourierConfig, current_id: str, desired_id: str,
                              opts: Optional[CanaryOpts] = None,
                              metrics: Optional[List[Metric]] = None,
                              elbv2=None, backends: Optional[Dict[str, Any]] = None) -> ListenerStatuses:
    """Reconcile listeners for desired_id and shift traffic away from current_id"""
    opts = opts or config.canary_opts()
    metrics = config.metrics if metrics is None else metrics
    elbv2 = elbv2 or new_client('elbv2', config.region, config.profile, config.endpoint_url)

    reconciler = ListenerReconciler(elbv2, config.alb_attachments, config.vpc_id, config.cluster_name)
    statuses = await asyncio.to_thread(reconciler.reconcile, current_id, desired_id)

    if not current_id or not desired_id:
        logger.info(f"Nothing to shift: current={current_id!r}, desired={desired_id!r}")
        return statuses

    shifter = ALBTrafficShifter(elbv2, statuses, opts)
    shifter.check()
    watchdog = _watchdog(metrics, backends, config.region, config.profile, opts)

    await RolloutSupervisor(shifter.shift, watchdog.run).run()
    return statuses


async def shift_route53_record(config: CourierConfig, current_id: str, desired_id: str,
                               metrics: Optional[List[Metric]] = None,
                               region: Optional[str] = None, profile: Optional[str] = None,
                               opts: Optional[CanaryOpts] = None,
                               route53=None, backends: Optional[Dict[str, Any]] = None):
    """Shift a weighted record from the current_id variant to the desired_id variant"""
    if not config.zone_id or not config.record_name:
        raise ConfigurationConflict('zone_id and record_name are required for route53 record shifting')

    opts = opts or config.canary_opts()
    metrics = config.metrics if metrics is None else metrics
    region = config.region if region is None else region
    profile = config.profile if profile is None else profile
    route53 = route53 or new_client('route53', region, profile, config.endpoint_url)

    router = Route53RecordSetRouter(route53, config.record_name, config.zone_id, opts)
    await asyncio.to_thread(router.load, current_id, desired_id)
    watchdog = _watchdog(metrics, backends, region, profile, opts)

    await RolloutSupervisor(router.shift, watchdog.run).run()
    return router.destinations
