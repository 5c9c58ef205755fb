"""
Metric evaluation backends and the health watchdog that runs beside a shift.
"""

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from string import Template
from typing import Any, Dict, List, Optional

import requests
import yaml

from .aws import call, new_client
from .errors import ConfigurationConflict, MetricsDegraded, RemoteAPIError
from .models import Metric

logger = logging.getLogger(__name__)

DATADOG_DEFAULT_ADDRESS = 'https://api.datadoghq.com'


class CloudWatchBackend:
    """Evaluates a list of MetricDataQuery definitions with GetMetricData"""

    def __init__(self, cloudwatch):
        self.cloudwatch = cloudwatch

    @staticmethod
    def parse_queries(query: str) -> List[Dict[str, Any]]:
        try:
            queries = yaml.safe_load(query)
        except yaml.YAMLError as e:
            raise ConfigurationConflict(f"parsing cloudwatch metric query: {e}") from e

        if isinstance(queries, dict):
            queries = queries.get('MetricDataQueries', [queries])
        if not isinstance(queries, list) or not queries:
            raise ConfigurationConflict(f"cloudwatch metric query must be a list of MetricDataQuery: {query!r}")
        return queries

    def evaluate(self, query: str, start: datetime, end: datetime, address: Optional[str] = None) -> Optional[float]:
        queries = self.parse_queries(query)
        response = call(
            self.cloudwatch, 'get_metric_data',
            MetricDataQueries=queries,
            StartTime=start,
            EndTime=end,
            ScanBy='TimestampDescending',
        )

        returned = {q['Id'] for q in queries if q.get('ReturnData', True)}
        for result in response.get('MetricDataResults', []):
            if result.get('Id') in returned and result.get('Values'):
                # newest first because of TimestampDescending
                return float(result['Values'][0])
        return None


class DatadogBackend:
    """Evaluates a Datadog metrics query over the v1 query API"""

    def __init__(self, api_key: str, application_key: str, session: Optional[requests.Session] = None,
                 timeout: float = 30.0):
        self.api_key = api_key
        self.application_key = application_key
        self.session = session or requests.Session()
        self.timeout = timeout

    def evaluate(self, query: str, start: datetime, end: datetime, address: Optional[str] = None) -> Optional[float]:
        url = f"{(address or DATADOG_DEFAULT_ADDRESS).rstrip('/')}/api/v1/query"
        try:
            response = self.session.get(
                url,
                params={'from': int(start.timestamp()), 'to': int(end.timestamp()), 'query': query},
                headers={'DD-API-KEY': self.api_key, 'DD-APPLICATION-KEY': self.application_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Datadog query failed: {query}: {e}")
            raise RemoteAPIError('datadog.query', e) from e

        for series in body.get('series') or []:
            points = [p for p in series.get('pointlist') or [] if p and p[1] is not None]
            if points:
                return float(points[-1][1])
        return None


def build_backends(metrics: List[Metric], region: str = '', profile: str = '') -> Dict[str, Any]:
    """Create one backend per provider referenced by metrics"""
    providers = {m.provider for m in metrics}
    backends: Dict[str, Any] = {}

    if 'cloudwatch' in providers:
        backends['cloudwatch'] = CloudWatchBackend(new_client('cloudwatch', region, profile))

    if 'datadog' in providers:
        api_key = os.environ.get('DATADOG_API_KEY')
        app_key = os.environ.get('DATADOG_APPLICATION_KEY')
        if not api_key or not app_key:
            raise ConfigurationConflict('DATADOG_API_KEY and DATADOG_APPLICATION_KEY must be set for datadog metrics')
        backends['datadog'] = DatadogBackend(api_key, app_key)

    return backends


class MetricsWatchdog:
    """
    Periodically evaluates every metric and fails on the first degradation.

    Each metric is polled on its own schedule. run() never returns on its
    own while everything stays healthy; it is ended by cancellation once the
    shift it guards has completed.
    """

    def __init__(self, metrics: List[Metric], backends: Dict[str, Any],
                 variables: Optional[Dict[str, str]] = None):
        self.metrics = metrics
        self.backends = backends
        self.variables = variables or {}

        for m in metrics:
            if m.provider not in backends:
                raise ConfigurationConflict(f"no backend for metrics provider {m.provider!r} (metric {m.name})")

    def evaluate(self, metric: Metric) -> Optional[float]:
        end = datetime.now(timezone.utc)
        start = end - timedelta(seconds=metric.interval)
        query = Template(metric.query).safe_substitute(self.variables)

        value = self.backends[metric.provider].evaluate(query, start, end, metric.address)
        if value is None:
            logger.warning(f"Metric {metric.name} returned no data")
            return None

        if not metric.is_healthy(value):
            logger.error(f"Metric {metric.name} degraded: {value} (min={metric.min}, max={metric.max})")
            raise MetricsDegraded(metric.name, value, metric.min, metric.max)

        logger.info(f"Metric {metric.name} healthy: {value}")
        return value

    async def _watch(self, metric: Metric):
        while True:
            await asyncio.sleep(metric.schedule)
            await asyncio.to_thread(self.evaluate, metric)

    async def run(self):
        if not self.metrics:
            await asyncio.Event().wait()
            return

        tasks = [asyncio.create_task(self._watch(m), name=f"metric:{m.name}") for m in self.metrics]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                task.result()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
