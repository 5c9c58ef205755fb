"""
Weighted Route53 record set shifting
"""

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

from .aws import call, call_in_thread
from .errors import ConfigurationConflict, InvariantViolation, RemoteNotFound
from .models import DNS_DEFAULT_INTERVAL, DNS_DEFAULT_STEP, CanaryOpts, DestinationRecordSet, weight_steps

logger = logging.getLogger(__name__)


def normalize_record_name(name: str) -> str:
    return name.rstrip('.').lower()


class Route53RecordSetRouter:
    """
    Moves weight between two variants of a weighted record set.

    destinations holds every weighted variant found under record_name, in
    the order Route53 lists them, with the last weight written or read.
    """

    def __init__(self, route53, record_name: str, hosted_zone_id: str,
                 opts: Optional[CanaryOpts] = None):
        self.route53 = route53
        self.record_name = record_name
        self.hosted_zone_id = hosted_zone_id
        self.opts = opts or CanaryOpts()
        self.destinations: List[DestinationRecordSet] = []
        self.current_id = ''
        self.desired_id = ''
        self._records: Dict[str, Dict[str, Any]] = {}

    def load(self, current_id: str, desired_id: str):
        """Read the hosted zone and the live weighted variants"""
        if not current_id or not desired_id:
            raise ConfigurationConflict('both current and desired set identifiers are required')
        if current_id == desired_id:
            raise ConfigurationConflict(f"current and desired set identifiers are both {current_id!r}")

        call(self.route53, 'get_hosted_zone', Id=self.hosted_zone_id)

        self._records = {}
        self.destinations = []
        for record in self._list_weighted_records():
            sid = record['SetIdentifier']
            self._records[sid] = record
            self.destinations.append(DestinationRecordSet(set_identifier=sid, weight=int(record.get('Weight', 0))))

        for sid in (current_id, desired_id):
            if sid not in self._records:
                raise RemoteNotFound('RecordSet', f"{self.record_name}/{sid}")

        self.current_id = current_id
        self.desired_id = desired_id
        logger.info(
            f"Loaded record {self.record_name} in zone {self.hosted_zone_id}: "
            + ', '.join(f"{d.set_identifier}={d.weight}" for d in self.destinations)
        )

    def _list_weighted_records(self) -> List[Dict[str, Any]]:
        wanted = normalize_record_name(self.record_name)
        records = []
        kwargs = {'HostedZoneId': self.hosted_zone_id, 'StartRecordName': self.record_name}
        while True:
            response = call(self.route53, 'list_resource_record_sets', **kwargs)
            page = response.get('ResourceRecordSets', [])
            for record in page:
                if normalize_record_name(record['Name']) == wanted and 'SetIdentifier' in record:
                    records.append(record)

            # listing is sorted by name, stop once we are past ours
            past = page and normalize_record_name(page[-1]['Name']) != wanted
            if not response.get('IsTruncated') or past:
                return records

            kwargs['StartRecordName'] = response['NextRecordName']
            if response.get('NextRecordType'):
                kwargs['StartRecordType'] = response['NextRecordType']
            if response.get('NextRecordIdentifier'):
                kwargs['StartRecordIdentifier'] = response['NextRecordIdentifier']

    def set_desired_weight(self, p: int):
        if not self.current_id or not self.desired_id:
            raise InvariantViolation('BUG: record set router used before load', self.destinations)
        if p < 0 or p > 100:
            raise InvariantViolation(f"BUG: invalid value for p: got {p}, must be within 0..100")

        weights = {self.desired_id: p, self.current_id: 100 - p}
        changes = []
        for sid, weight in weights.items():
            record = copy.deepcopy(self._records[sid])
            record['Weight'] = weight
            changes.append({'Action': 'UPSERT', 'ResourceRecordSet': record})

        call(
            self.route53, 'change_resource_record_sets',
            HostedZoneId=self.hosted_zone_id,
            ChangeBatch={
                'Comment': f"canary shift {self.current_id} -> {self.desired_id}: {p}%",
                'Changes': changes,
            },
        )

        for sid, weight in weights.items():
            self._records[sid]['Weight'] = weight
        for d in self.destinations:
            if d.set_identifier in weights:
                d.weight = weights[d.set_identifier]

        logger.info(f"Updated record {self.record_name} weights - {self.desired_id}: {p}, {self.current_id}: {100 - p}")

    async def shift(self):
        step = self.opts.step_or(DNS_DEFAULT_STEP)
        interval = self.opts.interval_or(DNS_DEFAULT_INTERVAL)

        logger.info(f"Shifting record {self.record_name} from {self.current_id} to {self.desired_id} in steps of {step}")
        for p in weight_steps(step):
            await call_in_thread(self.set_desired_weight, p)
            if p < 100 and interval:
                await asyncio.sleep(interval)

        logger.info('Record shift completed')
