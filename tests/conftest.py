"""
In-memory stand-ins for the ELBv2, Route53 and metrics control planes.

Every call is recorded so tests can assert on what was (or was not) sent.
"""

import copy
import itertools
import threading

import pytest
from botocore.exceptions import ClientError

from canary_courier.models import AttachmentSpec

LISTENER_ARN = 'arn:aws:elasticloadbalancing:ap-northeast-1:123456789012:listener/app/poc-alb/50dc6c495c0c9188/f2f7dc8efc522ab2'
VPC_ID = 'vpc-0123456789abcdef0'


def client_error(code, operation, message='not found'):
    return ClientError({'Error': {'Code': code, 'Message': message}}, operation)


class FakeELBv2:
    MUTATING = {'create_target_group', 'add_tags', 'create_rule', 'modify_rule'}

    def __init__(self):
        self.listeners = {}
        self.target_groups = {}
        self.rules = {}
        self.calls = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _record(self, op, kwargs):
        with self._lock:
            self.calls.append((op, copy.deepcopy(kwargs)))

    # setup helpers

    def add_listener(self, arn=LISTENER_ARN, port=80, protocol='HTTP'):
        self.listeners[arn] = {'ListenerArn': arn, 'Port': port, 'Protocol': protocol}
        self.rules.setdefault(arn, [])
        return self.listeners[arn]

    def add_target_group(self, name, port=30080):
        arn = f"arn:aws:elasticloadbalancing:ap-northeast-1:123456789012:targetgroup/{name}/{next(self._ids):016x}"
        tg = {'TargetGroupName': name, 'TargetGroupArn': arn, 'Port': port, 'Protocol': 'HTTP'}
        self.target_groups[name] = tg
        return tg

    def add_rule(self, listener_arn, target_group_arns, priority='10', actions=None):
        rule = {
            'RuleArn': f"{listener_arn.replace(':listener/', ':listener-rule/')}/{next(self._ids):016x}",
            'Priority': priority,
            'Conditions': [],
            'Actions': actions if actions is not None else [{
                'Type': 'forward',
                'TargetGroupArn': target_group_arns[0],
                'ForwardConfig': {
                    'TargetGroups': [{'TargetGroupArn': arn, 'Weight': 1} for arn in target_group_arns],
                },
            }],
            'IsDefault': False,
        }
        self.rules.setdefault(listener_arn, []).append(rule)
        return rule

    # inspection helpers

    def mutating_calls(self):
        return [c for c in self.calls if c[0] in self.MUTATING]

    def calls_to(self, op):
        return [kwargs for name, kwargs in self.calls if name == op]

    def desired_weights(self, desired_tg_arn):
        weights = []
        for kwargs in self.calls_to('modify_rule'):
            for tg in kwargs['Actions'][0]['ForwardConfig']['TargetGroups']:
                if tg['TargetGroupArn'] == desired_tg_arn:
                    weights.append(tg['Weight'])
        return weights

    # ELBv2 API

    def describe_listeners(self, ListenerArns):
        self._record('describe_listeners', {'ListenerArns': ListenerArns})
        missing = [arn for arn in ListenerArns if arn not in self.listeners]
        if missing:
            raise client_error('ListenerNotFound', 'DescribeListeners')
        return {'Listeners': [copy.deepcopy(self.listeners[arn]) for arn in ListenerArns]}

    def describe_target_groups(self, Names):
        self._record('describe_target_groups', {'Names': Names})
        if any(name not in self.target_groups for name in Names):
            raise client_error('TargetGroupNotFound', 'DescribeTargetGroups')
        return {'TargetGroups': [copy.deepcopy(self.target_groups[n]) for n in Names]}

    def create_target_group(self, **kwargs):
        self._record('create_target_group', kwargs)
        tg = self.add_target_group(kwargs['Name'], kwargs['Port'])
        tg.update({'Protocol': kwargs['Protocol'], 'VpcId': kwargs['VpcId'], 'TargetType': kwargs['TargetType']})
        return {'TargetGroups': [copy.deepcopy(tg)]}

    def add_tags(self, **kwargs):
        self._record('add_tags', kwargs)
        return {}

    def describe_rules(self, ListenerArn, Marker=None):
        self._record('describe_rules', {'ListenerArn': ListenerArn})
        if ListenerArn not in self.listeners:
            raise client_error('ListenerNotFound', 'DescribeRules')
        return {'Rules': copy.deepcopy(self.rules.get(ListenerArn, []))}

    def create_rule(self, **kwargs):
        self._record('create_rule', kwargs)
        rule = {
            'RuleArn': f"{kwargs['ListenerArn'].replace(':listener/', ':listener-rule/')}/{next(self._ids):016x}",
            'Priority': str(kwargs['Priority']),
            'Conditions': kwargs['Conditions'],
            'Actions': kwargs['Actions'],
            'IsDefault': False,
        }
        self.rules.setdefault(kwargs['ListenerArn'], []).append(rule)
        return {'Rules': [copy.deepcopy(rule)]}

    def modify_rule(self, RuleArn, Actions):
        self._record('modify_rule', {'RuleArn': RuleArn, 'Actions': Actions})
        for rules in self.rules.values():
            for rule in rules:
                if rule['RuleArn'] == RuleArn:
                    rule['Actions'] = copy.deepcopy(Actions)
                    return {'Rules': [copy.deepcopy(rule)]}
        raise client_error('RuleNotFound', 'ModifyRule')


class FakeRoute53:
    def __init__(self, zone_id='Z0123456789ABCDEFGHIJ'):
        self.zones = {zone_id}
        self.records = []
        self.calls = []
        self.batches = []

    def add_weighted_record(self, name, set_identifier, weight, value):
        self.records.append({
            'Name': name,
            'Type': 'CNAME',
            'SetIdentifier': set_identifier,
            'Weight': weight,
            'TTL': 60,
            'ResourceRecords': [{'Value': value}],
        })

    def weights_for(self, set_identifier):
        weights = []
        for batch in self.batches:
            for change in batch['Changes']:
                if change['ResourceRecordSet']['SetIdentifier'] == set_identifier:
                    weights.append(change['ResourceRecordSet']['Weight'])
        return weights

    def get_hosted_zone(self, Id):
        self.calls.append(('get_hosted_zone', {'Id': Id}))
        if Id not in self.zones:
            raise client_error('NoSuchHostedZone', 'GetHostedZone')
        return {'HostedZone': {'Id': f"/hostedzone/{Id}", 'Name': 'example.com.'}}

    def list_resource_record_sets(self, HostedZoneId, StartRecordName, **kwargs):
        self.calls.append(('list_resource_record_sets', {'HostedZoneId': HostedZoneId}))
        start = StartRecordName.rstrip('.').lower()
        listed = sorted(
            (r for r in self.records if r['Name'].rstrip('.').lower() >= start),
            key=lambda r: r['Name'],
        )
        return {'ResourceRecordSets': copy.deepcopy(listed), 'IsTruncated': False}

    def change_resource_record_sets(self, HostedZoneId, ChangeBatch):
        self.calls.append(('change_resource_record_sets', {'HostedZoneId': HostedZoneId}))
        self.batches.append(copy.deepcopy(ChangeBatch))
        for change in ChangeBatch['Changes']:
            new = change['ResourceRecordSet']
            for i, r in enumerate(self.records):
                if r['Name'] == new['Name'] and r.get('SetIdentifier') == new.get('SetIdentifier'):
                    self.records[i] = copy.deepcopy(new)
        return {'ChangeInfo': {'Id': '/change/C1', 'Status': 'PENDING'}}


class ScriptedBackend:
    """Metrics backend returning values from a callable or a list"""

    def __init__(self, values):
        self.values = values
        self.queries = []

    def evaluate(self, query, start, end, address=None):
        self.queries.append(query)
        if callable(self.values):
            return self.values()
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


@pytest.fixture
def elbv2():
    fake = FakeELBv2()
    fake.add_listener()
    return fake


@pytest.fixture
def route53():
    return FakeRoute53()


@pytest.fixture
def attachment():
    return AttachmentSpec(
        node_group_name='ng1',
        listener_arn=LISTENER_ARN,
        node_port=30080,
        protocol='http',
        priority=10,
        hosts=['a.example.com'],
    )
