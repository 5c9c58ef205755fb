"""
ALB listener reconciliation and weighted traffic shifting.

RoutingStateReader snapshots the listeners named by the attachments,
ListenerReconciler makes sure a target group and a rule exist for the
desired version, and ALBTrafficShifter moves forward weights from the
current to the desired target group.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .aws import call, call_in_thread
from .errors import ConfigurationConflict, InvariantViolation, RemoteNotFound
from .models import (
    ALB_DEFAULT_INTERVAL,
    ALB_DEFAULT_STEP,
    TARGET_GROUP_NAME_MAX_LENGTH,
    AttachmentSpec,
    CanaryOpts,
    ListenerStatus,
    target_group_name,
    weight_steps,
)

logger = logging.getLogger(__name__)

TAG_NODE_GROUP = 'tf-eksctl/node-group'
TAG_CLUSTER = 'tf-eksctl/cluster'

# the key is the listener ARN
ListenerStatuses = Dict[str, ListenerStatus]


class RoutingStateReader:
    def __init__(self, elbv2, attachments: List[AttachmentSpec]):
        self.elbv2 = elbv2
        self.attachments = attachments

    def read(self) -> ListenerStatuses:
        """Group attachments by listener and fetch every listener in one call"""
        statuses: ListenerStatuses = {}
        for a in self.attachments:
            statuses.setdefault(a.listener_arn, ListenerStatus()).attachments.append(a)

        if not statuses:
            return statuses

        response = call(self.elbv2, 'describe_listeners', ListenerArns=list(statuses))
        for listener in response.get('Listeners', []):
            status = statuses.get(listener['ListenerArn'])
            if status is not None:
                status.listener = listener

        for arn, status in statuses.items():
            if status.listener is None:
                raise RemoteNotFound('Listener', arn)

        return statuses


def validate_attachments(status: ListenerStatus):
    """All attachments on a listener must agree on protocol, priority, hosts and path patterns"""
    base = status.attachments[0]
    base_hosts = sorted(base.hosts)
    base_paths = sorted(base.path_patterns)
    arn = status.listener_arn

    for i, a in enumerate(status.attachments[1:], start=1):
        if a.protocol != base.protocol:
            raise ConfigurationConflict(
                f"validating alb attachment {i} for listener {arn}: mismatching protocol: "
                f"got {a.protocol} for index {i}, want {base.protocol}"
            )
        if a.priority != base.priority:
            raise ConfigurationConflict(
                f"validating alb attachment {i} for listener {arn}: mismatching priority: "
                f"got {a.priority} for index {i}, want {base.priority}"
            )
        _check_same('hosts', i, arn, sorted(a.hosts), base_hosts)
        _check_same('path_patterns', i, arn, sorted(a.path_patterns), base_paths)

    status.rule_priority = base.priority
    status.hosts = list(base.hosts)
    status.path_patterns = list(base.path_patterns)


def _check_same(what: str, index: int, arn: str, got: List[str], want: List[str]):
    prefix = f"validating alb attachment {index} for listener {arn}: mismatching {what}: index {index}"
    if len(got) != len(want):
        raise ConfigurationConflict(f"{prefix}: length mismatch: got {len(got)}, want {len(want)}")
    for j, (v1, v2) in enumerate(zip(got, want)):
        if v1 != v2:
            raise ConfigurationConflict(f"{prefix}: non equal element at {j}: got {v1}, want {v2}")


def forward_target_arns(rule: Dict[str, Any]) -> List[str]:
    """Target group ARNs of a rule whose only action is a forward, else []"""
    actions = rule.get('Actions') or []
    if len(actions) != 1 or actions[0].get('Type') != 'forward':
        return []

    action = actions[0]
    arns = [tg['TargetGroupArn'] for tg in (action.get('ForwardConfig') or {}).get('TargetGroups', [])]
    if not arns and action.get('TargetGroupArn'):
        arns = [action['TargetGroupArn']]
    return arns


def forward_action(weights: List[tuple]) -> Dict[str, Any]:
    """A forward action splitting traffic across (target group ARN, weight) pairs"""
    return {
        'Type': 'forward',
        'Order': 1,
        'ForwardConfig': {
            'TargetGroups': [{'TargetGroupArn': arn, 'Weight': w} for arn, w in weights],
        },
    }


def rule_conditions(status: ListenerStatus) -> List[Dict[str, Any]]:
    conditions = []
    if status.hosts:
        conditions.append({'Field': 'host-header', 'HostHeaderConfig': {'Values': list(status.hosts)}})
    if status.path_patterns:
        conditions.append({'Field': 'path-pattern', 'PathPatternConfig': {'Values': list(status.path_patterns)}})
    return conditions


class ListenerReconciler:
    def __init__(self, elbv2, attachments: List[AttachmentSpec], vpc_id: str = '',
                 cluster_name: str = '', reader: Optional[RoutingStateReader] = None):
        self.elbv2 = elbv2
        self.attachments = attachments
        self.vpc_id = vpc_id
        self.cluster_name = cluster_name
        self.reader = reader or RoutingStateReader(elbv2, attachments)

    def reconcile(self, current_id: str, desired_id: str) -> ListenerStatuses:
        """
        Converge target groups and rules for every listener.

        All validation happens before the first mutating call so that a
        configuration conflict on any listener leaves remote state untouched.
        """
        statuses = self.reader.read()

        for status in statuses.values():
            if len(status.attachments) > 1:
                validate_attachments(status)
                raise ConfigurationConflict(
                    f"listener {status.listener_arn}: only 1 ALB attachment per listener is currently supported"
                )
            validate_attachments(status)

            if desired_id:
                self._check_desired(status.attachments[0], desired_id)

        for arn in sorted(statuses):
            self._reconcile_listener(arn, statuses[arn], current_id, desired_id)

        return statuses

    def _check_desired(self, a: AttachmentSpec, desired_id: str):
        name = target_group_name(a.node_group_name, a.node_port, desired_id)
        if len(name) > TARGET_GROUP_NAME_MAX_LENGTH:
            raise ConfigurationConflict(
                f"creating target group {name} for cluster {self.cluster_name}: target group name too long. "
                f"it must be shorter than {TARGET_GROUP_NAME_MAX_LENGTH + 1}, but was {len(name)}"
            )
        if not a.node_port:
            raise ConfigurationConflict(f"alb attachment node_port cannot be omitted yet: {a}")
        if not self.vpc_id:
            raise ConfigurationConflict('vpc id is required to create target groups')

    def _reconcile_listener(self, arn: str, status: ListenerStatus, current_id: str, desired_id: str):
        logger.info(f"Reconciling listener {arn}: desired={desired_id!r}, current={current_id!r}")
        a = status.attachments[0]

        # Resolve the current group first so it never aliases the desired one.
        if current_id:
            name = target_group_name(a.node_group_name, a.node_port, current_id)
            status.current_tg = self._describe_target_group(name)

        if desired_id:
            name = target_group_name(a.node_group_name, a.node_port, desired_id)
            status.desired_tg = self._find_target_group(name) or self._create_target_group(name, a)

        rules = self._describe_rules(arn)
        if not rules and status.desired_tg is None:
            raise ConfigurationConflict(f"listener {arn}: unsupported case: no listener rule to create")

        match_tg = status.current_tg or status.desired_tg
        existing = None
        if match_tg is not None and status.desired_tg is not None:
            existing = self._find_rule(rules, match_tg['TargetGroupArn'])

        logger.info(
            f"Determining listener rule for {arn}: desired={_arn(status.desired_tg)}, "
            f"current={_arn(status.current_tg)}, matched rule={_rule_arn(existing)}"
        )

        if existing is None and status.desired_tg is not None:
            status.rule = self._create_rule(arn, status)
        elif existing is not None and status.current_tg is not None:
            status.rule = self._start_split(existing, status)
        else:
            status.rule = existing

    def _describe_target_group(self, name: str) -> Dict[str, Any]:
        response = call(self.elbv2, 'describe_target_groups', Names=[name])
        groups = response.get('TargetGroups') or []
        if not groups:
            raise RemoteNotFound('TargetGroup', name)
        return groups[0]

    def _find_target_group(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            tg = self._describe_target_group(name)
        except RemoteNotFound:
            return None
        logger.info(f"Reusing target group {name}: {tg['TargetGroupArn']}")
        return tg

    def _create_target_group(self, name: str, a: AttachmentSpec) -> Dict[str, Any]:
        created = call(
            self.elbv2, 'create_target_group',
            Name=name,
            Port=a.node_port,
            TargetType='instance',
            VpcId=self.vpc_id,
            Protocol=a.protocol.upper(),
        )
        tg = created['TargetGroups'][0]
        logger.info(f"Created target group {name}: {tg['TargetGroupArn']}")

        tags = [{'Key': TAG_NODE_GROUP, 'Value': a.node_group_name}]
        if self.cluster_name:
            tags.append({'Key': TAG_CLUSTER, 'Value': self.cluster_name})
        call(self.elbv2, 'add_tags', ResourceArns=[tg['TargetGroupArn']], Tags=tags)

        return tg

    def _describe_rules(self, listener_arn: str) -> List[Dict[str, Any]]:
        rules = []
        kwargs = {'ListenerArn': listener_arn}
        while True:
            response = call(self.elbv2, 'describe_rules', **kwargs)
            rules.extend(response.get('Rules', []))
            marker = response.get('NextMarker')
            if not marker:
                return rules
            kwargs['Marker'] = marker

    @staticmethod
    def _find_rule(rules: List[Dict[str, Any]], tg_arn: str) -> Optional[Dict[str, Any]]:
        for rule in rules:
            if tg_arn in forward_target_arns(rule):
                return rule
        return None

    def _create_rule(self, listener_arn: str, status: ListenerStatus) -> Dict[str, Any]:
        created = call(
            self.elbv2, 'create_rule',
            ListenerArn=listener_arn,
            Priority=status.rule_priority,
            Conditions=rule_conditions(status),
            Actions=[forward_action([(status.desired_tg['TargetGroupArn'], 100)])],
        )
        rule = created['Rules'][0]
        logger.info(f"Created listener rule {rule['RuleArn']} forwarding 100% to {_arn(status.desired_tg)}")
        return rule

    def _start_split(self, rule: Dict[str, Any], status: ListenerStatus) -> Dict[str, Any]:
        """Rewrite a matched rule into the 0/100 two-member form the shifter starts from"""
        updated = call(
            self.elbv2, 'modify_rule',
            RuleArn=rule['RuleArn'],
            Actions=[forward_action([
                (status.desired_tg['TargetGroupArn'], 0),
                (status.current_tg['TargetGroupArn'], 100),
            ])],
        )
        logger.info(f"Prepared listener rule {rule['RuleArn']} for weighted forwarding")
        return updated['Rules'][0]


class ALBTrafficShifter:
    """Gradually moves forward weight from the current to the desired target group"""

    def __init__(self, elbv2, statuses: ListenerStatuses, opts: Optional[CanaryOpts] = None):
        self.elbv2 = elbv2
        self.statuses = statuses
        self.opts = opts or CanaryOpts()

    def check(self):
        for arn, status in self.statuses.items():
            if status.desired_tg is None:
                raise InvariantViolation('BUG: desired target group is nil', status)
            if status.current_tg is None:
                raise InvariantViolation('BUG: current target group is nil', status)
            if status.rule is None:
                raise InvariantViolation('BUG: rule is nil', status)

            actions = status.rule.get('Actions') or []
            if len(actions) != 1:
                raise InvariantViolation(
                    f"unexpected number of actions in rule {status.rule.get('RuleArn')}: want 1, got {len(actions)}",
                    status,
                )

    def set_desired_percentage(self, status: ListenerStatus, p: int):
        if p < 0 or p > 100:
            raise InvariantViolation(f"BUG: invalid value for p: got {p}, must be within 0..100")

        desired = status.desired_tg['TargetGroupArn']
        current = status.current_tg['TargetGroupArn']
        call(
            self.elbv2, 'modify_rule',
            RuleArn=status.rule['RuleArn'],
            Actions=[forward_action([(desired, p), (current, 100 - p)])],
        )
        logger.info(f"Updated rule {status.rule['RuleArn']} weights - desired: {p}%, current: {100 - p}%")

    async def shift(self):
        self.check()

        step = self.opts.step_or(ALB_DEFAULT_STEP)
        interval = self.opts.interval_or(ALB_DEFAULT_INTERVAL)

        for arn in sorted(self.statuses):
            status = self.statuses[arn]
            logger.info(f"Shifting traffic on listener {arn} in steps of {step}%")
            for p in weight_steps(step):
                await call_in_thread(self.set_desired_percentage, status, p)
                if p < 100 and interval:
                    await asyncio.sleep(interval)

        logger.info('Traffic shift completed')


def _arn(tg: Optional[Dict[str, Any]]) -> Optional[str]:
    return tg.get('TargetGroupArn') if tg else None


def _rule_arn(rule: Optional[Dict[str, Any]]) -> Optional[str]:
    return rule.get('RuleArn') if rule else None
