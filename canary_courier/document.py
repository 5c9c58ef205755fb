"""
Structured model of an eksctl-style cluster specification.

Only the fields the courier needs are modelled. Every other key is kept in
an ``extra`` mapping at the level it was found and emitted again unchanged,
so fields added by newer eksctl releases survive a load/emit cycle.
"""

from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationConflict


def _split(data: Dict[str, Any], known: List[str]):
    extra = {k: v for k, v in data.items() if k not in known}
    return extra


class Subnet:
    def __init__(self, id: str = '', extra: Optional[Dict[str, Any]] = None):
        self.id = id
        self.extra = extra or {}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Subnet':
        data = data or {}
        return cls(id=data.get('id', ''), extra=_split(data, ['id']))

    def to_dict(self) -> Dict[str, Any]:
        out = {'id': self.id} if self.id else {}
        out.update(self.extra)
        return out


class VPC:
    def __init__(self, id: str = '', public: Optional[Dict[str, Subnet]] = None,
                 private: Optional[Dict[str, Subnet]] = None,
                 subnets_extra: Optional[Dict[str, Any]] = None,
                 extra: Optional[Dict[str, Any]] = None):
        self.id = id
        self.public = public or {}
        self.private = private or {}
        self.subnets_extra = subnets_extra or {}
        self.extra = extra or {}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'VPC':
        data = data or {}
        subnets = data.get('subnets') or {}
        return cls(
            id=data.get('id', ''),
            public={az: Subnet.from_dict(s) for az, s in (subnets.get('public') or {}).items()},
            private={az: Subnet.from_dict(s) for az, s in (subnets.get('private') or {}).items()},
            subnets_extra=_split(subnets, ['public', 'private']),
            extra=_split(data, ['id', 'subnets']),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.id:
            out['id'] = self.id

        subnets: Dict[str, Any] = {}
        if self.public:
            subnets['public'] = {az: s.to_dict() for az, s in self.public.items()}
        if self.private:
            subnets['private'] = {az: s.to_dict() for az, s in self.private.items()}
        subnets.update(self.subnets_extra)
        if subnets:
            out['subnets'] = subnets

        out.update(self.extra)
        return out


class NodeGroup:
    def __init__(self, name: str, target_group_arns: Optional[List[str]] = None,
                 extra: Optional[Dict[str, Any]] = None):
        self.name = name
        self.target_group_arns = target_group_arns or []
        self.extra = extra or {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NodeGroup':
        if 'name' not in data:
            raise ConfigurationConflict(f"node group without a name: {data}")
        return cls(
            name=data['name'],
            target_group_arns=list(data.get('targetGroupARNs') or []),
            extra=_split(data, ['name', 'targetGroupARNs']),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {'name': self.name}
        if self.target_group_arns:
            out['targetGroupARNs'] = list(self.target_group_arns)
        out.update(self.extra)
        return out


class ClusterSpecDocument:
    """A cluster.yaml split into modelled fields and opaque leftovers"""

    KNOWN_KEYS = ['vpc', 'nodeGroups', 'iam']

    def __init__(self, vpc: Optional[VPC] = None, node_groups: Optional[List[NodeGroup]] = None,
                 with_oidc: bool = False, iam_extra: Optional[Dict[str, Any]] = None,
                 has_iam: bool = False, extra: Optional[Dict[str, Any]] = None):
        self.vpc = vpc or VPC()
        self.node_groups = node_groups or []
        self.with_oidc = with_oidc
        self.iam_extra = iam_extra or {}
        self.has_iam = has_iam
        self.extra = extra or {}

    @classmethod
    def from_yaml(cls, text: str) -> 'ClusterSpecDocument':
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigurationConflict(f"parsing cluster spec: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationConflict(f"cluster spec must be a mapping, got {type(data).__name__}")

        iam = data.get('iam')
        return cls(
            vpc=VPC.from_dict(data.get('vpc')),
            node_groups=[NodeGroup.from_dict(ng) for ng in data.get('nodeGroups') or []],
            with_oidc=bool((iam or {}).get('withOIDC', False)),
            iam_extra=_split(iam or {}, ['withOIDC']),
            has_iam=iam is not None,
            extra=_split(data, cls.KNOWN_KEYS),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        vpc = self.vpc.to_dict()
        if vpc:
            out['vpc'] = vpc
        if self.node_groups:
            out['nodeGroups'] = [ng.to_dict() for ng in self.node_groups]
        if self.has_iam or self.with_oidc or self.iam_extra:
            iam: Dict[str, Any] = {'withOIDC': self.with_oidc}
            iam.update(self.iam_extra)
            out['iam'] = iam
        out.update(self.extra)
        return out

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False, indent=2)

    def set_vpc_id(self, vpc_id: str):
        self.vpc.id = vpc_id

    def public_subnet_ids(self) -> List[str]:
        return [s.id for s in self.vpc.public.values()]

    def private_subnet_ids(self) -> List[str]:
        return [s.id for s in self.vpc.private.values()]
