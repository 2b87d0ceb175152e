"""
Custom resources and core objects the controller reads.

Objects arrive as Kubernetes JSON (camelCase) and are parsed into these
models. Only the fields the controller uses are declared.
"""
import enum
import ipaddress
from typing import ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

RULE_TYPE_LABEL = "kubeovn.io/ruleType"

KIND_EXTERNAL_SERVICE = "ExternalService"
KIND_CLUSTER_EGRESS_RULE = "ClusterEgressRule"
KIND_NAMESPACE_EGRESS_RULE = "NamespaceEgressRule"
KIND_SERVICE_EGRESS_RULE = "ServiceEgressRule"
KIND_EXTERNAL_IP_RULE = "ExternalIPRule"
KIND_ENDPOINTS = "Endpoints"


class Scope(str, enum.Enum):
    """Egress rule scope, selected by the RuleType label on an ExternalService."""

    CLUSTER = "cluster"
    NAMESPACE = "namespace"
    SERVICE = "service"

    @classmethod
    def from_label(cls, value):
        if not value:
            return None
        value = value.strip().lower()
        if value == "global":
            return cls.CLUSTER
        try:
            return cls(value)
        except ValueError:
            return None


class K8sModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ObjectMeta(K8sModel):
    name: str
    namespace: str = ""
    uid: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[str] = None


class Resource(K8sModel):
    kind: ClassVar[str] = ""
    namespaced: ClassVar[bool] = True

    metadata: ObjectMeta

    @property
    def name(self):
        return self.metadata.name

    @property
    def namespace(self):
        return self.metadata.namespace

    @property
    def key(self):
        return object_key(self.namespace if self.namespaced else "", self.name)

    @property
    def deleting(self):
        return self.metadata.deletion_timestamp is not None


def check_networks(addresses):
    for address in addresses:
        try:
            ipaddress.ip_network(address, strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid address or CIDR: {address}") from e
    return addresses


def object_key(namespace, name):
    if namespace:
        return f"{namespace}/{name}"
    return name


def split_key(key):
    """Split a ``namespace/name`` key; cluster-scoped keys have no namespace."""
    parts = key.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise ValueError(f"invalid resource key: {key}")


# ExternalService

class ExternalServicePort(K8sModel):
    name: str = ""
    protocol: str = "TCP"
    port: int = Field(ge=1, le=65535)
    bandwidth: str = ""

    @field_validator("protocol")
    @classmethod
    def lower_protocol(cls, v):
        return v.lower()


class ExternalServiceSpec(K8sModel):
    addresses: List[str] = Field(default_factory=list)
    ports: List[ExternalServicePort] = Field(default_factory=list)

    @field_validator("addresses")
    @classmethod
    def validate_addresses(cls, v):
        return check_networks(v)


class ExternalService(Resource):
    kind: ClassVar[str] = KIND_EXTERNAL_SERVICE

    spec: ExternalServiceSpec = Field(default_factory=ExternalServiceSpec)

    @property
    def scope(self):
        return Scope.from_label(self.metadata.labels.get(RULE_TYPE_LABEL))

    def bandwidths(self):
        return [p.bandwidth.strip() for p in self.spec.ports if p.bandwidth.strip()]


# Egress rules

class EgressRuleSpec(K8sModel):
    action: Literal["accept", "drop", "reject"] = "accept"
    external_services: List[str] = Field(default_factory=list)

    @field_validator("action", mode="before")
    @classmethod
    def lower_action(cls, v):
        return v.lower() if isinstance(v, str) else v


class ServiceEgressRuleSpec(EgressRuleSpec):
    service: str


class ClusterEgressRule(Resource):
    kind: ClassVar[str] = KIND_CLUSTER_EGRESS_RULE
    namespaced: ClassVar[bool] = False
    scope: ClassVar[Scope] = Scope.CLUSTER

    spec: EgressRuleSpec = Field(default_factory=EgressRuleSpec)


class NamespaceEgressRule(Resource):
    kind: ClassVar[str] = KIND_NAMESPACE_EGRESS_RULE
    scope: ClassVar[Scope] = Scope.NAMESPACE

    spec: EgressRuleSpec = Field(default_factory=EgressRuleSpec)


class ServiceEgressRule(Resource):
    kind: ClassVar[str] = KIND_SERVICE_EGRESS_RULE
    scope: ClassVar[Scope] = Scope.SERVICE

    spec: ServiceEgressRuleSpec


EGRESS_RULE_KINDS = {
    Scope.CLUSTER: ClusterEgressRule,
    Scope.NAMESPACE: NamespaceEgressRule,
    Scope.SERVICE: ServiceEgressRule,
}


# ExternalIPRule

class DestinationMatchPorts(K8sModel):
    protocol: str = ""
    ports: List[str] = Field(default_factory=list)

    @field_validator("ports", mode="before")
    @classmethod
    def ports_as_strings(cls, v):
        return [str(p) for p in v or []]


class DestinationMatch(K8sModel):
    name: str = ""
    ports: DestinationMatchPorts = Field(
        default_factory=DestinationMatchPorts, alias="destinationMatchPorts"
    )
    addresses: List[str] = Field(default_factory=list)

    @field_validator("addresses")
    @classmethod
    def validate_addresses(cls, v):
        return check_networks(v)

    def is_empty(self):
        return not self.addresses and not self.ports.ports and not self.ports.protocol


class ExternalIPRuleSpec(K8sModel):
    priority: Optional[int] = Field(default=None, ge=0, le=2**32 - 1)
    external_addresses: List[str] = Field(min_length=1)
    destination_match: DestinationMatch = Field(default_factory=DestinationMatch)
    services: List[str] = Field(default_factory=list)
    static_mapping: bool = False

    @field_validator("external_addresses")
    @classmethod
    def validate_addresses(cls, v):
        for address in v:
            try:
                ipaddress.ip_address(address)
            except ValueError as e:
                raise ValueError(f"Invalid external address: {address}") from e
        return v


class ExternalIPRule(Resource):
    kind: ClassVar[str] = KIND_EXTERNAL_IP_RULE

    spec: ExternalIPRuleSpec


def set_external_ip_rule_defaults(rule, default_priority=1000):
    """Return a copy of ``rule`` with an unset or zero priority defaulted."""
    rule = rule.model_copy(deep=True)
    if not rule.spec.priority:
        rule.spec.priority = default_priority
    return rule


# Endpoints

class EndpointAddress(K8sModel):
    ip: str


class EndpointSubset(K8sModel):
    addresses: List[EndpointAddress] = Field(default_factory=list)


class Endpoints(Resource):
    kind: ClassVar[str] = KIND_ENDPOINTS

    subsets: List[EndpointSubset] = Field(default_factory=list)

    def ips(self):
        return [addr.ip for subset in self.subsets for addr in subset.addresses]


KINDS = {
    cls.kind: cls
    for cls in (
        ExternalService,
        ClusterEgressRule,
        NamespaceEgressRule,
        ServiceEgressRule,
        ExternalIPRule,
        Endpoints,
    )
}


def parse_object(kind, data):
    """Parse a Kubernetes object dict into the model registered for ``kind``."""
    try:
        model = KINDS[kind]
    except KeyError:
        raise ValueError(f"unsupported kind: {kind}") from None
    return model.model_validate(data)
