"""
Typed AS3 declaration graph.

tenant -> application -> NAT policy -> rules -> address/port lists -> source
translation, plus the firewall and forwarding objects used for egress rules.
Every node renders itself with ``to_dict``; ``canonical_json`` gives the
byte-stable form used to compare and send declarations.
"""
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional

CLASS_ADC = "ADC"
CLASS_AS3 = "AS3"
CLASS_TENANT = "Tenant"
CLASS_APPLICATION = "Application"
CLASS_NAT_POLICY = "NAT_Policy"
CLASS_SOURCE_TRANSLATION = "SNAT_Translation"
CLASS_ADDRESS_LIST = "Firewall_Address_List"
CLASS_PORT_LIST = "Firewall_Port_List"
CLASS_RULE_LIST = "Firewall_Rule_List"
CLASS_FIREWALL_POLICY = "Firewall_Policy"
CLASS_SERVICE_FORWARDING = "Service_Forwarding"

TRANSLATION_AUTOMAP = "automap"
TRANSLATION_DYNAMIC_PAT = "dynamic-pat"
TRANSLATION_STATIC_NAT = "static-nat"

SCHEMA_VERSION = "3.22.0"


def canonical_json(data):
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def use(ref):
    return {"use": ref}


@dataclass
class AddressList:
    addresses: List[str]

    def to_dict(self):
        return {"class": CLASS_ADDRESS_LIST, "addresses": list(self.addresses)}


@dataclass
class PortList:
    ports: List[str]

    def to_dict(self):
        return {"class": CLASS_PORT_LIST, "ports": [str(p) for p in self.ports]}


@dataclass
class SourceTranslation:
    type: str
    addresses: List[str] = field(default_factory=list)
    ports: List[str] = field(default_factory=list)

    def to_dict(self):
        data = {
            "class": CLASS_SOURCE_TRANSLATION,
            "type": self.type,
            "addresses": list(self.addresses),
        }
        # Only pooled translations carry a port band
        if self.type == TRANSLATION_DYNAMIC_PAT:
            data["ports"] = list(self.ports)
        return data


@dataclass
class NatRule:
    name: str
    protocol: str
    source_translation: str
    source_address_lists: List[str] = field(default_factory=list)
    destination_address_lists: List[str] = field(default_factory=list)
    destination_port_lists: List[str] = field(default_factory=list)

    def to_dict(self):
        data = {"name": self.name, "protocol": self.protocol}
        if self.source_address_lists:
            data["source"] = {"addressLists": [use(r) for r in self.source_address_lists]}
        if self.destination_address_lists or self.destination_port_lists:
            destination = {}
            if self.destination_address_lists:
                destination["addressLists"] = [use(r) for r in self.destination_address_lists]
            if self.destination_port_lists:
                destination["portLists"] = [use(r) for r in self.destination_port_lists]
            data["destination"] = destination
        data["sourceTranslation"] = use(self.source_translation)
        return data


@dataclass
class NatPolicy:
    rules: List[NatRule] = field(default_factory=list)

    def to_dict(self):
        return {"class": CLASS_NAT_POLICY, "rules": [r.to_dict() for r in self.rules]}


@dataclass
class FirewallRule:
    name: str
    protocol: str
    action: str
    source_address_lists: List[str] = field(default_factory=list)
    destination_address_lists: List[str] = field(default_factory=list)
    destination_port_lists: List[str] = field(default_factory=list)

    def to_dict(self):
        data = {"name": self.name, "protocol": self.protocol, "action": self.action}
        if self.source_address_lists:
            data["source"] = {"addressLists": [use(r) for r in self.source_address_lists]}
        destination = {}
        if self.destination_address_lists:
            destination["addressLists"] = [use(r) for r in self.destination_address_lists]
        if self.destination_port_lists:
            destination["portLists"] = [use(r) for r in self.destination_port_lists]
        if destination:
            data["destination"] = destination
        return data


@dataclass
class FirewallRuleList:
    rules: List[FirewallRule] = field(default_factory=list)

    def to_dict(self):
        return {"class": CLASS_RULE_LIST, "rules": [r.to_dict() for r in self.rules]}


@dataclass
class FirewallPolicy:
    rule_lists: List[str] = field(default_factory=list)

    def to_dict(self):
        return {"class": CLASS_FIREWALL_POLICY, "rules": [use(r) for r in self.rule_lists]}


@dataclass
class ForwardingService:
    virtual_addresses: List[str]
    virtual_port: int
    layer4: str
    firewall_policy: Optional[str] = None
    irules: List[str] = field(default_factory=list)

    def to_dict(self):
        data = {
            "class": CLASS_SERVICE_FORWARDING,
            "forwardingType": "ip",
            "layer4": self.layer4,
            "virtualAddresses": list(self.virtual_addresses),
            "virtualPort": self.virtual_port,
        }
        if self.firewall_policy:
            data["policyFirewallEnforced"] = use(self.firewall_policy)
        if self.irules:
            data["iRules"] = [{"bigip": r} for r in self.irules]
        return data


@dataclass
class Application:
    objects: Dict[str, object] = field(default_factory=dict)
    template: str = "generic"

    def to_dict(self):
        data = {"class": CLASS_APPLICATION, "template": self.template}
        for name in sorted(self.objects):
            data[name] = self.objects[name].to_dict()
        return data


@dataclass
class Declaration:
    """
    Desired state of some applications of one partition.

    An application mapped to None is to be removed from the partition.
    Applications of the partition that are not listed are left alone.
    """

    partition: str
    applications: Dict[str, Optional[Application]] = field(default_factory=dict)

    def to_dict(self):
        return {
            name: (app.to_dict() if app is not None else None)
            for name, app in sorted(self.applications.items())
        }

    def to_json(self):
        return canonical_json({self.partition: self.to_dict()})

    def to_tenant(self):
        """Tenant body holding every application that is not being removed."""
        tenant = {"class": CLASS_TENANT}
        for name, app in sorted(self.applications.items()):
            if app is not None:
                tenant[name] = app.to_dict()
        return tenant

    def to_adc(self, declaration_id="ces-controller"):
        return {
            "class": CLASS_AS3,
            "action": "deploy",
            "persist": True,
            "declaration": {
                "class": CLASS_ADC,
                "schemaVersion": SCHEMA_VERSION,
                "id": declaration_id,
                self.partition: self.to_tenant(),
            },
        }

    def to_patch(self, present):
        """
        JSON patch operations for the AS3 PATCH endpoint.

        ``present`` is the set of application names currently declared in the
        partition; removals are only emitted for those.
        """
        ops = []
        for name, app in sorted(self.applications.items()):
            path = f"/{self.partition}/{name}"
            if app is not None:
                ops.append({"op": "add", "path": path, "value": app.to_dict()})
            elif name in present:
                ops.append({"op": "remove", "path": path})
        return ops
