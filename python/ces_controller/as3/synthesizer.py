"""
Builds AS3 declarations from resolved rules.

Synthesis is a pure function of its arguments: same rules, tenant, endpoint
snapshots and delete flag give the same declaration, down to the serialized
bytes. Fragments are always complete for the application they describe, so
anything left out of them is removed from the appliance.
"""
import ipaddress
from dataclasses import dataclass

from ces_controller.as3.declaration import (
    TRANSLATION_AUTOMAP,
    TRANSLATION_DYNAMIC_PAT,
    TRANSLATION_STATIC_NAT,
    AddressList,
    Application,
    Declaration,
    FirewallPolicy,
    FirewallRule,
    FirewallRuleList,
    ForwardingService,
    NatPolicy,
    NatRule,
    PortList,
    SourceTranslation,
)
from ces_controller.errors import ResolutionError


@dataclass(frozen=True)
class SynthesisOptions:
    snat_prefix: str = "k8s_snat"
    egress_prefix: str = "k8s_egress"
    default_priority: int = 1000
    port_range: str = "10000-50000"
    irule_partition: str = "Common"

    @property
    def automap_rule(self):
        return f"{self.snat_prefix}_automap"

    @property
    def policy_name(self):
        return f"{self.snat_prefix}_policy"

    @classmethod
    def from_settings(cls, settings):
        return cls(
            snat_prefix=settings.SNAT_PREFIX,
            egress_prefix=settings.EGRESS_PREFIX,
            default_priority=settings.DEFAULT_PRIORITY,
            port_range=settings.SNAT_PORT_RANGE,
            irule_partition=settings.DEFAULT_PARTITION,
        )


def _address_key(address):
    network = ipaddress.ip_network(address, strict=False)
    return network.version, network.network_address, network.prefixlen, address


def sort_addresses(addresses):
    """Deduplicated addresses in numeric order."""
    return sorted(set(addresses), key=_address_key)


def _port_key(port):
    first = str(port).split("-", 1)[0]
    return (int(first), str(port)) if first.isdigit() else (65536, str(port))


def sort_ports(ports):
    return sorted({str(p) for p in ports}, key=_port_key)


def nat_rule_name(rule, options):
    return f"{options.snat_prefix}_{rule.namespace}_{rule.name}"


def egress_application_name(external_service, options):
    return f"{options.egress_prefix}_{external_service.namespace}_{external_service.name}"


def synthesize_snat(rules, tenant, endpoints, target=None, delete=False, options=SynthesisOptions()):
    """
    SNAT application for ``tenant`` from its ExternalIPRules.

    With ``delete`` set the rule keyed ``target`` is left out even when it
    is still among ``rules``. Without any rule left the application is
    declared for removal.
    """
    app_name = tenant.snat_application
    live = [r for r in rules if not (delete and r.key == target)]
    live.sort(key=lambda r: (r.spec.priority or options.default_priority, r.namespace, r.name))
    if not live:
        return Declaration(tenant.partition, {app_name: None})

    objects = {}
    policy = NatPolicy()
    for rule in live:
        policy.rules.append(_nat_rule(rule, tenant, app_name, endpoints, objects, options))
    # Everything no rule matched leaves through the self IP
    policy.rules.append(NatRule(options.automap_rule, "any", TRANSLATION_AUTOMAP))
    objects[options.policy_name] = policy

    return Declaration(tenant.partition, {app_name: Application(objects, template="shared")})


def _nat_rule(rule, tenant, app_name, endpoints, objects, options):
    base = nat_rule_name(rule, options)

    sources = []
    for service in rule.spec.services:
        addresses = endpoints.get((rule.namespace, service))
        if not addresses:
            raise ResolutionError(f"endpoints [{rule.namespace}/{service}] has no addresses")
        name = f"{base}_ep_{service}_src_address"
        objects[name] = AddressList(sort_addresses(addresses))
        sources.append(tenant.path(app_name, name))

    match = rule.spec.destination_match
    protocol = match.ports.protocol.lower() or ("tcp" if match.ports.ports else "any")
    destination_addresses = []
    destination_ports = []
    if match.addresses:
        name = f"{base}_ext_address"
        objects[name] = AddressList(sort_addresses(match.addresses))
        destination_addresses.append(tenant.path(app_name, name))
    if match.ports.ports:
        name = f"{base}_ext_ports_{protocol}"
        objects[name] = PortList(sort_ports(match.ports.ports))
        destination_ports.append(tenant.path(app_name, name))

    if rule.spec.static_mapping:
        translation = SourceTranslation(TRANSLATION_STATIC_NAT, sort_addresses(rule.spec.external_addresses))
    else:
        translation = SourceTranslation(
            TRANSLATION_DYNAMIC_PAT,
            sort_addresses(rule.spec.external_addresses),
            [options.port_range],
        )
    translation_name = f"{base}_source_translation"
    objects[translation_name] = translation

    return NatRule(
        name=base,
        protocol=protocol,
        source_translation=tenant.path(app_name, translation_name),
        source_address_lists=sources,
        destination_address_lists=destination_addresses,
        destination_port_lists=destination_ports,
    )


def synthesize_egress(external_service, rule, tenant, source_addresses=(), delete=False,
                      options=SynthesisOptions()):
    """
    Egress application of one ExternalService under its governing rule.

    Each port gets a forwarding virtual server; a port's bandwidth directive
    becomes an iRule on that virtual server and is withheld otherwise.
    """
    app_name = egress_application_name(external_service, options)
    if delete:
        return Declaration(tenant.partition, {app_name: None})

    def path(name):
        return tenant.path(app_name, name)

    objects = {}
    addresses = sort_addresses(external_service.spec.addresses)
    destination = []
    if addresses:
        objects["ext_address"] = AddressList(addresses)
        destination.append(path("ext_address"))

    source = []
    if source_addresses:
        objects["src_address"] = AddressList(sort_addresses(source_addresses))
        source.append(path("src_address"))

    ports_by_protocol = {}
    for port in external_service.spec.ports:
        ports_by_protocol.setdefault(port.protocol, set()).add(port.port)

    firewall_rules = []
    for protocol in sorted(ports_by_protocol):
        port_list = f"ext_ports_{protocol}"
        objects[port_list] = PortList(sort_ports(ports_by_protocol[protocol]))
        firewall_rules.append(FirewallRule(
            f"{rule.name}_{protocol}", protocol, rule.spec.action, source, destination, [path(port_list)]))
    if not firewall_rules:
        firewall_rules.append(FirewallRule(f"{rule.name}_any", "any", rule.spec.action, source, destination))
    objects["rule_list"] = FirewallRuleList(firewall_rules)
    objects["policy"] = FirewallPolicy([path("rule_list")])

    if addresses:
        for port in sorted(external_service.spec.ports, key=lambda p: (p.protocol, p.port)):
            bandwidth = port.bandwidth.strip()
            irules = [f"/{options.irule_partition}/{bandwidth}"] if bandwidth else []
            objects[f"vs_{port.protocol}_{port.port}"] = ForwardingService(
                addresses, port.port, port.protocol, path("policy"), irules)

    return Declaration(tenant.partition, {app_name: Application(objects)})
