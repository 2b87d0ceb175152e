"""
Finds the rules governing a changed object.

Every resolve call reads fresh snapshots from the store and builds the
tenant config again; nothing is carried over between reconciliations.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from ces_controller.errors import InvalidSpecError, ResolutionError, TransientError
from ces_controller.models import (
    EGRESS_RULE_KINDS,
    KIND_ENDPOINTS,
    KIND_EXTERNAL_IP_RULE,
    KIND_EXTERNAL_SERVICE,
    KIND_SERVICE_EGRESS_RULE,
    Scope,
    set_external_ip_rule_defaults,
    split_key,
)
from ces_controller.tenant import TenantConfig

logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    RESOLVED = "resolved"
    NO_RULE = "no-rule"
    ABSENT = "absent"
    NOT_WATCHED = "not-watched"


@dataclass(frozen=True)
class EgressResolution:
    outcome: Outcome
    external_service: Optional[object] = None
    rule: Optional[object] = None
    scope: Optional[Scope] = None
    tenant: Optional[TenantConfig] = None
    source_addresses: Tuple[str, ...] = ()

    @property
    def deleting(self):
        return self.external_service is not None and self.external_service.deleting


@dataclass(frozen=True)
class SnatResolution:
    outcome: Outcome
    key: str
    tenant: Optional[TenantConfig] = None
    rules: Tuple[object, ...] = ()
    endpoints: Dict[Tuple[str, str], Tuple[str, ...]] = field(default_factory=dict)
    delete: bool = False
    unresolved: Tuple[str, ...] = ()


class RuleResolver:

    def __init__(self, store, tenants, irules, default_priority=1000):
        self.store = store
        self.tenants = tenants
        self.irules = list(irules)
        self.default_priority = default_priority

    def verify_bandwidth(self, external_service):
        for bandwidth in external_service.bandwidths():
            if bandwidth not in self.irules:
                raise InvalidSpecError(
                    f"The bandwidth field is invalid, one of them should be filled in {self.irules}")

    def endpoint_addresses(self, namespace, service):
        """Live addresses of ``namespace/service``; an empty set cannot be synthesized."""
        endpoints = self.store.get(KIND_ENDPOINTS, namespace, service)
        if endpoints is None:
            # Not delivered by the webhook yet
            raise TransientError(f"endpoints [{namespace}/{service}] not found")
        addresses = endpoints.ips()
        if not addresses:
            raise ResolutionError(f"endpoints [{namespace}/{service}] has no addresses")
        return tuple(addresses)

    def find_governing_rule(self, external_service, scope):
        """
        First rule of ``scope`` listing the external service.

        Enumeration follows the store's listing order and the scan stops at
        the first match, so overlapping rules of one scope never combine.
        """
        model = EGRESS_RULE_KINDS[scope]
        namespace = None if scope == Scope.CLUSTER else external_service.namespace
        for rule in self.store.list(model.kind, namespace):
            if rule.deleting:
                continue
            if external_service.name in rule.spec.external_services:
                return rule
        return None

    def tenant_for_scope(self, scope, namespace):
        if scope == Scope.CLUSTER:
            return self.tenants.for_default()
        return self.tenants.for_namespace(namespace)

    def resolve_external_service(self, key):
        namespace, name = split_key(key)
        external_service = self.store.get(KIND_EXTERNAL_SERVICE, namespace, name)
        if external_service is None:
            return EgressResolution(Outcome.ABSENT)

        if not external_service.deleting:
            self.verify_bandwidth(external_service)

        scope = external_service.scope
        if scope is None:
            return EgressResolution(Outcome.NO_RULE, external_service)

        tenant = self.tenant_for_scope(scope, namespace)
        if tenant is None:
            return EgressResolution(Outcome.NOT_WATCHED, external_service, scope=scope)

        rule = self.find_governing_rule(external_service, scope)
        if rule is None:
            return EgressResolution(Outcome.NO_RULE, external_service, scope=scope, tenant=tenant)

        source_addresses = ()
        if scope == Scope.SERVICE and not external_service.deleting:
            source_addresses = self.endpoint_addresses(namespace, rule.spec.service)

        logger.debug("%s %s governed by %s %s", external_service.kind, key, rule.kind, rule.key)
        return EgressResolution(
            Outcome.RESOLVED,
            external_service,
            rule=rule,
            scope=scope,
            tenant=tenant,
            source_addresses=source_addresses,
        )

    def resolve_external_ip_rule(self, key):
        """
        Resolve every ExternalIPRule sharing the tenant of ``key``.

        The SNAT application of a partition is always declared whole, so the
        target's siblings are part of the resolution too.
        """
        namespace, name = split_key(key)
        tenant = self.tenants.for_namespace(namespace)
        if tenant is None:
            return SnatResolution(Outcome.NOT_WATCHED, key)

        target = self.store.get(KIND_EXTERNAL_IP_RULE, namespace, name)
        if target is None:
            return SnatResolution(Outcome.ABSENT, key, tenant)

        rules = []
        for rule_namespace in tenant.namespaces:
            for rule in self.store.list(KIND_EXTERNAL_IP_RULE, rule_namespace):
                if rule.deleting:
                    continue
                rules.append(set_external_ip_rule_defaults(rule, self.default_priority))

        live = []
        endpoints = {}
        unresolved = []
        for rule in rules:
            try:
                resolved = {
                    (rule.namespace, service): self.endpoint_addresses(rule.namespace, service)
                    for service in rule.spec.services
                }
            except (ResolutionError, TransientError) as e:
                if rule.key == key:
                    raise
                # The sibling reports its own failure when its key is synced
                logger.warning("leaving %s %s out of tenant %s: %s", rule.kind, rule.key, tenant.partition, e)
                unresolved.append(rule.key)
                continue
            live.append(rule)
            endpoints.update(resolved)

        return SnatResolution(
            Outcome.RESOLVED,
            key,
            tenant,
            rules=tuple(live),
            endpoints=endpoints,
            delete=target.deleting,
            unresolved=tuple(unresolved),
        )

    def dependents_of_endpoints(self, key):
        """ExternalIPRule and ExternalService keys whose source set comes from these endpoints."""
        namespace, name = split_key(key)
        eip_rules = [
            rule.key for rule in self.store.list(KIND_EXTERNAL_IP_RULE, namespace)
            if name in rule.spec.services
        ]
        names = set()
        for rule in self.store.list(KIND_SERVICE_EGRESS_RULE, namespace):
            if rule.spec.service == name:
                names.update(rule.spec.external_services)
        external_services = [
            es.key for es in self.store.list(KIND_EXTERNAL_SERVICE, namespace)
            if es.name in names and es.scope == Scope.SERVICE
        ]
        return eip_rules, external_services

    def dependents_of_egress_rule(self, rule, previous=None):
        """ExternalService keys listed by the rule now or before the change."""
        names = set(rule.spec.external_services)
        if previous is not None:
            names.update(previous.spec.external_services)
        namespace = None if rule.scope == Scope.CLUSTER else rule.namespace
        return [
            es.key for es in self.store.list(KIND_EXTERNAL_SERVICE, namespace)
            if es.name in names
        ]
