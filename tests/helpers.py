"""
Object builders and fakes shared by the tests.
"""
import json

from ces_controller.models import (
    RULE_TYPE_LABEL,
    ClusterEgressRule,
    Endpoints,
    ExternalIPRule,
    ExternalService,
    NamespaceEgressRule,
    ServiceEgressRule,
)


def external_service(name, namespace="default", rule_type=None, addresses=("1.1.1.1",),
                     ports=({"port": 443, "protocol": "TCP"},), deleting=False):
    labels = {RULE_TYPE_LABEL: rule_type} if rule_type else {}
    metadata = {"name": name, "namespace": namespace, "labels": labels}
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return ExternalService.model_validate({
        "metadata": metadata,
        "spec": {"addresses": list(addresses), "ports": [dict(p) for p in ports]},
    })


def cluster_rule(name, external_services, action="accept"):
    return ClusterEgressRule.model_validate({
        "metadata": {"name": name},
        "spec": {"action": action, "externalServices": list(external_services)},
    })


def namespace_rule(name, external_services, namespace="default", action="accept"):
    return NamespaceEgressRule.model_validate({
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"action": action, "externalServices": list(external_services)},
    })


def service_rule(name, service, external_services, namespace="default", action="accept"):
    return ServiceEgressRule.model_validate({
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"action": action, "service": service, "externalServices": list(external_services)},
    })


def external_ip_rule(name, namespace="default", priority=None, external_addresses=("10.0.0.1",),
                     services=("svc-a",), destination_match=None, static_mapping=False, deleting=False):
    metadata = {"name": name, "namespace": namespace}
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    spec = {
        "externalAddresses": list(external_addresses),
        "services": list(services),
        "staticMapping": static_mapping,
    }
    if priority is not None:
        spec["priority"] = priority
    if destination_match is not None:
        spec["destinationMatch"] = destination_match
    return ExternalIPRule.model_validate({"metadata": metadata, "spec": spec})


def endpoints(name, ips, namespace="default"):
    return Endpoints.model_validate({
        "metadata": {"name": name, "namespace": namespace},
        "subsets": [{"addresses": [{"ip": ip} for ip in ips]}] if ips else [],
    })


class FakeAS3Client:
    """Records applied declarations instead of talking to a BIG-IP."""

    def __init__(self, error=None):
        self.applied = []
        self.saved = 0
        self.error = error

    def apply(self, declaration):
        if self.error is not None:
            raise self.error
        self.applied.append(declaration)
        return True

    def save_config(self):
        self.saved += 1

    def declarations_for(self, partition):
        return [d for d in self.applied if d.partition == partition]


class FakeResponse:

    def __init__(self, status_code, body=""):
        self.status_code = status_code
        self.text = body if isinstance(body, str) else json.dumps(body)

    def json(self):
        return json.loads(self.text)


class FakeClock:

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
