"""
Tests for resource models, tenants and settings.
"""
import pytest
from pydantic import ValidationError

from ces_controller.config import Settings
from ces_controller.models import (
    ClusterEgressRule,
    ExternalIPRule,
    Scope,
    parse_object,
    set_external_ip_rule_defaults,
    split_key,
)
from ces_controller.tenant import TenantRegistry

from helpers import cluster_rule, external_ip_rule, external_service


@pytest.mark.parametrize("label, scope", [
    ("Cluster", Scope.CLUSTER),
    ("global", Scope.CLUSTER),
    ("Namespace", Scope.NAMESPACE),
    (" service ", Scope.SERVICE),
    ("pod", None),
    ("", None),
])
def test_scope_from_label(label, scope):
    assert Scope.from_label(label) == scope


def test_keys():
    assert external_service("es-1", namespace="team-a").key == "team-a/es-1"
    assert cluster_rule("c-rule", []).key == "c-rule"
    assert split_key("team-a/es-1") == ("team-a", "es-1")
    assert split_key("c-rule") == ("", "c-rule")
    with pytest.raises(ValueError):
        split_key("a/b/c")


def test_external_service_fields():
    es = external_service("es-1", ports=(
        {"port": 53, "protocol": "UDP", "bandwidth": " bwc_1mbps_irule "},
        {"port": 443, "protocol": "TCP"},
    ))

    assert [p.protocol for p in es.spec.ports] == ["udp", "tcp"]
    assert es.bandwidths() == ["bwc_1mbps_irule"]
    assert not es.deleting


def test_invalid_external_service_address():
    with pytest.raises(ValidationError):
        external_service("es-1", addresses=("1.1.1.1", "example.com"))


def test_invalid_port():
    with pytest.raises(ValidationError):
        external_service("es-1", ports=({"port": 70000},))


def test_egress_rule_action_is_normalized():
    assert cluster_rule("c-rule", ["es-1"], action="Drop").spec.action == "drop"
    with pytest.raises(ValidationError):
        cluster_rule("c-rule", ["es-1"], action="forward")


def test_external_ip_rule_requires_external_address():
    with pytest.raises(ValidationError):
        external_ip_rule("r1", external_addresses=())
    with pytest.raises(ValidationError):
        external_ip_rule("r1", external_addresses=("10.0.0.0/24",))


def test_priority_bounds():
    assert external_ip_rule("r1", priority=2**32 - 1).spec.priority == 2**32 - 1
    with pytest.raises(ValidationError):
        external_ip_rule("r1", priority=2**32)


@pytest.mark.parametrize("priority, expected", [(None, 1000), (0, 1000), (7, 7)])
def test_priority_defaults(priority, expected):
    rule = external_ip_rule("r1", priority=priority)

    assert set_external_ip_rule_defaults(rule).spec.priority == expected
    assert rule.spec.priority == priority


def test_destination_match():
    rule = external_ip_rule("r1", destination_match={
        "destinationMatchPorts": {"protocol": "TCP", "ports": [443, "8000-8080"]},
        "addresses": ["8.8.8.0/24"],
    })

    assert rule.spec.destination_match.ports.ports == ["443", "8000-8080"]
    assert not rule.spec.destination_match.is_empty()
    assert external_ip_rule("r2").spec.destination_match.is_empty()


def test_parse_object():
    rule = parse_object("ExternalIPRule", {
        "metadata": {"name": "r1", "namespace": "default", "deletionTimestamp": "2024-01-01T00:00:00Z"},
        "spec": {"externalAddresses": ["10.0.0.1"]},
    })

    assert isinstance(rule, ExternalIPRule)
    assert rule.deleting
    assert isinstance(parse_object("ClusterEgressRule", {"metadata": {"name": "c"}}), ClusterEgressRule)
    with pytest.raises(ValueError):
        parse_object("Pod", {})


# Tenants

def test_tenant_lookup():
    registry = TenantRegistry({
        "tenant-a": {"namespaces": ["default"]},
        "tenant-b": {"namespaces": ["team-b"], "application": "egress", "snatApplication": "snat"},
    })

    assert registry.for_namespace("default").partition == "tenant-a"
    assert registry.for_namespace("team-b").snat_application == "snat"
    assert registry.for_namespace("other") is None
    default = registry.for_default()
    assert (default.partition, default.application, default.snat_application) == ("Common", "Shared", "k8s_snat")
    assert default.path("Shared", "x") == "/Common/Shared/x"


# Settings

def test_settings_parse_json_strings():
    settings = Settings(TENANTS='{"tenant-a": {"namespaces": ["default"]}}', IRULES='["a", "b"]')

    assert settings.TENANTS == {"tenant-a": {"namespaces": ["default"]}}
    assert settings.IRULES == ["a", "b"]


def test_settings_comma_separated_irules():
    assert Settings(IRULES="a, b,").IRULES == ["a", "b"]


def test_license_configured():
    assert not Settings(LICENSE="token").license_configured()
    assert Settings(LICENSE="token", LICENSE_KEY="0123456789abcdef").license_configured()
