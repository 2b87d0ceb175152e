"""
Pytest configuration and fixtures.
"""
import pytest

from ces_controller.controller import Controller
from ces_controller.resolver import RuleResolver
from ces_controller.store import EventRecorder, ObjectStore
from ces_controller.tenant import TenantRegistry

from helpers import FakeAS3Client

IRULES = ["bwc_1mbps_irule", "bwc_10mbps_irule"]

TENANT_TABLE = {
    "tenant-a": {"namespaces": ["default", "team-a"]},
    "tenant-b": {"namespaces": ["team-b"], "application": "egress", "snatApplication": "snat"},
}


@pytest.fixture
def store():
    return ObjectStore()


@pytest.fixture
def tenants():
    return TenantRegistry(TENANT_TABLE)


@pytest.fixture
def resolver(store, tenants):
    return RuleResolver(store, tenants, IRULES)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def fake_client():
    return FakeAS3Client()


@pytest.fixture
def controller(store, resolver, fake_client, recorder):
    controller = Controller(store, resolver, fake_client, recorder)
    yield controller
    controller.shutdown()
