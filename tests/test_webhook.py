"""
Tests for the metacontroller webhook.
"""
import threading

import pytest
import requests

from ces_controller.models import (
    KIND_CLUSTER_EGRESS_RULE,
    KIND_ENDPOINTS,
    KIND_EXTERNAL_IP_RULE,
    KIND_EXTERNAL_SERVICE,
)
from ces_controller.webhook import Webhook, make_server

from helpers import cluster_rule, endpoints, external_ip_rule, external_service


def as_request(obj):
    return {"parent": obj.model_dump(by_alias=True)}


@pytest.fixture
def hook(controller):
    handler = type("TestWebhook", (Webhook,), {"controller": controller, "resync_seconds": 30})
    return handler.__new__(handler)


def drain(controller, kind):
    while controller.process_next_work_item(kind, timeout=0) and len(controller.queues[kind]):
        pass


def test_external_service_sync(hook, controller, store):
    result = hook.process("/externalservice/sync", as_request(external_service("es-1", rule_type="Cluster")))

    assert result == {
        "status": {"ruleType": "cluster", "lastEvent": ""},
        "resyncAfterSeconds": 30,
    }
    assert store.get_by_key(KIND_EXTERNAL_SERVICE, "default/es-1") is not None
    assert controller.queues[KIND_EXTERNAL_SERVICE].get(timeout=0) == ("default/es-1", False)


def test_sync_reports_last_event(hook, controller, store):
    store.upsert(cluster_rule("c-rule", ["es-1"]))
    request = as_request(external_service("es-1", rule_type="Cluster"))
    hook.process("/externalservice/sync", request)
    drain(controller, KIND_EXTERNAL_SERVICE)

    result = hook.process("/externalservice/sync", request)

    assert result["status"]["lastEvent"] == "Synced: Resource synced successfully"


def test_external_service_finalize_waits_for_worker(hook, controller, store):
    request = as_request(external_service("es-1", rule_type="Cluster"))
    hook.process("/externalservice/sync", request)

    result = hook.process("/externalservice/finalize", request)

    assert result == {"finalized": False, "resyncAfterSeconds": 10}
    assert store.get_by_key(KIND_EXTERNAL_SERVICE, "default/es-1").deleting

    drain(controller, KIND_EXTERNAL_SERVICE)

    assert hook.process("/externalservice/finalize", request) == {"finalized": True}
    assert store.get_by_key(KIND_EXTERNAL_SERVICE, "default/es-1") is None


def test_external_ip_rule_finalize_flow(hook, controller, store, fake_client):
    store.upsert(endpoints("svc-a", ["192.168.1.5"]))
    request = as_request(external_ip_rule("r1", priority=500))

    result = hook.process("/externaliprule/sync", request)
    assert result["status"]["priority"] == 500
    drain(controller, KIND_EXTERNAL_IP_RULE)

    assert hook.process("/externaliprule/finalize", request)["finalized"] is False
    drain(controller, KIND_EXTERNAL_IP_RULE)

    assert fake_client.applied[-1].applications == {"k8s_snat": None}
    assert hook.process("/externaliprule/finalize", request) == {"finalized": True}
    assert store.get_by_key(KIND_EXTERNAL_IP_RULE, "default/r1") is None


def test_egress_rule_sync_and_finalize(hook, controller, store):
    store.upsert(external_service("es-1", rule_type="Cluster"))
    request = as_request(cluster_rule("c-rule", ["es-1"]))

    result = hook.process("/clusteregressrule/sync", request)

    assert result == {"status": {"externalServices": 1}, "resyncAfterSeconds": 30}
    assert store.get_by_key(KIND_CLUSTER_EGRESS_RULE, "c-rule") is not None
    assert len(controller.queues[KIND_EXTERNAL_SERVICE]) == 1

    assert hook.process("/clusteregressrule/finalize", request) == {"finalized": True}
    assert store.get_by_key(KIND_CLUSTER_EGRESS_RULE, "c-rule") is None


def test_endpoints_sync_and_finalize(hook, controller, store):
    request = as_request(endpoints("svc-a", ["192.168.1.5", "192.168.1.6"]))

    result = hook.process("/endpoints/sync", request)

    assert result["status"] == {"addresses": 2}
    assert len(controller.queues[KIND_ENDPOINTS]) == 1

    assert hook.process("/endpoints/finalize", request) == {"finalized": True}
    assert store.get_by_key(KIND_ENDPOINTS, "default/svc-a") is None


def test_object_request_is_accepted(hook, store):
    request = {"object": external_service("es-1").model_dump(by_alias=True)}

    hook.process("/externalservice/sync", request)

    assert store.get_by_key(KIND_EXTERNAL_SERVICE, "default/es-1") is not None


def test_unknown_hook(hook):
    assert hook.process("/pods/sync", {}) is None


def test_request_without_object(hook):
    with pytest.raises(ValueError):
        hook.process("/externalservice/sync", {})


@pytest.fixture
def server(controller):
    server = make_server(controller, port=0, resync_seconds=30, host="127.0.0.1")
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield "http://127.0.0.1:%d" % server.server_address[1]
    server.shutdown()
    server.server_close()


def test_server_answers_hooks(server):
    response = requests.post(server + "/externalservice/sync",
                             json=as_request(external_service("es-1", rule_type="Namespace")))

    assert response.status_code == 200
    assert response.json()["status"]["ruleType"] == "namespace"


def test_server_rejects_invalid_objects(server):
    bad = {"parent": {"metadata": {"name": "es-1", "namespace": "default"},
                      "spec": {"addresses": ["not-an-address"]}}}

    response = requests.post(server + "/externalservice/sync", json=bad)

    assert response.status_code == 422


def test_server_unknown_path(server):
    response = requests.post(server + "/pods/sync", json={})

    assert response.status_code == 404
