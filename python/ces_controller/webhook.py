"""
Metacontroller webhook receiving sync and finalize hooks.

Each hook records the object it was handed in the store, queues the keys
that need reconciling and answers right away; the workers do the rest.
"""
import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from ces_controller.models import (
    KIND_CLUSTER_EGRESS_RULE,
    KIND_NAMESPACE_EGRESS_RULE,
    KIND_SERVICE_EGRESS_RULE,
    parse_object,
)
from ces_controller.store import ObjectReference

logger = logging.getLogger(__name__)


class Webhook(BaseHTTPRequestHandler):
    from ces_controller.hooks.externalservice import externalservice_sync, externalservice_finalize
    from ces_controller.hooks.egressrule import egressrule_sync, egressrule_finalize
    from ces_controller.hooks.externaliprule import externaliprule_sync, externaliprule_finalize
    from ces_controller.hooks.endpoints import endpoints_sync, endpoints_finalize

    controller = None
    resync_seconds = 120
    finalize_resync_seconds = 10

    def process(self, path, request):

        if path == "/externalservice/sync":
            result = self.externalservice_sync(request)
        elif path == "/externalservice/finalize":
            result = self.externalservice_finalize(request)
        elif path == "/clusteregressrule/sync":
            result = self.egressrule_sync(request, KIND_CLUSTER_EGRESS_RULE)
        elif path == "/clusteregressrule/finalize":
            result = self.egressrule_finalize(request, KIND_CLUSTER_EGRESS_RULE)
        elif path == "/namespaceegressrule/sync":
            result = self.egressrule_sync(request, KIND_NAMESPACE_EGRESS_RULE)
        elif path == "/namespaceegressrule/finalize":
            result = self.egressrule_finalize(request, KIND_NAMESPACE_EGRESS_RULE)
        elif path == "/serviceegressrule/sync":
            result = self.egressrule_sync(request, KIND_SERVICE_EGRESS_RULE)
        elif path == "/serviceegressrule/finalize":
            result = self.egressrule_finalize(request, KIND_SERVICE_EGRESS_RULE)
        elif path == "/externaliprule/sync":
            result = self.externaliprule_sync(request)
        elif path == "/externaliprule/finalize":
            result = self.externaliprule_finalize(request)
        elif path == "/endpoints/sync":
            result = self.endpoints_sync(request)
        elif path == "/endpoints/finalize":
            result = self.endpoints_finalize(request)
        else:
            result = None

        return result

    def parse(self, kind, request):
        # Composite controllers send the parent, decorator controllers the object
        obj = request.get("parent") or request.get("object")
        if obj is None:
            raise ValueError("request carries neither parent nor object")
        return parse_object(kind, obj)

    def track(self, obj, finalizing):
        """Record ``obj`` in the store and return the state it replaced."""
        store = self.controller.store

        if not finalizing:
            previous = store.upsert(obj)
            if previous is None:
                logger.info("%s %s discovered and recorded", obj.kind, obj.key)
            else:
                logger.debug("%s %s already recorded, replacing", obj.kind, obj.key)
        else:
            previous = store.mark_deleting(obj)
            logger.info("%s %s finalizing", obj.kind, obj.key)

        return previous

    def last_event(self, kind, key):
        events = self.controller.recorder.events(ObjectReference.for_key(kind, key))
        if not events:
            return ""
        return f"{events[-1].reason}: {events[-1].message}"

    def respond(self, code, body):
        payload = json.dumps(body).encode()
        self.send_response(code)
        self.send_header("Content-type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def do_POST(self):
        try:
            request = json.loads(self.rfile.read(int(self.headers.get("content-length", 0))))
            result = self.process(self.path, request)
        except ValueError as e:
            # Covers undecodable bodies and objects failing validation
            logger.warning("rejecting %s: %s", self.path, e)
            self.respond(422, {"error": str(e)})
            return

        if result is None:
            self.respond(404, {"error": f"unknown hook {self.path}"})
            return

        logger.debug("%s -> %s", self.path, json.dumps(result))
        self.respond(200, result)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def make_server(controller, port=80, resync_seconds=120, host=""):
    handler = type("ControllerWebhook", (Webhook,), {
        "controller": controller,
        "resync_seconds": resync_seconds,
    })
    return ThreadingHTTPServer((host, port), handler)
