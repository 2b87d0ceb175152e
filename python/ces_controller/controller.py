"""
Work queues, workers and the sync handlers.

Each kind has its own queue and worker pool. A handler re-reads everything
it needs through the resolver, synthesizes a complete fragment and applies
it; failures are classified by the worker loop into retry or drop.
"""
import enum
import logging
import threading

from ces_controller.as3.declaration import Declaration
from ces_controller.as3.synthesizer import (
    SynthesisOptions,
    egress_application_name,
    synthesize_egress,
    synthesize_snat,
)
from ces_controller.errors import ControllerError, FinalizerPendingError
from ces_controller.models import (
    KIND_ENDPOINTS,
    KIND_EXTERNAL_IP_RULE,
    KIND_EXTERNAL_SERVICE,
)
from ces_controller.resolver import Outcome
from ces_controller.store import EVENT_NORMAL, EVENT_WARNING, ObjectReference
from ces_controller.workqueue import RateLimitingQueue, default_rate_limiter

logger = logging.getLogger(__name__)

REASON_SYNCED = "Synced"
MESSAGE_SYNCED = "Resource synced successfully"


class SyncResult(enum.Enum):
    SYNCED = "synced"
    DELETED = "deleted"
    NO_RULE = "no governing rule"
    ABSENT = "already absent"
    NOT_WATCHED = "namespace not watched"
    FANNED_OUT = "dependents queued"


class Controller:

    def __init__(self, store, resolver, client, recorder, options=SynthesisOptions(),
                 save_config=False, rate_limiter_factory=default_rate_limiter):
        self.store = store
        self.resolver = resolver
        self.client = client
        self.recorder = recorder
        self.options = options
        self.save_config = save_config

        self.handlers = {
            KIND_EXTERNAL_SERVICE: self.sync_external_service,
            KIND_EXTERNAL_IP_RULE: self.sync_external_ip_rule,
            KIND_ENDPOINTS: self.sync_endpoints,
        }
        self.queues = {
            kind: RateLimitingQueue(kind, rate_limiter_factory()) for kind in self.handlers
        }
        # ExternalService key -> partition its egress application was last applied to
        self._egress_partitions = {}
        self._egress_lock = threading.Lock()
        self._threads = []

    @classmethod
    def from_settings(cls, settings, store, resolver, client, recorder):
        def rate_limiter_factory():
            return default_rate_limiter(settings.RETRY_BASE_DELAY, settings.RETRY_MAX_DELAY,
                                        settings.QUEUE_QPS, settings.QUEUE_BURST)

        return cls(store, resolver, client, recorder,
                   options=SynthesisOptions.from_settings(settings),
                   save_config=settings.SAVE_CONFIG,
                   rate_limiter_factory=rate_limiter_factory)

    def enqueue(self, kind, key):
        logger.debug("enqueue %s %s", kind, key)
        self.queues[kind].add(key)

    def enqueue_egress_dependents(self, rule, previous=None):
        for key in self.resolver.dependents_of_egress_rule(rule, previous):
            self.enqueue(KIND_EXTERNAL_SERVICE, key)

    # Workers

    def run(self, workers=2):
        for kind in self.queues:
            for i in range(workers):
                thread = threading.Thread(target=self._worker, args=(kind,),
                                          name=f"{kind}-worker-{i}", daemon=True)
                thread.start()
                self._threads.append(thread)
        logger.info("started %d workers per kind", workers)

    def shutdown(self, timeout=None):
        """Stop dispatching and wait for in-flight items."""
        for queue in self.queues.values():
            queue.shut_down()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    def _worker(self, kind):
        while self.process_next_work_item(kind):
            pass

    def process_next_work_item(self, kind, timeout=None):
        """Handle one item of ``kind``. Returns False once the queue shut down."""
        queue = self.queues[kind]
        key, shutdown = queue.get(timeout)
        if shutdown:
            return False
        if key is None:
            return True

        ref = ObjectReference.for_key(kind, key)
        try:
            result = self.handlers[kind](key)
        except ControllerError as e:
            if e.retryable:
                queue.add_rate_limited(key)
                logger.warning("error syncing '%s': %s, requeuing", key, e)
            else:
                queue.forget(key)
                logger.error("error syncing '%s': %s, dropping until it changes", key, e)
            self.recorder.event(ref, EVENT_WARNING, e.reason, str(e))
        except Exception:
            logger.exception("unexpected error syncing %s '%s', requeuing", kind, key)
            queue.add_rate_limited(key)
        else:
            queue.forget(key)
            logger.info("Successfully synced '%s': %s", key, result.value)
        finally:
            queue.done(key)
        return True

    # Handlers

    def _apply(self, declaration):
        if self.client.apply(declaration) and self.save_config:
            self.client.save_config()

    def _purge_egress(self, external_service, keep=None):
        """
        Remove the service's application from candidate partitions other than ``keep``.

        Skipped when the application already went to ``keep`` on the last
        sync of this controller; after a restart every candidate is checked once.
        """
        key = external_service.key
        with self._egress_lock:
            if key in self._egress_partitions and self._egress_partitions[key] == keep:
                return
        app_name = egress_application_name(external_service, self.options)
        partitions = {self.resolver.tenants.for_default().partition}
        tenant = self.resolver.tenants.for_namespace(external_service.namespace)
        if tenant is not None:
            partitions.add(tenant.partition)
        partitions.discard(keep)
        for partition in sorted(partitions):
            self._apply(Declaration(partition, {app_name: None}))
        with self._egress_lock:
            self._egress_partitions[key] = keep

    def sync_external_service(self, key):
        logger.info("start sync externalService[%s]", key)
        resolution = self.resolver.resolve_external_service(key)
        external_service = resolution.external_service

        if resolution.outcome == Outcome.ABSENT:
            logger.info("ExternalService %s not found, nothing to reconcile", key)
            with self._egress_lock:
                self._egress_partitions.pop(key, None)
            return SyncResult.ABSENT

        keep = resolution.tenant.partition if resolution.outcome == Outcome.RESOLVED else None
        self._purge_egress(external_service, keep)

        if resolution.outcome != Outcome.RESOLVED:
            if external_service.deleting:
                self.store.release_finalizer(KIND_EXTERNAL_SERVICE, key)
            logger.info("ExternalService %s: %s, don't need sync", key, resolution.outcome.value)
            return SyncResult.NOT_WATCHED if resolution.outcome == Outcome.NOT_WATCHED else SyncResult.NO_RULE

        declaration = synthesize_egress(
            external_service,
            resolution.rule,
            resolution.tenant,
            resolution.source_addresses,
            delete=resolution.deleting,
            options=self.options,
        )
        self._apply(declaration)

        if resolution.deleting:
            raise FinalizerPendingError(
                f"ExternalService[{key}] is deleting but still listed by "
                f"{resolution.rule.kind} {resolution.rule.key}, wait for the egress rule to release it")

        self.recorder.event(ObjectReference.for_key(KIND_EXTERNAL_SERVICE, key),
                            EVENT_NORMAL, REASON_SYNCED, MESSAGE_SYNCED)
        return SyncResult.SYNCED

    def sync_external_ip_rule(self, key):
        logger.info("start sync externalIPRule[%s]", key)
        resolution = self.resolver.resolve_external_ip_rule(key)

        if resolution.outcome == Outcome.NOT_WATCHED:
            rule = self.store.get_by_key(KIND_EXTERNAL_IP_RULE, key)
            if rule is not None and rule.deleting:
                self.store.release_finalizer(KIND_EXTERNAL_IP_RULE, key)
            logger.info("namespace of ExternalIPRule %s not in watch range", key)
            return SyncResult.NOT_WATCHED
        if resolution.outcome == Outcome.ABSENT:
            logger.info("ExternalIPRule %s not found, nothing to reconcile", key)
            return SyncResult.ABSENT

        declaration = synthesize_snat(
            resolution.rules,
            resolution.tenant,
            resolution.endpoints,
            target=key,
            delete=resolution.delete,
            options=self.options,
        )
        self._apply(declaration)
        for sibling in resolution.unresolved:
            self.enqueue(KIND_EXTERNAL_IP_RULE, sibling)

        if resolution.delete:
            self.store.release_finalizer(KIND_EXTERNAL_IP_RULE, key)
            return SyncResult.DELETED

        self.recorder.event(ObjectReference.for_key(KIND_EXTERNAL_IP_RULE, key),
                            EVENT_NORMAL, REASON_SYNCED, MESSAGE_SYNCED)
        return SyncResult.SYNCED

    def sync_endpoints(self, key):
        eip_rules, external_services = self.resolver.dependents_of_endpoints(key)
        for rule_key in eip_rules:
            self.enqueue(KIND_EXTERNAL_IP_RULE, rule_key)
        for service_key in external_services:
            self.enqueue(KIND_EXTERNAL_SERVICE, service_key)
        logger.debug("endpoints %s: %d rules, %d external services queued",
                     key, len(eip_rules), len(external_services))
        return SyncResult.FANNED_OUT
