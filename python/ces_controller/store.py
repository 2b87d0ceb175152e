"""
In-memory object cache fed by the webhook hooks, and the event sink.
"""
import collections
import datetime
import logging
import threading
from dataclasses import dataclass

from ces_controller.models import object_key

logger = logging.getLogger(__name__)

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"


class ObjectStore:
    """
    Thread-safe cache of the latest known state per kind and key.

    Reads hand out deep copies so a reconciliation works on a snapshot.
    ``list`` enumerates in insertion order, which is the only ordering the
    store offers. Objects being finalized stay in the store, flagged with a
    deletion timestamp, until their finalizer is released.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._objects = collections.defaultdict(dict)
        self._released = set()

    def upsert(self, obj):
        """Record ``obj`` and return the previous state, if any."""
        with self._lock:
            previous = self._objects[obj.kind].get(obj.key)
            self._objects[obj.kind][obj.key] = obj.model_copy(deep=True)
            if not obj.deleting:
                self._released.discard((obj.kind, obj.key))
            return previous

    def mark_deleting(self, obj):
        """Record ``obj`` as being deleted, stamping it if the API server did not."""
        obj = obj.model_copy(deep=True)
        if obj.metadata.deletion_timestamp is None:
            obj.metadata.deletion_timestamp = datetime.datetime.now(
                datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        with self._lock:
            previous = self._objects[obj.kind].get(obj.key)
            self._objects[obj.kind][obj.key] = obj
            return previous

    def delete(self, kind, key):
        with self._lock:
            self._released.discard((kind, key))
            return self._objects[kind].pop(key, None)

    def get(self, kind, namespace, name):
        """Snapshot of one object, or None when it is not known."""
        with self._lock:
            obj = self._objects[kind].get(object_key(namespace, name))
            return obj.model_copy(deep=True) if obj is not None else None

    def get_by_key(self, kind, key):
        with self._lock:
            obj = self._objects[kind].get(key)
            return obj.model_copy(deep=True) if obj is not None else None

    def list(self, kind, namespace=None):
        """Snapshots of every object of ``kind``, optionally in one namespace."""
        with self._lock:
            return [
                obj.model_copy(deep=True)
                for obj in self._objects[kind].values()
                if namespace is None or obj.namespace == namespace
            ]

    def release_finalizer(self, kind, key):
        """Allow the next finalize hook for ``kind/key`` to report completion."""
        with self._lock:
            self._released.add((kind, key))
        logger.info("finalizer released for %s %s", kind, key)

    def finalizer_released(self, kind, key):
        with self._lock:
            return (kind, key) in self._released


@dataclass(frozen=True)
class ObjectReference:
    kind: str
    namespace: str
    name: str

    @classmethod
    def for_key(cls, kind, key):
        namespace, _, name = key.rpartition("/")
        return cls(kind, namespace, name)

    def __str__(self):
        return f"{self.kind} {object_key(self.namespace, self.name)}"


@dataclass(frozen=True)
class Event:
    object: ObjectReference
    type: str
    reason: str
    message: str


class EventRecorder:
    """Logs events and keeps the most recent ones for inspection."""

    def __init__(self, history=1024):
        self._events = collections.deque(maxlen=history)
        self._lock = threading.Lock()

    def event(self, ref, event_type, reason, message):
        level = logging.WARNING if event_type == EVENT_WARNING else logging.INFO
        logger.log(level, "event %s %s: %s: %s", ref, event_type, reason, message)
        with self._lock:
            self._events.append(Event(ref, event_type, reason, message))

    def events(self, ref=None):
        with self._lock:
            return [e for e in self._events if ref is None or e.object == ref]
