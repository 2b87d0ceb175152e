"""
Namespace to BIG-IP partition mapping.
"""
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class TenantConfig:
    partition: str
    application: str
    snat_application: str
    namespaces: Tuple[str, ...] = ()

    def path(self, application, name):
        """AS3 reference path of an object inside one of this tenant's applications."""
        return f"/{self.partition}/{application}/{name}"


class TenantRegistry:
    """
    Resolves tenant configs from a static partition table.

    The table maps partition names to ``{"namespaces": [...]}`` with optional
    ``application`` and ``snatApplication`` overrides. Cluster-scoped rules go
    to the default partition. Every lookup builds a new TenantConfig.
    """

    def __init__(self, table, default_partition="Common", default_application="Shared",
                 snat_application="k8s_snat"):
        self.table = dict(table or {})
        self.default_partition = default_partition
        self.default_application = default_application
        self.snat_application = snat_application

    @classmethod
    def from_settings(cls, settings):
        return cls(
            settings.TENANTS,
            default_partition=settings.DEFAULT_PARTITION,
            default_application=settings.DEFAULT_APPLICATION,
            snat_application=settings.SNAT_APPLICATION,
        )

    def for_default(self):
        return self.for_partition(self.default_partition)

    def for_partition(self, partition):
        entry = self.table.get(partition, {})
        return TenantConfig(
            partition=partition,
            application=entry.get("application", self.default_application),
            snat_application=entry.get("snatApplication", self.snat_application),
            namespaces=tuple(sorted(entry.get("namespaces", ()))),
        )

    def for_namespace(self, namespace):
        """Tenant for ``namespace``, or None when the namespace is not watched."""
        for partition in sorted(self.table):
            if namespace in self.table[partition].get("namespaces", ()):
                return self.for_partition(partition)
        return None
