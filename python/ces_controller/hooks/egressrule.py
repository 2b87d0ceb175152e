def egressrule_sync(self, request, kind):
    import logging

    logger = logging.getLogger(__name__)

    rule = self.parse(kind, request)
    logger.info("%s SYNC %s", kind.upper(), rule.key)

    # Services dropped from the list need a resync as well as the listed ones
    previous = self.track(rule, False)
    self.controller.enqueue_egress_dependents(rule, previous)

    result = {
        "status": {
            "externalServices": len(rule.spec.external_services),
        },
        "resyncAfterSeconds": self.resync_seconds,
    }
    return result


def egressrule_finalize(self, request, kind):
    import logging

    logger = logging.getLogger(__name__)

    rule = self.parse(kind, request)
    logger.info("%s FINALIZE %s", kind.upper(), rule.key)

    previous = self.controller.store.delete(kind, rule.key)
    self.controller.enqueue_egress_dependents(rule, previous)

    return {"finalized": True}
