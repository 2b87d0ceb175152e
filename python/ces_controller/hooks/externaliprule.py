def externaliprule_sync(self, request):
    import logging
    from ces_controller.models import KIND_EXTERNAL_IP_RULE

    logger = logging.getLogger(__name__)

    rule = self.parse(KIND_EXTERNAL_IP_RULE, request)
    logger.info("EXTERNALIPRULE SYNC %s", rule.key)

    self.track(rule, False)
    self.controller.enqueue(KIND_EXTERNAL_IP_RULE, rule.key)

    result = {
        "status": {
            "priority": rule.spec.priority or self.controller.options.default_priority,
            "lastEvent": self.last_event(KIND_EXTERNAL_IP_RULE, rule.key),
        },
        "resyncAfterSeconds": self.resync_seconds,
    }
    return result


def externaliprule_finalize(self, request):
    import logging
    from ces_controller.models import KIND_EXTERNAL_IP_RULE

    logger = logging.getLogger(__name__)

    rule = self.parse(KIND_EXTERNAL_IP_RULE, request)
    key = rule.key
    logger.info("EXTERNALIPRULE FINALIZE %s", key)

    # Released by the worker after the SNAT application without this rule was applied
    if self.controller.store.finalizer_released(KIND_EXTERNAL_IP_RULE, key):
        self.controller.store.delete(KIND_EXTERNAL_IP_RULE, key)
        return {"finalized": True}

    self.track(rule, True)
    self.controller.enqueue(KIND_EXTERNAL_IP_RULE, key)
    result = {
        "finalized": False,
        "resyncAfterSeconds": self.finalize_resync_seconds,
    }
    return result
