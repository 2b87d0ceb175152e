def externalservice_sync(self, request):
    import logging
    from ces_controller.models import KIND_EXTERNAL_SERVICE

    logger = logging.getLogger(__name__)

    external_service = self.parse(KIND_EXTERNAL_SERVICE, request)
    logger.info("EXTERNALSERVICE SYNC %s", external_service.key)

    self.track(external_service, False)
    self.controller.enqueue(KIND_EXTERNAL_SERVICE, external_service.key)

    scope = external_service.scope
    result = {
        "status": {
            "ruleType": scope.value if scope is not None else "",
            "lastEvent": self.last_event(KIND_EXTERNAL_SERVICE, external_service.key),
        },
        "resyncAfterSeconds": self.resync_seconds,
    }
    return result


def externalservice_finalize(self, request):
    import logging
    from ces_controller.models import KIND_EXTERNAL_SERVICE

    logger = logging.getLogger(__name__)

    external_service = self.parse(KIND_EXTERNAL_SERVICE, request)
    key = external_service.key
    logger.info("EXTERNALSERVICE FINALIZE %s", key)

    # The worker released the finalizer once no rule governs the service any more
    if self.controller.store.finalizer_released(KIND_EXTERNAL_SERVICE, key):
        self.controller.store.delete(KIND_EXTERNAL_SERVICE, key)
        return {"finalized": True}

    self.track(external_service, True)
    self.controller.enqueue(KIND_EXTERNAL_SERVICE, key)
    result = {
        "finalized": False,
        "resyncAfterSeconds": self.finalize_resync_seconds,
    }
    return result
