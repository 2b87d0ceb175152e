def endpoints_sync(self, request):
    import logging
    from ces_controller.models import KIND_ENDPOINTS

    logger = logging.getLogger(__name__)

    endpoints = self.parse(KIND_ENDPOINTS, request)
    logger.debug("ENDPOINTS SYNC %s: %s", endpoints.key, endpoints.ips())

    self.track(endpoints, False)
    self.controller.enqueue(KIND_ENDPOINTS, endpoints.key)

    result = {
        "status": {
            "addresses": len(endpoints.ips()),
        },
        "resyncAfterSeconds": self.resync_seconds,
    }
    return result


def endpoints_finalize(self, request):
    import logging
    from ces_controller.models import KIND_ENDPOINTS

    logger = logging.getLogger(__name__)

    endpoints = self.parse(KIND_ENDPOINTS, request)
    logger.info("ENDPOINTS FINALIZE %s", endpoints.key)

    # Dependents resync against an empty address set and wait for it to come back
    self.controller.store.delete(KIND_ENDPOINTS, endpoints.key)
    self.controller.enqueue(KIND_ENDPOINTS, endpoints.key)

    return {"finalized": True}
