import logging
import sys

from ces_controller.as3.client import AS3Client
from ces_controller.as3.license import LicenseVerifier
from ces_controller.config import get_settings
from ces_controller.controller import Controller
from ces_controller.errors import ControllerError
from ces_controller.logging_config import setup_logging
from ces_controller.resolver import RuleResolver
from ces_controller.store import EventRecorder, ObjectStore
from ces_controller.tenant import TenantRegistry
from ces_controller.webhook import make_server

logger = logging.getLogger("ces_controller")


def main():
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    client = AS3Client.from_settings(settings)

    # Refuse to start against an appliance the license was not issued for
    if settings.license_configured():
        try:
            check = LicenseVerifier(client).verify(settings.LICENSE, settings.LICENSE_KEY)
        except ControllerError as e:
            logger.error("failed to read license from BIG-IP: %s", e)
            return 1
        if not check.ok:
            logger.error("license verification failed: %s %s", check.status.value, check.reason)
            return 1

    store = ObjectStore()
    recorder = EventRecorder()
    resolver = RuleResolver(
        store,
        TenantRegistry.from_settings(settings),
        settings.IRULES,
        default_priority=settings.DEFAULT_PRIORITY,
    )
    controller = Controller.from_settings(settings, store, resolver, client, recorder)
    controller.run(settings.WORKERS)

    # Start controller
    server = make_server(controller, settings.LISTEN_PORT, settings.RESYNC_SECONDS)
    logger.info("listening on :%d, syncing to %s", settings.LISTEN_PORT, settings.SERVER)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("interrupted, shutting down")
    finally:
        server.server_close()
        controller.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
