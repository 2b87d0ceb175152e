"""
BIG-IP AS3 client.

The client sends one request per call and classifies the reply; it never
retries. Retrying belongs to the work queues.
"""
import collections
import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

import requests
import urllib3

from ces_controller.as3.declaration import CLASS_APPLICATION, canonical_json
from ces_controller.errors import (
    ApplianceFatalError,
    ApplianceRejection,
    ApplianceUnavailable,
    LicenseError,
)

logger = logging.getLogger(__name__)

DECLARE_PATH = "/mgmt/shared/appsvcs/declare"
LICENSE_PATH = "/mgmt/tm/sys/license"
CONFIG_PATH = "/mgmt/tm/sys/config"
LICENSE_ENTRY = "https://localhost/mgmt/tm/sys/license/0"

SUCCESS_CODES = (200, 201, 202)


class Verdict(enum.Enum):
    SUCCESS = "success"
    TENANT_ERRORS = "tenant-errors"
    FATAL = "fatal"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class Classification:
    verdict: Verdict
    status_code: int
    results: List[dict] = field(default_factory=list)
    code: Optional[object] = None

    def raise_for_verdict(self):
        if self.verdict == Verdict.SUCCESS:
            return
        if self.verdict == Verdict.TENANT_ERRORS:
            tenants = ", ".join(str(r.get("tenant")) for r in self.results)
            raise ApplianceRejection(
                f"AS3 responds with status code: {self.status_code} for tenants [{tenants}]",
                self.status_code, self.results)
        if self.verdict == Verdict.FATAL:
            raise ApplianceFatalError(
                f"Big-IP Responded with error code: {self.code}", self.status_code, self.code)
        raise ApplianceUnavailable(f"Big-IP Responded with status code: {self.status_code}", self.status_code)


def classify(status_code, body):
    """Classify one response of the declarative endpoint."""
    if status_code in SUCCESS_CODES:
        return Classification(Verdict.SUCCESS, status_code)
    if isinstance(body, dict):
        results = body.get("results")
        if isinstance(results, list):
            for r in results:
                if isinstance(r, dict):
                    logger.error("Response from BIG-IP: code = %s, tenant = %s, message = %s, response = %s",
                                 r.get("code"), r.get("tenant"), r.get("message"), r.get("response"))
            return Classification(Verdict.TENANT_ERRORS, status_code,
                                  [r for r in results if isinstance(r, dict)])
        error = body.get("error")
        if isinstance(error, dict):
            return Classification(Verdict.FATAL, status_code, code=error.get("code"))
    return Classification(Verdict.OPAQUE, status_code)


def _body(response):
    if not response.text.strip():
        return {}
    try:
        return response.json()
    except ValueError:
        return None


class AS3Client:

    def __init__(self, host, username, password, insecure=False, timeout=60.0, session=None):
        self.host = host if host.startswith("http") else f"https://{host}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (username, password)
        self.session.verify = not insecure
        # One GET then POST/PATCH sequence per partition at a time
        self._partition_locks = collections.defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()
        if insecure:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    @classmethod
    def from_settings(cls, settings):
        return cls(settings.SERVER, settings.REMOTE_USER, settings.REMOTE_PASSWORD,
                   insecure=settings.INSECURE, timeout=settings.REQUEST_TIMEOUT)

    def api_call(self, method, path, payload=None):
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        url = self.host + path
        data = canonical_json(payload) if payload is not None else None
        logger.debug("request: method = %s, url = %s, body = %s", method, url, data)

        try:
            response = self.session.request(method, url, data=data, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ApplianceUnavailable(f"Failed to call BIG-IP API: {e}") from e

        logger.debug("response: status = %s, body = %s", response.status_code, response.text)
        return response

    def _send(self, method, path, payload=None):
        response = self.api_call(method, path, payload)
        classify(response.status_code, _body(response)).raise_for_verdict()
        return response

    def get(self, partition):
        """Current declaration of ``partition``; ``{}`` when the tenant is not declared."""
        response = self.api_call("GET", f"{DECLARE_PATH}/{partition}")
        # Tenant not found in declaration
        if response.status_code == 404:
            return {}
        # Common tenant not configured, AS3 answers with an empty body
        if 200 <= response.status_code < 300 and not response.text.strip():
            return {}
        classify(response.status_code, _body(response)).raise_for_verdict()
        return response.json()

    def post(self, declaration, *partitions):
        path = DECLARE_PATH
        if partitions:
            path = f"{DECLARE_PATH}/{','.join(partitions)}"
        return self._send("POST", path, declaration)

    def patch(self, operations):
        if not operations:
            logger.info("no data need to patch")
            return None
        return self._send("PATCH", DECLARE_PATH, operations)

    def apply(self, declaration):
        """
        Bring the applications named by ``declaration`` to the declared state.

        Returns False when the appliance already matched and nothing was sent.
        Calls for the same partition are serialized, so a tenant created by
        one call is seen by the next instead of being replaced.
        """
        with self._partition_lock(declaration.partition):
            return self._apply(declaration)

    def _partition_lock(self, partition):
        with self._locks_guard:
            return self._partition_locks[partition]

    def _apply(self, declaration):
        current = self.get(declaration.partition)
        tenant = current.get(declaration.partition)

        if not isinstance(tenant, dict):
            if all(app is None for app in declaration.applications.values()):
                logger.info("tenant %s not declared, nothing to remove", declaration.partition)
                return False
            self.post(declaration.to_adc(), declaration.partition)
            return True

        present = {
            name for name, value in tenant.items()
            if isinstance(value, dict) and value.get("class") == CLASS_APPLICATION
        }
        operations = [
            op for op in declaration.to_patch(present)
            if not (op["op"] == "add" and tenant.get(op["path"].rsplit("/", 1)[1]) == op["value"])
        ]
        if not operations:
            logger.info("tenant %s already up to date", declaration.partition)
            return False
        self.patch(operations)
        return True

    def save_config(self):
        """Persist the running configuration to disk."""
        self._send("POST", CONFIG_PATH, {"command": "save"})

    def get_license_key(self):
        response = self.api_call("GET", LICENSE_PATH)
        if response.status_code != 200 and not response.text.strip():
            raise ApplianceUnavailable("Failed to get license key", response.status_code)
        classify(response.status_code, _body(response)).raise_for_verdict()
        body = response.json()
        try:
            return body["entries"][LICENSE_ENTRY]["nestedStats"]["entries"]["registrationKey"]["description"]
        except (KeyError, TypeError) as e:
            raise LicenseError(f"license response has no registration key: {e}") from e
