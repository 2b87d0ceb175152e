"""
Error taxonomy used by the sync handlers and the worker loop.

Retryable errors go back on the queue with backoff, fatal ones are surfaced as
a warning event and dropped until the object changes again.
"""


class ControllerError(Exception):
    """Base class for every error raised by the controller."""

    retryable = True
    reason = "FailedSync"


class TransientError(ControllerError):
    """A collaborator read failed (store lookup, namespace fetch)."""


class ResolutionError(ControllerError):
    """A rule resolved but its inputs are incomplete, e.g. no endpoint addresses."""

    reason = "ResolutionFailed"


class FinalizerPendingError(ControllerError):
    """A deleting object is still governed by a rule, its finalizer must stay."""

    reason = "FinalizerPending"


class InvalidSpecError(ControllerError):
    """The object can never be synthesized as written."""

    retryable = False
    reason = "InvalidSpec"


class ApplianceError(ControllerError):
    reason = "ApplianceError"

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ApplianceRejection(ApplianceError):
    """The declarative endpoint answered with a per-tenant ``results`` report."""

    reason = "ApplianceRejected"

    def __init__(self, message, status_code=None, results=None):
        super().__init__(message, status_code)
        self.results = results or []

    @property
    def tenants(self):
        return [r.get("tenant") for r in self.results]


class ApplianceFatalError(ApplianceError):
    """The appliance answered with a structured ``error.code``."""

    retryable = False
    reason = "ApplianceFatal"

    def __init__(self, message, status_code=None, code=None):
        super().__init__(message, status_code)
        self.code = code


class ApplianceUnavailable(ApplianceError):
    """Opaque failure: transport error, unreadable body or unexpected reply."""

    reason = "ApplianceUnavailable"


class LicenseError(ControllerError):
    retryable = False
    reason = "LicenseInvalid"
