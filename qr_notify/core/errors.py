"""
Error Taxonomy

Every rejection the notify endpoint can produce is one of these exceptions.
Each carries the HTTP status and a client-safe message; the message is the
only thing ever echoed back to the caller.

    NotifyError
    ├── AdmissionRejected      403 / 429  (origin, fetch metadata, rate limit)
    ├── ValidationFailed       400 / 413 / 415
    ├── ConfigurationMissing   500
    ├── Unauthorized           401
    ├── ReplayDetected         409
    └── UpstreamUnavailable
        ├── CatalogUnavailable 503
        ├── ProviderRejected   502
        └── ProviderTimeout    504
"""

from typing import Optional


class NotifyError(Exception):
    """Base class for errors rendered as ``{ok: false, error: ...}``."""

    status_code: int = 500
    default_message: str = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.public_message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.public_message)


class AdmissionRejected(NotifyError):
    status_code = 403
    default_message = "Forbidden origin"


class ForbiddenOrigin(AdmissionRejected):
    default_message = "Forbidden origin"


class CrossSiteRequest(AdmissionRejected):
    default_message = "Cross-site request blocked"


class RateLimited(AdmissionRejected):
    status_code = 429
    default_message = "Too many requests. Please wait and try again."


class ValidationFailed(NotifyError):
    status_code = 400
    default_message = "Invalid request"


class UnsupportedMediaType(ValidationFailed):
    status_code = 415
    default_message = "Content-Type must be application/json"


class PayloadTooLarge(ValidationFailed):
    status_code = 413
    default_message = "Request body too large"


class ConfigurationMissing(NotifyError):
    status_code = 500
    default_message = "Server misconfigured"


class Unauthorized(NotifyError):
    status_code = 401
    default_message = "Unauthorized request"


class ReplayDetected(NotifyError):
    status_code = 409
    default_message = "Auth token already used. Request a new token."


class UpstreamUnavailable(NotifyError):
    status_code = 502
    default_message = "Upstream service unavailable"


class CatalogUnavailable(UpstreamUnavailable):
    status_code = 503
    default_message = "Catalog unavailable. Please try again."


class ProviderRejected(UpstreamUnavailable):
    status_code = 502
    default_message = "Notification provider rejected request."


class ProviderTimeout(UpstreamUnavailable):
    status_code = 504
    default_message = "Notification timeout. Please try again."
