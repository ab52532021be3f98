"""Exception hierarchy for the render service.

Errors raised on the request path carry the HTTP status they map to; the
exception handler installed in ``main`` turns them into responses. Errors
raised inside the worker are never seen by a caller and only decide whether a
message is abandoned for redelivery or dead-lettered.
"""
from typing import Any, Dict, Iterable, Optional


class PdfServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class StartupConfigError(PdfServiceError):
    """Required configuration is missing; the process must not serve traffic."""


# Request path

class ValidationError(PdfServiceError):
    status_code = 400


class UnknownTemplate(ValidationError):
    status_code = 404

    def __init__(self, template: str):
        super().__init__("Unknown template", {"template": template})
        self.template = template


class MissingParameters(ValidationError):
    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(
            f"Missing required parameters: {','.join(self.missing)}",
            {"missing": self.missing},
        )


class AuthError(PdfServiceError):
    status_code = 401


class Unauthenticated(AuthError):
    pass


class TicketRejected(AuthError):
    status_code = 410

    def __init__(self, reason: str):
        super().__init__("ticket missing / invalid / reused")
        self.reason = reason


class Forbidden(AuthError):
    status_code = 403


class NotFound(PdfServiceError):
    status_code = 404


class Gone(PdfServiceError):
    status_code = 410


class QueueUnavailable(PdfServiceError):
    status_code = 502


# Worker path

class TransientInfraError(PdfServiceError):
    """Storage, queue or render failure; the message is abandoned for redelivery."""


class PayloadMissing(TransientInfraError):
    pass


class RenderError(TransientInfraError):
    pass


class RenderTimeout(RenderError):
    pass


class MalformedMessage(PdfServiceError):
    """A claim check that can never be processed; dead-lettered immediately."""
