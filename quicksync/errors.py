"""
Exception classes shared by the reconciler endpoint and the exporter.

Every error carries a machine code, a human message and the HTTP status
the endpoint answers with. Messages are truncated before they leave the
process so a runaway store error cannot bloat a source record.
"""

from typing import Optional

from .config import MAX_MESSAGE_LENGTH
from .utils.text import truncate


class QuickSyncError(Exception):
    """
    Base exception for all sync errors.

    Attributes:
        code: Error code (e.g., "missing_key")
        message: Human-readable message
        status_code: HTTP status code
    """

    def __init__(self, code: str, message: str, status_code: int = 500):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        message = truncate(self.message, MAX_MESSAGE_LENGTH)
        return {"code": self.code, "error": message, "message": message}


class InvalidRequest(QuickSyncError):
    """Body is not a JSON object (400)."""

    def __init__(self, message: str = "Request body must be a JSON object."):
        super().__init__("invalid_request", message, 400)


class MissingKey(QuickSyncError):
    """Payload has no SKU (400)."""

    def __init__(self, message: str = "Bad payload: SKU missing."):
        super().__init__("missing_key", message, 400)


class MissingRequiredField(QuickSyncError):
    """A field needed for the requested operation is absent (400)."""

    def __init__(self, field: str):
        self.field = field
        super().__init__("missing_required_field", f"Bad payload: {field} missing.", 400)


class Unauthorized(QuickSyncError):
    def __init__(self, message: str = "Basic authentication required."):
        super().__init__("unauthorized", message, 401)


class Forbidden(QuickSyncError):
    def __init__(self, capability: str):
        super().__init__("forbidden", f"Sorry, you are not allowed to do that ({capability} required).", 403)


class NotFound(QuickSyncError):
    """Source record does not exist (404)."""

    def __init__(self, resource: str, identifier: str):
        self.identifier = identifier
        super().__init__("not_found", f"{resource} not found: {identifier}", 404)


class ConflictError(QuickSyncError):
    """
    Store rejected a write because the slug is already taken (409).

    `term_id` is the id of the term holding the slug, when the store reports it.
    """

    def __init__(self, message: str, term_id: Optional[int] = None):
        self.term_id = term_id
        super().__init__("conflict", message, 409)


class StoreError(QuickSyncError):
    """Term/media store failure (500)."""

    def __init__(self, message: str):
        super().__init__("store_error", message, 500)


class TransportError(QuickSyncError):
    """Remote endpoint unreachable (502)."""

    def __init__(self, message: str):
        super().__init__("transport_error", message, 502)


class MissingCredential(QuickSyncError):
    """Exporter has no Basic-auth credential configured."""

    def __init__(self, name: str = "QUICKSYNC_CREDENTIAL"):
        super().__init__("missing_credential", f"Missing credential: {name}", 500)
