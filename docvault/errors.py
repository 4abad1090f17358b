"""Error taxonomy shared by the storage adapters, the orchestrator and the API.

Every error carries a human readable ``message`` and, where the cloud provider
gave one, an ``error`` code and free-form ``details``. The API layer turns
these into JSON responses with the matching HTTP status.
"""
from typing import Any, Optional


class DocVaultError(Exception):
    status_code = 500

    def __init__(self, message: str, error: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.error = error
        self.details = details

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.error:
            body["error"] = self.error
        if self.details is not None:
            body["details"] = self.details
        return body


class NotFoundError(DocVaultError):
    """Path, blob or directory does not exist."""
    status_code = 404


class ConflictError(DocVaultError):
    """Destination name collision, or a lost optimistic-concurrency race."""
    status_code = 409


class PreconditionFailedError(ConflictError):
    """An ETag / create-only precondition on a write was not met."""


class InvalidRequestError(DocVaultError):
    """Malformed input: bad metadata, missing fields, unusable paths."""
    status_code = 400


class InvalidPathError(InvalidRequestError):
    pass


class UnprocessableContentError(DocVaultError):
    """The upload is well formed but holds nothing that can be analysed."""
    status_code = 422


class UpstreamError(DocVaultError):
    """The storage or AI provider call itself failed (network, auth, unknown)."""
    status_code = 502
