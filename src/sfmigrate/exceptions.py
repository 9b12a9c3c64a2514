from __future__ import annotations

from typing import List, Optional, Sequence


class SalesforceServiceError(RuntimeError):
    """Base class for everything raised by sfmigrate."""


class MissingCredentialsError(SalesforceServiceError):
    """Raised when the server URL or session id is not configured."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__("Missing required environment variables: " + ", ".join(missing))


class ConnectionFailure(SalesforceServiceError):
    """Transport or authentication failure talking to a SOAP endpoint.

    SOAP faults land here too; ``fault_code`` holds the server's fault code
    (e.g. ``sf:INVALID_SESSION_ID``) when one was returned.
    """

    def __init__(self, message: str, *, fault_code: Optional[str] = None):
        self.fault_code = fault_code
        if fault_code:
            message = f"{fault_code}: {message}"
        super().__init__(message)


class RemoteValidationFailure(SalesforceServiceError):
    """A record or metadata item was rejected by Salesforce."""

    def __init__(
        self,
        status_code: str,
        message: str,
        fields: Optional[Sequence[str]] = None,
        *,
        errors: Optional[List[str]] = None,
    ):
        self.status_code = status_code
        self.message = message
        self.fields = list(fields or [])
        self.errors = list(errors or [])
        super().__init__(f"{status_code}: {message}")


class EncodingFailure(SalesforceServiceError):
    """A bulk batch could not be serialized to JSON."""


class BulkApiError(SalesforceServiceError):
    """Error returned by the bulk (async) API."""

    def __init__(self, message: str, *, exception_code: Optional[str] = None):
        self.exception_code = exception_code
        self.message = message
        if exception_code:
            message = f"{exception_code}: {message}"
        super().__init__(message)


class JobCreationFailure(BulkApiError):
    """The bulk API refused to create a job."""


class BatchSubmissionFailure(BulkApiError):
    """The bulk API refused a batch."""
