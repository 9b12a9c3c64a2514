"""Salesforce migration service: metadata deploys, record loads, bulk jobs and queries."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sfmigrate")
except PackageNotFoundError:  # pragma: no cover - running from a source checkout
    __version__ = "0.0.0"

from .api import ServiceConfig
from .exceptions import (
    BatchSubmissionFailure,
    BulkApiError,
    ConnectionFailure,
    EncodingFailure,
    JobCreationFailure,
    MissingCredentialsError,
    RemoteValidationFailure,
    SalesforceServiceError,
)
from .models import CustomField, DataCategory, DataCategoryGroup, Operation, Queue, SObject
from .response import DeployResponse
from .service import SalesforceService

__all__ = [
    "__version__",
    "BatchSubmissionFailure",
    "BulkApiError",
    "ConnectionFailure",
    "CustomField",
    "DataCategory",
    "DataCategoryGroup",
    "DeployResponse",
    "EncodingFailure",
    "JobCreationFailure",
    "MissingCredentialsError",
    "Operation",
    "Queue",
    "RemoteValidationFailure",
    "SObject",
    "SalesforceService",
    "SalesforceServiceError",
    "ServiceConfig",
]
