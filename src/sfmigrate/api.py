from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .env_loader import load_env_files
from .exceptions import MissingCredentialsError

__author__ = "Kevin Steptoe"
__copyright__ = "Kevin Steptoe"
__license__ = "MIT"

_logger = logging.getLogger(__name__)

# Ensure .env is loaded for library use as well (e.g. scripts importing ServiceConfig)
load_env_files(quiet=True)

TRACE_METADATA_ENV = "SALESFORCE_TRACE_METADATA"
TRACE_PARTNER_ENV = "SALESFORCE_TRACE_PARTNER"
TRACE_BULK_ENV = "SALESFORCE_TRACE_BULK"


def _env_flag(name: str) -> bool:
    """Debug toggles are on only for the literal "1"."""
    value = os.getenv(name)
    return value is not None and value.lower() == "1"


# ----------------------------------------------------------------------
# Configuration dataclass
# ----------------------------------------------------------------------
@dataclass
class ServiceConfig:
    """Where to connect and how to trace the three Salesforce connections."""

    # Partner SOAP server URL as handed over by the org (normalized later)
    server_url: Optional[str] = None
    session_id: Optional[str] = None

    # Wire tracing per connection kind; tracing also disables compression
    trace_metadata: bool = False
    trace_partner: bool = False
    trace_bulk: bool = False

    # Per-request timeout in seconds
    timeout: float = 120.0

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Load configuration from environment variables."""
        return cls(
            server_url=os.getenv("SF_SERVER_URL"),
            session_id=os.getenv("SF_SESSION_ID"),
            trace_metadata=_env_flag(TRACE_METADATA_ENV),
            trace_partner=_env_flag(TRACE_PARTNER_ENV),
            trace_bulk=_env_flag(TRACE_BULK_ENV),
            timeout=float(os.getenv("SF_TIMEOUT", "120")),
        )

    @property
    def any_trace(self) -> bool:
        return self.trace_metadata or self.trace_partner or self.trace_bulk

    def require(self) -> None:
        """Raise MissingCredentialsError unless server URL and session are set."""
        missing = [
            k
            for k, v in {
                "SF_SERVER_URL": self.server_url,
                "SF_SESSION_ID": self.session_id,
            }.items()
            if not v
        ]
        if missing:
            raise MissingCredentialsError(missing)
