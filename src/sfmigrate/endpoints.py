"""Endpoint rewriting for the partner, metadata and bulk APIs.

Visualforce pages hand us the partner server URL in one of several shapes::

    https://na30.salesforce.com/services/Soap/u/35.0/00D36000000H5z4
    https://c.na30.visual.force.com/services/Soap/u/35.0/00D36000000H5z4
    https://mydomain--pkg--c.cs45.visual.force.com/services/Soap/u/36.0/00D8A0000008py4
    https://tenant-scmt.na37.salesforce.com/services/Soap/u/36.0/00DU0000000xxxx

All of them must end up as the first form before any connection is opened.
"""

from __future__ import annotations

import re

from .exceptions import ConnectionFailure

BULK_API_VERSION = "36.0"

# Each rule replaces its first match only, in this order.
_NORMALIZE_RULES = (
    (re.compile(r"//.*c\."), "//"),
    (re.compile(r"/.*?scmt\."), "//"),
    (re.compile(r"visual\."), "sales"),
)


def normalize_server_url(url: str) -> str:
    """Return the canonical partner API endpoint for ``url``."""
    for pattern, repl in _NORMALIZE_RULES:
        url = pattern.sub(repl, url, count=1)
    return url


def metadata_url(server_url: str) -> str:
    """Partner endpoint with the ``/u/`` API segment swapped for ``/m/``."""
    return server_url.replace("/u/", "/m/", 1)


def bulk_endpoint(server_url: str, version: str = BULK_API_VERSION) -> str:
    """Cut the partner endpoint at ``Soap/`` and point it at the async API."""
    idx = server_url.find("Soap/")
    if idx < 0:
        raise ConnectionFailure(
            f"Not a SOAP server URL, cannot derive bulk endpoint: {server_url!r}"
        )
    return f"{server_url[:idx]}async/{version}"
