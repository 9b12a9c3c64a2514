from __future__ import annotations

import logging
from typing import Optional

_DEFAULT_FMT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DEFAULT_DATEFMT = "%H:%M:%S"

# HTTP requests/responses of traced connections are logged here at DEBUG.
WIRE_LOGGER = "sfmigrate.wire"


def configure_logging(level: Optional[int], *, wire_trace: bool = False) -> None:
    """Configure root logging once; safe to call multiple times.

    With ``wire_trace`` the wire logger is opened up to DEBUG even when the
    root stays at WARNING, so traced connections print their payloads.
    """
    lvl = level if level is not None else logging.WARNING
    root = logging.getLogger()

    if root.handlers:
        root.setLevel(lvl)
    else:
        logging.basicConfig(
            level=lvl,
            format=_DEFAULT_FMT,
            datefmt=_DEFAULT_DATEFMT,
        )

    wire = logging.getLogger(WIRE_LOGGER)
    wire.setLevel(logging.DEBUG if wire_trace else logging.NOTSET)

    # zeep logs every wsdl/xsd it parses at DEBUG
    logging.getLogger("zeep").setLevel(max(lvl, logging.INFO))

    # Always tone down noisy urllib3 header parsing warnings
    urllib3_conn_logger = logging.getLogger("urllib3.connection")
    if urllib3_conn_logger.level == logging.NOTSET or urllib3_conn_logger.level < logging.ERROR:
        urllib3_conn_logger.setLevel(logging.ERROR)


def enable_wire_trace() -> logging.Logger:
    """Open the wire logger for a traced connection in library use.

    Without any logging configured the payloads would be dropped, so a
    stderr handler is attached in that case.
    """
    wire = logging.getLogger(WIRE_LOGGER)
    wire.setLevel(logging.DEBUG)
    if not wire.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_DEFAULT_FMT, _DEFAULT_DATEFMT))
        wire.addHandler(handler)
    return wire
