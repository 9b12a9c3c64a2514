# src/sfmigrate/env_loader.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

ENV_FILE_VAR = "SFMIGRATE_ENV_FILE"


def _default_candidates() -> list[Path]:
    cwd = Path.cwd()
    explicit = os.getenv(ENV_FILE_VAR)
    candidates = [Path(explicit)] if explicit else []
    return candidates + [cwd / ".env", cwd / ".sfmigrate.env"]


def load_env_files(
    candidates: Optional[Iterable[Path]] = None,
    *,
    quiet: bool = False,
) -> Optional[Path]:
    """Load the first existing env file; return its path or None.

    Variables already present in the environment win over the file.
    ``$SFMIGRATE_ENV_FILE`` is tried before ``.env`` and ``.sfmigrate.env``
    in the working directory.
    """
    if candidates is None:
        candidates = _default_candidates()

    for path in candidates:
        if path.exists():
            load_dotenv(path, override=False)
            if not quiet:
                _logger.debug("Loaded environment variables from %s", path)
            return path

    if not quiet:
        _logger.debug("No env file found in %s", Path.cwd())
    return None
