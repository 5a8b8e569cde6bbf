"""Diff files handed to the user's viewer."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def save_diff(diff: bytes, directory: str | None = None) -> Path:
    """Write ``diff`` to a new ``unisonui-*.diff`` file and return its path.

    Files go to ``directory`` (created if needed) or the system temp dir.
    They are left in place for the viewer; nothing deletes them.
    """
    if directory:
        directory = os.path.expanduser(directory)
        os.makedirs(directory, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix="unisonui-", suffix=".diff", dir=directory)
    with os.fdopen(fd, "wb") as f:
        f.write(diff)
    logger.info("Saved diff (%d bytes) to %s", len(diff), path)
    return Path(path)
