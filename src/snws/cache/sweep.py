"""Remove spool files left behind by a process that exited abnormally."""
from __future__ import annotations

import os
import tempfile
import time
from typing import List, Optional

from ..utils.logging import get_logger
from .content import SPOOL_PREFIX, live_spool_paths

log = get_logger(__name__)


def sweep_spool_directory(directory: Optional[str] = None, max_age_seconds: float = 3600.0, now: float | None = None) -> List[str]:
    """Delete snws-body-* files older than max_age_seconds; return removed paths.

    Files still owned by a live cache in this process are skipped.
    """
    directory = directory or tempfile.gettempdir()
    if not os.path.isdir(directory):
        return []
    now = time.time() if now is None else now
    live = {os.path.abspath(p) for p in live_spool_paths()}
    removed: List[str] = []
    for name in os.listdir(directory):
        if not name.startswith(SPOOL_PREFIX):
            continue
        path = os.path.join(directory, name)
        if os.path.abspath(path) in live or not os.path.isfile(path):
            continue
        try:
            age = now - os.path.getmtime(path)
            if age < max_age_seconds:
                continue
            os.remove(path)
        except FileNotFoundError:
            continue
        removed.append(path)
    if removed:
        log.info(f"spool sweep removed={len(removed)} dir={directory}")
    return removed
