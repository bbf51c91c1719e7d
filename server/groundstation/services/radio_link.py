"""ELRS radio link liveness, inferred from the sentinel file the radio agent touches."""
import os
import time
from typing import Any, Optional


def elrs_status(path: str, freshness_ms: int, now: Optional[float] = None) -> dict[str, Any]:
    """``connected`` iff the file exists and was modified within ``freshness_ms``."""
    now = now if now is not None else time.time()
    try:
        mtime = os.stat(path).st_mtime
    except FileNotFoundError:
        return {"connected": False, "fileExists": False, "fileAge": None}

    age_ms = int((now - mtime) * 1000)
    return {
        "connected": age_ms <= freshness_ms,
        "fileExists": True,
        "fileAge": age_ms,
    }
