"""
Liveness check for pooled connections.
"""

import logging
from typing import Any

from .connect import execute

_log = logging.getLogger(__name__)


def health_check(conn: Any) -> bool:
    """
    Round-trip SELECT 1 on *conn*; False on any failure.

    Works on every supported driver. PoolManager calls it before reusing a
    connection that sat idle past the ping threshold.
    """
    cur = None
    try:
        cur = execute(conn, "SELECT 1")
        cur.fetchone()
        return True
    except Exception as e:
        _log.debug("Health check failed: %s", e)
        return False
    finally:
        if cur is not None:
            try:
                cur.close()
            except Exception:
                pass
