"""Catalog Ingest - Failpoint injection for resilience testing.

Deterministic crash injection, used to check that a job killed mid-run
leaves its progress visible (status=processing, last phase, records created
so far) and that a requeued run resumes without duplicating records.

Safety gate: failpoints are only active when CATALOG_INGEST_ENABLE_FAILPOINTS=1.
The default is a complete no-op.

Environment variables:
- CATALOG_INGEST_ENABLE_FAILPOINTS: "1" enables the failpoint system
- CATALOG_INGEST_FAILPOINT: name of the failpoint to trigger (e.g. "INGEST_AFTER_CLAIM")
- CATALOG_INGEST_FAILPOINT_EXIT_CODE: exit code used when crashing (default: 42)
- CATALOG_INGEST_FAILPOINT_ONCE: "1" triggers only once, then clears

Failpoints in use:
- INGEST_AFTER_CLAIM: job claimed, nothing fetched yet
- INGEST_AFTER_TRACK_CREATE: a track was committed, more rows pending
- INGEST_BEFORE_DONE: every row handled, terminal state not yet written
"""

from __future__ import annotations

import os

_PREFIX = "FAILPOINT_"


def _normalize(point: str) -> str:
    point = point.upper()
    if point.startswith(_PREFIX):
        point = point[len(_PREFIX) :]
    return point


def maybe_fail(point: str) -> None:
    """Crash the process if the named failpoint is armed.

    Uses os._exit() so that no finally block, atexit hook or exception
    handler runs, which is what a power loss or OOM kill looks like.

    Args:
        point: Failpoint name, with or without the FAILPOINT_ prefix.
    """
    if os.environ.get("CATALOG_INGEST_ENABLE_FAILPOINTS") != "1":
        return

    target = os.environ.get("CATALOG_INGEST_FAILPOINT", "")
    if not target or _normalize(point) != _normalize(target):
        return

    try:
        exit_code = int(os.environ.get("CATALOG_INGEST_FAILPOINT_EXIT_CODE", "42"))
    except ValueError:
        exit_code = 42

    if os.environ.get("CATALOG_INGEST_FAILPOINT_ONCE") == "1":
        os.environ.pop("CATALOG_INGEST_FAILPOINT", None)
        os.environ.pop("CATALOG_INGEST_FAILPOINT_ONCE", None)

    os._exit(exit_code)


def is_failpoint_enabled() -> bool:
    return os.environ.get("CATALOG_INGEST_ENABLE_FAILPOINTS") == "1"


def get_active_failpoint() -> str | None:
    """The armed failpoint name (without prefix, upper-case), or None."""
    if not is_failpoint_enabled():
        return None
    target = os.environ.get("CATALOG_INGEST_FAILPOINT", "")
    if not target:
        return None
    return _normalize(target)
