"""
Polling change detection.

Orders and refunds are observed by re-fetching them on an interval and
comparing a fingerprint of the snapshot with the previous one. The same
generator backs the long-poll endpoints on the server and the watch helpers
of :class:`storefront.client.StorefrontClient`.
"""

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from storefront.core.logging import get_logger

logger = get_logger(__name__)

Fetch = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class SnapshotChange:
    """A snapshot that differs from the previously observed one."""

    snapshot: Optional[dict[str, Any]]
    version: Optional[int]
    changed_fields: frozenset[str] = field(default_factory=frozenset)


def to_snapshot(value: Any) -> Optional[dict[str, Any]]:
    """Normalise a fetched record (pydantic model or mapping) to plain JSON data."""
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return dict(value)


def fingerprint(snapshot: Optional[dict[str, Any]]) -> str:
    encoded = json.dumps(snapshot, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()


def changed_fields(
    previous: Optional[dict[str, Any]],
    current: Optional[dict[str, Any]],
) -> frozenset[str]:
    """Top-level keys whose values differ between two snapshots."""
    previous = previous or {}
    current = current or {}
    keys = set(previous) | set(current)
    return frozenset(k for k in keys if previous.get(k) != current.get(k))


async def watch(
    fetch: Fetch,
    interval: float = 3.0,
    timeout: Optional[float] = None,
    since_version: Optional[int] = None,
    until: Optional[Callable[[Optional[dict[str, Any]]], bool]] = None,
) -> AsyncIterator[SnapshotChange]:
    """
    Poll ``fetch`` and yield a :class:`SnapshotChange` whenever the record changes.

    Args:
        fetch: Coroutine function returning the current record (or None)
        interval: Seconds between polls
        timeout: Stop after this many seconds; None polls forever
        since_version: Version the caller already holds. Snapshots at or below
            it are treated as the baseline instead of being yielded.
        until: Predicate on the latest snapshot; the generator ends once it
            returns True (e.g. when a terminal status is reached)

    Yields:
        SnapshotChange for every observed change
    """
    if interval <= 0:
        raise ValueError("interval must be positive")

    deadline = None if timeout is None else time.monotonic() + timeout
    previous: Optional[dict[str, Any]] = None
    previous_fingerprint: Optional[str] = None
    polls = 0

    while True:
        snapshot = to_snapshot(await fetch())
        polls += 1
        current_fingerprint = fingerprint(snapshot)
        version = snapshot.get("version") if snapshot else None

        if current_fingerprint != previous_fingerprint:
            baseline = (
                previous_fingerprint is None
                and since_version is not None
                and version is not None
                and version <= since_version
            )
            if not baseline:
                change = SnapshotChange(
                    snapshot=snapshot,
                    version=version,
                    changed_fields=changed_fields(previous, snapshot),
                )
                logger.debug(
                    "Snapshot changed",
                    version=version,
                    changed_fields=sorted(change.changed_fields),
                    polls=polls,
                )
                yield change
            previous = snapshot
            previous_fingerprint = current_fingerprint

        if until is not None and until(snapshot):
            return

        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug("Watch timed out", polls=polls)
                return
            await asyncio.sleep(min(interval, remaining))
        else:
            await asyncio.sleep(interval)


async def wait_for_change(
    fetch: Fetch,
    since_version: int,
    interval: float,
    timeout: float,
) -> Optional[SnapshotChange]:
    """First change past ``since_version`` within ``timeout``, or None."""
    async for change in watch(fetch, interval=interval, timeout=timeout, since_version=since_version):
        if change.version is None or change.version > since_version:
            return change
    return None
