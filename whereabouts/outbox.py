"""Outbox — retries sends that failed at the transport, with exponential backoff.

The sync driver reports failed sends through its ``on_send_failed`` hook; the
outbox keeps them in memory and :func:`outbox_loop` re-attempts the due ones
on a fixed interval.

Queued payloads are never sent as they were captured. Before each retry the
``refresh`` hook (``SyncDriver.refresh_outbound``) rebuilds the message from
the current relationship book and store, or discards it when it no longer
applies.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import structlog

from whereabouts.errors import TransportError
from whereabouts.schemas.messages import Outbound
from whereabouts.transport import Transport

logger = structlog.get_logger()

RefreshHook = Callable[[Outbound], Awaitable[Outbound | None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class OutboxEntry:
    outbound: Outbound
    attempts: int
    next_attempt_at: datetime
    last_error: str | None = None

    @property
    def recipient(self) -> str:
        return self.outbound.recipient

    @property
    def message(self):
        return self.outbound.message

    @property
    def key(self) -> tuple:
        """Entries with the same key carry the same logical message."""
        return (self.outbound.recipient, self.outbound.message.kind, self.outbound.location_ids)


class Outbox:
    """In-memory retry queue for undelivered peer messages."""

    def __init__(
        self,
        base_backoff_seconds: float = 5,
        max_backoff_seconds: float = 600,
        max_attempts: int = 8,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._entries: list[OutboxEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[OutboxEntry]:
        return list(self._entries)

    def backoff(self, attempts: int) -> float:
        """Delay before the next attempt after ``attempts`` failures."""
        return min(
            self.base_backoff_seconds * (2 ** max(attempts - 1, 0)),
            self.max_backoff_seconds,
        )

    def enqueue(self, outbound: Outbound, error: Exception | str | None = None) -> OutboxEntry:
        """Queue a message whose first send just failed.

        An older entry for the same recipient, kind and records is replaced.
        """
        entry = OutboxEntry(
            outbound=outbound,
            attempts=1,
            next_attempt_at=self._clock() + timedelta(seconds=self.backoff(1)),
            last_error=str(error) if error is not None else None,
        )
        replaced = [e for e in self._entries if e.key == entry.key]
        for old in replaced:
            self._entries.remove(old)
        self._entries.append(entry)
        logger.info(
            "outbox_enqueued",
            recipient=entry.recipient,
            kind=entry.message.kind,
            retry_in_seconds=self.backoff(1),
            replaced=len(replaced),
        )
        return entry

    def purge(self, recipient: str) -> int:
        """Drop every queued message for ``recipient``."""
        kept = [e for e in self._entries if e.recipient != recipient]
        purged = len(self._entries) - len(kept)
        self._entries = kept
        if purged:
            logger.info("outbox_purged", recipient=recipient, count=purged)
        return purged

    def _discard(self, entry: OutboxEntry) -> None:
        # The entry may have been replaced or purged while a send was in flight
        if entry in self._entries:
            self._entries.remove(entry)

    def due(self, now: datetime | None = None) -> list[OutboxEntry]:
        now = now or self._clock()
        return [e for e in self._entries if e.next_attempt_at <= now]

    async def flush(self, transport: Transport, refresh: RefreshHook | None = None) -> tuple[int, int]:
        """Retry every due entry once. Returns ``(delivered, dropped)``.

        Entries the refresh hook discards count as dropped.
        """
        delivered = dropped = 0
        for entry in self.due():
            if refresh is not None:
                outbound = await refresh(entry.outbound)
                if outbound is None:
                    self._discard(entry)
                    dropped += 1
                    logger.info("outbox_discarded", recipient=entry.recipient, kind=entry.message.kind)
                    continue
                entry.outbound = outbound
            if entry not in self._entries:
                continue

            try:
                await transport.send(entry.recipient, entry.message)
            except TransportError as e:
                entry.attempts += 1
                entry.last_error = str(e)
                if entry.attempts >= self.max_attempts:
                    self._discard(entry)
                    dropped += 1
                    logger.warning(
                        "outbox_dropped",
                        recipient=entry.recipient,
                        kind=entry.message.kind,
                        attempts=entry.attempts,
                        error=str(e),
                    )
                else:
                    backoff = self.backoff(entry.attempts)
                    entry.next_attempt_at = self._clock() + timedelta(seconds=backoff)
                    logger.info(
                        "outbox_retry_failed",
                        recipient=entry.recipient,
                        kind=entry.message.kind,
                        attempts=entry.attempts,
                        next_backoff_seconds=backoff,
                    )
                continue

            self._discard(entry)
            delivered += 1
            logger.info("outbox_delivered", recipient=entry.recipient, kind=entry.message.kind)
        return delivered, dropped


async def outbox_loop(
    outbox: Outbox,
    transport: Transport,
    interval_seconds: float,
    refresh: RefreshHook | None = None,
) -> None:
    """Background loop that retries due outbox entries."""
    logger.info("outbox_worker_started", interval_seconds=interval_seconds)

    while True:
        try:
            if len(outbox):
                await outbox.flush(transport, refresh)
        except Exception:
            logger.exception("outbox_flush_error")

        await asyncio.sleep(interval_seconds)
