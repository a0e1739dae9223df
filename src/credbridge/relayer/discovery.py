# src/credbridge/relayer/discovery.py
from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Optional

import structlog

from credbridge.core.models import EmissionEvent
from credbridge.relayer.ports import SourceLedgerClient

log = structlog.get_logger(__name__)


class Discovery:
    """
    Pull-based discovery of emitted messages.

    Each poll:

        1. reads the source head;
        2. scans (cursor, head] for issuer emission events, in windows of at
           most `max_block_range` blocks (RPC providers cap log queries);
        3. advances the cursor to the scanned head, *also* when the range
           held no events.

    `cursor` is the last block already scanned. A ProviderError from the
    source client propagates unchanged and leaves the cursor where it was,
    so the whole range is scanned again after a restart.
    """

    def __init__(
        self,
        source: SourceLedgerClient,
        *,
        cursor: Optional[int] = None,
        poll_interval: float = 30.0,
        max_block_range: int = 2000,
    ) -> None:
        if max_block_range < 1:
            raise ValueError("max_block_range must be >= 1")
        self.source = source
        self.cursor = cursor
        self.poll_interval = poll_interval
        self.max_block_range = max_block_range

    async def initialize(self, start_block: Optional[int] = None) -> int:
        """
        Fix the cursor if it is still unset.

        With `start_block` the first poll scans from that block on;
        otherwise only emissions after the current head are discovered.
        """
        if self.cursor is None:
            if start_block is not None:
                self.cursor = max(start_block - 1, -1)
            else:
                self.cursor = await self.source.get_head()
            log.info("discovery.cursor_initialized", cursor=self.cursor)
        return self.cursor

    async def poll_once(self) -> List[EmissionEvent]:
        """One discovery step; returns the new emissions in ascending order."""
        if self.cursor is None:
            await self.initialize()
        head = await self.source.get_head()
        if head <= self.cursor:
            return []

        found: List[EmissionEvent] = []
        start = self.cursor + 1
        while start <= head:
            end = min(start + self.max_block_range - 1, head)
            events = await self.source.get_emissions(start, end)
            found.extend(events)
            start = end + 1
        self.cursor = head

        found.sort(key=lambda ev: (ev.block_number, ev.sequence))
        if found:
            log.info(
                "discovery.emissions_found",
                count=len(found),
                sequences=[ev.sequence for ev in found],
                head=head,
            )
        else:
            log.debug("discovery.no_emissions", head=head)
        return found

    async def polls(self, stop: Optional[asyncio.Event] = None) -> AsyncIterator[List[EmissionEvent]]:
        """
        Endless async generator of poll results, one list per poll (possibly
        empty), with `poll_interval` between polls.

        Ends when `stop` is set. Exceptions from the source client end the
        generator; the caller decides whether to restart.
        """
        while stop is None or not stop.is_set():
            yield await self.poll_once()
            if stop is None:
                await asyncio.sleep(self.poll_interval)
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def stream(self, stop: Optional[asyncio.Event] = None) -> AsyncIterator[EmissionEvent]:
        """Endless async generator of individual emissions."""
        async for batch in self.polls(stop):
            for event in batch:
                yield event
