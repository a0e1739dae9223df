# src/credbridge/relayer/relayer.py
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Set

import structlog

from credbridge.config import RelayerConfig
from credbridge.core.enums import RelayOutcome
from credbridge.core.errors import (
    AttestationTimeout,
    DeliveryError,
    ProviderError,
    is_already_processed,
)
from credbridge.core.models import EmissionEvent, RelayResult
from credbridge.relayer.attestation import acquire_attestation
from credbridge.relayer.cursor import CursorStore, InMemoryCursorStore
from credbridge.relayer.discovery import Discovery
from credbridge.relayer.ports import (
    AttestationSource,
    DestinationLedgerClient,
    SourceLedgerClient,
)

log = structlog.get_logger(__name__)


class Relayer:
    """
    Off-chain driver moving attestations from the source to the destination.

    Structure
    ---------
        discovery task ──> bounded queue ──> N workers
                                              │
                             acquire attestation (poll, bounded attempts)
                                              │
                             submit to destination, classify outcome

    Guarantees
    ----------
        • A sequence is never in flight twice in the same process.
        • A failure while relaying one sequence is recorded as that
          sequence's RelayResult and never reaches other workers or the
          discovery loop.
        • Only ProviderError from the source ledger stops discovery; `run`
          then waits `restart_backoff` and resumes from the in-memory
          cursor.
        • No coordination with other relayer processes: the mirror rejects
          the second delivery of an attestation, which is reported here as
          ALREADY_PROCESSED and counted as success.
        • A sequence interrupted by `stop()` goes back to the queue, so a
          later `run` relays it.
    """

    def __init__(
        self,
        source: SourceLedgerClient,
        destination: DestinationLedgerClient,
        attestations: AttestationSource,
        config: RelayerConfig,
        *,
        cursor_store: Optional[CursorStore] = None,
        name: str = "relayer",
    ) -> None:
        self.source = source
        self.destination = destination
        self.attestations = attestations
        self.config = config
        self.name = name
        self.cursor_store = cursor_store or InMemoryCursorStore()

        self.discovery = Discovery(
            source,
            cursor=self.cursor_store.load(),
            poll_interval=config.poll_interval,
            max_block_range=config.max_block_range,
        )
        self.in_flight: Set[int] = set()
        self.results: Dict[int, RelayResult] = {}
        self.history: List[RelayResult] = []

        self._pending_blocks: Dict[int, int] = {}
        self._queue: "asyncio.Queue[EmissionEvent]" = asyncio.Queue(maxsize=config.queue_size)
        self._workers: List[asyncio.Task] = []
        self._stop = asyncio.Event()
        self._saved_checkpoint: Optional[int] = self.discovery.cursor
        self._log = log.bind(relayer=name)

    # ------------------------------------------------------------------
    # Per-sequence processing
    # ------------------------------------------------------------------

    async def process_sequence(self, event: EmissionEvent) -> RelayResult:
        """Acquire the attestation for `event` and deliver it."""
        message_id = event.message_id()
        try:
            data = await acquire_attestation(
                self.attestations,
                message_id,
                interval=self.config.attestation_interval,
                max_attempts=self.config.attestation_max_attempts,
            )
        except AttestationTimeout as exc:
            self._log.warning(
                "relayer.attestation_timeout",
                sequence=event.sequence,
                attempts=exc.attempts,
            )
            return RelayResult(
                sequence=event.sequence,
                outcome=RelayOutcome.ATTESTATION_TIMEOUT,
                attempts=exc.attempts,
                error=str(exc),
            )
        return await self.deliver(event, data)

    async def deliver(self, event: EmissionEvent, data: bytes) -> RelayResult:
        """Submit attestation bytes and classify the outcome."""
        try:
            receipt = await self.destination.submit_attestation(data)
        except DeliveryError as exc:
            if is_already_processed(exc):
                self._log.info(
                    "relayer.already_processed",
                    sequence=event.sequence,
                    tx_hash=exc.tx_hash,
                )
                return RelayResult(
                    sequence=event.sequence,
                    outcome=RelayOutcome.ALREADY_PROCESSED,
                    tx_hash=exc.tx_hash,
                )
            self._log.error(
                "relayer.delivery_failed",
                sequence=event.sequence,
                error=str(exc),
                tx_hash=exc.tx_hash,
            )
            return RelayResult(
                sequence=event.sequence,
                outcome=RelayOutcome.FAILED,
                tx_hash=exc.tx_hash,
                error=str(exc),
            )

        self._log.info(
            "relayer.delivered",
            sequence=event.sequence,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )
        return RelayResult(
            sequence=event.sequence,
            outcome=RelayOutcome.DELIVERED,
            tx_hash=receipt.tx_hash,
        )

    # ------------------------------------------------------------------
    # Dispatch and worker pool
    # ------------------------------------------------------------------

    async def dispatch(self, event: EmissionEvent) -> bool:
        """
        Queue `event` unless its sequence is already in flight.

        Blocks while the queue is full, which in turn pauses discovery.
        Returns True if the event was queued.
        """
        if event.sequence in self.in_flight:
            self._log.debug("relayer.skip_in_flight", sequence=event.sequence)
            return False
        self.in_flight.add(event.sequence)
        self._pending_blocks[event.sequence] = event.block_number
        await self._queue.put(event)
        return True

    async def _worker(self, index: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                with structlog.contextvars.bound_contextvars(sequence=event.sequence, worker=index):
                    result = await self._run_one(event)
            except asyncio.CancelledError:
                # Shutdown mid-sequence: the event goes back to the queue
                # and its block stays pending, so the next run relays it.
                self._queue.task_done()
                self._requeue(event)
                raise
            self._record(result)
            self.in_flight.discard(event.sequence)
            self._pending_blocks.pop(event.sequence, None)
            self._queue.task_done()
            self._save_checkpoint()

    def _requeue(self, event: EmissionEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # No room: forget the event and rewind discovery to rescan it.
            self.in_flight.discard(event.sequence)
            self._pending_blocks.pop(event.sequence, None)
            if self.discovery.cursor is not None:
                self.discovery.cursor = min(self.discovery.cursor, event.block_number - 1)
            self._log.warning("relayer.requeue_dropped", sequence=event.sequence)

    async def _run_one(self, event: EmissionEvent) -> RelayResult:
        try:
            return await self.process_sequence(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Unexpected adapter failure; confined to this sequence.
            self._log.exception("relayer.unexpected_error", sequence=event.sequence)
            return RelayResult(
                sequence=event.sequence,
                outcome=RelayOutcome.FAILED,
                error=f"{type(exc).__name__}: {exc}",
            )

    def _record(self, result: RelayResult) -> None:
        self.results[result.sequence] = result
        self.history.append(result)

    def start_workers(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"{self.name}-worker-{i}")
            for i in range(self.config.max_workers)
        ]

    async def stop_workers(self) -> None:
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until every queued sequence has been processed."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------

    def checkpoint(self) -> Optional[int]:
        """
        Highest block below which every emission has been handled.

        The scanned head when nothing is pending, otherwise one below the
        lowest block still queued or in flight.
        """
        if self._pending_blocks:
            return min(self._pending_blocks.values()) - 1
        return self.discovery.cursor

    def _save_checkpoint(self) -> None:
        value = self.checkpoint()
        if value is None or value == self._saved_checkpoint:
            return
        self.cursor_store.save(value)
        self._saved_checkpoint = value
        self._log.debug("relayer.checkpoint_saved", block=value)

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    async def sync_once(self) -> List[RelayResult]:
        """
        One discovery poll, then wait for every dispatched sequence.

        Returns the results of the sequences dispatched by this poll.
        """
        own_workers = not self._workers
        if own_workers:
            self.start_workers()
        try:
            await self.discovery.initialize(self.config.start_block)
            events = await self.discovery.poll_once()
            dispatched = [ev.sequence for ev in events if await self.dispatch(ev)]
            self._save_checkpoint()
            await self.wait_idle()
        finally:
            if own_workers:
                await self.stop_workers()
        return [self.results[seq] for seq in dispatched if seq in self.results]

    async def _discover(self) -> None:
        await self.discovery.initialize(self.config.start_block)
        async for batch in self.discovery.polls(self._stop):
            for event in batch:
                await self.dispatch(event)
            self._save_checkpoint()

    async def run(self) -> None:
        """
        Run until `stop()` is called.

        Discovery is restarted after a ProviderError; any other exception
        escapes, after the worker pool has been shut down.
        """
        self._stop.clear()
        self.start_workers()
        self._log.info(
            "relayer.started",
            workers=self.config.max_workers,
            queue_size=self.config.queue_size,
            cursor=self.discovery.cursor,
        )
        try:
            while not self._stop.is_set():
                try:
                    await self._discover()
                except ProviderError as exc:
                    self._log.error(
                        "relayer.discovery_crashed",
                        error=str(exc),
                        restart_in=self.config.restart_backoff,
                    )
                    try:
                        await asyncio.wait_for(self._stop.wait(), timeout=self.config.restart_backoff)
                    except asyncio.TimeoutError:
                        self._log.info("relayer.discovery_restarting", cursor=self.discovery.cursor)
        finally:
            await self.stop_workers()
            self._save_checkpoint()
            self._log.info("relayer.stopped", cursor=self.discovery.cursor)

    def stop(self) -> None:
        self._stop.set()
