"""
Tests for the relayer: discovery -> attestation polling -> delivery.

Test Coverage:
- End-to-end delivery with a lagging attestation service
- Competing relayers produce exactly one mirrored record per sequence
- Attestation timeout and delivery failures stay confined to one sequence
- In-flight deduplication and the bounded worker pool
- Discovery restart after provider errors
- Durable checkpoint and resume
"""

import asyncio

import pytest

from credbridge.core.attestation import Attestation
from credbridge.core.enums import RelayOutcome
from credbridge.core.errors import AlreadyProcessed, DeliveryError
from credbridge.core.models import EmissionEvent, TxReceipt
from credbridge.helper.encoding import account_address, cid_hash
from credbridge.relayer.cursor import InMemoryCursorStore, JsonFileCursorStore
from credbridge.relayer.ports import DestinationLedgerClient
from credbridge.simulation.world import make_world


class CountingDestination(DestinationLedgerClient):
    """Wraps a destination client and records peak concurrency."""

    def __init__(self, inner: DestinationLedgerClient, delay: float = 0.01) -> None:
        self.inner = inner
        self.delay = delay
        self.active = 0
        self.peak = 0

    async def submit_attestation(self, data: bytes) -> TxReceipt:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            return await self.inner.submit_attestation(data)
        finally:
            self.active -= 1


class ExplodingDestination(DestinationLedgerClient):
    async def submit_attestation(self, data: bytes) -> TxReceipt:
        raise KeyError("adapter bug")


class TestEndToEnd:
    """The relay scenario from issuance to mirrored record."""

    @pytest.mark.asyncio
    async def test_lagging_attestation_is_delivered(self, world, content_hash):
        """Sequence 1 ("QmAAA") becomes available on the 4th lookup and is mirrored."""
        world.issue("QmWarmup")
        assert world.issue("QmAAA", content_hash("H1")).return_value == 1
        service = world.attestation_service(pending_polls=3)
        relayer = world.relayer(attestations=service)

        results = await relayer.sync_once()

        assert {r.sequence: r.outcome for r in results} == {
            0: RelayOutcome.DELIVERED,
            1: RelayOutcome.DELIVERED,
        }
        assert service.polls[world.message_id(1).to_tuple()] == 4

        record = world.mirror.record(cid_hash("QmAAA"))
        assert record.issuer == world.issuer_owner
        assert record.revoked is False

        # the identical bytes a second time
        with pytest.raises(AlreadyProcessed):
            world.deliver(world.attestation_for(1))
        assert world.mirror.record(cid_hash("QmAAA")) == record

    @pytest.mark.asyncio
    async def test_batch_issue_is_relayed(self, world):
        world.batch_issue(["Qm1", "Qm2", "Qm3"])

        results = await world.relayer().sync_once()

        assert sorted(r.sequence for r in results) == [0, 1, 2]
        assert all(r.outcome is RelayOutcome.DELIVERED for r in results)
        assert world.mirror.processed_count() == 3

    @pytest.mark.asyncio
    async def test_second_sync_only_relays_new_emissions(self, world):
        world.issue("Qm1")
        relayer = world.relayer()
        await relayer.sync_once()

        world.issue("Qm2")
        results = await relayer.sync_once()

        assert [r.sequence for r in results] == [1]
        assert len(relayer.history) == 2

    @pytest.mark.asyncio
    async def test_finality_delay_is_absorbed_by_polling(self):
        """Guardians only sign once the block is deep enough."""
        world = make_world(finality_blocks=2)
        world.issue("QmAAA")
        relayer = world.relayer(world.relayer_config(attestation_max_attempts=2))

        (result,) = await relayer.sync_once()
        assert result.outcome is RelayOutcome.ATTESTATION_TIMEOUT

        world.source.mine(2)
        assert world.attestation_for(0) is not None
        (retry,) = await world.relayer(name="relayer-retry").sync_once()
        assert retry.outcome is RelayOutcome.DELIVERED


class TestCompetingRelayers:
    @pytest.mark.asyncio
    async def test_exactly_one_record_per_sequence(self, world):
        cids = [f"QmRace{i}" for i in range(6)]
        for cid in cids:
            world.issue(cid)

        first = world.relayer(name="relayer-a")
        second = world.relayer(name="relayer-b")
        results_a, results_b = await asyncio.gather(first.sync_once(), second.sync_once())

        by_seq_a = {r.sequence: r.outcome for r in results_a}
        by_seq_b = {r.sequence: r.outcome for r in results_b}
        for seq in range(len(cids)):
            assert {by_seq_a[seq], by_seq_b[seq]} == {
                RelayOutcome.DELIVERED,
                RelayOutcome.ALREADY_PROCESSED,
            }
        assert world.mirror.processed_count() == len(cids)
        for cid in cids:
            assert world.mirror.record(cid_hash(cid)) is not None

    @pytest.mark.asyncio
    async def test_already_processed_counts_as_success(self, world):
        world.issue("QmAAA")
        world.deliver(world.attestation_for(0))

        (result,) = await world.relayer().sync_once()

        assert result.outcome is RelayOutcome.ALREADY_PROCESSED
        assert result.ok is True


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_attestation_timeout(self, world):
        world.issue("QmAAA")
        service = world.attestation_service(pending_polls=100)
        relayer = world.relayer(world.relayer_config(attestation_max_attempts=3), attestations=service)

        (result,) = await relayer.sync_once()

        assert result.outcome is RelayOutcome.ATTESTATION_TIMEOUT
        assert result.attempts == 3
        assert service.polls[world.message_id(0).to_tuple()] == 3
        assert world.mirror.record(cid_hash("QmAAA")) is None

    @pytest.mark.asyncio
    async def test_timeout_of_one_sequence_does_not_block_others(self, world):
        world.issue("QmSlow")
        world.issue("QmFast")
        service = world.attestation_service()
        service.withhold(world.message_id(0), polls=100)
        relayer = world.relayer(world.relayer_config(attestation_max_attempts=3), attestations=service)

        results = {r.sequence: r.outcome for r in await relayer.sync_once()}

        assert results == {0: RelayOutcome.ATTESTATION_TIMEOUT, 1: RelayOutcome.DELIVERED}

    @pytest.mark.asyncio
    async def test_transient_service_errors_are_retried(self, world):
        world.issue("QmAAA")
        relayer = world.relayer(attestations=world.attestation_service(transient_errors=2))

        (result,) = await relayer.sync_once()

        assert result.outcome is RelayOutcome.DELIVERED

    @pytest.mark.asyncio
    async def test_rejected_delivery_is_failed(self):
        """A misconfigured mirror rejects every attestation; the relayer keeps going."""
        world = make_world(trusted_emitter=account_address("someone-else"))
        world.issue("Qm1")
        world.issue("Qm2")

        results = await world.relayer().sync_once()

        assert [r.outcome for r in results] == [RelayOutcome.FAILED, RelayOutcome.FAILED]
        assert "Untrusted emitter" in results[0].error

    @pytest.mark.asyncio
    async def test_unexpected_adapter_error_is_confined(self, world):
        world.issue("Qm1")
        relayer = world.relayer(destination=ExplodingDestination())

        (result,) = await relayer.sync_once()

        assert result.outcome is RelayOutcome.FAILED
        assert "KeyError" in result.error
        assert relayer.in_flight == set()

    @pytest.mark.asyncio
    async def test_already_processed_detected_from_revert_string(self, world):
        """Real nodes only return the revert message."""
        relayer = world.relayer()
        event = EmissionEvent(
            sequence=0,
            block_number=1,
            emitter_chain=2,
            emitter_address=world.issuer.address,
        )

        class RevertingDestination(DestinationLedgerClient):
            async def submit_attestation(self, data: bytes) -> TxReceipt:
                raise DeliveryError("execution reverted: VAA already processed", tx_hash="0xabc")

        relayer.destination = RevertingDestination()
        result = await relayer.deliver(event, b"ignored")

        assert result.outcome is RelayOutcome.ALREADY_PROCESSED
        assert result.tx_hash == "0xabc"


class TestWorkerPool:
    @pytest.mark.asyncio
    async def test_sequence_never_in_flight_twice(self, world):
        world.issue("QmAAA")
        relayer = world.relayer()
        event = EmissionEvent(
            sequence=0,
            block_number=2,
            emitter_chain=world.guardians.chain_id,
            emitter_address=world.issuer.address,
        )

        assert await relayer.dispatch(event) is True
        assert await relayer.dispatch(event) is False
        assert relayer.in_flight == {0}

        relayer.start_workers()
        await relayer.wait_idle()
        await relayer.stop_workers()

        assert relayer.in_flight == set()
        assert len(relayer.history) == 1

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_max_workers(self, world):
        for i in range(8):
            world.issue(f"QmPool{i}")
        destination = CountingDestination(world.destination_client())
        relayer = world.relayer(world.relayer_config(max_workers=2), destination=destination)

        results = await relayer.sync_once()

        assert len(results) == 8
        assert all(r.outcome is RelayOutcome.DELIVERED for r in results)
        assert destination.peak == 2

    @pytest.mark.asyncio
    async def test_small_queue_applies_backpressure(self, world):
        for i in range(5):
            world.issue(f"QmQueue{i}")
        relayer = world.relayer(world.relayer_config(max_workers=1, queue_size=1))

        results = await relayer.sync_once()

        assert sorted(r.sequence for r in results) == [0, 1, 2, 3, 4]


class TestRun:
    @pytest.mark.asyncio
    async def test_discovery_restarts_after_provider_error(self, world, wait_until):
        world.issue("QmAAA")
        source = world.source_client()
        source.fail_next(2)
        relayer = world.relayer(source=source)

        task = asyncio.create_task(relayer.run())
        await wait_until(lambda: 0 in relayer.results)
        relayer.stop()
        await asyncio.wait_for(task, timeout=5)

        assert relayer.results[0].outcome is RelayOutcome.DELIVERED
        assert source.calls > 2

    @pytest.mark.asyncio
    async def test_run_picks_up_later_emissions(self, world, wait_until):
        relayer = world.relayer()
        task = asyncio.create_task(relayer.run())

        world.issue("QmLate")
        await wait_until(lambda: 0 in relayer.results)
        relayer.stop()
        await asyncio.wait_for(task, timeout=5)

        assert world.mirror.record(cid_hash("QmLate")) is not None

    @pytest.mark.asyncio
    async def test_sequence_interrupted_by_stop_is_relayed_on_rerun(self, world, wait_until):
        world.issue("QmStop")
        relayer = world.relayer(
            world.relayer_config(attestation_interval=0.5),
            attestations=world.attestation_service(pending_polls=1),
        )

        task = asyncio.create_task(relayer.run())
        await wait_until(lambda: 0 in relayer.in_flight)
        relayer.stop()
        await asyncio.wait_for(task, timeout=5)
        assert 0 not in relayer.results

        task = asyncio.create_task(relayer.run())
        await wait_until(lambda: 0 in relayer.results)
        relayer.stop()
        await asyncio.wait_for(task, timeout=5)

        assert relayer.results[0].outcome is RelayOutcome.DELIVERED
        assert relayer.in_flight == set()
        assert relayer.checkpoint() == world.source.head
        assert world.mirror.record(cid_hash("QmStop")) is not None


class TestCheckpoint:
    @pytest.mark.asyncio
    async def test_checkpoint_reaches_head_when_idle(self, world):
        world.issue("Qm1")
        store = InMemoryCursorStore()
        relayer = world.relayer(cursor_store=store)

        await relayer.sync_once()

        assert store.load() == world.source.head
        assert relayer.checkpoint() == world.source.head

    @pytest.mark.asyncio
    async def test_checkpoint_stays_below_pending_emission(self, world):
        receipt = world.issue("Qm1")
        world.source.mine(3)
        relayer = world.relayer()
        await relayer.discovery.initialize(0)
        events = await relayer.discovery.poll_once()

        await relayer.dispatch(events[0])

        assert relayer.checkpoint() == receipt.block_number - 1

    @pytest.mark.asyncio
    async def test_restart_resumes_from_file(self, world, tmp_path):
        path = tmp_path / "cursor.json"
        world.issue("Qm1")
        await world.relayer(cursor_store=JsonFileCursorStore(path)).sync_once()

        world.issue("Qm2")
        resumed = world.relayer(cursor_store=JsonFileCursorStore(path))
        results = await resumed.sync_once()

        assert [r.sequence for r in results] == [1]
        assert JsonFileCursorStore(path).load() == world.source.head

    @pytest.mark.asyncio
    async def test_timed_out_sequence_is_not_retried_after_checkpoint(self, world):
        world.issue("Qm1")
        store = InMemoryCursorStore()
        relayer = world.relayer(
            world.relayer_config(attestation_max_attempts=1),
            attestations=world.attestation_service(pending_polls=5),
            cursor_store=store,
        )

        (result,) = await relayer.sync_once()

        assert result.outcome is RelayOutcome.ATTESTATION_TIMEOUT
        assert store.load() == world.source.head


class TestDeliveredBytes:
    @pytest.mark.asyncio
    async def test_relayer_delivers_guardian_bytes_unchanged(self, world):
        world.issue("QmAAA")
        await world.relayer().sync_once()

        digest = Attestation.from_bytes(world.attestation_for(0)).digest_hex()
        assert world.mirror.is_processed(digest) is True
