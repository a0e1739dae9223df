"""
Pytest configuration and shared fixtures for credbridge tests.

Testing Standards:
- Async tests use pytest.mark.asyncio (auto mode enabled in pyproject.toml)
- Ledger-level tests talk to SimulatedLedger directly through `world`
- Relayer tests build relayers inside the test so they bind to its loop
"""

import asyncio

import pytest

from credbridge.helper.encoding import keccak_hex
from credbridge.logging_config import configure_logging
from credbridge.simulation.world import SimulationWorld, make_world


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging():
    """Only warnings and errors reach the captured output."""
    configure_logging("WARNING")


@pytest.fixture
def world() -> SimulationWorld:
    """Fresh source + destination ledgers with issuer and mirror deployed."""
    return make_world()


@pytest.fixture
def content_hash():
    """Factory for distinct 32-byte content hashes: content_hash("H1")."""

    def _make(label: str) -> str:
        return keccak_hex(label.encode("utf-8"))

    return _make


@pytest.fixture
def wait_until():
    """Poll a condition from inside a running event loop."""

    async def _wait(condition, timeout: float = 5.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait
