# src/credbridge/simulation/runner.py
from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from credbridge.core.enums import RelayOutcome
from credbridge.core.errors import LedgerError
from credbridge.core.models import MirroredRecord, RelayResult
from credbridge.helper.encoding import cid_hash
from credbridge.simulation.threats import SCENARIOS, Label, ThreatId, ThreatScenario
from credbridge.simulation.world import SimulationWorld, make_world

log = structlog.get_logger(__name__)

WorldFactory = Callable[[], SimulationWorld]


# ======================================================================
# 1. Threat scenarios
# ======================================================================

class ThreatOutcome(BaseModel):
    """What the mirror did with one sample of a threat trace."""

    threat_id: ThreatId
    index: int
    label: Label
    accepted: bool
    error: Optional[str] = Field(
        default=None,
        description="Exception class raised by the mirror, if it reverted.",
    )
    reason: Optional[str] = None

    @property
    def correct(self) -> bool:
        return self.accepted == (self.label is Label.SAFE)


def run_scenario(scenario: ThreatScenario, world_factory: WorldFactory = make_world) -> List[ThreatOutcome]:
    """
    Generate the scenario's trace on a fresh world and submit every sample
    to the mirror in order.
    """
    world = world_factory()
    outcomes: List[ThreatOutcome] = []
    for idx, (data, label) in enumerate(scenario.generate_trace(world)):
        try:
            world.deliver(data)
        except LedgerError as exc:
            outcome = ThreatOutcome(
                threat_id=scenario.threat_id,
                index=idx,
                label=label,
                accepted=False,
                error=type(exc).__name__,
                reason=exc.reason,
            )
        else:
            outcome = ThreatOutcome(
                threat_id=scenario.threat_id,
                index=idx,
                label=label,
                accepted=True,
            )
        log.debug(
            "threats.sample",
            threat=scenario.threat_id.value,
            index=idx,
            label=label.value,
            accepted=outcome.accepted,
            error=outcome.error,
        )
        outcomes.append(outcome)
    return outcomes


def run_all_scenarios(world_factory: WorldFactory = make_world) -> Dict[ThreatId, List[ThreatOutcome]]:
    return {threat_id: run_scenario(scenario, world_factory) for threat_id, scenario in SCENARIOS.items()}


# ======================================================================
# 2. End-to-end relay simulation
# ======================================================================

class SimulationReport(BaseModel):
    results: Dict[str, List[RelayResult]] = Field(
        default_factory=dict,
        description="Relayer name -> per-sequence results.",
    )
    mirrored: Dict[str, Optional[MirroredRecord]] = Field(
        default_factory=dict,
        description="CID -> record found on the destination ledger.",
    )
    processed_count: int = 0

    @property
    def delivered(self) -> int:
        return sum(
            1
            for results in self.results.values()
            for r in results
            if r.outcome is RelayOutcome.DELIVERED
        )

    @property
    def all_mirrored(self) -> bool:
        return all(record is not None for record in self.mirrored.values())


async def run_simulation(
    credentials: int = 5,
    *,
    relayers: int = 2,
    pending_polls: int = 0,
    world: Optional[SimulationWorld] = None,
    cid_prefix: str = "QmSim",
) -> SimulationReport:
    """
    Issue `credentials` CIDs, then let `relayers` relayers race to deliver
    them. Each relayer polls the attestation service independently.
    """
    world = world or make_world()
    cids = [f"{cid_prefix}{i:04d}" for i in range(credentials)]
    for cid in cids:
        world.issue(cid)

    instances = [
        world.relayer(
            name=f"relayer-{i}",
            attestations=world.attestation_service(pending_polls=pending_polls),
        )
        for i in range(relayers)
    ]
    batches = await asyncio.gather(*(r.sync_once() for r in instances))

    return SimulationReport(
        results={r.name: batch for r, batch in zip(instances, batches)},
        mirrored={cid: world.mirror.record(cid_hash(cid)) for cid in cids},
        processed_count=world.mirror.processed_count(),
    )
