# src/credbridge/simulation/threats.py
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional, Tuple

from credbridge.core.attestation import Attestation
from credbridge.core.enums import PredicateName, WormholeChainId
from credbridge.core.models import CredentialPayload
from credbridge.helper.crypto import GuardianSigner
from credbridge.helper.encoding import account_address, cid_hash, to_emitter_address
from credbridge.simulation.world import SimulationWorld


class ThreatId(str, Enum):
    """
    Attacks on the destination verifier, one per check of the pipeline.

      - T1_TAMPER
          The payload (issuer or cid_hash) is altered in transit while the
          original guardian signatures are kept. Authentic must reject.

      - T1_SHORT_QUORUM
          Fewer guardians than the quorum signed the body. Authentic must
          reject even though every present signature is individually valid.

      - T1_UNKNOWN_GUARDIANS
          The attestation is signed by a key set the destination bridge
          does not know (self-made guardian set). Authentic must reject.

      - T2_WRONG_CHAIN
          A correctly signed message whose emitter chain differs from the
          configured source chain. SourceChain must reject.

      - T2_UNTRUSTED_EMITTER
          A correctly signed message emitted by some other program on the
          right chain. TrustedEmitter must reject.

      - T3_REPLAY
          A valid attestation delivered a second time, byte-identical or
          re-encoded with a different signature subset. Unique must reject.
    """

    T1_TAMPER = "T1_tampered_payload"
    T1_SHORT_QUORUM = "T1_short_quorum"
    T1_UNKNOWN_GUARDIANS = "T1_unknown_guardian_set"
    T2_WRONG_CHAIN = "T2_wrong_source_chain"
    T2_UNTRUSTED_EMITTER = "T2_untrusted_emitter"
    T3_REPLAY = "T3_replay"


class Label(str, Enum):
    """
    Ground-truth label for each sample in a threat trace.

      - SAFE:   honest delivery, must be accepted.
      - ATTACK: must be rejected by the mirror.
    """

    SAFE = "safe"
    ATTACK = "attack"


Sample = Tuple[bytes, Label]


class ThreatScenario(ABC):
    """
    One attack against the mirror, expressed as a trace of submissions.

    The scenario decides how the attacker crafts attestation bytes; the
    mirror only sees the bytes, in trace order, and accepts or reverts.
    `expected_violation` names the predicate that should stop the attack.
    """

    threat_id: ThreatId
    expected_violation: PredicateName
    description: str = ""

    @abstractmethod
    def generate_trace(self, world: SimulationWorld) -> List[Sample]:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helpers shared by scenarios
    # ------------------------------------------------------------------

    @staticmethod
    def honest_attestation(world: SimulationWorld, cid: str) -> Attestation:
        """Issue `cid` on the source ledger and return the guardians' attestation."""
        receipt = world.issue(cid)
        data = world.attestation_for(receipt.return_value)
        if data is None:
            raise RuntimeError(f"guardians did not sign sequence {receipt.return_value}")
        return Attestation.from_bytes(data)


class TamperedPayloadScenario(ThreatScenario):
    threat_id = ThreatId.T1_TAMPER
    expected_violation = PredicateName.AUTHENTIC
    description = "Swap issuer and cid_hash in a signed attestation, keep the signatures."

    def generate_trace(self, world: SimulationWorld) -> List[Sample]:
        honest = self.honest_attestation(world, "QmTamperSafe")
        victim = self.honest_attestation(world, "QmTamperVictim")

        forged = victim.model_copy(deep=True)
        forged.message.payload = CredentialPayload(
            issuer=account_address("attacker"),
            cid_hash=cid_hash("QmForged"),
        ).encode()
        return [(honest.to_bytes(), Label.SAFE), (forged.to_bytes(), Label.ATTACK)]


class ShortQuorumScenario(ThreatScenario):
    threat_id = ThreatId.T1_SHORT_QUORUM
    expected_violation = PredicateName.AUTHENTIC
    description = "Deliver an attestation signed by fewer guardians than the quorum."

    def generate_trace(self, world: SimulationWorld) -> List[Sample]:
        honest = self.honest_attestation(world, "QmQuorumSafe")
        victim = self.honest_attestation(world, "QmQuorumVictim")

        quorum = world.guardians.signer.guardian_set().quorum
        short = world.guardians.sign_message(victim.message, signer_indices=list(range(quorum - 1)))
        return [(honest.to_bytes(), Label.SAFE), (short, Label.ATTACK)]


class UnknownGuardianSetScenario(ThreatScenario):
    threat_id = ThreatId.T1_UNKNOWN_GUARDIANS
    expected_violation = PredicateName.AUTHENTIC
    description = "Sign a fabricated issuance with attacker-controlled guardian keys."

    def generate_trace(self, world: SimulationWorld) -> List[Sample]:
        template = self.honest_attestation(world, "QmRogueTemplate")
        message = template.message.model_copy(deep=True)
        message.sequence += 1000
        message.payload = CredentialPayload(
            issuer=account_address("attacker"),
            cid_hash=cid_hash("QmRogue"),
        ).encode()

        rogue = GuardianSigner.from_seeds([f"rogue-{i}" for i in range(5)])
        return [(template.to_bytes(), Label.SAFE), (rogue.sign(message).to_bytes(), Label.ATTACK)]


class WrongSourceChainScenario(ThreatScenario):
    threat_id = ThreatId.T2_WRONG_CHAIN
    expected_violation = PredicateName.SOURCE_CHAIN
    description = "Validly signed message from the issuer address, but on another chain."

    def generate_trace(self, world: SimulationWorld) -> List[Sample]:
        honest = self.honest_attestation(world, "QmChainSafe")

        message = honest.message.model_copy(deep=True)
        message.emitter_chain = (
            WormholeChainId.POLYGON
            if message.emitter_chain != WormholeChainId.POLYGON
            else WormholeChainId.SOLANA
        )
        message.payload = CredentialPayload(
            issuer=account_address("attacker"),
            cid_hash=cid_hash("QmOtherChain"),
        ).encode()
        return [
            (honest.to_bytes(), Label.SAFE),
            (world.guardians.sign_message(message), Label.ATTACK),
        ]


class UntrustedEmitterScenario(ThreatScenario):
    threat_id = ThreatId.T2_UNTRUSTED_EMITTER
    expected_violation = PredicateName.TRUSTED_EMITTER
    description = "Validly signed message published by a program other than the issuer."

    def generate_trace(self, world: SimulationWorld) -> List[Sample]:
        honest = self.honest_attestation(world, "QmEmitterSafe")

        message = honest.message.model_copy(deep=True)
        message.emitter_address = to_emitter_address(account_address("impostor-program"))
        message.payload = CredentialPayload(
            issuer=account_address("attacker"),
            cid_hash=cid_hash("QmImpostor"),
        ).encode()
        return [
            (honest.to_bytes(), Label.SAFE),
            (world.guardians.sign_message(message), Label.ATTACK),
        ]


class ReplayScenario(ThreatScenario):
    threat_id = ThreatId.T3_REPLAY
    expected_violation = PredicateName.UNIQUE
    description = "Deliver the same attestation twice, then once more with another signature subset."

    def generate_trace(self, world: SimulationWorld) -> List[Sample]:
        honest = self.honest_attestation(world, "QmReplay")
        quorum = world.guardians.signer.guardian_set().quorum
        resigned = world.guardians.sign_message(
            honest.message,
            signer_indices=list(range(len(honest.signatures) - quorum, len(honest.signatures))),
        )
        return [
            (honest.to_bytes(), Label.SAFE),
            (honest.to_bytes(), Label.ATTACK),
            (resigned, Label.ATTACK),
        ]


SCENARIOS: Dict[ThreatId, ThreatScenario] = {
    scenario.threat_id: scenario
    for scenario in (
        TamperedPayloadScenario(),
        ShortQuorumScenario(),
        UnknownGuardianSetScenario(),
        WrongSourceChainScenario(),
        UntrustedEmitterScenario(),
        ReplayScenario(),
    )
}


def get_scenario(threat_id: ThreatId) -> Optional[ThreatScenario]:
    return SCENARIOS.get(threat_id)
