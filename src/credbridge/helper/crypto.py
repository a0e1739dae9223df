# src/credbridge/helper/crypto.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence

from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from pydantic import BaseModel

from credbridge.core.attestation import Attestation, GuardianSignature
from credbridge.core.errors import AttestationFormatError
from credbridge.core.models import CrossChainMessage
from credbridge.helper.encoding import keccak256, normalize_address


class VerificationReport(BaseModel):
    """
    Result of the bridge verification primitive, shaped like the on-chain
    `parseAndVerifyVM(bytes) -> (vm, valid, reason)`.

    `attestation` is populated whenever the bytes could be decoded, even if
    the signatures turned out to be invalid.
    """

    valid: bool
    reason: str = ""
    attestation: Optional[Attestation] = None


class BridgeVerifier(ABC):
    """
    Abstract interface of the trusted bridge verification primitive.

    Intended semantics:

      Given raw attestation bytes, decide whether they carry a valid quorum
      signature from the bridging network over the embedded message. The
      destination verifier treats the answer as binary and does not look
      inside the signature scheme.

      Typical real-world instantiation:
        * guardian network core bridge: a set of N secp256k1 guardians, of
          which floor(2N/3)+1 must sign keccak256(keccak256(body)).
    """

    @abstractmethod
    def parse_and_verify(self, data: bytes) -> VerificationReport:
        raise NotImplementedError


class GuardianSet(BaseModel):
    """One generation of guardian keys, identified by its index."""

    index: int
    addresses: List[str]

    @property
    def quorum(self) -> int:
        return len(self.addresses) * 2 // 3 + 1


def recover_signer(digest: bytes, signature: bytes) -> Optional[str]:
    """
    Recover the address that produced `signature` over `digest`.

    Returns None for malformed or unrecoverable signatures instead of
    raising, so that a single garbage signature turns into a clean
    "invalid" verdict.
    """
    try:
        sig = keys.Signature(signature_bytes=signature)
        public_key = sig.recover_public_key_from_msg_hash(digest)
    except (BadSignature, KeyValidationError, ValueError):
        return None
    return "0x" + public_key.to_canonical_address().hex()


class GuardianSetVerifier(BridgeVerifier):
    """
    Guardian-set based verifier used on the destination ledger.

    Verification rule, applied in order:

      1. bytes decode as a v1 attestation;
      2. the referenced guardian set is registered;
      3. at least `quorum` signatures are present;
      4. guardian indices are strictly ascending and inside the set;
      5. every signature recovers to the address at its guardian index.

    Guardian sets are kept in a registry keyed by index, so a rotation only
    needs `register(new_set)`.
    """

    def __init__(self, guardian_sets: Iterable[GuardianSet] = ()) -> None:
        self._sets: Dict[int, GuardianSet] = {}
        for gs in guardian_sets:
            self.register(gs)

    def register(self, guardian_set: GuardianSet) -> None:
        normalized = [normalize_address(a) for a in guardian_set.addresses]
        if not normalized:
            raise ValueError("Guardian set must contain at least one guardian.")
        self._sets[guardian_set.index] = GuardianSet(
            index=guardian_set.index,
            addresses=normalized,
        )

    def get(self, index: int) -> Optional[GuardianSet]:
        return self._sets.get(index)

    def parse_and_verify(self, data: bytes) -> VerificationReport:
        try:
            attestation = Attestation.from_bytes(data)
        except AttestationFormatError as exc:
            return VerificationReport(valid=False, reason=f"malformed attestation: {exc}")

        guardian_set = self._sets.get(attestation.guardian_set_index)
        if guardian_set is None:
            return VerificationReport(
                valid=False,
                reason=f"unknown guardian set {attestation.guardian_set_index}",
                attestation=attestation,
            )

        if len(attestation.signatures) < guardian_set.quorum:
            return VerificationReport(
                valid=False,
                reason=(
                    f"no quorum: {len(attestation.signatures)} of "
                    f"{guardian_set.quorum} required signatures"
                ),
                attestation=attestation,
            )

        digest = attestation.digest()
        last_index = -1
        for sig in attestation.signatures:
            if sig.index <= last_index:
                return VerificationReport(
                    valid=False,
                    reason="signature indices must be ascending",
                    attestation=attestation,
                )
            last_index = sig.index
            if sig.index >= len(guardian_set.addresses):
                return VerificationReport(
                    valid=False,
                    reason=f"guardian index {sig.index} out of bounds",
                    attestation=attestation,
                )
            if recover_signer(digest, sig.signature) != guardian_set.addresses[sig.index]:
                return VerificationReport(
                    valid=False,
                    reason=f"invalid signature for guardian {sig.index}",
                    attestation=attestation,
                )

        return VerificationReport(valid=True, attestation=attestation)


class GuardianSigner:
    """
    Holds guardian private keys and produces attestations.

    Used by the simulated guardian network. Keys are derived from seeds so
    that runs are reproducible:

        private_key_i = keccak256("guardian:" + seed_i)
    """

    def __init__(self, private_keys: Sequence[bytes], guardian_set_index: int = 0) -> None:
        if not private_keys:
            raise ValueError("GuardianSigner needs at least one key.")
        self._keys = [keys.PrivateKey(pk) for pk in private_keys]
        self.guardian_set_index = guardian_set_index

    @classmethod
    def from_seeds(cls, seeds: Sequence[str], guardian_set_index: int = 0) -> "GuardianSigner":
        return cls(
            [keccak256(b"guardian:" + seed.encode("utf-8")) for seed in seeds],
            guardian_set_index=guardian_set_index,
        )

    @property
    def addresses(self) -> List[str]:
        return ["0x" + k.public_key.to_canonical_address().hex() for k in self._keys]

    def guardian_set(self) -> GuardianSet:
        return GuardianSet(index=self.guardian_set_index, addresses=self.addresses)

    def sign(
        self,
        message: CrossChainMessage,
        signer_indices: Optional[Sequence[int]] = None,
    ) -> Attestation:
        """
        Sign `message` with the given guardians (default: all of them).

        Passing a short `signer_indices` list produces an attestation that
        fails the quorum rule, which threat scenarios rely on.
        """
        attestation = Attestation(guardian_set_index=self.guardian_set_index, message=message)
        digest = attestation.digest()
        indices = sorted(range(len(self._keys)) if signer_indices is None else signer_indices)
        attestation.signatures = [
            GuardianSignature(index=i, signature=self._keys[i].sign_msg_hash(digest).to_bytes())
            for i in indices
        ]
        return attestation
