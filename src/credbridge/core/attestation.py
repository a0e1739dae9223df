from __future__ import annotations

import struct
from typing import List

from pydantic import BaseModel, Field

from credbridge.core.errors import AttestationFormatError
from credbridge.core.models import CrossChainMessage
from credbridge.helper.encoding import keccak256

# version u8 | guardian_set_index u32 | signature count u8
_HEADER = struct.Struct(">BIB")
# guardian index u8 | r(32) s(32) v(1)
_SIGNATURE = struct.Struct(">B65s")
# timestamp u32 | nonce u32 | emitter_chain u16 | emitter 32 | sequence u64 | consistency u8
_BODY = struct.Struct(">IIH32sQB")

SIGNATURE_LENGTH = 65
SUPPORTED_VERSION = 1


# ========== Guardian signatures ==========

class GuardianSignature(BaseModel):
    """
    One guardian's signature over the attestation digest.

    Real-world pattern (guardian networks):
      - Each guardian watches the source chain independently.
      - Once the emitting transaction reaches the requested consistency
        level, it signs keccak256(keccak256(body)) with its secp256k1 key.
      - The attestation carries at least a quorum of such signatures,
        ordered by guardian index.
    """

    index: int = Field(
        ...,
        description="Position of the signer in the guardian set.",
    )
    signature: bytes = Field(
        ...,
        description="65-byte recoverable signature r || s || v (v in {0, 1}).",
    )


# ========== Attestation (signed message) ==========

class Attestation(BaseModel):
    """
    Signed proof that a specific cross-chain message was emitted.

    This is the unit a relayer delivers to the destination verifier. To the
    relayer it is opaque bytes; only the destination side decodes and
    checks it.

    Wire layout (v1):

        header : version u8 | guardian_set_index u32 | n u8
                 n × (guardian_index u8 | signature 65 bytes)
        body   : timestamp u32 | nonce u32 | emitter_chain u16 |
                 emitter_address 32 bytes | sequence u64 |
                 consistency_level u8 | payload (remaining bytes)

    Identity:

        digest = keccak256(keccak256(body))

    The digest is what guardians sign and what the destination's replay
    set stores. Two deliveries of the same attestation, even with a
    different subset of signatures, share the same digest.
    """

    version: int = SUPPORTED_VERSION
    guardian_set_index: int = 0
    signatures: List[GuardianSignature] = Field(default_factory=list)
    message: CrossChainMessage

    # --------------------------------------------------------------
    # Identity
    # --------------------------------------------------------------

    def body(self) -> bytes:
        return encode_body(self.message)

    def digest(self) -> bytes:
        return body_digest(self.body())

    def digest_hex(self) -> str:
        return "0x" + self.digest().hex()

    # --------------------------------------------------------------
    # Codec
    # --------------------------------------------------------------

    def to_bytes(self) -> bytes:
        if len(self.signatures) > 255:
            raise AttestationFormatError("too many signatures")
        parts = [_HEADER.pack(self.version, self.guardian_set_index, len(self.signatures))]
        for sig in self.signatures:
            if len(sig.signature) != SIGNATURE_LENGTH:
                raise AttestationFormatError(
                    f"signature for guardian {sig.index} must be {SIGNATURE_LENGTH} bytes"
                )
            parts.append(_SIGNATURE.pack(sig.index, sig.signature))
        parts.append(self.body())
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Attestation":
        """
        Decode attestation bytes.

        Raises AttestationFormatError on truncated input or an unsupported
        version. Signature validity is *not* checked here; that is the job
        of a BridgeVerifier.
        """
        if len(data) < _HEADER.size:
            raise AttestationFormatError("attestation shorter than header")

        version, gsi, count = _HEADER.unpack_from(data, 0)
        if version != SUPPORTED_VERSION:
            raise AttestationFormatError(f"unsupported attestation version {version}")

        offset = _HEADER.size
        signatures: List[GuardianSignature] = []
        for _ in range(count):
            if len(data) < offset + _SIGNATURE.size:
                raise AttestationFormatError("truncated signature section")
            index, sig = _SIGNATURE.unpack_from(data, offset)
            signatures.append(GuardianSignature(index=index, signature=sig))
            offset += _SIGNATURE.size

        message = decode_body(data[offset:])
        return cls(
            version=version,
            guardian_set_index=gsi,
            signatures=signatures,
            message=message,
        )


# ======================================================================
# Body helpers
# ======================================================================

def encode_body(message: CrossChainMessage) -> bytes:
    return _BODY.pack(
        message.timestamp,
        message.nonce,
        message.emitter_chain,
        bytes.fromhex(message.emitter_address),
        message.sequence,
        message.consistency_level,
    ) + message.payload


def decode_body(body: bytes) -> CrossChainMessage:
    if len(body) < _BODY.size:
        raise AttestationFormatError("truncated message body")
    timestamp, nonce, chain, emitter, sequence, consistency = _BODY.unpack_from(body, 0)
    return CrossChainMessage(
        emitter_chain=chain,
        emitter_address=emitter.hex(),
        sequence=sequence,
        nonce=nonce,
        consistency_level=consistency,
        timestamp=timestamp,
        payload=body[_BODY.size:],
    )


def body_digest(body: bytes) -> bytes:
    return keccak256(keccak256(body))


def attestation_digest(data: bytes) -> str:
    """Digest of encoded attestation bytes as "0x..." hex."""
    return Attestation.from_bytes(data).digest_hex()
