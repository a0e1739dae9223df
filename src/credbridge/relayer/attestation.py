# src/credbridge/relayer/attestation.py
from __future__ import annotations

import asyncio
import base64
import binascii
from typing import Optional

import httpx
import structlog

from credbridge.core.errors import AttestationServiceError, AttestationTimeout
from credbridge.core.models import MessageId
from credbridge.relayer.ports import AttestationSource

log = structlog.get_logger(__name__)

SIGNED_VAA_PATH = "/api/v1/signed_vaa/{path}"


class WormholescanClient(AttestationSource):
    """
    Attestation lookup against a Wormholescan-compatible HTTP API.

        GET {base}/api/v1/signed_vaa/{chain}/{emitter}/{sequence}

    Responses:
        200 + {"vaaBytes": "<base64>"}  -> attestation bytes
        200 without vaaBytes, or 404    -> None (not signed yet)
        anything else, transport errors -> AttestationServiceError
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def url_for(self, message_id: MessageId) -> str:
        return self._base_url + SIGNED_VAA_PATH.format(path=message_id.path())

    async def fetch(self, message_id: MessageId) -> Optional[bytes]:
        url = self.url_for(message_id)
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as exc:
            raise AttestationServiceError(f"Attestation lookup timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise AttestationServiceError(f"Attestation lookup failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise AttestationServiceError(
                f"Attestation API returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise AttestationServiceError("Attestation API returned invalid JSON", status_code=200) from exc

        encoded = data.get("vaaBytes") if isinstance(data, dict) else None
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AttestationServiceError("vaaBytes is not valid base64", status_code=200) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


async def acquire_attestation(
    source: AttestationSource,
    message_id: MessageId,
    *,
    interval: float,
    max_attempts: int,
) -> bytes:
    """
    Poll `source` until the attestation for `message_id` is available.

    Fixed interval, bounded attempts. "Not yet available" and transient
    service errors both consume an attempt. Raises AttestationTimeout once
    `max_attempts` lookups came back empty.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    bound = log.bind(sequence=message_id.sequence, emitter_chain=message_id.emitter_chain)
    for attempt in range(1, max_attempts + 1):
        try:
            data = await source.fetch(message_id)
        except AttestationServiceError as exc:
            bound.warning(
                "attestation.lookup_failed",
                attempt=attempt,
                max_attempts=max_attempts,
                status_code=exc.status_code,
                error=str(exc),
            )
            data = None
        else:
            if data is not None:
                bound.info("attestation.acquired", attempt=attempt, size=len(data))
                return data
            bound.info("attestation.pending", attempt=attempt, max_attempts=max_attempts)

        if attempt < max_attempts:
            await asyncio.sleep(interval)

    raise AttestationTimeout(
        f"Attestation for {message_id} not available after {max_attempts} attempts",
        attempts=max_attempts,
    )
