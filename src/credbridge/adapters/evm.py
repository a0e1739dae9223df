# src/credbridge/adapters/evm.py
"""
Relayer ports for real EVM ledgers, on top of web3's AsyncWeb3.

Source side: reads `CrossChainMessageEmitted` logs of the issuer.
Destination side: signs and sends `receiveAndVerifyVAA(bytes)` to the
mirror with the relayer's key and waits for the receipt.
"""
from __future__ import annotations

import asyncio
from typing import Any, List

import structlog
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.providers import AsyncHTTPProvider

from credbridge.config import NetworkConfig, RelayerConfig
from credbridge.core.abi import ISSUER_ABI, MIRROR_ABI
from credbridge.core.errors import DeliveryError, ProviderError
from credbridge.core.models import EmissionEvent, TxReceipt
from credbridge.relayer.ports import DestinationLedgerClient, SourceLedgerClient

log = structlog.get_logger(__name__)

DEFAULT_GAS = 500_000


def _hex(value: Any) -> str:
    text = value.hex() if hasattr(value, "hex") else str(value)
    return text if text.startswith("0x") else "0x" + text


class EvmSourceClient(SourceLedgerClient):
    def __init__(self, w3: AsyncWeb3, issuer_address: str, emitter_chain: int) -> None:
        self.w3 = w3
        self.emitter_chain = emitter_chain
        self.issuer_address = issuer_address.lower()
        self.contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(issuer_address),
            abi=ISSUER_ABI,
        )

    async def get_head(self) -> int:
        try:
            return await self.w3.eth.block_number
        except Exception as exc:
            raise ProviderError(f"source provider: {exc}") from exc

    async def get_emissions(self, from_block: int, to_block: int) -> List[EmissionEvent]:
        try:
            logs = await self.contract.events.CrossChainMessageEmitted.get_logs(
                from_block=from_block,
                to_block=to_block,
            )
        except Exception as exc:
            raise ProviderError(f"source provider: {exc}") from exc
        return [
            EmissionEvent(
                sequence=int(entry["args"]["sequence"]),
                block_number=int(entry["blockNumber"]),
                emitter_chain=self.emitter_chain,
                emitter_address=self.issuer_address,
                tx_hash=_hex(entry["transactionHash"]),
            )
            for entry in logs
        ]


class EvmDestinationClient(DestinationLedgerClient):
    """
    Sends mirror transactions from one account.

    Workers share the account, so building, signing and sending run under
    a lock to keep nonces strictly increasing; waiting for the receipt
    happens outside it.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        mirror_address: str,
        private_key: str,
        *,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.w3 = w3
        self.account = w3.eth.account.from_key(private_key)
        self.contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(mirror_address),
            abi=MIRROR_ABI,
        )
        self.receipt_timeout = receipt_timeout
        self._send_lock = asyncio.Lock()

    async def submit_attestation(self, data: bytes) -> TxReceipt:
        fn = self.contract.functions.receiveAndVerifyVAA(data)
        async with self._send_lock:
            tx_hash = await self._sign_and_send(fn)

        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except TimeExhausted as exc:
            raise DeliveryError(f"receipt not received: {exc}", tx_hash=_hex(tx_hash)) from exc

        if receipt["status"] == 0:
            reason = await self._revert_reason(fn, receipt["blockNumber"])
            raise DeliveryError(reason, tx_hash=_hex(tx_hash))
        return TxReceipt(
            tx_hash=_hex(tx_hash),
            block_number=int(receipt["blockNumber"]),
            status=True,
        )

    async def _revert_reason(self, fn: Any, block_number: int) -> str:
        """Replay a reverted call at its block to recover the revert reason."""
        try:
            await fn.call({"from": self.account.address}, block_identifier=block_number)
        except ContractLogicError as exc:
            return f"transaction reverted: {exc}"
        except Exception as exc:
            log.warning("evm.revert_reason_unavailable", block_number=block_number, error=str(exc))
        return "transaction reverted"

    async def _sign_and_send(self, fn: Any) -> Any:
        sender = self.account.address
        try:
            nonce = await self.w3.eth.get_transaction_count(sender, "pending")
            params = {"from": sender, "nonce": nonce}
            try:
                params["gas"] = int(await fn.estimate_gas({"from": sender}) * 1.2)
            except ContractLogicError:
                raise
            except Exception as exc:
                log.warning("evm.gas_estimation_failed", error=str(exc), fallback=DEFAULT_GAS)
                params["gas"] = DEFAULT_GAS
            tx = await fn.build_transaction(params)
            signed = self.account.sign_transaction(tx)
            raw = getattr(signed, "raw_transaction", None)
            if raw is None:
                raw = getattr(signed, "rawTransaction")
            return await self.w3.eth.send_raw_transaction(raw)
        except ContractLogicError as exc:
            # Revert reason, e.g. "execution reverted: VAA already processed"
            raise DeliveryError(str(exc)) from exc
        except Exception as exc:
            raise DeliveryError(f"destination provider: {exc}") from exc


def build_evm_clients(network: NetworkConfig, relayer: RelayerConfig):
    """Source and destination clients for the configured RPC endpoints."""
    source_w3 = AsyncWeb3(AsyncHTTPProvider(network.source_rpc_url))
    destination_w3 = AsyncWeb3(AsyncHTTPProvider(network.destination_rpc_url))
    source = EvmSourceClient(source_w3, network.issuer_address, relayer.source_chain_id)
    destination = EvmDestinationClient(
        destination_w3,
        network.mirror_address,
        network.relayer_private_key.get_secret_value(),
    )
    return source, destination
