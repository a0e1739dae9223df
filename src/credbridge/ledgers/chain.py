# src/credbridge/ledgers/chain.py
from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from credbridge.core.enums import EventName
from credbridge.core.errors import InvalidTarget, Unauthorized
from credbridge.core.models import LedgerEvent, TxReceipt
from credbridge.helper.encoding import is_zero_address, keccak_hex, normalize_address


@dataclass
class Block:
    number: int
    timestamp: int
    tx_hashes: List[str] = field(default_factory=list)


@dataclass
class CallFrame:
    """`msg.sender` / `msg.value` of the call currently executing."""
    sender: str
    value: int
    target: str


@dataclass
class _TxContext:
    tx_hash: str
    block_number: int
    timestamp: int
    frames: List[CallFrame] = field(default_factory=list)
    events: List[LedgerEvent] = field(default_factory=list)
    snapshots: Dict[str, Any] = field(default_factory=dict)


class SimulatedLedger:
    """
    Minimal in-memory ledger used to host the issuer and mirror programs.

    This is *not* a consensus model. It only provides what the relay
    protocol relies on:

        - blocks:       one block per committed transaction (plus `mine`)
        - atomicity:    every transaction either commits all program storage
                        changes and events, or none of them
        - msg context:  msg.sender / msg.value, including program-to-program
                        calls (the issuer calling the core bridge)
        - event log:    append-only, queryable by address, name and block range

    A single lock serializes transactions, so concurrent callers observe the
    same check-then-act atomicity a real ledger gives them.
    """

    def __init__(
        self,
        chain_id: int,
        name: str = "",
        *,
        genesis_timestamp: int = 1_700_000_000,
        block_time: int = 12,
    ) -> None:
        self.chain_id = chain_id
        self.name = name or f"chain-{chain_id}"
        self.block_time = block_time
        self._blocks: List[Block] = [Block(number=0, timestamp=genesis_timestamp)]
        self._logs: List[LedgerEvent] = []
        self._programs: Dict[str, "LedgerProgram"] = {}
        self._tx: Optional[_TxContext] = None
        self._deploy_nonce = 0
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    @property
    def head(self) -> int:
        """Height of the latest block."""
        return self._blocks[-1].number

    def block(self, number: int) -> Block:
        return self._blocks[number]

    def mine(self, count: int = 1) -> int:
        """Append `count` empty blocks; returns the new head."""
        with self._lock:
            for _ in range(count):
                self._append_block()
            return self.head

    def _append_block(self) -> Block:
        prev = self._blocks[-1]
        block = Block(number=prev.number + 1, timestamp=prev.timestamp + self.block_time)
        self._blocks.append(block)
        return block

    # ------------------------------------------------------------------
    # Programs
    # ------------------------------------------------------------------

    def deploy(self, program: "LedgerProgram") -> str:
        """Register a program and assign it a deterministic address."""
        with self._lock:
            self._deploy_nonce += 1
            seed = f"{self.chain_id}:{self._deploy_nonce}:{program.name}".encode("utf-8")
            address = "0x" + keccak_hex(seed)[-40:]
            program.address = address
            program.ledger = self
            self._programs[address] = program
            return address

    def program(self, address: str) -> "LedgerProgram":
        try:
            return self._programs[normalize_address(address)]
        except KeyError:
            raise KeyError(f"No program at {address} on {self.name}") from None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def transact(
        self,
        to: str,
        method: str,
        *args: Any,
        sender: str,
        value: int = 0,
        **kwargs: Any,
    ) -> TxReceipt:
        """
        Execute `program.method(*args, **kwargs)` as one atomic transaction.

        Each program entered during the call is snapshotted on first entry.
        On any exception those snapshots are restored and buffered events
        dropped. No block is produced and the exception propagates.
        """
        with self._lock:
            if self._tx is not None:
                raise RuntimeError("transact() called inside a running transaction")

            number = self.head + 1
            tx_hash = keccak_hex(f"{self.chain_id}:{number}:{sender}:{to}:{method}".encode("utf-8"))
            self._tx = _TxContext(
                tx_hash=tx_hash,
                block_number=number,
                timestamp=self._blocks[-1].timestamp + self.block_time,
            )
            try:
                result = self._invoke(normalize_address(sender), to, method, args, kwargs, value)
            except Exception:
                for addr, storage in self._tx.snapshots.items():
                    self._programs[addr].storage = storage
                raise
            else:
                tx = self._tx
                block = self._append_block()
                block.tx_hashes.append(tx.tx_hash)
                for i, event in enumerate(tx.events):
                    event.log_index = len(self._logs) + i
                self._logs.extend(tx.events)
                return TxReceipt(
                    tx_hash=tx.tx_hash,
                    block_number=block.number,
                    events=list(tx.events),
                    return_value=result,
                )
            finally:
                self._tx = None

    def call(
        self,
        sender: str,
        to: str,
        method: str,
        *args: Any,
        value: int = 0,
        **kwargs: Any,
    ) -> Any:
        """Program-to-program call inside the running transaction."""
        if self._tx is None:
            raise RuntimeError("call() requires a running transaction")
        return self._invoke(sender, to, method, args, kwargs, value)

    def _invoke(
        self,
        sender: str,
        to: str,
        method: str,
        args: tuple,
        kwargs: Dict[str, Any],
        value: int,
    ) -> Any:
        program = self.program(to)
        if method.startswith("_"):
            raise AttributeError(f"{method} is not an external method")
        fn = getattr(program, method)
        assert self._tx is not None
        if program.address not in self._tx.snapshots:
            self._tx.snapshots[program.address] = copy.deepcopy(program.storage)
        self._tx.frames.append(CallFrame(sender=sender, value=value, target=program.address))
        try:
            return fn(*args, **kwargs)
        finally:
            self._tx.frames.pop()

    # ------------------------------------------------------------------
    # Execution context, used by programs
    # ------------------------------------------------------------------

    def current_frame(self) -> CallFrame:
        if self._tx is None or not self._tx.frames:
            raise RuntimeError("No transaction is executing")
        return self._tx.frames[-1]

    def current_timestamp(self) -> int:
        if self._tx is None:
            return self._blocks[-1].timestamp
        return self._tx.timestamp

    def record_event(self, address: str, name: str, args: Dict[str, Any]) -> None:
        if self._tx is None:
            raise RuntimeError("Events can only be emitted inside a transaction")
        self._tx.events.append(
            LedgerEvent(
                name=name,
                address=address,
                block_number=self._tx.block_number,
                tx_hash=self._tx.tx_hash,
                args=args,
            )
        )

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    def get_logs(
        self,
        *,
        address: Optional[str] = None,
        name: Optional[str] = None,
        from_block: int = 0,
        to_block: Optional[int] = None,
    ) -> List[LedgerEvent]:
        """Committed events filtered by program, event name and inclusive block range."""
        upper = self.head if to_block is None else to_block
        wanted = normalize_address(address) if address is not None else None
        with self._lock:
            return [
                ev for ev in self._logs
                if from_block <= ev.block_number <= upper
                and (wanted is None or ev.address == wanted)
                and (name is None or ev.name == name)
            ]


class LedgerProgram:
    """
    Base class for programs hosted on a SimulatedLedger.

    Subclasses keep *all* mutable state in `self.storage`, which the ledger
    snapshots when a transaction first enters the program. Public methods are external entry
    points; read-only views may be called directly on the object.
    """

    name: str = "program"

    def __init__(self) -> None:
        self.address: str = ""
        self.ledger: Optional[SimulatedLedger] = None
        self.storage: Any = None

    def _ledger(self) -> SimulatedLedger:
        if self.ledger is None:
            raise RuntimeError(f"{self.name} is not deployed")
        return self.ledger

    @property
    def msg(self) -> CallFrame:
        return self._ledger().current_frame()

    def _emit(self, event: str, **args: Any) -> None:
        self._ledger().record_event(self.address, event, args)

    def _call(self, target: str, method: str, *args: Any, value: int = 0) -> Any:
        return self._ledger().call(self.address, target, method, *args, value=value)


class OwnableProgram(LedgerProgram):
    """Single-owner access control; `storage.owner` holds the administrator."""

    def owner(self) -> str:
        return self.storage.owner

    def _only_owner(self) -> None:
        if self.msg.sender != self.storage.owner:
            raise Unauthorized(account=self.msg.sender)

    @staticmethod
    def _checked_address(value: str, zero_reason: Optional[str] = None) -> str:
        """Normalized non-zero address, or InvalidTarget."""
        try:
            address = normalize_address(value)
        except ValueError as exc:
            raise InvalidTarget(target=value) from exc
        if is_zero_address(address):
            raise InvalidTarget(zero_reason, target=value)
        return address

    def transfer_ownership(self, new_owner: str) -> None:
        self._only_owner()
        previous = self.storage.owner
        self.storage.owner = self._checked_address(new_owner, "Ownable: new owner is the zero address")
        self._emit(EventName.OWNERSHIP_TRANSFERRED.value, previous_owner=previous, new_owner=self.storage.owner)
