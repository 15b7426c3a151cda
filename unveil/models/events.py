"""
Data models for privacy-protocol events and correlation results.

These dataclasses are the value types passed between the classifier, the
correlation engine, the aggregators and the report layer. They are immutable
snapshots: every analysis run derives them wholesale from the raw input.

Models:
- TokenBalance / RawInstruction / RawTransaction: normalized ledger input
- Event: one classified financial action (deposit, withdrawal, transfer)
- MatchCandidate: a proposed source -> target link
- AnonymitySetResult: plausible sources for one target
- ProtocolMetrics: aggregate privacy snapshot for one protocol
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EventKind(Enum):
    """Semantic type recovered for a ledger transaction."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    UNKNOWN = "unknown"


# =============================================================================
# Raw ledger input
# =============================================================================


@dataclass(frozen=True)
class TokenBalance:
    """Token-asset balance of one account at one point of a transaction."""

    account_index: int
    mint: str
    owner: Optional[str]
    amount: int

    @classmethod
    def from_dict(cls, data: dict) -> "TokenBalance":
        if not isinstance(data, dict):
            raise ValueError(f"token balance must be a mapping, got {type(data).__name__}")
        amount = data.get("amount")
        if amount is None:
            # RPC shape: {"uiTokenAmount": {"amount": "123", "decimals": 9}}
            amount = (data.get("uiTokenAmount") or {}).get("amount", 0)
        return cls(
            account_index=int(data.get("accountIndex", data.get("account_index"))),
            mint=str(data.get("mint", "")),
            owner=data.get("owner"),
            amount=int(amount),
        )


def _decode_text(text: str, encoding: str) -> bytes:
    if encoding == "hex":
        try:
            return bytes.fromhex(text[2:] if text.startswith("0x") else text)
        except ValueError as e:
            raise ValueError(f"invalid hex instruction data: {text[:16]}...") from e
    if encoding == "base64":
        try:
            return base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"invalid base64 instruction data: {text[:16]}...") from e
    raise ValueError(f"unsupported instruction data encoding: {encoding!r}")


def _decode_instruction_data(data: Any, encoding: Optional[str] = None) -> bytes:
    """Decode instruction data from the shapes the fetch layer produces.

    Accepts raw bytes, a list of ints, an RPC-style [payload, encoding]
    pair, or a string. A string is decoded with `encoding` when given;
    otherwise a "0x" prefix or pure hex text means hex, anything else base64.
    Untagged base64 that happens to be valid hex is read as hex, so the
    fetch layer should tag base64 payloads.
    """
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, list):
        if len(data) == 2 and isinstance(data[0], str) and isinstance(data[1], str):
            return _decode_text(data[0], data[1])
        try:
            return bytes(data)
        except (TypeError, ValueError) as e:
            raise ValueError(f"invalid instruction byte list: {e}") from e
    if isinstance(data, str):
        if encoding is not None:
            return _decode_text(data, encoding)
        if data.startswith("0x"):
            return _decode_text(data, "hex")
        try:
            return bytes.fromhex(data)
        except ValueError:
            return _decode_text(data, "base64")
    raise ValueError(f"unsupported instruction data type: {type(data).__name__}")


def _parse_flag(value: Any, default: bool = True) -> bool:
    """Boolean from JSON-ish input; "false"/"0" strings are False."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes"):
            return True
        if text in ("false", "0", "no"):
            return False
    raise ValueError(f"invalid boolean flag: {value!r}")


@dataclass(frozen=True)
class RawInstruction:
    """One top-level instruction of a ledger transaction.

    Attributes:
        program_id: Invoked program
        data: Raw instruction bytes
        account_indexes: Indexes into the transaction's account list
        parsed_type: Instruction type from a JSON-parsed RPC response
            (e.g. "depositConfidentialTransfer"), None when unparsed
        parsed_info: The parsed instruction's "info" object
    """

    program_id: str
    data: bytes = b""
    account_indexes: tuple[int, ...] = ()
    parsed_type: Optional[str] = None
    parsed_info: dict = field(default_factory=dict, hash=False, compare=False)

    @property
    def discriminator(self) -> Optional[bytes]:
        """First 8 bytes of the instruction data, or None when truncated."""
        if len(self.data) < 8:
            return None
        return self.data[:8]

    @classmethod
    def from_dict(cls, data: dict) -> "RawInstruction":
        if not isinstance(data, dict):
            raise ValueError(f"instruction must be a mapping, got {type(data).__name__}")
        program_id = data.get("programId", data.get("program_id"))
        if not program_id:
            raise ValueError("instruction without program id")
        accounts = data.get("accountIndexes", data.get("account_indexes", []))

        parsed = data.get("parsed")
        parsed_type, parsed_info = None, {}
        if parsed is not None:
            if not isinstance(parsed, dict):
                raise ValueError("parsed instruction must be a mapping")
            parsed_type = parsed.get("type")
            parsed_info = parsed.get("info") or {}
            if not isinstance(parsed_info, dict):
                raise ValueError("parsed instruction info must be a mapping")

        return cls(
            program_id=str(program_id),
            data=_decode_instruction_data(
                data.get("data"), data.get("encoding", data.get("dataEncoding"))
            ),
            account_indexes=tuple(int(i) for i in accounts),
            parsed_type=str(parsed_type) if parsed_type else None,
            parsed_info=dict(parsed_info),
        )


@dataclass(frozen=True)
class RawTransaction:
    """Normalized ledger transaction as delivered by the fetch collaborator.

    Attributes:
        signature: Transaction signature (unique id)
        slot: Ledger slot
        block_time_ms: Block timestamp in milliseconds
        account_keys: Ordered account list; index 0 is the fee payer
        pre_balances / post_balances: Native-asset balances per account
        pre_token_balances / post_token_balances: Optional token balances
        instructions: Top-level instructions
        fee: Network fee paid by the fee payer
        success: False when the transaction failed on-chain
    """

    signature: str
    slot: int
    block_time_ms: int
    account_keys: tuple[str, ...]
    pre_balances: tuple[int, ...]
    post_balances: tuple[int, ...]
    instructions: tuple[RawInstruction, ...] = ()
    pre_token_balances: tuple[TokenBalance, ...] = ()
    post_token_balances: tuple[TokenBalance, ...] = ()
    fee: int = 0
    success: bool = True

    @property
    def fee_payer(self) -> Optional[str]:
        return self.account_keys[0] if self.account_keys else None

    @property
    def program_ids(self) -> set[str]:
        return {ix.program_id for ix in self.instructions}

    def has_consistent_balances(self) -> bool:
        """True when both balance arrays line up with the account list."""
        n = len(self.account_keys)
        return n > 0 and len(self.pre_balances) == n and len(self.post_balances) == n

    @classmethod
    def from_dict(cls, data: dict) -> "RawTransaction":
        """Build a RawTransaction from the fetch layer's JSON shape.

        Both camelCase (RPC) and snake_case keys are accepted.

        Raises:
            ValueError: If the record is structurally unusable
        """
        if not isinstance(data, dict):
            raise ValueError(f"transaction record must be a mapping, got {type(data).__name__}")
        try:
            signature = data.get("signature")
            if not signature:
                raise ValueError("transaction without signature")

            block_time_ms = data.get("blockTimeMs", data.get("block_time_ms"))
            if block_time_ms is None and data.get("blockTime") is not None:
                block_time_ms = int(data["blockTime"]) * 1000
            if block_time_ms is None:
                raise ValueError(f"transaction {signature} has no block time")

            return cls(
                signature=str(signature),
                slot=int(data.get("slot", 0)),
                block_time_ms=int(block_time_ms),
                account_keys=tuple(
                    str(k) for k in data.get("accountKeys", data.get("account_keys", []))
                ),
                pre_balances=tuple(
                    int(b) for b in data.get("preBalances", data.get("pre_balances", []))
                ),
                post_balances=tuple(
                    int(b) for b in data.get("postBalances", data.get("post_balances", []))
                ),
                instructions=tuple(
                    RawInstruction.from_dict(ix) for ix in data.get("instructions", [])
                ),
                pre_token_balances=tuple(
                    TokenBalance.from_dict(b)
                    for b in data.get("preTokenBalances", data.get("pre_token_balances")) or []
                ),
                post_token_balances=tuple(
                    TokenBalance.from_dict(b)
                    for b in data.get("postTokenBalances", data.get("post_token_balances")) or []
                ),
                fee=int(data.get("fee", 0)),
                success=_parse_flag(data.get("success")),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"malformed transaction record: {e}") from e


# =============================================================================
# Classified events
# =============================================================================


@dataclass(frozen=True)
class Event:
    """
    One ledger-observed financial action.

    Attributes:
        id: Transaction signature (unique)
        protocol: Protocol profile id
        kind: Recovered event type
        timestamp_ms: Block time in milliseconds
        slot: Ledger slot
        amount: Transferred amount, None when hidden or unrecoverable
        counterparty: User-side address (depositor / recipient), None when hidden
        fee_lamports: Network or relayer fee when observed
        sender: Originating address when visible in plaintext
        mint: Token mint for token-asset flows, None for the native asset
        instruction: Matched instruction name or "balance_flow"
        auditor_key: Auditor public key of a confidential-token mint, when set
    """

    id: str
    protocol: str
    kind: EventKind
    timestamp_ms: int
    slot: int = 0
    amount: Optional[int] = None
    counterparty: Optional[str] = None
    fee_lamports: Optional[int] = None
    sender: Optional[str] = None
    mint: Optional[str] = None
    instruction: Optional[str] = None
    auditor_key: Optional[str] = None

    def __post_init__(self):
        """Validate amounts and the Unknown invariant."""
        if self.amount is not None and self.amount < 0:
            raise ValueError(f"amount must be >= 0: {self.amount}")
        if self.fee_lamports is not None and self.fee_lamports < 0:
            raise ValueError(f"fee_lamports must be >= 0: {self.fee_lamports}")
        if self.kind is EventKind.UNKNOWN and (
            self.amount is not None or self.counterparty is not None
        ):
            raise ValueError("unknown events cannot carry amount or counterparty")

    @property
    def is_known(self) -> bool:
        return self.kind is not EventKind.UNKNOWN

    @classmethod
    def unknown(cls, raw_id: str, protocol: str, timestamp_ms: int = 0, slot: int = 0) -> "Event":
        """Build the Unknown event for an unclassifiable transaction."""
        return cls(
            id=raw_id,
            protocol=protocol,
            kind=EventKind.UNKNOWN,
            timestamp_ms=timestamp_ms,
            slot=slot,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "protocol": self.protocol,
            "kind": self.kind.value,
            "timestamp_ms": self.timestamp_ms,
            "slot": self.slot,
            "amount": self.amount,
            "counterparty": self.counterparty,
            "fee_lamports": self.fee_lamports,
            "sender": self.sender,
            "mint": self.mint,
            "instruction": self.instruction,
            "auditor_key": self.auditor_key,
        }


@dataclass(frozen=True)
class MatchCandidate:
    """
    Proposed link between a source event and a target event.

    `source` and `target` reference events of the input collections.
    `reasons` is audit text only and never feeds scoring.
    """

    source: Event
    target: Event
    confidence: float
    time_delta_ms: int
    reasons: tuple[str, ...] = ()
    anonymity_set: int = 0

    def __post_init__(self):
        """Validate confidence range."""
        if not 0.0 <= self.confidence <= 100.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if self.anonymity_set < 0:
            raise ValueError(f"anonymity_set must be >= 0: {self.anonymity_set}")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "source_id": self.source.id,
            "target_id": self.target.id,
            "source_address": self.source.counterparty,
            "target_address": self.target.counterparty,
            "confidence": self.confidence,
            "time_delta_ms": self.time_delta_ms,
            "anonymity_set": self.anonymity_set,
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class AnonymitySetResult:
    """Plausible source events for one target, computed before consumption."""

    target_id: str
    candidate_source_ids: frozenset[str] = field(default_factory=frozenset)
    size: int = 0
    timestamp_ms: int = 0

    def __post_init__(self):
        """Enforce size == |candidate_source_ids|."""
        if self.size != len(self.candidate_source_ids):
            raise ValueError(
                f"size {self.size} != {len(self.candidate_source_ids)} candidates"
            )

    def to_dict(self) -> dict:
        return {
            "target_id": self.target_id,
            "candidate_source_ids": sorted(self.candidate_source_ids),
            "size": self.size,
            "timestamp_ms": self.timestamp_ms,
        }


@dataclass(frozen=True)
class ProtocolMetrics:
    """
    Aggregate privacy snapshot for one protocol.

    Attributes:
        avg_anonymity_set: Mean anonymity-set size over targets
        median_anonymity_set: Median anonymity-set size
        min_anonymity_set: Smallest anonymity set observed
        timing_entropy: Normalized Shannon entropy (0.0 to 1.0)
        unique_amount_ratio: distinct(amount) / count (0.0 to 1.0)
        address_reuse_rate: Share of addresses seen more than once (0.0 to 1.0)
        privacy_score: Composite score (0 to 100)
    """

    avg_anonymity_set: float = 0.0
    median_anonymity_set: float = 0.0
    min_anonymity_set: int = 0
    timing_entropy: float = 0.0
    unique_amount_ratio: float = 0.0
    address_reuse_rate: float = 0.0
    privacy_score: int = 0

    def __post_init__(self):
        """Validate metric bounds."""
        for name in ("timing_entropy", "unique_amount_ratio", "address_reuse_rate"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} out of range: {value}")
        if not 0 <= self.privacy_score <= 100:
            raise ValueError(f"privacy_score out of range: {self.privacy_score}")
        if self.min_anonymity_set < 0:
            raise ValueError(f"min_anonymity_set must be >= 0: {self.min_anonymity_set}")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "avg_anonymity_set": self.avg_anonymity_set,
            "median_anonymity_set": self.median_anonymity_set,
            "min_anonymity_set": self.min_anonymity_set,
            "timing_entropy": self.timing_entropy,
            "unique_amount_ratio": self.unique_amount_ratio,
            "address_reuse_rate": self.address_reuse_rate,
            "privacy_score": self.privacy_score,
        }
