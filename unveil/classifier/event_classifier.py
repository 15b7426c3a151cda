"""Event Classification Module.

Turns one raw ledger transaction into a typed Event for a protocol profile,
using a two-tier strategy:

1. Exact instruction match: a mapped JSON-parsed instruction type, or a
   discriminator from the profile's table
2. Balance-flow inference on lookup miss or when no table exists

Malformed or ambiguous input never raises: it becomes an UNKNOWN event that
is counted and kept for audit.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from unveil.classifier.balance_flow import classify_balance_flow, flow_for_kind
from unveil.classifier.discriminator import (
    LookupStatus,
    find_parsed_instruction,
    lookup_instruction,
)
from unveil.config.protocols import ProtocolProfile
from unveil.models.events import Event, EventKind, RawInstruction, RawTransaction

logger = logging.getLogger(__name__)

BALANCE_FLOW = "balance_flow"


@dataclass
class ClassificationResult:
    """Result of classifying a batch of transactions.

    Attributes:
        events: Classified events, UNKNOWN ones included, in input order
        unknown_count: Number of UNKNOWN events (malformed records included)
        by_kind: Event count per kind
    """

    events: list[Event] = field(default_factory=list)
    unknown_count: int = 0
    by_kind: Counter = field(default_factory=Counter)

    @property
    def known_events(self) -> list[Event]:
        return [e for e in self.events if e.is_known]

    def of_kind(self, *kinds: EventKind) -> list[Event]:
        return [e for e in self.events if e.kind in kinds]


def _unknown(tx: RawTransaction, profile: ProtocolProfile, reason: str) -> Event:
    logger.debug(f"{tx.signature}: UNKNOWN ({reason})")
    return Event.unknown(tx.signature, profile.protocol_id, tx.block_time_ms, tx.slot)


def _parse_token_amount(value: Any) -> Optional[int]:
    """Amount from a parsed instruction: int, numeric string or tokenAmount object."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("amount")
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"unreadable amount: {value!r}")
    return int(value)


def _token_account_owner(tx: RawTransaction, account: Optional[str]) -> Optional[str]:
    """Owner of a token account, from the transaction's token balances."""
    if not account:
        return None
    for balance in tx.post_token_balances + tx.pre_token_balances:
        index = balance.account_index
        if 0 <= index < len(tx.account_keys) and tx.account_keys[index] == account:
            return balance.owner
    return None


def _token_account_mint(tx: RawTransaction, account: Optional[str]) -> Optional[str]:
    for balance in tx.post_token_balances + tx.pre_token_balances:
        index = balance.account_index
        if 0 <= index < len(tx.account_keys) and tx.account_keys[index] == account:
            return balance.mint or None
    return None


def _parsed_event(
    tx: RawTransaction, profile: ProtocolProfile, instruction: RawInstruction, kind: EventKind
) -> Event:
    """Event from a JSON-parsed instruction.

    Deposits and withdrawals move funds between one owner's public and
    confidential balances; transfers go from the owner to the owner of the
    destination token account and carry no plaintext amount.

    Raises:
        ValueError: If the parsed fields are unusable
    """
    info = instruction.parsed_info
    source = info.get("source")
    owner = (
        info.get("owner")
        or info.get("multisigOwner")
        or _token_account_owner(tx, source)
        or tx.fee_payer
    )

    if kind is EventKind.TRANSFER_IN:
        amount = None
        counterparty = info.get("destinationOwner") or _token_account_owner(
            tx, info.get("destination")
        )
    else:
        amount = _parse_token_amount(info.get("amount"))
        counterparty = owner

    return Event(
        id=tx.signature,
        protocol=profile.protocol_id,
        kind=kind,
        timestamp_ms=tx.block_time_ms,
        slot=tx.slot,
        amount=amount,
        counterparty=counterparty,
        fee_lamports=tx.fee,
        sender=owner,
        mint=info.get("mint") or _token_account_mint(tx, source),
        instruction=instruction.parsed_type,
        auditor_key=info.get("auditorElGamalPubkey") or info.get("auditorKey"),
    )


def classify(raw_tx: RawTransaction, profile: ProtocolProfile) -> Event:
    """Classify one transaction.

    Args:
        raw_tx: Normalized ledger transaction
        profile: Protocol profile

    Returns:
        Event; kind is UNKNOWN when the transaction is not a recognizable
        protocol action

    Example:
        >>> event = classify(tx, ProtocolRegistry.require("privacy-cash"))
        >>> event.kind
        <EventKind.DEPOSIT: 'deposit'>
    """
    if not raw_tx.success:
        return _unknown(raw_tx, profile, "transaction failed")

    if not set(profile.program_ids) & raw_tx.program_ids:
        return _unknown(raw_tx, profile, "target program not invoked")

    if not raw_tx.has_consistent_balances():
        return _unknown(raw_tx, profile, "balance arrays missing or misaligned")

    parsed = find_parsed_instruction(raw_tx, profile)
    if parsed is not None:
        instruction, kind = parsed
        try:
            return _parsed_event(raw_tx, profile, instruction, kind)
        except ValueError as e:
            return _unknown(raw_tx, profile, f"unusable parsed instruction: {e}")

    lookup = lookup_instruction(raw_tx, profile)

    if lookup.status is LookupStatus.TRUNCATED:
        return _unknown(raw_tx, profile, "truncated instruction data")

    if lookup.status is LookupStatus.HIT:
        signature = lookup.signature
        flow = flow_for_kind(raw_tx, profile, signature.kind)
        amount = lookup.amount if lookup.amount is not None else flow.amount
        return Event(
            id=raw_tx.signature,
            protocol=profile.protocol_id,
            kind=signature.kind,
            timestamp_ms=raw_tx.block_time_ms,
            slot=raw_tx.slot,
            amount=amount,
            counterparty=flow.counterparty,
            fee_lamports=flow.fee,
            sender=flow.sender,
            instruction=signature.name,
        )

    flow = classify_balance_flow(raw_tx, profile)
    if flow.kind is EventKind.UNKNOWN:
        return _unknown(raw_tx, profile, "; ".join(flow.reasons))

    return Event(
        id=raw_tx.signature,
        protocol=profile.protocol_id,
        kind=flow.kind,
        timestamp_ms=raw_tx.block_time_ms,
        slot=raw_tx.slot,
        amount=flow.amount,
        counterparty=flow.counterparty,
        fee_lamports=flow.fee,
        sender=flow.sender,
        mint=flow.mint,
        instruction=BALANCE_FLOW,
    )


def classify_batch(
    raw_txs: Iterable[Union[RawTransaction, dict]],
    profile: ProtocolProfile,
) -> ClassificationResult:
    """Classify a batch of transactions.

    Dict records are normalized with RawTransaction.from_dict; records that
    cannot be normalized are counted as UNKNOWN.

    Raises:
        TypeError: If a record is neither a dict nor a RawTransaction
    """
    result = ClassificationResult()

    for record in raw_txs:
        if isinstance(record, dict):
            try:
                tx = RawTransaction.from_dict(record)
            except ValueError as e:
                logger.debug(f"Skipping malformed record: {e}")
                signature = str(record.get("signature") or f"malformed-{len(result.events)}")
                event = Event.unknown(signature, profile.protocol_id)
                result.events.append(event)
                result.unknown_count += 1
                result.by_kind[EventKind.UNKNOWN] += 1
                continue
        elif isinstance(record, RawTransaction):
            tx = record
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

        event = classify(tx, profile)
        result.events.append(event)
        result.by_kind[event.kind] += 1
        if not event.is_known:
            result.unknown_count += 1

    logger.info(
        f"Classified {len(result.events)} {profile.protocol_id} transactions: "
        + ", ".join(f"{kind.value}={count}" for kind, count in sorted(
            result.by_kind.items(), key=lambda item: item[0].value
        ))
    )
    return result
