"""Instruction discriminator lookup.

Protocols built with Anchor prefix every instruction's data with an 8-byte
discriminator (sha256("global:<name>")[:8]). When a profile carries a table
of known discriminators, an exact match identifies the instruction without
any balance-flow guessing.

JSON-parsed RPC responses name the instruction outright (e.g. Token-2022
"withdrawConfidentialTransfer"); profiles may map those names to kinds.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from unveil.config.protocols import InstructionSignature, ProtocolProfile, anchor_discriminator
from unveil.models.events import EventKind, RawInstruction, RawTransaction

__all__ = [
    "LookupStatus",
    "LookupResult",
    "anchor_discriminator",
    "find_parsed_instruction",
    "find_program_instruction",
    "lookup_instruction",
    "decode_amount",
]


class LookupStatus(Enum):
    HIT = "hit"
    MISS = "miss"
    TRUNCATED = "truncated"
    NO_TABLE = "no_table"


@dataclass(frozen=True)
class LookupResult:
    status: LookupStatus
    signature: Optional[InstructionSignature] = None
    instruction: Optional[RawInstruction] = None
    amount: Optional[int] = None


def find_program_instruction(
    tx: RawTransaction, profile: ProtocolProfile
) -> Optional[RawInstruction]:
    """First top-level instruction addressed to one of the profile's programs."""
    for instruction in tx.instructions:
        if instruction.program_id in profile.program_ids:
            return instruction
    return None


def find_parsed_instruction(
    tx: RawTransaction, profile: ProtocolProfile
) -> Optional[tuple[RawInstruction, EventKind]]:
    """First program instruction whose JSON-parsed type the profile maps."""
    if not profile.parsed_instructions:
        return None
    for instruction in tx.instructions:
        if instruction.program_id not in profile.program_ids:
            continue
        kind = profile.parsed_kind(instruction.parsed_type)
        if kind is not None:
            return instruction, kind
    return None


def decode_amount(data: bytes, offset: int) -> Optional[int]:
    """Read a u64 little-endian amount, None when the data is too short."""
    if offset < 0 or len(data) < offset + 8:
        return None
    return struct.unpack_from("<Q", data, offset)[0]


def lookup_instruction(tx: RawTransaction, profile: ProtocolProfile) -> LookupResult:
    """Exact-match the program instruction against the profile's table.

    Returns:
        LookupResult with HIT (signature and decoded amount set), MISS,
        TRUNCATED (data shorter than a discriminator or the matched layout),
        or NO_TABLE when the profile declares no instructions.
    """
    if not profile.instructions:
        return LookupResult(LookupStatus.NO_TABLE)

    instruction = find_program_instruction(tx, profile)
    if instruction is None:
        return LookupResult(LookupStatus.MISS)

    discriminator = instruction.discriminator
    if discriminator is None:
        return LookupResult(LookupStatus.TRUNCATED, instruction=instruction)

    signature = profile.instruction_for(discriminator)
    if signature is None:
        return LookupResult(LookupStatus.MISS, instruction=instruction)

    if len(instruction.data) < signature.min_length:
        return LookupResult(LookupStatus.TRUNCATED, signature=signature, instruction=instruction)

    amount = None
    if signature.amount_offset is not None:
        amount = decode_amount(instruction.data, signature.amount_offset)

    return LookupResult(
        LookupStatus.HIT, signature=signature, instruction=instruction, amount=amount
    )
