"""
Protocol profiles for privacy-protocol analysis.

A ProtocolProfile is the declarative policy the classifier, the correlation
engine and the scorer read for one protocol: which field the protocol hides,
how fees distort amounts, which accounts belong to the program, and the
heuristic constants of the timing attack.

Usage:
    from unveil.config.protocols import ProtocolRegistry

    profile = ProtocolRegistry.require("privacy-cash")
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from unveil.models.events import EventKind

HOUR_MS = 3600 * 1000
DAY_MS = 24 * HOUR_MS

# Minimum absolute lamport delta treated as a real transfer (0.01 SOL)
DEFAULT_DUST_THRESHOLD = 10_000_000

# Fee-payer residuals below this are relayer fees, not transfers
DEFAULT_RELAYER_FEE_THRESHOLD = 5_000_000

# Withdrawal amount must be 95-101% of the deposit (0-5% fee, rounding slack)
DEFAULT_FEE_TOLERANCE = (0.95, 1.01)

# (max candidate-set size, base score); anything larger gets the last entry
DEFAULT_BASE_SCORE_TIERS = ((1, 0.95), (5, 0.70), (20, 0.40), (None, 0.20))

# (interval hours, tolerance hours, bonus) for operator-habit delays
DEFAULT_ROUND_INTERVAL_BONUSES = ((24.0, 0.5, 0.10), (48.0, 0.5, 0.08), (168.0, 1.0, 0.06))

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

# Outputs closer than this belong to the same split swap
DEFAULT_SPLIT_GROUP_WINDOW_MS = 60 * 1000

DEFAULT_PLACEHOLDER_ADDRESSES = frozenset({"pool", "unknown"})


def anchor_discriminator(instruction_name: str) -> bytes:
    """Anchor-style discriminator: sha256("global:<name>")[:8]."""
    return hashlib.sha256(f"global:{instruction_name}".encode()).digest()[:8]


class ProfileValidationError(ValueError):
    """Raised when a protocol profile is internally inconsistent."""


class HiddenField(Enum):
    """Field a protocol hides cryptographically.

    AMOUNT: amounts hidden, addresses visible (plaintext address links)
    ADDRESS: addresses hidden, amounts visible (amount + timing matching)
    """

    AMOUNT = "amount"
    ADDRESS = "address"


@dataclass(frozen=True)
class InstructionSignature:
    """One distinguishable instruction of a protocol.

    Attributes:
        name: Instruction name (e.g. "deposit")
        discriminator: First 8 bytes of the instruction data
        kind: Event kind the instruction produces
        amount_offset: Byte offset of a u64 little-endian amount, if the
            layout exposes one
    """

    name: str
    discriminator: bytes
    kind: EventKind
    amount_offset: Optional[int] = None

    def __post_init__(self):
        if len(self.discriminator) != 8:
            raise ProfileValidationError(
                f"discriminator for {self.name!r} must be 8 bytes, got {len(self.discriminator)}"
            )
        if self.kind is EventKind.UNKNOWN:
            raise ProfileValidationError(f"instruction {self.name!r} cannot map to UNKNOWN")
        if self.amount_offset is not None and self.amount_offset < 8:
            raise ProfileValidationError(
                f"amount_offset for {self.name!r} overlaps the discriminator: {self.amount_offset}"
            )

    @property
    def min_length(self) -> int:
        """Shortest instruction data that satisfies the declared layout."""
        if self.amount_offset is None:
            return 8
        return self.amount_offset + 8


@dataclass(frozen=True)
class ProtocolProfile:
    """
    Declarative analysis policy for one privacy protocol.

    All validation happens at construction time: an inconsistent profile is a
    programming error and fails fast with ProfileValidationError.
    """

    protocol_id: str
    name: str
    program_ids: tuple[str, ...]
    hidden_field: HiddenField
    pool_accounts: tuple[str, ...] = ()
    description: str = ""
    enabled: bool = True

    # ==================== Classifier ====================
    dust_threshold: int = DEFAULT_DUST_THRESHOLD
    token_dust_threshold: int = 1
    relayer_fee_threshold: int = DEFAULT_RELAYER_FEE_THRESHOLD
    instructions: tuple[InstructionSignature, ...] = ()
    # Internal pool transfers produce the same balance flow as deposits
    internal_transfers: bool = False
    # JSON-parsed instruction type -> event kind, matched before discriminators
    parsed_instructions: tuple[tuple[str, EventKind], ...] = ()

    # ==================== Correlation ====================
    fee_tolerance: tuple[float, float] = DEFAULT_FEE_TOLERANCE
    min_delay_ms: int = 0
    max_delay_ms: Optional[int] = None
    min_score: float = 0.1
    confidence_cap: float = 0.99
    base_score_tiers: tuple = DEFAULT_BASE_SCORE_TIERS
    round_interval_bonuses: tuple = DEFAULT_ROUND_INTERVAL_BONUSES
    placeholder_addresses: frozenset = DEFAULT_PLACEHOLDER_ADDRESSES
    source_kinds: frozenset = frozenset({EventKind.DEPOSIT, EventKind.TRANSFER_OUT})
    target_kinds: frozenset = frozenset({EventKind.WITHDRAWAL, EventKind.TRANSFER_IN})

    # ==================== Anonymity / metrics ====================
    anonymity_window_ms: int = 7 * DAY_MS
    entropy_bucket_ms: int = HOUR_MS
    # "match_deltas" (deposit -> withdrawal delays) or "timestamps"
    entropy_basis: Optional[str] = None

    # ==================== Scoring ====================
    weights: dict = field(
        default_factory=lambda: {"anonymity": 0.4, "timing": 0.3, "amount": 0.3},
        hash=False,
    )
    anonymity_target: float = 100.0
    entropy_target_bits: float = 5.0
    address_exposure_penalty: float = 20.0

    # ==================== Protocol-specific findings ====================
    # Group target outputs into split swaps and fingerprint their ratios
    split_group_window_ms: Optional[int] = None
    # Per-account confidential-token analysis (auditors, conversions)
    confidential_accounts: bool = False
    immediate_conversion_ms: int = HOUR_MS

    def __post_init__(self):
        """Validate the profile (fail fast on caller misuse)."""
        if not self.protocol_id:
            raise ProfileValidationError("protocol_id is required")
        if not self.program_ids:
            raise ProfileValidationError(f"{self.protocol_id}: at least one program id required")
        if not isinstance(self.hidden_field, HiddenField):
            raise ProfileValidationError(
                f"{self.protocol_id}: hidden_field must be a HiddenField, got {self.hidden_field!r}"
            )

        if self.fee_tolerance is None or len(self.fee_tolerance) != 2:
            raise ProfileValidationError(
                f"{self.protocol_id}: fee_tolerance must be a (min, max) pair"
            )
        low, high = self.fee_tolerance
        if low is None or high is None or not (0 < low <= high) or math.isinf(high):
            raise ProfileValidationError(
                f"{self.protocol_id}: invalid fee_tolerance bounds {self.fee_tolerance}"
            )

        if self.dust_threshold < 0 or self.token_dust_threshold < 0:
            raise ProfileValidationError(f"{self.protocol_id}: dust thresholds must be >= 0")
        if not 0 <= self.relayer_fee_threshold <= self.dust_threshold:
            raise ProfileValidationError(
                f"{self.protocol_id}: relayer_fee_threshold must be within [0, dust_threshold]"
            )

        if self.min_delay_ms < 0:
            raise ProfileValidationError(f"{self.protocol_id}: min_delay_ms must be >= 0")
        if self.max_delay_ms is not None and self.max_delay_ms < self.min_delay_ms:
            raise ProfileValidationError(
                f"{self.protocol_id}: max_delay_ms must be >= min_delay_ms"
            )
        if not 0.0 <= self.min_score <= 1.0:
            raise ProfileValidationError(f"{self.protocol_id}: min_score must be in [0, 1]")
        if not 0.0 < self.confidence_cap <= 1.0:
            raise ProfileValidationError(f"{self.protocol_id}: confidence_cap must be in (0, 1]")
        if not self.base_score_tiers or self.base_score_tiers[-1][0] is not None:
            raise ProfileValidationError(
                f"{self.protocol_id}: base_score_tiers must end with an open (None) tier"
            )

        if self.anonymity_window_ms <= 0 or self.entropy_bucket_ms <= 0:
            raise ProfileValidationError(
                f"{self.protocol_id}: anonymity window and entropy bucket must be positive"
            )
        if self.entropy_basis not in (None, "match_deltas", "timestamps"):
            raise ProfileValidationError(
                f"{self.protocol_id}: unknown entropy_basis {self.entropy_basis!r}"
            )

        if set(self.weights) != {"anonymity", "timing", "amount"}:
            raise ProfileValidationError(
                f"{self.protocol_id}: weights need exactly anonymity/timing/amount keys"
            )
        if any(w < 0 for w in self.weights.values()) or not math.isclose(
            sum(self.weights.values()), 1.0, abs_tol=1e-9
        ):
            raise ProfileValidationError(
                f"{self.protocol_id}: weights must be non-negative and sum to 1.0"
            )
        if self.anonymity_target <= 0 or self.entropy_target_bits <= 0:
            raise ProfileValidationError(f"{self.protocol_id}: scoring targets must be positive")

        names = [ix.name for ix in self.instructions]
        if len(names) != len(set(names)):
            raise ProfileValidationError(f"{self.protocol_id}: duplicate instruction names")
        discriminators = [ix.discriminator for ix in self.instructions]
        if len(discriminators) != len(set(discriminators)):
            raise ProfileValidationError(f"{self.protocol_id}: duplicate discriminators")

        parsed_names = [name for name, _ in self.parsed_instructions]
        if len(parsed_names) != len(set(parsed_names)):
            raise ProfileValidationError(f"{self.protocol_id}: duplicate parsed instruction types")
        if any(kind is EventKind.UNKNOWN for _, kind in self.parsed_instructions):
            raise ProfileValidationError(
                f"{self.protocol_id}: parsed instructions cannot map to UNKNOWN"
            )

        if self.split_group_window_ms is not None and self.split_group_window_ms <= 0:
            raise ProfileValidationError(
                f"{self.protocol_id}: split_group_window_ms must be positive"
            )
        if self.immediate_conversion_ms <= 0:
            raise ProfileValidationError(
                f"{self.protocol_id}: immediate_conversion_ms must be positive"
            )

    @property
    def addresses_visible(self) -> bool:
        return self.hidden_field is HiddenField.AMOUNT

    @property
    def effective_entropy_basis(self) -> str:
        if self.entropy_basis:
            return self.entropy_basis
        return "timestamps" if self.addresses_visible else "match_deltas"

    def is_program_controlled(self, address: Optional[str]) -> bool:
        """True for pool accounts and the program ids themselves."""
        return address is not None and (
            address in self.pool_accounts or address in self.program_ids
        )

    def is_visible_address(self, address: Optional[str]) -> bool:
        """True for an address shown on-chain in plaintext.

        Pool accounts count: a pool -> recipient payment exposes both
        endpoints. Only missing values and placeholders are hidden.
        """
        return bool(address) and address not in self.placeholder_addresses

    def instruction_for(self, discriminator: Optional[bytes]) -> Optional[InstructionSignature]:
        """Exact-match discriminator lookup."""
        if discriminator is None:
            return None
        for signature in self.instructions:
            if signature.discriminator == discriminator:
                return signature
        return None

    def parsed_kind(self, parsed_type: Optional[str]) -> Optional[EventKind]:
        """Event kind for a JSON-parsed instruction type, None when unmapped."""
        if not parsed_type:
            return None
        for name, kind in self.parsed_instructions:
            if name == parsed_type:
                return kind
        return None

    def with_overrides(self, **changes) -> "ProtocolProfile":
        """Copy with changed fields (re-validated)."""
        return replace(self, **changes)


# =============================================================================
# Built-in profiles
# =============================================================================

PRIVACY_CASH = ProtocolProfile(
    protocol_id="privacy-cash",
    name="Privacy Cash",
    program_ids=("9fhQBbumKEFuXtMBDw8AaQyAjCorLGJQiS3skWZdQyQD",),
    pool_accounts=("4AV2Qzp3N4c9RfzyEbNZs2wqWfW4EwKnnxFAZCndvfGh",),
    hidden_field=HiddenField.ADDRESS,
    description="Pool mixer for SOL; addresses hidden, amounts visible in balance flow",
    max_delay_ms=30 * DAY_MS,
)

SHADOWWIRE = ProtocolProfile(
    protocol_id="shadowwire",
    name="ShadowWire",
    program_ids=("GQBqwwoikYh7p6KEUHDUu5r9dHHXx9tMGskAPubmFPzD",),
    pool_accounts=("ApfNmzrNXLUQ5yWpQVmrCB4MNsaRqjsFrLXViBq2rBU",),
    hidden_field=HiddenField.AMOUNT,
    description="Bulletproof pool; amounts hidden, sender and recipient visible",
    dust_threshold=1_000_000,
    relayer_fee_threshold=1_000_000,
    internal_transfers=True,
    instructions=(
        InstructionSignature(
            "deposit_to_pool", anchor_discriminator("deposit_to_pool"), EventKind.DEPOSIT
        ),
        InstructionSignature(
            "withdraw_from_pool", anchor_discriminator("withdraw_from_pool"), EventKind.WITHDRAWAL
        ),
        InstructionSignature(
            "zk_external_transfer", anchor_discriminator("zk_external_transfer"), EventKind.TRANSFER_IN
        ),
        InstructionSignature(
            "internal_transfer", anchor_discriminator("internal_transfer"), EventKind.TRANSFER_OUT
        ),
    ),
)

SILENTSWAP = ProtocolProfile(
    protocol_id="silentswap",
    name="SilentSwap",
    # Relay wallet moves funds with plain system transfers
    program_ids=(SYSTEM_PROGRAM_ID,),
    pool_accounts=("CbKGgVKLJFb8bBrf58DnAkdryX6ubewVytn7X957YwNr",),
    hidden_field=HiddenField.ADDRESS,
    description="Cross-chain privacy router with a flat 1% fee",
    fee_tolerance=(0.985, 0.995),
    min_delay_ms=30 * 1000,
    max_delay_ms=5 * 60 * 1000,
    min_score=0.3,
    split_group_window_ms=DEFAULT_SPLIT_GROUP_WINDOW_MS,
)

CONFIDENTIAL_TRANSFERS = ProtocolProfile(
    protocol_id="confidential-transfers",
    name="Confidential Transfers",
    program_ids=(TOKEN_2022_PROGRAM_ID,),
    hidden_field=HiddenField.AMOUNT,
    description="Token-2022 extension; ElGamal-encrypted amounts, owners visible",
    # Deposit and withdraw convert between public and confidential balances
    # and carry their amount in plaintext
    parsed_instructions=(
        ("depositConfidentialTransfer", EventKind.DEPOSIT),
        ("withdrawConfidentialTransfer", EventKind.WITHDRAWAL),
        ("confidentialTransfer", EventKind.TRANSFER_IN),
        ("confidentialTransferWithFee", EventKind.TRANSFER_IN),
    ),
    confidential_accounts=True,
)

BUILTIN_PROFILES = (PRIVACY_CASH, SHADOWWIRE, SILENTSWAP, CONFIDENTIAL_TRANSFERS)


class ProtocolRegistry:
    """Registry of known protocol profiles.

    Profiles are immutable; enable/disable swap in a modified copy.
    """

    _profiles: dict[str, ProtocolProfile] = {p.protocol_id: p for p in BUILTIN_PROFILES}

    @classmethod
    def register(cls, profile: ProtocolProfile) -> None:
        if profile.protocol_id in cls._profiles:
            raise ProfileValidationError(f"Protocol {profile.protocol_id} already registered")
        cls._profiles[profile.protocol_id] = profile

    @classmethod
    def unregister(cls, protocol_id: str) -> None:
        cls._profiles.pop(protocol_id, None)

    @classmethod
    def get(cls, protocol_id: str) -> Optional[ProtocolProfile]:
        return cls._profiles.get(protocol_id)

    @classmethod
    def require(cls, protocol_id: str) -> ProtocolProfile:
        """Get a profile or fail with a descriptive error."""
        profile = cls._profiles.get(protocol_id)
        if profile is None:
            known = ", ".join(sorted(cls._profiles))
            raise ProfileValidationError(f"Unknown protocol {protocol_id!r} (known: {known})")
        return profile

    @classmethod
    def get_by_program_id(cls, program_id: str) -> Optional[ProtocolProfile]:
        for profile in cls._profiles.values():
            if program_id in profile.program_ids:
                return profile
        return None

    @classmethod
    def all(cls) -> list[ProtocolProfile]:
        return list(cls._profiles.values())

    @classmethod
    def enabled(cls) -> list[ProtocolProfile]:
        return [p for p in cls._profiles.values() if p.enabled]

    @classmethod
    def enable(cls, protocol_id: str) -> None:
        cls._profiles[protocol_id] = cls.require(protocol_id).with_overrides(enabled=True)

    @classmethod
    def disable(cls, protocol_id: str) -> None:
        cls._profiles[protocol_id] = cls.require(protocol_id).with_overrides(enabled=False)

    @classmethod
    def reset(cls) -> None:
        """Restore the built-in profiles."""
        cls._profiles = {p.protocol_id: p for p in BUILTIN_PROFILES}
