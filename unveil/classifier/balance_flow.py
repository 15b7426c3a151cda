"""Balance-Flow Inference Module.

Recovers the semantic type of a privacy-protocol transaction from account
balance deltas when the protocol publishes no usable instruction layout:

- Deposit: the fee payer loses a significant amount into a pool account
- Withdrawal: a pool account pays a significant amount to a non-fee-payer
- Anything else is left unclassified

These heuristics are probabilistic. They cannot tell a deposit from an
internal pool transfer when both move funds from the fee payer into the pool,
so protocols with internal transfers degrade such flows to UNKNOWN.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

from unveil.config.protocols import ProtocolProfile
from unveil.models.events import EventKind, RawTransaction


@dataclass(frozen=True)
class BalanceDelta:
    """Signed balance change of one address within a transaction."""

    address: str
    change: int
    is_fee_payer: bool = False


@dataclass
class FlowResult:
    """Result of balance-flow inference.

    Attributes:
        kind: Inferred event kind (UNKNOWN when no pattern matched)
        amount: Transferred amount
        counterparty: User-side address (depositor or recipient)
        sender: Address the funds left from
        fee: Network fee (deposit) or relayer fee (withdrawal)
        mint: Token mint when inferred from token balances
        reasons: Why the flow was (not) classified
    """

    kind: EventKind = EventKind.UNKNOWN
    amount: Optional[int] = None
    counterparty: Optional[str] = None
    sender: Optional[str] = None
    fee: Optional[int] = None
    mint: Optional[str] = None
    reasons: list[str] = field(default_factory=list)


def native_deltas(tx: RawTransaction) -> list[BalanceDelta]:
    """Signed native-asset delta for every account (zero deltas dropped)."""
    deltas = []
    for index, (address, pre, post) in enumerate(
        zip(tx.account_keys, tx.pre_balances, tx.post_balances)
    ):
        change = post - pre
        if change != 0:
            deltas.append(BalanceDelta(address, change, is_fee_payer=index == 0))
    return deltas


def token_deltas(tx: RawTransaction) -> dict[str, list[BalanceDelta]]:
    """Token deltas aggregated per (mint, owner), grouped by mint.

    Token accounts are keyed by account index; the owner is the wallet the
    flow is attributed to.
    """
    fee_payer = tx.fee_payer
    before = {(b.account_index, b.mint): b for b in tx.pre_token_balances}
    after = {(b.account_index, b.mint): b for b in tx.post_token_balances}

    per_owner: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for key in sorted(set(before) | set(after), key=lambda k: (k[1], k[0])):
        pre = before.get(key)
        post = after.get(key)
        owner = (post or pre).owner
        if owner is None:
            if 0 <= key[0] < len(tx.account_keys):
                owner = tx.account_keys[key[0]]
            else:
                continue
        change = (post.amount if post else 0) - (pre.amount if pre else 0)
        per_owner[key[1]][owner] += change

    result: dict[str, list[BalanceDelta]] = {}
    for mint, owners in per_owner.items():
        deltas = [
            BalanceDelta(owner, change, is_fee_payer=owner == fee_payer)
            for owner, change in owners.items()
            if change != 0
        ]
        if deltas:
            result[mint] = deltas
    return result


def significant(deltas: list[BalanceDelta], threshold: int) -> list[BalanceDelta]:
    """Drop deltas whose magnitude is below the dust threshold."""
    return [d for d in deltas if abs(d.change) >= threshold]


def largest_decrease(deltas: list[BalanceDelta]) -> Optional[BalanceDelta]:
    """Single largest-magnitude decrease; the earliest account wins ties."""
    best = None
    for delta in deltas:
        if delta.change < 0 and (best is None or delta.change < best.change):
            best = delta
    return best


def largest_increase(deltas: list[BalanceDelta]) -> Optional[BalanceDelta]:
    """Single largest increase; the earliest account wins ties."""
    best = None
    for delta in deltas:
        if delta.change > 0 and (best is None or delta.change > best.change):
            best = delta
    return best


def _fee_payer_residual(deltas: list[BalanceDelta]) -> int:
    for delta in deltas:
        if delta.is_fee_payer:
            return delta.change
    return 0


def infer_flow(
    deltas: list[BalanceDelta],
    profile: ProtocolProfile,
    threshold: int,
    network_fee: int = 0,
    subtract_fee: bool = True,
) -> FlowResult:
    """Classify one set of balance deltas.

    Args:
        deltas: All non-zero deltas of the transaction
        profile: Protocol profile (pool accounts, fee thresholds)
        threshold: Dust threshold for this asset
        network_fee: Transaction fee paid by the fee payer
        subtract_fee: Subtract the network fee from deposit amounts
            (native asset only)

    Returns:
        FlowResult; kind is UNKNOWN when no pattern matched
    """
    result = FlowResult()
    qualifying = significant(deltas, threshold)
    if not qualifying:
        result.reasons.append(f"No balance delta above dust threshold {threshold}")
        return result

    decrease = largest_decrease(qualifying)
    increase = largest_increase(qualifying)

    # Deposit: fee payer -> pool
    if (
        decrease is not None
        and decrease.is_fee_payer
        and increase is not None
        and profile.is_program_controlled(increase.address)
    ):
        if profile.internal_transfers:
            result.reasons.append(
                "Fee payer -> pool flow is ambiguous (deposit or internal transfer)"
            )
            return result

        amount = abs(decrease.change) - (network_fee if subtract_fee else 0)
        if amount <= 0:
            result.reasons.append("Fee payer decrease does not exceed the network fee")
            return result

        result.kind = EventKind.DEPOSIT
        result.amount = amount
        result.counterparty = decrease.address
        result.sender = decrease.address
        result.fee = network_fee if subtract_fee else None
        result.reasons.append(f"Fee payer sent {amount} into pool {increase.address}")
        return result

    # Withdrawal: pool -> recipient (fee payer is a relayer at most)
    if (
        increase is not None
        and not increase.is_fee_payer
        and decrease is not None
        and profile.is_program_controlled(decrease.address)
    ):
        result.kind = EventKind.WITHDRAWAL
        result.amount = increase.change
        result.counterparty = increase.address
        result.sender = decrease.address

        residual = _fee_payer_residual(deltas)
        if residual < 0 and abs(residual) < profile.relayer_fee_threshold:
            result.fee = abs(residual)
            result.reasons.append(f"Fee payer residual {abs(residual)} treated as relayer fee")
        result.reasons.append(
            f"Pool {decrease.address} paid {increase.change} to {increase.address}"
        )
        return result

    result.reasons.append("No program-controlled account participates decisively")
    return result


def classify_balance_flow(tx: RawTransaction, profile: ProtocolProfile) -> FlowResult:
    """Run balance-flow inference on native balances, then token balances.

    Token balances are only consulted when no native-asset delta clears the
    dust threshold.
    """
    deltas = native_deltas(tx)
    if significant(deltas, profile.dust_threshold):
        return infer_flow(deltas, profile, profile.dust_threshold, network_fee=tx.fee)

    per_mint = token_deltas(tx)
    if not per_mint:
        return infer_flow(deltas, profile, profile.dust_threshold, network_fee=tx.fee)

    reasons = []
    for mint in sorted(per_mint):
        flow = infer_flow(
            per_mint[mint], profile, profile.token_dust_threshold, subtract_fee=False
        )
        if flow.kind is not EventKind.UNKNOWN:
            flow.mint = mint
            return flow
        reasons.extend(flow.reasons)

    return FlowResult(reasons=reasons or ["No token flow matched"])


def flow_for_kind(tx: RawTransaction, profile: ProtocolProfile, kind: EventKind) -> FlowResult:
    """Recover amount and addresses for an instruction whose kind is already known.

    Used after an exact discriminator match: the instruction fixes the kind,
    the balance deltas only supply the amount and the endpoints.
    """
    result = FlowResult(kind=kind)
    deltas = native_deltas(tx)
    qualifying = significant(deltas, profile.dust_threshold)
    decrease = largest_decrease(qualifying)
    increase = largest_increase(qualifying)
    fee_payer = tx.fee_payer

    if kind is EventKind.DEPOSIT:
        result.counterparty = fee_payer
        result.sender = fee_payer
        result.fee = tx.fee
        if decrease is not None and decrease.is_fee_payer:
            amount = abs(decrease.change) - tx.fee
            result.amount = amount if amount > 0 else None
    elif kind is EventKind.WITHDRAWAL:
        if increase is not None and not increase.is_fee_payer:
            result.amount = increase.change
            result.counterparty = increase.address
        if decrease is not None:
            result.sender = decrease.address
        residual = _fee_payer_residual(deltas)
        if residual < 0 and abs(residual) < profile.relayer_fee_threshold:
            result.fee = abs(residual)
    elif kind is EventKind.TRANSFER_IN:
        # External transfer: funds leave the pool (or a sender) towards a recipient
        if increase is not None:
            result.amount = increase.change
            result.counterparty = increase.address
        if decrease is not None:
            result.sender = decrease.address
    elif kind is EventKind.TRANSFER_OUT:
        # Internal transfer: the signer moves funds inside the pool
        result.counterparty = fee_payer
        result.sender = fee_payer
        if decrease is not None and decrease.is_fee_payer:
            amount = abs(decrease.change) - tx.fee
            result.amount = amount if amount > 0 else None

    return result
