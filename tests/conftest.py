"""
Pytest configuration and shared fixtures

Event and raw-transaction builders used across the classifier, correlation,
metrics and pipeline tests.
"""

import logging

import pytest

from unveil.config.protocols import (
    PRIVACY_CASH,
    SHADOWWIRE,
    SILENTSWAP,
    ProtocolRegistry,
)
from unveil.config.settings import reset_settings
from unveil.models.events import Event, EventKind

PC_PROGRAM = PRIVACY_CASH.program_ids[0]
PC_POOL = PRIVACY_CASH.pool_accounts[0]
SW_PROGRAM = SHADOWWIRE.program_ids[0]
SW_POOL = SHADOWWIRE.pool_accounts[0]

SOL = 1_000_000_000
NETWORK_FEE = 5_000


@pytest.fixture(autouse=True)
def clean_global_state():
    """Registry, cached settings and the package logger are process-wide."""
    yield
    ProtocolRegistry.reset()
    reset_settings()
    package_logger = logging.getLogger("unveil")
    package_logger.handlers.clear()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def privacy_cash():
    return PRIVACY_CASH


@pytest.fixture
def shadowwire():
    return SHADOWWIRE


@pytest.fixture
def silentswap():
    return SILENTSWAP


@pytest.fixture
def make_event():
    """Factory for classified events."""

    def _make(
        event_id,
        kind=EventKind.DEPOSIT,
        timestamp_ms=0,
        amount=None,
        counterparty=None,
        sender=None,
        protocol="privacy-cash",
    ):
        return Event(
            id=event_id,
            protocol=protocol,
            kind=kind,
            timestamp_ms=timestamp_ms,
            amount=amount,
            counterparty=counterparty,
            sender=sender,
        )

    return _make


@pytest.fixture
def make_tx():
    """Factory for raw transactions in the fetch layer's camelCase shape."""

    def _make(
        signature,
        account_keys,
        pre_balances,
        post_balances,
        program_id=PC_PROGRAM,
        data="",
        block_time_ms=0,
        fee=NETWORK_FEE,
        success=True,
        pre_token_balances=None,
        post_token_balances=None,
    ):
        return {
            "signature": signature,
            "slot": 100,
            "blockTimeMs": block_time_ms,
            "accountKeys": list(account_keys),
            "preBalances": list(pre_balances),
            "postBalances": list(post_balances),
            "preTokenBalances": pre_token_balances or [],
            "postTokenBalances": post_token_balances or [],
            "instructions": [{"programId": program_id, "data": data, "accountIndexes": [0, 1]}],
            "fee": fee,
            "success": success,
        }

    return _make


@pytest.fixture
def deposit_tx(make_tx):
    """Factory for a privacy-cash deposit: user -> pool."""

    def _make(signature, user, amount, block_time_ms=0):
        return make_tx(
            signature,
            [user, PC_POOL, PC_PROGRAM],
            [10 * SOL, 100 * SOL, 1],
            [10 * SOL - amount - NETWORK_FEE, 100 * SOL + amount, 1],
            block_time_ms=block_time_ms,
        )

    return _make


@pytest.fixture
def withdrawal_tx(make_tx):
    """Factory for a relayed privacy-cash withdrawal: pool -> recipient."""

    def _make(signature, recipient, amount, block_time_ms=0, relayer="relayer1"):
        return make_tx(
            signature,
            [relayer, PC_POOL, recipient, PC_PROGRAM],
            [SOL, 100 * SOL, 0, 1],
            [SOL - NETWORK_FEE, 100 * SOL - amount, amount, 1],
            block_time_ms=block_time_ms,
        )

    return _make
