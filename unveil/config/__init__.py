"""
Unveil centralized configuration package.

Exports:
    UNVEIL_DB_PATH: Path to the report database
    get_connection: Helper to get a DuckDB connection
    ProtocolProfile / ProtocolRegistry: Per-protocol analysis policy
"""

from unveil.config.database import UNVEIL_DB_PATH, get_connection
from unveil.config.protocols import (
    HiddenField,
    InstructionSignature,
    ProfileValidationError,
    ProtocolProfile,
    ProtocolRegistry,
)

__all__ = [
    "UNVEIL_DB_PATH",
    "get_connection",
    "HiddenField",
    "InstructionSignature",
    "ProfileValidationError",
    "ProtocolProfile",
    "ProtocolRegistry",
]
