"""Event Classification Module.

Recovers typed financial events from raw privacy-protocol transactions.

Public API:
- classify: Classify one transaction for a protocol profile
- classify_batch: Classify a batch and count UNKNOWN records
- classify_balance_flow: Balance-delta inference on its own
- lookup_instruction: Exact discriminator lookup
"""

from unveil.classifier.balance_flow import (
    BalanceDelta,
    FlowResult,
    classify_balance_flow,
    native_deltas,
    token_deltas,
)
from unveil.classifier.discriminator import (
    LookupResult,
    LookupStatus,
    anchor_discriminator,
    lookup_instruction,
)
from unveil.classifier.event_classifier import (
    ClassificationResult,
    classify,
    classify_batch,
)

__all__ = [
    # Balance flow
    "BalanceDelta",
    "FlowResult",
    "classify_balance_flow",
    "native_deltas",
    "token_deltas",
    # Discriminators
    "LookupResult",
    "LookupStatus",
    "anchor_discriminator",
    "lookup_instruction",
    # Classifier
    "ClassificationResult",
    "classify",
    "classify_batch",
]
