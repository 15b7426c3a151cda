"""Privacy Metrics Module.

Pure reductions over classified event collections.

Public API:
- timing_entropy: Normalized Shannon entropy of bucketed times
- unique_amount_ratio: distinct(amount) / count
- address_reuse_rate: Share of addresses seen in more than one event
- detect_split_fingerprints: Split-output patterns of multi-output swaps
- confidential_activity: Auditor and conversion metrics of confidential tokens
- MetricsAggregator: All of the above for one analysis run
"""

from unveil.metrics.addresses import AddressActivity, address_activity, address_reuse_rate
from unveil.metrics.aggregator import AggregateMetrics, MetricsAggregator
from unveil.metrics.amounts import (
    AmountDistribution,
    SplitFingerprints,
    SuspiciousAmount,
    amount_distribution,
    detect_split_fingerprints,
    detect_suspicious_amounts,
    find_common_denominations,
    gini_coefficient,
    unique_amount_ratio,
)
from unveil.metrics.confidential import ConfidentialActivity, confidential_activity
from unveil.metrics.timing import (
    TimingDistribution,
    TimingPattern,
    clustering_coefficient,
    detect_timing_patterns,
    recommend_timing,
    time_of_day_histogram,
    timing_distribution,
    timing_entropy,
)

__all__ = [
    # Addresses
    "AddressActivity",
    "address_activity",
    "address_reuse_rate",
    # Aggregation
    "AggregateMetrics",
    "MetricsAggregator",
    # Amounts
    "AmountDistribution",
    "SplitFingerprints",
    "SuspiciousAmount",
    "amount_distribution",
    "detect_split_fingerprints",
    "detect_suspicious_amounts",
    "find_common_denominations",
    "gini_coefficient",
    "unique_amount_ratio",
    # Confidential tokens
    "ConfidentialActivity",
    "confidential_activity",
    # Timing
    "TimingDistribution",
    "TimingPattern",
    "clustering_coefficient",
    "detect_timing_patterns",
    "recommend_timing",
    "time_of_day_histogram",
    "timing_distribution",
    "timing_entropy",
]
