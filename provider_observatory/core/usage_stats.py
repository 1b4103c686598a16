"""
Usage summaries over ledger records.

Aggregates are only reported when there is data to back them; an empty
ledger produces explicit ``None`` averages rather than zeros.
"""

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from ..storage.models import UsageRecord
from .pricing import Rate, estimate_cost


@dataclass(frozen=True)
class UsageSummary:
    """Aggregate view of recorded provider usage."""
    total_requests: int
    total_tokens: int
    avg_response_time: Optional[float]
    avg_tokens_per_request: Optional[float]
    estimated_cost: Optional[Decimal]
    avg_cost_per_request: Optional[Decimal]
    requests_by_provider: Dict[str, int] = field(default_factory=dict)


def summarize_usage(
    records: List[UsageRecord],
    cost_per_million_tokens: Optional[Rate] = None,
) -> UsageSummary:
    """Summarize usage records.

    Args:
        records: Records to aggregate
        cost_per_million_tokens: Optional price used for the cost estimate

    Returns:
        UsageSummary; cost fields are None when no rate is given
    """
    total_requests = len(records)
    total_tokens = sum(record.total_tokens for record in records)

    estimated_cost = None
    avg_cost = None
    if cost_per_million_tokens is not None:
        estimated_cost = estimate_cost(total_tokens, cost_per_million_tokens)
        if total_requests:
            avg_cost = (estimated_cost / total_requests).quantize(Decimal("0.0001"))

    return UsageSummary(
        total_requests=total_requests,
        total_tokens=total_tokens,
        avg_response_time=(
            sum(record.response_time for record in records) / total_requests
            if total_requests else None
        ),
        avg_tokens_per_request=total_tokens / total_requests if total_requests else None,
        estimated_cost=estimated_cost,
        avg_cost_per_request=avg_cost,
        requests_by_provider=dict(Counter(record.provider for record in records)),
    )
