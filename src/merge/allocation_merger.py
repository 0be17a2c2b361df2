"""
Fund allocation merging for FondCAS.

Combines the per-service-type allocations of a provider into one monthly
view. The combined view is always computed from the individual rows and
never stored.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..domain.models import FundAllocation

logger = logging.getLogger(__name__)

ALL_SERVICE_TYPES = "all"


def merge_allocations(allocations: Iterable[FundAllocation]) -> List[FundAllocation]:
    """
    Merge allocations per provider and calendar month.
    
    Allocated amounts are summed. Consumed amounts are summed only when
    every allocation in the group reports one; otherwise the merged
    consumed amount is unknown.
    
    Args:
        allocations: Per-service-type allocations
        
    Returns:
        One combined allocation per (provider, year, month), in key order
    """
    groups: Dict[Tuple[str, int, int], List[FundAllocation]] = defaultdict(list)
    for allocation in allocations:
        groups[(allocation.provider_id, allocation.year, allocation.month)].append(allocation)
    
    merged = []
    for (provider_id, year, month), members in sorted(groups.items()):
        merged.append(_combine(provider_id, year, month, members))
    
    logger.debug(f"Merged allocations into {len(merged)} monthly views")
    return merged


def _combine(provider_id: str, year: int, month: int,
             members: List[FundAllocation]) -> FundAllocation:
    if len(members) == 1 and members[0].service_type == ALL_SERVICE_TYPES:
        return members[0]
    
    allocated = sum(m.allocated_amount for m in members)
    if all(m.consumed_amount is not None for m in members):
        consumed = sum(m.consumed_amount for m in members)
    else:
        consumed = None
    
    sources = sorted({m.data_source for m in members if m.data_source})
    return FundAllocation(
        provider_id=provider_id,
        year=year,
        month=month,
        service_type=ALL_SERVICE_TYPES,
        allocated_amount=allocated,
        consumed_amount=consumed,
        data_source=", ".join(sources),
    )


def select_allocation(allocations: Iterable[FundAllocation], provider_id: str,
                      now: datetime,
                      service_type: Optional[str] = None) -> Optional[FundAllocation]:
    """
    Pick the allocation that applies to a provider in the month of ``now``.
    
    Args:
        allocations: Candidate allocations (any providers and months)
        provider_id: Provider to select for
        now: Reference instant; its own calendar month applies, offset included
        service_type: Specific service type, or None for the merged view
        
    Returns:
        Matching allocation or merged view, or None when there is none
    """
    current = [
        a for a in allocations
        if a.provider_id == provider_id and a.year == now.year and a.month == now.month
    ]
    if not current:
        return None
    
    if service_type is not None:
        matching = [a for a in current if a.service_type == service_type]
        if not matching:
            return None
        if len(matching) == 1:
            return matching[0]
        # Duplicate rows for one service type are combined like any group
        combined = _combine(provider_id, now.year, now.month, matching)
        return FundAllocation(
            provider_id=combined.provider_id,
            year=combined.year,
            month=combined.month,
            service_type=service_type,
            allocated_amount=combined.allocated_amount,
            consumed_amount=combined.consumed_amount,
            data_source=combined.data_source,
        )
    
    return merge_allocations(current)[0]
