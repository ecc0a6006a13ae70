"""
Allocation gap calculator
Distance between current allocation and the target range midpoint
"""

from decimal import Decimal
from typing import Dict, Iterable, Optional

from advisor.domain.models import AllocationGapResult, AssetAllocationInput

TWO = Decimal('2')


def calculate_gap(asset: AssetAllocationInput) -> Optional[AllocationGapResult]:
    """
    Gap for one asset.

    Returns None when the asset has no complete target range; such assets
    are unclassified and never receive an amount.
    """
    if not asset.has_target:
        return None
    midpoint = (asset.target_min + asset.target_max) / TWO
    gap = midpoint - asset.current_allocation_pct
    return AllocationGapResult(
        asset_id=asset.asset_id,
        target_midpoint=midpoint,
        allocation_gap_pct=gap,
        is_over_allocated=gap < Decimal('0'),
    )


def calculate_gaps(assets: Iterable[AssetAllocationInput]) -> Dict[str, AllocationGapResult]:
    """Gap per asset id, targeted assets only."""
    gaps: Dict[str, AllocationGapResult] = {}
    for asset in assets:
        gap = calculate_gap(asset)
        if gap is not None:
            gaps[asset.asset_id] = gap
    return gaps
