from decimal import Decimal
from typing import Dict, Iterable, Mapping, Union

from src.core.models import AllocationBreakdown, AssetClass, ModelPortfolio

DEFAULT_DRIFT_THRESHOLD_PCT = Decimal("8")

AllocationLike = Union[Iterable[AllocationBreakdown], ModelPortfolio, Mapping[AssetClass, Decimal]]


def to_percentage_map(allocations: AllocationLike) -> Dict[AssetClass, Decimal]:
    if isinstance(allocations, ModelPortfolio):
        return allocations.target_map()
    if isinstance(allocations, Mapping):
        return {AssetClass(key): Decimal(value) for key, value in allocations.items()}
    return {allocation.asset_class: allocation.percentage for allocation in allocations}


def calculate_drift(current: AllocationLike, target: AllocationLike) -> Decimal:
    """
    Half the sum of absolute percentage differences over the union of buckets.

    A bucket missing on one side counts as 0%, so the result lies in [0, 100]
    when both sides sum to 100, and swapping the arguments gives the same value.
    """
    current_map = to_percentage_map(current)
    target_map = to_percentage_map(target)
    buckets = set(current_map.keys()) | set(target_map.keys())
    total = sum(
        (
            abs(current_map.get(bucket, Decimal("0")) - target_map.get(bucket, Decimal("0")))
            for bucket in buckets
        ),
        Decimal("0"),
    )
    return Decimal("0.5") * total


def is_rebalance_required(
    drift: Decimal, threshold: Decimal = DEFAULT_DRIFT_THRESHOLD_PCT
) -> bool:
    return drift > threshold
