"""
Usage acquisition with tiered fallback.

Tiers run strictly in order and stop at the first usable result:

1. cost_query          - Cost Management query, resource-group filter pushed down
2. consumption_details - Consumption SDK usage details, filtered client-side
3. consumption_rest    - Consumption REST usage details, filtered client-side
4. estimation          - synthetic VM usage derived from the inventory

Each strategy returns a TierResult instead of raising, so the driver only
ever inspects `usable`. A result is unusable when the tier raised, returned
nothing, or its first record has no meter category.
"""
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .constants import (
    DEFAULT_MAX_RECORDS,
    MAX_ESTIMATION_HOURS,
    TIER_CONSUMPTION_DETAILS,
    TIER_CONSUMPTION_REST,
    TIER_COST_QUERY,
    TIER_ESTIMATION,
)
from .models import DateRange, Inventory, UsageRow
from .normalizer import (
    ClientKeying,
    detail_has_meter_category,
    detail_resource_group,
    normalize_estimate,
    normalize_query_rows,
    normalize_usage_detail,
    query_row_has_meter_category,
)
from .utils import UsageUnavailableError, in_resource_groups

logger = logging.getLogger(__name__)

# (date_range, client_tag, resource_groups) -> (columns, rows)
QueryFn = Callable[[DateRange, str, Optional[Sequence[str]]], Tuple[Optional[List[str]], List[Any]]]
# (date_range, max_count) -> records
DetailFn = Callable[[DateRange, int], List[Any]]


@dataclass
class TierResult:
    """Outcome of one acquisition tier."""
    source: str
    rows: List[UsageRow] = field(default_factory=list)
    usable: bool = False
    error: Optional[str] = None

    @classmethod
    def failed(cls, source: str, error: Any) -> 'TierResult':
        return cls(source=source, usable=False, error=str(error))


@dataclass
class AcquisitionResult:
    """Rows from the winning tier plus every attempt made to get them."""
    rows: List[UsageRow]
    source: str
    attempts: List[TierResult] = field(default_factory=list)

    @property
    def estimated(self) -> bool:
        return self.source == TIER_ESTIMATION


# =============================================================================
# Strategies
# =============================================================================

class CostQueryStrategy:
    """Primary tier: grouped Cost Management query."""

    name = TIER_COST_QUERY

    def __init__(
        self,
        query_fn: QueryFn,
        keying: ClientKeying,
        resource_groups: Optional[Sequence[str]] = None,
    ):
        self.query_fn = query_fn
        self.keying = keying
        self.resource_groups = list(resource_groups or [])

    def acquire(self, date_range: DateRange) -> TierResult:
        try:
            columns, rows = self.query_fn(date_range, self.keying.client_tag, self.resource_groups or None)
        except Exception as e:
            return TierResult.failed(self.name, e)

        if not rows:
            return TierResult.failed(self.name, "query returned no rows")
        if not query_row_has_meter_category(rows[0], columns):
            return TierResult.failed(self.name, "query rows have no MeterCategory")

        return TierResult(
            source=self.name,
            rows=normalize_query_rows(columns, rows, self.keying),
            usable=True,
        )


class UsageDetailStrategy:
    """Detail-record tier; the fetch call has no filter so resource groups are applied here."""

    def __init__(
        self,
        name: str,
        fetch_fn: DetailFn,
        keying: ClientKeying,
        resource_groups: Optional[Sequence[str]] = None,
        max_count: int = DEFAULT_MAX_RECORDS,
    ):
        self.name = name
        self.fetch_fn = fetch_fn
        self.keying = keying
        self.resource_groups = list(resource_groups or [])
        self.max_count = max_count

    def acquire(self, date_range: DateRange) -> TierResult:
        try:
            records = self.fetch_fn(date_range, self.max_count)
        except Exception as e:
            return TierResult.failed(self.name, e)

        records = [
            r for r in records or []
            if in_resource_groups(detail_resource_group(r), self.resource_groups)
        ]

        if not records:
            return TierResult.failed(self.name, "no usage detail records")
        if not detail_has_meter_category(records[0]):
            return TierResult.failed(self.name, "usage details have no meter category")

        return TierResult(
            source=self.name,
            rows=[normalize_usage_detail(r, self.name, self.keying) for r in records],
            usable=True,
        )


def estimation_hours(date_range: DateRange) -> float:
    """Hours billed per instance by the estimate, capped at one month."""
    return min(float(MAX_ESTIMATION_HOURS), date_range.total_hours)


class EstimationStrategy:
    """Last tier: one synthetic Virtual Machines row per discovered VM or scale set."""

    name = TIER_ESTIMATION

    def __init__(self, inventory: Optional[Inventory], keying: ClientKeying):
        self.inventory = inventory
        self.keying = keying

    def acquire(self, date_range: DateRange) -> TierResult:
        inventory = self.inventory
        if inventory is None or (inventory.compute_degraded and not inventory.compute):
            return TierResult.failed(self.name, "no compute inventory to estimate from")

        hours = estimation_hours(date_range)
        rows = [normalize_estimate(r, hours, self.keying) for r in inventory.compute]
        logger.warning(
            f"Estimating usage from inventory: {len(rows)} compute resource(s) "
            f"at {hours:,.0f} hours each"
        )
        return TierResult(source=self.name, rows=rows, usable=True)


# =============================================================================
# Driver
# =============================================================================

def acquire_usage(date_range: DateRange, strategies: Sequence[Any]) -> AcquisitionResult:
    """
    Run strategies in order and return the first usable result.

    Raises:
        UsageUnavailableError: every tier was unusable
    """
    attempts: List[TierResult] = []

    for strategy in strategies:
        logger.info(f"Trying usage source: {strategy.name}")
        result = strategy.acquire(date_range)
        attempts.append(result)

        if result.usable:
            logger.info(f"Acquired {len(result.rows):,} usage rows from {result.source}")
            return AcquisitionResult(rows=result.rows, source=result.source, attempts=attempts)

        logger.warning(f"Usage source {strategy.name} unusable: {result.error}")

    tried = ', '.join(f"{a.source} ({a.error})" for a in attempts)
    raise UsageUnavailableError(f"No usage data available from any source: {tried}")


def build_default_strategies(
    credential,
    subscription_id: str,
    inventory: Optional[Inventory],
    keying: ClientKeying,
    resource_groups: Optional[Sequence[str]] = None,
    max_count: int = DEFAULT_MAX_RECORDS,
) -> List[Any]:
    """Azure-backed strategies in fallback order."""
    from . import transports

    return [
        CostQueryStrategy(
            partial(transports.query_costs, credential, subscription_id),
            keying,
            resource_groups,
        ),
        UsageDetailStrategy(
            TIER_CONSUMPTION_DETAILS,
            partial(transports.list_usage_details, credential, subscription_id),
            keying,
            resource_groups,
            max_count,
        ),
        UsageDetailStrategy(
            TIER_CONSUMPTION_REST,
            partial(transports.fetch_usage_details_rest, credential, subscription_id),
            keying,
            resource_groups,
            max_count,
        ),
        EstimationStrategy(inventory, keying),
    ]
