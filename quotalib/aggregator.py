"""
Per-client usage aggregation.

Rows are classified by meter category:
- Virtual Machines: core_hours += quantity x cores(meter sub-category)
- Storage: Disk/SSD/HDD -> disk_storage_gb, Blob/Object -> blob_storage_gb
- Networking: Data Out -> data_out_gb, Data In -> data_in_gb
Everything else is ignored.

Inventory storage is merged on top afterwards. The merge is additive even
when billing rows already reported the same storage, so storage can be
double counted when both sources cover it.
"""
import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, Optional

from .constants import (
    BLOB_SUBCATEGORY_PATTERN,
    DATA_IN_SUBCATEGORY_PATTERN,
    DATA_OUT_SUBCATEGORY_PATTERN,
    DEFAULT_SKU_CORES,
    DISK_SUBCATEGORY_PATTERN,
    METER_NETWORKING,
    METER_STORAGE,
    METER_VIRTUAL_MACHINES,
)
from .models import Inventory, UsageRow, UsageTotals
from .normalizer import ClientKeying
from .skus import SkuResolver, canonical_sku_name, estimate_cores

logger = logging.getLogger(__name__)

ClientUsage = Dict[str, UsageTotals]

_DISK = re.compile(DISK_SUBCATEGORY_PATTERN, re.IGNORECASE)
_BLOB = re.compile(BLOB_SUBCATEGORY_PATTERN, re.IGNORECASE)
_DATA_OUT = re.compile(DATA_OUT_SUBCATEGORY_PATTERN, re.IGNORECASE)
_DATA_IN = re.compile(DATA_IN_SUBCATEGORY_PATTERN, re.IGNORECASE)


def cores_for_billing_sku(
    sku_name: str,
    resolver: Optional[SkuResolver] = None,
    inventory: Optional[Inventory] = None,
) -> int:
    """
    vCPUs for a SKU named in a billing record.

    Billing names do not always match discovery names, so this checks the
    SKU core table, then discovered instances of the same size, then the
    name heuristic, then DEFAULT_SKU_CORES.
    """
    if resolver is not None:
        cores = resolver.lookup(sku_name)
        if cores is not None:
            return cores

    if inventory is not None and sku_name:
        wanted = {sku_name.lower(), canonical_sku_name(sku_name).lower()}
        for resource in inventory.compute:
            if resource.sku and resource.sku.lower() in wanted and resource.cores > 0:
                return resource.cores

    estimated = estimate_cores(sku_name)
    if estimated is not None:
        return estimated

    logger.debug(f"No core count for billing SKU '{sku_name}', using {DEFAULT_SKU_CORES}")
    return DEFAULT_SKU_CORES


def aggregate_usage(
    rows: Iterable[UsageRow],
    resolver: Optional[SkuResolver] = None,
    inventory: Optional[Inventory] = None,
) -> ClientUsage:
    """Accumulate canonical rows into per-client totals."""
    usage: ClientUsage = {}
    core_cache: Dict[str, int] = {}

    for row in rows:
        totals = usage.setdefault(row.client, UsageTotals())
        category = row.meter_category
        sub_category = row.meter_sub_category or ''

        if category == METER_VIRTUAL_MACHINES:
            if sub_category not in core_cache:
                core_cache[sub_category] = cores_for_billing_sku(sub_category, resolver, inventory)
            totals.add('core_hours', row.quantity * core_cache[sub_category])

        elif category == METER_STORAGE:
            if _DISK.search(sub_category):
                totals.add('disk_storage_gb', row.quantity)
            elif _BLOB.search(sub_category):
                totals.add('blob_storage_gb', row.quantity)

        elif category == METER_NETWORKING:
            if _DATA_OUT.search(sub_category):
                totals.add('data_out_gb', row.quantity)
            elif _DATA_IN.search(sub_category):
                totals.add('data_in_gb', row.quantity)

    logger.info(f"Aggregated usage for {len(usage)} client(s)")
    return usage


def merge_inventory_storage(
    usage: ClientUsage,
    inventory: Optional[Inventory],
    keying: ClientKeying,
) -> ClientUsage:
    """Add discovered blob and disk sizes to each owning client's storage totals."""
    if inventory is None:
        return usage

    for account in inventory.storage_accounts:
        totals = usage.setdefault(keying.client_for(account.tags), UsageTotals())
        totals.add('blob_storage_gb', account.size_gb)

    for disk in inventory.disks:
        totals = usage.setdefault(keying.client_for(disk.tags), UsageTotals())
        totals.add('disk_storage_gb', disk.size_gb)

    return usage


def category_breakdown(rows: Iterable[UsageRow]) -> Dict[str, Dict[str, float]]:
    """Raw quantity per meter category per client, for the detailed view."""
    breakdown: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for row in rows:
        breakdown[row.client][row.meter_category or 'Unknown'] += row.quantity
    return {client: dict(categories) for client, categories in breakdown.items()}
