"""
Quota comparison.

Each client in the aggregated usage gets exactly one report record:

- overall mode, no quota     -> usage only, "Usage Only (No Quota Defined)"
- quota configured (any mode) -> "used / quota" plus remaining, "Usage vs Quota"
- tag mode, no quota          -> usage only, "Usage Only (No Quota for Client)"

Remaining is quota minus used and goes negative when a client is over quota.
Values are rounded to 2 decimals here only; totals keep full precision.
"""
import logging
from typing import Dict, List, Mapping

from .constants import (
    MODE_NO_QUOTA_DEFINED,
    MODE_NO_QUOTA_FOR_CLIENT,
    MODE_USAGE_VS_QUOTA,
    REPORT_METRIC_FIELDS,
)
from .models import Quota, ReportRecord, UsageTotals

logger = logging.getLogger(__name__)


def format_amount(value: float) -> str:
    """9500.0 -> '9500', 12.345 -> '12.35'."""
    return f"{value:.2f}".rstrip('0').rstrip('.')


def _usage_only(client: str, mode: str, usage: UsageTotals) -> ReportRecord:
    values = {
        usage_field: round(getattr(usage, metric), 2)
        for metric, (usage_field, _) in REPORT_METRIC_FIELDS.items()
    }
    return ReportRecord(client=client, mode=mode, values=values)


def _usage_vs_quota(client: str, usage: UsageTotals, quota: Quota) -> ReportRecord:
    values = {}
    for metric, (usage_field, remain_field) in REPORT_METRIC_FIELDS.items():
        used = getattr(usage, metric)
        limit = getattr(quota, metric)
        values[usage_field] = f"{format_amount(used)} / {format_amount(limit)}"
        values[remain_field] = round(limit - used, 2)
    return ReportRecord(client=client, mode=MODE_USAGE_VS_QUOTA, values=values)


def compare_usage(
    client_usage: Mapping[str, UsageTotals],
    quotas: Mapping[str, Quota],
    use_client_tags: bool,
) -> List[ReportRecord]:
    """Build one report record per client, sorted by client key."""
    records = []
    for client in sorted(client_usage):
        usage = client_usage[client]
        quota = quotas.get(client)

        if quota is not None:
            record = _usage_vs_quota(client, usage, quota)
        elif use_client_tags:
            record = _usage_only(client, MODE_NO_QUOTA_FOR_CLIENT, usage)
        else:
            record = _usage_only(client, MODE_NO_QUOTA_DEFINED, usage)

        over = over_quota_metrics(record)
        if over:
            logger.warning(f"Client {client} is over quota for: {', '.join(over)}")
        records.append(record)

    unmatched = sorted(set(quotas) - set(client_usage))
    if unmatched:
        logger.info(f"Quotas configured for clients with no usage: {', '.join(unmatched)}")

    return records


def over_quota_metrics(record: ReportRecord) -> List[str]:
    """Usage field names whose remaining value is negative."""
    return [
        usage_field
        for usage_field, remain_field in REPORT_METRIC_FIELDS.values()
        if record.values.get(remain_field, 0) < 0
    ]


def records_by_mode(records: List[ReportRecord]) -> Dict[str, List[ReportRecord]]:
    """Group records by mode, keeping client order within each group."""
    grouped: Dict[str, List[ReportRecord]] = {}
    for record in records:
        grouped.setdefault(record.mode, []).append(record)
    return grouped
