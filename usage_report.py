#!/usr/bin/env python3
"""
Azure Usage vs Quota Report

Reports per-client usage (core-hours, data transfer, disk and blob storage)
for one subscription and compares it against configured quotas. Usage comes
from Cost Management when available, falling back to Consumption usage
details and finally to an estimate built from the live resource inventory.

Usage:
    # Overall usage for last full month (default)
    python3 usage_report.py --subscription-id xxx

    # Per-client usage from the Client tag
    python3 usage_report.py --subscription-id xxx --use-client-tags

    # Custom range, restricted to two resource groups
    python3 usage_report.py --start-date 2026-01-01 --end-date 2026-01-31 \\
        --resource-groups rg-clienta,rg-clientb

    # Write a starter config file
    python3 usage_report.py --generate-config > quota-config.yaml
"""
import argparse
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from quotalib.acquisition import acquire_usage, build_default_strategies
from quotalib.aggregator import aggregate_usage, category_breakdown, merge_inventory_storage
from quotalib.config import generate_sample_config, load_config, load_quotas
from quotalib.constants import MODE_USAGE_VS_QUOTA, REPORT_METRIC_FIELDS
from quotalib.inventory import discover_inventory
from quotalib.models import DateRange
from quotalib.normalizer import ClientKeying
from quotalib.quota import compare_usage, over_quota_metrics, records_by_mode
from quotalib.skus import SkuResolver
from quotalib.transports import check_session, fetch_sku_catalog, get_credential
from quotalib.utils import (
    ReportError,
    get_last_full_month,
    get_timestamp,
    parse_date_range,
    setup_logging,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Report
# =============================================================================

def run_report(
    credential,
    config: Dict[str, Any],
    date_range: DateRange,
    detailed: bool = False,
) -> Dict[str, Any]:
    """
    Run inventory, acquisition, aggregation and quota comparison.

    Returns:
        Report dict with records, usage source, warnings and (if detailed)
        the per-client meter category breakdown.
    """
    subscription_id = config['subscription_id']
    resource_groups = config.get('resource_groups') or []
    parallel_workers = config.get('parallel_workers') or 1
    keying = ClientKeying(
        use_client_tags=bool(config.get('use_client_tags')),
        default_client=config.get('default_client'),
        client_tag=config.get('client_tag'),
    )
    quotas = load_quotas(config)

    resolver = SkuResolver(
        catalog_fetcher=partial(fetch_sku_catalog, credential, subscription_id),
        regions=config.get('regions'),
        parallel_workers=parallel_workers,
    )

    logger.info(f"Discovering resources in subscription {subscription_id}")
    inventory = discover_inventory(
        credential, subscription_id, resolver,
        resource_groups=resource_groups,
        parallel_workers=parallel_workers,
    )

    strategies = build_default_strategies(
        credential, subscription_id, inventory, keying,
        resource_groups=resource_groups,
        max_count=config.get('max_records'),
    )
    acquired = acquire_usage(date_range, strategies)

    usage = aggregate_usage(acquired.rows, resolver, inventory)
    usage = merge_inventory_storage(usage, inventory, keying)
    records = compare_usage(usage, quotas, keying.use_client_tags)

    warnings: List[str] = []
    if date_range.is_future():
        warnings.append(f"End date {date_range.end.isoformat()} is in the future; usage is incomplete.")
    if acquired.estimated:
        warnings.append("Billing data unavailable; core-hours are estimated from the current inventory.")
    if inventory.compute_degraded:
        warnings.append("Compute discovery failed; SKU cores fall back to a static table.")
    if inventory.storage_degraded:
        warnings.append("Storage discovery failed; inventory storage totals are incomplete.")
    if not records:
        warnings.append("No usage found for the selected period.")

    report: Dict[str, Any] = {
        'timestamp': get_timestamp(),
        'subscription_id': subscription_id,
        'period': date_range.to_dict(),
        'mode': 'client_tags' if keying.use_client_tags else 'overall',
        'usage_source': acquired.source,
        'estimated': acquired.estimated,
        'attempts': [
            {'source': a.source, 'usable': a.usable, 'error': a.error}
            for a in acquired.attempts
        ],
        'warnings': warnings,
        'records': records,
    }
    if detailed:
        report['breakdown'] = category_breakdown(acquired.rows)

    return report


# =============================================================================
# Rendering
# =============================================================================

def _format_cell(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:,.2f}"
    return str(value)


def record_columns(mode: str) -> List[str]:
    """Metric columns for a mode, usage and remaining interleaved."""
    columns = []
    for usage_field, remain_field in REPORT_METRIC_FIELDS.values():
        columns.append(usage_field)
        if mode == MODE_USAGE_VS_QUOTA:
            columns.append(remain_field)
    return columns


def report_to_json(report: Dict[str, Any]) -> str:
    data = dict(report)
    data['records'] = [r.to_dict() for r in report['records']]
    return json.dumps(data, indent=2, default=str)


def render_report(report: Dict[str, Any], console: Optional[Console] = None) -> None:
    """Print the report as one rich table per mode, plus warnings and breakdown."""
    console = console or Console()
    period = report['period']

    console.print(
        f"[bold]Usage Report[/bold]  {period['start']} to {period['end']}  "
        f"(source: [cyan]{report['usage_source']}[/cyan])"
    )

    remain_for = dict(REPORT_METRIC_FIELDS.values())

    for mode, group in records_by_mode(report['records']).items():
        table = Table(title=mode)
        table.add_column("Client", style="cyan")

        columns = [c for c in record_columns(mode) if any(c in r.values for r in group)]
        for column in columns:
            table.add_column(column, justify="right")

        for record in group:
            # Over-quota metrics are highlighted in both their columns
            highlight = set()
            for usage_field in over_quota_metrics(record):
                highlight.update((usage_field, remain_for[usage_field]))

            cells = []
            for column in columns:
                cell = _format_cell(record.values.get(column, ''))
                if column in highlight:
                    cell = f"[red]{cell}[/red]"
                cells.append(cell)
            table.add_row(record.client, *cells)

        console.print(table)

    if report.get('breakdown'):
        table = Table(title="Usage by Meter Category")
        table.add_column("Client", style="cyan")
        table.add_column("Meter Category")
        table.add_column("Quantity", justify="right", style="green")
        for client, categories in sorted(report['breakdown'].items()):
            for category, quantity in sorted(categories.items()):
                table.add_row(client, category, f"{quantity:,.2f}")
        console.print(table)

    if report['warnings']:
        console.print(Panel(
            "\n".join(report['warnings']),
            title="Warnings",
            border_style="yellow",
        ))


# =============================================================================
# Main
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Azure Usage vs Quota Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Overall usage for last full month (default)
  python3 usage_report.py --subscription-id xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx

  # Per-client usage from a custom tag
  python3 usage_report.py --use-client-tags --client-tag Tenant

  # Last 30 days as JSON
  python3 usage_report.py --last-30-days --json
"""
    )

    # Client keying
    parser.add_argument('--use-client-tags', action='store_true',
                        help='Group usage by the client tag instead of one overall client')
    parser.add_argument('--default-client', help='Client name used in overall mode (default: Default)')
    parser.add_argument('--client-tag', help='Tag key holding the client name (default: Client)')

    # Date range - default to last full month
    default_start, default_end = get_last_full_month()

    parser.add_argument('--start-date', default=default_start,
                        help=f'Start date YYYY-MM-DD (default: {default_start} - last full month)')
    parser.add_argument('--end-date', default=default_end,
                        help=f'End date YYYY-MM-DD, inclusive (default: {default_end})')
    parser.add_argument('--last-30-days', action='store_true',
                        help='Use the last 30 days instead of last full month')

    # Scope
    parser.add_argument('--subscription-id', help='Azure subscription ID')
    parser.add_argument('--resource-groups',
                        help='Comma-separated resource groups to include (default: all)')
    parser.add_argument('--regions',
                        help='Comma-separated regions probed for VM SKU vCPU counts')

    # Tuning
    parser.add_argument('--max-records', type=int,
                        help='Maximum usage detail records fetched by the fallback sources')
    parser.add_argument('--parallel-workers', type=int,
                        help='Threads for SKU probes and storage discovery (default: 1, serial)')

    # Output
    parser.add_argument('--detailed', action='store_true',
                        help='Include usage broken down by meter category')
    parser.add_argument('--json', action='store_true', help='Print the report as JSON')
    parser.add_argument('--config', help='Path to YAML config file')
    parser.add_argument('--generate-config', action='store_true',
                        help='Print a sample config file and exit')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    parser.add_argument('--redact-logs', action='store_true',
                        help='Hash subscription IDs in log output')

    return parser


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        return

    setup_logging(args.log_level or 'INFO', redact=args.redact_logs)

    try:
        config = load_config(args)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    if config.get('log_level') and config['log_level'] != (args.log_level or 'INFO'):
        setup_logging(config['log_level'], redact=args.redact_logs)

    if not config.get('subscription_id'):
        parser.error("--subscription-id required (or set subscription_id in config / QUOTA_SUBSCRIPTION_ID)")

    # Handle --last-30-days override
    if args.last_30_days:
        today = datetime.now(timezone.utc).date()
        args.end_date = today.isoformat()
        args.start_date = (today - timedelta(days=29)).isoformat()
        logger.info(f"Using last 30 days: {args.start_date} to {args.end_date}")

    try:
        date_range = parse_date_range(args.start_date, args.end_date)
        if date_range.is_future():
            logger.warning(f"End date {date_range.end} is in the future; usage will be incomplete")

        credential = get_credential()
        check_session(credential)

        logger.info(f"Reporting usage for {date_range.start} to {date_range.end}")
        report = run_report(credential, config, date_range, detailed=args.detailed)
    except ReportError as e:
        logger.error(str(e))
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    if args.json:
        print(report_to_json(report))
    else:
        render_report(report)


if __name__ == '__main__':
    main()
