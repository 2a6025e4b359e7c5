"""
Azure transports for credentials, SKU catalogs, cost queries and usage details.

Each function returns raw, source-shaped data; quotalib.normalizer turns it
into UsageRow objects.
"""
import logging
from itertools import islice
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.consumption import ConsumptionManagementClient
from azure.mgmt.costmanagement import CostManagementClient
from azure.mgmt.costmanagement.models import (
    QueryAggregation,
    QueryComparisonExpression,
    QueryDataset,
    QueryDefinition,
    QueryFilter,
    QueryGrouping,
    QueryTimePeriod,
)

from .constants import (
    AZURE_MGMT_SCOPE,
    AZURE_MGMT_URL,
    CONSUMPTION_API_VERSION,
    DEFAULT_MAX_RECORDS,
    QUERY_GROUPING_DIMENSIONS,
)
from .models import DateRange
from .utils import AuthError, ThrottledError, retry_with_backoff

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60


# =============================================================================
# Credentials
# =============================================================================

def get_credential():
    """Get Azure credential. In Cloud Shell, uses managed identity."""
    return DefaultAzureCredential()


def get_bearer_token(credential) -> str:
    """Acquire a bearer token for the Azure management API."""
    return credential.get_token(AZURE_MGMT_SCOPE).token


def check_session(credential) -> None:
    """Fail fast when no authenticated session is available."""
    try:
        get_bearer_token(credential)
    except Exception as e:
        raise AuthError(f"No authenticated Azure session: {e}", original_error=e) from e


# =============================================================================
# SKU Catalog
# =============================================================================

def fetch_sku_catalog(credential, subscription_id: str, region: str) -> Dict[str, int]:
    """Return {vm sku name: vCPUs} from the Resource SKUs API for one region."""
    compute_client = ComputeManagementClient(credential, subscription_id)
    catalog: Dict[str, int] = {}

    for sku in compute_client.resource_skus.list(filter=f"location eq '{region}'"):
        if getattr(sku, 'resource_type', None) != 'virtualMachines' or not sku.name:
            continue
        for capability in getattr(sku, 'capabilities', None) or []:
            if capability.name == 'vCPUs':
                try:
                    catalog[sku.name] = int(capability.value)
                except (TypeError, ValueError):
                    logger.debug(f"Unparseable vCPUs for {sku.name}: {capability.value}")
                break

    return catalog


# =============================================================================
# Cost Management Query (primary)
# =============================================================================

def build_cost_query(
    date_range: DateRange,
    client_tag: str,
    resource_groups: Optional[Sequence[str]] = None,
) -> QueryDefinition:
    """Usage-quantity query grouped by the report dimensions and the client tag."""
    grouping = [QueryGrouping(type="Dimension", name=QUERY_GROUPING_DIMENSIONS[0])]
    grouping.append(QueryGrouping(type="TagKey", name=client_tag))
    grouping.extend(QueryGrouping(type="Dimension", name=d) for d in QUERY_GROUPING_DIMENSIONS[1:])

    query_filter = None
    if resource_groups:
        query_filter = QueryFilter(
            dimensions=QueryComparisonExpression(
                name="ResourceGroupName",
                operator="In",
                values=list(resource_groups)
            )
        )

    return QueryDefinition(
        type="Usage",
        timeframe="Custom",
        time_period=QueryTimePeriod(
            from_property=date_range.start_datetime,
            to=date_range.end_datetime
        ),
        dataset=QueryDataset(
            aggregation={
                "totalUsage": QueryAggregation(name="UsageQuantity", function="Sum")
            },
            grouping=grouping,
            filter=query_filter
        )
    )


def query_costs(
    credential,
    subscription_id: str,
    date_range: DateRange,
    client_tag: str,
    resource_groups: Optional[Sequence[str]] = None,
) -> Tuple[Optional[List[str]], List[Any]]:
    """
    Run the Cost Management usage query.

    Returns:
        (column names or None, rows)
    """
    # A missing or expired credential surfaces here rather than mid-query
    get_bearer_token(credential)

    client = CostManagementClient(credential)
    scope = f"/subscriptions/{subscription_id}"
    query = build_cost_query(date_range, client_tag, resource_groups)

    result = client.query.usage(scope=scope, parameters=query)

    if result is None or result.rows is None:
        logger.warning("No usage data returned from Cost Management")
        return None, []

    columns = [col.name for col in result.columns] if result.columns else None
    return columns, list(result.rows)


# =============================================================================
# Consumption Usage Details (secondary)
# =============================================================================

def _usage_filter(date_range: DateRange) -> str:
    return (
        f"properties/usageStart ge '{date_range.start.isoformat()}' "
        f"and properties/usageEnd le '{date_range.end.isoformat()}'"
    )


def list_usage_details(
    credential,
    subscription_id: str,
    date_range: DateRange,
    max_count: int = DEFAULT_MAX_RECORDS,
) -> List[Any]:
    """Usage detail records from the Consumption SDK, capped at max_count."""
    client = ConsumptionManagementClient(credential, subscription_id)
    pager = client.usage_details.list(
        scope=f"/subscriptions/{subscription_id}",
        expand="properties/meterDetails",
        filter=_usage_filter(date_range),
        top=max_count,
    )
    return list(islice(pager, max_count))


# =============================================================================
# Consumption REST API (tertiary)
# =============================================================================

@retry_with_backoff()
def _get_page(url: str, headers: Dict[str, str], params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    resp = requests.get(url, headers=headers, params=params, timeout=REQUEST_TIMEOUT)
    if resp.status_code == 429:
        raise ThrottledError(f"Throttled by {url}")
    resp.raise_for_status()
    return resp.json()


def fetch_usage_details_rest(
    credential,
    subscription_id: str,
    date_range: DateRange,
    max_count: int = DEFAULT_MAX_RECORDS,
) -> List[Dict[str, Any]]:
    """Usage detail records fetched directly from the Consumption REST API."""
    headers = {
        "Authorization": f"Bearer {get_bearer_token(credential)}",
        "Content-Type": "application/json",
    }
    url: Optional[str] = (
        f"{AZURE_MGMT_URL}/subscriptions/{subscription_id}"
        f"/providers/Microsoft.Consumption/usageDetails"
    )
    params: Optional[Dict[str, Any]] = {
        "api-version": CONSUMPTION_API_VERSION,
        "$expand": "properties/meterDetails",
        "$filter": _usage_filter(date_range),
        "$top": max_count,
    }

    records: List[Dict[str, Any]] = []
    while url and len(records) < max_count:
        data = _get_page(url, headers, params)
        records.extend(data.get("value", []))
        # nextLink already carries the query string
        url = data.get("nextLink")
        params = None

    return records[:max_count]
