"""
Record normalizers: one per usage source, each producing canonical UsageRow objects.

Source shapes handled:
- Cost Management query rows: positional arrays with column names, positional
  arrays in QUERY_POSITIONAL_COLUMNS order, or dicts keyed by column name
- Usage detail records: Consumption SDK models (legacy or modern) or REST
  JSON dicts, with fields at the top level or under `properties`
- Inventory compute resources for synthetic estimation
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .constants import (
    DEFAULT_CLIENT_NAME,
    DEFAULT_CLIENT_TAG,
    KIND_SCALE_SET,
    METER_VIRTUAL_MACHINES,
    QUERY_POSITIONAL_COLUMNS,
    TIER_COST_QUERY,
    TIER_ESTIMATION,
    UNKNOWN_CLIENT,
)
from .models import ResourceRecord, UsageRow
from .utils import extract_resource_group, get_tag, tags_to_dict

logger = logging.getLogger(__name__)


# =============================================================================
# Shared helpers
# =============================================================================

@dataclass(frozen=True)
class ClientKeying:
    """How rows are assigned to clients."""
    use_client_tags: bool = False
    default_client: str = DEFAULT_CLIENT_NAME
    client_tag: str = DEFAULT_CLIENT_TAG

    def client_for(self, tags: Dict[str, str]) -> str:
        """Tag value in tag mode (missing -> Unknown), the default client otherwise."""
        if not self.use_client_tags:
            return self.default_client or DEFAULT_CLIENT_NAME
        value = get_tag(tags, self.client_tag)
        return value.strip() if value and value.strip() else UNKNOWN_CLIENT


def to_quantity(value: Any) -> float:
    """Coerce a quantity to a non-negative float. Refunds/credits count as zero."""
    try:
        quantity = float(value)
    except (TypeError, ValueError):
        return 0.0
    if quantity != quantity or quantity < 0:  # NaN or negative
        return 0.0
    return quantity


def _text(value: Any) -> str:
    return '' if value is None else str(value)


def resource_type_from_id(resource_id: str) -> str:
    """'/subscriptions/../providers/Microsoft.Compute/virtualMachines/vm1' -> 'Microsoft.Compute/virtualMachines'."""
    match = re.search(r'/providers/([^/]+)/([^/]+)', resource_id or '', re.IGNORECASE)
    if not match:
        return ''
    return f"{match.group(1)}/{match.group(2)}"


# =============================================================================
# Cost Management query rows
# =============================================================================

def _row_to_dict(row: Any, columns: Optional[Sequence[str]]) -> Dict[str, Any]:
    if isinstance(row, dict):
        return row
    names = list(columns) if columns else QUERY_POSITIONAL_COLUMNS
    return dict(zip(names, row))


def query_row_has_meter_category(row: Any, columns: Optional[Sequence[str]] = None) -> bool:
    """Whether a raw query row carries a MeterCategory field."""
    return _row_to_dict(row, columns).get('MeterCategory') is not None


def normalize_query_row(
    row: Any,
    columns: Optional[Sequence[str]],
    keying: ClientKeying,
) -> UsageRow:
    """Map one Cost Management query row to a UsageRow."""
    data = _row_to_dict(row, columns)

    tags: Dict[str, str] = {}
    if data.get('TagKey') and data.get('TagValue') is not None:
        tags[_text(data['TagKey'])] = _text(data['TagValue'])

    return UsageRow(
        resource_group=_text(data.get('ResourceGroup') or data.get('ResourceGroupName')),
        client=keying.client_for(tags),
        meter_category=_text(data.get('MeterCategory')),
        meter_sub_category=_text(data.get('MeterSubCategory')),
        resource_type=_text(data.get('ResourceType')),
        service_name=_text(data.get('ServiceName')),
        quantity=to_quantity(data.get('UsageQuantity', data.get('totalUsage'))),
        source=TIER_COST_QUERY,
    )


def normalize_query_rows(
    columns: Optional[Sequence[str]],
    rows: Iterable[Any],
    keying: ClientKeying,
) -> List[UsageRow]:
    return [
        normalize_query_row(row, columns, keying)
        for row in rows
    ]


# =============================================================================
# Usage detail records
# =============================================================================

def _snake(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def _get(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, _snake(name), None)


def _detail_sources(record: Any) -> List[Any]:
    """Places a detail field may live, most specific last."""
    sources = [record]
    properties = _get(record, 'properties')
    if properties is not None:
        sources.append(properties)
    for source in list(sources):
        meter_details = _get(source, 'meterDetails')
        if meter_details is not None:
            sources.append(meter_details)
    return sources


def detail_field(record: Any, *names: str) -> Any:
    """First non-empty value of any of names across the record's field sources."""
    for source in _detail_sources(record):
        for name in names:
            value = _get(source, name)
            if value not in (None, ''):
                return value
    return None


def detail_has_meter_category(record: Any) -> bool:
    """Whether a raw usage detail record carries a meter category."""
    return detail_field(record, 'meterCategory') is not None


def detail_resource_group(record: Any) -> str:
    rg = detail_field(record, 'resourceGroupName', 'resourceGroup')
    if rg:
        return _text(rg)
    resource_id = detail_field(record, 'resourceId', 'instanceId', 'instanceName')
    if resource_id and '/' in str(resource_id):
        return extract_resource_group(str(resource_id))
    return ''


def normalize_usage_detail(
    record: Any,
    source: str,
    keying: ClientKeying,
) -> UsageRow:
    """Map one usage detail record (SDK model or REST dict) to a UsageRow."""
    tags = tags_to_dict(detail_field(record, 'tags'))

    resource_type = detail_field(record, 'resourceType')
    if not resource_type:
        resource_type = resource_type_from_id(
            _text(detail_field(record, 'resourceId', 'instanceId', 'instanceName'))
        )

    return UsageRow(
        resource_group=detail_resource_group(record),
        client=keying.client_for(tags),
        meter_category=_text(detail_field(record, 'meterCategory')),
        meter_sub_category=_text(detail_field(record, 'meterSubCategory')),
        resource_type=_text(resource_type),
        service_name=_text(detail_field(record, 'serviceName', 'consumedService', 'serviceFamily')),
        quantity=to_quantity(detail_field(record, 'quantity', 'usageQuantity')),
        source=source,
    )


# =============================================================================
# Synthetic estimates
# =============================================================================

def normalize_estimate(
    resource: ResourceRecord,
    hours_in_period: float,
    keying: ClientKeying,
) -> UsageRow:
    """
    Synthetic VM usage for one compute resource.

    Quantity is instance-hours; aggregation multiplies by the SKU's cores,
    giving cores x hours for a VM and total_cores x hours for a scale set.
    """
    instances = resource.capacity if resource.kind == KIND_SCALE_SET else 1
    return UsageRow(
        resource_group=resource.resource_group,
        client=keying.client_for(resource.tags),
        meter_category=METER_VIRTUAL_MACHINES,
        meter_sub_category=resource.sku,
        resource_type=resource.metadata.get('resource_type', ''),
        service_name=METER_VIRTUAL_MACHINES,
        quantity=float(max(instances, 0)) * hours_in_period,
        estimated=True,
        source=TIER_ESTIMATION,
    )
