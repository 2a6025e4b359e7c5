"""
Azure usage vs quota report library.
"""
# Import constants module for easy access
from . import constants
from .acquisition import (
    AcquisitionResult,
    CostQueryStrategy,
    EstimationStrategy,
    TierResult,
    UsageDetailStrategy,
    acquire_usage,
    build_default_strategies,
)
from .aggregator import aggregate_usage, category_breakdown, merge_inventory_storage
from .constants import (
    DEFAULT_CLIENT_NAME,
    DEFAULT_CLIENT_TAG,
    DEFAULT_SKU_CORES,
    MAX_ESTIMATION_HOURS,
    MODE_NO_QUOTA_DEFINED,
    MODE_NO_QUOTA_FOR_CLIENT,
    MODE_USAGE_VS_QUOTA,
    UNKNOWN_CLIENT,
)
from .models import (
    DateRange,
    Inventory,
    Quota,
    ReportRecord,
    ResourceRecord,
    UsageRow,
    UsageTotals,
)
from .normalizer import ClientKeying
from .quota import compare_usage, over_quota_metrics
from .skus import SkuResolver, canonical_sku_name, estimate_cores
from .utils import (
    AuthError,
    InvalidDateRangeError,
    ReportError,
    UsageUnavailableError,
    parse_date_range,
    setup_logging,
    tags_to_dict,
)

__all__ = [
    # Constants
    'constants',
    'DEFAULT_CLIENT_NAME',
    'DEFAULT_CLIENT_TAG',
    'DEFAULT_SKU_CORES',
    'MAX_ESTIMATION_HOURS',
    'MODE_NO_QUOTA_DEFINED',
    'MODE_NO_QUOTA_FOR_CLIENT',
    'MODE_USAGE_VS_QUOTA',
    'UNKNOWN_CLIENT',
    # Models
    'DateRange',
    'Inventory',
    'Quota',
    'ReportRecord',
    'ResourceRecord',
    'UsageRow',
    'UsageTotals',
    # SKUs
    'SkuResolver',
    'canonical_sku_name',
    'estimate_cores',
    # Acquisition
    'AcquisitionResult',
    'CostQueryStrategy',
    'EstimationStrategy',
    'TierResult',
    'UsageDetailStrategy',
    'acquire_usage',
    'build_default_strategies',
    # Aggregation and quotas
    'ClientKeying',
    'aggregate_usage',
    'category_breakdown',
    'merge_inventory_storage',
    'compare_usage',
    'over_quota_metrics',
    # Utils
    'AuthError',
    'InvalidDateRangeError',
    'ReportError',
    'UsageUnavailableError',
    'parse_date_range',
    'setup_logging',
    'tags_to_dict',
]
