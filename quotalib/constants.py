"""
Constants for the usage quota report.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Byte/Size Conversion Constants
# =============================================================================

BYTES_PER_GB = 1024 ** 3

# =============================================================================
# Time Constants
# =============================================================================

HOURS_PER_DAY = 24
# Estimation never bills more than one 30-day month of runtime
MAX_ESTIMATION_HOURS = 720

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_CLIENT_NAME = "Default"
DEFAULT_CLIENT_TAG = "Client"
UNKNOWN_CLIENT = "Unknown"
DEFAULT_MAX_RECORDS = 10000
DEFAULT_PARALLEL_WORKERS = 1
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_SKU_CORES = 2

# Candidate regions probed (in order) for authoritative SKU vCPU counts
DEFAULT_SKU_REGIONS = [
    'eastus',
    'westus2',
    'westeurope',
    'northeurope',
    'southeastasia',
]

# =============================================================================
# Azure Endpoints
# =============================================================================

AZURE_MGMT_URL = "https://management.azure.com"
AZURE_MGMT_SCOPE = f"{AZURE_MGMT_URL}/.default"
CONSUMPTION_API_VERSION = "2023-05-01"

# =============================================================================
# Resource Kinds
# =============================================================================

KIND_VM = "VM"
KIND_SCALE_SET = "ScaleSet"
KIND_STORAGE_ACCOUNT = "StorageAccount"
KIND_MANAGED_DISK = "ManagedDisk"

COMPUTE_KINDS = (KIND_VM, KIND_SCALE_SET)

# =============================================================================
# Billing Taxonomy
# =============================================================================

METER_VIRTUAL_MACHINES = "Virtual Machines"
METER_STORAGE = "Storage"
METER_NETWORKING = "Networking"

# Regex patterns matched against meter sub-categories
DISK_SUBCATEGORY_PATTERN = r"Disk|SSD|HDD"
BLOB_SUBCATEGORY_PATTERN = r"Blob|Object"
DATA_OUT_SUBCATEGORY_PATTERN = r"Data Out"
DATA_IN_SUBCATEGORY_PATTERN = r"Data In"

# Cost Management grouping dimensions, in query order; the client tag is
# grouped right after the resource group
QUERY_GROUPING_DIMENSIONS = [
    'ResourceGroup',
    'MeterCategory',
    'MeterSubCategory',
    'ResourceType',
    'ServiceName',
]

# Column order assumed for positional query rows that arrive without
# column metadata (aggregation first, then groupings)
QUERY_POSITIONAL_COLUMNS = [
    'UsageQuantity',
    'ResourceGroup',
    'TagKey',
    'TagValue',
    'MeterCategory',
    'MeterSubCategory',
    'ResourceType',
    'ServiceName',
]

# =============================================================================
# Acquisition Tiers
# =============================================================================

TIER_COST_QUERY = "cost_query"
TIER_CONSUMPTION_DETAILS = "consumption_details"
TIER_CONSUMPTION_REST = "consumption_rest"
TIER_ESTIMATION = "estimation"

# =============================================================================
# Report Modes
# =============================================================================

MODE_NO_QUOTA_DEFINED = "Usage Only (No Quota Defined)"
MODE_USAGE_VS_QUOTA = "Usage vs Quota"
MODE_NO_QUOTA_FOR_CLIENT = "Usage Only (No Quota for Client)"

# Report field names per metric: (usage field, remaining field)
REPORT_METRIC_FIELDS = {
    'core_hours': ('CoreHours', 'CoreRemain'),
    'data_out_gb': ('DataOutGB', 'DataOutRemain'),
    'data_in_gb': ('DataInGB', 'DataInRemain'),
    'disk_storage_gb': ('DiskStorageGB', 'DiskRemain'),
    'blob_storage_gb': ('BlobStorageGB', 'BlobRemain'),
}

# =============================================================================
# SKU Tables
# =============================================================================

# Used when compute discovery fails entirely
STATIC_SKU_CORES = {
    'Standard_B1s': 1,
    'Standard_B1ms': 1,
    'Standard_B2s': 2,
    'Standard_B2ms': 2,
    'Standard_B4ms': 4,
    'Standard_D2s_v3': 2,
    'Standard_D4s_v3': 4,
    'Standard_D8s_v3': 8,
    'Standard_D16s_v3': 16,
    'Standard_E2s_v3': 2,
    'Standard_E4s_v3': 4,
    'Standard_E8s_v3': 8,
    'Standard_F2s_v2': 2,
    'Standard_F4s_v2': 4,
    'Standard_F8s_v2': 8,
}

# Families whose number is not a vCPU count
A_SERIES_CORES = {0: 1, 1: 1, 2: 2, 3: 4, 4: 8, 5: 2, 6: 4, 7: 8, 8: 8, 9: 16, 10: 8, 11: 16}
G_SERIES_CORES = {1: 2, 2: 4, 3: 8, 4: 16, 5: 32}
# D1-D5 and DS1-DS5 general purpose (v1/v2)
D_GENERAL_SERIES_CORES = {1: 1, 2: 2, 3: 4, 4: 8, 5: 16}
# D11-D15 memory optimized (v1/v2)
D_MEMORY_SERIES_CORES = {11: 2, 12: 4, 13: 8, 14: 16, 15: 20}
