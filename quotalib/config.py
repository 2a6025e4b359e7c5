"""
Usage Quota Report - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (QUOTA_*)
3. Command-line arguments (highest priority)

Config file example:
```yaml
subscription_id: ${AZURE_SUBSCRIPTION_ID}
use_client_tags: true
client_tag: Client
resource_groups:
  - rg-clienta
  - rg-clientb

quotas:
  ClientA-Prod:
    core_hours: 10000
    data_out_gb: 100
    data_in_gb: 500
    disk_storage_gb: 1000
    blob_storage_gb: 500
```
"""
import logging
import os
import re
import stat
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .constants import (
    DEFAULT_CLIENT_NAME,
    DEFAULT_CLIENT_TAG,
    DEFAULT_MAX_RECORDS,
    DEFAULT_PARALLEL_WORKERS,
    DEFAULT_SKU_REGIONS,
)
from .models import Quota
from .utils import parse_csv_list

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './quota-config.yaml',
    './quota-config.yml',
    '~/.quota-report/config.yaml',
    '~/.quota-report/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'subscription_id': 'QUOTA_SUBSCRIPTION_ID',
    'default_client': 'QUOTA_DEFAULT_CLIENT',
    'client_tag': 'QUOTA_CLIENT_TAG',
    'use_client_tags': 'QUOTA_USE_CLIENT_TAGS',
    'resource_groups': 'QUOTA_RESOURCE_GROUPS',
    'regions': 'QUOTA_SKU_REGIONS',
    'max_records': 'QUOTA_MAX_RECORDS',
    'parallel_workers': 'QUOTA_PARALLEL_WORKERS',
    'log_level': 'QUOTA_LOG_LEVEL',
}

LIST_KEYS = ('resource_groups', 'regions')
BOOL_KEYS = ('use_client_tags',)
INT_KEYS = ('max_records', 'parallel_workers')

DEFAULTS: Dict[str, Any] = {
    'default_client': DEFAULT_CLIENT_NAME,
    'client_tag': DEFAULT_CLIENT_TAG,
    'use_client_tags': False,
    'resource_groups': [],
    'regions': list(DEFAULT_SKU_REGIONS),
    'max_records': DEFAULT_MAX_RECORDS,
    'parallel_workers': DEFAULT_PARALLEL_WORKERS,
    'log_level': 'INFO',
    'quotas': {},
}

QUOTA_FIELDS = ('core_hours', 'data_out_gb', 'data_in_gb', 'disk_storage_gb', 'blob_storage_gb')


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _coerce(key: str, value: Any) -> Any:
    """Coerce env/CLI string values to the type a config key expects."""
    if value is None:
        return None
    if key in LIST_KEYS:
        return parse_csv_list(value)
    if key in BOOL_KEYS and isinstance(value, str):
        return value.lower() in ('true', '1', 'yes')
    if key in INT_KEYS and isinstance(value, str):
        return int(value)
    return value


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Warn if config file has loose permissions
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    config = _substitute_env_vars(config)
    return {k: _coerce(k, v) if k != 'quotas' else v for k, v in config.items()}


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is not None:
            config[config_key] = _coerce(config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    for key in ('subscription_id', 'default_client', 'client_tag', 'resource_groups',
                'regions', 'max_records', 'parallel_workers', 'log_level'):
        value = getattr(args, key, None)
        if value is not None:
            config[key] = _coerce(key, value)

    # store_true flag: only an explicit --use-client-tags overrides file/env
    if getattr(args, 'use_client_tags', False):
        config['use_client_tags'] = True

    return config


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables
    4. Built-in defaults

    Returns merged config dict.
    """
    configs = [dict(DEFAULTS)]

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    return merge_configs(*configs)


def load_quotas(config: Dict[str, Any]) -> Dict[str, Quota]:
    """
    Build per-client Quota objects from the `quotas` config section.

    Missing metrics default to 0. Raises ValueError on unknown metric
    names, non-numeric values, or negative ceilings.
    """
    quotas: Dict[str, Quota] = {}
    section = config.get('quotas') or {}

    if not isinstance(section, dict):
        raise ValueError("'quotas' must be a mapping of client name to ceilings")

    for client, ceilings in section.items():
        ceilings = ceilings or {}
        if not isinstance(ceilings, dict):
            raise ValueError(f"Quota for client '{client}' must be a mapping")

        unknown = set(ceilings) - set(QUOTA_FIELDS)
        if unknown:
            raise ValueError(f"Unknown quota metric(s) for client '{client}': {', '.join(sorted(unknown))}")

        values: Dict[str, float] = {}
        for metric in QUOTA_FIELDS:
            raw = ceilings.get(metric, 0)
            try:
                value = float(raw)
            except (TypeError, ValueError):
                raise ValueError(f"Quota {metric} for client '{client}' is not a number: {raw!r}")
            if value < 0:
                raise ValueError(f"Quota {metric} for client '{client}' is negative: {value}")
            values[metric] = value

        quotas[str(client)] = Quota(**values)

    logger.debug(f"Loaded quotas for {len(quotas)} client(s)")
    return quotas


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# Usage Quota Report Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# Subscription to report on
subscription_id: ${AZURE_SUBSCRIPTION_ID}

# Group usage by the client tag (true) or report one overall client (false)
use_client_tags: false

# Tag key holding the client name (tag mode)
client_tag: Client

# Client name used in overall mode
default_client: Default

# Restrict discovery and usage to these resource groups (default: all)
# resource_groups:
#   - rg-clienta-prod
#   - rg-clientb-prod

# Regions probed, in order, for authoritative VM SKU vCPU counts
regions:
  - eastus
  - westus2
  - westeurope

# Maximum usage-detail records fetched by the fallback tiers
max_records: 10000

# Threads for SKU region probes and storage account discovery (1 = serial)
parallel_workers: 1

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Per-client ceilings for the reporting period
quotas:
  Default:
    core_hours: 10000
    data_out_gb: 100
    data_in_gb: 500
    disk_storage_gb: 1000
    blob_storage_gb: 500
  # ClientA-Prod:
  #   core_hours: 5000
  #   data_out_gb: 50
  #   data_in_gb: 250
  #   disk_storage_gb: 500
  #   blob_storage_gb: 250
'''
