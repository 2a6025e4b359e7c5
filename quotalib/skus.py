"""
VM SKU to vCPU resolution.

Authoritative counts come from the Resource SKUs catalog of the first
candidate region that lists the SKU. SKUs no region knows about are
estimated from their name, and anything unparseable gets DEFAULT_SKU_CORES.
"""
import logging
import re
from typing import Callable, Dict, Iterable, Optional

from .constants import (
    A_SERIES_CORES,
    D_GENERAL_SERIES_CORES,
    D_MEMORY_SERIES_CORES,
    DEFAULT_SKU_CORES,
    G_SERIES_CORES,
)
from .utils import first_match

logger = logging.getLogger(__name__)

# region -> {sku name: vCPUs}
CatalogFetcher = Callable[[str], Dict[str, int]]

_TIER_PREFIX = re.compile(r'^(standard|basic)_', re.IGNORECASE)
_VERSION_SUFFIX = re.compile(r'[_ ]v(\d+)$', re.IGNORECASE)
_CONSTRAINED = re.compile(r'^[A-Za-z]+\d+-(\d+)')
_FAMILY_SIZE = re.compile(r'^([A-Za-z]+)(\d+)')


def canonical_sku_name(name: str) -> str:
    """
    Convert billing-style names to ARM SKU names.

    "D4s v3" -> "Standard_D4s_v3"; names that already carry a tier prefix
    only have spaces replaced.
    """
    name = (name or '').strip().replace(' ', '_')
    if not name:
        return name
    if _TIER_PREFIX.match(name):
        return name
    return f"Standard_{name}"


def estimate_cores(sku_name: str) -> Optional[int]:
    """
    Estimate vCPUs from a SKU name. Returns None when the name carries no size.

    Examples:
        Standard_D4s_v3 -> 4
        Standard_E8-2ds_v4 -> 2 (constrained vCPU)
        Standard_A3 -> 4
        Standard_DS12_v2 -> 4
        Standard_GS5 -> 32
    """
    if not sku_name or not isinstance(sku_name, str):
        return None

    name = sku_name.strip()
    # Billing sub-categories such as "Dv3/DSv3 Series" name a family, not a size
    if 'series' in name.lower():
        return None

    name = _TIER_PREFIX.sub('', name).replace(' ', '_')

    version = None
    version_match = _VERSION_SUFFIX.search(name)
    if version_match:
        version = int(version_match.group(1))
        name = name[:version_match.start()]

    constrained = _CONSTRAINED.match(name)
    if constrained:
        cores = int(constrained.group(1))
        return cores if cores > 0 else None

    match = _FAMILY_SIZE.match(name)
    if not match:
        return None

    family = match.group(1).upper()
    size = int(match.group(2))

    if family == 'A' and version is None:
        return A_SERIES_CORES.get(size)
    if family in ('G', 'GS'):
        return G_SERIES_CORES.get(size)
    if family in ('D', 'DS') and version in (None, 2):
        for table in (D_GENERAL_SERIES_CORES, D_MEMORY_SERIES_CORES):
            if size in table:
                return table[size]

    return size if size > 0 else None


class SkuResolver:
    """
    Resolves SKU names to vCPU counts and owns the run's SKU core table.

    Every resolved SKU is remembered in `table`, so each name is looked up
    against the regional catalogs at most once per run.
    """

    def __init__(
        self,
        catalog_fetcher: Optional[CatalogFetcher] = None,
        regions: Optional[Iterable[str]] = None,
        parallel_workers: int = 1,
        table: Optional[Dict[str, int]] = None,
    ):
        self.catalog_fetcher = catalog_fetcher
        self.regions = list(regions or [])
        self.parallel_workers = parallel_workers
        self.table: Dict[str, int] = dict(table or {})
        self._catalogs: Dict[str, Dict[str, int]] = {}

    def seed(self, mapping: Dict[str, int]) -> None:
        """Add entries without overwriting ones already resolved."""
        for name, cores in mapping.items():
            self.table.setdefault(name, cores)

    def lookup(self, sku_name: str) -> Optional[int]:
        """Table-only lookup: exact, then case-insensitive, then canonical name."""
        if not sku_name:
            return None
        if sku_name in self.table:
            return self.table[sku_name]

        wanted = {sku_name.lower(), canonical_sku_name(sku_name).lower()}
        for name, cores in self.table.items():
            if name.lower() in wanted:
                return cores
        return None

    def resolve_cores(self, sku_name: str) -> int:
        """Resolve vCPUs for a SKU. Never raises; always returns a positive int."""
        if not sku_name or not isinstance(sku_name, str):
            logger.debug(f"Empty SKU name, using default of {DEFAULT_SKU_CORES} cores")
            return DEFAULT_SKU_CORES

        cached = self.lookup(sku_name)
        if cached is not None:
            return cached

        provenance = 'authoritative'
        cores = self._probe_regions(sku_name)
        if cores is None:
            provenance = 'estimated'
            cores = estimate_cores(sku_name)
        if cores is None:
            provenance = 'default'
            cores = DEFAULT_SKU_CORES

        self.table[sku_name] = cores
        logger.debug(f"Resolved {sku_name} -> {cores} cores ({provenance})")
        return cores

    def _probe_regions(self, sku_name: str) -> Optional[int]:
        if not self.catalog_fetcher or not self.regions:
            return None

        wanted = (sku_name.lower(), canonical_sku_name(sku_name).lower())

        def probe(region: str) -> Optional[int]:
            catalog = self._catalog(region)
            for name in wanted:
                if name in catalog:
                    return catalog[name]
            return None

        hit = first_match(probe, self.regions, self.parallel_workers)
        if hit is None:
            return None
        region, cores = hit
        logger.debug(f"Found {sku_name} in {region} SKU catalog")
        return cores

    def _catalog(self, region: str) -> Dict[str, int]:
        if region not in self._catalogs:
            try:
                fetched = self.catalog_fetcher(region)
                self._catalogs[region] = {k.lower(): int(v) for k, v in fetched.items() if v}
                logger.debug(f"Loaded {len(fetched)} VM SKUs for {region}")
            except Exception as e:
                logger.warning(f"Failed to load SKU catalog for region {region}: {e}")
                self._catalogs[region] = {}
        return self._catalogs[region]
