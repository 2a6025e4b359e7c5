"""
Data models for the usage quota report.
"""
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional

from .constants import (
    COMPUTE_KINDS,
    HOURS_PER_DAY,
    KIND_MANAGED_DISK,
    KIND_SCALE_SET,
    KIND_STORAGE_ACCOUNT,
)


@dataclass(frozen=True)
class ResourceRecord:
    """
    Normalized inventory entry for one compute or storage resource.
    """
    name: str
    resource_group: str
    location: str
    kind: str  # VM, ScaleSet, StorageAccount, ManagedDisk
    sku: str = ""
    status: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)

    # Compute
    cores: int = 0  # per instance
    capacity: int = 1  # scale set instance count

    # Storage
    size_gb: float = 0.0

    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_cores(self) -> int:
        """Cores across all instances (scale sets); per-instance cores otherwise."""
        if self.kind == KIND_SCALE_SET:
            return self.cores * self.capacity
        return self.cores

    @property
    def is_compute(self) -> bool:
        return self.kind in COMPUTE_KINDS

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        d = asdict(self)
        d['total_cores'] = self.total_cores
        return d


@dataclass
class Inventory:
    """Resource catalog for one run, plus the SKU core table it was built with."""
    resources: List[ResourceRecord] = field(default_factory=list)
    sku_cores: Dict[str, int] = field(default_factory=dict)
    compute_degraded: bool = False
    storage_degraded: bool = False

    @property
    def compute(self) -> List[ResourceRecord]:
        return [r for r in self.resources if r.is_compute]

    @property
    def storage_accounts(self) -> List[ResourceRecord]:
        return [r for r in self.resources if r.kind == KIND_STORAGE_ACCOUNT]

    @property
    def disks(self) -> List[ResourceRecord]:
        return [r for r in self.resources if r.kind == KIND_MANAGED_DISK]


@dataclass(frozen=True)
class UsageRow:
    """Canonical usage row every acquisition tier normalizes into."""
    resource_group: str
    client: str
    meter_category: str
    meter_sub_category: str
    resource_type: str
    service_name: str
    quantity: float
    estimated: bool = False
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UsageTotals:
    """Running per-client usage sums. All values start at zero."""
    core_hours: float = 0.0
    data_out_gb: float = 0.0
    data_in_gb: float = 0.0
    disk_storage_gb: float = 0.0
    blob_storage_gb: float = 0.0

    def add(self, metric: str, amount: float) -> None:
        """Add a non-negative amount to one metric."""
        if amount < 0:
            raise ValueError(f"Negative usage for {metric}: {amount}")
        setattr(self, metric, getattr(self, metric) + amount)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Quota:
    """Configured per-client ceilings."""
    core_hours: float = 0.0
    data_out_gb: float = 0.0
    data_in_gb: float = 0.0
    disk_storage_gb: float = 0.0
    blob_storage_gb: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class ReportRecord:
    """One report line for a client; `values` holds the mode-specific fields."""
    client: str
    mode: str
    values: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'Client': self.client, 'Mode': self.mode, **self.values}


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive range of whole days.

    `end` is the last day included, so a single-day range covers 24 hours.
    """
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def total_hours(self) -> float:
        return float(self.days * HOURS_PER_DAY)

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.start, time.min, tzinfo=timezone.utc)

    @property
    def end_datetime(self) -> datetime:
        return datetime.combine(self.end, time(23, 59, 59), tzinfo=timezone.utc)

    def is_future(self, today: Optional[date] = None) -> bool:
        """True if the range ends after today (UTC)."""
        today = today or datetime.now(timezone.utc).date()
        return self.end > today

    def to_dict(self) -> Dict[str, str]:
        return {'start': self.start.isoformat(), 'end': self.end.isoformat()}
