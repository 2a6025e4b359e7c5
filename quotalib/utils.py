"""
Utility functions for the usage quota report.

Logging Level Standards:
------------------------
- ERROR: Failures that stop an entire resource category or the whole run
         "Failed to discover compute resources: {e}"
- WARNING: Partial failures (nested loops), acquisition tier fallbacks
           "Tier cost_query unusable: {e}"
           "Failed to list containers for storage account {name}: {e}"
- INFO: Progress messages, resource counts
        "Found 42 VMs"
        "Acquired 1,204 usage rows from consumption_details"
- DEBUG: Per-item failures and SKU provenance
         "Resolved Standard_D4s_v3 -> 4 cores (estimated)"
"""
import hashlib
import logging
import re
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .constants import BYTES_PER_GB, DEFAULT_RETRY_ATTEMPTS
from .models import DateRange

logger = logging.getLogger(__name__)

# Type variable for generic function decorator
F = TypeVar('F', bound=Callable[..., Any])


# =============================================================================
# Exceptions
# =============================================================================

class ReportError(Exception):
    """Base class for errors that abort a report run."""


class AuthError(ReportError):
    """Raised when no authenticated Azure session can be established."""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(message)


class InvalidDateRangeError(ReportError):
    """Raised for malformed dates or a start date after the end date."""


class UsageUnavailableError(ReportError):
    """Raised when every usage source failed and there is no inventory to estimate from."""


class ThrottledError(Exception):
    """Raised by HTTP transports on 429 responses so they can be retried."""


# Azure error status codes that indicate auth/permission issues
AZURE_AUTH_STATUS_CODES = {401, 403}


def is_auth_error(exc: Exception) -> bool:
    """
    Check if an exception represents an Azure authentication/authorization error.

    Detects:
    - ClientAuthenticationError / CredentialUnavailableError from azure-identity
    - HttpResponseError with 401/403 status
    """
    exc_type_name = type(exc).__name__

    if exc_type_name in ('ClientAuthenticationError', 'CredentialUnavailableError'):
        return True

    if exc_type_name == 'HttpResponseError':
        status_code = getattr(exc, 'status_code', None)
        if status_code in AZURE_AUTH_STATUS_CODES:
            return True
        error_msg = str(exc).lower()
        return 'authentication' in error_msg or 'authorization' in error_msg

    return False


# =============================================================================
# Retry
# =============================================================================

def retry_with_backoff(
    max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
    min_wait: float = 1,
    max_wait: float = 60,
    exceptions: tuple = (ThrottledError,)
) -> Callable[[F], F]:
    """
    Decorator for retrying functions with exponential backoff.

    Only transports use this, and only for throttling; acquisition tiers
    themselves are never retried.

    Example:
        @retry_with_backoff(max_attempts=5)
        def fetch_page(url):
            ...
    """
    def decorator(func: F) -> F:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(func)  # type: ignore[return-value]
    return decorator


# =============================================================================
# Parallel helpers
# =============================================================================

def parallel_map(
    func: Callable[[Any], Any],
    items: Iterable[Any],
    parallel_workers: int = 1,
) -> List[Any]:
    """
    Apply func to every item, serially or on a bounded thread pool.

    Results are returned in input order regardless of completion order.
    func is expected to handle its own per-item failures.
    """
    items = list(items)
    if parallel_workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]

    results: List[Any] = [None] * len(items)
    with ThreadPoolExecutor(max_workers=parallel_workers) as executor:
        futures = {executor.submit(func, item): idx for idx, item in enumerate(items)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    return results


def first_match(
    probe: Callable[[Any], Optional[Any]],
    candidates: Iterable[Any],
    parallel_workers: int = 1,
) -> Optional[Tuple[Any, Any]]:
    """
    Return (candidate, result) for the first candidate, in input order,
    whose probe result is not None.

    Serial mode stops probing at the first hit. Parallel mode probes
    concurrently but still honours input order and cancels pending probes
    once the answer is known.
    """
    candidates = list(candidates)
    if parallel_workers <= 1 or len(candidates) <= 1:
        for candidate in candidates:
            result = probe(candidate)
            if result is not None:
                return candidate, result
        return None

    with ThreadPoolExecutor(max_workers=parallel_workers) as executor:
        futures = [executor.submit(probe, c) for c in candidates]
        for candidate, future in zip(candidates, futures):
            result = future.result()
            if result is not None:
                for pending in futures:
                    pending.cancel()
                return candidate, result
    return None


# =============================================================================
# Azure helpers
# =============================================================================

def extract_resource_group(resource_id: str) -> str:
    """Extract resource group from Azure resource ID."""
    try:
        parts = resource_id.split('/')
        lowered = [p.lower() for p in parts]
        rg_index = lowered.index('resourcegroups') + 1
        return parts[rg_index]
    except (ValueError, IndexError, AttributeError):
        return 'unknown'


def in_resource_groups(resource_group: str, allowed: Optional[Iterable[str]]) -> bool:
    """Case-insensitive resource group allow-list check. No list means allow all."""
    if not allowed:
        return True
    allowed_lower = {rg.lower() for rg in allowed}
    return (resource_group or '').lower() in allowed_lower


def tags_to_dict(tags: Any) -> Dict[str, str]:
    """
    Convert Azure tag payloads to a dictionary.

    Supports:
    - dict: {"Client": "acme"}
    - legacy usage-detail string: '"Client": "acme","env": "prod"'
    """
    if not tags:
        return {}

    if isinstance(tags, dict):
        return {str(k): '' if v is None else str(v) for k, v in tags.items()}

    if isinstance(tags, str):
        pairs = re.findall(r'"([^"]*)"\s*:\s*"([^"]*)"', tags)
        return {k: v for k, v in pairs if k}

    return {}


def get_tag(tags: Dict[str, str], key: str) -> Optional[str]:
    """Look up a tag value. Exact key first, then case-insensitive (Azure tag keys are)."""
    if not tags:
        return None
    if key in tags:
        return tags[key]
    key_lower = key.lower()
    for k, v in tags.items():
        if k.lower() == key_lower:
            return v
    return None


def bytes_to_gb(bytes_value: Optional[float]) -> float:
    """Convert bytes to GB without rounding."""
    if not bytes_value:
        return 0.0
    return bytes_value / BYTES_PER_GB


def parse_csv_list(value: Any) -> List[str]:
    """Split a comma-separated string (or pass through a list) into trimmed items."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in str(value).split(',') if v.strip()]


# =============================================================================
# Dates
# =============================================================================

def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def get_last_full_month(today: Optional[date] = None) -> Tuple[str, str]:
    """
    Return start and end dates for the last complete month.

    Returns:
        Tuple of (start_date, end_date) as YYYY-MM-DD strings, both inclusive

    Example:
        If today is 2026-02-13, returns ('2026-01-01', '2026-01-31')
    """
    today = today or datetime.now(timezone.utc).date()
    first_of_this_month = today.replace(day=1)
    last_of_prev_month = first_of_this_month - timedelta(days=1)
    first_of_prev_month = last_of_prev_month.replace(day=1)
    return first_of_prev_month.isoformat(), last_of_prev_month.isoformat()


def parse_date_range(start: str, end: str) -> DateRange:
    """Parse YYYY-MM-DD strings into a validated inclusive DateRange."""
    try:
        start_date = datetime.strptime(start, '%Y-%m-%d').date()
        end_date = datetime.strptime(end, '%Y-%m-%d').date()
    except (TypeError, ValueError) as e:
        raise InvalidDateRangeError(f"Invalid date (expected YYYY-MM-DD): {e}") from e

    if start_date > end_date:
        raise InvalidDateRangeError(f"Start date {start} is after end date {end}")

    return DateRange(start=start_date, end=end_date)


# =============================================================================
# Logging
# =============================================================================

def hash_sensitive_id(value: str) -> str:
    """First 8 chars of the SHA256 of value; consistent within and across runs."""
    if not value:
        return value
    return hashlib.sha256(value.encode()).hexdigest()[:8]


_GUID_PATTERN = re.compile(
    r'\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b', re.IGNORECASE
)


def redact_log_message(message: str) -> str:
    """Replace subscription/tenant GUIDs in a log message with stable hashes."""
    if not message:
        return message
    return _GUID_PATTERN.sub(lambda m: f"id-{hash_sensitive_id(m.group(1).lower())}", message)


class RedactingFilter(logging.Filter):
    """
    Logging filter that redacts subscription and tenant IDs from log messages.

    Uses consistent hashing so the same ID produces the same hash.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", redact: bool = False) -> logging.Logger:
    """
    Setup console logging on stderr.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        redact: Hash subscription/tenant IDs in log output

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    if redact:
        console_handler.addFilter(RedactingFilter())
    root_logger.addHandler(console_handler)

    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger('azure').setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger(__name__)
