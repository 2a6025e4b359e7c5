"""
Compute and storage inventory discovery.

Builds the run's ResourceRecord catalog from the Azure management APIs:
VMs and scale sets (with vCPU counts from the SKU resolver), storage
accounts (with best-effort blob sizes) and managed disks.

Failure handling:
- one sub-resource (a scale set's instances, a storage account's
  containers/shares/tables/queues) failing is logged and counted as empty
- a whole listing call failing marks the category degraded; compute
  falls back to the static SKU table with no discovered instances
"""
import logging
from typing import Iterable, List, Optional, Tuple

from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.storage import StorageManagementClient
from azure.storage.blob import BlobServiceClient

from .constants import (
    KIND_MANAGED_DISK,
    KIND_SCALE_SET,
    KIND_STORAGE_ACCOUNT,
    KIND_VM,
    STATIC_SKU_CORES,
)
from .models import Inventory, ResourceRecord
from .skus import SkuResolver
from .utils import (
    bytes_to_gb,
    extract_resource_group,
    in_resource_groups,
    is_auth_error,
    parallel_map,
    tags_to_dict,
)

logger = logging.getLogger(__name__)


def _log_category_failure(what: str, exc: Exception) -> None:
    if is_auth_error(exc):
        logger.error(f"Failed to collect {what}: access denied ({exc}). Check Reader role on the subscription.")
    else:
        logger.error(f"Failed to collect {what}: {exc}")


# =============================================================================
# Compute
# =============================================================================

def collect_vms(
    credential,
    subscription_id: str,
    resolver: SkuResolver,
    resource_groups: Optional[Iterable[str]] = None,
) -> List[ResourceRecord]:
    """Collect standalone VMs. Raises if the VM listing itself fails."""
    resources = []
    compute_client = ComputeManagementClient(credential, subscription_id)

    for vm in compute_client.virtual_machines.list_all():
        if not vm.id:
            continue

        rg = extract_resource_group(vm.id)
        if not in_resource_groups(rg, resource_groups):
            continue

        vm_size = vm.hardware_profile.vm_size if vm.hardware_profile else ''
        resources.append(ResourceRecord(
            name=vm.name,
            resource_group=rg,
            location=vm.location,
            kind=KIND_VM,
            sku=vm_size or '',
            status=vm.provisioning_state,
            tags=tags_to_dict(vm.tags),
            cores=resolver.resolve_cores(vm_size),
            capacity=1,
            metadata={
                'resource_id': vm.id,
                'resource_type': 'Microsoft.Compute/virtualMachines',
            }
        ))

    logger.info(f"Found {len(resources)} VMs")
    return resources


def _scale_set_capacity(compute_client, rg: str, scale_set) -> int:
    """Instance count from the scale set SKU, else by listing its instances."""
    sku = scale_set.sku
    if sku is not None and sku.capacity is not None:
        return int(sku.capacity)

    try:
        return sum(1 for _ in compute_client.virtual_machine_scale_set_vms.list(rg, scale_set.name))
    except Exception as e:
        logger.warning(f"Failed to list instances for scale set {scale_set.name}: {e}")
        return 0


def collect_scale_sets(
    credential,
    subscription_id: str,
    resolver: SkuResolver,
    resource_groups: Optional[Iterable[str]] = None,
) -> List[ResourceRecord]:
    """Collect VM scale sets. Raises if the scale set listing itself fails."""
    resources = []
    compute_client = ComputeManagementClient(credential, subscription_id)

    for scale_set in compute_client.virtual_machine_scale_sets.list_all():
        if not scale_set.id:
            continue

        rg = extract_resource_group(scale_set.id)
        if not in_resource_groups(rg, resource_groups):
            continue

        sku_name = scale_set.sku.name if scale_set.sku else ''
        capacity = _scale_set_capacity(compute_client, rg, scale_set)

        resources.append(ResourceRecord(
            name=scale_set.name,
            resource_group=rg,
            location=scale_set.location,
            kind=KIND_SCALE_SET,
            sku=sku_name or '',
            status=scale_set.provisioning_state,
            tags=tags_to_dict(scale_set.tags),
            cores=resolver.resolve_cores(sku_name),
            capacity=capacity,
            metadata={
                'resource_id': scale_set.id,
                'resource_type': 'Microsoft.Compute/virtualMachineScaleSets',
            }
        ))

    logger.info(f"Found {len(resources)} VM scale sets")
    return resources


def discover_compute(
    credential,
    subscription_id: str,
    resolver: SkuResolver,
    resource_groups: Optional[Iterable[str]] = None,
) -> Tuple[List[ResourceRecord], bool]:
    """
    Discover VMs and scale sets.

    Returns:
        (records, degraded) where degraded means a listing call failed
    """
    records: List[ResourceRecord] = []
    degraded = False

    for name, collect_fn in (("VMs", collect_vms), ("scale sets", collect_scale_sets)):
        try:
            records.extend(collect_fn(credential, subscription_id, resolver, resource_groups))
        except Exception as e:
            _log_category_failure(name, e)
            degraded = True

    if degraded:
        logger.warning(
            f"Compute discovery degraded; falling back to the static SKU table "
            f"({len(STATIC_SKU_CORES)} SKUs)"
        )
        resolver.seed(STATIC_SKU_CORES)

    return records, degraded


# =============================================================================
# Storage
# =============================================================================

def _blob_usage(credential, account_name: str, blob_endpoint: Optional[str]) -> Tuple[int, int]:
    """
    Return (container count, total blob bytes) for a storage account.

    Containers that cannot be listed are skipped; the count still includes them.
    """
    account_url = blob_endpoint or f"https://{account_name}.blob.core.windows.net"
    service_client = BlobServiceClient(account_url=account_url, credential=credential)

    container_count = 0
    total_bytes = 0
    for container in service_client.list_containers():
        container_count += 1
        try:
            container_client = service_client.get_container_client(container.name)
            total_bytes += sum(blob.size or 0 for blob in container_client.list_blobs())
        except Exception as e:
            logger.warning(f"Skipping container {container.name} in storage account {account_name}: {e}")

    return container_count, total_bytes


def _count_children(list_fn, rg: str, account_name: str, label: str) -> int:
    try:
        return sum(1 for _ in list_fn(rg, account_name))
    except Exception as e:
        logger.debug(f"Failed to list {label} for storage account {account_name}: {e}")
        return 0


def _describe_storage_account(credential, storage_client, account) -> ResourceRecord:
    """Build the record for one storage account, sizing it best-effort."""
    rg = extract_resource_group(account.id)
    blob_endpoint = None
    if account.primary_endpoints is not None:
        blob_endpoint = account.primary_endpoints.blob

    container_count, blob_bytes = 0, 0
    try:
        container_count, blob_bytes = _blob_usage(credential, account.name, blob_endpoint)
    except Exception as e:
        logger.warning(f"Failed to list containers for storage account {account.name}: {e}")

    return ResourceRecord(
        name=account.name,
        resource_group=rg,
        location=account.location,
        kind=KIND_STORAGE_ACCOUNT,
        sku=account.sku.name if account.sku else '',
        status=str(account.provisioning_state) if account.provisioning_state else None,
        tags=tags_to_dict(account.tags),
        size_gb=bytes_to_gb(blob_bytes),
        metadata={
            'resource_id': account.id,
            'resource_type': 'Microsoft.Storage/storageAccounts',
            'kind': str(account.kind),
            'container_count': container_count,
            'blob_bytes': blob_bytes,
            'file_share_count': _count_children(storage_client.file_shares.list, rg, account.name, "file shares"),
            'table_count': _count_children(storage_client.table.list, rg, account.name, "tables"),
            'queue_count': _count_children(storage_client.queue.list, rg, account.name, "queues"),
        }
    )


def collect_storage_accounts(
    credential,
    subscription_id: str,
    resource_groups: Optional[Iterable[str]] = None,
    parallel_workers: int = 1,
) -> List[ResourceRecord]:
    """Collect storage accounts with blob sizes. Raises if the account listing fails."""
    storage_client = StorageManagementClient(credential, subscription_id)

    accounts = [
        account for account in storage_client.storage_accounts.list()
        if account.id and in_resource_groups(extract_resource_group(account.id), resource_groups)
    ]

    resources = parallel_map(
        lambda account: _describe_storage_account(credential, storage_client, account),
        accounts,
        parallel_workers,
    )

    total_gb = sum(r.size_gb for r in resources)
    logger.info(f"Found {len(resources)} storage accounts ({total_gb:,.2f} GB of blobs)")
    return resources


def collect_disks(
    credential,
    subscription_id: str,
    resource_groups: Optional[Iterable[str]] = None,
) -> List[ResourceRecord]:
    """Collect managed disks. Raises if the disk listing fails."""
    resources = []
    compute_client = ComputeManagementClient(credential, subscription_id)

    for disk in compute_client.disks.list():
        if not disk.id:
            continue

        rg = extract_resource_group(disk.id)
        if not in_resource_groups(rg, resource_groups):
            continue

        attached_vm = disk.managed_by.split('/')[-1] if disk.managed_by else None

        resources.append(ResourceRecord(
            name=disk.name,
            resource_group=rg,
            location=disk.location,
            kind=KIND_MANAGED_DISK,
            sku=disk.sku.name if disk.sku else '',
            status=str(disk.disk_state) if disk.disk_state else None,
            tags=tags_to_dict(disk.tags),
            size_gb=float(disk.disk_size_gb or 0),
            metadata={
                'resource_id': disk.id,
                'resource_type': 'Microsoft.Compute/disks',
                'attached_vm': attached_vm,
            }
        ))

    logger.info(f"Found {len(resources)} managed disks")
    return resources


def discover_storage(
    credential,
    subscription_id: str,
    resource_groups: Optional[Iterable[str]] = None,
    parallel_workers: int = 1,
) -> Tuple[List[ResourceRecord], bool]:
    """
    Discover storage accounts and managed disks.

    Returns:
        (records, degraded) where degraded means a listing call failed
    """
    records: List[ResourceRecord] = []
    degraded = False

    try:
        records.extend(collect_storage_accounts(credential, subscription_id, resource_groups, parallel_workers))
    except Exception as e:
        _log_category_failure("storage accounts", e)
        degraded = True

    try:
        records.extend(collect_disks(credential, subscription_id, resource_groups))
    except Exception as e:
        _log_category_failure("managed disks", e)
        degraded = True

    return records, degraded


# =============================================================================
# Inventory
# =============================================================================

def discover_inventory(
    credential,
    subscription_id: str,
    resolver: SkuResolver,
    resource_groups: Optional[Iterable[str]] = None,
    parallel_workers: int = 1,
) -> Inventory:
    """Discover compute and storage resources into one Inventory."""
    resource_groups = list(resource_groups or [])
    if resource_groups:
        logger.info(f"Restricting discovery to resource groups: {', '.join(resource_groups)}")

    compute, compute_degraded = discover_compute(credential, subscription_id, resolver, resource_groups)
    storage, storage_degraded = discover_storage(credential, subscription_id, resource_groups, parallel_workers)

    return Inventory(
        resources=compute + storage,
        sku_cores=resolver.table,
        compute_degraded=compute_degraded,
        storage_degraded=storage_degraded,
    )
