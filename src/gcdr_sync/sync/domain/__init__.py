"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: source tree, registry records, DTOs, plan and result types
- Ports: Abstract interfaces for the registry, the source platform and write-back

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    GCDR_ID_ATTR,
    GCDR_SYNC_HASH_ATTR,
    GCDR_SYNCED_AT_ATTR,
    GCDR_TENANT_ATTR,
    CreateAssetDto,
    CreateCustomerDto,
    CreateDeviceDto,
    EntityDto,
    EntityKind,
    GCDREntity,
    SyncAction,
    SyncActionType,
    SyncOutcome,
    SyncPlan,
    SyncResult,
    TBAsset,
    TBCustomer,
    TBDataBundle,
    TBDevice,
)
from .ports import IAttributeWriter, IRegistryAPI, ISourceDataAPI

__all__ = [
    # Attribute keys
    "GCDR_ID_ATTR",
    "GCDR_SYNCED_AT_ATTR",
    "GCDR_SYNC_HASH_ATTR",
    "GCDR_TENANT_ATTR",
    # Source entities
    "TBCustomer",
    "TBAsset",
    "TBDevice",
    "TBDataBundle",
    # Registry entities
    "GCDREntity",
    "CreateCustomerDto",
    "CreateAssetDto",
    "CreateDeviceDto",
    "EntityDto",
    # Plan / result
    "EntityKind",
    "SyncActionType",
    "SyncAction",
    "SyncPlan",
    "SyncOutcome",
    "SyncResult",
    # Ports
    "IRegistryAPI",
    "ISourceDataAPI",
    "IAttributeWriter",
]
