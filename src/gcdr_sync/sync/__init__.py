"""Sync module - ThingsBoard → GCDR one-way synchronisation.

Architecture:
    domain/     - Pure domain entities and port interfaces
    use_cases/  - Diff engine, plan building and the orchestrator
    adapters/   - Infrastructure implementations (GCDR registry, ThingsBoard)
    service.py  - Wiring of clients, adapters and use cases
"""

from .domain.entities import (
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
from .domain.ports import IAttributeWriter, IRegistryAPI, ISourceDataAPI
from .use_cases import BuildSyncPlanUseCase, ExecuteSyncPlanUseCase, compute_sync_plan

__all__ = [
    # Entities
    "EntityKind",
    "GCDREntity",
    "TBCustomer",
    "TBAsset",
    "TBDevice",
    "TBDataBundle",
    # Plan / result
    "SyncActionType",
    "SyncAction",
    "SyncPlan",
    "SyncOutcome",
    "SyncResult",
    # Ports
    "IRegistryAPI",
    "ISourceDataAPI",
    "IAttributeWriter",
    # Use cases
    "compute_sync_plan",
    "BuildSyncPlanUseCase",
    "ExecuteSyncPlanUseCase",
]
