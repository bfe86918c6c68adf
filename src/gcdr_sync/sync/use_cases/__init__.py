"""Use cases layer - Business logic orchestration for sync operations.

This layer contains the sync workflow:
- compute_sync_plan: Pure diff of the source tree against registry state
- BuildSyncPlanUseCase: Fetch the source tree, check registry ids, diff
- ExecuteSyncPlanUseCase: Execute a plan level by level (the orchestrator)

Use cases depend only on ports, not concrete implementations.
"""

from .build_plan import BuildSyncPlanUseCase, resolve_tenant_id
from .diff_engine import compute_sync_plan
from .execute_plan import ExecuteSyncPlanUseCase

__all__ = [
    "BuildSyncPlanUseCase",
    "ExecuteSyncPlanUseCase",
    "compute_sync_plan",
    "resolve_tenant_id",
]
