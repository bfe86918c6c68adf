"""Execute Sync Plan Use Case - The sync orchestrator.

Executes a SyncPlan against the registry, level by level:

    customer → assets → devices

Registry ids are resolved as the run progresses: a parent's id becomes
available to its children only after the parent's action succeeded (or was
known from the source attributes to begin with). When a parent's create
fails, its dependents are recorded as failed without ever being sent.

Failure policy:
    - A per-action error is recorded in ``failed`` and the run continues
    - An AuthenticationError from either platform is fatal, write-back
      included: every action not yet started is recorded failed with
      "aborted: authentication failed"
    - Setting the cancel event stops new actions; in-flight calls finish
    - A failed write-back after a successful create is a warning, not a failure
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from ...api.exceptions import (
    DependencyAbortError,
    GCDRSyncError,
    SyncError,
    is_fatal_for_run,
)
from ...api.resilience import process_concurrent
from ..adapters.entity_mapper import map_asset, map_customer, map_device
from ..domain.entities import (
    EntityDto,
    EntityKind,
    GCDREntity,
    SyncAction,
    SyncActionType,
    SyncOutcome,
    SyncPlan,
    SyncResult,
    TBDataBundle,
)
from ..domain.ports import IAttributeWriter, IRegistryAPI

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

ABORT_PARENT_CUSTOMER = "aborted: parent customer creation failed"
ABORT_PARENT_ASSET = "aborted: parent asset creation failed"
ABORT_NO_PARENT_ASSET = "aborted: device has no resolved parent asset"
ABORT_AUTHENTICATION = "aborted: authentication failed"
ABORT_CANCELLED = "aborted: sync cancelled"


def _error_message(error: Exception) -> str:
    if isinstance(error, GCDRSyncError):
        return error.message
    return str(error) or error.__class__.__name__


@dataclass
class _RunState:
    """Mutable state scoped to a single execute() call."""

    total: int
    resolved_ids: dict[str, str] = field(default_factory=dict)
    failed_creates: set[str] = field(default_factory=set)
    result: SyncResult = field(default_factory=SyncResult)
    current: int = 0
    run_abort: Optional[DependencyAbortError] = None
    progress_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ExecuteSyncPlanUseCase:
    """Runs a SyncPlan and partitions every action into a SyncResult.

    Example:
        use_case = ExecuteSyncPlanUseCase(
            registry_api=GCDRRegistryAPI(gcdr_client),
            attribute_writer=TBAttributeWriter(tb_client),
        )
        result = await use_case.execute(bundle, plan, on_progress=print_progress)
    """

    def __init__(
        self,
        registry_api: IRegistryAPI,
        attribute_writer: IAttributeWriter,
        concurrency: int = 1,
        detect_unchanged: bool = False,
    ):
        """Initialize the orchestrator.

        Args:
            registry_api: Port for registry create/update calls
            attribute_writer: Port for writing registry ids back to the source
            concurrency: Actions in flight within one level (1 = sequential)
            detect_unchanged: Also write the payload hash back after updates
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.registry = registry_api
        self.writer = attribute_writer
        self.concurrency = concurrency
        self.detect_unchanged = detect_unchanged

    async def execute(
        self,
        bundle: TBDataBundle,
        plan: SyncPlan,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Execute every action of the plan.

        Args:
            bundle: Source tree the plan was computed from
            plan: Plan produced by the diff engine
            on_progress: Called with (current, total, name) before each
                executed non-SKIP action
            cancel_event: When set, no new action is started

        Returns:
            SyncResult in which every planned action appears exactly once
        """
        state = _RunState(
            total=sum(1 for a in plan.actions if a.type != SyncActionType.SKIP),
        )

        # Ids confirmed by the existence checks are valid for the whole run
        for action in plan.actions:
            if action.type in (SyncActionType.UPDATE, SyncActionType.SKIP) and action.gcdr_id:
                state.resolved_ids[action.tb_id] = action.gcdr_id

        logger.info(
            f"Executing sync plan: {len(plan.actions)} actions, "
            f"{state.total} to execute, concurrency={self.concurrency}"
        )

        ordered = plan.ordered_actions()
        for kind in (EntityKind.CUSTOMER, EntityKind.ASSET, EntityKind.DEVICE):
            level = [a for a in ordered if a.entity_kind == kind]
            if not level:
                continue

            async def _process(action: SyncAction) -> None:
                await self._process_action(bundle, action, state, on_progress, cancel_event)

            if self.concurrency == 1:
                for action in level:
                    await _process(action)
            else:
                await process_concurrent(level, _process, max_concurrent=self.concurrency)

        result = state.result
        if state.run_abort:
            result.aborted_reason = state.run_abort.message.removeprefix("aborted: ")

        logger.info(
            f"Sync finished: {len(result.succeeded)} succeeded, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    # ----------------------------------------
    # Per-action processing
    # ----------------------------------------

    async def _process_action(
        self,
        bundle: TBDataBundle,
        action: SyncAction,
        state: _RunState,
        on_progress: Optional[ProgressCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        result = state.result

        if action.type == SyncActionType.SKIP:
            result.skipped.append(
                SyncOutcome(action=action, success=True, gcdr_id=action.gcdr_id, attempted=False)
            )
            return

        if state.run_abort is None and cancel_event is not None and cancel_event.is_set():
            logger.warning("Sync cancelled, remaining actions will not be executed")
            state.run_abort = DependencyAbortError(ABORT_CANCELLED)

        abort = state.run_abort or self._dependency_abort(bundle, action, state)
        if abort is not None:
            logger.debug(f"{action.entity_kind.value} {action.tb_name}: {abort.message}")
            result.failed.append(
                SyncOutcome(action=action, success=False, error=abort.message, attempted=False)
            )
            if action.type.creates:
                state.failed_creates.add(action.tb_id)
            return

        async with state.progress_lock:
            state.current += 1
            if on_progress:
                on_progress(state.current, state.total, action.tb_name)

        try:
            outcome = await self._apply(bundle, action, state)
        except Exception as e:
            if is_fatal_for_run(e):
                logger.error(f"Authentication failed while syncing {action.tb_name}: {_error_message(e)}")
                state.run_abort = DependencyAbortError(ABORT_AUTHENTICATION)
            else:
                logger.error(
                    f"Failed to {action.type.value} {action.entity_kind.value} "
                    f"{action.tb_name}: {_error_message(e)}"
                )
            self._record_failure(action, e, state)
            return

        result.succeeded.append(outcome)

    @staticmethod
    def _record_failure(action: SyncAction, error: Exception, state: _RunState) -> None:
        # A create whose write-back hit a fatal error still has its registry id
        state.result.failed.append(
            SyncOutcome(
                action=action,
                success=False,
                gcdr_id=state.resolved_ids.get(action.tb_id),
                error=_error_message(error),
            )
        )
        if action.type.creates:
            state.failed_creates.add(action.tb_id)

    @staticmethod
    def _dependency_abort(
        bundle: TBDataBundle,
        action: SyncAction,
        state: _RunState,
    ) -> Optional[DependencyAbortError]:
        """Return the abort outcome when a required parent is unavailable."""
        if action.entity_kind == EntityKind.CUSTOMER:
            return None

        customer_id = bundle.customer.id
        if customer_id in state.failed_creates or customer_id not in state.resolved_ids:
            return DependencyAbortError(ABORT_PARENT_CUSTOMER, parent_tb_id=customer_id)

        if action.entity_kind == EntityKind.DEVICE:
            asset_tb_id = action.parent_tb_id
            if asset_tb_id and asset_tb_id in state.failed_creates:
                return DependencyAbortError(ABORT_PARENT_ASSET, parent_tb_id=asset_tb_id)
            if not asset_tb_id or asset_tb_id not in state.resolved_ids:
                return DependencyAbortError(ABORT_NO_PARENT_ASSET, parent_tb_id=asset_tb_id)

        return None

    def _map(self, bundle: TBDataBundle, action: SyncAction, state: _RunState) -> EntityDto:
        """Map the source entity with the parent ids resolved in this run."""
        customer_gcdr_id = state.resolved_ids.get(bundle.customer.id)

        if action.entity_kind == EntityKind.CUSTOMER:
            return map_customer(bundle.customer)

        if action.entity_kind == EntityKind.ASSET:
            asset = bundle.asset(action.tb_id)
            if asset is None:
                raise SyncError(f"Asset {action.tb_id} is not part of the source bundle")
            return map_asset(asset, customer_gcdr_id)

        device = bundle.device(action.tb_id)
        if device is None:
            raise SyncError(f"Device {action.tb_id} is not part of the source bundle")
        return map_device(
            device,
            bundle.attrs_for(device.id),
            state.resolved_ids.get(action.parent_tb_id or ""),
            customer_gcdr_id,
        )

    async def _apply(
        self,
        bundle: TBDataBundle,
        action: SyncAction,
        state: _RunState,
    ) -> SyncOutcome:
        dto = self._map(bundle, action, state)
        kind = action.entity_kind

        if action.type == SyncActionType.UPDATE:
            gcdr_id = action.gcdr_id
            await self._update(kind, gcdr_id, dto)
            state.resolved_ids[action.tb_id] = gcdr_id
            logger.debug(f"Updated {kind.value} {action.tb_name} ({gcdr_id})")

            warning = None
            if self.detect_unchanged:
                warning = await self._write_back(kind, action, gcdr_id, dto.content_hash())
            return SyncOutcome(action=action, success=True, gcdr_id=gcdr_id, warning=warning)

        entity = await self._create(kind, dto)
        state.resolved_ids[action.tb_id] = entity.id
        logger.info(f"Created {kind.value} {action.tb_name} → {entity.id}")

        warning = await self._write_back(kind, action, entity.id, dto.content_hash())
        return SyncOutcome(action=action, success=True, gcdr_id=entity.id, warning=warning)

    async def _create(self, kind: EntityKind, dto: EntityDto) -> GCDREntity:
        if kind == EntityKind.CUSTOMER:
            return await self.registry.create_customer(dto)
        if kind == EntityKind.ASSET:
            return await self.registry.create_asset(dto)
        return await self.registry.create_device(dto)

    async def _update(self, kind: EntityKind, gcdr_id: str, dto: EntityDto) -> None:
        if kind == EntityKind.CUSTOMER:
            await self.registry.update_customer(gcdr_id, dto)
        elif kind == EntityKind.ASSET:
            await self.registry.update_asset(gcdr_id, dto)
        else:
            await self.registry.update_device(gcdr_id, dto)

    async def _write_back(
        self,
        kind: EntityKind,
        action: SyncAction,
        gcdr_id: str,
        payload_hash: str,
    ) -> Optional[str]:
        """Persist the registry id on the source entity.

        Failures become warnings, except run-fatal ones which propagate.
        """
        try:
            await self.writer.write_downstream_id(kind, action.tb_id, gcdr_id, payload_hash)
        except Exception as e:
            if is_fatal_for_run(e):
                raise
            warning = f"write-back failed: {_error_message(e)}"
            logger.warning(f"{kind.value} {action.tb_name} synced as {gcdr_id} but {warning}")
            return warning
        return None
