"""Diff Engine - Pure comparison of the source tree against registry state.

Given the source bundle and the results of the registry existence checks,
decide one action per source entity:

1. no recorded ``gcdrId``                 → CREATE
2. ``gcdrId`` looked up and missing         → RECREATE (carries the stale id)
3. ``gcdrId`` never looked up               → CREATE
4. ``gcdrId`` found                         → UPDATE, or SKIP when change
   detection is on, the stored ``gcdrSyncHash`` matches the freshly mapped
   payload, and every parent the payload references is known

Nothing here performs I/O.
"""

import logging
from typing import Any

from ..adapters.entity_mapper import map_asset, map_customer, map_device
from ..domain.entities import (
    GCDR_SYNC_HASH_ATTR,
    EntityDto,
    EntityKind,
    GCDREntity,
    SyncAction,
    SyncActionType,
    SyncPlan,
    TBDataBundle,
)

logger = logging.getLogger(__name__)


def classify(gcdr_id: str | None, lookup: dict[str, GCDREntity | None]) -> SyncActionType:
    """Action type for one entity before change detection."""
    if not gcdr_id:
        return SyncActionType.CREATE
    if gcdr_id not in lookup:
        return SyncActionType.CREATE
    if lookup[gcdr_id] is None:
        return SyncActionType.RECREATE
    return SyncActionType.UPDATE


def _is_unchanged(attrs: dict[str, Any], dto: EntityDto) -> bool:
    stored = attrs.get(GCDR_SYNC_HASH_ATTR)
    return bool(stored) and stored == dto.content_hash()


def compute_sync_plan(
    bundle: TBDataBundle,
    lookup: dict[str, GCDREntity | None],
    detect_unchanged: bool = False,
) -> SyncPlan:
    """Build the sync plan for one customer tree.

    Args:
        bundle: Source tree with SERVER_SCOPE attributes
        lookup: Existence-check results keyed by registry id (None = not found)
        detect_unchanged: Emit SKIP for entities whose payload hash is unchanged

    Returns:
        SyncPlan with exactly one action per source entity, customer first,
        then assets and devices in source order
    """
    actions: list[SyncAction] = []

    # Registry ids that stay valid for the whole run: UPDATE/SKIP keep the id
    known_ids: dict[str, str] = {}

    def _decide(
        kind: EntityKind,
        tb_id: str,
        tb_name: str,
        dto: EntityDto,
        parents_known: bool,
        parent_tb_id: str | None = None,
    ) -> SyncAction:
        attrs = bundle.attrs_for(tb_id)
        gcdr_id = bundle.recorded_gcdr_id(tb_id)
        action_type = classify(gcdr_id, lookup)

        if (
            action_type == SyncActionType.UPDATE
            and detect_unchanged
            and parents_known
            and _is_unchanged(attrs, dto)
        ):
            action_type = SyncActionType.SKIP

        if action_type in (SyncActionType.UPDATE, SyncActionType.SKIP):
            known_ids[tb_id] = gcdr_id
        elif action_type == SyncActionType.CREATE:
            # Never carry an id the registry has not confirmed
            gcdr_id = None

        return SyncAction(
            type=action_type,
            entity_kind=kind,
            tb_id=tb_id,
            tb_name=tb_name,
            dto=dto,
            gcdr_id=gcdr_id,
            parent_tb_id=parent_tb_id,
        )

    # ---- Customer ----
    customer = bundle.customer
    actions.append(
        _decide(
            EntityKind.CUSTOMER,
            customer.id,
            customer.display_name,
            map_customer(customer),
            parents_known=True,
        )
    )
    customer_gcdr_id = known_ids.get(customer.id)

    # ---- Assets ----
    for asset in bundle.assets:
        actions.append(
            _decide(
                EntityKind.ASSET,
                asset.id,
                asset.display_name,
                map_asset(asset, customer_gcdr_id),
                parents_known=customer_gcdr_id is not None,
                parent_tb_id=customer.id,
            )
        )

    # ---- Devices ----
    for device in bundle.devices:
        asset_tb_id = bundle.device_asset_map.get(device.id)
        asset_gcdr_id = known_ids.get(asset_tb_id) if asset_tb_id else None
        actions.append(
            _decide(
                EntityKind.DEVICE,
                device.id,
                device.display_name,
                map_device(device, bundle.attrs_for(device.id), asset_gcdr_id, customer_gcdr_id),
                parents_known=asset_gcdr_id is not None and customer_gcdr_id is not None,
                parent_tb_id=asset_tb_id,
            )
        )

    plan = SyncPlan(actions=actions)
    logger.info(
        f"Sync plan for {customer.display_name}: "
        f"create={plan.to_create} update={plan.to_update} "
        f"recreate={plan.to_recreate} skip={plan.to_skip}"
    )
    return plan
