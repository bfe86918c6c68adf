"""Build Sync Plan Use Case - Fetch, check, diff.

Workflow:
1. Fetch the customer, its assets and its devices (concurrently)
2. Fetch device→asset membership and SERVER_SCOPE attributes (bounded fan-out)
3. Resolve the registry tenant
4. Existence-check every recorded registry id (bounded fan-out)
5. Run the diff engine

Nothing is written to either platform.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from ...api.exceptions import ConfigurationError
from ...api.resilience import process_concurrent
from ..domain.entities import (
    GCDR_TENANT_ATTR,
    EntityKind,
    GCDREntity,
    SyncPlan,
    TBDataBundle,
)
from ..domain.ports import IRegistryAPI, ISourceDataAPI
from .diff_engine import compute_sync_plan

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


def resolve_tenant_id(configured: str | None, customer_attrs: dict[str, Any]) -> str:
    """Configured tenant first, then the customer's ``gcdrTenantId`` attribute.

    Raises:
        ConfigurationError: If neither is set
    """
    tenant_id = configured or customer_attrs.get(GCDR_TENANT_ATTR)
    if not tenant_id:
        raise ConfigurationError(
            "No GCDR tenant: set GCDR_TENANT_ID or the customer's "
            f"{GCDR_TENANT_ATTR} attribute",
            missing_keys=["GCDR_TENANT_ID"],
        )
    return str(tenant_id)


class BuildSyncPlanUseCase:
    """Produces a SyncPlan and the bundle it was computed from.

    Example:
        use_case = BuildSyncPlanUseCase(
            source_api=TBSourceAPI(tb_client),
            registry_api=GCDRRegistryAPI(gcdr_client),
        )
        plan, bundle = await use_case.execute(customer_id)
    """

    def __init__(
        self,
        source_api: ISourceDataAPI,
        registry_api: IRegistryAPI,
        concurrency: int = 5,
        detect_unchanged: bool = False,
    ):
        """Initialize the use case with its dependencies.

        Args:
            source_api: Port for reading the source tree
            registry_api: Port for the registry existence checks
            concurrency: Fan-out limit for per-entity reads
            detect_unchanged: Let the diff engine emit SKIP for unchanged payloads
        """
        self.source = source_api
        self.registry = registry_api
        self.concurrency = concurrency
        self.detect_unchanged = detect_unchanged

    async def fetch_bundle(
        self,
        customer_id: str,
        tenant_id: str | None = None,
        on_status: Optional[StatusCallback] = None,
    ) -> TBDataBundle:
        """Read the whole source tree of one customer."""
        status = on_status or (lambda message: None)

        status("Fetching customer, assets and devices")
        customer, assets, devices = await asyncio.gather(
            self.source.fetch_customer(customer_id),
            self.source.fetch_assets(customer_id),
            self.source.fetch_devices(customer_id),
        )

        status(f"Fetching relations and attributes for {1 + len(assets) + len(devices)} entities")
        entities = [(EntityKind.CUSTOMER, customer.id)]
        entities += [(EntityKind.ASSET, a.id) for a in assets]
        entities += [(EntityKind.DEVICE, d.id) for d in devices]

        device_asset_map, attrs = await asyncio.gather(
            self.source.fetch_device_asset_map([a.id for a in assets]),
            self.source.fetch_server_scope_attrs_batch(entities),
        )

        customer_attrs = attrs.pop(customer.id, {})
        return TBDataBundle(
            customer=customer,
            customer_attrs=customer_attrs,
            assets=assets,
            devices=devices,
            entity_attrs=attrs,
            device_asset_map=device_asset_map,
            tenant_id=resolve_tenant_id(tenant_id, customer_attrs),
        )

    async def check_existing(
        self,
        bundle: TBDataBundle,
    ) -> dict[str, GCDREntity | None]:
        """Look up every recorded registry id with the getter of its kind.

        A 404 maps to None; any other failure (authentication included)
        propagates and aborts plan building.
        """
        to_check: dict[str, EntityKind] = {}
        recorded = [(EntityKind.CUSTOMER, bundle.customer.id)]
        recorded += [(EntityKind.ASSET, a.id) for a in bundle.assets]
        recorded += [(EntityKind.DEVICE, d.id) for d in bundle.devices]

        for kind, tb_id in recorded:
            gcdr_id = bundle.recorded_gcdr_id(tb_id)
            if gcdr_id and gcdr_id not in to_check:
                to_check[gcdr_id] = kind

        gcdr_ids = list(to_check)

        async def _lookup(gcdr_id: str) -> GCDREntity | None:
            return await self.registry.get_by_id(to_check[gcdr_id], gcdr_id)

        results = await process_concurrent(gcdr_ids, _lookup, max_concurrent=self.concurrency)
        lookup = dict(zip(gcdr_ids, results))

        missing = sum(1 for entity in lookup.values() if entity is None)
        logger.info(f"Checked {len(lookup)} registry ids, {missing} not found")
        return lookup

    async def execute(
        self,
        customer_id: str,
        tenant_id: str | None = None,
        on_status: Optional[StatusCallback] = None,
    ) -> tuple[SyncPlan, TBDataBundle]:
        """Fetch the source tree and compute its sync plan.

        Returns:
            (plan, bundle); the orchestrator needs both

        Raises:
            ConfigurationError: If no tenant can be resolved
            AuthenticationError: If either platform rejected the credentials
        """
        status = on_status or (lambda message: None)

        bundle = await self.fetch_bundle(customer_id, tenant_id, on_status)
        logger.info(
            f"Fetched {bundle.customer.display_name}: {len(bundle.assets)} assets, "
            f"{len(bundle.devices)} devices"
        )

        status("Checking existing GCDR entities")
        lookup = await self.check_existing(bundle)

        status("Computing sync plan")
        plan = compute_sync_plan(bundle, lookup, detect_unchanged=self.detect_unchanged)
        return plan, bundle
