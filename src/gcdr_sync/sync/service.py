"""GCDR sync service - wires the clients, adapters and use cases together.

Example:
    config = SyncConfig.from_env()
    async with GCDRSyncService(config) as service:
        plan, result = await service.run(customer_id)
"""

import asyncio
import logging
from typing import Callable, Optional

from ..api.auth import TBTokenManager
from ..api.client import GCDRClient
from ..api.thingsboard import TBClient
from ..config import SyncConfig
from .adapters.gcdr_api_adapter import GCDRRegistryAPI
from .adapters.thingsboard_adapter import TBAttributeWriter, TBSourceAPI
from .domain.entities import EntityKind, SyncPlan, SyncResult
from .use_cases.build_plan import BuildSyncPlanUseCase, StatusCallback, resolve_tenant_id
from .use_cases.execute_plan import ExecuteSyncPlanUseCase, ProgressCallback

logger = logging.getLogger(__name__)


class GCDRSyncService:
    """One ThingsBoard session shared by every run; one registry session per run.

    The registry session is opened per run because the tenant header may
    come from the customer being synced.
    """

    def __init__(
        self,
        config: SyncConfig,
        gcdr_client_factory: Optional[Callable[[str], GCDRClient]] = None,
    ):
        self.config = config
        self._gcdr_client_factory = gcdr_client_factory or self._default_gcdr_client
        self._tb_client: Optional[TBClient] = None
        self.source_api: Optional[TBSourceAPI] = None
        self.attribute_writer: Optional[TBAttributeWriter] = None

    async def __aenter__(self) -> "GCDRSyncService":
        token_manager = TBTokenManager(
            self.config.tb_base_url,
            token=self.config.tb_token,
            username=self.config.tb_username,
            password=self.config.tb_password,
            timeout=self.config.request_timeout,
        )
        self._tb_client = TBClient(token_manager, timeout=self.config.request_timeout)
        await self._tb_client.__aenter__()
        self.source_api = TBSourceAPI(self._tb_client, concurrency=self.config.concurrency)
        self.attribute_writer = TBAttributeWriter(self._tb_client)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._tb_client:
            await self._tb_client.__aexit__(exc_type, exc_val, exc_tb)
            self._tb_client = None

    def _default_gcdr_client(self, tenant_id: str) -> GCDRClient:
        return GCDRClient(
            self.config.gcdr_base_url,
            self.config.gcdr_api_key,
            tenant_id,
            retry_delay=self.config.retry_delay,
            timeout=self.config.request_timeout,
        )

    def _require_started(self) -> TBSourceAPI:
        if self.source_api is None:
            raise RuntimeError(
                "GCDRSyncService must be used as async context manager: "
                "async with GCDRSyncService(config) as service:"
            )
        return self.source_api

    async def resolve_tenant(self, customer_id: str) -> str:
        """Configured tenant, or the customer's gcdrTenantId attribute."""
        if self.config.gcdr_tenant_id:
            return self.config.gcdr_tenant_id
        source_api = self._require_started()
        attrs = await source_api.fetch_server_scope_attrs_batch([(EntityKind.CUSTOMER, customer_id)])
        return resolve_tenant_id(None, attrs.get(customer_id, {}))

    def _plan_builder(self, registry: GCDRRegistryAPI) -> BuildSyncPlanUseCase:
        return BuildSyncPlanUseCase(
            source_api=self._require_started(),
            registry_api=registry,
            concurrency=self.config.concurrency,
            detect_unchanged=self.config.detect_unchanged,
        )

    async def build_plan(
        self,
        customer_id: str,
        on_status: Optional[StatusCallback] = None,
    ) -> SyncPlan:
        """Compute the plan for a customer without changing anything."""
        tenant_id = await self.resolve_tenant(customer_id)
        async with self._gcdr_client_factory(tenant_id) as gcdr_client:
            plan, _ = await self._plan_builder(GCDRRegistryAPI(gcdr_client)).execute(
                customer_id, tenant_id, on_status
            )
        return plan

    async def run(
        self,
        customer_id: str,
        dry_run: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        on_status: Optional[StatusCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> tuple[SyncPlan, Optional[SyncResult]]:
        """Plan and, unless ``dry_run``, execute the sync of one customer.

        Returns:
            (plan, result); result is None for a dry run
        """
        tenant_id = await self.resolve_tenant(customer_id)
        logger.info(f"Syncing customer {customer_id} into tenant {tenant_id}")

        async with self._gcdr_client_factory(tenant_id) as gcdr_client:
            registry = GCDRRegistryAPI(gcdr_client)
            plan, bundle = await self._plan_builder(registry).execute(
                customer_id, tenant_id, on_status
            )

            if dry_run:
                logger.info("Dry run, plan not executed")
                return plan, None

            orchestrator = ExecuteSyncPlanUseCase(
                registry_api=registry,
                attribute_writer=self.attribute_writer,
                concurrency=self.config.execution_concurrency,
                detect_unchanged=self.config.detect_unchanged,
            )
            result = await orchestrator.execute(
                bundle,
                plan,
                on_progress=on_progress,
                cancel_event=cancel_event,
            )
        return plan, result
