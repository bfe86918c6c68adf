"""Port interfaces for sync operations.

Ports define the contracts between the use cases and the infrastructure.
The diff engine and the orchestrator depend only on these, so both can be
exercised in tests with in-memory fakes.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from typing import Any

from .entities import (
    CreateAssetDto,
    CreateCustomerDto,
    CreateDeviceDto,
    EntityKind,
    GCDREntity,
    TBAsset,
    TBCustomer,
    TBDevice,
)


class IRegistryAPI(ABC):
    """Port for the downstream registry.

    Contract shared by every operation:
        - ``get_*`` returns None when the record does not exist
        - ``create_*`` resolves an "already exists" conflict through the
          entity's natural code and returns the existing record
        - authentication failures raise AuthenticationError
        - every other failure raises a GCDRSyncError subclass
    """

    # ---- Customer ----

    @abstractmethod
    async def create_customer(self, dto: CreateCustomerDto) -> GCDREntity:
        ...

    @abstractmethod
    async def get_customer(self, gcdr_id: str) -> GCDREntity | None:
        ...

    @abstractmethod
    async def get_customer_by_external_id(self, external_id: str) -> GCDREntity | None:
        ...

    @abstractmethod
    async def update_customer(self, gcdr_id: str, dto: CreateCustomerDto) -> GCDREntity | None:
        ...

    # ---- Asset ----

    @abstractmethod
    async def create_asset(self, dto: CreateAssetDto) -> GCDREntity:
        ...

    @abstractmethod
    async def get_asset(self, gcdr_id: str) -> GCDREntity | None:
        ...

    @abstractmethod
    async def get_asset_by_external_id(self, external_id: str) -> GCDREntity | None:
        ...

    @abstractmethod
    async def update_asset(self, gcdr_id: str, dto: CreateAssetDto) -> GCDREntity | None:
        ...

    # ---- Device ----

    @abstractmethod
    async def create_device(self, dto: CreateDeviceDto) -> GCDREntity:
        ...

    @abstractmethod
    async def get_device(self, gcdr_id: str) -> GCDREntity | None:
        ...

    @abstractmethod
    async def get_device_by_external_id(self, external_id: str) -> GCDREntity | None:
        ...

    @abstractmethod
    async def update_device(self, gcdr_id: str, dto: CreateDeviceDto) -> GCDREntity | None:
        ...

    # ---- Kind dispatch ----

    async def get_by_id(self, kind: EntityKind, gcdr_id: str) -> GCDREntity | None:
        """Look up a record of a known kind."""
        getters = {
            EntityKind.CUSTOMER: self.get_customer,
            EntityKind.ASSET: self.get_asset,
            EntityKind.DEVICE: self.get_device,
        }
        return await getters[kind](gcdr_id)


class ISourceDataAPI(ABC):
    """Port for reading the source tree. All operations are read-only."""

    @abstractmethod
    async def fetch_customer(self, customer_id: str) -> TBCustomer:
        ...

    @abstractmethod
    async def fetch_assets(self, customer_id: str) -> list[TBAsset]:
        ...

    @abstractmethod
    async def fetch_devices(self, customer_id: str) -> list[TBDevice]:
        ...

    @abstractmethod
    async def fetch_device_asset_map(self, asset_ids: list[str]) -> dict[str, str]:
        """Return device TB ID → parent asset TB ID."""
        ...

    @abstractmethod
    async def fetch_server_scope_attrs_batch(
        self,
        entities: list[tuple[EntityKind, str]],
    ) -> dict[str, dict[str, Any]]:
        """Return SERVER_SCOPE attributes keyed by TB ID.

        An entity whose attributes cannot be read maps to an empty dict.
        """
        ...


class IAttributeWriter(ABC):
    """Port for persisting registry IDs onto source entities."""

    @abstractmethod
    async def write_downstream_id(
        self,
        kind: EntityKind,
        source_id: str,
        downstream_id: str,
        payload_hash: str | None = None,
    ) -> None:
        """Idempotently record the registry ID (and sync metadata).

        Raises:
            WriteBackError: If the source platform rejected the write
        """
        ...
