"""GCDR registry adapter.

This adapter implements IRegistryAPI on top of the generic GCDRClient. It
owns the two registry-specific behaviours the transport does not know about:

- Response normalisation: the registry answers with a bare entity, a
  ``{success, data, meta}`` envelope, or a list (``[...]``, ``{items: [...]}``
  or ``{data: [...]}``). Everything is turned into GCDREntity here, once.
- Conflict recovery: a 409 on create means "an entity with this natural key
  already exists". The adapter derives the entity code from its name, looks
  the entity up by code and returns it as if the create had succeeded.
"""

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from ...api.exceptions import (
    ConflictError,
    NotFoundError,
    SyncError,
    UnresolvableConflictError,
    ValidationError,
)
from ..domain.entities import (
    CreateAssetDto,
    CreateCustomerDto,
    CreateDeviceDto,
    EntityDto,
    EntityKind,
    GCDREntity,
)
from ..domain.ports import IRegistryAPI
from .entity_mapper import derive_code

if TYPE_CHECKING:
    from ...api.client import GCDRClient

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

RESOURCES = {
    EntityKind.CUSTOMER: "customers",
    EntityKind.ASSET: "assets",
    EntityKind.DEVICE: "devices",
}


# ============================================
# Response normalisation
# ============================================


def _shape_error(message: str, payload: Any) -> ValidationError:
    return ValidationError(
        f"Unexpected GCDR response shape: {message}",
        field="id",
        status_code=200,
        response_body=repr(payload)[:500],
    )


def normalize_entity(payload: Any) -> GCDREntity | None:
    """Unwrap a single-entity response (bare or ``{data: entity}``).

    Returns None for an empty body (204).

    Raises:
        ValidationError: If the payload is not an entity with an ``id``
    """
    if payload is None:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    if not isinstance(payload, dict):
        raise _shape_error("expected an object", payload)
    if not payload.get("id"):
        raise _shape_error("entity has no id", payload)
    return GCDREntity.from_dict(payload)


def normalize_entity_list(payload: Any) -> list[GCDREntity]:
    """Unwrap a list response: ``[...]``, ``{items: [...]}`` or ``{data: [...]}``.

    A ``{data: {items: [...]}}`` envelope is accepted too.
    """
    if payload is None:
        return []

    items: Any = payload
    if isinstance(items, dict):
        if "data" in items:
            items = items["data"]
        if isinstance(items, dict) and "items" in items:
            items = items["items"]

    if not isinstance(items, list):
        raise _shape_error("expected a list of entities", payload)

    entities = []
    for item in items:
        if not isinstance(item, dict) or not item.get("id"):
            raise _shape_error("list entry has no id", item)
        entities.append(GCDREntity.from_dict(item))
    return entities


# ============================================
# Adapter
# ============================================


class GCDRRegistryAPI(IRegistryAPI):
    """Registry operations for customers, assets and devices.

    Example:
        async with GCDRClient(base_url, api_key, tenant_id) as client:
            registry = GCDRRegistryAPI(client)
            customer = await registry.create_customer(dto)
    """

    def __init__(self, client: "GCDRClient", api_prefix: str = API_PREFIX):
        self.client = client
        self.api_prefix = api_prefix.rstrip("/")

    def _path(self, kind: EntityKind, *parts: str) -> str:
        segments = [self.api_prefix, RESOURCES[kind], *(quote(p, safe="") for p in parts)]
        return "/".join(segments)

    # ----------------------------------------
    # Generic operations
    # ----------------------------------------

    async def _create(self, kind: EntityKind, dto: EntityDto) -> GCDREntity:
        try:
            payload = await self.client.post(self._path(kind), json_body=dto.to_payload())
        except ConflictError as e:
            return await self._resolve_conflict(kind, dto.name, e)

        entity = normalize_entity(payload)
        if entity is None:
            raise SyncError(
                f"GCDR {kind.value} create for {dto.name!r} returned no entity",
                details={"entity_kind": kind.value, "name": dto.name},
            )
        return entity

    async def _resolve_conflict(
        self,
        kind: EntityKind,
        name: str,
        conflict: ConflictError,
    ) -> GCDREntity:
        code = derive_code(name)
        matches = await self.find_by_code(kind, code)
        if not matches:
            raise UnresolvableConflictError(kind.value, name, code, cause=conflict)

        existing = matches[0]
        logger.warning(
            f"GCDR {kind.value} {name!r} already exists (code={code}), "
            f"using existing id {existing.id}"
        )
        return existing

    async def _get(self, kind: EntityKind, *parts: str) -> GCDREntity | None:
        try:
            payload = await self.client.get(self._path(kind, *parts))
        except NotFoundError:
            return None
        return normalize_entity(payload)

    async def _update(self, kind: EntityKind, gcdr_id: str, dto: EntityDto) -> GCDREntity | None:
        payload = await self.client.patch(self._path(kind, gcdr_id), json_body=dto.to_payload())
        return normalize_entity(payload)

    async def find_by_code(self, kind: EntityKind, code: str) -> list[GCDREntity]:
        """List records of a kind whose natural code equals ``code``."""
        payload = await self.client.get(self._path(kind), params={"code": code})
        return normalize_entity_list(payload)

    # ----------------------------------------
    # Customer
    # ----------------------------------------

    async def create_customer(self, dto: CreateCustomerDto) -> GCDREntity:
        return await self._create(EntityKind.CUSTOMER, dto)

    async def get_customer(self, gcdr_id: str) -> GCDREntity | None:
        return await self._get(EntityKind.CUSTOMER, gcdr_id)

    async def get_customer_by_external_id(self, external_id: str) -> GCDREntity | None:
        return await self._get(EntityKind.CUSTOMER, "external", external_id)

    async def update_customer(self, gcdr_id: str, dto: CreateCustomerDto) -> GCDREntity | None:
        return await self._update(EntityKind.CUSTOMER, gcdr_id, dto)

    async def find_customer_by_code(self, code: str) -> list[GCDREntity]:
        return await self.find_by_code(EntityKind.CUSTOMER, code)

    # ----------------------------------------
    # Asset
    # ----------------------------------------

    async def create_asset(self, dto: CreateAssetDto) -> GCDREntity:
        return await self._create(EntityKind.ASSET, dto)

    async def get_asset(self, gcdr_id: str) -> GCDREntity | None:
        return await self._get(EntityKind.ASSET, gcdr_id)

    async def get_asset_by_external_id(self, external_id: str) -> GCDREntity | None:
        return await self._get(EntityKind.ASSET, "external", external_id)

    async def update_asset(self, gcdr_id: str, dto: CreateAssetDto) -> GCDREntity | None:
        return await self._update(EntityKind.ASSET, gcdr_id, dto)

    async def find_asset_by_code(self, code: str) -> list[GCDREntity]:
        return await self.find_by_code(EntityKind.ASSET, code)

    # ----------------------------------------
    # Device
    # ----------------------------------------

    async def create_device(self, dto: CreateDeviceDto) -> GCDREntity:
        return await self._create(EntityKind.DEVICE, dto)

    async def get_device(self, gcdr_id: str) -> GCDREntity | None:
        return await self._get(EntityKind.DEVICE, gcdr_id)

    async def get_device_by_external_id(self, external_id: str) -> GCDREntity | None:
        return await self._get(EntityKind.DEVICE, "external", external_id)

    async def update_device(self, gcdr_id: str, dto: CreateDeviceDto) -> GCDREntity | None:
        return await self._update(EntityKind.DEVICE, gcdr_id, dto)

    async def find_device_by_code(self, code: str) -> list[GCDREntity]:
        return await self.find_by_code(EntityKind.DEVICE, code)
