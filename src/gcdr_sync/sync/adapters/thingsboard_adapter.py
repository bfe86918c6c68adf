"""ThingsBoard adapters for reading the source tree and writing IDs back.

TBSourceAPI implements ISourceDataAPI and TBAttributeWriter implements
IAttributeWriter. Both wrap the generic TBClient.
"""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ...api.exceptions import AuthenticationError, GCDRSyncError, WriteBackError
from ...api.resilience import process_concurrent
from ..domain.entities import (
    GCDR_ID_ATTR,
    GCDR_SYNC_HASH_ATTR,
    GCDR_SYNCED_AT_ATTR,
    EntityKind,
    TBAsset,
    TBCustomer,
    TBDevice,
)
from ..domain.ports import IAttributeWriter, ISourceDataAPI

if TYPE_CHECKING:
    from ...api.thingsboard import TBClient

logger = logging.getLogger(__name__)

CONTAINS_RELATION = "Contains"


def _entity_id(item: dict[str, Any]) -> str:
    """ThingsBoard wraps IDs as ``{"entityType": ..., "id": ...}``."""
    raw = item.get("id")
    if isinstance(raw, dict):
        return str(raw["id"])
    return str(raw)


def flatten_attributes(payload: Any) -> dict[str, Any]:
    """Turn a ``[{key, value}, ...]`` attribute listing into a dict."""
    if not payload:
        return {}
    if isinstance(payload, dict):
        return dict(payload)
    return {entry["key"]: entry.get("value") for entry in payload if "key" in entry}


class TBSourceAPI(ISourceDataAPI):
    """Read-only access to one customer's tree on ThingsBoard.

    Relation and attribute lookups are one request per entity, so they are
    fanned out through process_concurrent with ``concurrency`` in flight.
    """

    def __init__(self, client: "TBClient", concurrency: int = 5):
        self.client = client
        self.concurrency = concurrency

    async def fetch_customer(self, customer_id: str) -> TBCustomer:
        data = await self.client.get(f"/api/customer/{customer_id}")
        title = data.get("title")
        return TBCustomer(
            id=_entity_id(data),
            name=data.get("name") or title or customer_id,
            title=title,
            additional_info=data.get("additionalInfo") or {},
        )

    async def fetch_assets(self, customer_id: str) -> list[TBAsset]:
        items = await self.client.fetch_all(f"/api/customer/{customer_id}/assets")
        assets = [
            TBAsset(
                id=_entity_id(item),
                name=item.get("name", ""),
                type=item.get("type"),
                label=item.get("label"),
            )
            for item in items
        ]
        logger.info(f"Fetched {len(assets)} assets for customer {customer_id}")
        return assets

    async def fetch_devices(self, customer_id: str) -> list[TBDevice]:
        items = await self.client.fetch_all(f"/api/customer/{customer_id}/devices")
        devices = [
            TBDevice(
                id=_entity_id(item),
                name=item.get("name", ""),
                type=item.get("type"),
                label=item.get("label"),
                device_profile_name=item.get("deviceProfileName"),
            )
            for item in items
        ]
        logger.info(f"Fetched {len(devices)} devices for customer {customer_id}")
        return devices

    async def _fetch_contained_devices(self, asset_id: str) -> list[str]:
        relations = await self.client.get(
            "/api/relations",
            params={
                "fromId": asset_id,
                "fromType": EntityKind.ASSET.tb_entity_type,
                "relationTypeGroup": "COMMON",
            },
        ) or []
        return [
            str(rel["to"]["id"])
            for rel in relations
            if rel.get("type") == CONTAINS_RELATION
            and rel.get("to", {}).get("entityType") == EntityKind.DEVICE.tb_entity_type
        ]

    async def fetch_device_asset_map(self, asset_ids: list[str]) -> dict[str, str]:
        """Map each contained device to its asset.

        A device contained by several assets keeps the first asset in
        ``asset_ids`` order.
        """
        per_asset = await process_concurrent(
            asset_ids,
            self._fetch_contained_devices,
            max_concurrent=self.concurrency,
        )

        device_asset_map: dict[str, str] = {}
        for asset_id, device_ids in zip(asset_ids, per_asset):
            for device_id in device_ids:
                if device_id in device_asset_map:
                    logger.debug(
                        f"Device {device_id} also contained by asset {asset_id}, "
                        f"keeping {device_asset_map[device_id]}"
                    )
                    continue
                device_asset_map[device_id] = asset_id
        return device_asset_map

    async def _fetch_attrs(self, entity: tuple[EntityKind, str]) -> dict[str, Any]:
        kind, tb_id = entity
        endpoint = (
            f"/api/plugins/telemetry/{kind.tb_entity_type}/{tb_id}"
            "/values/attributes/SERVER_SCOPE"
        )
        try:
            return flatten_attributes(await self.client.get(endpoint))
        except AuthenticationError:
            raise
        except GCDRSyncError as e:
            logger.warning(f"Could not read attributes of {kind.value} {tb_id}: {e.message}")
            return {}

    async def fetch_server_scope_attrs_batch(
        self,
        entities: list[tuple[EntityKind, str]],
    ) -> dict[str, dict[str, Any]]:
        results = await process_concurrent(
            entities,
            self._fetch_attrs,
            max_concurrent=self.concurrency,
        )
        return {tb_id: attrs for (_, tb_id), attrs in zip(entities, results)}


class TBAttributeWriter(IAttributeWriter):
    """Writes registry IDs into SERVER_SCOPE attributes.

    The post replaces the listed keys only, so repeating it is harmless.
    """

    def __init__(self, client: "TBClient"):
        self.client = client

    @staticmethod
    def build_attributes(
        kind: EntityKind,
        downstream_id: str,
        payload_hash: str | None = None,
        synced_at: datetime | None = None,
    ) -> dict[str, Any]:
        synced_at = synced_at or datetime.now(timezone.utc)
        attributes: dict[str, Any] = {
            kind.id_attribute: downstream_id,
            GCDR_ID_ATTR: downstream_id,
            GCDR_SYNCED_AT_ATTR: synced_at.isoformat(),
        }
        if payload_hash:
            attributes[GCDR_SYNC_HASH_ATTR] = payload_hash
        return attributes

    async def write_downstream_id(
        self,
        kind: EntityKind,
        source_id: str,
        downstream_id: str,
        payload_hash: str | None = None,
    ) -> None:
        endpoint = f"/api/plugins/telemetry/{kind.tb_entity_type}/{source_id}/attributes/SERVER_SCOPE"
        try:
            await self.client.post(
                endpoint,
                json_body=self.build_attributes(kind, downstream_id, payload_hash),
            )
        except AuthenticationError:
            raise
        except GCDRSyncError as e:
            raise WriteBackError(
                f"Failed to write GCDR id to {kind.value} {source_id}: {e.message}",
                entity_kind=kind.value,
                source_id=source_id,
                cause=e,
            ) from e

        logger.debug(f"Wrote GCDR id {downstream_id} to {kind.value} {source_id}")
