"""Domain entities for sync operations.

These are pure data structures with no infrastructure dependencies. They
describe the source tree (Customer → Assets → Devices as read from
ThingsBoard), the registry records, the DTOs sent to the registry, and the
plan/result types that flow between the diff engine and the orchestrator.
"""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EntityKind(str, Enum):
    """The three levels of the synced hierarchy, in dependency order."""

    CUSTOMER = "customer"
    ASSET = "asset"
    DEVICE = "device"

    @property
    def tb_entity_type(self) -> str:
        """ThingsBoard entity type used in attribute/relation URLs."""
        return self.value.upper()

    @property
    def id_attribute(self) -> str:
        """Kind-specific SERVER_SCOPE key holding the registry ID."""
        return f"gcdr{self.value.capitalize()}Id"

    @property
    def level(self) -> int:
        return _KIND_LEVELS[self]


_KIND_LEVELS = {EntityKind.CUSTOMER: 0, EntityKind.ASSET: 1, EntityKind.DEVICE: 2}

# SERVER_SCOPE keys shared by every kind
GCDR_ID_ATTR = "gcdrId"
GCDR_SYNCED_AT_ATTR = "gcdrSyncedAt"
GCDR_SYNC_HASH_ATTR = "gcdrSyncHash"
GCDR_TENANT_ATTR = "gcdrTenantId"


class SyncActionType(str, Enum):
    """What the orchestrator will do for one source entity."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    SKIP = "SKIP"
    RECREATE = "RECREATE"

    @property
    def creates(self) -> bool:
        """CREATE and RECREATE both execute as a registry create."""
        return self in (SyncActionType.CREATE, SyncActionType.RECREATE)


# ============================================
# Source (ThingsBoard) Entities
# ============================================


@dataclass(frozen=True)
class TBCustomer:
    """Root customer of a sync run."""

    id: str
    name: str
    title: str | None = None
    additional_info: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.title or self.name


@dataclass(frozen=True)
class TBAsset:
    """An asset owned by the root customer."""

    id: str
    name: str
    type: str | None = None
    label: str | None = None

    @property
    def display_name(self) -> str:
        return self.label or self.name


@dataclass(frozen=True)
class TBDevice:
    """A device owned by the root customer.

    The parent asset is not a field: membership comes from the bundle's
    device→asset map, which is resolved from ThingsBoard relations.
    """

    id: str
    name: str
    type: str | None = None
    label: str | None = None
    device_profile_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.label or self.name


@dataclass
class TBDataBundle:
    """Read-only snapshot of the source tree for one sync run.

    Attributes:
        customer: Root customer
        customer_attrs: Customer SERVER_SCOPE attributes
        assets: Customer assets, in source order
        devices: Customer devices, in source order
        entity_attrs: SERVER_SCOPE attributes of assets and devices, by TB ID
        device_asset_map: Device TB ID → parent asset TB ID
        tenant_id: GCDR tenant the customer belongs to
    """

    customer: TBCustomer
    customer_attrs: dict[str, Any] = field(default_factory=dict)
    assets: list[TBAsset] = field(default_factory=list)
    devices: list[TBDevice] = field(default_factory=list)
    entity_attrs: dict[str, dict[str, Any]] = field(default_factory=dict)
    device_asset_map: dict[str, str] = field(default_factory=dict)
    tenant_id: str | None = None

    def attrs_for(self, tb_id: str) -> dict[str, Any]:
        """Return the SERVER_SCOPE attributes of any entity in the bundle."""
        if tb_id == self.customer.id:
            return self.customer_attrs
        return self.entity_attrs.get(tb_id, {})

    def recorded_gcdr_id(self, tb_id: str) -> str | None:
        """Return the registry ID previously written back, if any."""
        value = self.attrs_for(tb_id).get(GCDR_ID_ATTR)
        return str(value) if value else None

    @property
    def entity_count(self) -> int:
        return 1 + len(self.assets) + len(self.devices)

    def asset(self, tb_id: str) -> TBAsset | None:
        return next((a for a in self.assets if a.id == tb_id), None)

    def device(self, tb_id: str) -> TBDevice | None:
        return next((d for d in self.devices if d.id == tb_id), None)


# ============================================
# Registry (GCDR) Entities and DTOs
# ============================================


@dataclass
class GCDREntity:
    """A record as returned by the registry, already unwrapped and validated."""

    id: str
    name: str | None = None
    code: str | None = None
    slug: str | None = None
    external_id: str | None = None
    type: str | None = None
    customer_id: str | None = None
    asset_id: str | None = None
    parent_asset_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GCDREntity":
        return cls(
            id=str(data["id"]),
            name=data.get("name"),
            code=data.get("code"),
            slug=data.get("slug"),
            external_id=data.get("externalId"),
            type=data.get("type"),
            customer_id=data.get("customerId"),
            asset_id=data.get("assetId"),
            parent_asset_id=data.get("parentAssetId"),
            raw=data,
        )


class _PayloadMixin:
    """Shared serialisation helpers for the create/update DTOs."""

    def to_payload(self) -> dict[str, Any]:
        raise NotImplementedError

    def content_hash(self) -> str:
        """Stable SHA-256 of the payload, used for unchanged-entity detection."""
        encoded = json.dumps(self.to_payload(), sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(encoded.encode()).hexdigest()


@dataclass
class CreateCustomerDto(_PayloadMixin):
    """Customer payload. The tenant travels in the x-tenant-id header."""

    name: str
    type: str
    external_id: str
    metadata: dict[str, Any] = field(default_factory=dict)

    kind = EntityKind.CUSTOMER

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "externalId": self.external_id,
            "metadata": self.metadata,
        }


@dataclass
class CreateAssetDto(_PayloadMixin):
    """Asset payload.

    ``parentAssetId`` is always serialised, as JSON null when absent: the
    registry defaults an omitted key to an empty string and rejects it.
    """

    name: str
    type: str
    customer_id: str | None
    external_id: str
    parent_asset_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    kind = EntityKind.ASSET

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "customerId": self.customer_id,
            "externalId": self.external_id,
            "parentAssetId": self.parent_asset_id,
            "metadata": self.metadata,
        }


@dataclass
class CreateDeviceDto(_PayloadMixin):
    """Device payload. Optional identifiers are omitted when not known."""

    name: str
    type: str
    external_id: str
    asset_id: str | None
    customer_id: str | None
    metadata: dict[str, Any] = field(default_factory=dict)
    slave_id: str | None = None
    central_id: str | None = None
    identifier: str | None = None

    kind = EntityKind.DEVICE

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "externalId": self.external_id,
            "assetId": self.asset_id,
            "customerId": self.customer_id,
            "metadata": self.metadata,
        }
        if self.slave_id is not None:
            payload["slaveId"] = self.slave_id
        if self.central_id is not None:
            payload["centralId"] = self.central_id
        if self.identifier is not None:
            payload["identifier"] = self.identifier
        return payload


EntityDto = CreateCustomerDto | CreateAssetDto | CreateDeviceDto


# ============================================
# Plan and Result
# ============================================


@dataclass
class SyncAction:
    """One planned operation for one source entity.

    Only the diff engine builds these. ``dto`` carries the payload mapped with
    the parent IDs known at planning time; the orchestrator re-maps
    parent-dependent payloads once parents are resolved in the same run.
    """

    type: SyncActionType
    entity_kind: EntityKind
    tb_id: str
    tb_name: str
    dto: EntityDto | None = None
    gcdr_id: str | None = None
    parent_tb_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "entityKind": self.entity_kind.value,
            "tbId": self.tb_id,
            "tbName": self.tb_name,
            "gcdrId": self.gcdr_id,
            "parentTbId": self.parent_tb_id,
        }


@dataclass
class SyncPlan:
    """Side-effect-free output of the diff engine: one action per entity."""

    actions: list[SyncAction] = field(default_factory=list)

    def _count(self, action_type: SyncActionType) -> int:
        return sum(1 for a in self.actions if a.type == action_type)

    @property
    def to_create(self) -> int:
        return self._count(SyncActionType.CREATE)

    @property
    def to_update(self) -> int:
        return self._count(SyncActionType.UPDATE)

    @property
    def to_skip(self) -> int:
        return self._count(SyncActionType.SKIP)

    @property
    def to_recreate(self) -> int:
        return self._count(SyncActionType.RECREATE)

    def actions_of(self, kind: EntityKind) -> list[SyncAction]:
        return [a for a in self.actions if a.entity_kind == kind]

    def ordered_actions(self) -> list[SyncAction]:
        """Customer, then assets, then devices; source order within a kind."""
        return sorted(self.actions, key=lambda a: a.entity_kind.level)

    def to_dict(self) -> dict[str, Any]:
        return {
            "toCreate": self.to_create,
            "toUpdate": self.to_update,
            "toSkip": self.to_skip,
            "toRecreate": self.to_recreate,
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass
class SyncOutcome:
    """How one action ended.

    ``attempted`` is False for actions that never reached the API (dependency
    aborts, run aborts). ``warning`` carries non-fatal problems such as a
    failed write-back after a successful create.
    """

    action: SyncAction
    success: bool
    gcdr_id: str | None = None
    error: str | None = None
    warning: str | None = None
    attempted: bool = True

    def to_dict(self) -> dict[str, Any]:
        data = {
            **self.action.to_dict(),
            "success": self.success,
            "attempted": self.attempted,
        }
        if self.gcdr_id:
            data["gcdrId"] = self.gcdr_id
        if self.error:
            data["error"] = self.error
        if self.warning:
            data["warning"] = self.warning
        return data


@dataclass
class SyncResult:
    """Outcome partitions of one orchestration run.

    Every planned action ends up in exactly one of the three lists.
    """

    succeeded: list[SyncOutcome] = field(default_factory=list)
    failed: list[SyncOutcome] = field(default_factory=list)
    skipped: list[SyncOutcome] = field(default_factory=list)
    aborted_reason: str | None = None

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.skipped)

    @property
    def warnings(self) -> list[SyncOutcome]:
        return [o for o in self.succeeded if o.warning]

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": [o.to_dict() for o in self.succeeded],
            "failed": [o.to_dict() for o in self.failed],
            "skipped": [o.to_dict() for o in self.skipped],
            "abortedReason": self.aborted_reason,
        }
