"""Entity mapper: ThingsBoard entities → GCDR DTOs.

Stateless transforms consumed by the diff engine and the orchestrator:

- keyword-based mapping of ThingsBoard asset/device types to registry enums
- slug and natural-code derivation from display names
- DTO construction with the parent registry IDs supplied by the caller
"""

import re
import unicodedata
from typing import Any

from ..domain.entities import (
    CreateAssetDto,
    CreateCustomerDto,
    CreateDeviceDto,
    TBAsset,
    TBCustomer,
    TBDevice,
)

CUSTOMER_TYPE = "COMPANY"

# Keyword tables are checked in order; the first entry with a keyword
# contained in the (lower-cased) source type wins.
ASSET_TYPE_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("shopping", "mall", "site", "campus"), "SITE"),
    (("building", "predio", "edificio"), "BUILDING"),
    (("floor", "andar", "pavimento"), "FLOOR"),
    (("room", "sala", "ambiente"), "ROOM"),
    (("zone", "area", "zona"), "ZONE"),
]

DEVICE_TYPE_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("escada_rolante", "escalator", "escada rolante"), "ACTUATOR"),
    (("elevador", "elevator"), "ACTUATOR"),
    (("bomba", "pump"), "ACTUATOR"),
    (("3f_medidor", "medidor", "meter"), "METER"),
    (("termostato", "thermostat"), "SENSOR"),
    (("hidrometro", "water_meter", "hydrometer"), "METER"),
    (("chiller", "hvac", "fancoil", "ar_condicionado", "cag"), "OTHER"),
    (("gateway", "central"), "GATEWAY"),
]

DEFAULT_TYPE = "OTHER"


def _match_keywords(value: str, table: list[tuple[tuple[str, ...], str]]) -> str | None:
    lower = value.lower()
    for keywords, gcdr_type in table:
        if any(keyword in lower for keyword in keywords):
            return gcdr_type
    return None


def map_asset_type(tb_type: str | None) -> str:
    """Map a ThingsBoard asset type to a registry asset type (default OTHER)."""
    if not tb_type:
        return DEFAULT_TYPE
    return _match_keywords(tb_type, ASSET_TYPE_KEYWORDS) or DEFAULT_TYPE


def map_device_type(tb_type: str | None, tb_profile: str | None = None) -> str:
    """Map a ThingsBoard device type/profile to a registry device type.

    The type is checked before the profile; falls back to OTHER.
    """
    for candidate in (tb_type, tb_profile):
        if not candidate:
            continue
        matched = _match_keywords(candidate, DEVICE_TYPE_KEYWORDS)
        if matched:
            return matched
    return DEFAULT_TYPE


def slugify(text: str, max_len: int = 50) -> str:
    """Lower-case, accent-free, hyphen-separated slug truncated to max_len."""
    normalized = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    slug = re.sub(r"[^a-z0-9]+", "-", stripped).strip("-")
    return slug[:max_len].rstrip("-")


def derive_code(name: str) -> str:
    """Registry natural key for a name.

    Upper-cases the name, collapses every run of non-alphanumeric characters
    into one underscore and trims leading/trailing underscores:
    ``"Food Court - Piso 2"`` → ``"FOOD_COURT_PISO_2"``.
    """
    return re.sub(r"[^A-Z0-9]+", "_", name.upper()).strip("_")


def map_customer(customer: TBCustomer) -> CreateCustomerDto:
    return CreateCustomerDto(
        name=customer.display_name,
        type=CUSTOMER_TYPE,
        external_id=customer.id,
        metadata={
            "tbEntityType": "CUSTOMER",
            "tbId": customer.id,
            "tbName": customer.name,
        },
    )


def map_asset(
    asset: TBAsset,
    customer_gcdr_id: str | None,
    parent_asset_gcdr_id: str | None = None,
) -> CreateAssetDto:
    """Map an asset; ``parent_asset_gcdr_id`` stays None for top-level assets."""
    return CreateAssetDto(
        name=asset.display_name,
        type=map_asset_type(asset.type),
        customer_id=customer_gcdr_id,
        external_id=asset.id,
        parent_asset_id=parent_asset_gcdr_id or None,
        metadata={
            "tbEntityType": "ASSET",
            "tbId": asset.id,
            "tbType": asset.type,
            "tbName": asset.name,
        },
    )


def map_device(
    device: TBDevice,
    attrs: dict[str, Any],
    asset_gcdr_id: str | None,
    customer_gcdr_id: str | None,
) -> CreateDeviceDto:
    """Map a device using its SERVER_SCOPE attributes.

    ``deviceType`` from the attributes stands in when the device has no type;
    ``slaveId``, ``centralId`` and ``identifier`` are copied as strings.
    """
    tb_type = device.type or attrs.get("deviceType")
    tb_profile = device.device_profile_name

    def _optional(key: str) -> str | None:
        value = attrs.get(key)
        return str(value) if value not in (None, "") else None

    return CreateDeviceDto(
        name=device.display_name,
        type=map_device_type(tb_type, tb_profile),
        external_id=device.id,
        asset_id=asset_gcdr_id,
        customer_id=customer_gcdr_id,
        metadata={
            "tbEntityType": "DEVICE",
            "tbId": device.id,
            "tbType": tb_type,
            "tbProfile": tb_profile,
            "tbName": device.name,
        },
        slave_id=_optional("slaveId"),
        central_id=_optional("centralId"),
        identifier=_optional("identifier"),
    )
