"""Adapters layer - Infrastructure implementations for sync operations.

This layer contains concrete implementations of the ports defined in the domain layer:
- GCDRRegistryAPI: GCDR registry implementation of IRegistryAPI
- TBSourceAPI: ThingsBoard implementation of ISourceDataAPI
- TBAttributeWriter: ThingsBoard SERVER_SCOPE implementation of IAttributeWriter
- entity_mapper: Pure ThingsBoard → GCDR DTO transforms
"""

from .entity_mapper import (
    derive_code,
    map_asset,
    map_asset_type,
    map_customer,
    map_device,
    map_device_type,
    slugify,
)
from .gcdr_api_adapter import GCDRRegistryAPI, normalize_entity, normalize_entity_list
from .thingsboard_adapter import TBAttributeWriter, TBSourceAPI, flatten_attributes

__all__ = [
    # Registry
    "GCDRRegistryAPI",
    "normalize_entity",
    "normalize_entity_list",
    # Source platform
    "TBSourceAPI",
    "TBAttributeWriter",
    "flatten_attributes",
    # Mapping
    "derive_code",
    "slugify",
    "map_asset_type",
    "map_device_type",
    "map_customer",
    "map_asset",
    "map_device",
]
