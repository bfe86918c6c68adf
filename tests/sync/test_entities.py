"""Tests for the sync domain entities."""

import pytest

from src.gcdr_sync.sync.domain.entities import (
    GCDR_ID_ATTR,
    CreateAssetDto,
    CreateCustomerDto,
    CreateDeviceDto,
    EntityKind,
    GCDREntity,
    SyncAction,
    SyncActionType,
    SyncOutcome,
    SyncPlan,
    SyncResult,
    TBAsset,
    TBCustomer,
    TBDataBundle,
    TBDevice,
)


class TestEntityKind:
    """Tests for EntityKind helpers."""

    def test_levels_follow_dependency_order(self):
        assert EntityKind.CUSTOMER.level < EntityKind.ASSET.level < EntityKind.DEVICE.level

    def test_id_attribute(self):
        assert EntityKind.CUSTOMER.id_attribute == "gcdrCustomerId"
        assert EntityKind.ASSET.id_attribute == "gcdrAssetId"
        assert EntityKind.DEVICE.id_attribute == "gcdrDeviceId"

    def test_tb_entity_type(self):
        assert EntityKind.DEVICE.tb_entity_type == "DEVICE"

    def test_creates(self):
        assert SyncActionType.CREATE.creates
        assert SyncActionType.RECREATE.creates
        assert not SyncActionType.UPDATE.creates
        assert not SyncActionType.SKIP.creates


class TestSourceEntities:
    """Tests for the ThingsBoard-side entities and bundle."""

    def test_display_name_prefers_title_and_label(self):
        assert TBCustomer(id="c", name="acme", title="ACME Corp").display_name == "ACME Corp"
        assert TBCustomer(id="c", name="acme").display_name == "acme"
        assert TBAsset(id="a", name="a1", label="Food Court").display_name == "Food Court"
        assert TBDevice(id="d", name="d1").display_name == "d1"

    def test_bundle_attrs_and_recorded_id(self):
        bundle = TBDataBundle(
            customer=TBCustomer(id="c1", name="Shopping X"),
            customer_attrs={GCDR_ID_ATTR: "g-c1"},
            assets=[TBAsset(id="a1", name="Food Court")],
            entity_attrs={"a1": {GCDR_ID_ATTR: "g-a1"}, "d1": {"slaveId": 3}},
        )

        assert bundle.recorded_gcdr_id("c1") == "g-c1"
        assert bundle.recorded_gcdr_id("a1") == "g-a1"
        assert bundle.recorded_gcdr_id("d1") is None
        assert bundle.attrs_for("unknown") == {}
        assert bundle.asset("a1").name == "Food Court"
        assert bundle.device("d1") is None
        assert bundle.entity_count == 2


class TestGCDREntity:
    """Tests for GCDREntity.from_dict."""

    def test_from_dict_maps_camel_case(self):
        entity = GCDREntity.from_dict({
            "id": 42,
            "name": "Meter-01",
            "externalId": "tb-d1",
            "assetId": "g-a1",
        })

        assert entity.id == "42"
        assert entity.external_id == "tb-d1"
        assert entity.asset_id == "g-a1"
        assert entity.raw["name"] == "Meter-01"

    def test_from_dict_requires_id(self):
        with pytest.raises(KeyError):
            GCDREntity.from_dict({"name": "no id"})


class TestDtoPayloads:
    """Tests for DTO serialisation."""

    def test_asset_payload_always_has_parent_key(self):
        dto = CreateAssetDto(name="Food Court", type="OTHER", customer_id="g-c1", external_id="a1")

        payload = dto.to_payload()

        assert "parentAssetId" in payload
        assert payload["parentAssetId"] is None
        assert payload["customerId"] == "g-c1"

    def test_device_payload_omits_unknown_identifiers(self):
        dto = CreateDeviceDto(
            name="Meter-01",
            type="METER",
            external_id="d1",
            asset_id="g-a1",
            customer_id="g-c1",
            slave_id="3",
        )

        payload = dto.to_payload()

        assert payload["slaveId"] == "3"
        assert "centralId" not in payload
        assert "identifier" not in payload

    def test_content_hash_is_stable_and_sensitive(self):
        first = CreateCustomerDto(name="Shopping X", type="COMPANY", external_id="c1", metadata={"b": 1, "a": 2})
        same = CreateCustomerDto(name="Shopping X", type="COMPANY", external_id="c1", metadata={"a": 2, "b": 1})
        renamed = CreateCustomerDto(name="Shopping Y", type="COMPANY", external_id="c1", metadata={"a": 2, "b": 1})

        assert first.content_hash() == same.content_hash()
        assert first.content_hash() != renamed.content_hash()


class TestPlanAndResult:
    """Tests for SyncPlan and SyncResult helpers."""

    def _action(self, action_type, kind, tb_id):
        return SyncAction(type=action_type, entity_kind=kind, tb_id=tb_id, tb_name=tb_id)

    def test_counts(self):
        plan = SyncPlan(actions=[
            self._action(SyncActionType.CREATE, EntityKind.CUSTOMER, "c"),
            self._action(SyncActionType.UPDATE, EntityKind.ASSET, "a"),
            self._action(SyncActionType.RECREATE, EntityKind.DEVICE, "d1"),
            self._action(SyncActionType.SKIP, EntityKind.DEVICE, "d2"),
        ])

        assert (plan.to_create, plan.to_update, plan.to_recreate, plan.to_skip) == (1, 1, 1, 1)
        assert plan.to_dict()["toRecreate"] == 1
        assert [a.tb_id for a in plan.actions_of(EntityKind.DEVICE)] == ["d1", "d2"]

    def test_ordered_actions_is_stable(self):
        plan = SyncPlan(actions=[
            self._action(SyncActionType.CREATE, EntityKind.DEVICE, "d1"),
            self._action(SyncActionType.CREATE, EntityKind.ASSET, "a2"),
            self._action(SyncActionType.CREATE, EntityKind.DEVICE, "d0"),
            self._action(SyncActionType.CREATE, EntityKind.CUSTOMER, "c"),
            self._action(SyncActionType.CREATE, EntityKind.ASSET, "a1"),
        ])

        assert [a.tb_id for a in plan.ordered_actions()] == ["c", "a2", "a1", "d1", "d0"]

    def test_result_success_and_warnings(self):
        action = self._action(SyncActionType.CREATE, EntityKind.CUSTOMER, "c")
        result = SyncResult(
            succeeded=[SyncOutcome(action=action, success=True, gcdr_id="g", warning="write-back failed")],
        )

        assert result.success is True
        assert result.total == 1
        assert len(result.warnings) == 1
        assert result.to_dict()["succeeded"][0]["warning"] == "write-back failed"

        result.failed.append(SyncOutcome(action=action, success=False, error="boom"))
        assert result.success is False
