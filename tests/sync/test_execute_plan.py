"""Tests for ExecuteSyncPlanUseCase (the orchestrator).

Most tests drive the orchestrator with a recording mock registry. The
end-to-end scenario at the bottom runs the real GCDRRegistryAPI on top of an
in-memory registry client so that conflict recovery is exercised too.
"""

import asyncio
import random

import pytest

from src.gcdr_sync.api.exceptions import (
    AuthenticationError,
    ConflictError,
    DependencyAbortError,
    NotFoundError,
    ServerError,
    WriteBackError,
)
from src.gcdr_sync.sync.adapters.entity_mapper import derive_code
from src.gcdr_sync.sync.adapters.gcdr_api_adapter import GCDRRegistryAPI
from src.gcdr_sync.sync.domain.entities import (
    GCDR_ID_ATTR,
    EntityKind,
    GCDREntity,
    SyncActionType,
    SyncPlan,
    TBAsset,
    TBCustomer,
    TBDataBundle,
    TBDevice,
)
from src.gcdr_sync.sync.domain.ports import IAttributeWriter, IRegistryAPI
from src.gcdr_sync.sync.use_cases.diff_engine import compute_sync_plan
from src.gcdr_sync.sync.use_cases.execute_plan import (
    ABORT_AUTHENTICATION,
    ABORT_CANCELLED,
    ABORT_NO_PARENT_ASSET,
    ABORT_PARENT_ASSET,
    ABORT_PARENT_CUSTOMER,
    ExecuteSyncPlanUseCase,
    _RunState,
)


class MockRegistryAPI(IRegistryAPI):
    """Recording registry; ``fail_on`` maps an entity name to the error it raises."""

    def __init__(self, fail_on: dict[str, Exception] | None = None, delay: float = 0.0):
        self.fail_on = fail_on or {}
        self.delay = delay
        self.calls: list[tuple[str, EntityKind, str]] = []
        self.dtos: dict[str, object] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._counter = 0

    async def _call(self, op: str, kind: EntityKind, dto, gcdr_id: str | None = None):
        self.calls.append((op, kind, dto.name))
        self.dtos[dto.name] = dto
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if dto.name in self.fail_on:
                raise self.fail_on[dto.name]
        finally:
            self.in_flight -= 1

        if gcdr_id:
            return GCDREntity(id=gcdr_id, name=dto.name)
        self._counter += 1
        return GCDREntity(id=f"g-{kind.value}-{self._counter}", name=dto.name)

    async def create_customer(self, dto):
        return await self._call("create", EntityKind.CUSTOMER, dto)

    async def create_asset(self, dto):
        return await self._call("create", EntityKind.ASSET, dto)

    async def create_device(self, dto):
        return await self._call("create", EntityKind.DEVICE, dto)

    async def update_customer(self, gcdr_id, dto):
        return await self._call("update", EntityKind.CUSTOMER, dto, gcdr_id)

    async def update_asset(self, gcdr_id, dto):
        return await self._call("update", EntityKind.ASSET, dto, gcdr_id)

    async def update_device(self, gcdr_id, dto):
        return await self._call("update", EntityKind.DEVICE, dto, gcdr_id)

    async def get_customer(self, gcdr_id):
        return None

    async def get_asset(self, gcdr_id):
        return None

    async def get_device(self, gcdr_id):
        return None

    async def get_customer_by_external_id(self, external_id):
        return None

    async def get_asset_by_external_id(self, external_id):
        return None

    async def get_device_by_external_id(self, external_id):
        return None


class MockAttributeWriter(IAttributeWriter):
    """Records write-backs; fails for the TB ids in ``fail_for``.

    ``error``, when given, is raised by every write instead.
    """

    def __init__(self, fail_for: set[str] | None = None, error: Exception | None = None):
        self.fail_for = fail_for or set()
        self.error = error
        self.writes: list[tuple[EntityKind, str, str, str | None]] = []

    async def write_downstream_id(self, kind, source_id, downstream_id, payload_hash=None):
        if self.error is not None:
            raise self.error
        if source_id in self.fail_for:
            raise WriteBackError("attribute write rejected", entity_kind=kind.value, source_id=source_id)
        self.writes.append((kind, source_id, downstream_id, payload_hash))


def make_tree(
    assets_count: int = 2,
    devices_per_asset: int = 2,
    customer_attrs: dict | None = None,
    entity_attrs: dict | None = None,
) -> TBDataBundle:
    assets = [TBAsset(id=f"a{i}", name=f"Asset {i}") for i in range(assets_count)]
    devices = []
    device_asset_map = {}
    for i in range(assets_count):
        for j in range(devices_per_asset):
            device = TBDevice(id=f"d{i}{j}", name=f"Device {i}-{j}")
            devices.append(device)
            device_asset_map[device.id] = f"a{i}"
    return TBDataBundle(
        customer=TBCustomer(id="c1", name="Customer"),
        customer_attrs=customer_attrs or {},
        assets=assets,
        devices=devices,
        entity_attrs=entity_attrs or {},
        device_asset_map=device_asset_map,
        tenant_id="t1",
    )


def all_outcomes(result):
    return result.succeeded + result.failed + result.skipped


class TestOrdering:
    """Tests for level ordering."""

    @pytest.mark.asyncio
    async def test_levels_execute_in_dependency_order(self):
        bundle = make_tree(assets_count=3, devices_per_asset=3)
        rng = random.Random(11)
        rng.shuffle(bundle.assets)
        rng.shuffle(bundle.devices)
        plan = compute_sync_plan(bundle, {})
        rng.shuffle(plan.actions)
        registry = MockRegistryAPI()

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        levels = [kind.level for _, kind, _ in registry.calls]
        assert levels == sorted(levels)
        assert result.success
        assert len(result.succeeded) == 1 + 3 + 9

        # Every device is sent after the asset that contains it
        position = {name: i for i, (_, _, name) in enumerate(registry.calls)}
        for device in bundle.devices:
            asset = bundle.asset(bundle.device_asset_map[device.id])
            assert position[asset.display_name] < position[device.display_name]

    @pytest.mark.asyncio
    async def test_source_order_is_kept_within_a_level(self):
        bundle = make_tree(assets_count=4, devices_per_asset=2)
        rng = random.Random(5)
        rng.shuffle(bundle.assets)
        rng.shuffle(bundle.devices)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI()

        await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        sent_assets = [name for _, kind, name in registry.calls if kind == EntityKind.ASSET]
        sent_devices = [name for _, kind, name in registry.calls if kind == EntityKind.DEVICE]
        assert sent_assets == [a.display_name for a in bundle.assets]
        assert sent_devices == [d.display_name for d in bundle.devices]

    @pytest.mark.asyncio
    async def test_every_action_lands_in_exactly_one_partition(self):
        bundle = make_tree()
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI(fail_on={"Asset 0": ServerError("boom")})

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        tb_ids = [o.action.tb_id for o in all_outcomes(result)]
        assert sorted(tb_ids) == sorted(a.tb_id for a in plan.actions)


class TestCreateAndWriteBack:
    """Tests for create actions, id resolution and write-back."""

    @pytest.mark.asyncio
    async def test_children_use_ids_resolved_in_the_same_run(self):
        bundle = make_tree(assets_count=1, devices_per_asset=1)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI()
        writer = MockAttributeWriter()

        result = await ExecuteSyncPlanUseCase(registry, writer).execute(bundle, plan)

        ids = {o.action.tb_id: o.gcdr_id for o in result.succeeded}
        assert registry.dtos["Asset 0"].customer_id == ids["c1"]
        assert registry.dtos["Device 0-0"].asset_id == ids["a0"]
        assert registry.dtos["Device 0-0"].customer_id == ids["c1"]

        written = {source_id: gcdr_id for _, source_id, gcdr_id, _ in writer.writes}
        assert written == ids
        assert all(payload_hash for *_, payload_hash in writer.writes)

    @pytest.mark.asyncio
    async def test_write_back_failure_is_a_warning(self):
        bundle = make_tree(assets_count=1, devices_per_asset=1)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI()
        writer = MockAttributeWriter(fail_for={"a0"})

        result = await ExecuteSyncPlanUseCase(registry, writer).execute(bundle, plan)

        assert result.success
        asset_outcome = next(o for o in result.succeeded if o.action.tb_id == "a0")
        assert "write-back failed" in asset_outcome.warning
        assert result.warnings == [asset_outcome]
        # The asset id is still usable by its devices
        assert registry.dtos["Device 0-0"].asset_id == asset_outcome.gcdr_id

    @pytest.mark.asyncio
    async def test_update_reuses_known_id(self):
        bundle = make_tree(
            assets_count=1,
            devices_per_asset=1,
            customer_attrs={GCDR_ID_ATTR: "g-c1"},
            entity_attrs={"a0": {GCDR_ID_ATTR: "g-a0"}},
        )
        lookup = {"g-c1": GCDREntity(id="g-c1"), "g-a0": GCDREntity(id="g-a0")}
        plan = compute_sync_plan(bundle, lookup)
        registry = MockRegistryAPI()
        writer = MockAttributeWriter()

        result = await ExecuteSyncPlanUseCase(registry, writer).execute(bundle, plan)

        assert [op for op, _, _ in registry.calls] == ["update", "update", "create"]
        assert registry.dtos["Device 0-0"].asset_id == "g-a0"
        assert {o.gcdr_id for o in result.succeeded} >= {"g-c1", "g-a0"}
        # Without change detection only creates are written back
        assert [source_id for _, source_id, _, _ in writer.writes] == ["d00"]

    @pytest.mark.asyncio
    async def test_update_writes_hash_when_detecting_changes(self):
        bundle = make_tree(assets_count=0, customer_attrs={GCDR_ID_ATTR: "g-c1"})
        plan = compute_sync_plan(bundle, {"g-c1": GCDREntity(id="g-c1")}, detect_unchanged=True)
        writer = MockAttributeWriter()

        await ExecuteSyncPlanUseCase(MockRegistryAPI(), writer, detect_unchanged=True).execute(bundle, plan)

        assert len(writer.writes) == 1
        kind, source_id, gcdr_id, payload_hash = writer.writes[0]
        assert (kind, source_id, gcdr_id) == (EntityKind.CUSTOMER, "c1", "g-c1")
        assert payload_hash == plan.actions[0].dto.content_hash()


class TestCascade:
    """Tests for dependency aborts."""

    @pytest.mark.asyncio
    async def test_customer_create_failure_aborts_everything(self):
        bundle = make_tree(assets_count=2, devices_per_asset=2)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI(fail_on={"Customer": ServerError("boom")})

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        assert len(registry.calls) == 1
        assert len(result.failed) == 1 + 2 + 4
        aborted = [o for o in result.failed if o.action.entity_kind != EntityKind.CUSTOMER]
        assert all(o.error == ABORT_PARENT_CUSTOMER for o in aborted)
        assert not any(o.attempted for o in aborted)

    @pytest.mark.asyncio
    async def test_asset_failure_only_aborts_its_devices(self):
        bundle = make_tree(assets_count=2, devices_per_asset=2)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI(fail_on={"Asset 0": ConflictError("dup")})

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        called_names = {name for _, _, name in registry.calls}
        assert "Device 0-0" not in called_names
        assert "Device 0-1" not in called_names
        assert {"Device 1-0", "Device 1-1"} <= called_names

        failed = {o.action.tb_id: o.error for o in result.failed}
        assert failed["d00"] == ABORT_PARENT_ASSET
        assert failed["d01"] == ABORT_PARENT_ASSET
        assert set(failed) == {"a0", "d00", "d01"}
        assert {o.action.tb_id for o in result.succeeded} == {"c1", "a1", "d10", "d11"}

    @pytest.mark.asyncio
    async def test_customer_update_failure_does_not_cascade(self):
        bundle = make_tree(assets_count=1, devices_per_asset=1, customer_attrs={GCDR_ID_ATTR: "g-c1"})
        plan = compute_sync_plan(bundle, {"g-c1": GCDREntity(id="g-c1")})
        registry = MockRegistryAPI(fail_on={"Customer": ServerError("boom")})

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        assert [o.action.tb_id for o in result.failed] == ["c1"]
        assert registry.dtos["Asset 0"].customer_id == "g-c1"

    @pytest.mark.asyncio
    async def test_device_without_parent_asset_is_aborted(self):
        bundle = make_tree(assets_count=1, devices_per_asset=1)
        bundle.devices.append(TBDevice(id="orphan", name="Orphan"))
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI()

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        assert "Orphan" not in {name for _, _, name in registry.calls}
        orphan = next(o for o in result.failed if o.action.tb_id == "orphan")
        assert orphan.error == ABORT_NO_PARENT_ASSET
        assert orphan.attempted is False

    def test_dependency_abort_names_the_missing_parent(self):
        bundle = make_tree(assets_count=1, devices_per_asset=1)
        plan = compute_sync_plan(bundle, {})
        device_action = next(a for a in plan.actions if a.entity_kind == EntityKind.DEVICE)
        state = _RunState(total=len(plan.actions), resolved_ids={"c1": "g-c1"}, failed_creates={"a0"})

        abort = ExecuteSyncPlanUseCase._dependency_abort(bundle, device_action, state)

        assert isinstance(abort, DependencyAbortError)
        assert abort.message == ABORT_PARENT_ASSET
        assert abort.parent_tb_id == "a0"

    def test_dependency_abort_is_none_when_parents_resolved(self):
        bundle = make_tree(assets_count=1, devices_per_asset=1)
        plan = compute_sync_plan(bundle, {})
        device_action = next(a for a in plan.actions if a.entity_kind == EntityKind.DEVICE)
        state = _RunState(total=len(plan.actions), resolved_ids={"c1": "g-c1", "a0": "g-a0"})

        assert ExecuteSyncPlanUseCase._dependency_abort(bundle, device_action, state) is None

    @pytest.mark.asyncio
    async def test_per_action_error_is_recorded(self):
        bundle = make_tree(assets_count=1, devices_per_asset=2)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI(fail_on={"Device 0-0": NotFoundError("asset vanished")})

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        assert [(o.action.tb_id, o.error) for o in result.failed] == [("d00", "asset vanished")]
        assert result.aborted_reason is None


class TestRunAborts:
    """Tests for authentication aborts and cancellation."""

    @pytest.mark.asyncio
    async def test_authentication_error_aborts_the_run(self):
        bundle = make_tree(assets_count=3, devices_per_asset=1)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI(fail_on={"Asset 1": AuthenticationError("key revoked", status_code=401)})

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        assert result.aborted_reason == "authentication failed"
        assert [name for _, _, name in registry.calls] == ["Customer", "Asset 0", "Asset 1"]
        failed = {o.action.tb_id: o.error for o in result.failed}
        assert failed["a1"] == "key revoked"
        for tb_id in ("a2", "d00", "d10", "d20"):
            assert failed[tb_id] == ABORT_AUTHENTICATION
        assert {o.action.tb_id for o in result.succeeded} == {"c1", "a0"}

    @pytest.mark.asyncio
    async def test_write_back_authentication_error_aborts_the_run(self):
        """A rejected source credential stops the run instead of becoming a warning."""
        bundle = make_tree(assets_count=2, devices_per_asset=2)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI()
        writer = MockAttributeWriter(error=AuthenticationError("TB token rejected", status_code=401))

        result = await ExecuteSyncPlanUseCase(registry, writer).execute(bundle, plan)

        assert [name for _, _, name in registry.calls] == ["Customer"]
        assert result.aborted_reason == "authentication failed"
        assert result.succeeded == []
        assert len(result.failed) == 1 + 2 + 4

        customer = next(o for o in result.failed if o.action.tb_id == "c1")
        assert customer.error == "TB token rejected"
        assert customer.gcdr_id == "g-customer-1"
        others = [o for o in result.failed if o.action.tb_id != "c1"]
        assert all(o.error == ABORT_AUTHENTICATION for o in others)
        assert not any(o.attempted for o in others)

    @pytest.mark.asyncio
    async def test_cancellation_stops_new_actions(self):
        bundle = make_tree(assets_count=2, devices_per_asset=2)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI()
        cancel_event = asyncio.Event()

        def on_progress(current, total, name):
            if current == 2:
                cancel_event.set()

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(
            bundle, plan, on_progress=on_progress, cancel_event=cancel_event
        )

        # The action that reported progress #2 was already started
        assert [name for _, _, name in registry.calls] == ["Customer", "Asset 0"]
        assert result.aborted_reason == "sync cancelled"
        assert len(result.failed) == len(plan.actions) - 2
        assert all(o.error == ABORT_CANCELLED for o in result.failed)


class TestProgress:
    """Tests for progress reporting."""

    @pytest.mark.asyncio
    async def test_progress_excludes_skip_and_reaches_total(self):
        bundle = make_tree(assets_count=1, devices_per_asset=2)
        plan = compute_sync_plan(bundle, {})
        plan.actions[1].type = SyncActionType.SKIP
        plan.actions[1].gcdr_id = "g-a0"
        calls = []

        result = await ExecuteSyncPlanUseCase(MockRegistryAPI(), MockAttributeWriter()).execute(
            bundle, plan, on_progress=lambda c, t, n: calls.append((c, t, n))
        )

        assert [c for c, _, _ in calls] == [1, 2, 3]
        assert {t for _, t, _ in calls} == {3}
        assert "Asset 0" not in [n for _, _, n in calls]
        assert [o.action.tb_id for o in result.skipped] == ["a0"]
        assert result.skipped[0].attempted is False

    @pytest.mark.asyncio
    async def test_aborted_actions_are_not_reported(self):
        bundle = make_tree(assets_count=2, devices_per_asset=1)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI(fail_on={"Asset 0": ServerError("boom")})
        calls = []

        await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(
            bundle, plan, on_progress=lambda c, t, n: calls.append((c, t, n))
        )

        names = [n for _, _, n in calls]
        assert "Device 0-0" not in names
        assert [c for c, _, _ in calls] == list(range(1, len(calls) + 1))
        assert calls[-1][1] == 5


class TestConcurrency:
    """Tests for within-level fan-out."""

    @pytest.mark.asyncio
    async def test_levels_stay_sequential_with_fan_out(self):
        bundle = make_tree(assets_count=4, devices_per_asset=3)
        plan = compute_sync_plan(bundle, {})
        registry = MockRegistryAPI(delay=0.01)
        progress = []

        result = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter(), concurrency=3).execute(
            bundle, plan, on_progress=lambda c, t, n: progress.append(c)
        )

        assert result.success
        assert 1 < registry.max_in_flight <= 3
        levels = [kind.level for _, kind, _ in registry.calls]
        assert levels == sorted(levels)
        assert sorted(progress) == progress == list(range(1, 1 + 4 + 12))

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            ExecuteSyncPlanUseCase(MockRegistryAPI(), MockAttributeWriter(), concurrency=0)


class InMemoryGCDRClient:
    """Stands in for GCDRClient: keeps entities per resource, 409 on duplicate code."""

    def __init__(self):
        self.store: dict[str, list[dict]] = {"customers": [], "assets": [], "devices": []}
        self.requests: list[tuple[str, str]] = []

    def seed(self, resource: str, entity: dict) -> None:
        self.store[resource].append(entity)

    async def post(self, endpoint, json_body, params=None):
        self.requests.append(("POST", endpoint))
        resource = endpoint.rsplit("/", 1)[-1]
        code = derive_code(json_body["name"])
        if any(e["code"] == code for e in self.store[resource]):
            raise ConflictError(f"{resource} {code} already exists")
        entity = {"id": f"{resource}-{len(self.store[resource]) + 1}", "code": code, **json_body}
        self.store[resource].append(entity)
        return {"success": True, "data": entity, "meta": {}}

    async def get(self, endpoint, params=None):
        self.requests.append(("GET", endpoint))
        parts = endpoint.strip("/").split("/")
        resource = parts[2]
        if params and "code" in params:
            return {"items": [e for e in self.store[resource] if e["code"] == params["code"]]}
        for entity in self.store[resource]:
            if entity["id"] == parts[-1]:
                return entity
        raise NotFoundError(endpoint=endpoint)

    async def patch(self, endpoint, json_body, params=None):
        self.requests.append(("PATCH", endpoint))
        return None


class TestShoppingScenario:
    """End-to-end: customer, asset and a device that already exists downstream."""

    @pytest.mark.asyncio
    async def test_existing_device_is_adopted_through_conflict_recovery(self):
        bundle = TBDataBundle(
            customer=TBCustomer(id="tb-c", name="Shopping X"),
            assets=[TBAsset(id="tb-a", name="Food Court")],
            devices=[TBDevice(id="tb-d", name="Meter-01", type="3F_MEDIDOR")],
            device_asset_map={"tb-d": "tb-a"},
            tenant_id="t1",
        )
        client = InMemoryGCDRClient()
        client.seed("devices", {"id": "existing-meter", "code": "METER_01", "name": "Meter-01"})
        registry = GCDRRegistryAPI(client)
        writer = MockAttributeWriter()

        plan = compute_sync_plan(bundle, {})
        result = await ExecuteSyncPlanUseCase(registry, writer).execute(bundle, plan)

        assert plan.to_create == 3
        assert result.success
        ids = {o.action.tb_id: o.gcdr_id for o in result.succeeded}
        assert ids == {"tb-c": "customers-1", "tb-a": "assets-1", "tb-d": "existing-meter"}
        assert ("GET", "/api/v1/devices") in client.requests
        assert ("tb-d", "existing-meter") in {(s, g) for _, s, g, _ in writer.writes}

        food_court = client.store["assets"][0]
        assert food_court["customerId"] == "customers-1"
        assert food_court["parentAssetId"] is None

    @pytest.mark.asyncio
    async def test_rerun_after_success_is_idempotent(self):
        bundle = TBDataBundle(
            customer=TBCustomer(id="tb-c", name="Shopping X"),
            assets=[TBAsset(id="tb-a", name="Food Court")],
            devices=[],
            tenant_id="t1",
        )
        client = InMemoryGCDRClient()
        registry = GCDRRegistryAPI(client)

        plan = compute_sync_plan(bundle, {})
        first = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)
        # Same plan again, as if the write-back had been lost: conflicts resolve to the same ids
        second = await ExecuteSyncPlanUseCase(registry, MockAttributeWriter()).execute(bundle, plan)

        assert [o.gcdr_id for o in first.succeeded] == [o.gcdr_id for o in second.succeeded]
        assert len(client.store["customers"]) == 1
        assert len(client.store["assets"]) == 1
