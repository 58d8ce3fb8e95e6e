import asyncio

import pytest

from catalog import apply_preset
from fakes import FakeRemote
from models import FundedFrom, TransactionType
from records import PresetRecord
from schemas import PresetIn
from store import FinanceStore, ValidationError, is_temp_id
from sync import TIMEOUT

COFFEE = PresetRecord(
    id="p-coffee",
    name="Coffee",
    amount_cents=450,
    category_id="food",
    subcategory="Coffee/Snacks",
    funded_from=FundedFrom.income,
)
RENT = PresetRecord(
    id="p-rent",
    name="Rent",
    amount_cents=120_000,
    category_id="fixed-bills",
    subcategory="Rent/Mortgage",
    note="Flat",
    funded_from=FundedFrom.income,
)


def seeded_remote() -> FakeRemote:
    remote = FakeRemote()
    remote.seed_preset(COFFEE)
    remote.seed_preset(RENT)
    return remote


async def loaded(remote: FakeRemote) -> FinanceStore:
    store = FinanceStore(remote, "u1", timeout=5)
    await store.load()
    return store


def as_input(preset: PresetRecord, **changes) -> PresetIn:
    data = {
        "id": preset.id,
        "name": preset.name,
        "amount": f"{preset.amount_cents / 100:.2f}",
        "category_id": preset.category_id,
        "subcategory": preset.subcategory,
        "note": preset.note,
        "funded_from": preset.funded_from,
    }
    data.update(changes)
    return PresetIn(**data)


def test_save_presets_applies_diff() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        remote.calls.clear()
        result = await store.save_presets(
            [
                as_input(COFFEE, amount="5.00"),
                PresetIn(name="Bus", amount="2.80", category_id="transport"),
            ]
        )
        return store, result

    store, result = asyncio.run(scenario())

    assert result.ok
    assert sorted(remote.calls) == ["delete_preset", "insert_preset", "update_preset"]
    assert "p-rent" not in remote.presets
    assert remote.presets["p-coffee"].amount_cents == 500
    names = [p.name for p in store.presets]
    assert names == ["Coffee", "Bus"]
    assert not any(is_temp_id(p.id) for p in store.presets)
    bus = store.presets[1]
    assert remote.presets[bus.id] == bus
    assert bus.funded_from == FundedFrom.income


def test_unchanged_presets_are_not_rewritten() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        remote.calls.clear()
        return await store.save_presets([as_input(COFFEE), as_input(RENT)])

    assert asyncio.run(scenario()).ok
    assert remote.calls == []


def test_failed_batch_is_compensated_and_rolled_back() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        before = store.presets
        remote.fail("delete_preset")
        result = await store.save_presets(
            [
                as_input(COFFEE, name="Flat white"),
                PresetIn(name="Gym", amount="30", category_id="health"),
            ]
        )
        return store, before, result

    store, before, result = asyncio.run(scenario())

    assert not result.ok
    assert store.presets == before
    assert remote.presets == {"p-coffee": COFFEE, "p-rent": RENT}


def test_presets_batch_is_exclusive() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        gate = remote.hold("delete_preset")
        task = asyncio.create_task(store.delete_preset("p-rent"))
        await asyncio.sleep(0)
        with pytest.raises(ValidationError):
            await store.save_presets([])
        gate.set()
        return store, await task

    store, result = asyncio.run(scenario())
    assert result.ok
    assert [p.id for p in store.presets] == ["p-coffee"]


def test_add_update_delete_helpers() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        added = await store.add_preset(
            PresetIn(name="Lunch", amount="12.5", category_id="food")
        )
        updated = await store.update_preset("p-rent", as_input(RENT, amount="1250"))
        deleted = await store.delete_preset("p-coffee")
        return store, added, updated, deleted

    store, added, updated, deleted = asyncio.run(scenario())

    assert added.ok and updated.ok and deleted.ok
    assert sorted(p.name for p in store.presets) == ["Lunch", "Rent"]
    assert remote.presets["p-rent"].amount_cents == 125_000
    assert sorted(p.name for p in remote.presets.values()) == ["Lunch", "Rent"]


@pytest.mark.parametrize(
    "item",
    [
        PresetIn(name="   ", amount="1", category_id="food"),
        PresetIn(name="Zero", amount="0", category_id="food"),
        PresetIn(name="Ghost", amount="1", category_id="ghost"),
        PresetIn(name="Debt", amount="1", category_id="debt_payment"),
        PresetIn(name="Odd", amount="1", category_id="food", subcategory="Rent"),
        PresetIn(id="p-missing", name="Gone", amount="1", category_id="food"),
    ],
)
def test_invalid_presets_are_rejected(item: PresetIn) -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        with pytest.raises(ValidationError):
            await store.save_presets([item])
        return store

    store = asyncio.run(scenario())
    assert [p.id for p in store.presets] == ["p-coffee", "p-rent"]


def test_apply_preset_prefills_draft() -> None:
    draft = apply_preset(RENT)

    assert draft.amount_cents == 120_000
    assert draft.type == TransactionType.expense
    assert draft.subcategory == "Rent/Mortgage"
    assert draft.note == "Flat"
    assert draft.funded_from == FundedFrom.income


def test_apply_preset_defaults() -> None:
    bare = PresetRecord(id="p", name="Snack", amount_cents=300, category_id="food")
    salary = PresetRecord(
        id="s", name="Pay", amount_cents=1_000, category_id="salary", note=""
    )

    assert apply_preset(bare).funded_from == FundedFrom.income
    assert apply_preset(bare).note is None
    assert apply_preset(salary).funded_from is None
    assert apply_preset(salary).note is None
    with pytest.raises(ValueError):
        apply_preset(PresetRecord(id="x", name="X", amount_cents=1, category_id="?"))


def test_timed_out_batch_is_undone_on_server() -> None:
    remote = seeded_remote()

    async def scenario():
        store = FinanceStore(remote, "u1", timeout=0.1)
        await store.load()
        remote.slow["delete_preset"] = 1
        result = await store.save_presets([as_input(COFFEE, amount="5.00")])
        return store, result

    store, result = asyncio.run(scenario())

    assert result.code == TIMEOUT
    assert remote.presets == {"p-coffee": COFFEE, "p-rent": RENT}
    assert sorted(store.presets, key=lambda p: p.id) == sorted(
        remote.presets.values(), key=lambda p: p.id
    )
