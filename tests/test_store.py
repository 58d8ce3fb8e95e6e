import asyncio
from datetime import date, datetime

import pytest

from fakes import FakeRemote
from models import FundedFrom, SavingsType, TransactionType
from records import MonthStatusRecord, TransactionRecord
from remote import RecordNotFound
from schemas import TransactionIn
from store import FinanceStore, StoreRegistry, ValidationError, is_temp_id
from sync import NOT_FOUND, REMOTE, TIMEOUT, optimistic

TODAY = date(2026, 3, 20)


def seeded_remote() -> FakeRemote:
    remote = FakeRemote()
    for idx, (day, cents, category_id, txn_type) in enumerate(
        [
            (1, 300_000, "salary", TransactionType.income),
            (3, 4_500, "food", TransactionType.expense),
            (3, 12_000, "transport", TransactionType.expense),
            (9, 20_000, "savings", TransactionType.savings),
        ]
    ):
        remote.seed_transaction(
            TransactionRecord(
                id=f"seed-{idx}",
                user_id="u1",
                amount_cents=cents,
                type=txn_type,
                category_id=category_id,
                date=date(2026, 3, day),
                created_at=datetime(2026, 3, day, 8, idx),
                funded_from=(
                    FundedFrom.income if txn_type == TransactionType.expense else None
                ),
                savings_type=(
                    SavingsType.manual if txn_type == TransactionType.savings else None
                ),
            )
        )
    return remote


async def loaded(remote: FakeRemote, timeout: float = 5) -> FinanceStore:
    store = FinanceStore(remote, "u1", timeout=timeout, today=lambda: TODAY)
    await store.load()
    return store


def food(cents: int = 2_500, day: int = 10) -> TransactionIn:
    return TransactionIn(
        amount_cents=cents,
        category_id="food",
        subcategory="Groceries",
        date=date(2026, 3, day),
    )


def test_load_orders_newest_first() -> None:
    store = asyncio.run(loaded(seeded_remote()))

    assert store.loaded
    assert [t.id for t in store.transactions] == [
        "seed-3",
        "seed-2",
        "seed-1",
        "seed-0",
    ]
    assert store.currency == "USD"


def test_add_reconciles_temporary_id() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        gate = remote.hold("insert_transaction")
        task = asyncio.create_task(store.add_transaction(food()))
        await asyncio.sleep(0)
        optimistic_ids = [t.id for t in store.transactions if is_temp_id(t.id)]
        pending = store.is_pending(optimistic_ids[0])
        gate.set()
        result = await task
        return store, optimistic_ids, pending, result

    store, optimistic_ids, pending, result = asyncio.run(scenario())

    assert len(optimistic_ids) == 1
    assert pending
    assert result.ok
    assert not is_temp_id(result.value.id)
    assert store.get_transaction(optimistic_ids[0]) is None
    assert store.get_transaction(result.value.id) == result.value
    assert not store.is_pending(result.value.id)
    assert result.value.funded_from == FundedFrom.income
    assert len(store.transactions) == 5


def test_failed_add_restores_cache() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        before = store.transactions
        remote.fail("insert_transaction")
        result = await store.add_transaction(food())
        return store, before, result

    store, before, result = asyncio.run(scenario())

    assert not result.ok
    assert result.code == REMOTE
    assert result.error
    assert store.transactions == before
    assert not any(is_temp_id(t.id) for t in store.transactions)


def test_failed_delete_restores_same_position() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        before = store.transactions
        remote.fail("delete_transaction")
        result = await store.delete_transaction("seed-2")
        return store, before, result

    store, before, result = asyncio.run(scenario())

    assert not result.ok
    assert store.transactions == before
    assert not store.is_pending("seed-2")
    assert "seed-2" in remote.transactions


def test_delete_removes_record() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        return store, await store.delete_transaction("seed-1")

    store, result = asyncio.run(scenario())

    assert result.ok
    assert store.get_transaction("seed-1") is None
    assert "seed-1" not in remote.transactions
    assert store.month_totals("2026-03").expenses == 12_000


def test_delete_missing_on_server_reports_not_found() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        remote.fail("delete_transaction", RecordNotFound("Transaction not found"))
        return await store.delete_transaction("seed-1")

    result = asyncio.run(scenario())
    assert not result.ok
    assert result.code == NOT_FOUND


def test_timeout_forces_rollback() -> None:
    remote = seeded_remote()
    remote.slow["insert_transaction"] = 1.0

    async def scenario():
        store = await loaded(remote, timeout=0.05)
        before = store.transactions
        result = await store.add_transaction(food())
        return store, before, result

    store, before, result = asyncio.run(scenario())

    assert not result.ok
    assert result.code == TIMEOUT
    assert store.transactions == before


def test_out_of_order_completions_reconcile_by_id() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        first_gate = remote.hold("insert_transaction")
        second_gate = remote.hold("insert_transaction")
        first = asyncio.create_task(store.add_transaction(food(1_000, day=11)))
        await asyncio.sleep(0)
        second = asyncio.create_task(store.add_transaction(food(2_000, day=12)))
        await asyncio.sleep(0)
        second_gate.set()
        second_result = await second
        first_gate.set()
        first_result = await first
        return store, first_result, second_result

    store, first_result, second_result = asyncio.run(scenario())

    assert first_result.ok and second_result.ok
    assert first_result.value.amount_cents == 1_000
    assert second_result.value.amount_cents == 2_000
    assert not any(is_temp_id(t.id) for t in store.transactions)
    assert [t.id for t in store.transactions[:2]] == [
        second_result.value.id,
        first_result.value.id,
    ]
    assert len(store.transactions) == 6


def test_one_failure_among_concurrent_adds_only_reverts_itself() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        remote.fail("insert_transaction", after=1)
        results = await asyncio.gather(
            store.add_transaction(food(1_000, day=11)),
            store.add_transaction(food(2_000, day=12)),
        )
        return store, results

    store, (ok_result, failed_result) = asyncio.run(scenario())

    assert ok_result.ok
    assert not failed_result.ok
    assert store.get_transaction(ok_result.value.id) is not None
    assert [t.amount_cents for t in store.transactions if t.date.day >= 11] == [
        1_000
    ]


def test_pending_record_cannot_be_deleted() -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        gate = remote.hold("insert_transaction")
        task = asyncio.create_task(store.add_transaction(food()))
        await asyncio.sleep(0)
        temp = next(t for t in store.transactions if is_temp_id(t.id))
        with pytest.raises(ValidationError):
            await store.delete_transaction(temp.id)
        gate.set()
        return await task

    assert asyncio.run(scenario()).ok


@pytest.mark.parametrize(
    "data",
    [
        TransactionIn(amount_cents=0, category_id="food"),
        TransactionIn(amount_cents=100, category_id="nope"),
        TransactionIn(amount_cents=100, category_id="debt_payment"),
        TransactionIn(amount_cents=100, category_id="food", subcategory="Fuel"),
    ],
)
def test_invalid_transactions_never_touch_cache(data: TransactionIn) -> None:
    remote = seeded_remote()

    async def scenario():
        store = await loaded(remote)
        before = store.transactions
        with pytest.raises(ValidationError):
            await store.add_transaction(data)
        return store, before

    store, before = asyncio.run(scenario())
    assert store.transactions == before
    assert "insert_transaction" not in remote.calls


def test_funded_from_is_only_kept_for_expenses() -> None:
    remote = FakeRemote()

    async def scenario():
        store = await loaded(remote)
        paid = await store.add_transaction(
            TransactionIn(
                amount_cents=5_000,
                category_id="salary",
                funded_from=FundedFrom.savings,
            )
        )
        saved = await store.add_transaction(
            TransactionIn(amount_cents=5_000, category_id="emergency_fund")
        )
        return paid.value, saved.value

    paid, saved = asyncio.run(scenario())

    assert paid.funded_from is None
    assert paid.date == TODAY
    assert saved.savings_type == SavingsType.manual
    assert not saved.is_auto


def test_pay_debt_validates_against_total_debt() -> None:
    remote = FakeRemote()
    remote.statuses["2026-02"] = MonthStatusRecord(
        "2026-02", datetime(2026, 3, 1), debt_amount_cents=7_500
    )

    async def scenario():
        store = await loaded(remote)
        for bad in (0, 7_501):
            with pytest.raises(ValidationError):
                await store.pay_debt(bad)
        paid = await store.pay_debt(7_500)
        with pytest.raises(ValidationError):
            await store.pay_debt(1)
        return store, paid

    store, paid = asyncio.run(scenario())

    assert paid.ok
    assert paid.value.category_id == "debt_payment"
    assert paid.value.note == "Debt payment"
    assert store.total_debt() == 0


def test_failed_debt_payment_restores_debt() -> None:
    remote = FakeRemote()
    remote.statuses["2026-02"] = MonthStatusRecord(
        "2026-02", datetime(2026, 3, 1), debt_amount_cents=7_500
    )

    async def scenario():
        store = await loaded(remote)
        remote.fail("insert_transaction")
        result = await store.pay_debt(3_000)
        return store, result

    store, result = asyncio.run(scenario())
    assert not result.ok
    assert store.total_debt() == 7_500


def test_currency_change_rolls_back() -> None:
    remote = FakeRemote()

    async def scenario():
        store = await loaded(remote)
        changed = await store.change_currency("eur")
        remote.fail("update_user_metadata")
        failed = await store.change_currency("GBP")
        return store, changed, failed

    store, changed, failed = asyncio.run(scenario())

    assert changed.ok
    assert not failed.ok
    assert store.currency == "EUR"
    assert remote.metadata["currency"] == "EUR"


def test_unknown_currency_is_rejected() -> None:
    async def scenario():
        store = await loaded(FakeRemote())
        with pytest.raises(ValidationError):
            await store.change_currency("XYZ")

    asyncio.run(scenario())


def test_unexpected_error_reverts_and_propagates() -> None:
    state = {"value": 1}

    async def boom():
        raise KeyError("bug")

    def apply():
        state["value"] = 2

    def revert():
        state["value"] = 1

    with pytest.raises(KeyError):
        asyncio.run(optimistic("test", apply=apply, remote=boom, revert=revert))
    assert state["value"] == 1


def test_registry_loads_each_user_once() -> None:
    remote = seeded_remote()
    registry = StoreRegistry(remote, today=lambda: TODAY)

    async def scenario():
        first, second = await asyncio.gather(registry.get("u1"), registry.get("u1"))
        registry.drop("u1")
        third = await registry.get("u1")
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert first is second
    assert third is not first
    assert remote.calls.count("list_transactions") == 2
