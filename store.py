from __future__ import annotations

import asyncio
import datetime as dt
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from balances import (
    CumulativeTotals,
    MonthTotals,
    cumulative_totals,
    month_totals,
    period_totals,
    total_debt,
)
from catalog import DEBT_PAYMENT_CATEGORY_ID, Category, get_category
from config import get_settings
from currency import normalize_currency_code
from models import FundedFrom, SavingsType, TransactionType
from periods import local_today, parse_month_key
from records import MonthStatusRecord, PresetRecord, TransactionRecord
from remote import MonthAlreadyClosed, RemoteError, RemoteStore
from schemas import PresetIn, TransactionIn
from sync import (
    CONFLICT,
    TIMEOUT,
    MutationResult,
    RemoteTimeout,
    call_remote,
    error_code,
    optimistic,
)

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "tmp-"


class ValidationError(ValueError):
    pass


def temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(record_id: str) -> bool:
    return record_id.startswith(TEMP_ID_PREFIX)


def _sort_key(txn: TransactionRecord) -> tuple[dt.date, datetime, str]:
    return (txn.date, txn.created_at, txn.id)


def _check_subcategory(category: Category, subcategory: Optional[str]) -> Optional[str]:
    clean = (subcategory or "").strip() or None
    if clean is not None and clean not in category.subcategories:
        raise ValidationError(f"{clean!r} is not a subcategory of {category.name}")
    return clean


@dataclass(frozen=True)
class MonthCloseResult:
    status: MonthStatusRecord
    transaction: Optional[TransactionRecord] = None


class FinanceStore:
    """Owned, injectable cache of one user's transactions, presets and
    month statuses.

    Reads are synchronous. Writes are applied locally first and persisted
    through ``remote``; see ``sync.optimistic`` for the rollback contract.
    Month close is the exception: it only touches the cache after the server
    has committed it.
    """

    def __init__(
        self,
        remote: RemoteStore,
        user_id: str,
        *,
        timeout: Optional[float] = None,
        today: Callable[[], dt.date] = local_today,
    ) -> None:
        settings = get_settings()
        self.remote = remote
        self.user_id = user_id
        self.timeout = settings.remote_timeout_secs if timeout is None else timeout
        self.currency = settings.default_currency
        self.loaded = False
        self._today = today
        self._transactions: list[TransactionRecord] = []
        self._presets: list[PresetRecord] = []
        self._statuses: dict[str, MonthStatusRecord] = {}
        self._pending: dict[str, str] = {}
        self._closing: set[str] = set()
        self._presets_saving = False

    async def load(self) -> None:
        transactions, presets, statuses, metadata = await asyncio.gather(
            self.remote.list_transactions(self.user_id),
            self.remote.list_presets(self.user_id),
            self.remote.list_month_statuses(self.user_id),
            self.remote.get_user_metadata(self.user_id),
        )
        self._transactions = sorted(transactions, key=_sort_key, reverse=True)
        self._presets = list(presets)
        self._statuses = {s.month: s for s in statuses}
        self.currency = metadata.get("currency") or self.currency
        self.loaded = True
        logger.info(
            f"store_loaded: user_id={self.user_id} "
            f"transactions={len(self._transactions)} presets={len(self._presets)}"
        )

    # read models

    @property
    def transactions(self) -> tuple[TransactionRecord, ...]:
        return tuple(self._transactions)

    @property
    def presets(self) -> tuple[PresetRecord, ...]:
        return tuple(self._presets)

    @property
    def month_statuses(self) -> tuple[MonthStatusRecord, ...]:
        return tuple(sorted(self._statuses.values(), key=lambda s: s.month))

    def get_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        for txn in self._transactions:
            if txn.id == transaction_id:
                return txn
        return None

    def is_pending(self, record_id: str) -> bool:
        return record_id in self._pending

    def month_status(self, month: str) -> Optional[MonthStatusRecord]:
        return self._statuses.get(month)

    def is_month_closed(self, month: str) -> bool:
        status = self._statuses.get(month)
        return status is not None and status.is_closed

    def month_totals(self, month: str) -> MonthTotals:
        return month_totals(self._transactions, month)

    def period_totals(self, month: Optional[str] = None) -> MonthTotals:
        return period_totals(self._transactions, month)

    def cumulative_totals(self) -> CumulativeTotals:
        return cumulative_totals(self._transactions)

    def total_debt(self) -> int:
        return total_debt(self._statuses.values(), self._transactions)

    # cache primitives, all keyed by id

    def _insert(self, txn: TransactionRecord) -> None:
        self._transactions.append(txn)
        self._transactions.sort(key=_sort_key, reverse=True)

    def _remove(self, transaction_id: str) -> Optional[TransactionRecord]:
        for idx, txn in enumerate(self._transactions):
            if txn.id == transaction_id:
                return self._transactions.pop(idx)
        return None

    def _replace(self, old_id: str, txn: TransactionRecord) -> None:
        if self._remove(old_id) is None:
            logger.warning(f"reconcile_missing: kind=transaction id={old_id}")
        # a resync may already have loaded the confirmed row
        while self._remove(txn.id) is not None:
            pass
        self._insert(txn)

    # transactions

    def _build_transaction(self, data: TransactionIn) -> TransactionRecord:
        category = get_category(data.category_id)
        if category is None:
            raise ValidationError("Choose a category")
        if category.type == TransactionType.debt_payment:
            raise ValidationError("Debt payments are recorded with Pay Debt")
        if data.amount_cents <= 0:
            raise ValidationError("Amount must be greater than zero")
        subcategory = _check_subcategory(category, data.subcategory)

        funded_from = None
        if category.type == TransactionType.expense:
            funded_from = data.funded_from or FundedFrom.income
        savings_type = None
        if category.type == TransactionType.savings:
            savings_type = SavingsType.manual

        return TransactionRecord(
            id=temp_id(),
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            type=category.type,
            category_id=category.id,
            date=data.date or self._today(),
            created_at=datetime.utcnow(),
            subcategory=subcategory,
            note=(data.note or "").strip() or None,
            funded_from=funded_from,
            savings_type=savings_type,
        )

    async def _add(
        self, record: TransactionRecord
    ) -> MutationResult[TransactionRecord]:
        def apply() -> None:
            self._pending[record.id] = record.month
            self._insert(record)

        def revert() -> None:
            self._pending.pop(record.id, None)
            self._remove(record.id)

        def reconcile(confirmed: TransactionRecord) -> None:
            self._pending.pop(record.id, None)
            self._replace(record.id, confirmed)

        return await optimistic(
            "add_transaction",
            apply=apply,
            remote=lambda: self.remote.insert_transaction(self.user_id, record),
            revert=revert,
            reconcile=reconcile,
            timeout=self.timeout,
            record_id=record.id,
        )

    async def add_transaction(
        self, data: TransactionIn
    ) -> MutationResult[TransactionRecord]:
        return await self._add(self._build_transaction(data))

    async def pay_debt(self, amount_cents: int) -> MutationResult[TransactionRecord]:
        outstanding = self.total_debt()
        if amount_cents <= 0:
            raise ValidationError("Amount must be greater than zero")
        if amount_cents > outstanding:
            raise ValidationError("Amount cannot exceed total debt")
        record = TransactionRecord(
            id=temp_id(),
            user_id=self.user_id,
            amount_cents=amount_cents,
            type=TransactionType.debt_payment,
            category_id=DEBT_PAYMENT_CATEGORY_ID,
            date=self._today(),
            created_at=datetime.utcnow(),
            note="Debt payment",
        )
        return await self._add(record)

    async def delete_transaction(self, transaction_id: str) -> MutationResult[None]:
        original = self.get_transaction(transaction_id)
        if original is None:
            raise ValidationError("Transaction not found")
        if self.is_pending(transaction_id):
            raise ValidationError("This transaction is still being saved")

        def apply() -> None:
            self._pending[transaction_id] = original.month
            self._remove(transaction_id)

        def revert() -> None:
            self._pending.pop(transaction_id, None)
            if self.get_transaction(transaction_id) is None:
                self._insert(original)

        def reconcile(_: None) -> None:
            self._pending.pop(transaction_id, None)

        return await optimistic(
            "delete_transaction",
            apply=apply,
            remote=lambda: self.remote.delete_transaction(self.user_id, transaction_id),
            revert=revert,
            reconcile=reconcile,
            timeout=self.timeout,
            record_id=transaction_id,
        )

    # month close

    async def close_month(self, month: str) -> MutationResult[MonthCloseResult]:
        try:
            parse_month_key(month)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if self.is_month_closed(month):
            raise ValidationError(f"{month} is already closed")
        if month in self._closing:
            raise ValidationError(f"{month} is already being closed")
        if month in self._pending.values():
            raise ValidationError(
                f"Transactions in {month} are still being saved, try again"
            )

        remaining = self.month_totals(month).remaining
        self._closing.add(month)
        try:
            auto_txn, status = await call_remote(
                lambda: self.remote.close_month(self.user_id, month, remaining),
                self.timeout,
            )
        except MonthAlreadyClosed as exc:
            logger.warning(
                f"month_close_conflict: user_id={self.user_id} month={month}"
            )
            await self._resync()
            return MutationResult.failure(str(exc), CONFLICT)
        except RemoteTimeout as exc:
            logger.warning(
                f"month_close_timed_out: user_id={self.user_id} month={month}"
            )
            return MutationResult.failure(str(exc), TIMEOUT)
        except RemoteError as exc:
            logger.warning(
                f"month_close_failed: user_id={self.user_id} month={month} error={exc}"
            )
            return MutationResult.failure(str(exc), error_code(exc))
        finally:
            self._closing.discard(month)

        if auto_txn is not None:
            self._remove(auto_txn.id)
            self._insert(auto_txn)
        self._statuses[status.month] = status
        logger.info(
            f"month_close_applied: user_id={self.user_id} month={month} "
            f"remaining_cents={remaining}"
        )
        return MutationResult.success(
            MonthCloseResult(status=status, transaction=auto_txn)
        )

    async def _resync(self) -> None:
        """Reload transactions and statuses, keeping in-flight local writes."""
        try:
            transactions, statuses = await call_remote(
                lambda: asyncio.gather(
                    self.remote.list_transactions(self.user_id),
                    self.remote.list_month_statuses(self.user_id),
                ),
                self.timeout,
            )
        except RemoteError:
            logger.warning(f"resync_failed: user_id={self.user_id}")
            return
        pending_adds = [
            t for t in self._transactions if t.id in self._pending and is_temp_id(t.id)
        ]
        pending_deletes = {i for i in self._pending if not is_temp_id(i)}
        merged = [t for t in transactions if t.id not in pending_deletes]
        self._transactions = sorted(merged + pending_adds, key=_sort_key, reverse=True)
        self._statuses = {s.month: s for s in statuses}

    # presets

    def _build_preset(self, data: PresetIn, preset_id: str) -> PresetRecord:
        name = data.name.strip()
        if not name:
            raise ValidationError("Preset name cannot be empty")
        if data.amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        category = get_category(data.category_id)
        if category is None or category.type == TransactionType.debt_payment:
            raise ValidationError("Choose a category")
        funded_from = None
        if category.type == TransactionType.expense:
            funded_from = data.funded_from or FundedFrom.income
        return PresetRecord(
            id=preset_id,
            name=name,
            amount_cents=data.amount,
            category_id=category.id,
            subcategory=_check_subcategory(category, data.subcategory),
            note=(data.note or "").strip() or None,
            funded_from=funded_from,
        )

    async def save_presets(
        self, items: Sequence[PresetIn]
    ) -> MutationResult[list[PresetRecord]]:
        """Replace the preset list with ``items``.

        Items are matched to the current list by id: unknown entries without
        an id are added, missing ids are deleted, changed ones are updated.
        Any single remote failure restores the whole list.
        """
        if self._presets_saving:
            raise ValidationError("Presets are still being saved")

        snapshot = list(self._presets)
        current = {p.id: p for p in snapshot}
        new_list: list[PresetRecord] = []
        for item in items:
            if item.id is not None and item.id not in current:
                raise ValidationError("Preset not found")
            new_list.append(self._build_preset(item, item.id or temp_id()))

        kept_ids = {p.id for p in new_list}
        added = [p for p in new_list if p.id not in current]
        updated = [
            p for p in new_list if p.id in current and not p.same_content(current[p.id])
        ]
        deleted = [p for p in snapshot if p.id not in kept_ids]

        def apply() -> None:
            self._presets_saving = True
            self._presets = list(new_list)

        def revert() -> None:
            self._presets_saving = False
            self._presets = snapshot

        def reconcile(confirmed: dict[str, PresetRecord]) -> None:
            self._presets_saving = False
            self._presets = [confirmed.get(p.id, p) for p in self._presets]

        result = await optimistic(
            "save_presets",
            apply=apply,
            remote=lambda: self._push_presets(added, updated, deleted, current),
            revert=revert,
            reconcile=reconcile,
            timeout=self.timeout,
        )
        if result.code == TIMEOUT:
            await self._refresh_presets()
        return result

    async def _push_presets(
        self,
        added: list[PresetRecord],
        updated: list[PresetRecord],
        deleted: list[PresetRecord],
        previous: dict[str, PresetRecord],
    ) -> dict[str, PresetRecord]:
        confirmed: dict[str, PresetRecord] = {}
        undo: list[Callable[[], object]] = []
        try:
            for preset in added:
                saved = await self.remote.insert_preset(self.user_id, preset)
                confirmed[preset.id] = saved
                undo.append(
                    lambda saved=saved: self.remote.delete_preset(
                        self.user_id, saved.id
                    )
                )
            for preset in updated:
                confirmed[preset.id] = await self.remote.update_preset(
                    self.user_id, preset
                )
                old = previous[preset.id]
                undo.append(
                    lambda old=old: self.remote.update_preset(self.user_id, old)
                )
            for preset in deleted:
                await self.remote.delete_preset(self.user_id, preset.id)
                undo.append(
                    lambda preset=preset: self.remote.insert_preset(
                        self.user_id, preset, keep_id=True
                    )
                )
        except (RemoteError, asyncio.CancelledError):
            # a timeout cancels the batch mid-way; undo still has to reach the server
            await asyncio.shield(self._compensate(undo))
            raise
        return confirmed

    async def _compensate(self, undo: list[Callable[[], object]]) -> None:
        for step in reversed(undo):
            try:
                await step()
            except RemoteError as exc:
                logger.warning(
                    f"preset_compensation_failed: user_id={self.user_id} error={exc}"
                )

    async def _refresh_presets(self) -> None:
        """Reload presets so the cache matches whatever the server kept."""
        self._presets_saving = True
        try:
            presets = await call_remote(
                lambda: self.remote.list_presets(self.user_id), self.timeout
            )
        except RemoteError:
            logger.warning(f"preset_refresh_failed: user_id={self.user_id}")
            return
        finally:
            self._presets_saving = False
        self._presets = list(presets)

    async def add_preset(self, data: PresetIn) -> MutationResult[list[PresetRecord]]:
        new_item = data.model_copy(update={"id": None})
        return await self.save_presets([*self._as_inputs(), new_item])

    async def update_preset(
        self, preset_id: str, data: PresetIn
    ) -> MutationResult[list[PresetRecord]]:
        if preset_id not in {p.id for p in self._presets}:
            raise ValidationError("Preset not found")
        items = [
            data.model_copy(update={"id": preset_id}) if item.id == preset_id else item
            for item in self._as_inputs()
        ]
        return await self.save_presets(items)

    async def delete_preset(self, preset_id: str) -> MutationResult[list[PresetRecord]]:
        if preset_id not in {p.id for p in self._presets}:
            raise ValidationError("Preset not found")
        return await self.save_presets(
            [item for item in self._as_inputs() if item.id != preset_id]
        )

    def _as_inputs(self) -> list[PresetIn]:
        return [
            PresetIn.model_construct(
                id=p.id,
                name=p.name,
                amount=p.amount_cents,
                category_id=p.category_id,
                subcategory=p.subcategory,
                note=p.note,
                funded_from=p.funded_from,
            )
            for p in self._presets
        ]

    # settings

    async def change_currency(self, code: str) -> MutationResult[dict]:
        try:
            new_code = normalize_currency_code(code)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        previous = self.currency

        def apply() -> None:
            self.currency = new_code

        def revert() -> None:
            if self.currency == new_code:
                self.currency = previous

        return await optimistic(
            "change_currency",
            apply=apply,
            remote=lambda: self.remote.update_user_metadata(
                self.user_id, currency=new_code
            ),
            revert=revert,
            timeout=self.timeout,
            record_id=self.user_id,
        )


class StoreRegistry:
    """Lazily loaded ``FinanceStore`` per signed-in user."""

    def __init__(self, remote: RemoteStore, **store_options: object) -> None:
        self.remote = remote
        self.store_options = store_options
        self._stores: dict[str, FinanceStore] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> FinanceStore:
        store = self._stores.get(user_id)
        if store is not None:
            return store
        async with self._lock:
            store = self._stores.get(user_id)
            if store is None:
                store = FinanceStore(self.remote, user_id, **self.store_options)
                await store.load()
                self._stores[user_id] = store
        return store

    def drop(self, user_id: str) -> None:
        self._stores.pop(user_id, None)
