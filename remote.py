from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from auth import AuthError, AuthService
from catalog import AUTO_SAVED_SUBCATEGORY, SAVINGS_CATEGORY_ID
from database import SessionLocal, session_scope
from models import MonthStatus, Preset, SavingsType, Transaction, TransactionType
from periods import month_end, parse_month_key
from records import MonthStatusRecord, PresetRecord, TransactionRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RemoteError(RuntimeError):
    pass


class RecordNotFound(RemoteError):
    pass


class MonthAlreadyClosed(RemoteError):
    pass


class RemoteStore:
    """Async client for the per-user record collections.

    Every call runs its own database transaction in a worker thread, so the
    event loop only suspends at the ``await`` of the call itself.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    async def _run(self, op: str, fn: Callable[[Session], T]) -> T:
        def call() -> T:
            with session_scope(self.session_factory) as session:
                return fn(session)

        try:
            return await asyncio.to_thread(call)
        except RemoteError:
            raise
        except AuthError as exc:
            raise RecordNotFound(str(exc)) from exc
        except SQLAlchemyError as exc:
            logger.warning(
                f"remote_call_failed: op={op} error={exc.__class__.__name__}"
            )
            raise RemoteError(f"Could not complete {op}") from exc

    # transactions

    async def list_transactions(self, user_id: str) -> list[TransactionRecord]:
        def fn(session: Session) -> list[TransactionRecord]:
            stmt = (
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(
                    Transaction.date.desc(),
                    Transaction.created_at.desc(),
                    Transaction.id.desc(),
                )
            )
            return [TransactionRecord.from_row(r) for r in session.scalars(stmt)]

        return await self._run("list_transactions", fn)

    async def insert_transaction(
        self, user_id: str, record: TransactionRecord
    ) -> TransactionRecord:
        def fn(session: Session) -> TransactionRecord:
            row = Transaction(
                user_id=user_id,
                amount_cents=record.amount_cents,
                type=record.type,
                category_id=record.category_id,
                subcategory=record.subcategory,
                note=record.note,
                date=record.date,
                funded_from=record.funded_from,
                savings_type=record.savings_type,
            )
            session.add(row)
            session.flush()
            return TransactionRecord.from_row(row)

        return await self._run("insert_transaction", fn)

    async def delete_transaction(self, user_id: str, transaction_id: str) -> None:
        def fn(session: Session) -> None:
            result = session.execute(
                delete(Transaction).where(
                    Transaction.user_id == user_id, Transaction.id == transaction_id
                )
            )
            if result.rowcount == 0:
                raise RecordNotFound("Transaction not found")

        await self._run("delete_transaction", fn)

    # presets

    async def list_presets(self, user_id: str) -> list[PresetRecord]:
        def fn(session: Session) -> list[PresetRecord]:
            stmt = (
                select(Preset)
                .where(Preset.user_id == user_id)
                .order_by(Preset.created_at.desc(), Preset.id.desc())
            )
            return [PresetRecord.from_row(r) for r in session.scalars(stmt)]

        return await self._run("list_presets", fn)

    async def insert_preset(
        self, user_id: str, record: PresetRecord, *, keep_id: bool = False
    ) -> PresetRecord:
        def fn(session: Session) -> PresetRecord:
            row = Preset(
                user_id=user_id,
                name=record.name,
                amount_cents=record.amount_cents,
                category_id=record.category_id,
                subcategory=record.subcategory,
                note=record.note,
                funded_from=record.funded_from,
            )
            if keep_id:
                row.id = record.id
            session.add(row)
            session.flush()
            return PresetRecord.from_row(row)

        return await self._run("insert_preset", fn)

    async def update_preset(self, user_id: str, record: PresetRecord) -> PresetRecord:
        def fn(session: Session) -> PresetRecord:
            row = session.get(Preset, record.id)
            if not row or row.user_id != user_id:
                raise RecordNotFound("Preset not found")
            row.name = record.name
            row.amount_cents = record.amount_cents
            row.category_id = record.category_id
            row.subcategory = record.subcategory
            row.note = record.note
            row.funded_from = record.funded_from
            session.flush()
            return PresetRecord.from_row(row)

        return await self._run("update_preset", fn)

    async def delete_preset(self, user_id: str, preset_id: str) -> None:
        def fn(session: Session) -> None:
            result = session.execute(
                delete(Preset).where(Preset.user_id == user_id, Preset.id == preset_id)
            )
            if result.rowcount == 0:
                raise RecordNotFound("Preset not found")

        await self._run("delete_preset", fn)

    # month statuses

    async def list_month_statuses(self, user_id: str) -> list[MonthStatusRecord]:
        def fn(session: Session) -> list[MonthStatusRecord]:
            stmt = (
                select(MonthStatus)
                .where(MonthStatus.user_id == user_id)
                .order_by(MonthStatus.month.desc())
            )
            return [MonthStatusRecord.from_row(r) for r in session.scalars(stmt)]

        return await self._run("list_month_statuses", fn)

    async def upsert_month_status(
        self, user_id: str, record: MonthStatusRecord
    ) -> MonthStatusRecord:
        def fn(session: Session) -> MonthStatusRecord:
            row = _upsert_status(
                session,
                user_id,
                record.month,
                processed_at=record.processed_at,
                auto_amount_cents=record.auto_amount_cents,
                debt_amount_cents=record.debt_amount_cents,
            )
            return MonthStatusRecord.from_row(row)

        return await self._run("upsert_month_status", fn)

    async def close_month(
        self,
        user_id: str,
        month: str,
        remaining_cents: int,
        *,
        now: Optional[datetime] = None,
    ) -> tuple[Optional[TransactionRecord], MonthStatusRecord]:
        """Close ``month`` in a single database transaction.

        Raises MonthAlreadyClosed when the month already has ``processed_at``;
        in that case nothing is written.
        """
        parse_month_key(month)

        def fn(
            session: Session,
        ) -> tuple[Optional[TransactionRecord], MonthStatusRecord]:
            processed_at = now or datetime.utcnow()
            existing = session.scalar(
                select(MonthStatus).where(
                    MonthStatus.user_id == user_id, MonthStatus.month == month
                )
            )
            if existing is not None and existing.processed_at is not None:
                raise MonthAlreadyClosed(f"{month} is already closed")

            auto_amount = max(remaining_cents, 0)
            debt_amount = max(-remaining_cents, 0)

            if existing is None:
                status = MonthStatus(
                    user_id=user_id,
                    month=month,
                    processed_at=processed_at,
                    auto_amount_cents=auto_amount,
                    debt_amount_cents=debt_amount,
                )
                session.add(status)
                session.flush()
            else:
                # conditional update so a concurrent close cannot both win
                result = session.execute(
                    update(MonthStatus)
                    .where(
                        MonthStatus.id == existing.id,
                        MonthStatus.processed_at.is_(None),
                    )
                    .values(
                        processed_at=processed_at,
                        auto_amount_cents=auto_amount,
                        debt_amount_cents=debt_amount,
                        updated_at=datetime.utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise MonthAlreadyClosed(f"{month} is already closed")
                session.refresh(existing)
                status = existing

            auto_txn = None
            if auto_amount > 0:
                row = Transaction(
                    user_id=user_id,
                    amount_cents=auto_amount,
                    type=TransactionType.savings,
                    category_id=SAVINGS_CATEGORY_ID,
                    subcategory=AUTO_SAVED_SUBCATEGORY,
                    date=month_end(month),
                    savings_type=SavingsType.auto,
                )
                session.add(row)
                session.flush()
                auto_txn = TransactionRecord.from_row(row)

            logger.info(
                f"month_closed: user_id={user_id} month={month} "
                f"auto_cents={auto_amount} debt_cents={debt_amount}"
            )
            return auto_txn, MonthStatusRecord.from_row(status)

        try:
            return await self._run("close_month", fn)
        except RemoteError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise MonthAlreadyClosed(f"{month} is already closed") from exc
            raise

    # user metadata

    async def get_user_metadata(self, user_id: str) -> dict[str, Optional[str]]:
        return await self._run(
            "get_user_metadata",
            lambda session: AuthService(session).get_metadata(user_id),
        )

    async def update_user_metadata(
        self, user_id: str, **values: Optional[str]
    ) -> dict[str, Optional[str]]:
        return await self._run(
            "update_user_metadata",
            lambda session: AuthService(session).update_metadata(user_id, **values),
        )


def _upsert_status(
    session: Session,
    user_id: str,
    month: str,
    *,
    processed_at: Optional[datetime],
    auto_amount_cents: int,
    debt_amount_cents: int,
) -> MonthStatus:
    row = session.scalar(
        select(MonthStatus).where(
            MonthStatus.user_id == user_id, MonthStatus.month == month
        )
    )
    if row is None:
        row = MonthStatus(user_id=user_id, month=month)
        session.add(row)
    row.processed_at = processed_at
    row.auto_amount_cents = auto_amount_cents
    row.debt_amount_cents = debt_amount_cents
    session.flush()
    return row
