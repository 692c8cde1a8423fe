# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""SQLAlchemy-backed payment ledger.

Atomicity comes from the database, not from process locks:

- ``reference`` and ``signature`` carry unique constraints, so one signature
  can settle at most one row even across processes;
- confirmation is a conditional ``UPDATE ... WHERE status = 'pending'`` that
  sets status and signature in a single statement;
- the payer lock is a conditional ``UPDATE ... WHERE expected_payer IS NULL``.

Blocking database work runs in worker threads so chain I/O on the event loop
is never held up.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional, Tuple

from sqlalchemy import DateTime, Integer, String, create_engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import AlreadyExists, NotFound, Terminal
from .ledger import (
    PaymentLedger,
    PaymentRequest,
    PaymentStatus,
    completed_with_other_signature,
    locked_elsewhere,
    new_payment,
    signature_reused,
)

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class PaymentRecord(Base):
    __tablename__ = "payment_requests"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    merchant_wallet: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Decimal text keeps display-unit amounts exact on every backend
    amount: Mapped[str] = mapped_column(String(64), nullable=False)
    token_id: Mapped[str] = mapped_column(String(32), nullable=False)
    memo: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PaymentStatus.pending.value)
    signature: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)
    expected_payer: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    received_amount: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    verified_sender: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    def __repr__(self):
        return f"<PaymentRecord(reference={self.reference}, status={self.status})>"


def _utc(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _to_payment(row: PaymentRecord) -> PaymentRequest:
    return PaymentRequest(
        id=row.id,
        reference=row.reference,
        merchant_wallet=row.merchant_wallet,
        amount=Decimal(row.amount),
        token_id=row.token_id,
        memo=row.memo,
        status=PaymentStatus(row.status),
        signature=row.signature,
        expected_payer=row.expected_payer,
        created_at=_utc(row.created_at),
        confirmed_at=_utc(row.confirmed_at),
        received_amount=Decimal(row.received_amount) if row.received_amount is not None else None,
        verified_sender=row.verified_sender,
    )


class SqlLedger(PaymentLedger):
    def __init__(self, url: str, *, echo: bool = False, create_tables: bool = True):
        kwargs: Dict[str, Any] = {}
        # In-memory SQLite lives in one connection; share it and serialise access
        self._shared_conn_lock: Optional[threading.Lock] = None
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
                self._shared_conn_lock = threading.Lock()
        self.engine = create_engine(url, echo=echo, pool_pre_ping=True, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        if create_tables:
            Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        with self._shared_conn_lock or nullcontext():
            session = self.SessionLocal()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def _row(self, db: Session, reference: str) -> Optional[PaymentRecord]:
        return db.execute(select(PaymentRecord).where(PaymentRecord.reference == reference)).scalar_one_or_none()

    # -- sync implementations, run via asyncio.to_thread --

    def _create(
        self,
        reference: str,
        merchant_wallet: str,
        amount: Decimal,
        token_id: str,
        memo: Optional[str],
        expected_payer: Optional[str],
    ) -> Tuple[PaymentRequest, bool]:
        payment = new_payment(reference, merchant_wallet, amount, token_id, memo, expected_payer)
        try:
            with self._session() as db:
                db.add(
                    PaymentRecord(
                        id=payment.id,
                        reference=payment.reference,
                        merchant_wallet=payment.merchant_wallet,
                        amount=str(payment.amount),
                        token_id=payment.token_id,
                        memo=payment.memo,
                        status=payment.status.value,
                        expected_payer=payment.expected_payer,
                        created_at=payment.created_at,
                    )
                )
            return payment, True
        except IntegrityError:
            # reference already present
            pass

        with self._session() as db:
            if expected_payer:
                db.execute(
                    update(PaymentRecord)
                    .where(
                        PaymentRecord.reference == reference,
                        PaymentRecord.status == PaymentStatus.pending.value,
                        PaymentRecord.expected_payer.is_(None),
                    )
                    .values(expected_payer=expected_payer)
                )
            row = self._row(db, reference)
            if row is None:
                raise NotFound("Payment not found")
            if row.status == PaymentStatus.confirmed.value:
                raise AlreadyExists("Payment already completed")
            return _to_payment(row), False

    def _get_by_reference(self, reference: str) -> Optional[PaymentRequest]:
        with self._session() as db:
            row = self._row(db, reference)
            return _to_payment(row) if row else None

    def _get_by_signature(self, signature: str) -> Optional[PaymentRequest]:
        with self._session() as db:
            row = db.execute(select(PaymentRecord).where(PaymentRecord.signature == signature)).scalar_one_or_none()
            return _to_payment(row) if row else None

    def _lock_payer(self, reference: str, payer_wallet: str) -> PaymentRequest:
        with self._session() as db:
            db.execute(
                update(PaymentRecord)
                .where(
                    PaymentRecord.reference == reference,
                    PaymentRecord.status == PaymentStatus.pending.value,
                    PaymentRecord.expected_payer.is_(None),
                )
                .values(expected_payer=payer_wallet)
            )
            row = self._row(db, reference)
            if row is None:
                raise NotFound("Payment not found")
            payment = _to_payment(row)
        if payment.is_confirmed:
            raise Terminal("Payment already completed")
        if payment.expected_payer != payer_wallet:
            raise locked_elsewhere(payment)
        return payment

    def _mark_confirmed(
        self,
        reference: str,
        signature: str,
        received_amount: Optional[Decimal],
        verified_sender: Optional[str],
    ) -> PaymentRequest:
        try:
            with self._session() as db:
                result = db.execute(
                    update(PaymentRecord)
                    .where(
                        PaymentRecord.reference == reference,
                        PaymentRecord.status == PaymentStatus.pending.value,
                    )
                    .values(
                        status=PaymentStatus.confirmed.value,
                        signature=signature,
                        confirmed_at=datetime.now(timezone.utc),
                        received_amount=str(received_amount) if received_amount is not None else None,
                        verified_sender=verified_sender,
                    )
                )
                row = self._row(db, reference)
                if row is None:
                    raise NotFound("Payment request not found")
                payment = _to_payment(row)
                updated = result.rowcount == 1
        except IntegrityError as e:
            logger.warning(f"Signature {signature[:8]}... rejected for {reference}: already bound")
            raise signature_reused(signature) from e

        if not updated and payment.signature != signature:
            raise completed_with_other_signature(reference)
        return payment

    def _list_by_merchant(self, merchant_wallet: Optional[str]) -> List[PaymentRequest]:
        with self._session() as db:
            stmt = select(PaymentRecord).order_by(PaymentRecord.seq)
            if merchant_wallet:
                stmt = stmt.where(PaymentRecord.merchant_wallet == merchant_wallet)
            return [_to_payment(r) for r in db.execute(stmt).scalars()]

    # -- PaymentLedger --

    async def create(
        self,
        reference: str,
        merchant_wallet: str,
        amount: Decimal,
        token_id: str,
        memo: Optional[str] = None,
        expected_payer: Optional[str] = None,
    ) -> Tuple[PaymentRequest, bool]:
        return await asyncio.to_thread(
            self._create, reference, merchant_wallet, amount, token_id, memo, expected_payer
        )

    async def get_by_reference(self, reference: str) -> Optional[PaymentRequest]:
        return await asyncio.to_thread(self._get_by_reference, reference)

    async def get_by_signature(self, signature: str) -> Optional[PaymentRequest]:
        return await asyncio.to_thread(self._get_by_signature, signature)

    async def lock_payer(self, reference: str, payer_wallet: str) -> PaymentRequest:
        return await asyncio.to_thread(self._lock_payer, reference, payer_wallet)

    async def mark_confirmed(
        self,
        reference: str,
        signature: str,
        received_amount: Optional[Decimal] = None,
        verified_sender: Optional[str] = None,
    ) -> PaymentRequest:
        return await asyncio.to_thread(
            self._mark_confirmed, reference, signature, received_amount, verified_sender
        )

    async def list_by_merchant(self, merchant_wallet: Optional[str]) -> List[PaymentRequest]:
        return await asyncio.to_thread(self._list_by_merchant, merchant_wallet)

    async def close(self) -> None:
        self.engine.dispose()
