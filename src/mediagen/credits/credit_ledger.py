"""Credit ledger: balances, reservations and per-job debits.

Each job has at most one entry per kind (reserve, debit, release, refund);
the unique constraint on ``(job_id, kind)`` is what makes debit and release
idempotent when they are retried or raced.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import exc as sa_exc
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..db.db_models import CreditAccountModel, CreditLedgerEntryModel
from ..db.db_session import session_scope
from ..generation.generation_errors import InsufficientCreditsError

logger = logging.getLogger(__name__)

RESERVE = "reserve"
DEBIT = "debit"
RELEASE = "release"
REFUND = "refund"
GRANT = "grant"


@dataclass(slots=True)
class CreditSnapshot:
    account_id: str
    balance: int
    reserved: int

    @property
    def available(self) -> int:
        return self.balance - self.reserved


@dataclass(slots=True)
class CreditLedger:
    """Atomic credit operations backed by the relational store."""

    session_factory: Callable[[], Session]
    log: logging.Logger = field(default_factory=lambda: logger)

    def snapshot(self, account_id: str) -> CreditSnapshot:
        with self.session_factory() as session:
            account = session.get(CreditAccountModel, account_id)
            if account is None:
                return CreditSnapshot(account_id=account_id, balance=0, reserved=0)
            return CreditSnapshot(
                account_id=account_id, balance=account.balance, reserved=account.reserved
            )

    def balance(self, account_id: str) -> int:
        """Return the units available for new jobs (balance minus holds)."""
        return self.snapshot(account_id).available

    def grant(self, account_id: str, amount: int, description: str = "grant") -> CreditSnapshot:
        if amount <= 0:
            raise ValueError("Grant amount must be positive")
        now = datetime.utcnow()
        with self.session_factory() as session:
            account = session.get(CreditAccountModel, account_id)
            if account is None:
                account = CreditAccountModel(account_id=account_id, balance=0, reserved=0)
                session.add(account)
            account.balance += amount
            account.updated_at = now
            session.add(_entry(account_id, None, GRANT, amount, description, now))
            session.commit()
            snapshot = CreditSnapshot(account_id, account.balance, account.reserved)
        self.log.info(
            "credits.grant",
            extra={"account_id": account_id, "amount": amount, "balance": snapshot.balance},
        )
        return snapshot

    def reserve(self, job_id: str, account_id: str, amount: int) -> bool:
        """Hold ``amount`` for ``job_id``; ``False`` when the account cannot cover it."""
        if amount <= 0:
            return True
        now = datetime.utcnow()
        with self.session_factory() as session:
            if _find_entry(session, job_id, RESERVE) is not None:
                return True
            result = session.execute(
                update(CreditAccountModel)
                .where(
                    CreditAccountModel.account_id == account_id,
                    CreditAccountModel.balance - CreditAccountModel.reserved >= amount,
                )
                .values(reserved=CreditAccountModel.reserved + amount, updated_at=now)
            )
            if result.rowcount != 1:
                session.rollback()
                self.log.info(
                    "credits.reserve.rejected",
                    extra={"job_id": job_id, "account_id": account_id, "amount": amount},
                )
                return False
            session.add(_entry(account_id, job_id, RESERVE, amount, "generation hold", now))
            try:
                session.commit()
            except sa_exc.IntegrityError:
                session.rollback()
                return True
        self.log.info(
            "credits.reserve",
            extra={"job_id": job_id, "account_id": account_id, "amount": amount},
        )
        return True

    def debit(
        self,
        job_id: str,
        account_id: str,
        amount: int,
        *,
        require_available: bool = False,
        session: Session | None = None,
    ) -> bool:
        """Charge ``amount`` for ``job_id`` once, settling any open hold.

        Returns ``False`` when the job was already debited. With
        ``require_available`` the charge only applies if the account has the
        units free, otherwise :class:`InsufficientCreditsError` is raised.
        """
        if amount <= 0:
            return False
        if session is None:
            try:
                with session_scope(self.session_factory) as owned:
                    applied = self._debit(owned, job_id, account_id, amount, require_available)
            except sa_exc.IntegrityError:
                self.log.info("credits.debit.duplicate", extra={"job_id": job_id})
                return False
        else:
            applied = self._debit(session, job_id, account_id, amount, require_available)
        if applied:
            self.log.info(
                "credits.debit",
                extra={"job_id": job_id, "account_id": account_id, "amount": amount},
            )
        return applied

    def _debit(
        self,
        session: Session,
        job_id: str,
        account_id: str,
        amount: int,
        require_available: bool,
    ) -> bool:
        if _find_entry(session, job_id, DEBIT) is not None:
            return False
        now = datetime.utcnow()
        hold = _open_hold(session, job_id)
        settled = hold.amount if hold is not None else 0
        stmt = (
            update(CreditAccountModel)
            .where(CreditAccountModel.account_id == account_id)
            .values(
                balance=CreditAccountModel.balance - amount,
                reserved=CreditAccountModel.reserved - settled,
                updated_at=now,
            )
        )
        if require_available:
            stmt = stmt.where(CreditAccountModel.balance - CreditAccountModel.reserved >= amount)
        result = session.execute(stmt)
        if result.rowcount != 1:
            raise InsufficientCreditsError(
                required=amount, available=self._available_in(session, account_id)
            )
        session.add(_entry(account_id, job_id, DEBIT, amount, "generation charge", now))
        session.flush()
        return True

    def release(self, job_id: str) -> str | None:
        """Undo the job's charge after a failure.

        Drops an open hold, or refunds a debit taken at submission time.
        Returns the entry kind written, or ``None`` when nothing was owed.
        """
        now = datetime.utcnow()
        with self.session_factory() as session:
            hold = _open_hold(session, job_id)
            debit = _find_entry(session, job_id, DEBIT)
            if hold is not None and debit is None:
                kind, amount, account_id = RELEASE, hold.amount, hold.account_id
                values = {"reserved": CreditAccountModel.reserved - amount}
            elif debit is not None and _find_entry(session, job_id, REFUND) is None:
                kind, amount, account_id = REFUND, debit.amount, debit.account_id
                values = {"balance": CreditAccountModel.balance + amount}
            else:
                return None
            session.execute(
                update(CreditAccountModel)
                .where(CreditAccountModel.account_id == account_id)
                .values(updated_at=now, **values)
            )
            session.add(_entry(account_id, job_id, kind, amount, "generation failed", now))
            try:
                session.commit()
            except sa_exc.IntegrityError:
                session.rollback()
                return None
        self.log.info(
            f"credits.{kind}",
            extra={"job_id": job_id, "account_id": account_id, "amount": amount},
        )
        return kind

    def entries_for_job(self, job_id: str) -> list[CreditLedgerEntryModel]:
        with self.session_factory() as session:
            stmt = (
                select(CreditLedgerEntryModel)
                .where(CreditLedgerEntryModel.job_id == job_id)
                .order_by(CreditLedgerEntryModel.created_at)
            )
            return list(session.scalars(stmt))

    @staticmethod
    def _available_in(session: Session, account_id: str) -> int:
        account = session.get(CreditAccountModel, account_id)
        if account is None:
            return 0
        return account.balance - account.reserved


def _find_entry(session: Session, job_id: str, kind: str) -> CreditLedgerEntryModel | None:
    return session.scalars(
        select(CreditLedgerEntryModel).where(
            CreditLedgerEntryModel.job_id == job_id,
            CreditLedgerEntryModel.kind == kind,
        )
    ).first()


def _open_hold(session: Session, job_id: str) -> CreditLedgerEntryModel | None:
    """Return the job's reserve entry unless it was already released or settled."""
    hold = _find_entry(session, job_id, RESERVE)
    if hold is None:
        return None
    if _find_entry(session, job_id, RELEASE) is not None:
        return None
    if _find_entry(session, job_id, DEBIT) is not None:
        return None
    return hold


def _entry(
    account_id: str,
    job_id: str | None,
    kind: str,
    amount: int,
    description: str,
    created_at: datetime,
) -> CreditLedgerEntryModel:
    return CreditLedgerEntryModel(
        id=uuid.uuid4().hex,
        account_id=account_id,
        job_id=job_id,
        kind=kind,
        amount=amount,
        description=description,
        created_at=created_at,
    )
