"""Database initialization helpers."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db_models import Base, CreditAccountModel, CreditLedgerEntryModel


def init_db(
    engine: Engine,
    session_factory: sessionmaker[Session],
    *,
    seed_account_id: str | None = None,
    seed_credits: int = 0,
) -> None:
    """Create tables and optionally seed a development credit account."""
    Base.metadata.create_all(engine)

    if seed_account_id:
        with session_factory() as session:
            _seed_account(session, seed_account_id, seed_credits)
            session.commit()


def _seed_account(session: Session, account_id: str, credits: int) -> None:
    if session.get(CreditAccountModel, account_id) is not None:
        return
    now = datetime.utcnow()
    session.add(CreditAccountModel(account_id=account_id, balance=credits, reserved=0, updated_at=now))
    if credits:
        session.add(
            CreditLedgerEntryModel(
                id=uuid.uuid4().hex,
                account_id=account_id,
                job_id=None,
                kind="grant",
                amount=credits,
                description="initial seed",
                created_at=now,
            )
        )
