from __future__ import annotations

import pytest

from mediagen.credits.credit_ledger import DEBIT, GRANT, RELEASE, REFUND, RESERVE, CreditLedger
from mediagen.generation.generation_errors import InsufficientCreditsError


def _kinds(ledger: CreditLedger, job_id: str) -> list[str]:
    return sorted(entry.kind for entry in ledger.entries_for_job(job_id))


def test_grant_creates_account_and_entry(ledger: CreditLedger) -> None:
    snapshot = ledger.grant("acct-new", 12, "welcome bonus")

    assert snapshot.balance == 12
    assert snapshot.available == 12
    assert ledger.balance("acct-new") == 12


def test_grant_rejects_non_positive_amount(ledger: CreditLedger) -> None:
    with pytest.raises(ValueError):
        ledger.grant("acct-new", 0)


def test_unknown_account_has_zero_balance(ledger: CreditLedger) -> None:
    snapshot = ledger.snapshot("nobody")

    assert (snapshot.balance, snapshot.reserved, snapshot.available) == (0, 0, 0)


def test_reserve_holds_units_once(ledger: CreditLedger) -> None:
    ledger.grant("acct", 10)

    assert ledger.reserve("job-1", "acct", 4) is True
    assert ledger.reserve("job-1", "acct", 4) is True

    snapshot = ledger.snapshot("acct")
    assert snapshot.balance == 10
    assert snapshot.reserved == 4
    assert snapshot.available == 6
    assert _kinds(ledger, "job-1") == [RESERVE]


def test_reserve_rejected_when_available_is_short(ledger: CreditLedger) -> None:
    ledger.grant("acct", 6)
    assert ledger.reserve("job-1", "acct", 5) is True

    assert ledger.reserve("job-2", "acct", 5) is False
    assert ledger.snapshot("acct").reserved == 5
    assert ledger.entries_for_job("job-2") == []


def test_debit_settles_hold(ledger: CreditLedger) -> None:
    ledger.grant("acct", 10)
    ledger.reserve("job-1", "acct", 5)

    assert ledger.debit("job-1", "acct", 5) is True

    snapshot = ledger.snapshot("acct")
    assert snapshot.balance == 5
    assert snapshot.reserved == 0
    assert _kinds(ledger, "job-1") == [DEBIT, RESERVE]


def test_debit_is_idempotent_per_job(ledger: CreditLedger) -> None:
    ledger.grant("acct", 10)
    ledger.reserve("job-1", "acct", 5)

    assert ledger.debit("job-1", "acct", 5) is True
    assert ledger.debit("job-1", "acct", 5) is False
    assert ledger.debit("job-1", "acct", 5) is False

    assert ledger.snapshot("acct").balance == 5
    assert _kinds(ledger, "job-1").count(DEBIT) == 1


def test_debit_requiring_available_raises_when_short(ledger: CreditLedger) -> None:
    ledger.grant("acct", 3)

    with pytest.raises(InsufficientCreditsError) as excinfo:
        ledger.debit("job-1", "acct", 5, require_available=True)

    assert excinfo.value.required == 5
    assert excinfo.value.available == 3
    assert ledger.snapshot("acct").balance == 3
    assert ledger.entries_for_job("job-1") == []


def test_debit_for_missing_account_raises(ledger: CreditLedger) -> None:
    with pytest.raises(InsufficientCreditsError):
        ledger.debit("job-1", "ghost", 5)


def test_release_drops_open_hold(ledger: CreditLedger) -> None:
    ledger.grant("acct", 10)
    ledger.reserve("job-1", "acct", 5)

    assert ledger.release("job-1") == RELEASE
    assert ledger.release("job-1") is None

    snapshot = ledger.snapshot("acct")
    assert snapshot.balance == 10
    assert snapshot.reserved == 0
    assert _kinds(ledger, "job-1") == [RELEASE, RESERVE]


def test_release_refunds_debit_taken_at_submit(ledger: CreditLedger) -> None:
    ledger.grant("acct", 10)
    ledger.debit("job-1", "acct", 5, require_available=True)
    assert ledger.balance("acct") == 5

    assert ledger.release("job-1") == REFUND
    assert ledger.release("job-1") is None

    assert ledger.balance("acct") == 10
    assert _kinds(ledger, "job-1") == [DEBIT, REFUND]


def test_release_without_charge_is_noop(ledger: CreditLedger) -> None:
    ledger.grant("acct", 10)

    assert ledger.release("job-unknown") is None
    assert ledger.balance("acct") == 10


def test_released_hold_is_not_settled_again(ledger: CreditLedger) -> None:
    ledger.grant("acct", 10)
    ledger.reserve("job-1", "acct", 5)
    ledger.release("job-1")

    assert ledger.debit("job-1", "acct", 5) is True

    snapshot = ledger.snapshot("acct")
    assert snapshot.reserved == 0
    assert snapshot.balance == 5


def test_grant_entries_are_not_tied_to_jobs(ledger: CreditLedger, session_factory) -> None:
    from sqlalchemy import select

    from mediagen.db.db_models import CreditLedgerEntryModel

    ledger.grant("acct", 3, "first")
    ledger.grant("acct", 4, "second")

    with session_factory() as session:
        grants = list(
            session.scalars(
                select(CreditLedgerEntryModel).where(CreditLedgerEntryModel.kind == GRANT)
            )
        )
    assert len(grants) == 2
    assert all(entry.job_id is None for entry in grants)
    assert ledger.balance("acct") == 7
