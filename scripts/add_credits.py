"""Grant credits to an account through the ledger."""

from __future__ import annotations

import argparse
import sys

from mediagen.config import load_database
from mediagen.credits.credit_ledger import CreditLedger


def grant_credits(account_id: str, amount: int, description: str) -> int:
    """Record a grant and return the new available balance."""
    _, _, session_factory = load_database()
    ledger = CreditLedger(session_factory)
    snapshot = ledger.grant(account_id, amount, description)
    return snapshot.available


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Add credits to an account.")
    parser.add_argument("account", help="Account identifier.")
    parser.add_argument("amount", type=int, help="Number of credits to grant.")
    parser.add_argument("description", nargs="?", default="manual grant", help="Ledger note.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.amount <= 0:
        print("amount must be positive", file=sys.stderr)
        return 2
    available = grant_credits(args.account, args.amount, args.description)
    print(f"granted {args.amount} credits to {args.account}, available={available}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
