"""
Compare an account's stored balance with the sum of its ledger entries.

Usage (from backend/ with DATABASE_URL set):
  python -m atelier.scripts.ledger_audit <user_id>

Exits 0 when they match, 4 when they drift.
"""
from __future__ import annotations

import sys
from atelier.platform.database import SessionLocal
from atelier.models.user import User
from atelier.services import credit_ledger_service as ledger


def main() -> None:
    if len(sys.argv) < 2:
        print("Usage: python -m atelier.scripts.ledger_audit <user_id>", file=sys.stderr)
        sys.exit(1)
    user_id = sys.argv[1].strip()
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        if not user:
            print(f"User not found: {user_id}", file=sys.stderr)
            sys.exit(2)
        stored = int(user.credits or 0)
        replayed = ledger.replay_balance(db, user_id)
        _, total = ledger.list_transactions(db, user_id, limit=1, offset=0)
        print(f"user={user_id} email={user.email} transactions={total} stored={stored} replayed={replayed}")
        if stored != replayed:
            print(f"Ledger drift of {stored - replayed} credit(s) for {user_id}", file=sys.stderr)
            sys.exit(4)
        print("Ledger consistent.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
