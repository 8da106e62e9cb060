"""Import legacy Rally Credits balances.

The old system kept one document per user with balances mutated in place:

    {"userId": "u1", "clubCredits": {"club-a": 120}, "pendingClubCredits": {"club-a": 30}}

Each available balance becomes an opening ``adjusted`` entry in the ledger.
An account that already has any ledger entry is left alone: either it was
imported before or it has been live since, and in both cases the ledger is
authoritative. Running the import again therefore changes nothing. Legacy
pending amounts have no event attached and cannot be confirmed, so they are
reported and left for the events to re-grant.

Usage:
    python -m scripts.import_legacy_balances data/rally_credits.json [--dry-run]

The input is either a JSON array of documents or one document per line.
"""

import argparse
import asyncio
import json
import sys
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rally_credits.core.database import engine
from rally_credits.models.credit import CreditTransaction, TransactionType
from rally_credits.services.errors import LedgerError
from rally_credits.services.ledger import CreditLedger, append_transaction, lock_account

DESCRIPTION = "Opening balance imported from legacy credits"

IMPORTED = "imported"
ALREADY_ACTIVE = "already active"


@dataclass
class ImportSummary:
    documents: int = 0
    imported: int = 0
    already_active: int = 0
    skipped: int = 0
    failed: int = 0
    pending_total: int = 0


def load_documents(path: Path) -> list[dict]:
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    if text.startswith("["):
        return json.loads(text)
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def legacy_balances(doc: dict) -> tuple[str | None, dict[str, int], dict[str, int]]:
    user_id = doc.get("userId") or doc.get("id")
    available = {str(k): int(v) for k, v in (doc.get("clubCredits") or {}).items()}
    pending = {str(k): int(v) for k, v in (doc.get("pendingClubCredits") or {}).items()}
    return user_id, available, pending


async def has_history(db: AsyncSession, user_id: str, club_id: str) -> bool:
    result = await db.execute(
        select(CreditTransaction.id)
        .where(CreditTransaction.user_id == user_id, CreditTransaction.club_id == club_id)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def open_balance(ledger: CreditLedger, user_id: str, club_id: str, amount: int) -> str:
    """Write the opening entry for a fresh account, in one unit with the history check."""

    async def work(db: AsyncSession) -> str:
        account = await lock_account(db, user_id, club_id)
        if await has_history(db, user_id, club_id):
            return ALREADY_ACTIVE
        await append_transaction(db, account, TransactionType.ADJUSTED, amount, DESCRIPTION)
        return IMPORTED

    return await ledger.run(work, f"import {user_id}@{club_id}")


async def import_documents(docs: list[dict], ledger: CreditLedger, dry_run: bool = False) -> ImportSummary:
    summary = ImportSummary(documents=len(docs))

    for i, doc in enumerate(docs, start=1):
        user_id, available, pending = legacy_balances(doc)
        if not user_id:
            print(f"  Row {i}: no user id, skipped")
            summary.skipped += 1
            continue

        for club_id, amount in pending.items():
            if amount > 0:
                print(f"  {user_id} @ {club_id}: {amount} pending credits not imported")
                summary.pending_total += amount

        for club_id, amount in available.items():
            if amount <= 0:
                if amount < 0:
                    print(f"  {user_id} @ {club_id}: negative legacy balance {amount}, skipped")
                summary.skipped += 1
                continue
            if dry_run:
                print(f"  [dry run] {user_id} @ {club_id}: open with {amount}")
                summary.imported += 1
                continue
            try:
                outcome = await open_balance(ledger, user_id, club_id, amount)
            except LedgerError as exc:
                print(f"  {user_id} @ {club_id}: failed ({exc.message})")
                summary.failed += 1
                continue
            if outcome == ALREADY_ACTIVE:
                summary.already_active += 1
            else:
                summary.imported += 1

    return summary


async def main(args: argparse.Namespace) -> int:
    docs = load_documents(Path(args.path))
    summary = await import_documents(docs, CreditLedger(), dry_run=args.dry_run)
    await engine.dispose()

    print(f"Processed {summary.documents} legacy documents")
    print(f"  {summary.imported} balances imported{' (dry run)' if args.dry_run else ''}")
    print(f"  {summary.already_active} accounts already in the ledger, left alone")
    print(f"  {summary.skipped} skipped")
    print(f"  {summary.failed} failed")
    print(f"  {summary.pending_total} legacy pending credits not imported")
    return 1 if summary.failed else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("path", help="JSON export of the legacy credits collection")
    parser.add_argument("--dry-run", action="store_true", help="Report what would be imported without writing")
    parsed = parser.parse_args()
    sys.exit(asyncio.run(main(parsed)))
