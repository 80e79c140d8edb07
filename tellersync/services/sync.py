"""Teller account/transaction sync engine — idempotent, incremental.

Per account, one reconciliation pass:

  1. upsert the institution (when present) and the account
  2. read the account's cursor (delta mode only; full mode ignores it)
  3. fetch up to ``page_size`` transactions newer than the cursor, newest-first
  4. write them oldest-first, each an upsert by transaction id
  5. only then move the cursor to the newest id seen in this pass

A failure anywhere in steps 1-5 is recorded against that account and leaves
its cursor where it was; the remaining accounts still run. Re-running a pass is
always safe because every write is an upsert.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Protocol

from sqlalchemy import select

from tellersync.core.config import settings
from tellersync.core.database import SessionLocal
from tellersync.models.teller import Enrollment
from tellersync.services.credentials import resolve_credential
from tellersync.services.store import SqlStore
from tellersync.services.teller import CredentialError, build_teller_client
from tellersync.worker import celery_app

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500

MODE_FULL = "full"
MODE_DELTA = "delta"


# ─── Collaborator interfaces ───────────────────────────────────────────────

class TransactionSource(Protocol):
    def list_accounts(self, credential: str) -> list[dict]: ...

    def list_transactions(
        self, account_id: str, credential: str, count: int | None = None, from_id: str | None = None
    ) -> list[dict]: ...


class RecordStore(Protocol):
    def upsert_institution(self, institution_id: str, name: str | None) -> None: ...

    def upsert_account(self, payload: dict) -> None: ...

    def upsert_transaction(self, payload: dict) -> None: ...


class CursorStore(Protocol):
    def get_cursor(self, account_id: str) -> str | None: ...

    def set_cursor(self, account_id: str, last_seen_transaction_id: str, updated_at: datetime) -> None: ...


# ─── Results ───────────────────────────────────────────────────────────────

@dataclass
class AccountError:
    account_id: str
    reason: str


@dataclass
class AccountResult:
    account_id: str
    transactions_written: int
    cursor: str | None


@dataclass
class SyncSummary:
    mode: str
    accounts_processed: int = 0
    transactions_written: int = 0
    results: list[AccountResult] = field(default_factory=list)
    errors: list[AccountError] = field(default_factory=list)

    def add(self, outcome: "AccountResult | AccountError") -> None:
        if isinstance(outcome, AccountError):
            self.errors.append(outcome)
            return
        self.results.append(outcome)
        self.accounts_processed += 1
        self.transactions_written += outcome.transactions_written

    def to_response(self) -> dict:
        return {
            "ok": True,
            "mode": self.mode,
            "accounts": self.accounts_processed,
            "transactions": self.transactions_written,
            "errors": [asdict(e) for e in self.errors],
        }


# ─── Ordering contract ─────────────────────────────────────────────────────

def oldest_first(transactions: list[dict]) -> list[dict]:
    """
    Write order for a fetched page.

    Teller lists newest-first; rows must reach the store oldest-first so
    anything keyed on insertion order (running balances, triggers) sees the
    account's history in chronological order.
    """
    return list(reversed(transactions))


def newest_id(transactions: list[dict]) -> str | None:
    """Cursor candidate: head of the newest-first page, independent of write order."""
    return transactions[0]["id"] if transactions else None


# ─── Engine ────────────────────────────────────────────────────────────────

class SyncEngine:
    def __init__(
        self,
        source: TransactionSource,
        store: RecordStore,
        cursors: CursorStore | None = None,
        max_workers: int = 1,
        clock: Callable[[], datetime] | None = None,
    ):
        self.source = source
        self.store = store
        self.cursors = cursors if cursors is not None else store
        self.max_workers = max(1, max_workers)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def run_full_sync(self, credential: str, page_size: int = DEFAULT_PAGE_SIZE) -> SyncSummary:
        """Backfill: most recent ``page_size`` transactions per account, cursor ignored."""
        return self._run(credential, page_size, MODE_FULL)

    def run_delta_sync(self, credential: str, page_size: int = DEFAULT_PAGE_SIZE) -> SyncSummary:
        """Incremental: only transactions newer than each account's cursor."""
        return self._run(credential, page_size, MODE_DELTA)

    def _run(self, credential: str, page_size: int, mode: str) -> SyncSummary:
        if not isinstance(page_size, int) or page_size <= 0:
            raise ValueError(f"page_size must be a positive integer, got {page_size!r}")
        if not credential:
            raise CredentialError("missing access token")

        # Credential and listing failures are fatal: nothing has been touched yet
        accounts = self.source.list_accounts(credential)
        logger.info("%s sync: %d account(s)", mode.capitalize(), len(accounts))

        summary = SyncSummary(mode=mode)
        if self.max_workers > 1 and len(accounts) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(
                    lambda acct: self._account_pass(acct, credential, page_size, mode),
                    accounts,
                ))
        else:
            outcomes = [self._account_pass(acct, credential, page_size, mode) for acct in accounts]

        for outcome in outcomes:
            summary.add(outcome)

        logger.info(
            "%s sync done: %d account(s) ok, %d transaction(s) written, %d failed",
            mode.capitalize(), summary.accounts_processed, summary.transactions_written, len(summary.errors),
        )
        return summary

    def _account_pass(
        self, account: dict, credential: str, page_size: int, mode: str
    ) -> AccountResult | AccountError:
        account_id = str(account.get("id") or "")
        try:
            if not account_id:
                raise ValueError("account payload has no id")
            return self._reconcile(account, account_id, credential, page_size, mode)
        except Exception as exc:
            logger.exception("Sync failed for account %s", account_id or "<unknown>")
            return AccountError(account_id=account_id, reason=str(exc) or exc.__class__.__name__)

    def _reconcile(
        self, account: dict, account_id: str, credential: str, page_size: int, mode: str
    ) -> AccountResult:
        institution = account.get("institution") or {}
        if institution.get("id"):
            self.store.upsert_institution(institution["id"], institution.get("name"))
        self.store.upsert_account(account)

        cursor = self.cursors.get_cursor(account_id) if mode == MODE_DELTA else None
        fetched = self.source.list_transactions(
            account_id, credential, count=page_size, from_id=cursor
        )
        if len(fetched) > page_size:
            # Delta keeps the records next to the cursor; full sync keeps the newest
            fetched = fetched[-page_size:] if mode == MODE_DELTA else fetched[:page_size]

        written = 0
        for txn in oldest_first(fetched):
            self.store.upsert_transaction({**txn, "account_id": txn.get("account_id") or account_id})
            written += 1

        # Last write of the pass: every transaction above is already durable
        head = newest_id(fetched)
        if head is not None:
            self.cursors.set_cursor(account_id, head, self._clock())
            cursor = head

        logger.debug("Account %s: %d written, cursor=%s", account_id, written, cursor)
        return AccountResult(account_id=account_id, transactions_written=written, cursor=cursor)


def build_sync_engine() -> SyncEngine:
    store = SqlStore(SessionLocal)
    return SyncEngine(build_teller_client(), store, max_workers=settings.sync_max_workers)


# ─── Celery tasks ──────────────────────────────────────────────────────────

def _record_outcome(label: str, error: str | None) -> None:
    with SessionLocal() as db:
        enrollment = db.get(Enrollment, label)
        if enrollment:
            enrollment.last_synced_at = datetime.now(timezone.utc)
            enrollment.error_code = error[:255] if error else None
            db.commit()


@celery_app.task(name="tellersync.services.sync.sync_enrollment")
def sync_enrollment(label: str, mode: str = MODE_DELTA) -> dict:
    """Sync one saved enrollment — called on-demand or by sync_all_enrollments."""
    with SessionLocal() as db:
        token, label = resolve_credential(db, label=label)

    engine = build_sync_engine()
    run = engine.run_full_sync if mode == MODE_FULL else engine.run_delta_sync
    try:
        summary = run(token, settings.sync_page_size)
    except Exception as exc:
        _record_outcome(label, str(exc))
        raise

    first_error = summary.errors[0] if summary.errors else None
    _record_outcome(label, f"{first_error.account_id}: {first_error.reason}" if first_error else None)
    return summary.to_response()


@celery_app.task(name="tellersync.services.sync.sync_all_enrollments")
def sync_all_enrollments() -> None:
    """Iterate all saved enrollments and run a delta sync for each."""
    with SessionLocal() as db:
        labels = db.execute(select(Enrollment.label)).scalars().all()

    logger.info("Starting scheduled delta sync for %d enrollment(s)", len(labels))
    for label in labels:
        try:
            result = sync_enrollment(label)
            logger.info(
                "Enrollment %s: %d account(s), %d transaction(s), %d error(s)",
                label, result["accounts"], result["transactions"], len(result["errors"]),
            )
        except Exception as exc:
            logger.error("Failed to sync enrollment %s: %s", label, exc)
