"""SQL-backed record and cursor store.

Every write is an ``INSERT ... ON CONFLICT DO UPDATE`` keyed by the Teller id,
committed in its own short session so concurrent account passes never share a
session and a failed write never rolls back earlier, already-durable rows.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import sessionmaker

from tellersync.models.teller import Account, Institution, SyncCursor, Transaction

logger = logging.getLogger(__name__)


# ─── Payload → row mapping ─────────────────────────────────────────────────

def _to_decimal(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"not a decimal amount: {value!r}") from None


def _to_date(value) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def account_row(payload: dict) -> dict:
    institution = payload.get("institution") or {}
    return {
        "id": payload["id"],
        "institution_id": institution.get("id"),
        "name": payload.get("name"),
        "type": payload.get("type"),
        "subtype": payload.get("subtype"),
        "last_four": payload.get("last_four"),
        "currency": payload.get("currency"),
        "status": payload.get("status"),
    }


def transaction_row(payload: dict) -> dict:
    return {
        "id": payload["id"],
        "account_id": payload["account_id"],
        "date": _to_date(payload.get("date")),
        "description": payload.get("description"),
        "amount": _to_decimal(payload.get("amount")) or Decimal(0),
        "type": payload.get("type"),
        "status": payload.get("status"),
        "running_balance": _to_decimal(payload.get("running_balance")),
        "details": payload.get("details"),
    }


# ─── Store ─────────────────────────────────────────────────────────────────

class SqlStore:
    """Record Store and Cursor Store over one SQLAlchemy ``sessionmaker``."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _upsert(self, model, values: dict) -> None:
        with self._session_factory() as session:
            insert = pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert
            stmt = insert(model).values(**values)
            pk = [c.name for c in model.__table__.primary_key.columns]
            stmt = stmt.on_conflict_do_update(
                index_elements=pk,
                set_={k: stmt.excluded[k] for k in values if k not in pk},
            )
            session.execute(stmt)
            session.commit()

    # ── Records ────────────────────────────────────────────────────────
    def upsert_institution(self, institution_id: str, name: str | None) -> None:
        self._upsert(Institution, {"id": institution_id, "name": name})

    def upsert_account(self, payload: dict) -> None:
        row = account_row(payload)
        row["updated_at"] = datetime.now(timezone.utc)
        self._upsert(Account, row)

    def upsert_transaction(self, payload: dict) -> None:
        row = transaction_row(payload)
        row["updated_at"] = datetime.now(timezone.utc)
        self._upsert(Transaction, row)

    # ── Cursors ────────────────────────────────────────────────────────
    def get_cursor(self, account_id: str) -> str | None:
        with self._session_factory() as session:
            return session.execute(
                select(SyncCursor.last_seen_transaction_id).where(
                    SyncCursor.account_id == account_id
                )
            ).scalar_one_or_none()

    def set_cursor(self, account_id: str, last_seen_transaction_id: str, updated_at: datetime) -> None:
        self._upsert(SyncCursor, {
            "account_id": account_id,
            "last_seen_transaction_id": last_seen_transaction_id,
            "updated_at": updated_at,
        })
        logger.debug("Cursor for %s -> %s", account_id, last_seen_transaction_id)
