import datetime as dt
from decimal import Decimal

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tellersync.core.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class Enrollment(Base):
    """A saved Teller access token (one linked bank login), keyed by label."""
    __tablename__ = "enrollments"

    label: Mapped[str] = mapped_column(String(100), primary_key=True)
    encrypted_access_token: Mapped[str] = mapped_column(Text)
    error_code: Mapped[str | None] = mapped_column(String(255))
    last_synced_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class Institution(Base):
    __tablename__ = "institutions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255))


class Account(Base):
    """A Teller-linked account. Descriptive fields are passed through as-is."""
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)  # Teller account id
    institution_id: Mapped[str | None] = mapped_column(
        String(255), ForeignKey("institutions.id"), index=True, nullable=True
    )
    name: Mapped[str | None] = mapped_column(String(255))
    type: Mapped[str | None] = mapped_column(String(50))       # depository, credit
    subtype: Mapped[str | None] = mapped_column(String(50))
    last_four: Mapped[str | None] = mapped_column(String(10))
    currency: Mapped[str | None] = mapped_column(String(3))
    status: Mapped[str | None] = mapped_column(String(20))     # open, closed
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    transactions: Mapped[list["Transaction"]] = relationship(back_populates="account")


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)  # Teller transaction id
    account_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("accounts.id"), index=True
    )
    date: Mapped[dt.date | None] = mapped_column(Date, index=True)
    description: Mapped[str | None] = mapped_column(String(500))
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    type: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str | None] = mapped_column(String(20))     # pending, posted
    running_balance: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    details: Mapped[dict | None] = mapped_column(JSONPayload)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    account: Mapped["Account"] = relationship(back_populates="transactions")


class SyncCursor(Base):
    """Newest transaction id durably written for an account."""
    __tablename__ = "sync_cursors"

    account_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("accounts.id"), primary_key=True
    )
    last_seen_transaction_id: Mapped[str] = mapped_column(String(255))
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
