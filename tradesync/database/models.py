from __future__ import annotations

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    BigInteger,
    String,
    PrimaryKeyConstraint,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# Bound for terminal-supplied key columns (account id, ticket).
KEY_MAX_LEN = 64


class TradeType(enum.IntEnum):
    BUY = 0
    SELL = 1
    BUY_LIMIT = 2
    SELL_LIMIT = 3
    BUY_STOP = 4
    SELL_STOP = 5


class TradeStatus(str, enum.Enum):
    OPEN = "open"
    # Reserved; nothing transitions a trade out of OPEN yet.
    CLOSED = "closed"


# ---------------------------
# Users + terminal credentials
# ---------------------------

class User(Base):
    __tablename__ = "users"

    user_id = Column(String(64), primary_key=True)
    email = Column(String(320), nullable=True)
    display_name = Column(String(256), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    credential = relationship("TerminalCredential", uselist=False, back_populates="user")


class TerminalCredential(Base):
    """One terminal login per user. Only an HMAC digest of the password is kept."""

    __tablename__ = "terminal_credentials"

    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    username = Column(String(64), nullable=False)
    password_digest = Column(String(64), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", back_populates="credential")

    __table_args__ = (
        Index("ix_terminal_credentials_login", "username", "password_digest"),
    )


# ---------------------------
# Linked terminal accounts + trades
# ---------------------------

class TerminalAccount(Base):
    __tablename__ = "terminal_accounts"

    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    # Broker account number as reported by the terminal (not server generated).
    account_id = Column(String(KEY_MAX_LEN), nullable=False)

    terminal = Column(Text, nullable=False, default="MT4")
    last_connected = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("user_id", "account_id", name="pk_terminal_accounts"),
        CheckConstraint("length(account_id) > 0", name="ck_terminal_accounts_account_not_empty"),
    )


class Trade(Base):
    __tablename__ = "trades"

    user_id = Column(String(64), nullable=False)
    account_id = Column(String(KEY_MAX_LEN), nullable=False)
    # Broker order id; the idempotency key within an account.
    ticket = Column(String(KEY_MAX_LEN), nullable=False)

    symbol = Column(Text, nullable=False, default="")
    type = Column(Integer, nullable=False, default=int(TradeType.BUY))
    lots = Column(Float, nullable=False)
    open_price = Column(Float, nullable=False, default=0.0)
    # Terminal-formatted, stored as received.
    open_time = Column(Text, nullable=False)
    stop_loss = Column(Float, nullable=False, default=0.0)  # 0 = unset
    take_profit = Column(Float, nullable=False, default=0.0)  # 0 = unset
    comment = Column(Text, nullable=False, default="")
    magic = Column(BigInteger, nullable=False, default=0)

    status = Column(String(16), nullable=False, default=TradeStatus.OPEN.value)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("user_id", "account_id", "ticket", name="pk_trades"),
        ForeignKeyConstraint(
            ["user_id", "account_id"],
            ["terminal_accounts.user_id", "terminal_accounts.account_id"],
            ondelete="CASCADE",
            name="fk_trades_account",
        ),
        CheckConstraint("length(ticket) > 0", name="ck_trades_ticket_not_empty"),
        CheckConstraint("type BETWEEN 0 AND 5", name="ck_trades_type_range"),
        CheckConstraint("lots > 0", name="ck_trades_lots_positive"),
        Index("ix_trades_account_updated", "user_id", "account_id", "updated_at"),
    )
