from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from tradesync.database import models
from tradesync.utils.time import now_utc


def upsert(
    s: Session,
    model: type,
    values: dict[str, Any],
    key_fields: list[str],
    insert_only: Iterable[str] = (),
) -> None:
    """Merge-on-write: insert, or overwrite the given non-key fields of the existing row.

    Columns not named in ``values`` are left alone on update, and ``insert_only``
    columns are written on first insert only. SQLite/PostgreSQL do it in one
    ``INSERT ... ON CONFLICT DO UPDATE``; other dialects go through the session.
    """
    insert_only = set(insert_only)
    dialect = s.get_bind().dialect.name

    if dialect in ("sqlite", "postgresql"):
        insert = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = insert(model).values(**values)
        update_fields = {
            col: getattr(stmt.excluded, col)
            for col in values
            if col not in key_fields and col not in insert_only
        }
        stmt = stmt.on_conflict_do_update(index_elements=key_fields, set_=update_fields)
        s.execute(stmt)
        return

    row = s.get(model, {k: values[k] for k in key_fields})
    if row is None:
        s.add(model(**values))
    else:
        for col, v in values.items():
            if col in key_fields or col in insert_only:
                continue
            setattr(row, col, v)
    s.flush()


@dataclass
class UsersRepo:
    s: Session

    def get(self, user_id: str) -> models.User | None:
        return self.s.get(models.User, user_id)

    def create(self, user_id: str, email: str | None = None, display_name: str | None = None) -> models.User:
        row = models.User(
            user_id=user_id,
            email=email,
            display_name=display_name,
            created_at=now_utc(),
        )
        self.s.add(row)
        self.s.flush()
        return row


@dataclass
class CredentialsRepo:
    s: Session

    def put(self, user_id: str, username: str, password_digest: str, now: datetime | None = None) -> None:
        upsert(
            self.s,
            models.TerminalCredential,
            {
                "user_id": user_id,
                "username": username,
                "password_digest": password_digest,
                "updated_at": now or now_utc(),
            },
            key_fields=["user_id"],
        )

    def get(self, user_id: str) -> models.TerminalCredential | None:
        return (
            self.s.execute(
                select(models.TerminalCredential)
                .where(models.TerminalCredential.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            .scalar_one_or_none()
        )

    def find_user_ids(self, username: str, password_digest: str, limit: int = 2) -> list[str]:
        return list(
            self.s.execute(
                select(models.TerminalCredential.user_id)
                .where(
                    models.TerminalCredential.username == username,
                    models.TerminalCredential.password_digest == password_digest,
                )
                .limit(limit)
            )
            .scalars()
            .all()
        )


@dataclass
class AccountsRepo:
    s: Session

    def link(self, user_id: str, account_id: str, terminal: str, now: datetime | None = None) -> None:
        now = now or now_utc()
        upsert(
            self.s,
            models.TerminalAccount,
            {
                "user_id": user_id,
                "account_id": account_id,
                "terminal": terminal,
                "last_connected": now,
                "is_active": True,
                "created_at": now,
            },
            key_fields=["user_id", "account_id"],
            insert_only=["created_at"],
        )

    def get(self, user_id: str, account_id: str) -> models.TerminalAccount | None:
        return (
            self.s.execute(
                select(models.TerminalAccount)
                .where(
                    models.TerminalAccount.user_id == user_id,
                    models.TerminalAccount.account_id == account_id,
                )
                .execution_options(populate_existing=True)
            )
            .scalar_one_or_none()
        )

    def list_for_user(self, user_id: str) -> list[models.TerminalAccount]:
        return list(
            self.s.execute(
                select(models.TerminalAccount)
                .where(models.TerminalAccount.user_id == user_id)
                .order_by(models.TerminalAccount.account_id.asc())
                .execution_options(populate_existing=True)
            )
            .scalars()
            .all()
        )


@dataclass
class TradesRepo:
    s: Session

    def upsert(self, user_id: str, account_id: str, ticket: str, fields: dict[str, Any], now: datetime | None = None) -> None:
        now = now or now_utc()
        values = dict(fields)
        values.update(
            user_id=user_id,
            account_id=account_id,
            ticket=ticket,
            created_at=now,
            updated_at=now,
        )
        upsert(
            self.s,
            models.Trade,
            values,
            key_fields=["user_id", "account_id", "ticket"],
            insert_only=["created_at"],
        )

    def get(self, user_id: str, account_id: str, ticket: str) -> models.Trade | None:
        return (
            self.s.execute(
                select(models.Trade)
                .where(
                    models.Trade.user_id == user_id,
                    models.Trade.account_id == account_id,
                    models.Trade.ticket == ticket,
                )
                .execution_options(populate_existing=True)
            )
            .scalar_one_or_none()
        )

    def list_for_account(
        self,
        user_id: str,
        account_id: str,
        since: datetime | None = None,
        limit: int = 500,
    ) -> list[models.Trade]:
        q = select(models.Trade).where(
            models.Trade.user_id == user_id,
            models.Trade.account_id == account_id,
        )
        if since is not None:
            q = q.where(models.Trade.updated_at > since)
        q = q.order_by(models.Trade.updated_at.desc(), models.Trade.ticket.asc()).limit(int(limit))
        return list(self.s.execute(q.execution_options(populate_existing=True)).scalars().all())


@dataclass
class Repo:
    s: Session

    @property
    def users(self) -> UsersRepo:
        return UsersRepo(self.s)

    @property
    def credentials(self) -> CredentialsRepo:
        return CredentialsRepo(self.s)

    @property
    def accounts(self) -> AccountsRepo:
        return AccountsRepo(self.s)

    @property
    def trades(self) -> TradesRepo:
        return TradesRepo(self.s)
