from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from tradesync.core.credentials import Credential, CredentialStore
from tradesync.core.errors import InvalidRequest, NotFound, StorageFailure
from tradesync.database import models
from tradesync.database.repo import Repo
from tradesync.utils.ids import new_user_id

logger = logging.getLogger(__name__)


@dataclass
class EnsuredUser:
    user: models.User
    created: bool
    # Present only when credentials were issued by this call.
    credential: Credential | None


class DashboardService:
    """Owner-facing side: sign-in hook, credential rotation and the polled read model."""

    def __init__(self, repo: Repo, credentials: CredentialStore) -> None:
        self._repo = repo
        self._credentials = credentials

    def ensure_user(
        self,
        user_id: str | None = None,
        email: str | None = None,
        display_name: str | None = None,
    ) -> EnsuredUser:
        user_id = (user_id or "").strip() or new_user_id()
        if ":" in user_id or len(user_id) > models.KEY_MAX_LEN:
            raise InvalidRequest("Invalid user_id")
        try:
            user = self._repo.users.get(user_id)
            created = user is None
            if created:
                user = self._repo.users.create(user_id, email=email, display_name=display_name)
            has_credential = self._repo.credentials.get(user_id) is not None
        except SQLAlchemyError as e:
            logger.error("user upsert failed user=%s: %s", user_id, e, exc_info=True)
            raise StorageFailure() from e

        credential = None if has_credential else self._credentials.issue(user_id)
        if created:
            logger.info("registered user=%s", user_id)
        return EnsuredUser(user=user, created=created, credential=credential)

    def _require_user(self, user_id: str) -> models.User:
        try:
            user = self._repo.users.get(user_id)
        except SQLAlchemyError as e:
            logger.error("user read failed user=%s: %s", user_id, e, exc_info=True)
            raise StorageFailure() from e
        if user is None:
            raise NotFound("User not found")
        return user

    def regenerate_credentials(self, user_id: str) -> Credential:
        self._require_user(user_id)
        return self._credentials.issue(user_id)

    def get_credentials(self, user_id: str) -> tuple[str, datetime]:
        self._require_user(user_id)
        found = self._credentials.get(user_id)
        if found is None:
            raise NotFound("Credentials not found")
        return found

    def list_accounts(self, user_id: str) -> list[models.TerminalAccount]:
        self._require_user(user_id)
        try:
            return self._repo.accounts.list_for_user(user_id)
        except SQLAlchemyError as e:
            logger.error("account list failed user=%s: %s", user_id, e, exc_info=True)
            raise StorageFailure() from e

    def list_trades(
        self,
        user_id: str,
        account_id: str,
        since: datetime | None = None,
        limit: int = 500,
    ) -> list[models.Trade]:
        self._require_user(user_id)
        try:
            if self._repo.accounts.get(user_id, account_id) is None:
                raise NotFound("Account not found")
            return self._repo.trades.list_for_account(user_id, account_id, since=since, limit=limit)
        except SQLAlchemyError as e:
            logger.error("trade list failed user=%s account=%s: %s", user_id, account_id, e, exc_info=True)
            raise StorageFailure() from e
