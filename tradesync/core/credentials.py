from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from tradesync.core.errors import StorageFailure
from tradesync.database.repo import Repo
from tradesync.utils.crypto import hmac_sha256_hex
from tradesync.utils.ids import random_password, terminal_username
from tradesync.utils.time import now_utc

logger = logging.getLogger(__name__)

# Redraws allowed when a fresh password collides with another user's live pair.
MAX_ISSUE_ATTEMPTS = 5


@dataclass
class Credential:
    username: str
    password: str
    updated_at: datetime


class CredentialStore:
    """
    Terminal login pairs, one per user.

    The clear-text password leaves this class only as the return value of
    ``issue``; storage holds an HMAC digest keyed by the server pepper.
    """

    def __init__(self, repo: Repo, pepper: str, password_length: int = 12) -> None:
        self._repo = repo
        self._pepper = pepper
        self._password_length = int(password_length)

    def digest(self, password: str) -> str:
        return hmac_sha256_hex(self._pepper, password.encode("utf-8"))

    def issue(self, user_id: str) -> Credential:
        username = terminal_username(user_id)
        try:
            for _ in range(MAX_ISSUE_ATTEMPTS):
                password = random_password(self._password_length)
                digest = self.digest(password)
                taken = [u for u in self._repo.credentials.find_user_ids(username, digest) if u != user_id]
                if taken:
                    logger.warning("credential pair collision for %s, redrawing", username)
                    continue
                now = now_utc()
                self._repo.credentials.put(user_id, username, digest, now=now)
                logger.info("issued terminal credentials user=%s username=%s", user_id, username)
                return Credential(username=username, password=password, updated_at=now)
        except SQLAlchemyError as e:
            logger.error("credential write failed for user=%s: %s", user_id, e, exc_info=True)
            raise StorageFailure() from e

        raise StorageFailure("Failed to generate credentials")

    def find(self, username: str | None, password: str | None) -> str | None:
        """Exact-match lookup; returns the owning user id or None."""
        if not username or not password:
            return None
        try:
            matches = self._repo.credentials.find_user_ids(username, self.digest(password))
        except SQLAlchemyError as e:
            logger.error("credential lookup failed: %s", e, exc_info=True)
            raise StorageFailure() from e
        # issue() keeps pairs unique; an ambiguous match is never trusted.
        if len(matches) != 1:
            return None
        return matches[0]

    def get(self, user_id: str) -> tuple[str, datetime] | None:
        try:
            row = self._repo.credentials.get(user_id)
        except SQLAlchemyError as e:
            logger.error("credential read failed for user=%s: %s", user_id, e, exc_info=True)
            raise StorageFailure() from e
        if row is None:
            return None
        return row.username, row.updated_at
