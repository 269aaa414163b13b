from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from tradesync.core.credentials import CredentialStore
from tradesync.core.errors import InvalidCredentials, InvalidRequest, StorageFailure
from tradesync.core.session_token import FIELD_SEP, SessionTokenCodec
from tradesync.database.models import KEY_MAX_LEN
from tradesync.database.repo import Repo
from tradesync.utils.parsing import clean_str

logger = logging.getLogger(__name__)


class Authenticator:
    """
    Terminal login: checks the generated credential pair, links the terminal's
    broker account to the owning user and hands back a session token.

    Never creates users and never touches trades or credentials.
    """

    def __init__(
        self,
        repo: Repo,
        credentials: CredentialStore,
        codec: SessionTokenCodec,
        default_terminal: str = "MT4",
    ) -> None:
        self._repo = repo
        self._credentials = credentials
        self._codec = codec
        self._default_terminal = default_terminal

    def authenticate(
        self,
        username: str | None,
        password: str | None,
        terminal: str | None,
        account_id: str | None,
    ) -> str:
        account_id = clean_str(account_id)
        terminal = clean_str(terminal) or self._default_terminal

        logger.info("auth attempt username=%s terminal=%s account=%s", username, terminal, account_id)

        if not account_id:
            raise InvalidRequest("Missing account")
        if FIELD_SEP in account_id or len(account_id) > KEY_MAX_LEN:
            raise InvalidRequest("Invalid account")

        user_id = self._credentials.find(username, password)
        if user_id is None:
            logger.info("auth rejected username=%s account=%s", username, account_id)
            raise InvalidCredentials()

        try:
            self._repo.accounts.link(user_id, account_id, terminal)
        except SQLAlchemyError as e:
            logger.error("account link failed user=%s account=%s: %s", user_id, account_id, e, exc_info=True)
            raise StorageFailure() from e

        logger.info("auth ok user=%s account=%s", user_id, account_id)
        return self._codec.issue(user_id, account_id)
