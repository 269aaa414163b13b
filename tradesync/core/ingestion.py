from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError

from tradesync.core.errors import InvalidRequest, MalformedToken, StorageFailure, Unauthorized
from tradesync.core.session_token import SessionClaims, SessionTokenCodec
from tradesync.database.models import KEY_MAX_LEN, TradeStatus, TradeType
from tradesync.database.repo import Repo
from tradesync.utils.logger import mask
from tradesync.utils.parsing import clean_str, safe_float, safe_int
from tradesync.utils.time import terminal_time_str

logger = logging.getLogger(__name__)

VALID_TYPES = {int(t) for t in TradeType}

# magic is stored as a signed 64-bit integer.
MAGIC_MIN, MAGIC_MAX = -(2**63), 2**63 - 1


@dataclass
class TradeFields:
    """Normalized trade-open event, column names as stored."""

    symbol: str
    type: int
    lots: float
    open_price: float
    open_time: str
    stop_loss: float
    take_profit: float
    comment: str
    magic: int
    status: str = TradeStatus.OPEN.value


def normalize_trade_fields(raw: Mapping[str, Any], default_lots: float = 0.01) -> TradeFields:
    """Best-effort coercion of terminal form fields; never raises.

    Absent or unparseable values take their default: type 0, lots
    ``default_lots``, prices 0 (0 also means "unset" for SL/TP), comment "",
    magic 0 (also when outside the 64-bit range), openTime the current
    server time.
    """
    trade_type = safe_int(raw.get("type"), 0)
    if trade_type not in VALID_TYPES:
        trade_type = 0

    lots = safe_float(raw.get("lots"), default_lots)
    if lots <= 0:
        lots = default_lots

    magic = safe_int(raw.get("magic"), 0)
    if not MAGIC_MIN <= magic <= MAGIC_MAX:
        magic = 0

    def _price(key: str) -> float:
        v = safe_float(raw.get(key), 0.0)
        return v if v >= 0 else 0.0

    return TradeFields(
        symbol=clean_str(raw.get("symbol")),
        type=trade_type,
        lots=lots,
        open_price=_price("openPrice"),
        open_time=clean_str(raw.get("openTime")) or terminal_time_str(),
        stop_loss=_price("stopLoss"),
        take_profit=_price("takeProfit"),
        comment="" if raw.get("comment") is None else str(raw.get("comment")),
        magic=magic,
    )


class TradeIngestionService:
    """
    Records trade-open events reported by a linked terminal.

    One upsert per call at (user, account, ticket): re-sending a ticket
    overwrites its content, it never adds a second row.
    """

    def __init__(self, repo: Repo, codec: SessionTokenCodec, default_lots: float = 0.01) -> None:
        self._repo = repo
        self._codec = codec
        self._default_lots = float(default_lots)

    def authorize(self, token: str | None) -> SessionClaims:
        # Every failure reads the same to the caller.
        if not token or not str(token).strip():
            raise Unauthorized()
        try:
            claims = self._codec.decode(str(token))
        except MalformedToken as e:
            logger.info("rejected token %s: %s", mask(str(token)), e)
            raise Unauthorized() from e
        if self._codec.is_expired(claims):
            logger.info("rejected expired token for user=%s account=%s", claims.user_id, claims.account_id)
            raise Unauthorized()

        try:
            account = self._repo.accounts.get(claims.user_id, claims.account_id)
        except SQLAlchemyError as e:
            logger.error("account lookup failed user=%s: %s", claims.user_id, e, exc_info=True)
            raise StorageFailure() from e
        if account is None:
            logger.info("token for unlinked account user=%s account=%s", claims.user_id, claims.account_id)
            raise Unauthorized()
        return claims

    def ingest(self, token: str | None, raw: Mapping[str, Any]) -> SessionClaims:
        claims = self.authorize(token)
        self.record(claims, raw)
        return claims

    def record(self, claims: SessionClaims, raw: Mapping[str, Any]) -> None:
        """Upsert one trade for already-authorized claims."""
        ticket = clean_str(raw.get("ticket"))
        if not ticket:
            raise InvalidRequest("missing ticket")
        if len(ticket) > KEY_MAX_LEN:
            raise InvalidRequest("invalid ticket")

        fields = normalize_trade_fields(raw, default_lots=self._default_lots)
        try:
            self._repo.trades.upsert(claims.user_id, claims.account_id, ticket, asdict(fields))
        except SQLAlchemyError as e:
            logger.error(
                "trade upsert failed user=%s account=%s ticket=%s: %s",
                claims.user_id,
                claims.account_id,
                ticket,
                e,
                exc_info=True,
            )
            raise StorageFailure() from e

        logger.info(
            "trade recorded user=%s account=%s ticket=%s symbol=%s type=%s lots=%s",
            claims.user_id,
            claims.account_id,
            ticket,
            fields.symbol,
            fields.type,
            fields.lots,
        )
