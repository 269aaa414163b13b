# tests/unit/test_ingestion.py
"""Unit tests for trade ingestion and field normalization."""
import re

import pytest

from tradesync.core.errors import InvalidRequest, Unauthorized
from tradesync.core.ingestion import TradeIngestionService, normalize_trade_fields
from tradesync.core.session_token import SessionTokenCodec
from tradesync.database import models
from tradesync.utils.time import to_utc

FULL_TRADE = {
    "ticket": "555",
    "symbol": "EURUSD",
    "type": "0",
    "lots": "0.1",
    "openPrice": "1.2345",
    "openTime": "2024.03.01 10:15:00",
    "stopLoss": "1.2300",
    "takeProfit": "1.2400",
    "comment": "scalper v2",
    "magic": "20240301",
}


@pytest.fixture
def linked(authenticator, registered_user, db_session):
    """(user_id, token) for a terminal linked to account 998877."""
    cred = registered_user.credential
    token = authenticator.authenticate(cred.username, cred.password, "MT4", "998877")
    db_session.commit()
    return registered_user.user.user_id, token


class TestNormalizeTradeFields:
    """Lenient coercion of terminal input."""

    def test_full_record(self):
        f = normalize_trade_fields(FULL_TRADE)
        assert f.symbol == "EURUSD"
        assert f.type == 0
        assert f.lots == pytest.approx(0.1)
        assert f.open_price == pytest.approx(1.2345)
        assert f.open_time == "2024.03.01 10:15:00"
        assert f.stop_loss == pytest.approx(1.23)
        assert f.take_profit == pytest.approx(1.24)
        assert f.comment == "scalper v2"
        assert f.magic == 20240301
        assert f.status == "open"

    def test_defaults_when_absent(self):
        f = normalize_trade_fields({"ticket": "556"}, default_lots=0.01)
        assert f.type == 0
        assert f.lots == 0.01
        assert f.open_price == 0.0
        assert f.stop_loss == 0.0
        assert f.take_profit == 0.0
        assert f.comment == ""
        assert f.magic == 0
        assert re.fullmatch(r"\d{4}\.\d{2}\.\d{2} \d{2}:\d{2}:\d{2}", f.open_time)

    def test_garbage_numbers_fall_back(self):
        f = normalize_trade_fields(
            {"type": "buy", "lots": "lots", "openPrice": "n/a", "stopLoss": "nan", "takeProfit": "inf", "magic": "x"},
            default_lots=0.01,
        )
        assert (f.type, f.lots, f.open_price, f.stop_loss, f.take_profit, f.magic) == (0, 0.01, 0.0, 0.0, 0.0, 0)

    @pytest.mark.parametrize("raw,expected", [("5", 5), ("3.0", 3), ("6", 0), ("-1", 0), ("2.5", 0)])
    def test_type_range(self, raw, expected):
        assert normalize_trade_fields({"type": raw}).type == expected

    @pytest.mark.parametrize("raw", ["0", "-0.5"])
    def test_non_positive_lots_use_default(self, raw):
        assert normalize_trade_fields({"lots": raw}, default_lots=0.01).lots == 0.01

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("9223372036854775807", 2**63 - 1),
            ("-9223372036854775808", -(2**63)),
            ("9223372036854775808", 0),
            ("99999999999999999999", 0),
            ("-99999999999999999999", 0),
        ],
    )
    def test_magic_outside_int64_falls_back(self, raw, expected):
        assert normalize_trade_fields({"magic": raw}).magic == expected


class TestTradeIngestionService:
    """Token checks and idempotent upserts."""

    def test_ingest_records_trade(self, ingestion, linked, repo):
        user_id, token = linked
        claims = ingestion.ingest(token, FULL_TRADE)
        assert claims.user_id == user_id

        trade = repo.trades.get(user_id, "998877", "555")
        assert trade.symbol == "EURUSD"
        assert trade.lots == pytest.approx(0.1)
        assert trade.status == "open"

    def test_same_ticket_twice_keeps_one_row(self, ingestion, linked, db_session):
        _, token = linked
        ingestion.ingest(token, FULL_TRADE)
        db_session.commit()
        ingestion.ingest(token, FULL_TRADE)
        db_session.commit()
        assert db_session.query(models.Trade).filter_by(ticket="555").count() == 1

    def test_resubmission_updates_content_keeps_created_at(self, ingestion, linked, repo, db_session):
        user_id, token = linked
        ingestion.ingest(token, FULL_TRADE)
        db_session.commit()
        first = repo.trades.get(user_id, "998877", "555")
        created_at, updated_at = to_utc(first.created_at), to_utc(first.updated_at)

        ingestion.ingest(token, dict(FULL_TRADE, stopLoss="1.2310", comment="moved sl"))
        db_session.commit()
        again = repo.trades.get(user_id, "998877", "555")

        assert again.stop_loss == pytest.approx(1.231)
        assert again.comment == "moved sl"
        assert to_utc(again.created_at) == created_at
        assert to_utc(again.updated_at) >= updated_at

    def test_ticket_only_uses_defaults(self, ingestion, linked, repo):
        user_id, token = linked
        ingestion.ingest(token, {"ticket": "556"})
        trade = repo.trades.get(user_id, "998877", "556")
        assert trade.type == 0
        assert trade.lots == pytest.approx(0.01)
        assert trade.stop_loss == 0
        assert trade.take_profit == 0
        assert trade.comment == ""

    @pytest.mark.parametrize("token", [None, "", "not-a-valid-token"])
    def test_bad_tokens_are_unauthorized(self, ingestion, linked, token):
        with pytest.raises(Unauthorized):
            ingestion.ingest(token, FULL_TRADE)

    def test_bad_token_beats_missing_ticket(self, ingestion, linked):
        """Without a valid token the caller never sees the validation error."""
        with pytest.raises(Unauthorized):
            ingestion.ingest("not-a-valid-token", {})

    @pytest.mark.parametrize("ticket", [None, "", "   "])
    def test_missing_ticket(self, ingestion, linked, ticket):
        _, token = linked
        with pytest.raises(InvalidRequest) as exc:
            ingestion.ingest(token, dict(FULL_TRADE, ticket=ticket))
        assert exc.value.message == "missing ticket"

    def test_oversized_ticket_is_invalid(self, ingestion, linked):
        _, token = linked
        with pytest.raises(InvalidRequest) as exc:
            ingestion.ingest(token, dict(FULL_TRADE, ticket="9" * 65))
        assert exc.value.message == "invalid ticket"

    def test_long_symbol_and_terminal_fields_are_stored(self, ingestion, linked, repo):
        user_id, token = linked
        ingestion.ingest(token, dict(FULL_TRADE, symbol="S" * 200, openTime="T" * 200))
        trade = repo.trades.get(user_id, "998877", "555")
        assert trade.symbol == "S" * 200
        assert trade.open_time == "T" * 200

    def test_token_for_unlinked_account(self, ingestion, codec, linked):
        user_id, _ = linked
        with pytest.raises(Unauthorized):
            ingestion.ingest(codec.issue(user_id, "000000"), FULL_TRADE)

    def test_expired_token(self, repo, linked):
        user_id, _ = linked
        codec = SessionTokenCodec("short-lived", max_age_sec=60)
        svc = TradeIngestionService(repo, codec)
        with pytest.raises(Unauthorized):
            svc.ingest(codec.issue(user_id, "998877", issued_at_ms=1), FULL_TRADE)

    def test_tenants_are_isolated(self, dashboard, authenticator, ingestion, linked, repo, db_session):
        """Two users linking the same account number get separate namespaces."""
        user_a, token_a = linked
        other = dashboard.ensure_user(user_id="ffff0000eeee1111")
        db_session.commit()
        token_b = authenticator.authenticate(
            other.credential.username, other.credential.password, "MT4", "998877"
        )
        db_session.commit()

        ingestion.ingest(token_a, FULL_TRADE)
        db_session.commit()

        assert repo.trades.get(user_a, "998877", "555") is not None
        assert repo.trades.get("ffff0000eeee1111", "998877", "555") is None
        assert repo.trades.list_for_account("ffff0000eeee1111", "998877") == []

        ingestion.ingest(token_b, dict(FULL_TRADE, symbol="GBPUSD"))
        db_session.commit()
        assert repo.trades.get(user_a, "998877", "555").symbol == "EURUSD"
        assert repo.trades.get("ffff0000eeee1111", "998877", "555").symbol == "GBPUSD"
