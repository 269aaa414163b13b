from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Body, Depends, Form, Header, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tradesync.config import settings
from tradesync.core.authenticator import Authenticator
from tradesync.core.credentials import Credential, CredentialStore
from tradesync.core.dashboard import DashboardService
from tradesync.core.errors import InvalidRequest, StorageFailure, Unauthorized
from tradesync.core.ingestion import TradeIngestionService
from tradesync.core.session_token import SessionTokenCodec
from tradesync.database import models
from tradesync.database.engine import get_session
from tradesync.database.repo import Repo
from tradesync.utils.time import iso_or_none, now_utc, to_utc

logger = logging.getLogger(__name__)

router = APIRouter()

# Terminals are not browsers; they get permissive CORS on every answer.
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def _commit(s: Session) -> None:
    try:
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        logger.error("commit failed: %s", e, exc_info=True)
        raise StorageFailure() from e


def _codec() -> SessionTokenCodec:
    return SessionTokenCodec(settings.TOKEN_SECRET, max_age_sec=settings.TOKEN_MAX_AGE_SEC)


def _credential_store(repo: Repo) -> CredentialStore:
    return CredentialStore(repo, settings.CREDENTIAL_PEPPER, password_length=settings.CREDENTIAL_PASSWORD_LENGTH)


def _credential_dict(c: Credential) -> dict:
    return {"username": c.username, "password": c.password, "updatedAt": iso_or_none(c.updated_at)}


def _account_dict(a: models.TerminalAccount) -> dict:
    return {
        "id": a.account_id,
        "accountId": a.account_id,
        "terminal": a.terminal,
        "lastConnected": iso_or_none(a.last_connected),
        "isActive": bool(a.is_active),
        "createdAt": iso_or_none(a.created_at),
    }


def _trade_dict(t: models.Trade) -> dict:
    return {
        "id": t.ticket,
        "ticket": t.ticket,
        "symbol": t.symbol,
        "type": int(t.type),
        "typeName": models.TradeType(int(t.type)).name,
        "lots": float(t.lots),
        "openPrice": float(t.open_price),
        "openTime": t.open_time,
        "stopLoss": float(t.stop_loss),
        "takeProfit": float(t.take_profit),
        "comment": t.comment,
        "magic": int(t.magic),
        "status": t.status,
        "createdAt": iso_or_none(t.created_at),
        "updatedAt": iso_or_none(t.updated_at),
    }


@router.get("/health")
def health() -> dict:
    return {"ok": True, "time": now_utc().isoformat()}


# ---------------------------
# Terminal surface (form-encoded)
# ---------------------------


@router.options("/auth")
@router.options("/trades/auth")
@router.options("/trades")
def terminal_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/auth")
@router.post("/trades/auth")
def terminal_auth(
    response: Response,
    username: str | None = Form(None),
    password: str | None = Form(None),
    terminal: str | None = Form(None),
    account: str | None = Form(None),
    s: Session = Depends(get_session),
) -> dict:
    repo = Repo(s)
    auth = Authenticator(
        repo,
        _credential_store(repo),
        _codec(),
        default_terminal=settings.DEFAULT_TERMINAL_NAME,
    )
    token = auth.authenticate(username, password, terminal, account)
    _commit(s)
    response.headers.update(CORS_HEADERS)
    return {"token": token}


@router.post("/trades")
def terminal_trades(
    response: Response,
    token: str | None = Form(None),
    action: str | None = Form(None),
    ticket: str | None = Form(None),
    symbol: str | None = Form(None),
    trade_type: str | None = Form(None, alias="type"),
    lots: str | None = Form(None),
    open_price: str | None = Form(None, alias="openPrice"),
    open_time: str | None = Form(None, alias="openTime"),
    stop_loss: str | None = Form(None, alias="stopLoss"),
    take_profit: str | None = Form(None, alias="takeProfit"),
    comment: str | None = Form(None),
    magic: str | None = Form(None),
    s: Session = Depends(get_session),
) -> dict:
    svc = TradeIngestionService(Repo(s), _codec(), default_lots=settings.DEFAULT_LOTS)

    # Token first: an unauthenticated caller learns nothing about the payload.
    claims = svc.authorize(token)
    if (action or "new").strip().lower() != "new":
        raise InvalidRequest("Invalid action")

    svc.record(
        claims,
        {
            "ticket": ticket,
            "symbol": symbol,
            "type": trade_type,
            "lots": lots,
            "openPrice": open_price,
            "openTime": open_time,
            "stopLoss": stop_loss,
            "takeProfit": take_profit,
            "comment": comment,
            "magic": magic,
        },
    )
    _commit(s)
    response.headers.update(CORS_HEADERS)
    return {"success": True}


# ---------------------------
# Dashboard surface (JSON)
# ---------------------------


def require_dashboard_key(x_api_key: str | None = Header(None)) -> None:
    expected = settings.DASHBOARD_API_KEY
    if expected and x_api_key != expected:
        raise Unauthorized()


@router.post("/users", dependencies=[Depends(require_dashboard_key)])
def ensure_user(payload: dict | None = Body(None), s: Session = Depends(get_session)) -> dict:
    """Sign-in hook: registers the user and issues terminal credentials on first sight.

    Payload: {"user_id": "...", "email": "...", "display_name": "..."}; all optional.
    """
    payload = payload or {}
    repo = Repo(s)
    svc = DashboardService(repo, _credential_store(repo))
    res = svc.ensure_user(
        user_id=payload.get("user_id"),
        email=payload.get("email"),
        display_name=payload.get("display_name"),
    )
    _commit(s)
    return {
        "userId": res.user.user_id,
        "email": res.user.email,
        "displayName": res.user.display_name,
        "created": res.created,
        "credentials": _credential_dict(res.credential) if res.credential else None,
    }


@router.post("/users/{user_id}/credentials", dependencies=[Depends(require_dashboard_key)])
def regenerate_credentials(user_id: str, s: Session = Depends(get_session)) -> dict:
    repo = Repo(s)
    cred = DashboardService(repo, _credential_store(repo)).regenerate_credentials(user_id)
    _commit(s)
    return {"success": True, "credentials": _credential_dict(cred)}


@router.get("/users/{user_id}/credentials", dependencies=[Depends(require_dashboard_key)])
def get_credentials(user_id: str, s: Session = Depends(get_session)) -> dict:
    repo = Repo(s)
    username, updated_at = DashboardService(repo, _credential_store(repo)).get_credentials(user_id)
    return {"username": username, "updatedAt": iso_or_none(updated_at)}


@router.get("/users/{user_id}/accounts", dependencies=[Depends(require_dashboard_key)])
def list_accounts(user_id: str, s: Session = Depends(get_session)) -> list[dict]:
    repo = Repo(s)
    rows = DashboardService(repo, _credential_store(repo)).list_accounts(user_id)
    return [_account_dict(a) for a in rows]


@router.get("/users/{user_id}/accounts/{account_id}/trades", dependencies=[Depends(require_dashboard_key)])
def list_trades(
    user_id: str,
    account_id: str,
    since: datetime | None = None,
    limit: int = 500,
    s: Session = Depends(get_session),
) -> list[dict]:
    """Trades of one account, most recently updated first.

    Poll with ``since`` = the newest ``updatedAt`` seen to get only changes.
    """
    limit = max(1, min(int(limit), 5000))
    repo = Repo(s)
    rows = DashboardService(repo, _credential_store(repo)).list_trades(
        user_id,
        account_id,
        since=to_utc(since) if since is not None else None,
        limit=limit,
    )
    return [_trade_dict(t) for t in rows]
