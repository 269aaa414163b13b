from __future__ import annotations

from dataclasses import dataclass

from tradesync.core.errors import MalformedToken
from tradesync.utils.crypto import b64url_decode, b64url_encode, hmac_sha256, verify_hmac_sha256
from tradesync.utils.time import epoch_millis

FIELD_SEP = ":"
TAG_SEP = "."


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    account_id: str
    issued_at_ms: int


class SessionTokenCodec:
    """
    Stateless terminal bearer tokens.

    Wire form: ``b64url("user_id:account_id:issued_ms") + "." + b64url(HMAC-SHA256)``.
    Decoding checks shape and signature only; age is a separate policy
    (``is_expired``) so the codec stays a pure function of the token.
    """

    def __init__(self, secret: str, max_age_sec: int = 0) -> None:
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret
        self._max_age_ms = max(0, int(max_age_sec)) * 1000

    def issue(self, user_id: str, account_id: str, issued_at_ms: int | None = None) -> str:
        for part in (user_id, account_id):
            if not part or FIELD_SEP in part:
                raise ValueError("token fields must be non-empty and must not contain ':'")
        ts = epoch_millis() if issued_at_ms is None else int(issued_at_ms)
        body = b64url_encode(f"{user_id}{FIELD_SEP}{account_id}{FIELD_SEP}{ts}".encode("utf-8"))
        tag = b64url_encode(hmac_sha256(self._secret, body.encode("ascii")))
        return f"{body}{TAG_SEP}{tag}"

    def decode(self, token: str) -> SessionClaims:
        if not isinstance(token, str) or not token.strip():
            raise MalformedToken("empty token")

        parts = token.strip().split(TAG_SEP)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise MalformedToken("bad token shape")
        body, tag = parts

        try:
            body_bytes = body.encode("ascii")
            tag_bytes = b64url_decode(tag)
        except (UnicodeEncodeError, ValueError) as e:
            raise MalformedToken("bad token encoding") from e
        if not verify_hmac_sha256(self._secret, body_bytes, tag_bytes):
            raise MalformedToken("bad token signature")

        try:
            payload = b64url_decode(body).decode("utf-8")
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedToken("bad token payload") from e

        fields = payload.split(FIELD_SEP)
        if len(fields) != 3 or not fields[0] or not fields[1]:
            raise MalformedToken("bad token field count")
        user_id, account_id, ts = fields
        try:
            issued_at_ms = int(ts)
        except ValueError as e:
            raise MalformedToken("bad token timestamp") from e

        return SessionClaims(user_id=user_id, account_id=account_id, issued_at_ms=issued_at_ms)

    def is_expired(self, claims: SessionClaims, now_ms: int | None = None) -> bool:
        if self._max_age_ms <= 0:
            return False
        now_ms = epoch_millis() if now_ms is None else int(now_ms)
        return now_ms - claims.issued_at_ms > self._max_age_ms
