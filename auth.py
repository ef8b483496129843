from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import settings
from database import RecordStore
from errors import AuthenticationError, ValidationError

logger = logging.getLogger(__name__)

pwd = CryptContext(schemes=["argon2"], deprecated="auto")

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


def hash_password(p: str) -> str:
    return pwd.hash(p)


def verify_password(p: str, h: str) -> bool:
    return pwd.verify(p, h)


def token_expiry(now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) + timedelta(minutes=settings.jwt_expire_minutes)


def create_token(user_id: str, expires_at: Optional[datetime] = None) -> str:
    payload = {"sub": user_id, "exp": expires_at or token_expiry(), "jti": uuid4().hex}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)


def decode_token(token: str) -> Optional[str]:
    try:
        data = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
        return data.get("sub")
    except JWTError:
        return None


class AuthSession(BaseModel):
    user_id: str
    email: str
    token: str
    expires_at: datetime


AuthListener = Callable[[str, AuthSession], None]


class IdentityProvider:
    """
    Email/password identity with bearer tokens.

    Credentials live in their own table, apart from the ``users`` profile,
    and listeners hear about every session that opens or closes.
    """

    def __init__(self, store: RecordStore):
        self._store = store
        self._sessions: Dict[str, AuthSession] = {}
        self._listeners: List[AuthListener] = []

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: str, session: AuthSession) -> None:
        for cb in list(self._listeners):
            cb(event, session)

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        """Sign out every session whose token has expired."""
        now = now or datetime.now(timezone.utc)
        stale = [token for token, s in self._sessions.items() if s.expires_at <= now]
        for token in stale:
            self.sign_out(token)
        return len(stale)

    def _open(self, user_id: str, email: str) -> AuthSession:
        self.prune_expired()
        expires_at = token_expiry()
        session = AuthSession(
            user_id=user_id, email=email, token=create_token(user_id, expires_at), expires_at=expires_at,
        )
        self._sessions[session.token] = session
        self._emit(SIGNED_IN, session)
        return session

    def sign_up(self, email: str, password: str) -> AuthSession:
        email = email.strip().lower()
        if self._store.select("credentials", {"email": email}, limit=1):
            raise ValidationError("Email already registered")
        rec = self._store.insert("credentials", {
            "email": email,
            "password_hash": hash_password(password),
        })
        logger.info("Account created for %s", email)
        return self._open(rec["id"], email)

    def sign_in(self, email: str, password: str) -> AuthSession:
        email = email.strip().lower()
        rows = self._store.select("credentials", {"email": email}, limit=1)
        if not rows or not verify_password(password, rows[0].get("password_hash", "")):
            raise AuthenticationError("Invalid credentials")
        return self._open(rows[0]["id"], email)

    def current_session(self, token: str) -> Optional[AuthSession]:
        session = self._sessions.get(token)
        if session is None:
            return None
        if decode_token(token) != session.user_id:
            # expired or tampered
            self.sign_out(token)
            return None
        return session

    def sign_out(self, token: str) -> None:
        session = self._sessions.pop(token, None)
        if session is not None:
            self._emit(SIGNED_OUT, session)
