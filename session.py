from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from auth import SIGNED_IN, SIGNED_OUT, AuthSession, IdentityProvider
from cart import Cart
from database import RecordStore
from errors import AuthenticationError, NotFound
from schemas import SignupRequest, User, from_record, to_record

logger = logging.getLogger(__name__)


class SessionContext:
    """Everything one signed-in user carries between requests."""

    def __init__(self, token: str, user: User):
        self.token = token
        self.user = user
        self.cart = Cart()
        # idempotency key -> order id
        self.placed_orders: Dict[str, str] = {}


class SessionRegistry:
    """
    Keeps a SessionContext per open identity session.

    Contexts are built when the identity layer reports a sign-in and dropped
    when it reports a sign-out.
    """

    def __init__(self, identity: IdentityProvider, store: RecordStore):
        self._identity = identity
        self._store = store
        self._contexts: Dict[str, SessionContext] = {}
        self._unsubscribe = identity.on_auth_state_change(self._on_auth_change)

    def _on_auth_change(self, event: str, session: AuthSession) -> None:
        if event == SIGNED_IN:
            user = self.load_profile(session.user_id)
            if user is not None:
                self._contexts[session.token] = SessionContext(session.token, user)
        elif event == SIGNED_OUT:
            if self._contexts.pop(session.token, None) is not None:
                logger.info("Session closed for user %s", session.user_id)

    def load_profile(self, user_id: str) -> Optional[User]:
        rows = self._store.select("users", {"id": user_id}, limit=1)
        return from_record(User, rows[0]) if rows else None

    def register(self, payload: SignupRequest) -> SessionContext:
        auth = self._identity.sign_up(str(payload.email), payload.password)
        user = User(
            id=auth.user_id,
            name=payload.name,
            email=payload.email,
            role=payload.role,
            phone=payload.phone,
            address=payload.address,
            created_at=datetime.now(timezone.utc),
        )
        self._store.insert("users", to_record(user))
        ctx = SessionContext(auth.token, user)
        self._contexts[auth.token] = ctx
        logger.info("Registered %s as %s", user.id, user.role.value)
        return ctx

    def login(self, email: str, password: str) -> SessionContext:
        auth = self._identity.sign_in(email, password)
        ctx = self._contexts.get(auth.token)
        if ctx is None:
            self._identity.sign_out(auth.token)
            raise NotFound("No profile found for this account")
        return ctx

    def logout(self, token: str) -> None:
        self._identity.sign_out(token)

    def get(self, token: str) -> SessionContext:
        if self._identity.current_session(token) is None:
            self._contexts.pop(token, None)
            raise AuthenticationError("Session expired or signed out")
        ctx = self._contexts.get(token)
        if ctx is None:
            raise AuthenticationError("No active session")
        return ctx

    def __len__(self) -> int:
        return len(self._contexts)
