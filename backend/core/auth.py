"""
Session store over the auth provider's access tokens.

The provider (a managed auth service) issues HS256 JWTs carrying `sub`
(user id) and `email`. This module verifies them, tracks sign-outs for
this process and notifies listeners of auth state changes.
"""
import hashlib
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Set

import jwt
from fastapi import Request

from backend.core.errors import AuthError
from backend.models.user import SessionUser

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

AuthStateCallback = Callable[[str, Optional[SessionUser]], None]


def _token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


class SessionStore:
    """
    Resolves the current user from an access token.

    Operations:
    - get_current_user(token) -> SessionUser | None
    - on_auth_state_change(callback) -> unsubscribe function
    - sign_out(token)
    """

    def __init__(self, secret: Optional[str], audience: Optional[str] = None):
        self.secret = secret
        self.audience = audience
        self._listeners: List[AuthStateCallback] = []
        self._revoked: Dict[str, float] = {}  # fingerprint -> token exp
        self._seen_users: Set[str] = set()
        self._lock = threading.Lock()

    def verify_token(self, token: str) -> SessionUser:
        """
        Verify JWT and extract the user.

        Raises:
            AuthError: Invalid, expired or revoked token
        """
        if not self.secret:
            raise AuthError("Authentication is not configured")

        if _token_fingerprint(token) in self._revoked:
            raise AuthError("Session signed out")

        options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(self.audience)}
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=["HS256"],
                audience=self.audience,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Invalid token: {e}")
            raise AuthError("Invalid token")

        user_id = payload.get("sub")
        if not user_id:
            raise AuthError("No 'sub' claim in token")

        user_metadata = payload.get("user_metadata") or {}
        return SessionUser(
            id=str(user_id),
            email=payload.get("email"),
            full_name=user_metadata.get("full_name"),
            avatar_url=user_metadata.get("avatar_url"),
        )

    def get_current_user(self, token: Optional[str]) -> Optional[SessionUser]:
        """Return the token's user, or None if absent or not valid."""
        if not token:
            return None
        try:
            user = self.verify_token(token)
        except AuthError as e:
            logger.debug(f"Session rejected: {e.message}")
            return None

        with self._lock:
            first_seen = user.id not in self._seen_users
            self._seen_users.add(user.id)
        if first_seen:
            self._notify(SIGNED_IN, user)
        return user

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Register a listener for SIGNED_IN / SIGNED_OUT. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def sign_out(self, token: Optional[str]) -> None:
        """Revoke token for this process and notify listeners."""
        user = self.get_current_user(token)
        if user is None:
            return
        # Already verified above; only the expiry is needed here
        exp = jwt.decode(token, options={"verify_signature": False}).get("exp")
        now = time.time()
        with self._lock:
            # An expired token is rejected on its own; its revocation entry is dead weight
            self._revoked = {fp: until for fp, until in self._revoked.items() if until > now}
            self._revoked[_token_fingerprint(token)] = float(exp) if exp is not None else float("inf")
            self._seen_users.discard(user.id)
        self._notify(SIGNED_OUT, user)

    def revoked_count(self) -> int:
        with self._lock:
            return len(self._revoked)

    def _notify(self, event: str, user: Optional[SessionUser]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(event, user)
            except Exception as e:
                # A failing listener must not block authentication
                logger.warning(f"Auth state listener failed on {event}: {e}")
