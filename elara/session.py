from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from .errors import BackendError

if TYPE_CHECKING:  # pragma: no cover
    from .backend import BackendClient

TOKEN_KEY = "authToken"
USER_KEY = "authUser"

logger = logging.getLogger("elara.session")


@dataclass(frozen=True)
class AuthSession:
    """
    Identity attached to outbound backend calls.

    The token is carried verbatim; it is never decoded, checked for expiry, or
    refreshed. A stale token only shows up as a failed backend call.
    """

    token: Optional[str] = None
    username: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def authorization_header(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    @classmethod
    def from_header(cls, value: Optional[str]) -> "AuthSession":
        if not value:
            return cls()
        scheme, _, rest = value.strip().partition(" ")
        token = rest.strip() if scheme.lower() == "bearer" else value.strip()
        if token.lower() == "bearer":
            token = ""
        return cls(token=token or None)


ANONYMOUS = AuthSession()


class SessionStore:
    """
    Persistent login state, kept as two keys in a small JSON file.

    `authToken` holds the bearer token and `authUser` a JSON-encoded
    `{"username": ...}` object, the same layout the browser keeps in
    localStorage.
    """

    def __init__(self, path: Path, backend: "BackendClient") -> None:
        self.path = path
        self.backend = backend
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._session = self._load()

    @property
    def session(self) -> AuthSession:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    def _load(self) -> AuthSession:
        if not self.path.exists():
            return ANONYMOUS
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data: Dict[str, Any] = json.load(handle)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable session file %s", self.path)
            return ANONYMOUS
        if not isinstance(data, dict):
            logger.warning("Ignoring session file %s: expected a JSON object", self.path)
            return ANONYMOUS
        token = data.get(TOKEN_KEY)
        raw_user = data.get(USER_KEY)
        if not token or not raw_user:
            return ANONYMOUS
        try:
            user = json.loads(raw_user)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable %s entry in %s", USER_KEY, self.path)
            return ANONYMOUS
        if not isinstance(user, dict):
            logger.warning("Ignoring unreadable %s entry in %s", USER_KEY, self.path)
            return ANONYMOUS
        return AuthSession(token=token, username=user.get("username"))

    def _write(self, data: Dict[str, str]) -> None:
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
            handle.write("\n")

    def login(self, username: str, password: str) -> bool:
        try:
            data = self.backend.login(username, password)
        except BackendError as exc:
            logger.error("Login failed for %s: %s", username, exc)
            return False
        token = data.get("access_token")
        if not token:
            logger.error("Login for %s returned no access token.", username)
            return False
        self._write({TOKEN_KEY: token, USER_KEY: json.dumps({"username": username})})
        self._session = AuthSession(token=token, username=username)
        logger.info("Logged in as %s", username)
        return True

    def register(self, email: str, username: str, password: str) -> bool:
        """Create an account; the backend mails a verification link out of band."""
        try:
            self.backend.register(email, username, password)
        except BackendError as exc:
            logger.error("Registration failed for %s: %s", username, exc)
            return False
        logger.info("Registered %s, verification email pending.", username)
        return True

    def logout(self) -> None:
        if self.path.exists():
            self.path.unlink()
        self._session = ANONYMOUS
        logger.info("Logged out.")
