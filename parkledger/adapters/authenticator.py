"""
Email/password authentication against the hosted identity service.

The long-lived refresh token is cached in the OS keyring, falling back to
a plaintext file (mode 0600) when no keyring backend is usable. Short-lived
ID tokens are kept in memory only.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import keyring
import pendulum
import requests
from keyring.errors import KeyringError, PasswordDeleteError
from pendulum import DateTime

from ..domain.exceptions import AuthenticationError, BackendUnavailableError
from .rest_client import error_message

logger = logging.getLogger(__name__)

IDENTITY_API_ENDPOINT = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_ENDPOINT = "https://securetoken.googleapis.com/v1/token"

KEYRING_SERVICE_NAME = "parkledger"

MIN_PASSWORD_LENGTH = 6

_FRIENDLY_ERRORS = {
    "EMAIL_EXISTS": "An account with this email already exists.",
    "EMAIL_NOT_FOUND": "Invalid email or password.",
    "INVALID_PASSWORD": "Invalid email or password.",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password.",
    "USER_DISABLED": "This account has been disabled.",
    "INVALID_EMAIL": "Please enter a valid email address.",
    "TOKEN_EXPIRED": "Your session has expired. Please sign in again.",
    "INVALID_REFRESH_TOKEN": "Your session has expired. Please sign in again.",
}


@dataclass
class AuthSession:
    """A signed-in user with a short-lived ID token."""
    uid: str
    email: str
    id_token: str
    refresh_token: str
    expires_at: DateTime

    def is_expired(self, now: DateTime | None = None) -> bool:
        # tokens count as expired one minute early
        now = now or pendulum.now("UTC")
        return now >= self.expires_at.subtract(minutes=1)


class BackendAuthenticator:
    """
    Signs users in and hands out ID tokens for the REST clients.
    """

    def __init__(
        self,
        api_key: str,
        project_id: str,
        cache_file: Path | None = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the authenticator.

        Args:
            api_key: Public web API key of the backend project
            project_id: Backend project identifier (keyring entry name)
            cache_file: Optional path of the plaintext fallback cache
            timeout: Per-request timeout in seconds
            session: Optional preconfigured requests session
        """
        self.api_key = api_key
        self.project_id = project_id
        self.timeout = timeout
        self.cache_file = cache_file or Path.home() / ".parkledger_session.json"
        self._http = session or requests.Session()
        self._key_identifier = f"{project_id}:session"
        self._keyring_supported = True
        self._cache_backend = "keyring"
        self._insecure_storage_warning: Optional[str] = None
        self._session: Optional[AuthSession] = None

    @property
    def cache_backend(self) -> str:
        """Return the active cache backend (keyring or file)."""
        return self._cache_backend

    @property
    def insecure_storage_warning(self) -> Optional[str]:
        """Provide a warning message when the cache falls back to plaintext storage."""
        return self._insecure_storage_warning

    # Token cache ---------------------------------------------------------

    def _load_cache(self) -> Optional[Dict[str, Any]]:
        serialized = self._load_cache_from_keyring()
        if serialized is None:
            serialized = self._load_cache_from_file()
        if not serialized:
            return None

        try:
            return json.loads(serialized)
        except ValueError as exc:
            logger.warning("Could not deserialize session cache: %s", exc)
            return None

    def _load_cache_from_keyring(self) -> Optional[str]:
        if not self._keyring_supported:
            return None

        try:
            return keyring.get_password(KEYRING_SERVICE_NAME, self._key_identifier)
        except KeyringError as exc:  # pragma: no cover - environment dependent
            self._handle_keyring_failure(f"reading credentials failed: {exc}")
            return None

    def _load_cache_from_file(self) -> Optional[str]:
        if self.cache_file.exists():
            try:
                with open(self.cache_file, "r", encoding="utf-8") as file_handle:
                    return file_handle.read()
            except OSError as exc:
                logger.warning("Could not load session cache file %s: %s", self.cache_file, exc)
        return None

    def _save_cache(self, session: AuthSession) -> None:
        serialized = json.dumps(
            {"uid": session.uid, "email": session.email, "refresh_token": session.refresh_token}
        )

        if self._keyring_supported and self._save_cache_to_keyring(serialized):
            return

        self._save_cache_to_file(serialized)

    def _save_cache_to_keyring(self, serialized: str) -> bool:
        try:
            keyring.set_password(KEYRING_SERVICE_NAME, self._key_identifier, serialized)
            self._cache_backend = "keyring"
            return True
        except KeyringError as exc:  # pragma: no cover - environment dependent
            self._handle_keyring_failure(f"writing credentials failed: {exc}")
            return False

    def _save_cache_to_file(self, serialized: str) -> None:
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.cache_file, "w", encoding="utf-8") as file_handle:
                file_handle.write(serialized)
            self.cache_file.chmod(0o600)
        except OSError as exc:
            logger.warning("Could not save session cache to %s: %s", self.cache_file, exc)

    def _handle_keyring_failure(self, reason: str) -> None:
        if self._keyring_supported:
            logger.warning(
                "Secure credential storage unavailable (%s). Falling back to plaintext cache.",
                reason,
            )
        self._keyring_supported = False
        self._cache_backend = "file"
        if not self._insecure_storage_warning:
            self._insecure_storage_warning = (
                f"Secure credential storage unavailable ({reason}). "
                f"Falling back to plaintext cache at {self.cache_file}."
            )

    def clear_cache(self) -> None:
        """Forget the cached session (sign out)."""
        self._session = None
        if self.cache_file.exists():
            self.cache_file.unlink()
        try:
            keyring.delete_password(KEYRING_SERVICE_NAME, self._key_identifier)
        except PasswordDeleteError:  # nothing cached
            pass
        except KeyringError as exc:  # pragma: no cover - environment dependent
            logger.warning("Could not remove credentials from keyring: %s", exc)

    # Identity API --------------------------------------------------------

    def _post(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self._http.post(
                url, params={"key": self.api_key}, timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as exc:
            raise BackendUnavailableError(f"Failed to reach identity service: {exc}") from exc

        if response.status_code == 400:
            code = error_message(response).split(" ")[0]
            raise AuthenticationError(_FRIENDLY_ERRORS.get(code, f"Authentication failed: {code}"))
        if not response.ok:
            raise BackendUnavailableError(
                f"Identity service returned HTTP {response.status_code}: {error_message(response)}"
            )
        return response.json()

    def _session_from(self, data: Dict[str, Any], email: str) -> AuthSession:
        session = AuthSession(
            uid=data.get("localId") or data["user_id"],
            email=(data.get("email") or email).lower(),
            id_token=data.get("idToken") or data["id_token"],
            refresh_token=data.get("refreshToken") or data["refresh_token"],
            expires_at=pendulum.now("UTC").add(
                seconds=int(data.get("expiresIn") or data.get("expires_in") or 3600)
            ),
        )
        self._session = session
        self._save_cache(session)
        return session

    def sign_in(self, email: str, password: str) -> AuthSession:
        """
        Sign in with email and password.

        Raises:
            AuthenticationError: If the credentials are rejected
        """
        email = email.strip().lower()
        data = self._post(
            f"{IDENTITY_API_ENDPOINT}/accounts:signInWithPassword",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        logger.info("Signed in as %s", email)
        return self._session_from(data, email)

    def sign_up(self, email: str, password: str, display_name: str) -> AuthSession:
        """
        Create an identity and sign it in.

        Raises:
            AuthenticationError: If the password is too short or the email is taken
        """
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthenticationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )

        email = email.strip().lower()
        data = self._post(
            f"{IDENTITY_API_ENDPOINT}/accounts:signUp",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        session = self._session_from(data, email)
        self._post(
            f"{IDENTITY_API_ENDPOINT}/accounts:update",
            json={"idToken": session.id_token, "displayName": display_name},
        )
        logger.info("Created identity for %s", email)
        return session

    def current_user(self) -> Optional[Dict[str, str]]:
        """Return uid and email of the cached session, if any."""
        if self._session is not None:
            return {"uid": self._session.uid, "email": self._session.email}
        cached = self._load_cache()
        if not cached:
            return None
        return {"uid": cached["uid"], "email": cached["email"]}

    def get_access_token(self, force_refresh: bool = False) -> str:
        """
        Get a valid ID token, refreshing it from the cached session.

        Raises:
            AuthenticationError: If nobody is signed in or the session expired
        """
        if self._session is not None and not force_refresh and not self._session.is_expired():
            return self._session.id_token

        refresh_token = self._session.refresh_token if self._session else None
        email = self._session.email if self._session else ""
        if refresh_token is None:
            cached = self._load_cache()
            if not cached:
                raise AuthenticationError("Not signed in. Run 'parkledger sign-in' first.")
            refresh_token = cached["refresh_token"]
            email = cached.get("email", "")

        data = self._post(
            SECURE_TOKEN_ENDPOINT,
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        return self._session_from(data, email).id_token
