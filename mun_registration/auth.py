"""
Authentication for MUN Registration Application

AuthService is the application's view of the auth provider: email and
password accounts, login, logout, the current session's account and
password resets. Each call is tracked with ``service="auth"``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, MutableMapping, Optional

import httpx

from .exceptions import AuthenticationFailedException, ExternalServiceException
from .models import Account
from .telemetry import RequestTracker

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SESSION_KEY = "account"

# Provider error codes that mean "bad input from the user" rather than an outage
_CREDENTIAL_ERRORS = {
    "EMAIL_EXISTS",
    "EMAIL_NOT_FOUND",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_EMAIL",
    "USER_DISABLED",
    "WEAK_PASSWORD",
    "MISSING_PASSWORD",
    "TOO_MANY_ATTEMPTS_TRY_LATER",
}


def get_email_domain(email: str) -> Optional[str]:
    _, _, domain = (email or "").partition("@")
    return domain.lower() if domain else None


class AuthBackend(ABC):
    """Abstract auth provider"""

    @abstractmethod
    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Account:
        pass

    @abstractmethod
    def sign_in(self, email: str, password: str) -> Account:
        pass

    @abstractmethod
    def send_password_reset(self, email: str) -> None:
        pass


class IdentityToolkitAuthBackend(AuthBackend):
    """
    Firebase Auth through the Identity Toolkit REST API
    """

    def __init__(self, api_key: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize Identity Toolkit backend

        Args:
            api_key: Web API key of the Firebase project
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.api_key = api_key
        self.client = httpx.Client(base_url=IDENTITY_TOOLKIT_URL, timeout=timeout, transport=transport)

    def _post(self, endpoint: str, payload: Dict, email: Optional[str] = None) -> Dict:
        try:
            response = self.client.post(f"/accounts:{endpoint}", params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as e:
            raise ExternalServiceException("auth", str(e))

        if response.is_success:
            return response.json()

        try:
            code = response.json().get("error", {}).get("message", "")
        except ValueError:
            code = ""
        # Codes can carry a suffix, e.g. "WEAK_PASSWORD : Password should be ..."
        code = code.split(" ")[0]
        if code in _CREDENTIAL_ERRORS:
            raise AuthenticationFailedException(email, code)
        raise ExternalServiceException("auth", f"{endpoint} returned {response.status_code} {code}".strip())

    @staticmethod
    def _account(data: Dict, display_name: Optional[str] = None) -> Account:
        return Account(
            uid=data["localId"],
            email=data["email"],
            display_name=display_name or data.get("displayName") or None,
            id_token=data.get("idToken"),
            refresh_token=data.get("refreshToken")
        )

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Account:
        data = self._post("signUp", {"email": email, "password": password, "returnSecureToken": True}, email)
        if display_name:
            self._post("update", {"idToken": data["idToken"], "displayName": display_name}, email)
        return self._account(data, display_name)

    def sign_in(self, email: str, password: str) -> Account:
        data = self._post("signInWithPassword", {"email": email, "password": password, "returnSecureToken": True}, email)
        return self._account(data)

    def send_password_reset(self, email: str) -> None:
        self._post("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email}, email)


class AuthService:
    """
    Handles authentication and the current session's account

    The account is kept in a session mapping (the Flask session in the
    web app, a dict in tests).
    """

    def __init__(self, backend: AuthBackend, tracker: RequestTracker, session_store: MutableMapping):
        self.backend = backend
        self.tracker = tracker
        self.session_store = session_store

    def register(self, email: str, password: str, display_name: Optional[str] = None) -> Account:
        """
        Create an email/password account and sign it in

        Raises:
            AuthenticationFailedException: If the provider rejects the account
        """
        if not email or not password:
            raise AuthenticationFailedException(email or None, "MISSING_CREDENTIALS")

        account = self.tracker.track(
            "auth", "register",
            lambda: self.backend.sign_up(email, password, display_name),
            {"emailDomain": get_email_domain(email)}
        )
        self.session_store[SESSION_KEY] = account.to_dict()
        logger.info("Registered account %s", account.uid)
        return account

    def login(self, email: str, password: str) -> Account:
        """
        Sign in with email and password

        Raises:
            AuthenticationFailedException: If the credentials are invalid
        """
        if not email or not password:
            raise AuthenticationFailedException(email or None)

        account = self.tracker.track(
            "auth", "login",
            lambda: self.backend.sign_in(email, password),
            {"emailDomain": get_email_domain(email)}
        )
        self.session_store[SESSION_KEY] = account.to_dict()
        return account

    def logout(self) -> None:
        self.tracker.track("auth", "logout", lambda: self.session_store.pop(SESSION_KEY, None))

    def get_current_account(self) -> Optional[Account]:
        def current() -> Optional[Account]:
            data = self.session_store.get(SESSION_KEY)
            return Account.from_dict(data) if data else None

        return self.tracker.track("auth", "getCurrentUser", current)

    def reset_password(self, email: str) -> None:
        self.tracker.track(
            "auth", "resetPassword",
            lambda: self.backend.send_password_reset(email),
            {"emailDomain": get_email_domain(email)}
        )
