"""
tests/helpers.py

In-process doubles for the remote collaborators and the seed documents
shared by the test suite.
"""

from datetime import datetime
from typing import Dict, List, Optional

import httpx

from mun_registration.auth import AuthBackend
from mun_registration.email_service import EmailSender
from mun_registration.exceptions import AuthenticationFailedException, ExternalServiceException
from mun_registration.models import Account
from mun_registration.repositories import InMemoryDocumentStore
from mun_registration.storage import ObjectStorage


FIXED_NOW = datetime(2025, 3, 14, 9, 30, 0)
TEST_IP = "203.0.113.7"


def seed_data() -> Dict[str, Dict[str, Dict]]:
    return {
        "committees": {
            "sc": {
                "name": "Security Council",
                "topic": "Cyber warfare",
                "img": "https://example.org/sc.png",
                "seats": 4,
                "president": "Ana Perez",
                "isDoubleSeat": False,
                "seatsList": [
                    {"name": "France", "available": True},
                    {"name": "China", "available": True},
                    {"name": "Russia", "available": False},
                    {"name": "Kenya", "available": True},
                ],
            },
            "ga": {
                "name": "General Assembly",
                "topic": "Climate finance",
                "img": "https://example.org/ga.png",
                "seats": 2,
                "isDoubleSeat": True,
                "seatsList": [
                    {"name": "Brazil", "available": True},
                    {"name": "Chile", "available": True},
                ],
            },
            "hist": {
                "name": "Historical Committee",
                "topic": "Congress of Vienna",
                "img": "https://example.org/hist.png",
                "seats": 10,
            },
            "broken": {
                "name": "Broken Committee",
                "seatsList": "not a list",
            },
        },
        "users": {
            "admin-uid": {
                "firstName": "Ada",
                "lastName": "Lovelace",
                "email": "ada@robles.edu",
                "institution": "Los Robles",
                "isAdmin": True,
                "createdAt": "2024-01-10T10:00:00+00:00",
            },
            "faculty-uid": {
                "firstName": "Bruno",
                "lastName": "Diaz",
                "email": "bruno@colegio-a.edu",
                "institution": "Colegio A",
                "isFaculty": True,
                "createdAt": "2024-02-01T10:00:00+00:00",
            },
            "student-uid": {
                "firstName": "Carla",
                "lastName": "Mendez",
                "email": "carla@colegio-a.edu",
                "institution": "Colegio A",
                "createdAt": "2024-03-01T10:00:00+00:00",
            },
        },
        "config": {
            "registration": {"rate": 200.0},
        },
    }


class RecordingStorage(ObjectStorage):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: List[tuple] = []

    def upload(self, data: bytes, path: str, content_type: str = "application/pdf") -> str:
        if self.fail:
            raise ExternalServiceException("storage", "bucket unavailable")
        self.uploads.append((path, data, content_type))
        return f"https://storage.example.org/{path}"


class RecordingEmailSender(EmailSender):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[dict] = []

    def send_with_attachment(self, recipient, subject, body, attachment, filename) -> None:
        if self.fail:
            raise ExternalServiceException("email", "SMTP relay refused the message")
        self.sent.append({
            "recipient": recipient,
            "subject": subject,
            "body": body,
            "attachment": attachment,
            "filename": filename,
        })


class FakeAuthBackend(AuthBackend):
    """Accounts keyed by email; the uid is derived from the local part"""

    def __init__(self, accounts: Optional[Dict[str, tuple]] = None):
        # email -> (uid, password)
        self.accounts = dict(accounts or {})
        self.reset_requests: List[str] = []

    def sign_up(self, email, password, display_name=None) -> Account:
        if email in self.accounts:
            raise AuthenticationFailedException(email, "EMAIL_EXISTS")
        uid = email.split("@")[0] + "-uid"
        self.accounts[email] = (uid, password)
        return Account(uid=uid, email=email, display_name=display_name, id_token="token")

    def sign_in(self, email, password) -> Account:
        uid, expected = self.accounts.get(email, (None, None))
        if uid is None or password != expected:
            raise AuthenticationFailedException(email, "INVALID_LOGIN_CREDENTIALS")
        return Account(uid=uid, email=email, id_token="token")

    def send_password_reset(self, email) -> None:
        self.reset_requests.append(email)


def ip_transport(address: str = TEST_IP, calls: Optional[list] = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return httpx.Response(200, json={"ip": address})

    return httpx.MockTransport(handler)


def request_logs(store: InMemoryDocumentStore) -> List[Dict]:
    return store.get_all("firebase_request_logs")
