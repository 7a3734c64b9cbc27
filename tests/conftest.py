"""
tests/conftest.py

Shared fixtures for the MUN Registration test suite.

Every remote collaborator is replaced by an in-process double: the
in-memory document store and snapshot cache, recording storage and email
senders, a dictionary-backed auth provider and an IP resolver served by
an httpx.MockTransport. No test reaches the network.
"""

import pytest

from mun_registration.auth import AuthService
from mun_registration.cache import InMemorySnapshotCache
from mun_registration.data_service import DataService
from mun_registration.email_service import EmailService
from mun_registration.receipts import ReceiptOptions
from mun_registration.repositories import InMemoryDocumentStore
from mun_registration.services import CommitteeService, RegistrationSettingsService, UserService
from mun_registration.telemetry import PublicIpResolver, RequestTracker
from tests.helpers import (
    FakeAuthBackend,
    RecordingEmailSender,
    RecordingStorage,
    ip_transport,
    seed_data,
)


@pytest.fixture
def seeded_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(seed_data())


@pytest.fixture
def ip_resolver() -> PublicIpResolver:
    return PublicIpResolver(timeout=1.0, transport=ip_transport())


@pytest.fixture
def tracker(seeded_store, ip_resolver) -> RequestTracker:
    return RequestTracker(
        seeded_store,
        ip_resolver,
        user_id_provider=lambda: None,
        context_provider=lambda: (None, None)
    )


@pytest.fixture
def data_service(seeded_store, tracker) -> DataService:
    return DataService(seeded_store, tracker)


@pytest.fixture
def cache() -> InMemorySnapshotCache:
    return InMemorySnapshotCache()


@pytest.fixture
def committee_service(data_service, cache) -> CommitteeService:
    return CommitteeService(data_service, cache)


@pytest.fixture
def settings_service(data_service) -> RegistrationSettingsService:
    return RegistrationSettingsService(data_service, default_rate=180.0)


@pytest.fixture
def user_service(data_service) -> UserService:
    return UserService(data_service)


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def email_service(email_sender) -> EmailService:
    return EmailService(email_sender, "XVII ROBLESMUN")


@pytest.fixture
def receipt_options() -> ReceiptOptions:
    return ReceiptOptions(conference_name="XVII ROBLESMUN", contact_email="mun@example.org")


@pytest.fixture
def auth_backend() -> FakeAuthBackend:
    return FakeAuthBackend({
        "ada@robles.edu": ("admin-uid", "s3cret"),
        "carla@colegio-a.edu": ("student-uid", "hunter2"),
    })


@pytest.fixture
def session_store() -> dict:
    return {}


@pytest.fixture
def auth_service(auth_backend, tracker, session_store) -> AuthService:
    return AuthService(auth_backend, tracker, session_store)
