"""
Tests for mun_registration.services
"""

from datetime import datetime, timezone

import pytest

from mun_registration.exceptions import (
    CommitteeNotFoundException,
    ConfirmationRequired,
    DataAccessException,
    DataValidationException,
    StaleCommitteeException,
    UserNotFoundException,
)
from mun_registration.models import Account, Registration, Seat, SeatStats, UserProfile, UserRole
from mun_registration.services import CommitteeService, ReceiptService, RegistrationSettingsService, UserService
from tests.helpers import FIXED_NOW


class TestCommitteeService:

    def test_load_skips_invalid_documents_and_sorts(self, committee_service):
        committees = committee_service.load_committees()

        assert [committee.name for committee in committees] == [
            "General Assembly",
            "Historical Committee",
            "Security Council",
        ]

    def test_load_uses_cache_until_refresh(self, committee_service, seeded_store):
        committee_service.load_committees()
        seeded_store.set("committees", "new", {"name": "New", "topic": "t", "img": "i", "seats": 1})

        assert len(committee_service.load_committees()) == 3
        assert len(committee_service.load_committees(refresh=True)) == 4

    def test_single_read_does_not_truncate_listing(self, committee_service):
        committee_service.get_committee("sc")

        assert [committee.name for committee in committee_service.load_committees()] == [
            "General Assembly",
            "Historical Committee",
            "Security Council",
        ]
        stats = committee_service.aggregate_stats(committee_service.load_committees())
        assert stats == SeatStats(total=6, available=5, occupied=1)

    def test_load_skips_documents_with_malformed_optional_fields(self, committee_service, seeded_store):
        seeded_store.set("committees", "bad-revision", {
            "name": "Bad Revision", "topic": "t", "img": "i", "seats": 1, "revision": "abc"
        })
        seeded_store.set("committees", "bad-flag", {
            "name": "Bad Flag", "topic": "t", "img": "i", "seats": 1, "isDoubleSeat": "false"
        })

        assert len(committee_service.load_committees(refresh=True)) == 3

    def test_get_committee_missing(self, committee_service):
        with pytest.raises(CommitteeNotFoundException):
            committee_service.get_committee("nope")

    def test_get_committee_invalid_document(self, committee_service):
        with pytest.raises(DataValidationException):
            committee_service.get_committee("broken")

    def test_search(self, committee_service):
        assert [c.committee_id for c in committee_service.search("climate")] == ["ga"]

    def test_list_page_ordered_by_name(self, committee_service):
        first = committee_service.list_page(page_size=2)
        second = committee_service.list_page(page_size=2, cursor=first.cursor)

        # "Broken Committee" sorts first and is dropped from the page on decode
        assert [c.name for c in first.items] == ["General Assembly"]
        assert first.has_more
        assert [c.name for c in second.items] == ["Historical Committee", "Security Council"]
        assert not second.has_more

    def test_aggregate_stats(self, committee_service):
        stats = committee_service.aggregate_stats(committee_service.load_committees())

        assert stats == SeatStats(total=6, available=5, occupied=1)

    def test_toggle_seat(self, committee_service, seeded_store):
        updated = committee_service.toggle_seat("sc", 2)

        assert updated.seats_list[2].available is True
        assert seeded_store.get_by_id("committees", "sc")["seatsList"][2]["available"] is True
        assert committee_service.cache.get("sc").seats_list[2].available is True
        assert updated.revision == 1

    def test_toggle_out_of_range(self, committee_service):
        with pytest.raises(DataValidationException):
            committee_service.toggle_seat("sc", 4)

    def test_bulk_requires_confirmation(self, committee_service, seeded_store):
        with pytest.raises(ConfirmationRequired) as exc_info:
            committee_service.set_all_seats("sc", False)

        assert "ALL 4 seats" in exc_info.value.prompt
        assert seeded_store.get_by_id("committees", "sc")["seatsList"][0]["available"] is True

    def test_bulk_available_then_occupied(self, committee_service):
        committee_service.set_all_seats("sc", True, confirmed=True)
        updated = committee_service.set_all_seats("sc", False, confirmed=True)

        assert all(not seat.available for seat in updated.seats_list)
        stats = updated.stats()
        assert stats.available + stats.occupied == stats.total == 4

    def test_bulk_is_idempotent(self, committee_service):
        first = committee_service.set_all_seats("sc", False, confirmed=True)
        second = committee_service.set_all_seats("sc", False, confirmed=True)

        assert first.seats_list == second.seats_list

    def test_stale_snapshot_is_rejected(self, committee_service, seeded_store):
        snapshot = committee_service.get_committee("sc")
        seeded_store.update_if_revision("committees", "sc", {"seatsList": []}, 0)

        with pytest.raises(StaleCommitteeException):
            committee_service.save_seats(snapshot, [Seat("France", False)])

        # cache now holds the store's version
        assert committee_service.cache.get("sc").revision == 1
        assert committee_service.cache.get("sc").seats_list == []

    def test_last_writer_wins_without_revision_check(self, data_service, cache, seeded_store):
        service = CommitteeService(data_service, cache, revision_check=False)
        snapshot = service.get_committee("sc")
        seeded_store.update_if_revision("committees", "sc", {"seatsList": []}, 0)

        updated = service.save_seats(snapshot, [Seat("France", False)])

        assert updated.seats_list == [Seat("France", False)]
        assert seeded_store.get_by_id("committees", "sc")["seatsList"] == [{"name": "France", "available": False}]


class TestRegistrationSettingsService:

    def test_reads_rate(self, settings_service):
        assert settings_service.get_rate() == 200.0

    def test_missing_document_uses_default(self, settings_service, seeded_store):
        seeded_store.delete("config", "registration")

        assert settings_service.get_rate() == 180.0

    def test_read_failure_uses_default(self, settings_service, monkeypatch):
        def fail(collection, doc_id):
            raise DataAccessException("get_by_id", "deadline exceeded")

        monkeypatch.setattr(settings_service.data, "get_by_id", fail)

        assert settings_service.get_rate() == 180.0


class TestReceiptService:

    def test_upload_receipt(self, committee_service, settings_service, storage, receipt_options):
        service = ReceiptService(committee_service, settings_service, storage, receipt_options, lambda: FIXED_NOW)
        registration = Registration(
            first_name="Carla",
            last_name="Mendez",
            email="carla@colegio-a.edu",
            institution="Colegio A",
            seats_requested=["Security Council - France"],
            transaction_id="TX-9"
        )

        url = service.upload_receipt(registration)

        assert url == "https://storage.example.org/receipts/registration-TX-9.pdf"
        assert registration.receipt_url == url
        path, data, content_type = storage.uploads[0]
        assert data.startswith(b"%PDF")
        assert content_type == "application/pdf"


def profile(user_id, first, last, institution="", faculty=False, admin=False, day=1):
    return UserProfile(
        user_id=user_id,
        first_name=first,
        last_name=last,
        email=f"{user_id}@example.org",
        institution=institution,
        is_faculty=faculty,
        is_admin=admin,
        created_at=datetime(2024, 1, day, tzinfo=timezone.utc)
    )


@pytest.fixture
def people():
    return [
        profile("ada", "Ada", "Lovelace", "Los Robles", admin=True, day=3),
        profile("bruno", "Bruno", "Diaz", "Colegio A", faculty=True, day=1),
        profile("carla", "Carla", "Mendez", "colegio a", day=2),
        profile("zoe", "Zoe", "Alvarez", "", day=4),
    ]


class TestUserService:

    def test_list_users(self, user_service, seeded_store):
        seeded_store.set("users", "bad", {"firstName": "No email"})

        users = user_service.list_users()

        assert sorted(user.user_id for user in users) == ["admin-uid", "faculty-uid", "student-uid"]

    def test_get_user_missing(self, user_service):
        with pytest.raises(UserNotFoundException):
            user_service.get_user("ghost")

    def test_is_admin(self, user_service):
        assert user_service.is_admin("admin-uid") is True
        assert user_service.is_admin("student-uid") is False
        assert user_service.is_admin("ghost") is False

    def test_create_profile(self, user_service, seeded_store):
        account = Account(uid="new-uid", email="new@example.org")

        user_service.create_profile(account, "New", "Person", "Colegio B")

        stored = seeded_store.get_by_id("users", "new-uid")
        assert stored["email"] == "new@example.org"
        assert stored["institution"] == "Colegio B"
        assert stored["isAdmin"] is False

    def test_delete_requires_confirmation(self, user_service, seeded_store):
        with pytest.raises(ConfirmationRequired):
            user_service.delete_user("student-uid")
        assert seeded_store.get_by_id("users", "student-uid") is not None

        user_service.delete_user("student-uid", confirmed=True)

        assert seeded_store.get_by_id("users", "student-uid") is None

    @pytest.mark.parametrize("role,expected", [
        (UserRole.ALL, ["ada", "bruno", "carla", "zoe"]),
        (UserRole.ADMIN, ["ada"]),
        (UserRole.FACULTY, ["bruno"]),
        (UserRole.USER, ["carla", "zoe"]),
    ])
    def test_filter_by_role(self, people, role, expected):
        assert [user.user_id for user in UserService.filter_users(people, role=role)] == expected

    def test_filter_by_institution_is_case_insensitive(self, people):
        users = UserService.filter_users(people, institution="Colegio A")

        assert [user.user_id for user in users] == ["bruno", "carla"]

    def test_search_matches_name_email_and_institution(self, people):
        assert [u.user_id for u in UserService.filter_users(people, search="LOVE")] == ["ada"]
        assert [u.user_id for u in UserService.filter_users(people, search="zoe@")] == ["zoe"]
        assert [u.user_id for u in UserService.filter_users(people, search="robles")] == ["ada"]

    @pytest.mark.parametrize("option,expected", [
        ("newest", ["zoe", "ada", "carla", "bruno"]),
        ("oldest", ["bruno", "carla", "ada", "zoe"]),
        ("alphabetical", ["ada", "bruno", "carla", "zoe"]),
        ("reverse-alphabetical", ["zoe", "carla", "bruno", "ada"]),
    ])
    def test_sort(self, people, option, expected):
        assert [user.user_id for user in UserService.sort_users(people, option)] == expected

    def test_missing_created_at_sorts_oldest(self, people):
        people.append(UserProfile("old", "Old", "Timer", "old@example.org"))

        assert UserService.sort_users(people, "newest")[-1].user_id == "old"

    def test_institutions_and_stats(self, people):
        assert UserService.institutions(people) == ["Colegio A", "Los Robles", "colegio a"]
        assert UserService.stats(people).__dict__ == {"total": 4, "faculty": 1, "admins": 1, "regular": 2}
