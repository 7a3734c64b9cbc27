"""
Tests for mun_registration.assignments and mun_registration.seats
"""

import pytest

from mun_registration import seats as seat_ops
from mun_registration.assignments import SeatAssignmentWorkflow, safe_name, split_name
from mun_registration.email_service import EmailService
from mun_registration.exceptions import (
    AssignmentFailedException,
    ConfirmationRequired,
    DataValidationException,
    SeatSelectionException,
    StaleCommitteeException,
)
from mun_registration.models import Seat
from tests.helpers import FIXED_NOW, RecordingEmailSender, RecordingStorage, request_logs


@pytest.fixture
def make_workflow(committee_service, settings_service, receipt_options):
    def build(storage=None, sender=None):
        storage = storage or RecordingStorage()
        sender = sender or RecordingEmailSender()
        workflow = SeatAssignmentWorkflow(
            committee_service,
            settings_service,
            storage,
            EmailService(sender, "XVII ROBLESMUN"),
            receipt_options,
            now=lambda: FIXED_NOW
        )
        return workflow, storage, sender
    return build


class TestSeatOperations:

    def test_mark_occupied_touches_only_selected(self):
        seats = [Seat(f"S{index}") for index in range(6)]

        result = seat_ops.mark_occupied(seats, [1, 4])

        assert [seat.available for seat in result] == [True, False, True, True, False, True]
        assert all(seat.available for seat in seats)

    def test_mark_occupied_keeps_unrelated_occupied_seats(self):
        seats = [Seat("A"), Seat("B", False), Seat("C")]

        result = seat_ops.mark_occupied(seats, [0])

        assert [seat.available for seat in result] == [False, False, True]

    def test_toggle_out_of_range(self):
        with pytest.raises(IndexError):
            seat_ops.toggle([Seat("A")], 1)

    def test_validate_selection(self, committee_service):
        committee = committee_service.get_committee("sc")

        with pytest.raises(SeatSelectionException):
            seat_ops.validate_selection(committee, [0, 0])
        with pytest.raises(SeatSelectionException):
            seat_ops.validate_selection(committee, [9])
        with pytest.raises(SeatSelectionException, match="Russia"):
            seat_ops.validate_selection(committee, [2])
        seat_ops.validate_selection(committee, [0, 3])


class TestHelpers:

    def test_safe_name(self):
        assert safe_name("Consejo de Seguridad (ONU)") == "Consejo-de-Seguridad--ONU-"

    def test_split_name(self):
        assert split_name("  Maria del Carmen Rojas ") == ("Maria", "del Carmen Rojas")
        assert split_name("Cher") == ("Cher", "")


class TestPreconditions:

    def test_empty_selection_makes_no_remote_calls(self, make_workflow, committee_service, seeded_store):
        committee = committee_service.get_committee("sc")
        logs_before = len(request_logs(seeded_store))
        workflow, storage, sender = make_workflow()

        with pytest.raises(DataValidationException):
            workflow.assign(committee, [], "Carla Mendez", "carla@colegio-a.edu", confirmed=True)

        assert storage.uploads == []
        assert sender.sent == []
        assert len(request_logs(seeded_store)) == logs_before

    @pytest.mark.parametrize("name,email", [("", "carla@colegio-a.edu"), ("Carla", "  ")])
    def test_recipient_required(self, make_workflow, committee_service, name, email):
        workflow, storage, _ = make_workflow()

        with pytest.raises(DataValidationException):
            workflow.assign(committee_service.get_committee("sc"), [0], name, email, confirmed=True)

        assert storage.uploads == []

    def test_confirmation_names_count_and_recipient(self, make_workflow, committee_service, seeded_store):
        workflow, storage, _ = make_workflow()

        with pytest.raises(ConfirmationRequired) as exc_info:
            workflow.assign(committee_service.get_committee("sc"), [0, 1], "Carla Mendez", "carla@colegio-a.edu")

        assert exc_info.value.prompt == "Confirm assigning 2 seat(s) to Carla Mendez (carla@colegio-a.edu)?"
        assert storage.uploads == []
        assert seeded_store.get_by_id("committees", "sc")["seatsList"][0]["available"] is True

    def test_occupied_seat_rejected(self, make_workflow, committee_service):
        workflow, storage, _ = make_workflow()

        with pytest.raises(SeatSelectionException):
            workflow.assign(committee_service.get_committee("sc"), [2], "Carla", "c@x.org", confirmed=True)

        assert storage.uploads == []


class TestAssign:

    def test_successful_assignment(self, make_workflow, committee_service, seeded_store):
        workflow, storage, sender = make_workflow()
        committee = committee_service.get_committee("sc")

        result = workflow.assign(committee, [0, 3], "Carla Mendez", "carla@colegio-a.edu", "Welcome!", confirmed=True)

        timestamp = int(FIXED_NOW.timestamp() * 1000)
        assert result.seat_labels == ["France", "Kenya"]
        assert result.record.transaction_id == f"manual-Security Council-{timestamp}"
        assert result.record.first_name == "Carla"
        assert result.record.last_name == "Mendez"
        assert result.record.is_faculty is False
        assert result.record.seats_requested == ["Security Council - France", "Security Council - Kenya"]
        assert result.receipt_path == f"assignments/Security-Council-{timestamp}.pdf"
        assert result.receipt_url == f"https://storage.example.org/{result.receipt_path}"
        assert [step.step for step in result.steps] == [
            "resolve_seats", "build_record", "render_receipt", "upload_receipt", "send_email", "persist_seats",
        ]

        (mail,) = sender.sent
        assert mail["recipient"] == "carla@colegio-a.edu"
        assert mail["filename"] == f"Security-Council-{timestamp}.pdf"
        assert "Welcome!" in mail["body"]
        assert result.receipt_url in mail["body"]
        assert mail["attachment"].startswith(b"%PDF")

        stored = seeded_store.get_by_id("committees", "sc")["seatsList"]
        assert [seat["available"] for seat in stored] == [False, True, False, False]
        assert committee_service.cache.get("sc").seats_list == result.committee.seats_list
        assert result.committee.stats().available == 1

    def test_default_note(self, make_workflow, committee_service):
        workflow, _, sender = make_workflow()

        workflow.assign(committee_service.get_committee("ga"), [1], "Carla", "c@x.org", confirmed=True)

        assert "Seat assignment for General Assembly" in sender.sent[0]["body"]

    def test_email_failure_keeps_upload_and_seats(self, make_workflow, committee_service, seeded_store):
        workflow, storage, _ = make_workflow(sender=RecordingEmailSender(fail=True))

        with pytest.raises(AssignmentFailedException) as exc_info:
            workflow.assign(committee_service.get_committee("sc"), [0], "Carla", "c@x.org", confirmed=True)

        error = exc_info.value
        assert error.failed_step == "send_email"
        assert error.completed == ["resolve_seats", "build_record", "render_receipt", "upload_receipt"]
        assert error.receipt_url.startswith("https://storage.example.org/assignments/")
        assert "SMTP relay refused" in error.details
        assert error.__cause__ is not None
        assert len(storage.uploads) == 1
        assert seeded_store.get_by_id("committees", "sc")["seatsList"][0]["available"] is True

    def test_upload_failure_sends_nothing(self, make_workflow, committee_service):
        workflow, _, sender = make_workflow(storage=RecordingStorage(fail=True))

        with pytest.raises(AssignmentFailedException) as exc_info:
            workflow.assign(committee_service.get_committee("sc"), [0], "Carla", "c@x.org", confirmed=True)

        assert exc_info.value.failed_step == "upload_receipt"
        assert exc_info.value.receipt_url is None
        assert sender.sent == []

    def test_stale_snapshot_fails_at_persist(self, make_workflow, committee_service, seeded_store):
        workflow, storage, sender = make_workflow()
        committee = committee_service.get_committee("sc")
        seeded_store.update_if_revision("committees", "sc", {"seatsList": [{"name": "France", "available": False}]}, 0)

        with pytest.raises(AssignmentFailedException) as exc_info:
            workflow.assign(committee, [0], "Carla", "c@x.org", confirmed=True)

        assert exc_info.value.failed_step == "persist_seats"
        assert isinstance(exc_info.value.__cause__, StaleCommitteeException)
        assert len(sender.sent) == 1
        assert committee_service.cache.get("sc").revision == 1
