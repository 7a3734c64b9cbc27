"""
Seat Assignment Workflow

Assigns a selection of a committee's available seats to a recipient:
render a receipt, upload it, email it, then mark the seats occupied.
Steps run strictly in order and nothing is rolled back when a later step
fails; the raised AssignmentFailedException lists what was committed so
the operator can finish or undo the rest by hand.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List

from . import seats as seat_ops
from .email_service import EmailService
from .exceptions import (
    AssignmentFailedException,
    ConfirmationRequired,
    DataValidationException,
    MUNRegistrationException,
)
from .models import Committee, Registration
from .receipts import SEAT_LABEL_SEPARATOR, ReceiptOptions, render_receipt_pdf
from .services import CommitteeService, RegistrationSettingsService
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

ASSIGNMENTS_PREFIX = "assignments"
RECEIPT_TITLE = "Seat Assignment Receipt"


@dataclass(frozen=True)
class StepOutcome:
    """A workflow step that completed, with what it committed"""
    step: str
    detail: str = ""


@dataclass
class AssignmentResult:
    committee: Committee
    record: Registration
    seat_labels: List[str]
    receipt_path: str
    receipt_url: str
    steps: List[StepOutcome] = field(default_factory=list)


def safe_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "-", name)


def split_name(full_name: str):
    first, _, last = full_name.strip().partition(" ")
    return first, last.strip()


class SeatAssignmentWorkflow:
    """
    Manual seat assignment from the admin seat screen
    """

    def __init__(
        self,
        committees: CommitteeService,
        settings: RegistrationSettingsService,
        storage: ObjectStorage,
        email: EmailService,
        options: ReceiptOptions,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.committees = committees
        self.settings = settings
        self.storage = storage
        self.email = email
        self.options = ReceiptOptions(options.conference_name, options.contact_email, RECEIPT_TITLE)
        self.now = now

    @staticmethod
    def confirmation_prompt(seat_count: int, recipient_name: str, recipient_email: str) -> str:
        return f"Confirm assigning {seat_count} seat(s) to {recipient_name} ({recipient_email})?"

    def check_preconditions(
        self,
        committee: Committee,
        seat_indices: List[int],
        recipient_name: str,
        recipient_email: str,
        confirmed: bool,
    ) -> None:
        """
        Validate an assignment request without touching any remote service

        Raises:
            DataValidationException: On an empty selection or missing recipient
            ConfirmationRequired: If the operator hasn't confirmed
            SeatSelectionException: If a selected seat can't be assigned
        """
        if not seat_indices:
            raise DataValidationException("seats", "select at least one seat")
        if not recipient_name.strip():
            raise DataValidationException("recipient_name", "recipient name is required")
        if not recipient_email.strip():
            raise DataValidationException("recipient_email", "recipient email is required")
        seat_ops.validate_selection(committee, seat_indices)
        if not confirmed:
            raise ConfirmationRequired(
                self.confirmation_prompt(len(seat_indices), recipient_name.strip(), recipient_email.strip())
            )

    def assign(
        self,
        committee: Committee,
        seat_indices: List[int],
        recipient_name: str,
        recipient_email: str,
        notes: str = "",
        confirmed: bool = False,
    ) -> AssignmentResult:
        """
        Assign seats to a recipient

        Args:
            committee: Committee snapshot the operator selected from
            seat_indices: Positions of the selected seats
            recipient_name: Recipient's full name
            recipient_email: Recipient's email address
            notes: Operator notes for the email; a default note is used when empty
            confirmed: Whether the operator confirmed the assignment

        Returns:
            AssignmentResult with the updated committee and the completed steps

        Raises:
            DataValidationException, ConfirmationRequired, SeatSelectionException:
                Before any side effect
            AssignmentFailedException: When a step fails after the checks passed
        """
        self.check_preconditions(committee, seat_indices, recipient_name, recipient_email, confirmed)
        recipient_name = recipient_name.strip()
        recipient_email = recipient_email.strip()

        completed: List[StepOutcome] = []
        state = {"receipt_url": None}

        def run(step: str, action: Callable[[], Any], describe: Callable[[Any], str] = lambda _: "") -> Any:
            logger.info("Assignment %s: %s", committee.name, step)
            try:
                value = action()
            except Exception as e:
                logger.exception("Assignment for %s failed at %s", committee.name, step)
                details = e.message if isinstance(e, MUNRegistrationException) else (str(e) or type(e).__name__)
                raise AssignmentFailedException(
                    committee.name,
                    step,
                    [outcome.step for outcome in completed],
                    details,
                    state["receipt_url"]
                ) from e
            completed.append(StepOutcome(step, describe(value)))
            return value

        timestamp = int(self.now().timestamp() * 1000)

        labels = run(
            "resolve_seats",
            lambda: seat_ops.resolve_labels(committee, seat_indices),
            lambda value: ", ".join(value)
        )
        record = run(
            "build_record",
            lambda: self._build_record(committee, labels, recipient_name, recipient_email, timestamp),
            lambda value: value.transaction_id
        )
        path = f"{ASSIGNMENTS_PREFIX}/{safe_name(committee.name)}-{timestamp}.pdf"
        pdf = run(
            "render_receipt",
            lambda: render_receipt_pdf(
                record,
                self.committees.load_committees(),
                self.settings.get_rate(),
                self.options,
                self.now()
            ),
            lambda value: f"{len(value)} bytes"
        )
        url = run("upload_receipt", lambda: self.storage.upload(pdf, path), lambda value: value)
        state["receipt_url"] = url
        record.receipt_url = url

        run(
            "send_email",
            lambda: self.email.send_assignment(
                record, labels, pdf, path, notes.strip() or f"Seat assignment for {committee.name}"
            ),
            lambda _: record.email
        )
        updated = run(
            "persist_seats",
            lambda: self.committees.save_seats(committee, seat_ops.mark_occupied(committee.seats_list, seat_indices)),
            lambda value: f"revision {value.revision}"
        )

        logger.info(
            "Assignment completed: %d seat(s) of %s to %s", len(labels), committee.name, recipient_email
        )
        return AssignmentResult(
            committee=updated,
            record=record,
            seat_labels=labels,
            receipt_path=path,
            receipt_url=url,
            steps=completed
        )

    def _build_record(
        self,
        committee: Committee,
        labels: List[str],
        recipient_name: str,
        recipient_email: str,
        timestamp: int,
    ) -> Registration:
        first_name, last_name = split_name(recipient_name)
        return Registration(
            first_name=first_name or recipient_name,
            last_name=last_name,
            email=recipient_email,
            institution=recipient_name,
            is_faculty=False,
            seats_requested=[f"{committee.name}{SEAT_LABEL_SEPARATOR}{label}" for label in labels],
            transaction_id=f"manual-{committee.name}-{timestamp}",
            payment_method="Manual assignment"
        )
