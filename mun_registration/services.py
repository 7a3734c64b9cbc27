"""
Business Logic Services for MUN Registration Application

This module contains the service classes behind the admin and public
screens: committee and seat inventory management, registration settings,
receipts and user administration.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from . import seats as seat_ops
from .cache import SnapshotCache
from .data_service import DataService
from .exceptions import (
    CommitteeNotFoundException,
    ConfirmationRequired,
    DataAccessException,
    DataValidationException,
    StaleCommitteeException,
    UserNotFoundException,
)
from .models import (
    Account,
    Committee,
    Registration,
    RegistrationConfig,
    Seat,
    SeatStats,
    UserProfile,
    UserRole,
)
from .receipts import ReceiptOptions, receipt_filename, render_receipt_pdf
from .repositories import Page
from .storage import ObjectStorage

logger = logging.getLogger(__name__)

COMMITTEES_COLLECTION = "committees"
USERS_COLLECTION = "users"
CONFIG_COLLECTION = "config"
REGISTRATION_CONFIG_ID = "registration"

SORT_OPTIONS = ("newest", "oldest", "alphabetical", "reverse-alphabetical")


class CommitteeService:
    """
    Handles committee browsing and seat inventory changes

    Reads go through the snapshot cache; every successful write overwrites
    the cached committee with the written version.
    """

    def __init__(self, data: DataService, cache: SnapshotCache, revision_check: bool = True):
        """
        Initialize committee service

        Args:
            data: Tracked data service
            cache: Committee snapshot cache
            revision_check: Reject seat writes based on a stale snapshot
        """
        self.data = data
        self.cache = cache
        self.revision_check = revision_check

    def _decode(self, document: Dict) -> Optional[Committee]:
        doc_id = document.get("id", "")
        try:
            return Committee.from_dict(doc_id, document)
        except DataValidationException as e:
            logger.warning("Skipping invalid committee document %s: %s", doc_id, e)
            return None

    def load_committees(self, refresh: bool = False) -> List[Committee]:
        """
        Get all committees

        Args:
            refresh: Reload from the store even if the cache is filled

        Returns:
            Committees sorted by name; invalid documents are skipped
        """
        if refresh or not self.cache.is_loaded():
            documents = self.data.get_all(COMMITTEES_COLLECTION)
            committees = [c for c in (self._decode(doc) for doc in documents) if c is not None]
            self.cache.refresh(committees)
            logger.info("%d committees loaded", len(committees))
        return sorted(self.cache.all(), key=lambda committee: committee.name.lower())

    def get_committee(self, committee_id: str, refresh: bool = False) -> Committee:
        """
        Get a committee by ID

        Raises:
            CommitteeNotFoundException: If the committee doesn't exist
            DataValidationException: If the stored document is invalid
        """
        if not refresh:
            cached = self.cache.get(committee_id)
            if cached is not None:
                return cached

        document = self.data.get_by_id(COMMITTEES_COLLECTION, committee_id)
        if document is None:
            raise CommitteeNotFoundException(committee_id)
        committee = Committee.from_dict(committee_id, document)
        self.cache.put(committee)
        return committee

    def search(self, term: str) -> List[Committee]:
        return [committee for committee in self.load_committees() if committee.matches(term)]

    def list_page(self, page_size: int = 9, cursor: Any = None) -> Page:
        """One page of committees ordered by name, for the public listing"""
        page = self.data.get_page(COMMITTEES_COLLECTION, page_size, cursor, "name", "asc")
        page.items = [c for c in (self._decode(doc) for doc in page.items) if c is not None]
        return page

    @staticmethod
    def aggregate_stats(committees: List[Committee]) -> SeatStats:
        return SeatStats.combine(committee.stats() for committee in committees)

    def save_seats(self, committee: Committee, seats_list: List[Seat]) -> Committee:
        """
        Overwrite a committee's seat list

        Args:
            committee: Snapshot the new seat list was derived from
            seats_list: Complete new seat list

        Returns:
            The updated committee, also stored in the cache

        Raises:
            StaleCommitteeException: If the committee changed since the snapshot
                was read; the cache is refreshed before re-raising
        """
        payload = {"seatsList": [seat.to_dict() for seat in seats_list]}

        if self.revision_check:
            try:
                revision = self.data.update_if_revision(
                    COMMITTEES_COLLECTION, committee.committee_id, payload, committee.revision
                )
            except StaleCommitteeException:
                self.get_committee(committee.committee_id, refresh=True)
                raise
        else:
            self.data.update(COMMITTEES_COLLECTION, committee.committee_id, payload)
            revision = committee.revision

        updated = committee.with_seats(seats_list, revision)
        self.cache.put(updated)
        return updated

    def toggle_seat(self, committee_id: str, index: int) -> Committee:
        """Flip one seat's availability"""
        committee = self.get_committee(committee_id)
        try:
            seats_list = seat_ops.toggle(committee.seats_list, index)
        except IndexError as e:
            raise DataValidationException("seat_index", str(e))

        updated = self.save_seats(committee, seats_list)
        seat = updated.seats_list[index]
        logger.info(
            "Seat '%s' of %s set to %s",
            seat.name, committee.name, "available" if seat.available else "occupied"
        )
        return updated

    def set_all_seats(self, committee_id: str, available: bool, confirmed: bool = False) -> Committee:
        """
        Set every seat of a committee to the same availability

        Raises:
            ConfirmationRequired: If the operator hasn't confirmed
        """
        committee = self.get_committee(committee_id)
        if not confirmed:
            state = "available" if available else "occupied"
            raise ConfirmationRequired(
                f"Mark ALL {len(committee.seats_list)} seats of {committee.name} as {state}? "
                "This overwrites every seat's current state."
            )
        updated = self.save_seats(committee, seat_ops.set_all(committee.seats_list, available))
        logger.info("All seats of %s set to %s", committee.name, "available" if available else "occupied")
        return updated


class RegistrationSettingsService:
    """Reads the ``config/registration`` document"""

    def __init__(self, data: DataService, default_rate: float = 180.0):
        self.data = data
        self.default_rate = default_rate

    def get_config(self) -> RegistrationConfig:
        """
        Get registration settings

        Falls back to the default exchange rate when the document is
        missing or can't be read.
        """
        try:
            document = self.data.get_by_id(CONFIG_COLLECTION, REGISTRATION_CONFIG_ID)
        except DataAccessException:
            logger.exception("Error loading the exchange rate, using %s", self.default_rate)
            return RegistrationConfig(rate=self.default_rate)
        return RegistrationConfig.from_dict(document or {}, self.default_rate)

    def get_rate(self) -> float:
        return self.get_config().rate


class ReceiptService:
    """
    Renders receipts with current prices and exchange rate
    """

    def __init__(
        self,
        committees: CommitteeService,
        settings: RegistrationSettingsService,
        storage: ObjectStorage,
        options: ReceiptOptions,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.committees = committees
        self.settings = settings
        self.storage = storage
        self.options = options
        self.now = now

    def build_receipt(self, registration: Registration, title: Optional[str] = None) -> bytes:
        options = self.options
        if title:
            options = ReceiptOptions(options.conference_name, options.contact_email, title)
        return render_receipt_pdf(
            registration,
            self.committees.load_committees(),
            self.settings.get_rate(),
            options,
            self.now()
        )

    def upload_receipt(self, registration: Registration) -> str:
        """
        Render and upload a registration receipt

        Returns:
            Public URL of the receipt, also set on the registration
        """
        pdf = self.build_receipt(registration)
        url = self.storage.upload(pdf, receipt_filename(registration, self.now()))
        registration.receipt_url = url
        return url


@dataclass(frozen=True)
class UserStats:
    total: int
    faculty: int
    admins: int
    regular: int


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _created_key(user: UserProfile) -> datetime:
    if user.created_at is None:
        return _EPOCH
    if user.created_at.tzinfo is None:
        return user.created_at.replace(tzinfo=timezone.utc)
    return user.created_at


class UserService:
    """
    Handles user administration

    The filtering and sorting helpers are plain functions of a user list
    so a screen can load once and re-filter without further store calls.
    """

    def __init__(self, data: DataService):
        self.data = data

    def list_users(self) -> List[UserProfile]:
        users = []
        for document in self.data.get_all(USERS_COLLECTION):
            try:
                users.append(UserProfile.from_dict(document.get("id", ""), document))
            except DataValidationException as e:
                logger.warning("Skipping invalid user document: %s", e)
        logger.info("%d users loaded", len(users))
        return users

    def get_user(self, user_id: str) -> UserProfile:
        """
        Raises:
            UserNotFoundException: If the user doesn't exist
        """
        document = self.data.get_by_id(USERS_COLLECTION, user_id)
        if document is None:
            raise UserNotFoundException(user_id)
        return UserProfile.from_dict(user_id, document)

    def create_profile(
        self,
        account: Account,
        first_name: str,
        last_name: str,
        institution: str = "",
    ) -> UserProfile:
        """Create the profile document of a freshly registered account"""
        profile = UserProfile(
            user_id=account.uid,
            first_name=first_name,
            last_name=last_name,
            email=account.email,
            institution=institution,
            created_at=datetime.now(timezone.utc)
        )
        self.data.set(USERS_COLLECTION, account.uid, profile.to_dict())
        return profile

    def is_admin(self, user_id: str) -> bool:
        try:
            return self.get_user(user_id).is_admin
        except UserNotFoundException:
            return False

    def delete_user(self, user_id: str, confirmed: bool = False) -> UserProfile:
        """
        Delete a user's profile document

        Raises:
            ConfirmationRequired: If the operator hasn't confirmed
            UserNotFoundException: If the user doesn't exist
        """
        user = self.get_user(user_id)
        if not confirmed:
            raise ConfirmationRequired(f"Delete user {user.full_name} ({user.email})? This cannot be undone.")
        self.data.delete(USERS_COLLECTION, user_id)
        logger.info("User %s deleted", user.email)
        return user

    @staticmethod
    def filter_users(
        users: List[UserProfile],
        search: str = "",
        role: UserRole = UserRole.ALL,
        institution: str = "all",
    ) -> List[UserProfile]:
        """
        Filter users by role, institution and search term

        Args:
            users: Users to filter
            search: Case-insensitive substring over name, email and institution
            role: Role filter
            institution: Exact institution (case-insensitive) or 'all'
        """
        result = users
        if role is UserRole.FACULTY:
            result = [user for user in result if user.is_faculty]
        elif role is UserRole.ADMIN:
            result = [user for user in result if user.is_admin]
        elif role is UserRole.USER:
            result = [user for user in result if not user.is_admin and not user.is_faculty]

        if institution and institution != "all":
            wanted = institution.lower()
            result = [user for user in result if user.institution.lower() == wanted]

        term = search.strip().lower()
        if not term:
            return result
        return [
            user for user in result
            if any(term in value.lower() for value in (user.first_name, user.last_name, user.email, user.institution))
        ]

    @staticmethod
    def sort_users(users: List[UserProfile], option: str = "newest") -> List[UserProfile]:
        if option == "newest":
            return sorted(users, key=_created_key, reverse=True)
        if option == "oldest":
            return sorted(users, key=_created_key)
        if option == "alphabetical":
            return sorted(users, key=lambda user: user.full_name.casefold())
        if option == "reverse-alphabetical":
            return sorted(users, key=lambda user: user.full_name.casefold(), reverse=True)
        return list(users)

    @staticmethod
    def institutions(users: List[UserProfile]) -> List[str]:
        return sorted({user.institution for user in users if user.institution})

    @staticmethod
    def stats(users: List[UserProfile]) -> UserStats:
        return UserStats(
            total=len(users),
            faculty=sum(1 for user in users if user.is_faculty),
            admins=sum(1 for user in users if user.is_admin),
            regular=sum(1 for user in users if not user.is_faculty and not user.is_admin)
        )
