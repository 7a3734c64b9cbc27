"""
Data Models for MUN Registration Application

This module contains the data model classes that represent the core
entities of the registration system. Documents read from the store are
schemaless maps; every model decodes them through ``from_dict`` which
rejects documents missing required fields instead of trusting their shape.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import DataValidationException


class UserRole(Enum):
    """Role filter values used by the user administration screen"""
    ALL = "all"
    USER = "user"
    FACULTY = "faculty"
    ADMIN = "admin"


def _require(data: Dict, key: str, expected: type, context: str) -> Any:
    """
    Fetch a required field from a raw document

    Args:
        data: Raw document
        key: Field name in the document
        expected: Required Python type
        context: Prefix used in the validation error field name

    Returns:
        The field value

    Raises:
        DataValidationException: If the field is missing or has the wrong type
    """
    if key not in data or data[key] is None:
        raise DataValidationException(f"{context}.{key}", "required field is missing")
    value = data[key]
    # bool is a subclass of int
    if expected is int and isinstance(value, bool):
        raise DataValidationException(f"{context}.{key}", "expected int, got bool")
    if not isinstance(value, expected):
        raise DataValidationException(
            f"{context}.{key}",
            f"expected {expected.__name__}, got {type(value).__name__}"
        )
    return value


def _optional(data: Dict, key: str, expected: type, context: str, default: Any = None) -> Any:
    """Like ``_require`` but a missing or null field yields ``default``"""
    if data.get(key) is None:
        return default
    return _require(data, key, expected, context)


def _optional_str(data: Dict, key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    return str(value)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept store timestamps (datetime subclasses) and ISO strings"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class Seat:
    """
    A single seat of a committee

    A seat has no identity beyond its position in the committee's seat
    list and its label.
    """
    name: str
    available: bool = True

    @classmethod
    def from_dict(cls, data: Dict, context: str = "seat") -> 'Seat':
        if not isinstance(data, dict):
            raise DataValidationException(context, "seat entry must be a map")
        return cls(
            name=_require(data, 'name', str, context),
            available=_require(data, 'available', bool, context)
        )

    def to_dict(self) -> Dict:
        return {"name": self.name, "available": self.available}


@dataclass(frozen=True)
class SeatStats:
    """Seat counters derived from seat lists"""
    total: int = 0
    available: int = 0
    occupied: int = 0

    @classmethod
    def from_seats(cls, seats: Iterable[Seat]) -> 'SeatStats':
        total = 0
        available = 0
        for seat in seats:
            total += 1
            if seat.available:
                available += 1
        return cls(total=total, available=available, occupied=total - available)

    @classmethod
    def combine(cls, stats: Iterable['SeatStats']) -> 'SeatStats':
        total = available = occupied = 0
        for item in stats:
            total += item.total
            available += item.available
            occupied += item.occupied
        return cls(total=total, available=available, occupied=occupied)


@dataclass
class Committee:
    """
    Data model for a conference committee

    Holds the committee's presentation data and its seat inventory. The
    seat list is the single source of truth for availability; the counters
    are always derived from it.
    """
    committee_id: str
    name: str
    topic: str
    img: str
    seats: int
    seats_list: List[Seat] = field(default_factory=list)
    description: Optional[str] = None
    video: Optional[str] = None
    study_guide: Optional[str] = None
    legal_framework: List[str] = field(default_factory=list)
    president: Optional[str] = None
    max_seats_per_small_delegation: Optional[int] = None
    max_seats_per_large_delegation: Optional[int] = None
    is_double_seat: bool = False
    revision: int = 0

    @classmethod
    def from_dict(cls, committee_id: str, data: Dict) -> 'Committee':
        """
        Create Committee instance from a store document

        Args:
            committee_id: Document ID of the committee
            data: Raw document

        Returns:
            Committee instance

        Raises:
            DataValidationException: If required fields are missing or malformed
        """
        context = f"committee_{committee_id}"
        raw_seats = data.get('seatsList') or []
        if not isinstance(raw_seats, list):
            raise DataValidationException(f"{context}.seatsList", "expected a list")

        legal = data.get('legalFramework') or []
        if not isinstance(legal, list):
            raise DataValidationException(f"{context}.legalFramework", "expected a list")

        return cls(
            committee_id=committee_id,
            name=_require(data, 'name', str, context),
            topic=_require(data, 'topic', str, context),
            img=_require(data, 'img', str, context),
            seats=_require(data, 'seats', int, context),
            seats_list=[
                Seat.from_dict(seat, f"{context}.seatsList[{index}]")
                for index, seat in enumerate(raw_seats)
            ],
            description=_optional_str(data, 'description'),
            video=_optional_str(data, 'video'),
            study_guide=_optional_str(data, 'studyGuide'),
            legal_framework=[str(link) for link in legal],
            president=_optional_str(data, 'president'),
            max_seats_per_small_delegation=_optional(data, 'maxSeatsPerSmallDelegation', int, context),
            max_seats_per_large_delegation=_optional(data, 'maxSeatsPerLargeDelegation', int, context),
            is_double_seat=_optional(data, 'isDoubleSeat', bool, context, False),
            revision=_optional(data, 'revision', int, context, 0)
        )

    def to_dict(self) -> Dict:
        """
        Convert committee to a store document

        Returns:
            Dictionary using the store's field names (document ID excluded)
        """
        data = {
            "name": self.name,
            "topic": self.topic,
            "img": self.img,
            "seats": self.seats,
            "seatsList": [seat.to_dict() for seat in self.seats_list],
            "legalFramework": list(self.legal_framework),
            "isDoubleSeat": self.is_double_seat,
            "revision": self.revision,
        }
        optional = {
            "description": self.description,
            "video": self.video,
            "studyGuide": self.study_guide,
            "president": self.president,
            "maxSeatsPerSmallDelegation": self.max_seats_per_small_delegation,
            "maxSeatsPerLargeDelegation": self.max_seats_per_large_delegation,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @property
    def available_count(self) -> int:
        return self.stats().available

    @property
    def occupied_count(self) -> int:
        return self.stats().occupied

    def stats(self) -> SeatStats:
        """
        Derive seat counters from the seat list

        Returns:
            SeatStats; all zero when the committee has no seat list
        """
        return SeatStats.from_seats(self.seats_list or [])

    def available_indices(self) -> List[int]:
        return [index for index, seat in enumerate(self.seats_list) if seat.available]

    def with_seats(self, seats_list: List[Seat], revision: Optional[int] = None) -> 'Committee':
        """
        Copy of this committee with a replaced seat list

        Args:
            seats_list: New seat list
            revision: New revision, unchanged when omitted
        """
        return replace(
            self,
            seats_list=list(seats_list),
            revision=self.revision if revision is None else revision
        )

    def matches(self, search: str) -> bool:
        """Case-insensitive substring match over name, topic and president"""
        term = search.strip().lower()
        if not term:
            return True
        return any(
            term in (value or "").lower()
            for value in (self.name, self.topic, self.president)
        )


@dataclass
class Registration:
    """
    Registration-like record

    Used both for delegate registrations and for the synthetic records
    created when an operator assigns seats by hand. Requested seats are
    free-text "Committee - Seat" labels.
    """
    first_name: str
    last_name: str
    email: str
    institution: str
    is_faculty: bool = False
    seats_requested: List[str] = field(default_factory=list)
    transaction_id: str = ""
    independent_delegate: bool = False
    is_big_group: bool = False
    requires_backup: bool = False
    backup_seats_requested: List[str] = field(default_factory=list)
    payment_method: str = ""
    receipt_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict) -> 'Registration':
        context = "registration"
        return cls(
            first_name=_require(data, 'userFirstName', str, context),
            last_name=data.get('userLastName') or "",
            email=_require(data, 'userEmail', str, context),
            institution=data.get('userInstitution') or "",
            is_faculty=bool(data.get('userIsFaculty', False)),
            seats_requested=list(data.get('seatsRequested') or []),
            transaction_id=data.get('transactionId') or "",
            independent_delegate=bool(data.get('independentDelegate', False)),
            is_big_group=bool(data.get('isBigGroup', False)),
            requires_backup=bool(data.get('requiresBackup', False)),
            backup_seats_requested=list(data.get('backupSeatsRequested') or []),
            payment_method=data.get('paymentMethod') or "",
            receipt_url=data.get('receiptUrl') or ""
        )

    def to_dict(self) -> Dict:
        return {
            "userFirstName": self.first_name,
            "userLastName": self.last_name,
            "userEmail": self.email,
            "userInstitution": self.institution,
            "userIsFaculty": self.is_faculty,
            "seats": self.seats,
            "seatsRequested": list(self.seats_requested),
            "transactionId": self.transaction_id,
            "independentDelegate": self.independent_delegate,
            "isBigGroup": self.is_big_group,
            "requiresBackup": self.requires_backup,
            "backupSeatsRequested": list(self.backup_seats_requested),
            "paymentMethod": self.payment_method,
            "receiptUrl": self.receipt_url,
        }

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def seats(self) -> int:
        return len(self.seats_requested)


@dataclass
class RequestLogRecord:
    """
    Append-only fact about one remote call

    Records are created once and never updated or deleted.
    """
    service: str
    operation: str
    status: str
    duration_ms: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    ip_address: Optional[str] = None
    user_id: Optional[str] = None
    user_agent: Optional[str] = None
    page_path: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict:
        return {
            "service": self.service,
            "operation": self.operation,
            "status": self.status,
            "durationMs": self.duration_ms,
            "metadata": dict(self.metadata),
            "errorMessage": self.error_message,
            "ipAddress": self.ip_address,
            "userId": self.user_id,
            "userAgent": self.user_agent,
            "pagePath": self.page_path,
            "createdAt": self.created_at,
        }


@dataclass
class UserProfile:
    """
    Data model for a registered user's profile document
    """
    user_id: str
    first_name: str
    last_name: str
    email: str
    institution: str = ""
    is_faculty: bool = False
    is_admin: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, user_id: str, data: Dict) -> 'UserProfile':
        context = f"user_{user_id}"
        return cls(
            user_id=user_id,
            first_name=data.get('firstName') or "",
            last_name=data.get('lastName') or "",
            email=_require(data, 'email', str, context),
            institution=data.get('institution') or "",
            is_faculty=bool(data.get('isFaculty', False)),
            is_admin=bool(data.get('isAdmin', False)),
            created_at=_parse_timestamp(data.get('createdAt'))
        )

    def to_dict(self) -> Dict:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "institution": self.institution,
            "isFaculty": self.is_faculty,
            "isAdmin": self.is_admin,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def role(self) -> UserRole:
        if self.is_admin:
            return UserRole.ADMIN
        if self.is_faculty:
            return UserRole.FACULTY
        return UserRole.USER


@dataclass
class Account:
    """
    Authenticated identity returned by the auth provider
    """
    uid: str
    email: str
    display_name: Optional[str] = None
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        return cls(
            uid=_require(data, 'uid', str, "account"),
            email=_require(data, 'email', str, "account"),
            display_name=data.get('display_name'),
            id_token=data.get('id_token'),
            refresh_token=data.get('refresh_token')
        )

    def to_dict(self) -> Dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "display_name": self.display_name,
            "id_token": self.id_token,
            "refresh_token": self.refresh_token,
        }


@dataclass
class RegistrationConfig:
    """Registration settings stored in ``config/registration``"""
    rate: float

    @classmethod
    def from_dict(cls, data: Dict, default_rate: float) -> 'RegistrationConfig':
        rate = data.get('rate')
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
            return cls(rate=default_rate)
        return cls(rate=float(rate))
