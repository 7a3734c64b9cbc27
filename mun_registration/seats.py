"""
Pure seat-list operations

Every function returns a new list and leaves its input untouched; seats
are addressed by their position in the committee's seat list.
"""

from typing import Iterable, List

from .exceptions import SeatSelectionException
from .models import Committee, Seat


def mark_occupied(seats: List[Seat], indices: Iterable[int]) -> List[Seat]:
    """Set the given positions unavailable, keep every other seat as is"""
    selected = set(indices)
    return [
        Seat(seat.name, False) if index in selected else Seat(seat.name, seat.available)
        for index, seat in enumerate(seats)
    ]


def set_all(seats: List[Seat], available: bool) -> List[Seat]:
    return [Seat(seat.name, available) for seat in seats]


def toggle(seats: List[Seat], index: int) -> List[Seat]:
    if not 0 <= index < len(seats):
        raise IndexError(f"Seat position {index} out of range")
    return [
        Seat(seat.name, not seat.available) if position == index else Seat(seat.name, seat.available)
        for position, seat in enumerate(seats)
    ]


def validate_selection(committee: Committee, indices: List[int]) -> None:
    """
    Check that a selection can be assigned

    Raises:
        SeatSelectionException: On duplicate, out-of-range or occupied positions
    """
    if len(set(indices)) != len(indices):
        raise SeatSelectionException(committee.name, "the same seat was selected twice")
    for index in indices:
        if not 0 <= index < len(committee.seats_list):
            raise SeatSelectionException(committee.name, f"seat position {index} does not exist")
        if not committee.seats_list[index].available:
            raise SeatSelectionException(
                committee.name, f"seat '{committee.seats_list[index].name}' is already occupied"
            )


def resolve_labels(committee: Committee, indices: Iterable[int]) -> List[str]:
    return [committee.seats_list[index].name for index in indices]
