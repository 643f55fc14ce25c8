"""
Fleet Booking – double-booking detection.
"""

from models import BLOCKING_STATUSES


def windows_overlap(a_start, a_end, b_start, b_end):
    """
    Two windows [A_start, A_end] and [B_start, B_end] overlap when:
        A_end >= B_start  AND  A_start <= B_end

    Boundaries are inclusive: a booking ending at 17:00 blocks another one
    starting at 17:00.
    """
    return a_end >= b_start and a_start <= b_end


def find_conflict(
    repository,
    vehicle_id,
    start,
    end,
    exclude_booking_id=None,
    statuses=BLOCKING_STATUSES,
):
    """
    Return the first booking of *vehicle_id* whose window overlaps
    [start, end] and whose status is one of *statuses*, or None.

    Parameters
    ----------
    repository : BookingRepository
        Source of bookings; must be read inside the caller's transaction when
        the answer guards a write.
    vehicle_id : int
        The vehicle to check. Raises NotFound if it does not exist.
    start, end : datetime
        Proposed window, ``start < end``.
    exclude_booking_id : int | None
        Ignore this booking (the one being approved).
    statuses : iterable of BookingStatus
        Statuses that hold the vehicle; defaults to PENDING/APPROVED/IN_PROGRESS.
    """
    repository.get_vehicle(vehicle_id)
    blocking = frozenset(statuses)

    # Pre-filter on start in the store, then test the real overlap here
    for existing in repository.for_vehicle(vehicle_id, starting_before=end):
        if existing.id == exclude_booking_id:
            continue
        if existing.status not in blocking:
            continue
        if windows_overlap(existing.start_time, existing.end_time, start, end):
            return existing
    return None


def has_conflict(
    repository,
    vehicle_id,
    start,
    end,
    exclude_booking_id=None,
    statuses=BLOCKING_STATUSES,
):
    return (
        find_conflict(repository, vehicle_id, start, end, exclude_booking_id, statuses)
        is not None
    )
