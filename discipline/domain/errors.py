"""Domain exceptions raised by the disciplinary engine and the trip hooks."""


class DisciplineError(Exception):
    """Base class for every domain error in this package."""


# ── Not found ─────────────────────────────────────────────────────────


class NotFound(DisciplineError):
    pass


class DriverNotFound(NotFound):
    def __init__(self, driver_id: int):
        super().__init__(f"Driver {driver_id} not found")
        self.driver_id = driver_id


class BookingNotFound(NotFound):
    def __init__(self, booking_id: int):
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


# ── Rejected requests (no state change) ───────────────────────────────


class Conflict(DisciplineError):
    pass


class SanctionConflict(Conflict):
    """A manual admin action whose precondition does not hold."""


class DriverAlreadySuspended(SanctionConflict):
    def __init__(self, driver_id: int):
        super().__init__(f"Driver {driver_id} is already suspended")


class DriverAlreadyBanned(SanctionConflict):
    def __init__(self, driver_id: int):
        super().__init__(f"Driver {driver_id} is already banned")


class SanctionAlreadyPending(SanctionConflict):
    def __init__(self, driver_id: int, action_id: int):
        super().__init__(
            f"Driver {driver_id} already has a pending sanction ({action_id})"
        )
        self.action_id = action_id


class DisputeAlreadyExists(Conflict):
    def __init__(self, booking_id: int):
        super().__init__(f"A dispute already exists for booking {booking_id}")


class DriverNotInService(Conflict):
    def __init__(self, driver_id: int, status: str):
        super().__init__(f"Driver {driver_id} cannot start a trip while {status}")
        self.driver_id = driver_id


class InvalidStateTransition(Conflict):
    """Raised when a booking status change violates the trip state machine."""
