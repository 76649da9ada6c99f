"""
Booking domain errors

Every error carries the HTTP status the API layer renders it with and a
human-readable message that names the offending slot or appointment.

Families:
- SlotValidationError: rejected before any write (400)
- StateConflictError: a precondition on stored state does not hold
- TransientTransactionError: conflict/timeout in the store, safe to retry
"""
from fastapi import status


class BookingError(Exception):
    """Base class for all booking errors"""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {
            "success": False,
            "error": type(self).__name__,
            "message": self.message,
        }


# ============================================================================
# Validation errors
# ============================================================================

class SlotValidationError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidTimeFormat(SlotValidationError):
    pass


class PastTime(SlotValidationError):
    pass


class BadAlignment(SlotValidationError):
    pass


class BadDuration(SlotValidationError):
    pass


class DuplicateSlot(SlotValidationError):
    pass


class SlotOverlap(SlotValidationError):
    pass


class BelowMinimum(SlotValidationError):
    pass


class InvalidDate(SlotValidationError):
    pass


class InvalidSessionType(SlotValidationError):
    pass


# ============================================================================
# State precondition errors
# ============================================================================

class StateConflictError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(StateConflictError):
    status_code = status.HTTP_404_NOT_FOUND


class CalendarNotFound(NotFound):
    pass


class SlotNotFound(NotFound):
    pass


class AppointmentNotFound(NotFound):
    pass


class CounselorNotFound(NotFound):
    pass


class CounselorSettingsNotFound(NotFound):
    pass


class Forbidden(StateConflictError):
    status_code = status.HTTP_403_FORBIDDEN


class CalendarAlreadyExists(StateConflictError):
    status_code = status.HTTP_409_CONFLICT


class SlotUnavailable(StateConflictError):
    """The slot was not AVAILABLE when the booking tried to claim it"""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class SlotNotAvailable(StateConflictError):
    pass


class SessionTypeMismatch(StateConflictError):
    pass


class CounselorMismatch(StateConflictError):
    pass


class SlotOwnershipMismatch(StateConflictError):
    pass


class AlreadyCancelled(StateConflictError):
    pass


class CannotCancelCompleted(StateConflictError):
    pass


class RescheduleBlocked(StateConflictError):
    pass


class AppointmentStateConflict(StateConflictError):
    status_code = status.HTTP_409_CONFLICT


class PaymentLinkExpired(StateConflictError):
    pass


# ============================================================================
# Infrastructure errors
# ============================================================================

class TransientTransactionError(BookingError):
    """Write conflict, deadlock or timeout; the whole operation may be retried"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class TransactionTimeout(TransientTransactionError):
    pass
