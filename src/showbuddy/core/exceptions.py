"""
Error taxonomy for the booking service.

Every error carries a machine-readable ``kind``, a human-readable message,
optional details and the HTTP status the API renders it with.
"""
from typing import Any, Dict, List


class BookingError(Exception):
    """Base exception for booking service errors"""

    kind = "booking_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, **self.details}


# ==================== Validation ====================

class ValidationError(BookingError):
    """Malformed input or reference to something that does not exist in the showing"""
    kind = "validation_error"
    status_code = 422


# ==================== Conflicts ====================

class ConflictError(BookingError):
    kind = "conflict"
    status_code = 409


class SeatUnavailableError(ConflictError):
    """Raised when requested seats are held or booked by someone else"""
    kind = "seat_unavailable"

    def __init__(self, seat_ids: List[str], message: str = None):
        seat_ids = sorted(seat_ids, key=seat_sort_key)
        super().__init__(
            message or f"Seats {', '.join(seat_ids)} are not available",
            seat_ids=seat_ids,
        )
        self.seat_ids = seat_ids


class DuplicateBookingError(ConflictError):
    """A booking already exists for this hold token with different details"""
    kind = "duplicate_booking"

    def __init__(self, hold_token: str, booking_id: str):
        super().__init__(
            f"Hold already converted into booking {booking_id}",
            booking_id=booking_id,
        )
        self.hold_token = hold_token
        self.booking_id = booking_id


class TooManyActiveHoldsError(ConflictError):
    kind = "too_many_active_holds"
    status_code = 429


class RequestInProgressError(ConflictError):
    """Another request with the same idempotency key has not finished"""
    kind = "request_in_progress"


# ==================== Expiry ====================

class ExpiryError(BookingError):
    kind = "expired"
    status_code = 410


class HoldExpiredError(ExpiryError):
    """Hold TTL elapsed, or the hold was released before confirmation"""
    kind = "hold_expired"

    def __init__(self, hold_token: str, message: str = None):
        super().__init__(message or "Seat hold has expired", hold_token=hold_token)
        self.hold_token = hold_token


# ==================== Status transitions ====================

class IllegalTransitionError(BookingError):
    kind = "illegal_transition"
    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot move booking from {current} to {requested}",
            current_status=current,
            requested_status=requested,
        )


# ==================== Not found ====================

class NotFoundError(BookingError):
    kind = "not_found"
    status_code = 404


class ShowingNotFoundError(NotFoundError):
    kind = "showing_not_found"


class HoldNotFoundError(NotFoundError):
    kind = "hold_not_found"


class BookingNotFoundError(NotFoundError):
    kind = "booking_not_found"


# ==================== Access ====================

class PermissionDeniedError(BookingError):
    kind = "permission_denied"
    status_code = 403


# ==================== Payment / upstream ====================

class PaymentFailedError(BookingError):
    """Payment was declined or did not cover the hold amount"""
    kind = "payment_failed"
    status_code = 402


class UpstreamError(BookingError):
    """Payment or auth collaborator failure"""
    kind = "upstream_error"
    status_code = 502


class LedgerWriteError(BookingError):
    """Booking record could not be written; seats were released"""
    kind = "ledger_write_failed"
    status_code = 503


def seat_sort_key(seat_id: str):
    """Order seat ids as row letter, then numeric seat number (A2 before A10)"""
    row = seat_id.rstrip("0123456789")
    number = seat_id[len(row):]
    return (row, int(number) if number.isdigit() else 0)
