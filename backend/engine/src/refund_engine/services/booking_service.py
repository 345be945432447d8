"""Read-only client for the booking collaborator's data."""

from typing import TYPE_CHECKING

from refund_engine.models import Booking, ErrorCode, NotFoundError

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService


class BookingService:
    """Looks up bookings projected into the engine's store by the booking service."""

    BOOKINGS_TABLE = "bookings"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def find_booking(self, booking_id: str) -> Booking | None:
        item = self.db.get_item(self.BOOKINGS_TABLE, {"booking_id": booking_id})
        return Booking.model_validate(item) if item else None

    def get_booking(self, booking_id: str) -> Booking:
        """Get a booking by ID.

        Raises:
            NotFoundError: If the booking does not exist
        """
        booking = self.find_booking(booking_id)
        if booking is None:
            raise NotFoundError(
                ErrorCode.BOOKING_NOT_FOUND, details={"booking_id": booking_id}
            )
        return booking
