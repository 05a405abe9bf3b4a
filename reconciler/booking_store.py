from datetime import date, datetime, time

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from reconciler.db_models import Booking, BookingPassenger, utc_now
from reconciler.errors import StoreUnavailableError
from reconciler.schemas import BookingCandidate


def day_bounds(day: date) -> tuple[datetime, datetime]:
    return datetime.combine(day, time.min), datetime.combine(day, time.max)


def _to_candidate(booking: Booking) -> BookingCandidate:
    return BookingCandidate(
        id=booking.id,
        booking_ref=booking.booking_ref,
        airline_pnr=booking.airline_pnr,
        flight_number=booking.flight_number,
        departure_date=booking.departure_date,
        passenger_names=tuple(passenger.customer.full_name for passenger in booking.passengers),
    )


class BookingStore:
    """Booking lookups and the validation write, over one SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_booking_by_reference(self, reference: str) -> BookingCandidate | None:
        stmt = (
            select(Booking)
            .where(or_(Booking.booking_ref == reference, Booking.airline_pnr == reference))
            .options(selectinload(Booking.passengers).selectinload(BookingPassenger.customer))
            .order_by(Booking.id)
            .limit(1)
        )
        try:
            booking = self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailableError(f"booking lookup by reference failed: {exc}") from exc
        return _to_candidate(booking) if booking else None

    def find_bookings_by_flight_and_date(self, flight_number: str, day: date) -> list[BookingCandidate]:
        start, end = day_bounds(day)
        stmt = (
            select(Booking)
            .where(
                Booking.flight_number.icontains(flight_number, autoescape=True),
                Booking.departure_date >= start,
                Booking.departure_date <= end,
            )
            .options(selectinload(Booking.passengers).selectinload(BookingPassenger.customer))
            .order_by(Booking.id)
        )
        try:
            bookings = self.db.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailableError(f"booking lookup by flight and date failed: {exc}") from exc
        return [_to_candidate(booking) for booking in bookings]

    def update_booking_validation(
        self,
        booking_id: int,
        *,
        airline_pnr: str | None,
        ticket_number: str | None,
        validated_by: str,
        validated_at: datetime | None = None,
    ) -> None:
        try:
            booking = self.db.get(Booking, booking_id)
            if booking is None:
                raise StoreUnavailableError(f"booking {booking_id} no longer exists")
            # Blank manifest values keep what the booking already has.
            booking.airline_pnr = airline_pnr or booking.airline_pnr
            booking.ticket_number = ticket_number or booking.ticket_number
            booking.is_validated = True
            booking.validated_at = validated_at or utc_now()
            booking.validated_by = validated_by
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailableError(f"booking {booking_id} validation update failed: {exc}") from exc
