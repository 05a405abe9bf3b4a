from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(128))
    last_name: Mapped[str] = mapped_column(String(128))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_ref: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    airline_pnr: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    ticket_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    flight_number: Mapped[str] = mapped_column(String(32), index=True)
    departure_date: Mapped[datetime] = mapped_column(DateTime, index=True)
    is_validated: Mapped[bool] = mapped_column(Boolean, default=False)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    validated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    passengers: Mapped[list["BookingPassenger"]] = relationship(back_populates="booking", cascade="all, delete-orphan")


class BookingPassenger(Base):
    __tablename__ = "booking_passengers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), index=True)
    seat_number: Mapped[str | None] = mapped_column(String(8), nullable=True)

    booking: Mapped[Booking] = relationship(back_populates="passengers")
    customer: Mapped[Customer] = relationship()


class ValidationReport(Base):
    __tablename__ = "validation_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    file_name: Mapped[str] = mapped_column(String(255))
    file_type: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(32), default="processing", index=True)
    total_records: Mapped[int] = mapped_column(Integer, default=0)
    matched_records: Mapped[int] = mapped_column(Integer, default=0)
    unmatched_records: Mapped[int] = mapped_column(Integer, default=0)
    partial_matches: Mapped[int] = mapped_column(Integer, default=0)
    uploaded_by: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    results: Mapped[list["ValidationResult"]] = relationship(back_populates="report", cascade="all, delete-orphan")


class ValidationResult(Base):
    __tablename__ = "validation_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[int] = mapped_column(ForeignKey("validation_reports.id", ondelete="CASCADE"), index=True)
    booking_id: Mapped[int | None] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True
    )
    airline_reference: Mapped[str] = mapped_column(String(64), default="")
    ticket_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    passenger_name: Mapped[str] = mapped_column(String(255), default="")
    flight_number: Mapped[str] = mapped_column(String(32), default="")
    flight_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    match_status: Mapped[str] = mapped_column(String(16), index=True)
    match_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    match_details: Mapped[dict[str, object]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    report: Mapped[ValidationReport] = relationship(back_populates="results")
