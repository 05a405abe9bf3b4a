from collections.abc import Callable, Generator
from datetime import datetime
import io
from pathlib import Path

from openpyxl import Workbook
import pytest
from sqlalchemy.orm import Session, sessionmaker

from reconciler.config import Settings
from reconciler.database import build_session_factory
from reconciler.db_models import Booking, BookingPassenger, Customer
from reconciler.reconciliation import ReconciliationRunner


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "uploads").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="reconciler",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        max_workers=4,
        max_update_retries=1,
        retry_backoff_seconds=0,
        match_policy="first",
        stale_report_minutes=60,
        reaper_interval_minutes=15,
    )


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)


@pytest.fixture()
def runner(test_settings: Settings, session_factory: sessionmaker[Session]) -> Generator[ReconciliationRunner, None, None]:
    yield ReconciliationRunner(test_settings, session_factory)


@pytest.fixture()
def add_booking(session_factory: sessionmaker[Session]) -> Callable[..., int]:
    def _add(
        booking_ref: str,
        flight_number: str,
        departure_date: datetime,
        passengers: list[tuple[str, str]],
        airline_pnr: str | None = None,
    ) -> int:
        with session_factory() as db:
            booking = Booking(
                booking_ref=booking_ref,
                airline_pnr=airline_pnr,
                flight_number=flight_number,
                departure_date=departure_date,
            )
            for first_name, last_name in passengers:
                booking.passengers.append(BookingPassenger(customer=Customer(first_name=first_name, last_name=last_name)))
            db.add(booking)
            db.commit()
            return booking.id

    return _add


@pytest.fixture()
def build_workbook() -> Callable[[list[list[object]]], bytes]:
    def _build(rows: list[list[object]]) -> bytes:
        wb = Workbook()
        ws = wb.active
        for row in rows:
            ws.append(row)
        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    return _build
