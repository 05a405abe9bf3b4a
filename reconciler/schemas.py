from dataclasses import dataclass, field
from datetime import datetime


FILE_KIND_CSV = "csv"
FILE_KIND_SPREADSHEET = "spreadsheet"

REPORT_PROCESSING = "processing"
REPORT_COMPLETED = "completed"
REPORT_FAILED = "failed"

MATCHED = "matched"
PARTIAL = "partial"
UNMATCHED = "unmatched"


@dataclass(frozen=True)
class CanonicalRecord:
    airline_reference: str = ""
    ticket_number: str | None = None
    passenger_name: str = ""
    flight_number: str = ""
    flight_date: datetime | None = None
    amount: float = 0.0


@dataclass(frozen=True)
class BookingCandidate:
    id: int
    booking_ref: str
    airline_pnr: str | None
    flight_number: str
    departure_date: datetime
    passenger_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class MatchVerdict:
    status: str
    score: int
    details: dict[str, object] = field(default_factory=dict)
    booking_id: int | None = None


@dataclass(frozen=True)
class ReconciliationSummary:
    report_id: int
    report_number: str
    status: str
    total_records: int
    matched: int
    partial: int
    unmatched: int
    cancelled: bool = False
    error: str | None = None
