from collections.abc import Iterable, Iterator, Mapping
from datetime import date, datetime
import re

from reconciler.schemas import CanonicalRecord


MAPPING_KEYS = (
    "pnr",
    "bookingRef",
    "ticketNumber",
    "passengerName",
    "firstName",
    "lastName",
    "flightNumber",
    "flightDate",
    "amount",
)

# Tried in order after ISO-8601.
DATE_FORMATS = (
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d %b %Y",
    "%d-%b-%Y",
    "%Y/%m/%d",
)

_AMOUNT_NOISE = re.compile(r"[^0-9.\-]")


def map_row(row: Mapping[str, object], mapping: Mapping[str, str] | None = None) -> CanonicalRecord:
    mapping = mapping or {}

    airline_reference = _text(_field(row, mapping, "pnr")) or _text(_field(row, mapping, "bookingRef"))
    return CanonicalRecord(
        airline_reference=airline_reference,
        ticket_number=_text(_field(row, mapping, "ticketNumber")) or None,
        passenger_name=_passenger_name(row, mapping),
        flight_number=_text(_field(row, mapping, "flightNumber")),
        flight_date=parse_flight_date(_field(row, mapping, "flightDate")),
        amount=parse_amount(_field(row, mapping, "amount")),
    )


def map_rows(rows: Iterable[Mapping[str, object]], mapping: Mapping[str, str] | None = None) -> Iterator[CanonicalRecord]:
    for row in rows:
        yield map_row(row, mapping)


def _field(row: Mapping[str, object], mapping: Mapping[str, str], key: str) -> object:
    column = mapping.get(key)
    return row.get(column if column else key)


def _passenger_name(row: Mapping[str, object], mapping: Mapping[str, str]) -> str:
    mapped_column = mapping.get("passengerName")
    if mapped_column:
        direct = _text(row.get(mapped_column))
        if direct:
            return direct

    first_column = mapping.get("firstName")
    last_column = mapping.get("lastName")
    if first_column and last_column:
        return f"{_text(row.get(first_column))} {_text(row.get(last_column))}".strip()

    return _text(row.get("passengerName"))


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        # Spreadsheets hand back ticket numbers and PNR digits as floats.
        return str(int(value))
    return str(value).strip()


def parse_flight_date(value: object) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = _text(value)
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_amount(value: object) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = _AMOUNT_NOISE.sub("", value)
        try:
            return float(cleaned)
        except ValueError:
            return 0.0
    return 0.0
