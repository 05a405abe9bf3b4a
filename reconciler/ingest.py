from collections.abc import Iterator
import csv
import io
from pathlib import Path

from openpyxl import load_workbook

from reconciler.errors import ParseError, UnsupportedFileTypeError
from reconciler.schemas import FILE_KIND_CSV, FILE_KIND_SPREADSHEET


SPREADSHEET_SUFFIXES = (".xlsx", ".xlsm")


def detect_file_kind(file_name: str) -> str:
    suffix = Path(file_name).suffix.lower()
    if suffix == ".csv":
        return FILE_KIND_CSV
    if suffix in SPREADSHEET_SUFFIXES:
        return FILE_KIND_SPREADSHEET
    raise UnsupportedFileTypeError(f"unsupported file type: {file_name!r} (expected .csv, .xlsx or .xlsm)")


def iter_rows(content: bytes, file_kind: str) -> Iterator[dict[str, object]]:
    if file_kind == FILE_KIND_CSV:
        return _iter_csv_rows(content)
    if file_kind == FILE_KIND_SPREADSHEET:
        return _iter_spreadsheet_rows(content)
    raise UnsupportedFileTypeError(f"unsupported file kind: {file_kind!r}")


def _iter_csv_rows(content: bytes) -> Iterator[dict[str, object]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError(f"file is not valid UTF-8: {exc}") from exc

    reader = csv.reader(io.StringIO(text, newline=""))
    header: list[str] | None = None
    try:
        for line_number, values in enumerate(reader, start=1):
            if not any(value.strip() for value in values):
                continue
            if header is None:
                header = [value.strip() for value in values]
                continue
            if len(values) > len(header):
                raise ParseError(
                    f"line {line_number} has {len(values)} fields but the header has {len(header)}"
                )
            padded = values + [""] * (len(header) - len(values))
            yield {name: value for name, value in zip(header, padded) if name}
    except csv.Error as exc:
        raise ParseError(f"malformed delimited text: {exc}") from exc


def _iter_spreadsheet_rows(content: bytes) -> Iterator[dict[str, object]]:
    if not content:
        return

    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise ParseError(f"could not open workbook: {exc}") from exc

    try:
        if not wb.worksheets:
            return
        # Only the first sheet carries the manifest.
        ws = wb.worksheets[0]
        header: list[str] | None = None
        for row in ws.iter_rows(values_only=True):
            if all(value is None or (isinstance(value, str) and not value.strip()) for value in row):
                continue
            if header is None:
                header = ["" if value is None else str(value).strip() for value in row]
                continue
            yield {name: value for name, value in zip(header, row) if name}
    except Exception as exc:
        raise ParseError(f"could not read worksheet: {exc}") from exc
    finally:
        wb.close()
