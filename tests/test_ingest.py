from datetime import datetime
import io
import zipfile

import pytest

from reconciler.errors import ParseError, UnsupportedFileTypeError
from reconciler.ingest import detect_file_kind, iter_rows


def test_csv_rows_keep_order_and_skip_header() -> None:
    content = "pnr,passengerName,amount\nBK1,Somchai Jaidee,1200\nBK2,Malee Sukjai,950\n".encode("utf-8")

    rows = list(iter_rows(content, "csv"))

    assert rows == [
        {"pnr": "BK1", "passengerName": "Somchai Jaidee", "amount": "1200"},
        {"pnr": "BK2", "passengerName": "Malee Sukjai", "amount": "950"},
    ]


def test_csv_accepts_bom_blank_lines_and_short_rows() -> None:
    content = "\ufeffpnr,flightNumber,amount\n\nBK1,TG101\n".encode("utf-8")

    rows = list(iter_rows(content, "csv"))

    assert rows == [{"pnr": "BK1", "flightNumber": "TG101", "amount": ""}]


def test_empty_files_yield_no_rows() -> None:
    assert list(iter_rows(b"", "csv")) == []
    assert list(iter_rows(b"", "spreadsheet")) == []
    assert list(iter_rows(b"pnr,amount\n", "csv")) == []


def test_csv_row_wider_than_header_is_a_parse_error() -> None:
    content = b"pnr,amount\nBK1,100,extra\n"

    with pytest.raises(ParseError):
        list(iter_rows(content, "csv"))


def test_csv_invalid_utf8_is_a_parse_error() -> None:
    with pytest.raises(ParseError):
        list(iter_rows(b"pnr\n\xff\xfe\xfa\n", "csv"))


def test_spreadsheet_reads_first_sheet_with_native_types(build_workbook) -> None:
    content = build_workbook(
        [
            ["PNR", "Flight", "Date", "Fare"],
            ["BK1", "TG101", datetime(2024, 12, 1), 2500],
            [None, None, None, None],
            ["BK2", "PG215", datetime(2024, 12, 2), 4500.5],
        ]
    )

    rows = list(iter_rows(content, "spreadsheet"))

    assert len(rows) == 2
    assert rows[0]["PNR"] == "BK1"
    assert rows[0]["Date"] == datetime(2024, 12, 1)
    assert rows[0]["Fare"] == 2500
    assert rows[1]["Fare"] == 4500.5


def test_corrupt_workbook_is_a_parse_error() -> None:
    with pytest.raises(ParseError):
        list(iter_rows(b"PK\x03\x04 definitely not a workbook", "spreadsheet"))


def test_truncated_worksheet_xml_is_a_parse_error(build_workbook) -> None:
    content = build_workbook([["PNR", "Flight"], *[[f"BK{index}", "TG101"] for index in range(20)]])
    source = zipfile.ZipFile(io.BytesIO(content))
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as target:
        for item in source.infolist():
            data = source.read(item.filename)
            if item.filename == "xl/worksheets/sheet1.xml":
                data = data[: len(data) // 2]
            target.writestr(item, data)

    with pytest.raises(ParseError):
        list(iter_rows(buffer.getvalue(), "spreadsheet"))


def test_detect_file_kind() -> None:
    assert detect_file_kind("manifest.CSV") == "csv"
    assert detect_file_kind("thai-airways-dec.xlsx") == "spreadsheet"
    with pytest.raises(UnsupportedFileTypeError):
        detect_file_kind("manifest.pdf")
