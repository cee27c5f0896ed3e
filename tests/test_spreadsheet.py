"""Tests for workbook reading and upload staging."""

import io
from datetime import datetime

import pytest

from errors import FileFormatError
from spreadsheet import ParsedWorkbook, read_workbook, staged_upload


def test_read_workbook_keeps_sheet_order_and_skips_empty_rows(workbook_factory):
    path = workbook_factory(
        {
            "Samsung": [
                ["Item Code", "Description", None, "Price"],
                ["S-1", "Fridge", "ignored", 1200],
                [None, None, None, None],
                ["S-2", "Washer", None, 800.5],
            ],
            "LG": [["Item Code", "Price"], ["L-1", 999]],
        }
    )

    workbook = read_workbook(path)

    assert workbook.sheet_names == ["Samsung", "LG"]
    samsung = workbook.first_sheet()
    assert samsung.rows == [
        {"Item Code": "S-1", "Description": "Fridge", "Price": 1200},
        {"Item Code": "S-2", "Description": "Washer", "Price": 800.5},
    ]
    assert workbook.sheets[1].rows == [{"Item Code": "L-1", "Price": 999}]


def test_read_workbook_returns_dates_as_datetimes(workbook_factory):
    path = workbook_factory({"Sales": [["Date"], [datetime(2024, 2, 15)]]})
    rows = read_workbook(path).first_sheet().rows
    assert rows[0]["Date"].date().isoformat() == "2024-02-15"


def test_read_workbook_header_only_sheet_has_no_rows(workbook_factory):
    path = workbook_factory({"Empty": [["Item Code", "Price"]]})
    assert read_workbook(path).first_sheet().rows == []


def test_read_workbook_rejects_non_excel_bytes(tmp_path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"this is not a zip archive")
    with pytest.raises(FileFormatError):
        read_workbook(path)


def test_first_sheet_of_empty_workbook_raises():
    with pytest.raises(FileFormatError):
        ParsedWorkbook(sheets=[]).first_sheet()


def test_staged_upload_removes_file_after_use(tmp_path):
    upload_dir = tmp_path / "uploads"
    with staged_upload(io.BytesIO(b"payload"), "prices.xlsx", upload_dir) as path:
        assert path.parent == upload_dir
        assert path.suffix == ".xlsx"
        assert path.read_bytes() == b"payload"
    assert not path.exists()
    assert list(upload_dir.iterdir()) == []


def test_staged_upload_removes_file_when_body_fails(tmp_path):
    upload_dir = tmp_path / "uploads"
    with pytest.raises(RuntimeError):
        with staged_upload(io.BytesIO(b"payload"), "prices.xlsx", upload_dir):
            raise RuntimeError("import failed")
    assert list(upload_dir.iterdir()) == []


@pytest.mark.parametrize("filename", ["prices.csv", "prices.xls", "", None])
def test_staged_upload_rejects_unsupported_files(tmp_path, filename):
    with pytest.raises(FileFormatError):
        with staged_upload(io.BytesIO(b"payload"), filename, tmp_path):
            pass
