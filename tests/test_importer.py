"""Tests for the Excel bulk import policies."""

import io
from datetime import date

import pytest

import importer
from database import LEAVES, PRODUCTS, SALES, USERS
from errors import FileFormatError
from normalizer import MAPPING_VERSION, RecordKind
from schemas import UserCreate
from spreadsheet import ParsedWorkbook, Sheet, read_workbook
from users import create_user

IMPORT_DAY = date(2024, 3, 1)


def _workbook(**sheets) -> ParsedWorkbook:
    return ParsedWorkbook(sheets=[Sheet(name=name, rows=rows) for name, rows in sheets.items()])


def test_sales_import_derives_total_amount(db):
    workbook = _workbook(
        Showroom=[
            {"Salesman": "Alice", "Item Code": "A1", "Quantity": 2, "RSP+VAT": 50},
            {"Salesman": "Bob", "Item Code": "B7", "Quantity": 3, "RSP+VAT": 30, "Total Amount": 75},
        ]
    )

    summary = importer.import_sales(db, workbook, today=IMPORT_DAY)

    assert (summary.inserted, summary.skipped, summary.total_rows) == (2, 0, 2)
    alice = db[SALES].find_one({"salesmanId": "Alice"})
    bob = db[SALES].find_one({"salesmanId": "Bob"})
    assert alice["totalAmount"] == 100
    assert bob["totalAmount"] == 75
    assert alice["brand"] == "Showroom"
    assert alice["date"] == "2024-03-01"
    assert alice["salesmanName"] == "Alice"


def test_sales_import_appends_on_reimport(db):
    workbook = _workbook(Sheet1=[{"Salesman": "Alice", "Item Code": "A1", "Quantity": 1, "Price": 10}])

    importer.import_sales(db, workbook, today=IMPORT_DAY)
    importer.import_sales(db, workbook, today=IMPORT_DAY)

    assert db[SALES].count_documents({}) == 2


def test_sales_import_skips_invalid_rows_without_aborting(db):
    workbook = _workbook(
        Sheet1=[
            {"Item Code": "A1", "Quantity": 1, "Price": 10},
            {"Salesman": "Alice", "Item Code": "A2", "Quantity": 0, "Price": 10},
            {"Salesman": "Alice", "Item Code": "A3", "Quantity": 1, "Price": 10, "Date": "someday"},
            {"Salesman": "Alice", "Item Code": "A4", "Quantity": 1, "Price": 10, "Date": "15/02/2024"},
        ]
    )

    summary = importer.import_sales(db, workbook, today=IMPORT_DAY)

    assert (summary.inserted, summary.skipped, summary.total_rows) == (1, 3, 4)
    assert [issue["row"] for issue in summary.issues] == [2, 3, 4]
    assert all(issue["level"] == "error" for issue in summary.issues)
    assert db[SALES].find_one({})["date"] == "2024-02-15"


def test_sales_import_rejects_empty_sheet(db):
    with pytest.raises(FileFormatError) as excinfo:
        importer.import_sales(db, _workbook(Sheet1=[]))
    assert excinfo.value.inserted == 0


def test_product_import_is_idempotent(db):
    workbook = _workbook(
        Samsung=[
            {"Item Code": "S-1", "Description": "Fridge", "RSP+Vat": 1200},
            {"Item Code": "S-2", "Description": "Washer", "RSP+Vat": 800},
        ],
        LG=[{"Item Code": "L-1", "Brand": "LG Electronics", "Price": 999}],
    )

    first = importer.import_products(db, workbook)
    second = importer.import_products(db, workbook)

    assert first.inserted == second.inserted == 3
    assert db[PRODUCTS].count_documents({}) == 3
    assert db[PRODUCTS].find_one({"itemCode": "S-1"})["brand"] == "Samsung"
    assert db[PRODUCTS].find_one({"itemCode": "L-1"})["brand"] == "LG Electronics"


def test_product_import_skips_duplicate_codes_in_one_file(db):
    workbook = _workbook(
        Samsung=[{"Item Code": "S-1", "Price": 10}],
        Other=[{"Item Code": "S-1", "Price": 20}, {"Description": "No code", "Price": 5}],
    )

    summary = importer.import_products(db, workbook)

    assert (summary.inserted, summary.skipped, summary.total_rows) == (2, 1, 3)
    assert db[PRODUCTS].find_one({"itemCode": "S-1"})["price"] == 10
    assert summary.issues[0]["sheet"] == "Other"


def test_product_import_keeps_catalogue_when_file_is_empty(db):
    importer.import_products(db, _workbook(Samsung=[{"Item Code": "S-1", "Price": 10}]))

    with pytest.raises(FileFormatError) as excinfo:
        importer.import_products(db, _workbook(Samsung=[{"Item Code": "S-2", "Price": -5}]))

    assert excinfo.value.inserted == 0
    assert db[PRODUCTS].count_documents({}) == 1


def test_product_import_reports_unparseable_price_as_warning(db):
    summary = importer.import_products(db, _workbook(Samsung=[{"Item Code": "S-1", "Price": "TBC"}]))

    assert summary.inserted == 1
    assert summary.issues[0]["level"] == "warning"
    assert db[PRODUCTS].find_one({"itemCode": "S-1"})["price"] == 0


def test_user_import_counts_inserted_and_skipped(db):
    create_user(db, UserCreate(username="carol", name="Carol", role="salesman", salesman_id="S3", password="x"))
    workbook = _workbook(
        Users=[
            {"Username": "alice", "Password": "a", "Name": "Alice", "Role": "salesman", "Salesman ID": "S1"},
            {"Username": "bob", "Name": "Bob", "Role": "salesman", "Salesman ID": "S2"},
            {"Username": "Carol", "Password": "c", "Name": "Carol", "Role": "salesman", "Salesman ID": "S9"},
            {"Username": "dave", "Password": "d", "Name": "Dave", "Role": "salesman", "Salesman ID": "S4"},
            {"Username": "erin", "Password": "e", "Name": "Erin", "Role": "admin"},
        ]
    )

    summary = importer.import_users(db, workbook)

    assert (summary.inserted, summary.skipped, summary.total_rows) == (3, 2, 5)
    assert db[USERS].count_documents({}) == 4
    messages = [issue["message"] for issue in summary.issues]
    assert "Missing Password" in messages[0]
    assert "already exists" in messages[1]
    assert "passwordHash" in db[USERS].find_one({"username": "dave"})


def test_leave_import_skips_existing_start_dates(db):
    workbook = _workbook(
        Leaves=[
            {"Salesman ID": "S1", "Salesman Name": "Alice", "From Date": "2024-02-15", "To Date": "2024-02-16"},
            {"Salesman ID": "S1", "Salesman Name": "Alice", "From Date": "2024-02-15", "Reason": "again"},
            {"Salesman ID": "S2", "Salesman Name": "Bob", "Date": "2024-02-15", "Type": "Sick"},
        ]
    )

    summary = importer.import_leaves(db, workbook, default_status="pending")

    assert (summary.inserted, summary.skipped, summary.total_rows) == (2, 1, 3)
    bob = db[LEAVES].find_one({"salesmanId": "S2"})
    assert bob["status"] == "pending"
    assert bob["leaveType"] == "sick"
    assert bob["toDate"] == bob["fromDate"] == bob["date"] == "2024-02-15"


def test_summary_response_shape(db):
    summary = importer.run_import(
        RecordKind.SALE,
        db,
        _workbook(Sheet1=[{"Salesman": "Alice", "Item Code": "A1", "Price": 10}]),
    )

    response = summary.as_response()
    assert response["success"] is True
    assert response["inserted"] == 1
    assert response["totalRows"] == 1
    assert response["mappingVersion"] == MAPPING_VERSION


def test_issue_list_is_capped(db):
    rows = [{"Item Code": f"A{i}", "Price": 1} for i in range(importer.ROW_ISSUE_LIMIT + 10)]

    summary = importer.import_sales(db, _workbook(Sheet1=rows), today=IMPORT_DAY)

    assert summary.skipped == importer.ROW_ISSUE_LIMIT + 10
    assert len(summary.issues) == importer.ROW_ISSUE_LIMIT


def test_import_upload_reads_file_and_cleans_up(db, tmp_path, workbook_factory):
    path = workbook_factory({"Samsung": [["Item Code", "RSP+Vat"], ["S-1", 10], ["S-2", 20]]})
    upload_dir = tmp_path / "uploads"

    with path.open("rb") as stream:
        summary = importer.import_upload(RecordKind.PRODUCT, db, stream, "catalogue.xlsx", upload_dir)

    assert summary.inserted == 2
    assert list(upload_dir.iterdir()) == []


def test_import_upload_rejects_broken_workbook(db, tmp_path):
    upload_dir = tmp_path / "uploads"
    with pytest.raises(FileFormatError) as excinfo:
        importer.import_upload(RecordKind.SALE, db, io.BytesIO(b"garbage"), "sales.xlsx", upload_dir)
    assert excinfo.value.inserted == 0
    assert list(upload_dir.iterdir()) == []


def test_workbook_file_round_trip_through_sales_import(db, workbook_factory):
    path = workbook_factory(
        {"Showroom": [["Salesman", "Item Code", "Quantity", "RSP+VAT"], ["Alice", "A1", 2, 50], ["Bob", "B1", 1, 70]]}
    )

    summary = importer.import_sales(db, read_workbook(path), today=IMPORT_DAY)

    assert summary.inserted == 2
    totals = sorted(doc["totalAmount"] for doc in db[SALES].find({}))
    assert totals == [70, 100]
