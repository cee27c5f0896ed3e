"""
Excel bulk imports.

Each record kind has one insertion policy:

* products: every sheet, destructive replace of the catalogue
* sales: first sheet, append
* leaves: first sheet, append, rows clashing with an existing leave skipped
* users: first sheet, additive, existing usernames skipped

A row that fails normalization, validation or a uniqueness check is counted
as skipped and never aborts the rest of the batch.
"""

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import PRODUCTS, SALES, insert_documents
from errors import ConflictError, FileFormatError, SalesTrackerError, StoreUnavailableError, ValidationError
from leaves import insert_leave, stamp_approval
from logs import log
from normalizer import MAPPING_VERSION, NormalizedRow, RecordKind, normalize_row
from schemas import Leave, Product, Sale, UserCreate
from spreadsheet import ParsedWorkbook, Sheet, read_workbook, staged_upload
from users import create_user

ROW_ISSUE_LIMIT = 50
FIRST_DATA_ROW = 2

REQUIRED_USER_COLUMNS = (
    ("username", "Username"),
    ("password", "Password"),
    ("name", "Name"),
    ("role", "Role"),
)


@dataclass
class ImportSummary:
    kind: RecordKind
    inserted: int = 0
    skipped: int = 0
    total_rows: int = 0
    issues: List[Dict[str, Any]] = field(default_factory=list)

    def note(self, sheet: str, row: int, message: str, level: str = "warning") -> None:
        if len(self.issues) < ROW_ISSUE_LIMIT:
            self.issues.append({"sheet": sheet, "row": row, "level": level, "message": message})

    def skip(self, sheet: str, row: int, message: str) -> None:
        self.skipped += 1
        self.note(sheet, row, message, level="error")
        log.debug("Skipped %s row %s:%d: %s", self.kind.value, sheet, row, message)

    def as_response(self) -> dict:
        return {
            "success": True,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "totalRows": self.total_rows,
            "mappingVersion": MAPPING_VERSION,
            "issues": self.issues,
        }


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "row"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def validate_row(model: Type[BaseModel], normalized: NormalizedRow) -> Any:
    """Build ``model`` from a normalized row.

    Raises:
        ValidationError: if required fields are missing or invalid. The
            message includes the coercion problems found while normalizing.
    """
    try:
        return model.model_validate(normalized.present())
    except PydanticValidationError as exc:
        message = "; ".join([*normalized.problems, _describe(exc)])
        raise ValidationError(message) from exc


def _each_row(summary: ImportSummary, sheet: Sheet, handle: Callable[[Dict[str, Any]], Optional[str]]) -> None:
    for position, row in enumerate(sheet.rows, start=FIRST_DATA_ROW):
        summary.total_rows += 1
        try:
            warning = handle(row)
        except (ValidationError, ConflictError) as exc:
            summary.skip(sheet.name, position, exc.message)
            continue
        if warning:
            summary.note(sheet.name, position, warning)


def import_products(db: Database, workbook: ParsedWorkbook) -> ImportSummary:
    """Replace the whole catalogue with the products found in every sheet.

    The brand of a row defaults to the name of its sheet. The first row for
    an item code wins; later rows with the same code are skipped. Nothing is
    deleted when the workbook has no usable product rows.
    """
    summary = ImportSummary(RecordKind.PRODUCT)
    batch: List[Product] = []
    seen_codes = set()

    for sheet in workbook.sheets:
        def handle(row: Dict[str, Any], brand: str = sheet.name) -> Optional[str]:
            normalized = normalize_row(RecordKind.PRODUCT, row, defaults={"brand": brand})
            product = validate_row(Product, normalized)
            if product.item_code:
                if product.item_code in seen_codes:
                    raise ConflictError(f"Duplicate item code '{product.item_code}' in upload")
                seen_codes.add(product.item_code)
            batch.append(product)
            return "; ".join(normalized.problems) or None

        _each_row(summary, sheet, handle)

    if not batch:
        raise FileFormatError("The workbook does not contain any product rows", inserted=0)

    try:
        removed = db[PRODUCTS].delete_many({}).deleted_count
        summary.inserted = insert_documents(db, PRODUCTS, batch)
    except PyMongoError as exc:
        raise StoreUnavailableError(f"Product import failed: {exc}", inserted=summary.inserted) from exc

    log.info("Replaced %d products with %d from sheets %s", removed, summary.inserted, workbook.sheet_names)
    return summary


def import_sales(db: Database, workbook: ParsedWorkbook, today: Optional[date] = None) -> ImportSummary:
    """Append the sales of the first sheet.

    Rows without a date column are dated ``today``; rows without a brand take
    the sheet name. Importing the same file twice stores its sales twice.
    """
    summary = ImportSummary(RecordKind.SALE)
    sheet = workbook.first_sheet()
    defaults = {"brand": sheet.name, "date": (today or date.today()).isoformat()}
    batch: List[Sale] = []

    def handle(row: Dict[str, Any]) -> Optional[str]:
        normalized = normalize_row(RecordKind.SALE, row, defaults=defaults)
        batch.append(validate_row(Sale, normalized))
        return None

    _each_row(summary, sheet, handle)
    if summary.total_rows == 0:
        raise FileFormatError(f"Sheet '{sheet.name}' does not contain any rows", inserted=summary.inserted)

    try:
        summary.inserted = insert_documents(db, SALES, batch)
    except PyMongoError as exc:
        raise StoreUnavailableError(f"Sales import failed: {exc}", inserted=0) from exc
    return summary


def import_leaves(db: Database, workbook: ParsedWorkbook, default_status: str = "approved") -> ImportSummary:
    """Insert the leaves of the first sheet, skipping existing start dates."""
    summary = ImportSummary(RecordKind.LEAVE)
    sheet = workbook.first_sheet()

    def handle(row: Dict[str, Any]) -> Optional[str]:
        normalized = normalize_row(RecordKind.LEAVE, row, defaults={"status": default_status})
        leave = stamp_approval(validate_row(Leave, normalized))
        insert_leave(db, leave)
        summary.inserted += 1
        return "; ".join(normalized.problems) or None

    try:
        _each_row(summary, sheet, handle)
    except PyMongoError as exc:
        raise StoreUnavailableError(f"Leave import failed: {exc}", inserted=summary.inserted) from exc
    if summary.total_rows == 0:
        raise FileFormatError(f"Sheet '{sheet.name}' does not contain any rows", inserted=summary.inserted)
    return summary


def import_users(db: Database, workbook: ParsedWorkbook) -> ImportSummary:
    """Create the accounts of the first sheet that do not exist yet."""
    summary = ImportSummary(RecordKind.USER)
    sheet = workbook.first_sheet()

    def handle(row: Dict[str, Any]) -> Optional[str]:
        normalized = normalize_row(RecordKind.USER, row)
        missing = [label for name, label in REQUIRED_USER_COLUMNS if not normalized.record.get(name)]
        if missing:
            raise ValidationError("; ".join([f"Missing {', '.join(missing)}", *normalized.problems]))
        create_user(db, validate_row(UserCreate, normalized))
        summary.inserted += 1
        return None

    try:
        _each_row(summary, sheet, handle)
    except PyMongoError as exc:
        raise StoreUnavailableError(f"User import failed: {exc}", inserted=summary.inserted) from exc
    if summary.total_rows == 0:
        raise FileFormatError(f"Sheet '{sheet.name}' does not contain any rows", inserted=summary.inserted)
    return summary


def run_import(
    kind: RecordKind,
    db: Database,
    workbook: ParsedWorkbook,
    *,
    leave_default_status: str = "approved",
) -> ImportSummary:
    kind = RecordKind(kind)
    if kind is RecordKind.PRODUCT:
        summary = import_products(db, workbook)
    elif kind is RecordKind.SALE:
        summary = import_sales(db, workbook)
    elif kind is RecordKind.LEAVE:
        summary = import_leaves(db, workbook, default_status=leave_default_status)
    else:
        summary = import_users(db, workbook)

    log.info(
        "Imported %s workbook: %d inserted, %d skipped of %d rows",
        kind.value,
        summary.inserted,
        summary.skipped,
        summary.total_rows,
    )
    return summary


def import_upload(
    kind: RecordKind,
    db: Database,
    stream: BinaryIO,
    filename: Optional[str],
    upload_dir: Path,
    *,
    leave_default_status: str = "approved",
) -> ImportSummary:
    """Stage an uploaded workbook, import it, and remove the staged copy.

    Errors leaving this function always carry the number of records written
    before the failure, zero when the file was rejected outright.
    """
    try:
        with staged_upload(stream, filename, upload_dir) as path:
            workbook = read_workbook(path)
            return run_import(kind, db, workbook, leave_default_status=leave_default_status)
    except SalesTrackerError as exc:
        if exc.inserted is None:
            exc.inserted = 0
        log.warning("Import of '%s' as %s failed: %s", filename, RecordKind(kind).value, exc.message)
        raise
