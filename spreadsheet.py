"""
Reading uploaded Excel workbooks.

The importer works on a :class:`ParsedWorkbook`: ordered sheets, each an
ordered list of header -> value rows. Nothing else in the code base touches
openpyxl.
"""

import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterator, List, Optional
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from errors import FileFormatError
from logs import log

ALLOWED_EXTENSIONS = {".xlsx", ".xlsm"}


@dataclass(frozen=True)
class Sheet:
    name: str
    rows: List[Dict[str, Any]]


@dataclass(frozen=True)
class ParsedWorkbook:
    sheets: List[Sheet]

    @property
    def sheet_names(self) -> List[str]:
        return [sheet.name for sheet in self.sheets]

    def first_sheet(self) -> Sheet:
        if not self.sheets:
            raise FileFormatError("The workbook does not contain any sheets")
        return self.sheets[0]


def _header_names(header_row) -> List[Optional[str]]:
    headers: List[Optional[str]] = []
    seen = set()
    for cell in header_row:
        if cell is None or str(cell).strip() == "":
            headers.append(None)
            continue
        name = str(cell)
        # first occurrence of a repeated header wins
        headers.append(None if name in seen else name)
        seen.add(name)
    return headers


def iter_sheet_rows(worksheet) -> Iterator[Dict[str, Any]]:
    """Yield each populated data row of ``worksheet`` keyed by its header.

    The first row is the header; columns without a header are dropped and
    rows whose cells are all empty are skipped.
    """
    rows = worksheet.iter_rows(values_only=True)
    header_row = next(rows, None)
    if header_row is None:
        return
    headers = _header_names(header_row)
    for raw in rows:
        if not any(cell is not None and str(cell).strip() != "" for cell in raw):
            continue
        yield {header: value for header, value in zip(headers, raw) if header is not None}


def read_workbook(path: Path) -> ParsedWorkbook:
    """Load every sheet of the workbook at ``path`` into memory.

    Raises:
        FileFormatError: if the file is not a readable Excel workbook.
    """
    try:
        workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError, ValueError) as exc:
        raise FileFormatError(f"Could not read the uploaded workbook: {exc}") from exc

    try:
        sheets = [Sheet(name=ws.title, rows=list(iter_sheet_rows(ws))) for ws in workbook.worksheets]
    finally:
        workbook.close()

    log.debug("Read workbook '%s' with sheets %s", path, [sheet.name for sheet in sheets])
    return ParsedWorkbook(sheets=sheets)


@contextmanager
def staged_upload(stream: BinaryIO, filename: Optional[str], upload_dir: Path) -> Iterator[Path]:
    """Copy an uploaded file to a temporary path, removing it on exit.

    The temporary file is deleted whether or not the body of the ``with``
    block succeeds.
    """
    name = (filename or "").strip()
    if not name:
        raise FileFormatError("No file uploaded")
    suffix = Path(name).suffix.lower()
    if suffix not in ALLOWED_EXTENSIONS:
        raise FileFormatError("Only Excel workbooks (.xlsx, .xlsm) can be uploaded")

    upload_dir.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(dir=upload_dir, suffix=suffix, delete=False)
    staged = Path(handle.name)
    try:
        with handle:
            shutil.copyfileobj(stream, handle)
        yield staged
    finally:
        staged.unlink(missing_ok=True)
        log.debug("Removed staged upload '%s'", staged)
