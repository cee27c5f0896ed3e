"""
Spreadsheet row normalization.

Uploaded workbooks come from several hand-maintained Excel formats, so the
same column shows up as ``"Item Code"``, ``"item code"`` or ``"itemCode"`` and
prices as ``" RSP+Vat "`` or ``"RSP + VAT"``. Each record kind has a table of
rules: target field, ordered candidate headers, coercion, default. Supporting
a new spreadsheet format means adding a candidate spelling to a rule.

Headers are matched on their canonical key (lower-cased, whitespace removed),
so candidates only need to be listed once per distinct spelling.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from openpyxl.utils.datetime import from_excel

from config import LEAVE_STATUSES

MAPPING_VERSION = 1

TRUE_WORDS = {"yes", "y", "true", "1"}
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d", "%d.%m.%Y")


class RecordKind(str, Enum):
    PRODUCT = "product"
    SALE = "sale"
    LEAVE = "leave"
    USER = "user"


def canonical_key(header: Any) -> str:
    return "".join(str(header).split()).lower()


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ---------------------------------------------------------------------------
# Coercions. Each raises ValueError when the cell cannot be interpreted.
# ---------------------------------------------------------------------------


def to_text(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        # Excel stores codes such as 100234 as floats
        return str(int(value))
    return str(value).strip()


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).replace(",", "").replace("\xa0", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        raise ValueError(f"'{value}' is not a number") from None


def to_integer(value: Any) -> int:
    number = to_number(value)
    if not number.is_integer():
        raise ValueError(f"'{value}' is not a whole number")
    return int(number)


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in TRUE_WORDS


def to_calendar_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value <= 0:
            raise ValueError(f"'{value}' is not a date")
        converted = from_excel(value)
        if not isinstance(converted, datetime):
            raise ValueError(f"'{value}' is not a date")
        return converted.date().isoformat()

    raw = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw).date().isoformat()
    except ValueError:
        raise ValueError(f"'{value}' is not a date") from None


def one_of(choices: Sequence[str]) -> Callable[[Any], str]:
    allowed = tuple(choices)

    def coerce(value: Any) -> str:
        lowered = str(value).strip().lower()
        if lowered not in allowed:
            raise ValueError(f"'{value}' is not one of {', '.join(allowed)}")
        return lowered

    return coerce


@dataclass(frozen=True)
class FieldRule:
    """How one canonical field is read from a spreadsheet row.

    ``default`` applies when no candidate header carries a value. When a
    value is present but cannot be coerced the field becomes ``None``, unless
    the rule is ``lenient``, in which case the default is used instead.
    """

    field: str
    candidates: Tuple[str, ...]
    coerce: Callable[[Any], Any] = to_text
    default: Any = None
    lenient: bool = False

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(canonical_key(candidate) for candidate in self.candidates)


PRODUCT_RULES = (
    FieldRule("brand", ("Brand",)),
    FieldRule("item_code", ("Item Code", "Item No", "ItemCode", "Code")),
    FieldRule("model_number", ("Model", "Model no.", "Model Number", "modelNo"), default=""),
    FieldRule("ean", ("EAN", "Barcode"), default=""),
    FieldRule("description", ("Item Description", "Description"), default=""),
    FieldRule("price", ("Price", "RSP+Vat", "rspVat"), to_number, default=0.0, lenient=True),
    FieldRule("cost", ("Cost",), to_number),
    FieldRule("rsp", ("RSP",), to_number),
    FieldRule("margin", ("New Margin", "Margin"), to_number),
    FieldRule("department", ("Department",)),
    FieldRule("category", ("Category",)),
    FieldRule("status", ("Status",), default="Active"),
    FieldRule("stock", ("Stock", "Stock Qty", "Qty"), to_integer),
)

SALE_RULES = (
    FieldRule("salesman_id", ("Salesman ID", "Salesman Code", "Salesman")),
    FieldRule("salesman_name", ("Salesman Name", "Salesman", "Name")),
    FieldRule("date", ("Date", "Sale Date"), to_calendar_date),
    FieldRule("brand", ("Brand",)),
    FieldRule("item_code", ("Item Code", "Item No", "Code")),
    FieldRule("quantity", ("Quantity", "Qty"), to_integer, default=1),
    FieldRule("price", ("Price", "RSP+Vat", "rspVat", "Unit Price"), to_number),
    FieldRule("total_amount", ("Total Amount", "Total", "Amount"), to_number),
)

LEAVE_RULES = (
    FieldRule("salesman_id", ("Salesman ID", "Salesman")),
    FieldRule("salesman_name", ("Salesman Name", "Salesman", "Name")),
    FieldRule("from_date", ("From Date", "From", "Date"), to_calendar_date),
    FieldRule("to_date", ("To Date", "To", "Date"), to_calendar_date),
    FieldRule("reason", ("Reason",)),
    FieldRule("status", ("Status",), one_of(LEAVE_STATUSES), default="approved", lenient=True),
    FieldRule(
        "leave_type",
        ("Leave Type", "Type"),
        one_of(("sick", "personal", "vacation", "emergency", "other")),
        default="other",
        lenient=True,
    ),
    FieldRule("is_critical", ("Is Critical", "Critical"), to_bool, default=False),
)

USER_RULES = (
    FieldRule("username", ("Username", "User Name", "Login")),
    FieldRule("password", ("Password",)),
    FieldRule("name", ("Name", "Full Name")),
    FieldRule("role", ("Role",), one_of(("admin", "salesman"))),
    FieldRule("salesman_id", ("Salesman ID",)),
    FieldRule("email", ("Email", "E-mail", "Email Address")),
)

FIELD_MAP: Dict[RecordKind, Tuple[FieldRule, ...]] = {
    RecordKind.PRODUCT: PRODUCT_RULES,
    RecordKind.SALE: SALE_RULES,
    RecordKind.LEAVE: LEAVE_RULES,
    RecordKind.USER: USER_RULES,
}


@dataclass
class NormalizedRow:
    record: Dict[str, Any]
    problems: List[str] = field(default_factory=list)

    def present(self) -> Dict[str, Any]:
        """The record without unset fields, ready for model validation."""
        return {key: value for key, value in self.record.items() if value is not None}


def _index_row(row: Mapping[Any, Any]) -> Dict[str, Any]:
    lookup: Dict[str, Any] = {}
    for header, value in row.items():
        if header is None or is_blank(value):
            continue
        lookup.setdefault(canonical_key(header), value)
    return lookup


def normalize_row(
    kind: RecordKind,
    row: Mapping[Any, Any],
    defaults: Optional[Mapping[str, Any]] = None,
) -> NormalizedRow:
    """Map one raw spreadsheet row onto the canonical fields of ``kind``.

    Args:
        kind: Record kind whose rule table applies.
        row: Header -> cell value mapping as read from the sheet.
        defaults: Per-call defaults that override the table defaults, e.g.
            the sheet name for a product's brand.

    Returns:
        NormalizedRow: every field of the table, plus a message for each
            value that was present but could not be coerced.
    """
    lookup = _index_row(row)
    defaults = defaults or {}
    result = NormalizedRow(record={})

    for rule in FIELD_MAP[RecordKind(kind)]:
        default = defaults.get(rule.field, rule.default)
        raw = next((lookup[key] for key in rule.keys if key in lookup), None)
        if raw is None:
            result.record[rule.field] = default
            continue
        try:
            result.record[rule.field] = rule.coerce(raw)
        except (ValueError, TypeError, OverflowError) as exc:
            result.problems.append(f"{rule.field}: {exc}")
            result.record[rule.field] = default if rule.lenient else None

    return result
