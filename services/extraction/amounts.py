"""Money, date and VAT-number parsing helpers.

Pure functions with no external calls; shared by the structured parser and the
OCR pattern method.
"""

import math
import re
from collections import Counter
from collections.abc import Iterable
from datetime import date, datetime

from services.extraction.schema import DEFAULT_VAT_RATE, DocumentType, ValidationFlag

CURRENCY_MARKERS = ("€", "$", "£", "eur", "usd", "gbp")

# "1,234.56", "1234.56", "1234", "211,77" (European decimal comma)
AMOUNT_RE = re.compile(r"-?\d{1,3}(?:,\d{3})+(?:\.\d+)?|-?\d+(?:[.,]\d+)?")

IRISH_VAT_NUMBER_RE = re.compile(r"\bIE\s*([0-9]{7}[A-Z]{1,2})\b", re.IGNORECASE)
# Any EU-style number that follows an explicit VAT label, e.g. "VAT No: GB123456789"
LABELLED_VAT_NUMBER_RE = re.compile(
    r"\b(?:vat|tax)\s*(?:reg(?:istration)?|no|number|id)?\.?\s*(?:no\.?|number)?\s*[:#]?\s*"
    r"([A-Z]{2}\s?[0-9A-Z]{8,12})\b",
    re.IGNORECASE,
)

DATE_PATTERNS = [
    # ISO first so "2024-01-15" is not read as day/month/year
    (re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b"), "ymd"),
    (re.compile(r"\b(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})\b"), "dmy"),
    (re.compile(r"\b(\d{1,2})[/.-](\d{1,2})[/.-](\d{2})\b"), "dmy2"),
    (
        re.compile(
            r"\b(\d{1,2})(?:st|nd|rd|th)?\s+"
            r"(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?,?\s+(\d{4})\b",
            re.IGNORECASE,
        ),
        "d_month_y",
    ),
]

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}  # fmt: skip

PERCENT_RE = re.compile(r"(\d{1,2}(?:\.\d{1,2})?)\s*%")
INVOICE_STRUCTURE_RE = re.compile(r"\b(?:total|subtotal|sub-total|invoice)\b", re.IGNORECASE)

# Labels that are never a business name even though they are "non-numeric"
GENERIC_LABELS = {
    "invoice", "tax invoice", "vat invoice", "receipt", "credit note", "statement",
    "report", "vat", "tax", "total", "subtotal", "date", "description", "amount",
}  # fmt: skip


def parse_amount(value: object, allow_negative: bool = False) -> float | None:
    """Parse a money value such as "€1,234.56", "211,77" or 42.

    Returns None for unparseable, NaN or (unless allowed) negative values.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int | float):
        amount = float(value)
    else:
        text = str(value).strip().lower()
        for marker in CURRENCY_MARKERS:
            text = text.replace(marker, "")
        text = text.replace(" ", "").replace("\xa0", "")
        negative = text.startswith("(") and text.endswith(")")
        text = text.strip("()")
        match = AMOUNT_RE.search(text)
        if not match or match.group(0) != text:
            return None
        amount = _number_from_token(match.group(0))
        if amount is None:
            return None
        if negative:
            amount = -amount

    if math.isnan(amount) or math.isinf(amount):
        return None
    if amount < 0 and not allow_negative:
        return None
    return round(amount, 2)


def _number_from_token(token: str) -> float | None:
    if "," in token and "." not in token:
        head, _, tail = token.rpartition(",")
        if len(tail) == 2 and head.count(",") == 0:
            token = f"{head}.{tail}"
        else:
            token = token.replace(",", "")
    else:
        token = token.replace(",", "")
    try:
        return float(token)
    except ValueError:
        return None


def find_amounts(text: str) -> list[float]:
    """Return every non-negative number appearing in free text."""
    amounts: list[float] = []
    for match in AMOUNT_RE.finditer(text):
        amount = _number_from_token(match.group(0))
        if amount is not None and amount >= 0 and not math.isnan(amount):
            amounts.append(round(amount, 2))
    return amounts


def is_numeric_like(value: str) -> bool:
    """True if the value is a number, money amount or percentage."""
    stripped = value.strip().rstrip("%")
    return parse_amount(stripped, allow_negative=True) is not None


def contains_currency(value: str) -> bool:
    lowered = value.lower()
    return any(marker in lowered for marker in CURRENCY_MARKERS)


def extract_irish_vat_number(text: str) -> str | None:
    """Find an Irish VAT number (IE + 7 digits + 1-2 letters).

    The prefix is normalized to uppercase "IE"; the rest keeps its case.
    """
    match = IRISH_VAT_NUMBER_RE.search(text)
    if match:
        return f"IE{match.group(1)}"
    return None


def extract_vat_number(text: str) -> str | None:
    """Irish VAT number if present, else any labelled EU VAT number."""
    irish = extract_irish_vat_number(text)
    if irish:
        return irish
    match = LABELLED_VAT_NUMBER_RE.search(text)
    if match:
        candidate = match.group(1).replace(" ", "")
        # Needs at least one digit; "VAT Summary" style words are not numbers
        if any(ch.isdigit() for ch in candidate):
            return candidate.upper()
    return None


def validate_irish_vat_number(vat_number: str | None) -> dict[str, object]:
    """Check an Irish VAT number and report a compliance level.

    Returns:
        Dict with is_valid, vat_number (normalized), errors, warnings,
        compliance_level (COMPLIANT | WARNING | NON_COMPLIANT)
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not vat_number:
        return {
            "is_valid": False,
            "vat_number": None,
            "errors": ["VAT number is required"],
            "warnings": warnings,
            "compliance_level": "NON_COMPLIANT",
        }

    normalized = re.sub(r"\s", "", vat_number).upper()
    if not re.fullmatch(r"IE[0-9]{7}[A-Z]{1,2}", normalized):
        errors.append("Invalid Irish VAT number format (expected IE + 7 digits + 1-2 letters)")
        if not normalized.startswith("IE"):
            errors.append('Irish VAT numbers must start with "IE"')
        return {
            "is_valid": False,
            "vat_number": normalized,
            "errors": errors,
            "warnings": warnings,
            "compliance_level": "NON_COMPLIANT",
        }

    digits = normalized[2:9]
    if digits == "0000000":
        warnings.append("VAT number appears to contain placeholder digits")
    if digits == "1234567":
        warnings.append("VAT number appears to be an example/test number")

    return {
        "is_valid": True,
        "vat_number": normalized,
        "errors": errors,
        "warnings": warnings,
        "compliance_level": "WARNING" if warnings else "COMPLIANT",
    }


def parse_date(value: str) -> date | None:
    """Parse the first day/month/year, ISO or "15 January 2024" date in a string."""
    for pattern, layout in DATE_PATTERNS:
        for match in pattern.finditer(value):
            try:
                if layout == "ymd":
                    year, month, day = (int(g) for g in match.groups())
                elif layout == "dmy":
                    day, month, year = (int(g) for g in match.groups())
                elif layout == "dmy2":
                    day, month, year = (int(g) for g in match.groups())
                    year += 2000
                else:
                    day = int(match.group(1))
                    month = MONTHS[match.group(2).lower()]
                    year = int(match.group(3))
                return date(year, month, day)
            except (ValueError, KeyError):
                continue
    return None


def parse_iso_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        return parse_date(value)


def extract_business_name(candidates: Iterable[str]) -> str | None:
    """First non-trivial, non-numeric, non-currency candidate."""
    for raw in candidates:
        candidate = raw.strip().strip('"').strip()
        if len(candidate) < 3 or not any(ch.isalpha() for ch in candidate):
            continue
        if is_numeric_like(candidate) or contains_currency(candidate):
            continue
        if candidate.lower().rstrip(":") in GENERIC_LABELS:
            continue
        if IRISH_VAT_NUMBER_RE.search(candidate) or ":" in candidate:
            continue
        if parse_date(candidate):
            continue
        return candidate
    return None


def explicit_vat_rate(text: str) -> float | None:
    """Most frequent percentage in the plausible 5-30% range, if any is printed."""
    rates = [float(m) for m in PERCENT_RE.findall(text) if 5 <= float(m) <= 30]
    if not rates:
        return None
    return Counter(rates).most_common(1)[0][0]


def detect_vat_rate(text: str) -> float:
    rate = explicit_vat_rate(text)
    return DEFAULT_VAT_RATE if rate is None else rate


def has_invoice_structure(text: str) -> bool:
    return INVOICE_STRUCTURE_RE.search(text) is not None


def build_validation_flags(
    vat_number: str | None, invoice_date: date | None, vat_found: bool
) -> set[str]:
    """Standard flags every method attaches to its result."""
    flags: set[str] = set()
    if not vat_number:
        flags.add(ValidationFlag.MISSING_VAT_NUMBER.value)
    elif not vat_number.upper().startswith("IE"):
        flags.add(ValidationFlag.NON_IRISH_VAT.value)
    if not vat_found:
        flags.add(ValidationFlag.NO_VAT_FOUND.value)
    if invoice_date is None:
        flags.add(ValidationFlag.MISSING_DATE.value)
    return flags


def detect_document_type(text: str, file_name: str = "") -> DocumentType:
    """Classify a document from keywords in its text and filename."""
    haystack = f"{text} {file_name}".lower()
    if "invoice" in haystack:
        if "credit" in haystack:
            return DocumentType.PURCHASE_INVOICE
        return DocumentType.SALES_INVOICE
    if "receipt" in haystack:
        return DocumentType.SALES_RECEIPT
    if "statement" in haystack or "report" in haystack:
        return DocumentType.PURCHASE_RECEIPT
    return DocumentType.OTHER
