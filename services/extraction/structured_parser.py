"""Structured table parser for spreadsheets, CSV/TSV, key-value and JSON exports.

Content is first turned into a row/column matrix. Machine-generated tax
reports (e-commerce tax exports, period/country summaries) are recognised by
marker text and read directly; everything else is treated as an invoice or
receipt laid out as a table, with a fallback to the Irish VAT pattern library
when no VAT column can be found.
"""

import asyncio
import csv
import io
import json
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any

import openpyxl

from services.extraction.amounts import (
    IRISH_VAT_NUMBER_RE,
    PERCENT_RE,
    build_validation_flags,
    detect_document_type,
    detect_vat_rate,
    extract_business_name,
    extract_vat_number,
    find_amounts,
    is_numeric_like,
    parse_amount,
    parse_date,
)
from services.extraction.base import ExtractionMethod
from services.extraction.patterns import (
    VATBucket,
    category_bucket,
    deduplicate_matches,
    find_matches,
    route_amount,
)
from services.extraction.schema import (
    DocumentInput,
    DocumentKind,
    DocumentType,
    ExtractedVATData,
    MethodTag,
    ProcessingMethod,
    ValidationFlag,
)
from services.shared.config import Settings

logger = logging.getLogger(__name__)

TAX_REPORT_MARKERS = (
    "vat_extraction_marker",
    "woocommerce_tax_report",
    "tax_summary",
    "country_summary",
    "period_summary",
    "vat_breakdown",
)
EXTRACTION_MARKER = "vat_extraction_marker"

# Checked in order: "VAT Number" must not be mistaken for the VAT amount column
HEADER_ROLES: dict[str, tuple[str, ...]] = {
    "vat_number": ("vat number", "vat no", "vat reg", "vat id", "tax id", "tax number"),
    "vat": ("vat", "tax"),
    "total": ("total", "amount", "gross"),
    "date": ("date",),
    "business": ("business", "company", "supplier", "vendor", "name"),
}
VAT_NUMBER_LABELS = HEADER_ROLES["vat_number"]
SUMMARY_ROW_PREFIXES = ("total", "subtotal", "sub-total", "grand total")

TAX_REPORT_CONFIDENCE = 0.9
MARKER_CONFIDENCE = 0.95
INVOICE_BASE_CONFIDENCE = 0.8
MAX_CONFIDENCE = 0.95


class TableFormat(str, Enum):
    CSV = "csv"
    TSV = "tsv"
    KEY_VALUE = "key_value"
    JSON = "json"


@dataclass
class Table:
    """Row/column matrix of cell strings.

    key_value tables hold label/value pairs, so their first row is never a header.
    """

    rows: list[list[str]]
    key_value: bool = False

    @property
    def text(self) -> str:
        return "\n".join(" ".join(cell for cell in row if cell) for row in self.rows)


def detect_format(content: str, file_name: str = "") -> TableFormat | None:
    """Detect the layout of a text blob.

    Order: CSV, TSV, key-value, JSON. JSON documents are excluded from the
    earlier checks because they always contain commas and colons.
    """
    stripped = content.strip()
    if not stripped:
        return None

    suffix = PurePath(file_name).suffix.lower()
    looks_json = stripped[0] in "{["
    first_line = stripped.splitlines()[0]

    if suffix == ".csv" or (
        "," in stripped and not looks_json and first_line.count("\t") <= first_line.count(",")
    ):
        return TableFormat.CSV
    if suffix == ".tsv" or ("\t" in stripped and not looks_json):
        return TableFormat.TSV
    if ":" in stripped and "\n" in stripped and not looks_json:
        return TableFormat.KEY_VALUE
    if looks_json:
        return TableFormat.JSON
    return None


def tabulate(content: str, table_format: TableFormat) -> Table | None:
    """Turn text content into a Table; None if it cannot be parsed."""
    if table_format in (TableFormat.CSV, TableFormat.TSV):
        delimiter = "," if table_format == TableFormat.CSV else "\t"
        reader = csv.reader(io.StringIO(content), delimiter=delimiter, skipinitialspace=True)
        return Table(rows=_clean_rows(reader))

    if table_format == TableFormat.KEY_VALUE:
        rows = []
        for line in content.splitlines():
            key, sep, value = line.partition(":")
            rows.append([key, value] if sep else [line])
        return Table(rows=_clean_rows(rows), key_value=True)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.debug(f"Content is not valid JSON: {e}")
        return None

    if isinstance(data, list) and data and all(isinstance(item, dict) for item in data):
        header: list[str] = []
        for item in data:
            header.extend(key for key in item if key not in header)
        rows = [header] + [[_cell_text(item.get(key)) for key in header] for item in data]
        return Table(rows=_clean_rows(rows))
    if isinstance(data, list):
        rows = [
            [_cell_text(v) for v in item] if isinstance(item, list) else [_cell_text(item)]
            for item in data
        ]
        return Table(rows=_clean_rows(rows))
    if isinstance(data, dict):
        return Table(rows=_clean_rows(_flatten_json(data)), key_value=True)
    return None


def read_workbook(data: bytes) -> Table:
    """Read the active sheet of an XLSX workbook."""
    workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sheet = workbook.active
        rows = [[_cell_text(value) for value in row] for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()
    return Table(rows=_clean_rows(rows))


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime | date):
        return value.isoformat()[:10]
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def _clean_rows(rows: Any) -> list[list[str]]:
    cleaned = []
    for row in rows:
        cells = [str(cell).strip() for cell in row]
        if any(cells):
            cleaned.append(cells)
    return cleaned


def _flatten_json(data: Any, prefix: str = "") -> list[list[str]]:
    if isinstance(data, dict):
        pairs = []
        for key, value in data.items():
            label = f"{prefix} {key}".strip()
            pairs.extend(_flatten_json(value, label))
        return pairs
    if isinstance(data, list):
        if all(not isinstance(item, dict | list) for item in data):
            return [[prefix, ", ".join(_cell_text(item) for item in data)]]
        pairs = []
        for item in data:
            pairs.extend(_flatten_json(item, prefix))
        return pairs
    return [[prefix, _cell_text(data)]]


def map_header(row: list[str]) -> dict[str, int]:
    """Map header cells to column roles by synonym."""
    columns: dict[str, int] = {}
    for index, cell in enumerate(row):
        lowered = cell.lower()
        for role, synonyms in HEADER_ROLES.items():
            if role in columns:
                continue
            if role == "vat" and ("rate" in lowered or "%" in lowered):
                continue
            if any(synonym in lowered for synonym in synonyms):
                columns[role] = index
                break
    return columns


def is_tax_report(table: Table) -> bool:
    flattened = table.text.lower()
    return any(marker in flattened for marker in TAX_REPORT_MARKERS)


def _cell(row: list[str], index: int | None) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index]


def _positive(value: float | None) -> float | None:
    return value if value is not None and value > 0 else None


def _amount_in_label(cell: str) -> float | None:
    """Amount written inside a labelled cell, e.g. "VAT (23%): 46.00"."""
    remainder = IRISH_VAT_NUMBER_RE.sub(" ", cell)
    remainder = PERCENT_RE.sub(" ", remainder)
    amounts = [a for a in find_amounts(remainder) if a > 0]
    return amounts[-1] if amounts else None


def _first_amount_after(row: list[str], index: int) -> float | None:
    marker_cell = row[index]
    inline = _amount_in_label(marker_cell.split(":", 1)[1]) if ":" in marker_cell else None
    if inline is not None:
        return inline
    for cell in row[index + 1 :]:
        amount = _positive(parse_amount(cell))
        if amount is not None:
            return amount
    return None


def _row_vat(row: list[str], columns: dict[str, int]) -> float | None:
    """VAT amount of one data row: mapped column, else a VAT-labelled cell."""
    mapped = _positive(parse_amount(_cell(row, columns.get("vat"))))
    if mapped is not None:
        return mapped

    for index, cell in enumerate(row):
        lowered = cell.lower()
        if "vat" not in lowered and "tax" not in lowered:
            continue
        if IRISH_VAT_NUMBER_RE.search(cell) or any(label in lowered for label in VAT_NUMBER_LABELS):
            continue
        if "rate" in lowered:
            continue
        inline = _amount_in_label(cell)
        if inline is not None:
            return inline
        following = _positive(parse_amount(_cell(row, index + 1)))
        if following is not None:
            return following
    return None


def _row_total(row: list[str], columns: dict[str, int]) -> float | None:
    """Total of one data row: mapped column, else the largest number in the row."""
    if "total" in columns:
        mapped = _positive(parse_amount(_cell(row, columns["total"])))
        if mapped is not None:
            return mapped
    amounts = [a for a in (parse_amount(cell) for cell in row) if a is not None and a > 0]
    return max(amounts) if amounts else None


def _is_label(cell: str) -> bool:
    lowered = cell.lower()
    return any(synonym in lowered for synonyms in HEADER_ROLES.values() for synonym in synonyms)


class StructuredTableParser:
    """Extract VAT data from tabular content.

    Example:
        >>> parser = StructuredTableParser()
        >>> result = parser.parse("VAT_EXTRACTION_MARKER,115.00", "report.csv", "PURCHASE")
        >>> result.purchase_vat
        [115.0]
    """

    def parse(self, content: str, file_name: str, category: str = "") -> ExtractedVATData | None:
        """Parse a text blob into ExtractedVATData.

        Args:
            content: Raw file content as text
            file_name: Original filename (used for format and type detection)
            category: Caller-supplied SALES/PURCHASE category hint

        Returns:
            ExtractedVATData, or None if the content is unparseable or holds no VAT
        """
        table_format = detect_format(content, file_name)
        if table_format is None:
            logger.debug(f"No tabular layout detected in {file_name}")
            return None

        table = tabulate(content, table_format)
        if table is None or not table.rows:
            return None

        logger.debug(f"Parsed {file_name} as {table_format.value} with {len(table.rows)} rows")
        return self.extract_from_table(table, file_name, category)

    def extract_from_table(
        self, table: Table, file_name: str, category: str = ""
    ) -> ExtractedVATData | None:
        if is_tax_report(table):
            result = self._extract_tax_report(table, file_name, category)
            if result is not None:
                return result
            logger.info(f"Tax report markers in {file_name} but no VAT cells, trying invoice layout")
        return self._extract_invoice(table, file_name, category)

    def _extract_tax_report(
        self, table: Table, file_name: str, category: str
    ) -> ExtractedVATData | None:
        columns = map_header(table.rows[0])
        marker_amounts: list[float] = []
        ireland_amounts: list[float] = []
        ireland_totals: list[float] = []
        exact_marker = False

        for row in table.rows:
            lowered = [cell.lower() for cell in row]
            marker_index = next(
                (i for i, cell in enumerate(lowered) if any(m in cell for m in TAX_REPORT_MARKERS)),
                None,
            )
            if marker_index is not None:
                amount = _first_amount_after(row, marker_index)
                if amount is not None:
                    marker_amounts.append(amount)
                    if EXTRACTION_MARKER in lowered[marker_index]:
                        exact_marker = True
                continue

            if not any("ireland" in cell or cell == "ie" for cell in lowered):
                continue
            amount = _positive(parse_amount(_cell(row, columns.get("vat"))))
            if amount is None:
                numbers = [a for a in (parse_amount(c) for c in row) if a is not None and a > 0]
                amount = numbers[-1] if numbers else None
            if amount is not None:
                ireland_amounts.append(amount)
            total = _positive(parse_amount(_cell(row, columns.get("total"))))
            if total is not None:
                ireland_totals.append(total)

        # A summary row may repeat a per-country figure
        amounts = marker_amounts + [
            a for a in ireland_amounts if all(abs(a - m) > 0.01 for m in marker_amounts)
        ]
        if not amounts:
            return None

        bucket = category_bucket(category) or VATBucket.SALES
        document_type = (
            DocumentType.PURCHASE_RECEIPT if bucket == VATBucket.PURCHASE else DocumentType.SALES_RECEIPT
        )
        text = table.text
        vat_number = extract_vat_number(text)
        invoice_date = parse_date(text)

        return ExtractedVATData(
            sales_vat=amounts if bucket == VATBucket.SALES else [],
            purchase_vat=amounts if bucket == VATBucket.PURCHASE else [],
            total_amount=round(sum(ireland_totals), 2),
            vat_rate=detect_vat_rate(text),
            confidence=MARKER_CONFIDENCE if exact_marker else TAX_REPORT_CONFIDENCE,
            extracted_text=text.splitlines(),
            document_type=document_type,
            vat_number=vat_number,
            invoice_date=invoice_date,
            supplier_name=None,
            processing_method=ProcessingMethod.EXCEL_PARSER,
            validation_flags=build_validation_flags(vat_number, invoice_date, vat_found=True),
        )

    def _extract_invoice(
        self, table: Table, file_name: str, category: str
    ) -> ExtractedVATData | None:
        rows = table.rows
        columns: dict[str, int] = {}
        header = rows[0]
        if not table.key_value and len(header) > 1 and not any(is_numeric_like(c) for c in header):
            candidate = map_header(header)
            if len(candidate) >= 2 or "vat" in candidate:
                columns = candidate
                rows = rows[1:]

        summary_rows = [r for r in rows if r and r[0].lower().startswith(SUMMARY_ROW_PREFIXES)]
        vat_rows = [(row, _row_vat(row, columns)) for row in rows]
        # Use printed totals rather than adding line items to them again
        if any(vat is not None for row, vat in vat_rows if row in summary_rows):
            vat_rows = [(row, vat) for row, vat in vat_rows if row in summary_rows]

        sales: list[float] = []
        purchases: list[float] = []
        heuristic = False
        for row, vat in vat_rows:
            if vat is None:
                continue
            bucket, guessed = route_amount(vat, " ".join(row), category)
            heuristic = heuristic or guessed
            (sales if bucket == VATBucket.SALES else purchases).append(vat)

        text = table.text
        if not sales and not purchases:
            for match in deduplicate_matches(find_matches(text)):
                bucket, guessed = route_amount(match.amount, match.context, category)
                heuristic = heuristic or guessed
                (sales if bucket == VATBucket.SALES else purchases).append(match.amount)

        if not sales and not purchases:
            logger.debug(f"No VAT figures found in {file_name}")
            return None

        row_totals = [t for t in (_row_total(row, columns) for row, _ in vat_rows) if t]
        if "total" in columns:
            total_amount = sum(row_totals)
        else:
            total_amount = max(row_totals, default=0.0)

        vat_number = extract_vat_number(text)
        supplier_name = self._business_name(rows, columns)
        invoice_date = self._invoice_date(rows, columns)

        confidence = INVOICE_BASE_CONFIDENCE
        if vat_number:
            confidence += 0.1
        if supplier_name:
            confidence += 0.05
        if invoice_date:
            confidence += 0.05

        flags = build_validation_flags(vat_number, invoice_date, vat_found=True)
        if heuristic:
            flags.add(ValidationFlag.HEURISTIC_CLASSIFICATION.value)

        return ExtractedVATData(
            sales_vat=sales,
            purchase_vat=purchases,
            total_amount=round(total_amount, 2),
            vat_rate=detect_vat_rate(text),
            confidence=round(min(confidence, MAX_CONFIDENCE), 4),
            extracted_text=text.splitlines(),
            document_type=detect_document_type(text, file_name),
            vat_number=vat_number,
            invoice_date=invoice_date,
            supplier_name=supplier_name,
            processing_method=ProcessingMethod.EXCEL_PARSER,
            validation_flags=flags,
        )

    def _business_name(self, rows: list[list[str]], columns: dict[str, int]) -> str | None:
        if "business" in columns:
            for row in rows:
                name = _cell(row, columns["business"])
                if name:
                    return name

        business_labels = HEADER_ROLES["business"]
        for row in rows:
            for index, cell in enumerate(row[:-1]):
                if any(label in cell.lower() for label in business_labels):
                    name = extract_business_name([row[index + 1]])
                    if name:
                        return name

        return extract_business_name(cell for row in rows for cell in row if not _is_label(cell))

    def _invoice_date(self, rows: list[list[str]], columns: dict[str, int]) -> date | None:
        if "date" in columns:
            for row in rows:
                parsed = parse_date(_cell(row, columns["date"]))
                if parsed:
                    return parsed
        for row in rows:
            for cell in row:
                parsed = parse_date(cell)
                if parsed:
                    return parsed
        return None


class StructuredParserMethod(ExtractionMethod):
    """Structured table parsing for spreadsheets, CSV exports and text tables."""

    tag = MethodTag.STRUCTURED_PARSER
    accepted_kinds = frozenset({DocumentKind.SPREADSHEET, DocumentKind.TEXT})

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.parser = StructuredTableParser()

    async def extract(self, document: DocumentInput) -> ExtractedVATData | None:
        return await asyncio.to_thread(self._extract_sync, document)

    def _extract_sync(self, document: DocumentInput) -> ExtractedVATData | None:
        start = time.perf_counter()

        # XLSX files are zip archives; anything else labelled as a spreadsheet is read as text
        if document.file_data[:2] == b"PK":
            table = read_workbook(document.file_data)
            if not table.rows:
                logger.info(f"No cells in the active sheet of {document.file_name}")
                return None
            result = self.parser.extract_from_table(table, document.file_name, document.category)
        else:
            result = self.parser.parse(
                document.decode_text(), document.file_name, document.category
            )

        if result is None:
            return None

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Structured parser found {result.vat_count} VAT amounts in {document.file_name} "
            f"(confidence {result.confidence:.2f})"
        )
        return result.model_copy(update={"processing_time_ms": elapsed_ms})
