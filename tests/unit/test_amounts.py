"""Unit tests for money, date and VAT-number parsing helpers."""

from datetime import date

import pytest

from services.extraction.amounts import (
    build_validation_flags,
    detect_document_type,
    detect_vat_rate,
    explicit_vat_rate,
    extract_business_name,
    extract_irish_vat_number,
    extract_vat_number,
    find_amounts,
    parse_amount,
    parse_date,
    parse_iso_date,
    validate_irish_vat_number,
)
from services.extraction.schema import DocumentType, ValidationFlag


class TestParseAmount:
    """Money parsing."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("€1,234.56", 1234.56),
            ("211,77", 211.77),
            ("EUR 100", 100.0),
            ("  46.00 ", 46.0),
            (42, 42.0),
            (19.999, 20.0),
        ],
    )
    def test_parses_money_values(self, raw: object, expected: float) -> None:
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "abc", "12abc", True, float("nan"), float("inf")])
    def test_rejects_unparseable_values(self, raw: object) -> None:
        assert parse_amount(raw) is None

    def test_negative_amounts_rejected_by_default(self) -> None:
        assert parse_amount("-5") is None
        assert parse_amount("(12.50)") is None

    def test_negative_amounts_allowed_on_request(self) -> None:
        assert parse_amount("-5", allow_negative=True) == -5.0
        assert parse_amount("(12.50)", allow_negative=True) == -12.5


def test_find_amounts_in_free_text() -> None:
    assert find_amounts("VAT 23% 115.00 and 1,000.50") == [23.0, 115.0, 1000.5]


class TestVATNumbers:
    """VAT registration number detection and validation."""

    def test_extracts_irish_vat_number(self) -> None:
        assert extract_irish_vat_number("VAT No: IE1234567T") == "IE1234567T"

    def test_extracts_registration_label(self) -> None:
        assert extract_vat_number("Supplier VAT Reg: IE1234567A") == "IE1234567A"

    def test_extracts_irish_vat_number_with_space(self) -> None:
        assert extract_irish_vat_number("Reg IE 9876543WH") == "IE9876543WH"

    def test_no_irish_vat_number(self) -> None:
        assert extract_irish_vat_number("VAT No: GB123456789") is None

    def test_labelled_foreign_vat_number(self) -> None:
        assert extract_vat_number("VAT No: GB123456789") == "GB123456789"

    def test_irish_number_preferred(self) -> None:
        text = "VAT No: GB123456789\nSupplier VAT IE9876543W"
        assert extract_vat_number(text) == "IE9876543W"

    def test_vat_label_without_number(self) -> None:
        assert extract_vat_number("VAT Summary for March") is None

    def test_validate_compliant_number(self) -> None:
        result = validate_irish_vat_number("ie 9876543w")

        assert result["is_valid"] is True
        assert result["vat_number"] == "IE9876543W"
        assert result["compliance_level"] == "COMPLIANT"

    def test_validate_example_number_warns(self) -> None:
        result = validate_irish_vat_number("IE1234567T")

        assert result["is_valid"] is True
        assert result["compliance_level"] == "WARNING"
        assert result["warnings"]

    def test_validate_foreign_number(self) -> None:
        result = validate_irish_vat_number("GB123")

        assert result["is_valid"] is False
        assert result["compliance_level"] == "NON_COMPLIANT"
        assert len(result["errors"]) == 2

    def test_validate_missing_number(self) -> None:
        result = validate_irish_vat_number(None)

        assert result["is_valid"] is False
        assert result["errors"] == ["VAT number is required"]


class TestDates:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Date: 15/01/2024", date(2024, 1, 15)),
            ("Issued 2024-01-15", date(2024, 1, 15)),
            ("15 January 2024", date(2024, 1, 15)),
            ("3rd March 2024", date(2024, 3, 3)),
            ("01.02.24", date(2024, 2, 1)),
        ],
    )
    def test_parse_date(self, text: str, expected: date) -> None:
        assert parse_date(text) == expected

    def test_invalid_date_ignored(self) -> None:
        assert parse_date("99/99/2024") is None

    def test_parse_iso_date(self) -> None:
        assert parse_iso_date("2024-03-01T10:00:00") == date(2024, 3, 1)
        assert parse_iso_date("01/03/2024") == date(2024, 3, 1)
        assert parse_iso_date(None) is None
        assert parse_iso_date("unknown") is None


def test_extract_business_name_skips_labels_and_numbers() -> None:
    candidates = ["Invoice", "12.50", "€ 5", "VAT No: IE1234567T", "Murphy's Hardware Ltd"]

    assert extract_business_name(candidates) == "Murphy's Hardware Ltd"


def test_extract_business_name_none() -> None:
    assert extract_business_name(["Total", "46.00", ""]) is None


class TestVATRate:
    def test_most_frequent_printed_rate(self) -> None:
        assert explicit_vat_rate("VAT @ 23% on fuel, 23% on parts, 13.5% on labour") == 23.0

    def test_out_of_range_percentages_ignored(self) -> None:
        assert explicit_vat_rate("Discount 50% today") is None

    def test_default_rate(self) -> None:
        assert detect_vat_rate("no rate printed") == 23.0


class TestValidationFlags:
    def test_everything_missing(self) -> None:
        flags = build_validation_flags(None, None, vat_found=False)

        assert flags == {
            ValidationFlag.MISSING_VAT_NUMBER.value,
            ValidationFlag.NO_VAT_FOUND.value,
            ValidationFlag.MISSING_DATE.value,
        }

    def test_foreign_vat_number(self) -> None:
        flags = build_validation_flags("GB123456789", date(2024, 1, 1), vat_found=True)

        assert flags == {ValidationFlag.NON_IRISH_VAT.value}

    def test_complete_irish_document(self) -> None:
        assert build_validation_flags("IE1234567T", date(2024, 1, 1), vat_found=True) == set()


@pytest.mark.parametrize(
    ("text", "file_name", "expected"),
    [
        ("Tax Invoice", "", DocumentType.SALES_INVOICE),
        ("Credit note against invoice 12", "", DocumentType.PURCHASE_INVOICE),
        ("Till receipt", "", DocumentType.SALES_RECEIPT),
        ("", "march_report.csv", DocumentType.PURCHASE_RECEIPT),
        ("hello", "notes.txt", DocumentType.OTHER),
    ],
)
def test_detect_document_type(text: str, file_name: str, expected: DocumentType) -> None:
    assert detect_document_type(text, file_name) == expected
