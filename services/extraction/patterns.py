"""Irish VAT pattern library.

Ordered table of regular expressions for VAT figures as they appear on Irish
invoices, till receipts and e-commerce tax exports, plus the helpers that apply
the table, collapse duplicate hits and route amounts to sales or purchase VAT.

Irish rate bands printed on receipts:
- STD23: standard rate (23%)
- RED13.5: reduced rate (fuel, electricity, building services)
- TOU9: second reduced / tourism rate (hospitality, newspapers)
- MIN: livestock / minimum rate lines on farm and retail receipts
"""

import re
from dataclasses import dataclass
from enum import Enum

from services.extraction.amounts import has_invoice_structure, parse_amount

_NUMBER = r"[0-9]{1,3}(?:,[0-9]{3})+(?:\.[0-9]{1,2})?|[0-9]+(?:\.[0-9]{1,2})?"
# A figure followed by "%" is a rate, not an amount
_AMOUNT = r"(" + _NUMBER + r")(?![0-9]|[.,][0-9]|\s*%)"
_SEP = r"\s*[:=\-]?\s*(?:€|EUR)?\s*"

CONTEXT_WINDOW = 50
DEDUP_TOLERANCE = 0.01
SMALL_VAT_THRESHOLD = 100.0

SALES_CUES = ("invoice", "sales", "charged")
PURCHASE_CUES = ("purchase", "expense", "paid")


@dataclass(frozen=True)
class VATPattern:
    """One entry of the pattern table."""

    name: str
    regex: re.Pattern[str]
    confidence: float
    rate_band: bool = False


@dataclass
class PatternMatch:
    """A VAT amount found by one pattern, with surrounding text."""

    pattern: str
    amount: float
    confidence: float
    context: str
    rate_band: bool
    position: int


class VATBucket(str, Enum):
    SALES = "SALES"
    PURCHASE = "PURCHASE"


def _compile(body: str) -> re.Pattern[str]:
    return re.compile(body, re.IGNORECASE)


VAT_PATTERNS: tuple[VATPattern, ...] = (
    VATPattern(
        name="vat_extraction_marker",
        regex=_compile(r"VAT_EXTRACTION_MARKER[\s,;:|=\"']*(?:€|EUR)?\s*" + _AMOUNT),
        confidence=0.99,
    ),
    VATPattern(
        name="irish_standard_rate",
        regex=_compile(r"\bSTD\s?23(?:\.0+)?%?" + _SEP + _AMOUNT),
        confidence=0.95,
        rate_band=True,
    ),
    VATPattern(
        name="irish_reduced_rate",
        regex=_compile(r"\bRED\s?13\.5%?" + _SEP + _AMOUNT),
        confidence=0.95,
        rate_band=True,
    ),
    VATPattern(
        name="irish_tourism_rate",
        regex=_compile(r"\bTOU\s?9%?" + _SEP + _AMOUNT),
        confidence=0.95,
        rate_band=True,
    ),
    VATPattern(
        name="irish_minimum_rate",
        # Uppercase only: "min" is too common as an ordinary word
        regex=re.compile(r"(?<![A-Za-z])MIN\b" + _SEP + _AMOUNT),
        confidence=0.9,
        rate_band=True,
    ),
    VATPattern(
        name="vat_with_rate",
        regex=_compile(
            r"\bVAT\s*\(?\s*@?\s*(?:[0-9]{1,2}(?:\.[0-9]{1,2})?)\s*%\s*\)?" + _SEP
            # "VAT 23% 200.00 46.00" prints the net amount before the VAT
            + r"(?:(?:" + _NUMBER + r")[ \t]+(?:€|EUR)?[ \t]*)?"
            + _AMOUNT
        ),
        confidence=0.9,
    ),
    VATPattern(
        name="vat_labelled",
        regex=_compile(r"\bVAT(?:\s+(?:amount|due))?\s*:\s*(?:€|EUR)?\s*" + _AMOUNT),
        confidence=0.85,
    ),
    VATPattern(
        name="total_vat_phrase",
        regex=_compile(
            r"\bTotal\s+(?:amount\s+)?VAT(?:\s+(?:amount|due))?" + _SEP + _AMOUNT
        ),
        confidence=0.8,
    ),
    VATPattern(
        name="euro_amount_near_vat",
        regex=_compile(r"€\s*" + _AMOUNT + r"\s*(?:VAT|tax)\b"),
        confidence=0.7,
    ),
)


def find_matches(text: str, patterns: tuple[VATPattern, ...] = VAT_PATTERNS) -> list[PatternMatch]:
    """Apply every pattern globally and collect positive amounts with context."""
    matches: list[PatternMatch] = []
    for pattern in patterns:
        for hit in pattern.regex.finditer(text):
            raw = next((group for group in hit.groups() if group), None)
            amount = parse_amount(raw)
            if amount is None or amount <= 0:
                continue
            start = max(0, hit.start() - CONTEXT_WINDOW)
            end = min(len(text), hit.end() + CONTEXT_WINDOW)
            matches.append(
                PatternMatch(
                    pattern=pattern.name,
                    amount=amount,
                    confidence=pattern.confidence,
                    context=text[start:end],
                    rate_band=pattern.rate_band,
                    position=hit.start(),
                )
            )
    return matches


def deduplicate_matches(matches: list[PatternMatch]) -> list[PatternMatch]:
    """Keep one match per distinct amount, preferring the most confident pattern.

    Several patterns often hit the same text span ("STD23: €115.00" is also a
    "VAT ... €115.00" line), which would otherwise count one VAT figure twice.
    """
    accepted: list[PatternMatch] = []
    for match in sorted(matches, key=lambda m: (-m.confidence, m.position)):
        if any(abs(match.amount - kept.amount) <= DEDUP_TOLERANCE + 1e-9 for kept in accepted):
            continue
        accepted.append(match)
    return sorted(accepted, key=lambda m: m.position)


def category_bucket(category: str | None) -> VATBucket | None:
    """Sales/purchase routing implied by the caller's category hint."""
    if not category:
        return None
    upper = category.upper()
    if "SALES" in upper:
        return VATBucket.SALES
    if "PURCHASE" in upper:
        return VATBucket.PURCHASE
    return None


def route_amount(amount: float, context: str, category: str | None) -> tuple[VATBucket, bool]:
    """Route a VAT amount to sales or purchase VAT.

    Contextual cues win, then the category hint, then the amount-size guess
    (small VAT figures are treated as incidental purchase expenses).

    Returns:
        (bucket, heuristic) where heuristic is True when the amount-size guess
        decided the bucket
    """
    context = context.lower()
    is_sales = any(cue in context for cue in SALES_CUES)
    is_purchase = any(cue in context for cue in PURCHASE_CUES)

    if is_sales and not is_purchase:
        return VATBucket.SALES, False
    if is_purchase and not is_sales:
        return VATBucket.PURCHASE, False

    hinted = category_bucket(category)
    if hinted is not None:
        return hinted, False

    if amount < SMALL_VAT_THRESHOLD:
        return VATBucket.PURCHASE, True
    return VATBucket.SALES, True


def classify_match(match: PatternMatch, category: str | None) -> tuple[VATBucket, bool]:
    return route_amount(match.amount, match.context, category)


def score_matches(found: list[PatternMatch], kept: list[PatternMatch], text: str) -> float:
    """Overall confidence for a set of pattern matches.

    Average pattern confidence of the kept matches, boosted for corroboration,
    Irish rate-band markers and invoice structure; capped at 0.95.
    """
    if not kept:
        return 0.0
    confidence = sum(m.confidence for m in kept) / len(kept)
    if len(found) >= 2:
        confidence += 0.10
    if any(m.rate_band for m in found):
        confidence += 0.15
    if has_invoice_structure(text):
        confidence += 0.05
    return round(min(confidence, 0.95), 4)
