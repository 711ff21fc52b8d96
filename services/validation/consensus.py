"""Consensus scoring across extraction methods.

Pure functions: method quality, pairwise agreement on VAT amounts, business
data and document type, best-result selection and the final recommendation.
"""

from services.extraction.schema import (
    DocumentType,
    ExtractedVATData,
    MethodTag,
    ValidationFlag,
)
from services.validation.models import (
    MAX_FINAL_CONFIDENCE,
    ExtractionValidation,
    MethodResult,
    NoExtractionResultError,
    RecommendedAction,
    ValidationResult,
    ValidationSummary,
    VATAggregate,
)

BASE_QUALITY: dict[MethodTag, float] = {
    MethodTag.AI_VISION: 85,
    MethodTag.STRUCTURED_PARSER: 90,
    MethodTag.OCR_PATTERNS: 70,
}

CONFLICT_THRESHOLD = 0.8
CONSENSUS_THRESHOLD = 0.8
ACCEPT_SINGLE_THRESHOLD = 0.8
REJECT_THRESHOLD = 0.5
REVIEW_THRESHOLD = 0.7

VALID_IRISH_RATES = {0.0, 4.8, 9.0, 13.5, 23.0}
LARGE_AMOUNT_WARNING = 100_000
LOW_CONFIDENCE_WARNING = 0.3


def assess_method_quality(result: ExtractedVATData, method: MethodTag) -> float:
    """Heuristic 0-100 score rewarding richer extractions."""
    quality = BASE_QUALITY.get(method, 50)

    vat_count = result.vat_count
    if vat_count > 0:
        quality += 10
    if vat_count > 3:
        quality += 5
    if result.supplier_name:
        quality += 5
    if result.vat_number:
        quality += 10
    if result.document_type != DocumentType.OTHER:
        quality += 5

    return min(100, quality)


def compare_vat_amounts(results: list[MethodResult]) -> tuple[float, float]:
    """Weighted agreement of each method's total VAT with the weighted average.

    Returns:
        (agreement, weighted average total VAT)
    """
    totals = [(r.result.total_vat, r.weight) for r in results]
    if len(totals) < 2:
        return 1.0, totals[0][0] if totals else 0.0

    total_weight = sum(weight for _, weight in totals)
    weighted_average = sum(total * weight for total, weight in totals) / total_weight
    # 10% of the average, but never tighter than one euro
    tolerance = max(1.0, weighted_average * 0.1)

    agreement_sum = 0.0
    for total, weight in totals:
        agreement = max(0.0, 1 - abs(total - weighted_average) / tolerance)
        agreement_sum += agreement * weight

    return agreement_sum / total_weight, weighted_average


def _normalize_name(value: str) -> str:
    return " ".join(value.split()).casefold()


def _normalize_vat_number(value: str) -> str:
    return "".join(value.split()).upper()


def compare_business_data(results: list[MethodResult]) -> float:
    agreements = 0.0
    comparisons = 0

    names = {_normalize_name(r.result.supplier_name) for r in results if r.result.supplier_name}
    name_count = sum(1 for r in results if r.result.supplier_name)
    if name_count > 1:
        agreements += 1.0 if len(names) == 1 else 0.5
        comparisons += 1

    numbers = {_normalize_vat_number(r.result.vat_number) for r in results if r.result.vat_number}
    number_count = sum(1 for r in results if r.result.vat_number)
    if number_count > 1:
        agreements += 1.0 if len(numbers) == 1 else 0.3
        comparisons += 1

    return agreements / comparisons if comparisons else 1.0


def compare_document_types(results: list[MethodResult]) -> float:
    if len(results) < 2:
        return 1.0
    types = {r.result.document_type for r in results}
    return 1.0 if len(types) == 1 else 0.6


def score_method_result(result: MethodResult) -> float:
    return 0.4 * result.confidence + 0.3 * result.weight + 0.3 * result.quality / 100


def select_best_result(results: list[MethodResult]) -> MethodResult:
    """Highest weighted score wins; ties keep the earlier (higher-priority) method."""
    best = results[0]
    best_score = score_method_result(best)
    for candidate in results[1:]:
        score = score_method_result(candidate)
        if score > best_score:
            best, best_score = candidate, score
    return best


def confidence_multiplier(agreement_score: float, method_count: int) -> float:
    base = 0.8 + agreement_score * 0.4
    method_bonus = min(0.1, (method_count - 1) * 0.05)
    return min(1.3, base + method_bonus)


def recommend_action(final_confidence: float, conflict_count: int) -> RecommendedAction:
    if final_confidence < REJECT_THRESHOLD:
        return RecommendedAction.REJECT
    if final_confidence < REVIEW_THRESHOLD or conflict_count > 1:
        return RecommendedAction.REVIEW
    return RecommendedAction.ACCEPT


def _guard_heuristic(action: RecommendedAction, result: ExtractedVATData) -> RecommendedAction:
    # Amounts routed by the amount-size guess always need a human look
    if (
        action == RecommendedAction.ACCEPT
        and ValidationFlag.HEURISTIC_CLASSIFICATION.value in result.validation_flags
    ):
        return RecommendedAction.REVIEW
    return action


def reach_consensus(method_results: list[MethodResult]) -> ValidationResult:
    """Reconcile method results into one verdict.

    Raises:
        NoExtractionResultError: If method_results is empty
    """
    if not method_results:
        raise NoExtractionResultError("No valid extraction results available")

    if len(method_results) == 1:
        only = method_results[0]
        action = (
            RecommendedAction.ACCEPT
            if only.confidence > ACCEPT_SINGLE_THRESHOLD
            else RecommendedAction.REVIEW
        )
        final_result = only.result
        if final_result.confidence > MAX_FINAL_CONFIDENCE:
            final_result = final_result.model_copy(update={"confidence": MAX_FINAL_CONFIDENCE})
        return ValidationResult(
            final_result=final_result,
            confidence=min(MAX_FINAL_CONFIDENCE, only.confidence),
            consensus_reached=True,
            agreement_score=1.0,
            method_results=method_results,
            validation_summary=ValidationSummary(
                total_methods=1,
                agreeing_methods=1,
                conflicting_fields=[],
                recommended_action=_guard_heuristic(action, only.result),
            ),
        )

    vat_agreement, _ = compare_vat_amounts(method_results)
    business_agreement = compare_business_data(method_results)
    type_agreement = compare_document_types(method_results)
    agreement_score = (vat_agreement + business_agreement + type_agreement) / 3

    best = select_best_result(method_results)
    multiplier = confidence_multiplier(agreement_score, len(method_results))
    final_confidence = min(MAX_FINAL_CONFIDENCE, best.confidence * multiplier)

    conflicting_fields = []
    if vat_agreement < CONFLICT_THRESHOLD:
        conflicting_fields.append("VAT amounts")
    if business_agreement < CONFLICT_THRESHOLD:
        conflicting_fields.append("Business data")
    if type_agreement < CONFLICT_THRESHOLD:
        conflicting_fields.append("Document type")

    action = recommend_action(final_confidence, len(conflicting_fields))
    final_result = best.result.model_copy(update={"confidence": final_confidence})

    return ValidationResult(
        final_result=final_result,
        confidence=final_confidence,
        consensus_reached=agreement_score > CONSENSUS_THRESHOLD,
        agreement_score=agreement_score,
        method_results=method_results,
        validation_summary=ValidationSummary(
            total_methods=len(method_results),
            agreeing_methods=round(agreement_score * len(method_results)),
            conflicting_fields=conflicting_fields,
            recommended_action=_guard_heuristic(action, final_result),
        ),
    )


def validate_extracted_vat(data: ExtractedVATData) -> ExtractionValidation:
    """Sanity-check one extraction against Irish VAT expectations."""
    issues: list[str] = []
    warnings: list[str] = []

    for label, amounts in (("Sales", data.sales_vat), ("Purchase", data.purchase_vat)):
        for amount in amounts:
            if amount < 0:
                issues.append(f"{label} VAT amount cannot be negative: {amount}")
            elif amount > LARGE_AMOUNT_WARNING:
                warnings.append(f"Unusually large {label.lower()} VAT amount: €{amount:,.2f}")

    if data.confidence < LOW_CONFIDENCE_WARNING:
        warnings.append(f"Low extraction confidence: {data.confidence:.0%}")

    if data.vat_rate not in VALID_IRISH_RATES:
        warnings.append(f"Unusual VAT rate for Ireland: {data.vat_rate}%")

    if data.total_amount > 0 and data.total_vat > data.total_amount:
        warnings.append("Total VAT exceeds the total amount")

    return ExtractionValidation(is_valid=not issues, issues=issues, warnings=warnings)


def aggregate_vat_amounts(results: list[ExtractedVATData]) -> VATAggregate:
    """Sum VAT across documents for a return period."""
    if not results:
        return VATAggregate()

    total_sales = sum(sum(r.sales_vat) for r in results)
    total_purchases = sum(sum(r.purchase_vat) for r in results)
    with_issues = 0
    for result in results:
        notes = validate_extracted_vat(result)
        if not notes.is_valid or notes.warnings:
            with_issues += 1

    return VATAggregate(
        total_sales_vat=round(total_sales, 2),
        total_purchase_vat=round(total_purchases, 2),
        net_vat=round(total_sales - total_purchases, 2),
        document_count=len(results),
        average_confidence=round(sum(r.confidence for r in results) / len(results), 4),
        documents_with_issues=with_issues,
    )
