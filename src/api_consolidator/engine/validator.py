"""Checks a merged document's extension metadata before it is handed on."""

from pydantic import BaseModel, Field

from api_consolidator.engine.refs import find_unresolved_refs
from api_consolidator.parser.base import HTTP_METHODS

CALCULATION_METHODS = ("cloud-carbon-coefficients", "green-web-foundation", "custom")


class Thresholds(BaseModel):
    co2_error: float = 50.0
    co2_warning: float = 30.0


class ValidationReport(BaseModel):
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _operations(spec: dict):
    for path, item in (spec.get("paths") or {}).items():
        if not isinstance(item, dict):
            continue
        for method, operation in item.items():
            if method.upper() in HTTP_METHODS and isinstance(operation, dict):
                yield f"{method.upper()} {path}", operation


def validate_co2(label: str, impact: dict, thresholds: Thresholds, report: ValidationReport) -> None:
    if not impact.get("enabled"):
        report.warnings.append(f"{label}: CO2 tracking is disabled")
        return
    grams = impact.get("estimatedGramsPerRequest") or 0
    if grams > thresholds.co2_error:
        report.errors.append(f"{label}: CO2 {grams}g exceeds threshold {thresholds.co2_error}g")
        if not impact.get("mitigationStrategies"):
            report.errors.append(f"{label}: High CO2 impact requires mitigation strategies")
    elif grams > thresholds.co2_warning:
        report.warnings.append(f"{label}: CO2 {grams}g exceeds warning threshold {thresholds.co2_warning}g")
    if impact.get("calculationMethod") not in CALCULATION_METHODS:
        report.warnings.append(f"{label}: Invalid or missing calculation method")


def validate_document(spec: dict, thresholds: Thresholds | None = None) -> ValidationReport:
    """Validate ``x-co2-impact``/``x-consolidation`` metadata and leftover refs.

    Returns a report; errors make ``report.ok`` false.
    """
    thresholds = thresholds or Thresholds()
    report = ValidationReport()

    for ref in find_unresolved_refs(spec):
        if not ref.startswith("#/"):
            report.warnings.append(f"Unresolved external reference {ref}")

    for label, operation in _operations(spec):
        impact = operation.get("x-co2-impact")
        if impact is not None:
            validate_co2(label, impact, thresholds, report)
        consolidation = operation.get("x-consolidation")
        if consolidation is not None and not consolidation.get("sources"):
            report.errors.append(f"{label}: Consolidated operation has no resolved sources")

    return report
