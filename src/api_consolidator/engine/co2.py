"""Illustrative CO2 estimates attached as ``x-co2-impact`` metadata."""

from api_consolidator.parser.base import Operation

BASELINE_GRAMS = 0.1
PER_PARAMETER_GRAMS = 0.01
BODY_GRAMS = 0.1
DEFAULT_METHOD_GRAMS = 0.1
METHOD_GRAMS = {
    "GET": 0.05,
    "POST": 0.2,
    "PUT": 0.2,
    "PATCH": 0.2,
    "DELETE": 0.15,
}
# consolidated calls are assumed to cost 90% of the separate calls
CONSOLIDATION_FACTOR = 0.9
CALCULATION_METHOD = "custom"


def estimate_co2(method: str, param_count: int, has_body: bool) -> float:
    grams = (
        BASELINE_GRAMS
        + METHOD_GRAMS.get(method.upper(), DEFAULT_METHOD_GRAMS)
        + PER_PARAMETER_GRAMS * param_count
        + (BODY_GRAMS if has_body else 0.0)
    )
    return round(grams, 3)


def estimate_operation(operation: Operation) -> float:
    return estimate_co2(operation.method, len(operation.parameters), operation.request_body is not None)


def consolidated_estimate(estimate1: float, estimate2: float) -> float:
    return round(CONSOLIDATION_FACTOR * (estimate1 + estimate2), 3)


def co2_impact(grams: float, sources: dict[str, float] | None = None) -> dict:
    """Build an ``x-co2-impact`` extension block."""
    impact = {
        "enabled": True,
        "estimatedGramsPerRequest": grams,
        "calculationMethod": CALCULATION_METHOD,
    }
    if sources:
        impact["sourceEstimates"] = dict(sources)
        impact["savingsPercent"] = round((1 - CONSOLIDATION_FACTOR) * 100)
    return impact
