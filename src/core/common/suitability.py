from typing import Dict

from src.core.models import AssetClass, Instrument, RiskProfile, SuitabilityResult

# Minimum client risk score per asset class when an instrument carries no rating.
DEFAULT_MIN_RISK_BY_ASSET_CLASS: Dict[AssetClass, int] = {
    AssetClass.CASH: 0,
    AssetClass.FIXED_INCOME: 1,
    AssetClass.EQUITY: 4,
    AssetClass.REAL_ESTATE: 6,
    AssetClass.ALTERNATIVE: 7,
}


def required_min_risk_score(instrument: Instrument) -> int:
    if instrument.risk_rating is not None:
        return instrument.risk_rating
    return DEFAULT_MIN_RISK_BY_ASSET_CLASS[instrument.asset_class]


def check_suitability(instrument: Instrument, risk_profile: RiskProfile) -> SuitabilityResult:
    """
    Compares the instrument's risk requirement with the client's risk score.
    Applies to both sides of an order.
    """
    required = required_min_risk_score(instrument)
    score = risk_profile.score

    if score < required:
        return SuitabilityResult(
            suitable=False,
            reason=(
                f"{instrument.name} requires minimum risk score of {required}. "
                f"Client risk score is {score}."
            ),
            required_min_score=required,
            client_score=score,
        )

    max_risk = instrument.suitability_max_risk
    if max_risk is not None and score > max_risk:
        return SuitabilityResult(
            suitable=False,
            reason=f"{instrument.name} is not suitable for risk score {score} (max {max_risk}).",
            required_min_score=required,
            client_score=score,
        )

    return SuitabilityResult(suitable=True, required_min_score=required, client_score=score)
