"""
FILE: src/core/model_portfolios.py
"""

from typing import Iterable, List, Optional

from src.core.models import ModelPortfolio

MIN_RISK_SCORE = 0
MAX_RISK_SCORE = 10


class RiskBandError(ValueError):
    pass


def select_model_portfolio(
    risk_score: int, models: Iterable[ModelPortfolio]
) -> Optional[ModelPortfolio]:
    """
    Returns the model whose inclusive risk band contains the score.
    With a validated catalog at most one model can match.
    """
    if risk_score < MIN_RISK_SCORE or risk_score > MAX_RISK_SCORE:
        return None
    return next(
        (m for m in models if m.min_risk_score <= risk_score <= m.max_risk_score),
        None,
    )


def validate_risk_bands(models: Iterable[ModelPortfolio]) -> List[ModelPortfolio]:
    """
    Checks the bands partition 0-10: sorted, contiguous, no overlaps.
    Returns the models ordered by band.
    """
    ordered = sorted(models, key=lambda m: (m.min_risk_score, m.max_risk_score))
    if not ordered:
        raise RiskBandError("RISK_BANDS_EMPTY")
    expected_min = MIN_RISK_SCORE
    for model in ordered:
        if model.min_risk_score < expected_min:
            raise RiskBandError(f"RISK_BANDS_OVERLAP: {model.model_id}")
        if model.min_risk_score > expected_min:
            raise RiskBandError(f"RISK_BANDS_GAP: score {expected_min} uncovered")
        expected_min = model.max_risk_score + 1
    if expected_min != MAX_RISK_SCORE + 1:
        raise RiskBandError(f"RISK_BANDS_GAP: score {expected_min} uncovered")
    return ordered
