"""
FILE: src/core/seed.py
Demo catalog and client book used by the HTTP service when
WEALTH_SEED_DEMO_DATA is enabled.
"""

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List

from src.core.model_portfolios import validate_risk_bands
from src.core.models import (
    AssetClass,
    Holding,
    Instrument,
    ModelAllocation,
    ModelPortfolio,
    Portfolio,
    RiskCategory,
    RiskProfile,
)
from src.core.store import WealthStore

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def _instrument(
    instrument_id: str,
    symbol: str,
    name: str,
    asset_class: AssetClass,
    price: str,
    min_risk: int,
    max_risk: int,
    description: str,
) -> Instrument:
    return Instrument(
        instrument_id=instrument_id,
        symbol=symbol,
        name=name,
        asset_class=asset_class,
        current_price=Decimal(price),
        risk_rating=min_risk,
        suitability_max_risk=max_risk,
        description=description,
    )


SEED_INSTRUMENTS: List[Instrument] = [
    _instrument("ins-1", "VTI", "Vanguard Total Stock Market ETF", AssetClass.EQUITY,
                "245.50", 5, 10, "Broad US equity market exposure"),
    _instrument("ins-2", "BND", "Vanguard Total Bond Market ETF", AssetClass.FIXED_INCOME,
                "76.20", 1, 7, "Broad US bond market exposure"),
    _instrument("ins-3", "VEA", "Vanguard FTSE Developed Markets ETF", AssetClass.EQUITY,
                "52.80", 5, 10, "International developed markets equity"),
    _instrument("ins-4", "VWO", "Vanguard FTSE Emerging Markets ETF", AssetClass.EQUITY,
                "44.30", 7, 10, "Emerging markets equity"),
    _instrument("ins-5", "CASH", "Cash & Money Market", AssetClass.CASH,
                "1.00", 1, 10, "Liquid cash holdings"),
    _instrument("ins-6", "AGG", "iShares Core US Aggregate Bond ETF", AssetClass.FIXED_INCOME,
                "101.50", 1, 6, "Investment-grade US bonds"),
    _instrument("ins-7", "VNQ", "Vanguard Real Estate ETF", AssetClass.REAL_ESTATE,
                "88.90", 4, 9, "US real estate investment trusts"),
    _instrument("ins-8", "QQQ", "Invesco QQQ Trust", AssetClass.EQUITY,
                "425.75", 7, 10, "Nasdaq-100 technology stocks"),
    _instrument("ins-9", "TLT", "iShares 20+ Year Treasury Bond ETF", AssetClass.FIXED_INCOME,
                "92.40", 1, 5, "Long-term US Treasury bonds"),
    _instrument("ins-10", "GLD", "SPDR Gold Shares", AssetClass.ALTERNATIVE,
                "185.20", 3, 10, "Physical gold holdings"),
    _instrument("ins-11", "VTV", "Vanguard Value ETF", AssetClass.EQUITY,
                "156.30", 5, 9, "US large-cap value stocks"),
    _instrument("ins-12", "VUG", "Vanguard Growth ETF", AssetClass.EQUITY,
                "325.60", 6, 10, "US large-cap growth stocks"),
    _instrument("ins-13", "VIG", "Vanguard Dividend Appreciation ETF", AssetClass.EQUITY,
                "178.90", 4, 8, "Dividend growth stocks"),
    _instrument("ins-14", "VCIT", "Vanguard Intermediate-Term Corp Bond ETF",
                AssetClass.FIXED_INCOME, "85.70", 2, 7, "Investment-grade corporate bonds"),
    _instrument("ins-15", "VXUS", "Vanguard Total International Stock ETF", AssetClass.EQUITY,
                "63.40", 5, 10, "Total international equity"),
]


def _model(
    model_id: str,
    name: str,
    description: str,
    min_risk: int,
    max_risk: int,
    equity: str,
    fixed_income: str,
    cash: str,
    alternative: str,
) -> ModelPortfolio:
    return ModelPortfolio(
        model_id=model_id,
        name=name,
        description=description,
        min_risk_score=min_risk,
        max_risk_score=max_risk,
        allocations=[
            ModelAllocation(asset_class=AssetClass.EQUITY, target_percentage=Decimal(equity)),
            ModelAllocation(
                asset_class=AssetClass.FIXED_INCOME, target_percentage=Decimal(fixed_income)
            ),
            ModelAllocation(asset_class=AssetClass.CASH, target_percentage=Decimal(cash)),
            ModelAllocation(
                asset_class=AssetClass.ALTERNATIVE, target_percentage=Decimal(alternative)
            ),
        ],
    )


# Bands partition 0-10 so every valid score selects exactly one model.
SEED_MODEL_PORTFOLIOS: List[ModelPortfolio] = [
    _model("mp-1", "Conservative", "Capital preservation with modest growth", 0, 3,
           "20", "65", "10", "5"),
    _model("mp-2", "Moderate", "Balanced approach with stability focus", 4, 4,
           "40", "50", "5", "5"),
    _model("mp-3", "Balanced", "Equal emphasis on growth and stability", 5, 5,
           "60", "30", "5", "5"),
    _model("mp-4", "Growth", "Growth-oriented with measured risk", 6, 7,
           "75", "15", "5", "5"),
    _model("mp-5", "Aggressive", "Maximum growth potential", 8, 10,
           "90", "5", "2", "3"),
]

# client_id -> (score, category, profile age in days)
SEED_RISK_PROFILES: Dict[str, tuple] = {
    "cli-1": (7, RiskCategory.GROWTH, 30),
    "cli-2": (5, RiskCategory.BALANCED, 56),
    "cli-3": (3, RiskCategory.CONSERVATIVE, 219),
    "cli-4": (8, RiskCategory.AGGRESSIVE, 14),
    "cli-5": (6, RiskCategory.GROWTH, 88),
    "cli-6": (4, RiskCategory.MODERATE, 23),
    "cli-7": (2, RiskCategory.CONSERVATIVE, 71),
    "cli-8": (9, RiskCategory.AGGRESSIVE, 5),
    "cli-9": (5, RiskCategory.BALANCED, 107),
    "cli-10": (4, RiskCategory.MODERATE, 17),
    "cli-11": (6, RiskCategory.GROWTH, 64),
    "cli-12": (10, RiskCategory.AGGRESSIVE, 10),
}

SEED_PORTFOLIO_VALUES: Dict[str, Decimal] = {
    "cli-1": Decimal("1250000"),
    "cli-2": Decimal("850000"),
    "cli-3": Decimal("450000"),
    "cli-4": Decimal("610000"),
    "cli-5": Decimal("920000"),
    "cli-6": Decimal("480000"),
    "cli-7": Decimal("3500000"),
    "cli-8": Decimal("390000"),
    "cli-9": Decimal("1100000"),
    "cli-10": Decimal("725000"),
    "cli-11": Decimal("670000"),
    "cli-12": Decimal("340000"),
}

SEED_CASH_RATIO: Dict[str, Decimal] = {
    "cli-1": Decimal("0.12"),
    "cli-5": Decimal("0.15"),
}
DEFAULT_CASH_RATIO = Decimal("0.05")

# cli-3 carries a legacy QQQ position well above the concentration threshold.
CONCENTRATED_CLIENT = "cli-3"
CONCENTRATED_INSTRUMENT = "ins-8"
CONCENTRATED_RATIO = Decimal("0.45")


def _primary_instruments(risk_score: int) -> List[str]:
    if risk_score >= 8:
        return ["ins-1", "ins-8", "ins-12", "ins-4"]
    if risk_score >= 6:
        return ["ins-1", "ins-3", "ins-11", "ins-13"]
    if risk_score >= 4:
        return ["ins-1", "ins-2", "ins-6", "ins-13"]
    return ["ins-2", "ins-6", "ins-9", "ins-13"]


def build_demo_book(
    client_id: str, risk_score: int, now: datetime
) -> tuple[Portfolio, List[Holding]]:
    prices = {i.instrument_id: i.current_price for i in SEED_INSTRUMENTS}
    base_value = SEED_PORTFOLIO_VALUES[client_id]
    cash = (base_value * SEED_CASH_RATIO.get(client_id, DEFAULT_CASH_RATIO)).quantize(_CENT)
    invested = base_value - cash
    portfolio_id = f"port-{client_id}"

    quantities: Dict[str, int] = {}
    primary = _primary_instruments(risk_score)
    if client_id == CONCENTRATED_CLIENT:
        price = prices[CONCENTRATED_INSTRUMENT]
        quantities[CONCENTRATED_INSTRUMENT] = int(invested * CONCENTRATED_RATIO // price)
        invested -= quantities[CONCENTRATED_INSTRUMENT] * price
    per_instrument = invested / len(primary)

    for instrument_id in primary:
        qty = int(per_instrument // prices[instrument_id])
        if qty > 0:
            quantities[instrument_id] = quantities.get(instrument_id, 0) + qty

    holdings = [
        Holding(
            portfolio_id=portfolio_id,
            instrument_id=instrument_id,
            quantity=qty,
            average_cost=(prices[instrument_id] * Decimal("0.95")).quantize(
                _CENT, rounding=ROUND_HALF_UP
            ),
            last_updated=now,
        )
        for instrument_id, qty in quantities.items()
    ]
    portfolio = Portfolio(
        portfolio_id=portfolio_id,
        client_id=client_id,
        cash=cash,
        last_updated=now,
    )
    return portfolio, holdings


def seed_demo_data(store: WealthStore, *, now: datetime) -> None:
    """
    Loads the demo catalog and one portfolio per demo client.
    Existing portfolios are left untouched so a persistent store can be
    re-seeded on every start.
    """
    for model in validate_risk_bands(SEED_MODEL_PORTFOLIOS):
        store.upsert_model_portfolio(model)
    for instrument in SEED_INSTRUMENTS:
        store.upsert_instrument(instrument)

    created = 0
    for client_id, (score, category, age_days) in SEED_RISK_PROFILES.items():
        if store.get_risk_profile(client_id=client_id) is None:
            store.upsert_risk_profile(
                RiskProfile(
                    client_id=client_id,
                    score=score,
                    category=category,
                    last_updated=now - timedelta(days=age_days),
                )
            )
        if store.get_portfolio(portfolio_id=f"port-{client_id}") is not None:
            continue
        portfolio, holdings = build_demo_book(client_id, score, now)
        store.create_portfolio(portfolio)
        for holding in holdings:
            store.seed_holding(holding)
        created += 1

    logger.info(
        "seed.demo_data_loaded",
        extra={
            "extra_fields": {
                "instruments": len(SEED_INSTRUMENTS),
                "model_portfolios": len(SEED_MODEL_PORTFOLIOS),
                "portfolios_created": created,
            }
        },
    )
