"""
FILE: src/core/models.py
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

_ALLOCATION_SUM_TOLERANCE = Decimal("0.01")


class AssetClass(str, Enum):
    EQUITY = "EQUITY"
    FIXED_INCOME = "FIXED_INCOME"
    CASH = "CASH"
    ALTERNATIVE = "ALTERNATIVE"
    REAL_ESTATE = "REAL_ESTATE"


class RiskCategory(str, Enum):
    CONSERVATIVE = "CONSERVATIVE"
    MODERATE = "MODERATE"
    BALANCED = "BALANCED"
    GROWTH = "GROWTH"
    AGGRESSIVE = "AGGRESSIVE"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"


AuditEventType = Literal["ORDER_CREATED", "ORDER_EXECUTED", "ORDER_FAILED"]
ActionType = Literal[
    "REFRESH_RISK_PROFILE",
    "REBALANCE_PORTFOLIO",
    "INVEST_CASH",
    "REDUCE_CONCENTRATION",
]
ActionPriority = Literal["HIGH", "MEDIUM", "LOW"]


class Instrument(BaseModel):
    instrument_id: str = Field(description="Unique instrument identifier.", examples=["ins-1"])
    symbol: str = Field(description="Ticker symbol.", examples=["VTI"])
    name: str = Field(
        description="Instrument display name.", examples=["Vanguard Total Stock Market ETF"]
    )
    asset_class: AssetClass = Field(description="Asset-class bucket.", examples=["EQUITY"])
    current_price: Decimal = Field(
        ge=0,
        description="Last price used for valuation and MARKET fills.",
        examples=["245.50"],
    )
    risk_rating: Optional[int] = Field(
        default=None,
        ge=0,
        le=10,
        description=(
            "Minimum client risk score required to hold the instrument. "
            "Defaults per asset class when omitted."
        ),
        examples=[5],
    )
    suitability_max_risk: Optional[int] = Field(
        default=None,
        ge=0,
        le=10,
        description="Optional maximum client risk score for which the instrument is suitable.",
        examples=[10],
    )
    description: str = Field(default="", description="Free-text instrument description.")


class RiskProfile(BaseModel):
    client_id: str = Field(description="Client identifier.", examples=["cli-1"])
    score: int = Field(ge=0, le=10, description="Risk tolerance score.", examples=[7])
    category: RiskCategory = Field(description="Risk category label.", examples=["GROWTH"])
    last_updated: datetime = Field(description="UTC timestamp of the last questionnaire.")


class Portfolio(BaseModel):
    portfolio_id: str = Field(description="Portfolio identifier.", examples=["port-cli-1"])
    client_id: str = Field(description="Owning client identifier.", examples=["cli-1"])
    cash: Decimal = Field(
        ge=0,
        description="Available cash in base currency.",
        examples=["10000.00"],
    )
    base_currency: str = Field(default="USD", description="Base currency.", examples=["USD"])
    last_updated: Optional[datetime] = Field(
        default=None, description="UTC timestamp of the last cash mutation."
    )


class Holding(BaseModel):
    portfolio_id: str = Field(description="Owning portfolio identifier.")
    instrument_id: str = Field(description="Held instrument identifier.")
    quantity: int = Field(gt=0, description="Held quantity.", examples=[10])
    average_cost: Decimal = Field(
        gt=0, description="Quantity-weighted average cost per unit.", examples=["50.00"]
    )
    last_updated: datetime = Field(description="UTC timestamp of the last fill.")


class Order(BaseModel):
    order_id: str = Field(description="Order identifier.", examples=["ord_1a2b3c4d5e6f"])
    portfolio_id: str = Field(description="Portfolio the order trades in.")
    instrument_id: str = Field(description="Traded instrument identifier.")
    side: OrderSide = Field(description="Order side.", examples=["BUY"])
    order_type: OrderType = Field(description="Order type.", examples=["MARKET"])
    quantity: int = Field(gt=0, description="Order quantity.", examples=[10])
    limit_price: Optional[Decimal] = Field(
        default=None, description="Limit price, present iff order_type=LIMIT."
    )
    status: OrderStatus = Field(default=OrderStatus.PENDING, description="Order status.")
    created_by: str = Field(description="Actor id that submitted the order.")
    created_at: datetime = Field(description="UTC submission timestamp.")
    executed_at: Optional[datetime] = Field(default=None, description="UTC fill timestamp.")
    executed_price: Optional[Decimal] = Field(default=None, description="Fill price.")
    failure_reason: Optional[str] = Field(
        default=None, description="Failure reason when status=FAILED."
    )
    idempotency_key: str = Field(description="Unique key for the logical submission.")
    request_hash: str = Field(description="Canonical hash of the submission payload.")

    @property
    def is_terminal(self) -> bool:
        return self.status != OrderStatus.PENDING


class Transaction(BaseModel):
    transaction_id: str = Field(description="Transaction identifier.")
    portfolio_id: str = Field(description="Portfolio identifier.")
    instrument_id: str = Field(description="Instrument identifier.")
    type: OrderSide = Field(description="Transaction type.", examples=["BUY"])
    quantity: int = Field(gt=0, description="Filled quantity.")
    price: Decimal = Field(description="Fill price.")
    amount: Decimal = Field(description="quantity x price.")
    timestamp: datetime = Field(description="UTC fill timestamp.")
    order_id: str = Field(description="Order that produced this transaction.")


class ModelAllocation(BaseModel):
    asset_class: AssetClass = Field(description="Asset-class bucket.", examples=["EQUITY"])
    target_percentage: Decimal = Field(
        ge=0, le=100, description="Target percentage of portfolio value.", examples=["60"]
    )


class ModelPortfolio(BaseModel):
    model_id: str = Field(description="Model portfolio identifier.", examples=["mp-3"])
    name: str = Field(description="Model display name.", examples=["Balanced"])
    description: str = Field(default="", description="Model description.")
    min_risk_score: int = Field(ge=0, le=10, description="Inclusive lower risk-band bound.")
    max_risk_score: int = Field(ge=0, le=10, description="Inclusive upper risk-band bound.")
    allocations: List[ModelAllocation] = Field(description="Target allocation by asset class.")

    @field_validator("allocations")
    @classmethod
    def validate_allocations(cls, v: List[ModelAllocation]) -> List[ModelAllocation]:
        seen = set()
        for allocation in v:
            if allocation.asset_class in seen:
                raise ValueError("model allocations must not repeat an asset class")
            seen.add(allocation.asset_class)
        total = sum((allocation.target_percentage for allocation in v), Decimal("0"))
        if abs(total - Decimal("100")) > _ALLOCATION_SUM_TOLERANCE:
            raise ValueError("model allocation target percentages must sum to 100")
        return v

    @model_validator(mode="after")
    def validate_risk_band(self) -> "ModelPortfolio":
        if self.min_risk_score > self.max_risk_score:
            raise ValueError("min_risk_score cannot exceed max_risk_score")
        return self

    def target_map(self) -> Dict[AssetClass, Decimal]:
        return {a.asset_class: a.target_percentage for a in self.allocations}


class AuditEvent(BaseModel):
    event_id: str = Field(description="Audit event identifier.")
    event_type: AuditEventType = Field(description="Audit event type.")
    actor_id: str = Field(description="Actor responsible for the event.")
    client_id: Optional[str] = Field(default=None, description="Client the event concerns.")
    occurred_at: datetime = Field(description="UTC timestamp.")
    details: Dict[str, Any] = Field(default_factory=dict, description="Free-form payload.")


class SuitabilityResult(BaseModel):
    suitable: bool
    reason: Optional[str] = None
    required_min_score: int
    client_score: int


class CashSufficiencyResult(BaseModel):
    sufficient: bool
    available: Decimal
    required: Decimal


class ConcentrationResult(BaseModel):
    acceptable: bool
    resulting_percentage: Decimal
    limit: Decimal


class AllocationBreakdown(BaseModel):
    asset_class: AssetClass = Field(description="Asset-class bucket.", examples=["EQUITY"])
    value: Decimal = Field(description="Market value in base currency.", examples=["500.00"])
    percentage: Decimal = Field(description="Share of total value, 0-100.", examples=["5.0"])


class DriftResult(BaseModel):
    portfolio_id: str
    risk_score: int
    model_id: Optional[str] = Field(
        default=None, description="Selected model id, absent when no model matches."
    )
    model_name: Optional[str] = Field(default=None, description="Selected model name.")
    drift_percentage: Decimal = Field(
        description="Half the sum of absolute allocation differences, 0-100.",
        examples=["12.5"],
    )
    threshold: Decimal = Field(description="Drift above which rebalancing is recommended.")
    rebalance_required: bool


class OrderSubmitRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "instrument_id": "ins-1",
                "side": "BUY",
                "order_type": "MARKET",
                "quantity": 10,
            }
        }
    }

    instrument_id: str = Field(description="Instrument to trade.", examples=["ins-1"])
    side: OrderSide = Field(description="Order side.", examples=["BUY"])
    order_type: OrderType = Field(
        default=OrderType.MARKET, description="Order type.", examples=["MARKET"]
    )
    quantity: int = Field(gt=0, description="Whole-unit quantity.", examples=[10])
    limit_price: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Limit price; required for LIMIT orders, rejected for MARKET orders.",
        examples=["48.50"],
    )

    @model_validator(mode="after")
    def validate_limit_price(self) -> "OrderSubmitRequest":
        if self.order_type == OrderType.LIMIT and self.limit_price is None:
            raise ValueError("limit_price is required for LIMIT orders")
        if self.order_type == OrderType.MARKET and self.limit_price is not None:
            raise ValueError("limit_price is only allowed for LIMIT orders")
        return self


class OrderSubmitResponse(BaseModel):
    order_id: str = Field(description="Created order identifier.")
    status: OrderStatus = Field(description="Order status at response time.")
    idempotency_key: str = Field(description="Idempotency key bound to the order.")


class NextBestAction(BaseModel):
    action_id: str
    client_id: str
    type: ActionType
    title: str
    description: str
    priority: ActionPriority
    created_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PortfolioHealth(BaseModel):
    portfolio_id: str
    score: int = Field(ge=0, le=100, description="Composite health score.")
    drift_percentage: Decimal
    model_name: Optional[str] = None
    risk_profile_stale: bool
    high_cash: bool
    cash_percentage: Decimal


class PortfolioSummary(BaseModel):
    portfolio: Portfolio
    total_value: Decimal = Field(description="Cash plus market value of holdings.")
    holdings_count: int
