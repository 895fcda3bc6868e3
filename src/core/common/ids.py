import uuid


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def order_idempotency_key(portfolio_id: str, instrument_id: str) -> str:
    return f"{portfolio_id}-{instrument_id}-{uuid.uuid4().hex[:16]}"
