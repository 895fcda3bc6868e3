import threading
from decimal import Decimal

import pytest

from src.core.models import OrderStatus
from src.core.orders import (
    OrderIdempotencyConflictError,
    OrderNotFoundError,
    OrderRejectedError,
    PortfolioNotFoundError,
)
from tests.factories import buy, instrument, portfolio, risk_profile, sell


def _reject_code(engine, request, portfolio_id="pf_1") -> str:
    with pytest.raises(OrderRejectedError) as exc_info:
        engine.submit_order(portfolio_id=portfolio_id, request=request, actor_id="adv_1")
    return exc_info.value.code


def test_market_buy_is_pending_until_scheduled_fill_runs(engine, store, scheduler):
    response = engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 10), actor_id="adv_1")

    assert response.status == OrderStatus.PENDING
    assert scheduler.pending() == [response.order_id]
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("10000")

    assert scheduler.run_pending() == 1

    order = store.get_order(order_id=response.order_id)
    assert order.status == OrderStatus.EXECUTED
    assert order.executed_price == Decimal("50")
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("9500")
    position = store.get_holding(portfolio_id="pf_1", instrument_id="eq_1")
    assert position.quantity == 10
    assert position.average_cost == Decimal("50")
    transactions = store.list_transactions(portfolio_id="pf_1")
    assert len(transactions) == 1
    assert transactions[0].amount == Decimal("500")
    assert transactions[0].order_id == response.order_id
    assert [e.event_type for e in store.list_audit_events(client_id="c_1")] == [
        "ORDER_CREATED",
        "ORDER_EXECUTED",
    ]


def test_buy_exceeding_cash_is_rejected_without_side_effects(engine, store, scheduler):
    with pytest.raises(OrderRejectedError) as exc_info:
        engine.submit_order(portfolio_id="pf_1", request=buy("eq_2", 101), actor_id="adv_1")

    assert exc_info.value.code == "INSUFFICIENT_CASH"
    assert exc_info.value.reason == "Required: 10100.00, Available: 10000.00"
    assert store.list_orders(portfolio_id="pf_1") == []
    assert store.list_audit_events() == []
    assert scheduler.pending() == []


def test_sell_of_entire_position_removes_holding(engine, store, scheduler, seed_holding):
    seed_holding("eq_1", 10)

    engine.submit_order(portfolio_id="pf_1", request=sell("eq_1", 10), actor_id="adv_1")
    scheduler.run_pending()

    assert store.get_holding(portfolio_id="pf_1", instrument_id="eq_1") is None
    assert store.list_holdings(portfolio_id="pf_1") == []
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("10500")


def test_suitability_is_checked_before_cash_and_concentration(engine, store):
    store.upsert_risk_profile(risk_profile("c_1", score=3))

    # alt_1 defaults to a minimum score of 7 and the order also breaks cash and concentration
    with pytest.raises(OrderRejectedError) as exc_info:
        engine.submit_order(
            portfolio_id="pf_1", request=buy("alt_1", 100000), actor_id="adv_1"
        )

    assert exc_info.value.code == "SUITABILITY_FAILED"
    assert "requires minimum risk score of 7" in exc_info.value.reason
    assert "Client risk score is 3" in exc_info.value.reason


def test_suitability_max_risk_blocks_high_score_client(engine, store):
    store.upsert_instrument(
        instrument("fi_short", asset_class="FIXED_INCOME", price="10", risk_rating=1, max_risk=4)
    )

    assert _reject_code(engine, buy("fi_short", 1)) == "SUITABILITY_FAILED"


def test_concentration_limit_is_inclusive(engine, store, scheduler):
    # 50 x 50 = 2,500 of a 10,000 portfolio is exactly 25%
    engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 50), actor_id="adv_1")

    assert _reject_code(engine, buy("eq_2", 26)) == "CONCENTRATION_LIMIT_EXCEEDED"


def test_concentration_counts_existing_position(engine, seed_holding):
    seed_holding("eq_1", 40)

    # 40 held is 2,000 of a 12,000 portfolio; adding 21 reaches 3,050 (25.4%)
    with pytest.raises(OrderRejectedError) as exc_info:
        engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 21), actor_id="adv_1")

    assert exc_info.value.code == "CONCENTRATION_LIMIT_EXCEEDED"
    assert "limit 25%" in exc_info.value.reason
    response = engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_1", 15), actor_id="adv_1"
    )
    assert response.status == OrderStatus.PENDING


def test_average_cost_is_weighted_across_buys(engine, store, scheduler):
    engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 10), actor_id="adv_1")
    scheduler.run_pending()
    store.update_instrument_price(instrument_id="eq_1", price=Decimal("60"))
    engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 10), actor_id="adv_1")
    scheduler.run_pending()

    position = store.get_holding(portfolio_id="pf_1", instrument_id="eq_1")
    assert position.quantity == 20
    assert position.average_cost == Decimal("55")
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("8900")


def test_limit_order_fills_at_limit_price(engine, store, scheduler):
    response = engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_1", 10, limit_price="45"), actor_id="adv_1"
    )
    scheduler.run_pending()

    order = store.get_order(order_id=response.order_id)
    assert order.executed_price == Decimal("45")
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("9550")


def test_duplicate_execution_trigger_applies_fill_once(engine, store, scheduler):
    response = engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_1", 10), actor_id="adv_1"
    )
    first = engine.execute_order(order_id=response.order_id)
    second = engine.execute_order(order_id=response.order_id)
    scheduler.run_pending()

    assert first.status == OrderStatus.EXECUTED
    assert second.status == OrderStatus.EXECUTED
    assert second.executed_at == first.executed_at
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("9500")
    assert store.get_holding(portfolio_id="pf_1", instrument_id="eq_1").quantity == 10
    assert len(store.list_transactions(portfolio_id="pf_1")) == 1


def test_order_fails_when_instrument_is_delisted_before_fill(engine, store, scheduler):
    response = engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_1", 10), actor_id="adv_1"
    )
    store.delete_instrument(instrument_id="eq_1")
    scheduler.run_pending()

    order = store.get_order(order_id=response.order_id)
    assert order.status == OrderStatus.FAILED
    assert order.failure_reason == "Instrument not found"
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("10000")
    assert store.list_transactions(portfolio_id="pf_1") == []
    assert store.list_audit_events()[-1].event_type == "ORDER_FAILED"


def test_order_fails_when_price_moves_beyond_available_cash(engine, store, scheduler):
    response = engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_1", 10), actor_id="adv_1"
    )
    store.update_instrument_price(instrument_id="eq_1", price=Decimal("5000"))
    scheduler.run_pending()

    order = store.get_order(order_id=response.order_id)
    assert order.status == OrderStatus.FAILED
    assert order.failure_reason == "Insufficient cash"
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("10000")
    assert store.get_holding(portfolio_id="pf_1", instrument_id="eq_1") is None


def test_failed_order_is_not_re_executed(engine, store):
    response = engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_1", 10), actor_id="adv_1"
    )
    store.delete_instrument(instrument_id="eq_1")
    failed = engine.execute_order(order_id=response.order_id)

    assert failed.status == OrderStatus.FAILED
    assert engine.execute_order(order_id=response.order_id).status == OrderStatus.FAILED
    assert [e.event_type for e in store.list_audit_events()] == [
        "ORDER_CREATED",
        "ORDER_FAILED",
    ]


def test_sell_without_position_is_rejected(engine):
    assert _reject_code(engine, sell("eq_1", 1)) == "INSUFFICIENT_HOLDINGS"


def test_sell_quantity_is_reserved_by_pending_sells(engine, seed_holding):
    seed_holding("eq_1", 10)
    engine.submit_order(portfolio_id="pf_1", request=sell("eq_1", 6), actor_id="adv_1")

    with pytest.raises(OrderRejectedError) as exc_info:
        engine.submit_order(portfolio_id="pf_1", request=sell("eq_1", 5), actor_id="adv_1")

    assert exc_info.value.code == "INSUFFICIENT_HOLDINGS"
    assert exc_info.value.reason == "Requested: 5, Available to sell: 4"


def test_partial_sell_keeps_average_cost(engine, store, scheduler, seed_holding):
    seed_holding("eq_1", 10, average_cost="40")
    engine.submit_order(portfolio_id="pf_1", request=sell("eq_1", 4), actor_id="adv_1")
    scheduler.run_pending()

    position = store.get_holding(portfolio_id="pf_1", instrument_id="eq_1")
    assert position.quantity == 6
    assert position.average_cost == Decimal("40")
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("10200")


def test_unknown_portfolio_instrument_and_profile(engine, store):
    with pytest.raises(PortfolioNotFoundError, match="PORTFOLIO_NOT_FOUND"):
        engine.submit_order(portfolio_id="pf_missing", request=buy("eq_1", 1), actor_id="a")

    assert _reject_code(engine, buy("nope", 1)) == "INSTRUMENT_NOT_FOUND"

    store.create_portfolio(portfolio("pf_2", client_id="c_unprofiled", cash="1000"))
    assert _reject_code(engine, buy("eq_1", 1), portfolio_id="pf_2") == "RISK_PROFILE_NOT_FOUND"


def test_idempotent_replay_returns_original_order(engine, store, scheduler):
    first = engine.submit_order(
        portfolio_id="pf_1",
        request=buy("eq_1", 10),
        actor_id="adv_1",
        idempotency_key="idem-1",
    )
    replay = engine.submit_order(
        portfolio_id="pf_1",
        request=buy("eq_1", 10),
        actor_id="adv_1",
        idempotency_key="idem-1",
    )

    assert replay.order_id == first.order_id
    assert replay.idempotency_key == "idem-1"
    assert len(store.list_orders(portfolio_id="pf_1")) == 1
    assert scheduler.pending() == [first.order_id]

    scheduler.run_pending()
    after_fill = engine.submit_order(
        portfolio_id="pf_1",
        request=buy("eq_1", 10),
        actor_id="adv_1",
        idempotency_key="idem-1",
    )
    assert after_fill.status == OrderStatus.EXECUTED


def test_idempotency_key_reuse_with_different_payload_conflicts(engine):
    engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_1", 10), actor_id="adv_1", idempotency_key="idem-2"
    )

    with pytest.raises(OrderIdempotencyConflictError, match="IDEMPOTENCY_KEY_CONFLICT"):
        engine.submit_order(
            portfolio_id="pf_1",
            request=buy("eq_1", 11),
            actor_id="adv_1",
            idempotency_key="idem-2",
        )


def test_generated_idempotency_keys_are_unique(engine):
    first = engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 1), actor_id="adv_1")
    second = engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 1), actor_id="adv_1")

    assert first.idempotency_key != second.idempotency_key
    assert first.idempotency_key.startswith("pf_1-eq_1-")


def test_order_history_is_newest_first(engine):
    first = engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 1), actor_id="adv_1")
    second = engine.submit_order(portfolio_id="pf_1", request=buy("fi_1", 1), actor_id="adv_1")

    history = engine.get_order_history(portfolio_id="pf_1")

    assert [o.order_id for o in history] == [second.order_id, first.order_id]
    with pytest.raises(PortfolioNotFoundError):
        engine.get_order_history(portfolio_id="pf_missing")


def test_unknown_order_lookup_and_execution(engine):
    with pytest.raises(OrderNotFoundError):
        engine.get_order(order_id="ord_missing")
    with pytest.raises(OrderNotFoundError):
        engine.execute_order(order_id="ord_missing")


def test_lifecycle_events_are_published(engine, event_bus, scheduler):
    received = []
    unsubscribe = event_bus.subscribe(lambda event: received.append(event.event_type))

    engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 1), actor_id="adv_1")
    scheduler.run_pending()
    unsubscribe()
    engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 1), actor_id="adv_1")

    assert received == ["ORDER_CREATED", "ORDER_EXECUTED"]


def test_failing_subscriber_does_not_block_fill(engine, event_bus, store, scheduler):
    def _broken(_event):
        raise RuntimeError("subscriber down")

    event_bus.subscribe(_broken)
    response = engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_1", 1), actor_id="adv_1"
    )
    scheduler.run_pending()

    assert store.get_order(order_id=response.order_id).status == OrderStatus.EXECUTED


def test_created_audit_event_records_actor(engine, store):
    response = engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_1", 2), actor_id="adv_7"
    )

    event = store.list_audit_events(client_id="c_1")[0]
    assert event.event_type == "ORDER_CREATED"
    assert event.actor_id == "adv_7"
    assert event.details["order_id"] == response.order_id
    assert event.details["instrument"] == "EQ_1"
    assert event.details["quantity"] == 2


def test_unknown_portfolios_do_not_accumulate_locks(engine):
    for idx in range(50):
        with pytest.raises(PortfolioNotFoundError):
            engine.submit_order(
                portfolio_id=f"pf_unknown_{idx}", request=buy("eq_1", 1), actor_id="adv_1"
            )

    assert len(engine._portfolio_locks) == 0


def test_replay_matches_equal_limit_prices_written_differently(engine, store):
    first = engine.submit_order(
        portfolio_id="pf_1",
        request=buy("eq_1", 10, limit_price="48.50"),
        actor_id="adv_1",
        idempotency_key="idem-limit",
    )
    replay = engine.submit_order(
        portfolio_id="pf_1",
        request=buy("eq_1", 10, limit_price="48.5"),
        actor_id="adv_1",
        idempotency_key="idem-limit",
    )

    assert replay.order_id == first.order_id
    assert len(store.list_orders(portfolio_id="pf_1")) == 1


def test_cash_committed_to_pending_buys_is_not_available(engine, store, scheduler):
    # three pending buys of 2,500 each leave 2,500 of the 10,000 uncommitted
    engine.submit_order(portfolio_id="pf_1", request=buy("eq_1", 50), actor_id="adv_1")
    engine.submit_order(
        portfolio_id="pf_1", request=buy("eq_2", 25, limit_price="100"), actor_id="adv_1"
    )
    engine.submit_order(portfolio_id="pf_1", request=buy("fi_1", 125), actor_id="adv_1")

    with pytest.raises(OrderRejectedError) as exc_info:
        engine.submit_order(portfolio_id="pf_1", request=buy("fi_1", 150), actor_id="adv_1")

    assert exc_info.value.code == "INSUFFICIENT_CASH"
    assert exc_info.value.reason == "Required: 3000.00, Available: 2500.00"

    scheduler.run_pending()
    orders = store.list_orders(portfolio_id="pf_1")
    assert [o.status for o in orders] == [OrderStatus.EXECUTED] * 3
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("2500")


def test_concurrent_execution_triggers_fill_each_order_once(engine, store):
    order_ids = [
        engine.submit_order(
            portfolio_id="pf_1", request=buy("fi_1", 1), actor_id="adv_1"
        ).order_id
        for _ in range(20)
    ]
    triggers = order_ids * 2
    barrier = threading.Barrier(len(triggers))
    errors = []

    def _trigger(order_id):
        try:
            barrier.wait(timeout=10)
            engine.execute_order(order_id=order_id)
        except Exception as exc:  # surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=_trigger, args=(oid,)) for oid in triggers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert store.get_portfolio(portfolio_id="pf_1").cash == Decimal("9600")
    assert store.get_holding(portfolio_id="pf_1", instrument_id="fi_1").quantity == 20
    assert len(store.list_transactions(portfolio_id="pf_1")) == 20
    assert {o.status for o in store.list_orders(portfolio_id="pf_1")} == {OrderStatus.EXECUTED}
