import pytest
import ujson

from rebalancer.exceptions import RebalancerValueError
from rebalancer.rebalance.types import (
    Holdings,
    RebalanceResult,
    RebalanceStage,
    SwapDirection,
    SwapPlan,
)
from tests.conftest import OWNER


def test_holdings_arithmetic() -> None:
    assert Holdings(1, 2) + Holdings(3, 4) == Holdings(4, 6)
    assert Holdings(3, 4) - Holdings(1, 2) == Holdings(2, 2)

    with pytest.raises(RebalancerValueError, match="cannot be negative"):
        Holdings(1, 2) - Holdings(2, 1)


def test_holdings_cannot_be_negative() -> None:
    with pytest.raises(RebalancerValueError):
        Holdings(-1, 0)
    with pytest.raises(RebalancerValueError):
        Holdings(0, -1)


def test_holdings_truthiness() -> None:
    assert not Holdings()
    assert Holdings(1, 0)
    assert Holdings(0, 1)


def test_single_sided_holdings() -> None:
    assert Holdings(1, 0).is_single_sided
    assert Holdings(0, 1).is_single_sided
    assert not Holdings(1, 1).is_single_sided
    assert not Holdings().is_single_sided


def test_swap_direction() -> None:
    assert SwapDirection.ZERO_FOR_ONE.zero_for_one
    assert not SwapDirection.ONE_FOR_ZERO.zero_for_one


def test_swap_plan_apply() -> None:
    plan = SwapPlan(
        direction=SwapDirection.ZERO_FOR_ONE,
        amount_in=40,
        min_amount_out=70,
        expected_amount_out=80,
        sqrt_price_limit_x96=2**95,
        expected_sqrt_price_x96=2**96 - 1,
    )
    assert plan.apply(Holdings(100, 10), 75) == Holdings(60, 85)

    plan = SwapPlan(
        direction=SwapDirection.ONE_FOR_ZERO,
        amount_in=10,
        min_amount_out=3,
        expected_amount_out=4,
        sqrt_price_limit_x96=2**97,
        expected_sqrt_price_x96=2**96 + 1,
    )
    assert plan.apply(Holdings(100, 10), 4) == Holdings(104, 0)

    # A plan cannot spend more than the holdings
    with pytest.raises(RebalancerValueError):
        plan.apply(Holdings(100, 5), 4)


def test_result_event() -> None:
    result = RebalanceResult(
        old_position_id=2,
        new_position_id=3,
        owner=OWNER,
        tick_lower=-600,
        tick_upper=600,
        liquidity=10**20,
        amount0_withdrawn=10**18,
        amount1_withdrawn=0,
        amount0_deposited=5 * 10**17,
        amount1_deposited=5 * 10**17,
        amount0_refunded=1,
        amount1_refunded=0,
        swap_direction=SwapDirection.ZERO_FOR_ONE,
        swap_amount_in=5 * 10**17,
        swap_amount_out=5 * 10**17,
    )

    event = result.as_event()
    assert event["swap_direction"] == "ZERO_FOR_ONE"
    assert event["owner"] == OWNER
    assert event["liquidity"] == 10**20
    assert ujson.loads(ujson.dumps(event)) == event


def test_result_event_without_swap() -> None:
    result = RebalanceResult(
        old_position_id=2,
        new_position_id=3,
        owner=OWNER,
        tick_lower=-600,
        tick_upper=600,
        liquidity=10**20,
        amount0_withdrawn=10**18,
        amount1_withdrawn=10**18,
        amount0_deposited=10**18,
        amount1_deposited=10**18,
        amount0_refunded=0,
        amount1_refunded=0,
    )
    assert result.as_event()["swap_direction"] is None
    assert result.swap_amount_in == result.swap_amount_out == 0


def test_stages_are_distinct() -> None:
    assert len({stage.value for stage in RebalanceStage}) == len(RebalanceStage)
    assert RebalanceStage["SWEEPING"] is RebalanceStage.SWEEPING
