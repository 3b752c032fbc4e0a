import copy
import threading
from decimal import Decimal

import pytest

from rebalancer.checksum_cache import get_checksum_address
from rebalancer.config import Settings, SolverSettings
from rebalancer.exceptions import (
    Aborted,
    EVMRevertError,
    InvalidRange,
    NotOwner,
    PositionLocked,
    PositionNotFound,
    RebalancerValueError,
    SlippageExceeded,
)
from rebalancer.rebalance.custody import PositionCustody
from rebalancer.rebalance.orchestrator import Rebalancer
from rebalancer.rebalance.types import RebalanceStage, SwapDirection
from rebalancer.types.aliases import PositionId
from rebalancer.uniswap.v3_functions import encode_sqrt_price_x96
from rebalancer.uniswap.v3_liquidity_pool import UniswapV3Pool
from rebalancer.uniswap.v3_types import MintParams
from tests.conftest import (
    OWNER,
    REBALANCER_ADDRESS,
    TOKEN0,
    TOKEN1,
    TRADER,
    World,
    tick_for_price,
    total_token_supply,
)

OLD_LOWER, OLD_UPPER = tick_for_price(1500), tick_for_price(3200)
MIXED_LOWER, MIXED_UPPER = tick_for_price(1800), tick_for_price(2600)
ABOVE_LOWER, ABOVE_UPPER = tick_for_price(3300), tick_for_price(4000)

LOW_FEE_POOL_ADDRESS = get_checksum_address("0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640")


@pytest.fixture
def position_id(world: World) -> PositionId:
    """
    An owner position spanning the current price, with the rebalancer approved as its operator
    """

    position_id = world.mint_position(OLD_LOWER, OLD_UPPER, 10**18, 2000 * 10**18)
    world.position_manager.approve(position_id, REBALANCER_ADDRESS, caller=OWNER)
    return position_id


@pytest.fixture
def rebalancer(world: World, rebalancer_settings: Settings) -> Rebalancer:
    return world.make_rebalancer(rebalancer_settings)


class WorldState:
    """
    Everything a failed rebalance must leave untouched
    """

    def __init__(self, world: World) -> None:
        self.balances = copy.deepcopy(world.ledger.balances)
        self.pool_state = world.pool.state
        self.positions = {
            position_id: world.position_manager.positions(position_id)
            for position_id in range(1, world.position_manager.total_supply + 1)
        }

    def assert_unchanged(self, world: World) -> None:
        assert world.ledger.balances == self.balances
        assert world.pool.state == self.pool_state
        assert world.position_manager.total_supply == len(self.positions)
        for position_id, position in self.positions.items():
            assert world.position_manager.positions(position_id) == position


class FailingRouter:
    def swap(self, **kwargs: object) -> int:
        raise EVMRevertError(error="STF")


def test_rebalance_to_single_sided_range(
    world: World, rebalancer: Rebalancer, position_id: PositionId
) -> None:
    supply0 = total_token_supply(world.ledger, TOKEN0)
    supply1 = total_token_supply(world.ledger, TOKEN1)
    owner_balance0, owner_balance1 = world.balances(OWNER)

    result = rebalancer.rebalance_position(position_id, ABOVE_UPPER, ABOVE_LOWER, caller=OWNER)

    assert rebalancer.stage is RebalanceStage.DONE
    assert result.old_position_id == position_id
    assert result.new_position_id == position_id + 1
    assert result.owner == OWNER
    assert (result.tick_lower, result.tick_upper) == (ABOVE_LOWER, ABOVE_UPPER)

    # The range above the price holds only token0, so all of the token1 was swapped
    assert result.swap_direction is SwapDirection.ONE_FOR_ZERO
    assert result.swap_amount_in == result.amount1_withdrawn
    assert result.amount1_deposited == 0
    assert result.amount1_refunded == 0
    assert result.amount0_deposited + result.amount0_refunded == (
        result.amount0_withdrawn + result.swap_amount_out
    )
    assert result.amount0_refunded <= 2

    npm = world.position_manager
    assert npm.positions(position_id).is_empty
    new_position = npm.positions(result.new_position_id)
    assert new_position.owner == OWNER
    assert new_position.liquidity == result.liquidity
    assert (new_position.tick_lower, new_position.tick_upper) == (ABOVE_LOWER, ABOVE_UPPER)

    # Nothing is left with the rebalancer, and the refund went to the owner
    assert world.balances(REBALANCER_ADDRESS) == (0, 0)
    assert world.balances(OWNER) == (
        owner_balance0 + result.amount0_refunded,
        owner_balance1 + result.amount1_refunded,
    )
    assert total_token_supply(world.ledger, TOKEN0) == supply0
    assert total_token_supply(world.ledger, TOKEN1) == supply1


def test_rebalance_to_mixed_range(
    world: World, rebalancer: Rebalancer, position_id: PositionId
) -> None:
    supply0 = total_token_supply(world.ledger, TOKEN0)
    supply1 = total_token_supply(world.ledger, TOKEN1)

    result = rebalancer.rebalance_position(position_id, MIXED_LOWER, MIXED_UPPER, caller=OWNER)

    # The old range held more token1 than the narrower range needs at this price
    assert result.swap_direction is SwapDirection.ONE_FOR_ZERO
    assert 0 < result.swap_amount_in < result.amount1_withdrawn
    assert result.amount0_deposited > 0
    assert result.amount1_deposited > 0
    assert result.amount0_refunded * 10**6 <= result.amount0_deposited
    assert result.amount1_refunded * 10**6 <= result.amount1_deposited

    new_position = world.position_manager.positions(result.new_position_id)
    assert (new_position.tick_lower, new_position.tick_upper) == (MIXED_LOWER, MIXED_UPPER)
    assert world.pool.state.tick_data[MIXED_LOWER].liquidity_gross == new_position.liquidity

    assert world.balances(REBALANCER_ADDRESS) == (0, 0)
    assert total_token_supply(world.ledger, TOKEN0) == supply0
    assert total_token_supply(world.ledger, TOKEN1) == supply1


def test_rebalance_without_swap(world: World, rebalancer: Rebalancer) -> None:
    # A token1-only position moved to another range below the price needs no swap
    position_id = world.mint_position(tick_for_price(1000), tick_for_price(1500), 0, 10**21)
    world.position_manager.approve(position_id, REBALANCER_ADDRESS, caller=OWNER)

    result = rebalancer.rebalance_position(
        position_id, tick_for_price(1200), tick_for_price(1800), caller=OWNER
    )

    assert result.swap_direction is None
    assert result.swap_amount_in == result.swap_amount_out == 0
    assert result.amount0_withdrawn == result.amount0_deposited == 0
    # Flooring the liquidity costs up to one unit times the width of the range in sqrt price
    assert result.amount1_refunded <= 10


def test_slippage_failure_rolls_back_the_withdrawal(
    world: World, position_id: PositionId
) -> None:
    rebalancer = world.make_rebalancer(
        Settings(solver=SolverSettings(slippage_tolerance=Decimal("0.01")))
    )
    state = WorldState(world)

    with pytest.raises(Aborted, match="SOLVING") as exc_info:
        rebalancer.rebalance_position(position_id, ABOVE_LOWER, ABOVE_UPPER, caller=OWNER)

    assert exc_info.value.stage == "SOLVING"
    assert isinstance(exc_info.value.__cause__, SlippageExceeded)
    assert rebalancer.stage is RebalanceStage.ABORTED
    state.assert_unchanged(world)
    assert not PositionCustody.is_held(position_id)


def test_swap_failure_rolls_back(
    world: World, rebalancer_settings: Settings, position_id: PositionId
) -> None:
    rebalancer = Rebalancer(
        address=REBALANCER_ADDRESS,
        ledger=world.position_manager,
        pool=world.pool,
        router=FailingRouter(),
        transferrer=world.ledger,
        journal=world.journal,
        rebalancer_settings=rebalancer_settings,
    )
    state = WorldState(world)

    with pytest.raises(Aborted, match="SWAPPING") as exc_info:
        rebalancer.rebalance_position(position_id, ABOVE_LOWER, ABOVE_UPPER, caller=OWNER)

    assert isinstance(exc_info.value.__cause__, EVMRevertError)
    state.assert_unchanged(world)


def test_deposit_failure_rolls_back_the_swap(
    world: World,
    rebalancer: Rebalancer,
    position_id: PositionId,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fail_deposit(*args: object, **kwargs: object) -> None:
        raise EVMRevertError(error="Price slippage check")

    monkeypatch.setattr(rebalancer.minter, "deposit", fail_deposit)
    state = WorldState(world)

    with pytest.raises(Aborted, match="DEPOSITING"):
        rebalancer.rebalance_position(position_id, ABOVE_LOWER, ABOVE_UPPER, caller=OWNER)

    # The swap had executed against the pool before the deposit failed
    state.assert_unchanged(world)


def test_withdrawal_failure_propagates_unchanged(
    world: World,
    rebalancer: Rebalancer,
    position_id: PositionId,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fail_withdraw(*args: object, **kwargs: object) -> None:
        raise EVMRevertError(error="Not approved")

    monkeypatch.setattr(rebalancer.withdrawer, "withdraw", fail_withdraw)
    state = WorldState(world)

    with pytest.raises(EVMRevertError, match="Not approved"):
        rebalancer.rebalance_position(position_id, ABOVE_LOWER, ABOVE_UPPER, caller=OWNER)

    state.assert_unchanged(world)


def test_caller_must_own_the_position(
    world: World, rebalancer: Rebalancer, position_id: PositionId
) -> None:
    state = WorldState(world)

    with pytest.raises(NotOwner) as exc_info:
        rebalancer.rebalance_position(position_id, ABOVE_LOWER, ABOVE_UPPER, caller=TRADER)

    assert exc_info.value.caller == TRADER
    state.assert_unchanged(world)


def test_rebalancer_must_be_approved(world: World, rebalancer: Rebalancer) -> None:
    position_id = world.mint_position(OLD_LOWER, OLD_UPPER, 10**18, 2000 * 10**18)
    state = WorldState(world)

    with pytest.raises(NotOwner) as exc_info:
        rebalancer.rebalance_position(position_id, ABOVE_LOWER, ABOVE_UPPER, caller=OWNER)

    assert exc_info.value.caller == REBALANCER_ADDRESS
    state.assert_unchanged(world)


def test_unknown_position(rebalancer: Rebalancer) -> None:
    with pytest.raises(PositionNotFound):
        rebalancer.rebalance_position(999, ABOVE_LOWER, ABOVE_UPPER, caller=OWNER)


@pytest.mark.parametrize(
    ("tick_a", "tick_b"),
    [
        (ABOVE_LOWER, ABOVE_LOWER),
        (ABOVE_LOWER + 1, ABOVE_UPPER),
        (-887_280, ABOVE_UPPER),
    ],
)
def test_invalid_range(
    world: World,
    rebalancer: Rebalancer,
    position_id: PositionId,
    tick_a: int,
    tick_b: int,
) -> None:
    state = WorldState(world)

    with pytest.raises(InvalidRange):
        rebalancer.rebalance_position(position_id, tick_a, tick_b, caller=OWNER)

    state.assert_unchanged(world)


def test_position_in_use(world: World, rebalancer: Rebalancer, position_id: PositionId) -> None:
    state = WorldState(world)

    with PositionCustody(position_id), pytest.raises(PositionLocked):
        rebalancer.rebalance_position(position_id, ABOVE_LOWER, ABOVE_UPPER, caller=OWNER)

    state.assert_unchanged(world)


def test_position_from_another_pool(world: World, rebalancer: Rebalancer) -> None:
    npm = world.position_manager
    npm.add_pool(
        UniswapV3Pool(
            address=LOW_FEE_POOL_ADDRESS,
            token0=TOKEN0,
            token1=TOKEN1,
            fee=500,
            sqrt_price_x96=encode_sqrt_price_x96(2000),
            ledger=world.ledger,
        )
    )
    world.fund(OWNER, 10**18, 2000 * 10**18)
    position_id = npm.mint(
        MintParams(
            token0=TOKEN0,
            token1=TOKEN1,
            fee=500,
            tick_lower=OLD_LOWER,
            tick_upper=OLD_UPPER,
            amount0_desired=10**18,
            amount1_desired=2000 * 10**18,
            recipient=OWNER,
            payer=OWNER,
        )
    ).position_id
    npm.approve(position_id, REBALANCER_ADDRESS, caller=OWNER)
    state = WorldState(world)

    with pytest.raises(RebalancerValueError, match="does not belong to pool"):
        rebalancer.rebalance_position(position_id, ABOVE_LOWER, ABOVE_UPPER, caller=OWNER)

    state.assert_unchanged(world)
    assert not PositionCustody.is_held(position_id)


def assert_no_snapshots_kept(world: World) -> None:
    assert world.journal._snapshots == {}
    assert world.ledger._snapshots == {}
    assert world.pool._snapshots == {}
    assert world.position_manager._snapshots == {}


def test_repeated_rebalances_release_their_snapshots(
    world: World, rebalancer: Rebalancer, position_id: PositionId
) -> None:
    world.position_manager.set_approval_for_all(OWNER, REBALANCER_ADDRESS, approved=True)

    for tick_lower, tick_upper in (
        (MIXED_LOWER, MIXED_UPPER),
        (OLD_LOWER, OLD_UPPER),
        (MIXED_LOWER, MIXED_UPPER),
    ):
        result = rebalancer.rebalance_position(position_id, tick_lower, tick_upper, caller=OWNER)
        position_id = result.new_position_id
        assert_no_snapshots_kept(world)


def test_failed_rebalance_releases_its_snapshots(
    world: World, position_id: PositionId
) -> None:
    rebalancer = world.make_rebalancer(
        Settings(solver=SolverSettings(slippage_tolerance=Decimal("0.01")))
    )

    with pytest.raises(Aborted):
        rebalancer.rebalance_position(position_id, ABOVE_LOWER, ABOVE_UPPER, caller=OWNER)

    assert_no_snapshots_kept(world)


def test_calls_on_one_rebalancer_run_one_at_a_time(
    world: World, rebalancer: Rebalancer, position_id: PositionId
) -> None:
    results = []

    def rebalance() -> None:
        results.append(
            rebalancer.rebalance_position(position_id, MIXED_LOWER, MIXED_UPPER, caller=OWNER)
        )

    rebalancer._operation_lock.acquire()
    thread = threading.Thread(target=rebalance)
    thread.start()
    try:
        # The call waits for the running operation before taking custody of the position
        thread.join(timeout=0.2)
        assert thread.is_alive()
        assert not PositionCustody.is_held(position_id)
        assert rebalancer.stage is RebalanceStage.IDLE
    finally:
        rebalancer._operation_lock.release()

    thread.join(timeout=10)
    assert not thread.is_alive()
    assert results[0].new_position_id == position_id + 1
    assert rebalancer.stage is RebalanceStage.DONE
