import dataclasses
from fractions import Fraction
from itertools import count
from threading import Lock

from eth_typing import ChecksumAddress

from rebalancer.checksum_cache import get_checksum_address
from rebalancer.exceptions import (
    EVMRevertError,
    InsufficientBalance,
    LiquidityPoolError,
    RebalancerValueError,
)
from rebalancer.logging import logger
from rebalancer.transaction.simulation_ledger import SimulationLedger
from rebalancer.types.aliases import Liquidity, Pip, SqrtPriceX96, Tick
from rebalancer.uniswap.v3_functions import (
    FEE_TIER_TICK_SPACING,
    exchange_rate_from_sqrt_price_x96,
)
from rebalancer.uniswap.v3_libraries import tick as tick_library
from rebalancer.uniswap.v3_libraries.constants import Q128
from rebalancer.uniswap.v3_libraries.full_math import muldiv
from rebalancer.uniswap.v3_libraries.liquidity_math import add_delta
from rebalancer.uniswap.v3_libraries.sqrt_price_math import get_amount0_delta, get_amount1_delta
from rebalancer.uniswap.v3_libraries.swap_math import compute_swap_step
from rebalancer.uniswap.v3_libraries.tick_bitmap import gen_ticks
from rebalancer.uniswap.v3_libraries.tick_math import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
)
from rebalancer.uniswap.v3_types import LiquidityMap, UniswapV3PoolState, UniswapV3SwapResult

_UINT256_MODULUS = 2**256


@dataclasses.dataclass(slots=True, eq=False)
class SwapState:
    amount_specified_remaining: int
    amount_calculated: int
    sqrt_price_x96: int
    tick: int
    liquidity: int
    fee_growth_global0_x128: int
    fee_growth_global1_x128: int

    def __post_init__(self) -> None:
        assert self.liquidity >= 0


@dataclasses.dataclass(slots=True, eq=False)
class StepComputations:
    sqrt_price_start_x96: int = 0
    sqrt_price_next_x96: int = 0
    tick_next: int = 0
    initialized: bool = False
    amount_in: int = 0
    amount_out: int = 0
    fee_amount: int = 0


@dataclasses.dataclass(slots=True, frozen=True)
class PoolPositionInfo:
    """
    Liquidity and fee accounting for a (owner, tick_lower, tick_upper) key, mirroring the pool's
    Position.Info struct.
    """

    liquidity: Liquidity = 0
    fee_growth_inside0_last_x128: int = 0
    fee_growth_inside1_last_x128: int = 0
    tokens_owed0: int = 0
    tokens_owed1: int = 0


type PoolPositionKey = tuple[ChecksumAddress, Tick, Tick]


def calculate_swap(
    state: UniswapV3PoolState,
    *,
    zero_for_one: bool,
    amount_specified: int,
    sqrt_price_limit_x96: SqrtPriceX96 | None = None,
) -> UniswapV3SwapResult:
    """
    This function is ported and adapted from the UniswapV3Pool.sol contract at
    https://github.com/Uniswap/v3-core/blob/main/contracts/UniswapV3Pool.sol

    Returns the signed amount deltas and the pool state after the swap. A positive amount
    specified is an exact input, a negative amount is an exact output.

    A negative amount delta indicates the token quantity sent to the swapper, and a positive
    amount indicates the token quantity deposited.

    The input state is not modified. Fee growth is accumulated and initialized ticks are crossed on
    a copy of the tick data, which is attached to the final state.
    """

    if amount_specified == 0:
        raise EVMRevertError(error="AS")

    exact_input = amount_specified > 0

    if sqrt_price_limit_x96 is None:
        sqrt_price_limit_x96 = MIN_SQRT_RATIO + 1 if zero_for_one else MAX_SQRT_RATIO - 1

    if zero_for_one and not (MIN_SQRT_RATIO < sqrt_price_limit_x96 < state.sqrt_price_x96):
        raise EVMRevertError(error="SPL")

    if not zero_for_one and not (state.sqrt_price_x96 < sqrt_price_limit_x96 < MAX_SQRT_RATIO):
        raise EVMRevertError(error="SPL")

    # Crossing a tick rewrites its outside fee growth, so work on a copy
    tick_data: LiquidityMap = dict(state.tick_data)

    swap_state = SwapState(
        amount_specified_remaining=amount_specified,
        amount_calculated=0,
        sqrt_price_x96=state.sqrt_price_x96,
        tick=state.tick,
        liquidity=state.liquidity,
        fee_growth_global0_x128=state.fee_growth_global0_x128,
        fee_growth_global1_x128=state.fee_growth_global1_x128,
    )

    ticks_along_swap_path = gen_ticks(
        tick_data=tick_data,
        starting_tick=state.tick,
        tick_spacing=state.tick_spacing,
        less_than_or_equal=zero_for_one,
    )

    step = StepComputations()

    while (
        swap_state.amount_specified_remaining != 0
        and swap_state.sqrt_price_x96 != sqrt_price_limit_x96
    ):
        step.sqrt_price_start_x96 = swap_state.sqrt_price_x96
        step.tick_next, step.initialized = next(ticks_along_swap_path)

        # Ensure that we do not overshoot the min/max tick, as the tick bitmap is not aware of
        # these bounds
        step.tick_next = (
            max(MIN_TICK, step.tick_next)  # descending ticks
            if zero_for_one
            else min(MAX_TICK, step.tick_next)  # ascending ticks
        )

        step.sqrt_price_next_x96 = get_sqrt_ratio_at_tick(step.tick_next)

        # compute values to swap to the target tick, price limit, or point where
        # the input/output amount is exhausted
        swap_state.sqrt_price_x96, step.amount_in, step.amount_out, step.fee_amount = (
            compute_swap_step(
                sqrt_ratio_x96_current=swap_state.sqrt_price_x96,
                sqrt_ratio_x96_target=(
                    sqrt_price_limit_x96
                    if (
                        (zero_for_one and step.sqrt_price_next_x96 < sqrt_price_limit_x96)
                        or (not zero_for_one and step.sqrt_price_next_x96 > sqrt_price_limit_x96)
                    )
                    else step.sqrt_price_next_x96
                ),
                liquidity=swap_state.liquidity,
                amount_remaining=swap_state.amount_specified_remaining,
                fee_pips=state.fee,
            )
        )

        if exact_input:
            swap_state.amount_specified_remaining -= step.amount_in + step.fee_amount
            swap_state.amount_calculated -= step.amount_out
        else:
            swap_state.amount_specified_remaining += step.amount_out
            swap_state.amount_calculated += step.amount_in + step.fee_amount

        # Protocol fees are not modeled, so the full fee accrues to in-range liquidity
        if swap_state.liquidity > 0:
            fee_growth_delta = muldiv(step.fee_amount, Q128, swap_state.liquidity)
            if zero_for_one:
                swap_state.fee_growth_global0_x128 = (
                    swap_state.fee_growth_global0_x128 + fee_growth_delta
                ) % _UINT256_MODULUS
            else:
                swap_state.fee_growth_global1_x128 = (
                    swap_state.fee_growth_global1_x128 + fee_growth_delta
                ) % _UINT256_MODULUS

        if swap_state.sqrt_price_x96 == step.sqrt_price_next_x96:
            # If the next tick is initialized, cross it and adjust the in-range liquidity
            if step.initialized:
                liquidity_net = tick_library.cross(
                    tick_data=tick_data,
                    tick=step.tick_next,
                    fee_growth_global0_x128=swap_state.fee_growth_global0_x128,
                    fee_growth_global1_x128=swap_state.fee_growth_global1_x128,
                )
                swap_state.liquidity = add_delta(
                    swap_state.liquidity,
                    -liquidity_net if zero_for_one else liquidity_net,
                )
            swap_state.tick = step.tick_next - 1 if zero_for_one else step.tick_next

        elif swap_state.sqrt_price_x96 != step.sqrt_price_start_x96:
            # Recompute unless we're on a lower tick boundary (i.e. already transitioned ticks),
            # and haven't moved
            swap_state.tick = get_tick_at_sqrt_ratio(swap_state.sqrt_price_x96)

    amount0, amount1 = (
        (
            amount_specified - swap_state.amount_specified_remaining,
            swap_state.amount_calculated,
        )
        if zero_for_one == exact_input
        else (
            swap_state.amount_calculated,
            amount_specified - swap_state.amount_specified_remaining,
        )
    )

    return UniswapV3SwapResult(
        amount0_delta=amount0,
        amount1_delta=amount1,
        initial_state=state,
        final_state=dataclasses.replace(
            state,
            block=None,
            liquidity=swap_state.liquidity,
            sqrt_price_x96=swap_state.sqrt_price_x96,
            tick=swap_state.tick,
            tick_data=tick_data,
            fee_growth_global0_x128=swap_state.fee_growth_global0_x128,
            fee_growth_global1_x128=swap_state.fee_growth_global1_x128,
        ),
    )


def amounts_for_liquidity_delta(
    state: UniswapV3PoolState,
    tick_lower: Tick,
    tick_upper: Tick,
    liquidity_delta: int,
) -> tuple[int, int]:
    """
    Calculate the signed token amounts for a change of liquidity in the given range at the pool's
    current price. Amounts owed to the pool for added liquidity round up, and amounts released by
    removed liquidity round down.
    """

    if liquidity_delta == 0:
        return 0, 0

    sqrt_price_lower_x96 = get_sqrt_ratio_at_tick(tick_lower)
    sqrt_price_upper_x96 = get_sqrt_ratio_at_tick(tick_upper)

    if state.tick < tick_lower:
        # current tick is below the passed range; liquidity can only become in range by crossing
        # from left to right, when we'll need _more_ token0
        return get_amount0_delta(sqrt_price_lower_x96, sqrt_price_upper_x96, liquidity_delta), 0
    if state.tick < tick_upper:
        return (
            get_amount0_delta(state.sqrt_price_x96, sqrt_price_upper_x96, liquidity_delta),
            get_amount1_delta(sqrt_price_lower_x96, state.sqrt_price_x96, liquidity_delta),
        )
    # current tick is above the passed range; liquidity can only become in range by crossing from
    # right to left, when we'll need _more_ token1
    return 0, get_amount1_delta(sqrt_price_lower_x96, sqrt_price_upper_x96, liquidity_delta)


class UniswapV3Pool:
    """
    An in-memory Uniswap V3 pool. Token balances are held in a shared `SimulationLedger`, and the
    pool's own balance at its address backs every payout.

    Callers pay for mints and swaps directly from a `payer` address instead of through the
    mint/swap callbacks of the deployed contract.
    """

    def __init__(
        self,
        address: str,
        token0: str,
        token1: str,
        fee: Pip,
        sqrt_price_x96: SqrtPriceX96,
        ledger: SimulationLedger,
        *,
        tick_spacing: int | None = None,
    ) -> None:
        self.address = get_checksum_address(address)
        self.token0 = get_checksum_address(token0)
        self.token1 = get_checksum_address(token1)
        if self.token0 == self.token1:
            raise RebalancerValueError(message="Pool tokens must be distinct")
        if int(self.token0, 16) > int(self.token1, 16):
            raise RebalancerValueError(message="token0 must sort below token1")

        if tick_spacing is None:
            try:
                tick_spacing = FEE_TIER_TICK_SPACING[fee]
            except KeyError:
                raise RebalancerValueError(message=f"No tick spacing known for fee {fee}") from None

        if not (MIN_SQRT_RATIO <= sqrt_price_x96 < MAX_SQRT_RATIO):
            raise EVMRevertError(error="R")

        self.fee = fee
        self.tick_spacing = tick_spacing
        self.ledger = ledger
        self.max_liquidity_per_tick = tick_library.tick_spacing_to_max_liquidity_per_tick(
            tick_spacing
        )

        self._state_lock = Lock()
        self._state = UniswapV3PoolState(
            address=self.address,
            token0=self.token0,
            token1=self.token1,
            fee=fee,
            tick_spacing=tick_spacing,
            liquidity=0,
            sqrt_price_x96=sqrt_price_x96,
            tick=get_tick_at_sqrt_ratio(sqrt_price_x96),
        )
        self._positions: dict[PoolPositionKey, PoolPositionInfo] = {}
        self._snapshots: dict[
            int, tuple[UniswapV3PoolState, dict[PoolPositionKey, PoolPositionInfo]]
        ] = {}
        self._snapshot_ids = count()

    def __repr__(self) -> str:
        return f"UniswapV3Pool(address={self.address}, fee={self.fee})"

    @property
    def state(self) -> UniswapV3PoolState:
        """
        A fresh snapshot of the pool. The tick data is copied, so later changes to the pool are not
        visible through a snapshot already handed out.
        """

        with self._state_lock:
            return dataclasses.replace(self._state, tick_data=dict(self._state.tick_data))

    @property
    def liquidity(self) -> Liquidity:
        return self._state.liquidity

    @property
    def sqrt_price_x96(self) -> SqrtPriceX96:
        return self._state.sqrt_price_x96

    @property
    def tick(self) -> Tick:
        return self._state.tick

    @property
    def tokens(self) -> tuple[ChecksumAddress, ChecksumAddress]:
        return self.token0, self.token1

    @property
    def price(self) -> Fraction:
        """
        The nominal token1/token0 price at the current square root price.
        """

        return exchange_rate_from_sqrt_price_x96(self._state.sqrt_price_x96)

    def positions(
        self,
        owner: str,
        tick_lower: Tick,
        tick_upper: Tick,
    ) -> PoolPositionInfo:
        return self._positions.get(
            (get_checksum_address(owner), tick_lower, tick_upper), PoolPositionInfo()
        )

    def get_fee_growth_inside(self, tick_lower: Tick, tick_upper: Tick) -> tuple[int, int]:
        state = self._state
        return tick_library.get_fee_growth_inside(
            tick_data=state.tick_data,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            tick_current=state.tick,
            fee_growth_global0_x128=state.fee_growth_global0_x128,
            fee_growth_global1_x128=state.fee_growth_global1_x128,
        )

    def simulate_exact_input_swap(
        self,
        token_in: str,
        token_in_quantity: int,
        sqrt_price_limit_x96: SqrtPriceX96 | None = None,
        override_state: UniswapV3PoolState | None = None,
    ) -> UniswapV3SwapResult:
        """
        Simulate an exact input swap.
        """

        token_in = get_checksum_address(token_in)
        if token_in not in self.tokens:
            raise RebalancerValueError(message=f"Unknown token {token_in}")

        try:
            return calculate_swap(
                override_state if override_state is not None else self.state,
                zero_for_one=token_in == self.token0,
                amount_specified=token_in_quantity,
                sqrt_price_limit_x96=sqrt_price_limit_x96,
            )
        except EVMRevertError as e:
            raise LiquidityPoolError(message=f"Simulated execution reverted: {e}") from e

    def swap(
        self,
        recipient: str,
        zero_for_one: bool,
        amount_specified: int,
        sqrt_price_limit_x96: SqrtPriceX96 | None,
        payer: str,
    ) -> tuple[int, int]:
        """
        Execute a swap against the pool, moving the input from `payer` and the output to
        `recipient`. Returns the signed amount deltas from the pool's perspective.
        """

        with self._state_lock:
            result = calculate_swap(
                self._state,
                zero_for_one=zero_for_one,
                amount_specified=amount_specified,
                sqrt_price_limit_x96=sqrt_price_limit_x96,
            )

            token_in, token_out = (
                (self.token0, self.token1) if zero_for_one else (self.token1, self.token0)
            )
            self.ledger.transfer(
                token=token_in,
                amount=result.amount_in,
                from_addr=payer,
                to_addr=self.address,
            )
            self.ledger.transfer(
                token=token_out,
                amount=result.amount_out,
                from_addr=self.address,
                to_addr=recipient,
            )
            self._state = result.final_state

        logger.debug(
            f"{self}: swapped {result.amount_in} {token_in} for {result.amount_out} {token_out}, "
            f"tick {result.initial_state.tick} -> {result.final_state.tick}"
        )
        return result.amount0_delta, result.amount1_delta

    def _check_ticks(self, tick_lower: Tick, tick_upper: Tick) -> None:
        if tick_lower >= tick_upper:
            raise EVMRevertError(error="TLU")
        if tick_lower < MIN_TICK:
            raise EVMRevertError(error="TLM")
        if tick_upper > MAX_TICK:
            raise EVMRevertError(error="TUM")
        if tick_lower % self.tick_spacing != 0 or tick_upper % self.tick_spacing != 0:
            raise EVMRevertError(error="TS")

    def _modify_position(
        self,
        owner: ChecksumAddress,
        tick_lower: Tick,
        tick_upper: Tick,
        liquidity_delta: int,
    ) -> tuple[int, int]:
        """
        Apply a liquidity delta to the position and the boundary ticks, returning the signed token
        amounts owed to (positive) or by (negative) the pool. Must be called while holding the
        state lock.
        """

        self._check_ticks(tick_lower, tick_upper)

        state = self._state
        tick_data = dict(state.tick_data)
        key: PoolPositionKey = (owner, tick_lower, tick_upper)
        position = self._positions.get(key, PoolPositionInfo())

        def fee_growth_inside() -> tuple[int, int]:
            return tick_library.get_fee_growth_inside(
                tick_data=tick_data,
                tick_lower=tick_lower,
                tick_upper=tick_upper,
                tick_current=state.tick,
                fee_growth_global0_x128=state.fee_growth_global0_x128,
                fee_growth_global1_x128=state.fee_growth_global1_x128,
            )

        # Ticks are cleared as soon as their gross liquidity reaches zero, so read the fee growth
        # before removing liquidity and after adding it
        if liquidity_delta < 0:
            fee_growth_inside0_x128, fee_growth_inside1_x128 = fee_growth_inside()

        if liquidity_delta != 0:
            for boundary_tick, upper in ((tick_lower, False), (tick_upper, True)):
                tick_library.update(
                    tick_data=tick_data,
                    tick=boundary_tick,
                    tick_current=state.tick,
                    liquidity_delta=liquidity_delta,
                    fee_growth_global0_x128=state.fee_growth_global0_x128,
                    fee_growth_global1_x128=state.fee_growth_global1_x128,
                    upper=upper,
                    max_liquidity=self.max_liquidity_per_tick,
                )

        if liquidity_delta >= 0:
            fee_growth_inside0_x128, fee_growth_inside1_x128 = fee_growth_inside()

        if liquidity_delta == 0 and position.liquidity == 0:
            # disallow pokes for 0 liquidity positions
            raise EVMRevertError(error="NP")

        tokens_owed0 = muldiv(
            (fee_growth_inside0_x128 - position.fee_growth_inside0_last_x128) % _UINT256_MODULUS,
            position.liquidity,
            Q128,
        )
        tokens_owed1 = muldiv(
            (fee_growth_inside1_x128 - position.fee_growth_inside1_last_x128) % _UINT256_MODULUS,
            position.liquidity,
            Q128,
        )

        position = PoolPositionInfo(
            liquidity=add_delta(position.liquidity, liquidity_delta),
            fee_growth_inside0_last_x128=fee_growth_inside0_x128,
            fee_growth_inside1_last_x128=fee_growth_inside1_x128,
            tokens_owed0=position.tokens_owed0 + tokens_owed0,
            tokens_owed1=position.tokens_owed1 + tokens_owed1,
        )

        amount0, amount1 = amounts_for_liquidity_delta(
            state, tick_lower, tick_upper, liquidity_delta
        )
        liquidity = (
            add_delta(state.liquidity, liquidity_delta)
            if tick_lower <= state.tick < tick_upper
            else state.liquidity
        )

        self._positions[key] = position
        self._state = dataclasses.replace(state, liquidity=liquidity, tick_data=tick_data)
        return amount0, amount1

    def mint(
        self,
        recipient: str,
        tick_lower: Tick,
        tick_upper: Tick,
        amount: Liquidity,
        payer: str,
    ) -> tuple[int, int]:
        """
        Add liquidity for the (recipient, tick_lower, tick_upper) position, charging the token
        amounts (rounded up) to `payer`.
        """

        if amount <= 0:
            raise EVMRevertError(error="required: amount > 0")

        recipient = get_checksum_address(recipient)
        with self._state_lock:
            snapshot = self._state, dict(self._positions)
            amount0, amount1 = self._modify_position(recipient, tick_lower, tick_upper, amount)

            # The contract checks its balance after the mint callback and reverts with "M0"/"M1"
            for token, amount_owed in ((self.token0, amount0), (self.token1, amount1)):
                if (balance := self.ledger.token_balance(payer, token)) < amount_owed:
                    self._state, self._positions = snapshot
                    raise InsufficientBalance(
                        address=get_checksum_address(payer),
                        token=token,
                        balance=balance,
                        amount=amount_owed,
                    )

            self.ledger.transfer(
                token=self.token0, amount=amount0, from_addr=payer, to_addr=self.address
            )
            self.ledger.transfer(
                token=self.token1, amount=amount1, from_addr=payer, to_addr=self.address
            )

        logger.debug(
            f"{self}: minted {amount} liquidity in [{tick_lower}, {tick_upper}] for {recipient} "
            f"({amount0} token0, {amount1} token1)"
        )
        return amount0, amount1

    def burn(
        self,
        owner: str,
        tick_lower: Tick,
        tick_upper: Tick,
        amount: Liquidity,
    ) -> tuple[int, int]:
        """
        Remove liquidity from the (owner, tick_lower, tick_upper) position. The amounts (rounded
        down) are credited to the position as tokens owed, and must be collected separately.
        """

        owner = get_checksum_address(owner)
        with self._state_lock:
            amount0, amount1 = self._modify_position(owner, tick_lower, tick_upper, -amount)
            amount0, amount1 = -amount0, -amount1

            if amount0 > 0 or amount1 > 0:
                key = (owner, tick_lower, tick_upper)
                position = self._positions[key]
                self._positions[key] = dataclasses.replace(
                    position,
                    tokens_owed0=position.tokens_owed0 + amount0,
                    tokens_owed1=position.tokens_owed1 + amount1,
                )

        logger.debug(
            f"{self}: burned {amount} liquidity in [{tick_lower}, {tick_upper}] for {owner} "
            f"({amount0} token0, {amount1} token1)"
        )
        return amount0, amount1

    def collect(
        self,
        owner: str,
        recipient: str,
        tick_lower: Tick,
        tick_upper: Tick,
        amount0_requested: int,
        amount1_requested: int,
    ) -> tuple[int, int]:
        """
        Send up to the requested amounts of tokens owed by the position to `recipient`.
        """

        owner = get_checksum_address(owner)
        key = (owner, tick_lower, tick_upper)
        with self._state_lock:
            if (position := self._positions.get(key)) is None:
                return 0, 0
            amount0 = min(amount0_requested, position.tokens_owed0)
            amount1 = min(amount1_requested, position.tokens_owed1)

            self.ledger.transfer(
                token=self.token0, amount=amount0, from_addr=self.address, to_addr=recipient
            )
            self.ledger.transfer(
                token=self.token1, amount=amount1, from_addr=self.address, to_addr=recipient
            )
            self._positions[key] = dataclasses.replace(
                position,
                tokens_owed0=position.tokens_owed0 - amount0,
                tokens_owed1=position.tokens_owed1 - amount1,
            )

        return amount0, amount1

    def set_snapshot(self) -> int:
        """
        Record the current pool state and positions, returning an identifier that can be passed to
        `return_to_snapshot`.
        """

        with self._state_lock:
            snapshot_id = next(self._snapshot_ids)
            self._snapshots[snapshot_id] = (
                dataclasses.replace(self._state, tick_data=dict(self._state.tick_data)),
                dict(self._positions),
            )
        return snapshot_id

    def return_to_snapshot(self, snapshot_id: int) -> None:
        with self._state_lock:
            try:
                state, positions = self._snapshots[snapshot_id]
            except KeyError:
                raise RebalancerValueError(message=f"Unknown snapshot {snapshot_id}") from None

            self._state = dataclasses.replace(state, tick_data=dict(state.tick_data))
            self._positions = dict(positions)
            for later_id in [_id for _id in self._snapshots if _id > snapshot_id]:
                del self._snapshots[later_id]

    def discard_snapshot(self, snapshot_id: int) -> None:
        with self._state_lock:
            self._snapshots.pop(snapshot_id, None)
