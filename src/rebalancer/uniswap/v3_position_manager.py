import dataclasses
from collections.abc import Iterable
from itertools import count

from eth_typing import ChecksumAddress

from rebalancer.checksum_cache import get_checksum_address
from rebalancer.constants import MAX_UINT128
from rebalancer.exceptions import EVMRevertError, PositionNotFound, RebalancerValueError
from rebalancer.logging import logger
from rebalancer.transaction.simulation_ledger import SimulationLedger
from rebalancer.types.aliases import Liquidity, Pip, PositionId
from rebalancer.uniswap.v3_libraries.constants import Q128
from rebalancer.uniswap.v3_libraries.full_math import muldiv
from rebalancer.uniswap.v3_libraries.liquidity_amounts import get_liquidity_for_amounts
from rebalancer.uniswap.v3_libraries.tick_math import get_sqrt_ratio_at_tick
from rebalancer.uniswap.v3_liquidity_pool import UniswapV3Pool, amounts_for_liquidity_delta
from rebalancer.uniswap.v3_types import MintParams, MintResult, Position

_UINT256_MODULUS = 2**256


@dataclasses.dataclass(slots=True)
class _Snapshot:
    positions: dict[PositionId, Position]
    operators: dict[ChecksumAddress, set[ChecksumAddress]]
    next_position_id: PositionId


class UniswapV3PositionManager:
    """
    An in-memory position ledger modeled on the NonfungiblePositionManager contract at
    https://github.com/Uniswap/v3-periphery/blob/main/contracts/NonfungiblePositionManager.sol

    The manager owns the liquidity in each pool on behalf of its positions. Position ids are
    assigned sequentially starting at 1 and are never reused.
    """

    def __init__(
        self,
        address: str,
        ledger: SimulationLedger,
        pools: Iterable[UniswapV3Pool] = (),
    ) -> None:
        self.address = get_checksum_address(address)
        self.ledger = ledger
        self._pools: dict[tuple[ChecksumAddress, ChecksumAddress, Pip], UniswapV3Pool] = {}
        self._positions: dict[PositionId, Position] = {}
        self._operators: dict[ChecksumAddress, set[ChecksumAddress]] = {}
        self._next_position_id: PositionId = 1
        self._snapshots: dict[int, _Snapshot] = {}
        self._snapshot_ids = count()

        for pool in pools:
            self.add_pool(pool)

    def __repr__(self) -> str:
        return f"UniswapV3PositionManager(address={self.address})"

    def add_pool(self, pool: UniswapV3Pool) -> None:
        self._pools[(pool.token0, pool.token1, pool.fee)] = pool

    def get_pool(self, token0: str, token1: str, fee: Pip) -> UniswapV3Pool:
        try:
            return self._pools[(get_checksum_address(token0), get_checksum_address(token1), fee)]
        except KeyError:
            raise RebalancerValueError(
                message=f"No pool registered for {token0}/{token1} at fee {fee}"
            ) from None

    @property
    def total_supply(self) -> int:
        return len(self._positions)

    def positions(self, position_id: PositionId) -> Position:
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFound(position_id) from None

    def owner_of(self, position_id: PositionId) -> ChecksumAddress:
        return self.positions(position_id).owner

    def approve(self, position_id: PositionId, operator: str | None, caller: str) -> None:
        """
        Approve an operator for a single position, or clear the approval if `operator` is None.
        """

        position = self.positions(position_id)
        caller = get_checksum_address(caller)
        if caller != position.owner and caller not in self._operators.get(position.owner, set()):
            raise EVMRevertError(error="ERC721: approve caller is not owner nor approved for all")

        self._positions[position_id] = position.model_copy(
            update={"operator": get_checksum_address(operator) if operator is not None else None}
        )

    def set_approval_for_all(self, owner: str, operator: str, approved: bool) -> None:
        owner = get_checksum_address(owner)
        operators = self._operators.setdefault(owner, set())
        if approved:
            operators.add(get_checksum_address(operator))
        else:
            operators.discard(get_checksum_address(operator))

    def is_authorized(self, position_id: PositionId, account: str) -> bool:
        position = self.positions(position_id)
        account = get_checksum_address(account)
        return (
            account == position.owner
            or account == position.operator
            or account in self._operators.get(position.owner, set())
        )

    def _check_authorized(self, position_id: PositionId, caller: str) -> Position:
        if not self.is_authorized(position_id, caller):
            raise EVMRevertError(error="Not approved")
        return self._positions[position_id]

    def _accrued_fees(self, position: Position, pool: UniswapV3Pool) -> tuple[int, int, int, int]:
        """
        Return the fees earned since the last update, and the current fee growth inside the range.
        The pool position must already be poked so its fee growth snapshot is current.
        """

        pool_position = pool.positions(self.address, position.tick_lower, position.tick_upper)
        fee_growth_inside0_x128 = pool_position.fee_growth_inside0_last_x128
        fee_growth_inside1_x128 = pool_position.fee_growth_inside1_last_x128
        return (
            muldiv(
                (fee_growth_inside0_x128 - position.fee_growth_inside0_last_x128)
                % _UINT256_MODULUS,
                position.liquidity,
                Q128,
            ),
            muldiv(
                (fee_growth_inside1_x128 - position.fee_growth_inside1_last_x128)
                % _UINT256_MODULUS,
                position.liquidity,
                Q128,
            ),
            fee_growth_inside0_x128,
            fee_growth_inside1_x128,
        )

    def mint(self, params: MintParams) -> MintResult:
        """
        Create a new position with the maximum liquidity that the desired amounts allow at the
        current pool price. Reverts if the amounts charged fall below the minimums.
        """

        pool = self.get_pool(params.token0, params.token1, params.fee)

        liquidity = get_liquidity_for_amounts(
            sqrt_ratio_x96=pool.sqrt_price_x96,
            sqrt_ratio_a_x96=get_sqrt_ratio_at_tick(params.tick_lower),
            sqrt_ratio_b_x96=get_sqrt_ratio_at_tick(params.tick_upper),
            amount0=params.amount0_desired,
            amount1=params.amount1_desired,
        )

        amount0, amount1 = amounts_for_liquidity_delta(
            pool.state, params.tick_lower, params.tick_upper, liquidity
        )
        if amount0 < params.amount0_min or amount1 < params.amount1_min:
            raise EVMRevertError(error="Price slippage check")

        amount0, amount1 = pool.mint(
            recipient=self.address,
            tick_lower=params.tick_lower,
            tick_upper=params.tick_upper,
            amount=liquidity,
            payer=params.payer,
        )
        pool_position = pool.positions(self.address, params.tick_lower, params.tick_upper)

        position_id = self._next_position_id
        self._next_position_id += 1
        self._positions[position_id] = Position(
            position_id=position_id,
            owner=params.recipient,
            token0=pool.token0,
            token1=pool.token1,
            fee=pool.fee,
            tick_lower=params.tick_lower,
            tick_upper=params.tick_upper,
            liquidity=liquidity,
            fee_growth_inside0_last_x128=pool_position.fee_growth_inside0_last_x128,
            fee_growth_inside1_last_x128=pool_position.fee_growth_inside1_last_x128,
        )

        logger.info(
            f"Minted position {position_id} for {params.recipient}: {liquidity} liquidity in "
            f"[{params.tick_lower}, {params.tick_upper}] ({amount0} token0, {amount1} token1)"
        )
        return MintResult(
            position_id=position_id,
            liquidity=liquidity,
            amount0=amount0,
            amount1=amount1,
        )

    def decrease_liquidity(
        self,
        position_id: PositionId,
        liquidity: Liquidity,
        caller: str,
        amount0_min: int = 0,
        amount1_min: int = 0,
    ) -> tuple[int, int]:
        """
        Remove liquidity from a position. The released principal and the fees accrued up to this
        point are credited to the position, and must be collected separately.
        """

        position = self._check_authorized(position_id, caller)
        if liquidity <= 0:
            raise EVMRevertError(error="required: liquidity > 0")
        if position.liquidity < liquidity:
            raise EVMRevertError(error="required: position liquidity >= liquidity")

        pool = self.get_pool(position.token0, position.token1, position.fee)

        amount0, amount1 = amounts_for_liquidity_delta(
            pool.state, position.tick_lower, position.tick_upper, -liquidity
        )
        if -amount0 < amount0_min or -amount1 < amount1_min:
            raise EVMRevertError(error="Price slippage check")

        amount0, amount1 = pool.burn(
            owner=self.address,
            tick_lower=position.tick_lower,
            tick_upper=position.tick_upper,
            amount=liquidity,
        )
        fees0, fees1, fee_growth_inside0_x128, fee_growth_inside1_x128 = self._accrued_fees(
            position, pool
        )

        self._positions[position_id] = position.model_copy(
            update={
                "liquidity": position.liquidity - liquidity,
                "fee_growth_inside0_last_x128": fee_growth_inside0_x128,
                "fee_growth_inside1_last_x128": fee_growth_inside1_x128,
                "tokens_owed0": position.tokens_owed0 + amount0,
                "tokens_owed1": position.tokens_owed1 + amount1,
                "fees_owed0": position.fees_owed0 + fees0,
                "fees_owed1": position.fees_owed1 + fees1,
            }
        )

        logger.debug(
            f"Decreased position {position_id} by {liquidity}: released ({amount0}, {amount1}), "
            f"fees accrued ({fees0}, {fees1})"
        )
        return amount0, amount1

    def collect(
        self,
        position_id: PositionId,
        caller: str,
        recipient: str,
        amount0_max: int = MAX_UINT128,
        amount1_max: int = MAX_UINT128,
    ) -> tuple[int, int]:
        """
        Send the principal and fees owed by a position to `recipient`, up to the given maximums.
        Principal is paid out before fees.
        """

        position = self._check_authorized(position_id, caller)
        if amount0_max <= 0 and amount1_max <= 0:
            raise EVMRevertError(error="required: amount0Max > 0 || amount1Max > 0")

        pool = self.get_pool(position.token0, position.token1, position.fee)

        if position.liquidity > 0:
            # Poke the pool position to bring its fee growth up to date
            pool.burn(
                owner=self.address,
                tick_lower=position.tick_lower,
                tick_upper=position.tick_upper,
                amount=0,
            )
            fees0, fees1, fee_growth_inside0_x128, fee_growth_inside1_x128 = self._accrued_fees(
                position, pool
            )
            position = position.model_copy(
                update={
                    "fee_growth_inside0_last_x128": fee_growth_inside0_x128,
                    "fee_growth_inside1_last_x128": fee_growth_inside1_x128,
                    "fees_owed0": position.fees_owed0 + fees0,
                    "fees_owed1": position.fees_owed1 + fees1,
                }
            )

        amount0_collect = min(amount0_max, position.amount0_owed)
        amount1_collect = min(amount1_max, position.amount1_owed)

        amount0, amount1 = pool.collect(
            owner=self.address,
            recipient=recipient,
            tick_lower=position.tick_lower,
            tick_upper=position.tick_upper,
            amount0_requested=amount0_collect,
            amount1_requested=amount1_collect,
        )

        principal0 = min(amount0, position.tokens_owed0)
        principal1 = min(amount1, position.tokens_owed1)
        self._positions[position_id] = position.model_copy(
            update={
                "tokens_owed0": position.tokens_owed0 - principal0,
                "tokens_owed1": position.tokens_owed1 - principal1,
                "fees_owed0": position.fees_owed0 - (amount0 - principal0),
                "fees_owed1": position.fees_owed1 - (amount1 - principal1),
            }
        )

        logger.debug(f"Collected ({amount0}, {amount1}) from position {position_id} to {recipient}")
        return amount0, amount1

    def burn(self, position_id: PositionId, caller: str) -> None:
        position = self._check_authorized(position_id, caller)
        if not position.is_empty:
            raise EVMRevertError(error="Not cleared")
        del self._positions[position_id]

    def set_snapshot(self) -> int:
        snapshot_id = next(self._snapshot_ids)
        self._snapshots[snapshot_id] = _Snapshot(
            positions=dict(self._positions),
            operators={owner: set(operators) for owner, operators in self._operators.items()},
            next_position_id=self._next_position_id,
        )
        return snapshot_id

    def return_to_snapshot(self, snapshot_id: int) -> None:
        try:
            snapshot = self._snapshots[snapshot_id]
        except KeyError:
            raise RebalancerValueError(message=f"Unknown snapshot {snapshot_id}") from None

        self._positions = dict(snapshot.positions)
        self._operators = {owner: set(operators) for owner, operators in snapshot.operators.items()}
        self._next_position_id = snapshot.next_position_id
        for later_id in [_id for _id in self._snapshots if _id > snapshot_id]:
            del self._snapshots[later_id]

    def discard_snapshot(self, snapshot_id: int) -> None:
        self._snapshots.pop(snapshot_id, None)
