from typing import Protocol, runtime_checkable

from rebalancer.types.aliases import Liquidity, PositionId, SqrtPriceX96
from rebalancer.uniswap.v3_types import MintParams, MintResult, Position, UniswapV3PoolState


class PositionLedger(Protocol):
    """
    Holds liquidity positions and the token custody behind them
    """

    def positions(self, position_id: PositionId) -> Position:
        """
        Return the position, or raise `PositionNotFound`
        """

    def mint(self, params: MintParams) -> MintResult:
        """
        Create a new position funded by `params.payer`
        """

    def decrease_liquidity(
        self,
        position_id: PositionId,
        liquidity: Liquidity,
        caller: str,
    ) -> tuple[int, int]:
        """
        Remove liquidity, crediting the released amounts to the position
        """

    def collect(self, position_id: PositionId, caller: str, recipient: str) -> tuple[int, int]:
        """
        Pay out everything the position is owed to `recipient`
        """

    def is_authorized(self, position_id: PositionId, account: str) -> bool:
        """
        True if `account` is the owner of the position or an approved operator
        """

    def burn(self, position_id: PositionId, caller: str) -> None:
        """
        Destroy an emptied position
        """


class PoolStateReader(Protocol):
    @property
    def state(self) -> UniswapV3PoolState:
        """
        A fresh snapshot of the pool, never a cached copy from an earlier read
        """


class SwapExecutor(Protocol):
    def swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_amount_out: int,
        sqrt_price_limit_x96: SqrtPriceX96 | None,
        payer: str,
        recipient: str,
    ) -> int:
        """
        Swap the exact input amount, returning the amount delivered to `recipient`
        """


class TokenTransferrer(Protocol):
    def transfer(self, token: str, amount: int, from_addr: str, to_addr: str) -> None:
        """
        Move a token balance between addresses
        """


@runtime_checkable
class Snapshottable(Protocol):
    """
    Can record its state and later revert to it
    """

    def set_snapshot(self) -> int:
        """
        Record the current state and return an identifier for it
        """

    def return_to_snapshot(self, snapshot_id: int) -> None:
        """
        Revert to the recorded state, discarding snapshots taken after it
        """

    def discard_snapshot(self, snapshot_id: int) -> None:
        """
        Forget a recorded state that will not be restored
        """
