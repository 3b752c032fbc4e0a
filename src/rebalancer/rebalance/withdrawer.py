from rebalancer.checksum_cache import get_checksum_address
from rebalancer.exceptions import NotOwner
from rebalancer.logging import logger
from rebalancer.rebalance.protocols import PositionLedger
from rebalancer.rebalance.types import Holdings
from rebalancer.types.aliases import PositionId


class PositionWithdrawer:
    """
    Closes out a position: removes all of its liquidity and collects the principal and accrued fees.
    """

    def __init__(self, ledger: PositionLedger) -> None:
        self.ledger = ledger

    def withdraw(self, position_id: PositionId, caller: str) -> Holdings:
        """
        Withdraw everything held by the position to `caller`, who must be the owner or an approved
        operator. The position is left with zero liquidity and nothing owed.

        Withdrawing from an already-empty position returns empty holdings.
        """

        caller = get_checksum_address(caller)
        position = self.ledger.positions(position_id)
        if not self.ledger.is_authorized(position_id, caller):
            raise NotOwner(position_id, caller)

        if position.is_empty:
            logger.debug(f"Position {position_id} is already empty")
            return Holdings()

        if position.liquidity > 0:
            self.ledger.decrease_liquidity(position_id, position.liquidity, caller)

        amount0, amount1 = self.ledger.collect(position_id, caller, caller)
        holdings = Holdings(amount0, amount1)

        logger.info(
            f"Withdrew position {position_id} ({position.liquidity} liquidity): "
            f"{amount0} token0, {amount1} token1"
        )
        return holdings
