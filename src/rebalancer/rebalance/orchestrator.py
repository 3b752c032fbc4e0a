from threading import Lock

import ujson

from rebalancer.checksum_cache import get_checksum_address
from rebalancer.config import Settings, settings
from rebalancer.exceptions import Aborted, NotOwner, RebalancerValueError
from rebalancer.logging import logger
from rebalancer.rebalance.custody import PositionCustody
from rebalancer.rebalance.journal import RollbackLog
from rebalancer.rebalance.minter import PositionMinter
from rebalancer.rebalance.protocols import (
    PoolStateReader,
    PositionLedger,
    Snapshottable,
    SwapExecutor,
    TokenTransferrer,
)
from rebalancer.rebalance.solver import RebalanceSolver
from rebalancer.rebalance.types import Holdings, RebalanceResult, RebalanceStage
from rebalancer.rebalance.withdrawer import PositionWithdrawer
from rebalancer.types.aliases import PositionId, Tick
from rebalancer.uniswap.v3_functions import normalize_range


class Rebalancer:
    """
    Moves a position to a new price range as a single all-or-nothing operation: withdraw, size and
    execute a balancing swap, deposit into the new range, and return the leftovers to the owner.

    The rebalancer acts from its own `address`, which must be approved as an operator of the
    position. Withdrawn tokens pass through that address and do not remain there afterwards.

    Every state-changing stage is preceded by a snapshot of the `journal`. If a stage fails, the
    snapshots are restored in reverse order, so the collaborators end in the state they had before
    the call.

    Calls on one instance run one at a time. Instances that share a `journal` must not run
    concurrently, since a rollback restores every participant of the journal.
    """

    def __init__(
        self,
        address: str,
        ledger: PositionLedger,
        pool: PoolStateReader,
        router: SwapExecutor,
        transferrer: TokenTransferrer,
        journal: Snapshottable,
        rebalancer_settings: Settings | None = None,
    ) -> None:
        if rebalancer_settings is None:
            rebalancer_settings = settings

        self.address = get_checksum_address(address)
        self.ledger = ledger
        self.pool = pool
        self.router = router
        self.transferrer = transferrer
        self.journal = journal

        self.withdrawer = PositionWithdrawer(ledger)
        self.solver = RebalanceSolver(rebalancer_settings.solver)
        self.minter = PositionMinter(
            ledger=ledger,
            pool=pool,
            payer=self.address,
            minter_settings=rebalancer_settings.minter,
        )
        self.stage = RebalanceStage.IDLE
        self._operation_lock = Lock()

    def _enter_stage(self, stage: RebalanceStage) -> None:
        logger.info(f"Rebalance stage: {self.stage.name} -> {stage.name}")
        self.stage = stage

    def rebalance_position(
        self,
        position_id: PositionId,
        tick_a: Tick,
        tick_b: Tick,
        caller: str,
    ) -> RebalanceResult:
        """
        Move the liquidity of a position into the range bounded by `tick_a` and `tick_b`, given in
        either order. The caller must own the position.

        Failures before any state change propagate unchanged. A failure after the first stage has
        begun rolls back every stage, then raises `Aborted` with the original error as its cause.
        """

        with self._operation_lock:
            return self._rebalance(position_id, tick_a, tick_b, caller)

    def _rebalance(
        self,
        position_id: PositionId,
        tick_a: Tick,
        tick_b: Tick,
        caller: str,
    ) -> RebalanceResult:
        self.stage = RebalanceStage.IDLE
        caller = get_checksum_address(caller)

        pool_state = self.pool.state
        tick_range = normalize_range(tick_a, tick_b, pool_state.tick_spacing)

        with PositionCustody(position_id):
            position = self.ledger.positions(position_id)
            if caller != position.owner:
                raise NotOwner(position_id, caller)
            if not self.ledger.is_authorized(position_id, self.address):
                raise NotOwner(position_id, self.address)
            if (position.token0, position.token1, position.fee) != (
                pool_state.token0,
                pool_state.token1,
                pool_state.fee,
            ):
                raise RebalancerValueError(
                    message=f"Position {position_id} does not belong to pool {pool_state.address}"
                )

            rollback_log = RollbackLog()
            try:
                self._enter_stage(RebalanceStage.WITHDRAWING)
                rollback_log.record_snapshot(RebalanceStage.WITHDRAWING.name, self.journal)
                withdrawn = self.withdrawer.withdraw(position_id, self.address)

                self._enter_stage(RebalanceStage.SOLVING)
                plan = self.solver.solve(withdrawn, self.pool.state, tick_range)

                self._enter_stage(RebalanceStage.SWAPPING)
                holdings = withdrawn
                swap_amount_out = 0
                if plan is not None:
                    rollback_log.record_snapshot(RebalanceStage.SWAPPING.name, self.journal)
                    token_in, token_out = (
                        (pool_state.token0, pool_state.token1)
                        if plan.direction.zero_for_one
                        else (pool_state.token1, pool_state.token0)
                    )
                    swap_amount_out = self.router.swap(
                        token_in=token_in,
                        token_out=token_out,
                        amount_in=plan.amount_in,
                        min_amount_out=plan.min_amount_out,
                        sqrt_price_limit_x96=plan.sqrt_price_limit_x96,
                        payer=self.address,
                        recipient=self.address,
                    )
                    holdings = plan.apply(withdrawn, swap_amount_out)
                    logger.debug(f"Holdings after swap: {holdings}")

                self._enter_stage(RebalanceStage.DEPOSITING)
                rollback_log.record_snapshot(RebalanceStage.DEPOSITING.name, self.journal)
                # The minter re-reads the pool, so the deposit is sized at the post-swap price
                new_position, refund = self.minter.deposit(holdings, tick_range, position.owner)

                self._enter_stage(RebalanceStage.SWEEPING)
                rollback_log.record_snapshot(RebalanceStage.SWEEPING.name, self.journal)
                self._sweep(refund, position.owner, pool_state.token0, pool_state.token1)
            except Exception as exc:
                failed_stage = self.stage
                self._enter_stage(RebalanceStage.ABORTED)
                logger.warning(
                    f"Rebalance of position {position_id} failed during {failed_stage.name}: {exc}"
                )
                rollback_log.rollback()
                if failed_stage is RebalanceStage.WITHDRAWING:
                    raise
                raise Aborted(failed_stage.name, str(exc)) from exc

            self._enter_stage(RebalanceStage.DONE)
            rollback_log.commit()

        deposited = holdings - refund
        result = RebalanceResult(
            old_position_id=position_id,
            new_position_id=new_position.position_id,
            owner=position.owner,
            tick_lower=tick_range.lower,
            tick_upper=tick_range.upper,
            liquidity=new_position.liquidity,
            amount0_withdrawn=withdrawn.amount0,
            amount1_withdrawn=withdrawn.amount1,
            amount0_deposited=deposited.amount0,
            amount1_deposited=deposited.amount1,
            amount0_refunded=refund.amount0,
            amount1_refunded=refund.amount1,
            swap_direction=plan.direction if plan is not None else None,
            swap_amount_in=plan.amount_in if plan is not None else 0,
            swap_amount_out=swap_amount_out,
        )
        logger.info(f"Rebalanced position: {ujson.dumps(result.as_event())}")
        return result

    def _sweep(self, refund: Holdings, owner: str, token0: str, token1: str) -> None:
        for token, amount in ((token0, refund.amount0), (token1, refund.amount1)):
            if amount > 0:
                self.transferrer.transfer(
                    token=token,
                    amount=amount,
                    from_addr=self.address,
                    to_addr=owner,
                )
        logger.debug(f"Swept refund ({refund.amount0}, {refund.amount1}) to {owner}")
