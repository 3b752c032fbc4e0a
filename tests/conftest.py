import dataclasses
import logging
from decimal import Decimal

import pytest

from rebalancer.checksum_cache import get_checksum_address
from rebalancer.config import MinterSettings, Settings, SolverSettings
from rebalancer.logging import logger
from rebalancer.rebalance.custody import PositionCustody
from rebalancer.rebalance.journal import StateJournal
from rebalancer.rebalance.orchestrator import Rebalancer
from rebalancer.transaction.simulation_ledger import SimulationLedger
from rebalancer.types.aliases import PositionId, Tick
from rebalancer.uniswap.v3_functions import (
    encode_sqrt_price_x96,
    get_max_usable_tick,
    get_min_usable_tick,
    price_to_tick,
    round_tick_to_spacing,
)
from rebalancer.uniswap.v3_liquidity_pool import UniswapV3Pool
from rebalancer.uniswap.v3_position_manager import UniswapV3PositionManager
from rebalancer.uniswap.v3_router import UniswapV3Router
from rebalancer.uniswap.v3_types import MintParams

# token0 sorts below token1
TOKEN0 = get_checksum_address("0x1f9840a85d5af5bf1d1762f925bdaddc4201f984")
TOKEN1 = get_checksum_address("0x6b175474e89094c44da98b954eedeac495271d0f")

POOL_ADDRESS = get_checksum_address("0x8ad599c3a0ff1de082011efddc58f1908eb6e6d8")
POSITION_MANAGER_ADDRESS = get_checksum_address("0xc36442b4a4522e871399cd717abdd847ab11fe88")
ROUTER_ADDRESS = get_checksum_address("0xe592427a0aece92de3edee1f18e0157c05861564")
REBALANCER_ADDRESS = get_checksum_address("0x0000000000000000000000000000000000000b0b")

OWNER = get_checksum_address("0x00000000000000000000000000000000000a11ce")
SEEDER = get_checksum_address("0x0000000000000000000000000000000000005eed")
TRADER = get_checksum_address("0x000000000000000000000000000000000000beef")

FEE = 3000
TICK_SPACING = 60
INITIAL_PRICE = 2000

SEED_AMOUNT0 = 10 * 10**18
SEED_AMOUNT1 = 25_000 * 10**18


def tick_for_price(price: int | str) -> Tick:
    return round_tick_to_spacing(price_to_tick(price), TICK_SPACING)


def total_token_supply(ledger: SimulationLedger, token: str) -> int:
    return sum(balances.get(token, 0) for balances in ledger.balances.values())


@dataclasses.dataclass
class World:
    ledger: SimulationLedger
    pool: UniswapV3Pool
    position_manager: UniswapV3PositionManager
    router: UniswapV3Router
    journal: StateJournal

    def fund(self, address: str, amount0: int = 0, amount1: int = 0) -> None:
        if amount0:
            self.ledger.adjust(address, TOKEN0, amount0)
        if amount1:
            self.ledger.adjust(address, TOKEN1, amount1)

    def balances(self, address: str) -> tuple[int, int]:
        return (
            self.ledger.token_balance(address, TOKEN0),
            self.ledger.token_balance(address, TOKEN1),
        )

    def mint_position(
        self,
        tick_lower: Tick,
        tick_upper: Tick,
        amount0: int,
        amount1: int,
        owner: str = OWNER,
    ) -> PositionId:
        self.fund(owner, amount0, amount1)
        result = self.position_manager.mint(
            MintParams(
                token0=TOKEN0,
                token1=TOKEN1,
                fee=FEE,
                tick_lower=tick_lower,
                tick_upper=tick_upper,
                amount0_desired=amount0,
                amount1_desired=amount1,
                recipient=owner,
                payer=owner,
            )
        )
        return result.position_id

    def make_rebalancer(self, rebalancer_settings: Settings) -> Rebalancer:
        return Rebalancer(
            address=REBALANCER_ADDRESS,
            ledger=self.position_manager,
            pool=self.pool,
            router=self.router,
            transferrer=self.ledger,
            journal=self.journal,
            rebalancer_settings=rebalancer_settings,
        )


@pytest.fixture(autouse=True)
def _reset_custody():
    """
    Before each test, release all position locks held by earlier tests
    """
    PositionCustody.clear()


@pytest.fixture(scope="session", autouse=True)
def _set_rebalancer_logging():
    """
    Set the logging level to DEBUG for the test run
    """
    logger.setLevel(logging.DEBUG)


@pytest.fixture
def world() -> World:
    """
    A pool at a price of 2000 token1 per token0, seeded with full range liquidity.
    """

    ledger = SimulationLedger()
    pool = UniswapV3Pool(
        address=POOL_ADDRESS,
        token0=TOKEN0,
        token1=TOKEN1,
        fee=FEE,
        sqrt_price_x96=encode_sqrt_price_x96(INITIAL_PRICE),
        ledger=ledger,
    )
    position_manager = UniswapV3PositionManager(
        address=POSITION_MANAGER_ADDRESS,
        ledger=ledger,
        pools=[pool],
    )
    router = UniswapV3Router(address=ROUTER_ADDRESS, pools=[pool])

    world = World(
        ledger=ledger,
        pool=pool,
        position_manager=position_manager,
        router=router,
        journal=StateJournal([ledger, pool, position_manager]),
    )
    world.mint_position(
        get_min_usable_tick(TICK_SPACING),
        get_max_usable_tick(TICK_SPACING),
        SEED_AMOUNT0,
        SEED_AMOUNT1,
        owner=SEEDER,
    )
    return world


@pytest.fixture
def rebalancer_settings() -> Settings:
    """
    Settings with a slippage band wide enough for swaps against the shallow test pool
    """

    return Settings(
        solver=SolverSettings(slippage_tolerance=Decimal("0.25")),
        minter=MinterSettings(dust_threshold=1_000_000),
    )
