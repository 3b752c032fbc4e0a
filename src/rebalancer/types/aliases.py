type BlockNumber = int
type ChainId = int
type Liquidity = int
type Pip = int  # V3 pool fees are expressed in pips equaling one hundredth of 1%
type PositionId = int
type SqrtPriceX96 = int
type Tick = int
