from typing import Any

from eth_typing import ChecksumAddress

from rebalancer.exceptions.base import RebalancerError


class LiquidityPoolError(RebalancerError):
    """
    Exception raised inside liquidity pool helpers.
    """


class IncompleteSwap(LiquidityPoolError):
    """
    Raised if a swap calculation would not consume the input or deliver the requested output.
    """

    def __init__(self, amount_in: int, amount_out: int) -> None:
        self.amount_in = amount_in
        self.amount_out = amount_out
        super().__init__(message="Insufficient liquidity to swap for the requested amount.")

    def __reduce__(self) -> tuple[Any, ...]:
        # Pickling will raise an exception if a reduction method is not defined
        return self.__class__, (self.amount_in, self.amount_out)


class InsufficientBalance(LiquidityPoolError):
    """
    Raised when a simulated token transfer exceeds the balance held by the sender.
    """

    def __init__(
        self,
        address: ChecksumAddress,
        token: ChecksumAddress,
        balance: int,
        amount: int,
    ) -> None:
        self.address = address
        self.token = token
        self.balance = balance
        self.amount = amount
        super().__init__(
            message=f"{address} holds {balance} of token {token}, cannot send {amount}."
        )

    def __reduce__(self) -> tuple[Any, ...]:
        return self.__class__, (self.address, self.token, self.balance, self.amount)
