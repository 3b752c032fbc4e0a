import copy
from itertools import count

from eth_typing import ChecksumAddress

from rebalancer.checksum_cache import get_checksum_address
from rebalancer.exceptions import InsufficientBalance, RebalancerValueError
from rebalancer.logging import logger


class SimulationLedger:
    """
    A dictionary-like class for tracking token balances across addresses.

    Token balances are organized first by the holding address, then by the
    token contract address. The in-memory pool, position manager and router
    share one ledger, so every token movement between them is recorded here.
    """

    def __init__(self) -> None:
        # Entries are recorded as a dict-of-dicts, keyed by address, then by
        # token address
        self.balances: dict[
            ChecksumAddress,  # address holding balance
            dict[
                ChecksumAddress,  # token address
                int,  # balance
            ],
        ] = {}
        self._snapshots: dict[int, dict[ChecksumAddress, dict[ChecksumAddress, int]]] = {}
        self._snapshot_ids = count()

    def adjust(
        self,
        address: ChecksumAddress | str,
        token: ChecksumAddress | str,
        amount: int,
    ) -> None:
        """
        Apply an adjustment to the balance for a token held by an address.

        The amount can be positive (credit) or negative (debit). The method
        checksums all addresses prior to use.

        Parameters
        ----------
        address: str | ChecksumAddress
            The address holding the token balance.
        token: str | ChecksumAddress
            The address of the token being held.
        amount: int
            The amount to adjust. May be negative or positive.

        Returns
        -------
        None

        Raises
        ------
        InsufficientBalance
            If a debit exceeds the balance held by the address.
        """

        _token_address = get_checksum_address(token)
        _address = get_checksum_address(address)

        address_balance = self.balances.setdefault(_address, {})
        current_balance = address_balance.get(_token_address, 0)

        if current_balance + amount < 0:
            if not address_balance:
                del self.balances[_address]
            raise InsufficientBalance(
                address=_address,
                token=_token_address,
                balance=current_balance,
                amount=-amount,
            )

        logger.debug(f"BALANCE: {_address} {'+' if amount > 0 else ''}{amount} {_token_address}")

        address_balance[_token_address] = current_balance + amount
        if address_balance[_token_address] == 0:
            del address_balance[_token_address]
        if not address_balance:
            del self.balances[_address]

    def token_balance(
        self,
        address: ChecksumAddress | str,
        token: ChecksumAddress | str,
    ) -> int:
        """
        Get the balance for a given address and token.

        The method checksums all addresses prior to use.

        Parameters
        ----------
        address: str | ChecksumAddress
            The address holding the token balance.
        token: str | ChecksumAddress
            The address of the token being held.

        Returns
        -------
        int
            The balance of ``token`` at ``address``
        """

        return self.balances.get(get_checksum_address(address), {}).get(
            get_checksum_address(token), 0
        )

    def transfer(
        self,
        token: ChecksumAddress | str,
        amount: int,
        from_addr: ChecksumAddress | str,
        to_addr: ChecksumAddress | str,
    ) -> None:
        """
        Transfer a balance between addresses.

        The method checksums all addresses prior to use.

        Parameters
        ----------
        token: str | ChecksumAddress
            The address of the token being transferred.
        amount: int
            The balance to transfer.
        from_addr: str | ChecksumAddress
            The address holding the token balance.
        to_addr: str | ChecksumAddress
            The address receiving the token balance.

        Returns
        -------
        None

        Raises
        ------
        RebalancerValueError
            If the amount is negative.
        InsufficientBalance
            If the sender holds less than ``amount``.
        """

        if amount < 0:
            raise RebalancerValueError(message=f"Cannot transfer a negative amount ({amount})")
        if amount == 0:
            return

        self.adjust(
            address=from_addr,
            token=token,
            amount=-amount,
        )
        self.adjust(
            address=to_addr,
            token=token,
            amount=amount,
        )

    def set_snapshot(self) -> int:
        """
        Record the current balances and return an identifier that can be passed to
        `return_to_snapshot`.
        """

        snapshot_id = next(self._snapshot_ids)
        self._snapshots[snapshot_id] = copy.deepcopy(self.balances)
        return snapshot_id

    def return_to_snapshot(self, snapshot_id: int) -> None:
        """
        Restore the balances recorded by `set_snapshot`. Snapshots taken after this one are
        discarded.
        """

        try:
            balances = self._snapshots[snapshot_id]
        except KeyError:
            raise RebalancerValueError(message=f"Unknown snapshot {snapshot_id}") from None

        self.balances = copy.deepcopy(balances)
        for later_id in [_id for _id in self._snapshots if _id > snapshot_id]:
            del self._snapshots[later_id]

    def discard_snapshot(self, snapshot_id: int) -> None:
        """
        Forget a snapshot that will not be restored. Unknown identifiers are ignored, since an
        earlier `return_to_snapshot` may already have dropped them.
        """

        self._snapshots.pop(snapshot_id, None)
