import threading

import pytest

from rebalancer.exceptions import PositionLocked
from rebalancer.rebalance.custody import PositionCustody


def test_custody_is_exclusive() -> None:
    with PositionCustody(1):
        assert PositionCustody.is_held(1)
        with pytest.raises(PositionLocked, match="Position 1 is held by another operation"):
            with PositionCustody(1):
                ...
        # A different position is independent
        with PositionCustody(2):
            assert PositionCustody.is_held(2)

    assert not PositionCustody.is_held(1)
    assert not PositionCustody.is_held(2)


def test_custody_is_released_on_error() -> None:
    with pytest.raises(ValueError), PositionCustody(1):
        raise ValueError

    assert not PositionCustody.is_held(1)
    with PositionCustody(1):
        ...


def test_failed_acquire_does_not_release_the_holder() -> None:
    holder = PositionCustody(1)
    holder.acquire()

    contender = PositionCustody(1)
    with pytest.raises(PositionLocked):
        contender.acquire()
    contender.release()
    assert PositionCustody.is_held(1)

    holder.release()
    holder.release()
    assert not PositionCustody.is_held(1)


def test_custody_across_threads() -> None:
    acquired = threading.Event()
    finish = threading.Event()

    def hold() -> None:
        with PositionCustody(7):
            acquired.set()
            finish.wait(timeout=10)

    thread = threading.Thread(target=hold)
    thread.start()
    try:
        assert acquired.wait(timeout=10)
        with pytest.raises(PositionLocked):
            PositionCustody(7).acquire()
    finally:
        finish.set()
        thread.join()

    with PositionCustody(7):
        assert PositionCustody.is_held(7)


def test_released_positions_leave_the_registry() -> None:
    for position_id in range(100):
        with PositionCustody(position_id):
            assert PositionCustody.is_held(position_id)

    assert PositionCustody._held_positions == set()

    # Checking a position does not register it
    assert not PositionCustody.is_held(1000)
    assert PositionCustody._held_positions == set()
