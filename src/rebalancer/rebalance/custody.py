from threading import Lock
from types import TracebackType
from typing import ClassVar, Self

from rebalancer.exceptions import PositionLocked
from rebalancer.logging import logger
from rebalancer.types.aliases import PositionId


class PositionCustody:
    """
    Exclusive, non-blocking custody of a position for the duration of a `with` block.

    Held positions are tracked in a class-level registry, so every `PositionCustody` instance in
    the process competes for the same entry. Entering while another holder has the position raises
    `PositionLocked` instead of waiting. A position leaves the registry when its holder releases
    it.
    """

    _held_positions: ClassVar[set[PositionId]] = set()
    _registry_lock: ClassVar[Lock] = Lock()

    def __init__(self, position_id: PositionId) -> None:
        self.position_id = position_id
        self._held = False

    @classmethod
    def is_held(cls, position_id: PositionId) -> bool:
        with cls._registry_lock:
            return position_id in cls._held_positions

    @classmethod
    def clear(cls) -> None:
        with cls._registry_lock:
            cls._held_positions.clear()

    def acquire(self) -> None:
        with self._registry_lock:
            if self.position_id in self._held_positions:
                raise PositionLocked(self.position_id)
            self._held_positions.add(self.position_id)
        self._held = True
        logger.debug(f"Acquired custody of position {self.position_id}")

    def release(self) -> None:
        if self._held:
            with self._registry_lock:
                self._held_positions.discard(self.position_id)
            self._held = False
            logger.debug(f"Released custody of position {self.position_id}")

    def __enter__(self) -> Self:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release()
