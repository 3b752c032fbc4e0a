"""
Rollback support for multi-step operations.

A `StateJournal` groups collaborators that can checkpoint and revert their own state, and presents
them as a single `Snapshottable`. A `RollbackLog` records one compensation per completed step and
runs them in reverse order when the operation fails, or releases them once it succeeds.
"""

import dataclasses
from collections.abc import Callable, Iterable
from itertools import count

from rebalancer.exceptions import RebalancerTypeError, RebalancerValueError
from rebalancer.logging import logger
from rebalancer.rebalance.protocols import Snapshottable


class StateJournal:
    def __init__(self, participants: Iterable[Snapshottable]) -> None:
        self.participants: list[Snapshottable] = []
        for participant in participants:
            if not isinstance(participant, Snapshottable):
                raise RebalancerTypeError(message=f"{participant!r} cannot be snapshotted")
            # Collaborators commonly share a ledger, so record each object once
            if not any(participant is existing for existing in self.participants):
                self.participants.append(participant)

        self._snapshots: dict[int, list[int]] = {}
        self._snapshot_ids = count()

    def set_snapshot(self) -> int:
        snapshot_id = next(self._snapshot_ids)
        self._snapshots[snapshot_id] = [
            participant.set_snapshot() for participant in self.participants
        ]
        return snapshot_id

    def return_to_snapshot(self, snapshot_id: int) -> None:
        try:
            participant_ids = self._snapshots[snapshot_id]
        except KeyError:
            raise RebalancerValueError(message=f"Unknown snapshot {snapshot_id}") from None

        for participant, participant_snapshot_id in zip(
            self.participants, participant_ids, strict=True
        ):
            participant.return_to_snapshot(participant_snapshot_id)

        for later_id in [_id for _id in self._snapshots if _id > snapshot_id]:
            del self._snapshots[later_id]

    def discard_snapshot(self, snapshot_id: int) -> None:
        participant_ids = self._snapshots.pop(snapshot_id, None)
        if participant_ids is None:
            return

        for participant, participant_snapshot_id in zip(
            self.participants, participant_ids, strict=True
        ):
            participant.discard_snapshot(participant_snapshot_id)


@dataclasses.dataclass(slots=True, frozen=True)
class Compensation:
    label: str
    action: Callable[[], None]
    release: Callable[[], None] | None = None


class RollbackLog:
    def __init__(self) -> None:
        self._entries: list[Compensation] = []

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        label: str,
        action: Callable[[], None],
        release: Callable[[], None] | None = None,
    ) -> None:
        self._entries.append(Compensation(label=label, action=action, release=release))

    def record_snapshot(self, label: str, journal: Snapshottable) -> None:
        """
        Take a snapshot now, and register a compensation that returns to it. The snapshot is
        discarded once it has been restored, or when the log is committed.
        """

        snapshot_id = journal.set_snapshot()
        self.record(
            label,
            action=lambda: journal.return_to_snapshot(snapshot_id),
            release=lambda: journal.discard_snapshot(snapshot_id),
        )

    def commit(self) -> None:
        """
        Keep the effects of every recorded step and release the resources held for undoing them.
        The log is empty afterwards.
        """

        entries, self._entries = self._entries, []
        for compensation in entries:
            if compensation.release is not None:
                compensation.release()

    def rollback(self) -> None:
        """
        Run the recorded compensations, most recent first, releasing each one after it has run.
        The log is empty afterwards.

        A failing compensation does not stop the ones recorded before it. The first failure is
        re-raised once every compensation has run.
        """

        failure: Exception | None = None
        while self._entries:
            compensation = self._entries.pop()
            logger.warning(f"Rolling back {compensation.label}")
            try:
                compensation.action()
                if compensation.release is not None:
                    compensation.release()
            except Exception as exc:
                logger.exception(f"Rolling back {compensation.label} failed")
                if failure is None:
                    failure = exc

        if failure is not None:
            raise failure
