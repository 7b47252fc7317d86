"""Process-local snapshot store for tests and throwaway deployments."""

from __future__ import annotations

from waitlist_api.adapters.storage.base import AbstractSnapshotStore, LedgerSnapshot


class InMemorySnapshotStore(AbstractSnapshotStore):
    """Keeps a copy of the last saved snapshot in memory."""

    def __init__(self, initial: LedgerSnapshot | None = None) -> None:
        self._snapshot = self._copy(initial) if initial is not None else None
        self.save_count = 0

    @staticmethod
    def _copy(snapshot: LedgerSnapshot) -> LedgerSnapshot:
        return LedgerSnapshot(
            entries=[entry.model_copy(deep=True) for entry in snapshot.entries],
            position_counter=snapshot.position_counter,
            entry_id_counter=snapshot.entry_id_counter,
        )

    def load(self) -> LedgerSnapshot | None:
        if self._snapshot is None:
            return None
        return self._copy(self._snapshot)

    def save(self, snapshot: LedgerSnapshot) -> None:
        self._snapshot = self._copy(snapshot)
        self.save_count += 1
