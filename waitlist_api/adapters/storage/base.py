"""Snapshot store interfaces.

The ledger depends on this abstraction (not the concrete implementation) so
the file backend can be swapped for a shared store with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from waitlist_api.schemas.waitlist import WaitlistEntry


@dataclass
class LedgerSnapshot:
    """Full persisted state of the waitlist ledger.

    Attributes:
        entries: Every entry, with personal fields in plaintext.
        position_counter: Last position handed out.
        entry_id_counter: Last entry id sequence number handed out.
    """

    entries: list[WaitlistEntry] = field(default_factory=list)
    position_counter: int = 0
    entry_id_counter: int = 0


class AbstractSnapshotStore(ABC):
    """Interface for full-state ledger persistence."""

    @abstractmethod
    def load(self) -> LedgerSnapshot | None:
        """Read the persisted snapshot.

        Returns:
            The snapshot, or None when nothing has been persisted yet.

        Raises:
            StorageAppError: If a snapshot exists but cannot be read.
        """
        raise NotImplementedError

    @abstractmethod
    def save(self, snapshot: LedgerSnapshot) -> None:
        """Replace the persisted snapshot with ``snapshot``.

        Raises:
            StorageAppError: If the snapshot cannot be written.
            EncryptionAppError: If personal fields cannot be protected.
        """
        raise NotImplementedError
