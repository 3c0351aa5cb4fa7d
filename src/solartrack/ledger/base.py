"""
Ledger client interface -- the SolarTrackManager contract surface.

One client is bound to one deployed contract. Reads are cheap and
idempotent. Writes return a PendingTransaction that must be awaited
for inclusion. Failures surface as LedgerCallError with the node's
raw payload attached.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..models import SubmissionRecord
from ..signer import Signer


@dataclass
class TransactionReceipt:
    """Inclusion result of a transaction. Status 1 means success."""

    tx_hash: str
    status: int
    block_number: int = 0
    gas_used: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class PendingTransaction(ABC):
    """A sent transaction awaiting inclusion."""

    tx_hash: str

    @abstractmethod
    async def wait(self) -> Optional[TransactionReceipt]:
        """Block until the transaction is mined.

        Returns:
            The receipt, or None if the node dropped the transaction.
        """


class LedgerClient(ABC):
    """Read/write access to one SolarTrackManager deployment."""

    address: str

    # -- reads ---------------------------------------------------------------

    @abstractmethod
    async def has_code(self) -> bool:
        """Whether contract code exists at the bound address."""

    @abstractmethod
    async def get_total_users(self) -> int:
        """Number of distinct users that ever submitted."""

    @abstractmethod
    async def has_submitted_today(self, user: str) -> bool:
        """Whether ``user`` has a record for the current day-key."""

    @abstractmethod
    async def get_user_total_handle(self, user: str) -> str:
        """Handle of the user's encrypted running total."""

    @abstractmethod
    async def get_global_total_handle(self) -> str:
        """Handle of the encrypted total across all users."""

    @abstractmethod
    async def get_all_users(self) -> list[str]:
        """Every address that has submitted at least once."""

    @abstractmethod
    async def get_user_submission_count(self, user: str) -> int:
        """Public count of submissions by ``user``."""

    @abstractmethod
    async def get_user_record(self, user: str, day_key: int) -> SubmissionRecord:
        """The record for (user, day_key); ``exists`` is False if absent."""

    @abstractmethod
    async def has_badge(self, user: str, badge_id: int) -> bool:
        """Whether ``user`` has claimed ``badge_id``."""

    # -- writes --------------------------------------------------------------

    @abstractmethod
    async def estimate_submit_usage(
        self, signer: Signer, handle: str, proof: str, note_reference: str
    ) -> int:
        """Estimate gas for ``submitUsage`` without sending it."""

    @abstractmethod
    async def submit_usage(
        self, signer: Signer, handle: str, proof: str, note_reference: str
    ) -> PendingTransaction:
        """Send ``submitUsage(handle, proof, noteReference)``."""

    @abstractmethod
    async def claim_badge(self, signer: Signer, badge_id: int) -> PendingTransaction:
        """Send ``claimBadge(badgeId)``."""

    def parse_error(self, data: str) -> Optional[str]:
        """Decode contract-specific custom error data, if the client knows how."""
        return None
