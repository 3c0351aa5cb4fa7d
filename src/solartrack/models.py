"""
Pydantic models for everything SolarTrack reads, derives, or caches.

Handles are opaque. A handle is a reference to a ciphertext held by the
ledger, never the value itself. Clear values only exist client-side,
and only after the user explicitly asks for a reveal.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ZERO_HANDLE = "0x" + "00" * 32
ZERO_ADDRESS = "0x" + "00" * 20

_ZERO_RE = re.compile(r"^0x0+$")

CalendarDate = date


def normalize_handle(value: Union[str, bytes, bytearray, int]) -> str:
    """Render a handle in canonical ``0x``-prefixed lowercase hex.

    Args:
        value: Handle as hex string, raw bytes, or integer.

    Returns:
        str: 32-byte hex handle.
    """
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex().rjust(64, "0")
    if isinstance(value, int):
        return "0x" + format(value, "x").rjust(64, "0")
    text = str(value).strip().lower()
    if not text.startswith("0x"):
        text = "0x" + text
    return text


def is_zero_handle(handle: Optional[str]) -> bool:
    """True when the handle is the sentinel meaning "nothing written yet"."""
    if not handle:
        return False
    return bool(_ZERO_RE.match(handle.lower()))


class HandleSlot(str, Enum):
    """Which running total a handle refers to."""

    USER_TOTAL = "userTotal"
    GLOBAL_TOTAL = "globalTotal"


class ClearValue(BaseModel):
    """A decrypted handle, tagged with the handle that produced it."""

    model_config = ConfigDict(frozen=True)

    handle: str
    clear: Union[bool, int]

    def matches(self, handle: Optional[str]) -> bool:
        """Whether this value is still current for ``handle``."""
        return handle is not None and self.handle.lower() == handle.lower()


class DecryptionSignature(BaseModel):
    """Signed, time-bounded permission to decrypt handles of some contracts.

    Produced once by an interactive signing prompt and reused from the
    cache until it expires or the (user, contract set) changes.
    """

    private_key: str
    public_key: str
    signature: str
    contract_addresses: list[str] = Field(default_factory=list)
    user_address: str
    start_timestamp: int
    duration_days: int

    @property
    def expires_at(self) -> int:
        """Unix timestamp after which the signature is no longer usable."""
        return self.start_timestamp + self.duration_days * 86400

    def is_valid(self, now: float) -> bool:
        """Check the validity window against ``now`` (unix seconds)."""
        return self.start_timestamp <= now < self.expires_at

    def covers(self, contract_address: str) -> bool:
        """A signature only authorizes handles owned by its own contracts."""
        wanted = contract_address.lower()
        return any(c.lower() == wanted for c in self.contract_addresses)


class SubmissionRecord(BaseModel):
    """One day's submission for one user."""

    day_key: int
    encrypted_value: str = ZERO_HANDLE
    note_reference: str = ""
    timestamp: int = 0
    exists: bool = False


class SubmissionStage(str, Enum):
    """Where a single submission attempt currently is."""

    IDLE = "idle"
    VALIDATING = "validating"
    ENCRYPTING = "encrypting"
    PREFLIGHT = "preflight"
    ESTIMATING = "estimating"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EngineSnapshot(BaseModel):
    """Read-only view of one session's engine state.

    Presentation code renders exclusively from this. It is rebuilt on
    every commit, so holding on to an old snapshot is always safe.
    """

    model_config = ConfigDict(frozen=True)

    account: Optional[str] = None
    chain_id: Optional[int] = None
    contract_address: Optional[str] = None
    is_deployed: Optional[bool] = None
    handles: dict[HandleSlot, Optional[str]] = Field(default_factory=dict)
    clear_values: dict[HandleSlot, Optional[ClearValue]] = Field(default_factory=dict)
    total_users: int = 0
    has_logged_today: bool = False
    is_logging: bool = False
    is_refreshing: bool = False
    is_decrypting: bool = False
    submission_stage: SubmissionStage = SubmissionStage.IDLE
    last_submission: Optional[SubmissionStage] = None
    message: str = ""

    def handle(self, slot: HandleSlot) -> Optional[str]:
        """Current handle for ``slot``, if one has been loaded."""
        return self.handles.get(slot)

    def displayed_clear(self, slot: HandleSlot) -> Optional[ClearValue]:
        """The clear value for ``slot``, or None if it no longer matches the handle."""
        value = self.clear_values.get(slot)
        if value is None or not value.matches(self.handles.get(slot)):
            return None
        return value


class LeaderboardEntry(BaseModel):
    """One ranked row. Ranking uses the public submission count only."""

    address: str
    log_count: int
    rank: int = 0
    is_current_user: bool = False
    revealed_total: Optional[int] = None


class CalendarDay(BaseModel):
    """Whether the user logged on one day of the trailing window."""

    day_key: int
    date: CalendarDate
    has_record: bool = False
    is_today: bool = False


class Badge(int, Enum):
    """On-chain badge identifiers."""

    FIRST_STEP = 0


class BadgeStatus(BaseModel):
    """Claim state of a badge for the current user."""

    badge: Badge
    name: str
    description: str
    claimed: bool = False
    claimable: bool = False


def day_date(day_key: int) -> date:
    """Calendar date (UTC) of a day-key."""
    return datetime.fromtimestamp(day_key * 86400, tz=timezone.utc).date()


class SessionKey(BaseModel):
    """Identity of one connected session: account plus chain."""

    model_config = ConfigDict(frozen=True)

    account: Optional[str] = None
    chain_id: Optional[int] = None
