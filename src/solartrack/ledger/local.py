"""
LocalLedger -- SolarTrackManager semantics on the local devnet.

Implements the contract's rules faithfully enough to exercise every
client path: one record per user per day-key, encrypted running totals
per user and globally, a public submission counter, and the FirstStep
badge. Reverts raise LedgerCallError carrying ABI-encoded
``Error(string)`` data, the way a real node reports them.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .. import DAY_SECONDS
from ..devnet import Devnet, input_proof_for
from ..errors import LedgerCallError, encode_revert_reason
from ..models import ZERO_HANDLE, Badge, SubmissionRecord
from ..signer import Signer
from .base import LedgerClient, PendingTransaction, TransactionReceipt

logger = logging.getLogger("solartrack.ledger.local")

SUBMIT_BASE_GAS = 180_000
CLAIM_GAS = 52_000

ALREADY_LOGGED = "Already logged today"
INVALID_PROOF = "Invalid input proof"
BADGE_CLAIMED = "Badge already claimed"
NOT_ELIGIBLE = "Not eligible for badge"


def _revert(reason: str) -> LedgerCallError:
    return LedgerCallError(
        f"execution reverted: {reason}",
        code="CALL_EXCEPTION",
        short_message="execution reverted",
        data=encode_revert_reason(reason),
    )


class LocalPendingTransaction(PendingTransaction):
    """A devnet transaction. Already mined by the time it is returned."""

    def __init__(self, receipt: TransactionReceipt):
        self.tx_hash = receipt.tx_hash
        self._receipt = receipt

    async def wait(self) -> Optional[TransactionReceipt]:
        return self._receipt


class LocalLedger(LedgerClient):
    """Devnet-backed SolarTrackManager client."""

    def __init__(
        self,
        devnet: Devnet,
        address: str,
        clock: Callable[[], float] = time.time,
    ):
        self.devnet = devnet
        self.address = address.lower()
        self.clock = clock

    def _today(self) -> int:
        return int(self.clock() // DAY_SECONDS)

    def _state(self) -> dict:
        state = self.devnet.contract(self.address)
        if state is None:
            raise LedgerCallError(
                f"could not decode result data (no contract at {self.address})",
                code="BAD_DATA",
                short_message="could not decode result data",
            )
        return state

    # -- reads ---------------------------------------------------------------

    async def has_code(self) -> bool:
        return self.devnet.contract(self.address) is not None

    async def get_total_users(self) -> int:
        return len(self._state()["users"])

    async def has_submitted_today(self, user: str) -> bool:
        record = await self.get_user_record(user, self._today())
        return record.exists

    async def get_user_total_handle(self, user: str) -> str:
        return self._state()["user_totals"].get(user.lower(), ZERO_HANDLE)

    async def get_global_total_handle(self) -> str:
        return self._state()["global_total"]

    async def get_all_users(self) -> list[str]:
        return list(self._state()["users"])

    async def get_user_submission_count(self, user: str) -> int:
        return int(self._state()["counts"].get(user.lower(), 0))

    async def get_user_record(self, user: str, day_key: int) -> SubmissionRecord:
        records = self._state()["records"].get(user.lower(), {})
        raw = records.get(str(day_key))
        if raw is None:
            return SubmissionRecord(day_key=day_key)
        return SubmissionRecord(day_key=day_key, **raw)

    async def has_badge(self, user: str, badge_id: int) -> bool:
        return int(badge_id) in self._state()["badges"].get(user.lower(), [])

    # -- writes --------------------------------------------------------------

    def _check_submission(self, sender: str, handle: str, proof: str) -> dict:
        state = self._state()
        if proof.lower() != input_proof_for(handle, self.address, sender):
            raise _revert(INVALID_PROOF)
        if self.devnet.ciphertext(handle) is None:
            raise _revert(INVALID_PROOF)
        day = str(self._today())
        if day in state["records"].get(sender, {}):
            raise _revert(ALREADY_LOGGED)
        return state

    async def estimate_submit_usage(
        self, signer: Signer, handle: str, proof: str, note_reference: str
    ) -> int:
        sender = (await signer.get_address()).lower()
        self._check_submission(sender, handle, proof)
        return SUBMIT_BASE_GAS + 16 * len(note_reference.encode())

    async def submit_usage(
        self, signer: Signer, handle: str, proof: str, note_reference: str
    ) -> PendingTransaction:
        sender = (await signer.get_address()).lower()
        state = self._check_submission(sender, handle, proof)
        devnet = self.devnet
        day = self._today()

        if sender not in state["users"]:
            state["users"].append(sender)

        state["records"].setdefault(sender, {})[str(day)] = {
            "encrypted_value": handle.lower(),
            "note_reference": note_reference,
            "timestamp": int(self.clock()),
            "exists": True,
        }
        state["counts"][sender] = int(state["counts"].get(sender, 0)) + 1

        value = devnet.value_of(handle)
        old_user = state["user_totals"].get(sender, ZERO_HANDLE)
        new_user = devnet.new_handle("add", old_user, handle)
        devnet.store_ciphertext(new_user, devnet.value_of(old_user) + value, acl=[self.address, sender])
        state["user_totals"][sender] = new_user

        old_global = state["global_total"]
        new_global = devnet.new_handle("add", old_global, handle)
        devnet.store_ciphertext(
            new_global, devnet.value_of(old_global) + value, acl=[self.address, *state["users"]]
        )
        state["global_total"] = new_global

        receipt = self._mine(sender, SUBMIT_BASE_GAS + 16 * len(note_reference.encode()))
        logger.info("submitUsage from %s on day %d (tx %s)", sender, day, receipt.tx_hash[:12])
        return LocalPendingTransaction(receipt)

    async def claim_badge(self, signer: Signer, badge_id: int) -> PendingTransaction:
        sender = (await signer.get_address()).lower()
        state = self._state()
        owned = state["badges"].setdefault(sender, [])
        if int(badge_id) in owned:
            raise _revert(BADGE_CLAIMED)
        if int(badge_id) == Badge.FIRST_STEP and int(state["counts"].get(sender, 0)) < 1:
            raise _revert(NOT_ELIGIBLE)
        owned.append(int(badge_id))
        return LocalPendingTransaction(self._mine(sender, CLAIM_GAS))

    def _mine(self, sender: str, gas: int) -> TransactionReceipt:
        block = self.devnet.mine()
        tx_hash = self.devnet.new_handle("tx", sender, block)
        self.devnet.save()
        return TransactionReceipt(tx_hash=tx_hash, status=1, block_number=block, gas_used=gas)
