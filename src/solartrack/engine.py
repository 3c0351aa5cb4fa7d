"""
Sync Engine -- the command center for one connected session.

Keeps the session's view of the ledger current, runs the write path,
and reveals the user's own totals on request:

    refresh   ->  read handles, user count, today's status
    submit    ->  validate -> encrypt -> preflight -> estimate -> send -> confirm -> refresh
    reveal    ->  load-or-sign permission -> decrypt -> tag with handle

Operations of the same kind never overlap; a second call while one is
in flight is ignored. Results that arrive after the session has been
discarded are dropped, never committed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from .badges import claim_badge, load_badges
from .config import SolarTrackConfig
from .confidential.base import ComputationClient, DecryptRequest
from .confidential.signature import StringStorage, load_or_sign
from .errors import (
    ConfirmationError,
    DecryptionError,
    EncryptionError,
    PreflightError,
    SolarTrackError,
    SubmissionError,
    ValidationError,
    describe_failure,
    estimation_failure,
)
from .guards import FlightGuard, OperationKind
from .ledger.base import LedgerClient
from .models import (
    Badge,
    BadgeStatus,
    CalendarDay,
    ClearValue,
    EngineSnapshot,
    HandleSlot,
    LeaderboardEntry,
    SessionKey,
    SubmissionStage,
    is_zero_handle,
    normalize_handle,
)
from .signer import Signer
from .views import attach_revealed_total, load_calendar, load_leaderboard

logger = logging.getLogger("solartrack.engine")

T = TypeVar("T")
Listener = Callable[[EngineSnapshot], None]

MSG_CONNECT_WALLET = "Connect a wallet to detect the network."
MSG_ALREADY_LOGGED = (
    "You have already logged solar usage today. Only one submission per day is allowed."
)
MSG_NOTHING_TO_DECRYPT = "You don't have any logged solar usage to decrypt yet."
MSG_LOGGED = "Solar usage logged successfully!"

SLOT_LABELS = {
    HandleSlot.USER_TOTAL: "user total kWh",
    HandleSlot.GLOBAL_TOTAL: "global total kWh",
}


def deployment_message(chain_id: Optional[int]) -> str:
    if chain_id is None:
        return MSG_CONNECT_WALLET
    return f"SolarTrackManager deployment not found for chainId={chain_id}."


@dataclass
class EngineState:
    """Mutable session state. Only the engine writes it."""

    handles: dict[HandleSlot, Optional[str]] = field(
        default_factory=lambda: {slot: None for slot in HandleSlot}
    )
    clear_values: dict[HandleSlot, Optional[ClearValue]] = field(
        default_factory=lambda: {slot: None for slot in HandleSlot}
    )
    total_users: int = 0
    has_logged_today: bool = False
    submission_stage: SubmissionStage = SubmissionStage.IDLE
    last_submission: Optional[SubmissionStage] = None
    message: str = ""


class SyncEngine:
    """Synchronizes one session's state with the ledger and the coprocessor.

    Collaborators may be None: a missing ledger means no deployment for
    the chain, a missing computation client means the coprocessor is
    not ready, a missing signer means no account. Operations needing an
    absent collaborator are silent no-ops.
    """

    def __init__(
        self,
        session: SessionKey,
        ledger: Optional[LedgerClient],
        computation: Optional[ComputationClient],
        signer: Optional[Signer],
        signature_storage: StringStorage,
        config: Optional[SolarTrackConfig] = None,
        clock: Callable[[], float] = time.time,
        is_current: Optional[Callable[[SessionKey], bool]] = None,
    ):
        """Initialize the engine for one session.

        Args:
            session: The (account, chain) this engine belongs to.
            ledger: Contract client, or None if nothing is deployed on the chain.
            computation: Confidential computation client, or None if not ready.
            signer: The account's signer, or None if no account is connected.
            signature_storage: Cache for decryption signatures.
            config: Client configuration. Defaults apply when omitted.
            clock: Time source in unix seconds.
            is_current: Tells whether ``session`` is still the active one.
        """
        self.session = session
        self.ledger = ledger
        self.computation = computation
        self.signer = signer
        self.signature_storage = signature_storage
        self.config = config or SolarTrackConfig()
        self.clock = clock
        self._is_current_session = is_current
        self._closed = False
        self._listeners: list[Listener] = []
        self._guard = FlightGuard(on_change=self._publish)
        self._flight_done: dict[OperationKind, asyncio.Event] = {}
        self._write_generation = 0
        self._state = EngineState()
        if self.contract_address is None:
            self._state.message = deployment_message(session.chain_id)

    # -- state ---------------------------------------------------------------

    @property
    def contract_address(self) -> Optional[str]:
        return self.ledger.address if self.ledger is not None else None

    @property
    def is_deployed(self) -> bool:
        return self.contract_address is not None

    @property
    def is_current(self) -> bool:
        """False once the session has been discarded or superseded."""
        if self._closed:
            return False
        if self._is_current_session is None:
            return True
        return self._is_current_session(self.session)

    def snapshot(self) -> EngineSnapshot:
        """Coherent, immutable view of the current state."""
        s = self._state
        return EngineSnapshot(
            account=self.session.account,
            chain_id=self.session.chain_id,
            contract_address=self.contract_address,
            is_deployed=self.is_deployed,
            handles=dict(s.handles),
            clear_values=dict(s.clear_values),
            total_users=s.total_users,
            has_logged_today=s.has_logged_today,
            is_logging=self._guard.is_running(OperationKind.LOG),
            is_refreshing=self._guard.is_running(
                OperationKind.REFRESH_USER_TOTAL, OperationKind.REFRESH_GLOBAL_TOTAL
            ),
            is_decrypting=self._guard.is_running(OperationKind.DECRYPT),
            submission_stage=s.submission_stage,
            last_submission=s.last_submission,
            message=s.message,
        )

    def clear_value(self, slot: HandleSlot) -> Optional[ClearValue]:
        """Decrypted value for ``slot``, only while it matches the current handle."""
        return self.snapshot().displayed_clear(slot)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Discard this session. Late results will not be committed."""
        self._closed = True
        self._guard.reset()
        self._listeners.clear()

    def _publish(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception as exc:
                logger.warning("State listener failed: %s", exc)

    def _commit(self, **changes) -> bool:
        """Apply ``changes`` atomically, unless the session went stale."""
        if not self.is_current:
            logger.debug("Discarding stale result for %s: %s", self.session, sorted(changes))
            return False
        for name, value in changes.items():
            setattr(self._state, name, value)
        self._publish()
        return True

    def _commit_handle(self, slot: HandleSlot, handle: str) -> bool:
        handles = dict(self._state.handles)
        handles[slot] = handle
        return self._commit(handles=handles)

    def _commit_clear(self, slot: HandleSlot, value: ClearValue, message: str) -> bool:
        clear_values = dict(self._state.clear_values)
        clear_values[slot] = value
        return self._commit(clear_values=clear_values, message=message)

    async def _single_flight(
        self, kind: OperationKind, operation: Callable[[], Awaitable[T]]
    ) -> Optional[T]:
        with self._guard.acquire(kind) as acquired:
            if not acquired:
                logger.debug("%s already in flight, ignoring", kind.value)
                return None
            done = self._flight_done[kind] = asyncio.Event()
            try:
                return await operation()
            finally:
                done.set()

    async def _wait_idle(self, kind: OperationKind) -> None:
        while self._guard.is_running(kind):
            done = self._flight_done.get(kind)
            if done is None:
                return
            await done.wait()

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Initial load for a freshly activated session."""
        if self.ledger is None:
            logger.info(self._state.message)
            return
        await self.refresh_all()

    async def refresh_all(self) -> None:
        """Refresh every read projection concurrently."""
        await asyncio.gather(
            self.refresh_user_total_handle(),
            self.refresh_global_total_handle(),
            self.refresh_total_users(),
            self.refresh_has_logged_today(),
        )

    # -- passive reads -------------------------------------------------------

    async def refresh_total_users(self) -> None:
        """Fetch the global user count. Failures are logged only."""
        if self.ledger is None:
            return
        generation = self._write_generation
        try:
            count = await self.ledger.get_total_users()
        except Exception as exc:
            logger.warning("Error fetching total users: %s", exc)
            return
        if self._is_outdated(generation, "total users"):
            return
        self._commit(total_users=int(count))

    async def refresh_has_logged_today(self) -> None:
        """Fetch whether the current user already logged today."""
        if self.ledger is None or self.signer is None:
            return
        generation = self._write_generation
        try:
            user = await self.signer.get_address()
            logged = await self.ledger.has_submitted_today(user)
        except Exception as exc:
            logger.warning("Error checking hasSubmittedToday: %s", exc)
            return
        if self._is_outdated(generation, "hasSubmittedToday"):
            return
        self._commit(has_logged_today=bool(logged))

    async def refresh_user_total_handle(self) -> None:
        """Fetch the handle of the user's running total (single-flight)."""
        if self.ledger is None or self.signer is None:
            return
        await self._single_flight(
            OperationKind.REFRESH_USER_TOTAL,
            lambda: self._refresh_handle(HandleSlot.USER_TOTAL),
        )

    async def refresh_global_total_handle(self) -> None:
        """Fetch the handle of the global running total (single-flight)."""
        if self.ledger is None:
            return
        await self._single_flight(
            OperationKind.REFRESH_GLOBAL_TOTAL,
            lambda: self._refresh_handle(HandleSlot.GLOBAL_TOTAL),
        )

    async def _refresh_handle(self, slot: HandleSlot) -> None:
        generation = self._write_generation
        try:
            if slot is HandleSlot.USER_TOTAL:
                user = await self.signer.get_address()
                raw = await self.ledger.get_user_total_handle(user)
            else:
                raw = await self.ledger.get_global_total_handle()
        except Exception as exc:
            logger.warning("Error fetching %s handle: %s", SLOT_LABELS[slot], exc)
            return
        if self._is_outdated(generation, f"{SLOT_LABELS[slot]} handle"):
            return
        handle = normalize_handle(raw)
        previous = self._state.handles.get(slot)
        if self._commit_handle(slot, handle) and previous and previous != handle:
            logger.debug("%s handle changed, cached clear value is stale", SLOT_LABELS[slot])

    def _is_outdated(self, generation: int, label: str) -> bool:
        """True if a submission confirmed while this read was in flight."""
        if generation == self._write_generation:
            return False
        logger.debug("Dropping %s read that started before the last write", label)
        return True

    async def _refresh_after_write(self) -> None:
        """Re-read every projection once a submission has confirmed.

        A handle refresh still in flight from before the write would make
        a plain refresh a no-op, so each slot waits for it to finish first.
        """
        self._write_generation += 1

        async def handle(kind: OperationKind, refresh: Callable[[], Awaitable[None]]) -> None:
            await self._wait_idle(kind)
            # no suspension between the idle check and the guard acquire
            await refresh()

        await asyncio.gather(
            handle(OperationKind.REFRESH_USER_TOTAL, self.refresh_user_total_handle),
            handle(OperationKind.REFRESH_GLOBAL_TOTAL, self.refresh_global_total_handle),
            self.refresh_total_users(),
            self.refresh_has_logged_today(),
        )

    # -- reveal --------------------------------------------------------------

    async def decrypt_user_total(self) -> Optional[ClearValue]:
        """Reveal the user's own running total."""
        return await self._decrypt(HandleSlot.USER_TOTAL)

    async def decrypt_global_total(self) -> Optional[ClearValue]:
        """Reveal the global running total, if the ledger grants access."""
        return await self._decrypt(HandleSlot.GLOBAL_TOTAL)

    async def _decrypt(self, slot: HandleSlot) -> Optional[ClearValue]:
        handle = self._state.handles.get(slot)
        if (
            self.computation is None
            or not handle
            or self.contract_address is None
            or self.signer is None
        ):
            logger.debug("Reveal of %s unavailable", SLOT_LABELS[slot])
            return None
        return await self._single_flight(
            OperationKind.DECRYPT, lambda: self._reveal(slot, handle)
        )

    async def _reveal(self, slot: HandleSlot, handle: str) -> Optional[ClearValue]:
        label = SLOT_LABELS[slot]

        # The zero handle was never written; the service would refuse it.
        if is_zero_handle(handle):
            value = ClearValue(handle=handle, clear=0)
            self._commit_clear(slot, value, MSG_NOTHING_TO_DECRYPT)
            return value

        self._commit(message=f"Decrypting {label}...")
        contract = self.contract_address
        try:
            sig = await load_or_sign(
                self.computation,
                [contract],
                self.signer,
                self.signature_storage,
                duration_days=self.config.signature_duration_days,
                clock=self.clock,
            )
            if sig is None:
                self._commit(message="Unable to build decryption signature")
                return None
            if not sig.covers(contract):
                raise DecryptionError(f"Decryption signature does not cover {contract}")

            results = await self.computation.user_decrypt(
                [DecryptRequest(handle=handle, contract_address=contract)], sig
            )
            raw = results.get(handle)
            if raw is None:
                raw = {k.lower(): v for k, v in results.items()}.get(handle.lower())
            if raw is None:
                raise DecryptionError(f"No plaintext returned for {label}")
        except Exception as exc:
            logger.error("Error decrypting %s: %s", label, exc)
            self._commit(message=f"Error decrypting {label}")
            return None

        clear = raw if isinstance(raw, bool) else int(raw)
        value = ClearValue(handle=handle, clear=clear)
        if not self._commit_clear(slot, value, f"Decryption succeeded! Total kWh: {clear}"):
            return None
        logger.info("Revealed %s", label)
        return value

    # -- write path ----------------------------------------------------------

    async def submit_usage(self, value: int, note_reference: str = "") -> bool:
        """Encrypt and log today's kWh on-chain.

        Args:
            value: Whole kWh, 1 .. 2**32 - 1.
            note_reference: Optional content reference (e.g. an IPFS CID).

        Returns:
            True if the transaction was confirmed. Every failure is
            reported through the status message instead of raised.
        """
        if self._guard.is_running(OperationKind.LOG):
            logger.debug("Submission already in flight, ignoring")
            return False
        if (
            self.computation is None
            or self.signer is None
            or self.ledger is None
        ):
            logger.debug("Submission unavailable: missing coprocessor, signer, or contract")
            return False
        result = await self._single_flight(
            OperationKind.LOG, lambda: self._submit(value, note_reference or "")
        )
        return bool(result)

    def _stage(self, stage: SubmissionStage, message: Optional[str] = None) -> None:
        changes = {"submission_stage": stage}
        if message is not None:
            changes["message"] = message
        self._commit(**changes)

    async def _submit(self, value: int, note_reference: str) -> bool:
        ledger = self.ledger
        try:
            self._stage(SubmissionStage.VALIDATING)
            amount = self.validate_value(value)

            self._stage(SubmissionStage.ENCRYPTING, "Encrypting kWh value...")
            # let the caller's UI breathe before the heavy encryption step
            await asyncio.sleep(self.config.encrypt_yield_seconds)
            user = await self.signer.get_address()
            handle, proof = await self._encrypt(amount, user)

            self._stage(SubmissionStage.PREFLIGHT, "Running preflight checks...")
            await self._preflight(user)

            self._stage(SubmissionStage.ESTIMATING, "Estimating gas...")
            try:
                gas = await ledger.estimate_submit_usage(self.signer, handle, proof, note_reference)
            except Exception as exc:
                raise estimation_failure(exc, ledger.parse_error) from exc
            logger.debug("Gas estimate: %s", gas)

            self._stage(SubmissionStage.SUBMITTING, "Submitting transaction to the blockchain...")
            try:
                tx = await ledger.submit_usage(self.signer, handle, proof, note_reference)
            except Exception as exc:
                raise SubmissionError(
                    describe_failure(exc, ledger.parse_error, fallback="Transaction submission failed")
                ) from exc
            logger.info("Transaction submitted: %s", tx.tx_hash)

            self._stage(SubmissionStage.CONFIRMING, "Waiting for transaction confirmation...")
            try:
                receipt = await tx.wait()
            except Exception as exc:
                raise ConfirmationError(
                    describe_failure(exc, ledger.parse_error, fallback="Transaction confirmation failed")
                ) from exc
            if receipt is None or not receipt.succeeded:
                status = receipt.status if receipt is not None else "unknown"
                raise ConfirmationError(f"Transaction failed with status: {status}")
        except Exception as exc:
            message = describe_failure(exc, ledger.parse_error, fallback="Failed to log solar usage")
            logger.error("Error logging solar usage: %s", message)
            self._commit(
                submission_stage=SubmissionStage.IDLE,
                last_submission=SubmissionStage.FAILED,
                message=message,
            )
            return False

        await self._refresh_after_write()
        self._commit(
            submission_stage=SubmissionStage.IDLE,
            last_submission=SubmissionStage.SUCCEEDED,
            message=MSG_LOGGED,
        )
        return True

    def validate_value(self, value: int) -> int:
        """Check ``value`` is a whole kWh amount the ledger can hold.

        Raises:
            ValidationError: Not a positive integer within the field width.
        """
        limit = self.config.max_value
        if isinstance(value, bool):
            raise ValidationError("kWh value must be a whole number")
        try:
            amount = int(value)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError("kWh value must be a whole number") from None
        if amount != value:
            raise ValidationError("kWh value must be a whole number")
        if amount <= 0 or amount > limit:
            raise ValidationError(f"kWh value must be between 1 and {limit}")
        return amount

    async def _encrypt(self, amount: int, user: str) -> tuple[str, str]:
        enc_input = self.computation.create_encrypted_input(self.contract_address, user)
        enc_input.add32(amount)
        payload = await enc_input.encrypt()

        if not payload.handles or not payload.handles[0]:
            raise EncryptionError("Encryption failed: no handle generated")
        if not payload.input_proof:
            raise EncryptionError("Encryption failed: no input proof generated")

        proof = payload.input_proof
        if isinstance(proof, (bytes, bytearray)):
            proof = "0x" + bytes(proof).hex()
        return normalize_handle(payload.handles[0]), str(proof)

    async def _preflight(self, user: str) -> None:
        """Cheap reads before spending gas. Only a confirmed duplicate is fatal."""
        ledger = self.ledger
        try:
            has_code = await ledger.has_code()
        except Exception as exc:
            logger.warning("Contract code check failed: %s", exc)
        else:
            if not has_code:
                raise PreflightError(
                    f"Contract is not deployed at {ledger.address}. Deploy it first."
                )

        try:
            await ledger.get_total_users()
        except Exception as exc:
            logger.warning("Contract connectivity check failed: %s", exc)

        try:
            already = await ledger.has_submitted_today(user)
        except Exception as exc:
            logger.warning("Duplicate-submission precheck failed: %s", exc)
            return
        if already:
            raise PreflightError(MSG_ALREADY_LOGGED)
        logger.debug("Preflight passed: %s has not logged today", user)

    # -- aggregation views ---------------------------------------------------

    async def leaderboard(self) -> list[LeaderboardEntry]:
        """Ranked leaderboard, with the user's own total on their row if revealed.

        Returns an empty board when nothing is deployed on the chain.

        Raises:
            LedgerCallError: The user list or a count could not be read.
        """
        if self.ledger is None:
            return []
        entries = await load_leaderboard(
            self.ledger, current_user=self.session.account, limit=self.config.leaderboard_limit
        )
        return attach_revealed_total(
            entries,
            self._state.clear_values.get(HandleSlot.USER_TOTAL),
            self._state.handles.get(HandleSlot.USER_TOTAL),
        )

    async def activity_calendar(self) -> list[CalendarDay]:
        """Trailing activity window for the current user."""
        if self.ledger is None or self.signer is None:
            return []
        user = await self.signer.get_address()
        return await load_calendar(
            self.ledger, user, self.clock(), window=self.config.calendar_window_days
        )

    async def badges(self, calendar: Optional[list[CalendarDay]] = None) -> list[BadgeStatus]:
        """Claim state of every badge for the current user."""
        if self.ledger is None or self.signer is None:
            return []
        if calendar is None:
            calendar = await self.activity_calendar()
        user = await self.signer.get_address()
        return await load_badges(self.ledger, user, calendar)

    async def claim_badge(self, badge: Badge) -> bool:
        """Claim ``badge`` if eligible. Failures become the status message."""
        if self.ledger is None or self.signer is None:
            return False
        try:
            statuses = {s.badge: s for s in await self.badges()}
            status = statuses.get(badge)
            if status is None:
                raise SolarTrackError(f"Unknown badge {badge!r}")
            await claim_badge(self.ledger, self.signer, status)
        except Exception as exc:
            message = describe_failure(exc, self.ledger.parse_error, fallback="Failed to claim badge")
            logger.error("Error claiming badge: %s", message)
            self._commit(message=message)
            return False
        self._commit(message=f"Badge {status.name} claimed!")
        return True
