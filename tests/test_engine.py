"""Tests for the SyncEngine -- refresh, submit pipeline, and reveals.

Covers:
- Initial refresh and the zero-handle reveal short circuit
- Submission happy path and the four follow-up refreshes
- Duplicate-day detection before any gas is spent
- Single-flight: a second submit while one runs is ignored
- A handle read in flight across a confirmed write is dropped and re-run
- Input validation never reaches the network
- Failure classification for encryption, estimation, submission, confirmation
- Reveal: signature reuse, stale clear values, declined signatures
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from solartrack.confidential.base import EncryptedInput, EncryptedPayload
from solartrack.confidential.signature import MemoryStringStorage
from solartrack.engine import (
    MSG_ALREADY_LOGGED,
    MSG_CONNECT_WALLET,
    MSG_LOGGED,
    MSG_NOTHING_TO_DECRYPT,
)
from solartrack.errors import LedgerCallError, encode_revert_reason
from solartrack.ledger.base import TransactionReceipt
from solartrack.ledger.local import LocalPendingTransaction
from solartrack.models import ZERO_HANDLE, HandleSlot, SubmissionStage
from solartrack.signer import LocalSigner


def spy(obj, name: str) -> AsyncMock:
    """Replace an async method with a mock that still calls through."""
    mock = AsyncMock(side_effect=getattr(obj, name))
    setattr(obj, name, mock)
    return mock


class DecliningSigner(LocalSigner):
    """Signer whose user always rejects the signing prompt."""

    async def sign_typed_data(self, typed_data: dict) -> str:
        raise RuntimeError("User rejected the request")


class EmptyInput(EncryptedInput):
    """Encrypted input that yields nothing."""

    def add32(self, value: int) -> "EmptyInput":
        return self

    async def encrypt(self) -> EncryptedPayload:
        return EncryptedPayload()


# ---------------------------------------------------------------------------
# Refresh and session state
# ---------------------------------------------------------------------------


class TestRefresh:
    """Passive reads and the initial snapshot."""

    @pytest.mark.asyncio
    async def test_start_loads_zero_handles_for_new_user(self, make_engine, alice):
        """A user who never logged sees the zero handle and no submissions."""
        engine = make_engine(alice)
        await engine.start()

        snap = engine.snapshot()
        assert snap.is_deployed is True
        assert snap.handle(HandleSlot.USER_TOTAL) == ZERO_HANDLE
        assert snap.handle(HandleSlot.GLOBAL_TOTAL) == ZERO_HANDLE
        assert snap.total_users == 0
        assert snap.has_logged_today is False
        assert snap.is_refreshing is False

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_state_and_message(self, make_engine, alice, ledger):
        """A failed read is logged only; nothing visible changes."""
        engine = make_engine(alice)
        await engine.start()
        before = engine.snapshot()

        ledger.get_user_total_handle = AsyncMock(side_effect=LedgerCallError("node down"))
        await engine.refresh_user_total_handle()

        after = engine.snapshot()
        assert after.handle(HandleSlot.USER_TOTAL) == before.handle(HandleSlot.USER_TOTAL)
        assert after.message == before.message
        assert after.is_refreshing is False

    def test_no_deployment_message(self, make_engine, alice):
        """Without a contract on the chain the message names the chain id."""
        engine = make_engine(alice, ledger_override=None, chain_id=1)
        snap = engine.snapshot()

        assert snap.is_deployed is False
        assert snap.contract_address is None
        assert snap.message == "SolarTrackManager deployment not found for chainId=1."

    def test_no_chain_asks_for_wallet(self, make_engine):
        engine = make_engine(None, ledger_override=None, chain_id=None)
        assert engine.snapshot().message == MSG_CONNECT_WALLET

    @pytest.mark.asyncio
    async def test_operations_without_deployment_are_noops(self, make_engine, alice):
        engine = make_engine(alice, ledger_override=None, chain_id=1)
        await engine.start()

        assert await engine.submit_usage(10) is False
        assert await engine.decrypt_user_total() is None
        assert await engine.leaderboard() == []
        assert await engine.activity_calendar() == []

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self, make_engine, alice):
        """Listeners get a snapshot per change until they unsubscribe."""
        engine = make_engine(alice)
        seen = []
        unsubscribe = engine.subscribe(seen.append)

        await engine.refresh_total_users()
        assert seen

        unsubscribe()
        count = len(seen)
        await engine.refresh_total_users()
        assert len(seen) == count

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_engine(self, make_engine, alice):
        engine = make_engine(alice)

        def broken(snapshot):
            raise RuntimeError("render failed")

        engine.subscribe(broken)
        await engine.start()
        assert engine.snapshot().total_users == 0


# ---------------------------------------------------------------------------
# Submission pipeline
# ---------------------------------------------------------------------------


class TestSubmit:
    """The validate -> encrypt -> preflight -> estimate -> send -> confirm path."""

    @pytest.mark.asyncio
    async def test_submit_success_refreshes_everything(self, make_engine, alice, ledger):
        """A confirmed submission refreshes handles, user count, and today's flag."""
        engine = make_engine(alice)
        await engine.start()

        user_handle = spy(ledger, "get_user_total_handle")
        global_handle = spy(ledger, "get_global_total_handle")
        total_users = spy(ledger, "get_total_users")
        logged_today = spy(ledger, "has_submitted_today")

        assert await engine.submit_usage(12) is True

        snap = engine.snapshot()
        assert snap.has_logged_today is True
        assert snap.total_users == 1
        assert snap.message == MSG_LOGGED
        assert snap.submission_stage is SubmissionStage.IDLE
        assert snap.last_submission is SubmissionStage.SUCCEEDED
        assert snap.is_logging is False
        assert snap.handle(HandleSlot.USER_TOTAL) != ZERO_HANDLE

        assert user_handle.await_count == 1
        assert global_handle.await_count == 1
        # preflight reads plus the post-confirmation refresh
        assert total_users.await_count == 2
        assert logged_today.await_count == 2

    @pytest.mark.asyncio
    async def test_stages_are_published_in_order(self, make_engine, alice):
        engine = make_engine(alice)
        stages = []

        def record(snapshot):
            if snapshot.submission_stage not in stages:
                stages.append(snapshot.submission_stage)

        engine.subscribe(record)
        await engine.submit_usage(3)

        assert stages == [
            SubmissionStage.IDLE,
            SubmissionStage.VALIDATING,
            SubmissionStage.ENCRYPTING,
            SubmissionStage.PREFLIGHT,
            SubmissionStage.ESTIMATING,
            SubmissionStage.SUBMITTING,
            SubmissionStage.CONFIRMING,
        ]

    @pytest.mark.asyncio
    async def test_second_submission_same_day_is_caught_in_preflight(
        self, make_engine, alice, ledger
    ):
        """The duplicate is detected before estimation; no gas is spent."""
        engine = make_engine(alice)
        assert await engine.submit_usage(12) is True

        estimate = spy(ledger, "estimate_submit_usage")
        submit = spy(ledger, "submit_usage")

        assert await engine.submit_usage(5) is False

        snap = engine.snapshot()
        assert snap.message == MSG_ALREADY_LOGGED
        assert snap.last_submission is SubmissionStage.FAILED
        assert snap.submission_stage is SubmissionStage.IDLE
        assert estimate.await_count == 0
        assert submit.await_count == 0

    @pytest.mark.asyncio
    async def test_next_day_submission_succeeds(self, make_engine, alice, clock):
        engine = make_engine(alice)
        assert await engine.submit_usage(12) is True

        clock.advance_days(1)
        await engine.refresh_has_logged_today()
        assert engine.snapshot().has_logged_today is False

        assert await engine.submit_usage(5) is True
        assert engine.snapshot().total_users == 1

    @pytest.mark.asyncio
    async def test_precheck_failure_is_advisory(self, make_engine, alice, ledger):
        """If the duplicate precheck itself fails, the contract still decides."""
        engine = make_engine(alice)
        assert await engine.submit_usage(12) is True

        ledger.has_submitted_today = AsyncMock(side_effect=LedgerCallError("timeout"))
        assert await engine.submit_usage(5) is False

        assert engine.snapshot().message == "Contract requirement failed: Already logged today"

    @pytest.mark.asyncio
    async def test_second_submit_while_in_flight_is_ignored(
        self, make_engine, alice, ledger, computation
    ):
        """Only one submission runs at a time; the extra call does nothing."""
        engine = make_engine(alice)
        reached = asyncio.Event()
        release = asyncio.Event()

        async def slow_has_code():
            reached.set()
            await release.wait()
            return True

        ledger.has_code = slow_has_code
        create_input = MagicMock(side_effect=computation.create_encrypted_input)
        computation.create_encrypted_input = create_input

        task = asyncio.create_task(engine.submit_usage(12))
        await reached.wait()
        assert engine.snapshot().is_logging is True

        assert await engine.submit_usage(7) is False

        release.set()
        assert await task is True
        assert create_input.call_count == 1
        assert engine.snapshot().is_logging is False

    @pytest.mark.asyncio
    async def test_refresh_in_flight_across_submit_does_not_win(
        self, make_engine, alice, ledger
    ):
        """A handle read that started before the write never overwrites the new handle."""
        engine = make_engine(alice)
        reached = asyncio.Event()
        release = asyncio.Event()
        after_write = asyncio.Event()
        read_user_handle = ledger.get_user_total_handle
        read_global_handle = ledger.get_global_total_handle
        calls = []

        async def held_user_handle(user):
            calls.append(user)
            handle = await read_user_handle(user)
            if len(calls) == 1:
                reached.set()
                await release.wait()
            return handle

        async def flagged_global_handle():
            after_write.set()
            return await read_global_handle()

        ledger.get_user_total_handle = held_user_handle
        ledger.get_global_total_handle = flagged_global_handle

        refresh = asyncio.create_task(engine.refresh_user_total_handle())
        await reached.wait()

        submit = asyncio.create_task(engine.submit_usage(12))
        await after_write.wait()
        for _ in range(5):
            await asyncio.sleep(0)
        assert not submit.done()

        release.set()
        await refresh
        assert await submit is True

        current = await read_user_handle(alice.address)
        assert current != ZERO_HANDLE
        assert engine.snapshot().handle(HandleSlot.USER_TOTAL) == current
        assert len(calls) == 2
        value = await engine.decrypt_user_total()
        assert value.clear == 12

    @pytest.mark.parametrize("value", [0, -3, 2**32, 1.5, True, float("inf")])
    @pytest.mark.asyncio
    async def test_invalid_values_never_reach_the_network(
        self, make_engine, alice, ledger, computation, value
    ):
        engine = make_engine(alice)
        await engine.start()
        before = engine.snapshot()

        create_input = MagicMock(side_effect=computation.create_encrypted_input)
        computation.create_encrypted_input = create_input
        has_code = spy(ledger, "has_code")

        assert await engine.submit_usage(value) is False

        snap = engine.snapshot()
        assert "kWh value must be" in snap.message
        assert snap.handles == before.handles
        assert snap.has_logged_today is False
        assert snap.last_submission is SubmissionStage.FAILED
        assert create_input.call_count == 0
        assert has_code.await_count == 0

    @pytest.mark.asyncio
    async def test_largest_value_is_accepted(self, make_engine, alice):
        engine = make_engine(alice)
        assert await engine.submit_usage(2**32 - 1) is True

    @pytest.mark.asyncio
    async def test_missing_coprocessor_is_silent_noop(self, make_engine, alice, ledger):
        engine = make_engine(alice, computation_override=None)
        has_code = spy(ledger, "has_code")

        assert await engine.submit_usage(12) is False
        assert engine.snapshot().message == ""
        assert has_code.await_count == 0

    @pytest.mark.asyncio
    async def test_empty_encryption_result(self, make_engine, alice, ledger, computation):
        engine = make_engine(alice)
        computation.create_encrypted_input = lambda contract, user: EmptyInput()
        estimate = spy(ledger, "estimate_submit_usage")

        assert await engine.submit_usage(12) is False
        assert engine.snapshot().message == "Encryption failed: no handle generated"
        assert estimate.await_count == 0

    @pytest.mark.asyncio
    async def test_missing_contract_code_is_fatal(self, make_engine, alice, ledger):
        engine = make_engine(alice)
        ledger.has_code = AsyncMock(return_value=False)

        assert await engine.submit_usage(12) is False
        assert engine.snapshot().message.startswith("Contract is not deployed at")

    @pytest.mark.asyncio
    async def test_code_check_error_is_advisory(self, make_engine, alice, ledger):
        engine = make_engine(alice)
        ledger.has_code = AsyncMock(side_effect=LedgerCallError("rpc error"))

        assert await engine.submit_usage(12) is True

    @pytest.mark.asyncio
    async def test_estimation_revert_reason_is_decoded(self, make_engine, alice, ledger):
        engine = make_engine(alice)
        ledger.estimate_submit_usage = AsyncMock(
            side_effect=LedgerCallError(
                "execution reverted", code="CALL_EXCEPTION", data=encode_revert_reason("Paused")
            )
        )
        submit = spy(ledger, "submit_usage")

        assert await engine.submit_usage(12) is False
        assert engine.snapshot().message == "Contract requirement failed: Paused"
        assert submit.await_count == 0

    @pytest.mark.asyncio
    async def test_estimation_generic_failure_lists_causes(self, make_engine, alice, ledger):
        engine = make_engine(alice)
        ledger.estimate_submit_usage = AsyncMock(
            side_effect=LedgerCallError("boom", short_message="node unreachable")
        )

        assert await engine.submit_usage(12) is False
        message = engine.snapshot().message
        assert message.startswith("Gas estimation failed. Possible causes:")
        assert "Details: node unreachable" in message

    @pytest.mark.asyncio
    async def test_submission_rejected_uses_node_reason(self, make_engine, alice, ledger):
        engine = make_engine(alice)
        ledger.submit_usage = AsyncMock(
            side_effect=LedgerCallError("rejected", reason="user rejected transaction")
        )

        assert await engine.submit_usage(12) is False
        assert engine.snapshot().message == "user rejected transaction"

    @pytest.mark.asyncio
    async def test_failed_receipt_reports_status(self, make_engine, alice, ledger):
        engine = make_engine(alice)
        ledger.submit_usage = AsyncMock(
            return_value=LocalPendingTransaction(TransactionReceipt(tx_hash="0xabc", status=0))
        )

        assert await engine.submit_usage(12) is False
        snap = engine.snapshot()
        assert snap.message == "Transaction failed with status: 0"
        assert snap.has_logged_today is False
        assert snap.last_submission is SubmissionStage.FAILED


# ---------------------------------------------------------------------------
# Reveal
# ---------------------------------------------------------------------------


class TestReveal:
    """Decrypting the user's own (and the global) running total."""

    @pytest.mark.asyncio
    async def test_zero_handle_reveals_zero_without_service(
        self, make_engine, alice, computation
    ):
        engine = make_engine(alice)
        await engine.start()

        value = await engine.decrypt_user_total()

        assert value is not None
        assert value.clear == 0
        assert value.handle == ZERO_HANDLE
        assert computation.decrypt_calls == 0
        assert alice.sign_count == 0
        assert engine.snapshot().message == MSG_NOTHING_TO_DECRYPT

    @pytest.mark.asyncio
    async def test_reveal_before_refresh_is_noop(self, make_engine, alice, computation):
        engine = make_engine(alice)
        assert await engine.decrypt_user_total() is None
        assert computation.decrypt_calls == 0

    @pytest.mark.asyncio
    async def test_reveal_after_submission(self, make_engine, alice):
        engine = make_engine(alice)
        await engine.submit_usage(12)

        value = await engine.decrypt_user_total()

        assert value.clear == 12
        assert engine.clear_value(HandleSlot.USER_TOTAL) == value
        assert engine.snapshot().message == "Decryption succeeded! Total kWh: 12"
        assert engine.snapshot().is_decrypting is False

    @pytest.mark.asyncio
    async def test_signature_is_reused_across_reveals(
        self, make_engine, alice, clock, computation
    ):
        """Only the first reveal prompts for a signature."""
        engine = make_engine(alice)
        await engine.submit_usage(12)
        await engine.decrypt_user_total()

        clock.advance_days(1)
        await engine.submit_usage(5)
        value = await engine.decrypt_user_total()

        assert value.clear == 17
        assert alice.sign_count == 1
        assert computation.decrypt_calls == 2

    @pytest.mark.asyncio
    async def test_expired_signature_is_renewed(self, make_engine, alice, clock):
        storage = MemoryStringStorage()
        engine = make_engine(alice, storage=storage)
        await engine.submit_usage(12)
        await engine.decrypt_user_total()

        clock.advance_days(366)
        value = await engine.decrypt_user_total()

        assert value.clear == 12
        assert alice.sign_count == 2

    @pytest.mark.asyncio
    async def test_stale_clear_value_is_hidden(self, make_engine, alice, clock):
        """After the handle moves on, the old reveal is not shown."""
        engine = make_engine(alice)
        await engine.submit_usage(12)
        await engine.decrypt_user_total()

        clock.advance_days(1)
        await engine.submit_usage(5)

        snap = engine.snapshot()
        assert snap.clear_values[HandleSlot.USER_TOTAL].clear == 12
        assert snap.displayed_clear(HandleSlot.USER_TOTAL) is None
        assert engine.clear_value(HandleSlot.USER_TOTAL) is None

        board = await engine.leaderboard()
        assert board[0].is_current_user is True
        assert board[0].revealed_total is None

    @pytest.mark.asyncio
    async def test_revealed_total_on_own_leaderboard_row(self, make_engine, alice, bob, clock):
        alice_engine = make_engine(alice)
        bob_engine = make_engine(bob)
        await bob_engine.submit_usage(7)
        await alice_engine.submit_usage(12)
        clock.advance_days(1)
        await alice_engine.submit_usage(3)
        await alice_engine.decrypt_user_total()

        board = await alice_engine.leaderboard()

        assert [e.log_count for e in board] == [2, 1]
        assert board[0].is_current_user and board[0].revealed_total == 15
        assert board[1].revealed_total is None

    @pytest.mark.asyncio
    async def test_global_total_reveal(self, make_engine, alice):
        engine = make_engine(alice)
        await engine.submit_usage(12)

        value = await engine.decrypt_global_total()

        assert value.clear == 12
        assert engine.snapshot().message == "Decryption succeeded! Total kWh: 12"

    @pytest.mark.asyncio
    async def test_declined_signature(self, make_engine, computation):
        signer = DecliningSigner("carol")
        engine = make_engine(signer)
        await engine.submit_usage(9)

        assert await engine.decrypt_user_total() is None
        assert engine.snapshot().message == "Unable to build decryption signature"
        assert computation.decrypt_calls == 0

    @pytest.mark.asyncio
    async def test_unauthorized_handle(self, make_engine, alice, bob, ledger):
        """Another user's handle cannot be revealed."""
        await make_engine(alice).submit_usage(12)
        alice_handle = await ledger.get_user_total_handle(alice.address)

        engine = make_engine(bob)
        ledger.get_user_total_handle = AsyncMock(return_value=alice_handle)
        await engine.refresh_user_total_handle()

        assert await engine.decrypt_user_total() is None
        assert engine.snapshot().message == "Error decrypting user total kWh"
        assert engine.clear_value(HandleSlot.USER_TOTAL) is None

    @pytest.mark.asyncio
    async def test_concurrent_reveal_is_ignored(self, make_engine, alice, computation):
        engine = make_engine(alice)
        await engine.submit_usage(12)

        reached = asyncio.Event()
        release = asyncio.Event()
        original = computation.user_decrypt

        async def slow_decrypt(requests, signature):
            reached.set()
            await release.wait()
            return await original(requests, signature)

        computation.user_decrypt = slow_decrypt

        task = asyncio.create_task(engine.decrypt_user_total())
        await reached.wait()
        assert engine.snapshot().is_decrypting is True
        assert await engine.decrypt_user_total() is None

        release.set()
        value = await task
        assert value.clear == 12
