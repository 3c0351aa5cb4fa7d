"""
Error taxonomy and ledger-error classification.

Every failure the engine can hit maps onto one of a handful of types.
Ledger clients raise LedgerCallError with whatever payload the node
gave back; classification turns that payload into the most specific
human-readable reason available:

    contract-decoded reason  >  node reason / short message  >  generic
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

logger = logging.getLogger("solartrack.errors")

ERROR_STRING_SELECTOR = "0x08c379a0"
PANIC_SELECTOR = "0x4e487b71"

PANIC_REASONS = {
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division by zero",
    0x21: "invalid enum value",
    0x32: "array index out of bounds",
}

ErrorParser = Callable[[str], Optional[str]]


class SolarTrackError(Exception):
    """Base class for all SolarTrack failures."""


class ValidationError(SolarTrackError):
    """Bad input. Never reaches the network."""


class UnavailableError(SolarTrackError):
    """A required collaborator (signer, coprocessor, contract) is missing."""


class EncryptionError(SolarTrackError):
    """Encryption produced no handle or no proof."""


class PreflightError(SolarTrackError):
    """A hard preflight failure, e.g. the user already logged today."""


class EstimationError(SolarTrackError):
    """Gas estimation failed. The transaction was not sent."""


class SubmissionError(SolarTrackError):
    """The transaction was rejected or reverted on submission."""


class ConfirmationError(SolarTrackError):
    """The transaction was mined but did not succeed."""


class DecryptionError(SolarTrackError):
    """A reveal could not be completed."""


class LedgerCallError(SolarTrackError):
    """A ledger call failed. Carries the raw payload for classification.

    Attributes:
        code: Node or client error code (e.g. ``CALL_EXCEPTION``).
        reason: Revert reason if the node already decoded one.
        short_message: Short one-line diagnostic.
        data: Hex-encoded revert data, if any.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        reason: Optional[str] = None,
        short_message: Optional[str] = None,
        data: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.reason = reason
        self.short_message = short_message
        self.data = data


# ---------------------------------------------------------------------------
# Revert data codec
# ---------------------------------------------------------------------------


def encode_revert_reason(reason: str) -> str:
    """ABI-encode ``Error(string)`` revert data.

    Args:
        reason: Revert message.

    Returns:
        str: Hex revert data including the selector.
    """
    raw = reason.encode("utf-8")
    padded = raw + b"\x00" * (-len(raw) % 32)
    body = (32).to_bytes(32, "big") + len(raw).to_bytes(32, "big") + padded
    return ERROR_STRING_SELECTOR + body.hex()


def decode_revert_data(data: Optional[str]) -> Optional[str]:
    """Decode standard ``Error(string)`` and ``Panic(uint256)`` revert data.

    Args:
        data: Hex revert data as returned by the node.

    Returns:
        The decoded reason, or None if the payload is empty, custom, or malformed.
    """
    if not data or not isinstance(data, str):
        return None
    data = data.lower()
    if not data.startswith("0x") or len(data) <= 10:
        return None

    try:
        body = bytes.fromhex(data[10:])
    except ValueError:
        return None

    if data.startswith(ERROR_STRING_SELECTOR):
        if len(body) < 64:
            return None
        offset = int.from_bytes(body[0:32], "big")
        if offset + 32 > len(body):
            return None
        length = int.from_bytes(body[offset:offset + 32], "big")
        raw = body[offset + 32:offset + 32 + length]
        if len(raw) != length:
            return None
        return raw.decode("utf-8", errors="replace")

    if data.startswith(PANIC_SELECTOR):
        if len(body) < 32:
            return None
        code = int.from_bytes(body[0:32], "big")
        label = PANIC_REASONS.get(code, "panic")
        return f"Panic(0x{code:02x}): {label}"

    return None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def contract_reason(
    exc: BaseException, parse_error: Optional[ErrorParser] = None
) -> Optional[str]:
    """Pull a contract-level reason out of an exception's revert data.

    Tries the standard codec first, then the contract's own error table.
    """
    data = getattr(exc, "data", None)
    if not data or data == "0x":
        return None

    decoded = decode_revert_data(data)
    if decoded:
        return decoded

    if parse_error is not None:
        try:
            return parse_error(data)
        except (ValueError, KeyError) as parse_exc:
            logger.debug("Could not parse custom error %s: %s", data[:10], parse_exc)
    return None


def describe_failure(
    exc: BaseException,
    parse_error: Optional[ErrorParser] = None,
    fallback: str = "Operation failed",
) -> str:
    """Reduce any exception to one human-readable status line.

    Args:
        exc: The failure.
        parse_error: Optional custom-error decoder from the ledger client.
        fallback: Message when nothing more specific is available.

    Returns:
        str: The most specific reason available.
    """
    if isinstance(exc, SolarTrackError) and not isinstance(exc, LedgerCallError):
        return str(exc) or fallback

    decoded = contract_reason(exc, parse_error)
    if decoded:
        return decoded

    for attr in ("reason", "short_message"):
        value = getattr(exc, attr, None)
        if value:
            return str(value)

    if getattr(exc, "code", None) == "CALL_EXCEPTION":
        return (
            "Contract call failed. Possible causes:\n"
            "- the contract is not deployed at this address\n"
            "- the encrypted input is malformed\n"
            "- network connectivity problems\n"
            "- you already logged today"
        )

    return str(exc) or fallback


def estimation_failure(
    exc: BaseException, parse_error: Optional[ErrorParser] = None
) -> EstimationError:
    """Translate a failed gas estimate into a diagnostic EstimationError."""
    decoded = contract_reason(exc, parse_error)
    if decoded:
        return EstimationError(f"Contract requirement failed: {decoded}")

    detail = (
        getattr(exc, "short_message", None)
        or str(exc)
        or "unknown error"
    )
    return EstimationError(
        "Gas estimation failed. Possible causes:\n"
        "1. You already logged today\n"
        "2. The encrypted data is malformed\n"
        "3. The contract call parameters are wrong\n"
        "4. Network or node problems\n\n"
        f"Details: {detail}"
    )
