"""
Decryption signature cache.

Revealing a value needs a signed permission. Signing is interactive,
so the signature is cached per (user, contract set) and reused until
its validity window runs out. Storage is pluggable: in memory for a
single process, a JSON file for anything longer lived.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError as ModelValidationError

from ..models import DecryptionSignature
from ..signer import Signer
from .base import ComputationClient

logger = logging.getLogger("solartrack.confidential.signature")

DEFAULT_DURATION_DAYS = 365


class StringStorage(ABC):
    """Minimal key/value string store."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Stored value for ``key``, or None."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Forget ``key`` if present."""


class MemoryStringStorage(StringStorage):
    """Process-local storage. Lost on exit."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStringStorage(StringStorage):
    """JSON-file storage, one object mapping keys to strings."""

    def __init__(self, path: Path):
        self.path = path

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable signature cache %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


def cache_key(user_address: str, contract_addresses: list[str]) -> str:
    """Storage key for a (user, contract set) pair. Order-insensitive."""
    contracts = ",".join(sorted(c.lower() for c in contract_addresses))
    digest = hashlib.sha256(f"{user_address.lower()}|{contracts}".encode()).hexdigest()
    return f"decryption-signature:{digest}"


def _load_cached(
    storage: StringStorage,
    key: str,
    user_address: str,
    contract_addresses: list[str],
    now: float,
) -> Optional[DecryptionSignature]:
    raw = storage.get_item(key)
    if raw is None:
        return None

    try:
        sig = DecryptionSignature.model_validate_json(raw)
    except ModelValidationError as exc:
        logger.warning("Dropping malformed cached decryption signature: %s", exc)
        storage.remove_item(key)
        return None

    if sig.user_address.lower() != user_address.lower():
        return None
    if not all(sig.covers(c) for c in contract_addresses):
        return None
    if not sig.is_valid(now):
        logger.info("Cached decryption signature expired for %s", user_address)
        storage.remove_item(key)
        return None
    return sig


async def load_or_sign(
    client: ComputationClient,
    contract_addresses: list[str],
    signer: Signer,
    storage: StringStorage,
    duration_days: int = DEFAULT_DURATION_DAYS,
    clock: Callable[[], float] = time.time,
) -> Optional[DecryptionSignature]:
    """Return a usable decryption signature, signing a new one only if needed.

    Args:
        client: Computation client (supplies keypair and typed data).
        contract_addresses: Contracts whose handles will be decrypted.
        signer: The user's signer. Prompted at most once per window.
        storage: Where signatures are cached.
        duration_days: Validity of a newly created signature.
        clock: Time source (unix seconds).

    Returns:
        The signature, or None if the user declined to sign.
    """
    user_address = await signer.get_address()
    key = cache_key(user_address, contract_addresses)
    now = clock()

    cached = _load_cached(storage, key, user_address, contract_addresses, now)
    if cached is not None:
        logger.debug("Reusing cached decryption signature for %s", user_address)
        return cached

    public_key, private_key = client.generate_keypair()
    start = int(now)
    typed_data = client.create_eip712(public_key, contract_addresses, start, duration_days)

    try:
        signature = await signer.sign_typed_data(typed_data)
    except Exception as exc:
        logger.warning("User signature for decryption was not obtained: %s", exc)
        return None

    sig = DecryptionSignature(
        private_key=private_key,
        public_key=public_key,
        signature=signature,
        contract_addresses=list(contract_addresses),
        user_address=user_address,
        start_timestamp=start,
        duration_days=duration_days,
    )
    storage.set_item(key, sig.model_dump_json())
    logger.info("Created decryption signature for %s (%d days)", user_address, duration_days)
    return sig
