"""
Signers -- who the user is and how they authorize things.

The engine only needs two facts from a signer: its address, and a
signature over typed data. Real wallets plug in behind Signer. The
LocalSigner derives a deterministic devnet identity from a seed.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger("solartrack.signer")


class Signer(ABC):
    """An account able to sign on the user's behalf."""

    @abstractmethod
    async def get_address(self) -> str:
        """Return the account address (``0x``-prefixed)."""

    @abstractmethod
    async def sign_typed_data(self, typed_data: dict) -> str:
        """Sign a typed-data payload. May prompt the user.

        Raises:
            Exception: Whatever the wallet raises when the user declines.
        """


def derive_address(seed: str) -> str:
    """Deterministic devnet address for ``seed``."""
    digest = hashlib.sha256(f"solartrack-account:{seed}".encode()).hexdigest()
    return "0x" + digest[-40:]


class LocalSigner(Signer):
    """Devnet signer keyed by a seed string.

    Signatures are HMAC-SHA256 over the canonical JSON of the payload.
    Good enough for the devnet, meaningless anywhere else.
    """

    def __init__(self, seed: str):
        self._key = hashlib.sha256(f"solartrack-key:{seed}".encode()).digest()
        self.address = derive_address(seed)
        self.sign_count = 0

    async def get_address(self) -> str:
        return self.address

    async def sign_typed_data(self, typed_data: dict) -> str:
        payload = json.dumps(typed_data, sort_keys=True, separators=(",", ":"))
        self.sign_count += 1
        logger.debug("Signing typed data for %s", self.address)
        return "0x" + hmac.new(self._key, payload.encode(), hashlib.sha256).hexdigest()
