"""
Confidential computation client interface.

Encryption happens client-side: build an input bound to (contract,
user), add plaintext values, encrypt, and ship the resulting handle
together with its proof of well-formedness. Decryption goes the other
way and needs a signed decryption permission.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Union

from ..models import DecryptionSignature

HandleBytes = Union[str, bytes, bytearray]


@dataclass
class EncryptedPayload:
    """Result of encrypting an input: one handle per added value, one proof."""

    handles: list[HandleBytes] = field(default_factory=list)
    input_proof: HandleBytes = b""


@dataclass
class DecryptRequest:
    """A handle to decrypt and the contract that owns it."""

    handle: str
    contract_address: str


class EncryptedInput(ABC):
    """Builder for an encrypted input bound to one contract and one user."""

    @abstractmethod
    def add32(self, value: int) -> "EncryptedInput":
        """Append a 32-bit unsigned plaintext value."""

    @abstractmethod
    async def encrypt(self) -> EncryptedPayload:
        """Encrypt all appended values. CPU heavy."""


class ComputationClient(ABC):
    """Client for the confidential computation service."""

    @abstractmethod
    def create_encrypted_input(self, contract_address: str, user_address: str) -> EncryptedInput:
        """Start an encrypted input for ``user_address`` calling ``contract_address``."""

    @abstractmethod
    async def user_decrypt(
        self, requests: list[DecryptRequest], signature: DecryptionSignature
    ) -> dict[str, Union[int, bool]]:
        """Decrypt handles the signature authorizes.

        Returns:
            Mapping of handle to plaintext value.
        """

    @abstractmethod
    def generate_keypair(self) -> tuple[str, str]:
        """Fresh (public_key, private_key) for a decryption signature."""

    @abstractmethod
    def create_eip712(
        self,
        public_key: str,
        contract_addresses: list[str],
        start_timestamp: int,
        duration_days: int,
    ) -> dict:
        """Typed data the user signs to authorize decryption."""
