"""
Mock coprocessor for the local devnet.

"Encryption" registers the plaintext in the devnet ciphertext table
under a fresh handle and returns the proof the LocalLedger accepts.
"Decryption" checks the signature covers the owning contract and that
the ledger ACL grants the signer access, then reads the table.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import time
from typing import Callable, Union

from .. import UINT32_MAX
from ..devnet import Devnet, input_proof_for
from ..errors import DecryptionError
from ..models import DecryptionSignature, is_zero_handle
from .base import (
    ComputationClient,
    DecryptRequest,
    EncryptedInput,
    EncryptedPayload,
)

logger = logging.getLogger("solartrack.confidential.mock")


class MockEncryptedInput(EncryptedInput):
    """Encrypted input against the devnet coprocessor."""

    def __init__(self, devnet: Devnet, contract_address: str, user_address: str):
        self.devnet = devnet
        self.contract_address = contract_address.lower()
        self.user_address = user_address.lower()
        self.values: list[int] = []

    def add32(self, value: int) -> "MockEncryptedInput":
        if not 0 <= int(value) <= UINT32_MAX:
            raise ValueError(f"value {value} does not fit in 32 bits")
        self.values.append(int(value))
        return self

    async def encrypt(self) -> EncryptedPayload:
        if not self.values:
            return EncryptedPayload()
        await asyncio.sleep(0)
        handles = []
        for value in self.values:
            handle = self.devnet.new_handle("input", self.contract_address, self.user_address)
            self.devnet.store_ciphertext(handle, value)
            handles.append(bytes.fromhex(handle[2:]))
        self.devnet.save()
        proof = input_proof_for("0x" + handles[0].hex(), self.contract_address, self.user_address)
        return EncryptedPayload(handles=handles, input_proof=bytes.fromhex(proof[2:]))


class MockComputationClient(ComputationClient):
    """Devnet implementation of the confidential computation client."""

    def __init__(self, devnet: Devnet, clock: Callable[[], float] = time.time):
        self.devnet = devnet
        self.clock = clock
        self.decrypt_calls = 0

    def create_encrypted_input(self, contract_address: str, user_address: str) -> MockEncryptedInput:
        return MockEncryptedInput(self.devnet, contract_address, user_address)

    async def user_decrypt(
        self, requests: list[DecryptRequest], signature: DecryptionSignature
    ) -> dict[str, Union[int, bool]]:
        self.decrypt_calls += 1
        if not signature.is_valid(self.clock()):
            raise DecryptionError("Decryption signature expired")

        results: dict[str, Union[int, bool]] = {}
        for req in requests:
            if is_zero_handle(req.handle):
                raise DecryptionError(f"Handle {req.handle[:10]}... is not authorized")
            if not signature.covers(req.contract_address):
                raise DecryptionError(
                    f"Signature does not cover contract {req.contract_address}"
                )
            entry = self.devnet.ciphertext(req.handle)
            if entry is None or signature.user_address.lower() not in entry["acl"]:
                raise DecryptionError(f"Handle {req.handle[:10]}... is not authorized")
            results[req.handle] = int(entry["value"])
        return results

    def generate_keypair(self) -> tuple[str, str]:
        private_key = "0x" + secrets.token_hex(32)
        public_key = "0x" + hashlib.sha256(private_key.encode()).hexdigest()
        return public_key, private_key

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: list[str],
        start_timestamp: int,
        duration_days: int,
    ) -> dict:
        return {
            "domain": {
                "name": "Decryption",
                "version": "1",
                "chainId": self.devnet.chain_id,
            },
            "primaryType": "UserDecryptRequestVerification",
            "message": {
                "publicKey": public_key,
                "contractAddresses": list(contract_addresses),
                "startTimestamp": str(start_timestamp),
                "durationDays": str(duration_days),
            },
        }
