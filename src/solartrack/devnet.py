"""
Local devnet -- a JSON-file stand-in for a chain plus its coprocessor.

Holds deployed SolarTrackManager state and the ciphertext table the
mock coprocessor resolves handles against. The LocalLedger and the
MockComputationClient share one Devnet so that what one encrypts the
other can store, and what the ledger stores the user can reveal.

Persisted at ``<home>/devnet/chain.json``; pass ``path=None`` for a
purely in-memory devnet (tests).
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Optional

from .models import ZERO_HANDLE

logger = logging.getLogger("solartrack.devnet")

DEVNET_CHAIN_ID = 31337
DEVNET_NETWORK = "localhost"


def _hash_hex(*parts: object) -> str:
    joined = "|".join(str(p) for p in parts)
    return "0x" + hashlib.sha256(joined.encode()).hexdigest()


def input_proof_for(handle: str, contract_address: str, user_address: str) -> str:
    """The proof the devnet accepts for an encrypted input."""
    return _hash_hex("proof", handle.lower(), contract_address.lower(), user_address.lower())


def _empty_contract(deployer: str) -> dict:
    return {
        "deployer": deployer,
        "users": [],
        "user_totals": {},
        "global_total": ZERO_HANDLE,
        "counts": {},
        "records": {},
        "badges": {},
    }


class Devnet:
    """Chain and coprocessor state for local development."""

    def __init__(self, path: Optional[Path] = None, chain_id: int = DEVNET_CHAIN_ID):
        self.path = path
        self.chain_id = chain_id
        self.data = self._load()

    @classmethod
    def at_home(cls, home: Path) -> "Devnet":
        """Devnet persisted under a SolarTrack home directory."""
        return cls(home / "devnet" / "chain.json")

    def _load(self) -> dict:
        base = {
            "chain_id": self.chain_id,
            "block_number": 0,
            "nonce": 0,
            "contracts": {},
            "ciphertexts": {},
        }
        if self.path is None or not self.path.exists():
            return base
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Devnet state unreadable, starting fresh: %s", exc)
            return base
        base.update(data)
        return base

    def save(self) -> None:
        """Persist state if this devnet is file-backed."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self.data, indent=2), encoding="utf-8")

    # -- chain ---------------------------------------------------------------

    def next_nonce(self) -> int:
        self.data["nonce"] += 1
        return self.data["nonce"]

    def mine(self) -> int:
        """Advance one block and return its number."""
        self.data["block_number"] += 1
        return self.data["block_number"]

    def deploy(self, deployer: str) -> str:
        """Deploy a fresh SolarTrackManager and return its address."""
        address = "0x" + _hash_hex("deploy", deployer.lower(), self.next_nonce())[-40:]
        self.data["contracts"][address] = _empty_contract(deployer)
        self.mine()
        self.save()
        logger.info("Deployed SolarTrackManager at %s", address)
        return address

    def contract(self, address: str) -> Optional[dict]:
        return self.data["contracts"].get(address.lower())

    # -- coprocessor ---------------------------------------------------------

    def new_handle(self, *parts: object) -> str:
        return _hash_hex("handle", self.next_nonce(), *parts)

    def store_ciphertext(self, handle: str, value: int, acl: Optional[list[str]] = None) -> None:
        self.data["ciphertexts"][handle.lower()] = {
            "value": int(value),
            "acl": [a.lower() for a in (acl or [])],
        }

    def ciphertext(self, handle: str) -> Optional[dict]:
        return self.data["ciphertexts"].get(handle.lower())

    def value_of(self, handle: str) -> int:
        """Plaintext behind ``handle``; the zero handle reads as 0."""
        entry = self.ciphertext(handle)
        return int(entry["value"]) if entry else 0


def _fn(name: str, inputs: list[str], outputs: list[str], mutability: str = "view") -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"type": t} for t in inputs],
        "outputs": [{"type": t} for t in outputs],
    }


DEVNET_ABI = [
    _fn("submitUsage", ["bytes32", "bytes", "string"], [], "nonpayable"),
    _fn("getUserTotalHandle", ["address"], ["bytes32"]),
    _fn("getGlobalTotalHandle", [], ["bytes32"]),
    _fn("getTotalUsers", [], ["uint256"]),
    _fn("hasSubmittedToday", ["address"], ["bool"]),
    _fn("getAllUsers", [], ["address[]"]),
    _fn("getUserSubmissionCount", ["address"], ["uint256"]),
    _fn("getUserRecord", ["address", "uint256"], ["bytes32", "string", "uint256", "bool"]),
    _fn("hasBadge", ["address", "uint8"], ["bool"]),
    _fn("claimBadge", ["uint8"], [], "nonpayable"),
]
