"""Shared test fixtures for solartrack."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from solartrack.config import SolarTrackConfig
from solartrack.confidential.mock import MockComputationClient
from solartrack.confidential.signature import MemoryStringStorage
from solartrack.devnet import Devnet
from solartrack.engine import SyncEngine
from solartrack.ledger.local import LocalLedger
from solartrack.models import SessionKey
from solartrack.signer import LocalSigner

DAY = 86400
START = 20_000 * DAY + 3600


class FakeClock:
    """Controllable time source in unix seconds."""

    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance_days(self, days: int = 1) -> None:
        self.now += days * DAY


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tmp_home(tmp_path: Path) -> Path:
    """Provide a temporary SolarTrack home directory."""
    home = tmp_path / ".solartrack"
    home.mkdir()
    return home


@pytest.fixture
def config() -> SolarTrackConfig:
    return SolarTrackConfig(encrypt_yield_seconds=0)


@pytest.fixture
def devnet() -> Devnet:
    """In-memory devnet."""
    return Devnet()


@pytest.fixture
def alice() -> LocalSigner:
    return LocalSigner("alice")


@pytest.fixture
def bob() -> LocalSigner:
    return LocalSigner("bob")


@pytest.fixture
def contract(devnet: Devnet, alice: LocalSigner) -> str:
    """Address of a freshly deployed SolarTrackManager."""
    return devnet.deploy(alice.address)


@pytest.fixture
def ledger(devnet: Devnet, contract: str, clock: FakeClock) -> LocalLedger:
    return LocalLedger(devnet, contract, clock=clock)


@pytest.fixture
def computation(devnet: Devnet, clock: FakeClock) -> MockComputationClient:
    return MockComputationClient(devnet, clock=clock)


@pytest.fixture
def make_engine(ledger, computation, config, clock):
    """Factory for engines over the shared devnet."""

    def _make(
        signer: Optional[LocalSigner],
        ledger_override=...,
        computation_override=...,
        storage: Optional[MemoryStringStorage] = None,
        chain_id: Optional[int] = 31337,
    ) -> SyncEngine:
        return SyncEngine(
            session=SessionKey(
                account=signer.address if signer else None, chain_id=chain_id
            ),
            ledger=ledger if ledger_override is ... else ledger_override,
            computation=computation if computation_override is ... else computation_override,
            signer=signer,
            signature_storage=storage or MemoryStringStorage(),
            config=config,
            clock=clock,
        )

    return _make
