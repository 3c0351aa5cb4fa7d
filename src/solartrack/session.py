"""
Session lifecycle -- one engine per connected (account, chain).

Switching account or chain discards the old engine outright: its
guards are reset and anything it was still waiting on is dropped when
it lands, because the engine checks at commit time whether its
session is still the active one.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Optional

from .config import SolarTrackConfig, load_config, resolve_home
from .confidential.base import ComputationClient
from .confidential.mock import MockComputationClient
from .confidential.signature import FileStringStorage, StringStorage
from .deployments import Deployment, DeploymentRegistry
from .devnet import Devnet
from .engine import SyncEngine
from .ledger.base import LedgerClient
from .ledger.local import LocalLedger
from .models import SessionKey
from .signer import LocalSigner, Signer

logger = logging.getLogger("solartrack.session")

SIGNATURE_CACHE = Path("security") / "decryption-signatures.json"

LedgerFactory = Callable[[Deployment], LedgerClient]
ComputationFactory = Callable[[int], Optional[ComputationClient]]


class SessionManager:
    """Creates, swaps, and tears down the engine for the active session."""

    def __init__(
        self,
        registry: DeploymentRegistry,
        ledger_factory: LedgerFactory,
        computation_factory: ComputationFactory,
        signature_storage: StringStorage,
        config: Optional[SolarTrackConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.ledger_factory = ledger_factory
        self.computation_factory = computation_factory
        self.signature_storage = signature_storage
        self.config = config or SolarTrackConfig()
        self.clock = clock
        self._key: Optional[SessionKey] = None
        self._engine: Optional[SyncEngine] = None

    @property
    def current_key(self) -> Optional[SessionKey]:
        return self._key

    @property
    def engine(self) -> Optional[SyncEngine]:
        return self._engine

    def is_current(self, key: SessionKey) -> bool:
        return self._key is not None and key == self._key

    async def activate(
        self,
        signer: Optional[Signer],
        chain_id: Optional[int],
        start: bool = True,
    ) -> SyncEngine:
        """Make (signer's account, chain) the active session.

        Reuses the engine if the session is unchanged; otherwise the old
        engine is discarded and a new one built.

        Args:
            signer: The connected account's signer, or None.
            chain_id: The connected chain, or None.
            start: Run the initial refresh of the new engine.

        Returns:
            SyncEngine: The active session's engine.
        """
        account = (await signer.get_address()).lower() if signer is not None else None
        key = SessionKey(account=account, chain_id=chain_id)
        if self._engine is not None and key == self._key:
            return self._engine

        self.disconnect()
        self._key = key
        self._engine = self._build_engine(key, signer)
        logger.info("Session active: account=%s chain=%s", account, chain_id)
        if start:
            await self._engine.start()
        return self._engine

    def disconnect(self) -> None:
        """Tear down the active engine, if any."""
        if self._engine is not None:
            logger.debug("Discarding session %s", self._key)
            self._engine.close()
        self._engine = None
        self._key = None

    def _build_engine(self, key: SessionKey, signer: Optional[Signer]) -> SyncEngine:
        deployment = self.registry.resolve(key.chain_id)
        ledger = self.ledger_factory(deployment) if deployment is not None else None
        computation = (
            self.computation_factory(key.chain_id) if key.chain_id is not None else None
        )
        return SyncEngine(
            session=key,
            ledger=ledger,
            computation=computation,
            signer=signer,
            signature_storage=self.signature_storage,
            config=self.config,
            clock=self.clock,
            is_current=self.is_current,
        )


def devnet_session_manager(
    home: Optional[Path] = None,
    config: Optional[SolarTrackConfig] = None,
    devnet: Optional[Devnet] = None,
    signature_storage: Optional[StringStorage] = None,
    clock: Callable[[], float] = time.time,
) -> SessionManager:
    """Session manager wired to the local devnet under ``home``.

    Args:
        home: SolarTrack home directory.
        config: Configuration; loaded from ``home`` when omitted.
        devnet: Devnet to use; the file-backed one under ``home`` by default.
        signature_storage: Signature cache; a JSON file under ``home`` by default.
        clock: Time source shared by ledger, coprocessor, and engine.
    """
    home_path = resolve_home(home)
    config = config or load_config(home_path)
    devnet = devnet or Devnet.at_home(home_path)
    storage = signature_storage or FileStringStorage(home_path / SIGNATURE_CACHE)

    def ledger_factory(deployment: Deployment) -> LedgerClient:
        return LocalLedger(devnet, deployment.address, clock=clock)

    def computation_factory(chain_id: int) -> Optional[ComputationClient]:
        if chain_id != devnet.chain_id:
            logger.info("No coprocessor for chain %s", chain_id)
            return None
        return MockComputationClient(devnet, clock=clock)

    return SessionManager(
        registry=DeploymentRegistry(config.deployments_dir, config.contract_name),
        ledger_factory=ledger_factory,
        computation_factory=computation_factory,
        signature_storage=storage,
        config=config,
        clock=clock,
    )


def devnet_signer(config: SolarTrackConfig, seed: Optional[str] = None) -> LocalSigner:
    """Devnet signer for ``seed``, or the configured account seed."""
    return LocalSigner(seed or config.account_seed)
